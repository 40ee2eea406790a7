"""Pytest configuration and shared fixtures."""

import asyncio
import logging
from typing import Any, Dict

import pytest

from ari_events.utils.retry import ExponentialBackoff
from fakes import CEILING, FLOOR, RecordingObserver, RecordingSink


@pytest.fixture
def cancel_event():
    return asyncio.Event()


@pytest.fixture
def fast_backoff() -> ExponentialBackoff:
    return ExponentialBackoff(initial_delay=FLOOR, max_delay=CEILING)


@pytest.fixture
def observer() -> RecordingObserver:
    return RecordingObserver()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def sample_stasis_start() -> Dict[str, Any]:
    """Sample StasisStart event as sent by Asterisk."""
    return {
        "type": "StasisStart",
        "timestamp": "2024-01-02T03:04:05.123+0000",
        "args": ["inbound", "42"],
        "channel": {
            "id": "1704164645.12",
            "name": "PJSIP/alice-00000001",
            "state": "Ring",
            "caller": {"name": "Alice", "number": "1001"},
            "dialplan": {"context": "from-internal", "exten": "100", "priority": 1},
        },
        "asterisk_id": "00:11:22:33:44:55",
        "application": "demo",
    }


@pytest.fixture
def restore_logging():
    """Undo setup_logging() changes to the root logger after the test."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield root
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)
