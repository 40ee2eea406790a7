"""Reconnect backoff utilities."""

import asyncio
import random
import logging

logger = logging.getLogger(__name__)


class ExponentialBackoff:
    """
    Exponential backoff delay policy for reconnect loops.

    The first failure waits ``initial_delay``; every further consecutive
    failure doubles (``backoff_factor``) the wait, saturating at
    ``max_delay``. ``reset()`` returns to ``initial_delay`` and is called
    whenever a connection is established.
    """

    def __init__(
        self,
        initial_delay: float = 1.0,
        max_delay: float = 60.0,
        backoff_factor: float = 2.0,
        jitter: bool = False
    ):
        if initial_delay <= 0:
            raise ValueError("initial_delay must be positive")
        if max_delay < initial_delay:
            raise ValueError("max_delay must be >= initial_delay")
        if backoff_factor < 1:
            raise ValueError("backoff_factor must be >= 1")

        self.initial_delay = initial_delay
        self.max_delay = max_delay
        self.backoff_factor = backoff_factor
        self.jitter = jitter

        self._delay = initial_delay
        self.failures = 0

    @classmethod
    def from_config(cls, config) -> "ExponentialBackoff":
        """Build a policy from a ReconnectConfig."""
        return cls(
            initial_delay=config.initial_delay_seconds,
            max_delay=config.max_delay_seconds,
            backoff_factor=config.multiplier,
            jitter=config.jitter
        )

    @property
    def current_delay(self) -> float:
        """Delay the next failure will wait, before jitter."""
        return self._delay

    def next_delay(self) -> float:
        """Record a failure and return how long to wait before retrying."""
        delay = self._delay
        self._delay = min(self._delay * self.backoff_factor, self.max_delay)
        self.failures += 1

        if self.jitter:
            # ±25% of the delay, never above the ceiling
            jitter_range = delay * 0.25
            delay = min(delay + random.uniform(-jitter_range, jitter_range), self.max_delay)

        return delay

    def reset(self) -> None:
        """Return to the initial delay after a successful connection."""
        if self.failures:
            logger.debug(f"Backoff reset after {self.failures} consecutive failures")
        self._delay = self.initial_delay
        self.failures = 0


async def cancellable_sleep(delay: float, cancel_event: asyncio.Event) -> bool:
    """
    Sleep for ``delay`` seconds unless ``cancel_event`` fires first.

    Returns:
        bool: True if the event fired (the sleep was cut short)
    """
    if cancel_event.is_set():
        return True
    try:
        await asyncio.wait_for(cancel_event.wait(), timeout=delay)
        return True
    except asyncio.TimeoutError:
        return False
