"""ARI event envelope model and wire decoder."""

import json
import re
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .exceptions import EventDecodeError


# Asterisk renders event times as 2024-01-02T03:04:05.123+0000
TIMESTAMP_LAYOUT = "%Y-%m-%dT%H:%M:%S.%f%z"
_TIMESTAMP_PATTERN = re.compile(r"\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\.\d{3}[+-]\d{4}", re.ASCII)


class EventType(str, Enum):
    """ARI event types the router knows by name."""
    STASIS_START = "StasisStart"
    STASIS_END = "StasisEnd"
    CHANNEL_VARSET = "ChannelVarset"
    CHANNEL_DTMF_RECEIVED = "ChannelDtmfReceived"
    CHANNEL_STATE_CHANGE = "ChannelStateChange"
    CHANNEL_HANGUP_REQUEST = "ChannelHangupRequest"
    CHANNEL_DESTROYED = "ChannelDestroyed"


def parse_timestamp(raw: str) -> datetime:
    """
    Parse an ARI timestamp.

    Surrounding quote characters are stripped, then the text must match
    ``YYYY-MM-DDTHH:MM:SS.mmm±HHMM`` exactly: millisecond precision and a
    numeric UTC offset. ``Z`` suffixes, other precisions and missing
    offsets are rejected.

    Raises:
        ValueError: If the text does not match the layout
    """
    text = raw.strip('"')
    if not _TIMESTAMP_PATTERN.fullmatch(text):
        raise ValueError(
            f"timestamp {raw!r} does not match layout YYYY-MM-DDTHH:MM:SS.mmm+HHMM"
        )
    return datetime.strptime(text, TIMESTAMP_LAYOUT)


def format_timestamp(value: datetime) -> str:
    """Render a datetime in the ARI wire layout."""
    millis = value.microsecond // 1000
    return f"{value.strftime('%Y-%m-%dT%H:%M:%S')}.{millis:03d}{value.strftime('%z')}"


class Envelope(BaseModel):
    """
    One decoded ARI event.

    Only ``event_type`` is guaranteed; which of the other fields are present
    depends on the event type. Malformed optional fields decode as absent,
    a malformed timestamp fails the whole envelope.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    event_type: str = Field(alias="type")
    application_name: Optional[str] = Field(default=None, alias="application")
    source_instance_id: Optional[str] = Field(default=None, alias="asterisk_id")
    arguments: Optional[Tuple[str, ...]] = Field(default=None, alias="args")
    channel: Optional[Dict[str, Any]] = None
    timestamp: Optional[datetime] = None
    value: Optional[str] = None
    variable: Optional[str] = None

    @field_validator("event_type", mode="before")
    @classmethod
    def _require_event_type(cls, v):
        if not isinstance(v, str) or not v:
            raise ValueError("event type must be a non-empty string")
        return v

    @field_validator("application_name", "source_instance_id", "value", "variable", mode="before")
    @classmethod
    def _drop_malformed_string(cls, v):
        return v if isinstance(v, str) else None

    @field_validator("arguments", mode="before")
    @classmethod
    def _drop_malformed_arguments(cls, v):
        if isinstance(v, (list, tuple)) and all(isinstance(item, str) for item in v):
            return tuple(v)
        return None

    @field_validator("channel", mode="before")
    @classmethod
    def _drop_malformed_channel(cls, v):
        return v if isinstance(v, dict) else None

    @field_validator("timestamp", mode="before")
    @classmethod
    def _parse_timestamp(cls, v):
        if v is None:
            return None
        if not isinstance(v, str):
            raise ValueError("timestamp must be a string")
        return parse_timestamp(v)

    @property
    def known_type(self) -> Optional[EventType]:
        """The matching EventType member, or None for types not modelled here."""
        try:
            return EventType(self.event_type)
        except ValueError:
            return None

    def to_wire(self) -> Dict[str, Any]:
        """Return the envelope as a dict keyed by wire names."""
        data = self.model_dump(by_alias=True, exclude_none=True)
        if self.timestamp is not None:
            data["timestamp"] = format_timestamp(self.timestamp)
        if self.arguments is not None:
            data["args"] = list(self.arguments)
        return data

    def to_json(self, indent: Optional[int] = None) -> str:
        """Render the envelope as JSON using wire keys."""
        return json.dumps(self.to_wire(), indent=indent, default=str)


def decode_event(payload: Union[bytes, str]) -> Envelope:
    """
    Decode one WebSocket frame into an Envelope.

    Unknown keys are ignored so new upstream fields never break decoding.

    Args:
        payload: Raw frame, a JSON object as bytes or text

    Returns:
        Envelope: The decoded event

    Raises:
        EventDecodeError: If the frame is not a JSON object, lacks a string
            ``type``, or carries a timestamp outside the ARI layout
    """
    try:
        data = json.loads(payload)
    except RecursionError as e:
        raise EventDecodeError("invalid JSON: nesting too deep", payload) from e
    except ValueError as e:
        raise EventDecodeError(f"invalid JSON: {e}", payload) from e

    if not isinstance(data, dict):
        raise EventDecodeError(
            f"expected a JSON object, got {type(data).__name__}", payload
        )

    if "type" not in data:
        raise EventDecodeError("missing event type", payload)

    try:
        return Envelope.model_validate(data)
    except RecursionError as e:
        raise EventDecodeError("envelope: nesting too deep", payload) from e
    except ValidationError as e:
        raise EventDecodeError(_describe_validation_error(e), payload) from e


def _describe_validation_error(error: ValidationError) -> str:
    parts = []
    for detail in error.errors():
        location = ".".join(str(part) for part in detail.get("loc", ())) or "envelope"
        parts.append(f"{location}: {detail.get('msg')}")
    return "; ".join(parts)
