"""Error types raised by the event stream components."""

from typing import Optional, Union


class StreamError(Exception):
    """Base exception for event stream errors."""


class DialError(StreamError):
    """The transport could not establish a connection."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ReadError(StreamError):
    """An established connection failed while reading a frame."""


class EventDecodeError(StreamError):
    """A single frame did not decode into an event envelope."""

    def __init__(self, reason: str, payload: Union[bytes, str, None] = None):
        super().__init__(reason)
        self.reason = reason
        self.payload = payload

    def payload_preview(self, limit: int = 200) -> str:
        """Return a printable, truncated copy of the offending payload."""
        if self.payload is None:
            return ""
        if isinstance(self.payload, bytes):
            text = self.payload.decode("utf-8", errors="replace")
        else:
            text = self.payload
        if len(text) > limit:
            return text[:limit] + "..."
        return text
