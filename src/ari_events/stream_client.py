"""Resilient ARI event stream client: connect, receive, back off, reconnect."""

import asyncio
import logging
import time
from enum import Enum
from typing import Any, Awaitable, Dict, Mapping, Optional, Protocol, Union

from .events import Envelope, decode_event
from .exceptions import DialError, EventDecodeError, ReadError
from .utils.logging import log_with_context
from .utils.retry import ExponentialBackoff, cancellable_sleep

logger = logging.getLogger(__name__)

_CANCELLED = object()


class ClientState(str, Enum):
    """Connection lifecycle states."""
    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    BACKING_OFF = "backing_off"
    TERMINATED = "terminated"


class Connection(Protocol):
    async def read_message(self) -> Union[str, bytes]: ...

    async def close(self) -> None: ...


class Dialer(Protocol):
    async def dial(self, url: str, headers: Optional[Dict[str, str]] = None) -> Connection: ...


class EventSink(Protocol):
    async def handle_event(self, envelope: Envelope) -> None: ...

    async def handle_decode_error(self, error: EventDecodeError) -> None: ...


class StreamObserver:
    """
    Receives every lifecycle notification of a ResilientStreamClient.

    The default implementation writes them to the log: routine transitions
    at DEBUG, connects, reconnect delays and terminations at INFO, transient
    dial/read failures at WARNING and undecodable frames at ERROR.
    """

    def on_state_change(self, old: ClientState, new: ClientState) -> None:
        log_with_context(
            logger, logging.DEBUG, f"Stream state {old.value} -> {new.value}",
            old_state=old.value, new_state=new.value
        )

    def on_dial_attempt(self, attempt: int) -> None:
        log_with_context(logger, logging.DEBUG, f"Dial attempt {attempt}", attempt=attempt)

    def on_connected(self) -> None:
        logger.info("WebSocket connection successfully established")

    def on_dial_failure(self, error: DialError) -> None:
        log_with_context(
            logger, logging.WARNING, f"Failed to connect via WebSocket: {error}",
            status_code=error.status_code
        )

    def on_read_error(self, error: ReadError) -> None:
        logger.warning(f"Read error: {error}. Attempting to reconnect...")

    def on_decode_error(self, error: EventDecodeError) -> None:
        log_with_context(
            logger, logging.ERROR, f"Error parsing event: {error.reason}",
            payload=error.payload_preview()
        )

    def on_backoff(self, delay: float) -> None:
        log_with_context(logger, logging.INFO, f"Reconnecting in {delay:.2f}s...", delay_seconds=delay)

    def on_terminated(self) -> None:
        logger.info("Event stream terminated")


class ResilientStreamClient:
    """
    Keeps an ARI event stream alive until the cancellation event is set.

    One instance is one sequential worker. It dials, reads frames one at a
    time, decodes each and awaits the sink before reading the next. Dial
    and read failures close the session and retry after an exponential
    backoff that resets on every successful dial. Undecodable frames are
    reported and skipped. Setting ``cancel_event`` is the only way to stop
    it; pending dials, reads and backoff waits are interrupted and the held
    connection is closed.
    """

    def __init__(
        self,
        dialer: Dialer,
        url: str,
        headers: Optional[Mapping[str, str]],
        sink: EventSink,
        cancel_event: asyncio.Event,
        backoff: Optional[ExponentialBackoff] = None,
        observer: Optional[StreamObserver] = None
    ):
        self.dialer = dialer
        self.url = url
        self.headers = dict(headers or {})
        self.sink = sink
        self.backoff = backoff or ExponentialBackoff()
        self.observer = observer or StreamObserver()

        self._cancel = cancel_event
        self._state = ClientState.IDLE
        self._connection: Optional[Connection] = None

        self.stats = {
            'frames_received': 0,
            'events_dispatched': 0,
            'decode_errors': 0,
            'sink_errors': 0,
            'dial_attempts': 0,
            'connection_count': 0,
            'dial_failures': 0,
            'read_failures': 0,
            'last_message_time': None
        }

    @property
    def state(self) -> ClientState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state == ClientState.CONNECTED and self._connection is not None

    async def run(self) -> None:
        """Run the connect/receive/reconnect loop until cancelled."""
        if self._state != ClientState.IDLE:
            raise RuntimeError(f"Stream client cannot be started from state {self._state.value}")

        try:
            while not self._cancel.is_set():
                connection = await self._connect()
                if connection is not None:
                    await self._receive(connection)
                if self._cancel.is_set():
                    break
                if await self._back_off():
                    break
        finally:
            self._transition(ClientState.TERMINATED)
            self.observer.on_terminated()

    async def _connect(self) -> Optional[Connection]:
        self._transition(ClientState.CONNECTING)
        self.stats['dial_attempts'] += 1
        self.observer.on_dial_attempt(self.stats['dial_attempts'])

        try:
            connection = await self._until_cancelled(self.dialer.dial(self.url, self.headers))
        except DialError as e:
            self.stats['dial_failures'] += 1
            self.observer.on_dial_failure(e)
            return None

        if connection is _CANCELLED:
            return None
        return connection

    async def _receive(self, connection: Connection) -> None:
        self._connection = connection
        self._transition(ClientState.CONNECTED)
        self.backoff.reset()
        self.stats['connection_count'] += 1
        self.observer.on_connected()

        try:
            while not self._cancel.is_set():
                try:
                    frame = await self._until_cancelled(connection.read_message())
                except ReadError as e:
                    self.stats['read_failures'] += 1
                    self.observer.on_read_error(e)
                    return

                if frame is _CANCELLED:
                    return
                await self._dispatch(frame)
        finally:
            self._connection = None
            await connection.close()

    async def _dispatch(self, frame: Union[str, bytes]) -> None:
        self.stats['frames_received'] += 1
        self.stats['last_message_time'] = time.time()

        try:
            envelope = decode_event(frame)
        except EventDecodeError as e:
            self.stats['decode_errors'] += 1
            self.observer.on_decode_error(e)
            await self._call_sink(self.sink.handle_decode_error(e))
            return

        if await self._call_sink(self.sink.handle_event(envelope)):
            self.stats['events_dispatched'] += 1

    async def _call_sink(self, call: Awaitable[None]) -> bool:
        try:
            await call
            return True
        except Exception as e:
            self.stats['sink_errors'] += 1
            logger.error(f"Sink failed to handle frame: {e}", exc_info=True)
            return False

    async def _back_off(self) -> bool:
        """Wait out the next backoff delay; True if cancelled meanwhile."""
        delay = self.backoff.next_delay()
        self._transition(ClientState.BACKING_OFF)
        self.observer.on_backoff(delay)
        return await cancellable_sleep(delay, self._cancel)

    async def _until_cancelled(self, awaitable: Awaitable[Any]) -> Any:
        """Await ``awaitable`` unless the cancel event fires first."""
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._cancel.wait())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
            if not task.done():
                task.cancel()
                await asyncio.wait({task})

        if task.cancelled():
            return _CANCELLED
        return task.result()

    def _transition(self, new_state: ClientState) -> None:
        old_state = self._state
        if old_state == new_state:
            return
        self._state = new_state
        self.observer.on_state_change(old_state, new_state)

    def get_stats(self) -> Dict[str, Any]:
        """Get connection and processing statistics."""
        last_message_age = None
        if self.stats['last_message_time']:
            last_message_age = time.time() - self.stats['last_message_time']

        return {
            **self.stats,
            'state': self._state.value,
            'is_connected': self.is_connected,
            'last_message_age_seconds': last_message_age,
            'consecutive_failures': self.backoff.failures,
            'next_backoff_seconds': self.backoff.current_delay
        }

    async def health_check(self) -> Dict[str, Any]:
        """Report client health from the current state and error rates."""
        stats = self.get_stats()
        issues = []

        if self._state == ClientState.TERMINATED:
            status = 'unhealthy'
            issues.append('Event stream terminated')
        elif not stats['is_connected']:
            status = 'degraded'
            issues.append(f"WebSocket not connected (state={stats['state']})")
        else:
            status = 'healthy'

        if stats['frames_received'] > 0:
            error_rate = stats['decode_errors'] / stats['frames_received']
            if error_rate > 0.05:  # >5% undecodable frames
                issues.append(f"High decode error rate: {error_rate:.2%}")
                if status == 'healthy':
                    status = 'degraded'

        return {
            'status': status,
            'issues': issues,
            'stats': stats
        }
