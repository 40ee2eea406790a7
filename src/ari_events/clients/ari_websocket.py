"""WebSocket transport for the Asterisk ARI events endpoint."""

import asyncio
import logging
from typing import Dict, Optional, Union
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, InvalidStatus, WebSocketException

from ..config.settings import AriConfig
from ..exceptions import DialError, ReadError

logger = logging.getLogger(__name__)

REDACTED = "********"


def build_events_url(config: AriConfig) -> str:
    """
    Build the ``/events`` WebSocket URL for the configured applications.

    Query parameters: ``app`` (comma-joined application names), ``api_key``
    (comma-joined credentials) and ``subscribeAll=true`` when enabled.
    """
    path = config.base_path.rstrip('/') + '/events'
    if not path.startswith('/'):
        path = '/' + path

    query = {'app': ','.join(config.applications)}
    credentials = config.credentials()
    if credentials:
        query['api_key'] = ','.join(credentials)
    if config.subscribe_all:
        query['subscribeAll'] = 'true'

    return urlunsplit((config.scheme, config.host, path, urlencode(query), ''))


def build_headers(config: AriConfig) -> Dict[str, str]:
    """Headers sent with the WebSocket handshake."""
    headers = dict(config.default_headers)
    if config.user_agent:
        headers['User-Agent'] = config.user_agent
    return headers


def redact_url(url: str) -> str:
    """Mask the api_key query parameter so the URL can be logged."""
    parts = urlsplit(url)
    query = [
        (key, REDACTED if key == 'api_key' else value)
        for key, value in parse_qsl(parts.query, keep_blank_values=True)
    ]
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(query, safe='*'), parts.fragment))


class WebSocketConnection:
    """One open WebSocket session, exclusively owned by a stream client."""

    def __init__(self, websocket: ClientConnection):
        self._websocket = websocket
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def read_message(self) -> Union[str, bytes]:
        """Read the next frame; raises ReadError when the session is over."""
        try:
            return await self._websocket.recv()
        except ConnectionClosed as e:
            raise ReadError(f"connection closed: {e}") from e
        except (OSError, WebSocketException) as e:
            raise ReadError(f"read failed: {e}") from e

    async def close(self) -> None:
        """Close the connection. Safe to call repeatedly and after a failed read."""
        if self._closed:
            return
        self._closed = True
        try:
            await self._websocket.close()
        except (OSError, WebSocketException) as e:
            logger.warning(f"Error while closing WebSocket: {e}")


class WebSocketDialer:
    """Opens WebSocket connections to ARI with the configured transport settings."""

    def __init__(self, config: AriConfig):
        self.config = config

    async def dial(self, url: str, headers: Optional[Dict[str, str]] = None) -> WebSocketConnection:
        """
        Open a connection.

        Raises:
            DialError: If the handshake or the TCP/TLS connection fails. A
                rejected handshake carries the HTTP status and response body.
        """
        headers = dict(headers or {})
        user_agent = headers.pop('User-Agent', None)

        logger.debug(f"Connecting to WebSocket. URL: {redact_url(url)}")
        logger.debug(f"headers: {headers}")

        try:
            websocket = await connect(
                url,
                additional_headers=headers,
                user_agent_header=user_agent,
                open_timeout=self.config.open_timeout_seconds,
                ping_interval=self.config.ping_interval_seconds,
                ping_timeout=self.config.ping_timeout_seconds,
                close_timeout=self.config.close_timeout_seconds,
                max_size=self.config.max_message_size,
                compression=None
            )
        except InvalidStatus as e:
            response = e.response
            body = response.body.decode('utf-8', errors='replace') if response.body else ''
            raise DialError(
                f"failed to connect to websocket: {e}. Resp: {body}",
                status_code=response.status_code
            ) from e
        except (OSError, asyncio.TimeoutError, WebSocketException) as e:
            raise DialError(f"failed to connect to websocket: {e}") from e

        return WebSocketConnection(websocket)
