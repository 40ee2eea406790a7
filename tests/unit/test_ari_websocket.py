"""Tests for the ARI WebSocket transport."""

from unittest.mock import AsyncMock, Mock, patch
from urllib.parse import parse_qs, urlsplit

import pytest
from websockets.datastructures import Headers
from websockets.exceptions import ConnectionClosed, InvalidStatus
from websockets.http11 import Response

from ari_events.clients.ari_websocket import (
    WebSocketConnection,
    WebSocketDialer,
    build_events_url,
    build_headers,
    redact_url,
)
from ari_events.config.settings import AriConfig
from ari_events.exceptions import DialError, ReadError


@pytest.fixture
def ari_config() -> AriConfig:
    return AriConfig(
        host="pbx.local:8088",
        username="asterisk",
        password="secret",
        applications=["demo", "ivr"],
        default_headers={"X-Request-Source": "tests"}
    )


class TestBuildEventsUrl:
    """Test events URL construction."""

    def test_url_layout(self, ari_config):
        """Test scheme, host, path and query parameters."""
        parts = urlsplit(build_events_url(ari_config))
        query = parse_qs(parts.query)

        assert parts.scheme == "ws"
        assert parts.netloc == "pbx.local:8088"
        assert parts.path == "/ari/events"
        assert query["app"] == ["demo,ivr"]
        assert query["api_key"] == ["asterisk:secret"]
        assert "subscribeAll" not in query

    def test_explicit_api_key_and_subscribe_all(self, ari_config):
        """Test an explicit api_key wins and subscribeAll is added."""
        config = ari_config.model_copy(update={"api_key": "key:value", "subscribe_all": True, "scheme": "wss"})
        parts = urlsplit(build_events_url(config))
        query = parse_qs(parts.query)

        assert parts.scheme == "wss"
        assert query["api_key"] == ["key:value"]
        assert query["subscribeAll"] == ["true"]

    @pytest.mark.parametrize("base_path, expected", [
        ("/ari", "/ari/events"),
        ("/ari/", "/ari/events"),
        ("/", "/events"),
        ("", "/events"),
        ("asterisk/ari", "/asterisk/ari/events"),
    ])
    def test_base_path_normalisation(self, ari_config, base_path, expected):
        """Test slashes are normalised around the base path."""
        config = ari_config.model_copy(update={"base_path": base_path})
        assert urlsplit(build_events_url(config)).path == expected

    def test_no_credentials(self):
        """Test api_key is omitted without credentials."""
        query = parse_qs(urlsplit(build_events_url(AriConfig(applications=["demo"]))).query)
        assert "api_key" not in query

    def test_redact_url_masks_api_key(self, ari_config):
        """Test credentials never reach the log line."""
        redacted = redact_url(build_events_url(ari_config))

        assert "secret" not in redacted
        assert "api_key=********" in redacted
        assert "app=demo%2Civr" in redacted


class TestBuildHeaders:
    """Test handshake headers."""

    def test_default_headers_and_user_agent(self, ari_config):
        """Test configured headers plus the User-Agent."""
        assert build_headers(ari_config) == {
            "X-Request-Source": "tests",
            "User-Agent": "ARI_Client",
        }

    def test_empty_user_agent_is_omitted(self, ari_config):
        """Test an empty User-Agent is not sent."""
        config = ari_config.model_copy(update={"user_agent": ""})
        assert "User-Agent" not in build_headers(config)


class TestWebSocketDialer:
    """Test dialing and dial error wrapping."""

    @pytest.mark.asyncio
    async def test_dial_passes_transport_settings(self, ari_config):
        """Test connect() receives headers and configured timeouts."""
        websocket = Mock()
        with patch("ari_events.clients.ari_websocket.connect", new=AsyncMock(return_value=websocket)) as mock_connect:
            dialer = WebSocketDialer(ari_config)
            connection = await dialer.dial("ws://pbx.local:8088/ari/events", build_headers(ari_config))

        assert isinstance(connection, WebSocketConnection)
        args, kwargs = mock_connect.call_args
        assert args == ("ws://pbx.local:8088/ari/events",)
        assert kwargs["additional_headers"] == {"X-Request-Source": "tests"}
        assert kwargs["user_agent_header"] == "ARI_Client"
        assert kwargs["open_timeout"] == ari_config.open_timeout_seconds
        assert kwargs["ping_interval"] == ari_config.ping_interval_seconds
        assert kwargs["max_size"] == ari_config.max_message_size

    @pytest.mark.asyncio
    async def test_network_error_becomes_dial_error(self, ari_config):
        """Test OS-level failures are wrapped."""
        with patch("ari_events.clients.ari_websocket.connect", new=AsyncMock(side_effect=ConnectionRefusedError("refused"))):
            with pytest.raises(DialError, match="refused") as exc_info:
                await WebSocketDialer(ari_config).dial("ws://pbx.local:8088/ari/events")

        assert exc_info.value.status_code is None

    @pytest.mark.asyncio
    async def test_timeout_becomes_dial_error(self, ari_config):
        """Test handshake timeouts are wrapped."""
        with patch("ari_events.clients.ari_websocket.connect", new=AsyncMock(side_effect=TimeoutError())):
            with pytest.raises(DialError):
                await WebSocketDialer(ari_config).dial("ws://pbx.local:8088/ari/events")

    @pytest.mark.asyncio
    async def test_rejected_handshake_includes_body(self, ari_config):
        """Test an HTTP rejection carries status and response body."""
        response = Response(401, "Unauthorized", Headers(), b"Invalid credentials")
        with patch("ari_events.clients.ari_websocket.connect", new=AsyncMock(side_effect=InvalidStatus(response))):
            with pytest.raises(DialError) as exc_info:
                await WebSocketDialer(ari_config).dial("ws://pbx.local:8088/ari/events")

        assert exc_info.value.status_code == 401
        assert "Resp: Invalid credentials" in str(exc_info.value)


class TestWebSocketConnection:
    """Test reading and closing."""

    @pytest.mark.asyncio
    async def test_read_message_returns_frame(self):
        """Test frames are returned as received."""
        websocket = Mock()
        websocket.recv = AsyncMock(return_value='{"type":"StasisStart"}')

        assert await WebSocketConnection(websocket).read_message() == '{"type":"StasisStart"}'

    @pytest.mark.asyncio
    async def test_closed_connection_becomes_read_error(self):
        """Test a remote close is reported as ReadError."""
        websocket = Mock()
        websocket.recv = AsyncMock(side_effect=ConnectionClosed(None, None))

        with pytest.raises(ReadError, match="connection closed"):
            await WebSocketConnection(websocket).read_message()

    @pytest.mark.asyncio
    async def test_network_error_becomes_read_error(self):
        """Test a socket error is reported as ReadError."""
        websocket = Mock()
        websocket.recv = AsyncMock(side_effect=ConnectionResetError("reset by peer"))

        with pytest.raises(ReadError, match="reset by peer"):
            await WebSocketConnection(websocket).read_message()

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self):
        """Test repeated close() only closes the socket once."""
        websocket = Mock()
        websocket.close = AsyncMock()
        connection = WebSocketConnection(websocket)

        await connection.close()
        await connection.close()

        websocket.close.assert_awaited_once()
        assert connection.closed is True
