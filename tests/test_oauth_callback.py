"""Tests for the OAuth callback server."""

import asyncio
import logging
import socket

import pytest

from conftest import CALLBACK_URI, send_request
from oidc_cli.oauth.callback import (
    CallbackCancelledError,
    CallbackError,
    CallbackResult,
    CallbackServer,
    CallbackTimeoutError,
    ListenerBindError,
    parse_callback_uri,
    parse_callback_url,
)


class TestParseCallbackUrl:
    """Tests for parse_callback_url function."""

    def test_parse_success_callback(self) -> None:
        """Test parsing successful OAuth callback URL."""
        result = parse_callback_url("/callback?code=abc123&state=xyz789")

        assert result.code == "abc123"
        assert result.state == "xyz789"
        assert result.error is None
        assert result.is_success()

    def test_parse_error_callback(self) -> None:
        """Test parsing error OAuth callback URL."""
        result = parse_callback_url(
            "/callback?error=access_denied&error_description=User+denied+access&state=xyz"
        )

        assert result.code is None
        assert result.error == "access_denied"
        assert result.error_description == "User denied access"
        assert result.state == "xyz"
        assert not result.is_success()

    def test_parse_empty_params(self) -> None:
        """Test parsing URL with no parameters."""
        result = parse_callback_url("/callback")

        assert result == CallbackResult()

    def test_parse_multiple_values_takes_first(self) -> None:
        """Test that multiple values for same param uses first."""
        assert parse_callback_url("/callback?code=first&code=second").code == "first"


class TestParseCallbackUri:
    """Tests for parse_callback_uri function."""

    def test_default_uri(self) -> None:
        """Test the default callback URI."""
        assert parse_callback_uri("http://localhost:9555/callback") == ("localhost", 9555, "/callback")

    def test_port_defaults_by_scheme(self) -> None:
        """Test that a missing port falls back to the scheme default."""
        assert parse_callback_uri("http://127.0.0.1/cb") == ("127.0.0.1", 80, "/cb")

    def test_empty_path_becomes_root(self) -> None:
        """Test that an empty path listens on /."""
        assert parse_callback_uri("http://127.0.0.1:8080")[2] == "/"

    @pytest.mark.parametrize("uri", ["not a uri", "ftp://host/cb", "http:///cb", "http://host:99999/cb"])
    def test_invalid_uris(self, uri: str) -> None:
        """Test that unusable URIs are rejected."""
        with pytest.raises(CallbackError):
            parse_callback_uri(uri)


class TestCallbackResult:
    """Tests for CallbackResult dataclass."""

    def test_is_success_with_code(self) -> None:
        """Test is_success returns True with code and no error."""
        assert CallbackResult(code="abc", state="xyz").is_success()

    def test_is_success_with_error(self) -> None:
        """Test is_success returns False when error present."""
        assert not CallbackResult(code="abc", state="xyz", error="access_denied").is_success()

    def test_is_success_without_code(self) -> None:
        """Test is_success returns False without code."""
        assert not CallbackResult(state="xyz").is_success()


class TestCallbackServerLifecycle:
    """Tests for starting and stopping the server."""

    @pytest.mark.asyncio
    async def test_server_starts_and_stops(self) -> None:
        """Test server can start and stop cleanly."""
        server = CallbackServer(CALLBACK_URI)
        redirect_uri = await server.start()

        assert server.is_listening
        assert server.port > 0
        assert redirect_uri == f"http://127.0.0.1:{server.port}/callback"

        await server.stop()
        assert not server.is_listening

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self) -> None:
        """Test that stop can be called repeatedly, even before start."""
        server = CallbackServer(CALLBACK_URI)
        await server.stop()
        await server.start()
        await server.stop()
        await server.stop()

    @pytest.mark.asyncio
    async def test_context_manager(self) -> None:
        """Test server works as async context manager."""
        async with CallbackServer(CALLBACK_URI) as server:
            assert server.is_listening
        assert not server.is_listening

    @pytest.mark.asyncio
    async def test_stop_closes_idle_connections(self) -> None:
        """Test that a connection which never sends a request is closed by stop."""
        server = CallbackServer(CALLBACK_URI)
        await server.start()
        reader, writer = await asyncio.open_connection("127.0.0.1", server.port)

        for _ in range(100):
            if server._connections:
                break
            await asyncio.sleep(0.01)
        assert server._connections

        await server.stop()

        assert await asyncio.wait_for(reader.read(), timeout=2) == b""
        assert not server._connections
        handlers = [
            task
            for task in asyncio.all_tasks()
            if "_handle_connection" in task.get_coro().__qualname__ and not task.done()
        ]
        assert handlers == []

        writer.close()
        await writer.wait_closed()

    @pytest.mark.asyncio
    async def test_start_twice_rejected(self) -> None:
        """Test that a server cannot be started twice."""
        async with CallbackServer(CALLBACK_URI) as server:
            with pytest.raises(CallbackError, match="already started"):
                await server.start()

    @pytest.mark.asyncio
    async def test_wait_before_start_rejected(self) -> None:
        """Test that waiting on a server that never started fails."""
        server = CallbackServer(CALLBACK_URI)
        with pytest.raises(CallbackError, match="not started"):
            await server.wait_for_callback(timeout=0.1)

    @pytest.mark.asyncio
    async def test_bind_failure(self) -> None:
        """Test that a port already in use raises ListenerBindError."""
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as blocker:
            blocker.bind(("127.0.0.1", 0))
            blocker.listen()
            port = blocker.getsockname()[1]

            server = CallbackServer(f"http://127.0.0.1:{port}/callback")
            with pytest.raises(ListenerBindError, match="failed to listen"):
                await server.start()
            assert not server.is_listening


class TestCallbackServerWait:
    """Tests for wait_for_callback outcomes."""

    @pytest.mark.asyncio
    async def test_successful_callback(self) -> None:
        """Test receiving a successful OAuth callback."""
        async with CallbackServer(CALLBACK_URI) as server:
            sender = asyncio.create_task(
                send_request(server.port, "/callback?code=abc123&state=test_state")
            )

            result = await server.wait_for_callback(timeout=5)
            response = await sender

            assert result.code == "abc123"
            assert result.state == "test_state"
            assert server.delivered
            assert response.startswith(b"HTTP/1.1 200 OK")
            assert b"Authorization code received" in response

    @pytest.mark.asyncio
    async def test_error_callback(self) -> None:
        """Test receiving an error OAuth callback."""
        async with CallbackServer(CALLBACK_URI) as server:
            sender = asyncio.create_task(
                send_request(
                    server.port,
                    "/callback?error=access_denied&error_description=User+denied&state=xyz",
                )
            )

            result = await server.wait_for_callback(timeout=5)
            response = await sender

            assert result.error == "access_denied"
            assert result.error_description == "User denied"
            assert response.startswith(b"HTTP/1.1 400 Bad Request")
            assert b"access_denied" in response

    @pytest.mark.asyncio
    async def test_timeout_raises_error(self) -> None:
        """Test that timeout raises CallbackTimeoutError."""
        async with CallbackServer(CALLBACK_URI) as server:
            with pytest.raises(CallbackTimeoutError) as exc_info:
                await server.wait_for_callback(timeout=0.2)

            assert "Timeout waiting for callback after 0.2 seconds" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_cancel_event(self) -> None:
        """Test that setting the cancel event ends the wait."""
        cancel_event = asyncio.Event()
        async with CallbackServer(CALLBACK_URI) as server:
            asyncio.get_running_loop().call_later(0.05, cancel_event.set)

            with pytest.raises(CallbackCancelledError):
                await server.wait_for_callback(timeout=5, cancel_event=cancel_event)

    @pytest.mark.asyncio
    async def test_task_cancellation_propagates(self) -> None:
        """Test that cancelling the waiting task raises CancelledError."""
        async with CallbackServer(CALLBACK_URI) as server:
            waiter = asyncio.create_task(server.wait_for_callback(timeout=5))
            await asyncio.sleep(0.05)
            waiter.cancel()

            with pytest.raises(asyncio.CancelledError):
                await waiter

    @pytest.mark.asyncio
    async def test_timeout_is_capped(self) -> None:
        """Test that a timeout beyond the ceiling is clamped, not honoured."""
        async with CallbackServer(CALLBACK_URI) as server:
            sender = asyncio.create_task(send_request(server.port, "/callback?code=c&state=s"))
            result = await server.wait_for_callback(timeout=10_000)
            await sender
            assert result.code == "c"


class TestCallbackServerRequests:
    """Tests for request routing and responses."""

    @pytest.mark.asyncio
    async def test_favicon_ignored(self) -> None:
        """Test that favicon requests don't trigger callback."""
        async with CallbackServer(CALLBACK_URI) as server:
            favicon = await send_request(server.port, "/favicon.ico")
            assert favicon.startswith(b"HTTP/1.1 404")
            assert not server.delivered

            sender = asyncio.create_task(send_request(server.port, "/callback?code=real_code&state=s"))
            result = await server.wait_for_callback(timeout=5)
            await sender
            assert result.code == "real_code"

    @pytest.mark.asyncio
    async def test_wrong_path_ignored(self) -> None:
        """Test that requests to wrong path don't trigger callback."""
        async with CallbackServer(CALLBACK_URI) as server:
            response = await send_request(server.port, "/wrong?code=wrong_code")
            assert response.startswith(b"HTTP/1.1 404")
            assert not server.delivered

    @pytest.mark.asyncio
    async def test_post_rejected(self) -> None:
        """Test that POST requests are rejected."""
        async with CallbackServer(CALLBACK_URI) as server:
            response = await send_request(server.port, "/callback?code=post_code", method="POST")
            assert response.startswith(b"HTTP/1.1 405")
            assert not server.delivered

    @pytest.mark.asyncio
    async def test_duplicate_callback_dropped(self, caplog: pytest.LogCaptureFixture) -> None:
        """Test that only the first callback is delivered."""
        async with CallbackServer(CALLBACK_URI) as server:
            await send_request(server.port, "/callback?code=first&state=s")
            with caplog.at_level(logging.WARNING):
                second = await send_request(server.port, "/callback?code=second&state=s")

            result = await server.wait_for_callback(timeout=1)

            assert result.code == "first"
            assert second.startswith(b"HTTP/1.1 200")
            assert "dropping duplicate" in caplog.text

    @pytest.mark.asyncio
    async def test_error_page_escapes_html(self) -> None:
        """Test that provider-controlled error text cannot inject markup."""
        async with CallbackServer(CALLBACK_URI) as server:
            response = await send_request(
                server.port,
                "/callback?error=%3Cscript%3Ealert(1)%3C%2Fscript%3E&error_description=%3Cb%3Ex%3C%2Fb%3E",
            )

            assert b"<script>" not in response
            assert b"&lt;script&gt;" in response
            assert b"&lt;b&gt;x&lt;/b&gt;" in response

    @pytest.mark.asyncio
    async def test_security_headers(self) -> None:
        """Test that HTML responses carry security headers."""
        async with CallbackServer(CALLBACK_URI) as server:
            response = await send_request(server.port, "/callback?code=c&state=s")
            head = response.split(b"\r\n\r\n", 1)[0]

            assert b"X-Content-Type-Options: nosniff" in head
            assert b"X-Frame-Options: DENY" in head
            assert b"Cache-Control: no-store" in head
            assert b"Content-Security-Policy:" in head

    @pytest.mark.asyncio
    async def test_uses_injected_logger(self) -> None:
        """Test that the server logs through the logger it was given."""
        custom = logging.getLogger("test.callback.custom")
        server = CallbackServer(CALLBACK_URI, logger=custom)
        assert server.logger is custom

    @pytest.mark.asyncio
    async def test_oversized_request_line(self) -> None:
        """Test that a request line beyond the stream limit gets a 400."""
        async with CallbackServer(CALLBACK_URI) as server:
            reader, writer = await asyncio.open_connection("127.0.0.1", server.port)
            writer.write(b"GET /callback?code=" + b"a" * 70_000 + b" HTTP/1.1\r\n\r\n")
            await writer.drain()

            response = await asyncio.wait_for(reader.read(), timeout=5)
            writer.close()
            await writer.wait_closed()

            assert response.startswith(b"HTTP/1.1 400")
            assert not server.delivered
