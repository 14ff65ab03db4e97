"""Single-use localhost callback server for the authorization redirect.

The server binds the host and port named by the configured callback URI,
serves in a background task, and hands the first redirect it receives to
the waiting flow through a one-shot future. Anything arriving after that
is answered but dropped. The listener must be running before the browser
is opened, otherwise a fast provider could redirect into a closed port.
"""

import asyncio
import html
import logging
from dataclasses import dataclass
from http import HTTPStatus
from typing import Any
from urllib.parse import parse_qs, urlsplit, urlunsplit

from .errors import OIDCError

logger = logging.getLogger(__name__)

DEFAULT_CALLBACK_URI = "http://localhost:9555/callback"

# Ceiling for waiting on the browser redirect
CALLBACK_TIMEOUT = 300.0

# Per-connection limit for reading the request head
READ_TIMEOUT = 10.0


class CallbackError(OIDCError):
    """Error during OAuth callback handling."""

    pass


class ListenerBindError(CallbackError):
    """The callback listener could not bind its address."""

    pass


class CallbackTimeoutError(CallbackError):
    """Timeout waiting for OAuth callback."""

    pass


class CallbackCancelledError(CallbackError):
    """Waiting for the OAuth callback was cancelled."""

    pass


@dataclass(frozen=True)
class CallbackResult:
    """Parameters carried by the authorization redirect.

    Attributes:
        code: The authorization code, on success
        state: The state echoed back by the provider
        error: OAuth2 error code, on failure
        error_description: Human-readable error description
    """

    code: str | None = None
    state: str | None = None
    error: str | None = None
    error_description: str | None = None

    def is_success(self) -> bool:
        """Check if the redirect carried an authorization code."""
        return bool(self.code) and not self.error


SUCCESS_HTML = """<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="utf-8">
    <title>oidc-cli: signed in</title>
    <style>
        body { font-family: system-ui, sans-serif; background: #f4f6f8; color: #1f2933;
               display: flex; align-items: center; justify-content: center; height: 100vh; margin: 0; }
        main { background: #fff; border-top: 4px solid #2f9e44; border-radius: 8px;
               padding: 32px 48px; box-shadow: 0 4px 18px rgba(0,0,0,0.08); text-align: center; }
        h1 { font-size: 22px; margin: 0 0 12px 0; }
        p { margin: 0; color: #52606d; }
    </style>
</head>
<body>
    <main>
        <h1>Authorization code received</h1>
        <p>oidc-cli is exchanging it for tokens. You can close this tab.</p>
    </main>
</body>
</html>"""

ERROR_HTML = """<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="utf-8">
    <title>oidc-cli: authorization failed</title>
    <style>
        body {{ font-family: system-ui, sans-serif; background: #f4f6f8; color: #1f2933;
               display: flex; align-items: center; justify-content: center; height: 100vh; margin: 0; }}
        main {{ background: #fff; border-top: 4px solid #e03131; border-radius: 8px;
               padding: 32px 48px; box-shadow: 0 4px 18px rgba(0,0,0,0.08); max-width: 480px; }}
        h1 {{ font-size: 22px; margin: 0 0 12px 0; }}
        dt {{ font-weight: 600; margin-top: 8px; }}
        dd {{ margin: 0; font-family: ui-monospace, monospace; color: #c92a2a; }}
    </style>
</head>
<body>
    <main>
        <h1>Authorization failed</h1>
        <dl>
            <dt>Error</dt>
            <dd>{error}</dd>
            <dt>Description</dt>
            <dd>{description}</dd>
        </dl>
    </main>
</body>
</html>"""


def parse_callback_uri(callback_uri: str) -> tuple[str, int, str]:
    """Split a callback URI into the host, port and path to listen on.

    Raises:
        CallbackError: If the URI is not an absolute http URI with a host
    """
    parts = urlsplit(callback_uri)
    if parts.scheme not in ("http", "https") or not parts.hostname:
        raise CallbackError(f"invalid callback URI: {callback_uri!r}")

    try:
        port = parts.port
    except ValueError as e:
        raise CallbackError(f"invalid callback URI port: {callback_uri!r}") from e

    if port is None:
        port = 443 if parts.scheme == "https" else 80

    return parts.hostname, port, parts.path or "/"


def parse_callback_url(target: str) -> CallbackResult:
    """Parse the redirect parameters from a request target.

    Args:
        target: Request target such as ``/callback?code=abc&state=xyz``

    Returns:
        CallbackResult with the first value of each parameter
    """
    params = parse_qs(urlsplit(target).query)

    def get_param(name: str) -> str | None:
        values = params.get(name, [])
        return values[0] if values else None

    return CallbackResult(
        code=get_param("code"),
        state=get_param("state"),
        error=get_param("error"),
        error_description=get_param("error_description"),
    )


class CallbackServer:
    """Ephemeral HTTP listener that captures one authorization redirect.

    Usage:
        async with CallbackServer("http://127.0.0.1:9555/callback") as server:
            # open the browser at an authorization URL using server.redirect_uri
            result = await server.wait_for_callback()
    """

    def __init__(
        self,
        callback_uri: str = DEFAULT_CALLBACK_URI,
        logger: logging.Logger | None = None,
    ):
        self.callback_uri = callback_uri
        self.host, self.port, self.path = parse_callback_uri(callback_uri)
        self.redirect_uri = callback_uri
        self.logger = logger or logging.getLogger(__name__)

        self._server: asyncio.Server | None = None
        self._serve_task: asyncio.Task[None] | None = None
        self._result: asyncio.Future[CallbackResult] | None = None
        self._connections: set[asyncio.Task[Any]] = set()

    @property
    def is_listening(self) -> bool:
        return self._server is not None and self._server.is_serving()

    @property
    def delivered(self) -> bool:
        return self._result is not None and self._result.done()

    async def start(self) -> str:
        """Bind the listener and serve it in a background task.

        Returns once the socket is accepting connections.

        Returns:
            The redirect URI, with the real port when port 0 was requested

        Raises:
            ListenerBindError: If the address cannot be bound
        """
        if self._server is not None:
            raise CallbackError("Callback server already started")

        loop = asyncio.get_running_loop()
        self._result = loop.create_future()

        try:
            self._server = await asyncio.start_server(
                self._handle_connection,
                self.host,
                self.port,
                start_serving=False,
            )
        except OSError as e:
            raise ListenerBindError(
                f"failed to listen on {self.host}:{self.port}: {e}"
            ) from e

        sockets = self._server.sockets
        if not sockets:
            self._server.close()
            self._server = None
            raise ListenerBindError(f"failed to listen on {self.host}:{self.port}: no sockets created")

        if self.port == 0:
            self.port = sockets[0].getsockname()[1]
            parts = urlsplit(self.callback_uri)
            netloc = f"{parts.hostname}:{self.port}"
            if parts.hostname and ":" in parts.hostname:
                netloc = f"[{parts.hostname}]:{self.port}"
            self.redirect_uri = urlunsplit(
                (parts.scheme, netloc, parts.path, parts.query, parts.fragment)
            )

        await self._server.start_serving()
        self._serve_task = asyncio.create_task(self._server.serve_forever())

        self.logger.debug(f"Callback server listening on {self.redirect_uri}")
        return self.redirect_uri

    async def stop(self) -> None:
        """Close the listener and every open connection.

        Connection handlers still reading a request are cancelled, so no
        socket or task outlives this call.
        """
        if self._server is None:
            return

        server, self._server = self._server, None
        server.close()

        if self._serve_task is not None:
            task, self._serve_task = self._serve_task, None
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

        if self._connections:
            handlers = list(self._connections)
            for handler in handlers:
                handler.cancel()
            await asyncio.gather(*handlers, return_exceptions=True)
            self.logger.debug(f"Closed {len(handlers)} open callback connection(s)")

        await server.wait_closed()
        self.logger.debug("Callback server stopped")

    async def wait_for_callback(
        self,
        timeout: float | None = CALLBACK_TIMEOUT,
        cancel_event: asyncio.Event | None = None,
    ) -> CallbackResult:
        """Wait for the redirect, a cancel request or the timeout.

        The timeout never exceeds CALLBACK_TIMEOUT. Task cancellation
        propagates unchanged.

        Args:
            timeout: Seconds to wait for the redirect
            cancel_event: Optional event that aborts the wait when set

        Returns:
            CallbackResult delivered by the first matching request

        Raises:
            CallbackTimeoutError: If the timeout elapsed first
            CallbackCancelledError: If cancel_event was set first
        """
        if self._result is None:
            raise CallbackError("Callback server not started")

        if timeout is None or timeout > CALLBACK_TIMEOUT:
            timeout = CALLBACK_TIMEOUT

        waiters: set[asyncio.Future[Any]] = {self._result}
        cancel_waiter: asyncio.Task[Any] | None = None
        if cancel_event is not None:
            cancel_waiter = asyncio.create_task(cancel_event.wait())
            waiters.add(cancel_waiter)

        try:
            done, _ = await asyncio.wait(
                waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            if cancel_waiter is not None:
                cancel_waiter.cancel()

        if self._result in done:
            return self._result.result()

        if cancel_waiter is not None and cancel_waiter in done:
            raise CallbackCancelledError("waiting for callback was cancelled")

        raise CallbackTimeoutError(
            f"Timeout waiting for callback after {timeout:g} seconds"
        )

    def _deliver(self, result: CallbackResult) -> bool:
        """Resolve the one-shot future; later results are dropped."""
        if self._result is None or self._result.done():
            self.logger.warning("callback already received, dropping duplicate response")
            return False

        self._result.set_result(result)
        return True

    async def _handle_connection(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        """Handle one inbound HTTP connection."""
        handler = asyncio.current_task()
        if handler is not None:
            self._connections.add(handler)

        try:
            request_line = await asyncio.wait_for(reader.readline(), READ_TIMEOUT)
            parts = request_line.decode("latin-1").strip().split(" ")
            if len(parts) < 2:
                await self._send_response(writer, HTTPStatus.BAD_REQUEST, "Invalid request")
                return

            method, target = parts[0], parts[1]

            # Drain the headers; nothing in them is needed
            while True:
                header_line = await asyncio.wait_for(reader.readline(), READ_TIMEOUT)
                if header_line in (b"\r\n", b"\n", b""):
                    break

            if urlsplit(target).path != self.path:
                await self._send_response(writer, HTTPStatus.NOT_FOUND, "Not found")
                return

            if method != "GET":
                await self._send_response(
                    writer, HTTPStatus.METHOD_NOT_ALLOWED, "Method not allowed"
                )
                return

            result = parse_callback_url(target)
            self._deliver(result)

            if result.is_success():
                await self._send_html_response(writer, HTTPStatus.OK, SUCCESS_HTML)
            else:
                page = ERROR_HTML.format(
                    error=html.escape(result.error or "unknown_error"),
                    description=html.escape(result.error_description or "No description provided"),
                )
                await self._send_html_response(writer, HTTPStatus.BAD_REQUEST, page)

        except asyncio.TimeoutError:
            self.logger.debug("Timed out reading callback request")
        except ValueError as e:
            # StreamReader.readline raises ValueError past its 64 KiB line limit
            self.logger.warning(f"Rejected oversized callback request: {e}")
            try:
                await self._send_response(writer, HTTPStatus.BAD_REQUEST, "Request line too long")
            except ConnectionError as send_error:
                self.logger.debug(f"Could not send 400 response: {send_error}")
        except (ConnectionError, UnicodeError) as e:
            self.logger.warning(f"Error handling callback request: {e}")

        finally:
            if handler is not None:
                self._connections.discard(handler)
            writer.close()
            try:
                await writer.wait_closed()
            except ConnectionError as e:
                self.logger.debug(f"Callback connection closed uncleanly: {e}")

    async def _send_response(
        self,
        writer: asyncio.StreamWriter,
        status: HTTPStatus,
        body: str,
    ) -> None:
        """Send a plain text HTTP response."""
        payload = body.encode("utf-8")
        head = (
            f"HTTP/1.1 {status.value} {status.phrase}\r\n"
            f"Content-Type: text/plain; charset=utf-8\r\n"
            f"Content-Length: {len(payload)}\r\n"
            f"Connection: close\r\n"
            f"\r\n"
        )
        writer.write(head.encode("latin-1") + payload)
        await writer.drain()

    async def _send_html_response(
        self,
        writer: asyncio.StreamWriter,
        status: HTTPStatus,
        html_content: str,
    ) -> None:
        """Send an HTML HTTP response with security headers."""
        body = html_content.encode("utf-8")
        head = (
            f"HTTP/1.1 {status.value} {status.phrase}\r\n"
            f"Content-Type: text/html; charset=utf-8\r\n"
            f"Content-Length: {len(body)}\r\n"
            f"Cache-Control: no-store\r\n"
            f"X-Content-Type-Options: nosniff\r\n"
            f"X-Frame-Options: DENY\r\n"
            f"Content-Security-Policy: default-src 'none'; style-src 'unsafe-inline'\r\n"
            f"Connection: close\r\n"
            f"\r\n"
        )
        writer.write(head.encode("latin-1") + body)
        await writer.drain()

    async def __aenter__(self) -> "CallbackServer":
        await self.start()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.stop()
