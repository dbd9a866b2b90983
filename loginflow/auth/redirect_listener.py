"""Ephemeral localhost HTTP listener for the authorization redirect.

Binds to an OS-assigned port on ``localhost``, serves the bundled landing
page, and turns the provider's ``/callback`` request into exactly one
outcome: an authorization code or a ``CallbackError``. The HTTP response to
the callback is deferred. The caller receives a ``CallbackResponse`` with
the outcome and decides where the browser lands once the token exchange
has finished.

Uses only stdlib (http.server, threading, urllib.parse). Request handlers
run on server threads; the outcome future lives on the caller's event loop.
"""

# pylint: disable=logging-too-many-args,C0103,W0212

from __future__ import annotations

import asyncio
import contextlib
import logging
import threading

from dataclasses import dataclass
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from importlib import resources
from typing import Any
from urllib.parse import parse_qs, quote, urlparse

from ..exceptions import CallbackError, CodeTimeout, LoginFailed, PortTimeout


logger = logging.getLogger("loginflow.auth")

NONCE_MISMATCH = "Nonce does not match."
NO_CODE = "No code received."

_STATIC_FILES = {
    "/": ("index.html", "text/html; charset=utf-8"),
    "/main.css": ("main.css", "text/css; charset=utf-8"),
}

_CONTENT_SECURITY_POLICY = "default-src 'none'; style-src 'self'; script-src 'unsafe-inline'"


def parse_callback(nonce: str, query: str) -> str:
    """Validate a ``/callback`` query string and return the authorization code.

    Parameters
    ----------
    nonce : str
        The nonce issued for this login attempt.
    query : str
        The raw query string of the callback request.

    Returns
    -------
    str
        The authorization code.

    Raises
    ------
    CallbackError
        If the provider reported an error, the nonce does not match,
        or no code was received.
    """
    params = parse_qs(query)

    def first(name: str) -> str | None:
        values = params.get(name)
        return values[0] if values else None

    error = first("error_description") or first("error")

    if not error:
        fields = (first("state") or "").split(",")
        # Query decoding turns an unencoded '+' into a space.
        received_nonce = (fields[1] if len(fields) > 1 else "").replace(" ", "+")
        if received_nonce != nonce:
            error = NONCE_MISMATCH

    code = first("code")
    if not error and code:
        return code
    raise CallbackError(error or NO_CODE)


class CallbackResponse:
    """Deferred HTTP response for one ``/callback`` request.

    The handler thread blocks in ``wait`` until the caller picks a
    redirect location. Only the first redirect counts.
    """

    def __init__(self) -> None:
        """Initialize an unanswered response."""
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._location: str | None = None

    @property
    def location(self) -> str | None:
        """The chosen redirect location, if any."""
        return self._location

    @property
    def sent(self) -> bool:
        """Whether a redirect location has been chosen."""
        return self._event.is_set()

    def redirect(self, location: str) -> bool:
        """Answer the callback with a 302 to ``location``.

        Returns
        -------
        bool
            False if the response was already answered.
        """
        with self._lock:
            if self._event.is_set():
                return False
            self._location = location
            self._event.set()
        return True

    def redirect_success(self) -> bool:
        """Send the browser to the landing page."""
        return self.redirect("/")

    def redirect_error(self, message: str) -> bool:
        """Send the browser to the landing page with an error message."""
        return self.redirect(f"/?error={quote(message, safe='')}")

    def wait(self, timeout: float | None = None) -> str | None:
        """Block until a location is chosen or ``timeout`` expires."""
        if self._event.wait(timeout=timeout):
            return self._location
        return None


@dataclass
class CodeResult:
    """Outcome of a callback: a code or an error, plus the response handle."""

    response: CallbackResponse
    code: str | None = None
    error: CallbackError | None = None


class _ListenerServer(ThreadingHTTPServer):
    """Threading HTTP server that never blocks interpreter exit."""

    daemon_threads = True

    def handle_error(self, request: Any, client_address: Any) -> None:
        """Log request failures (typically a browser that went away)."""
        logger.debug("Redirect listener request from %s failed", client_address, exc_info=True)


class RedirectListener:
    """Transient localhost listener for one login attempt.

    Parameters
    ----------
    nonce : str
        The CSRF nonce issued for this attempt.
    host : str
        Bind address (default ``"localhost"``).
    port : int
        Port number (``0`` for OS-assigned).
    port_timeout : float
        Seconds to wait for the bound port (default ``5``).
    code_timeout : float
        Seconds to wait for the callback (default ``300``).
    response_timeout : float
        Seconds a callback request waits for the caller's redirect
        before answering on its own (default ``60``).
    """

    def __init__(
        self,
        nonce: str,
        host: str = "localhost",
        port: int = 0,
        port_timeout: float = 5.0,
        code_timeout: float = 300.0,
        response_timeout: float = 60.0,
    ) -> None:
        """Initialize the listener."""
        self.nonce = nonce
        self.host = host
        self.port_timeout = port_timeout
        self.code_timeout = code_timeout
        self.response_timeout = response_timeout
        self._port = port
        self._actual_port = 0

        self._server: _ListenerServer | None = None
        self._thread: threading.Thread | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._port_future: asyncio.Future[int] | None = None
        self._outcome: asyncio.Future[CodeResult] | None = None
        self._code_timer: asyncio.TimerHandle | None = None
        self._close_timer: threading.Timer | None = None

        # One-shot latch shared by handler threads and the code timer.
        self._latch = threading.Lock()
        self._resolved = False

        self._state_lock = threading.Lock()
        self._closed = threading.Event()
        self._pending: list[CallbackResponse] = []

    @property
    def port(self) -> int:
        """The bound port (``0`` until started)."""
        return self._actual_port

    @property
    def redirect_uri(self) -> str:
        """The redirect URI for this listener.

        Returns
        -------
        str
            The full redirect URI (e.g. ``http://localhost:54321/callback``).
        """
        return f"http://{self.host}:{self._actual_port}/callback"

    @property
    def outcome(self) -> asyncio.Future[CodeResult]:
        """Future resolving to the callback outcome."""
        if self._outcome is None:
            msg = "Redirect listener has not been started"
            raise RuntimeError(msg)
        return self._outcome

    @property
    def closed(self) -> bool:
        """Whether ``close`` has been called."""
        return self._closed.is_set()

    async def start(self) -> int:
        """Start serving on a daemon thread and wait for the bound port.

        Returns
        -------
        int
            The OS-assigned port.

        Raises
        ------
        PortTimeout
            If no port is bound within ``port_timeout`` seconds, or the
            listener fails or closes before binding.
        """
        if self._loop is not None:
            msg = "Redirect listener already started"
            raise RuntimeError(msg)

        loop = asyncio.get_running_loop()
        self._loop = loop
        self._port_future = loop.create_future()
        self._outcome = loop.create_future()
        # Mark a failure nobody awaited as retrieved.
        self._outcome.add_done_callback(_consume_exception)

        self._thread = threading.Thread(
            target=self._serve, name="loginflow-redirect-listener", daemon=True
        )
        self._thread.start()

        try:
            port = await asyncio.wait_for(self._port_future, timeout=self.port_timeout)
        except asyncio.TimeoutError as exc:
            self.close()
            msg = "Timeout waiting for port"
            raise PortTimeout(msg, timeout=self.port_timeout) from exc
        except OSError as exc:
            self.close()
            msg = f"Redirect listener failed before binding: {exc}"
            raise PortTimeout(msg, timeout=self.port_timeout, reason=exc) from exc

        self._code_timer = loop.call_later(self.code_timeout, self._on_code_timeout)
        self._outcome.add_done_callback(self._cancel_code_timer)
        logger.debug("Redirect listener started on %s", self.redirect_uri)
        return port

    def close(self) -> None:
        """Shut down the listener and release any request still waiting."""
        timer = self._close_timer
        if timer is not None and timer is not threading.current_thread():
            timer.cancel()

        with self._state_lock:
            already_closed = self._closed.is_set()
            self._closed.set()
            server, self._server = self._server, None
            pending, self._pending = self._pending, []

        for response in pending:
            response.redirect_error("The sign-in listener was closed.")

        if self._claim():
            self._post(
                _set_exception,
                self._outcome,
                LoginFailed("Redirect listener closed before a callback arrived."),
            )
        if self._code_timer is not None:
            self._post(self._code_timer.cancel)

        if server is not None:
            server.shutdown()
        thread = self._thread
        if thread is not None and thread.is_alive() and thread is not threading.current_thread():
            thread.join(timeout=5)

        if not already_closed:
            logger.debug("Redirect listener on port %d closed", self._actual_port)

    def close_later(self, delay: float) -> threading.Timer:
        """Close the listener after ``delay`` seconds on a daemon timer.

        The delay lets the final redirect reach the browser first.
        """
        timer = threading.Timer(delay, self.close)
        timer.daemon = True
        self._close_timer = timer
        timer.start()
        return timer

    def _serve(self) -> None:
        """Bind, report the port, and serve until shut down (server thread)."""
        listener = self

        class _RedirectHandler(BaseHTTPRequestHandler):
            """HTTP request handler for the landing page and callback."""

            def do_GET(self) -> None:
                """Handle GET requests."""
                parsed = urlparse(self.path)

                if parsed.path in _STATIC_FILES:
                    self._send_static(*_STATIC_FILES[parsed.path])
                elif parsed.path == "/callback":
                    location = listener._handle_callback(parsed.query)
                    self._send_redirect(location)
                else:
                    self.send_response(404)
                    self.send_header("Content-Length", "0")
                    self.end_headers()

            def _send_static(self, filename: str, content_type: str) -> None:
                """Send a bundled static file."""
                try:
                    body = resources.files(__package__).joinpath("static").joinpath(filename).read_bytes()
                except OSError:
                    logger.exception("Failed to read bundled page %s", filename)
                    self.send_error(500)
                    return
                self.send_response(200)
                self.send_header("Content-Type", content_type)
                self.send_header("Content-Length", str(len(body)))
                self.send_header("Cache-Control", "no-store")
                self.send_header("Content-Security-Policy", _CONTENT_SECURITY_POLICY)
                self.send_header("X-Content-Type-Options", "nosniff")
                self.end_headers()
                self.wfile.write(body)

            def _send_redirect(self, location: str) -> None:
                """Send a 302 to ``location``."""
                self.send_response(302)
                self.send_header("Location", location)
                self.send_header("Content-Length", "0")
                self.send_header("Cache-Control", "no-store")
                self.end_headers()

            def log_message(self, *args: Any) -> None:
                """Redirect HTTP server logging to the loginflow logger."""
                if args:
                    logger.debug("Redirect listener: %s", args[0] % args[1:])

        try:
            server = _ListenerServer((self.host, self._port), _RedirectHandler)
        except OSError as exc:
            self._post(_set_exception, self._port_future, exc)
            return

        with self._state_lock:
            if self._closed.is_set():
                server.server_close()
                self._post(_set_exception, self._port_future, ConnectionAbortedError("Closed"))
                return
            self._server = server
            self._actual_port = server.server_address[1]

        self._post(_set_result, self._port_future, self._actual_port)
        try:
            server.serve_forever(poll_interval=0.1)
        finally:
            server.server_close()

    def _handle_callback(self, query: str) -> str:
        """Resolve the outcome from a callback and wait for the caller's redirect."""
        response = CallbackResponse()
        try:
            result = CodeResult(response=response, code=parse_callback(self.nonce, query))
        except CallbackError as exc:
            result = CodeResult(response=response, error=exc)

        with self._state_lock:
            if self._closed.is_set() or not self._claim():
                logger.debug("Ignoring callback: outcome already resolved")
                return "/"
            self._pending.append(response)

        self._post(_set_result, self._outcome, result)
        location = response.wait(timeout=self.response_timeout)

        with self._state_lock:
            if response in self._pending:
                self._pending.remove(response)

        if location is None:
            logger.warning("No redirect chosen for the callback within %.0fs", self.response_timeout)
            return f"/?error={quote('Timed out completing the sign-in.', safe='')}"
        return location

    def _claim(self) -> bool:
        """Take the one-shot latch. True only for the first caller."""
        with self._latch:
            if self._resolved or self._outcome is None:
                return False
            self._resolved = True
            return True

    def _on_code_timeout(self) -> None:
        """Fail the outcome when no callback arrived in time (event loop)."""
        if self._claim():
            msg = "Timeout waiting for code"
            _set_exception(self.outcome, CodeTimeout(msg, timeout=self.code_timeout))

    def _cancel_code_timer(self, _future: asyncio.Future[Any]) -> None:
        if self._code_timer is not None:
            self._code_timer.cancel()

    def _post(self, callback: Any, *args: Any) -> None:
        """Schedule ``callback`` on the owning event loop from any thread."""
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        # The loop may close between the check and the call.
        with contextlib.suppress(RuntimeError):
            loop.call_soon_threadsafe(callback, *args)


def _set_result(future: asyncio.Future[Any] | None, value: Any) -> None:
    if future is not None and not future.done():
        future.set_result(value)


def _set_exception(future: asyncio.Future[Any] | None, exc: BaseException) -> None:
    if future is not None and not future.done():
        future.set_exception(exc)


def _consume_exception(future: asyncio.Future[Any]) -> None:
    if not future.cancelled():
        future.exception()
