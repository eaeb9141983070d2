"""HTTP/3 server bootstrap.

The harness binds its own UDP socket to port 0 so the concrete port is known
before serving starts, then hands the descriptor to hypercorn (``fd://`` bind)
which serves the ASGI app over QUIC. Serving runs in a daemon thread with its
own event loop; the outcome of that loop is reported through a
``concurrent.futures.Future`` so teardown can wait for it with a timeout and a
crash is surfaced instead of lost.

Example:
    >>> credentials = generate_self_signed()
    >>> handle = start_server(app, credentials)
    >>> handle.url("/hello")
    'https://127.0.0.1:53124/hello'
    >>> handle.shutdown(timeout=10.0)
"""

from __future__ import annotations

import asyncio
import logging
import socket
import threading
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeoutError
from contextlib import suppress
from typing import Any

from hypercorn.asyncio import serve
from hypercorn.config import Config

from quic_harness.errors import ServerBindError, ServerCrashedError, ServerShutdownError
from quic_harness.observability import get_logger
from quic_harness.tls import TLSCredentials

logger = get_logger(__name__)

DEFAULT_BIND_HOST = "0.0.0.0"
DEFAULT_CONNECT_HOST = "127.0.0.1"
STARTUP_TIMEOUT = 5.0
# Seconds hypercorn lets in-flight requests finish after the shutdown trigger
GRACEFUL_TIMEOUT = 3.0


def bind_datagram_socket(host: str = DEFAULT_BIND_HOST) -> socket.socket:
    """Bind a UDP socket to an ephemeral port on ``host``.

    Raises:
        ServerBindError: If the socket cannot be created or bound.
    """
    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    try:
        sock = socket.socket(family, socket.SOCK_DGRAM)
    except OSError as exc:
        raise ServerBindError(host, str(exc)) from exc
    try:
        sock.bind((host, 0))
    except OSError as exc:
        sock.close()
        raise ServerBindError(host, str(exc)) from exc
    return sock


def resolve_port(sock: socket.socket) -> str:
    """Return the port the socket is bound to, as a string for URLs."""
    try:
        port = sock.getsockname()[1]
    except OSError as exc:
        raise ServerBindError(str(sock), str(exc)) from exc
    if not port:
        raise ServerBindError(str(sock), "socket is not bound")
    return str(port)


def build_hypercorn_config(
    fd: int,
    credentials: TLSCredentials,
    *,
    graceful_timeout: float = GRACEFUL_TIMEOUT,
) -> Config:
    """hypercorn config serving only HTTP/3 on an already bound descriptor."""
    config = Config()
    config.bind = []
    config.insecure_bind = []
    config.quic_bind = [f"fd://{fd}"]
    config.certfile = str(credentials.cert_file)
    config.keyfile = str(credentials.key_file)
    config.graceful_timeout = graceful_timeout
    config.errorlog = logging.getLogger("hypercorn.error")
    config.accesslog = None
    return config


class ServerHandle:
    """Running server: resolved port plus a future for the serving thread.

    Attributes:
        port: Bound UDP port as a string
        host: Host clients should connect to
        future: Completes when serving ends; holds the exception if it failed
    """

    def __init__(self, app: Any, config: Config, port: str, host: str) -> None:
        self.port = port
        self.host = host
        self.future: Future[None] = Future()
        self._app = app
        self._config = config
        self._loop: asyncio.AbstractEventLoop | None = None
        self._stop: asyncio.Event | None = None
        self._stopping = False
        self._started = threading.Event()
        self._thread = threading.Thread(
            target=self._run,
            name=f"quic-harness-server-{port}",
            daemon=True,
        )
        self.future.add_done_callback(self._log_completion)

    def url(self, path: str = "/") -> str:
        return f"https://{self.host}:{self.port}{path}"

    def start(self) -> None:
        self._thread.start()
        if not self._started.wait(timeout=STARTUP_TIMEOUT):
            raise ServerCrashedError(f"serving thread did not start within {STARTUP_TIMEOUT}s")
        self.raise_if_failed()

    def _run(self) -> None:
        try:
            asyncio.run(self._serve())
        except Exception as exc:
            self.future.set_exception(exc)
        else:
            self.future.set_result(None)
        finally:
            self._started.set()

    async def _serve(self) -> None:
        self._loop = asyncio.get_running_loop()
        self._stop = asyncio.Event()
        self._started.set()
        logger.info("quic.server.started", port=self.port, host=self.host)
        await serve(self._app, self._config, shutdown_trigger=self._stop.wait)

    def _log_completion(self, future: Future[None]) -> None:
        exc = future.exception()
        if exc is not None:
            logger.error("quic.server.failed", port=self.port, error=repr(exc))
        elif not self._stopping:
            logger.error("quic.server.exited", port=self.port)
        else:
            logger.info("quic.server.stopped", port=self.port)

    @property
    def running(self) -> bool:
        return self._thread.is_alive() and not self.future.done()

    def raise_if_failed(self) -> None:
        """Raise ServerCrashedError if serving ended without a shutdown request."""
        if not self.future.done() or self._stopping:
            return
        exc = self.future.exception()
        raise ServerCrashedError(repr(exc) if exc else "serving loop returned") from exc

    def shutdown(self, timeout: float) -> None:
        """Trigger shutdown and wait up to ``timeout`` seconds for it to finish.

        Raises:
            ServerShutdownError: On timeout, or if serving ended with an error.
        """
        self._stopping = True
        loop, stop = self._loop, self._stop
        if loop is not None and stop is not None:
            # Loop already closed means serving has ended; the future says how.
            with suppress(RuntimeError):
                loop.call_soon_threadsafe(stop.set)
        try:
            self.future.result(timeout=timeout)
        except FutureTimeoutError as exc:
            raise ServerShutdownError("timed out", timeout, {"port": self.port}) from exc
        except Exception as exc:
            raise ServerShutdownError(repr(exc), timeout, {"port": self.port}) from exc
        self._thread.join(timeout=timeout)


def start_server(
    app: Any,
    credentials: TLSCredentials,
    *,
    bind_host: str = DEFAULT_BIND_HOST,
    connect_host: str = DEFAULT_CONNECT_HOST,
) -> ServerHandle:
    """Bind an ephemeral UDP port and serve ``app`` over HTTP/3 in the background.

    Raises:
        ServerBindError: If binding or port resolution fails.
        ServerCrashedError: If the serving thread dies during startup.
    """
    sock = bind_datagram_socket(bind_host)
    try:
        port = resolve_port(sock)
    except ServerBindError:
        sock.close()
        raise
    # hypercorn owns the descriptor from here on
    fd = sock.detach()
    config = build_hypercorn_config(fd, credentials)
    handle = ServerHandle(app, config, port, connect_host)
    handle.start()
    return handle
