"""Minimal HTTP/3 client used to drive requests against the harness server.

Built on aioquic: one QUIC connection per H3Client, one bidirectional stream
per request. Certificate verification is off because the server presents
self-signed test credentials.

Example:
    >>> async with H3Client("127.0.0.1", 4433) as client:
    ...     response = await client.get("/hello")
    ...     response.content
    b'Hello, World!\\n'
"""

from __future__ import annotations

import asyncio
import ssl
from collections import deque
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import TracebackType
from typing import Any, cast

import httpx
from aioquic.asyncio import connect
from aioquic.asyncio.protocol import QuicConnectionProtocol
from aioquic.h3.connection import H3_ALPN, H3Connection
from aioquic.h3.events import DataReceived, H3Event, HeadersReceived
from aioquic.quic.configuration import QuicConfiguration
from aioquic.quic.events import ConnectionTerminated, QuicEvent

from quic_harness import __version__

USER_AGENT = f"quic-harness/{__version__}"
DEFAULT_TIMEOUT = 30.0
# Large enough for the 50 MiB payload class
MAX_STREAM_DATA = 64 * 1024 * 1024

# field name -> (filename, content)
UploadFiles = Mapping[str, tuple[str, bytes]]


@dataclass
class H3Response:
    status: int
    headers: dict[str, str] = field(default_factory=dict)
    content: bytes = b""

    @property
    def text(self) -> str:
        return self.content.decode("utf-8")


class H3ClientProtocol(QuicConnectionProtocol):
    """QUIC protocol that maps HTTP/3 events back to the request that caused them."""

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._http = H3Connection(self._quic)
        self._request_events: dict[int, deque[H3Event]] = {}
        self._request_waiter: dict[int, asyncio.Future[deque[H3Event]]] = {}

    async def request(
        self,
        method: str,
        authority: str,
        path: str,
        content: bytes = b"",
        headers: Mapping[str, str] | None = None,
    ) -> H3Response:
        stream_id = self._quic.get_next_available_stream_id()
        request_headers = [
            (b":method", method.encode()),
            (b":scheme", b"https"),
            (b":authority", authority.encode()),
            (b":path", path.encode()),
            (b"user-agent", USER_AGENT.encode()),
        ]
        if content:
            request_headers.append((b"content-length", str(len(content)).encode()))
        for name, value in (headers or {}).items():
            request_headers.append((name.lower().encode(), value.encode()))

        self._http.send_headers(stream_id=stream_id, headers=request_headers, end_stream=not content)
        if content:
            self._http.send_data(stream_id=stream_id, data=content, end_stream=True)

        waiter: asyncio.Future[deque[H3Event]] = asyncio.get_running_loop().create_future()
        self._request_events[stream_id] = deque()
        self._request_waiter[stream_id] = waiter
        self.transmit()

        try:
            events = await asyncio.shield(waiter)
        finally:
            # Also reached on cancellation, e.g. a wait_for timeout
            self._request_waiter.pop(stream_id, None)
            self._request_events.pop(stream_id, None)
        return _build_response(events)

    @property
    def pending_streams(self) -> int:
        return len(self._request_waiter) + len(self._request_events)

    def http_event_received(self, event: H3Event) -> None:
        if isinstance(event, (HeadersReceived, DataReceived)):
            stream_id = event.stream_id
            if stream_id in self._request_events:
                self._request_events[stream_id].append(event)
                if event.stream_ended:
                    waiter = self._request_waiter.pop(stream_id)
                    waiter.set_result(self._request_events.pop(stream_id))

    def quic_event_received(self, event: QuicEvent) -> None:
        if isinstance(event, ConnectionTerminated):
            for stream_id, waiter in list(self._request_waiter.items()):
                if not waiter.done():
                    waiter.set_exception(
                        ConnectionError(f"connection terminated: {event.reason_phrase}")
                    )
                self._request_waiter.pop(stream_id, None)
                self._request_events.pop(stream_id, None)
        for http_event in self._http.handle_event(event):
            self.http_event_received(http_event)


def _build_response(events: deque[H3Event]) -> H3Response:
    response = H3Response(status=0)
    body = bytearray()
    for event in events:
        if isinstance(event, HeadersReceived):
            for name, value in event.headers:
                if name == b":status":
                    response.status = int(value)
                else:
                    response.headers[name.decode()] = value.decode()
        elif isinstance(event, DataReceived):
            body.extend(event.data)
    response.content = bytes(body)
    return response


def encode_multipart(files: UploadFiles) -> tuple[bytes, str]:
    """Encode files as multipart/form-data; returns (body, content type)."""
    request = httpx.Request("POST", "https://localhost/", files=dict(files))
    return request.read(), request.headers["Content-Type"]


class H3Client:
    """Async context manager holding one HTTP/3 connection to the harness server.

    Args:
        host: Server host (IP literal or name)
        port: Server UDP port
        server_name: TLS SNI / authority host (default: localhost)
        timeout: Per-request timeout in seconds
    """

    def __init__(
        self,
        host: str,
        port: int | str,
        *,
        server_name: str = "localhost",
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self.host = host
        self.port = int(port)
        self.timeout = timeout
        self._configuration = QuicConfiguration(
            is_client=True,
            alpn_protocols=H3_ALPN,
            verify_mode=ssl.CERT_NONE,
            server_name=server_name,
            max_stream_data=MAX_STREAM_DATA,
            max_data=MAX_STREAM_DATA * 4,
        )
        self._authority = f"{server_name}:{self.port}"
        self._connect: Any = None
        self._protocol: H3ClientProtocol | None = None

    async def __aenter__(self) -> H3Client:
        self._connect = connect(
            self.host,
            self.port,
            configuration=self._configuration,
            create_protocol=H3ClientProtocol,
        )
        self._protocol = cast(H3ClientProtocol, await self._connect.__aenter__())
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        connection, self._connect, self._protocol = self._connect, None, None
        if connection is not None:
            await connection.__aexit__(exc_type, exc, tb)

    async def request(
        self,
        method: str,
        path: str,
        content: bytes = b"",
        headers: Mapping[str, str] | None = None,
    ) -> H3Response:
        if self._protocol is None:
            raise RuntimeError("H3Client is not connected; use 'async with'")
        return await asyncio.wait_for(
            self._protocol.request(method, self._authority, path, content, headers),
            self.timeout,
        )

    async def get(self, path: str) -> H3Response:
        return await self.request("GET", path)

    async def post(
        self, path: str, content: bytes, headers: Mapping[str, str] | None = None
    ) -> H3Response:
        return await self.request("POST", path, content, headers)

    async def upload(self, path: str, files: UploadFiles) -> H3Response:
        """POST files as multipart/form-data, e.g. {"uploadfile_0": ("a.txt", b"hello")}."""
        body, content_type = encode_multipart(files)
        return await self.post(path, body, {"content-type": content_type})
