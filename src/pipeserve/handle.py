"""Request events and the raw response handle.

A `RequestEvent` pairs a starlette `Request` with a `ResponseHandle`, a
small write-side object over the ASGI ``send`` callable. Handlers that
return `None` are expected to finish the response through this handle
themselves.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from starlette.requests import Request

from pipeserve.errors import ResponseAlreadyStartedError

Send = Callable[[dict[str, Any]], Awaitable[None]]

# Statuses that must not carry a body or a Content-Length
_BODYLESS_STATUSES = frozenset({204, 304})


class ResponseHandle:
    """Outgoing side of one HTTP exchange.

    Status and headers can be changed until the first byte is written.
    ``write`` streams body chunks, ``end`` sends the final chunk and marks
    the response finished.

    Usage::

        res.status_code = 201
        res.set_header("X-Trace", "abc")
        await res.end("created")
    """

    def __init__(self, send: Send) -> None:
        self._send = send
        self._status_code = 200
        # lower-cased name -> (name as given, value)
        self._headers: dict[str, tuple[str, str]] = {}
        self._headers_sent = False
        self._finished = asyncio.Event()

    @property
    def status_code(self) -> int:
        return self._status_code

    @status_code.setter
    def status_code(self, value: int) -> None:
        self._ensure_headers_open()
        self._status_code = value

    @property
    def headers_sent(self) -> bool:
        return self._headers_sent

    @property
    def finished(self) -> bool:
        return self._finished.is_set()

    @property
    def headers(self) -> dict[str, str]:
        """Snapshot of the pending headers, in the order they were first set."""
        return {name: value for name, value in self._headers.values()}

    def set_header(self, name: str, value: Any) -> None:
        """Set a header; raises ``UnicodeEncodeError`` if it is not latin-1 encodable."""
        self._ensure_headers_open()
        value = str(value)
        name.encode("latin-1")
        value.encode("latin-1")
        key = name.lower()
        if key in self._headers:
            name = self._headers[key][0]
        self._headers[key] = (name, value)

    def replace_headers(self, headers: dict[str, str]) -> None:
        """Drop every pending header and set ``headers`` instead."""
        self._ensure_headers_open()
        self._headers.clear()
        for name, value in headers.items():
            self.set_header(name, value)

    def get_header(self, name: str) -> str | None:
        entry = self._headers.get(name.lower())
        return entry[1] if entry else None

    def has_header(self, name: str) -> bool:
        return name.lower() in self._headers

    def remove_header(self, name: str) -> None:
        self._ensure_headers_open()
        self._headers.pop(name.lower(), None)

    async def write(self, chunk: bytes | str) -> None:
        """Send a body chunk, starting the response if needed."""
        if self.finished:
            raise ResponseAlreadyStartedError("write() after end()")
        await self._start()
        body = _to_bytes(chunk)
        if body:
            await self._send({"type": "http.response.body", "body": body, "more_body": True})

    async def end(self, chunk: bytes | str | None = None) -> None:
        """Send the last body chunk (if any) and finish the response."""
        if self.finished:
            raise ResponseAlreadyStartedError("end() called twice")
        body = _to_bytes(chunk) if chunk is not None else b""

        if (
            not self._headers_sent
            and not self.has_header("Content-Length")
            and self._status_code not in _BODYLESS_STATUSES
            and self._status_code >= 200
        ):
            self.set_header("Content-Length", len(body))

        await self._start()
        await self._send({"type": "http.response.body", "body": body, "more_body": False})
        self._finished.set()

    async def wait_finished(self) -> None:
        await self._finished.wait()

    async def _start(self) -> None:
        if self._headers_sent:
            return
        headers = [
            (key.encode("latin-1"), value.encode("latin-1"))
            for key, (_, value) in self._headers.items()
        ]
        self._headers_sent = True
        await self._send(
            {"type": "http.response.start", "status": self._status_code, "headers": headers}
        )

    def _ensure_headers_open(self) -> None:
        if self._headers_sent:
            raise ResponseAlreadyStartedError("headers have already been sent")


def _to_bytes(chunk: bytes | bytearray | memoryview | str) -> bytes:
    if isinstance(chunk, str):
        return chunk.encode("utf-8")
    return bytes(chunk)


@dataclass(frozen=True)
class RequestEvent:
    """One accepted request and the handle used to answer it."""

    request: Request
    response: ResponseHandle
