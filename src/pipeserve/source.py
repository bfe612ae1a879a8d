"""Request source: turns uvicorn's accept loop into a stream of request events.

uvicorn owns connections and the HTTP protocol. The source binds the
listening socket itself, so a bind failure surfaces as the original
``OSError`` instead of uvicorn's process exit, and hands uvicorn a bare
ASGI callable that wraps each request in a `RequestEvent`.
"""

from __future__ import annotations

import asyncio
import logging
import socket
from collections.abc import Awaitable, Callable
from typing import Any

import uvicorn
from starlette.requests import Request

from pipeserve.config import Settings
from pipeserve.handle import RequestEvent, ResponseHandle

logger = logging.getLogger(__name__)

EventCallback = Callable[[RequestEvent], Awaitable[None]]
ReadyCallback = Callable[["ServerHandle"], None]

_STARTUP_POLL_INTERVAL = 0.01


class ServerHandle:
    """A running server, as handed to ``on_ready``."""

    def __init__(self, server: uvicorn.Server, sock: socket.socket) -> None:
        self._server = server
        self._host, self._port = sock.getsockname()[:2]
        self._closed = asyncio.Event()

    @property
    def host(self) -> str:
        return self._host

    @property
    def port(self) -> int:
        return self._port

    @property
    def url(self) -> str:
        host = f"[{self._host}]" if ":" in self._host else self._host
        return f"http://{host}:{self._port}"

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def close(self) -> None:
        """Stop accepting; in-flight requests are allowed to finish."""
        self._server.should_exit = True

    async def wait_closed(self) -> None:
        await self._closed.wait()

    def _mark_closed(self) -> None:
        self._closed.set()


class RequestSource:
    """Emits one `RequestEvent` per request to ``on_event``.

    ``listen`` runs for the lifetime of the server: it returns once the
    server is closed and raises if the server cannot be constructed.
    """

    def __init__(self, on_event: EventCallback, settings: Settings) -> None:
        self._on_event = on_event
        self._settings = settings

    async def listen(self, port: int, on_ready: ReadyCallback | None = None) -> None:
        sock = bind_socket(self._settings.host, port)
        config = uvicorn.Config(
            self._asgi,
            host=self._settings.host,
            port=sock.getsockname()[1],
            log_level=self._settings.log_level,
            lifespan="off",
            interface="asgi3",
        )
        server = uvicorn.Server(config)
        handle = ServerHandle(server, sock)
        serving = asyncio.create_task(server.serve(sockets=[sock]))

        try:
            await _wait_started(server, serving)
            logger.info("Listening on %s", handle.url)
            if on_ready is not None:
                on_ready(handle)
            await asyncio.shield(serving)
        finally:
            if not serving.done():
                server.should_exit = True
                await serving
            sock.close()
            handle._mark_closed()
            logger.debug("Server on port %d closed", handle.port)

    async def _asgi(self, scope: dict[str, Any], receive: Any, send: Any) -> None:
        if scope["type"] != "http":
            return
        event = RequestEvent(Request(scope, receive), ResponseHandle(send))
        await self._on_event(event)
        await event.response.wait_finished()


def bind_socket(host: str, port: int) -> socket.socket:
    """Bind a TCP socket ready to be handed to uvicorn. Raises ``OSError`` on failure."""
    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    sock = socket.socket(family, socket.SOCK_STREAM)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((host, port))
    except OSError:
        sock.close()
        raise
    sock.set_inheritable(True)
    return sock


async def _wait_started(server: uvicorn.Server, serving: asyncio.Task[None]) -> None:
    while not server.started:
        if serving.done():
            # Surfaces a startup exception, if there was one
            serving.result()
            raise RuntimeError("server stopped before it started accepting connections")
        await asyncio.sleep(_STARTUP_POLL_INTERVAL)
