"""Top-level entry point: ``serve(handler)(port, on_ready)``.

Wires the request source to dispatch and the response writer, and fans
every request outcome out to observers.

Usage::

    async def handler(event):
        return {"hello": "world"}

    handle = serve(handler)(8080)
    server = await handle.wait_ready()
    ...
    handle.close()
    await handle.wait_closed()
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable

from pipeserve.config import Settings
from pipeserve.dispatch import Handler, Outcome, dispatch, respond
from pipeserve.handle import RequestEvent
from pipeserve.source import ReadyCallback, RequestSource, ServerHandle

logger = logging.getLogger(__name__)

_SENTINEL = object()  # Signals end of stream

Listen = Callable[..., "PipelineHandle"]


class OutcomeBroadcaster:
    """Fans outcomes out to every current subscriber.

    Late subscribers only see outcomes published after they subscribed.
    Once closed, new subscribers see the end of the stream right away, and
    a close with an error re-raises that error to every subscriber.
    """

    def __init__(self) -> None:
        self._subscribers: list[asyncio.Queue[Outcome | object]] = []
        self._closed = False
        self._error: BaseException | None = None

    @property
    def error(self) -> BaseException | None:
        return self._error

    def subscribe(self) -> asyncio.Queue[Outcome | object]:
        queue: asyncio.Queue[Outcome | object] = asyncio.Queue()
        if self._closed:
            queue.put_nowait(_SENTINEL)
        else:
            self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue[Outcome | object]) -> None:
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    def publish(self, outcome: Outcome) -> None:
        for queue in self._subscribers:
            queue.put_nowait(outcome)

    def close(self, error: BaseException | None = None) -> None:
        if self._closed:
            return
        self._closed = True
        self._error = error
        for queue in self._subscribers:
            queue.put_nowait(_SENTINEL)
        self._subscribers.clear()

    async def stream(self) -> AsyncIterator[Outcome]:
        """Subscribe on first iteration; unsubscribe when iteration stops."""
        queue = self.subscribe()
        try:
            while True:
                item = await queue.get()
                if item is _SENTINEL:
                    if self._error is not None:
                        raise self._error
                    return
                yield item  # type: ignore[misc]
        finally:
            self.unsubscribe(queue)


class PipelineHandle:
    """Live view of a listening pipeline, returned by ``listen``."""

    def __init__(self, broadcaster: OutcomeBroadcaster) -> None:
        self._outcomes = broadcaster
        self._server: ServerHandle | None = None
        self._ready = asyncio.Event()
        self._done = asyncio.Event()
        self._close_requested = False
        self._task: asyncio.Task[None] | None = None

    def outcomes(self) -> AsyncIterator[Outcome]:
        """Iterate an ``Outcome`` for every request finished after iteration starts.

        Ends when the server closes; raises the bind failure if the server
        could not be constructed.
        """
        return self._outcomes.stream()

    async def wait_ready(self) -> ServerHandle:
        """Wait for the server to accept connections; raises if it never does."""
        await self._ready.wait()
        if self._server is None:
            raise self._outcomes.error or RuntimeError("server closed before it was ready")
        return self._server

    def close(self) -> None:
        self._close_requested = True
        if self._server is not None:
            self._server.close()

    async def wait_closed(self) -> None:
        """Wait for shutdown; raises the failure that ended the pipeline, if any."""
        await self._done.wait()
        if self._outcomes.error is not None:
            raise self._outcomes.error

    def _on_ready(self, server: ServerHandle) -> None:
        self._server = server
        self._ready.set()
        if self._close_requested:
            server.close()

    def _finish(self, error: BaseException | None) -> None:
        self._outcomes.close(error)
        self._ready.set()
        self._done.set()


class Pipeline:
    """Connects a handler to one request source."""

    def __init__(self, handler: Handler, settings: Settings) -> None:
        self._handler = handler
        self._settings = settings
        self._outcomes = OutcomeBroadcaster()
        self._source = RequestSource(self._handle_event, settings)

    async def _handle_event(self, event: RequestEvent) -> None:
        outcome = await dispatch(self._handler, event)
        try:
            await respond(outcome, self._settings)
        finally:
            self._outcomes.publish(outcome)

    def start(self, port: int, on_ready: ReadyCallback | None = None) -> PipelineHandle:
        handle = PipelineHandle(self._outcomes)

        def ready(server: ServerHandle) -> None:
            handle._on_ready(server)
            if on_ready is not None:
                on_ready(server)

        handle._task = asyncio.get_running_loop().create_task(self._run(handle, port, ready))
        return handle

    async def _run(self, handle: PipelineHandle, port: int, on_ready: ReadyCallback) -> None:
        error: BaseException | None = None
        try:
            await self._source.listen(port, on_ready)
        except Exception as exc:  # noqa: BLE001
            logger.error("Server on port %d failed: %s", port, exc)
            error = exc
        finally:
            handle._finish(error)


def serve(handler: Handler, settings: Settings | None = None) -> Listen:
    """Bind a handler; returns ``listen(port, on_ready=None) -> PipelineHandle``.

    ``listen`` must be called from a running event loop. It starts the
    server in the background and returns immediately.
    """
    settings = settings or Settings.from_env()

    def listen(port: int, on_ready: ReadyCallback | None = None) -> PipelineHandle:
        return Pipeline(handler, settings).start(port, on_ready)

    return listen
