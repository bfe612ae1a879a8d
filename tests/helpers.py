"""Shared test helpers: an in-memory ASGI send recorder and a live-server context.

RecordingSend captures the ASGI messages a ResponseHandle emits, so the
response writer can be tested without sockets. ``running`` starts a real
server on an ephemeral port for end-to-end tests.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from starlette.requests import Request

from pipeserve import PipelineHandle, RequestEvent, ResponseHandle, Settings, serve
from pipeserve.dispatch import Handler


class RecordingSend:
    """ASGI ``send`` callable that records every message."""

    def __init__(self) -> None:
        self.messages: list[dict[str, Any]] = []

    async def __call__(self, message: dict[str, Any]) -> None:
        self.messages.append(message)

    @property
    def start(self) -> dict[str, Any]:
        starts = [m for m in self.messages if m["type"] == "http.response.start"]
        assert len(starts) == 1, f"expected one response start, got {len(starts)}"
        return starts[0]

    @property
    def status(self) -> int:
        return self.start["status"]

    @property
    def headers(self) -> dict[str, str]:
        return {k.decode("latin-1"): v.decode("latin-1") for k, v in self.start["headers"]}

    @property
    def body(self) -> bytes:
        return b"".join(
            m.get("body", b"") for m in self.messages if m["type"] == "http.response.body"
        )

    @property
    def ended(self) -> bool:
        return any(
            m["type"] == "http.response.body" and not m.get("more_body", False)
            for m in self.messages
        )


async def _empty_receive() -> dict[str, Any]:
    return {"type": "http.request", "body": b"", "more_body": False}


def make_event(path: str = "/", method: str = "GET") -> tuple[RequestEvent, RecordingSend]:
    """Build a RequestEvent backed by a RecordingSend."""
    scope = {
        "type": "http",
        "http_version": "1.1",
        "method": method,
        "scheme": "http",
        "path": path,
        "raw_path": path.encode(),
        "query_string": b"",
        "headers": [],
        "server": ("testserver", 80),
        "client": ("testclient", 50000),
    }
    recorder = RecordingSend()
    event = RequestEvent(Request(scope, _empty_receive), ResponseHandle(recorder))
    return event, recorder


def quiet_settings(**overrides: Any) -> Settings:
    return Settings(log_level="warning", **overrides)


@asynccontextmanager
async def running(
    handler: Handler,
    settings: Settings | None = None,
) -> AsyncIterator[tuple[PipelineHandle, str]]:
    """Serve ``handler`` on an ephemeral port; yields the handle and base URL."""
    handle = serve(handler, settings or quiet_settings())(0)
    server = await handle.wait_ready()
    try:
        yield handle, server.url
    finally:
        handle.close()
        await handle.wait_closed()
