"""Handler invocation, result normalization, and per-request responding."""

from __future__ import annotations

import inspect
import logging
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from typing import Any

from pipeserve.config import Settings
from pipeserve.errors import EmptySequenceError, error_response
from pipeserve.handle import RequestEvent
from pipeserve.responses import is_readable_stream, prepare_response, write_response

logger = logging.getLogger(__name__)

Handler = Callable[[RequestEvent], Any]

_NOTHING = object()


@dataclass(frozen=True)
class Outcome:
    """What one request resolved to: a value or an error, never both."""

    event: RequestEvent
    error: BaseException | None
    value: Any

    @property
    def ok(self) -> bool:
        return self.error is None


def is_sequence(value: Any) -> bool:
    """True for generators and async iterators, excluding readable streams."""
    if is_readable_stream(value):
        return False
    return inspect.isgenerator(value) or isinstance(value, AsyncIterator)


async def last_value(sequence: Any) -> Any:
    """Drain a generator or async iterator and return its final item."""
    last = _NOTHING
    if isinstance(sequence, AsyncIterator):
        async for item in sequence:
            last = item
    else:
        for item in sequence:
            last = item
    if last is _NOTHING:
        raise EmptySequenceError("handler sequence finished without a value")
    return last


async def invoke(handler: Handler, event: RequestEvent) -> Any:
    """Call the handler and settle whatever it returned into one value."""
    result = handler(event)
    if inspect.isawaitable(result):
        result = await result
    if is_sequence(result):
        result = await last_value(result)
    return result


async def dispatch(handler: Handler, event: RequestEvent) -> Outcome:
    """Run the handler for one event, capturing any failure as the outcome's error."""
    try:
        value = await invoke(handler, event)
    except Exception as exc:  # noqa: BLE001
        return Outcome(event, exc, None)
    return Outcome(event, None, value)


async def respond(outcome: Outcome, settings: Settings) -> None:
    """Write the outcome to its response handle.

    A `None` value sends nothing: the handler owns the response.
    """
    res = outcome.event.response

    if outcome.error is not None:
        response = error_response(outcome.error)
        if res.headers_sent:
            # The handler already started writing; the error body cannot follow.
            if not res.finished:
                await res.end()
            return
        await write_response(res, response, settings)
        return

    if outcome.value is None:
        return

    # Headers the handler set itself survive a failed write; the rest are dropped
    handler_headers = res.headers
    try:
        await write_response(res, prepare_response(outcome.value), settings)
    except Exception as exc:
        if res.headers_sent:
            logger.exception("Response failed after headers were sent")
            raise
        res.replace_headers(handler_headers)
        await write_response(res, error_response(exc), settings)
