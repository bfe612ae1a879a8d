"""pipeserve -- a minimal HTTP server that shapes handler results into responses.

Each request becomes a `RequestEvent` dispatched to a single handler. The
handler's return value (plain, awaited, or the last item of a sequence) is
written by type:

- `None`: nothing is sent; the handler answered through ``event.response``
- `EMPTY` / ``send(None)``: status only, empty body
- bytes: octet-stream body
- readable streams: piped body
- dicts, lists, numbers, pydantic models: JSON
- anything else: text

Raise `create_error(code, message)` for a specific status; any other
exception becomes a logged 500.
"""

from pipeserve.config import Settings
from pipeserve.dispatch import Outcome
from pipeserve.errors import (
    EmptySequenceError,
    ResponseAlreadyStartedError,
    ResponseError,
    create_error,
)
from pipeserve.handle import RequestEvent, ResponseHandle
from pipeserve.responses import EMPTY, Response, send
from pipeserve.server import PipelineHandle, serve
from pipeserve.source import ServerHandle

__all__ = [
    "EMPTY",
    "EmptySequenceError",
    "Outcome",
    "PipelineHandle",
    "RequestEvent",
    "Response",
    "ResponseAlreadyStartedError",
    "ResponseError",
    "ResponseHandle",
    "ServerHandle",
    "Settings",
    "create_error",
    "send",
    "serve",
]
