"""Error descriptors and error-to-response mapping.

Handlers signal an HTTP failure by raising a `ResponseError` (usually built
with `create_error`). Anything else a handler raises is treated as an
unexpected failure: it is logged with its traceback and the client only
sees a generic 500.
"""

from __future__ import annotations

import logging

from pipeserve.responses import Response, send

logger = logging.getLogger(__name__)

INTERNAL_SERVER_ERROR = "Internal Server Error"


class ResponseError(Exception):
    """A failure that carries the status code and message sent to the client.

    ``original_error`` is kept for diagnostics only and never reaches the
    wire.
    """

    def __init__(
        self,
        status_code: int = 500,
        message: str = INTERNAL_SERVER_ERROR,
        original_error: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.original_error = original_error

    def __repr__(self) -> str:
        return f"ResponseError({self.status_code}, {self.message!r})"


class EmptySequenceError(Exception):
    """A handler returned a sequence that finished without a value."""


class ResponseAlreadyStartedError(RuntimeError):
    """The raw response was changed after its headers or body went out."""


def create_error(
    code: int,
    message: str,
    original_error: BaseException | None = None,
) -> ResponseError:
    """Build a `ResponseError` for a handler to raise."""
    return ResponseError(code, message, original_error)


def error_response(exc: BaseException) -> Response:
    """Map a captured failure to the response sent in its place.

    A `ResponseError` keeps its code and message. Any other failure becomes
    a 500 with a generic message. The original cause is logged before the
    response is built.
    """
    error = exc if isinstance(exc, ResponseError) else create_error(500, INTERNAL_SERVER_ERROR, exc)

    cause = error.original_error if error.original_error is not None else error
    logger.error(
        "Request failed with %d: %s",
        error.status_code,
        error.message,
        exc_info=(type(cause), cause, cause.__traceback__),
    )

    return send(error.message, error.status_code)
