"""Response descriptors and the response writer.

A handler's resolved value is wrapped in a `Response` (unless it already is
one, from `send`), its ``data`` is classified into one payload variant, and
the variant decides how the body goes out:

- NullPayload:       status only, no body
- BinaryPayload:     bytes verbatim, application/octet-stream by default
- StreamPayload:     piped chunk by chunk, no Content-Length
- StructuredPayload: JSON, application/json by default
- TextPayload:       str(value) as UTF-8
"""

from __future__ import annotations

import inspect
import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import anyio
from pydantic import BaseModel

from pipeserve.config import Settings

if TYPE_CHECKING:
    from pipeserve.handle import ResponseHandle

OCTET_STREAM = "application/octet-stream"
JSON_UTF8 = "application/json; charset=utf-8"


class _Empty:
    """Marker for "send this status with an empty body"."""

    _instance: _Empty | None = None

    def __new__(cls) -> _Empty:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "EMPTY"

    def __bool__(self) -> bool:
        return False


EMPTY = _Empty()


@dataclass(frozen=True)
class Response:
    """A prepared response: body data, status code and headers."""

    data: Any = None
    status_code: int = 200
    headers: Mapping[str, str] = field(default_factory=dict)


def send(data: Any, status_code: int = 200, headers: Mapping[str, Any] | None = None) -> Response:
    """Prepare a response explicitly, for handlers that need status or header control."""
    return Response(
        data=data,
        status_code=status_code,
        headers={name: str(value) for name, value in (headers or {}).items()},
    )


def prepare_response(value: Any) -> Response:
    """Wrap a raw handler value; a `Response` passes through untouched."""
    if isinstance(value, Response):
        return value
    return Response(data=value)


# ------------------------------------------------------------------ #
# Payload variants
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class NullPayload:
    pass


@dataclass(frozen=True)
class BinaryPayload:
    body: bytes


@dataclass(frozen=True)
class StreamPayload:
    stream: Any


@dataclass(frozen=True)
class StructuredPayload:
    value: Any


@dataclass(frozen=True)
class TextPayload:
    text: str


Payload = NullPayload | BinaryPayload | StreamPayload | StructuredPayload | TextPayload

_STRUCTURED_TYPES = (dict, list, tuple, int, float, BaseModel)


def is_readable_stream(value: Any) -> bool:
    """True for file-like objects and async readers exposing ``read()``."""
    return callable(getattr(value, "read", None))


def classify_payload(data: Any) -> Payload:
    if data is None or data is EMPTY:
        return NullPayload()
    if isinstance(data, (bytes, bytearray, memoryview)):
        return BinaryPayload(bytes(data))
    if is_readable_stream(data):
        return StreamPayload(data)
    # bool is an int subclass and serializes to true/false
    if isinstance(data, _STRUCTURED_TYPES):
        return StructuredPayload(data)
    return TextPayload(str(data))


def encode_json(value: Any, *, pretty: bool = False) -> bytes:
    """Encode strict JSON; NaN and infinities raise ``ValueError``."""
    options: dict[str, Any] = {"ensure_ascii": False, "allow_nan": False, "default": _json_default}
    if pretty:
        text = json.dumps(value, indent=2, **options)
    else:
        text = json.dumps(value, separators=(",", ":"), **options)
    return text.encode("utf-8")


def _json_default(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


# ------------------------------------------------------------------ #
# Writer
# ------------------------------------------------------------------ #


async def write_response(res: ResponseHandle, response: Response, settings: Settings) -> None:
    """Write a prepared response onto the raw handle.

    The body is fully encoded before the handle is touched, so an encoding
    failure leaves the response unstarted.
    """
    payload = classify_payload(response.data)

    if isinstance(payload, NullPayload):
        res.status_code = response.status_code
        await res.end()
        return

    body: bytes | None = None
    default_type: str | None = None
    if isinstance(payload, BinaryPayload):
        body, default_type = payload.body, OCTET_STREAM
    elif isinstance(payload, StructuredPayload):
        body, default_type = encode_json(payload.value, pretty=settings.development), JSON_UTF8
    elif isinstance(payload, TextPayload):
        body = payload.text.encode("utf-8")
    else:
        default_type = OCTET_STREAM

    res.status_code = response.status_code
    for name, value in response.headers.items():
        res.set_header(name, value)
    if default_type is not None and not res.has_header("Content-Type"):
        res.set_header("Content-Type", default_type)

    if isinstance(payload, StreamPayload):
        await pipe_stream(payload.stream, res, chunk_size=settings.stream_chunk_size)
        return

    assert body is not None
    res.set_header("Content-Length", len(body))
    await res.end(body)


async def pipe_stream(stream: Any, res: ResponseHandle, *, chunk_size: int) -> None:
    """Copy a readable stream to the response and close the stream."""
    read = stream.read
    reads_async = inspect.iscoroutinefunction(read)
    try:
        while True:
            if reads_async:
                chunk = await read(chunk_size)
            else:
                chunk = await anyio.to_thread.run_sync(read, chunk_size)
            if not chunk:
                break
            await res.write(chunk)
        await res.end()
    finally:
        close = getattr(stream, "close", None)
        if callable(close):
            result = close()
            if inspect.isawaitable(result):
                await result
