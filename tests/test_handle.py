"""Tests for the raw ResponseHandle."""

from __future__ import annotations

import pytest
from helpers import make_event

from pipeserve import ResponseAlreadyStartedError


class TestHeaders:
    """Pending header bookkeeping before the response starts."""

    def test_case_insensitive_lookup(self):
        event, _ = make_event()
        res = event.response
        res.set_header("Content-Type", "text/plain")
        assert res.get_header("content-type") == "text/plain"
        assert res.has_header("CONTENT-TYPE")

    def test_first_spelling_and_position_kept(self):
        event, _ = make_event()
        res = event.response
        res.set_header("X-A", "1")
        res.set_header("X-B", "2")
        res.set_header("x-a", "3")
        assert res.headers == {"X-A": "3", "X-B": "2"}

    def test_remove_header(self):
        event, _ = make_event()
        res = event.response
        res.set_header("X-A", "1")
        res.remove_header("x-a")
        assert res.get_header("X-A") is None

    def test_values_are_stringified(self):
        event, _ = make_event()
        event.response.set_header("Content-Length", 12)
        assert event.response.get_header("content-length") == "12"

    def test_unencodable_header_is_rejected(self):
        event, _ = make_event()
        res = event.response
        with pytest.raises(UnicodeEncodeError):
            res.set_header("X-Name", "☃")
        assert not res.has_header("X-Name")
        assert not res.headers_sent

    def test_replace_headers(self):
        event, _ = make_event()
        res = event.response
        res.set_header("X-A", "1")
        res.set_header("Content-Type", "text/plain")
        res.replace_headers({"X-B": "2"})
        assert res.headers == {"X-B": "2"}


class TestWriting:
    """Body writes and response completion."""

    @pytest.mark.asyncio
    async def test_end_with_body_sets_content_length(self):
        event, rec = make_event()
        await event.response.end("manual")
        assert rec.status == 200
        assert rec.headers["content-length"] == "6"
        assert rec.body == b"manual"
        assert event.response.finished

    @pytest.mark.asyncio
    async def test_write_then_end_streams(self):
        event, rec = make_event()
        res = event.response
        res.status_code = 206
        await res.write(b"ab")
        await res.write("cd")
        await res.end()
        assert rec.status == 206
        assert "content-length" not in rec.headers
        assert rec.body == b"abcd"
        assert [m.get("more_body") for m in rec.messages[1:]] == [True, True, False]

    @pytest.mark.asyncio
    async def test_no_content_length_for_204(self):
        event, rec = make_event()
        event.response.status_code = 204
        await event.response.end()
        assert "content-length" not in rec.headers

    @pytest.mark.asyncio
    async def test_status_locked_after_start(self):
        event, _ = make_event()
        await event.response.write(b"x")
        assert event.response.headers_sent
        with pytest.raises(ResponseAlreadyStartedError):
            event.response.status_code = 500
        with pytest.raises(ResponseAlreadyStartedError):
            event.response.set_header("X-Late", "1")

    @pytest.mark.asyncio
    async def test_end_twice_raises(self):
        event, _ = make_event()
        await event.response.end()
        with pytest.raises(ResponseAlreadyStartedError):
            await event.response.end()
        with pytest.raises(ResponseAlreadyStartedError):
            await event.response.write(b"x")

    @pytest.mark.asyncio
    async def test_rejected_header_leaves_response_writable(self):
        event, rec = make_event()
        with pytest.raises(UnicodeEncodeError):
            event.response.set_header("X-Name", "☃")
        await event.response.end("ok")
        assert rec.status == 200
        assert rec.headers == {"content-length": "2"}
        assert rec.body == b"ok"

    @pytest.mark.asyncio
    async def test_wait_finished(self):
        event, _ = make_event()
        await event.response.end(b"")
        await event.response.wait_finished()

    def test_request_is_starlette_request(self):
        event, _ = make_event("/items", method="POST")
        assert event.request.method == "POST"
        assert event.request.url.path == "/items"
