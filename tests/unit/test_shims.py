# tests/unit/test_shims.py

"""
Unit tests for the request/response shims in src/edge_dispatcher/shims.py.
"""

import asyncio

import pytest

from edge_dispatcher.exceptions import BodyConsumedError, MalformedBodyError
from edge_dispatcher.shims import (
    BodyStream,
    ShimmedRequest,
    ShimmedResponse,
    parse_urlencoded_form,
)


async def _chunks(*parts: bytes):
    for part in parts:
        await asyncio.sleep(0)
        yield part


def _form(body) -> dict:
    return asyncio.run(parse_urlencoded_form(BodyStream(body)))


# --- BodyStream ---


class TestBodyStream:
    def test_reads_chunks_once(self):
        stream = BodyStream(_chunks(b"hello ", b"world"))

        assert asyncio.run(stream.read()) == b"hello world"
        assert stream.consumed
        with pytest.raises(BodyConsumedError):
            asyncio.run(stream.read())

    def test_accepts_bytes_and_str(self):
        assert asyncio.run(BodyStream(b"abc").read()) == b"abc"
        assert asyncio.run(BodyStream("héllo").read()) == "héllo".encode("utf-8")
        assert asyncio.run(BodyStream(None).read()) == b""

    def test_tee_yields_same_bytes_to_both_branches(self):
        source = BodyStream(_chunks(b"a", b"b", b"c"))

        async def read_both():
            left, right = source.tee()
            # Interleave the reads to exercise the shared buffer.
            left_bytes, right_bytes = await asyncio.gather(left.read(), right.read())
            return left_bytes, right_bytes

        assert asyncio.run(read_both()) == (b"abc", b"abc")
        assert source.consumed

    def test_tee_branches_read_sequentially(self):
        left, right = BodyStream(_chunks(b"1", b"2")).tee()

        assert asyncio.run(left.read()) == b"12"
        assert asyncio.run(right.read()) == b"12"

    def test_tee_after_read_raises(self):
        stream = BodyStream(b"x")
        asyncio.run(stream.read())
        with pytest.raises(BodyConsumedError):
            stream.tee()

    def test_aclose_calls_on_close_once(self):
        closed = []

        async def on_close():
            closed.append(True)

        stream = BodyStream(b"x", on_close=on_close)

        async def close_twice():
            await stream.aclose()
            await stream.aclose()

        asyncio.run(close_twice())
        assert closed == [True]
        assert stream.consumed

    def test_on_close_runs_after_full_read(self):
        closed = []

        async def on_close():
            closed.append(True)

        asyncio.run(BodyStream(_chunks(b"x"), on_close=on_close).read())
        assert closed == [True]


# --- Form decoding ---


class TestParseUrlencodedForm:
    def test_round_trip_example(self):
        assert _form(b"name=John+Doe&tag=a&tag=b") == {
            "name": ["John Doe"],
            "tag": ["a", "b"],
        }

    @pytest.mark.parametrize(
        "body, expected",
        [
            (b"", {}),
            (None, {}),
            (b"key=", {"key": [""]}),
            (b"flag", {"flag": [""]}),
            (b"a=1&&b=2&", {"a": ["1"], "b": ["2"]}),
            (b"expr=1%2B1%3D2", {"expr": ["1+1=2"]}),
            (b"eq=a=b=c", {"eq": ["a=b=c"]}),
            (b"caf%C3%A9=cr%C3%A8me", {"café": ["crème"]}),
            (b"  name=Ann  \n", {"name": ["Ann"]}),
        ],
    )
    def test_edge_cases(self, body, expected):
        assert _form(body) == expected

    def test_chunk_boundary_inside_multibyte_character(self):
        encoded = "name=Zoë".encode("utf-8")
        split = encoded.index(b"\xc3") + 1
        body = BodyStream(_chunks(encoded[:split], encoded[split:]))

        assert asyncio.run(parse_urlencoded_form(body)) == {"name": ["Zoë"]}

    def test_no_body(self):
        assert asyncio.run(parse_urlencoded_form(None)) == {}

    def test_invalid_utf8_body_raises(self):
        with pytest.raises(MalformedBodyError) as exc_info:
            _form(b"name=\xff\xfe")
        assert exc_info.value.error_code == "MALFORMED_BODY"

    def test_invalid_utf8_escape_raises(self):
        with pytest.raises(MalformedBodyError):
            _form(b"name=%FF")


# --- ShimmedRequest ---


class TestShimmedRequest:
    def test_url_parts(self):
        request = ShimmedRequest("get", "https://www.example.com/build/app.js?v=1#frag")

        assert request.method == "GET"
        assert request.path == "/build/app.js"
        assert request.query == "v=1"
        assert request.url_without_query() == "https://www.example.com/build/app.js"

    def test_clone_copies_method_url_headers_and_body(self):
        request = ShimmedRequest(
            "POST",
            "https://www.example.com/",
            headers={"content-type": "application/x-www-form-urlencoded"},
            body=b"name=Ann",
        )

        clone = request.clone()

        assert clone.method == "POST"
        assert clone.url == request.url
        assert clone.headers["content-type"] == "application/x-www-form-urlencoded"
        assert asyncio.run(clone.read()) == b"name=Ann"
        assert asyncio.run(request.read()) == b"name=Ann"

    def test_clone_header_isolation(self):
        request = ShimmedRequest("GET", "https://www.example.com/", headers={"x-a": "1"})
        clone = request.clone()

        clone.headers["x-a"] = "2"
        clone.headers["x-b"] = "new"
        request.headers["x-c"] = "orig"

        assert request.headers["x-a"] == "1"
        assert "x-b" not in request.headers
        assert "x-c" not in clone.headers

    def test_clone_without_body(self):
        clone = ShimmedRequest("GET", "https://www.example.com/").clone()
        assert clone.body is None

    def test_clone_after_body_read_raises(self):
        request = ShimmedRequest("POST", "https://www.example.com/", body=b"x")
        asyncio.run(request.read())
        with pytest.raises(BodyConsumedError):
            request.clone()

    def test_form_data(self):
        request = ShimmedRequest("POST", "https://www.example.com/", body=b"name=John+Doe")
        assert asyncio.run(request.form_data()) == {"name": ["John Doe"]}


# --- ShimmedResponse ---


class TestShimmedResponse:
    @pytest.mark.parametrize(
        "status, text, ok",
        [
            (200, "OK", True),
            (204, "No Content", True),
            (304, "Not Modified", False),
            (404, "Not Found", False),
            (500, "Internal Server Error", False),
            (599, "", False),
        ],
    )
    def test_status_text_and_ok(self, status, text, ok):
        response = ShimmedResponse(status=status)
        assert response.status_text == text
        assert response.ok is ok

    def test_text_body_gets_default_content_type(self):
        response = ShimmedResponse("Internal Error", status=500)
        assert response.headers["content-type"] == "text/plain;charset=UTF-8"
        assert asyncio.run(response.text()) == "Internal Error"

    def test_explicit_content_type_is_kept(self):
        response = ShimmedResponse("<p>hi</p>", headers={"Content-Type": "text/html"})
        assert response.headers["content-type"] == "text/html"

    def test_clone_isolation(self):
        response = ShimmedResponse(b"payload", status=201, headers={"etag": '"1"'})
        clone = response.clone()

        clone.headers["etag"] = '"2"'
        del response.headers["etag"]
        response.headers["x-only-original"] = "1"

        assert clone.status == 201
        assert clone.headers["etag"] == '"2"'
        assert "etag" not in response.headers
        assert "x-only-original" not in clone.headers
        assert asyncio.run(clone.read()) == b"payload"
        assert asyncio.run(response.read()) == b"payload"
