# src/edge_dispatcher/shims.py

"""
Compatibility shims over the host runtime's request and response objects.

The host hands us requests whose bodies can only be read once, that cannot be
cloned and whose responses do not report a status text. ``ShimmedRequest`` and
``ShimmedResponse`` are built at the boundary where the host delivers a
request, and give the rest of the service a small, conformant surface:

- ``clone()`` copies headers and re-wraps the body so that both copies can
  be read exactly once each.
- ``form_data()`` decodes an ``application/x-www-form-urlencoded`` body.
- ``status_text`` is looked up from a static table.
"""

import asyncio
from collections import deque
from typing import AsyncIterable, AsyncIterator, Awaitable, Callable, Optional, Union
from urllib.parse import unquote, urlsplit, urlunsplit

import httpx

from .exceptions import BodyConsumedError, MalformedBodyError
from .status_text import status_text

BodySource = Union[bytes, str, AsyncIterable[bytes], None]
HeadersInput = Union[httpx.Headers, dict, list, None]


async def _single_chunk(data: bytes) -> AsyncIterator[bytes]:
    yield data


class BodyStream:
    """
    An asynchronous byte stream that can be consumed exactly once.

    Reading it a second time raises ``BodyConsumedError``. Use ``tee()`` to
    obtain two independent readers before the first read.
    """

    def __init__(
        self,
        source: BodySource = None,
        on_close: Optional[Callable[[], Awaitable[None]]] = None,
    ):
        if isinstance(source, str):
            source = source.encode("utf-8")
        if isinstance(source, (bytes, bytearray, memoryview)):
            source = _single_chunk(bytes(source)) if source else None
        self._source = source
        self._on_close = on_close
        self._consumed = False
        self._closed = False

    @property
    def consumed(self) -> bool:
        return self._consumed

    async def aclose(self) -> None:
        """Discard the stream without reading it, releasing the underlying source."""
        self._consumed = True
        await self._close()

    async def _close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._on_close is not None:
            await self._on_close()

    def __aiter__(self) -> AsyncIterator[bytes]:
        if self._consumed:
            raise BodyConsumedError()
        self._consumed = True
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[bytes]:
        try:
            if self._source is not None:
                async for chunk in self._source:
                    if chunk:
                        yield bytes(chunk)
        finally:
            await self._close()

    async def read(self) -> bytes:
        """Read the stream to completion and return its bytes."""
        return b"".join([chunk async for chunk in self])

    def tee(self) -> tuple["BodyStream", "BodyStream"]:
        """
        Split this stream into two streams yielding the same bytes.

        The source is read lazily; chunks pulled by one branch are buffered
        for the other. This stream is consumed by the call.
        """
        if self._consumed:
            raise BodyConsumedError()
        tee = _Tee(aiter(self))
        return BodyStream(tee.branch(0)), BodyStream(tee.branch(1))


class _Tee:
    """Shared state behind the two branches returned by ``BodyStream.tee``."""

    def __init__(self, source: AsyncIterator[bytes]):
        self._source = source
        self._buffers: tuple[deque, deque] = (deque(), deque())
        self._exhausted = False
        self._lock = asyncio.Lock()

    async def branch(self, index: int) -> AsyncIterator[bytes]:
        own = self._buffers[index]
        other = self._buffers[1 - index]
        while True:
            if own:
                yield own.popleft()
                continue
            async with self._lock:
                # The other branch may have filled our buffer while we waited.
                if own:
                    continue
                if self._exhausted:
                    return
                try:
                    chunk = await anext(self._source)
                except StopAsyncIteration:
                    self._exhausted = True
                    return
                other.append(chunk)
            yield chunk


def _as_body(body: Union[BodySource, BodyStream]) -> Optional[BodyStream]:
    if body is None or isinstance(body, BodyStream):
        return body
    return BodyStream(body)


async def parse_urlencoded_form(body: Optional[BodyStream]) -> dict[str, list[str]]:
    """
    Decode an ``application/x-www-form-urlencoded`` body.

    Duplicate keys are kept as repeated entries, a pair without ``=`` is a
    key with an empty value and empty segments are skipped.

    Raises:
        MalformedBodyError: If the body or a percent-escape is not valid UTF-8.
    """
    form: dict[str, list[str]] = {}
    if body is None:
        return form

    raw = await body.read()
    try:
        text = raw.decode("utf-8")
    except UnicodeDecodeError as e:
        raise MalformedBodyError("body is not valid UTF-8") from e

    for pair in text.strip().split("&"):
        if not pair:
            continue
        name, _, value = pair.partition("=")
        try:
            name = unquote(name.replace("+", " "), errors="strict")
            value = unquote(value.replace("+", " "), errors="strict")
        except UnicodeDecodeError as e:
            raise MalformedBodyError(
                "percent-escape is not valid UTF-8", context={"pair": pair}
            ) from e
        form.setdefault(name, []).append(value)

    return form


class ShimmedRequest:
    """An inbound request with clone and form decoding support."""

    def __init__(
        self,
        method: str,
        url: str,
        headers: HeadersInput = None,
        body: Union[BodySource, BodyStream] = None,
    ):
        self.method = method.upper()
        self.url = url
        self.headers = httpx.Headers(headers)
        self.body = _as_body(body)

    @property
    def path(self) -> str:
        return urlsplit(self.url).path or "/"

    @property
    def query(self) -> str:
        return urlsplit(self.url).query

    def url_without_query(self) -> str:
        scheme, netloc, path, _, _ = urlsplit(self.url)
        return urlunsplit((scheme, netloc, path, "", ""))

    def clone(self) -> "ShimmedRequest":
        body = None
        if self.body is not None:
            self.body, body = self.body.tee()
        return ShimmedRequest(self.method, self.url, self.headers, body)

    async def read(self) -> bytes:
        if self.body is None:
            return b""
        return await self.body.read()

    async def form_data(self) -> dict[str, list[str]]:
        return await parse_urlencoded_form(self.body)

    def __repr__(self) -> str:
        return f"<ShimmedRequest {self.method} {self.url}>"


class ShimmedResponse:
    """A response that reports its status text and can be cloned."""

    def __init__(
        self,
        body: Union[BodySource, BodyStream] = None,
        status: int = 200,
        headers: HeadersInput = None,
    ):
        self.status = status
        self.headers = httpx.Headers(headers)
        if isinstance(body, str) and "content-type" not in self.headers:
            self.headers["content-type"] = "text/plain;charset=UTF-8"
        self.body = _as_body(body)

    @property
    def status_text(self) -> str:
        return status_text(self.status)

    @property
    def ok(self) -> bool:
        return 200 <= self.status <= 299

    def clone(self) -> "ShimmedResponse":
        body = None
        if self.body is not None:
            self.body, body = self.body.tee()
        return ShimmedResponse(body, status=self.status, headers=self.headers)

    async def read(self) -> bytes:
        if self.body is None:
            return b""
        return await self.body.read()

    async def text(self) -> str:
        return (await self.read()).decode("utf-8")

    def __repr__(self) -> str:
        return f"<ShimmedResponse {self.status} {self.status_text}>"
