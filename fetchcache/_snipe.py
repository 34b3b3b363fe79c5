from __future__ import annotations

import typing as tp

import httpx

from ._utils import collect, make_async_iterator

__all__ = ("BodySnipingResponse", "LiveResponseStream")


class LiveResponseStream(httpx.AsyncByteStream):
    """
    The body exactly as the transport produced it.

    The response is closed once the body is exhausted, or by `aclose`
    whether or not iteration ever started.
    """

    def __init__(self, response: httpx.Response) -> None:
        self._response = response

    async def __aiter__(self) -> tp.AsyncIterator[bytes]:
        assert isinstance(self._response.stream, tp.AsyncIterable)
        try:
            async for chunk in self._response.stream:
                yield chunk
        finally:
            await self._response.aclose()

    async def aclose(self) -> None:
        await self._response.aclose()


class BodySnipingResponse:
    """
    Wraps a live `httpx.Response` for cache strategies that read the body.

    The first body read drains the raw network stream and keeps those bytes,
    then serves this and every later read from a decoded copy. Afterwards
    `body_stream()` replays the kept bytes, so whatever the strategy read is
    still there for the cache and the caller.

    Everything else (`status_code`, `headers`, `is_success`, ...) is looked up
    on the wrapped response.
    """

    def __init__(self, response: httpx.Response) -> None:
        self._response = response
        self._sniped_body: tp.Optional[bytes] = None
        self._decoded: tp.Optional[httpx.Response] = None

    @property
    def body_sniped(self) -> bool:
        return self._sniped_body is not None

    def __getattr__(self, name: str) -> tp.Any:
        target = self._decoded if self._decoded is not None else self._response
        return getattr(target, name)

    async def _snipe(self) -> httpx.Response:
        if self._decoded is None:
            self._sniped_body = await collect(LiveResponseStream(self._response))
            decoded = httpx.Response(
                status_code=self._response.status_code,
                headers=self._response.headers,
                content=self._sniped_body,
                extensions=self._response.extensions,
                request=self._response.request,
            )
            decoded.history = self._response.history
            self._decoded = decoded
        return self._decoded

    async def aread(self) -> bytes:
        decoded = await self._snipe()
        return decoded.content

    async def aiter_bytes(self, chunk_size: tp.Optional[int] = None) -> tp.AsyncIterator[bytes]:
        decoded = await self._snipe()
        async for chunk in decoded.aiter_bytes(chunk_size):
            yield chunk

    async def aiter_text(self, chunk_size: tp.Optional[int] = None) -> tp.AsyncIterator[str]:
        decoded = await self._snipe()
        async for chunk in decoded.aiter_text(chunk_size):
            yield chunk

    async def aiter_lines(self) -> tp.AsyncIterator[str]:
        decoded = await self._snipe()
        async for line in decoded.aiter_lines():
            yield line

    async def aiter_raw(self, chunk_size: tp.Optional[int] = None) -> tp.AsyncIterator[bytes]:
        await self._snipe()
        assert self._sniped_body is not None
        async for chunk in httpx.ByteStream(self._sniped_body):
            yield chunk

    def body_stream(self) -> tp.AsyncIterable[bytes]:
        """
        The raw body to cache or hand to the caller.

        Either a replay of the bytes a strategy already read, or the untouched
        network stream, which closes the response once exhausted.
        """
        if self._sniped_body is not None:
            return make_async_iterator([self._sniped_body] if self._sniped_body else [])
        return LiveResponseStream(self._response)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self._response!r}>"
