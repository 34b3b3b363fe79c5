from __future__ import annotations

import typing as tp

import httpx

from ._exceptions import BodyAlreadyUsedError
from ._models import ResponseMetadata
from ._utils import make_async_iterator

__all__ = ("AsyncCacheStream", "CachedResponse")


class AsyncCacheStream(httpx.AsyncByteStream):
    def __init__(self, stream: tp.AsyncIterable[bytes]):
        self._stream = stream

    async def __aiter__(self) -> tp.AsyncIterator[bytes]:
        async for part in self._stream:
            yield part

    async def aclose(self) -> None:
        if hasattr(self._stream, "aclose"):
            await self._stream.aclose()


async def _noop() -> None:
    return None


def serialize_metadata(response: httpx.Response) -> ResponseMetadata:
    headers: tp.Dict[str, tp.List[str]] = {}
    for key, value in response.headers.multi_items():
        headers.setdefault(key, []).append(value)

    return ResponseMetadata(
        url=str(response.url),
        status=response.status_code,
        status_text=response.reason_phrase,
        headers=headers,
        redirected=bool(response.history),
        counter=len(response.history),
    )


class CachedResponse:
    """
    The response handed to callers, for cache hits and misses alike.

    It wraps an `httpx.Response` rebuilt from the stored metadata and body
    stream. The body can be read once, through exactly one of `aread`,
    `text`, `json`, `aiter_bytes` or `aiter_raw`.

    :param body_stream: The raw (still content-encoded) body
    :type body_stream: tp.AsyncIterable[bytes]
    :param metadata: Response metadata
    :type metadata: ResponseMetadata
    :param eject: Removes the entry this response belongs to from the cache
    :type eject: tp.Callable[[], tp.Awaitable[None]]
    :param returned_from_cache: Whether the response came out of the cache
    :type returned_from_cache: bool
    :param is_cache_miss: Whether this is the synthetic `only-if-cached` miss, defaults to False
    :type is_cache_miss: bool
    """

    def __init__(
        self,
        body_stream: tp.AsyncIterable[bytes],
        metadata: ResponseMetadata,
        eject: tp.Callable[[], tp.Awaitable[None]],
        returned_from_cache: bool,
        is_cache_miss: bool = False,
    ) -> None:
        self._metadata = metadata
        self._eject = eject
        self.returned_from_cache = returned_from_cache
        self.is_cache_miss = is_cache_miss
        self._body_used = False
        self._response = httpx.Response(
            status_code=metadata["status"],
            headers=[(key, value) for key, values in metadata["headers"].items() for value in values],
            stream=AsyncCacheStream(body_stream),
            extensions={"reason_phrase": metadata["status_text"].encode("ascii", errors="ignore")},
        )

    @classmethod
    def cache_miss(cls, url: str) -> "CachedResponse":
        """
        Builds the 504 response returned for `only-if-cached` requests that
        found nothing in the cache.
        """
        return cls(
            make_async_iterator([]),
            ResponseMetadata(
                url=url,
                status=504,
                status_text="Gateway Timeout",
                headers={},
                redirected=False,
                counter=0,
            ),
            _noop,
            returned_from_cache=False,
            is_cache_miss=True,
        )

    @property
    def metadata(self) -> ResponseMetadata:
        return self._metadata

    @property
    def status(self) -> int:
        return self._response.status_code

    @property
    def status_text(self) -> str:
        return self._response.reason_phrase

    @property
    def ok(self) -> bool:
        return self._response.is_success

    @property
    def url(self) -> str:
        return self._metadata["url"]

    @property
    def redirected(self) -> bool:
        return self._metadata["redirected"]

    @property
    def headers(self) -> httpx.Headers:
        return self._response.headers

    @property
    def body_used(self) -> bool:
        return self._body_used

    def _consume_body(self) -> None:
        if self._body_used:
            raise BodyAlreadyUsedError(f"body used already for: {self.url}")
        self._body_used = True

    async def aread(self) -> bytes:
        """Reads the decoded body."""
        self._consume_body()
        return await self._response.aread()

    async def text(self) -> str:
        self._consume_body()
        await self._response.aread()
        return self._response.text

    async def json(self, **kwargs: tp.Any) -> tp.Any:
        self._consume_body()
        await self._response.aread()
        return self._response.json(**kwargs)

    def aiter_bytes(self, chunk_size: tp.Optional[int] = None) -> tp.AsyncIterator[bytes]:
        """Iterates over the decoded body."""
        self._consume_body()
        return self._response.aiter_bytes(chunk_size)

    def aiter_raw(self, chunk_size: tp.Optional[int] = None) -> tp.AsyncIterator[bytes]:
        """Iterates over the body exactly as it was received or stored."""
        self._consume_body()
        return self._response.aiter_raw(chunk_size)

    async def aclose(self) -> None:
        await self._response.aclose()

    async def eject_from_cache(self) -> None:
        """
        Removes the cache entry that produced this response.

        Calling it again, or after someone else removed the entry, is harmless.
        """
        await self._eject()

    def __repr__(self) -> str:
        return (
            f"<{type(self).__name__} [{self.status} {self.status_text}] "
            f"returned_from_cache={self.returned_from_cache} is_cache_miss={self.is_cache_miss}>"
        )
