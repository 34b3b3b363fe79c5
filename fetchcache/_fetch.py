from __future__ import annotations

import functools
import io
import logging
import types
import typing as tp

import anyio
import httpx

from ._exceptions import UnsupportedBodyError
from ._headers import HeaderTypes, has_only_if_cached
from ._keys import SUPPORTED_BODY_TYPES
from ._keys import calculate_cache_key as default_calculate_cache_key
from ._models import (
    BodyTypes,
    CacheKeyCalculator,
    CacheStrategy,
    FetchInit,
    FetchOptions,
    FetchResource,
    FormData,
)
from ._response import CachedResponse, serialize_metadata
from ._snipe import BodySnipingResponse
from ._storages import AsyncBaseStorage, AsyncInMemoryStorage
from ._synchronization import AsyncKeyedLock
from ._utils import maybe_await
from .cache_strategies import cache_always

if tp.TYPE_CHECKING:  # pragma: no cover
    from typing_extensions import Self

__all__ = ("AsyncFetchCache", "create", "fetch")

logger = logging.getLogger("fetchcache.fetch")

BODY_SPECIFIC_HEADERS = ("content-length", "content-type", "transfer-encoding")


class _Defaults:
    """
    Process-wide collaborators shared by every `AsyncFetchCache` that does
    not bring its own. Built on first use and kept until the process exits.
    """

    def __init__(self) -> None:
        self._storage: tp.Optional[AsyncBaseStorage] = None
        self._synchronizer: tp.Optional[AsyncKeyedLock] = None
        self._fetch_cache: tp.Optional[AsyncFetchCache] = None

    @property
    def storage(self) -> AsyncBaseStorage:
        if self._storage is None:
            self._storage = AsyncInMemoryStorage()
        return self._storage

    @property
    def synchronizer(self) -> AsyncKeyedLock:
        if self._synchronizer is None:
            self._synchronizer = AsyncKeyedLock()
        return self._synchronizer

    @property
    def fetch_cache(self) -> AsyncFetchCache:
        if self._fetch_cache is None:
            self._fetch_cache = AsyncFetchCache()
        return self._fetch_cache


_defaults = _Defaults()


def _resource_url(resource: FetchResource) -> str:
    if isinstance(resource, httpx.Request):
        return str(resource.url)
    return resource


async def _body_arguments(body: BodyTypes) -> tp.Tuple[tp.Dict[str, tp.Any], tp.Dict[str, str]]:
    """
    Maps a body onto `httpx.AsyncClient.build_request` arguments.

    :return: The keyword arguments and the headers the body implies.
    """
    if not body:
        return {}, {}

    if isinstance(body, (str, bytes, bytearray, memoryview)):
        return {"content": body if isinstance(body, str) else bytes(body)}, {}

    if isinstance(body, httpx.QueryParams):
        return {"content": str(body).encode("utf-8")}, {
            "Content-Type": "application/x-www-form-urlencoded;charset=UTF-8"
        }

    if isinstance(body, FormData):
        return {"files": body.to_httpx()}, {}

    if isinstance(body, io.IOBase):
        content = await anyio.to_thread.run_sync(body.read)
        if isinstance(content, str):
            content = content.encode("utf-8")
        return {"content": content}, {}

    raise UnsupportedBodyError(
        f"Unsupported body type {type(body).__name__!r}. Supported body types are: {SUPPORTED_BODY_TYPES}"
    )


class AsyncFetchCache:
    """
    Fetches resources through a cache.

    Responses already in the storage are returned right away. Otherwise the
    request is sent under a per-key lock, so concurrent identical requests
    produce a single network call and a single cache write.

    :param client: Client used for network requests, defaults to a client created on first use
    :type client: tp.Optional[httpx.AsyncClient], optional
    :param storage: Where responses are kept, defaults to a process-wide in-memory storage
    :type storage: tp.Optional[AsyncBaseStorage], optional
    :param calculate_cache_key: Replaces the default key calculation, defaults to None
    :type calculate_cache_key: tp.Optional[CacheKeyCalculator], optional
    :param should_cache_response: Decides whether a fetched response is stored, defaults to
        storing every response
    :type should_cache_response: tp.Optional[CacheStrategy], optional
    :param synchronizer: Per-key lock coordinator, defaults to a process-wide one
    :type synchronizer: tp.Optional[AsyncKeyedLock], optional
    """

    def __init__(
        self,
        client: tp.Optional[httpx.AsyncClient] = None,
        storage: tp.Optional[AsyncBaseStorage] = None,
        calculate_cache_key: tp.Optional[CacheKeyCalculator] = None,
        should_cache_response: tp.Optional[CacheStrategy] = None,
        synchronizer: tp.Optional[AsyncKeyedLock] = None,
    ) -> None:
        if storage is not None and not isinstance(storage, AsyncBaseStorage):  # pragma: no cover
            raise TypeError(f"Expected subclass of `AsyncBaseStorage` but got `{storage.__class__.__name__}`")

        self._client = client
        self._owns_client = client is None
        self.options = FetchOptions(
            storage=storage if storage is not None else _defaults.storage,
            calculate_cache_key=(
                calculate_cache_key if calculate_cache_key is not None else default_calculate_cache_key
            ),
            should_cache_response=should_cache_response if should_cache_response is not None else cache_always,
            synchronizer=synchronizer if synchronizer is not None else _defaults.synchronizer,
        )

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient()
        return self._client

    async def fetch(
        self,
        resource: FetchResource,
        init: tp.Optional[FetchInit] = None,
        options: tp.Optional[FetchOptions] = None,
    ) -> CachedResponse:
        """
        Returns the cached response for the request, fetching and storing it if needed.

        :param resource: An URL or an `httpx.Request`
        :type resource: tp.Union[str, httpx.Request]
        :param init: Extra request options, defaults to None
        :type init: tp.Optional[FetchInit], optional
        :param options: Overrides of this instance's options for this call only, defaults to None
        :type options: tp.Optional[FetchOptions], optional
        :raises TypeError: When `resource` is neither a string nor an `httpx.Request`
        :return: The response
        :rtype: CachedResponse
        """
        if not isinstance(resource, (str, httpx.Request)):
            raise TypeError("The first argument to fetch must be either a string or an httpx.Request instance")

        init = init if init is not None else FetchInit()
        settings = FetchOptions(**{**self.options, **(options or {})})  # type: ignore[typeddict-item]
        storage = settings["storage"]
        synchronizer = settings["synchronizer"]

        key = await maybe_await(settings["calculate_cache_key"](resource, init))

        async def eject_from_cache() -> None:
            await synchronizer.do_with_exclusive_lock(key, functools.partial(storage.remove, key))

        stored = await storage.get(key)
        if stored is not None:
            logger.debug("Found cached response for the request")
            return CachedResponse(stored.body_stream, stored.metadata, eject_from_cache, returned_from_cache=True)

        if has_only_if_cached(resource, init.get("headers")):
            logger.debug("No cached response for the only-if-cached request")
            return CachedResponse.cache_miss(_resource_url(resource))

        return await synchronizer.do_with_exclusive_lock(
            key,
            functools.partial(self._fetch_and_store, key, resource, init, settings, eject_from_cache),
        )

    async def _fetch_and_store(
        self,
        key: str,
        resource: FetchResource,
        init: FetchInit,
        settings: FetchOptions,
        eject_from_cache: tp.Callable[[], tp.Awaitable[None]],
    ) -> CachedResponse:
        storage = settings["storage"]

        stored = await storage.get(key)
        if stored is not None:
            logger.debug("Found cached response after waiting for the lock")
            return CachedResponse(stored.body_stream, stored.metadata, eject_from_cache, returned_from_cache=True)

        request = await self._build_request(resource, init)
        logger.debug("Sending request to the network")
        response = await self.client.send(
            request,
            stream=True,
            follow_redirects=init.get("follow_redirects", True),
        )

        try:
            metadata = serialize_metadata(response)
            sniping_response = BodySnipingResponse(response)
            should_cache = await maybe_await(settings["should_cache_response"](sniping_response))
            body_stream = sniping_response.body_stream()

            if should_cache:
                logger.debug("Storing response in cache")
                body_stream, metadata = await storage.set(key, body_stream, metadata)
            else:
                logger.debug("Response was not stored in cache")
        except BaseException:
            await response.aclose()
            raise

        return CachedResponse(body_stream, metadata, eject_from_cache, returned_from_cache=False)

    async def _build_request(self, resource: FetchResource, init: FetchInit) -> httpx.Request:
        headers: httpx.Headers
        if isinstance(resource, httpx.Request):
            if not any(field in init for field in ("method", "headers", "body", "params", "timeout", "extensions")):
                return resource

            method = init.get("method", resource.method)
            url: tp.Union[str, httpx.URL] = resource.url
            headers = httpx.Headers(resource.headers)
            if "body" in init:
                for name in BODY_SPECIFIC_HEADERS:
                    headers.pop(name, None)
                body_arguments, body_headers = await _body_arguments(init["body"])
            else:
                body_arguments, body_headers = {"content": await resource.aread()}, {}
            extensions = {**resource.extensions, **init.get("extensions", {})}
        else:
            method = init.get("method", "GET")
            url = resource
            headers = httpx.Headers()
            body_arguments, body_headers = await _body_arguments(init.get("body"))
            extensions = init.get("extensions", {})

        headers.update(tp.cast(HeaderTypes, init.get("headers") or {}))
        for name, value in body_headers.items():
            headers.setdefault(name, value)

        return self.client.build_request(
            method,
            url,
            headers=headers,
            params=init.get("params"),
            timeout=init.get("timeout", httpx.USE_CLIENT_DEFAULT),
            extensions=extensions,
            **body_arguments,
        )

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        exc_type: tp.Optional[tp.Type[BaseException]] = None,
        exc_value: tp.Optional[BaseException] = None,
        traceback: tp.Optional[types.TracebackType] = None,
    ) -> None:
        await self.aclose()


def create(client: tp.Optional[httpx.AsyncClient] = None, **options: tp.Any) -> AsyncFetchCache:
    """
    Creates a cached fetcher.

    Storage and lock coordinator default to process-wide instances, so
    fetchers created without them share cached responses.

    Example:
        ```
        fetcher = fetchcache.create(storage=fetchcache.AsyncFileStorage(ttl=3600))
        response = await fetcher.fetch("https://example.com")
        ```
    """
    return AsyncFetchCache(client=client, **options)


async def fetch(
    resource: FetchResource,
    init: tp.Optional[FetchInit] = None,
    options: tp.Optional[FetchOptions] = None,
) -> CachedResponse:
    """`AsyncFetchCache.fetch` on a process-wide fetcher with the default options."""
    return await _defaults.fetch_cache.fetch(resource, init, options)
