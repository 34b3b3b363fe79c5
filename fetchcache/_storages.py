from __future__ import annotations

import json
import logging
import os
import time
import typing as tp
from copy import deepcopy
from pathlib import Path

from ._files import AsyncFileManager
from ._models import ResponseMetadata, StoredEntry
from ._utils import (
    collect,
    ensure_cache_dir,
    expiration_from_ttl,
    float_seconds_to_int_milliseconds,
    is_expired,
    make_async_iterator,
)

try:
    import redis.asyncio as redis
except ImportError:  # pragma: no cover
    redis = None  # type: ignore

logger = logging.getLogger("fetchcache.storages")

__all__ = (
    "AsyncBaseStorage",
    "AsyncFileStorage",
    "AsyncInMemoryStorage",
    "AsyncRedisStorage",
)

METADATA_FIELDS = ("url", "status", "status_text", "headers", "redirected", "counter")


def _pick_metadata(data: tp.Mapping[str, tp.Any]) -> ResponseMetadata:
    return tp.cast(ResponseMetadata, {field: data[field] for field in METADATA_FIELDS})


class AsyncBaseStorage:
    """
    The contract every storage implements.

    `get` hides missing and expired entries behind `None`. `set` drains the
    body completely before the entry becomes visible and hands back a fresh
    view of what was stored. `remove` never fails for a missing key.
    """

    def __init__(self, ttl: tp.Optional[tp.Union[int, float]] = None) -> None:
        self._ttl = ttl

    @property
    def ttl(self) -> tp.Optional[tp.Union[int, float]]:
        return self._ttl

    async def get(self, key: str, ignore_expiration: bool = False) -> tp.Optional[StoredEntry]:
        raise NotImplementedError()

    async def set(self, key: str, body_stream: tp.AsyncIterable[bytes], metadata: ResponseMetadata) -> StoredEntry:
        raise NotImplementedError()

    async def remove(self, key: str) -> None:
        raise NotImplementedError()

    async def aclose(self) -> None:
        return


class AsyncInMemoryStorage(AsyncBaseStorage):
    """
    A simple in-memory storage.

    :param ttl: Specifies the maximum number of seconds that the response can be cached, defaults to None
    :type ttl: tp.Optional[tp.Union[int, float]], optional
    :param check_ttl_every: How often in seconds to sweep **all** expired entries.
        Makes sense only with set `ttl`, defaults to 60
    :type check_ttl_every: tp.Union[int, float]
    """

    def __init__(
        self,
        ttl: tp.Optional[tp.Union[int, float]] = None,
        check_ttl_every: tp.Union[int, float] = 60,
    ) -> None:
        super().__init__(ttl)

        self._cache: tp.Dict[str, tp.Tuple[bytes, ResponseMetadata, tp.Optional[int]]] = {}
        self._check_ttl_every = check_ttl_every
        self._last_cleaned = time.monotonic()

    async def get(self, key: str, ignore_expiration: bool = False) -> tp.Optional[StoredEntry]:
        """
        Retrieves the stored response for the key.

        :param key: A cache key
        :type key: str
        :param ignore_expiration: Return the entry even when it has expired, defaults to False
        :type ignore_expiration: bool, optional
        :return: The body stream and the metadata, or None
        :rtype: tp.Optional[StoredEntry]
        """
        try:
            body, metadata, expiration = self._cache[key]
        except KeyError:
            return None

        if not ignore_expiration and is_expired(expiration):
            logger.debug(f"Dropping expired entry {key}")
            del self._cache[key]
            return None

        return StoredEntry(make_async_iterator([body] if body else []), deepcopy(metadata))

    async def set(self, key: str, body_stream: tp.AsyncIterable[bytes], metadata: ResponseMetadata) -> StoredEntry:
        """
        Stores the response body and its metadata.

        :param key: A cache key
        :type key: str
        :param body_stream: The body to drain
        :type body_stream: tp.AsyncIterable[bytes]
        :param metadata: Response metadata
        :type metadata: ResponseMetadata
        :return: A fresh view of the stored entry
        :rtype: StoredEntry
        """
        body = await collect(body_stream)
        self._cache[key] = (body, deepcopy(metadata), expiration_from_ttl(self._ttl))
        self._remove_expired_caches()

        stored = await self.get(key, ignore_expiration=True)
        assert stored is not None, "Failed to cache response"
        return stored

    async def remove(self, key: str) -> None:
        self._cache.pop(key, None)

    def __len__(self) -> int:
        return len(self._cache)

    def _remove_expired_caches(self) -> None:
        if self._ttl is None:
            return

        if time.monotonic() - self._last_cleaned < self._check_ttl_every:
            return

        self._last_cleaned = time.monotonic()
        expired_keys = [key for key, (_, _, expiration) in self._cache.items() if is_expired(expiration)]
        for key in expired_keys:
            del self._cache[key]
        if expired_keys:
            logger.debug(f"Swept {len(expired_keys)} expired entries")


class AsyncFileStorage(AsyncBaseStorage):
    """
    A filesystem storage.

    Bodies live under `content/`, named by their sha256 digest, and every key
    has a JSON metadata record under `index/` which decides whether a body
    exists at all. Both are written atomically, the body first.

    :param base_path: A storage base path where the responses should be saved, defaults to None
    :type base_path: tp.Optional[Path], optional
    :param ttl: Specifies the maximum number of seconds that the response can be cached, defaults to None
    :type ttl: tp.Optional[tp.Union[int, float]], optional
    :param check_ttl_every: How often in seconds to sweep expired records and unreferenced
        bodies, defaults to 60
    :type check_ttl_every: tp.Union[int, float]
    """

    def __init__(
        self,
        base_path: tp.Optional[tp.Union[str, Path]] = None,
        ttl: tp.Optional[tp.Union[int, float]] = None,
        check_ttl_every: tp.Union[int, float] = 60,
    ) -> None:
        super().__init__(ttl)

        self._base_path = ensure_cache_dir(Path(base_path) if base_path is not None else None)
        self._index_path = self._base_path / "index"
        self._content_path = self._base_path / "content"
        self._index_path.mkdir(exist_ok=True)
        self._content_path.mkdir(exist_ok=True)

        self._file_manager = AsyncFileManager()
        self._check_ttl_every = check_ttl_every
        self._last_cleaned = time.monotonic()

    def _record_path(self, key: str) -> Path:
        return self._index_path / f"{key}.json"

    async def get(self, key: str, ignore_expiration: bool = False) -> tp.Optional[StoredEntry]:
        """
        Retrieves the stored response for the key.

        :param key: A cache key
        :type key: str
        :param ignore_expiration: Return the entry even when it has expired, defaults to False
        :type ignore_expiration: bool, optional
        :return: The body stream and the metadata, or None
        :rtype: tp.Optional[StoredEntry]
        """
        try:
            raw_record = await self._file_manager.read_from(str(self._record_path(key)))
        except FileNotFoundError:
            return None

        if len(raw_record) == 0:
            return None

        record = json.loads(raw_record)
        if not ignore_expiration and is_expired(record.get("expiration")):
            # Expired records are deleted by the sweep only.
            logger.debug(f"Ignoring expired entry {key}")
            return None

        digest = record.get("body_digest")
        if record.get("empty") or not digest:
            body_stream = make_async_iterator([])
        else:
            try:
                body_stream = await self._file_manager.open_stream(str(self._content_path / digest), digest)
            except FileNotFoundError:
                return None

        return StoredEntry(body_stream, _pick_metadata(record))

    async def set(self, key: str, body_stream: tp.AsyncIterable[bytes], metadata: ResponseMetadata) -> StoredEntry:
        """
        Stores the response body and its metadata.

        :param key: A cache key
        :type key: str
        :param body_stream: The body to drain
        :type body_stream: tp.AsyncIterable[bytes]
        :param metadata: Response metadata
        :type metadata: ResponseMetadata
        :return: A fresh view of the stored entry
        :rtype: StoredEntry
        """
        digest, size = await self._file_manager.write_content(str(self._content_path), body_stream)

        record = {
            **metadata,
            "expiration": expiration_from_ttl(self._ttl),
            "body_digest": digest if size else None,
            "empty": size == 0,
        }
        await self._file_manager.write_to(str(self._record_path(key)), json.dumps(record).encode("utf-8"))
        self._remove_expired_caches()

        stored = await self.get(key, ignore_expiration=True)
        assert stored is not None, "Failed to cache response"
        return stored

    async def remove(self, key: str) -> None:
        """
        Removes the metadata record of the key.

        The body is reclaimed by the next sweep once no record points at it.

        :param key: A cache key
        :type key: str
        """
        self._file_manager.remove(str(self._record_path(key)))

    def _remove_expired_caches(self) -> None:
        if time.monotonic() - self._last_cleaned < self._check_ttl_every:
            return

        self._last_cleaned = time.monotonic()
        referenced = set()
        with os.scandir(self._index_path) as entries:
            for entry in entries:
                if not entry.name.endswith(".json"):
                    continue
                try:
                    with open(entry.path, "rb") as f:
                        record = json.loads(f.read() or b"{}")
                except FileNotFoundError:  # pragma: no cover
                    continue
                if is_expired(record.get("expiration")):
                    self._file_manager.remove(entry.path)
                elif record.get("body_digest"):
                    referenced.add(record["body_digest"])

        # Bodies written moments ago may not have their record yet.
        grace_period = time.time() - self._check_ttl_every
        with os.scandir(self._content_path) as entries:
            for entry in entries:
                try:
                    if (
                        entry.name not in referenced
                        and not entry.name.endswith(".tmp")
                        and entry.stat().st_mtime < grace_period
                    ):
                        os.unlink(entry.path)
                except FileNotFoundError:  # pragma: no cover
                    pass


class AsyncRedisStorage(AsyncBaseStorage):
    """
    A simple redis storage.

    The body is kept under the key itself and the metadata under `<key>:meta`.
    Both are written in one transaction and read with a single `MGET`.

    :param client: A client for redis, defaults to None
    :type client: tp.Optional["redis.Redis"], optional
    :param ttl: Specifies the maximum number of seconds that the response can be cached, defaults to None
    :type ttl: tp.Optional[tp.Union[int, float]], optional
    """

    def __init__(
        self,
        client: tp.Optional[redis.Redis] = None,  # type: ignore
        ttl: tp.Optional[tp.Union[int, float]] = None,
    ) -> None:
        if client is None and redis is None:  # pragma: no cover
            raise RuntimeError(
                f"The `{type(self).__name__}` was used, but the required packages were not found. "
                "Check that you have `fetchcache` installed with the `redis` extension as shown.\n"
                "```pip install fetchcache[redis]```"
            )
        super().__init__(ttl)

        if client is None:  # pragma: no cover
            self._client = redis.Redis()
        else:
            self._client = client

    async def get(self, key: str, ignore_expiration: bool = False) -> tp.Optional[StoredEntry]:
        """
        Retrieves the stored response for the key.

        :param key: A cache key
        :type key: str
        :param ignore_expiration: Return the entry even when it has expired, defaults to False
        :type ignore_expiration: bool, optional
        :return: The body stream and the metadata, or None
        :rtype: tp.Optional[StoredEntry]
        """
        body, raw_record = await self._client.mget(key, f"{key}:meta")
        if raw_record is None:
            return None

        record = json.loads(raw_record)
        if not ignore_expiration and is_expired(record.get("expiration")):
            return None

        if record.get("empty_body"):
            return StoredEntry(make_async_iterator([]), _pick_metadata(record))

        if body is None:
            return None

        return StoredEntry(make_async_iterator([body]), _pick_metadata(record))

    async def set(self, key: str, body_stream: tp.AsyncIterable[bytes], metadata: ResponseMetadata) -> StoredEntry:
        """
        Stores the response body and its metadata.

        :param key: A cache key
        :type key: str
        :param body_stream: The body to drain
        :type body_stream: tp.AsyncIterable[bytes]
        :param metadata: Response metadata
        :type metadata: ResponseMetadata
        :return: A fresh view of the stored entry
        :rtype: StoredEntry
        """
        body = await collect(body_stream)
        record = {
            **metadata,
            "expiration": expiration_from_ttl(self._ttl),
            "empty_body": len(body) == 0,
        }

        if self._ttl is not None:
            # Redis rejects a zero expire time.
            px = max(1, float_seconds_to_int_milliseconds(self._ttl))
        else:
            px = None

        async with self._client.pipeline(transaction=True) as pipe:
            pipe.set(key, body, px=px)
            pipe.set(f"{key}:meta", json.dumps(record), px=px)
            await pipe.execute()

        stored = await self.get(key, ignore_expiration=True)
        assert stored is not None, "Failed to cache response"
        return stored

    async def remove(self, key: str) -> None:
        await self._client.delete(key, f"{key}:meta")

    async def aclose(self) -> None:  # pragma: no cover
        await self._client.aclose()
