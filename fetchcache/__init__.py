from fetchcache._exceptions import (
    BodyAlreadyUsedError as BodyAlreadyUsedError,
    FetchCacheError as FetchCacheError,
    IntegrityError as IntegrityError,
    UnsupportedBodyError as UnsupportedBodyError,
)
from fetchcache._keys import CACHE_VERSION as CACHE_VERSION, calculate_cache_key as calculate_cache_key
from fetchcache._models import (
    FetchInit as FetchInit,
    FetchOptions as FetchOptions,
    FormData as FormData,
    ResponseMetadata as ResponseMetadata,
    StoredEntry as StoredEntry,
)
from fetchcache._response import CachedResponse as CachedResponse
from fetchcache._snipe import BodySnipingResponse as BodySnipingResponse
from fetchcache._storages import (
    AsyncBaseStorage as AsyncBaseStorage,
    AsyncFileStorage as AsyncFileStorage,
    AsyncInMemoryStorage as AsyncInMemoryStorage,
    AsyncRedisStorage as AsyncRedisStorage,
)
from fetchcache._synchronization import AsyncKeyedLock as AsyncKeyedLock
from fetchcache._fetch import AsyncFetchCache as AsyncFetchCache, create as create, fetch as fetch
from fetchcache import cache_strategies as cache_strategies
from fetchcache.cache_strategies import cache_non_5xx_only as cache_non_5xx_only, cache_ok_only as cache_ok_only

__all__ = (
    # Fetching
    "AsyncFetchCache",
    "create",
    "fetch",
    "CachedResponse",
    "BodySnipingResponse",
    # Keys
    "CACHE_VERSION",
    "calculate_cache_key",
    # Models
    "FetchInit",
    "FetchOptions",
    "FormData",
    "ResponseMetadata",
    "StoredEntry",
    # Storages
    "AsyncBaseStorage",
    "AsyncFileStorage",
    "AsyncInMemoryStorage",
    "AsyncRedisStorage",
    # Synchronization
    "AsyncKeyedLock",
    # Cache strategies
    "cache_strategies",
    "cache_ok_only",
    "cache_non_5xx_only",
    # Exceptions
    "FetchCacheError",
    "UnsupportedBodyError",
    "BodyAlreadyUsedError",
    "IntegrityError",
)
