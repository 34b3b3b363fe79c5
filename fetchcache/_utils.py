from __future__ import annotations

import inspect
import time
import typing as tp
from pathlib import Path
from typing import AsyncIterable, AsyncIterator, Awaitable, Iterable

T = tp.TypeVar("T")


async def make_async_iterator(
    iterable: Iterable[bytes],
) -> AsyncIterator[bytes]:
    for item in iterable:
        yield item


async def collect(stream: AsyncIterable[bytes]) -> bytes:
    return b"".join([chunk async for chunk in stream])


async def maybe_await(value: tp.Union[T, Awaitable[T]]) -> T:
    """
    Await `value` if it is awaitable, otherwise return it as is.

    User supplied hooks (key calculators, cache strategies) may be either
    plain functions or coroutine functions.
    """
    if inspect.isawaitable(value):
        return tp.cast(T, await value)
    return tp.cast(T, value)


def float_seconds_to_int_milliseconds(seconds: float) -> int:
    """
    Converts floating-point seconds to an integer number of milliseconds.

    Example:
        ```
        float_seconds_to_int_milliseconds(1.5)  # 1500
        ```
    """
    return int(seconds * 1000)


def now_in_milliseconds() -> int:
    return int(time.time() * 1000)


def expiration_from_ttl(ttl: tp.Optional[tp.Union[int, float]]) -> tp.Optional[int]:
    if ttl is None:
        return None
    return now_in_milliseconds() + float_seconds_to_int_milliseconds(ttl)


def is_expired(expiration: tp.Optional[int]) -> bool:
    return expiration is not None and expiration < now_in_milliseconds()


def ensure_cache_dir(base_path: Path | None = None) -> Path:
    _base_path = Path(base_path) if base_path is not None else Path(".cache/fetchcache")
    _gitignore_file = _base_path / ".gitignore"

    _base_path.mkdir(parents=True, exist_ok=True)

    if not _gitignore_file.is_file():
        with open(_gitignore_file, "w", encoding="utf-8") as f:
            f.write("# Automatically created by fetchcache\n*")
    return _base_path
