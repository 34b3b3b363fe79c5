from __future__ import annotations

import typing as tp
from typing import Awaitable, Callable, Dict

import anyio

__all__ = ("AsyncKeyedLock",)

T = tp.TypeVar("T")


class _KeyLock:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = anyio.Lock()
        self.users = 0


class AsyncKeyedLock:
    """
    Mutual exclusion per key.

    Actions sharing a key run one after another, in the order they started
    waiting. Actions with different keys never wait for each other. A lock
    only lives while someone holds or awaits it.
    """

    def __init__(self) -> None:
        self._locks: Dict[str, _KeyLock] = {}

    async def do_with_exclusive_lock(self, key: str, action: Callable[[], Awaitable[T]]) -> T:
        key_lock = self._locks.get(key)
        if key_lock is None:
            key_lock = self._locks[key] = _KeyLock()

        key_lock.users += 1
        try:
            async with key_lock.lock:
                return await action()
        finally:
            key_lock.users -= 1
            if key_lock.users == 0:
                del self._locks[key]

    def is_locked(self, key: str) -> bool:
        key_lock = self._locks.get(key)
        return key_lock is not None and key_lock.lock.locked()

    def __len__(self) -> int:
        return len(self._locks)
