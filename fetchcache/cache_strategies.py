from __future__ import annotations

import typing as tp

__all__ = ("cache_non_5xx_only", "cache_ok_only")


def cache_ok_only(response: tp.Any) -> bool:
    """Caches only 2xx responses."""
    return bool(response.is_success)


def cache_non_5xx_only(response: tp.Any) -> bool:
    """Caches everything except server errors."""
    return bool(response.status_code < 500)


def cache_always(response: tp.Any) -> bool:
    return True
