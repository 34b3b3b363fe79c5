from __future__ import annotations

import typing as tp

import httpx

__all__ = (
    "HeaderTypes",
    "has_only_if_cached",
    "normalize_headers",
    "parse_directives",
)

HeaderTypes = tp.Union[
    httpx.Headers,
    tp.Mapping[str, str],
    tp.Sequence[tp.Tuple[str, str]],
]

ONLY_IF_CACHED = "only-if-cached"


def parse_directives(cache_control_values: tp.Iterable[str]) -> tp.List[str]:
    """
    Splits `Cache-Control` values into lower-cased directives.

    Unlike a full Cache-Control parser this never fails: blank directives
    are skipped and surrounding whitespace is ignored.

    Example:
        ```
        parse_directives(["No-Cache,  ONLY-IF-CACHED", "max-age=0"])
        # ['no-cache', 'only-if-cached', 'max-age=0']
        ```
    """
    directives = []
    for cache_control_value in cache_control_values:
        for directive in cache_control_value.split(","):
            directive = directive.strip(" \t").lower()
            if directive:
                directives.append(directive)
    return directives


def _contains_only_if_cached(headers: tp.Optional[HeaderTypes]) -> bool:
    if not headers:
        return False
    return ONLY_IF_CACHED in parse_directives(httpx.Headers(headers).get_list("cache-control"))


def has_only_if_cached(resource: tp.Union[str, httpx.Request], init_headers: tp.Optional[HeaderTypes]) -> bool:
    """
    Tells whether the caller asked for `Cache-Control: only-if-cached`,
    either through the init headers or through the request's own headers.
    """
    if _contains_only_if_cached(init_headers):
        return True

    if isinstance(resource, httpx.Request):
        return _contains_only_if_cached(resource.headers)

    return False


def _strip_only_if_cached(value: str) -> tp.Optional[str]:
    directives = [
        directive.strip(" \t")
        for directive in value.split(",")
        if directive.strip(" \t") and directive.strip(" \t").lower() != ONLY_IF_CACHED
    ]
    if not directives:
        return None
    return ", ".join(directives)


def normalize_headers(headers: tp.Optional[HeaderTypes]) -> tp.List[tp.List[str]]:
    """
    Turns headers into the form used for cache keys.

    Names are lower-cased, entries are ordered by name (values of a repeated
    header keep their relative order) and the `only-if-cached` directive is
    dropped because it selects the cache mode, not the cached resource.
    """
    if not headers:
        return []

    normalized = []
    for key, value in httpx.Headers(headers).multi_items():
        if key == "cache-control":
            stripped = _strip_only_if_cached(value)
            if stripped is None:
                continue
            value = stripped
        normalized.append([key, value])

    return sorted(normalized, key=lambda pair: pair[0])
