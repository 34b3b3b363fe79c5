import httpx

from fetchcache._headers import has_only_if_cached, normalize_headers, parse_directives


def test_parse_directives():
    assert parse_directives(["No-Cache,  ONLY-IF-CACHED", "max-age=0", " , "]) == [
        "no-cache",
        "only-if-cached",
        "max-age=0",
    ]


def test_parse_directives_empty():
    assert parse_directives([]) == []
    assert parse_directives([""]) == []


def test_has_only_if_cached_in_init_headers():
    assert has_only_if_cached("https://example.com", {"Cache-Control": "max-age=0, Only-If-Cached"})
    assert not has_only_if_cached("https://example.com", {"Cache-Control": "no-cache"})
    assert not has_only_if_cached("https://example.com", None)


def test_has_only_if_cached_in_request_headers():
    request = httpx.Request("GET", "https://example.com", headers={"Cache-Control": "only-if-cached"})

    assert has_only_if_cached(request, None)
    assert not has_only_if_cached(httpx.Request("GET", "https://example.com"), None)


def test_normalize_headers():
    assert normalize_headers([("X-B", "2"), ("Accept", "text/html"), ("x-b", "1")]) == [
        ["accept", "text/html"],
        ["x-b", "2"],
        ["x-b", "1"],
    ]


def test_normalize_headers_strips_only_if_cached():
    assert normalize_headers({"Cache-Control": "only-if-cached"}) == []
    assert normalize_headers({"Cache-Control": "no-store, only-if-cached"}) == [["cache-control", "no-store"]]


def test_normalize_headers_empty():
    assert normalize_headers(None) == []
    assert normalize_headers({}) == []
