import gzip

import httpx
import pytest

from fetchcache import BodySnipingResponse
from fetchcache._utils import collect


def make_live_response(content: bytes, **headers: str) -> httpx.Response:
    return httpx.Response(
        200,
        headers={key.replace("_", "-"): value for key, value in headers.items()},
        stream=httpx.ByteStream(content),
        request=httpx.Request("GET", "https://example.com"),
    )


@pytest.mark.anyio
async def test_attributes_come_from_the_wrapped_response():
    sniping = BodySnipingResponse(make_live_response(b"test", content_type="text/plain"))

    assert sniping.status_code == 200
    assert sniping.is_success
    assert sniping.headers["content-type"] == "text/plain"
    assert not sniping.body_sniped


@pytest.mark.anyio
async def test_untouched_body_streams_from_the_network():
    response = make_live_response(b"test")
    sniping = BodySnipingResponse(response)

    assert await collect(sniping.body_stream()) == b"test"
    assert response.is_closed


@pytest.mark.anyio
async def test_read_body_is_replayed():
    response = make_live_response(b'{"cache": true}')
    sniping = BodySnipingResponse(response)

    assert await sniping.aread() == b'{"cache": true}'
    assert sniping.json() == {"cache": True}
    assert sniping.body_sniped
    assert response.is_closed

    assert await collect(sniping.body_stream()) == b'{"cache": true}'
    assert await collect(sniping.body_stream()) == b'{"cache": true}'


@pytest.mark.anyio
async def test_decoded_reads_keep_the_raw_body():
    compressed = gzip.compress(b"hello world")
    sniping = BodySnipingResponse(make_live_response(compressed, content_encoding="gzip"))

    assert b"".join([chunk async for chunk in sniping.aiter_bytes()]) == b"hello world"
    assert "".join([chunk async for chunk in sniping.aiter_text()]) == "hello world"
    assert [line async for line in sniping.aiter_lines()] == ["hello world"]
    assert b"".join([chunk async for chunk in sniping.aiter_raw()]) == compressed

    assert await collect(sniping.body_stream()) == compressed


@pytest.mark.anyio
async def test_empty_body():
    sniping = BodySnipingResponse(make_live_response(b""))

    assert await sniping.aread() == b""
    assert await collect(sniping.body_stream()) == b""


@pytest.mark.anyio
async def test_closing_an_unstarted_body_stream_closes_the_response():
    response = make_live_response(b"test")
    sniping = BodySnipingResponse(response)

    body_stream = sniping.body_stream()
    await body_stream.aclose()  # type: ignore[attr-defined]

    assert response.is_closed
