#!/usr/bin/env uv run
# /// script
# requires-python = ">=3.9"
# dependencies = [
#     "fetchcache",
# ]
#
# [tool.uv.sources]
# fetchcache = { path = "../", editable = true }
# ///

import asyncio

import fetchcache


async def fetch_and_print(fetcher: fetchcache.AsyncFetchCache, url: str) -> fetchcache.CachedResponse:
    print(f"\n➡ Fetching {url}...")
    response = await fetcher.fetch(url)
    body = await response.aread()

    print(f"📦 Status: {response.status} {response.status_text}")
    print(f"🔄 From Cache: {response.returned_from_cache}")
    print(f"📏 Body: {len(body)} bytes")
    return response


async def main():
    url = "https://www.example.com/"
    storage = fetchcache.AsyncFileStorage(ttl=60)

    async with fetchcache.create(storage=storage, should_cache_response=fetchcache.cache_ok_only) as fetcher:
        await fetch_and_print(fetcher, url)
        response = await fetch_and_print(fetcher, url)

        await response.eject_from_cache()
        await fetch_and_print(fetcher, url)

        offline = await fetcher.fetch(
            "https://www.example.com/never-fetched", {"headers": {"Cache-Control": "only-if-cached"}}
        )
        print(f"\n🚫 only-if-cached miss: {offline.status} {offline.status_text}")


if __name__ == "__main__":
    asyncio.run(main())
