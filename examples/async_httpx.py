#!/usr/bin/env uv run
# /// script
# requires-python = ">=3.9"
# dependencies = [
#     "swcache",
# ]
#
# [tool.uv.sources]
# swcache = { path = "../", editable = true }
# ///

import asyncio
from typing import cast

import anysqlite

from swcache import AsyncSqliteCacheStorage, ResponseMetadata, WorkerOptions
from swcache.httpx import AsyncCacheClient


async def fetch_and_print(client, url: str, destination: str = ""):
    print(f"\n➡ Sending request to {url}...")
    headers = {"Sec-Fetch-Dest": destination} if destination else {}
    response = await client.get(url, headers=headers)
    meta = cast(ResponseMetadata, response.extensions)

    print(f"🧭 Strategy: {meta.get('swcache_strategy', 'not intercepted')}")
    print(f"🚀 Was Stored: {meta.get('swcache_stored')}")
    print(f"🔄 From Cache: {meta.get('swcache_from_cache')}")
    print(f"⏰ Created At: {meta.get('swcache_created_at')}")


async def main():
    origin = "https://www.python.org"
    options = WorkerOptions(origin=origin, precache_urls=("/",))
    storage = AsyncSqliteCacheStorage(connection=await anysqlite.connect(":memory:"))

    async with AsyncCacheClient(storage=storage, options=options) as client:
        await client.manager.on_install()
        await client.manager.on_activate()

        await fetch_and_print(client, f"{origin}/", destination="document")
        await fetch_and_print(client, f"{origin}/static/img/python-logo.png", destination="image")
        await fetch_and_print(client, f"{origin}/static/img/python-logo.png", destination="image")


if __name__ == "__main__":
    asyncio.run(main())
