from datetime import datetime
from zoneinfo import ZoneInfo

import anyio
import pytest
from inline_snapshot import snapshot
from time_machine import travel

from swcache import (
    AsyncCacheManager,
    AsyncInMemoryCacheStorage,
    Headers,
    NetworkError,
    NetworkTimeout,
    PrecacheError,
    Request,
    Response,
    WorkerOptions,
    WorkerState,
)

ORIGIN = "https://shop.example"


def create_request(path: str, method: str = "GET", destination: str = "") -> Request:
    return Request(method=method, url=ORIGIN + path, destination=destination)


async def stored_urls(storage: AsyncInMemoryCacheStorage, name: str) -> list:
    cache = await storage.open(name)
    return [request.url for request in await cache.keys()]


# =============================================================================
# Lifecycle
# =============================================================================


@pytest.mark.anyio
async def test_install_precaches_the_shell(manager: AsyncCacheManager, storage: AsyncInMemoryCacheStorage) -> None:
    await manager.on_install()

    assert manager.state is WorkerState.INSTALLED
    assert manager.skip_waiting_requested
    assert await storage.keys() == ["precache-v2"]
    assert await stored_urls(storage, "precache-v2") == snapshot(
        [
            "https://shop.example/",
            "https://shop.example/manifest.json",
            "https://shop.example/robots.txt",
            "https://shop.example/sitemap.xml",
        ]
    )


@pytest.mark.anyio
async def test_install_logs(manager: AsyncCacheManager, caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level("INFO", logger="swcache.worker"):
        await manager.on_install()

    assert caplog.messages == snapshot(["Precaching 4 resources into precache-v2"])


@pytest.mark.anyio
async def test_install_fails_when_a_precache_url_fails(
    manager: AsyncCacheManager, storage: AsyncInMemoryCacheStorage, network
) -> None:
    network.serve(ORIGIN + "/robots.txt", status_code=500)

    with pytest.raises(PrecacheError, match="/robots.txt failed with status 500"):
        await manager.on_install()

    assert manager.state is WorkerState.REDUNDANT
    assert not manager.skip_waiting_requested
    assert await storage.keys() == []


@pytest.mark.anyio
async def test_install_fails_when_offline(manager: AsyncCacheManager, storage: AsyncInMemoryCacheStorage, network) -> None:
    network.offline = True

    with pytest.raises(PrecacheError) as exc_info:
        await manager.on_install()

    assert isinstance(exc_info.value.__cause__, NetworkError)
    assert manager.state is WorkerState.REDUNDANT
    assert not await storage.has("precache-v2")


@pytest.mark.anyio
async def test_install_reports_first_failure_in_precache_order(
    manager: AsyncCacheManager, storage: AsyncInMemoryCacheStorage, network
) -> None:
    network.serve(ORIGIN + "/manifest.json", status_code=503, delay=0.1)
    network.serve(ORIGIN + "/robots.txt", status_code=500)

    with pytest.raises(PrecacheError, match="/manifest.json failed with status 503"):
        await manager.on_install()

    assert manager.state is WorkerState.REDUNDANT
    assert await storage.keys() == []


@pytest.mark.anyio
async def test_install_fails_on_unexpected_sender_error(storage: AsyncInMemoryCacheStorage, options: WorkerOptions) -> None:
    async def broken(request: Request) -> Response:
        raise ValueError("certificate verify failed")

    manager = AsyncCacheManager(request_sender=broken, storage=storage, options=options)

    with pytest.raises(PrecacheError, match="Failed to fetch https://shop.example/") as exc_info:
        await manager.on_install()

    assert isinstance(exc_info.value.__cause__, ValueError)
    assert manager.state is WorkerState.REDUNDANT
    assert await storage.keys() == []


@pytest.mark.anyio
async def test_install_without_skip_waiting(network, storage: AsyncInMemoryCacheStorage) -> None:
    manager = AsyncCacheManager(
        request_sender=network, storage=storage, options=WorkerOptions(origin=ORIGIN, skip_waiting=False)
    )

    await manager.on_install()

    assert manager.state is WorkerState.INSTALLED
    assert not manager.skip_waiting_requested


@pytest.mark.anyio
async def test_activate_purges_stale_generations(
    manager: AsyncCacheManager, storage: AsyncInMemoryCacheStorage, caplog: pytest.LogCaptureFixture
) -> None:
    await storage.open("precache-v1")
    await storage.open("runtime-v1")
    await storage.open("other")

    with caplog.at_level("INFO", logger="swcache.worker"):
        deleted = await manager.on_activate()

    assert deleted == ["precache-v1", "runtime-v1", "other"]
    assert sorted(await storage.keys()) == ["precache-v2", "runtime-v2"]
    assert manager.state is WorkerState.ACTIVATED
    assert manager.clients_claimed
    assert caplog.messages == snapshot(
        [
            "Deleting stale cache generation precache-v1",
            "Deleting stale cache generation runtime-v1",
            "Deleting stale cache generation other",
        ]
    )


@pytest.mark.anyio
async def test_activate_keeps_current_generations(manager: AsyncCacheManager, storage: AsyncInMemoryCacheStorage) -> None:
    await manager.on_install()
    runtime = await storage.open("runtime-v2")
    await runtime.put(create_request("/static/app.js"), Response(status_code=200))

    deleted = await manager.on_activate()

    assert deleted == []
    assert await stored_urls(storage, "runtime-v2") == ["https://shop.example/static/app.js"]
    assert len(await stored_urls(storage, "precache-v2")) == 4


# =============================================================================
# Passthrough
# =============================================================================


@pytest.mark.anyio
async def test_passthrough_returns_none(manager: AsyncCacheManager, network, caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level("DEBUG", logger="swcache.worker"):
        response = await manager.on_fetch(create_request("/api/cart", method="POST"))

    assert response is None
    assert network.received == []
    assert caplog.messages == snapshot(
        [
            "Handling state: IdleWorker",
            "Handling state: Passthrough",
            "Not intercepting POST https://shop.example/api/cart (method)",
        ]
    )


@pytest.mark.anyio
async def test_browser_extension_request_is_not_touched(manager: AsyncCacheManager, network) -> None:
    assert await manager.on_fetch(Request(method="GET", url="chrome-extension://abc/script.js")) is None
    assert network.received == []


# =============================================================================
# Cache-first
# =============================================================================


@pytest.mark.anyio
async def test_cache_first_hit_does_not_touch_network(
    manager: AsyncCacheManager, network, caplog: pytest.LogCaptureFixture
) -> None:
    network.serve(ORIGIN + "/static/app.js", body=b"console.log('v1')")
    await manager.on_activate()
    await manager.on_fetch(create_request("/static/app.js"))
    network.serve(ORIGIN + "/static/app.js", body=b"console.log('v2')")

    with caplog.at_level("DEBUG", logger="swcache.worker"):
        response = await manager.on_fetch(create_request("/static/app.js"))

    assert response is not None
    assert await response.aread() == b"console.log('v1')"
    assert network.urls == ["https://shop.example/static/app.js"]
    assert response.metadata["swcache_from_cache"] is True
    assert caplog.messages == snapshot(
        [
            "Handling state: IdleWorker",
            "Handling state: LookupCache",
            "Handling state: FromCache",
        ]
    )


@pytest.mark.anyio
async def test_cache_first_miss_fetches_and_stores(
    manager: AsyncCacheManager, storage: AsyncInMemoryCacheStorage, network, caplog: pytest.LogCaptureFixture
) -> None:
    network.serve(ORIGIN + "/img/logo.png", body=b"\x89PNG", headers={"Content-Type": "image/png"})

    with caplog.at_level("DEBUG", logger="swcache.worker"):
        response = await manager.on_fetch(create_request("/img/logo.png", destination="image"))

    assert response is not None
    assert response.status_code == 200
    assert await response.aread() == b"\x89PNG"
    assert response.metadata["swcache_stored"] is True
    assert await stored_urls(storage, "runtime-v2") == ["https://shop.example/img/logo.png"]
    assert caplog.messages == snapshot(
        [
            "Handling state: IdleWorker",
            "Handling state: LookupCache",
            "Handling state: FetchFromNetwork",
            "Handling state: StoreAndUse",
            "Storing response for https://shop.example/img/logo.png in runtime-v2",
        ]
    )


@pytest.mark.anyio
async def test_cache_first_does_not_store_errors(
    manager: AsyncCacheManager, storage: AsyncInMemoryCacheStorage, network
) -> None:
    network.serve(ORIGIN + "/static/app.css", status_code=500)

    response = await manager.on_fetch(create_request("/static/app.css"))

    assert response is not None
    assert response.status_code == 500
    assert not await storage.has("runtime-v2")


@pytest.mark.anyio
async def test_cache_first_offline_image_is_404(manager: AsyncCacheManager, network) -> None:
    network.offline = True

    response = await manager.on_fetch(create_request("/img/hero.webp", destination="image"))

    assert response is not None
    assert response.status_code == 404
    assert await response.aread() == b""


@pytest.mark.anyio
async def test_cache_first_offline_script_fails(manager: AsyncCacheManager, network) -> None:
    network.offline = True

    with pytest.raises(NetworkError, match="Failed to fetch"):
        await manager.on_fetch(create_request("/static/app.js", destination="script"))


@pytest.mark.anyio
async def test_store_locations_are_served_from_cache_when_offline(manager: AsyncCacheManager, network) -> None:
    network.serve(ORIGIN + "/api/store-locations", body=b'[{"id": 1}]', headers={"Content-Type": "application/json"})
    await manager.on_fetch(create_request("/api/store-locations"))
    network.offline = True

    response = await manager.on_fetch(create_request("/api/store-locations"))

    assert response is not None
    assert response.status_code == 200
    assert response.headers["content-type"] == "application/json"
    assert await response.aread() == b'[{"id": 1}]'
    assert network.urls == ["https://shop.example/api/store-locations"]


@pytest.mark.anyio
async def test_fragment_is_ignored_for_lookups(manager: AsyncCacheManager, network) -> None:
    network.serve(ORIGIN + "/static/app.css", body=b"body{}")
    await manager.on_fetch(create_request("/static/app.css"))
    network.offline = True

    response = await manager.on_fetch(create_request("/static/app.css#section"))

    assert response is not None
    assert await response.aread() == b"body{}"


# =============================================================================
# Network-first (navigations)
# =============================================================================


@pytest.mark.anyio
async def test_navigation_uses_fresh_network_response(
    manager: AsyncCacheManager, storage: AsyncInMemoryCacheStorage, network
) -> None:
    network.serve(ORIGIN + "/products/42", body=b"<h1>v1</h1>")
    await manager.on_fetch(create_request("/products/42", destination="document"))
    network.serve(ORIGIN + "/products/42", body=b"<h1>v2</h1>")

    response = await manager.on_fetch(create_request("/products/42", destination="document"))

    assert response is not None
    assert await response.aread() == b"<h1>v2</h1>"
    assert response.metadata["swcache_from_cache"] is False
    assert network.urls == ["https://shop.example/products/42", "https://shop.example/products/42"]

    cached = await storage.match(create_request("/products/42"), ["runtime-v2"])
    assert cached is not None
    assert await cached.aread() == b"<h1>v2</h1>"


@pytest.mark.anyio
async def test_navigation_falls_back_to_cached_copy(manager: AsyncCacheManager, network) -> None:
    network.serve(ORIGIN + "/products/42", body=b"<h1>Sneakers</h1>")
    await manager.on_fetch(create_request("/products/42", destination="document"))
    network.offline = True

    response = await manager.on_fetch(create_request("/products/42", destination="document"))

    assert response is not None
    assert await response.aread() == b"<h1>Sneakers</h1>"
    assert response.metadata["swcache_from_cache"] is True


@pytest.mark.anyio
async def test_offline_home_page_is_served_from_precache(manager: AsyncCacheManager, network) -> None:
    await manager.on_install()
    await manager.on_activate()
    network.offline = True

    response = await manager.on_fetch(create_request("/", destination="document"))

    assert response is not None
    assert response.status_code == 200
    assert await response.aread() == b"precached /"


@pytest.mark.anyio
async def test_offline_navigation_without_cache_gets_offline_page(manager: AsyncCacheManager, network) -> None:
    network.offline = True

    response = await manager.on_fetch(create_request("/checkout", destination="document"))

    assert response is not None
    assert response.status_code == 503
    assert response.headers["content-type"] == "text/plain; charset=utf-8"
    assert await response.aread() == b"Offline - Please check your connection"
    assert response.metadata["swcache_synthetic"] is True


@pytest.mark.anyio
async def test_navigation_error_status_is_returned_not_stored(
    manager: AsyncCacheManager, storage: AsyncInMemoryCacheStorage, network
) -> None:
    response = await manager.on_fetch(create_request("/missing", destination="document"))

    assert response is not None
    assert response.status_code == 404
    assert await storage.match(create_request("/missing")) is None


@pytest.mark.anyio
async def test_navigation_write_runs_in_background(
    manager: AsyncCacheManager, storage: AsyncInMemoryCacheStorage, network
) -> None:
    network.serve(ORIGIN + "/products/7", body=b"<h1>Boots</h1>")

    async with manager:
        response = await manager.on_fetch(create_request("/products/7", destination="document"))
        assert response is not None
        assert await response.aread() == b"<h1>Boots</h1>"

    cached = await storage.match(create_request("/products/7"), manager.cache_names)
    assert cached is not None
    assert await cached.aread() == b"<h1>Boots</h1>"


@pytest.mark.anyio
async def test_background_write_failure_is_logged(network, options: WorkerOptions, caplog) -> None:
    class BrokenStorage(AsyncInMemoryCacheStorage):
        async def open(self, name: str):
            raise RuntimeError("Quota exceeded")

    manager = AsyncCacheManager(request_sender=network, storage=BrokenStorage(), options=options)
    network.serve(ORIGIN + "/products/7", body=b"<h1>Boots</h1>")

    with caplog.at_level("ERROR", logger="swcache.worker"):
        async with manager:
            response = await manager.on_fetch(create_request("/products/7", destination="document"))

    assert response is not None
    assert response.status_code == 200
    assert await response.aread() == b"<h1>Boots</h1>"
    assert caplog.messages == snapshot(["Failed to store response for https://shop.example/products/7"])


@pytest.mark.anyio
async def test_write_failure_without_background_tasks_is_logged(network, options: WorkerOptions, caplog) -> None:
    class BrokenStorage(AsyncInMemoryCacheStorage):
        async def open(self, name: str):
            raise RuntimeError("Quota exceeded")

    manager = AsyncCacheManager(request_sender=network, storage=BrokenStorage(), options=options)
    network.serve(ORIGIN + "/products/7", body=b"<h1>Boots</h1>")
    network.serve(ORIGIN + "/static/app.js", body=b"console.log(1)")

    with caplog.at_level("ERROR", logger="swcache.worker"):
        page = await manager.on_fetch(create_request("/products/7", destination="document"))
        script = await manager.on_fetch(create_request("/static/app.js", destination="script"))

    assert page is not None
    assert await page.aread() == b"<h1>Boots</h1>"
    assert script is not None
    assert await script.aread() == b"console.log(1)"
    assert caplog.messages == snapshot(
        [
            "Failed to store response for https://shop.example/products/7",
            "Failed to store response for https://shop.example/static/app.js",
        ]
    )
    assert all(record.exc_info is not None for record in caplog.records)


# =============================================================================
# Network-first with timeout (API)
# =============================================================================


@pytest.mark.anyio
async def test_api_response_is_stored(manager: AsyncCacheManager, storage: AsyncInMemoryCacheStorage, network) -> None:
    network.serve(ORIGIN + "/api/orders", body=b'{"orders": []}')

    response = await manager.on_fetch(create_request("/api/orders"))

    assert response is not None
    assert await response.aread() == b'{"orders": []}'
    assert response.metadata["swcache_strategy"] == "network-first-with-timeout"
    assert await stored_urls(storage, "runtime-v2") == ["https://shop.example/api/orders"]


@pytest.mark.anyio
async def test_slow_api_falls_back_to_cache(network, storage: AsyncInMemoryCacheStorage) -> None:
    manager = AsyncCacheManager(
        request_sender=network, storage=storage, options=WorkerOptions(origin=ORIGIN, api_timeout=0.2)
    )
    network.serve(ORIGIN + "/api/orders", body=b'{"orders": [1]}')
    await manager.on_fetch(create_request("/api/orders"))
    network.hang(ORIGIN + "/api/orders")

    with anyio.fail_after(2):
        response = await manager.on_fetch(create_request("/api/orders"))

    assert response is not None
    assert await response.aread() == b'{"orders": [1]}'
    assert response.metadata["swcache_from_cache"] is True


@pytest.mark.anyio
async def test_late_api_response_never_reaches_the_cache(network, storage: AsyncInMemoryCacheStorage) -> None:
    manager = AsyncCacheManager(
        request_sender=network, storage=storage, options=WorkerOptions(origin=ORIGIN, api_timeout=0.1)
    )
    network.serve(ORIGIN + "/api/orders", body=b"old")
    await manager.on_fetch(create_request("/api/orders"))
    network.serve(ORIGIN + "/api/orders", body=b"new", delay=0.3)

    response = await manager.on_fetch(create_request("/api/orders"))
    assert response is not None
    assert await response.aread() == b"old"

    await anyio.sleep(0.4)
    cached = await storage.match(create_request("/api/orders"))
    assert cached is not None
    assert await cached.aread() == b"old"


@pytest.mark.anyio
async def test_slow_api_without_cache_fails(network, storage: AsyncInMemoryCacheStorage) -> None:
    manager = AsyncCacheManager(
        request_sender=network, storage=storage, options=WorkerOptions(origin=ORIGIN, api_timeout=0.1)
    )
    network.hang(ORIGIN + "/api/orders")

    with pytest.raises(NetworkTimeout, match="No response within 0.1 seconds"):
        await manager.on_fetch(create_request("/api/orders"))


@pytest.mark.anyio
async def test_offline_api_without_cache_fails(manager: AsyncCacheManager, network) -> None:
    network.offline = True

    with pytest.raises(NetworkError):
        await manager.on_fetch(create_request("/api/orders"))


@pytest.mark.anyio
async def test_api_error_status_is_returned_as_is(
    manager: AsyncCacheManager, storage: AsyncInMemoryCacheStorage, network
) -> None:
    network.serve(ORIGIN + "/api/orders", body=b"old")
    await manager.on_fetch(create_request("/api/orders"))
    network.serve(ORIGIN + "/api/orders", status_code=500, body=b"boom")

    response = await manager.on_fetch(create_request("/api/orders"))

    assert response is not None
    assert response.status_code == 500
    cached = await storage.match(create_request("/api/orders"))
    assert cached is not None
    assert await cached.aread() == b"old"


@pytest.mark.anyio
async def test_request_headers_reach_the_network(manager: AsyncCacheManager, network) -> None:
    seen = []

    async def sender(request: Request) -> Response:
        seen.append(request.headers["authorization"])
        return await network(request)

    manager.send_request = sender
    request = Request(
        method="GET", url=ORIGIN + "/api/orders", headers=Headers({"Authorization": "Bearer token"})
    )

    await manager.on_fetch(request)

    assert seen == ["Bearer token"]


# =============================================================================
# Metadata
# =============================================================================


@pytest.mark.anyio
@travel(datetime(2024, 1, 1, 0, 0, 0, tzinfo=ZoneInfo("UTC")), tick=False)
async def test_cached_response_metadata(manager: AsyncCacheManager, network) -> None:
    network.serve(ORIGIN + "/static/app.js", body=b"1")
    first = await manager.on_fetch(create_request("/static/app.js"))
    second = await manager.on_fetch(create_request("/static/app.js"))

    assert first is not None and second is not None
    assert first.metadata == snapshot(
        {
            "swcache_strategy": "cache-first",
            "swcache_from_cache": False,
            "swcache_stored": True,
            "swcache_synthetic": False,
            "swcache_created_at": 1704067200.0,
        }
    )
    assert second.metadata == snapshot(
        {
            "swcache_from_cache": True,
            "swcache_stored": False,
            "swcache_created_at": 1704067200.0,
            "swcache_strategy": "cache-first",
            "swcache_synthetic": False,
        }
    )
