import os
from typing import Dict, List, Optional, Set, Tuple

import anyio
import pytest

from swcache import (
    PRECACHE_URLS,
    AsyncCacheManager,
    AsyncInMemoryCacheStorage,
    AsyncInMemorySyncQueue,
    Headers,
    NetworkError,
    Request,
    Response,
    WorkerOptions,
)
from swcache._utils import make_async_iterator

ORIGIN = "https://shop.example"


class FakeNetwork:
    """
    Scripted origin server used in place of the network.

    URLs that were never served answer 404. Setting `offline` makes every
    request fail the way an unreachable network does.
    """

    def __init__(self) -> None:
        self.routes: Dict[str, Tuple[int, bytes, Dict[str, str], Optional[float]]] = {}
        self.hanging: Set[str] = set()
        self.offline = False
        self.received: List[Tuple[str, str, bytes]] = []

    def serve(
        self,
        url: str,
        body: bytes = b"",
        status_code: int = 200,
        headers: Optional[Dict[str, str]] = None,
        delay: Optional[float] = None,
    ) -> None:
        self.routes[url] = (status_code, body, headers or {}, delay)

    def hang(self, url: str) -> None:
        self.hanging.add(url)

    @property
    def urls(self) -> List[str]:
        return [url for _, url, _ in self.received]

    async def __call__(self, request: Request) -> Response:
        body = await request.aread()
        self.received.append((request.method, request.url, body))
        if self.offline:
            raise NetworkError("Failed to fetch")
        if request.url in self.hanging:
            await anyio.sleep_forever()

        route = self.routes.get(request.url)
        if route is None:
            return Response(status_code=404)

        status_code, response_body, headers, delay = route
        if delay is not None:
            await anyio.sleep(delay)
        return Response(
            status_code=status_code,
            headers=Headers(headers),
            stream=make_async_iterator([response_body]),
        )


@pytest.fixture
def options() -> WorkerOptions:
    return WorkerOptions(origin=ORIGIN)


@pytest.fixture
def network() -> FakeNetwork:
    fake_network = FakeNetwork()
    for path in PRECACHE_URLS:
        fake_network.serve(ORIGIN + path, body=f"precached {path}".encode())
    return fake_network


@pytest.fixture
def storage() -> AsyncInMemoryCacheStorage:
    return AsyncInMemoryCacheStorage()


@pytest.fixture
def sync_queue() -> AsyncInMemorySyncQueue:
    return AsyncInMemorySyncQueue()


@pytest.fixture
def manager(
    network: FakeNetwork,
    storage: AsyncInMemoryCacheStorage,
    options: WorkerOptions,
    sync_queue: AsyncInMemorySyncQueue,
) -> AsyncCacheManager:
    return AsyncCacheManager(request_sender=network, storage=storage, options=options, sync_queue=sync_queue)


@pytest.fixture()
def use_temp_dir(tmpdir):
    cur_dir = os.getcwd()
    os.chdir(tmpdir)
    yield
    os.chdir(cur_dir)
