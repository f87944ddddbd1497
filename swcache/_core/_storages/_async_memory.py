from __future__ import annotations

import typing as tp
import uuid
from dataclasses import replace

from swcache._core._storages._async_base import AsyncBaseCache, AsyncBaseCacheStorage, AsyncBaseSyncQueue
from swcache._core.models import Entry, QueuedRequest, Request, Response
from swcache._utils import generate_key, make_async_iterator


class AsyncInMemoryCache(AsyncBaseCache):
    def __init__(self, name: str) -> None:
        self.name = name
        self._entries: tp.Dict[str, Entry] = {}

    async def match(self, request: Request) -> tp.Optional[Response]:
        if request.method.upper() != "GET":
            return None
        entry = self._entries.get(generate_key(request))
        return entry.to_response() if entry is not None else None

    async def put(self, request: Request, response: Response) -> None:
        body = await response.aread()
        key = generate_key(request)
        # dict keeps first-insertion order; overwriting an entry should move it to the end
        self._entries.pop(key, None)
        self._entries[key] = Entry(
            cache_name=self.name,
            key=key,
            request=replace(request, stream=make_async_iterator([])),
            response=replace(response, stream=make_async_iterator([])),
            body=body,
        )

    async def delete(self, request: Request) -> bool:
        return self._entries.pop(generate_key(request), None) is not None

    async def keys(self) -> tp.List[Request]:
        return [entry.request for entry in self._entries.values()]


class AsyncInMemoryCacheStorage(AsyncBaseCacheStorage):
    """
    Cache storage that lives in process memory.

    Nothing survives the process, which makes it the storage of choice for tests.
    """

    def __init__(self) -> None:
        self._caches: tp.Dict[str, AsyncInMemoryCache] = {}

    async def open(self, name: str) -> AsyncInMemoryCache:
        if name not in self._caches:
            self._caches[name] = AsyncInMemoryCache(name)
        return self._caches[name]

    async def has(self, name: str) -> bool:
        return name in self._caches

    async def delete(self, name: str) -> bool:
        return self._caches.pop(name, None) is not None

    async def keys(self) -> tp.List[str]:
        return list(self._caches)


class AsyncInMemorySyncQueue(AsyncBaseSyncQueue):
    def __init__(self) -> None:
        self._queue: tp.Dict[uuid.UUID, QueuedRequest] = {}

    async def push(self, request: Request) -> QueuedRequest:
        body = await request.aread()
        queued = QueuedRequest(request=replace(request, stream=make_async_iterator([])), body=body)
        self._queue[queued.id] = queued
        return queued

    async def entries(self) -> tp.List[QueuedRequest]:
        return list(self._queue.values())

    async def update(self, queued: QueuedRequest) -> None:
        if queued.id in self._queue:
            self._queue[queued.id] = queued

    async def remove(self, id: uuid.UUID) -> None:
        self._queue.pop(id, None)
