from __future__ import annotations

import enum
import logging
import types
from typing import Awaitable, Callable, Dict, List, Optional
from urllib.parse import urljoin

import anyio
from anyio.abc import TaskGroup
from typing_extensions import Self, assert_never

from swcache._core._routing import Strategy, WorkerOptions
from swcache._core._storages._async_base import AsyncBaseCacheStorage, AsyncBaseSyncQueue
from swcache._core._storages._async_memory import AsyncInMemorySyncQueue
from swcache._core._storages._async_sqlite import AsyncSqliteCacheStorage
from swcache._core._strategies import (
    AnyState,
    CouldNotBeStored,
    CouldNotFetch,
    FetchFromNetwork,
    FromCache,
    IdleWorker,
    LookupCache,
    Passthrough,
    QueueForSync,
    StoreAndUse,
    SyntheticResponse,
)
from swcache._core.models import Request, Response, SyncResult
from swcache._exceptions import NetworkError, PrecacheError
from swcache._synchronization import AsyncLock, first_completed
from swcache._utils import partition

logger = logging.getLogger("swcache.worker")


class WorkerState(str, enum.Enum):
    PARSED = "parsed"
    INSTALLING = "installing"
    INSTALLED = "installed"
    ACTIVATING = "activating"
    ACTIVATED = "activated"
    REDUNDANT = "redundant"


class AsyncCacheManager:
    """
    Service-worker style cache manager.

    Intercepts the requests a page makes and answers them from two versioned
    cache stores (a precache filled on install and a runtime cache filled as
    responses come in) or from the network, depending on the request.

    Like the cache proxy of an HTTP client it never sends requests itself: it
    delegates to a user-provided callable, so any HTTP library can sit behind it.

    Args:
        request_sender: Callable that sends requests and returns responses. It must raise
            `NetworkError` when the network can't be reached.
        storage: Storage backend holding the cache stores. Defaults to AsyncSqliteCacheStorage.
        options: Worker configuration. Defaults to WorkerOptions().
        sync_queue: Queue of mutating requests waiting for a background sync.
            Defaults to AsyncInMemorySyncQueue.

    Using the manager as an async context manager lets network-first cache writes
    run in the background; the context exits once they are done.
    """

    def __init__(
        self,
        request_sender: Callable[[Request], Awaitable[Response]],
        storage: AsyncBaseCacheStorage | None = None,
        options: WorkerOptions | None = None,
        sync_queue: AsyncBaseSyncQueue | None = None,
    ) -> None:
        self.send_request = request_sender
        self.storage = storage if storage is not None else AsyncSqliteCacheStorage()
        self.options = options if options is not None else WorkerOptions()
        self.sync_queue = sync_queue if sync_queue is not None else AsyncInMemorySyncQueue()
        self.state = WorkerState.PARSED
        self.skip_waiting_requested = False
        self.clients_claimed = False
        self._task_group: Optional[TaskGroup] = None
        self._sync_lock = AsyncLock()

    async def __aenter__(self) -> Self:
        self._task_group = anyio.create_task_group()
        await self._task_group.__aenter__()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None = None,
        exc_value: BaseException | None = None,
        traceback: types.TracebackType | None = None,
    ) -> None:
        task_group, self._task_group = self._task_group, None
        assert task_group is not None
        await task_group.__aexit__(exc_type, exc_value, traceback)

    @property
    def cache_names(self) -> List[str]:
        return [self.options.runtime_name, self.options.precache_name]

    async def on_install(self) -> None:
        """
        Precache the application shell.

        Every precache URL is fetched concurrently; the responses are only written
        once all of them succeeded. A single failure fails the whole install and
        leaves the worker redundant.

        Raises:
            PrecacheError: a precache URL couldn't be fetched or didn't answer with a success status.
        """
        self.state = WorkerState.INSTALLING
        requests = [
            Request(method="GET", url=urljoin(self.options.origin, path)) for path in self.options.precache_urls
        ]
        logger.info(f"Precaching {len(requests)} resources into {self.options.precache_name}")

        responses: Dict[int, Response] = {}
        failures: Dict[int, PrecacheError] = {}

        async def precache_one(index: int, request: Request) -> None:
            try:
                response = await self.send_request(request)
                if response.ok:
                    await response.aread()
            except Exception as exc:
                error = PrecacheError(f"Failed to fetch {request.url}")
                error.__cause__ = exc
                failures[index] = error
                return
            if not response.ok:
                failures[index] = PrecacheError(f"Precaching {request.url} failed with status {response.status_code}")
                return
            responses[index] = response

        async with anyio.create_task_group() as task_group:
            for index, request in enumerate(requests):
                task_group.start_soon(precache_one, index, request)

        if failures:
            # Report in precache-list order, not completion order
            first_failure = failures[min(failures)]
            self.state = WorkerState.REDUNDANT
            logger.error(f"Install failed: {first_failure}")
            raise first_failure

        cache = await self.storage.open(self.options.precache_name)
        for index, request in enumerate(requests):
            await cache.put(request, responses[index])

        self.state = WorkerState.INSTALLED
        self.skip_waiting_requested = self.options.skip_waiting

    async def on_activate(self) -> List[str]:
        """
        Purge every stale cache generation and take control of open pages.

        Returns:
            The names of the deleted stores.
        """
        self.state = WorkerState.ACTIVATING
        current = set(self.cache_names)
        stale, _ = partition(await self.storage.keys(), lambda name: name not in current)

        for name in stale:
            logger.info(f"Deleting stale cache generation {name}")
            await self.storage.delete(name)

        await self.storage.open(self.options.precache_name)
        await self.storage.open(self.options.runtime_name)

        self.clients_claimed = True
        self.state = WorkerState.ACTIVATED
        return stale

    async def on_fetch(self, request: Request) -> Optional[Response]:
        """
        Handle an intercepted request.

        Returns:
            The response to give to the page, or None when the worker doesn't
            intervene and the host should perform the request natively.

        Raises:
            NetworkError: the strategy has no fallback for the network failure.
        """
        state: AnyState = IdleWorker(options=self.options)

        while state:
            logger.debug(f"Handling state: {state.__class__.__name__}")
            if isinstance(state, IdleWorker):
                state = state.next(request)
            elif isinstance(state, Passthrough):
                logger.debug(f"Not intercepting {request.method} {request.url} ({state.reason})")
                return None
            elif isinstance(state, LookupCache):
                state = state.next(await self.storage.match(state.request, self.cache_names))
            elif isinstance(state, FetchFromNetwork):
                state = await self._handle_fetch(state)
            elif isinstance(state, StoreAndUse):
                return await self._handle_store_and_use(state)
            elif isinstance(state, CouldNotBeStored):
                return state.response
            elif isinstance(state, FromCache):
                return state.response
            elif isinstance(state, SyntheticResponse):
                return state.response
            elif isinstance(state, QueueForSync):
                state = await self._handle_queue_for_sync(state)
            elif isinstance(state, CouldNotFetch):
                raise state.error
            else:
                assert_never(state)

        raise RuntimeError("Unreachable")

    async def on_sync(self, tag: str) -> Optional[SyncResult]:
        """
        Replay the queued requests when the host delivers the background sync event.

        Requests are replayed in arrival order. A network failure stops the replay
        and counts as an attempt for the request that failed; a request that used
        up `max_sync_attempts` is dropped.

        Returns:
            The outcome of the replay, or None if the tag isn't the one this worker registered.
        """
        if tag != self.options.sync_tag:
            logger.debug(f"Ignoring sync event with tag {tag!r}")
            return None

        async with self._sync_lock:
            return await self._replay_queue()

    async def _replay_queue(self) -> SyncResult:
        result = SyncResult()
        queued_requests = await self.sync_queue.entries()
        logger.info(f"Background sync triggered, {len(queued_requests)} queued requests")

        for position, queued in enumerate(queued_requests):
            try:
                response = await self.send_request(queued.to_request())
            except NetworkError as exc:
                queued.attempts += 1
                if queued.attempts >= self.options.max_sync_attempts:
                    logger.error(
                        f"Dropping {queued.request.method} {queued.request.url} after {queued.attempts} attempts: {exc}"
                    )
                    await self.sync_queue.remove(queued.id)
                    result.dropped.append(queued)
                    result.pending = len(queued_requests) - position - 1
                else:
                    await self.sync_queue.update(queued)
                    result.pending = len(queued_requests) - position
                break

            await response.aread()
            if not response.ok:
                logger.warning(
                    f"Replayed {queued.request.method} {queued.request.url} answered with {response.status_code}"
                )
            await self.sync_queue.remove(queued.id)
            result.replayed.append(queued)

        return result

    async def close(self) -> None:
        await self.storage.close()
        await self.sync_queue.close()

    async def _handle_fetch(self, state: FetchFromNetwork) -> AnyState:
        request = state.request
        if state.strategy is Strategy.NETWORK_ONLY_WITH_QUEUE:
            # Buffer the body so the request can still be queued after the send consumed it
            await request.aread()

        try:
            if state.timeout is not None:
                response = await first_completed(lambda: self.send_request(request), state.timeout)
            else:
                response = await self.send_request(request)
        except NetworkError as exc:
            logger.debug(f"Network request for {request.url} failed: {exc!r}")
            return state.fail(exc)
        return state.next(response)

    async def _handle_store_and_use(self, state: StoreAndUse) -> Response:
        cached_copy = await state.response.aclone()
        if state.in_background and self._task_group is not None:
            self._task_group.start_soon(self._store, state.request, cached_copy)
        else:
            await self._store(state.request, cached_copy)
        return state.response

    async def _store(self, request: Request, response: Response) -> None:
        # A failed write never costs the page its response
        logger.debug(f"Storing response for {request.url} in {self.options.runtime_name}")
        try:
            cache = await self.storage.open(self.options.runtime_name)
            await cache.put(request, response)
        except Exception:
            logger.exception(f"Failed to store response for {request.url}")

    async def _handle_queue_for_sync(self, state: QueueForSync) -> AnyState:
        queued = await self.sync_queue.push(state.request)
        logger.info(f"Queued {state.request.method} {state.request.url} for background sync ({queued.id})")
        return state.next()
