from __future__ import annotations

import logging
from typing import Optional

from swcache._async_worker import AsyncCacheManager, WorkerState
from swcache._core.models import Request, Response, SyncResult
from swcache._exceptions import PrecacheError

logger = logging.getLogger("swcache.registration")


class AsyncWorkerRegistration:
    """
    Host-side bookkeeping of the worker versions registered for a page.

    A registration holds at most one installing, one waiting and one active
    worker. Registering a new version installs it and, once installed, either
    activates it right away (it asked to skip waiting, or nothing is active yet)
    or parks it as waiting until `activate_waiting()` is called. The previously
    active version becomes redundant when it is replaced.

    Example:
        ```python
        registration = AsyncWorkerRegistration()
        await registration.register(AsyncCacheManager(request_sender=send))
        response = await registration.fetch(Request("GET", "https://shop.example/"))
        ```
    """

    def __init__(self) -> None:
        self.installing: Optional[AsyncCacheManager] = None
        self.waiting: Optional[AsyncCacheManager] = None
        self.active: Optional[AsyncCacheManager] = None

    @property
    def update_available(self) -> bool:
        return self.waiting is not None

    async def register(self, worker: AsyncCacheManager) -> AsyncCacheManager:
        """
        Install a worker version and activate it when allowed.

        Raises:
            PrecacheError: the install failed. The currently active worker, if any, keeps control.
        """
        self.installing = worker
        try:
            await worker.on_install()
        except PrecacheError:
            logger.warning("Worker installation failed, keeping the current version")
            raise
        finally:
            self.installing = None

        if self.active is not None:
            logger.info("New version available")

        if worker.skip_waiting_requested or self.active is None:
            await self._activate(worker)
        else:
            if self.waiting is not None:
                self.waiting.state = WorkerState.REDUNDANT
            self.waiting = worker
        return worker

    async def activate_waiting(self) -> Optional[AsyncCacheManager]:
        """
        Promote the waiting worker, as happens once every page controlled by the old one is closed.
        """
        if self.waiting is None:
            return None
        worker = self.waiting
        await self._activate(worker)
        return worker

    async def fetch(self, request: Request) -> Optional[Response]:
        """
        Dispatch a request to the active worker. None means it isn't intercepted.
        """
        if self.active is None:
            return None
        return await self.active.on_fetch(request)

    async def sync(self, tag: str) -> Optional[SyncResult]:
        if self.active is None:
            return None
        return await self.active.on_sync(tag)

    async def _activate(self, worker: AsyncCacheManager) -> None:
        previous = self.active
        if self.waiting is worker:
            self.waiting = None
        self.active = worker
        deleted = await worker.on_activate()
        if previous is not None and previous is not worker:
            previous.state = WorkerState.REDUNDANT
        logger.info(f"Activated worker, purged {len(deleted)} stale cache generations")
