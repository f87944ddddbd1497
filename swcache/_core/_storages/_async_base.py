from __future__ import annotations

import abc
import typing as tp
import uuid
from abc import ABC

from swcache._core.models import QueuedRequest, Request, Response


class AsyncBaseCache(ABC):
    """
    A single named cache store: a mapping from GET requests to their latest response.
    """

    name: str

    @abc.abstractmethod
    async def match(self, request: Request) -> tp.Optional[Response]:
        """
        Retrieve the stored response for a request.

        Args:
            request: The request to look up. Only GET requests ever match.

        Returns:
            A fresh, readable copy of the stored response, or None.
        """
        raise NotImplementedError()

    @abc.abstractmethod
    async def put(self, request: Request, response: Response) -> None:
        """
        Store a response for a request, replacing any previous one under the same key.

        Args:
            request: The request the response answers.
            response: The response to store. Its body is read by the store.
        """
        raise NotImplementedError()

    @abc.abstractmethod
    async def delete(self, request: Request) -> bool:
        """
        Remove the entry stored for a request.

        Returns:
            True if an entry was removed.
        """
        raise NotImplementedError()

    @abc.abstractmethod
    async def keys(self) -> tp.List[Request]:
        """
        Return the requests currently stored, in insertion order.
        """
        raise NotImplementedError()


class AsyncBaseCacheStorage(ABC):
    """
    The set of named cache stores owned by a worker.
    """

    @abc.abstractmethod
    async def open(self, name: str) -> AsyncBaseCache:
        """
        Open the store with the given name, creating it when it doesn't exist.
        """
        raise NotImplementedError()

    @abc.abstractmethod
    async def has(self, name: str) -> bool:
        raise NotImplementedError()

    @abc.abstractmethod
    async def delete(self, name: str) -> bool:
        """
        Delete a whole store with every entry in it.

        Returns:
            True if the store existed.
        """
        raise NotImplementedError()

    @abc.abstractmethod
    async def keys(self) -> tp.List[str]:
        """
        Return the names of the existing stores, in creation order.
        """
        raise NotImplementedError()

    async def match(
        self,
        request: Request,
        cache_names: tp.Optional[tp.Sequence[str]] = None,
    ) -> tp.Optional[Response]:
        """
        Look a request up across several stores and return the first hit.

        Args:
            request: The request to look up.
            cache_names: Stores to search, in order. Defaults to every store in creation order.
                Names of stores that don't exist are skipped without creating them.
        """
        names = cache_names if cache_names is not None else await self.keys()
        for name in names:
            if not await self.has(name):
                continue
            cache = await self.open(name)
            response = await cache.match(request)
            if response is not None:
                return response
        return None

    async def close(self) -> None:
        return None


class AsyncBaseSyncQueue(ABC):
    """
    Durable FIFO of requests waiting for a background sync.
    """

    @abc.abstractmethod
    async def push(self, request: Request) -> QueuedRequest:
        """
        Append a request to the queue. Its body is read by the queue.
        """
        raise NotImplementedError()

    @abc.abstractmethod
    async def entries(self) -> tp.List[QueuedRequest]:
        """
        Return the queued requests in arrival order.
        """
        raise NotImplementedError()

    @abc.abstractmethod
    async def update(self, queued: QueuedRequest) -> None:
        """
        Persist a changed queued request (its attempt counter) without moving it in the queue.
        """
        raise NotImplementedError()

    @abc.abstractmethod
    async def remove(self, id: uuid.UUID) -> None:
        raise NotImplementedError()

    async def close(self) -> None:
        return None
