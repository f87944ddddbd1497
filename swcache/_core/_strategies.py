"""
Sans-IO state machine behind the caching strategies.

Each state only decides what happens next; the manager performs the IO a
state asks for (fetching, cache lookups, cache writes) and feeds the result
back through `next()`:

    IdleWorker ──► Passthrough
        │
        ├──► LookupCache ──► FromCache
        │        │      └──► SyntheticResponse / CouldNotFetch   (fallback lookups)
        │        ▼
        └──► FetchFromNetwork ──► StoreAndUse / CouldNotBeStored
                 │
                 └─(fail)─► LookupCache / SyntheticResponse / CouldNotFetch / QueueForSync
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional, Union

from swcache._core._headers import Headers
from swcache._core._routing import Strategy, WorkerOptions, classify
from swcache._core.models import IMAGE_DESTINATION, Request, Response, ResponseMetadata
from swcache._exceptions import NetworkError
from swcache._utils import make_async_iterator

logger = logging.getLogger("swcache.core.strategies")

OFFLINE_BODY = b"Offline - Please check your connection"


def make_offline_response() -> Response:
    return Response(
        status_code=503,
        headers=Headers({"Content-Type": "text/plain; charset=utf-8", "Content-Length": str(len(OFFLINE_BODY))}),
        stream=make_async_iterator([OFFLINE_BODY]),
    )


def make_missing_image_response() -> Response:
    return Response(status_code=404, headers=Headers({"Content-Length": "0"}))


@dataclass
class State(ABC):
    options: WorkerOptions

    @abstractmethod
    def next(self, *args: Any, **kwargs: Any) -> Union["State", None]:
        raise NotImplementedError("Subclasses must implement this method")


@dataclass
class IdleWorker(State):
    """
    Entry state for every intercepted request.

    Classifies the request and picks where the chosen strategy starts:
    cache-first starts with a lookup, every other strategy with a fetch.
    """

    def next(self, request: Request) -> Union["Passthrough", "LookupCache", "FetchFromNetwork"]:
        route = classify(request, self.options)

        if route.strategy is None:
            return Passthrough(options=self.options, request=request, reason=route.reason)

        if route.strategy is Strategy.CACHE_FIRST:
            return LookupCache(options=self.options, request=request, strategy=route.strategy)

        return FetchFromNetwork(
            options=self.options,
            request=request,
            strategy=route.strategy,
            timeout=route.timeout,
        )


@dataclass
class Passthrough(State):
    """
    The worker does not intervene; the host handles the request natively.
    """

    request: Request
    reason: str

    def next(self) -> None:
        return None


@dataclass
class LookupCache(State):
    """
    The request has to be looked up in the current cache generations.

    `error` is set when the lookup is a fallback after the network failed.
    """

    request: Request
    strategy: Strategy
    error: Optional[NetworkError] = None

    @property
    def is_fallback(self) -> bool:
        return self.error is not None

    def next(
        self, cached_response: Optional[Response]
    ) -> Union["FromCache", "FetchFromNetwork", "SyntheticResponse", "CouldNotFetch"]:
        if cached_response is not None:
            return FromCache(options=self.options, response=cached_response, strategy=self.strategy)

        if self.error is None:
            # Cache-first miss, go to the network
            return FetchFromNetwork(options=self.options, request=self.request, strategy=self.strategy)

        if self.strategy is Strategy.NETWORK_FIRST:
            logger.warning(f"No cached copy of {self.request.url}, answering with an offline placeholder")
            return SyntheticResponse(options=self.options, response=make_offline_response(), strategy=self.strategy)

        return CouldNotFetch(options=self.options, request=self.request, error=self.error)


@dataclass
class FetchFromNetwork(State):
    """
    The request has to be sent to the network.

    When `timeout` is set, the fetch is raced against a timer of that many seconds.
    """

    request: Request
    strategy: Strategy
    timeout: Optional[float] = None

    def next(self, response: Response) -> Union["StoreAndUse", "CouldNotBeStored"]:
        if response.ok and self.strategy is not Strategy.NETWORK_ONLY_WITH_QUEUE:
            return StoreAndUse(
                options=self.options,
                request=self.request,
                response=response,
                strategy=self.strategy,
                in_background=self.strategy is Strategy.NETWORK_FIRST,
            )
        return CouldNotBeStored(options=self.options, response=response, strategy=self.strategy)

    def fail(
        self, error: NetworkError
    ) -> Union["LookupCache", "SyntheticResponse", "CouldNotFetch", "QueueForSync"]:
        if self.strategy is Strategy.CACHE_FIRST:
            if self.request.destination == IMAGE_DESTINATION:
                return SyntheticResponse(
                    options=self.options, response=make_missing_image_response(), strategy=self.strategy
                )
            return CouldNotFetch(options=self.options, request=self.request, error=error)

        if self.strategy is Strategy.NETWORK_ONLY_WITH_QUEUE:
            return QueueForSync(options=self.options, request=self.request, error=error)

        return LookupCache(options=self.options, request=self.request, strategy=self.strategy, error=error)


@dataclass
class StoreAndUse(State):
    """
    A successful network response that has to be written to the runtime cache and returned.

    With `in_background` the write must not delay the response.
    """

    request: Request
    response: Response
    strategy: Strategy
    in_background: bool = False
    created_at: float = field(default_factory=time.time)

    def __post_init__(self) -> None:
        response_meta = ResponseMetadata(
            swcache_strategy=self.strategy.value,
            swcache_from_cache=False,
            swcache_stored=True,
            swcache_synthetic=False,
            swcache_created_at=self.created_at,
        )
        self.response.metadata = {**self.response.metadata, **response_meta}

    def next(self) -> None:
        return None


@dataclass
class CouldNotBeStored(State):
    """
    A network response that is returned as is, without touching the cache.
    """

    response: Response
    strategy: Strategy

    def __post_init__(self) -> None:
        response_meta = ResponseMetadata(
            swcache_strategy=self.strategy.value,
            swcache_from_cache=False,
            swcache_stored=False,
            swcache_synthetic=False,
        )
        self.response.metadata = {**self.response.metadata, **response_meta}

    def next(self) -> None:
        return None


@dataclass
class FromCache(State):
    response: Response
    strategy: Strategy

    def __post_init__(self) -> None:
        response_meta = ResponseMetadata(
            swcache_strategy=self.strategy.value,
            swcache_from_cache=True,
            swcache_stored=False,
            swcache_synthetic=False,
        )
        self.response.metadata = {**self.response.metadata, **response_meta}

    def next(self) -> None:
        return None


@dataclass
class SyntheticResponse(State):
    """
    A placeholder response made up by the worker so the page fails softly.
    """

    response: Response
    strategy: Strategy

    def __post_init__(self) -> None:
        response_meta = ResponseMetadata(
            swcache_strategy=self.strategy.value,
            swcache_from_cache=False,
            swcache_stored=False,
            swcache_synthetic=True,
        )
        self.response.metadata = {**self.response.metadata, **response_meta}

    def next(self) -> None:
        return None


@dataclass
class CouldNotFetch(State):
    """
    The failure is propagated to the page.
    """

    request: Request
    error: NetworkError

    def next(self) -> None:
        return None


@dataclass
class QueueForSync(State):
    """
    A mutating request that could not be delivered; it is queued for the next background sync.
    """

    request: Request
    error: NetworkError

    def next(self) -> CouldNotFetch:
        return CouldNotFetch(options=self.options, request=self.request, error=self.error)


AnyState = Union[
    IdleWorker,
    Passthrough,
    LookupCache,
    FetchFromNetwork,
    StoreAndUse,
    CouldNotBeStored,
    FromCache,
    SyntheticResponse,
    CouldNotFetch,
    QueueForSync,
]
