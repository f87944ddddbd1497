from swcache._core._headers import Headers as Headers
from swcache._core._routing import (
    DEFAULT_CACHE_PATTERNS as DEFAULT_CACHE_PATTERNS,
    PRECACHE_URLS as PRECACHE_URLS,
    UNCACHEABLE_SCHEMES as UNCACHEABLE_SCHEMES,
    CachePattern as CachePattern,
    Route as Route,
    Strategy as Strategy,
    WorkerOptions as WorkerOptions,
    classify as classify,
)
from swcache._core._storages._async_base import (
    AsyncBaseCache as AsyncBaseCache,
    AsyncBaseCacheStorage as AsyncBaseCacheStorage,
    AsyncBaseSyncQueue as AsyncBaseSyncQueue,
)
from swcache._core._storages._async_memory import (
    AsyncInMemoryCache as AsyncInMemoryCache,
    AsyncInMemoryCacheStorage as AsyncInMemoryCacheStorage,
    AsyncInMemorySyncQueue as AsyncInMemorySyncQueue,
)
from swcache._core._storages._async_sqlite import (
    AsyncSqliteCache as AsyncSqliteCache,
    AsyncSqliteCacheStorage as AsyncSqliteCacheStorage,
    AsyncSqliteSyncQueue as AsyncSqliteSyncQueue,
)
from swcache._core._strategies import (
    AnyState as AnyState,
    CouldNotBeStored as CouldNotBeStored,
    CouldNotFetch as CouldNotFetch,
    FetchFromNetwork as FetchFromNetwork,
    FromCache as FromCache,
    IdleWorker as IdleWorker,
    LookupCache as LookupCache,
    Passthrough as Passthrough,
    QueueForSync as QueueForSync,
    State as State,
    StoreAndUse as StoreAndUse,
    SyntheticResponse as SyntheticResponse,
)
from swcache._core.models import (
    Entry as Entry,
    EntryMeta as EntryMeta,
    QueuedRequest as QueuedRequest,
    Request as Request,
    RequestMetadata as RequestMetadata,
    Response as Response,
    ResponseMetadata as ResponseMetadata,
    SyncResult as SyncResult,
)
from swcache._exceptions import (
    NetworkError as NetworkError,
    NetworkTimeout as NetworkTimeout,
    PrecacheError as PrecacheError,
    SWCacheError as SWCacheError,
)
from swcache._async_worker import AsyncCacheManager as AsyncCacheManager, WorkerState as WorkerState
from swcache._registration import AsyncWorkerRegistration as AsyncWorkerRegistration

__all__ = (
    ## States
    "AnyState",
    "State",
    "IdleWorker",
    "Passthrough",
    "LookupCache",
    "FetchFromNetwork",
    "StoreAndUse",
    "CouldNotBeStored",
    "FromCache",
    "SyntheticResponse",
    "CouldNotFetch",
    "QueueForSync",
    ## Models
    "Request",
    "Response",
    "Entry",
    "EntryMeta",
    "QueuedRequest",
    "SyncResult",
    "RequestMetadata",
    "ResponseMetadata",
    ## Headers
    "Headers",
    ## Routing
    "CachePattern",
    "Route",
    "Strategy",
    "WorkerOptions",
    "classify",
    "DEFAULT_CACHE_PATTERNS",
    "PRECACHE_URLS",
    "UNCACHEABLE_SCHEMES",
    ## Storages
    "AsyncBaseCache",
    "AsyncBaseCacheStorage",
    "AsyncBaseSyncQueue",
    "AsyncInMemoryCache",
    "AsyncInMemoryCacheStorage",
    "AsyncInMemorySyncQueue",
    "AsyncSqliteCache",
    "AsyncSqliteCacheStorage",
    "AsyncSqliteSyncQueue",
    ## Worker
    "AsyncCacheManager",
    "AsyncWorkerRegistration",
    "WorkerState",
    ## Errors
    "SWCacheError",
    "NetworkError",
    "NetworkTimeout",
    "PrecacheError",
)
