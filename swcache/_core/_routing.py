from __future__ import annotations

import enum
import logging
import re
from dataclasses import dataclass, field
from typing import Optional, Tuple

from swcache._core.models import DOCUMENT_DESTINATION, Request
from swcache._utils import get_origin, parse_url, strip_fragment

logger = logging.getLogger("swcache.core.routing")

UNCACHEABLE_SCHEMES = (
    "chrome-extension:",
    "moz-extension:",
    "safari-extension:",
    "edge-extension:",
    "about:",
    "blob:",
    "data:",
)

PRECACHE_URLS = (
    "/",
    "/manifest.json",
    "/robots.txt",
    "/sitemap.xml",
)


@dataclass(frozen=True)
class CachePattern:
    """
    A URL pattern whose matches are served cache-first.

    The regex is searched in the absolute request URL. Patterns marked
    `same_origin_only` never make a cross-origin request eligible for caching.
    """

    regex: re.Pattern[str]
    same_origin_only: bool = False

    @classmethod
    def compile(cls, pattern: str, same_origin_only: bool = False) -> "CachePattern":
        return cls(re.compile(pattern), same_origin_only=same_origin_only)

    def matches(self, url: str, same_origin: bool = True) -> bool:
        if self.same_origin_only and not same_origin:
            return False
        return self.regex.search(url) is not None


DEFAULT_CACHE_PATTERNS = (
    CachePattern.compile(r"^https://fonts\.googleapis\.com/"),
    CachePattern.compile(r"^https://fonts\.gstatic\.com/"),
    CachePattern.compile(r"\.(?:js|css|woff2?|png|jpg|jpeg|svg|webp)$"),
    CachePattern.compile(r"/api/store-locations", same_origin_only=True),
    CachePattern.compile(r"/api/featured-brands", same_origin_only=True),
)


class Strategy(str, enum.Enum):
    NETWORK_FIRST = "network-first"
    CACHE_FIRST = "cache-first"
    NETWORK_FIRST_WITH_TIMEOUT = "network-first-with-timeout"
    NETWORK_ONLY_WITH_QUEUE = "network-only-with-queue"


@dataclass
class WorkerOptions:
    """
    Configuration of a cache manager.

    Attributes:
    ----------
    origin : str
        Origin the worker is registered for. Requests to any other origin are
        only handled when a cross-origin eligible cache pattern matches them.

    precache_name, runtime_name : str
        The current cache generation identifiers. Every other store found in
        the storage is purged on activation, so bumping these two names is the
        way to invalidate everything on the next deploy.

        Examples:
        --------
        >>> options = WorkerOptions(precache_name="precache-v3", runtime_name="runtime-v3")

    api_timeout : float
        Seconds the network is given to answer an API call before the cached
        copy is used instead.

    queue_failed_mutations : bool
        When True, non-GET calls under `api_prefix` that fail to reach the
        network are queued and replayed on the next background sync.
    """

    origin: str = "http://localhost"

    precache_name: str = "precache-v2"
    runtime_name: str = "runtime-v2"

    precache_urls: Tuple[str, ...] = PRECACHE_URLS
    """Paths written into the precache store on install."""

    uncacheable_schemes: Tuple[str, ...] = UNCACHEABLE_SCHEMES
    cache_patterns: Tuple[CachePattern, ...] = DEFAULT_CACHE_PATTERNS

    api_prefix: str = "/api/"
    api_timeout: float = 3.0

    skip_waiting: bool = True
    """When True, a freshly installed version takes over without waiting for open pages to close."""

    sync_tag: str = "background-sync"
    queue_failed_mutations: bool = False
    max_sync_attempts: int = 5

    supported_methods: list[str] = field(default_factory=lambda: ["GET"])


@dataclass(frozen=True)
class Route:
    strategy: Optional[Strategy]
    reason: str
    timeout: Optional[float] = None

    @property
    def intercepted(self) -> bool:
        return self.strategy is not None


def _passthrough(reason: str) -> Route:
    return Route(strategy=None, reason=reason)


def classify(request: Request, options: WorkerOptions) -> Route:
    """
    Decide how the worker handles a request.

    Rules are evaluated in a fixed order and the first one that applies wins:

    1. unparseable URLs and browser-internal schemes are left alone
    2. cross-origin requests are left alone unless a cross-origin eligible
       cache pattern matches them
    3. only GET requests are handled (mutating API calls may be queued)
    4. documents go network-first, cache pattern matches go cache-first,
       the rest of the API goes network-first with a timeout

    Examples:
    --------
    >>> options = WorkerOptions(origin="https://shop.example")
    >>> classify(Request("GET", "https://shop.example/api/orders"), options).strategy
    <Strategy.NETWORK_FIRST_WITH_TIMEOUT: 'network-first-with-timeout'>
    >>> classify(Request("GET", "chrome-extension://abc/script.js"), options).intercepted
    False
    """
    url = parse_url(request.url)
    if url is None:
        logger.debug(f"Could not parse request URL {request.url!r}")
        return _passthrough("unparseable-url")

    if f"{url.scheme}:" in options.uncacheable_schemes:
        return _passthrough("uncacheable-scheme")

    worker_origin = parse_url(options.origin)
    same_origin = worker_origin is not None and get_origin(url) == get_origin(worker_origin)
    raw_url = strip_fragment(str(url))
    matched_pattern = any(pattern.matches(raw_url, same_origin) for pattern in options.cache_patterns)

    if not same_origin and not matched_pattern:
        return _passthrough("cross-origin")

    if request.method.upper() not in options.supported_methods:
        if options.queue_failed_mutations and same_origin and url.path.startswith(options.api_prefix):
            return Route(strategy=Strategy.NETWORK_ONLY_WITH_QUEUE, reason="queued-mutation")
        return _passthrough("method")

    if request.destination == DOCUMENT_DESTINATION:
        return Route(strategy=Strategy.NETWORK_FIRST, reason="document")

    if matched_pattern:
        return Route(strategy=Strategy.CACHE_FIRST, reason="cache-pattern")

    if same_origin and url.path.startswith(options.api_prefix):
        return Route(
            strategy=Strategy.NETWORK_FIRST_WITH_TIMEOUT,
            reason="api",
            timeout=options.api_timeout,
        )

    return _passthrough("no-match")
