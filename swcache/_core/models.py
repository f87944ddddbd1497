from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field, replace
from typing import (
    Any,
    AsyncIterator,
    Mapping,
    TypedDict,
    cast,
)

from swcache._core._headers import Headers
from swcache._utils import make_async_iterator

# Values of the Fetch `destination` the worker cares about
DOCUMENT_DESTINATION = "document"
IMAGE_DESTINATION = "image"


class RequestMetadata(TypedDict, total=False):
    # All the names here should be prefixed with "swcache_" to avoid collisions with user data
    swcache_destination: str
    """The Fetch destination the request was issued for, when the host knows it."""


class ResponseMetadata(TypedDict, total=False):
    # All the names here should be prefixed with "swcache_" to avoid collisions with user data
    swcache_strategy: str
    """Name of the caching strategy that produced the response."""

    swcache_from_cache: bool
    """Indicates whether the response was served from a cache store."""

    swcache_stored: bool
    """Indicates whether the response was written to the runtime cache."""

    swcache_synthetic: bool
    """Indicates whether the response was made up by the worker rather than received."""

    swcache_created_at: float
    """Timestamp when the response was cached."""


class _BodyMixin:
    stream: AsyncIterator[bytes]

    async def _aiter_stream(self) -> AsyncIterator[bytes]:
        if hasattr(self, "collected_body"):
            yield getattr(self, "collected_body")
            return
        async for chunk in self.stream:
            yield chunk

    async def aread(self) -> bytes:
        """
        Asynchronously reads the entire body without consuming the stream.
        """
        if hasattr(self, "collected_body"):
            return cast(bytes, getattr(self, "collected_body"))

        collected = b"".join([chunk async for chunk in self.stream])
        setattr(self, "collected_body", collected)
        self.stream = make_async_iterator([collected])
        return collected


@dataclass
class Request(_BodyMixin):
    method: str
    url: str
    headers: Headers = field(default_factory=Headers)
    destination: str = ""
    stream: AsyncIterator[bytes] = field(default_factory=lambda: make_async_iterator([]))
    metadata: RequestMetadata | Mapping[str, Any] = field(default_factory=dict)


@dataclass
class Response(_BodyMixin):
    status_code: int
    headers: Headers = field(default_factory=Headers)
    stream: AsyncIterator[bytes] = field(default_factory=lambda: make_async_iterator([]))
    metadata: ResponseMetadata | Mapping[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    async def aclone(self) -> "Response":
        """
        Buffer the body and return an independent copy of this response.

        Both objects stay readable afterwards.
        """
        body = await self.aread()
        return replace(
            self,
            headers=self.headers.copy(),
            stream=make_async_iterator([body]),
            metadata=dict(self.metadata),
        )


@dataclass
class EntryMeta:
    created_at: float = field(default_factory=time.time)


@dataclass
class Entry:
    """
    A stored request/response pair inside one named cache store.
    """

    cache_name: str
    key: str
    request: Request
    response: Response
    body: bytes
    meta: EntryMeta = field(default_factory=EntryMeta)

    def to_response(self) -> Response:
        return Response(
            status_code=self.response.status_code,
            headers=self.response.headers.copy(),
            stream=make_async_iterator([self.body]),
            metadata=ResponseMetadata(
                swcache_from_cache=True,
                swcache_stored=False,
                swcache_created_at=self.meta.created_at,
            ),
        )


@dataclass
class QueuedRequest:
    """
    A mutating request that failed to reach the network and waits for replay.
    """

    request: Request
    body: bytes
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    attempts: int = 0
    queued_at: float = field(default_factory=time.time)

    def to_request(self) -> Request:
        return Request(
            method=self.request.method,
            url=self.request.url,
            headers=self.request.headers.copy(),
            destination=self.request.destination,
            stream=make_async_iterator([self.body]),
        )


@dataclass
class SyncResult:
    replayed: list[QueuedRequest] = field(default_factory=list)
    dropped: list[QueuedRequest] = field(default_factory=list)
    pending: int = 0

    @property
    def completed(self) -> bool:
        return self.pending == 0

