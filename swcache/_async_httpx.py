from __future__ import annotations

import logging
import ssl
import types
import typing as t
from typing import (
    AsyncIterator,
    Union,
    cast,
    overload,
)

import httpx
from httpx import RequestNotRead
from typing_extensions import Self

from swcache._async_worker import AsyncCacheManager
from swcache._core._headers import Headers
from swcache._core._routing import WorkerOptions
from swcache._core._storages._async_base import AsyncBaseCacheStorage, AsyncBaseSyncQueue
from swcache._core.models import Request, RequestMetadata, Response
from swcache._exceptions import NetworkError
from swcache._utils import make_async_iterator

logger = logging.getLogger("swcache.integrations.httpx")

# 128 KB
CHUNK_SIZE = 131072

# Header browsers use to tell the server (and us) what a request is for
DESTINATION_HEADER = "Sec-Fetch-Dest"


def _headers_from_httpx(headers: httpx.Headers) -> Headers:
    return Headers.from_items(
        (key, value) for key, value in headers.multi_items() if key.lower() != "transfer-encoding"
    )


@overload
def _internal_to_httpx(
    value: Request,
) -> httpx.Request: ...
@overload
def _internal_to_httpx(
    value: Response,
) -> httpx.Response: ...
def _internal_to_httpx(
    value: Union[Request, Response],
) -> Union[httpx.Request, httpx.Response]:
    """
    Convert internal Request/Response to httpx.Request/httpx.Response.
    """
    if isinstance(value, Request):
        return httpx.Request(
            method=value.method,
            url=value.url,
            headers=value.headers.multi_items(),
            stream=_IteratorStream(value._aiter_stream()),
            extensions=dict(value.metadata),
        )
    elif isinstance(value, Response):
        return httpx.Response(
            status_code=value.status_code,
            headers=value.headers.multi_items(),
            stream=_IteratorStream(value._aiter_stream()),
            extensions=dict(value.metadata),
        )


@overload
def _httpx_to_internal(
    value: httpx.Request,
) -> Request: ...
@overload
def _httpx_to_internal(
    value: httpx.Response,
) -> Response: ...
def _httpx_to_internal(
    value: Union[httpx.Request, httpx.Response],
) -> Union[Request, Response]:
    """
    Convert httpx.Request/httpx.Response to internal Request/Response.
    """
    headers = _headers_from_httpx(value.headers)
    if isinstance(value, httpx.Request):
        destination = (value.extensions.get("swcache_destination") or value.headers.get(DESTINATION_HEADER, "")).lower()
        try:
            stream = make_async_iterator([value.content])
        except RequestNotRead:
            stream = cast(AsyncIterator[bytes], value.stream)

        # Transport extensions (timeouts and the like) have to survive the trip through the manager
        metadata: t.Dict[str, t.Any] = dict(value.extensions)
        metadata.update(RequestMetadata(swcache_destination=destination))

        return Request(
            method=value.method,
            url=str(value.url),
            headers=headers,
            destination=destination,
            stream=stream,
            metadata=metadata,
        )
    elif isinstance(value, httpx.Response):
        stream = (
            make_async_iterator([value.content]) if value.is_stream_consumed else value.aiter_raw(chunk_size=CHUNK_SIZE)
        )

        if value.is_stream_consumed and "content-encoding" in value.headers:
            # The decoded body is all we have left, so drop the encoding and fix the length
            del headers["content-encoding"]
            headers["content-length"] = str(len(value.content))

        return Response(
            status_code=value.status_code,
            headers=headers,
            stream=stream,
        )


class _IteratorStream(httpx.AsyncByteStream):
    def __init__(self, iterator: AsyncIterator[bytes]) -> None:
        self.iterator = iterator

    async def __aiter__(self) -> AsyncIterator[bytes]:
        async for chunk in self.iterator:
            yield chunk


class AsyncCacheTransport(httpx.AsyncBaseTransport):
    """
    An httpx transport that puts a cache manager at the network boundary.

    Requests the manager doesn't intercept are forwarded untouched to `next_transport`.
    Call `await transport.manager.on_install()` and `on_activate()` to run the lifecycle.
    Entering the transport (which `async with httpx.AsyncClient(...)` does) lets
    network-first cache writes run in the background.
    """

    def __init__(
        self,
        next_transport: httpx.AsyncBaseTransport,
        storage: AsyncBaseCacheStorage | None = None,
        options: WorkerOptions | None = None,
        sync_queue: AsyncBaseSyncQueue | None = None,
    ) -> None:
        self.next_transport = next_transport
        self.manager: AsyncCacheManager = AsyncCacheManager(
            request_sender=self.request_sender,
            storage=storage,
            options=options,
            sync_queue=sync_queue,
        )
        self.storage = self.manager.storage

    async def __aenter__(self) -> Self:
        await self.manager.__aenter__()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None = None,
        exc_value: BaseException | None = None,
        traceback: types.TracebackType | None = None,
    ) -> None:
        # Pending cache writes finish before the storage is closed
        await self.manager.__aexit__(exc_type, exc_value, traceback)
        await self.aclose()

    async def handle_async_request(
        self,
        request: httpx.Request,
    ) -> httpx.Response:
        internal_request = _httpx_to_internal(request)
        internal_response = await self.manager.on_fetch(internal_request)
        if internal_response is None:
            return await self.next_transport.handle_async_request(request)
        return _internal_to_httpx(internal_response)

    async def aclose(self) -> None:
        await self.next_transport.aclose()
        await self.manager.close()
        await super().aclose()

    async def request_sender(self, request: Request) -> Response:
        httpx_request = _internal_to_httpx(request)
        try:
            httpx_response = await self.next_transport.handle_async_request(httpx_request)
        except httpx.TransportError as exc:
            logger.debug(f"Transport error for {request.url}: {exc!r}")
            raise NetworkError(str(exc) or exc.__class__.__name__) from exc
        return _httpx_to_internal(httpx_response)


class AsyncCacheClient(httpx.AsyncClient):
    def __init__(self, *args: t.Any, **kwargs: t.Any) -> None:
        self.storage: AsyncBaseCacheStorage | None = kwargs.pop("storage", None)
        self.options: WorkerOptions | None = kwargs.pop("options", None)
        self.sync_queue: AsyncBaseSyncQueue | None = kwargs.pop("sync_queue", None)
        super().__init__(*args, **kwargs)

    def _init_transport(
        self,
        verify: ssl.SSLContext | str | bool = True,
        cert: t.Union[str, t.Tuple[str, str], t.Tuple[str, str, str], None] = None,
        trust_env: bool = True,
        http1: bool = True,
        http2: bool = False,
        limits: httpx.Limits = httpx.Limits(max_connections=100, max_keepalive_connections=20),
        transport: httpx.AsyncBaseTransport | None = None,
        **kwargs: t.Any,
    ) -> httpx.AsyncBaseTransport:
        if transport is not None:
            return transport

        return AsyncCacheTransport(
            next_transport=httpx.AsyncHTTPTransport(
                verify=verify,
                cert=cert,
                trust_env=trust_env,
                http1=http1,
                http2=http2,
                limits=limits,
            ),
            storage=self.storage,
            options=self.options,
            sync_queue=self.sync_queue,
        )

    def _init_proxy_transport(
        self,
        proxy: httpx.Proxy,
        verify: ssl.SSLContext | str | bool = True,
        cert: t.Union[str, t.Tuple[str, str], t.Tuple[str, str, str], None] = None,
        trust_env: bool = True,
        http1: bool = True,
        http2: bool = False,
        limits: httpx.Limits = httpx.Limits(max_connections=100, max_keepalive_connections=20),
        **kwargs: t.Any,
    ) -> httpx.AsyncBaseTransport:
        return AsyncCacheTransport(
            next_transport=httpx.AsyncHTTPTransport(
                verify=verify,
                cert=cert,
                trust_env=trust_env,
                http1=http1,
                http2=http2,
                limits=limits,
                proxy=proxy,
            ),
            storage=self.storage,
            options=self.options,
            sync_queue=self.sync_queue,
        )

    @property
    def manager(self) -> AsyncCacheManager:
        transport = self._transport
        if not isinstance(transport, AsyncCacheTransport):
            raise TypeError("The client transport is not an AsyncCacheTransport")
        return transport.manager
