from __future__ import annotations

import uuid
from typing import Any, Mapping, Optional, Union, overload

import msgpack
from typing_extensions import Literal, cast

from swcache._core._headers import Headers
from swcache._core.models import Entry, EntryMeta, QueuedRequest, Request, Response


def filter_out_swcache_metadata(data: Mapping[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in data.items() if not k.startswith("swcache_")}


def _pack_request(request: Request) -> dict[str, Any]:
    return {
        "method": request.method,
        "url": request.url,
        "headers": request.headers.multi_items(),
        "destination": request.destination,
    }


def _unpack_request(data: Mapping[str, Any]) -> Request:
    return Request(
        method=data["method"],
        url=data["url"],
        headers=Headers.from_items(data["headers"]),
        destination=data["destination"],
    )


@overload
def pack(value: Entry, /, kind: Literal["entry"]) -> bytes: ...


@overload
def pack(value: QueuedRequest, /, kind: Literal["queued"]) -> bytes: ...


def pack(
    value: Union[Entry, QueuedRequest],
    /,
    kind: Literal["entry", "queued"],
) -> bytes:
    if kind == "entry":
        assert isinstance(value, Entry)
        return cast(
            bytes,
            msgpack.packb(
                {
                    "cache_name": value.cache_name,
                    "key": value.key,
                    "request": _pack_request(value.request),
                    "response": {
                        "status_code": value.response.status_code,
                        "headers": value.response.headers.multi_items(),
                        "extra": filter_out_swcache_metadata(value.response.metadata),
                    },
                    "body": value.body,
                    "meta": {"created_at": value.meta.created_at},
                }
            ),
        )
    elif kind == "queued":
        assert isinstance(value, QueuedRequest)
        return cast(
            bytes,
            msgpack.packb(
                {
                    "id": value.id.bytes,
                    "request": _pack_request(value.request),
                    "body": value.body,
                    "attempts": value.attempts,
                    "queued_at": value.queued_at,
                }
            ),
        )
    assert False, f"Unexpected kind: {kind}"


@overload
def unpack(value: bytes, /, kind: Literal["entry"]) -> Entry: ...


@overload
def unpack(value: bytes, /, kind: Literal["queued"]) -> QueuedRequest: ...


@overload
def unpack(value: Optional[bytes], /, kind: Literal["entry"]) -> Optional[Entry]: ...


@overload
def unpack(value: Optional[bytes], /, kind: Literal["queued"]) -> Optional[QueuedRequest]: ...


def unpack(
    value: Optional[bytes],
    /,
    kind: Literal["entry", "queued"],
) -> Union[Entry, QueuedRequest, None]:
    if value is None:
        return None
    data = msgpack.unpackb(value)
    if kind == "entry":
        return Entry(
            cache_name=data["cache_name"],
            key=data["key"],
            request=_unpack_request(data["request"]),
            response=Response(
                status_code=data["response"]["status_code"],
                headers=Headers.from_items(data["response"]["headers"]),
                metadata=data["response"]["extra"],
            ),
            body=data["body"],
            meta=EntryMeta(created_at=data["meta"]["created_at"]),
        )
    elif kind == "queued":
        return QueuedRequest(
            id=uuid.UUID(bytes=data["id"]),
            request=_unpack_request(data["request"]),
            body=data["body"],
            attempts=data["attempts"],
            queued_at=data["queued_at"],
        )
    assert False, f"Unexpected kind: {kind}"
