from __future__ import annotations

import typing as tp
from pathlib import Path
from typing import AsyncIterator, Iterable

import httpx

if tp.TYPE_CHECKING:
    from swcache._core.models import Request

T = tp.TypeVar("T")


def partition(iterable: tp.Iterable[T], predicate: tp.Callable[[T], bool]) -> tp.Tuple[tp.List[T], tp.List[T]]:
    """
    Partition an iterable into two lists: one for matching items and one for non-matching items.

    Example:
        ```
        stale, current = partition(["runtime-v1", "runtime-v2"], lambda name: name != "runtime-v2")
        ```
    """
    matching, non_matching = [], []
    for item in iterable:
        if predicate(item):
            matching.append(item)
        else:
            non_matching.append(item)
    return matching, non_matching


async def make_async_iterator(
    iterable: Iterable[bytes],
) -> AsyncIterator[bytes]:
    for item in iterable:
        yield item


def parse_url(raw_url: str) -> tp.Optional[httpx.URL]:
    """
    Parse an absolute URL, returning None when it can't be parsed or has no scheme.
    """
    try:
        url = httpx.URL(raw_url)
    except (httpx.InvalidURL, TypeError, ValueError):
        return None
    if not url.scheme:
        return None
    return url


def get_origin(url: httpx.URL) -> str:
    """
    Serialize the origin of a URL, omitting default ports.

    Examples:
        >>> get_origin(httpx.URL("https://shop.example:443/api/orders"))
        'https://shop.example'
        >>> get_origin(httpx.URL("http://localhost:5000/"))
        'http://localhost:5000'
    """
    origin = f"{url.scheme}://{url.host}"
    if url.port is not None:
        origin += f":{url.port}"
    return origin


def strip_fragment(raw_url: str) -> str:
    return raw_url.split("#", 1)[0]


def generate_key(request: "Request") -> str:
    """
    Build the storage key of a request.

    Stores only ever hold GET entries, so the method is fixed and the
    fragment is dropped, the same way browser cache storage normalizes keys.
    """
    return f"GET {strip_fragment(request.url)}"


def ensure_cache_dict(base_path: Path | None = None) -> Path:
    _base_path = base_path if base_path is not None else Path(".cache/swcache")
    _gitignore_file = _base_path / ".gitignore"

    _base_path.mkdir(parents=True, exist_ok=True)

    if not _gitignore_file.is_file():
        with open(_gitignore_file, "w", encoding="utf-8") as f:
            f.write("# Automatically created by swcache\n*")
    return _base_path
