from __future__ import annotations

import types
import typing as tp

import anyio

from swcache._exceptions import NetworkTimeout

T = tp.TypeVar("T")


class AsyncLock:
    def __init__(self) -> None:
        self._lock = anyio.Lock()

    async def __aenter__(self) -> None:
        await self._lock.acquire()

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None = None,
        exc_value: BaseException | None = None,
        traceback: types.TracebackType | None = None,
    ) -> None:
        self._lock.release()


async def first_completed(operation: tp.Callable[[], tp.Awaitable[T]], timeout: float) -> T:
    """
    Race an operation against a timer and return the operation's result if it wins.

    When the timer fires first the operation is cancelled, so whatever it would
    have done with its result (writing it to a cache, for instance) never runs.

    Raises:
        NetworkTimeout: the timer won the race.
    """
    try:
        with anyio.fail_after(timeout):
            return await operation()
    except TimeoutError as exc:
        raise NetworkTimeout(f"No response within {timeout:g} seconds") from exc
