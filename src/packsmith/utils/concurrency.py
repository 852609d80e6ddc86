"""Worker offload helpers for hosts that call the pack engine from an event loop."""

from __future__ import annotations

import asyncio
import functools
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, ParamSpec, TypeVar

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable, Iterable

T = TypeVar("T")
R = TypeVar("R")
P = ParamSpec("P")


class BoundedSemaphore:
    """Small wrapper over ``asyncio.Semaphore`` with usage diagnostics."""

    def __init__(self, limit: int) -> None:
        if limit <= 0:
            raise ValueError("limit must be > 0")
        self._limit = limit
        self._semaphore = asyncio.Semaphore(limit)
        self._in_use = 0

    @property
    def limit(self) -> int:
        return self._limit

    @property
    def in_use(self) -> int:
        return self._in_use

    async def acquire(self) -> None:
        # Cancellation while waiting here does not acquire a permit.
        await self._semaphore.acquire()
        self._in_use += 1

    def release(self) -> None:
        if self._in_use <= 0:
            raise RuntimeError("release called more times than acquire")
        self._in_use -= 1
        self._semaphore.release()

    @asynccontextmanager
    async def permit(self) -> AsyncIterator[None]:
        await self.acquire()
        try:
            yield
        finally:
            self.release()


async def run_in_worker(fn: Callable[P, R], /, *args: P.args, **kwargs: P.kwargs) -> R:
    """Run a synchronous, CPU-bound transform on a worker thread."""

    return await asyncio.to_thread(functools.partial(fn, *args, **kwargs))


async def map_in_workers(
    fn: Callable[[T], R],
    items: Iterable[T],
    *,
    max_concurrency: int = 4,
) -> list[R]:
    """Apply ``fn`` to every item on worker threads; results keep input order."""

    semaphore = BoundedSemaphore(max_concurrency)

    async def _one(item: T) -> R:
        async with semaphore.permit():
            return await asyncio.to_thread(fn, item)

    return list(await asyncio.gather(*(_one(item) for item in items)))


__all__ = ["BoundedSemaphore", "map_in_workers", "run_in_worker"]
