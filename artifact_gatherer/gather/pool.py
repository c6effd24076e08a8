from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Iterable, List, Optional, TypeVar

from artifact_gatherer.config import settings

T = TypeVar("T")
R = TypeVar("R")


async def bounded_map(
    fn: Callable[[T], Awaitable[R]],
    items: Iterable[T],
    *,
    limit: Optional[int] = None,
) -> List[R]:
    """Runs fn over items with at most `limit` in flight; results keep input order."""
    sem = asyncio.Semaphore(limit or settings.FETCH_CONCURRENCY)

    async def _one(item: T) -> R:
        async with sem:
            return await fn(item)

    return list(await asyncio.gather(*(_one(item) for item in items)))
