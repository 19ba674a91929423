"""Bounded-concurrency runner for per-file transfer handlers."""

import asyncio
import logging
import math
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, List, Optional, Sequence, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


@dataclass
class PoolResult(Generic[T, R]):
    """Outcome of one handler invocation."""

    item: T
    success: bool
    value: Optional[R] = None
    error: Optional[BaseException] = None


def effective_concurrency(requested: float, item_count: int) -> int:
    """Clamp the requested concurrency to ``[1, item_count]``."""
    if item_count <= 0:
        return 0
    try:
        wanted = math.floor(requested)
    except (TypeError, ValueError, OverflowError):
        wanted = 1
    return max(1, min(wanted, item_count))


async def process_pool(
    items: Sequence[T],
    handler: Callable[[T], Awaitable[R]],
    max_concurrency: float,
    cancel_event: Optional[asyncio.Event] = None,
) -> List[PoolResult[T, R]]:
    """Run ``handler`` over ``items`` with at most ``max_concurrency`` in flight.

    Workers claim the next index from a shared cursor, so every item is
    handled exactly once. A handler exception is logged and stored on its
    ``PoolResult``; it never stops the remaining items. Once
    ``cancel_event`` is set no new items are claimed, in-flight items finish,
    and unclaimed items have no result.

    Returns:
        Results of the items that ran, in input order
    """
    items = list(items)
    worker_count = effective_concurrency(max_concurrency, len(items))
    if worker_count == 0:
        return []

    results: List[Optional[PoolResult[T, R]]] = [None] * len(items)
    cursor = 0

    async def worker() -> None:
        nonlocal cursor
        while cursor < len(items):
            if cancel_event is not None and cancel_event.is_set():
                return
            # Claim and advance before the first await (cooperative scheduling)
            index = cursor
            cursor += 1
            item = items[index]
            try:
                value = await handler(item)
                results[index] = PoolResult(item=item, success=True, value=value)
            except Exception as e:
                logger.error("Worker error on item %d: %s", index, e)
                results[index] = PoolResult(item=item, success=False, error=e)

    logger.debug("Processing %d items with %d workers", len(items), worker_count)
    await asyncio.gather(*(worker() for _ in range(worker_count)))
    return [r for r in results if r is not None]


__all__ = ["PoolResult", "effective_concurrency", "process_pool"]
