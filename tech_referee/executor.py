"""Bounded parallel execution: fixed-size batches, per-item failure isolation."""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


@dataclass
class ItemError:
    index: int
    error: Exception


@dataclass
class ParallelResult(Generic[R]):
    results: list[R | None]            # indexed by input position, None where the worker failed
    errors: list[ItemError] = field(default_factory=list)
    successful: int = 0
    failed: int = 0


async def execute_in_parallel(
    items: Sequence[T],
    max_parallelism: int,
    worker: Callable[[T, int], Awaitable[R]],
    on_item_start: Callable[[T, int], None] | None = None,
    on_item_complete: Callable[[T, R, int], None] | None = None,
    on_item_error: Callable[[T, Exception, int], None] | None = None,
) -> ParallelResult[R]:
    """Run worker(item, index) for every item, at most max_parallelism at a time.

    Items are processed in contiguous batches; batch b+1 starts only once every
    task of batch b has settled. A failing item never cancels its siblings.

    Raises:
        ValueError: If max_parallelism < 1.
    """
    if max_parallelism < 1:
        raise ValueError(f"max_parallelism must be >= 1, got {max_parallelism}")

    outcome: ParallelResult[R] = ParallelResult(results=[None] * len(items))

    async def _run_one(item: T, index: int) -> None:
        if on_item_start:
            on_item_start(item, index)
        try:
            result = await worker(item, index)
        except Exception as exc:
            outcome.errors.append(ItemError(index=index, error=exc))
            outcome.failed += 1
            logger.warning("Item %d failed: %s", index, exc)
            if on_item_error:
                on_item_error(item, exc, index)
            return
        outcome.results[index] = result
        outcome.successful += 1
        if on_item_complete:
            on_item_complete(item, result, index)

    for start in range(0, len(items), max_parallelism):
        batch = items[start:start + max_parallelism]
        logger.debug("Starting batch at %d with %d items", start, len(batch))
        await asyncio.gather(*(_run_one(item, start + offset) for offset, item in enumerate(batch)))

    outcome.errors.sort(key=lambda e: e.index)
    return outcome
