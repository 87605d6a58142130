"""Tests for tech_referee/executor.py."""

import asyncio
import random

import pytest

from tech_referee.executor import execute_in_parallel


@pytest.mark.parametrize("seed", [1, 7, 42, 1234, 2024])
@pytest.mark.parametrize("limit", [1, 2, 3])
async def test_results_follow_input_order_regardless_of_completion_order(seed, limit):
    rng = random.Random(seed)
    delays = [rng.uniform(0, 0.02) for _ in range(7)]

    async def worker(item: int, index: int) -> int:
        await asyncio.sleep(delays[index])
        return item * 10

    outcome = await execute_in_parallel(list(range(7)), limit, worker)

    assert outcome.results == [0, 10, 20, 30, 40, 50, 60]
    assert outcome.successful == 7
    assert outcome.failed == 0
    assert outcome.errors == []


@pytest.mark.parametrize("limit", [1, 2, 3])
async def test_concurrency_never_exceeds_limit(limit):
    in_flight = 0
    peak = 0

    async def worker(item: int, index: int) -> int:
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        await asyncio.sleep(0.01)
        in_flight -= 1
        return item

    await execute_in_parallel(list(range(5)), limit, worker)

    assert peak == limit


async def test_next_batch_waits_for_whole_previous_batch():
    events: list[str] = []

    async def worker(item: int, index: int) -> int:
        events.append(f"start-{index}")
        await asyncio.sleep(0.03 if index == 0 else 0.001)
        events.append(f"end-{index}")
        return item

    await execute_in_parallel([0, 1, 2, 3], 2, worker)

    # Item 2 may only start after the slow item 0 settled
    assert events.index("end-0") < events.index("start-2")
    assert events.index("end-1") < events.index("start-2")


async def test_failure_is_isolated_and_reported_by_index():
    async def worker(item: str, index: int) -> str:
        if item == "bad":
            raise RuntimeError("boom")
        return item.upper()

    errors_seen: list[tuple[str, int]] = []
    outcome = await execute_in_parallel(
        ["a", "bad", "c"],
        2,
        worker,
        on_item_error=lambda item, exc, index: errors_seen.append((item, index)),
    )

    assert outcome.results == ["A", None, "C"]
    assert outcome.successful == 2
    assert outcome.failed == 1
    assert [e.index for e in outcome.errors] == [1]
    assert str(outcome.errors[0].error) == "boom"
    assert errors_seen == [("bad", 1)]


async def test_callbacks_fire_per_item():
    started: list[int] = []
    completed: list[tuple[int, int]] = []

    async def worker(item: int, index: int) -> int:
        return item + 1

    await execute_in_parallel(
        [5, 6],
        1,
        worker,
        on_item_start=lambda item, index: started.append(index),
        on_item_complete=lambda item, result, index: completed.append((index, result)),
    )

    assert started == [0, 1]
    assert completed == [(0, 6), (1, 7)]


async def test_empty_input_returns_empty_result():
    async def worker(item, index):
        raise AssertionError("not called")

    outcome = await execute_in_parallel([], 2, worker)
    assert outcome.results == []
    assert outcome.successful == 0


async def test_rejects_parallelism_below_one():
    async def worker(item, index):
        return item

    with pytest.raises(ValueError, match="max_parallelism"):
        await execute_in_parallel([1], 0, worker)
