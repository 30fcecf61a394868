from __future__ import annotations

import asyncio

import allure
import pytest

from evals_runner.orchestrator.work_queue import BoundedWorkQueue

pytestmark = [
    allure.epic("Run Orchestration"),
    allure.feature("Bounded Work Queue"),
]


def test_units_start_in_submission_order_under_cap() -> None:
    started: list[int] = []

    async def scenario() -> BoundedWorkQueue:
        queue = BoundedWorkQueue(concurrency=2)

        def unit_for(index: int):
            async def unit() -> None:
                started.append(index)
                await asyncio.sleep(0.01)

            return unit

        queue.add_all(unit_for(index) for index in range(5))
        await queue.on_idle()
        return queue

    queue = asyncio.run(scenario())

    assert started == [0, 1, 2, 3, 4]
    assert queue.peak_active == 2
    assert queue.active == 0


def test_on_idle_waits_for_all_units_then_reraises_first_failure() -> None:
    finished: list[str] = []

    async def failing() -> None:
        raise RuntimeError("unit failed")

    async def slow() -> None:
        await asyncio.sleep(0.01)
        finished.append("slow")

    async def scenario() -> None:
        queue = BoundedWorkQueue(concurrency=1)
        queue.add(failing)
        queue.add(slow)
        await queue.on_idle()

    with pytest.raises(RuntimeError, match="unit failed"):
        asyncio.run(scenario())

    assert finished == ["slow"]


def test_on_idle_with_no_units_returns_immediately() -> None:
    async def scenario() -> None:
        await BoundedWorkQueue(concurrency=3).on_idle()

    asyncio.run(scenario())


def test_concurrency_must_be_positive() -> None:
    with pytest.raises(ValueError, match=">= 1"):
        BoundedWorkQueue(concurrency=0)
