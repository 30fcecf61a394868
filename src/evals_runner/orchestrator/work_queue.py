"""Bounded-concurrency FIFO queue of async work units."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Iterable

WorkUnit = Callable[[], Awaitable[None]]


class BoundedWorkQueue:
    """Start units in submission order with at most ``concurrency`` in flight.

    Must be used from within a running event loop.
    """

    def __init__(self, *, concurrency: int) -> None:
        if concurrency < 1:
            raise ValueError("Queue concurrency must be >= 1.")
        self.concurrency = concurrency
        self.active = 0
        self.peak_active = 0
        self._semaphore = asyncio.Semaphore(concurrency)
        self._tasks: list[asyncio.Task[None]] = []

    def add(self, unit: WorkUnit) -> asyncio.Task[None]:
        task = asyncio.create_task(self._run(unit))
        self._tasks.append(task)
        return task

    def add_all(self, units: Iterable[WorkUnit]) -> list[asyncio.Task[None]]:
        return [self.add(unit) for unit in units]

    async def on_idle(self) -> None:
        """Wait until every submitted unit settled; re-raise the first failure."""

        results = await asyncio.gather(*self._tasks, return_exceptions=True)
        for result in results:
            if isinstance(result, BaseException):
                raise result

    async def _run(self, unit: WorkUnit) -> None:
        async with self._semaphore:
            self.active += 1
            self.peak_active = max(self.peak_active, self.active)
            try:
                await unit()
            finally:
                self.active -= 1
