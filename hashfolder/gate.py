from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, TypeVar


T = TypeVar("T")


class ConcurrencyGate:
    """Bounds how many bulk filesystem reads run at the same time.

    Directory listings and full content reads go through the gate; stat calls
    do not.
    """

    def __init__(self, capacity: int) -> None:
        if capacity < 1:
            raise ValueError(f"Concurrency must be at least 1, got {capacity}")
        self.capacity = capacity
        self.active = 0
        self.peak = 0
        self._semaphore = asyncio.Semaphore(capacity)

    @asynccontextmanager
    async def slot(self) -> AsyncIterator[None]:
        async with self._semaphore:
            self.active += 1
            self.peak = max(self.peak, self.active)
            try:
                yield
            finally:
                self.active -= 1

    async def run(self, func: Callable[..., T], *args) -> T:
        """Run a blocking callable in a worker thread while holding a slot."""
        async with self.slot():
            return await asyncio.to_thread(func, *args)
