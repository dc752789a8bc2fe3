"""In-process write serialization per scenario.

Writes to one scenario (overlay edits, merges into it, conflict resolutions)
must not interleave. Each scenario id gets its own asyncio.Lock while anyone
holds or waits on it; readers never take it. Across processes the row lock
taken by ScenarioRegistry.get(..., for_update=True) does the same job on
databases that support it.
"""
import asyncio
from contextlib import AsyncExitStack, asynccontextmanager
from typing import AsyncIterator, Dict


class ScenarioLockRegistry:
    """Lock per scenario id, dropped once nobody holds or waits on it."""

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._holders: Dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, scenario_id: str) -> AsyncIterator[None]:
        """Hold the write lock for one scenario."""
        lock = self._locks.setdefault(scenario_id, asyncio.Lock())
        self._holders[scenario_id] = self._holders.get(scenario_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._holders[scenario_id] -= 1
            if self._holders[scenario_id] == 0:
                del self._holders[scenario_id]
                del self._locks[scenario_id]

    @asynccontextmanager
    async def hold_many(self, *scenario_ids: str) -> AsyncIterator[None]:
        """Hold several scenario locks, always acquired in id order."""
        async with AsyncExitStack() as stack:
            for scenario_id in sorted(set(scenario_ids)):
                await stack.enter_async_context(self.hold(scenario_id))
            yield

    def clear(self) -> None:
        """Drop all locks (tests create a fresh event loop per case)."""
        self._locks.clear()
        self._holders.clear()


scenario_locks = ScenarioLockRegistry()

# Key for serializing baseline creation, which has no scenario id yet
BASELINE_LOCK_KEY = "__baseline__"
