"""
Deterministic task scheduler.

A priority queue of (due_at_ms, seq, key) entries driven by one loop. Each
key has at most one pending entry; scheduling a key again replaces the old
entry (lazy invalidation via the seq number). Time comes from an injected
Clock so tests can step it by hand and call run_pending() directly.
"""

import asyncio
import heapq
import itertools
import logging
import time
from typing import Any, Awaitable, Callable, Hashable, Optional

logger = logging.getLogger(__name__)

Callback = Callable[[], Awaitable[Any]]


# ============================================================================
# CLOCK
# ============================================================================

class Clock:
    def now_ms(self) -> int:
        raise NotImplementedError


class SystemClock(Clock):
    def now_ms(self) -> int:
        return int(time.time() * 1000)


# ============================================================================
# SCHEDULER
# ============================================================================

class Scheduler:
    def __init__(self, clock: Optional[Clock] = None):
        self.clock = clock or SystemClock()
        self._heap: list[tuple[int, int, Hashable]] = []
        self._entries: dict[Hashable, tuple[int, int, Callback]] = {}  # key -> (due, seq, callback)
        self._seq = itertools.count()
        self._wakeup: Optional[asyncio.Event] = None
        self._loop_task: Optional[asyncio.Task] = None
        self._in_flight: set[asyncio.Task] = set()
        self.running = False

    # -------------------------------------------------------------------------
    # QUEUE OPERATIONS
    # -------------------------------------------------------------------------

    def schedule(self, key: Hashable, delay_ms: int, callback: Callback) -> int:
        """Run callback after delay_ms. Returns the absolute due time."""
        due = self.clock.now_ms() + max(0, int(delay_ms))
        return self.schedule_at(key, due, callback)

    def schedule_at(self, key: Hashable, due_at_ms: int, callback: Callback) -> int:
        seq = next(self._seq)
        self._entries[key] = (due_at_ms, seq, callback)
        heapq.heappush(self._heap, (due_at_ms, seq, key))
        self._wake()
        return due_at_ms

    def cancel(self, key: Hashable) -> bool:
        # Heap entry is dropped lazily when it surfaces
        removed = self._entries.pop(key, None) is not None
        if removed:
            self._wake()
        return removed

    def cancel_all(self) -> None:
        self._entries.clear()
        self._heap.clear()
        self._wake()

    def due_at(self, key: Hashable) -> Optional[int]:
        entry = self._entries.get(key)
        return entry[0] if entry else None

    def is_scheduled(self, key: Hashable) -> bool:
        return key in self._entries

    def pending_keys(self) -> list[Hashable]:
        return list(self._entries.keys())

    def next_due(self) -> Optional[int]:
        self._discard_stale()
        return self._heap[0][0] if self._heap else None

    def _discard_stale(self) -> None:
        while self._heap:
            due, seq, key = self._heap[0]
            entry = self._entries.get(key)
            if entry is not None and entry[1] == seq:
                return
            heapq.heappop(self._heap)

    def run_pending(self) -> list[asyncio.Task]:
        """
        Start every callback whose due time has passed, in due order.

        Each callback runs as its own task so callbacks can interleave at
        their await points. Returns the started tasks.
        """
        now = self.clock.now_ms()
        started = []
        while True:
            self._discard_stale()
            if not self._heap or self._heap[0][0] > now:
                break
            _, _, key = heapq.heappop(self._heap)
            _, _, callback = self._entries.pop(key)
            task = asyncio.ensure_future(self._run(key, callback))
            self._in_flight.add(task)
            task.add_done_callback(self._in_flight.discard)
            started.append(task)
        return started

    async def _run(self, key: Hashable, callback: Callback) -> None:
        try:
            await callback()
        except Exception as e:
            logger.error(f"[Scheduler] Task {key} raised: {e}")

    # -------------------------------------------------------------------------
    # DRIVING LOOP
    # -------------------------------------------------------------------------

    def _wake(self) -> None:
        if self._wakeup is not None:
            self._wakeup.set()

    def start(self) -> None:
        """Start the driving loop on the running event loop"""
        if self.running:
            return
        self.running = True
        self._wakeup = asyncio.Event()
        self._loop_task = asyncio.ensure_future(self._drive())
        logger.info("[Scheduler] Started")

    def stop(self) -> None:
        """Stop the loop. Callbacks already running are left to finish."""
        if not self.running:
            return
        self.running = False
        self._wake()
        if self._loop_task is not None:
            self._loop_task.cancel()
            self._loop_task = None
        logger.info("[Scheduler] Stopped")

    async def _drive(self) -> None:
        while self.running:
            self.run_pending()
            next_due = self.next_due()
            timeout = None
            if next_due is not None:
                timeout = max(0, next_due - self.clock.now_ms()) / 1000
            self._wakeup.clear()
            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=timeout)
            except asyncio.TimeoutError:
                pass

    async def drain(self) -> None:
        """Wait for in-flight callbacks to complete"""
        while self._in_flight:
            await asyncio.gather(*list(self._in_flight), return_exceptions=True)
