"""
Rate-limited scheduler: run an async worker over a list of items with a cap on
concurrent workers and a pause between waves.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Optional, Sequence, TypeVar

from config import PAUSE_POLL_SECONDS
from errors import AuditCancelled

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RateLimitedScheduler:
    """
    Dispatch items to ``worker`` in index order, never more than
    ``max_concurrent`` at a time.

    When ``inter_batch_delay`` > 0 and the active count drains to zero while
    items are still unclaimed, dispatching waits that many seconds first.
    Pausing gates new dispatches only; in-flight workers keep running.
    Cancelling (``cancel()`` or the ``signal`` event) stops dispatching, waits
    for in-flight workers to settle and raises ``AuditCancelled``.

    Workers are expected to handle their own failures. Anything that escapes
    is logged here and does not stop the run.
    """

    def __init__(self, max_concurrent: int, inter_batch_delay: float = 0.0,
                 poll_interval: float = PAUSE_POLL_SECONDS):
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        if inter_batch_delay < 0:
            raise ValueError("inter_batch_delay cannot be negative")
        self.max_concurrent = max_concurrent
        self.inter_batch_delay = inter_batch_delay
        self.poll_interval = poll_interval

        self.active = 0
        self.peak_active = 0
        self.dispatched = 0
        self.paused = False
        self.cancelled = False

        self._total = 0
        self._signal: Optional[asyncio.Event] = None
        self._wake: Optional[asyncio.Event] = None
        self._gate: Optional[asyncio.Event] = None

    # -----------------------------
    # Controls
    # -----------------------------
    def pause(self) -> None:
        self.paused = True

    def resume(self) -> None:
        self.paused = False

    def cancel(self) -> None:
        self.cancelled = True
        if self._wake is not None:
            self._wake.set()

    def status(self) -> Dict[str, object]:
        return {
            "active": self.active,
            "peak_active": self.peak_active,
            "dispatched": self.dispatched,
            "paused": self.paused,
            "cancelled": self.cancelled,
        }

    def _stopped(self) -> bool:
        return self.cancelled or (self._signal is not None and self._signal.is_set())

    # -----------------------------
    # Run
    # -----------------------------
    async def run(self, items: Sequence[T], worker: Callable[[T], Awaitable[None]],
                  signal: Optional[asyncio.Event] = None) -> None:
        items = list(items)
        self.cancelled = False
        self.active = 0
        self.peak_active = 0
        self.dispatched = 0
        self._total = len(items)
        self._signal = signal
        self._wake = asyncio.Event()
        self._gate = asyncio.Event()
        self._gate.set()

        in_flight = set()
        try:
            while self.dispatched < self._total and not self._stopped():
                if self.paused:
                    await asyncio.sleep(self.poll_interval)
                    continue
                if not self._gate.is_set():
                    await self._wait_on(self._gate)
                    continue
                if self.active >= self.max_concurrent:
                    self._wake.clear()
                    await self._wait_on(self._wake)
                    continue

                item = items[self.dispatched]
                self.dispatched += 1
                self.active += 1
                self.peak_active = max(self.peak_active, self.active)
                task = asyncio.ensure_future(self._run_one(item, worker))
                in_flight.add(task)
                task.add_done_callback(in_flight.discard)
        finally:
            if in_flight:
                await asyncio.gather(*list(in_flight), return_exceptions=True)

        if self._stopped():
            logger.info("Scheduler stopped after dispatching %d/%d items", self.dispatched, self._total)
            raise AuditCancelled("Processing cancelled")

    async def _run_one(self, item: T, worker: Callable[[T], Awaitable[None]]) -> None:
        try:
            await worker(item)
        except Exception:
            logger.warning("Item processing failed: %r", item, exc_info=True)
        finally:
            self.active -= 1
            if (self.inter_batch_delay > 0 and self.active == 0
                    and self.dispatched < self._total and not self._stopped()):
                self._gate.clear()
                await self._sleep(self.inter_batch_delay)
                self._gate.set()
            self._wake.set()

    async def _wait_on(self, event: asyncio.Event) -> None:
        try:
            await asyncio.wait_for(event.wait(), timeout=self.poll_interval)
        except asyncio.TimeoutError:
            pass

    async def _sleep(self, seconds: float) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + seconds
        while not self._stopped():
            remaining = deadline - loop.time()
            if remaining <= 0:
                return
            await asyncio.sleep(min(remaining, self.poll_interval))
