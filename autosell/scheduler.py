"""
Scheduler - Cancellable periodic timers owned by one engine run.

Each timer spawns its job as a separate task. cancel_all() stops the timers
only; jobs already dispatched are left to finish and must check their run
generation before writing state.

Usage:
    scheduler = Scheduler(generation=3)
    scheduler.every("analysis", 30.0, engine.run_cycle, immediate=True)
    ...
    scheduler.cancel_all()
"""
import asyncio
import logging
from typing import Awaitable, Callable, Dict, Set

logger = logging.getLogger(__name__)


class Scheduler:

    def __init__(self, generation: int):
        self.generation = generation
        self._timers: Dict[str, asyncio.Task] = {}
        self._inflight: Set[asyncio.Task] = set()
        self.cancelled = False

    @property
    def timer_names(self):
        return sorted(self._timers)

    @property
    def inflight(self) -> Set[asyncio.Task]:
        return set(self._inflight)

    def every(self, name: str, interval: float, job: Callable[[], Awaitable[None]],
              immediate: bool = False):
        """Run `job` every `interval` seconds (first run now if `immediate`)."""
        if self.cancelled:
            raise RuntimeError("Scheduler already cancelled")
        if name in self._timers:
            self._timers[name].cancel()
        self._timers[name] = asyncio.create_task(self._loop(name, interval, job, immediate))

    async def _loop(self, name: str, interval: float, job: Callable[[], Awaitable[None]],
                    immediate: bool):
        if immediate:
            self._spawn(name, job)
        while True:
            await asyncio.sleep(interval)
            self._spawn(name, job)

    def _spawn(self, name: str, job: Callable[[], Awaitable[None]]):
        task = asyncio.create_task(job())
        self._inflight.add(task)
        task.add_done_callback(self._job_done)
        logger.debug(f"[scheduler g{self.generation}] {name} fired")

    def _job_done(self, task: asyncio.Task):
        self._inflight.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"[scheduler g{self.generation}] job failed: {task.exception()!r}")

    def cancel_all(self):
        """Cancel every timer. In-flight jobs are not touched."""
        self.cancelled = True
        for task in self._timers.values():
            task.cancel()
        self._timers.clear()
