"""
Bastion - Scheduler
===================

One loop that owns every periodic job.

DESIGN:
    run_pending() compares each job's next due time with the injected
    clock, so tests drive the whole schedule by advancing a ManualClock
    and awaiting run_pending(). In production start() calls it once per
    tick. A job that raises is logged and rescheduled like any other.

Author: Bastion Maintainers
"""

import asyncio
from typing import Dict, List, Optional, Tuple

from bastion.core import constants as C
from bastion.core.logger import logger
from bastion.services.scheduler.base import PeriodicJob
from bastion.utils.async_utils import create_safe_task
from bastion.utils.clock import Clock, SYSTEM_CLOCK


class Scheduler:
    """Runs registered PeriodicJobs on their intervals."""

    def __init__(self, clock: Clock = SYSTEM_CLOCK, tick: float = C.SCHEDULER_TICK) -> None:
        self._clock = clock
        self._tick = tick
        self._jobs: List[PeriodicJob] = []
        self._next_run: Dict[str, float] = {}
        self._running = False
        self._task: Optional[asyncio.Task] = None

    @property
    def jobs(self) -> List[PeriodicJob]:
        return list(self._jobs)

    def add_job(self, job: PeriodicJob) -> None:
        """Register a job. Its first run is one interval from now."""
        if job.name in self._next_run:
            raise ValueError(f"Job already registered: {job.name}")
        self._jobs.append(job)
        self._next_run[job.name] = self._clock.now() + job.interval

    def next_run(self, name: str) -> Optional[float]:
        return self._next_run.get(name)

    # =========================================================================
    # Execution
    # =========================================================================

    async def run_pending(self) -> List[Tuple[str, str]]:
        """
        Run every job whose due time has passed.

        Returns:
            (job name, formatted result) for each job that ran.
        """
        now = self._clock.now()
        ran: List[Tuple[str, str]] = []

        for job in self._jobs:
            if now < self._next_run[job.name]:
                continue
            self._next_run[job.name] = now + job.interval

            try:
                if not await job.should_run():
                    logger.debug("Job Skipped", [("Job", job.name), ("Reason", "Conditions not met")])
                    continue
                result = await job.run()
                summary = job.format_result(result)
            except Exception as e:
                logger.error("Scheduled Job Failed", [
                    ("Job", job.name),
                    ("Error", str(e)[:100]),
                    ("Type", type(e).__name__),
                ])
                summary = "error"

            ran.append((job.name, summary))
            logger.debug("Job Ran", [("Job", job.name), ("Result", summary)])

        return ran

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self) -> None:
        if self._running:
            return

        self._running = True
        self._task = create_safe_task(self._loop(), "Protection Scheduler")
        logger.tree("Scheduler Started", [
            ("Jobs", ", ".join(f"{j.name} ({j.interval:.0f}s)" for j in self._jobs)),
            ("Total", str(len(self._jobs))),
        ], emoji="⏰")

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Scheduler Stopped")

    async def _loop(self) -> None:
        while self._running:
            try:
                await self.run_pending()
                await asyncio.sleep(self._tick)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Scheduler Loop Error", [
                    ("Error", str(e)[:100]),
                ])
                await asyncio.sleep(self._tick)


__all__ = ["Scheduler"]
