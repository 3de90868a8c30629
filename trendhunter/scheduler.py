from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

logger = logging.getLogger(__name__)

JobHandler = Callable[[], Awaitable[Any]]


@dataclass(slots=True)
class Job:
    """A handler fired every ``interval`` seconds."""

    name: str
    handler: JobHandler
    interval: float
    run_immediately: bool = True
    running: bool = False
    runs: int = 0
    skipped: int = 0
    failures: int = 0
    current: Optional[asyncio.Task] = None
    ticker: Optional[asyncio.Task] = None


class PeriodicScheduler:
    """Single owner of every periodic job in the process.

    Ticks fire on a fixed cadence regardless of how long handlers take. A
    tick that finds the previous run of the same job still in flight is
    skipped, so a job never overlaps itself. Handler errors are logged and
    the job keeps its schedule.
    """

    def __init__(self) -> None:
        self._jobs: Dict[str, Job] = {}
        self._stopped = asyncio.Event()
        self._started = False

    @property
    def jobs(self) -> Dict[str, Job]:
        return dict(self._jobs)

    def add_job(
        self,
        name: str,
        handler: JobHandler,
        interval: float,
        *,
        run_immediately: bool = True,
    ) -> Job:
        if name in self._jobs:
            raise ValueError(f"job {name!r} already registered")
        if interval <= 0:
            raise ValueError("interval must be positive")
        job = Job(name, handler, float(interval), run_immediately=run_immediately)
        self._jobs[name] = job
        if self._started:
            job.ticker = asyncio.create_task(self._tick_loop(job), name=f"tick:{name}")
        return job

    async def start(self) -> None:
        if self._started:
            return
        self._started = True
        self._stopped.clear()
        for job in self._jobs.values():
            job.ticker = asyncio.create_task(self._tick_loop(job), name=f"tick:{job.name}")
        logger.info(
            "Scheduler started: %s",
            ", ".join(f"{j.name}/{j.interval:g}s" for j in self._jobs.values()) or "no jobs",
        )

    async def stop(self) -> None:
        """Stop ticking and cancel in-flight handler runs."""
        self._stopped.set()
        pending: list[asyncio.Task] = []
        for job in self._jobs.values():
            for task in (job.ticker, job.current):
                if task is not None and not task.done():
                    task.cancel()
                    pending.append(task)
            job.ticker = None
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._started = False
        logger.info("Scheduler stopped")

    async def trigger(self, name: str) -> bool:
        """Run *name* now and wait for it; ``False`` if a run is already in flight."""
        job = self._jobs[name]
        task = self._fire(job)
        if task is None:
            return False
        await asyncio.gather(task, return_exceptions=True)
        return True

    async def _tick_loop(self, job: Job) -> None:
        if not job.run_immediately:
            if await self._wait(job.interval):
                return
        while not self._stopped.is_set():
            self._fire(job)
            if await self._wait(job.interval):
                return

    async def _wait(self, delay: float) -> bool:
        """Sleep for *delay*; ``True`` when the scheduler was stopped meanwhile."""
        try:
            await asyncio.wait_for(self._stopped.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return False
        return True

    def _fire(self, job: Job) -> Optional[asyncio.Task]:
        if job.running:
            job.skipped += 1
            logger.warning("Skipping %s tick: previous run still in progress", job.name)
            return None
        job.running = True
        job.current = asyncio.create_task(self._run(job), name=f"run:{job.name}")
        return job.current

    async def _run(self, job: Job) -> None:
        try:
            await job.handler()
        except asyncio.CancelledError:
            raise
        except Exception:
            job.failures += 1
            logger.exception("Job %s failed", job.name)
        finally:
            job.running = False
            job.runs += 1
            job.current = None


__all__ = ["Job", "JobHandler", "PeriodicScheduler"]
