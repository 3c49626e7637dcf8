"""Fixed-interval background jobs.

Each job runs once immediately, then sleeps ``interval_seconds`` between
iterations. An iteration that raises is logged and the loop carries on.
Iterations of one job never overlap: the next wait starts only after the
previous iteration returned. Stopping interrupts the wait but lets an
in-flight iteration finish.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

logger = logging.getLogger(__name__)


class PeriodicJob:
    def __init__(self, name: str, interval_seconds: float, func: Callable[[], Awaitable[Any]]) -> None:
        if interval_seconds <= 0:
            raise ValueError(f"interval_seconds must be positive for job {name}")
        self.name = name
        self.interval_seconds = interval_seconds
        self.func = func
        self.runs = 0
        self.failures = 0
        self._stop = asyncio.Event()
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._task = asyncio.create_task(self._loop(), name=f"job-{self.name}")
        logger.info("Started job %s (every %ss)", self.name, self.interval_seconds)

    async def stop(self) -> None:
        """Signal the loop and wait for the current iteration to finish."""
        self._stop.set()
        if self._task is not None:
            await self._task
            self._task = None
        logger.info("Stopped job %s after %d runs", self.name, self.runs)

    async def run_once(self) -> None:
        """One guarded iteration: failures are logged, never raised."""
        self.runs += 1
        try:
            await self.func()
        except Exception:
            self.failures += 1
            logger.exception("Job %s iteration failed", self.name)

    async def _loop(self) -> None:
        while not self._stop.is_set():
            await self.run_once()
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                pass


class Scheduler:
    """Owns a set of independent periodic jobs."""

    def __init__(self, jobs: list[PeriodicJob] | None = None) -> None:
        self._jobs: dict[str, PeriodicJob] = {}
        for job in jobs or []:
            self.add(job)

    @property
    def jobs(self) -> dict[str, PeriodicJob]:
        return dict(self._jobs)

    def add(self, job: PeriodicJob) -> None:
        if job.name in self._jobs:
            raise ValueError(f"Duplicate job name: {job.name}")
        self._jobs[job.name] = job

    def start(self) -> None:
        for job in self._jobs.values():
            job.start()

    def status(self) -> dict[str, dict[str, Any]]:
        """Per-job loop state and counters, keyed by job name."""
        return {
            name: {
                "running": job.running,
                "interval_seconds": job.interval_seconds,
                "runs": job.runs,
                "failures": job.failures,
            }
            for name, job in self._jobs.items()
        }

    async def stop_job(self, name: str) -> None:
        job = self._jobs.get(name)
        if job is None:
            raise KeyError(name)
        await job.stop()

    async def stop(self) -> None:
        await asyncio.gather(*(job.stop() for job in self._jobs.values()))
        logger.info("Scheduler stopped")
