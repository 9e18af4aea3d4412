"""Change detection: one fetch-diff-update pass over the job registry."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Callable

from .exceptions import CycleAbortedError
from .snapshot import SnapshotStore
from .types import (
    Backend,
    CycleResult,
    DashboardSummary,
    Job,
    NewJobEvent,
    QueueUpdate,
    StatusChange,
    SystemStats,
    utcnow,
)
from .upstream import UpstreamAdapter

logger = logging.getLogger(__name__)

QUEUE_BACKEND_LIMIT = 5


class ChangeDetectionEngine:
    """Runs polling cycles against an upstream adapter.

    The engine owns the snapshot store. Callers must not run two cycles
    at once; the scheduler guarantees that.

    Args:
        upstream: Adapter used for every fetch
        store: Snapshot store to diff against (default: a fresh one)
        job_limit: Jobs fetched per cycle (default: 50)
        queue_backend_limit: Backends whose queue is sampled (default: 5)
        now: Clock returning aware datetimes
    """

    def __init__(
        self,
        upstream: UpstreamAdapter,
        store: SnapshotStore | None = None,
        job_limit: int = 50,
        queue_backend_limit: int = QUEUE_BACKEND_LIMIT,
        now: Callable[[], datetime] = utcnow,
    ) -> None:
        self.upstream = upstream
        self.store = store if store is not None else SnapshotStore()
        self.job_limit = job_limit
        self.queue_backend_limit = queue_backend_limit
        self._now = now
        self._last_cycle_at: datetime | None = None

    @property
    def last_cycle_at(self) -> datetime | None:
        """Completion time of the last successful cycle."""
        return self._last_cycle_at

    async def run_cycle(self) -> CycleResult:
        """Fetch, diff against the snapshot, update it, and summarize.

        Raises:
            CycleAbortedError: If any of the bulk fetches failed. The
                snapshot is left untouched in that case.
        """
        started_at = self._now()
        logger.info("Polling job registry")

        fetches = [
            asyncio.ensure_future(self.upstream.fetch_jobs(self.job_limit)),
            asyncio.ensure_future(self.upstream.fetch_backends()),
            asyncio.ensure_future(self.upstream.fetch_system_stats()),
        ]
        try:
            jobs, backends, stats = await asyncio.gather(*fetches)
        except Exception as exc:
            for task in fetches:
                task.cancel()
            # Reap the siblings so none outlives the aborted cycle.
            await asyncio.gather(*fetches, return_exceptions=True)
            raise CycleAbortedError(f"Cycle aborted: {exc}") from exc

        observed_at = self._now()
        new_jobs, status_changes = self._diff(jobs, observed_at)
        summary = DashboardSummary.from_cycle(jobs, backends, observed_at)
        queue_updates = await self._queue_updates(backends)

        completed_at = self._now()
        self._last_cycle_at = completed_at

        if status_changes:
            logger.info("Job status changes detected: %d", len(status_changes))
        if new_jobs:
            logger.info("New jobs detected: %d", len(new_jobs))
        logger.info(
            "Cycle complete. Total jobs: %d, changes: %d, new: %d",
            len(jobs), len(status_changes), len(new_jobs),
        )

        return CycleResult(
            started_at=started_at,
            completed_at=completed_at,
            jobs=jobs,
            backends=backends,
            stats=stats,
            summary=summary,
            new_jobs=new_jobs,
            status_changes=status_changes,
            queue_updates=queue_updates,
        )

    async def deep_scan(self) -> SystemStats:
        """Re-fetch aggregate stats without touching the snapshot."""
        logger.info("Running deep system scan")
        return await self.upstream.fetch_system_stats()

    def _diff(
        self, jobs: list[Job], observed_at: datetime
    ) -> tuple[list[NewJobEvent], list[StatusChange]]:
        new_jobs = []
        status_changes = []

        for job in jobs:
            previous = self.store.get(job.id)
            if previous is None:
                new_jobs.append(NewJobEvent(job=job, observed_at=observed_at))
            elif previous.status is not job.status:
                status_changes.append(
                    StatusChange(
                        job_id=job.id,
                        job_name=job.display_name,
                        old_status=previous.status,
                        new_status=job.status,
                        backend=job.backend,
                        timestamp=observed_at,
                    )
                )
            self.store.put(job, observed_at)

        return new_jobs, status_changes

    async def _queue_updates(self, backends: list[Backend]) -> list[QueueUpdate]:
        active = [b for b in backends if not b.is_simulator and b.operational]
        active = active[: self.queue_backend_limit]
        if not active:
            return []

        results = await asyncio.gather(
            *(self.upstream.fetch_queue_status(b.name) for b in active),
            return_exceptions=True,
        )

        updates = []
        for backend, result in zip(active, results):
            if isinstance(result, BaseException):
                logger.warning(
                    "Failed to get queue status for %s: %s", backend.name, result
                )
                continue
            updates.append(
                QueueUpdate(
                    backend=backend.name,
                    queue_length=result.length,
                    estimated_wait_time=result.estimated_wait_time,
                    timestamp=self._now(),
                )
            )
        return updates
