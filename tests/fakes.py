"""Fakes shared by the monitor tests."""

import asyncio
from datetime import datetime, timedelta, timezone

from quantumania.exceptions import CycleAbortedError, UpstreamUnavailableError
from quantumania.snapshot import SnapshotStore
from quantumania.types import (
    Backend,
    CycleResult,
    DashboardSummary,
    Job,
    JobStatus,
    QueueStatus,
    SystemStats,
)

T0 = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Monotonic clock advanced by hand."""

    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class SteppingNow:
    """Datetime clock that moves one second per call."""

    def __init__(self, start=T0):
        self.current = start

    def __call__(self):
        value = self.current
        self.current += timedelta(seconds=1)
        return value


def make_job(job_id, status=JobStatus.QUEUED, backend="ibm_kyoto", **kwargs):
    defaults = dict(shots=1024, qubits=5, creation_date=T0 - timedelta(minutes=30))
    defaults.update(kwargs)
    return Job(id=job_id, status=JobStatus(status), backend=backend, **defaults)


def make_backend(name, operational=True, simulator=False, **kwargs):
    defaults = dict(qubit_count=127, pending_jobs=3, basis_gates=["cx", "id", "rz", "sx", "x", "ecr"])
    defaults.update(kwargs)
    return Backend(name=name, operational=operational, is_simulator=simulator, **defaults)


class FakeUpstream:
    """In-memory stand-in for UpstreamAdapter."""

    def __init__(self, jobs=None, backends=None):
        self.jobs = list(jobs or [])
        self.backends = list(backends or [])
        self.fail_with = None
        self.queue_failures = set()
        self.queue_calls = []
        self.cache_clears = 0
        self.closed = False
        self.stats_calls = 0

    async def fetch_jobs(self, limit=50, offset=0, status=None):
        if self.fail_with is not None:
            raise self.fail_with
        return list(self.jobs)

    async def fetch_backends(self):
        return list(self.backends)

    async def fetch_system_stats(self):
        self.stats_calls += 1
        return SystemStats.from_inventory(self.backends, self.jobs, now=T0)

    async def fetch_queue_status(self, backend_name):
        self.queue_calls.append(backend_name)
        if backend_name in self.queue_failures:
            raise UpstreamUnavailableError(f"queue for {backend_name} unavailable")
        return QueueStatus(length=4, estimated_wait_time=120.0)

    async def fetch_job(self, job_id):
        for job in self.jobs:
            if job.id == job_id:
                return job
        raise UpstreamUnavailableError(f"no job {job_id}", status_code=404)

    def clear_cache(self):
        self.cache_clears += 1

    async def close(self):
        self.closed = True


def empty_result():
    summary = DashboardSummary.from_cycle([], [], T0)
    return CycleResult(
        started_at=T0,
        completed_at=T0,
        jobs=[],
        backends=[],
        stats=SystemStats.from_inventory([], [], now=T0),
        summary=summary,
    )


class BlockingEngine:
    """Engine whose cycles wait until released."""

    def __init__(self, abort=False):
        self.store = SnapshotStore()
        self.last_cycle_at = None
        self.calls = 0
        self.abort = abort
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def run_cycle(self):
        self.calls += 1
        self.started.set()
        await self.release.wait()
        if self.abort:
            raise CycleAbortedError("upstream exploded")
        self.last_cycle_at = T0
        return empty_result()

    async def deep_scan(self):
        return SystemStats.from_inventory([], [], now=T0)
