"""Read-only analytics over the job snapshot.

Everything here is a projection of already-observed jobs; nothing calls
the upstream.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum

import numpy as np

from .types import Job, JobStatus, format_timestamp, utcnow

HIGH_ERROR_RATE = 0.1


class TimeRange(str, Enum):
    """Analytics window with its timeline bucket size and count."""

    HOUR = "1h"
    SIX_HOURS = "6h"
    DAY = "24h"
    WEEK = "7d"

    @classmethod
    def parse(cls, value: str | TimeRange | None) -> TimeRange:
        """Unknown or missing values fall back to 24h."""
        try:
            return cls(value)
        except ValueError:
            return cls.DAY

    @property
    def hours(self) -> int:
        return {"1h": 1, "6h": 6, "24h": 24, "7d": 168}[self.value]

    @property
    def buckets(self) -> tuple[timedelta, int]:
        return {
            "1h": (timedelta(minutes=5), 12),
            "6h": (timedelta(minutes=30), 12),
            "24h": (timedelta(hours=1), 24),
            "7d": (timedelta(days=1), 7),
        }[self.value]


@dataclass
class PerformanceMetrics:
    success_rate: int
    error_rate: int
    total_shots: int
    avg_shots_per_job: int

    def to_dict(self) -> dict:
        return {
            "successRate": self.success_rate,
            "errorRate": self.error_rate,
            "totalShots": self.total_shots,
            "avgShotsPerJob": self.avg_shots_per_job,
        }


@dataclass
class Insight:
    type: str
    title: str
    message: str

    def to_dict(self) -> dict:
        return {"type": self.type, "title": self.title, "message": self.message}


@dataclass
class SnapshotAnalytics:
    time_range: TimeRange
    total_jobs: int
    recent_jobs: int
    avg_jobs_per_hour: float
    status_distribution: dict[str, int]
    backend_usage: dict[str, int]
    timeline: list[tuple[datetime, int]]
    performance: PerformanceMetrics
    insights: list[Insight] = field(default_factory=list)
    generated_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return {
            "timeRange": self.time_range.value,
            "summary": {
                "totalJobs": self.total_jobs,
                "recentJobs": self.recent_jobs,
                "avgJobsPerHour": self.avg_jobs_per_hour,
            },
            "statusDistribution": dict(self.status_distribution),
            "backendUsage": dict(self.backend_usage),
            "timeline": [
                {"time": format_timestamp(start), "count": count}
                for start, count in self.timeline
            ],
            "performanceMetrics": self.performance.to_dict(),
            "insights": [insight.to_dict() for insight in self.insights],
            "timestamp": format_timestamp(self.generated_at),
        }


def _percent(part: int, whole: int) -> int:
    return int(round(100 * part / whole)) if whole else 0


def performance_metrics(jobs: list[Job]) -> PerformanceMetrics:
    shots = np.array([job.shots for job in jobs], dtype=np.int64)
    completed = sum(1 for job in jobs if job.status is JobStatus.COMPLETED)
    errored = sum(1 for job in jobs if job.status is JobStatus.ERROR)
    return PerformanceMetrics(
        success_rate=_percent(completed, len(jobs)),
        error_rate=_percent(errored, len(jobs)),
        total_shots=int(shots.sum()),
        avg_shots_per_job=int(round(float(shots.mean()))) if len(jobs) else 0,
    )


def jobs_timeline(
    jobs: list[Job], time_range: TimeRange, now: datetime
) -> list[tuple[datetime, int]]:
    """Count jobs per bucket over the window ending at ``now``.

    Buckets are half-open ``[start, start + interval)``; the last one also
    includes ``now``. Jobs without a creation date or outside the window
    are not counted.
    """
    interval, count = time_range.buckets
    window_start = now - interval * count
    edges = np.array(
        [(window_start + interval * i).timestamp() for i in range(count + 1)]
    )
    stamps = np.array(
        [
            job.creation_date.timestamp()
            for job in jobs
            if job.creation_date is not None
        ],
        dtype=float,
    )
    counts, _ = np.histogram(stamps, bins=edges)
    return [
        (window_start + interval * i, int(counts[i])) for i in range(count)
    ]


def generate_insights(all_jobs: list[Job], recent_jobs: list[Job]) -> list[Insight]:
    insights = []

    usage = Counter(job.backend for job in all_jobs)
    if usage:
        backend, processed = usage.most_common(1)[0]
        insights.append(
            Insight("info", "Most Active Backend", f"{backend} has processed {processed} jobs")
        )

    if recent_jobs:
        insights.append(
            Insight(
                "success",
                "Recent Activity",
                f"{len(recent_jobs)} jobs submitted recently",
            )
        )

    errored = sum(1 for job in all_jobs if job.status is JobStatus.ERROR)
    if all_jobs and errored > len(all_jobs) * HIGH_ERROR_RATE:
        insights.append(
            Insight(
                "warning",
                "High Error Rate",
                f"{errored} jobs failed ({_percent(errored, len(all_jobs))}%)",
            )
        )

    return insights


def build_analytics(
    jobs: list[Job],
    time_range: str | TimeRange | None = TimeRange.DAY,
    now: datetime | None = None,
) -> SnapshotAnalytics:
    """Analytics for the snapshot over the requested window."""
    window = TimeRange.parse(time_range)
    now = now or utcnow()
    since = now - timedelta(hours=window.hours)
    recent = [
        job for job in jobs
        if job.creation_date is not None and since <= job.creation_date <= now
    ]

    return SnapshotAnalytics(
        time_range=window,
        total_jobs=len(jobs),
        recent_jobs=len(recent),
        avg_jobs_per_hour=round(len(recent) / window.hours, 1),
        status_distribution=dict(Counter(job.status.value for job in jobs)),
        backend_usage=dict(Counter(job.backend or "unknown" for job in jobs)),
        timeline=jobs_timeline(recent, window, now),
        performance=performance_metrics(jobs),
        insights=generate_insights(jobs, recent),
        generated_at=now,
    )


def current_load(jobs: list[Job]) -> dict:
    running = sum(1 for job in jobs if job.status is JobStatus.RUNNING)
    queued = sum(1 for job in jobs if job.status is JobStatus.QUEUED)
    return {
        "runningJobs": running,
        "queuedJobs": queued,
        "totalActiveJobs": running + queued,
    }
