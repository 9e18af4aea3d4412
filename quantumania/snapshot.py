"""Last-observed state of every job the engine has seen."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from typing import Iterator

from .types import Job


@dataclass
class SnapshotEntry:
    job: Job
    first_seen: datetime
    last_seen: datetime


class SnapshotStore:
    """Jobs keyed by id, overwritten in place after every cycle.

    Entries are never evicted: a job that drops out of the upstream
    listing keeps its last observed state. The store holds its own copy
    of every job and hands out copies, so callers cannot alter what the
    next cycle diffs against.
    """

    def __init__(self) -> None:
        self._entries: dict[str, SnapshotEntry] = {}

    def get(self, job_id: str) -> Job | None:
        entry = self._entries.get(job_id)
        return replace(entry.job) if entry is not None else None

    def entry(self, job_id: str) -> SnapshotEntry | None:
        entry = self._entries.get(job_id)
        if entry is None:
            return None
        return SnapshotEntry(replace(entry.job), entry.first_seen, entry.last_seen)

    def put(self, job: Job, observed_at: datetime) -> None:
        entry = self._entries.get(job.id)
        if entry is None:
            self._entries[job.id] = SnapshotEntry(replace(job), observed_at, observed_at)
        else:
            entry.job = replace(job)
            entry.last_seen = observed_at

    def jobs(self) -> list[Job]:
        """Copies of all tracked jobs in first-observed order."""
        return [replace(entry.job) for entry in self._entries.values()]

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, job_id: object) -> bool:
        return job_id in self._entries

    def __iter__(self) -> Iterator[Job]:
        return iter(self.jobs())
