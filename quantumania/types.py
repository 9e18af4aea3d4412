"""Shared data types for quantumania."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

RECENT_JOBS_LIMIT = 10
DISPLAY_BACKENDS_LIMIT = 8
DISPLAY_GATES_LIMIT = 5


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO-8601 string or epoch seconds into an aware datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    text = str(value)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def format_timestamp(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


class JobStatus(str, Enum):
    """Job execution status as reported by the registry."""

    RUNNING = "RUNNING"
    QUEUED = "QUEUED"
    COMPLETED = "COMPLETED"
    ERROR = "ERROR"
    CANCELLED = "CANCELLED"

    @classmethod
    def parse(cls, value: Any) -> JobStatus:
        return cls(str(value).strip().upper())

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.ERROR, JobStatus.CANCELLED)

    @property
    def is_errored(self) -> bool:
        """ERROR and CANCELLED share one bucket in dashboard summaries."""
        return self in (JobStatus.ERROR, JobStatus.CANCELLED)


@dataclass
class Job:
    """A unit of submitted work on the shared hardware pool."""

    id: str
    status: JobStatus
    backend: str
    shots: int
    qubits: int
    creation_date: datetime | None = None
    name: str | None = None
    queue_position: int | None = None
    estimated_completion_time: datetime | None = None

    @property
    def display_name(self) -> str:
        return self.name or f"Job {self.id}"

    @classmethod
    def from_api(cls, data: dict) -> Job:
        """Build a Job from an upstream record.

        Raises KeyError/ValueError/TypeError on malformed records.
        """
        status = JobStatus.parse(data["status"])
        queue_position = data.get("queue_position")
        return cls(
            id=str(data["id"]),
            status=status,
            backend=data.get("backend") or "unknown",
            shots=int(data.get("shots") or 0),
            qubits=int(data.get("qubits") or 0),
            creation_date=parse_timestamp(
                data.get("creation_date") or data.get("created_at")
            ),
            name=data.get("name"),
            queue_position=(
                int(queue_position)
                if status is JobStatus.QUEUED and queue_position is not None
                else None
            ),
            estimated_completion_time=parse_timestamp(
                data.get("estimated_completion_time")
            ),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.display_name,
            "status": self.status.value,
            "backend": self.backend,
            "shots": self.shots,
            "qubits": self.qubits,
            "creation_date": format_timestamp(self.creation_date),
            "queue_position": self.queue_position,
            "estimated_completion_time": format_timestamp(
                self.estimated_completion_time
            ),
        }

    def to_summary_dict(self) -> dict:
        """Compact form used in the dashboard's recent-jobs list."""
        return {
            "id": self.id,
            "name": self.display_name,
            "status": self.status.value,
            "backend": self.backend,
            "creation_date": format_timestamp(self.creation_date),
            "shots": self.shots,
            "qubits": self.qubits,
        }


@dataclass
class Backend:
    """A quantum device or simulator."""

    name: str
    operational: bool
    qubit_count: int
    is_simulator: bool
    pending_jobs: int = 0
    basis_gates: list[str] = field(default_factory=list)

    @classmethod
    def from_api(cls, data: dict) -> Backend:
        status = data.get("status")
        if isinstance(status, dict):
            operational = bool(status.get("operational"))
        else:
            operational = status in ("online", "active", True)
        return cls(
            name=str(data["name"]),
            operational=operational,
            qubit_count=int(data.get("n_qubits") or data.get("num_qubits") or 0),
            is_simulator=bool(data.get("simulator", False)),
            pending_jobs=max(int(data.get("pending_jobs") or 0), 0),
            basis_gates=list(data.get("basis_gates") or []),
        )

    def to_dict(self, gate_limit: int | None = DISPLAY_GATES_LIMIT) -> dict:
        gates = self.basis_gates if gate_limit is None else self.basis_gates[:gate_limit]
        return {
            "name": self.name,
            "status": "online" if self.operational else "offline",
            "qubits": self.qubit_count,
            "simulator": self.is_simulator,
            "pending_jobs": self.pending_jobs,
            "basis_gates": list(gates),
        }


@dataclass
class QueueStatus:
    """Queue depth of a single backend."""

    length: int = 0
    estimated_wait_time: float | None = None
    status: str | None = None

    @classmethod
    def from_api(cls, data: dict) -> QueueStatus:
        wait = data.get("estimated_wait_time")
        return cls(
            length=int(data.get("length") or 0),
            estimated_wait_time=float(wait) if wait is not None else None,
            status=data.get("status"),
        )


@dataclass
class SystemStats:
    """Aggregate counts across the backend fleet and recent jobs."""

    total_backends: int
    online_backends: int
    simulators: int
    real_devices: int
    total_jobs: int
    running_jobs: int
    queued_jobs: int
    completed_jobs: int
    error_jobs: int
    last_update: datetime = field(default_factory=utcnow)

    @classmethod
    def from_inventory(
        cls, backends: list[Backend], jobs: list[Job], now: datetime | None = None
    ) -> SystemStats:
        return cls(
            total_backends=len(backends),
            online_backends=sum(1 for b in backends if b.operational),
            simulators=sum(1 for b in backends if b.is_simulator),
            real_devices=sum(1 for b in backends if not b.is_simulator),
            total_jobs=len(jobs),
            running_jobs=sum(1 for j in jobs if j.status is JobStatus.RUNNING),
            queued_jobs=sum(1 for j in jobs if j.status is JobStatus.QUEUED),
            completed_jobs=sum(1 for j in jobs if j.status is JobStatus.COMPLETED),
            error_jobs=sum(1 for j in jobs if j.status is JobStatus.ERROR),
            last_update=now or utcnow(),
        )

    def to_dict(self) -> dict:
        return {
            "totalBackends": self.total_backends,
            "onlineBackends": self.online_backends,
            "simulators": self.simulators,
            "realDevices": self.real_devices,
            "totalJobs": self.total_jobs,
            "runningJobs": self.running_jobs,
            "queuedJobs": self.queued_jobs,
            "completedJobs": self.completed_jobs,
            "errorJobs": self.error_jobs,
            "lastUpdate": format_timestamp(self.last_update),
        }


@dataclass
class NewJobEvent:
    """A job seen for the first time."""

    job: Job
    observed_at: datetime

    def to_dict(self) -> dict:
        payload = self.job.to_dict()
        payload["isNew"] = True
        payload["timestamp"] = format_timestamp(self.observed_at)
        return payload


@dataclass
class StatusChange:
    """A tracked job whose status differs from the previous observation."""

    job_id: str
    job_name: str
    old_status: JobStatus
    new_status: JobStatus
    backend: str
    timestamp: datetime

    def to_dict(self) -> dict:
        return {
            "jobId": self.job_id,
            "jobName": self.job_name,
            "oldStatus": self.old_status.value,
            "newStatus": self.new_status.value,
            "backend": self.backend,
            "timestamp": format_timestamp(self.timestamp),
        }


@dataclass
class QueueUpdate:
    backend: str
    queue_length: int
    estimated_wait_time: float | None
    timestamp: datetime

    def to_dict(self) -> dict:
        return {
            "backend": self.backend,
            "queueLength": self.queue_length,
            "estimatedWaitTime": self.estimated_wait_time,
            "timestamp": format_timestamp(self.timestamp),
        }


@dataclass
class DashboardSummary:
    """Job counts by status bucket plus backend availability."""

    total_jobs: int
    running_jobs: int
    queued_jobs: int
    completed_jobs: int
    error_jobs: int
    total_backends: int
    online_backends: int
    last_update: datetime

    @classmethod
    def from_cycle(
        cls, jobs: list[Job], backends: list[Backend], now: datetime
    ) -> DashboardSummary:
        return cls(
            total_jobs=len(jobs),
            running_jobs=sum(1 for j in jobs if j.status is JobStatus.RUNNING),
            queued_jobs=sum(1 for j in jobs if j.status is JobStatus.QUEUED),
            completed_jobs=sum(1 for j in jobs if j.status is JobStatus.COMPLETED),
            error_jobs=sum(1 for j in jobs if j.status.is_errored),
            total_backends=len(backends),
            online_backends=sum(1 for b in backends if b.operational),
            last_update=now,
        )

    def to_dict(self) -> dict:
        return {
            "totalJobs": self.total_jobs,
            "runningJobs": self.running_jobs,
            "queuedJobs": self.queued_jobs,
            "completedJobs": self.completed_jobs,
            "errorJobs": self.error_jobs,
            "totalBackends": self.total_backends,
            "onlineBackends": self.online_backends,
            "lastUpdate": format_timestamp(self.last_update),
        }


@dataclass
class MonitoringState:
    """Process-wide view of the scheduler and snapshot."""

    is_active: bool = False
    last_update: datetime | None = None
    cached_jobs: int = 0
    connected_clients: int = 0

    def to_dict(self) -> dict:
        return {
            "isActive": self.is_active,
            "lastUpdate": format_timestamp(self.last_update),
            "cachedJobs": self.cached_jobs,
            "connectedClients": self.connected_clients,
        }


@dataclass
class CycleResult:
    """Everything one polling cycle observed and derived."""

    started_at: datetime
    completed_at: datetime
    jobs: list[Job]
    backends: list[Backend]
    stats: SystemStats
    summary: DashboardSummary
    new_jobs: list[NewJobEvent] = field(default_factory=list)
    status_changes: list[StatusChange] = field(default_factory=list)
    queue_updates: list[QueueUpdate] = field(default_factory=list)

    @property
    def has_changes(self) -> bool:
        return bool(self.new_jobs or self.status_changes)

    @property
    def recent_jobs(self) -> list[Job]:
        return self.jobs[:RECENT_JOBS_LIMIT]

    @property
    def display_backends(self) -> list[Backend]:
        return self.backends[:DISPLAY_BACKENDS_LIMIT]

    def dashboard_payload(self, monitoring: MonitoringState) -> dict:
        """Full dashboard snapshot, published every cycle."""
        return {
            "summary": self.summary.to_dict(),
            "recentJobs": [job.to_summary_dict() for job in self.recent_jobs],
            "backends": [backend.to_dict() for backend in self.display_backends],
            "monitoring": monitoring.to_dict(),
            "timestamp": format_timestamp(self.completed_at),
        }
