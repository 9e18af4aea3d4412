"""Synthetic registry data used when the upstream cannot be reached.

Shapes match what the upstream parsers produce so callers never need a
separate code path for fallback data.
"""

from __future__ import annotations

import random
from datetime import datetime, timedelta

from .types import Backend, Job, JobStatus, QueueStatus, SystemStats, utcnow

MOCK_JOB_COUNT = 20

_ROUTINE_GATES = ["cx", "id", "rz", "sx", "x"]

_MOCK_BACKENDS = (
    ("ibm_brisbane", True, 127, False, 15, _ROUTINE_GATES),
    ("ibm_kyoto", True, 127, False, 23, _ROUTINE_GATES),
    ("ibm_sherbrooke", False, 127, False, 0, _ROUTINE_GATES),
    ("ibmq_qasm_simulator", True, 32, True, 5, ["u1", "u2", "u3", "cx", "id"]),
)


def mock_backends() -> list[Backend]:
    return [
        Backend(
            name=name,
            operational=operational,
            qubit_count=qubits,
            is_simulator=simulator,
            pending_jobs=pending,
            basis_gates=list(gates),
        )
        for name, operational, qubits, simulator, pending, gates in _MOCK_BACKENDS
    ]


def mock_jobs(
    rng: random.Random | None = None,
    count: int = MOCK_JOB_COUNT,
    now: datetime | None = None,
) -> list[Job]:
    """Generate ``count`` jobs with stable ids and random state.

    Ids are ``mock_job_<n>`` so repeated calls describe the same jobs with
    shifting statuses rather than an ever-growing set of new ones.
    """
    rng = rng or random.Random()
    now = now or utcnow()
    backend_names = [b[0] for b in _MOCK_BACKENDS]
    statuses = list(JobStatus)

    jobs = []
    for i in range(count):
        status = rng.choice(statuses)
        jobs.append(
            Job(
                id=f"mock_job_{i}",
                name=f"Quantum Job {i + 1}",
                status=status,
                backend=rng.choice(backend_names),
                shots=rng.randint(1, 8192),
                qubits=rng.randint(1, 127),
                creation_date=now - timedelta(seconds=rng.uniform(0, 86400)),
                queue_position=(
                    rng.randint(0, 99) if status is JobStatus.QUEUED else None
                ),
                estimated_completion_time=now
                + timedelta(seconds=rng.uniform(0, 3600)),
            )
        )
    return jobs


def mock_stats(now: datetime | None = None) -> SystemStats:
    return SystemStats(
        total_backends=12,
        online_backends=8,
        simulators=4,
        real_devices=8,
        total_jobs=150,
        running_jobs=12,
        queued_jobs=45,
        completed_jobs=88,
        error_jobs=5,
        last_update=now or utcnow(),
    )


def mock_queue_status(rng: random.Random | None = None) -> QueueStatus:
    rng = rng or random.Random()
    length = rng.randint(0, 50)
    return QueueStatus(
        length=length,
        estimated_wait_time=float(length * rng.randint(30, 120)),
        status="active",
    )


def unknown_queue_status() -> QueueStatus:
    """Placeholder returned when a backend's queue cannot be read."""
    return QueueStatus(length=0, status="unknown")
