"""Runtime settings, read from the environment."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Callable, Mapping

from .exceptions import ConfigurationError

DEFAULT_BASE_URL = "https://api.quantum-computing.ibm.com/api"


@dataclass(frozen=True)
class CacheTTLs:
    """Per-endpoint cache lifetimes in seconds.

    Device inventory changes slowly, job lists faster, and queue depth is
    the most perishable.
    """

    backends: float = 60.0
    jobs: float = 15.0
    job: float = 10.0
    queue: float = 5.0


@dataclass
class MonitorConfig:
    """Settings for the upstream adapter, scheduler and bus.

    Parameters
    ----------
    api_key : str, optional
        Bearer token for the job registry. Without one the adapter runs
        in mock mode.
    base_url : str
        Root URL of the registry REST API.
    request_timeout : float
        Per-request timeout in seconds.
    poll_interval : float
        Fast cadence (full change-detection cycle), seconds.
    deep_scan_interval : float
        Slow cadence (aggregate stats republish), seconds.
    warmup_delay : float
        Delay before the first cycle after start, seconds.
    job_limit : int
        Number of jobs fetched per cycle.
    auth_failure_threshold : int
        Consecutive auth failures that latch mock mode.
    rate_limit_delay : float
        Sleep before the single retry after an HTTP 429.
    max_pending_messages : int
        Per-connection outbound queue bound on the fan-out bus.
    """

    api_key: str | None = None
    base_url: str = DEFAULT_BASE_URL
    request_timeout: float = 30.0
    poll_interval: float = 60.0
    deep_scan_interval: float = 600.0
    warmup_delay: float = 5.0
    job_limit: int = 50
    auth_failure_threshold: int = 3
    rate_limit_delay: float = 2.0
    max_pending_messages: int = 100
    log_level: str = "INFO"
    cache_ttls: CacheTTLs = CacheTTLs()

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> MonitorConfig:
        """Build a config from ``IBM_QUANTUM_API`` and ``QUANTUMANIA_*`` variables."""
        env = os.environ if environ is None else environ
        return cls(
            api_key=env.get("IBM_QUANTUM_API") or None,
            base_url=env.get("QUANTUMANIA_BASE_URL", DEFAULT_BASE_URL),
            request_timeout=_positive(env, "QUANTUMANIA_TIMEOUT", 30.0, float),
            poll_interval=_positive(env, "QUANTUMANIA_POLL_INTERVAL", 60.0, float),
            deep_scan_interval=_positive(
                env, "QUANTUMANIA_DEEP_SCAN_INTERVAL", 600.0, float
            ),
            warmup_delay=_non_negative(env, "QUANTUMANIA_WARMUP_DELAY", 5.0),
            job_limit=_positive(env, "QUANTUMANIA_JOB_LIMIT", 50, int),
            auth_failure_threshold=_positive(
                env, "QUANTUMANIA_AUTH_FAILURE_THRESHOLD", 3, int
            ),
            rate_limit_delay=_non_negative(env, "QUANTUMANIA_RATE_LIMIT_DELAY", 2.0),
            max_pending_messages=_positive(env, "QUANTUMANIA_MAX_PENDING", 100, int),
            log_level=env.get("QUANTUMANIA_LOG_LEVEL", "INFO").upper(),
        )


def _parse(env: Mapping[str, str], name: str, default, cast: Callable):
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return cast(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{name}={raw!r} is not a valid {cast.__name__}") from exc


def _positive(env: Mapping[str, str], name: str, default, cast: Callable):
    value = _parse(env, name, default, cast)
    if value <= 0:
        raise ConfigurationError(f"{name} must be positive, got {value}")
    return value


def _non_negative(env: Mapping[str, str], name: str, default: float) -> float:
    value = _parse(env, name, default, float)
    if value < 0:
        raise ConfigurationError(f"{name} must not be negative, got {value}")
    return value
