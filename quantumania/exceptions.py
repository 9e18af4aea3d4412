"""Error hierarchy for quantumania."""

from __future__ import annotations


class MonitorError(Exception):
    """Base exception for all monitor errors."""


class ConfigurationError(MonitorError):
    """A configuration value could not be parsed or is out of range."""


class UpstreamError(MonitorError):
    """Failure talking to the upstream job registry."""


class UpstreamUnavailableError(UpstreamError):
    """Network error, timeout, non-2xx response or malformed payload."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class UpstreamAuthError(UpstreamError):
    """The upstream rejected our credentials (401/403)."""

    def __init__(self, status_code: int, detail: str) -> None:
        self.status_code = status_code
        self.detail = detail
        super().__init__(f"Upstream authorization failed ({status_code}): {detail}")


class UpstreamRateLimitedError(UpstreamError):
    """Still rate limited after the single retry."""


class JobNotFoundError(UpstreamError):
    """The upstream has no job with the requested id."""

    def __init__(self, job_id: str) -> None:
        self.job_id = job_id
        super().__init__(f"Job {job_id} not found")


class CycleAbortedError(MonitorError):
    """A polling cycle failed before the snapshot was touched."""


class NotRunningError(MonitorError):
    """A manual cycle was requested while monitoring is stopped."""


class CycleInProgressError(MonitorError):
    """A cycle was requested while another one is still in flight."""


class InvalidRoomError(MonitorError):
    """Room name is empty, not a string, or too long."""


class ConnectionClosedError(MonitorError):
    """The subscriber connection was closed."""
