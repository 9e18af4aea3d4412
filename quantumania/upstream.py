"""Async REST adapter for the upstream job registry.

Reads go through a TTL cache first. Bulk reads (jobs, backends, queue
status, stats) never raise on upstream failure: they fall back to
synthetic data of the same shape. Single-job lookups do raise, since
there is nothing sensible to substitute for one unknown job.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from dataclasses import replace
from typing import Any, Awaitable, Callable

import httpx

from . import mock_data
from .cache import TTLCache, cache_key
from .config import DEFAULT_BASE_URL, CacheTTLs, MonitorConfig
from .exceptions import (
    JobNotFoundError,
    UpstreamAuthError,
    UpstreamError,
    UpstreamRateLimitedError,
    UpstreamUnavailableError,
)
from .types import Backend, Job, JobStatus, QueueStatus, SystemStats

logger = logging.getLogger(__name__)

_JOBS_PATH = "/Network/jobs"
_DEVICES_PATH = "/Network/devices/v/1"
_STATS_JOB_LIMIT = 100


def _unwrap_list(data: Any, *keys: str) -> list:
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        for key in keys:
            if isinstance(data.get(key), list):
                return data[key]
    raise UpstreamUnavailableError(f"Expected a list payload, got {type(data).__name__}")


def parse_jobs(data: Any) -> list[Job]:
    """Parse a job-list payload, skipping records with unknown statuses."""
    jobs = []
    for record in _unwrap_list(data, "jobs", "items"):
        if not isinstance(record, dict):
            raise UpstreamUnavailableError(f"Malformed job record: {record!r}")
        try:
            JobStatus.parse(record.get("status"))
        except ValueError:
            logger.warning(
                "Skipping job %s with unrecognized status %r",
                record.get("id"), record.get("status"),
            )
            continue
        try:
            jobs.append(Job.from_api(record))
        except (KeyError, TypeError, ValueError) as exc:
            raise UpstreamUnavailableError(f"Malformed job record: {exc!r}") from exc
    return jobs


def parse_backends(data: Any) -> list[Backend]:
    try:
        return [
            Backend.from_api(record)
            for record in _unwrap_list(data, "devices", "backends")
        ]
    except (KeyError, TypeError, ValueError) as exc:
        raise UpstreamUnavailableError(f"Malformed backend record: {exc!r}") from exc


def _copy_jobs(jobs: list[Job]) -> list[Job]:
    return [replace(job) for job in jobs]


def _copy_backends(backends: list[Backend]) -> list[Backend]:
    return [replace(b, basis_gates=list(b.basis_gates)) for b in backends]


class UpstreamAdapter:
    """Cached, failure-tolerant client for the job registry.

    Parameters
    ----------
    api_key : str, optional
        Bearer token. Without one the adapter starts in mock mode.
    base_url : str
        Base URL of the registry REST API.
    timeout : float
        HTTP request timeout in seconds (default: 30).
    auth_failure_threshold : int
        Consecutive 401/403 responses after which mock mode latches on
        for the rest of the adapter's lifetime (default: 3).
    rate_limit_delay : float
        Seconds to wait before the single retry after a 429 (default: 2).
    ttls : CacheTTLs, optional
        Per-endpoint cache lifetimes.
    clock : callable
        Monotonic clock for the cache.
    rng : random.Random, optional
        Randomness source for mock data.
    transport : httpx.AsyncBaseTransport, optional
        Custom transport, mainly for tests.
    """

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 30.0,
        auth_failure_threshold: int = 3,
        rate_limit_delay: float = 2.0,
        ttls: CacheTTLs | None = None,
        clock: Callable[[], float] = time.monotonic,
        rng: random.Random | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._ttls = ttls or CacheTTLs()
        self._cache: TTLCache[Any] = TTLCache(clock=clock)
        self._rng = rng or random.Random()
        self._sleep = sleep
        self._rate_limit_delay = rate_limit_delay
        self._auth_failure_threshold = auth_failure_threshold
        self._auth_failures = 0
        self._mock_mode = not api_key

        if self._mock_mode:
            logger.warning("No upstream API key configured, using mock data mode")

        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=timeout,
            transport=transport,
            headers={
                "Content-Type": "application/json",
                "Accept": "application/json",
                **({"Authorization": f"Bearer {api_key}"} if api_key else {}),
            },
        )

    @classmethod
    def from_config(cls, config: MonitorConfig, **kwargs) -> UpstreamAdapter:
        return cls(
            api_key=config.api_key,
            base_url=config.base_url,
            timeout=config.request_timeout,
            auth_failure_threshold=config.auth_failure_threshold,
            rate_limit_delay=config.rate_limit_delay,
            ttls=config.cache_ttls,
            **kwargs,
        )

    async def __aenter__(self) -> UpstreamAdapter:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    @property
    def mock_mode(self) -> bool:
        """True once the adapter has stopped contacting the upstream."""
        return self._mock_mode

    @property
    def auth_failures(self) -> int:
        return self._auth_failures

    def cache_stats(self) -> dict:
        return self._cache.stats()

    def clear_cache(self) -> None:
        """Discard every cached response."""
        self._cache.clear()
        logger.info("Upstream cache cleared")

    # ── Low-level helpers ──────────────────────────────────────────────

    async def _send(self, path: str, params: dict | None) -> httpx.Response:
        try:
            return await self._client.get(path, params=params)
        except httpx.TimeoutException as exc:
            raise UpstreamUnavailableError(f"Request to {path} timed out") from exc
        except httpx.TransportError as exc:
            raise UpstreamUnavailableError(
                f"Could not connect to {self._base_url}: {exc}"
            ) from exc

    async def _request(self, path: str, params: dict | None = None) -> Any:
        logger.debug("Requesting %s %s", path, params or "")
        resp = await self._send(path, params)

        if resp.status_code == 429:
            logger.warning(
                "Rate limit hit on %s, waiting %.1fs before retry",
                path, self._rate_limit_delay,
            )
            await self._sleep(self._rate_limit_delay)
            resp = await self._send(path, params)
            if resp.status_code == 429:
                raise UpstreamRateLimitedError(f"Still rate limited on {path}")

        if resp.status_code in (401, 403):
            self._record_auth_failure()
            raise UpstreamAuthError(resp.status_code, self._detail(resp))

        if resp.status_code >= 400:
            raise UpstreamUnavailableError(
                f"Upstream error {resp.status_code} on {path}: {self._detail(resp)}",
                status_code=resp.status_code,
            )

        self._auth_failures = 0
        try:
            return resp.json()
        except ValueError as exc:
            raise UpstreamUnavailableError(f"Invalid JSON from {path}") from exc

    @staticmethod
    def _detail(resp: httpx.Response) -> str:
        detail = resp.text
        try:
            body = resp.json()
        except ValueError:
            return detail
        if isinstance(body, dict):
            return str(body.get("message") or body.get("error") or detail)
        return detail

    def _record_auth_failure(self) -> None:
        self._auth_failures += 1
        logger.error(
            "Unauthorized upstream response (%d/%d), check the API key",
            self._auth_failures, self._auth_failure_threshold,
        )
        if self._auth_failures >= self._auth_failure_threshold and not self._mock_mode:
            self._mock_mode = True
            logger.error(
                "%d consecutive authorization failures, switching to mock mode "
                "until restart",
                self._auth_failures,
            )

    # ── Public API ─────────────────────────────────────────────────────

    async def fetch_jobs(
        self,
        limit: int = 50,
        offset: int = 0,
        status: JobStatus | str | None = None,
    ) -> list[Job]:
        """List jobs, newest first as ordered by the registry."""
        if self._mock_mode:
            return mock_data.mock_jobs(self._rng)

        params: dict = {"limit": limit, "offset": offset}
        if status:
            params["status"] = JobStatus.parse(getattr(status, "value", status)).value

        key = cache_key("jobs", params)
        cached = self._cache.get(key)
        if cached is not None:
            return _copy_jobs(cached)

        try:
            jobs = parse_jobs(await self._request(_JOBS_PATH, params=params))
        except UpstreamError as exc:
            logger.error("Error fetching jobs, using mock data: %s", exc)
            return mock_data.mock_jobs(self._rng)

        self._cache.set(key, jobs, self._ttls.jobs)
        logger.info("Fetched %d jobs from upstream", len(jobs))
        return _copy_jobs(jobs)

    async def fetch_backends(self) -> list[Backend]:
        """List devices and simulators."""
        if self._mock_mode:
            return mock_data.mock_backends()

        key = cache_key("backends")
        cached = self._cache.get(key)
        if cached is not None:
            return _copy_backends(cached)

        try:
            backends = parse_backends(await self._request(_DEVICES_PATH))
        except UpstreamError as exc:
            logger.error("Error fetching backends, using mock data: %s", exc)
            return mock_data.mock_backends()

        self._cache.set(key, backends, self._ttls.backends)
        logger.info("Fetched %d backends from upstream", len(backends))
        return _copy_backends(backends)

    async def fetch_queue_status(self, backend_name: str) -> QueueStatus:
        """Queue depth for one backend; ``status="unknown"`` on failure."""
        if self._mock_mode:
            return mock_data.mock_queue_status(self._rng)

        key = cache_key("queue", {"backendName": backend_name})
        cached = self._cache.get(key)
        if cached is not None:
            return replace(cached)

        try:
            data = await self._request(f"{_DEVICES_PATH}/{backend_name}/queue/status")
            queue = QueueStatus.from_api(data)
        except UpstreamError as exc:
            logger.error("Error fetching queue status for %s: %s", backend_name, exc)
            return mock_data.unknown_queue_status()
        except (AttributeError, TypeError, ValueError) as exc:
            logger.error("Malformed queue status for %s: %r", backend_name, exc)
            return mock_data.unknown_queue_status()

        self._cache.set(key, queue, self._ttls.queue)
        return replace(queue)

    async def fetch_system_stats(self) -> SystemStats:
        """Aggregate counts derived from the backend list and recent jobs."""
        try:
            backends = await self.fetch_backends()
            jobs = await self.fetch_jobs(_STATS_JOB_LIMIT)
            return SystemStats.from_inventory(backends, jobs)
        except (UpstreamError, TypeError, ValueError) as exc:
            logger.error("Error computing system stats, using mock stats: %s", exc)
            return mock_data.mock_stats()

    async def fetch_job(self, job_id: str) -> Job:
        """Fetch a single job.

        Raises
        ------
        JobNotFoundError
            The registry has no such job.
        UpstreamError
            Any other upstream failure, including mock mode.
        """
        if self._mock_mode:
            raise UpstreamUnavailableError(
                f"Cannot look up job {job_id}: upstream is in mock mode"
            )

        key = cache_key("job", {"jobId": job_id})
        cached = self._cache.get(key)
        if cached is not None:
            return replace(cached)

        try:
            data = await self._request(f"{_JOBS_PATH}/{job_id}")
        except UpstreamUnavailableError as exc:
            if exc.status_code == 404:
                raise JobNotFoundError(job_id) from exc
            logger.error("Error fetching job %s: %s", job_id, exc)
            raise

        try:
            job = Job.from_api(data)
        except (KeyError, TypeError, ValueError) as exc:
            raise UpstreamUnavailableError(f"Malformed job {job_id}: {exc!r}") from exc

        self._cache.set(key, job, self._ttls.job)
        return replace(job)
