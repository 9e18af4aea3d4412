"""Process-owned wiring of adapter, engine, scheduler and bus.

The entry point creates one :class:`MonitorContext` and hands it to the
HTTP and socket layers; nothing in the package keeps module-level state.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Mapping

from .analytics import SnapshotAnalytics, build_analytics, current_load
from .bus import InMemoryBus
from .config import MonitorConfig
from .engine import ChangeDetectionEngine
from .scheduler import MonitorScheduler
from .types import CycleResult, Job, MonitoringState
from .upstream import UpstreamAdapter

logger = logging.getLogger(__name__)


class MonitorContext:
    """Owns one monitor instance and exposes its management surface.

    Example:
        >>> async with MonitorContext.from_env() as ctx:
        ...     ctx.start()
        ...     connection = ctx.bus.connect()
        ...     message = await connection.receive()
    """

    def __init__(
        self,
        config: MonitorConfig | None = None,
        upstream: UpstreamAdapter | None = None,
        bus: InMemoryBus | None = None,
    ):
        self.config = config or MonitorConfig()
        self.upstream = upstream or UpstreamAdapter.from_config(self.config)
        self.bus = bus or InMemoryBus(max_pending=self.config.max_pending_messages)
        self.engine = ChangeDetectionEngine(
            self.upstream, job_limit=self.config.job_limit
        )
        self.scheduler = MonitorScheduler(
            self.engine,
            poll_interval=self.config.poll_interval,
            deep_scan_interval=self.config.deep_scan_interval,
            warmup_delay=self.config.warmup_delay,
        )

    @classmethod
    def from_config(cls, config: MonitorConfig, **kwargs) -> MonitorContext:
        return cls(config=config, **kwargs)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> MonitorContext:
        return cls(config=MonitorConfig.from_env(environ))

    async def __aenter__(self) -> MonitorContext:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    # ── Lifecycle ──────────────────────────────────────────────────────

    def start(self) -> None:
        self.scheduler.start(self.bus)

    def stop(self) -> None:
        self.scheduler.stop()

    async def aclose(self) -> None:
        """Stop scheduling, let in-flight work finish, close the HTTP client."""
        self.stop()
        await self.scheduler.wait_idle()
        await self.upstream.close()

    # ── Outbound API ───────────────────────────────────────────────────

    def get_snapshot(self) -> list[Job]:
        """All jobs observed so far, latest state each."""
        return self.engine.store.jobs()

    def get_last_cycle_timestamp(self) -> datetime | None:
        return self.engine.last_cycle_at

    def get_monitoring_state(self) -> MonitoringState:
        return self.scheduler.monitoring_state()

    async def trigger_cycle_now(self) -> CycleResult:
        return await self.scheduler.trigger_cycle_now()

    def clear_snapshot(self) -> None:
        self.engine.store.clear()
        logger.info("Job snapshot cleared")

    def clear_upstream_cache(self) -> None:
        self.upstream.clear_cache()

    async def get_job(self, job_id: str) -> Job:
        """Look a job up directly upstream (raises on failure)."""
        return await self.upstream.fetch_job(job_id)

    def get_analytics(self, time_range: str = "24h") -> SnapshotAnalytics:
        return build_analytics(self.get_snapshot(), time_range)

    def get_current_load(self) -> dict:
        return current_load(self.get_snapshot())
