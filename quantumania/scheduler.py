"""Drives the change-detection engine on two cadences and publishes results."""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Any, Awaitable, Callable

from .bus import FanoutBus, Topic
from .engine import ChangeDetectionEngine
from .exceptions import CycleAbortedError, CycleInProgressError, NotRunningError
from .types import CycleResult, MonitoringState, format_timestamp, utcnow

logger = logging.getLogger(__name__)


class SchedulerState(str, Enum):
    STOPPED = "stopped"
    RUNNING = "running"


def error_payload(exc: BaseException, severity: str = "warning") -> dict:
    return {
        "error": str(exc),
        "timestamp": format_timestamp(utcnow()),
        "severity": severity,
    }


class MonitorScheduler:
    """Fast poll cadence plus a slow deep-scan cadence, never overlapping.

    A fast tick that fires while a cycle is still in flight is skipped,
    not queued. Stopping cancels the timers but lets an in-flight cycle
    finish; its result is not published, even if the scheduler has been
    started again in the meantime.

    Args:
        engine: Engine whose cycles are scheduled
        poll_interval: Seconds between fast ticks (default: 60)
        deep_scan_interval: Seconds between deep scans (default: 600)
        warmup_delay: Seconds before the first cycle after start (default: 5)

    Example:
        >>> scheduler = MonitorScheduler(engine)
        >>> scheduler.start(bus)
        >>> result = await scheduler.trigger_cycle_now()
        >>> scheduler.stop()
    """

    def __init__(
        self,
        engine: ChangeDetectionEngine,
        poll_interval: float = 60.0,
        deep_scan_interval: float = 600.0,
        warmup_delay: float = 5.0,
    ):
        self.engine = engine
        self.poll_interval = poll_interval
        self.deep_scan_interval = deep_scan_interval
        self.warmup_delay = warmup_delay
        self.state = SchedulerState.STOPPED
        self._bus: FanoutBus | None = None
        self._timers: list[asyncio.Task] = []
        self._tasks: set[asyncio.Task] = set()
        self._in_flight = False
        self._deep_scan_in_flight = False
        # Bumped on every start; work publishes only within the run that admitted it.
        self._generation = 0

    @property
    def is_running(self) -> bool:
        return self.state is SchedulerState.RUNNING

    @property
    def cycle_in_flight(self) -> bool:
        return self._in_flight

    @property
    def bus(self) -> FanoutBus | None:
        return self._bus

    def start(self, bus: FanoutBus) -> None:
        """Attach to a bus and arm both timers.

        Must be called from within a running event loop.
        """
        if self.is_running:
            logger.warning("Job monitoring is already running")
            return

        asyncio.get_running_loop()
        self._bus = bus
        self._generation += 1
        self.state = SchedulerState.RUNNING
        self._timers = [
            asyncio.create_task(self._warmup(), name="quantumania-warmup"),
            asyncio.create_task(
                self._every(self.poll_interval, self._poll_tick),
                name="quantumania-poll",
            ),
            asyncio.create_task(
                self._every(self.deep_scan_interval, self._deep_scan_tick),
                name="quantumania-deep-scan",
            ),
        ]
        logger.info(
            "Job monitoring started, polling every %ss, deep scan every %ss",
            self.poll_interval, self.deep_scan_interval,
        )

    def stop(self) -> None:
        """Cancel both timers and detach from the bus."""
        if not self.is_running:
            return

        for timer in self._timers:
            timer.cancel()
        self._timers = []
        self.state = SchedulerState.STOPPED
        self._bus = None
        logger.info("Job monitoring stopped")

    async def trigger_cycle_now(self) -> CycleResult:
        """Run one cycle immediately, outside the timer.

        Raises:
            NotRunningError: If the scheduler is stopped
            CycleInProgressError: If another cycle is still in flight
            CycleAbortedError: If the cycle failed (also published on the
                error topic)
        """
        if not self.is_running:
            raise NotRunningError("Monitoring is not active")
        if not self._admit():
            raise CycleInProgressError("A monitoring cycle is already in flight")

        try:
            return await self._execute_cycle(self._generation)
        finally:
            self._release()

    def monitoring_state(self) -> MonitoringState:
        return MonitoringState(
            is_active=self.is_running,
            last_update=self.engine.last_cycle_at,
            cached_jobs=len(self.engine.store),
            connected_clients=self._bus.connection_count if self._bus else 0,
        )

    async def wait_idle(self) -> None:
        """Wait for every cycle or deep scan spawned by a timer to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ── Timers ─────────────────────────────────────────────────────────

    async def _warmup(self) -> None:
        await asyncio.sleep(self.warmup_delay)
        self._poll_tick()

    @staticmethod
    async def _every(interval: float, tick: Callable[[], None]) -> None:
        while True:
            await asyncio.sleep(interval)
            tick()

    def _poll_tick(self) -> None:
        if not self._admit():
            logger.warning("Previous monitoring cycle still running, skipping tick")
            return
        task = self._spawn(self._scheduled_cycle(self._generation))
        task.add_done_callback(lambda _: self._release())

    def _deep_scan_tick(self) -> None:
        if self._deep_scan_in_flight:
            logger.warning("Previous deep scan still running, skipping tick")
            return
        self._deep_scan_in_flight = True
        task = self._spawn(self._deep_scan(self._generation))
        task.add_done_callback(lambda _: self._finish_deep_scan())

    def _spawn(self, coro: Awaitable[Any]) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    # ── Cycle gate ─────────────────────────────────────────────────────

    def _admit(self) -> bool:
        # Check and set with no await in between.
        if self._in_flight:
            return False
        self._in_flight = True
        return True

    def _release(self) -> None:
        self._in_flight = False

    def _finish_deep_scan(self) -> None:
        self._deep_scan_in_flight = False

    # ── Work ───────────────────────────────────────────────────────────

    async def _scheduled_cycle(self, generation: int) -> None:
        try:
            await self._execute_cycle(generation)
        except CycleAbortedError:
            logger.debug("Scheduled cycle aborted, next attempt on the next tick")

    async def _execute_cycle(self, generation: int) -> CycleResult:
        try:
            result = await self.engine.run_cycle()
        except Exception as exc:
            logger.error("Error during job monitoring: %s", exc)
            self._publish(generation, Topic.MONITOR_ERROR, error_payload(exc))
            if isinstance(exc, CycleAbortedError):
                raise
            raise CycleAbortedError(f"Cycle failed: {exc}") from exc

        self._publish_cycle(generation, result)
        return result

    async def _deep_scan(self, generation: int) -> None:
        try:
            stats = await self.engine.deep_scan()
        except Exception as exc:
            logger.error("Error during deep scan: %s", exc)
            return
        self._publish(
            generation,
            Topic.SYSTEM_STATS_UPDATE,
            {
                "stats": stats.to_dict(),
                "timestamp": format_timestamp(utcnow()),
                "type": "deep-scan",
            },
        )

    def _publish_cycle(self, generation: int, result: CycleResult) -> None:
        self._publish(
            generation,
            Topic.DASHBOARD_UPDATE,
            result.dashboard_payload(self.monitoring_state()),
        )
        if result.status_changes:
            self._publish(
                generation,
                Topic.JOB_STATUS_CHANGE,
                [c.to_dict() for c in result.status_changes],
            )
        if result.new_jobs:
            self._publish(
                generation, Topic.NEW_JOBS, [e.to_dict() for e in result.new_jobs]
            )
        if result.queue_updates:
            self._publish(
                generation,
                Topic.QUEUE_UPDATE,
                [q.to_dict() for q in result.queue_updates],
            )

    def _publish(self, generation: int, topic: Topic, payload: Any) -> None:
        bus = self._bus
        if bus is None or generation != self._generation:
            logger.debug("Run %d is over, not publishing %s", generation, topic.value)
            return
        try:
            bus.publish(topic, payload)
        except Exception:
            logger.exception("Failed to publish %s", topic.value)
