"""Tests for MonitorScheduler cadences, gating and publishing."""

import asyncio
import logging

import pytest

from fakes import BlockingEngine, FakeUpstream, SteppingNow, make_backend, make_job
from quantumania.bus import InMemoryBus, Topic
from quantumania.engine import ChangeDetectionEngine
from quantumania.exceptions import (
    CycleAbortedError,
    CycleInProgressError,
    NotRunningError,
    UpstreamUnavailableError,
)
from quantumania.scheduler import MonitorScheduler, SchedulerState
from quantumania.types import JobStatus

IDLE = dict(poll_interval=3600, deep_scan_interval=3600, warmup_delay=3600)


async def settle(scheduler):
    scheduler.stop()
    await scheduler.wait_idle()
    # Let cancelled timers unwind before the loop closes
    await asyncio.sleep(0)


def real_engine(upstream):
    return ChangeDetectionEngine(upstream, now=SteppingNow())


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_stop(self):
        bus = InMemoryBus()
        bus.connect()
        scheduler = MonitorScheduler(BlockingEngine(), **IDLE)

        scheduler.start(bus)
        state = scheduler.monitoring_state()
        assert scheduler.state is SchedulerState.RUNNING
        assert state.is_active
        assert state.connected_clients == 1

        scheduler.stop()
        state = scheduler.monitoring_state()
        assert scheduler.state is SchedulerState.STOPPED
        assert not state.is_active
        assert state.connected_clients == 0
        assert scheduler.bus is None
        await settle(scheduler)

    @pytest.mark.asyncio
    async def test_double_start_is_noop(self, caplog):
        first, second = InMemoryBus(), InMemoryBus()
        scheduler = MonitorScheduler(BlockingEngine(), **IDLE)
        scheduler.start(first)

        with caplog.at_level(logging.WARNING, logger="quantumania.scheduler"):
            scheduler.start(second)

        assert scheduler.bus is first
        assert "already running" in caplog.text
        await settle(scheduler)

    @pytest.mark.asyncio
    async def test_stop_when_stopped(self):
        scheduler = MonitorScheduler(BlockingEngine(), **IDLE)
        scheduler.stop()
        assert scheduler.state is SchedulerState.STOPPED

    def test_start_outside_loop(self):
        scheduler = MonitorScheduler(BlockingEngine(), **IDLE)
        with pytest.raises(RuntimeError):
            scheduler.start(InMemoryBus())
        assert scheduler.state is SchedulerState.STOPPED

    @pytest.mark.asyncio
    async def test_restart(self):
        upstream = FakeUpstream(jobs=[make_job("a")])
        scheduler = MonitorScheduler(real_engine(upstream), **IDLE)
        bus = InMemoryBus()

        scheduler.start(bus)
        scheduler.stop()
        scheduler.start(bus)

        result = await scheduler.trigger_cycle_now()
        assert [e.job.id for e in result.new_jobs] == ["a"]
        await settle(scheduler)


class TestTriggerCycleNow:
    @pytest.mark.asyncio
    async def test_not_running(self):
        scheduler = MonitorScheduler(BlockingEngine(), **IDLE)
        with pytest.raises(NotRunningError):
            await scheduler.trigger_cycle_now()

    @pytest.mark.asyncio
    async def test_after_stop(self):
        scheduler = MonitorScheduler(BlockingEngine(), **IDLE)
        scheduler.start(InMemoryBus())
        scheduler.stop()
        with pytest.raises(NotRunningError):
            await scheduler.trigger_cycle_now()
        await settle(scheduler)

    @pytest.mark.asyncio
    async def test_rejected_while_in_flight(self):
        engine = BlockingEngine()
        scheduler = MonitorScheduler(engine, **IDLE)
        scheduler.start(InMemoryBus())

        first = asyncio.create_task(scheduler.trigger_cycle_now())
        await engine.started.wait()

        with pytest.raises(CycleInProgressError):
            await scheduler.trigger_cycle_now()

        engine.release.set()
        await first
        assert engine.calls == 1
        assert not scheduler.cycle_in_flight
        await settle(scheduler)

    @pytest.mark.asyncio
    async def test_publishes_in_order(self):
        upstream = FakeUpstream(
            jobs=[make_job("a")], backends=[make_backend("ibm_kyoto")]
        )
        scheduler = MonitorScheduler(real_engine(upstream), **IDLE)
        bus = InMemoryBus()
        conn = bus.connect()
        scheduler.start(bus)

        await scheduler.trigger_cycle_now()
        assert [m.topic for m in conn.drain()] == [
            Topic.DASHBOARD_UPDATE,
            Topic.NEW_JOBS,
            Topic.QUEUE_UPDATE,
        ]

        upstream.jobs = [make_job("a", JobStatus.RUNNING)]
        await scheduler.trigger_cycle_now()
        messages = conn.drain()
        assert [m.topic for m in messages] == [
            Topic.DASHBOARD_UPDATE,
            Topic.JOB_STATUS_CHANGE,
            Topic.QUEUE_UPDATE,
        ]
        assert messages[1].payload == [
            {
                "jobId": "a",
                "jobName": "Job a",
                "oldStatus": "QUEUED",
                "newStatus": "RUNNING",
                "backend": "ibm_kyoto",
                "timestamp": messages[1].payload[0]["timestamp"],
            }
        ]
        await settle(scheduler)

    @pytest.mark.asyncio
    async def test_quiet_cycle_publishes_dashboard_only(self):
        upstream = FakeUpstream(jobs=[make_job("a")])
        scheduler = MonitorScheduler(real_engine(upstream), **IDLE)
        bus = InMemoryBus()
        conn = bus.connect()
        scheduler.start(bus)

        await scheduler.trigger_cycle_now()
        conn.drain()
        await scheduler.trigger_cycle_now()

        messages = conn.drain()
        assert [m.topic for m in messages] == [Topic.DASHBOARD_UPDATE]
        payload = messages[0].payload
        assert set(payload) == {"summary", "recentJobs", "backends", "monitoring", "timestamp"}
        assert payload["monitoring"]["isActive"] is True
        assert payload["monitoring"]["cachedJobs"] == 1
        assert payload["monitoring"]["connectedClients"] == 1
        await settle(scheduler)

    @pytest.mark.asyncio
    async def test_abort_publishes_error(self):
        upstream = FakeUpstream(jobs=[make_job("a")])
        upstream.fail_with = UpstreamUnavailableError("registry down")
        scheduler = MonitorScheduler(real_engine(upstream), **IDLE)
        bus = InMemoryBus()
        conn = bus.connect()
        scheduler.start(bus)

        with pytest.raises(CycleAbortedError):
            await scheduler.trigger_cycle_now()

        messages = conn.drain()
        assert [m.topic for m in messages] == [Topic.MONITOR_ERROR]
        assert "registry down" in messages[0].payload["error"]
        assert messages[0].payload["severity"] == "warning"
        assert scheduler.is_running
        assert not scheduler.cycle_in_flight
        await settle(scheduler)


class TestTimers:
    @pytest.mark.asyncio
    async def test_ticks_never_overlap(self):
        engine = BlockingEngine()
        scheduler = MonitorScheduler(
            engine, poll_interval=0.01, deep_scan_interval=3600, warmup_delay=0
        )
        scheduler.start(InMemoryBus())

        await engine.started.wait()
        await asyncio.sleep(0.1)
        assert engine.calls == 1
        assert scheduler.cycle_in_flight

        engine.release.set()
        await asyncio.sleep(0.1)
        assert engine.calls > 1
        await settle(scheduler)

    @pytest.mark.asyncio
    async def test_skipped_tick_is_not_queued(self):
        engine = BlockingEngine()
        scheduler = MonitorScheduler(engine, **IDLE)
        scheduler.start(InMemoryBus())

        scheduler._poll_tick()
        await engine.started.wait()
        scheduler._poll_tick()
        scheduler._poll_tick()

        engine.release.set()
        await scheduler.wait_idle()

        assert engine.calls == 1
        assert not scheduler.cycle_in_flight
        await settle(scheduler)

    @pytest.mark.asyncio
    async def test_scheduled_abort_keeps_running(self):
        engine = BlockingEngine(abort=True)
        engine.release.set()
        scheduler = MonitorScheduler(engine, **IDLE)
        bus = InMemoryBus()
        conn = bus.connect()
        scheduler.start(bus)

        scheduler._poll_tick()
        await scheduler.wait_idle()

        assert [m.topic for m in conn.drain()] == [Topic.MONITOR_ERROR]
        assert scheduler.is_running
        assert not scheduler.cycle_in_flight
        await settle(scheduler)

    @pytest.mark.asyncio
    async def test_in_flight_cycle_finishes_unpublished_after_stop(self):
        engine = BlockingEngine()
        scheduler = MonitorScheduler(engine, **IDLE)
        bus = InMemoryBus()
        conn = bus.connect()
        scheduler.start(bus)

        scheduler._poll_tick()
        await engine.started.wait()
        scheduler.stop()

        engine.release.set()
        await scheduler.wait_idle()

        assert engine.last_cycle_at is not None
        assert conn.drain() == []
        await settle(scheduler)

    @pytest.mark.asyncio
    async def test_cycle_from_previous_run_not_published_after_restart(self):
        engine = BlockingEngine()
        scheduler = MonitorScheduler(engine, **IDLE)
        old_bus, new_bus = InMemoryBus(), InMemoryBus()
        old_conn, new_conn = old_bus.connect(), new_bus.connect()
        scheduler.start(old_bus)

        scheduler._poll_tick()
        await engine.started.wait()
        scheduler.stop()
        scheduler.start(new_bus)

        engine.release.set()
        await scheduler.wait_idle()

        assert old_conn.drain() == []
        assert new_conn.drain() == []

        # The new run still publishes its own cycles
        await scheduler.trigger_cycle_now()
        assert [m.topic for m in new_conn.drain()] == [Topic.DASHBOARD_UPDATE]
        await settle(scheduler)

    @pytest.mark.asyncio
    async def test_restart_on_same_bus_drops_stale_cycle(self):
        engine = BlockingEngine()
        scheduler = MonitorScheduler(engine, **IDLE)
        bus = InMemoryBus()
        conn = bus.connect()
        scheduler.start(bus)

        scheduler._poll_tick()
        await engine.started.wait()
        scheduler.stop()
        scheduler.start(bus)

        engine.release.set()
        await scheduler.wait_idle()

        assert conn.drain() == []
        await settle(scheduler)

    @pytest.mark.asyncio
    async def test_deep_scan_publishes_stats(self):
        upstream = FakeUpstream(backends=[make_backend("a"), make_backend("sim", simulator=True)])
        scheduler = MonitorScheduler(
            real_engine(upstream), poll_interval=3600, deep_scan_interval=0.01, warmup_delay=3600
        )
        bus = InMemoryBus()
        conn = bus.connect()
        scheduler.start(bus)

        message = await conn.receive(timeout=1.0)

        assert message.topic is Topic.SYSTEM_STATS_UPDATE
        assert message.payload["type"] == "deep-scan"
        assert message.payload["stats"]["totalBackends"] == 2
        assert message.payload["stats"]["simulators"] == 1
        assert upstream.stats_calls >= 1
        assert scheduler.engine.last_cycle_at is None
        await settle(scheduler)
