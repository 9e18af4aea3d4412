#!/usr/bin/env python3
"""Example: run the monitor and print every broadcast it makes.

Settings come from the environment (see ``MonitorConfig.from_env``).
Without ``IBM_QUANTUM_API`` the monitor runs on mock data.
"""

import asyncio
import logging
import os

from quantumania import InMemoryBus, MonitorConfig, MonitorContext, Topic


def describe(message):
    """One line per broadcast."""
    payload = message.payload
    if message.topic is Topic.DASHBOARD_UPDATE:
        summary = payload["summary"]
        return (
            f"jobs={summary['totalJobs']} running={summary['runningJobs']} "
            f"queued={summary['queuedJobs']} errors={summary['errorJobs']} "
            f"online={summary['onlineBackends']}/{summary['totalBackends']}"
        )
    if message.topic is Topic.JOB_STATUS_CHANGE:
        return ", ".join(
            f"{c['jobId']}: {c['oldStatus']} -> {c['newStatus']}" for c in payload
        )
    if message.topic in (Topic.NEW_JOBS, Topic.QUEUE_UPDATE):
        return f"{len(payload)} entries"
    return str(payload)


async def main():
    config = MonitorConfig.from_env()
    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    async with MonitorContext(config, bus=InMemoryBus()) as ctx:
        connection = ctx.bus.connect()
        ctx.bus.subscribe(connection, "dashboard")
        ctx.start()

        cycles = int(os.environ.get("QUANTUMANIA_EXAMPLE_CYCLES", "3"))
        seen = 0
        async for message in connection:
            print(f"[{message.topic.value}] {describe(message)}")
            if message.topic is Topic.DASHBOARD_UPDATE:
                seen += 1
                if seen >= cycles:
                    break

        state = ctx.get_monitoring_state()
        print(f"\nTracked jobs: {state.cached_jobs}, last update: {state.last_update}")
        print("Analytics:", ctx.get_analytics("24h").to_dict()["performanceMetrics"])


if __name__ == "__main__":
    asyncio.run(main())
