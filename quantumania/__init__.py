"""quantumania: real-time monitor for a shared quantum job registry.

Polls the registry's job and device inventory, detects what changed
between polls, and fans updates out to subscribed clients.

Example
-------
>>> import quantumania as qm
>>> async with qm.MonitorContext.from_env() as ctx:
...     ctx.start()
...     connection = ctx.bus.connect()
...     async for message in connection:
...         print(message.topic, message.payload)
"""

from .analytics import SnapshotAnalytics, TimeRange, build_analytics
from .bus import Connection, FanoutBus, InMemoryBus, Message, Topic
from .cache import CacheEntry, TTLCache
from .config import CacheTTLs, MonitorConfig
from .context import MonitorContext
from .engine import ChangeDetectionEngine
from .exceptions import (
    ConfigurationError,
    ConnectionClosedError,
    CycleAbortedError,
    CycleInProgressError,
    InvalidRoomError,
    JobNotFoundError,
    MonitorError,
    NotRunningError,
    UpstreamAuthError,
    UpstreamError,
    UpstreamRateLimitedError,
    UpstreamUnavailableError,
)
from .scheduler import MonitorScheduler, SchedulerState
from .snapshot import SnapshotStore
from .types import (
    Backend,
    CycleResult,
    DashboardSummary,
    Job,
    JobStatus,
    MonitoringState,
    NewJobEvent,
    QueueStatus,
    QueueUpdate,
    StatusChange,
    SystemStats,
)
from .upstream import UpstreamAdapter

__version__ = "1.0.0"
__all__ = [
    # Wiring
    "MonitorContext",
    "MonitorConfig",
    "CacheTTLs",
    # Core
    "UpstreamAdapter",
    "SnapshotStore",
    "ChangeDetectionEngine",
    "MonitorScheduler",
    "SchedulerState",
    # Fan-out
    "FanoutBus",
    "InMemoryBus",
    "Connection",
    "Message",
    "Topic",
    # Cache
    "TTLCache",
    "CacheEntry",
    # Analytics
    "SnapshotAnalytics",
    "TimeRange",
    "build_analytics",
    # Types
    "Job",
    "JobStatus",
    "Backend",
    "QueueStatus",
    "SystemStats",
    "NewJobEvent",
    "StatusChange",
    "QueueUpdate",
    "DashboardSummary",
    "CycleResult",
    "MonitoringState",
    # Exceptions
    "MonitorError",
    "ConfigurationError",
    "ConnectionClosedError",
    "UpstreamError",
    "UpstreamUnavailableError",
    "UpstreamAuthError",
    "UpstreamRateLimitedError",
    "JobNotFoundError",
    "CycleAbortedError",
    "NotRunningError",
    "CycleInProgressError",
    "InvalidRoomError",
]
