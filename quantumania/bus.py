"""Topic-scoped fan-out of monitor updates to connected subscribers."""

from __future__ import annotations

import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from .exceptions import ConnectionClosedError, InvalidRoomError
from .types import utcnow

logger = logging.getLogger(__name__)

MAX_ROOM_NAME_LENGTH = 100

_END_OF_STREAM = object()


class Topic(str, Enum):
    """Broadcast channels and the payload each carries.

    - DASHBOARD_UPDATE: full dashboard snapshot, every cycle
    - JOB_STATUS_CHANGE: list of status changes, only when non-empty
    - NEW_JOBS: list of first-seen jobs, only when non-empty
    - QUEUE_UPDATE: list of per-backend queue depths
    - SYSTEM_STATS_UPDATE: ``{stats, timestamp, type: "deep-scan"}``
    - MONITOR_ERROR: ``{error, timestamp, severity}``
    """

    DASHBOARD_UPDATE = "dashboard-update"
    JOB_STATUS_CHANGE = "job-status-change"
    NEW_JOBS = "new-jobs"
    QUEUE_UPDATE = "queue-update"
    SYSTEM_STATS_UPDATE = "system-stats-update"
    MONITOR_ERROR = "monitor-error"


def validate_room(room: Any) -> str:
    if not isinstance(room, str) or not room.strip():
        raise InvalidRoomError(f"Room name must be a non-empty string, got {room!r}")
    if len(room) > MAX_ROOM_NAME_LENGTH:
        raise InvalidRoomError(
            f"Room name exceeds {MAX_ROOM_NAME_LENGTH} characters ({len(room)})"
        )
    return room


@dataclass
class Message:
    topic: Topic
    payload: Any
    room: str | None = None
    sent_at: datetime = field(default_factory=utcnow)


class Connection:
    """One subscriber's mailbox.

    Messages are buffered in a bounded queue; when it is full, new
    messages for this connection are dropped. Closing enqueues an
    end-of-stream marker behind whatever is still buffered, which wakes
    any consumer blocked in :meth:`receive` or ``async for``.
    """

    def __init__(self, connection_id: str | None = None, max_pending: int = 100):
        self.id = connection_id or uuid.uuid4().hex
        self.rooms: set[str] = set()
        self.dropped = 0
        self._queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=max_pending)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        # The end-of-stream marker stays queued once closed.
        return self._queue.qsize() - (1 if self._closed else 0)

    def deliver(self, message: Message) -> bool:
        """Queue a message without blocking. Returns False if dropped."""
        if self._closed:
            return False
        try:
            self._queue.put_nowait(message)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.debug("Connection %s is full, dropping %s", self.id, message.topic.value)
            return False
        return True

    async def receive(self, timeout: float | None = None) -> Message:
        """Wait for the next message.

        Raises:
            ConnectionClosedError: If the connection is closed and every
                buffered message has been consumed
        """
        if timeout is None:
            item = await self._queue.get()
        else:
            item = await asyncio.wait_for(self._queue.get(), timeout)
        if item is _END_OF_STREAM:
            self._queue.put_nowait(_END_OF_STREAM)
            raise ConnectionClosedError(f"Connection {self.id} is closed")
        return item

    def receive_nowait(self) -> Message | None:
        try:
            item = self._queue.get_nowait()
        except asyncio.QueueEmpty:
            return None
        if item is _END_OF_STREAM:
            self._queue.put_nowait(_END_OF_STREAM)
            return None
        return item

    def drain(self) -> list[Message]:
        """Take every message currently buffered."""
        messages = []
        while True:
            message = self.receive_nowait()
            if message is None:
                return messages
            messages.append(message)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._queue.full():
            self._queue.get_nowait()
            self.dropped += 1
        self._queue.put_nowait(_END_OF_STREAM)

    def __aiter__(self):
        return self

    async def __anext__(self) -> Message:
        try:
            return await self.receive()
        except ConnectionClosedError:
            raise StopAsyncIteration from None


class FanoutBus(ABC):
    """Publish/subscribe capability the scheduler publishes through.

    Transports (socket servers, SSE endpoints) implement this interface or
    bridge to :class:`InMemoryBus` connections.
    """

    @abstractmethod
    def publish(self, topic: Topic, payload: Any, room: str | None = None) -> int:
        """Fire-and-forget broadcast.

        Args:
            topic: Broadcast channel
            payload: JSON-ready payload
            room: Restrict delivery to members of this room

        Returns:
            Number of connections the message was queued for
        """

    @abstractmethod
    def subscribe(self, connection: Connection, room: str) -> None:
        """Add a connection to a room."""

    @abstractmethod
    def unsubscribe(self, connection: Connection, room: str) -> None:
        """Remove a connection from a room."""

    @property
    @abstractmethod
    def connection_count(self) -> int:
        """Number of currently connected subscribers."""


class InMemoryBus(FanoutBus):
    """Process-local bus holding one queue per connection."""

    def __init__(self, max_pending: int = 100):
        self.max_pending = max_pending
        self._connections: dict[str, Connection] = {}
        self._rooms: dict[str, set[str]] = {}

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    def connect(self, connection_id: str | None = None) -> Connection:
        connection = Connection(connection_id, max_pending=self.max_pending)
        self._connections[connection.id] = connection
        logger.info("Client connected: %s", connection.id)
        return connection

    def disconnect(self, connection: Connection) -> None:
        for room in list(connection.rooms):
            self.unsubscribe(connection, room)
        self._connections.pop(connection.id, None)
        connection.close()
        logger.info("Client disconnected: %s", connection.id)

    def subscribe(self, connection: Connection, room: str) -> None:
        room = validate_room(room)
        if connection.id not in self._connections:
            raise KeyError(f"Connection {connection.id} is not connected")
        self._rooms.setdefault(room, set()).add(connection.id)
        connection.rooms.add(room)
        logger.info("Client %s joined room: %s", connection.id, room)

    def unsubscribe(self, connection: Connection, room: str) -> None:
        room = validate_room(room)
        members = self._rooms.get(room)
        if members is not None:
            members.discard(connection.id)
            if not members:
                del self._rooms[room]
        connection.rooms.discard(room)
        logger.info("Client %s left room: %s", connection.id, room)

    def room_members(self, room: str) -> list[Connection]:
        return [
            self._connections[cid]
            for cid in self._rooms.get(room, ())
            if cid in self._connections
        ]

    def rooms(self) -> dict[str, int]:
        return {room: len(members) for room, members in self._rooms.items()}

    def publish(self, topic: Topic, payload: Any, room: str | None = None) -> int:
        if room is None:
            targets = list(self._connections.values())
        else:
            targets = self.room_members(validate_room(room))

        message = Message(topic=Topic(topic), payload=payload, room=room)
        delivered = sum(1 for connection in targets if connection.deliver(message))
        logger.debug(
            "Published %s to %d/%d connections", message.topic.value, delivered, len(targets)
        )
        return delivered
