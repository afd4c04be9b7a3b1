"""Event Bus and typed lifecycle events for the packager controller.

Every observable transition (child output, packager readiness, tunnel
connect/disconnect) is published as a frozen dataclass. Embedding
applications subscribe by type and render however they like.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import AsyncIterator, ClassVar, TypeVar, Union, get_args

logger = logging.getLogger(__name__)

T = TypeVar("T")


class EventBus:
    """Simple in-process asyncio pub/sub event bus.

    Publishers call publish(event). Subscribers receive events via
    subscribe() which returns an asyncio.Queue, or iter_events() for
    convenient async iteration.
    """

    def __init__(self) -> None:
        self._subscribers: dict[type, list[asyncio.Queue]] = {}

    def subscribe(self, event_type: type[T]) -> asyncio.Queue[T]:
        """Subscribe to events of a specific type. Returns a Queue."""
        queue: asyncio.Queue = asyncio.Queue()
        self._subscribers.setdefault(event_type, []).append(queue)
        return queue

    def subscribe_many(self, event_types: list[type]) -> asyncio.Queue:
        """Subscribe a single queue to several event types."""
        queue: asyncio.Queue = asyncio.Queue()
        for event_type in event_types:
            self._subscribers.setdefault(event_type, []).append(queue)
        return queue

    def unsubscribe(self, event_type: type[T], queue: asyncio.Queue) -> None:
        """Remove a subscription."""
        queues = self._subscribers.get(event_type, [])
        if queue in queues:
            queues.remove(queue)

    def publish(self, event: object) -> None:
        """Publish an event to all subscribers of its type."""
        for queue in self._subscribers.get(type(event), []):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning("Event queue full, dropping %s", type(event).__name__)

    async def iter_events(self, event_type: type[T]) -> AsyncIterator[T]:
        """Async iterator for events of a specific type."""
        queue = self.subscribe(event_type)
        try:
            while True:
                yield await queue.get()
        finally:
            self.unsubscribe(event_type, queue)


# ---------------------------------------------------------------------------
# Packager events
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class StdoutEvent:
    """A line of packager stdout."""
    name: ClassVar[str] = "stdout"
    text: str


@dataclass(frozen=True)
class StderrEvent:
    """A line of packager stderr, or a project validation message."""
    name: ClassVar[str] = "stderr"
    text: str


@dataclass(frozen=True)
class PackagerReadyEvent:
    """The packager printed its ready marker."""
    name: ClassVar[str] = "packager-ready"
    pid: int


@dataclass(frozen=True)
class PackagerWillStopEvent:
    name: ClassVar[str] = "packager-will-stop"
    pid: int


@dataclass(frozen=True)
class PackagerStoppedEvent:
    """The packager process exited. Published once per process."""
    name: ClassVar[str] = "packager-stopped"
    pid: int
    exit_code: int | None


# ---------------------------------------------------------------------------
# Tunnel events
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TunnelWillStartEvent:
    name: ClassVar[str] = "ngrok-will-start"
    port: int


@dataclass(frozen=True)
class TunnelDidStartEvent:
    """Tunnel start settled. ``url`` is None when the connect failed."""
    name: ClassVar[str] = "ngrok-did-start"
    port: int
    url: str | None


@dataclass(frozen=True)
class TunnelReadyEvent:
    name: ClassVar[str] = "ngrok-ready"
    port: int
    url: str | None


@dataclass(frozen=True)
class TunnelWillDisconnectEvent:
    name: ClassVar[str] = "ngrok-will-disconnect"
    url: str


@dataclass(frozen=True)
class TunnelDisconnectedEvent:
    name: ClassVar[str] = "ngrok-disconnected"
    url: str


@dataclass(frozen=True)
class TunnelDisconnectErrorEvent:
    """Disconnect failed; the tunnel URL is kept."""
    name: ClassVar[str] = "ngrok-disconnect-err"
    url: str
    error: str


PackagerEvent = Union[
    StdoutEvent,
    StderrEvent,
    PackagerReadyEvent,
    PackagerWillStopEvent,
    PackagerStoppedEvent,
    TunnelWillStartEvent,
    TunnelDidStartEvent,
    TunnelReadyEvent,
    TunnelWillDisconnectEvent,
    TunnelDisconnectedEvent,
    TunnelDisconnectErrorEvent,
]

ALL_EVENT_TYPES: list[type] = list(get_args(PackagerEvent))
