"""
Event channels for portscout.

Every engine reports through four channels: new, stopped, update and error.
Consumers implement EngineObserver, or use one of the adapters here:
- QueueObserver turns the channels into an asyncio.Queue of EngineEvent
- CallbackObserver wraps plain or async callables
- ObserverGroup fans out to several observers and isolates their failures
"""

from typing import Optional, Dict, Any, List, Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
import asyncio
import inspect

from .logging import get_logger


logger = get_logger("portscout.notifications")


class EventKind(Enum):
    """Event channel names."""
    NEW = "new"
    STOPPED = "stopped"
    UPDATE = "update"
    ERROR = "error"


@dataclass
class EngineEvent:
    """A single event as delivered on a queue channel."""
    kind: EventKind
    source: str
    payload: Any
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        payload = self.payload
        if isinstance(payload, list):
            payload = [p.to_dict() if hasattr(p, "to_dict") else p for p in payload]
        elif hasattr(payload, "to_dict"):
            payload = payload.to_dict()
        elif isinstance(payload, BaseException):
            payload = str(payload)
        return {
            "kind": self.kind.value,
            "source": self.source,
            "payload": payload,
            "timestamp": self.timestamp.isoformat(),
        }


class EngineObserver:
    """Receiver for engine events. Override the channels you need."""

    async def on_new(self, source: str, entity: Any) -> None:
        pass

    async def on_stopped(self, source: str, entity: Any) -> None:
        pass

    async def on_update(self, source: str, snapshot: List[Any]) -> None:
        pass

    async def on_error(self, source: str, cause: BaseException) -> None:
        pass


class QueueObserver(EngineObserver):
    """Publishes events onto an asyncio.Queue in emission order."""

    def __init__(self, queue: Optional[asyncio.Queue] = None):
        self.queue: asyncio.Queue = queue if queue is not None else asyncio.Queue()

    async def _put(self, kind: EventKind, source: str, payload: Any) -> None:
        await self.queue.put(EngineEvent(kind=kind, source=source, payload=payload))

    async def on_new(self, source, entity):
        await self._put(EventKind.NEW, source, entity)

    async def on_stopped(self, source, entity):
        await self._put(EventKind.STOPPED, source, entity)

    async def on_update(self, source, snapshot):
        await self._put(EventKind.UPDATE, source, snapshot)

    async def on_error(self, source, cause):
        await self._put(EventKind.ERROR, source, cause)

    def drain(self) -> List[EngineEvent]:
        """Return every queued event without waiting."""
        events = []
        while not self.queue.empty():
            events.append(self.queue.get_nowait())
        return events


class CallbackObserver(EngineObserver):
    """Adapts one callable per channel. Callables may be sync or async."""

    def __init__(
        self,
        on_new: Optional[Callable] = None,
        on_stopped: Optional[Callable] = None,
        on_update: Optional[Callable] = None,
        on_error: Optional[Callable] = None,
    ):
        self._handlers: Dict[EventKind, Optional[Callable]] = {
            EventKind.NEW: on_new,
            EventKind.STOPPED: on_stopped,
            EventKind.UPDATE: on_update,
            EventKind.ERROR: on_error,
        }

    async def _call(self, kind: EventKind, source: str, payload: Any) -> None:
        handler = self._handlers.get(kind)
        if handler is None:
            return
        if inspect.iscoroutinefunction(handler):
            await handler(source, payload)
        else:
            handler(source, payload)

    async def on_new(self, source, entity):
        await self._call(EventKind.NEW, source, entity)

    async def on_stopped(self, source, entity):
        await self._call(EventKind.STOPPED, source, entity)

    async def on_update(self, source, snapshot):
        await self._call(EventKind.UPDATE, source, snapshot)

    async def on_error(self, source, cause):
        await self._call(EventKind.ERROR, source, cause)


class ObserverGroup(EngineObserver):
    """
    Delivers each event to every member in registration order.

    A member that raises is logged and skipped; the others still receive the
    event and the emitting engine never sees the exception.
    """

    def __init__(self, observers: Optional[List[EngineObserver]] = None):
        self._observers: List[EngineObserver] = list(observers or [])

    def add(self, observer: EngineObserver) -> None:
        self._observers.append(observer)

    def remove(self, observer: EngineObserver) -> None:
        self._observers.remove(observer)

    def __len__(self) -> int:
        return len(self._observers)

    async def _dispatch(self, kind: EventKind, source: str, payload: Any) -> None:
        for observer in list(self._observers):
            handler = getattr(observer, f"on_{kind.value}")
            try:
                await handler(source, payload)
            except Exception as e:
                logger.error(
                    "observer_error",
                    event_type=kind.value,
                    source=source,
                    observer=type(observer).__name__,
                    error=str(e)
                )

    async def on_new(self, source, entity):
        await self._dispatch(EventKind.NEW, source, entity)

    async def on_stopped(self, source, entity):
        await self._dispatch(EventKind.STOPPED, source, entity)

    async def on_update(self, source, snapshot):
        await self._dispatch(EventKind.UPDATE, source, snapshot)

    async def on_error(self, source, cause):
        await self._dispatch(EventKind.ERROR, source, cause)


__all__ = [
    'EventKind',
    'EngineEvent',
    'EngineObserver',
    'QueueObserver',
    'CallbackObserver',
    'ObserverGroup',
]
