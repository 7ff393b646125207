"""Structured progress events emitted during a sync run.

A live-feed transport (SSE, websocket, CLI printer) plugs in by passing an
``EventSink`` to the orchestrator. Delivery is best effort: a sink that
raises is logged and ignored, and the default sink drops everything.
"""
import json
import logging
import queue
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Callable, Optional, Protocol, runtime_checkable

from src.persistence.models import utcnow

logger = logging.getLogger(__name__)

LEVELS = ("log", "error", "step", "progress", "success", "warning", "company", "ai", "email")

_LOG_LEVELS = {
    "error": logging.ERROR,
    "warning": logging.WARNING,
    "progress": logging.DEBUG,
    "email": logging.DEBUG,
    "ai": logging.DEBUG,
}


@dataclass
class SyncEvent:
    """One entry of the live feed."""

    level: str
    message: str
    data: Optional[dict[str, Any]] = None
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        payload = asdict(self)
        payload["timestamp"] = self.timestamp.isoformat()
        return payload

    def to_sse(self) -> str:
        """Render as a server-sent-events frame."""
        return f"data: {json.dumps(self.to_dict(), default=str)}\n\n"


@runtime_checkable
class EventSink(Protocol):
    def emit(self, event: SyncEvent) -> None:
        ...


class NullEventSink:
    """Sink used when nobody is listening."""

    def emit(self, event: SyncEvent) -> None:
        pass


class CallbackEventSink:
    """Forward events to a plain callable."""

    def __init__(self, callback: Callable[[SyncEvent], None]):
        self.callback = callback

    def emit(self, event: SyncEvent) -> None:
        self.callback(event)


class QueueEventSink:
    """Buffer events in a queue for a transport running on another thread."""

    def __init__(self, maxsize: int = 1000):
        self.queue: "queue.Queue[SyncEvent]" = queue.Queue(maxsize=maxsize)

    def emit(self, event: SyncEvent) -> None:
        try:
            self.queue.put_nowait(event)
        except queue.Full:
            logger.debug("Event queue full, dropping %r", event.message)

    def drain(self) -> list[SyncEvent]:
        events = []
        while True:
            try:
                events.append(self.queue.get_nowait())
            except queue.Empty:
                return events


class ListEventSink:
    """Keep every event in memory (CLI summaries, tests)."""

    def __init__(self):
        self.events: list[SyncEvent] = []

    def emit(self, event: SyncEvent) -> None:
        self.events.append(event)

    def levels(self) -> list[str]:
        return [e.level for e in self.events]


class SyncLogger:
    """Writes each event to the module logger and to the run's sink."""

    def __init__(self, sink: Optional[EventSink] = None, user_id: Optional[str] = None):
        self.sink = sink or NullEventSink()
        self.user_id = user_id

    def emit(self, level: str, message: str, data: Optional[dict[str, Any]] = None) -> SyncEvent:
        event = SyncEvent(level=level, message=message, data=data)
        logger.log(_LOG_LEVELS.get(level, logging.INFO), "[%s] %s", self.user_id or "-", message)
        try:
            self.sink.emit(event)
        except Exception as e:
            logger.warning("Event sink failed for %r: %s", message, e)
        return event

    def log(self, message: str, data: Optional[dict] = None) -> SyncEvent:
        return self.emit("log", message, data)

    def step(self, stage: str, message: str, data: Optional[dict] = None) -> SyncEvent:
        return self.emit("step", message, {"stage": stage, **(data or {})})

    def progress(self, processed: int, total: int, message: str) -> SyncEvent:
        return self.emit("progress", message, {"processed": processed, "total": total})

    def success(self, message: str, data: Optional[dict] = None) -> SyncEvent:
        return self.emit("success", message, data)

    def warning(self, message: str, data: Optional[dict] = None) -> SyncEvent:
        return self.emit("warning", message, data)

    def error(self, message: str, data: Optional[dict] = None) -> SyncEvent:
        return self.emit("error", message, data)

    def company(self, message: str, data: Optional[dict] = None) -> SyncEvent:
        return self.emit("company", message, data)

    def ai(self, message: str, data: Optional[dict] = None) -> SyncEvent:
        return self.emit("ai", message, data)

    def email(self, message: str, data: Optional[dict] = None) -> SyncEvent:
        return self.emit("email", message, data)
