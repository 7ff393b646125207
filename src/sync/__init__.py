"""Incremental mailbox sync."""
from .events import (
    CallbackEventSink,
    EventSink,
    ListEventSink,
    NullEventSink,
    QueueEventSink,
    SyncEvent,
    SyncLogger,
)
from .locks import UserLockRegistry
from .orchestrator import SyncOrchestrator, SyncResult, compute_window_start

__all__ = [
    "CallbackEventSink",
    "EventSink",
    "ListEventSink",
    "NullEventSink",
    "QueueEventSink",
    "SyncEvent",
    "SyncLogger",
    "SyncOrchestrator",
    "SyncResult",
    "UserLockRegistry",
    "compute_window_start",
]
