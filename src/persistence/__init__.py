"""Database persistence layer."""
from .database import get_session, init_db
from .legacy import normalize_legacy_document
from .models import Application, Base, SyncCheckpoint

__all__ = [
    "Base",
    "Application",
    "SyncCheckpoint",
    "normalize_legacy_document",
    "init_db",
    "get_session",
]
