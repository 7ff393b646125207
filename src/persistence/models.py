"""SQLAlchemy models for JobCAT."""
import re
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Optional

from dateutil import parser as dateutil_parser
from sqlalchemy import JSON, Boolean, Column, DateTime, Float, String, Text
from sqlalchemy.orm import DeclarativeBase


def utcnow() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes (SQLite drops tzinfo) and convert aware ones."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_datetime(value: Any) -> Optional[datetime]:
    """Parse an RFC 2822 header, ISO-8601 string or datetime into aware UTC.

    Returns None for empty or unparseable input.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    text = str(value).strip()
    try:
        return ensure_utc(parsedate_to_datetime(text))
    except (TypeError, ValueError, IndexError):
        pass
    try:
        return ensure_utc(dateutil_parser.parse(text))
    except (ValueError, OverflowError):
        return None


def normalize_company_key(name: str) -> str:
    """Normalize company name to a canonical key for matching.

    Lowercases, strips punctuation and common suffixes like Inc, LLC,
    Corp, Ltd so that "Stripe, Inc." and "Stripe" match.
    """
    if not name:
        return ""
    key = name.lower().strip()
    key = re.sub(r"[^\w\s&-]", " ", key)
    key = " ".join(key.split())
    for suffix in (" inc", " llc", " corp", " ltd", " co", " company"):
        if key.endswith(suffix):
            key = key[: -len(suffix)].rstrip()
    return key


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class Application(Base):
    """One tracked job application, keyed by a slug of company and position."""

    __tablename__ = "applications"

    STATUSES = (
        "received",
        "under_review",
        "interview_scheduled",
        "interview_completed",
        "offer",
        "rejected",
        "follow_up_needed",
        "withdrawn",
        "other",
    )
    SENTIMENTS = ("positive", "negative", "neutral")
    URGENCIES = ("high", "medium", "low")

    user_id = Column(String, primary_key=True)
    id = Column(String, primary_key=True)

    # Identity
    gmail_id = Column(String)  # Most recent contributing message
    last_gmail_id = Column(String)

    # Classification
    company = Column(String, nullable=False)
    company_key = Column(String, index=True)  # Normalized for matching
    position = Column(String, nullable=False)
    status = Column(String, nullable=False, default="other")
    sentiment = Column(String, default="neutral")
    urgency = Column(String, default="low")
    next_action = Column(Text)
    important_dates = Column(JSON, default=list)
    confidence = Column(Float, default=0.0)
    key_details = Column(Text)

    # Content of the message that currently defines the record
    subject = Column(String)
    from_address = Column(String)
    date = Column(DateTime(timezone=True))
    body = Column(Text)
    html_content = Column(Text)
    preview = Column(Text)

    # Provenance
    scraped_at = Column(DateTime(timezone=True), default=utcnow)
    last_email_date = Column(DateTime(timezone=True))
    last_email_subject = Column(String)
    last_email_from = Column(String)
    email_history = Column(JSON, default=list)  # [{gmail_id, subject, date, status, sentiment, ...}]

    # Control flags
    manually_updated = Column(Boolean, default=False, nullable=False)
    manually_merged = Column(Boolean, default=False, nullable=False)
    merged_from = Column(JSON, default=list)
    merged_at = Column(DateTime(timezone=True))

    # Timestamps
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    def __init__(self, **kwargs):
        kwargs.setdefault("important_dates", [])
        kwargs.setdefault("email_history", [])
        kwargs.setdefault("merged_from", [])
        kwargs.setdefault("manually_updated", False)
        kwargs.setdefault("manually_merged", False)
        super().__init__(**kwargs)
        if self.company and not self.company_key:
            self.company_key = normalize_company_key(self.company)

    @property
    def freshest_email_date(self) -> Optional[datetime]:
        """Date of the newest message recorded, whichever field holds it."""
        return ensure_utc(self.last_email_date or self.date)

    @property
    def history_gmail_ids(self) -> set[str]:
        """Message ids already recorded in the history."""
        return {entry.get("gmail_id") for entry in self.email_history or [] if entry.get("gmail_id")}

    def to_dict(self) -> dict:
        """Render the record as a plain dict for API/CLI consumers."""

        def _iso(value: Optional[datetime]) -> Optional[str]:
            value = ensure_utc(value)
            return value.isoformat() if value else None

        return {
            "id": self.id,
            "user_id": self.user_id,
            "gmail_id": self.gmail_id,
            "last_gmail_id": self.last_gmail_id,
            "company": self.company,
            "position": self.position,
            "status": self.status,
            "sentiment": self.sentiment,
            "urgency": self.urgency,
            "next_action": self.next_action,
            "important_dates": list(self.important_dates or []),
            "confidence": self.confidence,
            "key_details": self.key_details,
            "subject": self.subject,
            "from": self.from_address,
            "date": _iso(self.date),
            "body": self.body,
            "html_content": self.html_content,
            "preview": self.preview,
            "scraped_at": _iso(self.scraped_at),
            "last_email_date": _iso(self.last_email_date),
            "last_email_subject": self.last_email_subject,
            "last_email_from": self.last_email_from,
            "email_history": [dict(entry) for entry in self.email_history or []],
            "manually_updated": bool(self.manually_updated),
            "manually_merged": bool(self.manually_merged),
            "merged_from": list(self.merged_from or []),
            "merged_at": _iso(self.merged_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self) -> str:
        return f"<Application {self.company} - {self.position} ({self.status})>"


class SyncCheckpoint(Base):
    """Completion time of a user's last successful sync."""

    __tablename__ = "sync_checkpoints"

    user_id = Column(String, primary_key=True)
    timestamp = Column(DateTime(timezone=True), nullable=False)
    # Ids in the current window already fetched and judged irrelevant, rejected or stale
    examined_gmail_ids = Column(JSON, default=list)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    def __repr__(self) -> str:
        return f"<SyncCheckpoint {self.user_id} @ {self.timestamp}>"
