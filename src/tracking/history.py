"""Record ids and email-history helpers shared by reconciliation and merge."""
import re
from datetime import datetime, timezone
from typing import Iterable, Optional

from src.persistence.models import Application, ensure_utc, parse_datetime

_NON_ALNUM = re.compile(r"[^a-z0-9]+")

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def _slug(value: str) -> str:
    return _NON_ALNUM.sub("_", (value or "").strip().lower()).strip("_")


def derive_application_id(company: str, position: str) -> str:
    """Deterministic record id for a (company, position) pair.

    >>> derive_application_id("Acme, Inc.", "Sr. Engineer")
    'acme_inc_sr_engineer'
    """
    return f"{_slug(company)}_{_slug(position)}"


def history_entry(
    gmail_id: str,
    subject: str,
    date: Optional[datetime],
    status: str,
    sentiment: str,
    body: Optional[str] = None,
    html_content: Optional[str] = None,
) -> dict:
    """Build one ``email_history`` entry with its date as an ISO UTC string."""
    entry = {
        "gmail_id": gmail_id,
        "subject": subject or "",
        "date": date.astimezone(timezone.utc).isoformat() if date else None,
        "status": status,
        "sentiment": sentiment,
    }
    if body:
        entry["body"] = body
    if html_content:
        entry["html_content"] = html_content
    return entry


def entry_date(entry: dict) -> datetime:
    """Sort key for history entries; undated entries sort first."""
    return parse_datetime(entry.get("date")) or _EPOCH


def sorted_history(entries: Iterable[dict]) -> list[dict]:
    """Entries ordered by date ascending, keeping the first of any repeated gmail_id."""
    seen: set[str] = set()
    unique = []
    for entry in entries:
        gmail_id = entry.get("gmail_id")
        if gmail_id:
            if gmail_id in seen:
                continue
            seen.add(gmail_id)
        unique.append(dict(entry))
    return sorted(unique, key=entry_date)


def append_history(application: Application, entry: dict) -> bool:
    """Add an entry to a record's history, keeping it sorted.

    Assigns a new list so the JSON column is flagged dirty. Returns False
    when the message is already recorded.
    """
    if entry.get("gmail_id") in application.history_gmail_ids:
        return False
    application.email_history = sorted_history([*(application.email_history or []), entry])
    return True


def record_recency(application: Application) -> datetime:
    """Newest known activity on a record: last email, then date, then scrape time."""
    value = application.last_email_date or application.date or application.scraped_at
    return ensure_utc(value) or _EPOCH


def synthesized_history(application: Application) -> list[dict]:
    """A record's history, or a single entry built from its own fields if it has none."""
    if application.email_history:
        return list(application.email_history)
    return [
        history_entry(
            gmail_id=application.gmail_id or application.id,
            subject=application.subject,
            date=ensure_utc(application.date),
            status=application.status,
            sentiment=application.sentiment,
        )
    ]
