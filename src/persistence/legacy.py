"""Normalize legacy application documents into the canonical schema.

Older exports store classification either as flat camelCase fields or
nested under an ``aiAnalysis`` object, keep dates as header strings, and
may lack control flags. Everything read from outside the database goes
through ``normalize_legacy_document`` before it becomes an Application.
"""
import logging
from typing import Any, Optional

from src.persistence.models import Application, parse_datetime

logger = logging.getLogger(__name__)

# camelCase document key -> Application attribute
FIELD_ALIASES = {
    "userId": "user_id",
    "gmailId": "gmail_id",
    "lastGmailId": "last_gmail_id",
    "nextAction": "next_action",
    "importantDates": "important_dates",
    "keyDetails": "key_details",
    "from": "from_address",
    "htmlContent": "html_content",
    "scrapedAt": "scraped_at",
    "lastEmailDate": "last_email_date",
    "lastEmailSubject": "last_email_subject",
    "lastEmailFrom": "last_email_from",
    "emailHistory": "email_history",
    "manuallyUpdated": "manually_updated",
    "manuallyMerged": "manually_merged",
    "mergedFrom": "merged_from",
    "mergedAt": "merged_at",
    "createdAt": "created_at",
    "updatedAt": "updated_at",
}

CLASSIFICATION_FIELDS = (
    "company",
    "position",
    "status",
    "sentiment",
    "urgency",
    "nextAction",
    "importantDates",
    "confidence",
    "keyDetails",
)

DATETIME_FIELDS = ("date", "scraped_at", "last_email_date", "merged_at", "created_at", "updated_at")

HISTORY_ALIASES = {"gmailId": "gmail_id", "htmlContent": "html_content"}


def _normalize_history_entry(entry: dict) -> dict:
    normalized = {HISTORY_ALIASES.get(key, key): value for key, value in entry.items()}
    parsed = parse_datetime(normalized.get("date"))
    normalized["date"] = parsed.isoformat() if parsed else ""
    return normalized


def _coerce_enum(value: Any, allowed: tuple, default: str) -> str:
    if isinstance(value, str) and value.strip().lower() in allowed:
        return value.strip().lower()
    return default


def _coerce_confidence(value: Any) -> float:
    try:
        return min(1.0, max(0.0, float(value)))
    except (TypeError, ValueError):
        return 0.0


def normalize_legacy_document(doc: dict, user_id: Optional[str] = None) -> dict:
    """Convert a legacy or canonical application document to Application kwargs.

    Args:
        doc: Stored/exported document (camelCase, snake_case or nested aiAnalysis)
        user_id: Owner to assign when the document does not carry one

    Returns:
        Keyword arguments accepted by ``Application(...)``
    """
    flat = dict(doc)

    # Legacy shape: classification nested under aiAnalysis
    analysis = flat.pop("aiAnalysis", None)
    if isinstance(analysis, dict):
        for field in CLASSIFICATION_FIELDS:
            if field in analysis and flat.get(field) in (None, ""):
                flat[field] = analysis[field]

    data: dict[str, Any] = {}
    for key, value in flat.items():
        data[FIELD_ALIASES.get(key, key)] = value

    columns = {column.key for column in Application.__table__.columns}
    unknown = sorted(set(data) - columns)
    if unknown:
        logger.debug("Dropping unknown legacy fields: %s", ", ".join(unknown))
    data = {key: value for key, value in data.items() if key in columns}

    if user_id and not data.get("user_id"):
        data["user_id"] = user_id

    for field in DATETIME_FIELDS:
        if field in data:
            data[field] = parse_datetime(data[field])

    data["company"] = str(data.get("company") or "Unknown")
    data["position"] = str(data.get("position") or "Unknown")
    data["status"] = _coerce_enum(data.get("status"), Application.STATUSES, "other")
    data["sentiment"] = _coerce_enum(data.get("sentiment"), Application.SENTIMENTS, "neutral")
    data["urgency"] = _coerce_enum(data.get("urgency"), Application.URGENCIES, "low")
    data["confidence"] = _coerce_confidence(data.get("confidence"))
    data["important_dates"] = [str(d) for d in data.get("important_dates") or []]
    data["merged_from"] = list(dict.fromkeys(data.get("merged_from") or []))
    data["manually_updated"] = bool(data.get("manually_updated", False))
    data["manually_merged"] = bool(data.get("manually_merged", False))

    history = [_normalize_history_entry(e) for e in data.get("email_history") or [] if isinstance(e, dict)]
    history.sort(key=lambda e: e["date"])
    data["email_history"] = history

    return data
