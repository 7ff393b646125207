"""Consolidate duplicate applications into one record."""
import logging
from dataclasses import dataclass
from typing import Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from src.exceptions import MergeValidationError, StoreCommitError
from src.persistence.models import Application, ensure_utc, utcnow
from .history import record_recency, sorted_history, synthesized_history

logger = logging.getLogger(__name__)


@dataclass
class MergeRecord:
    """Result of a merge. Not persisted."""

    primary_id: str
    absorbed_ids: list[str]
    resulting_application: Application


class MergeOperator:
    """Merges two or more applications of one user into a primary record.

    Current state (status, sentiment, urgency, next action, latest email)
    comes from whichever record saw the most recent activity. A manual
    status set by the user survives the merge: the primary's if it has
    one, otherwise the most recent absorbed record's. The primary is
    rewritten and the others deleted in one transaction.
    """

    def __init__(self, session: Session):
        self.session = session

    def _load(self, user_id: str, application_ids: Sequence[str]) -> list[Application]:
        records = []
        seen = set()
        for application_id in application_ids:
            if not application_id or application_id in seen:
                continue
            seen.add(application_id)
            application = self.session.get(Application, (user_id, application_id))
            if application is not None:
                records.append(application)
        return records

    def merge(
        self,
        user_id: str,
        application_ids: Sequence[str],
        primary_id: Optional[str] = None,
    ) -> MergeRecord:
        """
        Merge applications into one.

        Args:
            user_id: Owner of the records
            application_ids: Ids to merge (at least 2 must exist)
            primary_id: Record to keep; the first found id when missing or invalid

        Returns:
            MergeRecord describing the surviving record

        Raises:
            MergeValidationError: Fewer than 2 of the ids exist
            StoreCommitError: The transaction failed and was rolled back
        """
        records = self._load(user_id, application_ids)
        if len(records) < 2:
            raise MergeValidationError(
                f"At least 2 applications are required for merging, found {len(records)}"
            )

        primary = next((r for r in records if r.id == primary_id), records[0])
        absorbed = [r for r in records if r is not primary]
        by_recency = sorted(records, key=record_recency, reverse=True)
        latest = by_recency[0]

        # Manual edits win over automatic state
        manual_source = primary if primary.manually_updated else next(
            (r for r in by_recency if r.manually_updated), None
        )

        history = []
        for record in [primary, *absorbed]:
            history.extend(synthesized_history(record))

        merged_from = list(primary.merged_from or [])
        for record in absorbed:
            for merged_id in [record.id, *(record.merged_from or [])]:
                if merged_id != primary.id and merged_id not in merged_from:
                    merged_from.append(merged_id)

        if manual_source is not None:
            primary.status = manual_source.status
            primary.urgency = manual_source.urgency
            primary.manually_updated = True
        else:
            primary.status = latest.status
            primary.urgency = latest.urgency or primary.urgency

        primary.sentiment = latest.sentiment or primary.sentiment
        primary.next_action = latest.next_action or primary.next_action
        primary.last_email_date = ensure_utc(latest.last_email_date or latest.date)
        primary.last_email_subject = latest.last_email_subject or latest.subject
        primary.last_email_from = latest.last_email_from or latest.from_address
        primary.last_gmail_id = latest.last_gmail_id or latest.gmail_id
        primary.email_history = sorted_history(history)
        primary.merged_from = merged_from
        primary.manually_merged = True
        primary.merged_at = utcnow()
        primary.updated_at = utcnow()

        target_id = primary.id
        absorbed_ids = [r.id for r in absorbed]
        for record in absorbed:
            self.session.delete(record)

        try:
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error("Merge into %s failed: %s", target_id, e)
            raise StoreCommitError(f"Failed to merge applications: {e}") from e

        logger.info("Merged %s into %s", ", ".join(absorbed_ids), target_id)
        return MergeRecord(primary_id=target_id, absorbed_ids=absorbed_ids, resulting_application=primary)
