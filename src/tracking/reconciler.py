"""Decide how each classified email changes the user's applications."""
import logging
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from src.classification.classifier import Judgment
from src.gmail.extractor import ExtractedEmail
from src.matching.company_directory import CompanyMatch
from src.persistence.models import Application, ensure_utc, utcnow
from .history import append_history, derive_application_id, history_entry

logger = logging.getLogger(__name__)

COMPANY_MATCH_THRESHOLD = 0.5
KEYWORD_MATCH_THRESHOLD = 0.7


class Decision(str, Enum):
    """What reconciliation did with one candidate message."""

    REJECTED_NOT_JOB = "rejected_not_job"
    REJECTED_LOW_CONFIDENCE = "rejected_low_confidence"
    CREATED = "created"
    UPDATED = "updated"
    SKIPPED_STALE = "skipped_stale"
    SKIPPED_DUPLICATE = "skipped_duplicate"


@dataclass
class Candidate:
    """A classified message waiting for reconciliation.

    ``company_match`` is set when the message got past the gate because it
    came from a known company rather than because of keywords.
    """

    email: ExtractedEmail
    judgment: Judgment
    company_match: Optional[CompanyMatch] = None

    @property
    def match_source(self) -> str:
        return "company_directory" if self.company_match else "keyword"


@dataclass
class Outcome:
    gmail_id: str
    subject: str
    decision: Decision
    application_id: Optional[str] = None


@dataclass
class ReconcileReport:
    """Per-message outcomes of one reconciliation pass."""

    outcomes: list[Outcome] = field(default_factory=list)

    def _count(self, *decisions: Decision) -> int:
        return sum(1 for o in self.outcomes if o.decision in decisions)

    @property
    def created_count(self) -> int:
        return self._count(Decision.CREATED)

    @property
    def updated_count(self) -> int:
        return self._count(Decision.UPDATED)

    @property
    def skipped_count(self) -> int:
        return self._count(Decision.SKIPPED_STALE, Decision.SKIPPED_DUPLICATE)

    @property
    def rejected_count(self) -> int:
        return self._count(Decision.REJECTED_NOT_JOB, Decision.REJECTED_LOW_CONFIDENCE)

    def counts(self) -> dict[str, int]:
        return dict(Counter(o.decision.value for o in self.outcomes))


class ReconciliationEngine:
    """Applies classified messages to Application records.

    Candidates are grouped by derived record id and each group is replayed
    in message-date order, so the newest message decides a record's state
    no matter what order the mailbox returned them in. The engine only
    stages changes in the given session; committing is the caller's job.
    """

    def __init__(
        self,
        session: Session,
        user_id: str,
        company_match_threshold: float = COMPANY_MATCH_THRESHOLD,
        keyword_match_threshold: float = KEYWORD_MATCH_THRESHOLD,
    ):
        """
        Initialize the engine.

        Args:
            session: Database session to stage changes in
            user_id: Owner of the records
            company_match_threshold: Confidence a known-company message must exceed
            keyword_match_threshold: Confidence a keyword-only message must exceed
        """
        self.session = session
        self.user_id = user_id
        self.company_match_threshold = company_match_threshold
        self.keyword_match_threshold = keyword_match_threshold

    def threshold_for(self, candidate: Candidate) -> float:
        if candidate.company_match:
            return self.company_match_threshold
        return self.keyword_match_threshold

    def gate(self, candidate: Candidate) -> Optional[Decision]:
        """Return a rejection decision, or None if the candidate is accepted."""
        judgment = candidate.judgment
        if not judgment.is_job_application:
            return Decision.REJECTED_NOT_JOB
        if judgment.confidence <= self.threshold_for(candidate):
            return Decision.REJECTED_LOW_CONFIDENCE
        return None

    def reconcile(self, candidates: Iterable[Candidate]) -> ReconcileReport:
        """
        Reconcile a window's worth of candidates.

        Args:
            candidates: Classified messages in any order

        Returns:
            ReconcileReport with one outcome per candidate
        """
        report = ReconcileReport()
        groups: dict[str, list[Candidate]] = defaultdict(list)

        for candidate in candidates:
            rejection = self.gate(candidate)
            if rejection:
                logger.debug(
                    "Rejected %s (%s, confidence %.2f via %s)",
                    candidate.email.gmail_id,
                    rejection.value,
                    candidate.judgment.confidence,
                    candidate.match_source,
                )
                report.outcomes.append(
                    Outcome(candidate.email.gmail_id, candidate.email.subject, rejection)
                )
                continue
            application_id = derive_application_id(
                candidate.judgment.company, candidate.judgment.position
            )
            groups[application_id].append(candidate)

        for application_id, group in groups.items():
            group.sort(key=lambda c: (ensure_utc(c.email.sent_at), c.email.gmail_id))
            application = self.session.get(Application, (self.user_id, application_id))
            touched = False
            for candidate in group:
                application, decision = self._apply(application, application_id, candidate, touched)
                touched = touched or decision in (Decision.CREATED, Decision.UPDATED)
                report.outcomes.append(
                    Outcome(candidate.email.gmail_id, candidate.email.subject, decision, application_id)
                )

        logger.info(
            "Reconciled %d candidates: %d created, %d updated, %d skipped, %d rejected",
            len(report.outcomes),
            report.created_count,
            report.updated_count,
            report.skipped_count,
            report.rejected_count,
        )
        return report

    def _apply(
        self,
        application: Optional[Application],
        application_id: str,
        candidate: Candidate,
        touched: bool = False,
    ) -> tuple[Application, Decision]:
        """Apply one candidate to its record.

        ``touched`` means an earlier message of this batch already created or
        updated the record. A message in the same batch that is not newer still
        belongs to the record, so it is added to the history without changing
        the classification.
        """
        email = candidate.email

        if application is None:
            return self._create(application_id, candidate), Decision.CREATED

        if email.gmail_id in application.history_gmail_ids:
            return application, Decision.SKIPPED_DUPLICATE

        sent_at = ensure_utc(email.sent_at)

        if application.manually_updated:
            # Classification stays as the user set it; only provenance moves
            append_history(application, self._entry(candidate))
            freshest = application.freshest_email_date
            if freshest is None or sent_at > freshest:
                self._refresh_provenance(application, email)
                self._refresh_content(application, email)
            return application, Decision.UPDATED

        current = ensure_utc(application.date)
        if current is not None and sent_at <= current:
            if touched:
                append_history(application, self._entry(candidate))
                application.updated_at = utcnow()
                return application, Decision.UPDATED
            logger.debug("Skipping stale %s for %s", email.gmail_id, application_id)
            return application, Decision.SKIPPED_STALE

        judgment = candidate.judgment
        application.status = judgment.status
        application.sentiment = judgment.sentiment
        application.urgency = judgment.urgency
        application.next_action = judgment.next_action
        application.important_dates = list(judgment.important_dates)
        application.confidence = judgment.confidence
        application.key_details = judgment.key_details
        application.date = sent_at
        self._refresh_content(application, email)
        self._refresh_provenance(application, email)
        append_history(application, self._entry(candidate))
        application.updated_at = utcnow()
        return application, Decision.UPDATED

    def _create(self, application_id: str, candidate: Candidate) -> Application:
        email = candidate.email
        judgment = candidate.judgment
        sent_at = ensure_utc(email.sent_at)
        application = Application(
            user_id=self.user_id,
            id=application_id,
            gmail_id=email.gmail_id,
            last_gmail_id=email.gmail_id,
            company=judgment.company,
            position=judgment.position,
            status=judgment.status,
            sentiment=judgment.sentiment,
            urgency=judgment.urgency,
            next_action=judgment.next_action,
            important_dates=list(judgment.important_dates),
            confidence=judgment.confidence,
            key_details=judgment.key_details,
            subject=email.subject,
            from_address=email.from_address,
            date=sent_at,
            body=email.plain_text,
            html_content=email.html_content,
            preview=email.preview,
            scraped_at=utcnow(),
            last_email_date=sent_at,
            last_email_subject=email.subject,
            last_email_from=email.from_address,
            email_history=[self._entry(candidate)],
            manually_updated=False,
        )
        self.session.add(application)
        logger.info("New application: %s - %s", judgment.company, judgment.position)
        return application

    @staticmethod
    def _entry(candidate: Candidate) -> dict:
        email = candidate.email
        return history_entry(
            gmail_id=email.gmail_id,
            subject=email.subject,
            date=ensure_utc(email.sent_at),
            status=candidate.judgment.status,
            sentiment=candidate.judgment.sentiment,
            body=email.plain_text,
            html_content=email.html_content,
        )

    @staticmethod
    def _refresh_provenance(application: Application, email: ExtractedEmail) -> None:
        application.gmail_id = email.gmail_id
        application.last_gmail_id = email.gmail_id
        application.last_email_date = ensure_utc(email.sent_at)
        application.last_email_subject = email.subject
        application.last_email_from = email.from_address

    @staticmethod
    def _refresh_content(application: Application, email: ExtractedEmail) -> None:
        application.subject = email.subject
        application.from_address = email.from_address
        application.body = email.plain_text
        application.html_content = email.html_content
        application.preview = email.preview
