"""Incremental mailbox sync.

One run walks fixed stages in order:

    load_applications -> resolve_checkpoint -> fetch_and_classify
    -> persist_batch -> advance_checkpoint -> recompute_summary

The checkpoint only moves after the batch commit succeeds, so a run that
dies part way is simply repeated over the same window next time;
reconciliation makes the repeat harmless.

Every id in the window is listed, but at most ``max_messages`` unseen
messages are fetched and classified per run, oldest first. When the limit
cuts a run short the checkpoint only moves up to the newest message that
was examined, so the rest are picked up by the next sync. Ids examined and
found irrelevant, rejected or stale are kept on the checkpoint so later
runs over the same window do not spend the limit on them again.
"""
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from src.classification.classifier import AIClassifier
from src.exceptions import AuthorizationError, StoreCommitError
from src.gmail.client import MailboxSource
from src.gmail.extractor import ContentExtractor
from src.gmail.prefilter import RelevancePreFilter
from src.matching.company_directory import CompanyDirectory
from src.persistence.models import Application, SyncCheckpoint, ensure_utc, utcnow
from src.tracking.application_service import ApplicationService, ApplicationSummary
from src.tracking.reconciler import (
    COMPANY_MATCH_THRESHOLD,
    KEYWORD_MATCH_THRESHOLD,
    Candidate,
    Decision,
    ReconcileReport,
    ReconciliationEngine,
)
from .events import EventSink, SyncLogger
from .locks import UserLockRegistry, default_registry

logger = logging.getLogger(__name__)

DEFAULT_LOOKBACK_DAYS = 50
DEFAULT_MAX_MESSAGES = 200

STAGES = (
    "load_applications",
    "resolve_checkpoint",
    "fetch_and_classify",
    "persist_batch",
    "advance_checkpoint",
    "recompute_summary",
)


def compute_window_start(
    checkpoint: Optional[datetime],
    now: datetime,
    default_lookback_days: int = DEFAULT_LOOKBACK_DAYS,
) -> datetime:
    """Start of the fetch window.

    Without a checkpoint, look back the default number of days. With one,
    cover the whole days elapsed since it plus one extra day, so messages
    near the previous boundary are fetched again rather than missed.
    """
    if checkpoint is None:
        return now - timedelta(days=default_lookback_days)
    elapsed_days = (now - ensure_utc(checkpoint)).total_seconds() / 86400
    return now - timedelta(days=max(0, math.ceil(elapsed_days)) + 1)


@dataclass
class SyncResult:
    """Counts and summary returned to whoever triggered the sync."""

    user_id: str
    window_start: datetime
    created_count: int = 0
    updated_count: int = 0
    skipped_count: int = 0
    rejected_count: int = 0
    filtered_count: int = 0
    fetched_count: int = 0
    classified_count: int = 0
    pending_count: int = 0
    checkpoint_advanced: bool = False
    summary: Optional[ApplicationSummary] = None
    report: ReconcileReport = field(default_factory=ReconcileReport)

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "window_start": self.window_start.isoformat(),
            "created_count": self.created_count,
            "updated_count": self.updated_count,
            "skipped_count": self.skipped_count,
            "rejected_count": self.rejected_count,
            "filtered_count": self.filtered_count,
            "fetched_count": self.fetched_count,
            "classified_count": self.classified_count,
            "pending_count": self.pending_count,
            "checkpoint_advanced": self.checkpoint_advanced,
            "summary": self.summary.to_dict() if self.summary else None,
        }


# Decisions that settle a message for good without it entering any history
SETTLED_DECISIONS = (
    Decision.REJECTED_NOT_JOB,
    Decision.REJECTED_LOW_CONFIDENCE,
    Decision.SKIPPED_STALE,
)


@dataclass
class FetchBatch:
    """What the fetch_and_classify stage produced for one run."""

    listed_ids: set[str] = field(default_factory=set)
    candidates: list[Candidate] = field(default_factory=list)
    filtered_ids: set[str] = field(default_factory=set)
    pending_ids: list[str] = field(default_factory=list)
    newest_examined_at: Optional[datetime] = None

    def settled_ids(self, report: ReconcileReport) -> set[str]:
        """Ids examined this run that never need another look.

        Candidates whose AI call failed are left out so they are retried.
        """
        failed = {c.email.gmail_id for c in self.candidates if c.judgment.failed}
        settled = {
            o.gmail_id
            for o in report.outcomes
            if o.decision in SETTLED_DECISIONS and o.gmail_id not in failed
        }
        return settled | self.filtered_ids


class SyncOrchestrator:
    """Runs incremental syncs for any user against one mailbox."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        mailbox: MailboxSource,
        classifier: AIClassifier,
        extractor: Optional[ContentExtractor] = None,
        prefilter: Optional[RelevancePreFilter] = None,
        locks: Optional[UserLockRegistry] = None,
        default_lookback_days: int = DEFAULT_LOOKBACK_DAYS,
        max_messages: int = DEFAULT_MAX_MESSAGES,
        company_match_threshold: float = COMPANY_MATCH_THRESHOLD,
        keyword_match_threshold: float = KEYWORD_MATCH_THRESHOLD,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Initialize the orchestrator.

        Args:
            session_factory: Callable returning a new database session
            mailbox: Mailbox to read messages from
            classifier: AI classifier adapter
            extractor: Content extractor (default instance if omitted)
            prefilter: Relevance pre-filter (default instance if omitted)
            locks: Per-user lock registry (process-wide default if omitted)
            default_lookback_days: Window used when a user has no checkpoint
            max_messages: Most unseen messages fetched and classified per run
            company_match_threshold: Acceptance threshold for known-company messages
            keyword_match_threshold: Acceptance threshold for keyword-only messages
            clock: Source of the current time
        """
        self.session_factory = session_factory
        self.mailbox = mailbox
        self.classifier = classifier
        self.extractor = extractor or ContentExtractor()
        self.prefilter = prefilter or RelevancePreFilter()
        self.locks = locks or default_registry
        self.default_lookback_days = default_lookback_days
        self.max_messages = max_messages
        self.company_match_threshold = company_match_threshold
        self.keyword_match_threshold = keyword_match_threshold
        self.clock = clock

    def sync(self, user_id: str, sink: Optional[EventSink] = None) -> SyncResult:
        """
        Run one sync for a user.

        Args:
            user_id: Whose applications to update
            sink: Receiver for live progress events

        Returns:
            SyncResult with counts and a fresh summary

        Raises:
            SyncInProgressError: A sync for this user is already running
            AuthorizationError: Mailbox access must be re-authorized
            StoreCommitError: The batch could not be saved; nothing changed
        """
        with self.locks.hold(user_id):
            events = SyncLogger(sink, user_id)
            try:
                return self._run(user_id, events)
            except (AuthorizationError, StoreCommitError) as e:
                events.error(str(e), {"code": e.code})
                raise

    def _run(self, user_id: str, events: SyncLogger) -> SyncResult:
        with self.session_factory() as session:
            # load_applications
            events.step("load_applications", "Loading existing applications")
            applications = list(
                session.scalars(select(Application).where(Application.user_id == user_id))
            )
            directory = CompanyDirectory.build(applications, self.prefilter)
            known_gmail_ids: set[str] = set()
            for application in applications:
                known_gmail_ids |= application.history_gmail_ids
            events.company(
                f"Tracking {len(directory)} companies across {len(applications)} applications",
                {"companies": len(directory), "applications": len(applications)},
            )

            # resolve_checkpoint
            checkpoint = session.get(SyncCheckpoint, user_id)
            last_sync = checkpoint.timestamp if checkpoint else None
            examined_before = set(checkpoint.examined_gmail_ids or []) if checkpoint else set()
            window_start = compute_window_start(last_sync, self.clock(), self.default_lookback_days)
            events.step(
                "resolve_checkpoint",
                f"Fetching messages since {window_start:%Y-%m-%d}"
                + ("" if last_sync else " (first sync)"),
                {"window_start": window_start.isoformat(), "first_sync": last_sync is None},
            )
            result = SyncResult(user_id=user_id, window_start=window_start)

            # fetch_and_classify
            batch = self._fetch_and_classify(
                window_start, directory, known_gmail_ids | examined_before, result, events
            )

            # persist_batch
            events.step("persist_batch", f"Saving {len(batch.candidates)} classified messages")
            try:
                engine = ReconciliationEngine(
                    session,
                    user_id,
                    company_match_threshold=self.company_match_threshold,
                    keyword_match_threshold=self.keyword_match_threshold,
                )
                report = engine.reconcile(batch.candidates)
                session.commit()
            except SQLAlchemyError as e:
                session.rollback()
                logger.error("Sync batch commit failed for %s: %s", user_id, e)
                raise StoreCommitError(f"Failed to save sync results: {e}") from e

            result.report = report
            result.created_count = report.created_count
            result.updated_count = report.updated_count
            result.skipped_count += report.skipped_count
            result.rejected_count = report.rejected_count
            result.pending_count = len(batch.pending_ids)

            # advance_checkpoint
            events.step("advance_checkpoint", "Recording sync time")
            examined = (examined_before & batch.listed_ids) | batch.settled_ids(report)
            result.checkpoint_advanced = self._advance_checkpoint(
                session, user_id, self._checkpoint_time(batch), examined
            )

            # recompute_summary
            events.step("recompute_summary", "Building application summary")
            result.summary = ApplicationService(session).get_summary(user_id)

        events.success(
            f"Sync complete: {result.created_count} new, {result.updated_count} updated, "
            f"{result.skipped_count} skipped",
            {
                "created": result.created_count,
                "updated": result.updated_count,
                "skipped": result.skipped_count,
                "rejected": result.rejected_count,
                "filtered": result.filtered_count,
                "pending": result.pending_count,
            },
        )
        return result

    def _fetch_and_classify(
        self,
        window_start: datetime,
        directory: CompanyDirectory,
        seen_gmail_ids: set[str],
        result: SyncResult,
        events: SyncLogger,
    ) -> FetchBatch:
        # The mailbox lists newest first; work oldest first so a capped run
        # leaves only messages newer than everything it handled
        listed = list(reversed(self.mailbox.list_message_ids(window_start)))
        batch = FetchBatch(listed_ids=set(listed))

        unseen = []
        for message_id in listed:
            if message_id in seen_gmail_ids:
                # Handled by an earlier run; the window overlaps on purpose
                result.skipped_count += 1
            else:
                unseen.append(message_id)
        to_fetch = unseen[: self.max_messages]
        batch.pending_ids = unseen[self.max_messages :]

        total = len(to_fetch)
        events.step(
            "fetch_and_classify",
            f"Found {total} messages to examine",
            {"total": total, "listed": len(listed)},
        )
        if batch.pending_ids:
            events.warning(
                f"Message limit reached; {len(batch.pending_ids)} newer messages left for the next sync",
                {"pending": len(batch.pending_ids), "max_messages": self.max_messages},
            )

        for index, message_id in enumerate(to_fetch, start=1):
            events.progress(index, total, f"Examining message {index} of {total}")

            raw = self.mailbox.get_raw_message(message_id)
            if raw is None:
                events.warning(f"Could not fetch message {message_id}")
                continue
            result.fetched_count += 1

            email = self.extractor.extract(raw)
            sent_at = ensure_utc(email.sent_at)
            if sent_at is not None and (batch.newest_examined_at is None or sent_at > batch.newest_examined_at):
                batch.newest_examined_at = sent_at

            company_match = directory.match(email.subject, email.plain_text, email.from_address)
            if company_match is None:
                verdict = self.prefilter.evaluate(email.subject, email.plain_text, email.from_address)
                if not verdict.relevant:
                    result.filtered_count += 1
                    batch.filtered_ids.add(message_id)
                    continue
                events.email(f"Relevant: {email.subject}", {"rule": verdict.rule, "matched": verdict.matched})
            else:
                events.company(
                    f"Known company {company_match.company}: {email.subject}",
                    {"match_type": company_match.match_type, "matched_on": company_match.matched_on},
                )

            judgment = self.classifier.classify(email.subject, email.original_content, email.from_address)
            result.classified_count += 1
            events.ai(
                f"{judgment.company} / {judgment.position}: {judgment.status}",
                {
                    "is_job_application": judgment.is_job_application,
                    "confidence": judgment.confidence,
                    "error": judgment.error,
                },
            )
            batch.candidates.append(Candidate(email=email, judgment=judgment, company_match=company_match))

        return batch

    def _checkpoint_time(self, batch: FetchBatch) -> Optional[datetime]:
        """Where the checkpoint should move to, or None to leave it alone.

        A run cut short by the message limit only vouches for mail up to the
        newest message it examined; the pending ones are all newer.
        """
        now = self.clock()
        if not batch.pending_ids:
            return now
        if batch.newest_examined_at is None:
            return None
        return min(batch.newest_examined_at, now)

    def _advance_checkpoint(
        self,
        session: Session,
        user_id: str,
        timestamp: Optional[datetime],
        examined_gmail_ids: set[str],
    ) -> bool:
        """Record this run's progress. A failure leaves the old checkpoint in place.

        Returns:
            True if the checkpoint time moved
        """
        try:
            checkpoint = session.get(SyncCheckpoint, user_id)
            if checkpoint is None:
                if timestamp is None:
                    return False
                session.add(
                    SyncCheckpoint(
                        user_id=user_id,
                        timestamp=timestamp,
                        examined_gmail_ids=sorted(examined_gmail_ids),
                    )
                )
            else:
                if timestamp is not None:
                    checkpoint.timestamp = timestamp
                checkpoint.examined_gmail_ids = sorted(examined_gmail_ids)
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            logger.warning("Could not advance sync checkpoint for %s: %s", user_id, e)
            return False
        return timestamp is not None
