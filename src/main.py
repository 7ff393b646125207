"""Main entry point for the JobCAT sync scheduler."""
import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from config.settings import settings
from src.classification.backend import OpenAICompletionBackend
from src.classification.classifier import AIClassifier
from src.exceptions import AuthorizationError, ConfigurationError, JobTrackerError, SyncInProgressError
from src.gmail.auth import GmailAuth
from src.gmail.client import GmailClient, MailboxSource
from src.logging_config import setup_logging
from src.persistence.database import SessionLocal, init_db
from src.sync.events import EventSink
from src.sync.orchestrator import SyncOrchestrator, SyncResult

logger = logging.getLogger(__name__)


def build_orchestrator(
    mailbox: Optional[MailboxSource] = None,
    classifier: Optional[AIClassifier] = None,
    session_factory=None,
) -> SyncOrchestrator:
    """Wire a sync orchestrator from settings, Gmail and OpenAI.

    Raises:
        ConfigurationError: No classifier was given and OPENAI_API_KEY is not set
    """
    if mailbox is None:
        mailbox = GmailClient(
            GmailAuth(
                credentials_file=settings.gmail_credentials_file,
                token_file=settings.gmail_token_file,
            )
        )
    if classifier is None:
        if not settings.openai_api_key:
            raise ConfigurationError("OPENAI_API_KEY is not set")
        classifier = AIClassifier(
            OpenAICompletionBackend(
                api_key=settings.openai_api_key,
                model=settings.openai_model,
                timeout=settings.ai_timeout_seconds,
                max_tokens=settings.ai_max_tokens,
            ),
            body_token_budget=settings.ai_body_token_budget,
        )

    return SyncOrchestrator(
        session_factory=session_factory or SessionLocal,
        mailbox=mailbox,
        classifier=classifier,
        default_lookback_days=settings.sync_default_lookback_days,
        max_messages=settings.sync_max_messages,
        company_match_threshold=settings.company_match_threshold,
        keyword_match_threshold=settings.keyword_match_threshold,
    )


async def run_email_sync(
    user_id: Optional[str] = None,
    sink: Optional[EventSink] = None,
    orchestrator: Optional[SyncOrchestrator] = None,
) -> Optional[SyncResult]:
    """Run one sync without blocking the event loop.

    Args:
        user_id: User to sync (defaults to settings.sync_user_id)
        sink: Optional receiver for live progress events
        orchestrator: Preconfigured orchestrator (built from settings if omitted)

    Returns:
        SyncResult, or None when the run was skipped or failed
    """
    user_id = user_id or settings.sync_user_id
    logger.info("Starting email sync for %s", user_id)

    try:
        orchestrator = orchestrator or build_orchestrator()
        result = await asyncio.to_thread(orchestrator.sync, user_id, sink)
    except SyncInProgressError:
        logger.info("Sync for %s already running, skipping", user_id)
        return None
    except AuthorizationError as e:
        logger.error("Gmail authorization failed: %s. Run scripts/setup_gmail.py.", e)
        return None
    except JobTrackerError as e:
        logger.error("Email sync failed [%s]: %s", e.code, e)
        return None

    logger.info(
        "Email sync done: %d created, %d updated, %d skipped",
        result.created_count,
        result.updated_count,
        result.skipped_count,
    )
    return result


async def async_main():
    """Async main entry point."""
    setup_logging(level=settings.log_level, log_file=settings.log_file)
    logger.info("JobCAT starting...")
    logger.info("Database: %s", settings.database_url)

    init_db()
    logger.info("Database initialized")

    try:
        orchestrator = build_orchestrator()
    except ConfigurationError as e:
        logger.error("Cannot start: %s", e)
        return

    scheduler = AsyncIOScheduler()
    scheduler.add_job(
        run_email_sync,
        IntervalTrigger(minutes=settings.email_sync_interval_minutes),
        kwargs={"orchestrator": orchestrator},
        id="email_sync",
        name="Email Sync",
        max_instances=1,
    )

    scheduler.start()
    logger.info("Scheduler started: email sync every %d minutes", settings.email_sync_interval_minutes)

    try:
        await run_email_sync(orchestrator=orchestrator)

        logger.info("JobCAT running. Press Ctrl+C to stop.")

        # Keep running forever
        while True:
            await asyncio.sleep(60)

    except asyncio.CancelledError:
        logger.info("Shutting down...")
    finally:
        scheduler.shutdown()


def main():
    """Main entry point."""
    try:
        asyncio.run(async_main())
    except KeyboardInterrupt:
        logger.info("Shutdown complete.")


if __name__ == "__main__":
    main()
