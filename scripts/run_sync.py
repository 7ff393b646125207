#!/usr/bin/env python3
"""Run one mailbox sync and print the result.

Usage:
    python scripts/run_sync.py [--user USER_ID] [--verbose]

Exit codes: 0 on success, 1 when Gmail must be re-authorized, a required
setting is missing or the sync failed, 2 when another sync for the same user
is already running.
"""
import argparse
import logging
import sys
from pathlib import Path

# Bootstrap imports
_project_root = Path(__file__).parent.parent
if str(_project_root) not in sys.path:
    sys.path.insert(0, str(_project_root))

from scripts.bootstrap import settings, init_db
from src.exceptions import AuthorizationError, JobTrackerError, SyncInProgressError
from src.logging_config import setup_logging
from src.main import build_orchestrator
from src.sync.events import CallbackEventSink, SyncEvent

logger = logging.getLogger(__name__)


def print_event(event: SyncEvent) -> None:
    if event.level in ("step", "success", "warning", "error"):
        print(f"[{event.level}] {event.message}")


def main():
    """Run a single sync for one user."""
    parser = argparse.ArgumentParser(description="Sync job-application emails from Gmail.")
    parser.add_argument("--user", default=settings.sync_user_id, help="User id to sync")
    parser.add_argument("--verbose", action="store_true", help="Print every step")
    args = parser.parse_args()

    setup_logging(level=settings.log_level, log_file=settings.log_file)
    init_db()

    sink = CallbackEventSink(print_event) if args.verbose else None
    try:
        orchestrator = build_orchestrator()
        result = orchestrator.sync(args.user, sink)
    except AuthorizationError as e:
        logger.error("%s", e)
        print("Gmail access needs to be re-authorized. Run: python scripts/setup_gmail.py")
        return 1
    except SyncInProgressError as e:
        logger.warning("%s", e)
        return 2
    except JobTrackerError as e:
        logger.error("Sync failed [%s]: %s", e.code, e)
        return 1

    print()
    print(f"Sync window from: {result.window_start:%Y-%m-%d %H:%M} UTC")
    print(f"Created:  {result.created_count}")
    print(f"Updated:  {result.updated_count}")
    print(f"Skipped:  {result.skipped_count}")
    print(f"Rejected: {result.rejected_count}")
    print(f"Filtered: {result.filtered_count}")
    if result.pending_count:
        print(f"Pending:  {result.pending_count} (left for the next sync)")
    if result.summary:
        print()
        print(f"Tracking {result.summary.total_applications} applications")
        for status, count in sorted(result.summary.status_breakdown.items()):
            print(f"  {status:<20} {count}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
