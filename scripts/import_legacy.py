#!/usr/bin/env python3
"""Import applications from a JSON export of the legacy document store.

The export is either a list of application documents or an object mapping
application id to document. Records that already exist are left alone
unless --overwrite is given.

Usage:
    python scripts/import_legacy.py export.json [--user USER_ID] [--overwrite] [--dry-run]
"""
import argparse
import json
import logging
import sys
from pathlib import Path

# Bootstrap imports
_project_root = Path(__file__).parent.parent
if str(_project_root) not in sys.path:
    sys.path.insert(0, str(_project_root))

from scripts.bootstrap import settings, get_session, init_db
from src.logging_config import setup_logging
from src.persistence.legacy import normalize_legacy_document
from src.persistence.models import Application
from src.tracking.history import derive_application_id

logger = logging.getLogger(__name__)


def load_documents(path: Path) -> list[dict]:
    """Read an export file into a list of documents, keeping ids from mapping keys."""
    with path.open(encoding="utf-8") as f:
        payload = json.load(f)

    if isinstance(payload, dict):
        documents = []
        for key, doc in payload.items():
            if isinstance(doc, dict):
                documents.append({"id": key, **doc})
        return documents
    if isinstance(payload, list):
        return [doc for doc in payload if isinstance(doc, dict)]
    raise ValueError(f"Unsupported export format in {path}: expected a list or an object")


def import_documents(session, documents: list[dict], user_id: str, overwrite: bool = False) -> dict[str, int]:
    """
    Normalize and store legacy documents.

    Args:
        session: Database session
        documents: Raw exported documents
        user_id: Owner for documents that do not carry one
        overwrite: Replace records that already exist

    Returns:
        Counts of imported, replaced and skipped documents
    """
    counts = {"imported": 0, "replaced": 0, "skipped": 0}
    seen: set[tuple[str, str]] = set()

    for doc in documents:
        data = normalize_legacy_document(doc, user_id=user_id)
        if not data.get("id"):
            data["id"] = derive_application_id(data["company"], data["position"])

        key = (data["user_id"], data["id"])
        if key in seen:
            logger.warning("Duplicate document %s in export, keeping the first", data["id"])
            counts["skipped"] += 1
            continue
        seen.add(key)

        existing = session.get(Application, key)
        if existing is not None:
            if not overwrite:
                counts["skipped"] += 1
                continue
            session.delete(existing)
            session.flush()
            counts["replaced"] += 1
        else:
            counts["imported"] += 1

        session.add(Application(**data))

    return counts


def main():
    """Run the legacy import."""
    parser = argparse.ArgumentParser(description="Import legacy application documents.")
    parser.add_argument("export", type=Path, help="Path to the JSON export")
    parser.add_argument("--user", default=settings.sync_user_id, help="Owner for documents without a user id")
    parser.add_argument("--overwrite", action="store_true", help="Replace existing records")
    parser.add_argument("--dry-run", action="store_true", help="Preview without writing to the database")
    args = parser.parse_args()

    setup_logging()
    init_db()

    try:
        documents = load_documents(args.export)
    except (OSError, ValueError) as e:
        logger.error("Could not read %s: %s", args.export, e)
        return 1

    logger.info("Loaded %d documents from %s", len(documents), args.export)

    with get_session() as session:
        counts = import_documents(session, documents, args.user, overwrite=args.overwrite)
        if args.dry_run:
            session.rollback()
            logger.info("Dry run, nothing written")

    logger.info(
        "Imported %d, replaced %d, skipped %d existing",
        counts["imported"],
        counts["replaced"],
        counts["skipped"],
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
