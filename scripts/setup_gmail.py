#!/usr/bin/env python3
"""Interactive Gmail OAuth setup (read-only mailbox access).

Usage:
    python scripts/setup_gmail.py [--check | --reset]
"""
import argparse
import logging
import sys
from datetime import timedelta
from pathlib import Path

# Bootstrap imports
_project_root = Path(__file__).parent.parent
if str(_project_root) not in sys.path:
    sys.path.insert(0, str(_project_root))

from scripts.bootstrap import settings
from src.exceptions import AuthorizationError
from src.gmail.auth import GmailAuth
from src.gmail.client import GmailClient
from src.logging_config import setup_logging
from src.persistence.models import utcnow

logger = logging.getLogger(__name__)

CREDENTIALS_HELP = """\
To set up Gmail access:
1. Go to https://console.cloud.google.com
2. Create a new project (or use existing)
3. Enable the Gmail API
4. Go to Credentials > Create Credentials > OAuth 2.0 Client ID
5. Choose 'Desktop app' as application type
6. Download the JSON and save it as: {path}"""


def verify_access(auth: GmailAuth) -> bool:
    """List one recent message to prove the token can read the mailbox."""
    try:
        ids = GmailClient(auth).list_message_ids(utcnow() - timedelta(days=7), max_results=1)
    except AuthorizationError as e:
        logger.error("Gmail rejected the token: %s", e)
        return False
    logger.info("Mailbox readable (%d recent message found)", len(ids))
    return True


def main():
    """Run Gmail OAuth setup."""
    parser = argparse.ArgumentParser(description="Authorize JobCAT to read your Gmail inbox.")
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--check", action="store_true", help="Only verify the existing token")
    mode.add_argument("--reset", action="store_true", help="Discard the stored token and authorize again")
    args = parser.parse_args()

    setup_logging()

    auth = GmailAuth(
        credentials_file=settings.gmail_credentials_file,
        token_file=settings.gmail_token_file,
    )

    if args.check:
        if not auth.has_token:
            logger.error("No token at %s. Run this script without --check first.", auth.token_file)
            return 1
        return 0 if auth.is_authenticated() and verify_access(auth) else 1

    if args.reset:
        auth.clear()
    elif auth.is_authenticated():
        logger.info("Already authenticated. Gmail is ready to use.")
        return 0 if verify_access(auth) else 1

    if not auth.has_client_secrets:
        logger.error("%s not found!", auth.credentials_file)
        print(CREDENTIALS_HELP.format(path=auth.credentials_file.absolute()))
        return 1

    print("Starting OAuth flow. A browser window will open for authentication.")
    if not auth.authorize():
        logger.error("Authentication failed! Check your credentials and try again.")
        return 1

    logger.info("Token saved to: %s", auth.token_file)
    if not verify_access(auth):
        return 1
    print("Gmail access is ready. Run scripts/run_sync.py to sync job-application emails.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
