"""Gmail API client."""
import logging
from datetime import datetime
from typing import Optional, Protocol, runtime_checkable

from google.auth.exceptions import RefreshError
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from src.exceptions import AuthorizationError
from .auth import GmailAuth

logger = logging.getLogger(__name__)

# 403 reasons that mean "slow down", not "access denied"
RATE_LIMIT_REASONS = ("ratelimitexceeded", "userratelimitexceeded", "quotaexceeded")

# Largest page users.messages.list accepts
LIST_PAGE_SIZE = 500


@runtime_checkable
class MailboxSource(Protocol):
    """What the sync pipeline needs from a mailbox.

    Implementations raise AuthorizationError when access is revoked or
    the granted scopes are insufficient.
    """

    def list_message_ids(self, after_date: datetime, max_results: Optional[int] = None) -> list[str]:
        """Return ids of messages received on or after ``after_date``, newest first."""
        ...

    def get_raw_message(self, message_id: str) -> Optional[dict]:
        """Return the full raw payload for a message, or None if unavailable."""
        ...


def is_authorization_error(error: HttpError) -> bool:
    """Whether an API error means the credential cannot read the mailbox."""
    status = getattr(error.resp, "status", None)
    if status == 401:
        return True
    if status == 403:
        content = error.content
        if isinstance(content, bytes):
            content = content.decode("utf-8", errors="replace")
        detail = f"{error} {content}".lower()
        return not any(reason in detail for reason in RATE_LIMIT_REASONS)
    return False


class GmailClient:
    """Gmail API client for fetching raw messages."""

    def __init__(self, auth: GmailAuth, base_query: str = ""):
        """
        Initialize Gmail client.

        Args:
            auth: GmailAuth instance for authentication
            base_query: Gmail search terms added to every window query
        """
        self.auth = auth
        self.base_query = base_query
        self._service = None

    def _get_service(self):
        """Get or create Gmail API service."""
        if self._service is None:
            credentials = self.auth.get_credentials()
            if not credentials:
                raise AuthorizationError("Gmail authentication required")
            self._service = build("gmail", "v1", credentials=credentials, cache_discovery=False)
        return self._service

    def _execute(self, request):
        """Execute an API request, translating credential failures."""
        try:
            return request.execute()
        except HttpError as e:
            if is_authorization_error(e):
                logger.error("Gmail authorization failed: %s", e)
                raise AuthorizationError() from e
            raise
        except RefreshError as e:
            logger.error("Gmail token refresh failed: %s", e)
            raise AuthorizationError() from e

    def list_message_ids(
        self,
        after_date: datetime,
        max_results: Optional[int] = None,
    ) -> list[str]:
        """
        List message ids in the window starting at ``after_date``.

        Args:
            after_date: Only return messages on or after this date
            max_results: Maximum number of message IDs to return (all when None)

        Returns:
            List of message IDs, newest first as Gmail returns them
        """
        service = self._get_service()

        query = f"{self.base_query} after:{after_date.strftime('%Y/%m/%d')}".strip()
        message_ids: list[str] = []
        page_token = None

        while max_results is None or len(message_ids) < max_results:
            page_size = LIST_PAGE_SIZE if max_results is None else min(LIST_PAGE_SIZE, max_results - len(message_ids))
            result = self._execute(
                service.users()
                .messages()
                .list(
                    userId="me",
                    q=query,
                    maxResults=page_size,
                    pageToken=page_token,
                )
            )

            messages = result.get("messages", [])
            message_ids.extend(msg["id"] for msg in messages)

            page_token = result.get("nextPageToken")
            if not page_token:
                break

        logger.debug("Gmail query %r matched %d messages", query, len(message_ids))
        return message_ids if max_results is None else message_ids[:max_results]

    def get_raw_message(self, message_id: str) -> Optional[dict]:
        """
        Get the full raw payload of a message.

        Args:
            message_id: Gmail message ID

        Returns:
            Raw API message dict, or None if it could not be fetched
        """
        service = self._get_service()

        try:
            return self._execute(
                service.users().messages().get(userId="me", id=message_id, format="full")
            )
        except HttpError as e:
            logger.warning("Gmail get message %s failed: %s", message_id, e)
            return None
