"""Gmail OAuth2 credentials for read-only mailbox access.

Sync runs are headless: ``get_credentials`` only loads and refreshes a
stored token and never opens a browser. The consent flow runs explicitly
through ``authorize`` (scripts/setup_gmail.py).
"""
import logging
from pathlib import Path
from typing import Optional

from google.auth.exceptions import RefreshError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow

logger = logging.getLogger(__name__)

SCOPES = ["https://www.googleapis.com/auth/gmail.readonly"]


class GmailAuth:
    """Token store and consent flow for one Gmail account."""

    def __init__(
        self,
        credentials_file: Optional[str] = "credentials.json",
        token_file: Optional[str] = "token.json",
    ):
        """
        Args:
            credentials_file: OAuth client secrets downloaded from Google Cloud
            token_file: Where the authorized user token is kept
        """
        self.credentials_file = Path(credentials_file) if credentials_file else None
        self.token_file = Path(token_file) if token_file else None
        self._credentials: Optional[Credentials] = None

    @classmethod
    def from_access_token(cls, access_token: str) -> "GmailAuth":
        """Wrap an access token obtained by a web login.

        The token is used as-is; once it expires the mailbox client raises
        AuthorizationError and the user has to sign in again.
        """
        auth = cls(credentials_file=None, token_file=None)
        auth._credentials = Credentials(token=access_token)
        return auth

    @property
    def has_client_secrets(self) -> bool:
        return self.credentials_file is not None and self.credentials_file.exists()

    @property
    def has_token(self) -> bool:
        return self.token_file is not None and self.token_file.exists()

    def get_credentials(self) -> Optional[Credentials]:
        """
        Stored credentials, refreshed if they have expired.

        Returns:
            Valid Credentials, or None when the user must run the consent flow
        """
        if self._credentials is None and self.has_token:
            self._credentials = Credentials.from_authorized_user_file(str(self.token_file), SCOPES)

        credentials = self._credentials
        if credentials is None:
            return None
        if credentials.valid:
            return credentials
        if not (credentials.expired and credentials.refresh_token):
            logger.warning("Stored Gmail token is invalid and cannot be refreshed")
            return None

        try:
            credentials.refresh(Request())
        except RefreshError as e:
            logger.warning("Token refresh failed: %s", e)
            self._credentials = None
            return None

        self._store(credentials)
        return credentials

    def authorize(self) -> Optional[Credentials]:
        """Run the browser consent flow and store the resulting token."""
        if not self.has_client_secrets:
            logger.error("Credentials file not found: %s", self.credentials_file)
            return None

        try:
            flow = InstalledAppFlow.from_client_secrets_file(str(self.credentials_file), SCOPES)
            credentials = flow.run_local_server(port=0)
        except Exception as e:
            logger.error("OAuth flow failed: %s", e)
            return None

        self._credentials = credentials
        self._store(credentials)
        return credentials

    def clear(self) -> None:
        """Forget the stored token so the next setup asks for consent again."""
        self._credentials = None
        if self.has_token:
            self.token_file.unlink()
            logger.info("Removed Gmail token %s", self.token_file)

    def is_authenticated(self) -> bool:
        return self.get_credentials() is not None

    def _store(self, credentials: Credentials) -> None:
        if self.token_file is None:
            return
        self.token_file.write_text(credentials.to_json(), encoding="utf-8")
