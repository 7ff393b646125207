"""Pytest fixtures for JobCAT tests."""
import base64
import json
import sys
from datetime import datetime, timezone
from email.utils import format_datetime
from pathlib import Path
from typing import Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from src.classification.classifier import AIClassifier
from src.exceptions import AuthorizationError, ClassificationError
from src.persistence.models import Application, Base
from src.tracking.history import derive_application_id, history_entry


# =============================================================================
# DATABASE FIXTURES
# =============================================================================


@pytest.fixture(scope="function")
def db_engine():
    """Fresh in-memory database shared by every session of one test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    """Session factory bound to the test database (what the orchestrator uses)."""
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture
def test_db(session_factory):
    """Create a fresh database session for each test."""
    session = session_factory()
    yield session
    session.close()


# =============================================================================
# APPLICATION FIXTURES
# =============================================================================


@pytest.fixture
def application_factory(test_db):
    """
    Factory fixture to create stored applications.

    Usage:
        app = application_factory("Acme", "Engineer", status="received")
    """

    def _create(
        company: str = "Acme",
        position: str = "Engineer",
        user_id: str = "user-1",
        date: Optional[datetime] = None,
        gmail_id: Optional[str] = None,
        **overrides,
    ) -> Application:
        date = date or datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)
        gmail_id = gmail_id or f"seed-{derive_application_id(company, position)}"
        status = overrides.pop("status", "received")
        sentiment = overrides.pop("sentiment", "neutral")
        fields = dict(
            user_id=user_id,
            id=derive_application_id(company, position),
            gmail_id=gmail_id,
            last_gmail_id=gmail_id,
            company=company,
            position=position,
            status=status,
            sentiment=sentiment,
            urgency="low",
            next_action="Wait for reply",
            confidence=0.9,
            subject=f"Your application to {company}",
            from_address=f"{company} Careers <careers@{company.lower().replace(' ', '')}.com>",
            date=date,
            body="Thanks for applying.",
            preview="Thanks for applying.",
            scraped_at=date,
            last_email_date=date,
            last_email_subject=f"Your application to {company}",
            email_history=[
                history_entry(gmail_id, f"Your application to {company}", date, status, sentiment)
            ],
        )
        fields.update(overrides)
        application = Application(**fields)
        test_db.add(application)
        test_db.commit()
        return application

    return _create


# =============================================================================
# MAILBOX FIXTURES
# =============================================================================


def _b64(text: str) -> str:
    return base64.urlsafe_b64encode(text.encode("utf-8")).decode("ascii").rstrip("=")


@pytest.fixture
def make_raw_message():
    """
    Factory for raw Gmail API message payloads.

    Usage:
        raw = make_raw_message("m1", subject="Interview", body="See you Tuesday")
        raw = make_raw_message("m2", html="<p>Hi</p>", body=None)
    """

    def _make(
        message_id: str,
        subject: Optional[str] = "Thank you for applying",
        sender: Optional[str] = "Acme Careers <careers@acme.com>",
        date: Optional[datetime] = None,
        body: Optional[str] = "Thank you for applying to Acme.",
        html: Optional[str] = None,
    ) -> dict:
        date = date or datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)
        headers = []
        if subject is not None:
            headers.append({"name": "Subject", "value": subject})
        if sender is not None:
            headers.append({"name": "From", "value": sender})
        headers.append({"name": "Date", "value": format_datetime(date)})

        parts = []
        if body is not None:
            parts.append({"mimeType": "text/plain", "body": {"data": _b64(body)}})
        if html is not None:
            parts.append({"mimeType": "text/html", "body": {"data": _b64(html)}})

        return {
            "id": message_id,
            "threadId": f"thread-{message_id}",
            "internalDate": str(int(date.timestamp() * 1000)),
            "payload": {
                "mimeType": "multipart/alternative",
                "headers": headers,
                "parts": parts,
            },
        }

    return _make


class FakeMailbox:
    """In-memory MailboxSource."""

    def __init__(self, messages: Optional[list[dict]] = None):
        self.messages = {m["id"]: m for m in messages or []}
        self.list_calls: list[datetime] = []
        self.fetched: list[str] = []
        self.auth_error = False

    def add(self, *messages: dict) -> None:
        for message in messages:
            self.messages[message["id"]] = message

    def list_message_ids(self, after_date: datetime, max_results: Optional[int] = None) -> list[str]:
        self.list_calls.append(after_date)
        if self.auth_error:
            raise AuthorizationError()
        # Newest first, like Gmail
        ids = sorted(
            self.messages,
            key=lambda i: int((self.messages[i] or {}).get("internalDate", 0)),
            reverse=True,
        )
        return ids if max_results is None else ids[:max_results]

    def get_raw_message(self, message_id: str) -> Optional[dict]:
        self.fetched.append(message_id)
        return self.messages.get(message_id)


@pytest.fixture
def fake_mailbox():
    """Empty fake mailbox; add raw messages with ``fake_mailbox.add(...)``."""
    return FakeMailbox()


# =============================================================================
# AI FIXTURES
# =============================================================================


def judgment_json(**overrides) -> str:
    """Model-style JSON response for a job-application email."""
    data = {
        "isJobApplication": True,
        "company": "Acme",
        "position": "Engineer",
        "status": "received",
        "sentiment": "neutral",
        "urgency": "low",
        "nextAction": "Wait for reply",
        "importantDates": [],
        "confidence": 0.9,
        "keyDetails": "Application received",
    }
    data.update(overrides)
    return json.dumps(data)


class ScriptedBackend:
    """Completion backend answering from a script keyed by subject substring."""

    def __init__(self, default: Optional[str] = None):
        self.default = default if default is not None else judgment_json(isJobApplication=False, confidence=0.1)
        self.script: list[tuple[str, object]] = []
        self.prompts: list[str] = []

    def on(self, subject_contains: str, response) -> "ScriptedBackend":
        """Answer prompts mentioning ``subject_contains`` with a string or by raising an exception."""
        self.script.append((subject_contains, response))
        return self

    def complete(self, system_prompt: str, user_prompt: str) -> str:
        self.prompts.append(user_prompt)
        subject_line = next(
            (line for line in user_prompt.splitlines() if line.startswith("Email Subject:")), ""
        )
        for needle, response in self.script:
            if needle in subject_line:
                if isinstance(response, Exception):
                    raise response
                return response
        return self.default


@pytest.fixture
def judgment():
    """Builder for model JSON responses: ``judgment(status="offer")``."""
    return judgment_json


@pytest.fixture
def scripted_backend():
    return ScriptedBackend()


@pytest.fixture
def classifier(scripted_backend):
    return AIClassifier(scripted_backend, body_token_budget=6000)


@pytest.fixture
def failing_backend():
    """Backend whose every call fails like an API outage."""

    class _Failing:
        def complete(self, system_prompt: str, user_prompt: str) -> str:
            raise ClassificationError("OpenAI request failed: connection reset")

    return _Failing()
