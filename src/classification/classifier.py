"""AI classification of job-application emails."""
import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Optional

from src.exceptions import ClassificationError
from src.persistence.models import Application
from .backend import CompletionBackend
from .response_parser import recover_json, truncate_text

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are an assistant that analyzes emails about job applications the user has "
    "already submitted. Always respond with valid JSON only, no markdown formatting "
    "or code blocks. Keep responses concise but complete."
)

USER_PROMPT_TEMPLATE = """Analyze this email and extract the following information in JSON format.

Email Subject: {subject}
From: {from_address}
Email Body: {body}

Provide:
1. isJobApplication: boolean. True ONLY if the email reports on an application the
   recipient has actually submitted (confirmation, review update, interview, assessment,
   offer, rejection). False for job postings, job alerts, recommendations, newsletters,
   recruiting marketing and anything else.
2. company: string (the hiring company, not the applicant-tracking platform)
3. position: string (job title)
4. status: one of {statuses}
5. sentiment: one of {sentiments}
6. urgency: one of {urgencies}
7. nextAction: string (what the recipient should do next)
8. importantDates: array of date strings mentioned
9. confidence: number between 0 and 1 (how confident you are in this analysis)
10. keyDetails: string (important details from the email)

Respond with only valid JSON."""


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "yes", "1")
    return bool(value)


def _as_confidence(value: Any) -> float:
    try:
        confidence = float(value)
    except (TypeError, ValueError):
        return 0.0
    if confidence != confidence:  # NaN
        return 0.0
    return min(1.0, max(0.0, confidence))


def _as_choice(value: Any, allowed: tuple, default: str) -> str:
    if isinstance(value, str):
        candidate = value.strip().lower().replace(" ", "_")
        if candidate in allowed:
            return candidate
    return default


def _as_text(value: Any, default: str = "") -> str:
    if value is None:
        return default
    text = str(value).strip()
    return text or default


@dataclass
class Judgment:
    """Validated structured judgment about one email."""

    is_job_application: bool
    company: str = "Unknown"
    position: str = "Unknown"
    status: str = "other"
    sentiment: str = "neutral"
    urgency: str = "low"
    next_action: str = ""
    important_dates: list[str] = field(default_factory=list)
    confidence: float = 0.0
    key_details: str = ""
    error: Optional[str] = None  # Set when the judgment is a failure fallback

    @classmethod
    def safe_default(cls, reason: str) -> "Judgment":
        """Non-job judgment returned whenever classification fails."""
        return cls(
            is_job_application=False,
            next_action="Review manually",
            confidence=0.0,
            key_details=reason,
            error=reason,
        )

    @classmethod
    def from_response(cls, data: dict) -> "Judgment":
        """Validate a parsed model response, coercing bad values to defaults."""
        dates = data.get("importantDates") or []
        if isinstance(dates, str):
            dates = [dates]
        elif not isinstance(dates, list):
            dates = []

        return cls(
            is_job_application=_as_bool(data.get("isJobApplication", False)),
            company=_as_text(data.get("company"), "Unknown"),
            position=_as_text(data.get("position"), "Unknown"),
            status=_as_choice(data.get("status"), Application.STATUSES, "other"),
            sentiment=_as_choice(data.get("sentiment"), Application.SENTIMENTS, "neutral"),
            urgency=_as_choice(data.get("urgency"), Application.URGENCIES, "low"),
            next_action=_as_text(data.get("nextAction")),
            important_dates=[str(d) for d in dates if d not in (None, "")],
            confidence=_as_confidence(data.get("confidence")),
            key_details=_as_text(data.get("keyDetails")),
        )

    @property
    def failed(self) -> bool:
        return self.error is not None

    def to_dict(self) -> dict:
        return asdict(self)


class AIClassifier:
    """Adapter around a completion backend that always yields a Judgment.

    Network errors, model errors and unparseable output are logged and
    turned into ``Judgment.safe_default`` so one bad message never aborts
    a sync.
    """

    def __init__(self, backend: CompletionBackend, body_token_budget: int = 6000):
        """
        Initialize the classifier.

        Args:
            backend: Completion backend to call
            body_token_budget: Approximate token budget for the email body
        """
        self.backend = backend
        self.body_token_budget = body_token_budget

    def build_prompt(self, subject: str, body: str, from_address: str) -> str:
        return USER_PROMPT_TEMPLATE.format(
            subject=subject or "",
            from_address=from_address or "",
            body=truncate_text(body or "", self.body_token_budget),
            statuses=", ".join(f'"{s}"' for s in Application.STATUSES),
            sentiments=", ".join(f'"{s}"' for s in Application.SENTIMENTS),
            urgencies=", ".join(f'"{s}"' for s in Application.URGENCIES),
        )

    def classify(self, subject: str, body: str, from_address: str) -> Judgment:
        """
        Classify one email.

        Args:
            subject: Email subject
            body: Full body text
            from_address: From header

        Returns:
            Validated Judgment, or a safe default on any failure
        """
        prompt = self.build_prompt(subject, body, from_address)

        try:
            response = self.backend.complete(SYSTEM_PROMPT, prompt)
        except ClassificationError as e:
            logger.warning("AI classification failed for %r: %s", subject, e)
            return Judgment.safe_default("AI analysis failed")
        except Exception as e:
            logger.warning("Unexpected classifier error for %r: %s", subject, e, exc_info=True)
            return Judgment.safe_default("AI analysis failed")

        data = recover_json(response)
        if data is None:
            return Judgment.safe_default("Failed to parse AI response")

        judgment = Judgment.from_response(data)
        logger.debug(
            "Classified %r: job=%s company=%s status=%s confidence=%.2f",
            subject,
            judgment.is_job_application,
            judgment.company,
            judgment.status,
            judgment.confidence,
        )
        return judgment
