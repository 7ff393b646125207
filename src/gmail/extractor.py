"""Normalize raw Gmail API payloads into readable email content."""
import base64
import binascii
import html
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from bs4 import BeautifulSoup

from src.exceptions import ExtractionError
from src.persistence.models import parse_datetime, utcnow

logger = logging.getLogger(__name__)

PREVIEW_LENGTH = 200


@dataclass
class ExtractedEmail:
    """Readable content of one mailbox message."""

    gmail_id: str
    thread_id: str
    subject: str
    from_address: str
    date_header: str
    sent_at: datetime
    plain_text: str
    html_content: str
    original_content: str  # Plain text if the message had any, else the HTML
    preview: str = ""


def html_to_text(markup: str) -> str:
    """Strip tags and decode entities, collapsing whitespace."""
    if not markup:
        return ""
    soup = BeautifulSoup(markup, "html.parser")
    for tag in soup(["script", "style", "head"]):
        tag.decompose()
    text = html.unescape(soup.get_text(separator=" ", strip=True))
    return re.sub(r"\s+", " ", text).strip()


def decode_body_data(data: str) -> str:
    """Decode a base64url body, tolerating missing padding."""
    try:
        padded = data + "=" * (-len(data) % 4)
        return base64.urlsafe_b64decode(padded).decode("utf-8", errors="replace")
    except (binascii.Error, ValueError) as e:
        raise ExtractionError(f"Undecodable body part: {e}") from e


class ContentExtractor:
    """Turn a raw Gmail message into an ExtractedEmail.

    Extraction is best effort: missing headers become empty strings and
    undecodable parts are skipped, so one malformed message never stops
    a sync.
    """

    def extract(self, raw: dict) -> ExtractedEmail:
        payload = raw.get("payload") or {}
        headers = self._headers(payload)

        plain_text, html_content = "", ""
        try:
            plain_text, html_content = self._extract_body(payload)
        except ExtractionError as e:
            logger.warning("Message %s: %s", raw.get("id", "?"), e)

        original_content = plain_text or html_content
        if not plain_text and html_content:
            plain_text = html_to_text(html_content)

        date_header = headers.get("date", "")
        sent_at = parse_datetime(date_header) or self._internal_date(raw) or utcnow()

        return ExtractedEmail(
            gmail_id=raw.get("id", ""),
            thread_id=raw.get("threadId", ""),
            subject=headers.get("subject", ""),
            from_address=headers.get("from", ""),
            date_header=date_header,
            sent_at=sent_at,
            plain_text=plain_text,
            html_content=html_content,
            original_content=original_content,
            preview=re.sub(r"\s+", " ", plain_text).strip()[:PREVIEW_LENGTH],
        )

    @staticmethod
    def _headers(payload: dict) -> dict[str, str]:
        headers = {}
        for header in payload.get("headers") or []:
            name = (header.get("name") or "").lower()
            if name and name not in headers:
                headers[name] = header.get("value") or ""
        return headers

    @staticmethod
    def _internal_date(raw: dict) -> Optional[datetime]:
        try:
            return datetime.fromtimestamp(int(raw["internalDate"]) / 1000, tz=timezone.utc)
        except (KeyError, TypeError, ValueError, OverflowError):
            return None

    def _extract_body(self, payload: dict) -> tuple[str, str]:
        """Extract the first text/plain and text/html bodies from a payload tree."""
        body_text = ""
        body_html = ""
        errors = []

        def extract_parts(part):
            nonlocal body_text, body_html

            mime_type = part.get("mimeType", "")
            data = (part.get("body") or {}).get("data")

            if data and mime_type in ("text/plain", "text/html"):
                try:
                    decoded = decode_body_data(data)
                except ExtractionError as e:
                    errors.append(e)
                else:
                    if mime_type == "text/plain" and not body_text:
                        body_text = decoded
                    elif mime_type == "text/html" and not body_html:
                        body_html = decoded

            for child in part.get("parts") or []:
                extract_parts(child)

        extract_parts(payload)

        if errors and not (body_text or body_html):
            raise errors[0]
        return body_text.strip(), body_html
