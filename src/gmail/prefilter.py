"""Cheap relevance gate run before paying for AI classification."""
import logging
import re
from dataclasses import dataclass
from email.utils import parseaddr
from typing import Optional

logger = logging.getLogger(__name__)


def sender_address(from_header: str) -> str:
    """Bare lowercase address from a From header ("Acme <jobs@acme.com>")."""
    _, address = parseaddr(from_header or "")
    if not address and "@" in (from_header or ""):
        address = from_header.strip().strip("<>")
    return address.lower()


def sender_domain(from_header: str) -> str:
    """Lowercase domain of the sender, or "" when there is none."""
    address = sender_address(from_header)
    return address.rsplit("@", 1)[1] if "@" in address else ""


@dataclass
class FilterResult:
    """Outcome of the pre-filter for one message."""

    relevant: bool
    rule: Optional[str] = None  # strict_phrase, ats_domain, careers_domain, status_keyword
    matched: Optional[str] = None


class RelevancePreFilter:
    """Decide whether a message is worth sending to the AI classifier.

    Rules are tried in order of precision; the first hit wins:

    1. strict application-process phrases
    2. sender on an applicant-tracking-system domain
    3. sender on a careers./jobs. style company domain
    4. status, offer and rejection keywords
    """

    STRICT_PHRASES = [
        "thank you for applying",
        "thanks for applying",
        "thank you for your application",
        "thanks for your application",
        "application received",
        "we received your application",
        "we have received your application",
        "your application has been",
        "your application was",
        "your application to",
        "your application for",
        "application submitted",
        "application status",
        "application under review",
        "interview scheduled",
        "interview invitation",
        "invitation to interview",
        "schedule an interview",
        "phone screen",
        "job offer",
        "offer letter",
        "regret to inform",
        "not moving forward",
        "move forward with other candidates",
        "after careful consideration",
        "position has been filled",
    ]

    # Vendor domains; senders on the domain or any subdomain match
    ATS_DOMAINS = {
        "greenhouse.io",
        "greenhouse-mail.io",
        "lever.co",
        "workday.com",
        "myworkday.com",
        "myworkdayjobs.com",
        "icims.com",
        "jobvite.com",
        "smartrecruiters.com",
        "ashbyhq.com",
        "rippling.com",
        "workablemail.com",
        "workable.com",
        "candidatecare.io",
        "candidatecare.com",
        "applytojob.com",
        "breezy.hr",
        "recruitee.com",
        "bamboohr.com",
        "jazzhr.com",
        "jazz.co",
        "paylocity.com",
        "ultipro.com",
        "successfactors.com",
        "taleo.net",
        "teamtailor.com",
        "personio.com",
        "dover.io",
        "gem.com",
        "hirebridgemail.com",
        "eightfold.ai",
        "phenom.com",
    }

    # careers.acme.com, jobs.acme.com, talent.acme.com ...
    CAREERS_DOMAIN_PATTERN = re.compile(
        r"^(?:[\w-]+\.)*(?:careers?|jobs?|recruit(?:ing|ment)?|talent|hiring|hr)\.[\w-]+\.[a-z.]+$"
    )
    # acmecareers.com, acme-jobs.io ...
    CAREERS_NAME_PATTERN = re.compile(r"(?:careers?|jobs|recruit(?:ing|ment)?|talent|hiring)\.[a-z.]+$")

    STATUS_KEYWORDS = [
        "interview",
        "application",
        "applied",
        "applicant",
        "candidate",
        "candidacy",
        "recruiter",
        "recruiting",
        "hiring manager",
        "next steps",
        "assessment",
        "coding challenge",
        "take-home",
        "onsite",
        "offer",
        "rejected",
        "unfortunately",
        "not been selected",
        "other candidates",
        "withdrawn",
    ]

    def __init__(
        self,
        strict_phrases: Optional[list[str]] = None,
        ats_domains: Optional[set[str]] = None,
        status_keywords: Optional[list[str]] = None,
    ):
        self.strict_phrases = [p.lower() for p in (strict_phrases or self.STRICT_PHRASES)]
        self.ats_domains = {d.lower() for d in (ats_domains or self.ATS_DOMAINS)}
        self.status_keywords = [k.lower() for k in (status_keywords or self.STATUS_KEYWORDS)]
        self._keyword_patterns = [
            (kw, re.compile(r"\b" + re.escape(kw) + r"\b")) for kw in self.status_keywords
        ]

    def evaluate(self, subject: str, body_text: str, from_address: str) -> FilterResult:
        """Run the rules in order and report which one matched."""
        text = f"{subject or ''}\n{body_text or ''}".lower()
        domain = sender_domain(from_address)

        for phrase in self.strict_phrases:
            if phrase in text:
                return FilterResult(True, "strict_phrase", phrase)

        ats = self.ats_vendor(domain)
        if ats:
            return FilterResult(True, "ats_domain", ats)

        if domain and (self.CAREERS_DOMAIN_PATTERN.match(domain) or self.CAREERS_NAME_PATTERN.search(domain)):
            return FilterResult(True, "careers_domain", domain)

        for keyword, pattern in self._keyword_patterns:
            if pattern.search(text):
                return FilterResult(True, "status_keyword", keyword)

        return FilterResult(False)

    def is_relevant(self, subject: str, body_text: str, from_address: str) -> bool:
        """Quick check if a message is likely about a job application."""
        return self.evaluate(subject, body_text, from_address).relevant

    def ats_vendor(self, domain: str) -> Optional[str]:
        """The ATS vendor domain ``domain`` belongs to, if any."""
        for ats in self.ats_domains:
            if domain == ats or domain.endswith("." + ats):
                return ats
        return None
