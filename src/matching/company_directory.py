"""Directory of companies the user has already applied to.

Rebuilt at the start of every sync run from the current Application set,
so follow-up mail ("your interview is next Tuesday") from a known
company is recognized even without any application keyword.
"""
import logging
import re
from dataclasses import dataclass, field
from typing import Iterable, Optional

from src.gmail.prefilter import RelevancePreFilter, sender_domain
from src.persistence.models import Application, normalize_company_key

logger = logging.getLogger(__name__)

EMAIL_DOMAIN_CONFIDENCE = 0.9
COMPANY_NAME_CONFIDENCE = 0.7

# Shortest name variant scanned for in message text
MIN_VARIANT_LENGTH = 3

GENERIC_TLDS = ("com",)

FREE_MAIL_DOMAINS = {
    "gmail.com",
    "googlemail.com",
    "yahoo.com",
    "outlook.com",
    "hotmail.com",
    "live.com",
    "icloud.com",
    "me.com",
    "aol.com",
    "proton.me",
    "protonmail.com",
    "linkedin.com",
    "indeed.com",
}

PLACEHOLDER_COMPANIES = {"", "unknown", "n/a", "none"}


@dataclass
class CompanyEntry:
    """What the directory knows about one company."""

    name: str
    normalized: str
    variants: set[str] = field(default_factory=set)
    domains: set[str] = field(default_factory=set)


@dataclass
class CompanyMatch:
    """A message attributed to a known company."""

    company: str
    match_type: str  # email_domain or company_name
    confidence: float
    matched_on: str


def strip_punctuation(name: str) -> str:
    """Lowercase and drop punctuation, keeping single spaces between words."""
    return " ".join(re.sub(r"[^a-z0-9\s]", " ", (name or "").lower()).split())


def name_variants(company: str) -> set[str]:
    """Spellings of a company name worth looking for in message text."""
    lowered = " ".join((company or "").lower().split())
    stripped = strip_punctuation(company)
    key = normalize_company_key(company)
    variants = {lowered, stripped, key, stripped.replace(" ", ""), key.replace(" ", "")}
    return {v for v in variants if len(v) >= MIN_VARIANT_LENGTH}


def candidate_domains(company: str) -> set[str]:
    """Guess a company's email domains from its name.

    "Wells Fargo" -> wellsfargo.com, wells-fargo.com, wells.com
    """
    words = strip_punctuation(normalize_company_key(company)).split()
    if not words:
        return set()
    stems = {"".join(words), "-".join(words), words[0]}
    return {f"{stem}.{tld}" for stem in stems if len(stem) >= 2 for tld in GENERIC_TLDS}


class CompanyDirectory:
    """Lookup of known companies by sender domain and by name."""

    def __init__(self, prefilter: Optional[RelevancePreFilter] = None):
        self._prefilter = prefilter or RelevancePreFilter()
        self._entries: dict[str, CompanyEntry] = {}
        self._domain_index: dict[str, str] = {}
        self._variant_patterns: list[tuple[str, str, re.Pattern]] = []

    @classmethod
    def build(
        cls,
        applications: Iterable[Application],
        prefilter: Optional[RelevancePreFilter] = None,
    ) -> "CompanyDirectory":
        """Build a directory from the user's current applications."""
        directory = cls(prefilter)
        for application in applications:
            directory.add(application.company, [application.from_address, application.last_email_from])
        directory._index()
        logger.debug(
            "Company directory: %d companies, %d domains",
            len(directory._entries),
            len(directory._domain_index),
        )
        return directory

    def add(self, company: str, sender_headers: Iterable[Optional[str]] = ()) -> None:
        """Register a company and the senders it has written from."""
        normalized = strip_punctuation(company)
        if normalized in PLACEHOLDER_COMPANIES:
            return

        entry = self._entries.get(normalized)
        if entry is None:
            entry = CompanyEntry(name=company, normalized=normalized)
            self._entries[normalized] = entry

        entry.variants |= name_variants(company)
        entry.domains |= candidate_domains(company)
        for header in sender_headers:
            domain = sender_domain(header or "")
            if self._is_company_domain(domain):
                entry.domains.add(domain)

    def _is_company_domain(self, domain: str) -> bool:
        """Observed domains identify a company unless they belong to a platform."""
        if not domain or domain in FREE_MAIL_DOMAINS:
            return False
        return self._prefilter.ats_vendor(domain) is None

    def _index(self) -> None:
        self._domain_index = {}
        for entry in self._entries.values():
            for domain in entry.domains:
                # First company registered for a domain keeps it
                self._domain_index.setdefault(domain, entry.normalized)

        patterns = []
        for entry in self._entries.values():
            for variant in entry.variants:
                pattern = re.compile(r"(?<![a-z0-9])" + re.escape(variant) + r"(?![a-z0-9])")
                patterns.append((variant, entry.normalized, pattern))
        # Longest variants first so "wells fargo" beats "wells"
        patterns.sort(key=lambda item: len(item[0]), reverse=True)
        self._variant_patterns = patterns

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, company: str) -> bool:
        return strip_punctuation(company) in self._entries

    @property
    def domains(self) -> set[str]:
        return set(self._domain_index)

    def match_domain(self, domain: str) -> Optional[CompanyMatch]:
        """Match a sender domain, or any parent domain of it."""
        parts = domain.lower().split(".")
        for i in range(len(parts) - 1):
            candidate = ".".join(parts[i:])
            normalized = self._domain_index.get(candidate)
            if normalized:
                entry = self._entries[normalized]
                return CompanyMatch(entry.name, "email_domain", EMAIL_DOMAIN_CONFIDENCE, candidate)
        return None

    def match_text(self, text: str) -> Optional[CompanyMatch]:
        """Find a known company name in free text."""
        haystack = " ".join((text or "").lower().split())
        for variant, normalized, pattern in self._variant_patterns:
            if pattern.search(haystack):
                entry = self._entries[normalized]
                return CompanyMatch(entry.name, "company_name", COMPANY_NAME_CONFIDENCE, variant)
        return None

    def match(self, subject: str, body_text: str, from_address: str) -> Optional[CompanyMatch]:
        """Attribute a message to a known company: sender domain first, then name."""
        if not self._entries:
            return None
        domain = sender_domain(from_address)
        if domain:
            found = self.match_domain(domain)
            if found:
                return found
        return self.match_text(f"{subject or ''}\n{body_text or ''}")
