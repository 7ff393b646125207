"""Tests for the company directory."""
import pytest

from src.matching.company_directory import (
    COMPANY_NAME_CONFIDENCE,
    EMAIL_DOMAIN_CONFIDENCE,
    CompanyDirectory,
    candidate_domains,
    name_variants,
)
from src.persistence.models import Application


def _app(company: str, sender: str = "", last_sender: str = "") -> Application:
    return Application(
        user_id="u",
        id=company.lower(),
        company=company,
        position="Engineer",
        from_address=sender,
        last_email_from=last_sender,
    )


class TestNameHeuristics:
    """Tests for name variant and domain guessing."""

    def test_candidate_domains_from_name(self):
        assert candidate_domains("Wells Fargo") == {"wellsfargo.com", "wells-fargo.com", "wells.com"}

    def test_candidate_domains_strip_suffix(self):
        assert "stripe.com" in candidate_domains("Stripe, Inc.")

    def test_name_variants(self):
        variants = name_variants("Stripe, Inc.")
        assert "stripe" in variants
        assert "stripe inc" in variants

    def test_short_variants_ignored(self):
        assert name_variants("HP") == set()


class TestCompanyDirectory:
    """Tests for CompanyDirectory matching."""

    @pytest.fixture
    def directory(self):
        return CompanyDirectory.build(
            [
                _app("Wells Fargo"),
                _app("Globex", sender="Jane <jane@globex-corp.io>"),
                _app("Initech", sender="no-reply@us.greenhouse-mail.io"),
                _app("Unknown"),
            ]
        )

    def test_placeholder_companies_skipped(self, directory):
        assert len(directory) == 3
        assert "Unknown" not in directory
        assert "wells fargo" in directory

    def test_domain_match_from_heuristic(self, directory):
        match = directory.match("Hi", "See you Tuesday", "Recruiter <r@wellsfargo.com>")

        assert match.company == "Wells Fargo"
        assert match.match_type == "email_domain"
        assert match.confidence == EMAIL_DOMAIN_CONFIDENCE

    def test_domain_match_from_observed_sender(self, directory):
        match = directory.match("Hi", "", "bob@globex-corp.io")
        assert match.company == "Globex"

    def test_subdomain_matches_parent(self, directory):
        match = directory.match("Hi", "", "talent@careers.wellsfargo.com")
        assert match.matched_on == "wellsfargo.com"

    def test_ats_domain_not_attributed_to_company(self, directory):
        """Mail from a shared ATS domain is not claimed by whoever used it first."""
        assert "us.greenhouse-mail.io" not in directory.domains
        assert directory.match("Hello", "Nothing here", "no-reply@us.greenhouse-mail.io") is None

    def test_name_match_in_text(self, directory):
        match = directory.match("Your interview is next Tuesday", "The Initech team", "someone@gmail.com")

        assert match.company == "Initech"
        assert match.match_type == "company_name"
        assert match.confidence == COMPANY_NAME_CONFIDENCE

    def test_name_match_needs_word_boundary(self, directory):
        assert directory.match("Globexian news", "", "x@example.org") is None

    def test_longest_variant_wins(self):
        directory = CompanyDirectory.build([_app("Wells"), _app("Wells Fargo")])
        match = directory.match_text("An update from Wells Fargo recruiting")
        assert match.company == "Wells Fargo"

    def test_no_match(self, directory):
        assert directory.match("Weekly digest", "Recipes", "news@food.com") is None

    def test_empty_directory(self):
        assert CompanyDirectory.build([]).match("Acme", "Acme", "a@acme.com") is None
