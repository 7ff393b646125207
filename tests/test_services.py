"""Tests for the application service and merge operator."""
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from src.exceptions import MergeValidationError, NotFoundError, StoreCommitError
from src.persistence.models import Application
from src.tracking.application_service import ApplicationService
from src.tracking.history import history_entry

BASE = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


class TestApplicationService:
    """Tests for ApplicationService."""

    def test_list_applications(self, test_db, application_factory):
        application_factory("Acme", "Engineer")
        application_factory("Globex", "Designer", status="offer")
        application_factory("Acme", "Engineer", user_id="other-user")

        service = ApplicationService(test_db)

        assert len(service.list_applications("user-1")) == 2
        assert [a.company for a in service.list_applications("user-1", status="offer")] == ["Globex"]
        assert [a.company for a in service.list_applications("user-1", company="glob")] == ["Globex"]

    def test_company_filter_escapes_like(self, test_db, application_factory):
        application_factory("Acme", "Engineer")

        assert ApplicationService(test_db).list_applications("user-1", company="%") == []

    def test_get_application_not_found(self, test_db):
        with pytest.raises(NotFoundError) as exc_info:
            ApplicationService(test_db).get_application("user-1", "nope")
        assert exc_info.value.to_dict() == {"error": "Application nope not found", "code": "NOT_FOUND"}

    def test_update_status_sets_manual_lock(self, test_db, application_factory):
        app = application_factory("Acme", "Engineer")

        updated = ApplicationService(test_db).update_status("user-1", app.id, "rejected")

        assert updated.status == "rejected"
        assert updated.manually_updated is True

    def test_update_status_invalid(self, test_db, application_factory):
        app = application_factory("Acme", "Engineer")

        with pytest.raises(ValueError):
            ApplicationService(test_db).update_status("user-1", app.id, "ghosted")

    def test_update_status_missing(self, test_db):
        with pytest.raises(NotFoundError):
            ApplicationService(test_db).update_status("user-1", "missing", "offer")

    def test_update_urgency_sets_manual_lock(self, test_db, application_factory):
        app = application_factory("Acme", "Engineer")

        updated = ApplicationService(test_db).update_urgency("user-1", app.id, "high")

        assert updated.urgency == "high"
        assert updated.manually_updated is True

    def test_update_urgency_invalid(self, test_db, application_factory):
        app = application_factory("Acme", "Engineer")

        with pytest.raises(ValueError):
            ApplicationService(test_db).update_urgency("user-1", app.id, "urgent")

    def test_delete_application(self, test_db, application_factory):
        app = application_factory("Acme", "Engineer")
        service = ApplicationService(test_db)

        service.delete_application("user-1", app.id)

        with pytest.raises(NotFoundError):
            service.get_application("user-1", "acme_engineer")

    def test_delete_missing(self, test_db):
        with pytest.raises(NotFoundError):
            ApplicationService(test_db).delete_application("user-1", "missing")

    def test_summary(self, test_db, application_factory):
        application_factory("Acme", "Engineer", urgency="high", sentiment="positive", status="offer")
        application_factory("Acme", "Designer", status="follow_up_needed")
        application_factory("Globex", "Engineer")

        summary = ApplicationService(test_db).get_summary("user-1")

        assert summary.total_applications == 3
        assert summary.status_breakdown == {"offer": 1, "follow_up_needed": 1, "received": 1}
        assert sorted(summary.companies) == ["Acme", "Globex"]
        assert [a.id for a in summary.urgent] == ["acme_engineer"]
        assert [a.id for a in summary.positive] == ["acme_engineer"]
        assert [a.id for a in summary.needs_follow_up] == ["acme_designer"]
        assert len(summary.recent) == 3

    def test_summary_recent_limited(self, test_db, application_factory):
        for i in range(12):
            application_factory("Acme", f"Role {i}", scraped_at=BASE + timedelta(days=i))

        summary = ApplicationService(test_db).get_summary("user-1")

        assert len(summary.recent) == 10
        assert summary.recent[0].position == "Role 11"

    def test_empty_summary(self, test_db):
        summary = ApplicationService(test_db).get_summary("user-1")

        assert summary.total_applications == 0
        assert summary.to_dict()["status_breakdown"] == {}


class TestMergeApplications:
    """Tests for merging duplicate applications."""

    def test_merge_absorbs_and_combines_history(self, test_db, application_factory):
        """After merging [a, b] into a, b is gone and a has both histories."""
        application_factory("Acme", "Engineer", date=BASE, gmail_id="a1")
        application_factory("Acme Inc", "Software Engineer", date=BASE + timedelta(days=2), gmail_id="b1", status="interview_scheduled")
        service = ApplicationService(test_db)

        record = service.merge_applications("user-1", ["acme_engineer", "acme_inc_software_engineer"], "acme_engineer")

        assert record.primary_id == "acme_engineer"
        assert record.absorbed_ids == ["acme_inc_software_engineer"]
        with pytest.raises(NotFoundError):
            service.get_application("user-1", "acme_inc_software_engineer")

        merged = service.get_application("user-1", "acme_engineer")
        assert [e["gmail_id"] for e in merged.email_history] == ["a1", "b1"]
        assert merged.status == "interview_scheduled"
        assert merged.last_gmail_id == "b1"
        assert merged.manually_merged is True
        assert merged.merged_from == ["acme_inc_software_engineer"]
        assert merged.merged_at is not None

    def test_primary_manual_status_preserved(self, test_db, application_factory):
        application_factory("Acme", "Engineer", date=BASE, status="rejected", manually_updated=True)
        application_factory(
            "Acme", "SWE", date=BASE + timedelta(days=5), status="offer", sentiment="positive", next_action="Sign"
        )

        record = ApplicationService(test_db).merge_applications("user-1", ["acme_engineer", "acme_swe"], "acme_engineer")

        merged = record.resulting_application
        assert merged.status == "rejected"
        assert merged.manually_updated is True
        assert merged.sentiment == "positive"
        assert merged.next_action == "Sign"

    def test_absorbed_manual_status_carried(self, test_db, application_factory):
        application_factory("Acme", "Engineer", date=BASE + timedelta(days=5), status="offer")
        application_factory("Acme", "SWE", date=BASE, status="withdrawn", manually_updated=True)

        record = ApplicationService(test_db).merge_applications("user-1", ["acme_engineer", "acme_swe"], "acme_engineer")

        assert record.resulting_application.status == "withdrawn"
        assert record.resulting_application.manually_updated is True

    def test_invalid_primary_defaults_to_first(self, test_db, application_factory):
        application_factory("Acme", "Engineer")
        application_factory("Acme", "SWE")

        record = ApplicationService(test_db).merge_applications("user-1", ["acme_swe", "acme_engineer"], "bogus")

        assert record.primary_id == "acme_swe"

    def test_record_without_history_is_synthesized(self, test_db, application_factory):
        application_factory("Acme", "Engineer", date=BASE)
        application_factory("Acme", "SWE", date=BASE + timedelta(days=1), email_history=[], gmail_id="legacy-1")

        record = ApplicationService(test_db).merge_applications("user-1", ["acme_engineer", "acme_swe"])

        history = record.resulting_application.email_history
        assert [e["gmail_id"] for e in history] == ["seed-acme_engineer", "legacy-1"]

    def test_shared_messages_not_duplicated(self, test_db, application_factory):
        shared = history_entry("shared", "Hello", BASE, "received", "neutral")
        application_factory("Acme", "Engineer", email_history=[shared])
        application_factory("Acme", "SWE", email_history=[shared])

        record = ApplicationService(test_db).merge_applications("user-1", ["acme_engineer", "acme_swe"])

        assert len(record.resulting_application.email_history) == 1

    def test_prior_merges_accumulate(self, test_db, application_factory):
        application_factory("Acme", "Engineer", merged_from=["acme_old"])
        application_factory("Acme", "SWE", merged_from=["acme_older"])

        record = ApplicationService(test_db).merge_applications("user-1", ["acme_engineer", "acme_swe"])

        assert record.resulting_application.merged_from == ["acme_old", "acme_swe", "acme_older"]

    @pytest.mark.parametrize("ids", [["acme_engineer"], ["acme_engineer", "missing"], ["acme_engineer", "acme_engineer"]])
    def test_fewer_than_two_valid(self, test_db, application_factory, ids):
        application_factory("Acme", "Engineer")

        with pytest.raises(MergeValidationError):
            ApplicationService(test_db).merge_applications("user-1", ids)

        assert ApplicationService(test_db).get_application("user-1", "acme_engineer").manually_merged is False

    def test_commit_failure_leaves_nothing_half_merged(self, test_db, application_factory):
        application_factory("Acme", "Engineer")
        application_factory("Acme", "SWE")
        service = ApplicationService(test_db)

        with patch.object(test_db, "commit", side_effect=OperationalError("COMMIT", {}, Exception("disk full"))):
            with pytest.raises(StoreCommitError):
                service.merge_applications("user-1", ["acme_engineer", "acme_swe"])

        assert len(service.list_applications("user-1")) == 2
        assert service.get_application("user-1", "acme_engineer").manually_merged is False
