"""Application tracking service."""
import logging
from dataclasses import dataclass, field
from typing import Optional, Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from src.exceptions import NotFoundError
from src.persistence.models import Application, utcnow
from .merge import MergeOperator, MergeRecord

logger = logging.getLogger(__name__)

RECENT_LIMIT = 10


@dataclass
class ApplicationSummary:
    """Aggregate view of a user's applications."""

    total_applications: int = 0
    status_breakdown: dict[str, int] = field(default_factory=dict)
    companies: list[str] = field(default_factory=list)
    urgent: list[Application] = field(default_factory=list)
    positive: list[Application] = field(default_factory=list)
    needs_follow_up: list[Application] = field(default_factory=list)
    recent: list[Application] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "total_applications": self.total_applications,
            "status_breakdown": dict(self.status_breakdown),
            "companies": list(self.companies),
            "urgent": [a.to_dict() for a in self.urgent],
            "positive": [a.to_dict() for a in self.positive],
            "needs_follow_up": [a.to_dict() for a in self.needs_follow_up],
            "recent": [a.to_dict() for a in self.recent],
        }


class ApplicationService:
    """User-facing operations on tracked applications."""

    def __init__(self, session: Session):
        """
        Initialize application service.

        Args:
            session: Database session
        """
        self.session = session

    @staticmethod
    def _escape_like(value: str) -> str:
        """Escape special LIKE characters (%, _) in user input."""
        return value.replace("%", r"\%").replace("_", r"\_")

    def list_applications(
        self,
        user_id: str,
        status: Optional[str] = None,
        company: Optional[str] = None,
    ) -> list[Application]:
        """
        Get a user's applications, most recently scraped first.

        Args:
            user_id: Owner of the records
            status: Filter by status
            company: Filter by company name (partial match)

        Returns:
            List of applications
        """
        stmt = (
            select(Application)
            .where(Application.user_id == user_id)
            .order_by(Application.scraped_at.desc(), Application.id)
        )
        if status:
            stmt = stmt.where(Application.status == status)
        if company:
            escaped = self._escape_like(company)
            stmt = stmt.where(Application.company.ilike(f"%{escaped}%", escape="\\"))

        result = self.session.execute(stmt)
        return list(result.scalars().all())

    def get_application(self, user_id: str, application_id: str) -> Application:
        """Get an application by id, raising NotFoundError if absent."""
        application = self.session.get(Application, (user_id, application_id))
        if application is None:
            raise NotFoundError(application_id)
        return application

    def update_status(self, user_id: str, application_id: str, new_status: str) -> Application:
        """
        Set an application's status by hand.

        The record is locked against automatic status changes from then on.

        Args:
            user_id: Owner of the record
            application_id: Application id
            new_status: One of Application.STATUSES

        Returns:
            Updated application
        """
        if new_status not in Application.STATUSES:
            raise ValueError(f"Invalid status: {new_status}. Must be one of {Application.STATUSES}")

        application = self.get_application(user_id, application_id)
        old_status = application.status
        application.status = new_status
        application.manually_updated = True
        application.updated_at = utcnow()

        self.session.commit()
        self.session.refresh(application)

        logger.info("Application %s status %s -> %s (manual)", application_id, old_status, new_status)
        return application

    def update_urgency(self, user_id: str, application_id: str, new_urgency: str) -> Application:
        """Set an application's urgency by hand; locks it like update_status."""
        if new_urgency not in Application.URGENCIES:
            raise ValueError(f"Invalid urgency: {new_urgency}. Must be one of {Application.URGENCIES}")

        application = self.get_application(user_id, application_id)
        application.urgency = new_urgency
        application.manually_updated = True
        application.updated_at = utcnow()

        self.session.commit()
        self.session.refresh(application)
        return application

    def delete_application(self, user_id: str, application_id: str) -> None:
        application = self.get_application(user_id, application_id)
        self.session.delete(application)
        self.session.commit()
        logger.info("Deleted application %s", application_id)

    def merge_applications(
        self,
        user_id: str,
        application_ids: Sequence[str],
        primary_id: Optional[str] = None,
    ) -> MergeRecord:
        """Merge duplicates into one record (see MergeOperator)."""
        return MergeOperator(self.session).merge(user_id, application_ids, primary_id)

    def get_summary(self, user_id: str) -> ApplicationSummary:
        """
        Build the summary fresh from the user's current applications.

        Returns:
            ApplicationSummary with counts by status, distinct companies,
            urgent / positive / follow-up subsets and the most recent records
        """
        applications = self.list_applications(user_id)
        summary = ApplicationSummary(total_applications=len(applications))

        for application in applications:
            summary.status_breakdown[application.status] = (
                summary.status_breakdown.get(application.status, 0) + 1
            )
            if application.company not in summary.companies:
                summary.companies.append(application.company)
            if application.urgency == "high":
                summary.urgent.append(application)
            if application.sentiment == "positive":
                summary.positive.append(application)
            if application.status == "follow_up_needed":
                summary.needs_follow_up.append(application)

        summary.recent = applications[:RECENT_LIMIT]
        return summary
