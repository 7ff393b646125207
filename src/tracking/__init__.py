"""Application tracking: reconciliation, merging and user operations."""
from .application_service import ApplicationService, ApplicationSummary
from .history import derive_application_id
from .merge import MergeOperator, MergeRecord
from .reconciler import Candidate, Decision, ReconcileReport, ReconciliationEngine

__all__ = [
    "ApplicationService",
    "ApplicationSummary",
    "Candidate",
    "Decision",
    "MergeOperator",
    "MergeRecord",
    "ReconcileReport",
    "ReconciliationEngine",
    "derive_application_id",
]
