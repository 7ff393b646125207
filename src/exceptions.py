"""Error taxonomy for JobCAT.

Per-message errors (extraction, classification) are absorbed where they
happen and never abort a sync. Per-run errors (authorization, store commit,
concurrent sync) propagate to the caller, which can branch on ``code``.
"""


class JobTrackerError(Exception):
    """Base exception for tracker errors."""

    code = "INTERNAL_ERROR"

    def to_dict(self) -> dict:
        """Structured form for API/CLI callers."""
        return {"error": str(self), "code": self.code}


class AuthorizationError(JobTrackerError):
    """Raised when mailbox access is revoked or lacks the required scopes."""

    code = "GMAIL_AUTH_ERROR"

    def __init__(self, message: str = "Gmail access not properly authorized. Please re-authenticate."):
        super().__init__(message)


class ClassificationError(JobTrackerError):
    """Raised by a completion backend when the model call fails."""

    code = "CLASSIFICATION_ERROR"


class ExtractionError(JobTrackerError):
    """Raised when a raw message payload cannot be decoded."""

    code = "EXTRACTION_ERROR"


class NotFoundError(JobTrackerError):
    """Raised when operating on an application id that does not exist."""

    code = "NOT_FOUND"

    def __init__(self, application_id: str):
        self.application_id = application_id
        super().__init__(f"Application {application_id} not found")


class MergeValidationError(JobTrackerError):
    """Raised when a merge request names fewer than two existing applications."""

    code = "MERGE_VALIDATION_ERROR"


class StoreCommitError(JobTrackerError):
    """Raised when a batched write fails and is rolled back."""

    code = "STORE_COMMIT_ERROR"


class SyncInProgressError(JobTrackerError):
    """Raised when a sync is triggered while another runs for the same user."""

    code = "SYNC_IN_PROGRESS"

    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__(f"A sync is already running for user {user_id}")


class ConfigurationError(JobTrackerError):
    """Raised when a required setting is missing, such as the OpenAI API key."""

    code = "CONFIGURATION_ERROR"
