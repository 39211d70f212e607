"""Errors raised by the print queue core.

Every error carries a ``user_message`` suitable for showing to the person
who triggered the operation. Validation and conflict errors explain what to
do; dependency errors stay generic and are flagged as retryable.
"""

from typing import Optional


class PrintQueueError(Exception):
    """Base class for print queue errors."""

    retryable = False

    def __init__(self, message: str, user_message: Optional[str] = None):
        super().__init__(message)
        self.user_message = user_message or message


class ValidationError(PrintQueueError, ValueError):
    """Raised when input is missing or malformed."""
    pass


class NotFoundError(PrintQueueError, LookupError):
    """Raised when a job or user does not exist."""
    pass


class StateConflictError(PrintQueueError):
    """Raised when a transition is not allowed from the job's current status."""

    def __init__(
        self,
        message: str,
        job_id: Optional[str] = None,
        current_status: Optional[str] = None,
        user_message: Optional[str] = None,
    ):
        super().__init__(
            message,
            user_message or f"{message}. Refresh the job and try again.",
        )
        self.job_id = job_id
        self.current_status = current_status


class AdmissionConflictError(PrintQueueError):
    """Raised when a user already has an active print request."""

    def __init__(self, user_id: str, active_job_id: Optional[str] = None):
        super().__init__(
            f"User {user_id} already has an active job",
            "You already have an active print request. "
            "Please wait until it completes.",
        )
        self.user_id = user_id
        self.active_job_id = active_job_id


class DependencyError(PrintQueueError):
    """Raised when the record store fails or is unreachable."""

    retryable = True

    def __init__(self, message: str):
        super().__init__(
            message,
            "Something went wrong while talking to the database. Please try again.",
        )
