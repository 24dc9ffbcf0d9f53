"""Custom exception hierarchy.

Each error carries the HTTP status the API layer answers with, so the
single exception handler in ``app.main`` can map them without knowing the
individual classes.
"""

from typing import Optional


class AppError(Exception):
    """Base exception for application errors."""

    status_code: int = 500
    title: str = "Internal Server Error"

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        super().__init__(message)
        self.message = message
        self.original_error = original_error


class DatabaseError(AppError):
    """Raised when a database operation fails."""

    status_code = 503
    title = "Storage Failure"


class StorageError(DatabaseError):
    """Raised when the underlying store is unreachable or rejects a write."""

    pass


class ConfigurationError(AppError):
    """Raised when configuration is invalid or missing."""

    title = "Configuration Error"


class ValidationError(AppError):
    """Raised when input validation fails."""

    status_code = 422
    title = "Validation Error"


class InvalidStepTransitionError(ValidationError):
    """Raised when a step status change breaks the verification lifecycle."""

    status_code = 409
    title = "Invalid Step Transition"

    def __init__(self, step_id, current_status: str, requested_status: str):
        super().__init__(
            f"Step {step_id} cannot move from '{current_status}' to '{requested_status}'"
        )
        self.step_id = step_id
        self.current_status = current_status
        self.requested_status = requested_status


class NotFoundError(AppError):
    """Raised when a referenced record does not exist."""

    status_code = 404
    title = "Not Found"


class UserNotFoundError(NotFoundError):
    """Raised when a user has no verification center."""

    pass


class PillarNotFoundError(NotFoundError):
    """Raised when a pillar is not found."""

    pass


class StepNotFoundError(NotFoundError):
    """Raised when a verification step is not found."""

    def __init__(self, step_id):
        super().__init__(f"Verification step {step_id} not found")
        self.step_id = step_id


class AlreadyInitializedError(AppError):
    """Raised when a verification center already exists for the user."""

    status_code = 409
    title = "Already Initialized"

    def __init__(self, user_id, original_error: Optional[Exception] = None):
        super().__init__(
            f"Verification center already initialized for user {user_id}",
            original_error=original_error,
        )
        self.user_id = user_id


class RetryLimitExceededError(AppError):
    """Raised when a step has used up its retry budget."""

    status_code = 429
    title = "Too Many Attempts"

    def __init__(self, step_id, retry_count: int, max_retries: int):
        super().__init__("Maximum retry attempts reached. Please contact support.")
        self.step_id = step_id
        self.retry_count = retry_count
        self.max_retries = max_retries


class ConcurrentModificationError(AppError):
    """Raised when a step was changed by another writer since it was read."""

    status_code = 409
    title = "Concurrent Modification"
