"""Application-specific exceptions for consistent error handling."""

from typing import Any


class AppError(Exception):
    """Application error with standardized error code."""

    status_code: int = 500
    code: str = "INTERNAL_ERROR"
    retryable: bool = False

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | list[Any] | None = None,
        status_code: int | None = None,
    ):
        """Initialize application error."""
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code
        self.details = details


class AttemptStoreError(AppError):
    """Remote attempt store call failed (transport error or non-2xx)."""

    status_code = 502
    code = "ATTEMPT_STORE_ERROR"
    retryable = True


class AttemptLoadError(AppError):
    """Attempt or question data could not be loaded."""

    status_code = 502
    code = "LOAD_FAILED"
    retryable = True


class SubmitError(AppError):
    """Final submission was not acknowledged by the store."""

    status_code = 502
    code = "SUBMIT_FAILED"
    retryable = True


class SyncError(AppError):
    """An answer could not be persisted after all retries."""

    code = "SYNC_FAILED"
    retryable = True


class LockdownError(AppError):
    """Fullscreen or media capture could not be acquired."""

    status_code = 409
    code = "LOCKDOWN_FAILED"
    retryable = True


class AttemptNotFoundError(AppError):
    """No live engine for the requested attempt."""

    status_code = 404
    code = "ATTEMPT_NOT_FOUND"


class ActionRejectedError(AppError):
    """A mutation was rejected by the current attempt state."""

    status_code = 409
    code = "ACTION_REJECTED"

