"""Custom exception hierarchy for TuneForge."""

from enum import Enum
from typing import Optional, Dict, Any


class ErrorCode(str, Enum):
    """Standardized error codes for API responses."""

    # Resource lookups
    TASK_NOT_FOUND = "TASK_NOT_FOUND"
    SONG_NOT_FOUND = "SONG_NOT_FOUND"
    PERSONA_NOT_FOUND = "PERSONA_NOT_FOUND"
    USER_NOT_FOUND = "USER_NOT_FOUND"

    # Validation errors
    VALIDATION_ERROR = "VALIDATION_ERROR"

    # Usage limits
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"

    # Music generation provider
    PROVIDER_ERROR = "PROVIDER_ERROR"
    PROVIDER_NOT_CONFIGURED = "PROVIDER_NOT_CONFIGURED"

    # Database errors
    DATABASE_ERROR = "DATABASE_ERROR"

    # Auth
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"

    # Uniqueness / concurrency
    CONFLICT = "CONFLICT"

    # Generic errors
    INTERNAL_ERROR = "INTERNAL_ERROR"


class TuneForgeException(Exception):
    """
    Base exception for all TuneForge errors.

    Carries a human-readable message, a machine-readable error code,
    the HTTP status to return, and optional structured details.
    """

    def __init__(
        self,
        message: str,
        error_code: ErrorCode,
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for JSON response."""
        return {
            "error": self.error_code.value,
            "message": self.message,
            "details": self.details
        }


class TaskNotFoundError(TuneForgeException):
    """Generation task not found in database."""

    def __init__(self, task_id: str):
        super().__init__(
            f"Task not found: {task_id}",
            ErrorCode.TASK_NOT_FOUND,
            status_code=404,
            details={"task_id": task_id}
        )


class SongNotFoundError(TuneForgeException):
    """Song not found in database."""

    def __init__(self, song_id: str):
        super().__init__(
            f"Song not found: {song_id}",
            ErrorCode.SONG_NOT_FOUND,
            status_code=404,
            details={"song_id": song_id}
        )


class PersonaNotFoundError(TuneForgeException):
    """Persona not found, or not owned by the caller."""

    def __init__(self, persona_id: str):
        super().__init__(
            f"Persona not found: {persona_id}",
            ErrorCode.PERSONA_NOT_FOUND,
            status_code=404,
            details={"persona_id": persona_id}
        )


class UserNotFoundError(TuneForgeException):
    """User not found in database."""

    def __init__(self, user_id: str):
        super().__init__(
            f"User not found: {user_id}",
            ErrorCode.USER_NOT_FOUND,
            status_code=404,
            details={"user_id": user_id}
        )


class ValidationError(TuneForgeException):
    """Validation failed for user input."""

    def __init__(self, message: str, field: Optional[str] = None, errors: Optional[list] = None):
        details: Dict[str, Any] = {}
        if field:
            details["field"] = field
        if errors:
            details["errors"] = errors
        super().__init__(
            message,
            ErrorCode.VALIDATION_ERROR,
            status_code=400,
            details=details
        )


class QuotaExceededError(TuneForgeException):
    """The user has no song allowance left for their plan."""

    def __init__(self, role: str):
        super().__init__(
            "Song generation limit reached for your plan",
            ErrorCode.QUOTA_EXCEEDED,
            status_code=403,
            details={"role": role}
        )


class ProviderError(TuneForgeException):
    """The music generation provider was unreachable or returned a non-2xx status."""

    def __init__(self, message: str, upstream_status: int = 0):
        super().__init__(
            message,
            ErrorCode.PROVIDER_ERROR,
            status_code=502,
            details={"upstream_status": upstream_status} if upstream_status else {}
        )
        self.upstream_status = upstream_status


class ProviderNotConfiguredError(TuneForgeException):
    """No provider API key is configured."""

    def __init__(self):
        super().__init__(
            "Music generation provider is not configured (SUNO_API_KEY is empty)",
            ErrorCode.PROVIDER_NOT_CONFIGURED,
            status_code=503,
        )


class AuthenticationError(TuneForgeException):
    """Request lacks valid authentication credentials."""

    def __init__(self, message: str = "Invalid or missing authentication token"):
        super().__init__(
            message,
            ErrorCode.UNAUTHORIZED,
            status_code=401,
        )


class ForbiddenError(TuneForgeException):
    """Authenticated user lacks permission for the requested action."""

    def __init__(self, message: str = "You do not have permission to perform this action"):
        super().__init__(
            message,
            ErrorCode.FORBIDDEN,
            status_code=403,
        )


class ConflictError(TuneForgeException):
    """The resource already exists."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message,
            ErrorCode.CONFLICT,
            status_code=409,
            details=details
        )


class DatabaseError(TuneForgeException):
    """Database operation failed."""

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        details = {}
        if original_error:
            details["original_error"] = str(original_error)

        super().__init__(
            message,
            ErrorCode.DATABASE_ERROR,
            status_code=500,
            details=details
        )
