"""
Custom exception classes for the application.

Every error carries a code, a message, an HTTP status and details so
routes can return the standard error envelope.
"""

from typing import Optional, Any
from datetime import datetime, timezone


class AppError(Exception):
    """
    Base exception for all application errors.

    All custom exceptions inherit from this.

    Attributes:
        code: Error code (e.g., "PENDING_MESSAGE_NOT_FOUND")
        message: Human-readable message
        status_code: HTTP status code
        details: Additional context
    """

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = 500,
        details: Optional[dict[str, Any]] = None
    ):
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        self.timestamp = datetime.now(timezone.utc).isoformat()
        super().__init__(message)

    def to_dict(self) -> dict:
        """Convert to API response format."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "details": self.details,
                "timestamp": self.timestamp
            }
        }


class UnauthorizedError(AppError):
    """Missing or wrong shared secret (401)."""

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(
            code="UNAUTHORIZED",
            message=message,
            status_code=401
        )


class ExternalServiceError(AppError):
    """External service failure (503)."""

    def __init__(
        self,
        service: str,
        message: str,
        details: Optional[dict] = None
    ):
        super().__init__(
            code=f"{service.upper()}_ERROR",
            message=message,
            status_code=503,
            details={"service": service, **(details or {})}
        )


class DatabaseError(AppError):
    """Database operation failed (500)."""

    def __init__(
        self,
        operation: str,
        message: str,
        details: Optional[dict] = None
    ):
        super().__init__(
            code="DATABASE_ERROR",
            message=f"Database {operation} failed: {message}",
            status_code=500,
            details={"operation": operation, **(details or {})}
        )


# ===================
# EXTERNAL SERVICE ERRORS
# ===================

class WhatsAppError(ExternalServiceError):
    """WhatsApp Graph API error."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(
            service="whatsapp",
            message=message,
            details=details
        )


class StructuringModelError(ExternalServiceError):
    """Structuring model call failed or timed out."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(
            service="structuring_model",
            message=message,
            details=details
        )


class ImageStorageError(ExternalServiceError):
    """Image upload or catalog insert failed."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(
            service="image_storage",
            message=message,
            details=details
        )


# ===================
# OFFER ERRORS
# ===================

class OfferPersistError(DatabaseError):
    """Final offer insert failed."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(
            operation="offer insert",
            message=message,
            details=details
        )
