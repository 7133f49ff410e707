"""
Base exception classes for Roster Sync.

Each module should define its own exceptions that inherit from these bases.
Every exception carries a machine-readable ``code``; the error classifier
turns that code into a user-facing category at the component boundary.
"""

from typing import Optional, Any


class RosterError(Exception):
    """
    Base exception for all Roster Sync errors.

    All custom exceptions should inherit from this class.
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to a dictionary for logs and diagnostics."""
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(RosterError):
    """Input validation failed."""

    pass


class AuthenticationError(RosterError):
    """Authentication failed or no session is available."""

    pass


class ExternalServiceError(RosterError):
    """Error communicating with an external service."""

    def __init__(
        self,
        message: str,
        service: str,
        code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message, code, details)
        self.service = service
        self.details["service"] = service


class IdentityProviderError(ExternalServiceError):
    """Raised by identity providers; ``code`` is the provider's own error code."""

    def __init__(
        self,
        code: Optional[str],
        message: str,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message, service="identity", code=code, details=details)


class DocumentStoreError(ExternalServiceError):
    """Raised by document stores; ``code`` is the store's own error code."""

    def __init__(
        self,
        code: Optional[str],
        message: str,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message, service="document_store", code=code, details=details)
