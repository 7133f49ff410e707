"""
Error taxonomy models.

UserFacingError is the only error vocabulary that leaves the session and
records modules. Result wraps the outcome of every public operation.
"""

from enum import Enum
from typing import Generic, Optional, TypeVar
from pydantic import BaseModel, Field

T = TypeVar("T")


class ErrorCategory(str, Enum):
    """Stable, provider-agnostic error categories."""

    INVALID_CREDENTIALS = "invalid_credentials"
    ACCOUNT_NOT_FOUND = "account_not_found"
    ACCOUNT_DISABLED = "account_disabled"
    EMAIL_IN_USE = "email_in_use"
    WEAK_CREDENTIAL = "weak_credential"
    RATE_LIMITED = "rate_limited"
    NETWORK_UNAVAILABLE = "network_unavailable"
    CONFIGURATION_ERROR = "configuration_error"
    UNKNOWN = "unknown"


# Displayable text per category
CATEGORY_MESSAGES: dict[ErrorCategory, str] = {
    ErrorCategory.INVALID_CREDENTIALS: "Incorrect email or password",
    ErrorCategory.ACCOUNT_NOT_FOUND: "No account exists for this email",
    ErrorCategory.ACCOUNT_DISABLED: "This account has been disabled",
    ErrorCategory.EMAIL_IN_USE: "This email is already registered",
    ErrorCategory.WEAK_CREDENTIAL: "The password is too weak",
    ErrorCategory.RATE_LIMITED: "Too many attempts. Try again later",
    ErrorCategory.NETWORK_UNAVAILABLE: "Connection error. Check your network",
    ErrorCategory.CONFIGURATION_ERROR: "The service is not configured correctly",
    ErrorCategory.UNKNOWN: "The operation failed",
}


class UserFacingError(BaseModel):
    """
    A classified error.

    ``message`` is stable text suitable for display; ``detail`` keeps the
    provider's original text for logs and diagnostics.
    """

    category: ErrorCategory = Field(..., description="Stable error category")
    message: str = Field(..., description="Displayable message")
    detail: str = Field(default="", description="Original provider message")
    provider_code: Optional[str] = Field(None, description="Raw provider error code")

    model_config = {"frozen": True}


class Result(BaseModel, Generic[T]):
    """
    Outcome of a public operation: either a value or exactly one error.

    Use Result.success() and Result.failure() rather than the constructor.
    """

    ok: bool
    value: Optional[T] = None
    error: Optional[UserFacingError] = None

    model_config = {"frozen": True, "arbitrary_types_allowed": True}

    @classmethod
    def success(cls, value: Optional[T] = None) -> "Result[T]":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: UserFacingError) -> "Result[T]":
        return cls(ok=False, error=error)

    def unwrap(self) -> T:
        """
        Return the value of a successful result.

        Raises:
            ValueError: If the result is a failure
        """
        if not self.ok:
            category = self.error.category.value if self.error else "unknown"
            raise ValueError(f"Called unwrap() on a failed result ({category})")
        return self.value  # type: ignore[return-value]
