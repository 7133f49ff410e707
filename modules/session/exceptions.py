"""
Session module exceptions.

These never leave the module: SessionManager classifies them into
UserFacingError values like any provider failure.
"""

from shared.exceptions import AuthenticationError, ValidationError


class NotSignedInError(AuthenticationError):
    """Raised when an operation needs a session and there is none."""

    def __init__(self, message: str = "No user is signed in"):
        super().__init__(message, code="session_missing")


class InvalidEmailError(ValidationError):
    """Raised when an email address is malformed."""

    def __init__(self, email: str):
        super().__init__(
            f"Invalid email address: {email!r}",
            code="invalid_email",
            details={"email": email},
        )


class WeakPasswordError(ValidationError):
    """Raised when a password is shorter than the configured minimum."""

    def __init__(self, min_length: int):
        super().__init__(
            f"Password must be at least {min_length} characters",
            code="weak_password",
            details={"min_length": min_length},
        )


class EmptyUpdateError(ValidationError):
    """Raised when a profile update carries no changes."""

    def __init__(self):
        super().__init__("Profile update has no fields to change", code="empty_update")
