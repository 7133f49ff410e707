"""
Error classifier.

Maps provider-specific failure codes onto the stable ErrorCategory
taxonomy. This is the only place in the codebase that knows provider error
vocabulary; every other component passes codes through untouched.

Codes are normalised before lookup so that the Firebase style
("auth/wrong-password"), the Supabase/GoTrue style ("invalid_credentials")
and our own internal codes ("session_missing") share one table.
"""

import asyncio
import logging
from typing import Optional

from shared.exceptions import RosterError

from .models import CATEGORY_MESSAGES, ErrorCategory, UserFacingError

logger = logging.getLogger(__name__)


CODE_CATEGORIES: dict[str, ErrorCategory] = {
    # Credentials
    "wrong_password": ErrorCategory.INVALID_CREDENTIALS,
    "invalid_credential": ErrorCategory.INVALID_CREDENTIALS,
    "invalid_credentials": ErrorCategory.INVALID_CREDENTIALS,
    "invalid_email": ErrorCategory.INVALID_CREDENTIALS,
    "email_address_invalid": ErrorCategory.INVALID_CREDENTIALS,
    "invalid_grant": ErrorCategory.INVALID_CREDENTIALS,
    "requires_recent_login": ErrorCategory.INVALID_CREDENTIALS,
    "reauthentication_needed": ErrorCategory.INVALID_CREDENTIALS,
    "session_missing": ErrorCategory.INVALID_CREDENTIALS,
    "session_not_found": ErrorCategory.INVALID_CREDENTIALS,
    "session_expired": ErrorCategory.INVALID_CREDENTIALS,
    "no_current_user": ErrorCategory.INVALID_CREDENTIALS,
    "pgrst301": ErrorCategory.INVALID_CREDENTIALS,  # PostgREST: JWT expired
    # Account lookup
    "user_not_found": ErrorCategory.ACCOUNT_NOT_FOUND,
    # Disabled accounts
    "user_disabled": ErrorCategory.ACCOUNT_DISABLED,
    "user_banned": ErrorCategory.ACCOUNT_DISABLED,
    "email_not_confirmed": ErrorCategory.ACCOUNT_DISABLED,
    # Uniqueness
    "email_already_in_use": ErrorCategory.EMAIL_IN_USE,
    "email_in_use": ErrorCategory.EMAIL_IN_USE,
    "email_exists": ErrorCategory.EMAIL_IN_USE,
    "user_already_exists": ErrorCategory.EMAIL_IN_USE,
    # Password strength
    "weak_password": ErrorCategory.WEAK_CREDENTIAL,
    "same_password": ErrorCategory.WEAK_CREDENTIAL,
    # Throttling
    "too_many_requests": ErrorCategory.RATE_LIMITED,
    "over_request_rate_limit": ErrorCategory.RATE_LIMITED,
    "over_email_send_rate_limit": ErrorCategory.RATE_LIMITED,
    "resource_exhausted": ErrorCategory.RATE_LIMITED,
    # Connectivity
    "network_request_failed": ErrorCategory.NETWORK_UNAVAILABLE,
    "network_error": ErrorCategory.NETWORK_UNAVAILABLE,
    "unavailable": ErrorCategory.NETWORK_UNAVAILABLE,
    "deadline_exceeded": ErrorCategory.NETWORK_UNAVAILABLE,
    "timeout": ErrorCategory.NETWORK_UNAVAILABLE,
    # Setup problems
    "configuration_not_found": ErrorCategory.CONFIGURATION_ERROR,
    "operation_not_allowed": ErrorCategory.CONFIGURATION_ERROR,
    "invalid_api_key": ErrorCategory.CONFIGURATION_ERROR,
    "api_key_not_valid": ErrorCategory.CONFIGURATION_ERROR,
    "signup_disabled": ErrorCategory.CONFIGURATION_ERROR,
    "email_provider_disabled": ErrorCategory.CONFIGURATION_ERROR,
    "no_authorization": ErrorCategory.CONFIGURATION_ERROR,
    "42p01": ErrorCategory.CONFIGURATION_ERROR,  # Postgres: undefined table
}

_CODE_PREFIXES = ("auth/", "firestore/", "storage/")


def normalize_code(code: Optional[str]) -> str:
    """Lower-case a provider code, strip namespace prefixes, use underscores."""
    if not code:
        return ""
    normalized = str(code).strip().lower()
    for prefix in _CODE_PREFIXES:
        if normalized.startswith(prefix):
            normalized = normalized[len(prefix):]
            break
    return normalized.replace("-", "_")


class ErrorClassifier:
    """
    Classifies provider failures into UserFacingError values.

    Total over its input: unknown or missing codes classify as UNKNOWN and
    keep the original message, so every failure path has something to show.
    """

    def __init__(self, table: Optional[dict[str, ErrorCategory]] = None):
        self._table = dict(CODE_CATEGORIES if table is None else table)

    def classify(
        self,
        provider_error_code: Optional[str],
        provider_message: Optional[str] = None,
    ) -> UserFacingError:
        normalized = normalize_code(provider_error_code)
        category = self._table.get(normalized, ErrorCategory.UNKNOWN)
        detail = provider_message or ""

        if category is ErrorCategory.UNKNOWN:
            # Nothing better to show than the provider's own text
            message = detail or CATEGORY_MESSAGES[category]
        else:
            message = CATEGORY_MESSAGES[category]

        return UserFacingError(
            category=category,
            message=message,
            detail=detail,
            provider_code=str(provider_error_code) if provider_error_code else None,
        )

    def classify_exception(self, exc: BaseException) -> UserFacingError:
        """
        Classify any exception raised while talking to a provider.

        RosterError subclasses are classified by their code. Connection
        and timeout failures raised below the provider adapters map to
        NETWORK_UNAVAILABLE. Anything else is UNKNOWN.
        """
        if isinstance(exc, RosterError):
            return self.classify(exc.code, exc.message)
        if isinstance(exc, (ConnectionError, TimeoutError, asyncio.TimeoutError)):
            return self.classify("network_error", str(exc) or type(exc).__name__)
        logger.debug(f"Unclassified exception type: {type(exc).__name__}")
        return self.classify(None, str(exc) or type(exc).__name__)


_default_classifier = ErrorClassifier()


def classify(
    provider_error_code: Optional[str],
    provider_message: Optional[str] = None,
) -> UserFacingError:
    """Classify a provider error code with the default table."""
    return _default_classifier.classify(provider_error_code, provider_message)


def classify_exception(exc: BaseException) -> UserFacingError:
    """Classify an exception with the default table."""
    return _default_classifier.classify_exception(exc)
