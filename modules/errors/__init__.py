"""
Error classification module.

Isolates every caller from provider-specific error vocabulary.

Public API:
- ErrorClassifier, classify, classify_exception: code -> category mapping
- ErrorCategory: the stable taxonomy
- UserFacingError: classified error with displayable message
- Result: success/failure wrapper returned by public operations
"""

from .classifier import ErrorClassifier, classify, classify_exception, normalize_code
from .models import ErrorCategory, UserFacingError, Result, CATEGORY_MESSAGES

__all__ = [
    # Classifier
    "ErrorClassifier",
    "classify",
    "classify_exception",
    "normalize_code",
    # Models
    "ErrorCategory",
    "UserFacingError",
    "Result",
    "CATEGORY_MESSAGES",
]
