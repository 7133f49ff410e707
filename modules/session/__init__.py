"""
Session module.

Handles login, registration, logout, password maintenance and profile
reconciliation for the signed-in user.

Public API:
- ISessionManager: Interface for session operations
- SessionManager, get_session_manager: Concrete implementation and singleton
- ProfileReconciler: identity + profile -> UserView merge
- UserView, ProfileInput, ProfileUpdate, ProfileDocument: models
- Session exceptions: NotSignedInError, InvalidEmailError, etc.
"""

from .interfaces import ISessionManager, SessionObserver
from .models import (
    MIN_AGE,
    PROFILE_FIELD_ALIASES,
    ProfileDocument,
    ProfileInput,
    ProfileUpdate,
    SessionState,
    Specialty,
    UserView,
)
from .exceptions import (
    NotSignedInError,
    InvalidEmailError,
    WeakPasswordError,
    EmptyUpdateError,
)
from .reconciler import ProfileReconciler, reconcile
from .repository import ProfileRepository
from .service import SessionManager, get_session_manager, reset_session_manager, normalize_email

__all__ = [
    # Interface
    "ISessionManager",
    "SessionObserver",
    # Service
    "SessionManager",
    "get_session_manager",
    "reset_session_manager",
    "normalize_email",
    # Reconciliation
    "ProfileReconciler",
    "reconcile",
    "ProfileRepository",
    # Models
    "MIN_AGE",
    "PROFILE_FIELD_ALIASES",
    "ProfileDocument",
    "ProfileInput",
    "ProfileUpdate",
    "SessionState",
    "Specialty",
    "UserView",
    # Exceptions
    "NotSignedInError",
    "InvalidEmailError",
    "WeakPasswordError",
    "EmptyUpdateError",
]
