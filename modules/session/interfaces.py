"""
Session module interface.

UI code should depend on ISessionManager, not the concrete implementation.
Every operation returns a Result and never raises provider errors.
"""

from typing import Callable, Optional, Protocol, runtime_checkable

from modules.errors import Result

from .models import ProfileInput, ProfileUpdate, UserView

SessionObserver = Callable[[Optional[UserView]], None]


@runtime_checkable
class ISessionManager(Protocol):
    """
    Interface for session lifecycle operations.

    This protocol defines the contract that the session module exposes
    to the UI layer. Implementations must provide all these methods.
    """

    async def login(self, email: str, password: str) -> Result[UserView]:
        """
        Sign in with email and password.

        Args:
            email: Email address, normalised before use
            password: Account password

        Returns:
            Result with the reconciled UserView, or a classified error
        """
        ...

    async def register(self, profile_input: ProfileInput) -> Result[UserView]:
        """
        Create an account, write its profile and sign in.

        A failed profile write does not fail registration; the returned
        view simply lacks profile fields.
        """
        ...

    async def logout(self) -> Result[None]:
        """Sign out. Succeeds without effect when nobody is signed in."""
        ...

    def observe_session_changes(self, callback: SessionObserver) -> Callable[[], None]:
        """
        Register a callback for session transitions.

        Args:
            callback: Called with the new UserView on sign-in and None on sign-out

        Returns:
            Unsubscribe callable
        """
        ...

    async def reset_password(self, email: str) -> Result[None]:
        """Request a password reset email."""
        ...

    async def change_password(self, current_password: str, new_password: str) -> Result[None]:
        """Reauthenticate with the current password, then set a new one."""
        ...

    async def send_verification_email(self) -> Result[None]:
        """Send an email verification message to the signed-in user."""
        ...

    async def update_profile(self, update: ProfileUpdate) -> Result[UserView]:
        """Apply a partial profile change and return the refreshed view."""
        ...

    async def refresh(self) -> Result[Optional[UserView]]:
        """Re-read the profile of the signed-in user."""
        ...

    async def is_email_registered(self, email: str) -> Result[bool]:
        """Whether a profile already uses this email."""
        ...
