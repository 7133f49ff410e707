"""Tests for modules/session/interfaces.py."""

from modules.session.interfaces import ISessionManager
from modules.session.service import SessionManager

METHODS = [
    "login",
    "register",
    "logout",
    "observe_session_changes",
    "reset_password",
    "change_password",
    "send_verification_email",
    "update_profile",
    "refresh",
    "is_email_registered",
]


class TestSessionInterface:
    def test_interface_methods_exist(self):
        """ISessionManager should define required methods."""
        for method in METHODS:
            assert hasattr(ISessionManager, method)

    def test_manager_has_interface_methods(self):
        """SessionManager should have all ISessionManager methods."""
        for method in METHODS:
            assert callable(getattr(SessionManager, method))

    def test_manager_satisfies_protocol(self, identity, store, settings):
        """A SessionManager instance should pass the runtime protocol check."""
        manager = SessionManager(identity, store, settings=settings)
        assert isinstance(manager, ISessionManager)
