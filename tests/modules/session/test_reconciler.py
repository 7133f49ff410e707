"""Tests for modules/session/reconciler.py."""

from datetime import datetime, timezone

from modules.session.models import ProfileDocument
from modules.session.reconciler import ProfileReconciler, reconcile
from providers.base import IdentityRecord


def _identity(**overrides) -> IdentityRecord:
    fields = {
        "id": "u1",
        "email": "ana@example.com",
        "display_name": "Ana",
        "email_verified": True,
    }
    fields.update(overrides)
    return IdentityRecord(**fields)


class TestProfileReconciler:
    def test_identity_only(self):
        """Without a profile the view carries identity fields only."""
        view = reconcile(_identity(), None)
        assert view.id == "u1"
        assert view.email == "ana@example.com"
        assert view.display_name == "Ana"
        assert view.email_verified is True
        assert view.has_profile is False
        assert view.age is None
        assert view.specialty is None

    def test_profile_fields_merged(self):
        """Profile fields should appear in the view."""
        when = datetime(2024, 5, 1, tzinfo=timezone.utc)
        profile = ProfileDocument(
            id="u1", name="Ana Torres", age=20, specialty="Software",
            profile_complete=True, created_at=when, last_login_at=when,
        )
        view = reconcile(_identity(), profile)
        assert view.has_profile is True
        assert view.name == "Ana Torres"
        assert view.age == 20
        assert view.specialty == "Software"
        assert view.profile_complete is True
        assert view.last_login_at == when

    def test_profile_email_wins(self):
        """On collision the profile value wins."""
        profile = ProfileDocument(id="u1", email="ana.torres@example.com")
        assert reconcile(_identity(), profile).email == "ana.torres@example.com"

    def test_missing_profile_email_falls_back_to_identity(self):
        profile = ProfileDocument(id="u1", email=None)
        assert reconcile(_identity(), profile).email == "ana@example.com"

    def test_email_verified_always_from_identity(self):
        """A stale profile copy of email_verified must not override the identity."""
        profile = ProfileDocument(id="u1", email_verified=False)
        assert reconcile(_identity(email_verified=True), profile).email_verified is True

    def test_mismatched_profile_ignored(self):
        """A profile for another identity should not be merged."""
        profile = ProfileDocument(id="someone-else", age=40)
        view = ProfileReconciler().reconcile(_identity(), profile)
        assert view.id == "u1"
        assert view.has_profile is False
        assert view.age is None
