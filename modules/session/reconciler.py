"""
Profile reconciler.

Identity-provider success and document-store success are not
transactional: a session can be valid before its profile document is
visible, or after the profile write failed. Reconciliation therefore never
fails and never waits for a profile; it degrades to an identity-only view.
"""

import logging
from typing import Optional

from providers.base import IdentityRecord

from .models import ProfileDocument, UserView

logger = logging.getLogger(__name__)


class ProfileReconciler:
    """Merges an identity record with its profile document into a UserView."""

    def reconcile(
        self,
        identity: IdentityRecord,
        profile: Optional[ProfileDocument] = None,
    ) -> UserView:
        if profile is not None and profile.id != identity.id:
            logger.warning(
                f"Ignoring profile {profile.id} reconciled against identity {identity.id}"
            )
            profile = None

        if profile is None:
            return UserView(
                id=identity.id,
                email=identity.email,
                display_name=identity.display_name,
                email_verified=identity.email_verified,
            )

        return UserView(
            id=identity.id,
            email=profile.email or identity.email,
            display_name=identity.display_name,
            email_verified=identity.email_verified,
            name=profile.name,
            age=profile.age,
            specialty=profile.specialty,
            profile_complete=profile.profile_complete,
            created_at=profile.created_at,
            updated_at=profile.updated_at,
            last_login_at=profile.last_login_at,
            has_profile=True,
        )


_default_reconciler = ProfileReconciler()


def reconcile(identity: IdentityRecord, profile: Optional[ProfileDocument] = None) -> UserView:
    """Reconcile with the default reconciler."""
    return _default_reconciler.reconcile(identity, profile)
