"""
Profile repository for document store access.

Encapsulates all reads and writes of profile documents. Methods raise the
store's DocumentStoreError unchanged; SessionManager decides which of them
are best-effort.
"""

import logging
from typing import Any, Optional

from pydantic import ValidationError as PydanticValidationError

from providers.base import SERVER_TIMESTAMP, Document, FieldFilter, IdentityRecord
from shared.repository import BaseRepository

from .models import ProfileDocument, ProfileInput

logger = logging.getLogger(__name__)


class ProfileRepository(BaseRepository[ProfileDocument]):
    """
    Repository for profile documents.

    All timestamps are written as SERVER_TIMESTAMP so they come from the
    store's clock and stay comparable across clients.
    """

    async def get(self, user_id: str) -> Optional[ProfileDocument]:
        """
        Get a profile by identity id.

        Returns:
            The profile, or None if it is missing or cannot be parsed.
        """
        document = await self._store.get_document(self._collection, user_id)
        if document is None:
            return None
        return self._map_to_profile(document)

    async def find_by_email(self, email: str) -> Optional[ProfileDocument]:
        documents = await self._store.query(
            self._collection,
            filters=[FieldFilter(field="email", value=email)],
            limit=1,
        )
        if not documents:
            return None
        return self._map_to_profile(documents[0])

    async def email_exists(self, email: str) -> bool:
        """Whether any stored profile uses this (normalised) email."""
        documents = await self._store.query(
            self._collection,
            filters=[FieldFilter(field="email", value=email)],
            limit=1,
        )
        return bool(documents)

    async def create(
        self,
        identity: IdentityRecord,
        profile_input: ProfileInput,
        email: str,
        name: Optional[str],
    ) -> None:
        await self._store.set_document(
            self._collection,
            identity.id,
            {
                "name": name,
                "email": email,
                "age": profile_input.age,
                "specialty": profile_input.specialty.value,
                "email_verified": identity.email_verified,
                "profile_complete": True,
                "created_at": SERVER_TIMESTAMP,
                "updated_at": SERVER_TIMESTAMP,
                "last_login_at": SERVER_TIMESTAMP,
            },
        )

    async def update(self, user_id: str, changes: dict[str, Any]) -> None:
        await self._store.update_document(
            self._collection,
            user_id,
            {**changes, "updated_at": SERVER_TIMESTAMP},
        )

    async def touch_last_login(self, user_id: str) -> None:
        await self._store.update_document(
            self._collection,
            user_id,
            {"last_login_at": SERVER_TIMESTAMP, "updated_at": SERVER_TIMESTAMP},
        )

    async def touch_updated(self, user_id: str) -> None:
        await self._store.update_document(
            self._collection,
            user_id,
            {"updated_at": SERVER_TIMESTAMP},
        )

    def _map_to_profile(self, document: Document) -> Optional[ProfileDocument]:
        try:
            return ProfileDocument.from_document(document)
        except PydanticValidationError as exc:
            logger.warning(
                f"Unreadable profile document {document.get('id')!r} in "
                f"{self._collection}: {exc.error_count()} validation error(s)"
            )
            return None
