"""
Member record service.

Writes to the members collection that LiveCollectionSync keeps live.
Writes always use canonical field names, so a legacy record is migrated
field by field as it is edited.
"""

import logging
from typing import Any, Optional

from modules.errors import ErrorClassifier, Result
from modules.session.service import normalize_email
from providers.base import SERVER_TIMESTAMP, DocumentStore
from shared.config import Settings, get_settings

from .aliases import MEMBER_ALIASES
from .interfaces import IRecordService
from .models import MemberInput, MemberUpdate

logger = logging.getLogger(__name__)


class RecordService(IRecordService):
    """Add, edit and delete member records."""

    def __init__(
        self,
        store: DocumentStore,
        settings: Optional[Settings] = None,
        classifier: Optional[ErrorClassifier] = None,
    ):
        self._store = store
        self._settings = settings or get_settings()
        self._collection = self._settings.members_collection
        self._classifier = classifier or ErrorClassifier()

    @property
    def collection(self) -> str:
        return self._collection

    async def add_member(self, member: MemberInput) -> Result[str]:
        """
        Create a member record.

        Returns:
            Result with the store-assigned id
        """
        fields = {
            "name": member.name.strip(),
            "email": normalize_email(member.email),
            "age": member.age,
            "specialty": member.specialty.value,
            "created_at": SERVER_TIMESTAMP,
            "updated_at": SERVER_TIMESTAMP,
        }
        try:
            member_id = await self._store.add_document(self._collection, fields)
        except Exception as exc:
            return self._failure("add member", exc)

        logger.info(f"Added member {member_id} to {self._collection}")
        return Result.success(member_id)

    async def update_member(self, member_id: str, update: MemberUpdate) -> Result[None]:
        changes = self._changes(update)
        if not changes:
            return Result.success(None)

        try:
            existing = await self._store.get_document(self._collection, member_id)
            if existing is None:
                return Result.failure(
                    self._classifier.classify("not_found", f"No member {member_id}")
                )
            # Clear legacy copies of the written fields
            for canonical in list(changes):
                for legacy in MEMBER_ALIASES.get(canonical, ()):
                    if legacy in existing:
                        changes[legacy] = None
            await self._store.update_document(
                self._collection,
                member_id,
                {**changes, "updated_at": SERVER_TIMESTAMP},
            )
        except Exception as exc:
            return self._failure("update member", exc)

        return Result.success(None)

    async def delete_member(self, member_id: str) -> Result[None]:
        try:
            await self._store.delete_document(self._collection, member_id)
        except Exception as exc:
            return self._failure("delete member", exc)

        logger.info(f"Deleted member {member_id} from {self._collection}")
        return Result.success(None)

    def _changes(self, update: MemberUpdate) -> dict[str, Any]:
        changes = update.model_dump(exclude_none=True, mode="json")
        if "name" in changes:
            changes["name"] = changes["name"].strip()
        if "email" in changes:
            changes["email"] = normalize_email(changes["email"])
        return changes

    def _failure(self, operation: str, exc: Exception) -> Result[Any]:
        error = self._classifier.classify_exception(exc)
        logger.warning(f"{operation} failed: {error.category.value} (code={error.provider_code})")
        return Result.failure(error)
