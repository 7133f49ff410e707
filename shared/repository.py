"""
Base repository class for document store access.

Provides a common abstraction layer for all repositories, encapsulating
document store access and the collection each repository owns.
"""

from typing import TypeVar, Generic, TYPE_CHECKING

if TYPE_CHECKING:
    from providers.base import DocumentStore


T = TypeVar("T")


class BaseRepository(Generic[T]):
    """
    Base class for all repositories.

    Provides common functionality for document operations:
    - Document store access via self._store
    - The owned collection name via self._collection
    - Generic type parameter for model type hints

    Subclasses implement domain-specific data access methods and handle
    dict-to-Pydantic model mapping internally. Store errors are not caught
    here; callers decide which failures are best-effort.

    Example:
        class ProfileRepository(BaseRepository[ProfileDocument]):
            async def get(self, user_id: str) -> Optional[ProfileDocument]:
                doc = await self._store.get_document(self._collection, user_id)
                return self._map_to_profile(doc) if doc else None
    """

    def __init__(self, store: "DocumentStore", collection: str) -> None:
        """
        Initialize the repository.

        Args:
            store: Document store used for all reads and writes.
            collection: Name of the collection this repository owns.
        """
        self._store = store
        self._collection = collection

    @property
    def collection(self) -> str:
        return self._collection
