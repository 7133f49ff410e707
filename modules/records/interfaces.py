"""
Records module interfaces.

UI code should depend on these protocols, not the concrete implementations.
"""

from typing import Callable, Optional, Protocol, runtime_checkable

from modules.errors import Result, UserFacingError

from .models import CollectionRecord, MemberInput, MemberUpdate, QueryDescriptor

SnapshotHandler = Callable[[list[CollectionRecord]], None]
ErrorHandler = Callable[[UserFacingError], None]


@runtime_checkable
class ILiveCollectionSync(Protocol):
    """Interface for keeping a local copy of a remote query live."""

    async def open(
        self,
        query: QueryDescriptor,
        on_snapshot: SnapshotHandler,
        on_error: Optional[ErrorHandler] = None,
    ):
        """
        Start a live subscription.

        Args:
            query: Collection, filters, ordering and limit
            on_snapshot: Called with the complete ordered list on every change
            on_error: Called once with the classified failure, after which
                      the subscription is closed

        Returns:
            SubscriptionHandle to pass to close()
        """
        ...

    async def close(self, handle) -> None:
        """Stop a subscription. Idempotent."""
        ...

    async def fetch_once(self, query: QueryDescriptor) -> Result[list[CollectionRecord]]:
        """Run the query once."""
        ...


@runtime_checkable
class IRecordService(Protocol):
    """Interface for member record writes."""

    async def add_member(self, member: MemberInput) -> Result[str]:
        """Create a member and return its store-assigned id."""
        ...

    async def update_member(self, member_id: str, update: MemberUpdate) -> Result[None]:
        """Apply a partial change to a member."""
        ...

    async def delete_member(self, member_id: str) -> Result[None]:
        """Delete a member. Deleting a missing member succeeds."""
        ...
