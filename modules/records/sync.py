"""
Live collection sync.

Keeps a local, ordered, de-duplicated copy of a remote query. Every store
snapshot replaces the local list wholesale; callers never observe a
partially applied change.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from modules.errors import ErrorClassifier, Result, UserFacingError
from providers.base import Document, DocumentStore, StoreSubscription
from providers.factory import get_providers
from shared.fields import AliasTable, order_documents, resolve_aliases

from .aliases import MEMBER_ALIASES
from .interfaces import ErrorHandler, ILiveCollectionSync, SnapshotHandler
from .models import CollectionRecord, QueryDescriptor

logger = logging.getLogger(__name__)


class SubscriptionHandle:
    """
    A live query opened by LiveCollectionSync.

    ``records`` always holds the latest complete snapshot. Once closed,
    either by the owner or by a store failure, the handle receives nothing
    more; ``error`` holds the failure if there was one.
    """

    def __init__(self, query: QueryDescriptor):
        self.query = query
        self.records: list[CollectionRecord] = []
        self.snapshot_count = 0
        self.error: Optional[UserFacingError] = None
        self._subscription: Optional[StoreSubscription] = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return (
            f"SubscriptionHandle({self.query.collection!r}, {state}, "
            f"records={len(self.records)})"
        )


class LiveCollectionSync(ILiveCollectionSync):
    """
    Opens and owns live subscriptions to document store queries.

    Snapshots are mapped through the alias table, de-duplicated by id and
    sorted by the query's ordering before they reach the handler. Store
    failures are classified and reported once through the error handler;
    the subscription is then closed and is not retried.
    """

    def __init__(
        self,
        store: DocumentStore,
        aliases: Optional[AliasTable] = None,
        classifier: Optional[ErrorClassifier] = None,
    ):
        self._store = store
        self._aliases = MEMBER_ALIASES if aliases is None else aliases
        self._classifier = classifier or ErrorClassifier()
        self._handles: list[SubscriptionHandle] = []

    @property
    def open_handles(self) -> list[SubscriptionHandle]:
        return list(self._handles)

    async def open(
        self,
        query: QueryDescriptor,
        on_snapshot: SnapshotHandler,
        on_error: Optional[ErrorHandler] = None,
    ) -> SubscriptionHandle:
        """
        Start a live subscription.

        A failure to subscribe is reported through on_error like any later
        store failure; the returned handle is then already closed.
        """
        handle = SubscriptionHandle(query)
        self._handles.append(handle)

        def deliver(documents: list[Document]) -> None:
            self._deliver(handle, documents, on_snapshot)

        def fail(exc: Exception) -> None:
            self._fail(handle, exc, on_error)

        try:
            subscription = await self._store.subscribe(
                query.collection,
                query.filters,
                query.order_by,
                self._store_limit(query),
                deliver,
                fail,
            )
        except Exception as exc:
            self._fail(handle, exc, on_error)
            return handle

        if handle.closed:
            # Closed or failed while the subscription was being established
            await subscription.unsubscribe()
        else:
            handle._subscription = subscription
            logger.debug(f"Opened live query on {query.collection}")
        return handle

    async def close(self, handle: SubscriptionHandle) -> None:
        """Stop a subscription. Closing an already closed handle does nothing."""
        self._detach(handle)
        subscription, handle._subscription = handle._subscription, None
        if subscription is not None:
            await subscription.unsubscribe()
            logger.debug(f"Closed live query on {handle.query.collection}")

    async def close_all(self) -> None:
        for handle in list(self._handles):
            await self.close(handle)

    @asynccontextmanager
    async def subscription(
        self,
        query: QueryDescriptor,
        on_snapshot: SnapshotHandler,
        on_error: Optional[ErrorHandler] = None,
    ) -> AsyncIterator[SubscriptionHandle]:
        """Open a subscription that is closed when the block exits."""
        handle = await self.open(query, on_snapshot, on_error)
        try:
            yield handle
        finally:
            await self.close(handle)

    async def fetch_once(self, query: QueryDescriptor) -> Result[list[CollectionRecord]]:
        """Run the query once, outside any subscription."""
        try:
            documents = await self._store.query(
                query.collection, query.filters, query.order_by, self._store_limit(query)
            )
        except Exception as exc:
            error = self._classifier.classify_exception(exc)
            logger.warning(f"One-shot query on {query.collection} failed: {error.category.value}")
            return Result.failure(error)
        return Result.success(self.materialize(query, documents))

    def materialize(self, query: QueryDescriptor, documents: list[Document]) -> list[CollectionRecord]:
        """
        Turn a raw store snapshot into the local list.

        Documents without an id are dropped. A repeated id keeps the
        position of its first occurrence and the data of its last. The
        query limit is applied after ordering.
        """
        aliases = self._aliases_for(query)

        positions: dict[str, int] = {}
        resolved: list[dict] = []
        for document in documents:
            doc_id = document.get("id")
            if doc_id is None:
                logger.warning(f"Dropping document without id from {query.collection}")
                continue
            fields = resolve_aliases(document, aliases)
            fields["id"] = str(doc_id)
            if fields["id"] in positions:
                resolved[positions[fields["id"]]] = fields
            else:
                positions[fields["id"]] = len(resolved)
                resolved.append(fields)

        ordered = order_documents(resolved, [(o.field, o.descending) for o in query.order_by])
        if query.limit is not None:
            ordered = ordered[: query.limit]
        return [
            CollectionRecord(id=fields["id"], data={k: v for k, v in fields.items() if k != "id"})
            for fields in ordered
        ]

    def _aliases_for(self, query: QueryDescriptor) -> AliasTable:
        return self._aliases if query.aliases is None else query.aliases

    def _store_limit(self, query: QueryDescriptor) -> Optional[int]:
        """
        Limit to hand to the store.

        The store orders on stored field names only, so a record holding an
        ordering key under a legacy name could be cut before it is resolved.
        Such queries fetch everything and truncate locally.
        """
        aliases = self._aliases_for(query)
        if query.limit is not None and any(clause.field in aliases for clause in query.order_by):
            return None
        return query.limit

    async def __aenter__(self) -> "LiveCollectionSync":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close_all()

    def _deliver(
        self,
        handle: SubscriptionHandle,
        documents: list[Document],
        on_snapshot: SnapshotHandler,
    ) -> None:
        if handle.closed:
            return

        records = self.materialize(handle.query, documents)
        handle.records = records
        handle.snapshot_count += 1
        logger.debug(f"Snapshot {handle.snapshot_count} on {handle.query.collection}: {len(records)} record(s)")

        try:
            on_snapshot(list(records))
        except Exception:
            logger.exception(f"Snapshot handler for {handle.query.collection} raised")

    def _fail(
        self,
        handle: SubscriptionHandle,
        exc: Exception,
        on_error: Optional[ErrorHandler],
    ) -> None:
        if handle.closed:
            return

        error = self._classifier.classify_exception(exc)
        handle.error = error
        self._detach(handle)
        # The store has already released its side of the subscription
        handle._subscription = None
        logger.warning(
            f"Live query on {handle.query.collection} failed: {error.category.value} "
            f"(code={error.provider_code})"
        )

        if on_error is None:
            return
        try:
            on_error(error)
        except Exception:
            logger.exception(f"Error handler for {handle.query.collection} raised")

    def _detach(self, handle: SubscriptionHandle) -> None:
        handle._closed = True
        if handle in self._handles:
            self._handles.remove(handle)


# Module-level instance getter
_sync_instance: Optional[LiveCollectionSync] = None


async def get_live_collection_sync() -> LiveCollectionSync:
    """Get the live collection sync singleton, built on the shared provider pair."""
    global _sync_instance
    if _sync_instance is None:
        _, store = await get_providers()
        _sync_instance = LiveCollectionSync(store)
    return _sync_instance


def reset_live_collection_sync() -> None:
    """Reset the live collection sync singleton (for testing)."""
    global _sync_instance
    _sync_instance = None
