"""Supabase-backed identity provider and document store.

Auth goes through Supabase Auth (GoTrue). Collections are Postgres tables
reached through PostgREST, each with an ``id`` primary key. Subscriptions
use Realtime ``postgres_changes`` channels: every change notification
re-runs the subscribed query and pushes the complete result, so callers see
the same snapshot semantics as with any other store.
"""

import asyncio
import logging
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Callable, Iterator, Optional

import httpx
from postgrest.exceptions import APIError
from supabase import AsyncClient, AuthError

from shared.exceptions import DocumentStoreError, IdentityProviderError

from .base import (
    SERVER_TIMESTAMP,
    Credential,
    Document,
    DocumentStore,
    FieldFilter,
    IdentityProvider,
    IdentityRecord,
    OrderBy,
    SessionCallback,
    SnapshotCallback,
    StoreErrorCallback,
    StoreSubscription,
)

logger = logging.getLogger(__name__)

# Postgres resolves this timestamp literal with the server's transaction time
SERVER_NOW_LITERAL = "now"

# Auth errors raised client-side carry no code; name them by class
_AUTH_ERROR_CODES = {
    "AuthSessionMissingError": "session_missing",
    "AuthWeakPasswordError": "weak_password",
    "AuthInvalidCredentialsError": "invalid_credentials",
    "AuthRetryableError": "network_error",
}

_FILTER_METHODS = {
    "==": "eq",
    "!=": "neq",
    "<": "lt",
    "<=": "lte",
    ">": "gt",
    ">=": "gte",
    "in": "in_",
}


@contextmanager
def _auth_errors() -> Iterator[None]:
    """Translate Supabase Auth failures into IdentityProviderError."""
    try:
        yield
    except AuthError as exc:
        code = getattr(exc, "code", None) or _AUTH_ERROR_CODES.get(type(exc).__name__)
        raise IdentityProviderError(code, exc.message) from exc
    except httpx.HTTPError as exc:
        raise IdentityProviderError("network_error", str(exc)) from exc


@contextmanager
def _store_errors() -> Iterator[None]:
    """Translate PostgREST and transport failures into DocumentStoreError."""
    try:
        yield
    except APIError as exc:
        raise DocumentStoreError(exc.code, exc.message or str(exc)) from exc
    except httpx.HTTPError as exc:
        raise DocumentStoreError("unavailable", str(exc)) from exc


def _to_identity(user: Any) -> IdentityRecord:
    metadata = user.user_metadata or {}
    return IdentityRecord(
        id=user.id,
        email=user.email or "",
        display_name=metadata.get("display_name") or metadata.get("full_name"),
        email_verified=user.email_confirmed_at is not None,
    )


def _to_credential(session: Any, user: Any = None) -> Credential:
    if session is None:
        raise IdentityProviderError(
            "email_not_confirmed",
            "The account exists but has no session until its email is confirmed",
        )
    expires_at = None
    if session.expires_at:
        expires_at = datetime.fromtimestamp(session.expires_at, tz=timezone.utc)
    return Credential(
        access_token=session.access_token,
        refresh_token=session.refresh_token,
        expires_at=expires_at,
        user=_to_identity(user or session.user),
    )


def _prepare(fields: dict[str, Any]) -> dict[str, Any]:
    """Make a field dict JSON-safe for PostgREST."""
    prepared = {}
    for key, value in fields.items():
        if value is SERVER_TIMESTAMP:
            prepared[key] = SERVER_NOW_LITERAL
        elif isinstance(value, datetime):
            prepared[key] = value.isoformat()
        else:
            prepared[key] = value
    return prepared


class SupabaseIdentityProvider(IdentityProvider):
    """Identity provider backed by Supabase Auth."""

    def __init__(self, client: AsyncClient):
        self._client = client

    async def sign_in(self, email: str, password: str) -> Credential:
        with _auth_errors():
            response = await self._client.auth.sign_in_with_password(
                {"email": email, "password": password}
            )
        return _to_credential(response.session, response.user)

    async def sign_up(self, email: str, password: str) -> Credential:
        with _auth_errors():
            response = await self._client.auth.sign_up({"email": email, "password": password})
        return _to_credential(response.session, response.user)

    async def sign_out(self, credential: Credential) -> None:
        with _auth_errors():
            await self._client.auth.sign_out()

    def observe(self, callback: SessionCallback) -> Callable[[], None]:
        def on_auth_change(event: str, session: Any) -> None:
            if event == "SIGNED_OUT" or session is None:
                callback(None)
            else:
                callback(_to_credential(session))

        subscription = self._client.auth.on_auth_state_change(on_auth_change)
        return subscription.unsubscribe

    async def current_credential(self) -> Optional[Credential]:
        with _auth_errors():
            session = await self._client.auth.get_session()
        if session is None:
            return None
        return _to_credential(session)

    async def reauthenticate(self, credential: Credential, current_password: str) -> Credential:
        return await self.sign_in(credential.user.email, current_password)

    async def change_password(self, credential: Credential, new_password: str) -> None:
        with _auth_errors():
            await self._client.auth.update_user({"password": new_password})

    async def send_password_reset(self, email: str) -> None:
        with _auth_errors():
            await self._client.auth.reset_password_for_email(email)

    async def send_email_verification(self, credential: Credential) -> None:
        with _auth_errors():
            await self._client.auth.resend({"type": "signup", "email": credential.user.email})

    async def update_display_name(self, credential: Credential, name: str) -> IdentityRecord:
        with _auth_errors():
            response = await self._client.auth.update_user({"data": {"display_name": name}})
        return _to_identity(response.user)


class _RealtimeQueryWatch(StoreSubscription):
    """
    A query kept live through a Realtime channel.

    Change payloads are only used as a trigger: each one re-runs the query
    so the subscriber always receives a complete, ordered snapshot.
    Refreshes are serialised so snapshots arrive in query order.
    """

    def __init__(
        self,
        store: "SupabaseDocumentStore",
        collection: str,
        filters: Optional[list[FieldFilter]],
        order_by: Optional[list[OrderBy]],
        limit: Optional[int],
        on_snapshot: SnapshotCallback,
        on_error: StoreErrorCallback,
    ):
        self._store = store
        self._collection = collection
        self._filters = filters
        self._order_by = order_by
        self._limit = limit
        self._on_snapshot = on_snapshot
        self._on_error = on_error

        self._channel: Any = None
        self._active = False
        self._refresh_lock = asyncio.Lock()
        self._tasks: set[asyncio.Task] = set()

    async def start(self) -> None:
        self._active = True
        channel = self._store.client.channel(f"roster-{self._collection}-{uuid.uuid4().hex[:8]}")
        channel.on_postgres_changes(
            "*",
            schema=self._store.schema,
            table=self._collection,
            callback=self._on_change,
        )
        try:
            await channel.subscribe(self._on_status)
        except (OSError, asyncio.TimeoutError) as exc:
            self._active = False
            raise DocumentStoreError("unavailable", str(exc) or "Realtime connection failed") from exc
        self._channel = channel
        await self._refresh()

    def _on_change(self, payload: dict[str, Any]) -> None:
        if not self._active:
            return
        logger.debug(f"Realtime change on {self._collection}: {payload.get('eventType', '?')}")
        self._spawn(self._refresh())

    def _on_status(self, status: Any, error: Optional[Exception]) -> None:
        if status in ("CHANNEL_ERROR", "TIMED_OUT") and self._active:
            message = str(error) if error else f"Realtime channel {status}"
            self._spawn(self._fail(DocumentStoreError("unavailable", message)))

    def _spawn(self, coro: Any) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _refresh(self) -> None:
        async with self._refresh_lock:
            if not self._active:
                return
            try:
                documents = await self._store.query(
                    self._collection, self._filters, self._order_by, self._limit
                )
            except DocumentStoreError as exc:
                await self._fail(exc)
                return
            if self._active:
                self._on_snapshot(documents)

    async def _fail(self, error: DocumentStoreError) -> None:
        if not self._active:
            return
        await self.unsubscribe()
        self._on_error(error)

    async def unsubscribe(self) -> None:
        self._active = False
        channel, self._channel = self._channel, None
        current = asyncio.current_task()
        for task in list(self._tasks):
            if task is not current:
                task.cancel()
        if channel is not None:
            await self._store.client.remove_channel(channel)


class SupabaseDocumentStore(DocumentStore):
    """Document store backed by Supabase Postgres tables."""

    def __init__(self, client: AsyncClient, schema: str = "public"):
        self._client = client
        self._schema = schema

    @property
    def client(self) -> AsyncClient:
        return self._client

    @property
    def schema(self) -> str:
        return self._schema

    async def get_document(self, collection: str, doc_id: str) -> Optional[Document]:
        with _store_errors():
            result = await (
                self._client.table(collection).select("*").eq("id", doc_id).limit(1).execute()
            )
        return result.data[0] if result.data else None

    async def set_document(self, collection: str, doc_id: str, fields: dict[str, Any]) -> None:
        with _store_errors():
            await self._client.table(collection).upsert({**_prepare(fields), "id": doc_id}).execute()

    async def add_document(self, collection: str, fields: dict[str, Any]) -> str:
        with _store_errors():
            result = await self._client.table(collection).insert(_prepare(fields)).execute()
        return str(result.data[0]["id"])

    async def update_document(self, collection: str, doc_id: str, fields: dict[str, Any]) -> None:
        with _store_errors():
            result = await (
                self._client.table(collection).update(_prepare(fields)).eq("id", doc_id).execute()
            )
        if not result.data:
            raise DocumentStoreError("not_found", f"No document {collection}/{doc_id}")

    async def delete_document(self, collection: str, doc_id: str) -> None:
        with _store_errors():
            await self._client.table(collection).delete().eq("id", doc_id).execute()

    async def query(
        self,
        collection: str,
        filters: Optional[list[FieldFilter]] = None,
        order_by: Optional[list[OrderBy]] = None,
        limit: Optional[int] = None,
    ) -> list[Document]:
        builder = self._client.table(collection).select("*")
        for condition in filters or []:
            builder = getattr(builder, _FILTER_METHODS[condition.op])(condition.field, condition.value)
        for clause in order_by or []:
            builder = builder.order(clause.field, desc=clause.descending)
        if limit is not None:
            builder = builder.limit(limit)

        with _store_errors():
            result = await builder.execute()
        return list(result.data or [])

    async def subscribe(
        self,
        collection: str,
        filters: Optional[list[FieldFilter]],
        order_by: Optional[list[OrderBy]],
        limit: Optional[int],
        on_snapshot: SnapshotCallback,
        on_error: StoreErrorCallback,
    ) -> StoreSubscription:
        watch = _RealtimeQueryWatch(
            self, collection, filters, order_by, limit, on_snapshot, on_error
        )
        await watch.start()
        return watch
