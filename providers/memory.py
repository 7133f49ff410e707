"""In-memory identity provider and document store.

For development and testing. Both behave like their hosted counterparts:
the identity provider issues signed JWT access tokens and pushes session
changes to observers, and the document store pushes a complete snapshot to
every matching subscription after each write. Failures can be injected per
operation to exercise error paths.
"""

import copy
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

import jwt

from shared.exceptions import DocumentStoreError, IdentityProviderError
from shared.fields import order_documents

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

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class _InjectedFailure:
    code: str
    message: str
    remaining: int


class _FailureInjector:
    """Per-operation queue of failures to raise on the next calls."""

    def __init__(self, error_type: type):
        self._error_type = error_type
        self._failures: dict[str, _InjectedFailure] = {}

    def inject(self, operation: str, code: str, message: Optional[str], times: int) -> None:
        self._failures[operation] = _InjectedFailure(
            code=code,
            message=message or f"Injected failure: {code}",
            remaining=times,
        )

    def clear(self) -> None:
        self._failures.clear()

    def check(self, operation: str) -> None:
        failure = self._failures.get(operation)
        if failure is None:
            return
        failure.remaining -= 1
        if failure.remaining <= 0:
            del self._failures[operation]
        raise self._error_type(failure.code, failure.message)


@dataclass
class _Account:
    id: str
    email: str
    password: str
    display_name: Optional[str] = None
    email_verified: bool = False
    disabled: bool = False

    def to_record(self) -> IdentityRecord:
        return IdentityRecord(
            id=self.id,
            email=self.email,
            display_name=self.display_name,
            email_verified=self.email_verified,
        )


@dataclass(frozen=True)
class SentEmail:
    """An email the provider would have sent."""

    kind: str  # "password_reset" or "verification"
    email: str


class InMemoryIdentityProvider(IdentityProvider):
    """
    Identity provider holding accounts in memory.

    Error codes use the Firebase Auth vocabulary (auth/user-not-found,
    auth/invalid-credential, auth/weak-password) so the classifier sees
    the same strings a hosted Firebase project would produce.
    """

    def __init__(
        self,
        token_secret: str = "roster-sync-local-secret",
        token_ttl_seconds: int = 3600,
        min_password_length: int = 6,
        clock: Optional[Clock] = None,
    ):
        self._token_secret = token_secret
        self._token_ttl = timedelta(seconds=token_ttl_seconds)
        self._min_password_length = min_password_length
        self._clock = clock or _utcnow

        self._accounts: dict[str, _Account] = {}
        self._current: Optional[Credential] = None
        self._observers: dict[int, SessionCallback] = {}
        self._next_observer_id = 0
        self._failures = _FailureInjector(IdentityProviderError)

        self.sent_emails: list[SentEmail] = []

    # -------------------------------------------------------------------------
    # Test hooks
    # -------------------------------------------------------------------------

    def inject_failure(
        self,
        operation: str,
        code: str,
        message: Optional[str] = None,
        times: int = 1,
    ) -> None:
        """Make the next ``times`` calls of ``operation`` raise ``code``."""
        self._failures.inject(operation, code, message, times)

    def clear_failures(self) -> None:
        self._failures.clear()

    def expire_session(self) -> None:
        """Invalidate the current session from the provider side."""
        if self._current is None:
            return
        self._current = None
        self._emit(None)

    def disable_account(self, email: str) -> None:
        self._account(email).disabled = True

    def mark_email_verified(self, email: str) -> None:
        self._account(email).email_verified = True

    def has_account(self, email: str) -> bool:
        return email.lower() in self._accounts

    # -------------------------------------------------------------------------
    # IdentityProvider
    # -------------------------------------------------------------------------

    async def sign_in(self, email: str, password: str) -> Credential:
        self._failures.check("sign_in")
        account = self._accounts.get(email.lower())
        if account is None:
            raise IdentityProviderError("auth/user-not-found", "There is no user record for this email")
        if account.disabled:
            raise IdentityProviderError("auth/user-disabled", "The user account has been disabled")
        if account.password != password:
            raise IdentityProviderError("auth/invalid-credential", "The supplied credentials are incorrect")
        return self._start_session(account)

    async def sign_up(self, email: str, password: str) -> Credential:
        self._failures.check("sign_up")
        key = email.lower()
        if key in self._accounts:
            raise IdentityProviderError("auth/email-already-in-use", "The email address is already in use")
        if len(password) < self._min_password_length:
            raise IdentityProviderError(
                "auth/weak-password",
                f"Password should be at least {self._min_password_length} characters",
            )
        account = _Account(id=uuid.uuid4().hex, email=key, password=password)
        self._accounts[key] = account
        logger.debug(f"Created in-memory account {account.id}")
        return self._start_session(account)

    async def sign_out(self, credential: Credential) -> None:
        self._failures.check("sign_out")
        self._current = None
        self._emit(None)

    def observe(self, callback: SessionCallback) -> Callable[[], None]:
        observer_id = self._next_observer_id
        self._next_observer_id += 1
        self._observers[observer_id] = callback

        def unsubscribe() -> None:
            self._observers.pop(observer_id, None)

        return unsubscribe

    async def current_credential(self) -> Optional[Credential]:
        if self._current is not None and self._current.is_expired:
            return None
        return self._current

    async def reauthenticate(self, credential: Credential, current_password: str) -> Credential:
        self._failures.check("reauthenticate")
        account = self._require_session(credential)
        if account.password != current_password:
            raise IdentityProviderError("auth/wrong-password", "The password is invalid")
        return self._start_session(account)

    async def change_password(self, credential: Credential, new_password: str) -> None:
        self._failures.check("change_password")
        account = self._require_session(credential)
        if len(new_password) < self._min_password_length:
            raise IdentityProviderError(
                "auth/weak-password",
                f"Password should be at least {self._min_password_length} characters",
            )
        account.password = new_password
        # Hosted providers re-announce the session after a user update
        self._emit(self._current)

    async def send_password_reset(self, email: str) -> None:
        self._failures.check("send_password_reset")
        account = self._account(email)
        self.sent_emails.append(SentEmail(kind="password_reset", email=account.email))

    async def send_email_verification(self, credential: Credential) -> None:
        self._failures.check("send_email_verification")
        account = self._require_session(credential)
        self.sent_emails.append(SentEmail(kind="verification", email=account.email))

    async def update_display_name(self, credential: Credential, name: str) -> IdentityRecord:
        self._failures.check("update_display_name")
        account = self._require_session(credential)
        account.display_name = name
        if self._current is not None:
            self._current = self._current.model_copy(update={"user": account.to_record()})
            self._emit(self._current)
        return account.to_record()

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _account(self, email: str) -> _Account:
        account = self._accounts.get(email.lower())
        if account is None:
            raise IdentityProviderError("auth/user-not-found", "There is no user record for this email")
        return account

    def _require_session(self, credential: Credential) -> _Account:
        current = self._current
        if current is None or current.access_token != credential.access_token:
            raise IdentityProviderError("auth/no-current-user", "No user is signed in")
        if current.is_expired:
            raise IdentityProviderError("auth/requires-recent-login", "The session has expired")
        return self._account(current.user.email)

    def _start_session(self, account: _Account) -> Credential:
        now = self._clock()
        expires_at = now + self._token_ttl
        token = jwt.encode(
            {
                "sub": account.id,
                "email": account.email,
                "iat": int(now.timestamp()),
                "exp": int(expires_at.timestamp()),
                "jti": uuid.uuid4().hex,
            },
            self._token_secret,
            algorithm="HS256",
        )
        credential = Credential(
            access_token=token,
            refresh_token=uuid.uuid4().hex,
            user=account.to_record(),
        )
        self._current = credential
        self._emit(credential)
        return credential

    def _emit(self, credential: Optional[Credential]) -> None:
        for callback in list(self._observers.values()):
            try:
                callback(credential)
            except Exception:
                logger.exception("Session observer raised")


class _MemorySubscription(StoreSubscription):
    def __init__(
        self,
        store: "InMemoryDocumentStore",
        collection: str,
        filters: list[FieldFilter],
        order_by: list[OrderBy],
        limit: Optional[int],
        on_snapshot: SnapshotCallback,
        on_error: StoreErrorCallback,
    ):
        self._store = store
        self.collection = collection
        self.filters = filters
        self.order_by = order_by
        self.limit = limit
        self._on_snapshot = on_snapshot
        self._on_error = on_error
        self.active = True

    def deliver(self, documents: list[Document]) -> None:
        if self.active:
            self._on_snapshot(documents)

    def fail(self, error: DocumentStoreError) -> None:
        if not self.active:
            return
        self._store._release(self)
        self._on_error(error)

    async def unsubscribe(self) -> None:
        self._store._release(self)


class InMemoryDocumentStore(DocumentStore):
    """
    Document store holding collections in memory.

    Collections keep insertion order. Writes replace SERVER_TIMESTAMP with
    a strictly increasing clock value and synchronously push a fresh
    snapshot to every active subscription on the written collection.
    """

    def __init__(self, clock: Optional[Clock] = None):
        self._clock = clock or _utcnow
        self._last_timestamp: Optional[datetime] = None
        self._collections: dict[str, dict[str, Document]] = {}
        self._subscriptions: list[_MemorySubscription] = []
        self._failures = _FailureInjector(DocumentStoreError)

    # -------------------------------------------------------------------------
    # Test hooks
    # -------------------------------------------------------------------------

    def inject_failure(
        self,
        operation: str,
        code: str,
        message: Optional[str] = None,
        times: int = 1,
    ) -> None:
        """Make the next ``times`` calls of ``operation`` raise ``code``."""
        self._failures.inject(operation, code, message, times)

    def clear_failures(self) -> None:
        self._failures.clear()

    def fail_subscriptions(self, collection: str, code: str = "unavailable", message: str = "") -> None:
        """Break every active subscription on a collection."""
        error = DocumentStoreError(code, message or f"Listener failed: {code}")
        for subscription in list(self._subscriptions):
            if subscription.collection == collection:
                subscription.fail(error)

    def subscription_count(self, collection: Optional[str] = None) -> int:
        return sum(
            1 for s in self._subscriptions
            if collection is None or s.collection == collection
        )

    def seed(self, collection: str, doc_id: str, fields: dict[str, Any]) -> None:
        """Write a document verbatim, bypassing failures and timestamps."""
        self._collections.setdefault(collection, {})[doc_id] = {**copy.deepcopy(fields), "id": doc_id}
        self._notify(collection)

    # -------------------------------------------------------------------------
    # DocumentStore
    # -------------------------------------------------------------------------

    async def get_document(self, collection: str, doc_id: str) -> Optional[Document]:
        self._failures.check("get_document")
        document = self._collections.get(collection, {}).get(doc_id)
        return copy.deepcopy(document) if document is not None else None

    async def set_document(self, collection: str, doc_id: str, fields: dict[str, Any]) -> None:
        self._failures.check("set_document")
        self._collections.setdefault(collection, {})[doc_id] = {
            **self._stamp(fields),
            "id": doc_id,
        }
        self._notify(collection)

    async def add_document(self, collection: str, fields: dict[str, Any]) -> str:
        self._failures.check("add_document")
        doc_id = uuid.uuid4().hex[:20]
        self._collections.setdefault(collection, {})[doc_id] = {
            **self._stamp(fields),
            "id": doc_id,
        }
        self._notify(collection)
        return doc_id

    async def update_document(self, collection: str, doc_id: str, fields: dict[str, Any]) -> None:
        self._failures.check("update_document")
        document = self._collections.get(collection, {}).get(doc_id)
        if document is None:
            raise DocumentStoreError("not_found", f"No document {collection}/{doc_id}")
        document.update(self._stamp(fields))
        document["id"] = doc_id
        self._notify(collection)

    async def delete_document(self, collection: str, doc_id: str) -> None:
        self._failures.check("delete_document")
        removed = self._collections.get(collection, {}).pop(doc_id, None)
        if removed is not None:
            self._notify(collection)

    async def query(
        self,
        collection: str,
        filters: Optional[list[FieldFilter]] = None,
        order_by: Optional[list[OrderBy]] = None,
        limit: Optional[int] = None,
    ) -> list[Document]:
        self._failures.check("query")
        return self._evaluate(collection, filters or [], order_by or [], limit)

    async def subscribe(
        self,
        collection: str,
        filters: Optional[list[FieldFilter]],
        order_by: Optional[list[OrderBy]],
        limit: Optional[int],
        on_snapshot: SnapshotCallback,
        on_error: StoreErrorCallback,
    ) -> StoreSubscription:
        self._failures.check("subscribe")
        subscription = _MemorySubscription(
            self, collection, filters or [], order_by or [], limit, on_snapshot, on_error
        )
        self._subscriptions.append(subscription)
        subscription.deliver(self._evaluate(collection, subscription.filters, subscription.order_by, limit))
        return subscription

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _server_now(self) -> datetime:
        now = self._clock()
        if self._last_timestamp is not None and now <= self._last_timestamp:
            now = self._last_timestamp + timedelta(microseconds=1)
        self._last_timestamp = now
        return now

    def _stamp(self, fields: dict[str, Any]) -> dict[str, Any]:
        now: Optional[datetime] = None
        stamped = {}
        for key, value in fields.items():
            if value is SERVER_TIMESTAMP:
                if now is None:
                    now = self._server_now()
                stamped[key] = now
            else:
                stamped[key] = copy.deepcopy(value)
        return stamped

    def _evaluate(
        self,
        collection: str,
        filters: list[FieldFilter],
        order_by: list[OrderBy],
        limit: Optional[int],
    ) -> list[Document]:
        documents = [
            doc for doc in self._collections.get(collection, {}).values()
            if all(_matches(doc, f) for f in filters)
        ]
        ordered = order_documents(documents, [(o.field, o.descending) for o in order_by])
        if limit is not None:
            ordered = ordered[:limit]
        return [copy.deepcopy(dict(doc)) for doc in ordered]

    def _notify(self, collection: str) -> None:
        for subscription in list(self._subscriptions):
            if subscription.collection != collection or not subscription.active:
                continue
            subscription.deliver(
                self._evaluate(collection, subscription.filters, subscription.order_by, subscription.limit)
            )

    def _release(self, subscription: _MemorySubscription) -> None:
        subscription.active = False
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)


def _matches(document: Document, condition: FieldFilter) -> bool:
    value = document.get(condition.field)
    expected = condition.value
    try:
        if condition.op == "==":
            return value == expected
        if condition.op == "!=":
            return value != expected
        if condition.op == "in":
            return value in expected
        if value is None:
            return False
        if condition.op == "<":
            return value < expected
        if condition.op == "<=":
            return value <= expected
        if condition.op == ">":
            return value > expected
        if condition.op == ">=":
            return value >= expected
    except TypeError:
        return False
    return False
