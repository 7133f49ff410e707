"""Base classes and models for identity providers and document stores."""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Callable, Literal, Optional

import jwt
from pydantic import BaseModel, Field


class IdentityRecord(BaseModel):
    """The identity provider's own record for a user.

    Attributes:
        id: Stable, provider-assigned user id
        email: Email the account was registered with
        display_name: Name stored at the provider, if any
        email_verified: Whether the provider has verified the email
    """

    model_config = {"frozen": True}

    id: str
    email: str
    display_name: Optional[str] = None
    email_verified: bool = False


class Credential(BaseModel):
    """Opaque proof of an authenticated session.

    Only the SessionManager and the providers look inside it.
    """

    model_config = {"frozen": True}

    access_token: str = Field(repr=False)
    refresh_token: Optional[str] = Field(default=None, repr=False)
    expires_at: Optional[datetime] = None
    user: IdentityRecord

    @property
    def expiry(self) -> Optional[datetime]:
        """Expiry time, falling back to the access token's exp claim."""
        if self.expires_at is not None:
            return self.expires_at
        try:
            claims = jwt.decode(self.access_token, options={"verify_signature": False})
        except jwt.PyJWTError:
            return None
        exp = claims.get("exp")
        if exp is None:
            return None
        return datetime.fromtimestamp(exp, tz=timezone.utc)

    @property
    def is_expired(self) -> bool:
        expiry = self.expiry
        return expiry is not None and expiry <= datetime.now(timezone.utc)


FilterOp = Literal["==", "!=", "<", "<=", ">", ">=", "in"]


class FieldFilter(BaseModel):
    """Equality/comparison filter on a stored field."""

    model_config = {"frozen": True}

    field: str
    op: FilterOp = "=="
    value: Any = None


class OrderBy(BaseModel):
    """Ordering clause on a stored field."""

    model_config = {"frozen": True}

    field: str
    descending: bool = False


class _ServerTimestamp:
    """Sentinel replaced by the store's own clock at write time."""

    _instance: Optional["_ServerTimestamp"] = None

    def __new__(cls) -> "_ServerTimestamp":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"


SERVER_TIMESTAMP = _ServerTimestamp()

Document = dict[str, Any]
SessionCallback = Callable[[Optional[Credential]], None]
SnapshotCallback = Callable[[list[Document]], None]
StoreErrorCallback = Callable[[Exception], None]


class IdentityProvider(ABC):
    """Abstract base class for credential-based identity providers.

    Implementations raise IdentityProviderError carrying the provider's
    own error code; classification happens in the caller.
    """

    @abstractmethod
    async def sign_in(self, email: str, password: str) -> Credential:
        """Exchange email and password for a credential."""

    @abstractmethod
    async def sign_up(self, email: str, password: str) -> Credential:
        """Create an account and return a credential for it."""

    @abstractmethod
    async def sign_out(self, credential: Credential) -> None:
        """Invalidate the credential at the provider."""

    @abstractmethod
    def observe(self, callback: SessionCallback) -> Callable[[], None]:
        """Register for session-change notifications.

        The callback receives the new credential, or None on sign-out or
        provider-side invalidation.

        Returns:
            A function that unregisters the callback
        """

    @abstractmethod
    async def current_credential(self) -> Optional[Credential]:
        """Return the session the provider already holds, if any."""

    @abstractmethod
    async def reauthenticate(self, credential: Credential, current_password: str) -> Credential:
        """Prove the password again and return a freshly issued credential."""

    @abstractmethod
    async def change_password(self, credential: Credential, new_password: str) -> None:
        """Change the signed-in user's password."""

    @abstractmethod
    async def send_password_reset(self, email: str) -> None:
        """Send a password reset email."""

    @abstractmethod
    async def send_email_verification(self, credential: Credential) -> None:
        """Send a verification email to the signed-in user."""

    @abstractmethod
    async def update_display_name(self, credential: Credential, name: str) -> IdentityRecord:
        """Change the display name stored at the provider."""


class StoreSubscription(ABC):
    """Provider-side listener for a query; release it with unsubscribe()."""

    @abstractmethod
    async def unsubscribe(self) -> None:
        """Stop delivery and free provider resources. Must be idempotent."""


class DocumentStore(ABC):
    """Abstract base class for remote document stores.

    Documents are plain dicts that always include their "id". Values equal
    to SERVER_TIMESTAMP are replaced by the store's clock on write.
    Implementations raise DocumentStoreError carrying the store's own code.
    """

    @abstractmethod
    async def get_document(self, collection: str, doc_id: str) -> Optional[Document]:
        """Return one document, or None if it does not exist."""

    @abstractmethod
    async def set_document(self, collection: str, doc_id: str, fields: dict[str, Any]) -> None:
        """Create or replace a document under a caller-chosen id."""

    @abstractmethod
    async def add_document(self, collection: str, fields: dict[str, Any]) -> str:
        """Create a document under a store-assigned id and return the id."""

    @abstractmethod
    async def update_document(self, collection: str, doc_id: str, fields: dict[str, Any]) -> None:
        """Merge fields into an existing document.

        Raises:
            DocumentStoreError: With code "not_found" if the document is missing
        """

    @abstractmethod
    async def delete_document(self, collection: str, doc_id: str) -> None:
        """Delete a document. Deleting a missing document is not an error."""

    @abstractmethod
    async def query(
        self,
        collection: str,
        filters: Optional[list[FieldFilter]] = None,
        order_by: Optional[list[OrderBy]] = None,
        limit: Optional[int] = None,
    ) -> list[Document]:
        """Run a query once and return the matching documents in order."""

    @abstractmethod
    async def subscribe(
        self,
        collection: str,
        filters: Optional[list[FieldFilter]],
        order_by: Optional[list[OrderBy]],
        limit: Optional[int],
        on_snapshot: SnapshotCallback,
        on_error: StoreErrorCallback,
    ) -> StoreSubscription:
        """Stream complete query results on the initial load and every change.

        The store releases its own resources before calling on_error; after
        that the subscription delivers nothing more.
        """

