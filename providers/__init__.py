"""Identity provider and document store implementations."""

from .base import (
    SERVER_TIMESTAMP,
    Credential,
    Document,
    DocumentStore,
    FieldFilter,
    IdentityProvider,
    IdentityRecord,
    OrderBy,
    StoreSubscription,
)
from .factory import create_providers, get_providers, reset_providers
from .memory import InMemoryDocumentStore, InMemoryIdentityProvider

__all__ = [
    "SERVER_TIMESTAMP",
    "Credential",
    "Document",
    "DocumentStore",
    "FieldFilter",
    "IdentityProvider",
    "IdentityRecord",
    "OrderBy",
    "StoreSubscription",
    "create_providers",
    "get_providers",
    "reset_providers",
    "InMemoryDocumentStore",
    "InMemoryIdentityProvider",
]
