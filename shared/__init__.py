"""
Shared infrastructure for Roster Sync.

This package contains cross-cutting concerns that are used by multiple modules:
- config: Centralized settings management
- database: Supabase client factory
- exceptions: Base exception classes
- fields: Legacy field-name resolution for stored documents
- repository: Base class for document store repositories

Note: Business logic should NOT go here. This is for infrastructure only.
"""

from .config import Settings, get_settings
from .database import get_supabase_client, reset_client_cache
from .exceptions import (
    RosterError,
    ValidationError,
    AuthenticationError,
    ExternalServiceError,
    IdentityProviderError,
    DocumentStoreError,
)
from .fields import AliasTable, resolve_aliases, order_documents

__all__ = [
    "Settings",
    "get_settings",
    "get_supabase_client",
    "reset_client_cache",
    "RosterError",
    "ValidationError",
    "AuthenticationError",
    "ExternalServiceError",
    "IdentityProviderError",
    "DocumentStoreError",
    "AliasTable",
    "resolve_aliases",
    "order_documents",
]
