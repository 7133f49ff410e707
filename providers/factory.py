"""Factory functions for creating identity providers and document stores."""

import logging
from typing import Optional

from shared.config import Settings, get_settings
from shared.database import get_supabase_client

from .base import DocumentStore, IdentityProvider
from .memory import InMemoryDocumentStore, InMemoryIdentityProvider
from .supabase import SupabaseDocumentStore, SupabaseIdentityProvider

logger = logging.getLogger(__name__)


async def create_providers(
    settings: Optional[Settings] = None,
) -> tuple[IdentityProvider, DocumentStore]:
    """Build the identity provider and document store pair for a backend.

    Args:
        settings: Settings to read ``provider_backend`` from. Defaults to
                  the cached application settings.

    Returns:
        Tuple of (identity_provider, document_store)

    Raises:
        ValueError: If the backend name is not recognised
        RuntimeError: If the Supabase backend is selected but not configured
    """
    settings = settings or get_settings()
    backend = settings.provider_backend

    if backend == "memory":
        logger.info("Using in-memory identity provider and document store")
        identity = InMemoryIdentityProvider(
            token_secret=settings.memory_token_secret,
            token_ttl_seconds=settings.memory_token_ttl_seconds,
            min_password_length=settings.min_password_length,
        )
        return identity, InMemoryDocumentStore()

    if backend == "supabase":
        logger.info("Using Supabase identity provider and document store")
        client = await get_supabase_client()
        return SupabaseIdentityProvider(client), SupabaseDocumentStore(client)

    raise ValueError(
        f"Unknown provider backend '{backend}'. Expected 'memory' or 'supabase'"
    )


_providers: Optional[tuple[IdentityProvider, DocumentStore]] = None


async def get_providers() -> tuple[IdentityProvider, DocumentStore]:
    """Get the shared provider pair, building it on first use.

    SessionManager and LiveCollectionSync singletons share this pair so
    that they observe the same identity provider and document store.
    """
    global _providers
    if _providers is None:
        _providers = await create_providers()
    return _providers


def reset_providers() -> None:
    """Drop the shared provider pair (for testing)."""
    global _providers
    _providers = None
