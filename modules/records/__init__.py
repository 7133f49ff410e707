"""
Records module.

Keeps member records live from the document store and writes changes back.

Public API:
- ILiveCollectionSync, LiveCollectionSync, SubscriptionHandle: live queries
- IRecordService, RecordService: member add/edit/delete
- CollectionRecord, QueryDescriptor, MemberInput, MemberUpdate: models
- MEMBER_ALIASES: legacy field names accepted for member records
"""

from .aliases import MEMBER_ALIASES
from .interfaces import ErrorHandler, ILiveCollectionSync, IRecordService, SnapshotHandler
from .models import CollectionRecord, MemberInput, MemberUpdate, QueryDescriptor
from .service import RecordService
from .sync import (
    LiveCollectionSync,
    SubscriptionHandle,
    get_live_collection_sync,
    reset_live_collection_sync,
)

__all__ = [
    # Interfaces
    "ILiveCollectionSync",
    "IRecordService",
    "SnapshotHandler",
    "ErrorHandler",
    # Services
    "LiveCollectionSync",
    "SubscriptionHandle",
    "get_live_collection_sync",
    "reset_live_collection_sync",
    "RecordService",
    # Models
    "CollectionRecord",
    "QueryDescriptor",
    "MemberInput",
    "MemberUpdate",
    "MEMBER_ALIASES",
]
