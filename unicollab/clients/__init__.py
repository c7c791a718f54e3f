"""Collaborator contracts and adapters."""
from .base import (
    AuthClient,
    AuthStateHandler,
    AuthSubscription,
    QueryBuilder,
    QueryClient,
    QueryResult,
    RealtimeChannel,
    RealtimeClient,
    RowChangeHandler,
    StorageClient,
)
from .postgrest import PostgrestClient, PostgrestQuery
from .realtime import HubChannel, RealtimeHub
from .storage import SupabaseStorageClient, UploadFile, build_object_key, validate_upload
from .supabase_auth import SupabaseAuthClient

__all__ = [
    "AuthClient",
    "AuthStateHandler",
    "AuthSubscription",
    "QueryBuilder",
    "QueryClient",
    "QueryResult",
    "RealtimeChannel",
    "RealtimeClient",
    "RowChangeHandler",
    "StorageClient",
    "PostgrestClient",
    "PostgrestQuery",
    "HubChannel",
    "RealtimeHub",
    "SupabaseStorageClient",
    "UploadFile",
    "build_object_key",
    "validate_upload",
    "SupabaseAuthClient",
]
