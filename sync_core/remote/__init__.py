# =============================================================================
# sync_core/remote/__init__.py
# Remote Backend Adapters
# =============================================================================

from .base_client import ListResult, RemoteClient
from .pocketbase_client import PocketBaseClient
from .supabase_client import SupabaseRemoteClient

__all__ = [
    "ListResult",
    "RemoteClient",
    "PocketBaseClient",
    "SupabaseRemoteClient",
]
