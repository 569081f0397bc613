# =============================================================================
# sync_core/remote/base_client.py
# Abstract Remote Backend Client
# =============================================================================
"""
Interface every remote backend adapter implements.

Adapters raise RemoteError for any failed call, with status 0 when no
response was received, so callers can tell transient network failures
from permanent rejections via RemoteError.is_network_error.
"""

from __future__ import annotations
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from sync_core.offline.query_translator import SortSpec, WhereLike


@dataclass
class ListResult:
    """One page of records."""
    items: List[Dict[str, Any]] = field(default_factory=list)
    total_items: int = -1       # -1 when the total was skipped


class RemoteClient(ABC):
    """Base class for remote record backends."""

    @abstractmethod
    def list_records(
        self,
        collection: str,
        *,
        page: int = 1,
        per_page: int = 500,
        skip_total: bool = True,
        where: WhereLike = None,
        sort: Optional[SortSpec] = None,
        start_after: Optional[Mapping[str, Any]] = None,
    ) -> ListResult:
        """Fetch one page of a collection."""

    @abstractmethod
    def create_record(
        self,
        collection: str,
        fields: Mapping[str, Any],
        record_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Create a record, optionally with a client-chosen id."""

    @abstractmethod
    def update_record(
        self,
        collection: str,
        record_id: str,
        fields: Mapping[str, Any],
    ) -> Dict[str, Any]:
        pass

    @abstractmethod
    def delete_record(self, collection: str, record_id: str) -> None:
        pass

    @abstractmethod
    def auth_refresh(self) -> None:
        """Refresh the stored auth token."""

    @abstractmethod
    def health_check(self) -> int:
        """
        Check the backend is reachable.

        Returns:
            HTTP-style status; 200 means healthy
        """

    @property
    def token_valid(self) -> bool:
        """Whether a usable auth token is stored."""
        return True

    def clear_auth(self) -> None:
        """Forget the stored auth token."""
