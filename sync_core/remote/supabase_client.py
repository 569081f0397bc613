# =============================================================================
# sync_core/remote/supabase_client.py
# Supabase (PostgREST) Remote Adapter
# =============================================================================
"""
RemoteClient implementation over supabase-py.

Structured filters map onto PostgREST builder calls (eq, neq, gt, ...).
Supabase tables usually name their timestamps created_at / updated_at;
records are renamed to created / updated on the way in and filter columns
are renamed back on the way out.

Expects secrets in .streamlit/secrets.toml (see sync_core.config):
    [offline_cache]
    remote_url = "https://your-project.supabase.co"
    remote_key = "your-anon-key"
"""

from __future__ import annotations
from datetime import date, datetime
from typing import Any, Dict, List, Mapping, Optional
import logging

import httpx
import requests
from postgrest.exceptions import APIError
from supabase import Client, ClientOptions, create_client

from sync_core.config import CacheConfig
from sync_core.errors import ConfigurationError, RemoteError
from sync_core.offline.query_translator import (
    Filter,
    Operator,
    SortSpec,
    WhereLike,
)
from sync_core.offline.schema import ValueKind, encode_json, to_python, to_utc_string, value_kind
from sync_core.remote.base_client import ListResult, RemoteClient

logger = logging.getLogger(__name__)

HEALTH_ENDPOINT = "/auth/v1/health"

_OPERATOR_METHODS = {
    Operator.EQ: "eq",
    Operator.NE: "neq",
    Operator.GT: "gt",
    Operator.GE: "gte",
    Operator.LT: "lt",
    Operator.LE: "lte",
}


def _postgrest_value(value: Any) -> Any:
    """Render a filter value the way PostgREST expects it in a query string."""
    value = to_python(value)
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, datetime):
        return to_utc_string(value)
    if isinstance(value, date):
        return value.isoformat()
    if value_kind(value) is ValueKind.JSON:
        return encode_json(value)
    return value


class SupabaseRemoteClient(RemoteClient):
    """
    Supabase table access for the offline cache.

    Usage:
        client = SupabaseRemoteClient(url, key)
        cache = OfflineCache(client, "local_data")
    """

    def __init__(
        self,
        url: str,
        key: str,
        client: Optional[Client] = None,
        created_field: str = "created_at",
        updated_field: str = "updated_at",
        timeout: float = 30.0,
    ):
        self.url = url.rstrip("/")
        self.key = key
        self.client = client or create_client(
            url, key, options=ClientOptions(postgrest_client_timeout=timeout)
        )
        self.created_field = created_field
        self.updated_field = updated_field
        self.timeout = timeout

    @classmethod
    def from_config(cls, config: CacheConfig, client: Optional[Client] = None) -> SupabaseRemoteClient:
        """Build a client from ``remote_url`` / ``remote_key`` and ``request_timeout``."""
        missing = [key for key in ("remote_url", "remote_key") if not getattr(config, key)]
        if missing:
            raise ConfigurationError(
                f"Supabase needs {', '.join(missing)}",
                config_key=",".join(missing),
            )
        return cls(config.remote_url, config.remote_key, client=client, timeout=config.request_timeout)

    # =========================================================================
    # FIELD MAPPING
    # =========================================================================

    def _column(self, name: str) -> str:
        if name == "created":
            return self.created_field
        if name == "updated":
            return self.updated_field
        return name

    def _normalize(self, row: Mapping[str, Any]) -> Dict[str, Any]:
        record = dict(row)
        if self.created_field != "created" and self.created_field in record:
            record["created"] = record.pop(self.created_field)
        if self.updated_field != "updated" and self.updated_field in record:
            record["updated"] = record.pop(self.updated_field)
        if record.get("id") is not None:
            record["id"] = str(record["id"])
        return record

    def _payload(self, fields: Mapping[str, Any]) -> Dict[str, Any]:
        payload = {}
        for key, value in fields.items():
            value = to_python(value)
            if isinstance(value, datetime):
                value = to_utc_string(value)
            elif isinstance(value, date):
                value = value.isoformat()
            payload[self._column(key)] = value
        return payload

    # =========================================================================
    # EXECUTION
    # =========================================================================

    def _execute(self, description: str, query: Any) -> Any:
        """Run a PostgREST request, translating failures into RemoteError."""
        try:
            return query.execute()
        except httpx.TransportError as e:
            raise RemoteError(f"{description} failed: {e}", status=0) from e
        except APIError as e:
            raise RemoteError(
                f"{description} rejected: {e.message}",
                response={"code": e.code, "hint": e.hint, "details": e.details},
            ) from e
        except ValueError as e:
            # Body that is not PostgREST JSON, e.g. a proxy login page
            raise RemoteError(f"{description} returned an unreadable response: {e}") from e

    def _apply_filter(self, query: Any, flt: Filter) -> Any:
        for clause in flt.clauses:
            column = self._column(clause.column)
            if clause.value is None:
                if clause.operator is Operator.EQ:
                    query = query.is_(column, "null")
                else:
                    query = query.not_.is_(column, "null")
                continue
            method = getattr(query, _OPERATOR_METHODS[clause.operator])
            query = method(column, _postgrest_value(clause.value))
        return query

    def _cursor(self, sort: Optional[SortSpec], start_after: Mapping[str, Any]) -> str:
        if sort is None or sort.column not in start_after:
            raise RemoteError("start_after requires a sort and the sort column's value")
        column = self._column(sort.column)
        op = "lt" if sort.descending else "gt"
        value = _postgrest_value(start_after[sort.column])
        record_id = start_after.get("id")
        if record_id is None:
            return f"{column}.{op}.{value}"
        return f"{column}.{op}.{value},and({column}.eq.{value},id.{op}.{record_id})"

    # =========================================================================
    # RECORDS
    # =========================================================================

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
        sort = SortSpec.coerce(sort)
        if skip_total:
            query = self.client.table(collection).select("*")
        else:
            query = self.client.table(collection).select("*", count="exact")

        query = self._apply_filter(query, Filter.coerce(where))
        if start_after:
            query = query.or_(self._cursor(sort, start_after))
        if sort is not None:
            query = query.order(self._column(sort.column), desc=sort.descending)

        offset = (page - 1) * per_page
        query = query.range(offset, offset + per_page - 1)

        response = self._execute(f"Listing {collection}", query)
        items: List[Dict[str, Any]] = [self._normalize(row) for row in response.data or []]
        total = response.count if response.count is not None else -1
        return ListResult(items=items, total_items=total)

    def create_record(
        self,
        collection: str,
        fields: Mapping[str, Any],
        record_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        payload = self._payload(fields)
        if record_id:
            payload["id"] = record_id
        response = self._execute(
            f"Creating {collection} record", self.client.table(collection).insert(payload)
        )
        return self._normalize(response.data[0]) if response.data else {}

    def update_record(
        self,
        collection: str,
        record_id: str,
        fields: Mapping[str, Any],
    ) -> Dict[str, Any]:
        query = self.client.table(collection).update(self._payload(fields)).eq("id", record_id)
        response = self._execute(f"Updating {collection} record {record_id}", query)
        return self._normalize(response.data[0]) if response.data else {}

    def delete_record(self, collection: str, record_id: str) -> None:
        query = self.client.table(collection).delete().eq("id", record_id)
        self._execute(f"Deleting {collection} record {record_id}", query)

    # =========================================================================
    # AUTH & HEALTH
    # =========================================================================

    def auth_refresh(self) -> None:
        try:
            self.client.auth.refresh_session()
        except httpx.TransportError as e:
            raise RemoteError(f"Auth refresh failed: {e}", status=0) from e
        except Exception as e:
            # Auth errors carry the HTTP status; retryable ones report 0
            raise RemoteError(f"Auth refresh failed: {e}", status=getattr(e, "status", None)) from e

    @property
    def token_valid(self) -> bool:
        try:
            return self.client.auth.get_session() is not None
        except Exception as e:
            logger.debug(f"Could not read the auth session: {e}")
            return False

    def clear_auth(self) -> None:
        try:
            self.client.auth.sign_out()
        except Exception as e:
            logger.warning(f"Sign out failed: {e}")

    def health_check(self) -> int:
        try:
            response = requests.get(
                f"{self.url}{HEALTH_ENDPOINT}",
                headers={"apikey": self.key},
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            logger.debug(f"Health check failed: {e}")
            return 0
        return response.status_code
