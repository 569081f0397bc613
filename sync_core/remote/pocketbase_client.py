# =============================================================================
# sync_core/remote/pocketbase_client.py
# PocketBase REST Client
# =============================================================================
"""
RemoteClient implementation for a PocketBase server, over requests.

Endpoints used:
    GET    /api/health
    GET    /api/collections/{collection}/records
    POST   /api/collections/{collection}/records
    PATCH  /api/collections/{collection}/records/{id}
    DELETE /api/collections/{collection}/records/{id}
    POST   /api/collections/{auth_collection}/auth-with-password
    POST   /api/collections/{auth_collection}/auth-refresh
"""

from __future__ import annotations
import base64
import binascii
import json
import time
from typing import Any, Dict, Mapping, Optional
import logging

import requests

from sync_core.config import CacheConfig
from sync_core.errors import ConfigurationError, RemoteError
from sync_core.offline.query_translator import (
    SortSpec,
    WhereLike,
    render_remote_filter,
    render_remote_sort,
)
from sync_core.offline.schema import encode_json
from sync_core.remote.base_client import ListResult, RemoteClient

logger = logging.getLogger(__name__)

HEALTH_ENDPOINT = "/api/health"

# Response keys that are not record fields
_META_KEYS = ("collectionId", "collectionName", "expand")


class PocketBaseClient(RemoteClient):
    """
    Thin PocketBase REST client.

    Usage:
        client = PocketBaseClient("https://pb.example.com")
        client.auth_with_password("user@example.com", "secret")
        page = client.list_records("notes", per_page=50, where=("status = ?", [True]))
    """

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        auth_collection: str = "users",
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.auth_collection = auth_collection
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({"Accept": "application/json"})
        self.token: Optional[str] = token

    @classmethod
    def from_config(
        cls,
        config: CacheConfig,
        session: Optional[requests.Session] = None,
    ) -> PocketBaseClient:
        """
        Build a client from cache settings.

        ``remote_url`` is required; ``remote_key``, when set, is used as a
        stored auth token. HTTP calls use ``request_timeout``.
        """
        if not config.remote_url:
            raise ConfigurationError("remote_url is required for PocketBase", config_key="remote_url")
        return cls(
            config.remote_url,
            token=config.remote_key,
            timeout=config.request_timeout,
            session=session,
        )

    # =========================================================================
    # HTTP
    # =========================================================================

    def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        body: Optional[Mapping[str, Any]] = None,
    ) -> Optional[Dict[str, Any]]:
        """
        Make an HTTP request and decode the JSON response.

        Raises:
            RemoteError: status 0 when the server could not be reached
        """
        url = f"{self.base_url}{path}"
        headers = {}
        if self.token:
            headers["Authorization"] = self.token
        data = None
        if body is not None:
            headers["Content-Type"] = "application/json"
            data = encode_json(dict(body))

        try:
            response = self.session.request(
                method=method,
                url=url,
                params=params,
                data=data,
                headers=headers,
                timeout=self.timeout,
            )
        except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as e:
            raise RemoteError(f"{method} {path} failed: {e}", status=0) from e
        except requests.exceptions.RequestException as e:
            raise RemoteError(f"{method} {path} failed: {e}") from e

        if response.status_code >= 400:
            try:
                payload = response.json()
            except ValueError:
                payload = {"message": response.text}
            message = payload.get("message") if isinstance(payload, dict) else None
            raise RemoteError(
                f"{method} {path} returned {response.status_code}: {message or response.reason}",
                status=response.status_code,
                response=payload,
            )

        if response.status_code == 204 or not response.content:
            return None
        try:
            payload = response.json()
        except ValueError as e:
            # Captive portals and proxies answer 200 with an HTML page
            raise RemoteError(
                f"{method} {path} returned a non-JSON body: {e}",
                status=response.status_code,
                response={"text": response.text[:200]},
            ) from e
        if not isinstance(payload, dict):
            raise RemoteError(
                f"{method} {path} returned {type(payload).__name__}, expected an object",
                status=response.status_code,
            )
        return payload

    @staticmethod
    def _normalize(record: Mapping[str, Any]) -> Dict[str, Any]:
        return {key: value for key, value in record.items() if key not in _META_KEYS}

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
        params: Dict[str, Any] = {
            "page": page,
            "perPage": per_page,
            "skipTotal": "true" if skip_total else "false",
        }
        flt = render_remote_filter(where, sort, start_after)
        if flt:
            params["filter"] = flt
        order = render_remote_sort(sort)
        if order:
            params["sort"] = order

        payload = self._request("GET", f"/api/collections/{collection}/records", params=params) or {}
        items = [self._normalize(item) for item in payload.get("items", [])]
        return ListResult(items=items, total_items=payload.get("totalItems", -1))

    def create_record(
        self,
        collection: str,
        fields: Mapping[str, Any],
        record_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        body = dict(fields)
        if record_id:
            body["id"] = record_id
        record = self._request("POST", f"/api/collections/{collection}/records", body=body)
        return self._normalize(record or {})

    def update_record(
        self,
        collection: str,
        record_id: str,
        fields: Mapping[str, Any],
    ) -> Dict[str, Any]:
        record = self._request(
            "PATCH", f"/api/collections/{collection}/records/{record_id}", body=fields
        )
        return self._normalize(record or {})

    def delete_record(self, collection: str, record_id: str) -> None:
        self._request("DELETE", f"/api/collections/{collection}/records/{record_id}")

    # =========================================================================
    # AUTH & HEALTH
    # =========================================================================

    def auth_with_password(self, identity: str, password: str) -> Dict[str, Any]:
        """Authenticate against the auth collection and store the token."""
        payload = self._request(
            "POST",
            f"/api/collections/{self.auth_collection}/auth-with-password",
            body={"identity": identity, "password": password},
        ) or {}
        self.token = payload.get("token")
        return payload.get("record", {})

    def auth_refresh(self) -> None:
        payload = self._request(
            "POST", f"/api/collections/{self.auth_collection}/auth-refresh"
        ) or {}
        if payload.get("token"):
            self.token = payload["token"]
        logger.debug("Auth token refreshed")

    @property
    def token_valid(self) -> bool:
        """True if a token is stored and its exp claim is in the future."""
        if not self.token:
            return False
        parts = self.token.split(".")
        if len(parts) != 3:
            return False
        try:
            padded = parts[1] + "=" * (-len(parts[1]) % 4)
            claims = json.loads(base64.urlsafe_b64decode(padded))
        except (binascii.Error, ValueError):
            return False
        return float(claims.get("exp", 0)) > time.time()

    def clear_auth(self) -> None:
        self.token = None

    def health_check(self) -> int:
        try:
            response = self.session.get(f"{self.base_url}{HEALTH_ENDPOINT}", timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            logger.debug(f"Health check failed: {e}")
            return 0
        return response.status_code
