"""Low-level HTTP client for the membership table (PostgREST)."""
from __future__ import annotations
from typing import Any, Callable, Dict, List, Optional

import requests

from crm_team.config import TeamConfig
from crm_team.core.errors import ConflictError, MembershipStoreError, OperationTimeoutError

UNIQUE_VIOLATION = "23505"


class MembershipStoreClient:
    """HTTP client for the membership table exposed through PostgREST.

    The schema is selected per request with the ``Accept-Profile`` /
    ``Content-Profile`` headers; writes ask for the affected rows back.
    """

    def __init__(self, config: TeamConfig):
        self.config = config
        self.base_url = config.membership_store_url.rstrip("/")
        self.timeout = config.request_timeout
        self.table_url = f"{self.base_url}/rest/v1/{config.membership_table}"

    def _headers(self, write: bool = False) -> Dict[str, str]:
        headers = {
            "apikey": self.config.membership_store_service_key,
            "Authorization": f"Bearer {self.config.membership_store_service_key}",
            "Accept": "application/json",
            "Accept-Profile": self.config.membership_schema,
        }
        if write:
            headers["Content-Profile"] = self.config.membership_schema
            headers["Content-Type"] = "application/json"
            headers["Prefer"] = "return=representation"
        return headers

    def select(self, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Return rows matching PostgREST query parameters."""
        resp = self._send(requests.get, self.table_url, params=params, headers=self._headers())
        self._handle_error(resp)
        return resp.json() or []

    def insert(self, row: Dict[str, Any]) -> Dict[str, Any]:
        """Insert one row and return it as stored.

        Raises:
            ConflictError: Unique constraint violated
        """
        resp = self._send(requests.post, self.table_url, json=row, headers=self._headers(write=True))
        self._handle_error(resp)
        rows = resp.json() or []
        if not rows:
            raise MembershipStoreError("Insert returned no row")
        return rows[0]

    def update(self, params: Dict[str, Any], changes: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Patch every row matching ``params`` and return the updated rows."""
        resp = self._send(requests.patch, self.table_url, params=params, json=changes, headers=self._headers(write=True))
        self._handle_error(resp)
        return resp.json() or []

    def _send(self, method: Callable[..., requests.Response], url: str, **kwargs) -> requests.Response:
        try:
            return method(url, timeout=self.timeout, **kwargs)
        except requests.Timeout as exc:
            raise OperationTimeoutError(f"Membership store call timed out after {self.timeout}s") from exc
        except requests.RequestException as exc:
            raise MembershipStoreError(f"Membership store unreachable: {exc}") from exc

    def _handle_error(self, resp: requests.Response) -> None:
        """Centralized error handling for PostgREST responses.

        Raises:
            ConflictError: 409 or SQLSTATE 23505
            MembershipStoreError: Any other status >= 400
        """
        if resp.status_code < 400:
            return
        payload: Optional[Dict[str, Any]] = None
        try:
            body = resp.json()
            if isinstance(body, dict):
                payload = body
        except ValueError:
            pass
        message = (payload or {}).get("message") or resp.text or f"HTTP {resp.status_code}"
        if resp.status_code == 409 or (payload or {}).get("code") == UNIQUE_VIOLATION:
            raise ConflictError(message)
        raise MembershipStoreError(f"[{resp.status_code}] {message}")
