"""Low-level HTTP client for the identity provider Admin API (Keycloak).

Handles authentication, token management, timeouts and HTTP error mapping.
"""
from __future__ import annotations
from typing import Any, Callable, Dict, Optional
from datetime import datetime, timedelta

import requests

from crm_team.config import TeamConfig
from crm_team.core.errors import (
    IdentityConflictError,
    IdentityProviderError,
    NotFoundError,
    OperationTimeoutError,
)

DEFAULT_TOKEN_LIFETIME = 60


class IdentityClient:
    """HTTP client for the Keycloak Admin API with automatic token management.

    Features:
    - Client-credentials authentication with automatic refresh
    - Every request bounded by ``config.request_timeout``
    - Centralized error handling (status code -> typed error)

    Usage:
        client = IdentityClient(config)
        client.authenticate_service_account()
        response = client.get(client.realm_path("/users"))
    """

    def __init__(self, config: TeamConfig):
        """Initialize identity client.

        Args:
            config: Team configuration (base URL, realms, credentials, timeout)
        """
        self.config = config
        self.base_url = config.idp_base_url.rstrip("/")
        self.timeout = config.request_timeout
        self._token: Optional[str] = None
        self._token_expires_at: Optional[datetime] = None

    @classmethod
    def with_token(cls, config: TeamConfig, token: str, expires_in: int = 3600) -> "IdentityClient":
        """Create a pre-authenticated client from an already obtained token."""
        client = cls(config)
        client._token = token
        client._token_expires_at = datetime.now() + timedelta(seconds=expires_in)
        return client

    def realm_path(self, suffix: str = "") -> str:
        """Admin API path for the managed realm."""
        return f"/admin/realms/{self.config.idp_realm}{suffix}"

    def authenticate_service_account(self) -> str:
        """Fetch a service account token using the client credentials flow.

        Returns:
            Access token
        """
        url = f"{self.base_url}/realms/{self.config.idp_service_realm}/protocol/openid-connect/token"
        data = {
            "grant_type": "client_credentials",
            "client_id": self.config.idp_service_client_id,
            "client_secret": self.config.idp_service_client_secret,
        }
        resp = self._send(requests.post, url, data=data)
        if resp.status_code != 200:
            raise IdentityProviderError(_error_message(resp), resp.status_code, url)
        payload = resp.json()
        self._token = payload["access_token"]
        lifetime = int(payload.get("expires_in") or DEFAULT_TOKEN_LIFETIME)
        self._token_expires_at = datetime.now() + timedelta(seconds=lifetime)
        return self._token

    def _ensure_authenticated(self) -> None:
        """Ensure we have a valid token, refreshing if necessary."""
        # Refresh if token expired or expiring soon (within 10 seconds)
        if (
            not self._token
            or not self._token_expires_at
            or datetime.now() >= self._token_expires_at - timedelta(seconds=10)
        ):
            self.authenticate_service_account()

    def _headers(self, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        headers = dict(extra or {})
        headers["Authorization"] = f"Bearer {self._token}"
        return headers

    def get(self, path: str, params: Optional[Dict] = None, **kwargs) -> requests.Response:
        """Execute GET request with automatic authentication.

        Raises:
            IdentityProviderError: On HTTP error
            NotFoundError: On 404
            OperationTimeoutError: When the call exceeds the timeout
        """
        self._ensure_authenticated()
        headers = self._headers(kwargs.pop("headers", None))
        resp = self._send(requests.get, f"{self.base_url}{path}", params=params, headers=headers, **kwargs)
        self._handle_error(resp)
        return resp

    def post(self, path: str, json: Optional[Any] = None, **kwargs) -> requests.Response:
        """Execute POST request with automatic authentication."""
        self._ensure_authenticated()
        headers = self._headers(kwargs.pop("headers", None))
        resp = self._send(requests.post, f"{self.base_url}{path}", json=json, headers=headers, **kwargs)
        self._handle_error(resp)
        return resp

    def put(self, path: str, json: Optional[Any] = None, **kwargs) -> requests.Response:
        """Execute PUT request with automatic authentication."""
        self._ensure_authenticated()
        headers = self._headers(kwargs.pop("headers", None))
        resp = self._send(requests.put, f"{self.base_url}{path}", json=json, headers=headers, **kwargs)
        self._handle_error(resp)
        return resp

    def delete(self, path: str, **kwargs) -> requests.Response:
        """Execute DELETE request with automatic authentication."""
        self._ensure_authenticated()
        headers = self._headers(kwargs.pop("headers", None))
        resp = self._send(requests.delete, f"{self.base_url}{path}", headers=headers, **kwargs)
        self._handle_error(resp)
        return resp

    def _send(self, method: Callable[..., requests.Response], url: str, **kwargs) -> requests.Response:
        """Issue the HTTP call with the configured timeout and map transport errors."""
        try:
            return method(url, timeout=self.timeout, **kwargs)
        except requests.Timeout as exc:
            raise OperationTimeoutError(f"Identity provider call timed out after {self.timeout}s: {url}") from exc
        except requests.RequestException as exc:
            raise IdentityProviderError(f"Identity provider unreachable: {exc}", None, url) from exc

    def _handle_error(self, resp: requests.Response) -> None:
        """Centralized error handling for HTTP responses.

        Raises:
            NotFoundError: 404
            IdentityConflictError: 409 (duplicate username/email)
            IdentityProviderError: Any other status >= 400
        """
        if resp.status_code < 400:
            return
        message = _error_message(resp)
        if resp.status_code == 404:
            raise NotFoundError(message)
        if resp.status_code == 409:
            raise IdentityConflictError(message, resp.status_code, resp.url)
        raise IdentityProviderError(message, resp.status_code, resp.url)


def _error_message(resp: requests.Response) -> str:
    """Extract the provider's own error message from a response."""
    try:
        payload = resp.json()
    except ValueError:
        return resp.text or f"HTTP {resp.status_code}"
    if isinstance(payload, dict):
        for key in ("errorMessage", "error_description", "error"):
            if payload.get(key):
                return str(payload[key])
    return resp.text or f"HTTP {resp.status_code}"
