"""Identity account lifecycle operations (create, delete, disable, list)."""
from __future__ import annotations
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional, Tuple

from crm_team.config import TeamConfig
from crm_team.core.errors import IdentityProviderError, NotFoundError, TeamError

from .client import IdentityClient
from .passwords import generate_secret

logger = logging.getLogger(__name__)

DISABLED_AT_ATTRIBUTE = "disabled_at"
DISABLE_REASON_ATTRIBUTE = "disable_reason"


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _first(values: Any) -> Optional[str]:
    """Keycloak attributes are multi-valued; return the first value."""
    if isinstance(values, list):
        return values[0] if values else None
    return values


@dataclass
class IdentityAccount:
    """Authentication account held by the identity provider."""
    id: str
    email: str
    disabled: bool = False
    disabled_at: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_representation(cls, rep: Dict[str, Any]) -> "IdentityAccount":
        """Build from a Keycloak user representation."""
        attributes = rep.get("attributes") or {}
        metadata = {key: _first(value) for key, value in attributes.items()}
        return cls(
            id=rep["id"],
            email=(rep.get("email") or rep.get("username") or "").lower(),
            disabled=not rep.get("enabled", True),
            disabled_at=metadata.get(DISABLED_AT_ATTRIBUTE),
            metadata=metadata,
        )


@dataclass(frozen=True)
class CreatedAccount:
    """Result of account creation. ``generated_secret`` is handed out once."""
    account_id: str
    generated_secret: str = field(repr=False)


class AccountService:
    """Service for managing identity provider accounts."""

    def __init__(self, client: IdentityClient, config: TeamConfig):
        """Initialize account service.

        Args:
            client: Identity provider HTTP client
            config: Team configuration
        """
        self.client = client
        self.config = config

    def create_account(self, email: str, display_name: str, role: str) -> CreatedAccount:
        """Provision a new account with a freshly generated secret.

        Args:
            email: Normalized email (also used as username)
            display_name: Member display name
            role: Tenant role, stored as an account attribute

        Returns:
            CreatedAccount with the provider id and the generated secret

        Raises:
            IdentityConflictError: Email already registered
            IdentityProviderError: Provider rejected the request
        """
        secret = generate_secret(self.config.secret_length)
        payload = {
            "username": email,
            "email": email,
            "firstName": display_name,
            "enabled": True,
            "emailVerified": True,
            "attributes": {"display_name": [display_name], "role": [role]},
            "credentials": [
                {"type": "password", "value": secret, "temporary": self.config.require_password_update}
            ],
        }
        resp = self.client.post(self.client.realm_path("/users"), json=payload)

        location = resp.headers.get("Location", "")
        account_id = location.rstrip("/").rsplit("/", 1)[-1] if location else ""
        if not account_id:
            # Created, but the id must be looked up; a failed lookup leaves the outcome unknown
            try:
                existing = self.find_by_email(email)
            except TeamError as exc:
                raise IdentityProviderError(f"Account created but its id could not be resolved: {exc}") from exc
            if not existing:
                raise IdentityProviderError("Account created but not found in identity provider")
            account_id = existing.id

        logger.info("Identity account %s created for %s", account_id, email)
        return CreatedAccount(account_id=account_id, generated_secret=secret)

    def delete_account(self, account_id: str) -> bool:
        """Best-effort deletion used as compensation.

        Returns:
            True when the account was deleted, False when deletion failed
            (failure is logged, never raised)
        """
        try:
            self.client.delete(self.client.realm_path(f"/users/{account_id}"))
        except TeamError as exc:
            logger.error("Failed to delete identity account %s: %s", account_id, exc)
            return False
        logger.info("Identity account %s deleted", account_id)
        return True

    def get_account(self, account_id: str) -> IdentityAccount:
        """Fetch a single account.

        Raises:
            NotFoundError: Account does not exist
        """
        return IdentityAccount.from_representation(self._get_representation(account_id))

    def find_by_email(self, email: str) -> Optional[IdentityAccount]:
        """Return the account whose email matches exactly, if any."""
        resp = self.client.get(self.client.realm_path("/users"), params={"email": email, "exact": "true"})
        for rep in resp.json() or []:
            if (rep.get("email") or "").lower() == email.lower():
                return IdentityAccount.from_representation(rep)
        return None

    def set_disabled(self, account_id: str, disabled: bool, reason: Optional[str] = None) -> IdentityAccount:
        """Idempotently set the account's disabled flag.

        A matching state is a no-op success. Disabling also revokes active
        sessions (best effort).

        Args:
            account_id: Account to update
            disabled: Desired state
            reason: Reason stored alongside the disable timestamp

        Returns:
            The account in its resulting state

        Raises:
            NotFoundError: Account does not exist
        """
        rep = self._get_representation(account_id)
        currently_disabled = not rep.get("enabled", True)
        if currently_disabled == disabled:
            logger.debug("Identity account %s already disabled=%s", account_id, disabled)
            return IdentityAccount.from_representation(rep)

        if disabled:
            self.revoke_sessions(account_id)

        attributes = dict(rep.get("attributes") or {})
        if disabled:
            attributes[DISABLED_AT_ATTRIBUTE] = [_utcnow_iso()]
            if reason:
                attributes[DISABLE_REASON_ATTRIBUTE] = [reason]
        else:
            attributes.pop(DISABLED_AT_ATTRIBUTE, None)
            attributes.pop(DISABLE_REASON_ATTRIBUTE, None)

        rep["enabled"] = not disabled
        rep["attributes"] = attributes
        self.client.put(self.client.realm_path(f"/users/{account_id}"), json=rep)
        logger.info("Identity account %s %s", account_id, "disabled" if disabled else "enabled")
        return IdentityAccount.from_representation(rep)

    def revoke_sessions(self, account_id: str) -> bool:
        """Log the account out of every active session (best effort)."""
        try:
            self.client.post(self.client.realm_path(f"/users/{account_id}/logout"))
        except TeamError as exc:
            logger.warning("Failed to revoke sessions for identity account %s: %s", account_id, exc)
            return False
        return True

    def list_accounts(self, page_token: Optional[str] = None) -> Tuple[List[IdentityAccount], Optional[str]]:
        """List one page of accounts.

        Args:
            page_token: Opaque token returned by the previous call (None for the first page)

        Returns:
            Tuple of (accounts, next_page_token). next_page_token is None on the last page.
        """
        first = int(page_token) if page_token else 0
        size = self.config.idp_page_size
        resp = self.client.get(
            self.client.realm_path("/users"),
            params={"first": first, "max": size, "briefRepresentation": "false"},
        )
        reps = resp.json() or []
        accounts = [IdentityAccount.from_representation(rep) for rep in reps]
        next_token = str(first + len(reps)) if len(reps) >= size else None
        return accounts, next_token

    def iter_accounts(self) -> Iterator[IdentityAccount]:
        """Drain every page of ``list_accounts``."""
        page_token: Optional[str] = None
        while True:
            accounts, page_token = self.list_accounts(page_token)
            yield from accounts
            if not page_token:
                return

    def _get_representation(self, account_id: str) -> Dict[str, Any]:
        try:
            resp = self.client.get(self.client.realm_path(f"/users/{account_id}"))
        except NotFoundError:
            raise NotFoundError(f"Identity account '{account_id}' not found")
        return resp.json()
