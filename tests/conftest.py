"""Pytest shared fixtures: in-memory stores and network guard rails."""
import itertools
import json
import pathlib
import sys
import threading
from typing import Dict, List, Optional

# Add project root to Python path
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import pytest
import requests

from crm_team.config import TeamConfig
from crm_team.core.audit import AuditLog
from crm_team.core.ban_coordinator import BanCoordinator
from crm_team.core.errors import ConflictError, IdentityConflictError, NotFoundError
from crm_team.core.identity import CreatedAccount, IdentityAccount, generate_secret
from crm_team.core.lifecycle_service import MembershipLifecycleService
from crm_team.core.membership import MembershipRecord, MembershipStatus, NewMembership
from crm_team.core.membership.store import utcnow_iso
from crm_team.core.reconciliation import ReconciliationAuditor


# ─────────────────────────────────────────────────────────────────────────────
# Network Guard Rails
# ─────────────────────────────────────────────────────────────────────────────
class StubResponse:
    """Minimal stand-in for requests.Response."""

    def __init__(self, payload=None, status_code: int = 200, headers: Optional[dict] = None, url: str = "http://stub"):
        self._payload = payload
        self.status_code = status_code
        self.headers = headers or {}
        self.url = url
        self.text = json.dumps(payload) if payload is not None else ""

    def json(self):
        if self._payload is None:
            raise ValueError("No JSON body")
        return self._payload


@pytest.fixture(autouse=True)
def _block_network(monkeypatch):
    """Prevent unit tests from hitting live endpoints.

    Tests exercising the HTTP clients install their own stubs on top.
    """
    def _unexpected(method):
        def _call(url, *args, **kwargs):
            raise RuntimeError(f"Unexpected HTTP {method} in unit test: {url}")
        return _call

    for method in ("get", "post", "put", "patch", "delete"):
        monkeypatch.setattr(requests, method, _unexpected(method.upper()))


@pytest.fixture
def config(tmp_path) -> TeamConfig:
    return TeamConfig(
        idp_base_url="http://idp.test",
        idp_realm="crm",
        idp_service_realm="crm",
        idp_service_client_id="svc",
        idp_service_client_secret="svc-secret",
        idp_page_size=2,
        membership_store_url="http://store.test",
        membership_store_service_key="service-key",
        membership_schema="heart",
        membership_table="team_members",
        membership_page_size=2,
        audit_log_dir=str(tmp_path / "audit"),
        audit_log_signing_key="test-signing-key",
    )


# ─────────────────────────────────────────────────────────────────────────────
# In-memory identity provider
# ─────────────────────────────────────────────────────────────────────────────
class FakeAccountService:
    """Thread-safe AccountService double backed by a dict."""

    def __init__(self, page_size: int = 2):
        self.accounts: Dict[str, IdentityAccount] = {}
        self.page_size = page_size
        self.fail_delete = False
        self.disable_calls: List[tuple] = []
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def add(self, account_id: str, email: str, disabled: bool = False) -> IdentityAccount:
        account = IdentityAccount(id=account_id, email=email, disabled=disabled,
                                  disabled_at=utcnow_iso() if disabled else None)
        self.accounts[account_id] = account
        return account

    def create_account(self, email: str, display_name: str, role: str) -> CreatedAccount:
        with self._lock:
            if any(a.email == email for a in self.accounts.values()):
                raise IdentityConflictError("A user with this email address has already been registered", 409, "/users")
            account_id = f"I{next(self._ids)}"
            self.accounts[account_id] = IdentityAccount(
                id=account_id, email=email, metadata={"display_name": display_name, "role": role}
            )
        return CreatedAccount(account_id=account_id, generated_secret=generate_secret())

    def delete_account(self, account_id: str) -> bool:
        if self.fail_delete:
            return False
        with self._lock:
            return self.accounts.pop(account_id, None) is not None

    def get_account(self, account_id: str) -> IdentityAccount:
        if account_id not in self.accounts:
            raise NotFoundError(f"Identity account '{account_id}' not found")
        return self.accounts[account_id]

    def find_by_email(self, email: str) -> Optional[IdentityAccount]:
        return next((a for a in self.accounts.values() if a.email == email), None)

    def set_disabled(self, account_id: str, disabled: bool, reason: Optional[str] = None) -> IdentityAccount:
        account = self.get_account(account_id)
        self.disable_calls.append((account_id, disabled, reason))
        if account.disabled != disabled:
            account.disabled = disabled
            account.disabled_at = utcnow_iso() if disabled else None
        return account

    def list_accounts(self, page_token: Optional[str] = None):
        first = int(page_token) if page_token else 0
        page = list(self.accounts.values())[first:first + self.page_size]
        next_token = str(first + len(page)) if len(page) >= self.page_size else None
        return page, next_token

    def iter_accounts(self):
        token = None
        while True:
            page, token = self.list_accounts(token)
            yield from page
            if not token:
                return


# ─────────────────────────────────────────────────────────────────────────────
# In-memory membership store
# ─────────────────────────────────────────────────────────────────────────────
class InMemoryMembershipStore:
    """MembershipStore double enforcing the (tenant, identity) uniqueness."""

    def __init__(self):
        self.records: Dict[str, MembershipRecord] = {}
        self.fail_insert: Optional[Exception] = None
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def add(self, record_id: str, tenant_id: str, identity_account_id: Optional[str],
            status: MembershipStatus = MembershipStatus.ACTIVE, email: str = "member@x.com") -> MembershipRecord:
        record = MembershipRecord(
            id=record_id, tenant_id=tenant_id, identity_account_id=identity_account_id,
            display_name="Member", email=email, role="closer", status=status,
            created_at=utcnow_iso(), updated_at=utcnow_iso(),
        )
        self.records[record_id] = record
        return record

    def _scoped(self, tenant_id: Optional[str]):
        return [r for r in self.records.values() if tenant_id is None or r.tenant_id == tenant_id]

    def find_by_id(self, membership_id, tenant_id=None):
        return next((r for r in self._scoped(tenant_id) if r.id == membership_id), None)

    def find_by_identity_account_id(self, account_id, tenant_id=None):
        return next((r for r in self._scoped(tenant_id) if r.identity_account_id == account_id), None)

    def get(self, membership_id, tenant_id=None):
        record = self.find_by_id(membership_id, tenant_id)
        if record is None:
            raise NotFoundError(f"Membership '{membership_id}' not found")
        return record

    def insert(self, membership: NewMembership) -> MembershipRecord:
        if self.fail_insert is not None:
            raise self.fail_insert
        with self._lock:
            for record in self.records.values():
                if (record.tenant_id == membership.tenant_id
                        and record.identity_account_id == membership.identity_account_id):
                    raise ConflictError("duplicate key value violates unique constraint")
            record_id = f"M{next(self._ids)}"
            now = utcnow_iso()
            record = MembershipRecord.from_row({**membership.to_row(), "id": record_id,
                                                "created_at": now, "updated_at": now})
            self.records[record_id] = record
        return record

    def update_status(self, membership_id, status, metadata=None, tenant_id=None):
        record = self.get(membership_id, tenant_id)
        record.status = MembershipStatus(status)
        if metadata is not None:
            record.metadata = dict(metadata)
        record.updated_at = utcnow_iso()
        return record

    def update_metadata(self, membership_id, metadata, tenant_id=None):
        record = self.get(membership_id, tenant_id)
        record.metadata = dict(metadata)
        record.updated_at = utcnow_iso()
        return record

    def list_by_status(self, status, *, exclude=False, tenant_id=None):
        status = MembershipStatus(status)
        return [r for r in self._scoped(tenant_id) if (r.status != status) == exclude]


# ─────────────────────────────────────────────────────────────────────────────
# Wired services
# ─────────────────────────────────────────────────────────────────────────────
@pytest.fixture
def accounts() -> FakeAccountService:
    return FakeAccountService()


@pytest.fixture
def store() -> InMemoryMembershipStore:
    return InMemoryMembershipStore()


@pytest.fixture
def audit_log(config) -> AuditLog:
    return AuditLog(config)


@pytest.fixture
def ban_coordinator(accounts, store) -> BanCoordinator:
    return BanCoordinator(accounts, store)


@pytest.fixture
def lifecycle(accounts, store, ban_coordinator, config, audit_log) -> MembershipLifecycleService:
    return MembershipLifecycleService(accounts, store, ban_coordinator, config, audit_log=audit_log)


@pytest.fixture
def auditor(accounts, store, ban_coordinator) -> ReconciliationAuditor:
    return ReconciliationAuditor(accounts, store, ban_coordinator=ban_coordinator)
