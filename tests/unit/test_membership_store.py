"""Unit tests for crm_team/core/membership (PostgREST client + store)."""
import pytest
import requests

from conftest import StubResponse
from crm_team.core.errors import ConflictError, MembershipStoreError, NotFoundError, OperationTimeoutError
from crm_team.core.membership import MembershipStatus, MembershipStore, MembershipStoreClient, NewMembership


def row(record_id="M1", tenant_id="T1", identity="I1", status="active", metadata=None):
    return {
        "id": record_id,
        "tenant_id": tenant_id,
        "identity_account_id": identity,
        "display_name": "Ana",
        "email": "a@x.com",
        "role": "closer",
        "status": status,
        "metadata": metadata if metadata is not None else {},
        "created_at": "2024-01-01T00:00:00+00:00",
        "updated_at": "2024-01-01T00:00:00+00:00",
    }


class PostgrestStub:
    """Answers GET/POST/PATCH with queued responses and records each call."""

    def __init__(self, monkeypatch):
        self.calls = []
        self.responses = []
        for method in ("get", "post", "patch"):
            monkeypatch.setattr(requests, method, self._handler(method.upper()))

    def _handler(self, method):
        def _call(url, **kwargs):
            self.calls.append((method, url, kwargs))
            response = self.responses.pop(0)
            if isinstance(response, Exception):
                raise response
            return response
        return _call

    def params(self, index=-1):
        return self.calls[index][2].get("params")


@pytest.fixture
def http(monkeypatch):
    return PostgrestStub(monkeypatch)


@pytest.fixture
def db(config):
    return MembershipStore(MembershipStoreClient(config), config)


# ============================================================================
# Client
# ============================================================================

def test_select_targets_schema_and_table(db, http):
    http.responses.append(StubResponse([row()]))

    record = db.find_by_id("M1")

    method, url, kwargs = http.calls[0]
    assert url == "http://store.test/rest/v1/team_members"
    assert kwargs["headers"]["Accept-Profile"] == "heart"
    assert kwargs["headers"]["apikey"] == "service-key"
    assert kwargs["timeout"] == 5.0
    assert kwargs["params"] == {"select": "*", "id": "eq.M1", "limit": 1}
    assert record.status is MembershipStatus.ACTIVE


def test_tenant_scope_adds_filter(db, http):
    http.responses.append(StubResponse([]))

    assert db.find_by_id("M1", tenant_id="T2") is None
    assert http.params()["tenant_id"] == "eq.T2"


def test_insert_conflict_from_status(db, http):
    http.responses.append(StubResponse({"code": "23505", "message": "duplicate key value"}, status_code=409))

    with pytest.raises(ConflictError, match="duplicate key"):
        db.insert(NewMembership("T1", "I1", "Ana", "a@x.com", "closer"))


def test_insert_conflict_from_sqlstate(db, http):
    http.responses.append(StubResponse({"code": "23505", "message": "duplicate key value"}, status_code=400))

    with pytest.raises(ConflictError):
        db.insert(NewMembership("T1", "I1", "Ana", "a@x.com", "closer"))


def test_server_error_maps_to_store_error(db, http):
    http.responses.append(StubResponse({"message": "relation does not exist"}, status_code=500))

    with pytest.raises(MembershipStoreError, match="relation does not exist"):
        db.find_by_id("M1")


def test_timeout_maps_to_operation_timeout(db, http):
    http.responses.append(requests.Timeout("read timed out"))

    with pytest.raises(OperationTimeoutError):
        db.find_by_id("M1")


def test_unreachable_store(db, http):
    http.responses.append(requests.ConnectionError("refused"))

    with pytest.raises(MembershipStoreError, match="unreachable"):
        db.find_by_id("M1")


# ============================================================================
# Store
# ============================================================================

def test_insert_stamps_timestamps_and_returns_record(db, http):
    http.responses.append(StubResponse([row(metadata={"created_by": "owner"})], status_code=201))

    record = db.insert(NewMembership("T1", "I1", "Ana", "a@x.com", "closer", metadata={"created_by": "owner"}))

    method, _, kwargs = http.calls[0]
    assert method == "POST"
    assert kwargs["headers"]["Prefer"] == "return=representation"
    assert kwargs["headers"]["Content-Profile"] == "heart"
    assert kwargs["json"]["status"] == "active"
    assert kwargs["json"]["created_at"] == kwargs["json"]["updated_at"]
    assert record.id == "M1"
    assert record.metadata == {"created_by": "owner"}


def test_get_missing_raises_not_found(db, http):
    http.responses.append(StubResponse([]))

    with pytest.raises(NotFoundError):
        db.get("M404")


def test_find_by_identity_orders_by_creation(db, http):
    http.responses.append(StubResponse([row()]))

    db.find_by_identity_account_id("I1")

    params = http.params()
    assert params["identity_account_id"] == "eq.I1"
    assert params["order"] == "created_at.asc"
    assert "tenant_id" not in params


def test_update_status_sends_patch_with_updated_at(db, http):
    http.responses.append(StubResponse([row(status="removed", metadata={"removed": True})]))

    record = db.update_status("M1", MembershipStatus.REMOVED, metadata={"removed": True}, tenant_id="T1")

    method, _, kwargs = http.calls[0]
    assert method == "PATCH"
    assert kwargs["params"] == {"id": "eq.M1", "tenant_id": "eq.T1"}
    assert kwargs["json"]["status"] == "removed"
    assert kwargs["json"]["metadata"] == {"removed": True}
    assert "updated_at" in kwargs["json"]
    assert "identity_account_id" not in kwargs["json"]
    assert record.status is MembershipStatus.REMOVED


def test_update_matching_nothing_raises_not_found(db, http):
    http.responses.append(StubResponse([]))

    with pytest.raises(NotFoundError):
        db.update_metadata("M404", {"note": "x"})


def test_list_by_status_drains_pages(db, http):
    http.responses.extend([
        StubResponse([row("M1", status="removed"), row("M2", status="removed")]),
        StubResponse([row("M3", status="removed")]),
    ])

    records = db.list_by_status(MembershipStatus.REMOVED)

    assert [r.id for r in records] == ["M1", "M2", "M3"]
    assert [call[2]["params"]["offset"] for call in http.calls] == [0, 2]
    assert http.params(0)["status"] == "eq.removed"


def test_list_excluding_status(db, http):
    http.responses.append(StubResponse([row("M1")]))

    db.list_by_status(MembershipStatus.REMOVED, exclude=True, tenant_id="T1")

    assert http.params()["status"] == "neq.removed"
    assert http.params()["tenant_id"] == "eq.T1"


def test_non_object_metadata_read_as_empty(db, http):
    http.responses.append(StubResponse([row(metadata=["legacy"])]))

    assert db.get("M1").metadata == {}
