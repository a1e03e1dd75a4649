"""Typed, tenant-scoped CRUD over the membership table."""
from __future__ import annotations
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from crm_team.config import TeamConfig
from crm_team.core.errors import NotFoundError

from .client import MembershipStoreClient
from .models import MembershipRecord, MembershipStatus, NewMembership

logger = logging.getLogger(__name__)


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class MembershipStore:
    """Membership table operations.

    Every method accepts an optional ``tenant_id``; when given, the query is
    restricted to that tenant's partition. ``identity_account_id`` is not
    writable after insert.
    """

    def __init__(self, client: MembershipStoreClient, config: TeamConfig):
        self.client = client
        self.page_size = config.membership_page_size

    @staticmethod
    def _scope(params: Dict[str, Any], tenant_id: Optional[str]) -> Dict[str, Any]:
        if tenant_id:
            params["tenant_id"] = f"eq.{tenant_id}"
        return params

    def _select_one(self, params: Dict[str, Any]) -> Optional[MembershipRecord]:
        params["limit"] = 1
        rows = self.client.select(params)
        return MembershipRecord.from_row(rows[0]) if rows else None

    def find_by_id(self, membership_id: str, tenant_id: Optional[str] = None) -> Optional[MembershipRecord]:
        return self._select_one(self._scope({"select": "*", "id": f"eq.{membership_id}"}, tenant_id))

    def find_by_identity_account_id(self, account_id: str, tenant_id: Optional[str] = None) -> Optional[MembershipRecord]:
        """Return the membership linked to an identity account.

        Without ``tenant_id`` the oldest matching record across tenants is
        returned.
        """
        params = {"select": "*", "identity_account_id": f"eq.{account_id}", "order": "created_at.asc"}
        return self._select_one(self._scope(params, tenant_id))

    def get(self, membership_id: str, tenant_id: Optional[str] = None) -> MembershipRecord:
        """Like ``find_by_id`` but raises NotFoundError when absent."""
        record = self.find_by_id(membership_id, tenant_id)
        if record is None:
            raise NotFoundError(f"Membership '{membership_id}' not found")
        return record

    def insert(self, membership: NewMembership) -> MembershipRecord:
        """Insert a membership record.

        Raises:
            ConflictError: Identity account already linked in this tenant
        """
        now = utcnow_iso()
        row = membership.to_row()
        row["created_at"] = now
        row["updated_at"] = now
        stored = self.client.insert(row)
        record = MembershipRecord.from_row(stored)
        logger.info("Membership %s inserted for tenant %s", record.id, record.tenant_id)
        return record

    def update_status(
        self,
        membership_id: str,
        status: MembershipStatus,
        metadata: Optional[Dict[str, Any]] = None,
        tenant_id: Optional[str] = None,
    ) -> MembershipRecord:
        """Set status (and optionally replace metadata).

        Raises:
            NotFoundError: No matching record
        """
        changes: Dict[str, Any] = {"status": MembershipStatus(status).value}
        if metadata is not None:
            changes["metadata"] = metadata
        return self._update(membership_id, changes, tenant_id)

    def update_metadata(self, membership_id: str, metadata: Dict[str, Any], tenant_id: Optional[str] = None) -> MembershipRecord:
        """Replace the metadata map."""
        return self._update(membership_id, {"metadata": metadata}, tenant_id)

    def list_by_status(
        self,
        status: MembershipStatus,
        *,
        exclude: bool = False,
        tenant_id: Optional[str] = None,
    ) -> List[MembershipRecord]:
        """List records with (or, with ``exclude=True``, without) the given status.

        Drains every page.
        """
        operator = "neq" if exclude else "eq"
        records: List[MembershipRecord] = []
        offset = 0
        while True:
            params = self._scope(
                {
                    "select": "*",
                    "status": f"{operator}.{MembershipStatus(status).value}",
                    "order": "id.asc",
                    "limit": self.page_size,
                    "offset": offset,
                },
                tenant_id,
            )
            rows = self.client.select(params)
            records.extend(MembershipRecord.from_row(row) for row in rows)
            if len(rows) < self.page_size:
                return records
            offset += len(rows)

    def _update(self, membership_id: str, changes: Dict[str, Any], tenant_id: Optional[str]) -> MembershipRecord:
        changes["updated_at"] = utcnow_iso()
        rows = self.client.update(self._scope({"id": f"eq.{membership_id}"}, tenant_id), changes)
        if not rows:
            raise NotFoundError(f"Membership '{membership_id}' not found")
        return MembershipRecord.from_row(rows[0])
