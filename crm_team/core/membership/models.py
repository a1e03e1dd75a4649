"""Membership record types."""
from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class MembershipStatus(str, Enum):
    """Closed set of membership states."""
    ACTIVE = "active"
    BLACKLISTED = "blacklisted"
    REMOVED = "removed"


@dataclass
class MembershipRecord:
    """A tenant's own record of a team member.

    ``identity_account_id`` is a weak reference to the identity provider
    account: set once at creation, never reassigned.
    """
    id: str
    tenant_id: str
    identity_account_id: Optional[str]
    display_name: str
    email: str
    role: str
    status: MembershipStatus = MembershipStatus.ACTIVE
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "MembershipRecord":
        """Build from a membership table row."""
        metadata = row.get("metadata")
        return cls(
            id=str(row["id"]),
            tenant_id=row["tenant_id"],
            identity_account_id=row.get("identity_account_id"),
            display_name=row.get("display_name") or "",
            email=row.get("email") or "",
            role=row.get("role") or "",
            status=MembershipStatus(row.get("status") or MembershipStatus.ACTIVE.value),
            # Legacy rows may hold arrays or null in the metadata column
            metadata=dict(metadata) if isinstance(metadata, dict) else {},
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )

    def to_row(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "identity_account_id": self.identity_account_id,
            "display_name": self.display_name,
            "email": self.email,
            "role": self.role,
            "status": self.status.value,
            "metadata": dict(self.metadata),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass(frozen=True)
class NewMembership:
    """Insert payload for a membership record."""
    tenant_id: str
    identity_account_id: Optional[str]
    display_name: str
    email: str
    role: str
    status: MembershipStatus = MembershipStatus.ACTIVE
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_row(self) -> Dict[str, Any]:
        return {
            "tenant_id": self.tenant_id,
            "identity_account_id": self.identity_account_id,
            "display_name": self.display_name,
            "email": self.email,
            "role": self.role,
            "status": self.status.value,
            "metadata": dict(self.metadata),
        }
