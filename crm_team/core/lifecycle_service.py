"""
Membership Lifecycle Service: invite, blacklist, remove, restore.

Orchestrates the identity provider and the membership store for the team
management operations invoked by upstream request handling (and the operator
CLI in ``crm_team/cli/team.py``).

Architecture:
    request handling ──┐
                       ├──> lifecycle_service.py ──> BanCoordinator ──┐
    cli/team.py      ──┘              │                               ├──> identity provider
                                      └──> Saga (invite) ─────────────┴──> membership store

Consistency across the two stores is not transactional: invite is a saga
whose compensation deletes the just-created identity account, and the
reconciliation auditor is the backstop for anything left behind.
"""

from __future__ import annotations
import logging
from dataclasses import dataclass, field
from typing import Optional

from crm_team.config import TeamConfig
from crm_team.core.audit import AuditLog, EventType
from crm_team.core.ban_coordinator import BanCoordinator
from crm_team.core.errors import (
    CompensationFailure,
    ConflictError,
    IdentityProviderError,
    OperationTimeoutError,
    TeamError,
    TenantResolutionError,
)
from crm_team.core.identity import AccountService, CreatedAccount
from crm_team.core.membership import MembershipRecord, MembershipStore, NewMembership
from crm_team.core.membership.store import utcnow_iso
from crm_team.core.saga import Saga
from crm_team.core.transitions import REMOVED_FROM_TEAM, LifecycleOperation, transition_for

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InviteRequest:
    email: str
    display_name: str
    role: str
    tenant_id: Optional[str] = None


@dataclass(frozen=True)
class InviteResult:
    """Outcome of a successful invite.

    ``generated_secret`` is returned exactly once and never persisted.
    """
    membership: MembershipRecord
    generated_secret: str = field(repr=False)

    def to_dict(self) -> dict:
        return {
            "membership_id": self.membership.id,
            "tenant_id": self.membership.tenant_id,
            "email": self.membership.email,
            "name": self.membership.display_name,
            "role": self.membership.role,
            "password": self.generated_secret,
        }


class MembershipLifecycleService:
    """Team membership lifecycle operations."""

    def __init__(
        self,
        accounts: AccountService,
        store: MembershipStore,
        ban_coordinator: BanCoordinator,
        config: TeamConfig,
        audit_log: Optional[AuditLog] = None,
    ):
        self.accounts = accounts
        self.store = store
        self.ban_coordinator = ban_coordinator
        self.config = config
        self.audit_log = audit_log

    # ─────────────────────────────────────────────────────────────────────
    # Invite
    # ─────────────────────────────────────────────────────────────────────

    def invite(self, requester_id: str, request: InviteRequest) -> InviteResult:
        """Create an identity account and its membership record.

        Args:
            requester_id: Identity account id of the member issuing the invite
            request: Invite payload (tenant_id optional)

        Returns:
            InviteResult with the new membership and the generated secret

        Raises:
            TenantResolutionError: tenant_id omitted and requester has no membership
            ConflictError: Email already registered or already a member
            IdentityProviderError: Account creation rejected
        """
        tenant_id = request.tenant_id
        email = request.email.strip().lower()
        display_name = request.display_name.strip()
        role = request.role.strip()

        try:
            tenant_id = tenant_id or self._resolve_tenant_id(requester_id)
            saga = Saga("invite")
            saga.add_step(
                "create_identity",
                lambda _: self._create_identity(email, display_name, role),
                compensation=self._discard_account,
            )
            saga.add_step(
                "insert_membership",
                lambda results: self.store.insert(
                    NewMembership(
                        tenant_id=tenant_id,
                        identity_account_id=results["create_identity"].account_id,
                        display_name=display_name,
                        email=email,
                        role=role,
                        metadata={"created_by": requester_id, "created_at": utcnow_iso()},
                    )
                ),
            )
            results = saga.run()
        except TeamError as exc:
            self._audit(
                "member_invited", email, requester_id, tenant_id,
                details={"role": role, "error": str(exc)}, success=False,
            )
            raise

        created: CreatedAccount = results["create_identity"]
        membership: MembershipRecord = results["insert_membership"]
        self._audit(
            "member_invited", membership.id, requester_id, tenant_id,
            details={"identity_account_id": created.account_id, "email": email, "role": role},
        )
        logger.info("Member %s invited to tenant %s by %s", membership.id, tenant_id, requester_id)
        return InviteResult(membership=membership, generated_secret=created.generated_secret)

    def _resolve_tenant_id(self, requester_id: str) -> str:
        requester = self.store.find_by_identity_account_id(requester_id)
        if requester is None or not requester.tenant_id:
            raise TenantResolutionError("Could not determine the tenant for this invite.")
        return requester.tenant_id

    def _discard_account(self, created: CreatedAccount) -> None:
        """Compensation for ``create_identity``."""
        if not self.accounts.delete_account(created.account_id):
            raise CompensationFailure("create_identity", RuntimeError(f"identity account {created.account_id} not deleted"))

    def _create_identity(self, email: str, display_name: str, role: str) -> CreatedAccount:
        """``create_identity`` step.

        When the provider's answer is lost (timeout, dropped connection,
        unresolvable id) the account may exist anyway; it is cleaned up before
        the error propagates.
        """
        try:
            return self.accounts.create_account(email, display_name, role)
        except TeamError as exc:
            if _outcome_unknown(exc):
                self._discard_unconfirmed_account(email, exc)
            raise

    def _discard_unconfirmed_account(self, email: str, error: TeamError) -> None:
        """Delete an account for ``email`` that no membership references.

        Failures are attached to ``error.compensation_failures``.
        """
        try:
            account = self.accounts.find_by_email(email)
            if account is None or self.store.find_by_identity_account_id(account.id) is not None:
                return
            if self.accounts.delete_account(account.id):
                logger.warning("Deleted unconfirmed identity account %s for %s", account.id, email)
                return
            failure = CompensationFailure(
                "create_identity", RuntimeError(f"identity account {account.id} not deleted")
            )
        except TeamError as lookup_error:
            failure = CompensationFailure("create_identity", lookup_error)
        logger.error("Invite cleanup: %s", failure)
        error.compensation_failures.append(failure)

    # ─────────────────────────────────────────────────────────────────────
    # Blacklist / remove / restore
    # ─────────────────────────────────────────────────────────────────────

    def blacklist(
        self,
        membership_id: str,
        requester_id: Optional[str] = None,
        tenant_id: Optional[str] = None,
    ) -> MembershipRecord:
        """Mark a membership blacklisted. The identity account stays enabled.

        Raises:
            NotFoundError: Membership does not exist
            InvalidTransitionError: Membership is removed
        """
        try:
            member = self.store.get(membership_id, tenant_id)
            transition = transition_for(LifecycleOperation.BLACKLIST, member.status)
            metadata = dict(member.metadata)
            metadata["blacklisted_at"] = utcnow_iso()
            metadata["blacklisted_by"] = requester_id
            updated = self.store.update_status(member.id, transition.target, metadata=metadata, tenant_id=tenant_id)
        except TeamError as exc:
            self._audit("member_blacklisted", membership_id, requester_id, tenant_id, details={"error": str(exc)}, success=False)
            raise
        self._audit("member_blacklisted", updated.id, requester_id, updated.tenant_id)
        return updated

    def remove(self, requester_id: str, membership_id: str, tenant_id: Optional[str] = None) -> MembershipRecord:
        """Disable the member's identity account and mark the membership removed."""
        try:
            updated = self.ban_coordinator.remove(
                membership_id, banned_by=requester_id, reason=REMOVED_FROM_TEAM, tenant_id=tenant_id
            )
        except TeamError as exc:
            self._audit("member_removed", membership_id, requester_id, tenant_id, details={"error": str(exc)}, success=False)
            raise
        self._audit(
            "member_removed", updated.id, requester_id, updated.tenant_id,
            details={"identity_account_id": updated.identity_account_id, "reason": REMOVED_FROM_TEAM},
        )
        return updated

    def restore(self, requester_id: str, membership_id: str, tenant_id: Optional[str] = None) -> MembershipRecord:
        """Re-enable the member's identity account and mark the membership active."""
        try:
            updated = self.ban_coordinator.restore(membership_id, restored_by=requester_id, tenant_id=tenant_id)
        except TeamError as exc:
            self._audit("member_restored", membership_id, requester_id, tenant_id, details={"error": str(exc)}, success=False)
            raise
        self._audit(
            "member_restored", updated.id, requester_id, updated.tenant_id,
            details={"identity_account_id": updated.identity_account_id},
        )
        return updated

    def _audit(
        self,
        event_type: EventType,
        target: str,
        operator: Optional[str],
        tenant_id: Optional[str],
        details: Optional[dict] = None,
        success: bool = True,
    ) -> None:
        if self.audit_log is None:
            return
        self.audit_log.safe_log(
            event_type,
            target,
            operator=operator or "system",
            tenant_id=tenant_id,
            details=details,
            success=success,
        )


def _outcome_unknown(exc: TeamError) -> bool:
    """True when the provider may have committed a write whose reply was lost."""
    if isinstance(exc, OperationTimeoutError):
        return True
    return isinstance(exc, IdentityProviderError) and not isinstance(exc, ConflictError) and exc.status_code is None
