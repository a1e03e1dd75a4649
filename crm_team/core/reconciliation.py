"""Reconciliation between membership status and identity disabled flags.

Read-only batch comparison of the two stores. Divergence is returned as data
(``ReconciliationReport``), never raised; only infrastructure failures abort a
run. ``remediate()`` is the one path that writes, and only when called.
"""
from __future__ import annotations
import json
import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

from crm_team.core.audit import AuditLog
from crm_team.core.ban_coordinator import BanCoordinator
from crm_team.core.errors import TeamError
from crm_team.core.identity import AccountService
from crm_team.core.membership import MembershipRecord, MembershipStatus, MembershipStore

logger = logging.getLogger(__name__)


@dataclass
class RemovedWithoutDisable:
    membership_id: str
    tenant_id: str
    identity_account_id: Optional[str]
    status: str
    metadata_flags: str


@dataclass
class DisabledWithoutRemoved:
    identity_account_id: str
    email: str
    membership_id: Optional[str]
    tenant_id: Optional[str]
    membership_status: Optional[str]
    disabled_at: Optional[str]


@dataclass
class ReconciliationReport:
    """Divergence found by one auditor run.

    ``no_identity_to_verify`` lists removed memberships without a linked
    identity account; it is informational and does not affect ``clean``.
    """
    tenant_id: Optional[str] = None
    removed_without_disable: List[RemovedWithoutDisable] = field(default_factory=list)
    disabled_without_removed: List[DisabledWithoutRemoved] = field(default_factory=list)
    no_identity_to_verify: List[RemovedWithoutDisable] = field(default_factory=list)
    memberships_checked: int = 0
    accounts_checked: int = 0

    @property
    def clean(self) -> bool:
        return not self.removed_without_disable and not self.disabled_without_removed

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tenant_id": self.tenant_id,
            "clean": self.clean,
            "memberships_checked": self.memberships_checked,
            "accounts_checked": self.accounts_checked,
            "removed_without_disable": [asdict(row) for row in self.removed_without_disable],
            "disabled_without_removed": [asdict(row) for row in self.disabled_without_removed],
            "no_identity_to_verify": [asdict(row) for row in self.no_identity_to_verify],
        }

    def render(self) -> str:
        """Human-readable report (one table per divergence set)."""
        lines: List[str] = []
        sections = (
            ("Removed members whose identity account is not disabled", self.removed_without_disable),
            ("Disabled identity accounts whose membership is not removed", self.disabled_without_removed),
            ("Removed members without a linked identity account (not verifiable)", self.no_identity_to_verify),
        )
        for title, rows in sections:
            if not rows:
                lines.append(f"OK  {title}: none.")
                continue
            lines.append(f"!!  {title} ({len(rows)})")
            for row in rows:
                cells = ", ".join(f"{key}={value}" for key, value in asdict(row).items())
                lines.append(f"    - {cells}")
        if self.clean:
            lines.append("No divergence found.")
        else:
            lines.append("Divergence found. Re-run remove/restore for the listed members or correct them manually.")
        return "\n".join(lines)


@dataclass
class RemediationOutcome:
    membership_id: str
    identity_account_id: Optional[str]
    disabled: Optional[bool] = None
    success: bool = True
    error: Optional[str] = None


class ReconciliationAuditor:
    """Compares both stores and reports divergence."""

    def __init__(
        self,
        accounts: AccountService,
        store: MembershipStore,
        ban_coordinator: Optional[BanCoordinator] = None,
        audit_log: Optional[AuditLog] = None,
    ):
        self.accounts = accounts
        self.store = store
        self.ban_coordinator = ban_coordinator
        self.audit_log = audit_log

    def run(self, tenant_id: Optional[str] = None) -> ReconciliationReport:
        """Compute the divergence report.

        Args:
            tenant_id: Restrict to one tenant. Disabled accounts with no
                membership at all can only be attributed in a global run, so
                they are reported only when ``tenant_id`` is None.

        Raises:
            MembershipStoreError, IdentityProviderError, OperationTimeoutError:
                a store could not be read
        """
        removed = self.store.list_by_status(MembershipStatus.REMOVED, tenant_id=tenant_id)
        not_removed = self.store.list_by_status(MembershipStatus.REMOVED, exclude=True, tenant_id=tenant_id)

        accounts_checked = 0
        disabled_accounts = {}
        for account in self.accounts.iter_accounts():
            accounts_checked += 1
            if account.disabled:
                disabled_accounts[account.id] = account

        report = ReconciliationReport(
            tenant_id=tenant_id,
            memberships_checked=len(removed) + len(not_removed),
            accounts_checked=accounts_checked,
        )

        removed_identity_ids = set()
        for member in removed:
            if not member.identity_account_id:
                report.no_identity_to_verify.append(_removed_row(member))
                continue
            removed_identity_ids.add(member.identity_account_id)
            if member.identity_account_id not in disabled_accounts:
                report.removed_without_disable.append(_removed_row(member))

        not_removed_by_identity: Dict[str, List[MembershipRecord]] = {}
        for member in not_removed:
            if member.identity_account_id:
                not_removed_by_identity.setdefault(member.identity_account_id, []).append(member)

        for account_id, account in disabled_accounts.items():
            linked = not_removed_by_identity.get(account_id, [])
            for member in linked:
                report.disabled_without_removed.append(
                    DisabledWithoutRemoved(
                        identity_account_id=account_id,
                        email=account.email,
                        membership_id=member.id,
                        tenant_id=member.tenant_id,
                        membership_status=member.status.value,
                        disabled_at=account.disabled_at,
                    )
                )
            if not linked and tenant_id is None and account_id not in removed_identity_ids:
                report.disabled_without_removed.append(
                    DisabledWithoutRemoved(
                        identity_account_id=account_id,
                        email=account.email,
                        membership_id=None,
                        tenant_id=None,
                        membership_status=None,
                        disabled_at=account.disabled_at,
                    )
                )

        logger.info(
            "Reconciliation checked %d memberships and %d accounts: %d removed-without-disable, %d disabled-without-removed",
            report.memberships_checked,
            report.accounts_checked,
            len(report.removed_without_disable),
            len(report.disabled_without_removed),
        )
        if self.audit_log is not None:
            self.audit_log.safe_log(
                "reconciliation_run",
                tenant_id or "*",
                tenant_id=tenant_id,
                details={
                    "clean": report.clean,
                    "removed_without_disable": len(report.removed_without_disable),
                    "disabled_without_removed": len(report.disabled_without_removed),
                    "no_identity_to_verify": len(report.no_identity_to_verify),
                },
            )
        return report

    def remediate(self, report: ReconciliationReport, operator: str = "reconciliation") -> List[RemediationOutcome]:
        """Align identity accounts with membership status for every divergent entry.

        The membership status is authoritative. Entries without a linked
        membership are skipped (manual correction). Failures are recorded in
        the outcome and the batch continues.
        """
        if self.ban_coordinator is None:
            raise RuntimeError("Remediation requires a BanCoordinator")

        membership_ids: List[str] = [row.membership_id for row in report.removed_without_disable]
        membership_ids.extend(row.membership_id for row in report.disabled_without_removed if row.membership_id)

        outcomes: List[RemediationOutcome] = []
        for membership_id in membership_ids:
            outcome = RemediationOutcome(membership_id=membership_id, identity_account_id=None)
            try:
                member = self.store.get(membership_id)
                outcome.identity_account_id = member.identity_account_id
                account = self.ban_coordinator.align_identity(member)
                outcome.disabled = account.disabled if account else None
            except TeamError as exc:
                logger.error("Remediation failed for membership %s: %s", membership_id, exc)
                outcome.success = False
                outcome.error = str(exc)
            outcomes.append(outcome)

        if self.audit_log is not None:
            self.audit_log.safe_log(
                "reconciliation_remediation",
                report.tenant_id or "*",
                operator=operator,
                tenant_id=report.tenant_id,
                details={"outcomes": [asdict(outcome) for outcome in outcomes]},
                success=all(outcome.success for outcome in outcomes),
            )
        return outcomes


def _removed_row(member: MembershipRecord) -> RemovedWithoutDisable:
    return RemovedWithoutDisable(
        membership_id=member.id,
        tenant_id=member.tenant_id,
        identity_account_id=member.identity_account_id,
        status=member.status.value,
        metadata_flags=json.dumps(member.metadata, sort_keys=True, default=str),
    )
