"""Ban coordination between identity accounts and membership status.

Applies the identity provider's ``disabled`` flag and mirrors it into the
membership status, following ``crm_team.core.transitions.TRANSITIONS``.
The identity effect is applied first, then the membership update. Both are
idempotent, so a retry after a partial failure converges.
"""
from __future__ import annotations
import logging
from typing import Optional

from crm_team.core.errors import NotFoundError
from crm_team.core.identity import AccountService, IdentityAccount
from crm_team.core.membership import MembershipRecord, MembershipStatus, MembershipStore
from crm_team.core.membership.store import utcnow_iso
from crm_team.core.transitions import (
    REMOVED_FROM_TEAM,
    LifecycleOperation,
    identity_should_be_disabled,
    transition_for,
)

logger = logging.getLogger(__name__)

REMOVAL_METADATA_KEYS = ("removed", "removed_at", "removed_by", "ban_reason")


class BanCoordinator:
    """Remove/restore state machine spanning both stores."""

    def __init__(self, accounts: AccountService, store: MembershipStore):
        """Initialize ban coordinator.

        Args:
            accounts: Identity provider account service
            store: Membership store
        """
        self.accounts = accounts
        self.store = store

    def remove(
        self,
        membership_id: str,
        *,
        banned_by: Optional[str] = None,
        reason: str = REMOVED_FROM_TEAM,
        tenant_id: Optional[str] = None,
    ) -> MembershipRecord:
        """Disable the linked identity and mark the membership removed.

        Raises:
            NotFoundError: Membership does not exist
        """
        member = self.store.get(membership_id, tenant_id)
        transition = transition_for(LifecycleOperation.REMOVE, member.status)

        if member.identity_account_id:
            try:
                self.accounts.set_disabled(member.identity_account_id, transition.identity_disabled, reason=reason)
            except NotFoundError:
                # Account already gone: the member cannot authenticate either way
                logger.warning(
                    "Identity account %s linked to membership %s no longer exists; removing membership only",
                    member.identity_account_id,
                    member.id,
                )
        else:
            logger.warning("Membership %s has no linked identity account; skipping identity disable", member.id)

        metadata = dict(member.metadata)
        metadata["removed"] = True
        metadata["removed_at"] = utcnow_iso()
        metadata["removed_by"] = banned_by
        metadata["ban_reason"] = reason

        updated = self.store.update_status(member.id, transition.target, metadata=metadata, tenant_id=tenant_id)
        logger.info("Membership %s marked as removed", member.id)
        return updated

    def restore(
        self,
        membership_id: str,
        *,
        restored_by: Optional[str] = None,
        tenant_id: Optional[str] = None,
    ) -> MembershipRecord:
        """Re-enable the linked identity and mark the membership active.

        Raises:
            NotFoundError: Membership or its linked identity account does not exist
            InvalidTransitionError: Membership is blacklisted
        """
        member = self.store.get(membership_id, tenant_id)
        transition = transition_for(LifecycleOperation.RESTORE, member.status)

        if member.identity_account_id:
            self.accounts.set_disabled(member.identity_account_id, transition.identity_disabled)
        else:
            logger.warning("Membership %s has no linked identity account; skipping identity enable", member.id)

        metadata = {key: value for key, value in member.metadata.items() if key not in REMOVAL_METADATA_KEYS}
        if member.status is MembershipStatus.REMOVED:
            metadata["unbanned_at"] = utcnow_iso()
            metadata["unbanned_by"] = restored_by

        updated = self.store.update_status(member.id, transition.target, metadata=metadata, tenant_id=tenant_id)
        logger.info("Membership %s restored", member.id)
        return updated

    def align_identity(self, member: MembershipRecord) -> Optional[IdentityAccount]:
        """Set the identity's disabled flag to match the membership status.

        The membership itself is left untouched. Used to remediate divergence.

        Returns:
            The identity account after alignment, None when the membership has
            no linked account
        """
        if not member.identity_account_id:
            logger.warning("Membership %s has no linked identity account; nothing to align", member.id)
            return None
        disabled = identity_should_be_disabled(member.status)
        reason = (member.metadata.get("ban_reason") or REMOVED_FROM_TEAM) if disabled else None
        account = self.accounts.set_disabled(member.identity_account_id, disabled, reason=reason)
        logger.info("Identity account %s aligned to membership %s (disabled=%s)", account.id, member.id, disabled)
        return account
