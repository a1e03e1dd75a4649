"""Lifecycle operations and their allowed membership transitions."""
from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, Optional

from crm_team.core.errors import InvalidTransitionError
from crm_team.core.membership.models import MembershipStatus

REMOVED_FROM_TEAM = "removed_from_team"


class LifecycleOperation(str, Enum):
    BLACKLIST = "blacklist"
    REMOVE = "remove"
    RESTORE = "restore"


@dataclass(frozen=True)
class Transition:
    """Effect of one lifecycle operation.

    Attributes:
        allowed_from: Statuses the operation accepts (target status included,
            so repeating a call converges instead of failing)
        target: Resulting membership status
        identity_disabled: Desired identity flag, None when identity is untouched
    """
    allowed_from: FrozenSet[MembershipStatus]
    target: MembershipStatus
    identity_disabled: Optional[bool]


TRANSITIONS: Dict[LifecycleOperation, Transition] = {
    # Blacklisted members keep their identity enabled
    LifecycleOperation.BLACKLIST: Transition(
        allowed_from=frozenset({MembershipStatus.ACTIVE, MembershipStatus.BLACKLISTED}),
        target=MembershipStatus.BLACKLISTED,
        identity_disabled=None,
    ),
    LifecycleOperation.REMOVE: Transition(
        allowed_from=frozenset(MembershipStatus),
        target=MembershipStatus.REMOVED,
        identity_disabled=True,
    ),
    LifecycleOperation.RESTORE: Transition(
        allowed_from=frozenset({MembershipStatus.REMOVED, MembershipStatus.ACTIVE}),
        target=MembershipStatus.ACTIVE,
        identity_disabled=False,
    ),
}


def _validate_table() -> None:
    missing = set(LifecycleOperation) - set(TRANSITIONS)
    if missing:
        raise RuntimeError(f"Lifecycle operations without a transition: {sorted(op.value for op in missing)}")
    for op, transition in TRANSITIONS.items():
        if transition.target not in transition.allowed_from:
            raise RuntimeError(f"Transition '{op.value}' is not idempotent: target not in allowed_from")


_validate_table()


def transition_for(operation: LifecycleOperation, current: MembershipStatus) -> Transition:
    """Look up the transition for ``operation`` from ``current``.

    Raises:
        InvalidTransitionError: Operation not allowed from ``current``
    """
    transition = TRANSITIONS[operation]
    if current not in transition.allowed_from:
        raise InvalidTransitionError(
            f"Cannot {operation.value} a membership with status '{MembershipStatus(current).value}'"
        )
    return transition


def identity_should_be_disabled(status: MembershipStatus) -> bool:
    """Identity flag implied by a membership status."""
    return MembershipStatus(status) is MembershipStatus.REMOVED
