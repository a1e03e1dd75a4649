"""Typed exceptions for team-membership lifecycle operations.

Every error carries an HTTP-equivalent ``status`` and renders to a structured
payload via ``to_dict()`` so upstream request handling can return it as-is.
"""
from __future__ import annotations
from typing import Any, Dict, List, Optional


class TeamError(Exception):
    """Base exception for all membership lifecycle operations.

    Attributes:
        message: Human-readable error message
        compensation_failures: Rollback failures recorded while this error
            propagated (warnings only, never raised on their own)
    """

    status = 500
    kind = "team_error"

    def __init__(self, message: str = ""):
        self.message = message
        self.compensation_failures: List["CompensationFailure"] = []
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a structured error response."""
        payload: Dict[str, Any] = {
            "error": self.kind,
            "status": self.status,
            "message": self.message,
        }
        if self.compensation_failures:
            payload["warnings"] = [str(failure) for failure in self.compensation_failures]
        return payload


class IdentityProviderError(TeamError):
    """Identity provider rejected the operation.

    Attributes:
        status_code: HTTP status returned by the provider (None on transport errors)
        endpoint: Provider endpoint that failed
    """

    status = 502
    kind = "identity_provider_error"

    def __init__(self, message: str, status_code: Optional[int] = None, endpoint: str = ""):
        self.status_code = status_code
        self.endpoint = endpoint
        super().__init__(message)

    def __str__(self) -> str:
        if self.status_code is None:
            return self.message
        return f"[{self.status_code}] {self.endpoint}: {self.message}"


class ConflictError(TeamError):
    """Uniqueness invariant would be violated."""

    status = 409
    kind = "conflict"


class IdentityConflictError(IdentityProviderError, ConflictError):
    """Identity provider refused to create a duplicate account."""

    status = 409
    kind = "conflict"


class InvalidTransitionError(ConflictError):
    """Operation is not allowed from the membership's current status."""

    kind = "invalid_transition"


class TenantResolutionError(TeamError):
    """No tenant context could be derived for the request."""

    status = 400
    kind = "tenant_resolution_error"


class NotFoundError(TeamError):
    """Target membership or identity account does not exist."""

    status = 404
    kind = "not_found"


class OperationTimeoutError(TeamError, TimeoutError):
    """External call exceeded its deadline."""

    status = 504
    kind = "timeout"


class MembershipStoreError(TeamError):
    """Membership store is unreachable or failed the request."""

    status = 503
    kind = "membership_store_error"


class CompensationFailure(TeamError):
    """A best-effort rollback action failed.

    Never raised over the original error: it is attached to that error's
    ``compensation_failures`` and logged.
    """

    kind = "compensation_failure"

    def __init__(self, step: str, cause: Optional[BaseException] = None):
        self.step = step
        self.cause = cause
        detail = f": {cause}" if cause else ""
        super().__init__(f"Compensation for step '{step}' failed{detail}")
