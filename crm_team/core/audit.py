"""Signed audit trail for team membership lifecycle events."""

from __future__ import annotations
import datetime
import hashlib
import hmac
import json
import logging
from pathlib import Path
from typing import Any, Literal

from crm_team.config import TeamConfig

logger = logging.getLogger(__name__)

AUDIT_LOG_FILENAME = "team-events.jsonl"

EventType = Literal[
    "member_invited", "member_blacklisted", "member_removed", "member_restored",
    "reconciliation_run", "reconciliation_remediation",
]


class AuditLog:
    """Append-only JSONL audit trail, one HMAC-SHA256 signed event per line.

    Generated secrets must never be passed in ``details``.
    """

    def __init__(self, config: TeamConfig):
        self.log_dir = Path(config.audit_log_dir)
        self.log_file = self.log_dir / AUDIT_LOG_FILENAME
        self._signing_key = config.audit_log_signing_key.strip().encode("utf-8")

    def _ensure_audit_dir(self) -> None:
        """Create audit directory with restricted permissions."""
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.log_dir.chmod(0o700)

    def _sign_event(self, event: dict[str, Any]) -> str:
        """Generate HMAC-SHA256 signature for audit event."""
        if not self._signing_key:
            return ""
        # Canonical JSON representation for signing
        canonical = json.dumps(event, sort_keys=True, separators=(",", ":"))
        return hmac.new(self._signing_key, canonical.encode("utf-8"), hashlib.sha256).hexdigest()

    def log_event(
        self,
        event_type: EventType,
        target: str,
        *,
        operator: str = "system",
        tenant_id: str | None = None,
        details: dict[str, Any] | None = None,
        success: bool = True,
    ) -> None:
        """Append a lifecycle event to the audit trail with timestamp and signature.

        Args:
            event_type: Lifecycle operation
            target: Affected membership id or email
            operator: Who performed the operation
            tenant_id: Tenant the membership belongs to
            details: Additional context (account id, reason, error)
            success: Whether the operation succeeded
        """
        self._ensure_audit_dir()

        event = {
            "timestamp": datetime.datetime.now(datetime.timezone.utc).isoformat(),
            "event_type": event_type,
            "tenant_id": tenant_id,
            "target": target,
            "operator": operator,
            "success": success,
            "details": details or {},
        }

        signature = self._sign_event(event)
        if signature:
            event["signature"] = signature

        with self.log_file.open("a", encoding="utf-8") as f:
            f.write(json.dumps(event, ensure_ascii=False) + "\n")

        self.log_file.chmod(0o600)

    def safe_log(
        self,
        event_type: EventType,
        target: str,
        *,
        operator: str = "system",
        tenant_id: str | None = None,
        details: dict[str, Any] | None = None,
        success: bool = True,
    ) -> bool:
        """Log an event without ever raising.

        Audit failures must not break the lifecycle operation that triggered
        them; they are reported through the logger instead.

        Returns:
            True if event was logged successfully, False if logging failed
        """
        try:
            self.log_event(
                event_type,
                target,
                operator=operator,
                tenant_id=tenant_id,
                details=details,
                success=success,
            )
            return True
        except (OSError, TypeError, ValueError) as e:
            logger.warning("Failed to log %s event for %s: %s", event_type, target, e)
            return False

    def verify(self) -> tuple[int, int]:
        """Check every event's signature against the configured key.

        Unsigned, unparseable or tampered lines count towards the total but
        not towards the valid events; their line numbers are logged.

        Returns:
            Tuple of (total_events, valid_signatures)
        """
        if not self.log_file.exists():
            return 0, 0

        total = valid = 0
        invalid_lines = []
        with self.log_file.open("r", encoding="utf-8") as f:
            for lineno, line in enumerate(f, start=1):
                if not line.strip():
                    continue
                total += 1
                if self._has_valid_signature(line):
                    valid += 1
                else:
                    invalid_lines.append(lineno)

        if invalid_lines:
            logger.warning("Audit trail %s: %d unverifiable event(s) at lines %s", self.log_file, len(invalid_lines), invalid_lines)
        return total, valid

    def _has_valid_signature(self, line: str) -> bool:
        try:
            event = json.loads(line)
        except json.JSONDecodeError:
            return False
        if not isinstance(event, dict):
            return False
        stored = event.pop("signature", "")
        expected = self._sign_event(event)
        if not isinstance(stored, str) or not stored or not expected:
            return False
        return hmac.compare_digest(stored, expected)
