"""
Audit logging for access enforcement.

Emits structured audit events for access denials, preview grants and every
use of the override identity. Events go to a pluggable sink; the default
sink writes structured log records on the "access_gate.audit" logger.

Sink failures are logged and never change a decision.
"""

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("access_gate.audit")


class AuditAction(str, Enum):
    ACCESS_DENIED = "access.denied"
    ACCESS_PREVIEW_GRANTED = "access.preview_granted"
    OVERRIDE_IDENTITY_USED = "access.override_identity_used"
    PRINCIPAL_INVALIDATED = "access.principal_invalidated"


@dataclass
class AccessAuditEvent:
    action: AuditAction
    principal_id: Optional[str]
    resource_type: Optional[str] = None
    resource_id: Optional[str] = None
    surface: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    occurred_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> dict:
        payload = asdict(self)
        payload["action"] = self.action.value
        return payload


AuditSink = Callable[[AccessAuditEvent], None]


def log_sink(event: AccessAuditEvent) -> None:
    """Default sink: structured log record."""
    level = logging.INFO
    if event.action in (AuditAction.ACCESS_DENIED, AuditAction.OVERRIDE_IDENTITY_USED):
        level = logging.WARNING
    audit_logger.log(level, event.action.value, extra=event.to_dict())


class AccessAuditLogger:
    """Forwards audit events to a sink without letting sink failures escape."""

    def __init__(self, sink: Optional[AuditSink] = None) -> None:
        self._sink = sink or log_sink

    def emit(self, event: AccessAuditEvent) -> None:
        try:
            self._sink(event)
        except Exception as e:
            logger.error(
                "Failed to emit access audit event",
                extra={"error": str(e), "audit_action": event.action.value},
            )

    def log_access_denied(
        self,
        *,
        principal_id: Optional[str],
        resource_type: str,
        resource_id: Optional[str],
        reason: Optional[str],
        required_action: Optional[str],
        surface: str,
        path: Optional[str] = None,
    ) -> None:
        self.emit(
            AccessAuditEvent(
                action=AuditAction.ACCESS_DENIED,
                principal_id=principal_id,
                resource_type=resource_type,
                resource_id=resource_id,
                surface=surface,
                metadata={"reason": reason, "required_action": required_action, "path": path},
            )
        )

    def log_preview_granted(
        self,
        *,
        principal_id: Optional[str],
        resource_type: str,
        resource_id: Optional[str],
        surface: str,
    ) -> None:
        self.emit(
            AccessAuditEvent(
                action=AuditAction.ACCESS_PREVIEW_GRANTED,
                principal_id=principal_id,
                resource_type=resource_type,
                resource_id=resource_id,
                surface=surface,
            )
        )

    def log_override_identity_used(self, *, principal_id: str, email: Optional[str]) -> None:
        self.emit(
            AccessAuditEvent(
                action=AuditAction.OVERRIDE_IDENTITY_USED,
                principal_id=principal_id,
                resource_type="principal",
                resource_id=principal_id,
                surface="resolver",
                metadata={"email": email},
            )
        )

    def log_principal_invalidated(self, *, principal_id: str, source: str) -> None:
        self.emit(
            AccessAuditEvent(
                action=AuditAction.PRINCIPAL_INVALIDATED,
                principal_id=principal_id,
                resource_type="principal",
                resource_id=principal_id,
                surface=source,
            )
        )
