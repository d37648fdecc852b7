"""Audit log for administrative and payment actions."""

from typing import Any

from creditledger.models.audit_log import AuditEvent
from creditledger.stores import get_backend


async def log_event(
    actor_id: str | None,
    event_type: str,
    entity_type: str,
    entity_id: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> None:
    """Append to the audit log."""
    await get_backend().append_audit(
        AuditEvent(
            actor_id=actor_id,
            event_type=event_type,
            entity_type=entity_type,
            entity_id=entity_id,
            metadata=metadata or {},
        )
    )
