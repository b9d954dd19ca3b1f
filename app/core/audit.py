"""Audit log for balance- and plan-affecting events."""

from typing import Any

from app.core.logging import get_logger
from app.models.audit_log import AuditLog

log = get_logger(__name__)


async def log_event(
    account_id: str | None,
    event_type: str,
    entity_type: str,
    entity_id: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> None:
    """Append to audit_logs collection and mirror to the structured log."""
    await AuditLog(
        account_id=account_id,
        event_type=event_type,
        entity_type=entity_type,
        entity_id=entity_id,
        metadata=metadata or {},
    ).insert()
    log.info(event_type, account_id=account_id, entity_type=entity_type, entity_id=entity_id, **(metadata or {}))
