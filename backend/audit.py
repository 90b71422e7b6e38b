# audit.py — Append-only audit trail helper
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from logging_system import current_request_id
from models import AuditLog, AuditEventType


def record_audit(
    db: AsyncSession,
    event_type: AuditEventType,
    actor_id: Optional[str] = None,
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    old_data: Optional[Dict[str, Any]] = None,
    new_data: Optional[Dict[str, Any]] = None,
) -> AuditLog:
    """Stage an audit row in the caller's unit of work; the caller commits."""
    entry = AuditLog(
        event_type=event_type,
        actor_id=actor_id,
        entity_type=entity_type,
        entity_id=entity_id,
        old_data=old_data,
        new_data=new_data,
        request_id=current_request_id(),
    )
    db.add(entry)
    return entry
