"""Audit trail hook for engine state transitions.

Events are written only after the primary transaction has committed, in their
own short transaction. A failed audit write is logged and dropped: the state
change it describes has already happened and stays authoritative.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.domain_types import Severity
from ..middlewares import request_id_ctx_var
from ..models.audit import AuditEvent
from .timecalc import utcnow

logger = logging.getLogger("stockroom.audit")


def record_event(
    db: Session,
    *,
    event_type: str,
    entity_type: str,
    entity_id: Any,
    actor: str,
    description: str,
    metadata: Mapping[str, Any] | None = None,
    severity: Severity | str = Severity.LOW,
) -> AuditEvent | None:
    if not settings.AUDIT_ENABLED:
        return None
    level = severity.value if isinstance(severity, Severity) else str(severity)
    event = AuditEvent(
        event_type=event_type,
        entity_type=entity_type,
        entity_id=str(entity_id),
        actor=actor or "system",
        description=description,
        details=dict(metadata) if metadata else None,
        severity=level,
        request_id=request_id_ctx_var.get(),
        created_at=utcnow(),
    )
    try:
        db.add(event)
        db.commit()
    except Exception:
        db.rollback()
        logger.warning(
            "audit.write_failed",
            exc_info=True,
            extra={"extra_data": {"event_type": event_type, "entity_type": entity_type, "entity_id": str(entity_id)}},
        )
        return None
    return event
