# Overview: Audit sink; records completed mutating operations.

from __future__ import annotations

from typing import Any, Optional

from flask import current_app

from ..extensions import db
from ..models import AuditEvent
"""
Audit invariants:

- Events are append-only.
- Emission happens AFTER the business transaction has committed, in its own
  small transaction. A sale that committed stays committed even if its audit
  record cannot be written.
- Emission failures are logged and never propagate to the caller.
"""


def emit_audit_event(
    *,
    action: str,
    entity_type: str,
    entity_id: int | None,
    actor_user_id: int | None = None,
    before: Optional[dict[str, Any]] = None,
    after: Optional[dict[str, Any]] = None,
) -> AuditEvent | None:
    try:
        ev = AuditEvent(
            actor_user_id=actor_user_id,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            before=before,
            after=after,
        )
        db.session.add(ev)
        db.session.commit()
        return ev
    except Exception:
        db.session.rollback()
        current_app.logger.exception(
            "Failed to emit audit event %s for %s %s", action, entity_type, entity_id
        )
        return None

