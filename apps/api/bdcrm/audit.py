from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy.orm import Session

from bdcrm.context import get_correlation_id
from bdcrm.models.audit import AuditLog


def record(
    session: Session,
    *,
    actor_user_id: str,
    entity_type: str,
    entity_id: str,
    action: str,
    before: dict[str, Any] | None,
    after: dict[str, Any] | None,
    work_package_id: uuid.UUID | None = None,
    correlation_id: str | None = None,
) -> AuditLog:
    """Stage an audit row in the caller's transaction; it commits with the change it describes."""
    entry = AuditLog(
        actor_id=actor_user_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        work_package_id=work_package_id,
        before=before,
        after=after,
        correlation_id=correlation_id or get_correlation_id(),
    )
    session.add(entry)
    return entry
