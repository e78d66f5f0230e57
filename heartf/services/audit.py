from typing import Any

from sqlalchemy.orm import Session

from heartf.models.audit import AuditLog
from heartf.models.org import User
from heartf.utils.clock import iso

DEFAULT_AUDIT_LIMIT = 50
MAX_AUDIT_LIMIT = 200


def record_audit(
    db: Session,
    *,
    org_id: int,
    actor_user_id: int | None,
    action: str,
    target_type: str | None = None,
    target_id: str | int | None = None,
    meta: dict[str, Any] | None = None,
) -> AuditLog:
    entry = AuditLog(
        org_id=org_id,
        actor_user_id=actor_user_id,
        action=action,
        target_type=target_type,
        target_id=str(target_id) if target_id is not None else None,
        meta=meta or {},
    )
    db.add(entry)
    return entry


def clamp_audit_limit(raw_limit: Any) -> int:
    try:
        limit = int(float(raw_limit))
    except (TypeError, ValueError):
        limit = DEFAULT_AUDIT_LIMIT
    return max(1, min(MAX_AUDIT_LIMIT, limit))


def list_audit_entries(db: Session, *, org_id: int, limit: Any = DEFAULT_AUDIT_LIMIT) -> list[dict[str, Any]]:
    rows = (
        db.query(AuditLog, User)
        .outerjoin(User, User.id == AuditLog.actor_user_id)
        .filter(AuditLog.org_id == org_id)
        .order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
        .limit(clamp_audit_limit(limit))
        .all()
    )

    entries = []
    for entry, actor in rows:
        entries.append(
            {
                "id": entry.id,
                "action": entry.action,
                "target_type": entry.target_type,
                "target_id": entry.target_id,
                "meta": entry.meta,
                "created_at": iso(entry.created_at),
                "actor_email": actor.email if actor else None,
                "actor_first_name": actor.first_name if actor else None,
                "actor_last_name": actor.last_name if actor else None,
            }
        )
    return entries
