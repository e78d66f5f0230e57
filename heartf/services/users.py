from __future__ import annotations

from typing import Any

from sqlalchemy.orm import Session

from heartf.core.config import ROLES
from heartf.models.org import User
from heartf.services.audit import record_audit
from heartf.services.auth import Principal
from heartf.utils.clock import iso, utcnow


class UserAdminError(Exception):
    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def list_users(db: Session, *, org_id: int) -> list[dict[str, Any]]:
    users = (
        db.query(User)
        .filter(User.org_id == org_id)
        .order_by(User.created_at.desc(), User.id.desc())
        .all()
    )
    return [
        {
            "id": user.id,
            "email": user.email,
            "first_name": user.first_name,
            "last_name": user.last_name,
            "role": user.role,
            "is_active": bool(user.is_active),
            "created_at": iso(user.created_at),
        }
        for user in users
    ]


def update_user(
    db: Session,
    actor: Principal,
    user_id: int | None,
    *,
    role: str | None = None,
    is_active: bool | None = None,
) -> None:
    """Applies a role change, or failing that an enable/disable. One change per call."""
    if not user_id:
        raise UserAdminError("Missing id")

    if role:
        if role not in ROLES:
            raise UserAdminError("Invalid role")
        db.query(User).filter(User.id == user_id, User.org_id == actor.org_id).update(
            {User.role: role, User.updated_at: utcnow()}, synchronize_session=False
        )
        record_audit(
            db,
            org_id=actor.org_id,
            actor_user_id=actor.user_id,
            action="user.role_updated",
            target_type="user",
            target_id=user_id,
            meta={"role": role},
        )
        return

    if isinstance(is_active, bool):
        if int(user_id) == actor.user_id and not is_active:
            raise UserAdminError("You cannot disable your own account.")
        db.query(User).filter(User.id == user_id, User.org_id == actor.org_id).update(
            {User.is_active: is_active, User.updated_at: utcnow()}, synchronize_session=False
        )
        record_audit(
            db,
            org_id=actor.org_id,
            actor_user_id=actor.user_id,
            action="user.enabled" if is_active else "user.disabled",
            target_type="user",
            target_id=user_id,
            meta={"is_active": is_active},
        )
        return

    raise UserAdminError("Nothing to update")


def delete_user(db: Session, actor: Principal, user_id: int | None) -> bool:
    if not user_id:
        raise UserAdminError("Missing id")
    deleted = (
        db.query(User)
        .filter(User.id == user_id, User.org_id == actor.org_id)
        .delete(synchronize_session=False)
    )
    return bool(deleted)
