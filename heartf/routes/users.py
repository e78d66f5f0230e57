from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from heartf.database import get_db
from heartf.dependencies.auth import require_roles
from heartf.services.auth import Principal
from heartf.services.users import delete_user, list_users, update_user

router = APIRouter(prefix="/api/users", tags=["users"])


class UserPatchIn(BaseModel):
    id: int | None = None
    role: str | None = None
    is_active: bool | None = None


@router.get("")
def users_list(
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_roles("admin", "ops_manager")),
):
    return {"ok": True, "users": list_users(db, org_id=principal.org_id)}


@router.patch("")
def users_patch(
    payload: UserPatchIn,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_roles("admin")),
):
    update_user(db, principal, payload.id, role=payload.role, is_active=payload.is_active)
    db.commit()
    return {"ok": True}


@router.delete("")
def users_delete(
    id: int | None = None,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_roles("admin")),
):
    delete_user(db, principal, id)
    db.commit()
    return {"ok": True}
