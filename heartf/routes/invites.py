import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.orm import Session

from heartf.core.config import resolve_base_url, settings
from heartf.database import get_db
from heartf.dependencies.auth import require_roles
from heartf.services.auth import Principal, set_session_cookie
from heartf.services.invites import accept_invite, create_invite, list_invites, revoke_invite

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/invites", tags=["invites"])


class CreateInviteIn(BaseModel):
    email: str = ""
    role: str | None = None
    sendEmail: bool = True


class AcceptInviteIn(BaseModel):
    token: str = ""
    password: str = ""
    firstName: str = ""
    lastName: str = ""


@router.post("")
def invite_create(
    payload: CreateInviteIn,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_roles("admin")),
):
    result = create_invite(
        db,
        principal,
        email=payload.email,
        role=payload.role,
        send_email=payload.sendEmail,
        base_url=resolve_base_url(request, settings.APP_BASE_URL),
    )
    db.commit()
    return {
        "ok": True,
        "inviteId": result["invite_id"],
        "inviteLink": result["invite_link"],
        "expiresAt": result["expires_at"].isoformat(),
    }


@router.get("")
def invite_list(
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_roles("admin")),
):
    return {"ok": True, "invites": list_invites(db, org_id=principal.org_id)}


@router.post("/{invite_id}/revoke")
def invite_revoke(
    invite_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_roles("admin")),
):
    changed = revoke_invite(db, principal, invite_id)
    db.commit()
    return {"ok": True, "changed": changed}


@router.post("/accept")
def invite_accept(payload: AcceptInviteIn, db: Session = Depends(get_db)):
    user, token, expires_at = accept_invite(
        db,
        token=payload.token,
        password=payload.password,
        first_name=payload.firstName,
        last_name=payload.lastName,
    )
    db.commit()
    logger.info("invite accepted by %s (org=%s)", user.email, user.org_id)

    response = JSONResponse({"ok": True, "user": Principal.from_user(user).to_dict()})
    set_session_cookie(response, token, expires_at)
    return response
