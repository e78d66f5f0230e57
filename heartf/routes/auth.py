import logging

from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.orm import Session

from heartf.core.config import client_ip
from heartf.database import get_db
from heartf.dependencies.auth import optional_auth, session_token
from heartf.services import identity
from heartf.services.auth import (
    AuthError,
    Principal,
    authenticate,
    bootstrap_admin,
    clear_session_cookie,
    find_or_create_external_user,
    open_session,
    revoke_session,
    set_session_cookie,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


class LoginIn(BaseModel):
    email: str = ""
    password: str = ""


class BootstrapIn(BaseModel):
    orgName: str = ""
    email: str = ""
    firstName: str = ""
    lastName: str = ""
    password: str = ""


@router.post("/login")
def login(payload: LoginIn, request: Request, db: Session = Depends(get_db)):
    try:
        user = authenticate(db, payload.email, payload.password)
    except AuthError:
        logger.info("login failed for %s from %s", payload.email.strip().lower(), client_ip(request))
        raise

    token, expires_at = open_session(db, user)
    db.commit()

    response = JSONResponse({"ok": True})
    set_session_cookie(response, token, expires_at)
    return response


@router.post("/logout")
def logout(request: Request, db: Session = Depends(get_db)):
    if revoke_session(db, session_token(request)):
        db.commit()

    response = JSONResponse({"ok": True})
    clear_session_cookie(response)
    return response


@router.get("/me")
def me(principal: Principal | None = Depends(optional_auth)):
    return {"ok": True, "user": principal.to_dict() if principal else None}


@router.post("/bootstrap")
def bootstrap(payload: BootstrapIn, db: Session = Depends(get_db)):
    user = bootstrap_admin(
        db,
        org_name=payload.orgName,
        email=payload.email,
        first_name=payload.firstName,
        last_name=payload.lastName,
        password=payload.password,
    )
    db.commit()
    return {"ok": True, "orgId": user.org_id, "userId": user.id}


@router.post("/exchange")
def exchange(
    db: Session = Depends(get_db),
    authorization: str | None = Header(default=None),
):
    if not identity.auth_base_url():
        raise identity.IdentityError("NEON_AUTH_URL not configured", status_code=500)

    claims = identity.verify_identity_token(identity.bearer_token(authorization))
    email, name = identity.identity_claims(claims)

    user = find_or_create_external_user(db, email=email, name=name)
    if not user.is_active:
        db.commit()
        raise AuthError("Account disabled", status_code=403)

    token, expires_at = open_session(db, user)
    db.commit()

    response = JSONResponse({"ok": True, "user": Principal.from_user(user).to_dict()})
    set_session_cookie(response, token, expires_at)
    return response
