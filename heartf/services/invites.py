from __future__ import annotations

import logging
import re
from datetime import datetime, timedelta
from typing import Any
from urllib.parse import quote

from sqlalchemy import func
from sqlalchemy.orm import Session

from heartf.core.config import ROLES, settings
from heartf.models.auth import Invite
from heartf.models.org import User
from heartf.services.audit import record_audit
from heartf.services.auth import Principal, normalize_email, open_session
from heartf.services.email import send_invite_email
from heartf.services.passwords import hash_password
from heartf.services.tokens import expiry_in_days, random_token, sha256_hex
from heartf.utils.clock import as_utc, iso, utcnow

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
DEFAULT_INVITE_ROLE = "customer"
INVITE_LIST_LIMIT = 200


class InviteError(Exception):
    status_code = 400

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class RateLimitError(InviteError):
    status_code = 429


def is_email(value: str) -> bool:
    return bool(EMAIL_RE.match(value or ""))


def _count_invites(db: Session, *filters: Any) -> int:
    return int(db.query(func.count(Invite.id)).filter(*filters).scalar() or 0)


def enforce_rate_limits(db: Session, *, org_id: int, actor_user_id: int, email: str) -> None:
    now = utcnow()
    per_user_limit = max(int(settings.INVITE_LIMIT_PER_USER_PER_HOUR or 20), 1)
    per_org_limit = max(int(settings.INVITE_LIMIT_PER_ORG_PER_DAY or 200), 1)
    per_email_limit = max(int(settings.INVITE_LIMIT_PER_EMAIL_PER_DAY or 5), 1)

    per_user_hour = _count_invites(
        db,
        Invite.org_id == org_id,
        Invite.created_by == actor_user_id,
        Invite.created_at > now - timedelta(hours=1),
    )
    if per_user_hour >= per_user_limit:
        raise RateLimitError(f"Rate limit: too many invites sent by this user (max {per_user_limit}/hour).")

    per_org_day = _count_invites(
        db,
        Invite.org_id == org_id,
        Invite.created_at > now - timedelta(hours=24),
    )
    if per_org_day >= per_org_limit:
        raise RateLimitError(f"Rate limit: too many invites for this org (max {per_org_limit}/day).")

    per_email_day = _count_invites(
        db,
        Invite.org_id == org_id,
        func.lower(Invite.email) == email.lower(),
        Invite.created_at > now - timedelta(hours=24),
    )
    if per_email_day >= per_email_limit:
        raise RateLimitError(f"Rate limit: too many invites for this email (max {per_email_limit}/day).")


def _active_invites(db: Session, *, org_id: int):
    return db.query(Invite).filter(
        Invite.org_id == org_id,
        Invite.used_at.is_(None),
        Invite.revoked_at.is_(None),
    )


def create_invite(
    db: Session,
    actor: Principal,
    *,
    email: str,
    role: str | None,
    send_email: bool = True,
    base_url: str = "",
) -> dict[str, Any]:
    email_norm = normalize_email(email)
    role_norm = (role or "").strip() or DEFAULT_INVITE_ROLE

    if not email_norm or not is_email(email_norm):
        raise InviteError("Invalid email")
    if role_norm not in ROLES:
        raise InviteError("Invalid role")

    base_url = (base_url or "").rstrip("/")
    if not base_url:
        raise InviteError("Missing APP_BASE_URL", status_code=500)

    enforce_rate_limits(db, org_id=actor.org_id, actor_user_id=actor.user_id, email=email_norm)

    # One active invite per (org, email).
    _active_invites(db, org_id=actor.org_id).filter(func.lower(Invite.email) == email_norm).update(
        {Invite.revoked_at: utcnow()}, synchronize_session=False
    )

    token = random_token(32)
    expires_at = expiry_in_days(settings.INVITE_TTL_DAYS)
    invite = Invite(
        org_id=actor.org_id,
        email=email_norm,
        role=role_norm,
        token_hash=sha256_hex(token),
        created_by=actor.user_id,
        expires_at=expires_at,
    )
    db.add(invite)
    db.flush()

    invite_link = f"{base_url}/accept-invite?token={quote(token, safe='')}"

    if send_email:
        send_invite_email(email_norm, invite_link, expires_at)

    record_audit(
        db,
        org_id=actor.org_id,
        actor_user_id=actor.user_id,
        action="invite.create",
        target_type="invite",
        target_id=invite.id,
        meta={
            "email": email_norm,
            "role": role_norm,
            "sentEmail": send_email,
            "expiresAt": expires_at.isoformat(),
        },
    )
    logger.info("invite %s created for %s (org=%s role=%s)", invite.id, email_norm, actor.org_id, role_norm)

    return {"invite_id": invite.id, "invite_link": invite_link, "expires_at": expires_at}


def list_invites(db: Session, *, org_id: int) -> list[dict[str, Any]]:
    invites = (
        db.query(Invite)
        .filter(Invite.org_id == org_id)
        .order_by(Invite.created_at.desc(), Invite.id.desc())
        .limit(INVITE_LIST_LIMIT)
        .all()
    )
    return [
        {
            "id": invite.id,
            "email": invite.email,
            "role": invite.role,
            "created_at": iso(invite.created_at),
            "expires_at": iso(invite.expires_at),
            "used_at": iso(invite.used_at),
            "revoked_at": iso(invite.revoked_at),
        }
        for invite in invites
    ]


def revoke_invite(db: Session, actor: Principal, invite_id: int) -> bool:
    invite = _active_invites(db, org_id=actor.org_id).filter(Invite.id == invite_id).first()
    if invite is not None:
        invite.revoked_at = utcnow()

    record_audit(
        db,
        org_id=actor.org_id,
        actor_user_id=actor.user_id,
        action="invite.revoke",
        target_type="invite",
        target_id=invite_id,
        meta={
            "inviteId": invite_id,
            "changed": invite is not None,
            "email": invite.email if invite else None,
            "role": invite.role if invite else None,
        },
    )
    return invite is not None


def accept_invite(
    db: Session,
    *,
    token: str,
    password: str,
    first_name: str = "",
    last_name: str = "",
) -> tuple[User, str, datetime]:
    """Redeem an invite: upsert the user, mark the invite used, open a session."""
    token_norm = (token or "").strip()
    if not token_norm:
        raise InviteError("Missing token")

    min_length = max(int(settings.MIN_PASSWORD_LENGTH or 8), 1)
    if len(password or "") < min_length:
        raise InviteError(f"Password must be at least {min_length} characters")

    invite = db.query(Invite).filter(Invite.token_hash == sha256_hex(token_norm)).first()
    if invite is None:
        raise InviteError("Invalid invite")
    if invite.revoked_at is not None:
        raise InviteError("Invite revoked")
    if invite.used_at is not None:
        raise InviteError("Invite already used")
    if as_utc(invite.expires_at) <= utcnow():
        raise InviteError("Invite expired")

    user = db.query(User).filter(User.email == invite.email).first()
    if user is None:
        user = User(email=invite.email)
        db.add(user)
    user.org_id = invite.org_id
    user.first_name = (first_name or "").strip()
    user.last_name = (last_name or "").strip()
    user.role = invite.role
    user.password_hash = hash_password(password)
    user.is_active = True
    db.flush()

    invite.used_at = utcnow()
    session_token, expires_at = open_session(db, user)

    record_audit(
        db,
        org_id=invite.org_id,
        actor_user_id=user.id,
        action="invite.accept",
        target_type="invite",
        target_id=invite.id,
        meta={"inviteId": invite.id, "email": invite.email, "role": invite.role},
    )
    return user, session_token, expires_at
