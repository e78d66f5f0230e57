from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime

from fastapi import Response
from sqlalchemy.orm import Session

from heartf.core.config import settings
from heartf.models.auth import AuthSession
from heartf.models.org import Org, User
from heartf.services.passwords import hash_password, verify_password
from heartf.services.tokens import expiry_in_days, random_token, sha256_hex
from heartf.utils.clock import utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Principal:
    user_id: int
    org_id: int
    role: str
    email: str
    first_name: str
    last_name: str

    @classmethod
    def from_user(cls, user: User) -> "Principal":
        return cls(
            user_id=int(user.id),
            org_id=int(user.org_id),
            role=user.role,
            email=user.email,
            first_name=user.first_name or "",
            last_name=user.last_name or "",
        )

    @property
    def display_name(self) -> str:
        name = " ".join(part for part in (self.first_name, self.last_name) if part)
        return name or self.email

    @property
    def actor(self) -> dict[str, object]:
        """Reference stored on history and audit entries in the org data blob."""
        return {"id": self.user_id, "role": self.role}

    def to_dict(self) -> dict[str, object]:
        return {
            "userId": self.user_id,
            "orgId": self.org_id,
            "role": self.role,
            "email": self.email,
            "firstName": self.first_name,
            "lastName": self.last_name,
        }


def normalize_email(email: str | None) -> str:
    return (email or "").strip().lower()


def open_session(db: Session, user: User) -> tuple[str, datetime]:
    """Insert a session row for user; returns the raw cookie token and its expiry."""
    token = random_token(32)
    expires_at = expiry_in_days(settings.SESSION_TTL_DAYS)
    db.add(
        AuthSession(
            user_id=user.id,
            org_id=user.org_id,
            token_hash=sha256_hex(token),
            expires_at=expires_at,
        )
    )
    return token, expires_at


def resolve_session(db: Session, token: str | None) -> Principal | None:
    if not token:
        return None

    row = (
        db.query(AuthSession, User)
        .join(User, User.id == AuthSession.user_id)
        .filter(
            AuthSession.token_hash == sha256_hex(token),
            AuthSession.revoked_at.is_(None),
            AuthSession.expires_at > utcnow(),
            User.is_active.is_(True),
        )
        .first()
    )
    if not row:
        return None

    session_row, user = row
    # Sessions are scoped to the org they were opened in.
    return replace(Principal.from_user(user), org_id=int(session_row.org_id))


def revoke_session(db: Session, token: str | None) -> bool:
    if not token:
        return False
    updated = (
        db.query(AuthSession)
        .filter(AuthSession.token_hash == sha256_hex(token), AuthSession.revoked_at.is_(None))
        .update({AuthSession.revoked_at: utcnow()}, synchronize_session=False)
    )
    return bool(updated)


def set_session_cookie(response: Response, token: str, expires_at: datetime) -> None:
    response.set_cookie(
        key=settings.AUTH_COOKIE_NAME,
        value=token,
        expires=expires_at,
        path="/",
        httponly=True,
        samesite="lax",
        secure=bool(settings.AUTH_COOKIE_SECURE),
    )


def clear_session_cookie(response: Response) -> None:
    response.delete_cookie(
        key=settings.AUTH_COOKIE_NAME,
        path="/",
        httponly=True,
        samesite="lax",
        secure=bool(settings.AUTH_COOKIE_SECURE),
    )


class AuthError(Exception):
    def __init__(self, message: str, status_code: int = 401):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def authenticate(db: Session, email: str, password: str) -> User:
    """Email/password check. Raises AuthError(401) for bad credentials, AuthError(403) for disabled users."""
    user = db.query(User).filter(User.email == normalize_email(email)).first()
    if user is None:
        raise AuthError("Invalid credentials")
    if not user.is_active:
        raise AuthError("Account disabled", status_code=403)
    if not verify_password(password or "", user.password_hash):
        raise AuthError("Invalid credentials")
    return user


def bootstrap_admin(
    db: Session,
    *,
    org_name: str,
    email: str,
    first_name: str,
    last_name: str,
    password: str,
) -> User:
    if db.query(User.id).first() is not None:
        raise AuthError("Already bootstrapped", status_code=409)

    email_norm = normalize_email(email)
    if not email_norm:
        raise AuthError("Missing email", status_code=400)
    min_length = max(int(settings.MIN_PASSWORD_LENGTH or 8), 1)
    if len(password or "") < min_length:
        raise AuthError(f"Password must be at least {min_length} characters", status_code=400)

    org = Org(name=(org_name or "").strip() or settings.DEFAULT_ORG_NAME)
    db.add(org)
    db.flush()

    user = User(
        org_id=org.id,
        email=email_norm,
        first_name=(first_name or "").strip(),
        last_name=(last_name or "").strip(),
        role="admin",
        password_hash=hash_password(password),
    )
    db.add(user)
    db.flush()
    logger.info("bootstrapped org %s with admin %s", org.id, email_norm)
    return user


def split_name(name: str | None) -> tuple[str, str]:
    parts = (name or "").split()
    if not parts:
        return "", ""
    return parts[0], " ".join(parts[1:])


def find_or_create_external_user(db: Session, *, email: str, name: str | None) -> User:
    """User for an externally verified identity; new users join the oldest org."""
    email_norm = normalize_email(email)
    user = db.query(User).filter(User.email == email_norm).first()
    if user is not None:
        return user

    org = db.query(Org).order_by(Org.created_at.asc(), Org.id.asc()).first()
    if org is None:
        org = Org(name=settings.DEFAULT_ORG_NAME)
        db.add(org)
        db.flush()

    has_members = db.query(User.id).filter(User.org_id == org.id).first() is not None
    first_name, last_name = split_name(name)
    user = User(
        org_id=org.id,
        email=email_norm,
        first_name=first_name,
        last_name=last_name,
        role="customer" if has_members else "admin",
        password_hash=hash_password(random_token(32)),
    )
    db.add(user)
    db.flush()
    logger.info("created user %s from external identity (org=%s role=%s)", email_norm, org.id, user.role)
    return user
