"""
Session enforcement for API routes.
Resolves the session cookie into a Principal; role checks are layered on top.
"""
from __future__ import annotations

from collections.abc import Callable

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from heartf.core.config import settings
from heartf.database import get_db
from heartf.services.auth import Principal, resolve_session


def session_token(request: Request) -> str | None:
    return request.cookies.get(settings.AUTH_COOKIE_NAME) or None


def optional_auth(request: Request, db: Session = Depends(get_db)) -> Principal | None:
    return resolve_session(db, session_token(request))


def require_auth(request: Request, db: Session = Depends(get_db)) -> Principal:
    """Raises 401 unless the request carries a live session for an active user."""
    principal = resolve_session(db, session_token(request))
    if principal is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthenticated")
    return principal


def require_role(principal: Principal, roles: tuple[str, ...] | list[str]) -> None:
    if principal.role not in roles:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")


def require_roles(*roles: str) -> Callable[..., Principal]:
    def dependency(principal: Principal = Depends(require_auth)) -> Principal:
        require_role(principal, roles)
        return principal

    return dependency
