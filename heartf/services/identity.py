"""
Verification of bearer tokens issued by the external identity provider.
"""
from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any

import jwt
from jwt import PyJWKClient

from heartf.core.config import settings

logger = logging.getLogger(__name__)

JWT_ALGORITHMS = ["RS256", "ES256", "EdDSA"]


class IdentityError(Exception):
    def __init__(self, message: str, status_code: int = 401):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def auth_base_url() -> str:
    return (settings.NEON_AUTH_URL or "").strip().rstrip("/")


@lru_cache(maxsize=4)
def _jwk_client(jwks_url: str) -> PyJWKClient:
    return PyJWKClient(jwks_url, cache_keys=True)


def bearer_token(authorization: str | None) -> str:
    header = (authorization or "").strip()
    if not header.startswith("Bearer "):
        raise IdentityError("Missing token")
    token = header[len("Bearer "):].strip()
    if not token:
        raise IdentityError("Missing token")
    return token


def verify_identity_token(token: str) -> dict[str, Any]:
    base_url = auth_base_url()
    if not base_url:
        raise IdentityError("NEON_AUTH_URL not configured", status_code=500)

    client = _jwk_client(f"{base_url}/.well-known/jwks.json")
    try:
        signing_key = client.get_signing_key_from_jwt(token)
        return jwt.decode(
            token,
            signing_key.key,
            algorithms=JWT_ALGORITHMS,
            options={"verify_aud": False},
        )
    except jwt.PyJWTError as exc:
        logger.info("identity token rejected: %s", exc)
        raise IdentityError("Invalid token") from exc


def identity_claims(payload: dict[str, Any]) -> tuple[str, str]:
    """(email, name) from top-level claims or a nested `user` object."""
    nested = payload.get("user") if isinstance(payload.get("user"), dict) else {}

    email = payload.get("email") if isinstance(payload.get("email"), str) else ""
    email = email or (nested.get("email") if isinstance(nested.get("email"), str) else "")

    name = payload.get("name") if isinstance(payload.get("name"), str) else ""
    name = name or (nested.get("name") if isinstance(nested.get("name"), str) else "")

    email = email.strip().lower()
    if not email:
        raise IdentityError("Missing email")
    return email, name
