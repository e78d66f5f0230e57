import logging

from fastapi import Request

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

ROLES = ("admin", "ops_manager", "dispatcher", "finance", "customer", "driver")


def client_ip(request: Request) -> str:
    """Client IP, honoring X-Forwarded-For when present."""
    forwarded = (request.headers.get("x-forwarded-for") or "").strip()
    if forwarded:
        return forwarded.split(",")[0].strip()
    return ((request.client.host if request.client else "") or "unknown")[:64]


def resolve_base_url(request: Request | None, fallback_base_url: str | None = None) -> str:
    """
    Base URL for links sent to users (invite links). APP_BASE_URL wins; the
    request Origin header is only used when the host is whitelisted.
    """
    fallback = (fallback_base_url or "").rstrip("/")
    if fallback:
        return fallback
    if request is None:
        return ""

    origin = (request.headers.get("origin") or "").strip().rstrip("/")
    if not origin or "://" not in origin:
        return ""
    scheme, host = origin.split("://", 1)
    if scheme not in ("http", "https"):
        return ""
    if host.split(":")[0].lower() not in _get_allowed_base_hosts():
        logger.debug("invite_link: origin %s ignored (host not in ALLOWED_BASE_HOSTS)", origin)
        return ""
    return origin


class CoreSettings(BaseSettings):
    ENV: str = Field(default="development", validation_alias="APP_ENV")
    APP_NAME: str = "heartf-api"
    APP_BASE_URL: str = ""
    ALLOWED_BASE_HOSTS: str = "localhost,127.0.0.1"
    CORS_ORIGINS: str = "http://localhost:5173"

    AUTH_COOKIE_NAME: str = "hf_session"
    AUTH_COOKIE_SECURE: bool = False
    SESSION_TTL_DAYS: int = 14
    PASSWORD_PEPPER: str = ""
    PASSWORD_BCRYPT_ROUNDS: int = 12
    MIN_PASSWORD_LENGTH: int = 8

    INVITE_TTL_DAYS: int = 7
    INVITE_LIMIT_PER_USER_PER_HOUR: int = 20
    INVITE_LIMIT_PER_ORG_PER_DAY: int = 200
    INVITE_LIMIT_PER_EMAIL_PER_DAY: int = 5

    DEFAULT_ORG_NAME: str = "Heartfledge Logistics"
    COMPANY_NAME: str = "HeartF Logistics"
    NEON_AUTH_URL: str = ""

    SMTP_HOST: str = ""
    SMTP_PORT: int = 0
    SMTP_USER: str = ""
    SMTP_PASS: str = ""
    SMTP_SECURE: bool = False
    SMTP_FROM: str = ""

    OPENAI_API_KEY: str = ""
    OPENAI_MODEL: str = "gpt-4o-mini"

    SEARCH_API_URL: str = ""
    SEARCH_API_KEY: str = ""
    SEARCH_API_TIMEOUT_SECONDS: int = 20
    SEARCH_MAX_RESULTS: int = 10
    LEAD_FINDER_CACHE_TTL_SECONDS: int = 15 * 60
    LEAD_FINDER_VERIFY_TIMEOUT_SECONDS: int = 8

    GLOBAL_DATA_KEY: str = "hf_global_data_v1"
    PERMISSIONS_MATRIX_KEY: str = "hf_permissions_matrix_v1"
    AUDIT_LOG_CAP: int = 500

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = CoreSettings()


def _get_allowed_base_hosts() -> frozenset[str]:
    return frozenset(h.strip().lower() for h in settings.ALLOWED_BASE_HOSTS.split(",") if h.strip())
