from passlib.context import CryptContext

from heartf.core.config import settings


pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__rounds=max(int(settings.PASSWORD_BCRYPT_ROUNDS or 12), 4),
)


def _peppered(password: str) -> str:
    return (password or "") + (settings.PASSWORD_PEPPER or "")


def hash_password(password: str) -> str:
    return pwd_context.hash(_peppered(password))


def verify_password(password: str, password_hash: str | None) -> bool:
    if not password_hash:
        return False
    try:
        return pwd_context.verify(_peppered(password), password_hash)
    except ValueError:
        # Malformed or foreign hash format.
        return False
