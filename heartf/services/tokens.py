import hashlib
import secrets
from datetime import datetime, timedelta

from heartf.utils.clock import utcnow


def random_token(nbytes: int = 32) -> str:
    return secrets.token_hex(nbytes)


def sha256_hex(value: str) -> str:
    return hashlib.sha256((value or "").encode("utf-8")).hexdigest()


def expiry_in_days(ttl_days: int) -> datetime:
    ttl = max(int(ttl_days or 1), 1)
    return utcnow() + timedelta(days=ttl)
