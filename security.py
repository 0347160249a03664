import hashlib
import hmac
import secrets
from datetime import datetime, timedelta, timezone

import jwt

import settings
from errors import Forbidden

PBKDF2_ITERATIONS = 100_000


def hash_password(password: str) -> str:
    salt = secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode(), salt.encode(), PBKDF2_ITERATIONS).hex()
    return f"{salt}${digest}"


def verify_password(password: str, password_hash: str) -> bool:
    salt, _, expected = (password_hash or "").partition("$")
    if not expected:
        return False
    digest = hashlib.pbkdf2_hmac("sha256", password.encode(), salt.encode(), PBKDF2_ITERATIONS).hex()
    return hmac.compare_digest(digest, expected)


def generate_token() -> str:
    """One-time token for email verification and password reset."""
    return secrets.token_hex(32)


def create_token(payload: dict) -> str:
    exp = datetime.now(timezone.utc) + timedelta(hours=settings.TOKEN_TTL_HOURS)
    to_encode = {**payload, "exp": exp}
    return jwt.encode(to_encode, settings.JWT_SECRET, algorithm=settings.JWT_ALGO)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGO])
    except jwt.ExpiredSignatureError:
        raise Forbidden("Token expired")
    except jwt.InvalidTokenError:
        raise Forbidden("Invalid or expired token")
