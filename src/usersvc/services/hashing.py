"""Hashing helpers for OTP codes, passwords and refresh token secrets.

OTP codes are short-lived, so a single SHA-256 digest is enough. Passwords
and refresh secrets use bcrypt.
"""

import hashlib
import hmac
import secrets

import bcrypt

from usersvc.config import settings


def hash_otp(code: str) -> str:
    return hashlib.sha256(code.encode("utf-8")).hexdigest()


def otp_matches(code: str, hashed: str) -> bool:
    """Constant-time comparison of a submitted code against a stored digest."""
    return hmac.compare_digest(hash_otp(code), hashed)


def generate_code(length: int) -> str:
    """Uniformly random numeric code of exactly ``length`` digits.

    Leading zeros are allowed; the value is zero-padded to a fixed width.
    """
    return str(secrets.randbelow(10**length)).zfill(length)


def generate_token_secret() -> str:
    """32 random bytes as URL-safe text."""
    return secrets.token_urlsafe(32)


def _bcrypt_input(raw: str) -> bytes:
    # bcrypt only looks at the first 72 bytes and newer releases reject longer input
    return raw.encode("utf-8")[:72]


def hash_secret(raw: str, rounds: int | None = None) -> str:
    salt = bcrypt.gensalt(rounds=rounds or settings.bcrypt_rounds)
    return bcrypt.hashpw(_bcrypt_input(raw), salt).decode("utf-8")


def verify_secret(raw: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(_bcrypt_input(raw), hashed.encode("utf-8"))
    except ValueError:
        # Malformed stored hash
        return False


def hash_password(password: str) -> str:
    return hash_secret(password)


def verify_password(password: str, hashed: str | None) -> bool:
    if not hashed:
        return False
    return verify_secret(password, hashed)
