"""
One-way credential hashing.

bcrypt is used for both user passwords and API key secrets; only the cost
factor differs.
"""

from __future__ import annotations

import re
import secrets

import bcrypt

from app.core.config import get_settings

settings = get_settings()

_SPECIAL_CHARS = re.compile(r"[!@#$%^&*()_+\-=\[\]{};':\"\\|,.<>/?]")


def hash_secret(secret: str, rounds: int) -> str:
    return bcrypt.hashpw(secret.encode(), bcrypt.gensalt(rounds=rounds)).decode()


def verify_secret(secret: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(secret.encode(), hashed.encode())
    except ValueError:
        # Malformed stored hash; treat as a non-match.
        return False


def hash_password(password: str) -> str:
    """Hash a password using bcrypt with the configured cost factor."""
    return hash_secret(password, settings.bcrypt_rounds)


def verify_password(password: str, hashed: str) -> bool:
    """Verify a password against a bcrypt hash."""
    return verify_secret(password, hashed)


def unusable_password_hash() -> str:
    """Hash of a random secret nobody knows. Used for accounts created via SSO."""
    return hash_password(secrets.token_hex(32))


def validate_password_strength(password: str) -> list[str]:
    """Return the list of unmet password rules (empty when the password is acceptable)."""
    errors: list[str] = []
    if len(password) < settings.password_min_length:
        errors.append(f"Password must be at least {settings.password_min_length} characters")
    if not re.search(r"[a-z]", password):
        errors.append("Password must contain at least one lowercase letter")
    if not re.search(r"[A-Z]", password):
        errors.append("Password must contain at least one uppercase letter")
    if not re.search(r"[0-9]", password):
        errors.append("Password must contain at least one number")
    if not _SPECIAL_CHARS.search(password):
        errors.append("Password must contain at least one special character")
    return errors
