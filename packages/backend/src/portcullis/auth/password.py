"""Password hashing utilities.

Learn: Uses bcrypt for password hashing. bcrypt salts automatically and
produces hashes starting with "$2b$". The work factor comes from
settings.bcrypt_rounds (12 by default, ~100ms per hash); tests lower it.
Passwords are truncated to 72 bytes (bcrypt's limit).

Federated accounts never log in with a password, but the users table
requires a hash. They get the hash of a random secret that is thrown
away immediately, so no password can ever verify against it.
"""

import secrets

import bcrypt

from portcullis.config import settings


def hash_password(password: str) -> str:
    """Hash a password with bcrypt."""
    pw_bytes = password.encode("utf-8")[:72]
    salt = bcrypt.gensalt(rounds=settings.bcrypt_rounds)
    return bcrypt.hashpw(pw_bytes, salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Verify a password against its hash. Malformed hashes never verify."""
    try:
        pw_bytes = password.encode("utf-8")[:72]
        hash_bytes = password_hash.encode("utf-8")
        return bcrypt.checkpw(pw_bytes, hash_bytes)
    except (ValueError, TypeError):
        return False


def random_password_hash() -> str:
    """Hash of a fresh random secret, for accounts without a local password."""
    return hash_password(secrets.token_urlsafe(32))
