"""Password hashing and JWT handling for API users."""

from datetime import UTC, datetime, timedelta
from typing import Any

import bcrypt
import jwt

from prism.core.config import settings

BCRYPT_ROUNDS = 12

USERNAME_MIN_LEN = 1
USERNAME_MAX_LEN = 255
PASSWORD_MIN_LEN = 8
PASSWORD_MAX_LEN = 128

# viewer: read results; scanner: submit scans; admin: everything plus user listing.
ROLE_VIEWER = "viewer"
ROLE_SCANNER = "scanner"
ROLE_ADMIN = "admin"
ROLES = (ROLE_VIEWER, ROLE_SCANNER, ROLE_ADMIN)
ROLES_ALLOWED_TO_SUBMIT = frozenset({ROLE_SCANNER, ROLE_ADMIN})


def hash_password(plain_password: str) -> str:
    """Hash a plain-text password for storage."""
    # bcrypt only looks at the first 72 bytes.
    pw_bytes = plain_password.encode("utf-8")[:72]
    return bcrypt.hashpw(pw_bytes, bcrypt.gensalt(rounds=BCRYPT_ROUNDS)).decode("utf-8")


def verify_password(plain_password: str, hashed: str) -> bool:
    pw_bytes = plain_password.encode("utf-8")[:72]
    try:
        return bcrypt.checkpw(pw_bytes, hashed.encode("utf-8"))
    except (ValueError, TypeError):
        return False


def create_access_token(sub: str | int, role: str) -> str:
    """Create a signed JWT carrying sub (user id), role, iat and exp."""
    now = datetime.now(UTC)
    payload: dict[str, Any] = {
        "sub": str(sub),
        "role": role,
        "iat": now,
        "exp": now + timedelta(minutes=settings.JWT_EXPIRE_MINUTES),
    }
    return jwt.encode(
        payload,
        settings.JWT_SECRET.get_secret_value(),
        algorithm=settings.JWT_ALGORITHM,
    )


def decode_access_token(token: str) -> dict[str, Any]:
    """
    Decode and validate a JWT and return its payload.
    Raises jwt.PyJWTError on invalid or expired token.
    """
    return jwt.decode(
        token,
        settings.JWT_SECRET.get_secret_value(),
        algorithms=[settings.JWT_ALGORITHM],
    )
