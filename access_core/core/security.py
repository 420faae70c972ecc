"""Credential helpers: bcrypt hashing and bearer-token verification.

Tokens are issued by the upstream credential layer; this service only
verifies them and reads the caller id and the optional asserted role.
"""

from typing import Optional

import bcrypt
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt

from access_core.core.config import settings
from access_core.core.exceptions import UnauthenticatedError

# JWT bearer scheme
security_scheme = HTTPBearer(auto_error=False)


def hash_password(password: str) -> str:
    """Hash a password using bcrypt."""
    pwd_bytes = password.encode("utf-8")
    salt = bcrypt.gensalt()
    hashed = bcrypt.hashpw(pwd_bytes, salt)
    return hashed.decode("utf-8")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against its hash."""
    return bcrypt.checkpw(plain_password.encode("utf-8"), hashed_password.encode("utf-8"))


def decode_token(token: str) -> dict:
    """Decode and validate a JWT token."""
    try:
        return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except JWTError:
        raise UnauthenticatedError("Invalid or expired token")


def read_credentials(credentials: Optional[HTTPAuthorizationCredentials]) -> tuple:
    """Return ``(account_id, explicit_role)`` from bearer credentials."""
    if credentials is None:
        raise UnauthenticatedError("Not authenticated")
    payload = decode_token(credentials.credentials)
    account_id = payload.get("sub")
    if not account_id:
        raise UnauthenticatedError("Invalid token payload")
    return str(account_id), payload.get("role") or None
