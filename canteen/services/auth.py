"""
Authentication module: JWT bearer tokens, bcrypt password hashing and FastAPI dependencies.
"""

import os
from datetime import datetime, timedelta, timezone

import bcrypt
from fastapi import HTTPException, Request
from jose import JWTError, jwt

JWT_SECRET = os.environ.get("JWT_SECRET", "change-me-to-a-random-secret-key")
JWT_ALGORITHM = "HS256"
JWT_EXPIRE_HOURS = 24
RESET_TOKEN_EXPIRE_HOURS = 1

ACCESS_TOKEN = "access"
RESET_TOKEN = "password_reset"

# bcrypt only reads the first 72 bytes of a secret and newer releases refuse longer ones.
MAX_SECRET_BYTES = 72


def check_secret_length(secret: str) -> None:
    """Raise ValueError when a PIN or password is too long for bcrypt."""
    if len(secret.encode("utf-8")) > MAX_SECRET_BYTES:
        raise ValueError(f"PIN or password cannot be longer than {MAX_SECRET_BYTES} bytes")


def hash_password(password: str) -> str:
    """Hash a PIN or password with bcrypt."""
    check_secret_length(password)
    return bcrypt.hashpw(
        password.encode("utf-8"), bcrypt.gensalt()
    ).decode("utf-8")


def verify_password(password: str, hashed: str | None) -> bool:
    """
    Check a password against a stored bcrypt hash.

    A password longer than bcrypt accepts never matches, since no stored hash
    can have been produced from it.

    Raises:
        ValueError: the stored hash is missing or not a bcrypt hash.
    """
    if not hashed:
        raise ValueError("No password hash stored")
    if len(password.encode("utf-8")) > MAX_SECRET_BYTES:
        return False
    return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))


def _encode(payload: dict, hours: int) -> str:
    expire = datetime.now(timezone.utc) + timedelta(hours=hours)
    return jwt.encode({**payload, "exp": expire}, JWT_SECRET, algorithm=JWT_ALGORITHM)


def create_token(account_id: int, role: str) -> str:
    """Issue a bearer token for an account, valid for 24 hours."""
    return _encode(
        {"sub": str(account_id), "role": role, "type": ACCESS_TOKEN},
        JWT_EXPIRE_HOURS,
    )


def create_reset_token(account_id: int) -> str:
    """Issue a one-hour password reset token."""
    return _encode(
        {"sub": str(account_id), "type": RESET_TOKEN},
        RESET_TOKEN_EXPIRE_HOURS,
    )


def verify_token(token: str, expected_type: str = ACCESS_TOKEN) -> dict:
    """
    Decode and validate a JWT.

    Returns:
        The decoded payload.

    Raises:
        ValueError: the token is invalid, expired or of the wrong type.
    """
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except JWTError as e:
        raise ValueError(f"Invalid token: {e}")
    if "sub" not in payload:
        raise ValueError("Token carries no subject")
    if payload.get("type") != expected_type:
        raise ValueError("Invalid token type")
    return payload


def get_current_user(request: Request) -> dict:
    """
    FastAPI dependency: extract and validate the bearer token from the Authorization header.

    Returns:
        Payload dict with ``sub`` (account id as string) and ``role``.

    Raises:
        HTTPException(401): no token supplied.
        HTTPException(403): token invalid or expired.
    """
    auth_header = request.headers.get("Authorization", "")
    token = auth_header[7:] if auth_header.startswith("Bearer ") else None

    if not token:
        raise HTTPException(status_code=401, detail="Access token required")

    try:
        return verify_token(token)
    except ValueError:
        raise HTTPException(status_code=403, detail="Invalid token")


def current_user_id(user: dict) -> int:
    return int(user["sub"])


def require_roles(user: dict, *roles: str) -> None:
    """Raise 403 unless the authenticated user holds one of ``roles``."""
    if user.get("role") not in roles:
        if roles == ("admin",):
            detail = "Admin access required"
        else:
            detail = "Staff or Admin access required"
        raise HTTPException(status_code=403, detail=detail)
