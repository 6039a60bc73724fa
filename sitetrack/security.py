"""
Password hashing, bearer tokens and role guards.

Tokens are compact HS256 JWTs (``header.payload.signature``, base64url)
signed with ``settings.SECRET_KEY``; the ``sub`` claim holds the profile
id.  Passwords are stored as ``<salt hex>$<pbkdf2-sha256 hex>``.
"""
import base64
import hashlib
import hmac
import json
import os
import time
from typing import Callable

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from sitetrack.config import settings
from sitetrack.database import get_db
from sitetrack.models import Profile

_PBKDF2_ITERATIONS = 100_000


def _b64_url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("utf-8")


def _b64_url_decode(data: str) -> bytes:
    padding = "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(data + padding)


def _sign(message: bytes) -> bytes:
    return hmac.new(settings.SECRET_KEY.encode("utf-8"), message, hashlib.sha256).digest()


def create_access_token(user_id: int, role: str, expires_in: int | None = None) -> str:
    """Return a signed token for *user_id* valid for *expires_in* seconds."""
    exp_seconds = expires_in or settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60
    claims = {"sub": str(user_id), "role": role, "exp": int(time.time()) + exp_seconds}
    header_b64 = _b64_url_encode(json.dumps({"alg": "HS256", "typ": "JWT"}, separators=(",", ":")).encode())
    payload_b64 = _b64_url_encode(json.dumps(claims, separators=(",", ":")).encode())
    signature = _sign(f"{header_b64}.{payload_b64}".encode("utf-8"))
    return f"{header_b64}.{payload_b64}.{_b64_url_encode(signature)}"


def decode_access_token(token: str) -> dict | None:
    """Verify signature and expiry; return the claims or None."""
    parts = token.split(".")
    if len(parts) != 3:
        return None
    header_b64, payload_b64, signature_b64 = parts
    try:
        actual_sig = _b64_url_decode(signature_b64)
        claims = json.loads(_b64_url_decode(payload_b64).decode("utf-8"))
    except (ValueError, UnicodeDecodeError):
        return None
    expected_sig = _sign(f"{header_b64}.{payload_b64}".encode("utf-8"))
    if not hmac.compare_digest(expected_sig, actual_sig):
        return None
    if not isinstance(claims, dict) or int(claims.get("exp", 0)) < int(time.time()):
        return None
    return claims


def hash_password(password: str) -> str:
    salt = os.urandom(16)
    dk = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, _PBKDF2_ITERATIONS)
    return f"{salt.hex()}${dk.hex()}"


def verify_password(plain_password: str, hashed_password: str | None) -> bool:
    if not hashed_password or "$" not in hashed_password:
        return False
    salt_hex, hash_hex = hashed_password.split("$", 1)
    try:
        salt = bytes.fromhex(salt_hex)
        stored_hash = bytes.fromhex(hash_hex)
    except ValueError:
        return False
    dk = hashlib.pbkdf2_hmac("sha256", plain_password.encode("utf-8"), salt, _PBKDF2_ITERATIONS)
    return hmac.compare_digest(dk, stored_hash)


# ---------------------------------------------------------------------------
# FastAPI dependencies
# ---------------------------------------------------------------------------

bearer_scheme = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db),
) -> Profile:
    """Resolve the bearer token to an active ``Profile`` or answer 401."""
    if credentials is None:
        raise _unauthorized("Not authenticated")
    claims = decode_access_token(credentials.credentials)
    if not claims:
        raise _unauthorized("Invalid or expired token")

    result = await db.execute(select(Profile).where(Profile.id == int(claims["sub"])))
    user = result.scalar_one_or_none()
    if user is None:
        raise _unauthorized("User no longer exists")
    if user.status != "active":
        raise _unauthorized("User account is inactive")
    return user


def require_roles(*roles: str) -> Callable:
    """
    Dependency factory restricting a route to the given profile roles.

    Usage::

        @router.post("", dependencies=[Depends(require_roles("admin"))])
    """

    async def _role_dependency(current_user: Profile = Depends(get_current_user)) -> Profile:
        if current_user.role not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )
        return current_user

    return _role_dependency
