"""
Authentication Service

Handles password hashing, JWT creation/validation, and login.
"""

import logging
from datetime import datetime, timedelta, timezone

import jwt
from passlib.context import CryptContext
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.config import get_settings
from backend.models.user import User

logger = logging.getLogger(__name__)

settings = get_settings()

# Password hashing context
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(password: str) -> str:
    """Hash a plain-text password with bcrypt."""
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a plain-text password against a bcrypt hash."""
    return pwd_context.verify(plain_password, hashed_password)


def create_access_token(
    sub: str,
    email: str,
    org_id: str,
    mimic_role: str | None = None,
) -> str:
    """
    Create a JWT access token.

    Claims match the contract in backend/middleware/rbac.py _validate_token():
      - sub: str(user.id)
      - email: user.email
      - org_id: str(user.organization_id)
      - mimic_role: optional session-only role overlay
      - type: "access"

    Roles are deliberately absent; they are loaded from the database per request.
    """
    now = datetime.now(timezone.utc)
    payload = {
        "sub": sub,
        "email": email,
        "org_id": org_id,
        "type": "access",
        "iat": now,
        "exp": now + timedelta(minutes=settings.access_token_expire_minutes),
    }
    if mimic_role:
        payload["mimic_role"] = mimic_role
    return jwt.encode(payload, settings.secret_key, algorithm="HS256")


def create_refresh_token(
    sub: str,
    org_id: str,
) -> str:
    """Create a JWT refresh token (longer-lived, fewer claims)."""
    now = datetime.now(timezone.utc)
    payload = {
        "sub": sub,
        "org_id": org_id,
        "type": "refresh",
        "iat": now,
        "exp": now + timedelta(days=settings.refresh_token_expire_days),
    }
    return jwt.encode(payload, settings.secret_key, algorithm="HS256")


def decode_token(token: str) -> dict:
    """Decode and validate a JWT token. Raises jwt.InvalidTokenError on failure."""
    return jwt.decode(token, settings.secret_key, algorithms=["HS256"])


async def authenticate_user(db: AsyncSession, email: str, password: str) -> User | None:
    """Return the active user matching the credentials, or None."""
    result = await db.execute(select(User).where(User.email == email.lower()))
    user = result.scalar_one_or_none()

    if user is None or not user.is_active or not user.hashed_password:
        return None
    if not verify_password(password, user.hashed_password):
        return None

    user.last_login_at = datetime.now(timezone.utc)
    await db.flush()
    return user
