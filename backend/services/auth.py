"""
Authentication Service for Household Core

Implements:
- JWT access token verification (Supabase-style HS256 tokens)
- Token minting for tooling and tests

Group roles (admin/member) are not carried in the token; they are looked up
per group in group_members at request time.
"""

import uuid
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt
from pydantic import BaseModel

from config import Settings, get_settings

logger = logging.getLogger(__name__)


# ==================== MODELS ====================

class TokenData(BaseModel):
    """Data extracted from JWT token"""
    user_id: str
    email: Optional[str] = None
    exp: Optional[datetime] = None
    token_type: str = "access"


class AuthUser(BaseModel):
    """Authenticated caller"""
    id: uuid.UUID
    email: Optional[str] = None


# ==================== TOKENS ====================

def create_access_token(
    user_id: str,
    email: Optional[str] = None,
    expires_delta: Optional[timedelta] = None,
    settings: Optional[Settings] = None,
) -> str:
    """Create a signed access token for user_id"""
    settings = settings or get_settings()
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES))

    to_encode = {
        "sub": str(user_id),
        "type": "access",
        "exp": expire,
        "iat": now,
    }
    if email:
        to_encode["email"] = email
    if settings.JWT_AUDIENCE:
        to_encode["aud"] = settings.JWT_AUDIENCE

    return jwt.encode(to_encode, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str, settings: Optional[Settings] = None) -> Optional[TokenData]:
    """Decode and validate a JWT token. Returns None when it is not acceptable."""
    settings = settings or get_settings()
    if not settings.JWT_SECRET_KEY:
        logger.error("JWT_SECRET_KEY is not configured; rejecting token")
        return None

    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM],
            audience=settings.JWT_AUDIENCE or None,
            options={"verify_aud": bool(settings.JWT_AUDIENCE)},
        )
    except JWTError as e:
        logger.warning(f"JWT decode error: {e}")
        return None

    user_id = payload.get("sub")
    if not user_id:
        return None

    exp = payload.get("exp")
    return TokenData(
        user_id=user_id,
        email=payload.get("email"),
        token_type=payload.get("type", "access"),
        exp=datetime.fromtimestamp(exp, tz=timezone.utc) if exp else None,
    )
