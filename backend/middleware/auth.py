"""
Authentication Dependencies

Provides:
- authenticate: Resolve bearer credentials to an AuthUser
- get_current_user_required: FastAPI dependency wrapping authenticate
"""

import uuid
from typing import Optional
import logging

from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from people_merge.errors import AuthenticationError
from sentry_integration import set_user
from services.auth import decode_token, AuthUser

logger = logging.getLogger(__name__)

# Security scheme; missing headers are reported by authenticate, not FastAPI
security = HTTPBearer(auto_error=False)


def authenticate(credentials: Optional[HTTPAuthorizationCredentials]) -> AuthUser:
    """
    Verify bearer credentials.

    Raises:
        AuthenticationError: missing, invalid, expired or non-access token
    """
    if not credentials or not credentials.credentials:
        raise AuthenticationError("Missing auth token")

    token_data = decode_token(credentials.credentials)
    if not token_data:
        raise AuthenticationError("Invalid or expired token")

    if token_data.token_type != "access":
        raise AuthenticationError("Invalid token type")

    try:
        user_id = uuid.UUID(token_data.user_id)
    except ValueError:
        logger.warning("Token subject is not a valid user id")
        raise AuthenticationError("Invalid token subject")

    set_user(str(user_id))
    return AuthUser(id=user_id, email=token_data.email)


async def get_current_user_required(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> AuthUser:
    """Extract the current user from the bearer token, 401 otherwise."""
    return authenticate(credentials)
