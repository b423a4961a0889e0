"""
API Dependencies
Common dependencies for API routes
"""

from typing import Optional

from fastapi import Header

from timeline_backend.core.exceptions import AuthenticationException
from timeline_backend.core.security import get_token_user_id, verify_access_token


async def get_current_user_id(
    authorization: Optional[str] = Header(None),
) -> int:
    """
    Dependency to get the current user id from a JWT token

    Args:
        authorization: Authorization header with Bearer token

    Returns:
        Authenticated user id

    Raises:
        AuthenticationException: If the header is missing or the token is invalid
    """
    # Extract token
    if not authorization:
        raise AuthenticationException(message="Missing authorization header")

    if not authorization.startswith("Bearer "):
        raise AuthenticationException(message="Invalid authorization header format")

    token = authorization.split(" ", 1)[1]

    # Verify token
    payload = verify_access_token(token)
    return get_token_user_id(payload)


async def get_current_user_id_optional(
    authorization: Optional[str] = Header(None),
) -> Optional[int]:
    """
    Optional dependency to get the current user id
    Returns None for anonymous callers instead of raising exception
    """
    try:
        return await get_current_user_id(authorization)
    except AuthenticationException:
        return None
