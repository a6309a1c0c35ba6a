# app/core/dependencies.py
import logging
from collections.abc import AsyncGenerator

import httpx
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.security import TokenAuthenticator
from app.database import get_db
from app.domains.push.registry import TokenRegistry
from app.exceptions.base import AppPermissionError, AuthenticationError

logger = logging.getLogger(__name__)

security = HTTPBearer()
auth = TokenAuthenticator()


async def validate_token(token: HTTPAuthorizationCredentials = Depends(security)) -> dict:
    """Validate and decode the bearer JWT.

    Returns:
        dict: Decoded token payload

    Raises:
        AuthenticationError: If token is invalid or expired
    """
    if not token or not token.credentials:
        raise AuthenticationError("Authentication token is required")
    return auth.verify_token(token.credentials)


async def get_current_user_id(request: Request, payload: dict = Depends(validate_token)) -> str:
    """Get the authenticated user's ID from the token payload.

    Raises:
        AuthenticationError: If the payload has no subject
    """
    user_id = payload.get("sub")
    if not user_id:
        raise AuthenticationError("Invalid token payload - missing user ID")

    # Add user info to request state for logging
    request.state.user_id = user_id
    return str(user_id)


async def require_admin(user_id: str = Depends(get_current_user_id)) -> str:
    """Allow only configured admin users (broadcasts).

    Raises:
        AppPermissionError: If the user is not an admin
    """
    if user_id not in settings.admin_user_ids_list:
        logger.warning("Non-admin user %s attempted a push broadcast", user_id)
        raise AppPermissionError("Only administrators can send push notifications")
    return user_id


async def get_http_client() -> AsyncGenerator[httpx.AsyncClient, None]:
    """HTTP client for upstream calls, closed after the request."""
    async with httpx.AsyncClient(timeout=settings.push_request_timeout) as client:
        yield client


async def get_token_registry(db: AsyncSession = Depends(get_db)) -> TokenRegistry:
    return TokenRegistry(db)
