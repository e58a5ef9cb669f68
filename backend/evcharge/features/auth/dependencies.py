"""Authentication dependencies for protecting routes."""

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status

from evcharge.core import get_global_settings
from .schemas import AuthenticatedUser

AUTHENTICATION_REQUIRED = "Authentication Required"


async def get_current_user(request: Request) -> AuthenticatedUser:
    """Identify the caller from the platform-injected header.

    Falls back to ``MOCK_USER_EMAIL`` when configured for local development.

    :raises HTTPException: 401 when the caller cannot be identified
    """
    settings = get_global_settings()
    email = (request.headers.get(settings.auth_user_header) or "").strip()
    if not email:
        email = settings.mock_user_email or ""

    if not email:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=AUTHENTICATION_REQUIRED,
        )
    return AuthenticatedUser.from_email(email)


CurrentUserDep = Annotated[AuthenticatedUser, Depends(get_current_user)]

__all__ = ["get_current_user", "CurrentUserDep", "AUTHENTICATION_REQUIRED"]
