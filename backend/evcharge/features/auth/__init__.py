"""Caller identity for protected routes."""

from .dependencies import CurrentUserDep, get_current_user
from .schemas import AuthenticatedUser

__all__ = ["AuthenticatedUser", "CurrentUserDep", "get_current_user"]
