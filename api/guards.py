"""
Authorization guards.

Each guard is a plain predicate over the AuthContext produced by bearer
token authentication. Routes combine them with api.dependencies.require(),
which evaluates them in order and stops at the first failure.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from models.user import UserInDB
from services.token_store import is_current, is_valid


class EmailNotVerifiedError(Exception):
    """The caller is authenticated but has not verified their email address."""

    def __init__(self):
        super().__init__("Email address has not been verified")


@dataclass(frozen=True)
class AuthContext:
    """The resolved user and raw bearer token of one request."""
    user: UserInDB
    token: str
    now: datetime


Guard = Callable[[Optional[AuthContext]], bool]


def authenticated(context: Optional[AuthContext]) -> bool:
    return context is not None and context.user is not None and bool(context.token)


def token_owned(context: Optional[AuthContext]) -> bool:
    """The presented token is one of the user's stored sessions."""
    if not authenticated(context):
        return False
    return is_current(context.user, context.token)


def token_valid(context: Optional[AuthContext]) -> bool:
    """Like token_owned, and the stored session has not expired."""
    if not authenticated(context):
        return False
    return is_valid(context.user, context.token, context.now)


def email_verified(context: Optional[AuthContext]) -> bool:
    """Raises EmailNotVerifiedError instead of returning False."""
    if not authenticated(context) or not context.user.email.verified:
        raise EmailNotVerifiedError()
    return True


def public(endpoint):
    """Mark an endpoint as reachable without a bearer token."""
    endpoint.is_public = True
    return endpoint
