"""API dependencies for authentication and authorization."""

from typing import Optional

from fastapi import Depends, HTTPException, status, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from api.guards import AuthContext, EmailNotVerifiedError, Guard, authenticated, email_verified, token_valid
from config.logging_utils import log_debug
from services.email_service import EmailService
from services.token_service import TokenIssuer, TokenValidator
from services.token_store import TokenStore
from storage.common import utcnow


bearer_scheme = HTTPBearer(auto_error=False)


def credentials_exception() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_user_store(request: Request):
    return request.app.state.user_store


def get_task_store(request: Request):
    return request.app.state.task_store


def get_token_store(request: Request) -> TokenStore:
    return request.app.state.token_store


def get_token_issuer(request: Request) -> TokenIssuer:
    return request.app.state.token_issuer


def get_token_validator(request: Request) -> TokenValidator:
    return request.app.state.token_validator


def get_email_service(request: Request) -> EmailService:
    return request.app.state.email_service


def is_public_route(request: Request) -> bool:
    return getattr(request.scope.get("endpoint"), "is_public", False)


async def get_token_from_request(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Optional[str]:
    """Extract the bearer token from the Authorization header."""
    if credentials is None or not credentials.credentials:
        return None
    return credentials.credentials


async def authenticate_request(
    request: Request,
    token: Optional[str] = Depends(get_token_from_request),
    validator: TokenValidator = Depends(get_token_validator),
) -> Optional[AuthContext]:
    """Verify the bearer token and resolve its user. Public routes skip this."""
    if is_public_route(request) or not token:
        return None
    user = await validator.authenticate(token)
    if user is None:
        return None
    return AuthContext(user=user, token=token, now=utcnow())


def require(*guards: Guard):
    """
    Build a dependency admitting a request only if every guard passes.

    Authentication is always checked first. A guard returning False yields
    the generic 401; an unverified email yields a 403 with its own message.
    """

    async def dependency(
        request: Request,
        context: Optional[AuthContext] = Depends(authenticate_request),
    ) -> Optional[AuthContext]:
        if is_public_route(request):
            return None
        if not authenticated(context):
            raise credentials_exception()
        for guard in guards:
            try:
                admitted = guard(context)
            except EmailNotVerifiedError as e:
                raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
            if not admitted:
                log_debug("Guard %s rejected user %s", guard.__name__, context.user.id, prefix="AUTH")
                raise credentials_exception()
        return context

    return dependency


valid_session = require(token_valid)
verified_session = require(token_valid, email_verified)
