"""Authentication router for login and logout of bearer-token sessions."""

from fastapi import APIRouter, Depends, HTTPException, status

from api.dependencies import (
    credentials_exception,
    get_token_issuer,
    get_token_store,
    get_user_store,
    valid_session,
)
from api.guards import AuthContext, public
from models.user import Token, UserLogin
from services.auth_service import authenticate_user, login_user, logout_user
from services.token_service import TokenIssuer
from services.token_store import TokenStore
from storage.errors import NotFoundError


router = APIRouter(
    prefix="/auth",
    tags=["Authentication"],
    dependencies=[Depends(valid_session)],
)


@router.post("/login", response_model=Token)
@public
async def login(
    user_data: UserLogin,
    user_store=Depends(get_user_store),
    token_store: TokenStore = Depends(get_token_store),
    issuer: TokenIssuer = Depends(get_token_issuer),
):
    """Authenticate user and return a bearer token."""
    user = await authenticate_user(user_store, user_data.email, user_data.password)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        return await login_user(token_store, issuer, user)
    except NotFoundError:
        # Account deleted between the password check and storing the token
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )


@router.post("/logout")
async def logout(
    context: AuthContext = Depends(valid_session),
    token_store: TokenStore = Depends(get_token_store),
):
    """Revoke the bearer token used for this request."""
    try:
        await logout_user(token_store, context.user, context.token)
    except NotFoundError:
        raise credentials_exception()
    return {"message": "Successfully logged out"}
