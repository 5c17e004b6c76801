"""Users router: the logged-in user's profile."""

from fastapi import APIRouter, Depends, HTTPException, status

from api.dependencies import get_email_service, get_task_store, get_user_store, valid_session
from api.guards import AuthContext
from models.user import UserResponse, UserUpdate
from services.email_service import EmailService
from services.user_service import delete_account, update_profile
from storage.errors import DuplicateEmailError


router = APIRouter(prefix="/users", tags=["Users"])


@router.get("/me", response_model=UserResponse)
async def get_me(context: AuthContext = Depends(valid_session)):
    """Get current authenticated user information."""
    return context.user.to_response()


@router.patch("/me", response_model=UserResponse)
async def update_me(
    changes: UserUpdate,
    context: AuthContext = Depends(valid_session),
    user_store=Depends(get_user_store),
    email_service: EmailService = Depends(get_email_service),
):
    """Update the profile. Changing the email address requires verifying it again."""
    try:
        user = await update_profile(user_store, email_service, context.user, changes)
    except DuplicateEmailError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Email already registered"
        )
    return user.to_response()


@router.delete("/me", response_model=UserResponse)
async def delete_me(
    context: AuthContext = Depends(valid_session),
    user_store=Depends(get_user_store),
    task_store=Depends(get_task_store),
):
    """Delete the account and every task it owns; returns the deleted profile."""
    user = await delete_account(user_store, task_store, context.user.id)
    return user.to_response()
