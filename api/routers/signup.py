"""Signup router: account creation and email address verification."""

from fastapi import APIRouter, Depends, HTTPException, Query, status

from api.dependencies import get_email_service, get_user_store, valid_session
from api.guards import AuthContext, public
from models.user import EmailVerificationRequest, UserCreate, UserResponse
from services.email_service import EmailService
from services.user_service import VerificationError, resend_verification, signup, verify_email
from storage.errors import DuplicateEmailError, NotFoundError


router = APIRouter(
    prefix="/signup",
    tags=["Signup"],
    dependencies=[Depends(valid_session)],
)


@router.post("", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
@public
async def register(
    user_data: UserCreate,
    user_store=Depends(get_user_store),
    email_service: EmailService = Depends(get_email_service),
):
    """Register a new user account and send the verification email."""
    existing_user = await user_store.find_by_email(user_data.email)
    if existing_user:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Email already registered"
        )

    try:
        user = await signup(user_store, email_service, user_data)
    except DuplicateEmailError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Email already registered"
        )
    return user.to_response()


@router.post("/verify-email", response_model=UserResponse)
@public
async def confirm_email(
    verification: EmailVerificationRequest,
    user_store=Depends(get_user_store),
):
    """Check a verification code and mark the email address as verified."""
    return await _confirm(user_store, verification.user_id, verification.code)


@router.get("/verify-email", response_model=UserResponse)
@public
async def confirm_email_link(
    user_id: str = Query(..., alias="id"),
    code: str = Query(..., min_length=1),
    user_store=Depends(get_user_store),
):
    """Target of the link in the verification email."""
    return await _confirm(user_store, user_id, code)


async def _confirm(user_store, user_id: str, code: str) -> UserResponse:
    try:
        user = await verify_email(user_store, user_id, code)
    except (VerificationError, NotFoundError) as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return user.to_response()


@router.post("/resend-verification")
async def resend(
    context: AuthContext = Depends(valid_session),
    user_store=Depends(get_user_store),
    email_service: EmailService = Depends(get_email_service),
):
    """Issue a fresh verification code for the logged-in user."""
    try:
        await resend_verification(user_store, email_service, context.user)
    except VerificationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return {"message": "Verification email sent"}
