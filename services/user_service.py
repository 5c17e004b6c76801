"""User account service: signup, email verification, profile changes and deletion."""

import hashlib
import hmac
import logging
import secrets
from datetime import timedelta

from config.settings import settings
from models.user import UserCreate, UserInDB, UserUpdate
from services.auth_service import hash_password
from services.email_service import EmailDeliveryError, EmailService
from storage.common import utcnow
from storage.errors import NotFoundError

logger = logging.getLogger(__name__)


class VerificationError(Exception):
    """The email verification code is wrong, expired or already used."""


def _digest(code: str) -> str:
    return hashlib.sha256(code.encode("utf-8")).hexdigest()


def new_email_record(address: str) -> tuple[dict, str]:
    """Build an unverified email sub-document and return it with the plain code."""
    code = secrets.token_urlsafe(24)
    record = {
        "address": address.lower(),
        "verified": False,
        "verification": {
            "code": _digest(code),
            "expiry": utcnow() + timedelta(hours=settings.EMAIL_VERIFICATION_EXPIRE_HOURS),
        },
    }
    return record, code


async def _send_verification(email_service: EmailService, user: UserInDB, code: str) -> None:
    try:
        await email_service.send_verification_email(user.id, user.email.address, code)
    except EmailDeliveryError:
        # The account stays usable; the user can ask for another code
        logger.warning("Verification email for user %s was not delivered", user.id)


async def signup(user_store, email_service: EmailService, user_data: UserCreate) -> UserInDB:
    """Create an unverified user and email them a verification code."""
    email, code = new_email_record(user_data.email)
    user = await user_store.create(
        name=user_data.name,
        password_hash=hash_password(user_data.password),
        email=email,
    )
    logger.info("Created user %s", user.id)
    await _send_verification(email_service, user, code)
    return user


async def verify_email(user_store, user_id: str, code: str) -> UserInDB:
    user = await user_store.find_by_id(user_id)
    if user is None:
        raise VerificationError("Invalid verification code")
    if user.email.verified:
        return user

    pending = user.email.verification
    if pending is None or pending.expiry <= utcnow():
        raise VerificationError("Verification code has expired")
    if not hmac.compare_digest(pending.code, _digest(code)):
        raise VerificationError("Invalid verification code")

    updated = await user_store.update(
        user_id, {"email.verified": True}, unset=("email.verification",)
    )
    if updated is None:
        raise NotFoundError("User", user_id)
    logger.info("User %s verified their email address", user_id)
    return updated


async def resend_verification(user_store, email_service: EmailService, user: UserInDB) -> UserInDB:
    if user.email.verified:
        raise VerificationError("Email address is already verified")
    email, code = new_email_record(user.email.address)
    updated = await user_store.update(user.id, {"email": email})
    if updated is None:
        raise NotFoundError("User", user.id)
    await _send_verification(email_service, updated, code)
    return updated


async def update_profile(
    user_store, email_service: EmailService, user: UserInDB, changes: UserUpdate
) -> UserInDB:
    """Apply profile changes. A new email address must be verified again."""
    fields = {}
    code = None
    if changes.name is not None:
        fields["name"] = changes.name.strip()
    if changes.password is not None:
        fields["password_hash"] = hash_password(changes.password)
    if changes.email is not None and changes.email != user.email.address:
        fields["email"], code = new_email_record(changes.email)

    if not fields:
        return user

    updated = await user_store.update(user.id, fields)
    if updated is None:
        raise NotFoundError("User", user.id)
    if code is not None:
        await _send_verification(email_service, updated, code)
    return updated


async def delete_account(user_store, task_store, user_id: str) -> UserInDB:
    """
    Delete a user and every task they own.

    Tasks go first, then the user. The two steps are not atomic: if the
    second one fails the call can simply be retried, since deleting an
    owner's tasks again is a no-op.
    """
    deleted_tasks = await task_store.delete_by_owner(user_id)
    user = await user_store.delete(user_id)
    if user is None:
        raise NotFoundError("User", user_id)
    logger.info("Deleted user %s and %d tasks", user_id, deleted_tasks)
    return user
