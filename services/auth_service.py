"""Authentication service for password hashing, credential checks and session login/logout."""

import logging
from typing import Optional

import bcrypt

from config.logging_utils import log_debug
from config.settings import settings
from models.user import Token, UserInDB
from services.token_service import TokenIssuer
from services.token_store import TokenStore

logger = logging.getLogger(__name__)

# Checked when the email is unknown; must share the cost factor of hash_password()
_DUMMY_HASH = bcrypt.hashpw(
    b"task-manager-dummy-password", bcrypt.gensalt(rounds=settings.BCRYPT_ROUNDS)
).decode("utf-8")


def hash_password(password: str) -> str:
    """Hash a password using bcrypt."""
    password_bytes = password.encode('utf-8')
    salt = bcrypt.gensalt(rounds=settings.BCRYPT_ROUNDS)
    hashed = bcrypt.hashpw(password_bytes, salt)
    return hashed.decode('utf-8')


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against its hash. Any error counts as a mismatch."""
    try:
        password_bytes = plain_password.encode('utf-8')
        hashed_bytes = hashed_password.encode('utf-8')
        return bcrypt.checkpw(password_bytes, hashed_bytes)
    except (ValueError, TypeError, AttributeError):
        return False


async def authenticate_user(user_store, email: str, password: str) -> Optional[UserInDB]:
    """Authenticate a user with email and password."""
    user = await user_store.find_by_email(email.lower())
    if not user:
        verify_password(password, _DUMMY_HASH)
        return None
    if not verify_password(password, user.password_hash):
        log_debug("Password mismatch for user %s", user.id, prefix="AUTH")
        return None
    return user


async def login_user(token_store: TokenStore, issuer: TokenIssuer, user: UserInDB) -> Token:
    """Mint a token for an authenticated user and record it as a live session."""
    issued = issuer.issue(user.id, user.email.address)
    await token_store.prune_expired(user.id)
    await token_store.add_token(user.id, issued.token, issued.expires_at)
    logger.info("User %s logged in", user.id)
    return Token(auth_token=issued.token)


async def logout_user(token_store: TokenStore, user: UserInDB, token: str) -> UserInDB:
    """Revoke one session token. Logging out twice is not an error."""
    updated = await token_store.remove_token(user.id, token)
    logger.info("User %s logged out", user.id)
    return updated
