"""
Token Store

Owns the list of bearer tokens each user currently holds. A token that is
not in this list is revoked, whatever its signature and exp claim say.

Mutations are delegated to the user store's atomic push/pull primitives and
shielded from cancellation, so a client that disconnects mid-request never
leaves a half-applied change behind.
"""

import asyncio
import logging
import time
from datetime import datetime
from typing import Optional

from config.logging_utils import log_debug
from models.user import TokenEntry, UserInDB
from storage.common import to_naive_utc, utcnow
from storage.errors import NotFoundError

logger = logging.getLogger(__name__)


def find_entry(user: Optional[UserInDB], token: Optional[str]) -> Optional[TokenEntry]:
    if user is None or not token:
        return None
    for entry in user.tokens:
        if entry.token == token:
            return entry
    return None


def is_current(user: Optional[UserInDB], token: Optional[str]) -> bool:
    """True iff the token is one of the user's stored tokens."""
    return find_entry(user, token) is not None


def is_valid(user: Optional[UserInDB], token: Optional[str], now: Optional[datetime] = None) -> bool:
    """True iff the token is current and its stored expiry (if any) is after now."""
    entry = find_entry(user, token)
    if entry is None:
        return False
    if entry.expiry is None:
        return True
    now = to_naive_utc(now) if now is not None else utcnow()
    return to_naive_utc(entry.expiry) > now


class TokenStore:
    """Adds and removes tokens on user records."""

    def __init__(self, user_store):
        self.user_store = user_store

    async def _mutate(self, operation: str, user_id: str, call) -> UserInDB:
        started = time.monotonic()
        try:
            user = await asyncio.shield(call)
        except NotFoundError:
            raise
        except Exception:
            logger.exception(
                "Token store %s failed for user %s after %.0f ms",
                operation, user_id, (time.monotonic() - started) * 1000,
            )
            raise
        if user is None:
            raise NotFoundError("User", user_id)
        log_debug(
            "%s for user %s took %.0f ms (%d tokens)",
            operation, user_id, (time.monotonic() - started) * 1000, len(user.tokens),
            prefix="TOKENS",
        )
        return user

    async def add_token(self, user_id: str, token: str, expiry: Optional[datetime] = None) -> UserInDB:
        """Store a token for the user. Adding the same token twice keeps one entry."""
        return await self._mutate(
            "add_token", user_id,
            self.user_store.push_token(user_id, token, to_naive_utc(expiry)),
        )

    async def remove_token(self, user_id: str, token: str) -> UserInDB:
        """Revoke a token. Removing a token that is not stored is a no-op."""
        return await self._mutate(
            "remove_token", user_id, self.user_store.pull_token(user_id, token)
        )

    async def prune_expired(self, user_id: str, now: Optional[datetime] = None) -> UserInDB:
        """Drop entries whose stored expiry has passed."""
        now = to_naive_utc(now) if now is not None else utcnow()
        return await self._mutate(
            "prune_expired", user_id, self.user_store.pull_expired_tokens(user_id, now)
        )

    is_current = staticmethod(is_current)
    is_valid = staticmethod(is_valid)
