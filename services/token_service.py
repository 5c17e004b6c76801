"""
Token Service

Issues and validates the signed bearer tokens handed out at login.

Key material is modelled by KeyProvider, which is built once at startup and
handed to the issuer and validator explicitly:

- HS* algorithms sign and verify with the shared JWT_SECRET.
- RS*/ES* algorithms sign with JWT_PRIVATE_KEY and verify either with
  JWT_PUBLIC_KEY or with keys fetched from a remote JWKS endpoint.

JWKS responses are cached for JWKS_CACHE_MINUTES. An unknown key id triggers
an early refresh, limited to JWKS_REQUESTS_PER_MINUTE fetches.
"""

import asyncio
import logging
import time
import uuid
from collections import deque
from datetime import datetime, timedelta
from typing import Optional, Union

import httpx
from jose import JWTError, jwt
from pydantic import BaseModel, ValidationError

from config.logging_utils import log_debug
from config.settings import Settings
from models.user import TokenData, UserInDB
from storage.common import utcnow

logger = logging.getLogger(__name__)


class KeyProviderError(Exception):
    """Raised when signing or verification keys cannot be obtained."""


class IssuedToken(BaseModel):
    """A freshly signed token and the moment it stops being valid."""
    token: str
    expires_at: datetime


class JWKSClient:
    """Fetches and caches a remote JSON Web Key Set."""

    def __init__(
        self,
        url: str,
        cache_ttl: timedelta = timedelta(minutes=10),
        requests_per_minute: int = 5,
        timeout: float = 10.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.url = url
        self.cache_ttl = cache_ttl
        self.requests_per_minute = requests_per_minute
        self.timeout = timeout
        self._http_client = http_client
        self._keys: dict[str, dict] = {}
        self._fetched_at: Optional[float] = None
        self._fetch_times: deque = deque()
        self._lock = asyncio.Lock()

    @property
    def is_fresh(self) -> bool:
        if self._fetched_at is None:
            return False
        return time.monotonic() - self._fetched_at < self.cache_ttl.total_seconds()

    def _may_fetch(self) -> bool:
        """Sliding one-minute window over previous fetches."""
        now = time.monotonic()
        while self._fetch_times and now - self._fetch_times[0] >= 60:
            self._fetch_times.popleft()
        return len(self._fetch_times) < self.requests_per_minute

    async def _fetch(self) -> dict[str, dict]:
        self._fetch_times.append(time.monotonic())
        started = time.monotonic()
        try:
            if self._http_client is not None:
                response = await self._http_client.get(self.url, timeout=self.timeout)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.get(self.url)
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise KeyProviderError(f"Could not fetch JWKS from {self.url}: {e}") from e

        if not isinstance(payload, dict) or not isinstance(payload.get("keys"), list):
            raise KeyProviderError(f"JWKS from {self.url} has no 'keys' list")
        keys = {}
        for index, key in enumerate(payload["keys"]):
            if not isinstance(key, dict):
                raise KeyProviderError(f"JWKS from {self.url} has a malformed key at index {index}")
            keys[key.get("kid") or f"_{index}"] = key
        log_debug(
            "Fetched %d signing keys in %.0f ms", len(keys),
            (time.monotonic() - started) * 1000, prefix="JWKS",
        )
        return keys

    async def refresh(self, force: bool = False) -> None:
        async with self._lock:
            if self.is_fresh and not force:
                return
            if not self._may_fetch():
                log_debug("JWKS refresh skipped, rate limit reached", prefix="JWKS")
                return
            try:
                self._keys = await self._fetch()
                self._fetched_at = time.monotonic()
            except KeyProviderError:
                if not self._keys:
                    raise
                logger.warning("JWKS refresh failed, keeping %d cached keys", len(self._keys))

    async def get_key(self, kid: Optional[str]) -> Optional[dict]:
        """Return the JWK for a key id, refreshing the cache when needed."""
        if not self.is_fresh:
            await self.refresh()
        key = self._lookup(kid)
        if key is None and kid is not None:
            await self.refresh(force=True)
            key = self._lookup(kid)
        return key

    def _lookup(self, kid: Optional[str]) -> Optional[dict]:
        if kid is None:
            # Tokens without a kid are only accepted against a single-key set
            return next(iter(self._keys.values())) if len(self._keys) == 1 else None
        return self._keys.get(kid)


class KeyProvider:
    """Signing and verification key material for one algorithm."""

    def __init__(
        self,
        algorithm: str,
        secret: Optional[str] = None,
        private_key: Optional[str] = None,
        public_key: Optional[str] = None,
        key_id: Optional[str] = None,
        jwks_client: Optional[JWKSClient] = None,
    ):
        self.algorithm = algorithm
        self.secret = secret
        self.private_key = private_key
        self.public_key = public_key
        self.key_id = key_id
        self.jwks_client = jwks_client

    @classmethod
    def from_settings(cls, settings: Settings, http_client: Optional[httpx.AsyncClient] = None) -> "KeyProvider":
        jwks_client = None
        if settings.JWKS_URL:
            jwks_client = JWKSClient(
                settings.JWKS_URL,
                cache_ttl=timedelta(minutes=settings.JWKS_CACHE_MINUTES),
                requests_per_minute=settings.JWKS_REQUESTS_PER_MINUTE,
                timeout=settings.HTTP_TIMEOUT_SECONDS,
                http_client=http_client,
            )
        return cls(
            algorithm=settings.JWT_ALGORITHM,
            secret=settings.JWT_SECRET if settings.uses_hmac else None,
            private_key=settings.JWT_PRIVATE_KEY,
            public_key=settings.JWT_PUBLIC_KEY,
            key_id=settings.JWT_KEY_ID,
            jwks_client=jwks_client,
        )

    @property
    def uses_hmac(self) -> bool:
        return self.algorithm.startswith("HS")

    def signing_key(self) -> str:
        key = self.secret if self.uses_hmac else self.private_key
        if not key:
            raise KeyProviderError(f"No signing key configured for {self.algorithm}")
        return key

    async def verification_key(self, token: str) -> Optional[Union[str, dict]]:
        """
        Key that should verify the given token.

        Returns None when the token names a key we do not know, which the
        caller treats like any other invalid token. Raises KeyProviderError
        when no key source is configured or the key set cannot be fetched.
        """
        if self.uses_hmac:
            return self.signing_key()

        if self.jwks_client is not None:
            try:
                kid = jwt.get_unverified_header(token).get("kid")
            except JWTError:
                return None
            return await self.jwks_client.get_key(kid)

        if self.public_key:
            return self.public_key
        raise KeyProviderError(f"No verification key configured for {self.algorithm}")


class TokenIssuer:
    """Creates signed, time-bound bearer tokens."""

    def __init__(self, key_provider: KeyProvider, audience: str, issuer: str, ttl: timedelta):
        self.key_provider = key_provider
        self.audience = audience
        self.issuer = issuer
        self.ttl = ttl

    def issue(self, user_id: str, email: str) -> IssuedToken:
        issued_at = utcnow().replace(microsecond=0)
        expires_at = issued_at + self.ttl
        claims = {
            "sub": user_id,
            "email": email,
            "iat": issued_at,
            "exp": expires_at,
            "aud": self.audience,
            "iss": self.issuer,
            # Unique per call even when two logins land in the same second
            "jti": uuid.uuid4().hex,
        }
        headers = {"kid": self.key_provider.key_id} if self.key_provider.key_id else None
        token = jwt.encode(
            claims,
            self.key_provider.signing_key(),
            algorithm=self.key_provider.algorithm,
            headers=headers,
        )
        return IssuedToken(token=token, expires_at=expires_at)


class TokenValidator:
    """Verifies bearer tokens and resolves them to users."""

    def __init__(self, key_provider: KeyProvider, user_store, audience: str, issuer: str):
        self.key_provider = key_provider
        self.user_store = user_store
        self.audience = audience
        self.issuer = issuer

    async def decode(self, token: str) -> Optional[TokenData]:
        """Return the verified claims, or None if the token is not acceptable."""
        key = await self.key_provider.verification_key(token)
        if key is None:
            return None
        try:
            payload = jwt.decode(
                token,
                key,
                algorithms=[self.key_provider.algorithm],
                audience=self.audience,
                issuer=self.issuer,
                options={"require_exp": True, "require_iat": True, "require_sub": True},
            )
        except JWTError as e:
            log_debug("Token rejected: %s", type(e).__name__, prefix="AUTH")
            return None

        try:
            return TokenData(**payload)
        except ValidationError:
            return None

    async def authenticate(self, token: str) -> Optional[UserInDB]:
        """Resolve a token to its user, or None for any kind of rejection."""
        token_data = await self.decode(token)
        if token_data is None:
            return None
        user = await self.user_store.find_by_id(token_data.user_id)
        if user is None:
            log_debug("Token subject %s has no user", token_data.user_id, prefix="AUTH")
        return user
