"""Tests for token issuance, key handling and validation."""

import calendar
from datetime import timedelta

import httpx
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from jose import jwk, jwt

from conftest import make_user
from config.settings import settings
from services.token_service import (
    JWKSClient,
    KeyProvider,
    KeyProviderError,
    TokenIssuer,
    TokenValidator,
)
from services.token_store import TokenStore


def generate_rsa_keypair():
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("utf-8")
    public_pem = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode("utf-8")
    return private_pem, public_pem


def jwks_document(public_pem: str, kid: str) -> dict:
    key = jwk.construct(public_pem, "RS256").to_dict()
    key["kid"] = kid
    key["use"] = "sig"
    return {"keys": [key]}


@pytest.fixture(scope="module")
def rsa_keys():
    return generate_rsa_keypair()


class TestTokenIssuer:
    """Tests for token creation."""

    def test_token_carries_identity_and_standard_claims(self, issuer):
        issued = issuer.issue("user-id", "jenny@example.com")
        claims = jwt.get_unverified_claims(issued.token)

        assert claims["sub"] == "user-id"
        assert claims["email"] == "jenny@example.com"
        assert claims["aud"] == settings.JWT_AUDIENCE
        assert claims["iss"] == settings.JWT_ISSUER
        assert claims["exp"] - claims["iat"] == 30 * 60
        assert "jti" in claims

    def test_tokens_are_unique_for_identical_claims(self, issuer):
        first = issuer.issue("user-id", "jenny@example.com")
        second = issuer.issue("user-id", "jenny@example.com")

        assert first.token != second.token

    def test_expiry_matches_ttl(self, issuer):
        issued = issuer.issue("user-id", "jenny@example.com")
        claims = jwt.get_unverified_claims(issued.token)

        assert claims["exp"] == calendar.timegm(issued.expires_at.utctimetuple())

    def test_missing_signing_key_raises(self):
        provider = KeyProvider(algorithm="RS256")
        issuer = TokenIssuer(provider, audience="a", issuer="i", ttl=timedelta(minutes=5))

        with pytest.raises(KeyProviderError):
            issuer.issue("user-id", "jenny@example.com")

    def test_key_id_is_written_to_header(self, rsa_keys):
        private_pem, _ = rsa_keys
        provider = KeyProvider(algorithm="RS256", private_key=private_pem, key_id="key-1")
        issuer = TokenIssuer(provider, audience="a", issuer="i", ttl=timedelta(minutes=5))

        token = issuer.issue("user-id", "jenny@example.com").token

        assert jwt.get_unverified_header(token)["kid"] == "key-1"


class TestTokenValidator:
    """Tests for signature, claim and user checks."""

    @pytest.mark.asyncio
    async def test_round_trip_resolves_same_user(self, user_store, issuer, validator):
        user = await make_user(user_store)
        issued = issuer.issue(user.id, user.email.address)
        await TokenStore(user_store).add_token(user.id, issued.token, issued.expires_at)

        resolved = await validator.authenticate(issued.token)

        assert resolved is not None
        assert resolved.id == user.id

    @pytest.mark.asyncio
    async def test_bad_signature_is_rejected(self, user_store, validator):
        user = await make_user(user_store)
        forged_provider = KeyProvider(algorithm="HS256", secret="not-the-real-secret")
        forged = TokenIssuer(
            forged_provider, audience=settings.JWT_AUDIENCE,
            issuer=settings.JWT_ISSUER, ttl=timedelta(minutes=5),
        ).issue(user.id, user.email.address)

        assert await validator.decode(forged.token) is None
        assert await validator.authenticate(forged.token) is None

    @pytest.mark.asyncio
    async def test_malformed_token_is_rejected(self, validator):
        assert await validator.decode("invalid.token.here") is None
        assert await validator.decode("garbage") is None

    @pytest.mark.asyncio
    async def test_expired_token_is_rejected(self, key_provider, validator):
        expired_issuer = TokenIssuer(
            key_provider, audience=settings.JWT_AUDIENCE,
            issuer=settings.JWT_ISSUER, ttl=timedelta(minutes=-5),
        )
        issued = expired_issuer.issue("user-id", "jenny@example.com")

        assert await validator.decode(issued.token) is None

    @pytest.mark.asyncio
    async def test_wrong_audience_is_rejected(self, key_provider, validator):
        other = TokenIssuer(
            key_provider, audience="someone-else",
            issuer=settings.JWT_ISSUER, ttl=timedelta(minutes=5),
        )

        assert await validator.decode(other.issue("user-id", "a@b.co").token) is None

    @pytest.mark.asyncio
    async def test_wrong_issuer_is_rejected(self, key_provider, validator):
        other = TokenIssuer(
            key_provider, audience=settings.JWT_AUDIENCE,
            issuer="https://elsewhere.example.com/", ttl=timedelta(minutes=5),
        )

        assert await validator.decode(other.issue("user-id", "a@b.co").token) is None

    @pytest.mark.asyncio
    async def test_algorithm_mismatch_is_rejected(self, rsa_keys, validator):
        private_pem, _ = rsa_keys
        token = jwt.encode(
            {"sub": "user-id", "exp": 4102444800, "iat": 1700000000,
             "aud": settings.JWT_AUDIENCE, "iss": settings.JWT_ISSUER},
            private_pem,
            algorithm="RS256",
        )

        assert await validator.decode(token) is None

    @pytest.mark.asyncio
    async def test_unknown_subject_is_rejected(self, issuer, validator):
        issued = issuer.issue("5e286b8940b3a61cacd8667d", "ghost@example.com")

        assert await validator.decode(issued.token) is not None
        assert await validator.authenticate(issued.token) is None


class TestJWKSClient:
    """Tests for remote key set caching and refresh."""

    def make_client(self, document, calls, **kwargs):
        def handler(request):
            calls.append(request.url)
            return httpx.Response(200, json=document)

        http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return JWKSClient("https://issuer.example.com/.well-known/jwks.json",
                          http_client=http_client, **kwargs)

    @pytest.mark.asyncio
    async def test_keys_are_cached(self, rsa_keys):
        _, public_pem = rsa_keys
        calls = []
        client = self.make_client(jwks_document(public_pem, "key-1"), calls)

        assert (await client.get_key("key-1"))["kid"] == "key-1"
        assert (await client.get_key("key-1"))["kid"] == "key-1"
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_unknown_kid_refresh_is_rate_limited(self, rsa_keys):
        _, public_pem = rsa_keys
        calls = []
        client = self.make_client(jwks_document(public_pem, "key-1"), calls, requests_per_minute=2)

        for _ in range(5):
            assert await client.get_key("rotated-key") is None

        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_fetch_failure_without_cache_raises(self):
        def handler(request):
            return httpx.Response(503)

        http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        client = JWKSClient("https://issuer.example.com/jwks.json", http_client=http_client)

        with pytest.raises(KeyProviderError):
            await client.get_key("key-1")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("document", [
        [{"kty": "RSA", "kid": "key-1"}],
        {"keys": "key-1"},
        {"keys": ["key-1"]},
        {},
    ])
    async def test_malformed_key_set_raises(self, document):
        client = self.make_client(document, [])

        with pytest.raises(KeyProviderError):
            await client.get_key("key-1")

    @pytest.mark.asyncio
    async def test_malformed_refresh_keeps_cached_keys(self, rsa_keys):
        _, public_pem = rsa_keys
        responses = [jwks_document(public_pem, "key-1"), {"keys": [None]}]

        def handler(request):
            return httpx.Response(200, json=responses.pop(0))

        client = JWKSClient(
            "https://issuer.example.com/jwks.json",
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )

        assert await client.get_key("key-1") is not None
        assert await client.get_key("rotated-key") is None
        assert await client.get_key("key-1") is not None

    @pytest.mark.asyncio
    async def test_validator_verifies_against_remote_keys(self, rsa_keys, user_store):
        private_pem, public_pem = rsa_keys
        calls = []
        jwks_client = self.make_client(jwks_document(public_pem, "key-1"), calls)
        provider = KeyProvider(
            algorithm="RS256", private_key=private_pem, key_id="key-1", jwks_client=jwks_client
        )
        issuer = TokenIssuer(provider, audience="task-manager", issuer="https://issuer/",
                             ttl=timedelta(minutes=5))
        validator = TokenValidator(provider, user_store, audience="task-manager",
                                   issuer="https://issuer/")
        user = await make_user(user_store)

        resolved = await validator.authenticate(issuer.issue(user.id, user.email.address).token)

        assert resolved is not None
        assert resolved.id == user.id

    @pytest.mark.asyncio
    async def test_token_signed_by_unknown_key_is_rejected(self, rsa_keys, user_store):
        _, public_pem = rsa_keys
        other_private, _ = generate_rsa_keypair()
        calls = []
        jwks_client = self.make_client(jwks_document(public_pem, "key-1"), calls)
        provider = KeyProvider(algorithm="RS256", jwks_client=jwks_client)
        validator = TokenValidator(provider, user_store, audience="a", issuer="i")
        token = jwt.encode(
            {"sub": "user-id", "exp": 4102444800, "iat": 1700000000, "aud": "a", "iss": "i"},
            other_private, algorithm="RS256", headers={"kid": "key-1"},
        )

        assert await validator.decode(token) is None
