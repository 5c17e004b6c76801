import os

# Settings are read at import time, so configure the environment first
os.environ.setdefault("JWT_SECRET", "test-secret-key-for-testing-only-do-not-use-in-production")
os.environ.setdefault("JWT_ALGORITHM", "HS256")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("USE_MEMORY_STORE", "true")
os.environ.setdefault("SENDGRID_API_KEY", "")
os.environ.setdefault("DEBUG", "false")

import json  # noqa: E402
import re  # noqa: E402
from datetime import timedelta  # noqa: E402

import httpx  # noqa: E402
import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402

from app import create_app  # noqa: E402
from config.settings import settings  # noqa: E402
from services.auth_service import hash_password  # noqa: E402
from services.email_service import EmailService  # noqa: E402
from services.token_service import KeyProvider, TokenIssuer, TokenValidator  # noqa: E402
from services.token_store import TokenStore  # noqa: E402
from storage.memory import MemoryTaskStore, MemoryUserStore  # noqa: E402

TEST_PASSWORD = "CorrectHorse42"


@pytest.fixture
def user_store():
    return MemoryUserStore()


@pytest.fixture
def task_store():
    return MemoryTaskStore()


@pytest.fixture
def token_store(user_store):
    return TokenStore(user_store)


@pytest.fixture
def key_provider():
    return KeyProvider(algorithm="HS256", secret=settings.JWT_SECRET)


@pytest.fixture
def issuer(key_provider):
    return TokenIssuer(
        key_provider,
        audience=settings.JWT_AUDIENCE,
        issuer=settings.JWT_ISSUER,
        ttl=timedelta(minutes=30),
    )


@pytest.fixture
def validator(key_provider, user_store):
    return TokenValidator(
        key_provider,
        user_store,
        audience=settings.JWT_AUDIENCE,
        issuer=settings.JWT_ISSUER,
    )


@pytest.fixture
def mailbox():
    """SendGrid request bodies posted by the email service."""
    return []


@pytest.fixture
def email_service(mailbox):
    def sendgrid(request):
        mailbox.append(json.loads(request.content))
        return httpx.Response(202)

    return EmailService(
        api_key="SG.test-key",
        base_url="http://test",
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(sendgrid)),
    )


def recipient(payload: dict) -> str:
    return payload["personalizations"][0]["to"][0]["email"]


def emailed_link(payload: dict) -> str:
    """The href of the first link in an emailed HTML body."""
    return re.search(r'href="([^"]+)"', payload["content"][0]["value"]).group(1)


async def make_user(user_store, email="jenny@example.com", name="Jenny",
                    password=TEST_PASSWORD, verified=True):
    """Create a user directly in the store."""
    user = await user_store.create(
        name=name,
        password_hash=hash_password(password),
        email={"address": email, "verified": verified},
    )
    return user


@pytest_asyncio.fixture
async def user(user_store):
    return await make_user(user_store)


@pytest_asyncio.fixture
async def unverified_user(user_store):
    return await make_user(user_store, email="margaret@example.com", name="Margaret", verified=False)


@pytest.fixture
def app(user_store, task_store, key_provider, email_service):
    return create_app(
        user_store=user_store,
        task_store=task_store,
        key_provider=key_provider,
        email_service=email_service,
    )


@pytest_asyncio.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


async def login(client, email="jenny@example.com", password=TEST_PASSWORD) -> str:
    response = await client.post("/auth/login", json={"email": email, "password": password})
    assert response.status_code == 200, response.text
    return response.json()["auth_token"]


def bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}
