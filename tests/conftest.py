import os
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# Memory store, signed session tokens; no external services
os.environ["STORE_BACKEND"] = "memory"
os.environ["IDENTITY_PROVIDER"] = "session"
os.environ["NOTIFICATIONS_BACKEND"] = "log"
os.environ.setdefault("SECRET_KEY", "test-secret-key-min-32-characters-long")
os.environ.setdefault("PAYMENT_WEBHOOK_SECRET", "test-webhook-secret")
os.environ.setdefault("ADMIN_EMAILS", "admin@example.com")

from creditledger.core.security import create_session_token  # noqa: E402
from creditledger.services.accounts import get_or_create_account  # noqa: E402
from creditledger.services.identity import Identity  # noqa: E402
from creditledger.stores import get_backend  # noqa: E402


@pytest.fixture(autouse=True)
def backend():
    """Fresh in-memory store per test."""
    get_backend.cache_clear()
    store = get_backend()
    yield store
    get_backend.cache_clear()


@pytest.fixture
def make_account():
    async def _make(sub: str = "user-1", email: str | None = None, name: str | None = None):
        identity = Identity(
            account_id=sub,
            email=email if email is not None else f"{sub}@example.com",
            display_name=name or sub,
        )
        return await get_or_create_account(identity)

    return _make


@pytest.fixture
def auth_headers():
    def _headers(sub: str = "user-1", email: str | None = None, name: str | None = None) -> dict[str, str]:
        token = create_session_token(
            {"sub": sub, "email": email if email is not None else f"{sub}@example.com", "name": name or sub}
        )
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest_asyncio.fixture
async def client() -> AsyncGenerator[AsyncClient, None]:
    from creditledger.main import app
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac
