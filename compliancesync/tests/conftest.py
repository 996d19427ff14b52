from __future__ import annotations

import os

# Settings and the engine are built at import time, so the test environment must be set first.
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./compliancesync-test.db")
os.environ.setdefault("AUTH_TOKEN_MODE", "hs256")
os.environ.setdefault("AUTH_JWT_SECRET", "compliancesync-test-secret-0123456789abcdef")
os.environ.setdefault("BLOB_PROVIDER", "local")
os.environ.setdefault("IDENTITY_PROVIDER", "local")

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402

from compliancesync.apps.api.main import create_app  # noqa: E402
from compliancesync.domain.models import Base  # noqa: E402
from compliancesync.persistence.db import SessionLocal, engine  # noqa: E402
from compliancesync.persistence.seed import seed_templates  # noqa: E402
from compliancesync.providers.blob.factory import get_blob_store  # noqa: E402
from compliancesync.providers.identity.factory import get_identity_provider  # noqa: E402
from compliancesync.services.auth.tokens import get_token_verifier  # noqa: E402


@pytest.fixture(autouse=True)
async def fresh_schema() -> None:
    # Every test starts from empty tables; the engine is disposed so connections never cross loops.
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield
    await engine.dispose()


@pytest.fixture(autouse=True)
def fresh_providers() -> None:
    # Provider singletons hold in-memory state (local identity accounts); reset them per test.
    get_identity_provider.cache_clear()
    get_blob_store.cache_clear()
    get_token_verifier.cache_clear()
    yield
    get_identity_provider.cache_clear()
    get_blob_store.cache_clear()
    get_token_verifier.cache_clear()


@pytest.fixture
async def templates() -> None:
    async with SessionLocal() as session:
        await seed_templates(session)


@pytest.fixture
async def client() -> AsyncClient:
    app = create_app()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as http:
        yield http
