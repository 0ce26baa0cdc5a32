from decimal import Decimal
from typing import Callable, List

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from config import settings
from database import Base, get_db
from main import app
from models.credit_package import CreditPackage
from models.profile import Profile
from services import cnae_catalog, rate_limiter
from services.providers import transport
from services.session_token import create_session_token


TEST_USER_ID = "user-comprador"
TEST_USER_EMAIL = "comprador@example.com"


def auth_header(user_id: str = TEST_USER_ID, email: str = TEST_USER_EMAIL) -> dict:
    return {"Authorization": f"Bearer {create_session_token(user_id, email)['token']}"}


@pytest.fixture(autouse=True)
def reset_local_rate_limit_counters(monkeypatch):
    """Keep in-memory rate-limit and catalog state isolated between tests."""
    previous = getattr(app.state, "disable_rate_limits", False)
    app.state.disable_rate_limits = True
    monkeypatch.setattr(settings, "RATE_LIMIT_BACKEND", "memory")
    rate_limiter._local_counters.clear()
    cnae_catalog.clear_catalog_cache()
    yield
    rate_limiter._local_counters.clear()
    cnae_catalog.clear_catalog_cache()
    app.state.disable_rate_limits = previous


class MockUpstream:
    """Records outbound provider requests and answers them with ``handler``."""

    def __init__(self) -> None:
        self.calls: List[httpx.Request] = []
        self.handler: Callable = lambda request: httpx.Response(404, json={"message": "not mocked"})

    async def dispatch(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        response = self.handler(request)
        if not isinstance(response, httpx.Response):
            response = await response
        return response


@pytest.fixture
def upstream(monkeypatch):
    mock = MockUpstream()
    monkeypatch.setattr(
        transport,
        "build_client",
        lambda: httpx.AsyncClient(transport=httpx.MockTransport(mock.dispatch)),
    )
    return mock


@pytest.fixture
def provider_keys(monkeypatch):
    for name in (
        "CNPJA_API_KEY",
        "CNPJWS_API_KEY",
        "LISTA_CNAE_TOKEN",
        "CUSTOM_API_KEY",
        "FIRECRAWL_API_KEY",
        "ABACATEPAY_API_KEY",
        "EVOLUTION_API_KEY",
    ):
        monkeypatch.setattr(settings, name, f"test-{name.lower()}")
    monkeypatch.setattr(settings, "ABACATEPAY_WEBHOOK_SECRET", "webhook-secret")
    monkeypatch.setattr(settings, "EVOLUTION_API_URL", "https://evo.example.com/manager/")
    monkeypatch.setattr(settings, "EVOLUTION_INSTANCE_NAME", "achei")
    monkeypatch.setattr(settings, "PHONE_VALIDATION_DELAY_SECONDS", 0.0)


@pytest_asyncio.fixture
async def session_maker(tmp_path):
    db_path = tmp_path / "achei_leads.db"
    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}")
    maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with maker() as session:
        session.add(Profile(id=TEST_USER_ID, email=TEST_USER_EMAIL, full_name="Maria Compradora"))
        await session.commit()

    yield maker
    await engine.dispose()


@pytest_asyncio.fixture
async def api_client(session_maker):
    async def override_get_db():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
    app.dependency_overrides.pop(get_db, None)


@pytest_asyncio.fixture
async def credit_package(session_maker):
    async with session_maker() as session:
        package = CreditPackage(
            id="pkg-100",
            name="Starter",
            price_brl=Decimal("50.00"),
            credits=100,
            bonus_credits=10,
            position=1,
            is_active=True,
        )
        session.add(package)
        await session.commit()
    return package


@pytest.fixture
def auth_headers():
    return auth_header()
