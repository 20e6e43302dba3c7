"""
Test Configuration — Fixtures for async DB, platform stubs, manager and test client.

Each test gets its own file-backed SQLite database, so sessions opened by the
inbox, the order store and the API all see the same rows.
"""

import uuid

import httpx
import pytest
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

import db.models  # noqa: F401 - register tables on Base.metadata
from api.deps import get_db
from api.main import app
from core.config import Settings
from db.models import Integration
from db.session import Base
from integrations.adapters import build_default_registry
from integrations.manager import IntegrationManager

COST_CENTER_ID = uuid.UUID("00000000-0000-0000-0000-000000000001")
ORGANIZATION_ID = uuid.UUID("00000000-0000-0000-0000-0000000000aa")

FOODY_ORDERS_PATH = "/rest/1.2/orders"
IFOOD_TOKEN_PATH = "/authentication/v1.0/oauth/token"


def make_foody_order(order_id="X1", date="2024-01-01T12:00:00Z", history=None, **overrides) -> dict:
    """Native Foody order; the default history is delivered at 12:40 after 10/10/20 minute steps."""
    if history is None:
        history = [
            {"status": "Delivered", "date": "2024-01-01T12:40:00Z"},
            {"status": "Dispatching", "date": "2024-01-01T12:10:00Z"},
            {"status": "Dispatched", "date": "2024-01-01T12:20:00Z"},
        ]
    order = {
        "id": order_id,
        "uid": f"uid-{order_id}",
        "visualId": order_id,
        "date": date,
        "status": "Delivered",
        "orderTotal": 50.0,
        "deliveryFee": 5.0,
        "discount": 0.0,
        "paymentMethod": "Pix",
        "isDelivery": True,
        "customer": {"customerName": "Ana Souza", "customerPhone": "+5511999990000"},
        "deliveryPoint": {
            "street": "Rua Augusta",
            "houseNumber": "100",
            "neighborhood": "Consolação",
            "city": "São Paulo",
            "postalCode": "01305-000",
        },
        "items": [{"name": "Pizza Margherita", "quantity": 1, "price": 45.0}],
        "statusHistory": history,
    }
    order.update(overrides)
    return order


class PlatformStub:
    """httpx.MockTransport handler keyed by (method, path); records every request."""

    def __init__(self):
        self.routes = {}
        self.requests: list[httpx.Request] = []

    def add(self, method: str, path: str, response=None, status_code: int = 200, handler=None) -> None:
        def _default(request: httpx.Request) -> httpx.Response:
            if response is None:
                return httpx.Response(status_code)
            return httpx.Response(status_code, json=response)

        self.routes[(method.upper(), path)] = handler or _default

    def calls(self, method: str, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == method.upper() and r.url.path == path]

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handler = self.routes.get((request.method, request.url.path))
        if handler is None:
            return httpx.Response(404, json={"error": "not stubbed", "path": request.url.path})
        return handler(request)


@pytest.fixture
def foody_order():
    return make_foody_order


@pytest.fixture
def db_url(tmp_path):
    return f"sqlite+aiosqlite:///{tmp_path / 'kitchenlink.db'}"


@pytest.fixture
def settings(db_url):
    return Settings(app_env="test", database_url=db_url, integrations_sandbox_mode=True)


@pytest.fixture
async def test_engine(db_url):
    """Create a test database engine and build all tables."""
    engine = create_async_engine(db_url, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def platform_stub():
    return PlatformStub()


@pytest.fixture
def registry(platform_stub):
    return build_default_registry(http_client=platform_stub.client())


@pytest.fixture
def add_integration(session_factory):
    """Insert an Integration row; Foody with a static token unless told otherwise."""

    async def _add(platform="foody", credentials=None, status="CONNECTED", **fields) -> Integration:
        row = Integration(
            integration_id=uuid.uuid4(),
            cost_center_id=fields.pop("cost_center_id", COST_CENTER_ID),
            organization_id=fields.pop("organization_id", ORGANIZATION_ID),
            platform=platform,
            name=fields.pop("name", f"{platform} test"),
            credentials={"api_token": "foody-token"} if credentials is None else credentials,
            status=status,
            sync_frequency_minutes=fields.pop("sync_frequency_minutes", 15),
            **fields,
        )
        async with session_factory() as session:
            session.add(row)
            await session.commit()
        return row

    return _add


@pytest.fixture
async def manager(session_factory, registry, settings):
    """IntegrationManager with a scheduler that is never started."""
    manager = IntegrationManager(session_factory, registry, settings, scheduler=AsyncIOScheduler())
    yield manager
    await manager.shutdown()


@pytest.fixture
async def client(session_factory, manager):
    """Create an async test client bound to the test database and manager."""

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.state.integration_manager = manager

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()
    app.state.integration_manager = None
