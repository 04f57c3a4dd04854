"""
Root test configuration and fixtures.

Provides:
- db_engine / db_session: SQLite in-memory database, rolled back per test
- memory_cache: fresh InMemoryCache per test
- make_shop / make_notification / make_suggestion: row factories
- app / client: FastAPI app with database, cache and Shopify overrides
- shopify_handler: mutable handler behind the fake Shopify transport
"""

import os
from datetime import timedelta
from typing import Callable, Dict, Generator, Optional

import httpx
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

# Set test environment
os.environ.setdefault("ENV", "test")
os.environ.pop("REDIS_URL", None)
os.environ["SHOPIFY_API_KEY"] = "test-api-key"
os.environ["SHOPIFY_API_SECRET"] = "test-api-secret"
os.environ["FRONTEND_URL"] = "http://localhost:5173"


@pytest.fixture(scope="session", autouse=True)
def _httpx_app_kwarg_patch():
    """
    Compatibility patch for httpx>=0.28 where Client(app=...) is not supported.

    Older Starlette TestClient versions pass app= into httpx.Client.
    """
    original_init = httpx.Client.__init__

    def patched_init(self, *args, **kwargs):
        kwargs.pop("app", None)
        return original_init(self, *args, **kwargs)

    httpx.Client.__init__ = patched_init
    try:
        yield
    finally:
        httpx.Client.__init__ = original_init


@pytest.fixture(scope="session")
def db_engine():
    """SQLite in-memory engine shared by the whole run."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    from storesight.db_base import Base
    from storesight import models  # noqa: F401 - registers every table

    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def db_session(db_engine) -> Generator[Session, None, None]:
    """
    Database session with transaction rollback for test isolation.

    Service commits stay inside the outer transaction, which is rolled
    back after the test.
    """
    connection = db_engine.connect()
    transaction = connection.begin()

    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=connection)
    session = SessionLocal()

    yield session

    session.close()
    if transaction.is_active:
        transaction.rollback()
    connection.close()


@pytest.fixture
def memory_cache():
    from storesight.platform.redis_cache import InMemoryCache

    return InMemoryCache()


@pytest.fixture
def count_cache():
    from storesight.services.competitor_service import SuggestionCountCache

    return SuggestionCountCache()


@pytest.fixture(autouse=True)
def _reset_retention_policy():
    from storesight.config.retention_policy import reset_retention_policy

    reset_retention_policy()
    yield
    reset_retention_policy()


# ----------------------------------------------------------------------
# Row factories
# ----------------------------------------------------------------------

@pytest.fixture
def make_shop(db_session) -> Callable:
    """Create a shop with optional sessions: make_shop(domain, sessions={sid: token})."""
    from storesight.models.base import utcnow
    from storesight.models.shop import Shop
    from storesight.models.shop_session import ShopSession

    def _make(
        domain: str = "test-store.myshopify.com",
        access_token: str = "shop-token",
        sessions: Optional[Dict[str, str]] = None,
    ) -> Shop:
        shop = Shop(shopify_domain=domain, access_token=access_token)
        db_session.add(shop)
        db_session.flush()
        now = utcnow()
        for session_id, token in (sessions or {}).items():
            db_session.add(ShopSession(
                shop_id=shop.id,
                session_id=session_id,
                access_token=token,
                is_active=True,
                last_accessed_at=now,
                expires_at=now + timedelta(hours=4),
            ))
        db_session.flush()
        return shop

    return _make


@pytest.fixture
def make_notification(db_session) -> Callable:
    from storesight.models.base import utcnow
    from storesight.models.notification import Notification

    def _make(
        shop: str = "test-store.myshopify.com",
        message: str = "Hello",
        session_id: Optional[str] = None,
        read: bool = False,
        deleted: bool = False,
        category: str = "General",
        age: timedelta = timedelta(0),
    ) -> Notification:
        notification = Notification(
            shop=shop,
            message=message,
            session_id=session_id,
            read=read,
            deleted=deleted,
            category=category,
            created_at=utcnow() - age,
        )
        db_session.add(notification)
        db_session.flush()
        return notification

    return _make


@pytest.fixture
def make_suggestion(db_session) -> Callable:
    from storesight.models.base import utcnow
    from storesight.models.competitor_suggestion import CompetitorSuggestion, SuggestionStatus

    counter = {"n": 0}

    def _make(shop_id: int, status: SuggestionStatus = SuggestionStatus.NEW, age_minutes: int = 0):
        counter["n"] += 1
        suggestion = CompetitorSuggestion(
            shop_id=shop_id,
            product_id=100 + counter["n"],
            suggested_url=f"https://competitor.example.com/p/{counter['n']}",
            title=f"Competitor product {counter['n']}",
            price=19.99,
            status=status,
            discovered_at=utcnow() - timedelta(minutes=age_minutes),
        )
        db_session.add(suggestion)
        db_session.flush()
        return suggestion

    return _make


# ----------------------------------------------------------------------
# Application
# ----------------------------------------------------------------------

class FakeShopify:
    """Routes Shopify Admin API paths to canned JSON bodies or status codes."""

    def __init__(self):
        self.responses: Dict[str, httpx.Response] = {}
        self.requests = []

    def json(self, resource: str, body: dict, status_code: int = 200) -> None:
        self.responses[resource] = httpx.Response(status_code, json=body)

    def fail(self, resource: str, status_code: int) -> None:
        self.responses[resource] = httpx.Response(status_code, text="error")

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        resource = request.url.path.rsplit("/", 1)[-1].replace(".json", "")
        response = self.responses.get(resource)
        if response is None:
            return httpx.Response(404, text="not found")
        return httpx.Response(
            response.status_code, content=response.content, headers=response.headers
        )


@pytest.fixture
def shopify_handler() -> FakeShopify:
    return FakeShopify()


@pytest.fixture
def app(db_session, memory_cache, count_cache, shopify_handler):
    """FastAPI app with database, cache and Shopify overrides."""
    from main import app
    from storesight.api import dependencies
    from storesight.database.session import get_db_session
    from storesight.services.competitor_service import CompetitorService
    from storesight.services.shopify_client import ShopifyAdminClient

    def override_get_db_session():
        yield db_session

    def override_client_factory():
        transport = httpx.MockTransport(shopify_handler)
        return lambda shop, token: ShopifyAdminClient(shop, token, transport=transport)

    app.dependency_overrides[get_db_session] = override_get_db_session
    app.dependency_overrides[dependencies.get_cache_backend] = lambda: memory_cache
    app.dependency_overrides[dependencies.get_shopify_client_factory] = override_client_factory
    app.dependency_overrides[dependencies.get_competitor_service] = (
        lambda: CompetitorService(db_session, count_cache=count_cache)
    )

    yield app

    app.dependency_overrides.clear()


@pytest.fixture
def client(app):
    from fastapi.testclient import TestClient

    return TestClient(app, follow_redirects=False)


@pytest.fixture
def test_shop_domain():
    return "test-store.myshopify.com"


@pytest.fixture
def authed_client(client, make_shop, test_shop_domain):
    """Client carrying shop and session cookies for a shop with one active session."""
    make_shop(test_shop_domain, sessions={"session-1": "session-token-1"})
    client.cookies.set("shop", test_shop_domain)
    client.cookies.set("SESSION_ID", "session-1")
    return client
