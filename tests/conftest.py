import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

from site_analytics.api.deps import get_authorizer, get_event_store, get_goal_repository, get_product_cache
from site_analytics.main import app
from site_analytics.services.products import ProductInfoCache

from fakes import FakeAuthorizer, FakeEventStore, FakeGoalRepository


@pytest.fixture
def store():
    return FakeEventStore()


@pytest.fixture
def authorizer():
    return FakeAuthorizer()


@pytest.fixture
def goal_repository():
    return FakeGoalRepository()


@pytest.fixture
def product_cache():
    async def fetch(slug):
        return {"ok": True, "nume": slug}

    return ProductInfoCache(fetch)


@pytest_asyncio.fixture
async def async_client(store, authorizer, goal_repository, product_cache):
    app.dependency_overrides[get_event_store] = lambda: store
    app.dependency_overrides[get_authorizer] = lambda: authorizer
    app.dependency_overrides[get_goal_repository] = lambda: goal_repository
    app.dependency_overrides[get_product_cache] = lambda: product_cache

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
