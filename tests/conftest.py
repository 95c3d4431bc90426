"""
Shared fixtures: in-memory database, settings, catalog and API client.
"""

import pytest
from fastapi.testclient import TestClient
from sqlmodel import SQLModel, create_engine
from sqlmodel.pool import StaticPool

from enhancer.db.session import create_db_and_tables
from tests.mocks import TEST_DATABASE_URL, make_settings


@pytest.fixture
def test_settings():
    return make_settings()


@pytest.fixture
def premium_settings():
    """Settings with the premium backends switched on."""
    return make_settings(enable_premium_models=True)


@pytest.fixture(scope="function")
def setup_test_database():
    """Fresh in-memory database for each test."""
    test_engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    create_db_and_tables(test_engine)

    yield test_engine

    SQLModel.metadata.drop_all(test_engine)


@pytest.fixture
def catalog(test_settings):
    from enhancer.api.services import build_catalog
    return build_catalog(test_settings)


@pytest.fixture
def premium_catalog(premium_settings):
    from enhancer.api.services import build_catalog
    return build_catalog(premium_settings)


@pytest.fixture
def sql_store(setup_test_database):
    from enhancer.api.services import SqlCreditStore
    return SqlCreditStore(setup_test_database)


@pytest.fixture
def services(test_settings, sql_store):
    from enhancer.api.main import build_services
    from enhancer.api.services import InMemoryBatchLimiter
    return build_services(
        test_settings,
        store=sql_store,
        batch_limiter=InMemoryBatchLimiter(test_settings),
    )


@pytest.fixture
def client(test_settings, services):
    """Test client over an application wired to the in-memory store."""
    from enhancer.api.main import create_application
    app = create_application(test_settings, services=services)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def user_headers():
    return {"X-User-Id": "user-123", "X-User-Tier": "free"}
