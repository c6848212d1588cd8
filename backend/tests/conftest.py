import pytest
from mongomock_motor import AsyncMongoMockClient

from core.base_database import BaseDatabase
from core.db.elastic import ElasticClient
from core.db.mongodb import MongoDBClient
from tests.factories import make_seller, seed_seller
from tests.fakes import FakeElasticsearch


@pytest.fixture
def es():
    return FakeElasticsearch()


@pytest.fixture
def elastic(es):
    return ElasticClient(client=es)


@pytest.fixture
def mongodb():
    return MongoDBClient(client=AsyncMongoMockClient(), db_name="churn_test")


@pytest.fixture(autouse=True)
def databases(mongodb, elastic):
    BaseDatabase.init_databases(mongodb, elastic)
    yield
    BaseDatabase.mongodb = None
    BaseDatabase.elastic = None


@pytest.fixture(autouse=True)
def cache_version(monkeypatch):
    monkeypatch.setenv("CHURN_ANALYTICS_CACHE_VERSION", "1")


@pytest.fixture
def seller():
    return make_seller()


@pytest.fixture
async def seeded(mongodb, seller):
    """Seller document plus one recurring product and one plain product in MongoDB."""
    await seed_seller(mongodb, seller)
    return seller
