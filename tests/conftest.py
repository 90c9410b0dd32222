import pytest

from dispatch.config import Settings
from dispatch.dependencies import build_services
from dispatch.services.catalog import CatalogClient
from dispatch.services.notifications import NotificationDispatcher
from dispatch.services.pricing import FareEstimator
from tests.fakes import FakeUnitOfWork, InMemoryStore, RecordingSink


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def uow_factory(store):
    return lambda: FakeUnitOfWork(store)


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def notifier(sink):
    return NotificationDispatcher(sink)


@pytest.fixture
def settings():
    return Settings()


@pytest.fixture
def estimator():
    return FareEstimator(redis=None)


@pytest.fixture
def catalog():
    # replaced per test where an order is placed
    return CatalogClient(base_url="http://catalog.test")


@pytest.fixture
def services(uow_factory, notifier, estimator, catalog):
    return build_services(uow_factory, notifier, estimator=estimator, catalog=catalog)
