import os

# Must be set before the application modules read their configuration
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["PASSWORD_SCHEMES"] = "pbkdf2_sha256"
os.environ["ADMIN_ENABLED"] = "false"
os.environ["CACHE_BACKEND"] = "memory"
os.environ["SMTP_HOST"] = ""

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from inventory_audit import models, schemas
from inventory_audit.cache import MemoryItemCache
from inventory_audit.coordinator import InventoryCoordinator


class FakeClock:
    """Monotonic clock the tests move by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    models.Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def item_cache(clock):
    return MemoryItemCache(clock=clock)


@pytest.fixture
def coordinator(session_factory, item_cache):
    return InventoryCoordinator(session_factory, item_cache)


@pytest.fixture
def item_request():
    """Factory for inventory requests with sensible defaults."""

    def make(sku="SKU-1", name="Widget", qty=10, location="A1"):
        return schemas.InventoryItemRequest(sku=sku, name=name, qty=qty, location=location)

    return make
