"""
Test configuration and fixtures for clickpipe.
This centralizes all test setup, making individual tests clean.
"""

import os

# Must be set before clickpipe_app.config builds its settings instance
os.environ["DATABASE_URL"] = "sqlite:///./test_links.db"
os.environ["CACHE_BACKEND"] = "null"
os.environ["QUEUE_BACKEND"] = "memory"
os.environ["CLICK_STORAGE_BACKEND"] = "memory"
os.environ["QUEUE_POLL_INTERVAL"] = "0.02"
os.environ["PERSIST_BACKOFF_MIN"] = "0"
os.environ["PERSIST_BACKOFF_MAX"] = "0"
os.environ["SHUTDOWN_GRACE_PERIOD"] = "1"
os.environ["GEOIP_CITY_DB_PATH"] = "tests/does-not-exist.mmdb"

import pytest
from fastapi.testclient import TestClient

from main import app
from clickpipe_app.config import Settings
from clickpipe_app.database.connection import Base, SessionLocal, engine, get_db
from clickpipe_app.dependencies import reset_singletons
from clickpipe_app.storage.strategies import InMemoryClickStorage


@pytest.fixture
def config():
    """Fresh settings for unit tests, with fast timings"""
    return Settings(
        cache_backend="null",
        queue_backend="memory",
        click_storage_backend="memory",
        queue_capacity=100,
        queue_batch_size=10,
        queue_poll_interval=0.01,
        consumer_workers=2,
        persist_timeout=0.5,
        persist_max_attempts=3,
        persist_backoff_min=0,
        persist_backoff_max=0,
        shutdown_grace_period=0.5,
        unhealthy_after_failures=3,
        geoip_city_db_path="tests/does-not-exist.mmdb",
    )


@pytest.fixture(scope="function")
def db_session():
    """
    Create a fresh database session for each test.
    This ensures tests are isolated and don't affect each other.
    """
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()

    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def storage():
    return InMemoryClickStorage()


@pytest.fixture(scope="function")
def client(db_session):
    """
    Test client with the database dependency overridden and fresh
    queue/storage/consumer singletons; the lifespan starts the consumer.
    """
    def override_get_db():
        yield db_session

    reset_singletons()
    app.dependency_overrides[get_db] = override_get_db

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
    reset_singletons()

