"""
Pytest configuration and shared fixtures.

Test defaults for required settings are applied before any app import;
values already in the environment (e.g. from .env.test) take precedence.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite:///./test_messagely.db")
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("SECRET_KEY", "test-secret-key-at-least-32-bytes-long")
# Lowest cost bcrypt accepts; keeps the suite fast
os.environ.setdefault("BCRYPT_WORK_FACTOR", "4")

import pytest
from fastapi.testclient import TestClient

# Clear settings cache before any app imports to ensure test env vars are used
from messagely.config import get_settings
get_settings.cache_clear()

from messagely.main import app
from messagely.storage import SessionLocal, Base, engine


@pytest.fixture(scope="function")
def tables():
    """Fresh schema for each test."""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def client(tables):
    """Test client over a fresh database."""
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture(scope="function")
def db(tables):
    """Session for calling the data-access functions directly."""
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
