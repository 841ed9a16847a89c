"""
Pytest configuration and fixtures

Tests run against an in-memory SQLite database. Every test that asks for
db_session gets freshly created tables, dropped again afterwards, so nothing
leaks between tests.
"""
import pytest
import sys
import os

# Must be set before core.config is imported anywhere.
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["COOLDOWN_BACKEND"] = "memory"
os.environ.setdefault("LOG_FORMAT", "text")

# Add the project root so tests can import core, services, models...
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from core.database import Base, SessionLocal, engine
import models  # noqa: F401  (registers tables)

from services.coaching import CooldownManager, InMemoryCooldownStore


@pytest.fixture(scope="function")
def db_session():
    """
    Session on a clean schema.

    Tables are created before the test and dropped after it, so commits made
    by the code under test are discarded as well.
    """
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()

    yield session

    session.close()
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def cooldown_store():
    return InMemoryCooldownStore()


@pytest.fixture
def cooldown_manager(cooldown_store):
    return CooldownManager(cooldown_store, cooldown_days=7)
