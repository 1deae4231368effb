"""Shared fixtures: an in-memory SQLite database per test."""
import pytest
from sqlalchemy.orm import sessionmaker

from tasktree_core import schemas
from tasktree_core.config import get_settings
from tasktree_core.database import build_engine
from tasktree_core.models import Base

OWNER = "user-1"
OTHER_OWNER = "user-2"


@pytest.fixture(autouse=True)
def _fresh_settings(monkeypatch):
    for name in ("DATABASE_URL", "ACTIVITY_LOG_LINK_TEMPLATE", "PAGINATION_PER_PAGE"):
        monkeypatch.delenv(f"TASKTREE_{name}", raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture()
def engine():
    engine = build_engine("sqlite://")
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture()
def db(engine):
    session = sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def owner() -> str:
    return OWNER


@pytest.fixture()
def actor() -> schemas.ActorSnapshot:
    return schemas.ActorSnapshot(id=OWNER, name="Ada Admin", email="ada@example.com")
