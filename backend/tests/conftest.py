"""
Shared test fixtures for the Creator Rewards test suite.

Every test that touches the database gets a fresh in-memory SQLite engine
(StaticPool, so the TestClient's worker thread sees the same connection).
The `client` fixture swaps the app's get_db dependency for that session.
"""

import os
import sys
from datetime import datetime, timezone

import pytest
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from models.db import Base, make_engine  # noqa: E402
from models.schemas import FetchedVideo, VideoInput  # noqa: E402


@pytest.fixture
def engine():
    engine = make_engine("sqlite://", poolclass=StaticPool)
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    Session = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    db = Session()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def client(session):
    from fastapi.testclient import TestClient
    from main import app
    from models.db import get_db

    def _override_get_db():
        yield session

    app.dependency_overrides[get_db] = _override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
        app.state.sync_job = None


# ===========================================================================
# Test data helpers
# ===========================================================================

def utc(year=2026, month=3, day=1, hour=12, minute=0, second=0) -> datetime:
    return datetime(year, month, day, hour, minute, second, tzinfo=timezone.utc)


def make_video_input(
    id="v1",
    platform="tiktok",
    channel_id="c1",
    title="My moon run #TryTheMoon",
    description=None,
    published_at=None,
    duration_seconds=30,
    views=8000,
    override=None,
) -> VideoInput:
    return VideoInput(
        id=id,
        platform=platform,
        channel_id=channel_id,
        title=title,
        description=description,
        published_at=published_at or utc(),
        duration_seconds=duration_seconds,
        views=views,
        override=override,
    )


def make_fetched(
    external_id="ext1",
    title="Flying to the moon #trythemoon",
    published_at=None,
    duration_seconds=30,
    views=20000,
    description=None,
) -> FetchedVideo:
    return FetchedVideo(
        external_video_id=external_id,
        title=title,
        description=description,
        published_at=published_at or utc(),
        duration_seconds=duration_seconds,
        views=views,
        url=f"https://example.com/{external_id}",
    )
