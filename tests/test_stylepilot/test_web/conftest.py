from __future__ import annotations

import pytest

from pilot_llm.gateway import StubGateway
from stylepilot.config import PilotConfig
from stylepilot.store.db import Database
from stylepilot.store.migrations import run_migrations
from stylepilot.web.app import create_app


@pytest.fixture
def db():
    """Create a fresh in-memory database with migrations for each test."""
    database = Database(":memory:")
    database.connect()
    run_migrations(database)
    yield database
    database.close()


@pytest.fixture
def replies() -> list:
    """Scripted model replies for the next refinement request."""
    return []


@pytest.fixture
def app(db, replies):
    application = create_app(
        db=db,
        config={"TESTING": True},
        pilot_config=PilotConfig(retry_delay=0.0, settle_delay=0.0),
        gateway_factory=lambda: StubGateway(replies),
    )
    return application


@pytest.fixture
def client(app):
    return app.test_client()
