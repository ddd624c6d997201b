"""Shared fixtures for the notes service tests.

The service runs against an in-memory SQLite store; the schema is created
directly from the model metadata instead of running the Alembic migration.
"""

import pytest

from notes_app.app import create_app
from notes_app.config import DatabaseSettings, NotesSettings, reset_settings
from notes_app.database import Database
from notes_app.models import Base


@pytest.fixture
def settings():
    return NotesSettings(
        secret_key="test-secret-key",
        trusted_proxy_count=2,
        database=DatabaseSettings(url="sqlite://"),
    )


@pytest.fixture
def database(settings):
    db = Database.from_settings(settings.database)
    Base.metadata.create_all(db.engine)
    yield db
    Base.metadata.drop_all(db.engine)
    db.dispose()


@pytest.fixture
def app(settings, database):
    app = create_app(settings, database)
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture(autouse=True)
def clean_settings():
    """Keep the settings singleton from leaking between tests."""
    reset_settings()
    yield
    reset_settings()
