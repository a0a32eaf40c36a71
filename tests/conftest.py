import pytest
from fastapi.testclient import TestClient

from fleetdispatch.command_queue import CommandQueue
from fleetdispatch.db import Database, get_db
from fleetdispatch.devices import DeviceRegistry
from fleetdispatch.main import app
from fleetdispatch.settings_store import SettingsStore


@pytest.fixture
def db(tmp_path) -> Database:
    """A fresh file-backed SQLite database per test."""
    database = Database(f"sqlite:///{tmp_path / 'fleet.db'}", backoff=0.01)
    database.init_db()
    yield database
    database.close()


@pytest.fixture
def queue(db) -> CommandQueue:
    return CommandQueue(db)


@pytest.fixture
def registry(db) -> DeviceRegistry:
    return DeviceRegistry(db)


@pytest.fixture
def store(db) -> SettingsStore:
    return SettingsStore(db)


@pytest.fixture
def client(db):
    # not entered as a context manager: the startup hook would touch the default database
    app.dependency_overrides[get_db] = lambda: db
    yield TestClient(app)
    app.dependency_overrides.clear()
