# tests/conftest.py

from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from todo_api.config import Settings
from todo_api.database import create_db_engine, create_tables
from todo_api.dispatcher import TaskDispatcher
from todo_api.lifecycle import RetentionPolicy
from todo_api.main import create_app
from todo_api.store import TaskStore

from .fakes import FakeClock

DAY = 24 * 60 * 60


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    """Settings pointing at a throwaway SQLite file, reaper off."""
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'tasks.sqlite3'}",
        retention_seconds=DAY,
        store_timeout_seconds=5.0,
        reaper_interval_seconds=0,
    )


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def engine(settings: Settings):
    engine = create_db_engine(settings)
    create_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def store(engine, clock: FakeClock) -> TaskStore:
    return TaskStore(engine, clock=clock)


@pytest.fixture()
def dispatcher(store: TaskStore, clock: FakeClock) -> TaskDispatcher:
    return TaskDispatcher(store, RetentionPolicy(DAY), clock=clock)


@pytest.fixture()
def client(settings: Settings, dispatcher: TaskDispatcher):
    with TestClient(create_app(settings, dispatcher)) as test_client:
        yield test_client


@pytest.fixture()
def make_task(clock: FakeClock):
    """Build a valid task record; keyword arguments override fields."""

    def _make(task_id: str = "t1", user_id: str = "u1", **fields):
        record = {
            "task_id": task_id,
            "user_id": user_id,
            "created_time": clock(),
            "expires_at": clock() + DAY,
            "title": f"task {task_id}",
        }
        record.update(fields)
        return record

    return _make
