import os
import secrets
import sys
from datetime import date, datetime, timezone
from pathlib import Path
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

# Ensure project root on sys.path so 'heartbeat_importer' resolves without an editable install
ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from heartbeat_importer.main import app  # type: ignore
from heartbeat_importer.database import Base  # type: ignore
from heartbeat_importer.api import deps  # type: ignore
"""Pytest fixtures and factories.

All model modules are imported before Base.metadata.create_all() so every
table exists in the test database.
"""
from heartbeat_importer.config import QueueConfig
from heartbeat_importer.errors import RemoteApiError
from heartbeat_importer.jobs.durable_queue import DurableQueue
from heartbeat_importer.jobs.notifier import LocalNotifier
from heartbeat_importer.models.db import Heartbeat, QueueRow, User  # noqa: F401
from heartbeat_importer.models.schemas.wakatime import HeartbeatList, UserAgentList

# File-based SQLite so the worker thread and the test thread see the same data.
SQLALCHEMY_TEST_URL = "sqlite+pysqlite:///./test_importer.db"
engine = create_engine(
    SQLALCHEMY_TEST_URL,
    connect_args={"check_same_thread": False},
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Health checks open sessions through the module attributes bound at import time.
import heartbeat_importer.database as _app_database  # noqa: E402
_app_database.SessionLocal = TestingSessionLocal  # type: ignore
import heartbeat_importer.main as _main_mod  # noqa: E402
_main_mod.SessionLocal = TestingSessionLocal  # type: ignore

TEST_QUEUE_CONFIG = QueueConfig(
    queue_name="_test_import_queue",
    max_retries=3,
    batch_size=1,
    visibility_timeout_seconds=60.0,
    poll_timeout_seconds=0.05,
)


@pytest.fixture(scope="session", autouse=True)
def create_test_db():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)
    engine.dispose()
    try:
        os.remove("test_importer.db")
    except OSError:
        pass


def make_queue(**overrides) -> DurableQueue:
    """Queue on the test database with no backoff delay between attempts."""
    kwargs = {"backoff": lambda attempt: 0.0}
    kwargs.update(overrides)
    return DurableQueue(TestingSessionLocal, TEST_QUEUE_CONFIG, LocalNotifier(), **kwargs)


@pytest.fixture()
def import_queue(create_test_db):
    """Queue instance exposed on app.state for the endpoints.

    The production app sets this up in lifespan. Tests bypass lifespan so we replicate here.
    """
    queue = make_queue()
    queue.purge()
    app.state.import_queue = queue  # type: ignore[attr-defined]
    yield queue
    queue.purge()


@pytest.fixture()
def db_session():
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(autouse=True)
def _isolate_heartbeats(create_test_db):
    """Each test starts with an empty heartbeat table."""
    session = TestingSessionLocal()
    try:
        session.query(Heartbeat).delete()
        session.commit()
    finally:
        session.close()
    yield


# Override dependency
def _override_get_db():
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()

app.dependency_overrides[deps.get_db] = _override_get_db


@pytest.fixture()
def client(import_queue):
    return TestClient(app)

# ---------- Data factory helpers ----------

@pytest.fixture()
def user_factory(db_session):
    def _create(username: str | None = None, *, is_active: bool = True):
        if username is None:
            username = f"dev_{secrets.token_hex(3)}"
        u = User(username=username, api_key=f"hk_{secrets.token_hex(12)}", is_active=is_active)
        db_session.add(u)
        db_session.commit()
        db_session.refresh(u)
        return u
    return _create


@pytest.fixture()
def auth_header(user_factory):
    user = user_factory()
    return {"Authorization": f"Bearer {user.api_key}"}, user


# ---------- Remote API fakes ----------

def heartbeat_json(entity: str, ts: float, user_agent_id: str = "a1", **extra) -> dict:
    hb = {
        "entity": entity,
        "type": "file",
        "time": ts,
        "user_agent_id": user_agent_id,
        "project": "heartbeat-importer",
        "language": "Python",
        "is_write": False,
    }
    hb.update(extra)
    return hb


def day_bucket(day: date, heartbeats: list[dict]) -> dict:
    start = datetime(day.year, day.month, day.day, tzinfo=timezone.utc)
    return {
        "data": heartbeats,
        "start": start.isoformat(),
        "end": start.replace(hour=23, minute=59, second=59).isoformat(),
        "timezone": "UTC",
    }


class FakeWakatimeClient:
    """In-memory stand-in for ``WakatimeClient``.

    ``days`` maps a date to a day bucket dict, or to an exception to raise for
    that day. Missing days return an empty bucket.
    """

    def __init__(self, api_token: str, user_agents: list[dict], days: dict, calls: list):
        self.api_token = api_token
        self._user_agents = user_agents
        self._days = days
        self._calls = calls

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return None

    async def fetch_user_agents(self) -> UserAgentList:
        self._calls.append(("user_agents", self.api_token))
        return UserAgentList.model_validate({"data": self._user_agents})

    async def fetch_heartbeats(self, day: date) -> HeartbeatList:
        self._calls.append(("heartbeats", day))
        bucket = self._days.get(day)
        if isinstance(bucket, Exception):
            raise bucket
        if bucket is None:
            bucket = day_bucket(day, [])
        return HeartbeatList.model_validate(bucket)


@pytest.fixture()
def fake_remote():
    """Factory for a client factory plus a record of the remote calls made."""
    state = {
        "user_agents": [{"id": "a1", "value": "Chrome/1"}],
        "days": {},
        "calls": [],
    }

    def _client_factory(api_token: str):
        return FakeWakatimeClient(api_token, state["user_agents"], state["days"], state["calls"])

    state["factory"] = _client_factory
    return state


@pytest.fixture()
def remote_failure():
    return RemoteApiError("WakaTime API returned status 500 for /users/current/heartbeats", status=500)
