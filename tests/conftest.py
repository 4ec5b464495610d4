from __future__ import annotations

import os
import random
import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = REPO_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from calls.presence import Connection  # noqa: E402
from calls.schemas import Profile  # noqa: E402


class FakeDirectory:
    """In-memory stand-in for the SQL directory."""

    def __init__(self) -> None:
        self.users: dict[str, dict] = {}
        self.history: list[tuple[str, str, str, str, int]] = []
        self.deltas: list[tuple[str, int]] = []

    def add_user(
        self,
        phone: str,
        *,
        gender: str = "",
        language: str = "",
        location: str = "",
        coins: int = 0,
    ) -> None:
        self.users[phone] = {
            "profile": Profile(
                identity=phone,
                name=phone.title(),
                gender=gender,
                language=language,
                location=location,
            ),
            "coins": coins,
            "token": f"tok-{phone}",
        }

    def coins(self, phone: str) -> int:
        return self.users[phone]["coins"]

    def set_coins(self, phone: str, coins: int) -> None:
        self.users[phone]["coins"] = coins

    async def lookup_by_credential(self, credential: str) -> str | None:
        for phone, user in self.users.items():
            if credential in (phone, user["token"]):
                return phone
        return None

    async def get_profile(self, identity: str) -> Profile | None:
        user = self.users.get(identity)
        return user["profile"] if user else None

    async def get_balance(self, identity: str) -> int:
        return self.users[identity]["coins"]

    async def apply_billing_delta(self, identity: str, delta: int) -> int:
        self.users[identity]["coins"] += delta
        self.deltas.append((identity, delta))
        return self.users[identity]["coins"]

    async def record_history(self, session_id: str, a: str, b: str, mode: str, duration_ms: int) -> None:
        self.history.append((session_id, a, b, mode, duration_ms))


class RecordingConnection(Connection):
    """Connection that keeps every outbound event for assertions."""

    def __init__(self, name: str) -> None:
        super().__init__(connection_id=name)
        self.events: list[tuple[str, dict]] = []

    def send(self, event: str, data: dict | None = None) -> None:
        if self.closed:
            return
        self.events.append((event, data or {}))

    def of(self, event: str) -> list[dict]:
        return [data for name, data in self.events if name == event]

    def names(self) -> list[str]:
        """Event names, ignoring presence broadcasts."""

        return [name for name, _ in self.events if name != "presence"]


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture()
def directory() -> FakeDirectory:
    return FakeDirectory()


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def make_engine(directory, clock, tmp_path):
    from calls.engine import CallEngine
    from config.settings import Settings

    def _make(**overrides):
        settings = Settings(data_dir=tmp_path, **overrides)
        return CallEngine(directory, settings=settings, clock=clock, rng=random.Random(7))

    return _make


@pytest.fixture()
def online(directory):
    """Create a directory user and authenticate a recording connection for them."""

    async def _online(engine, phone: str, *, gender: str = "", language: str = "", coins: int = 0):
        directory.add_user(phone, gender=gender, language=language, coins=coins)
        connection = RecordingConnection(phone)
        await engine.authenticate(connection, f"tok-{phone}")
        return connection

    return _online


@pytest.fixture(scope="session")
def app(tmp_path_factory: pytest.TempPathFactory):
    tmp_dir = tmp_path_factory.mktemp("runtime")
    db_path = tmp_dir / "calls_test.db"

    # Must be set before importing modules that create the SQLAlchemy engine.
    os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{db_path.as_posix()}"
    os.environ["DATA_DIR"] = str(tmp_dir)
    os.environ["AUTO_CREATE_DB_SCHEMA"] = "true"

    import importlib

    # Ensure clean import with the test DB settings.
    for module_name in [
        "config.settings",
        "db.base",
        "db.models",
        "db.repository",
        "api.dependencies",
        "api.routes",
        "api.ws",
        "main",
    ]:
        sys.modules.pop(module_name, None)

    main = importlib.import_module("main")
    return main.app


@pytest.fixture()
def client(app):
    with TestClient(app) as test_client:
        yield test_client
