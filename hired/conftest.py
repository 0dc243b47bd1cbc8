# hired/conftest.py
import asyncio
from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest
import pytest_asyncio
from sqlalchemy import insert

from hired.container import HiredCore
from hired.core.config import Settings
from hired.core.database import Database, profiles, simulation_attempts, simulations, technologies
from hired.core.metrics import METRICS
from hired.features.plans.service import PlanCatalog
from hired.models.identity import DirectorySession, Identity

# Fixed clock for period-sensitive tests (mid-month, far from boundaries)
NOW = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)

PYTHON_SIM = "sim-python-basics"
SQL_SIM = "sim-sql-joins"
INACTIVE_SIM = "sim-legacy-cobol"


def _questions(count):
    return [{"id": f"q{i}", "prompt": f"Question {i}", "choices": ["a", "b", "c"]} for i in range(1, count + 1)]


class FakeDirectory:
    """In-memory Directory with a controllable event stream."""

    def __init__(self, session=None):
        self.session = session
        self.fetch_error = None
        self.fetch_delay = 0.0
        self.sign_in_error = None
        self.sign_out_error = None
        self.calls = []
        self._events = asyncio.Queue()

    def emit(self, session):
        self._events.put_nowait(session)

    def break_stream(self, error):
        """The event stream raises error once it reaches this point."""
        self._events.put_nowait(error)

    async def get_session(self):
        self.calls.append("get_session")
        if self.fetch_delay:
            await asyncio.sleep(self.fetch_delay)
        if self.fetch_error:
            raise self.fetch_error
        return self.session

    async def subscribe(self):
        while True:
            item = await self._events.get()
            if isinstance(item, Exception):
                raise item
            yield item

    async def sign_in_with_password(self, email, password):
        self.calls.append(("sign_in", email))
        if self.sign_in_error:
            raise self.sign_in_error
        self.session = DirectorySession(
            identity_id=f"user-{email}",
            email=email,
            claims={"user_metadata": {"full_name": "Signed In"}},
        )
        self.emit(self.session)
        return self.session

    async def sign_up(self, email, password, metadata):
        self.calls.append(("sign_up", email, dict(metadata)))
        return DirectorySession(identity_id=f"user-{email}", email=email, claims={"user_metadata": dict(metadata)})

    async def sign_out(self):
        self.calls.append("sign_out")
        if self.sign_out_error:
            raise self.sign_out_error
        self.session = None
        self.emit(None)


class FakeRouter:
    def __init__(self):
        self.targets = []

    async def navigate(self, target):
        self.targets.append(target)


class FakeScoring:
    def __init__(self, error=None):
        self.error = error
        self.calls = []

    async def recalculate(self, identity_id):
        self.calls.append(identity_id)
        if self.error:
            raise self.error


@pytest.fixture(autouse=True)
def reset_metrics():
    METRICS.reset()
    yield


@pytest.fixture
def test_settings():
    return Settings(
        _env_file=None,
        ENV="test",
        DATABASE_URL="sqlite+aiosqlite://",
        AUTH_JWT_SECRET="test-secret",
        SESSION_FETCH_TIMEOUT_SECONDS=0.2,
    )


@pytest_asyncio.fixture
async def db(tmp_path):
    """File-backed SQLite so separate engines can share one store."""
    database = Database(f"sqlite+aiosqlite:///{tmp_path / 'hired.db'}")
    await database.create_all()
    yield database
    await database.drop_all()
    await database.dispose()


@pytest_asyncio.fixture
async def seeded_db(db):
    """Default plans, one technology and three simulations."""
    await PlanCatalog(db).seed_plans()
    async with db.session() as session:
        await session.execute(
            insert(technologies).values(id="tech-python", name="Python", slug="python", category="backend")
        )
        await session.execute(
            insert(simulations),
            [
                {
                    "id": PYTHON_SIM,
                    "title": "Python Basics",
                    "technology_id": "tech-python",
                    "difficulty": "junior",
                    "duration_minutes": 30,
                    "questions": _questions(5),
                    "is_active": True,
                    "created_at": NOW - timedelta(days=10),
                },
                {
                    "id": SQL_SIM,
                    "title": "SQL Joins",
                    "technology_id": "tech-python",
                    "difficulty": "mid",
                    "duration_minutes": 45,
                    "questions": _questions(3),
                    "is_active": True,
                    "created_at": NOW - timedelta(days=5),
                },
                {
                    "id": INACTIVE_SIM,
                    "title": "Legacy COBOL",
                    "technology_id": "tech-python",
                    "difficulty": "senior",
                    "duration_minutes": 60,
                    "questions": _questions(2),
                    "is_active": False,
                    "created_at": NOW - timedelta(days=1),
                },
            ],
        )
    return db


@pytest.fixture
def make_identity(seeded_db):
    """Factory: create a profile on a plan and return its Identity."""

    async def _make(plan_id="free", identity_id=None, full_name="Test Candidate"):
        identity_id = identity_id or f"user-{uuid4()}"
        async with seeded_db.session() as session:
            await session.execute(
                insert(profiles).values(id=identity_id, plan_id=plan_id, full_name=full_name)
            )
        return Identity(id=identity_id, email=f"{identity_id}@example.com", display_name=full_name)

    return _make


@pytest.fixture
def add_attempt(seeded_db):
    """Factory: insert an attempt row directly, bypassing admission."""

    async def _add(identity, *, created_at=NOW, status="completed", simulation_id=PYTHON_SIM):
        attempt_id = str(uuid4())
        completed_at = None if status == "in_progress" else created_at + timedelta(minutes=10)
        async with seeded_db.session() as session:
            await session.execute(
                insert(simulation_attempts).values(
                    id=attempt_id,
                    user_id=identity.id,
                    simulation_id=simulation_id,
                    status=status,
                    answers=[],
                    started_at=created_at,
                    created_at=created_at,
                    completed_at=completed_at,
                )
            )
        return attempt_id

    return _add


@pytest.fixture
def directory():
    return FakeDirectory()


@pytest.fixture
def router():
    return FakeRouter()


@pytest.fixture
def scoring():
    return FakeScoring()


@pytest_asyncio.fixture
async def core(seeded_db, directory, router, scoring, test_settings):
    hired_core = HiredCore.create(
        directory=directory,
        router=router,
        cfg=test_settings,
        db=seeded_db,
        scoring=scoring,
    )
    yield hired_core
    await hired_core.close()
