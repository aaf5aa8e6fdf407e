"""
Centralized Test Configuration.

Tests run against a file-backed SQLite database. Every transaction starts
with BEGIN IMMEDIATE, so concurrent writers queue on the database lock the way
they queue on the report row lock (SELECT ... FOR UPDATE) in PostgreSQL.
"""

import hashlib
import os
import tempfile
from datetime import date, datetime, timezone

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import NullPool

from freelance_backend.app.main import app
from freelance_backend.app.db.session import get_db, Base
from freelance_backend.app.core.exceptions import LedgerIntegrityError, LedgerTimeoutError
from freelance_backend.app.core.jwt import create_access_token
from freelance_backend.app.core.redis_client import get_redis
from freelance_backend.app.domain.ledger.ledger_service import get_ledger_repository
from freelance_backend.app.domain.ledger.repository import LedgerRevision, parse_trailers
from freelance_backend.app.domain.reports.entry_service import EntryService
from freelance_backend.app.domain.reports.report_service import ReportService
from freelance_backend.app.models.assignment import Assignment
import freelance_backend.app.core.redis_client as redis_client_module

# Setup file-backed Test Database (separate connections per session)
TEST_DB_DIR = tempfile.mkdtemp(prefix="freelance-tests-")
TEST_DATABASE_URL = f"sqlite+aiosqlite:///{os.path.join(TEST_DB_DIR, 'test.db')}"

engine = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"timeout": 30},
    poolclass=NullPool,
)


@event.listens_for(engine.sync_engine, "connect")
def set_sqlite_pragma(dbapi_conn, connection_record):
    """Let SQLAlchemy emit BEGIN itself."""
    dbapi_conn.isolation_level = None


@event.listens_for(engine.sync_engine, "begin")
def begin_immediate(conn):
    conn.exec_driver_sql("BEGIN IMMEDIATE")


TestingSessionLocal = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
)


# Mock Redis for reliability in CI/CD
class MockRedis:
    def __init__(self):
        self.store = {}
        self.ttl = {}
        self._closed = False

    async def ping(self):
        return not self._closed

    async def get(self, key):
        return self.store.get(key)

    async def incr(self, key):
        self.store[key] = int(self.store.get(key, 0)) + 1
        return self.store[key]

    async def expire(self, key, seconds):
        self.ttl[key] = seconds
        return key in self.store

    async def exists(self, key):
        return 1 if key in self.store else 0

    async def flushdb(self):
        self.store = {}
        self.ttl = {}

    async def aclose(self):
        self._closed = True
        self.store = {}


class FakeLedgerRepository:
    """
    In-memory ledger with the GitLedgerRepository interface.

    Failure switches:
        fail_next_commit: raise LedgerTimeoutError on the next commit (nothing recorded)
        rewrite_history(): drop every revision, as a force-push would
    """

    def __init__(self):
        self.revisions: list[LedgerRevision] = []
        self.payloads: dict[str, bytes] = {}
        self.fail_next_commit = False
        self.commit_calls = 0

    async def init(self):
        return None

    async def head(self):
        return self.revisions[-1].revision_id if self.revisions else None

    async def verify_no_rewrite(self, expected_head):
        ids = [revision.revision_id for revision in self.revisions]
        if expected_head is None:
            return list(self.revisions)
        if expected_head not in ids:
            raise LedgerIntegrityError(
                "Recorded ledger revision is missing from the ledger store",
                details={"expected_head": expected_head}
            )
        return self.revisions[ids.index(expected_head) + 1:]

    async def revisions_since(self, revision_id):
        if revision_id is None:
            return list(self.revisions)
        ids = [revision.revision_id for revision in self.revisions]
        return self.revisions[ids.index(revision_id) + 1:]

    async def read_payload(self, revision_id, report_id):
        return self.payloads[revision_id]

    async def commit(self, payload, message, report_id):
        self.commit_calls += 1
        if self.fail_next_commit:
            self.fail_next_commit = False
            raise LedgerTimeoutError("commit", 0.01)

        revision_id = hashlib.sha1(f"{len(self.revisions)}:{message}".encode()).hexdigest()
        self.revisions.append(LedgerRevision(
            revision_id=revision_id,
            committed_at=datetime.now(timezone.utc).isoformat(),
            trailers=parse_trailers(message)
        ))
        self.payloads[revision_id] = payload
        return revision_id

    def rewrite_history(self):
        self.revisions = []
        self.payloads = {}


@pytest.fixture
async def redis_client():
    return MockRedis()


@pytest.fixture
def fake_ledger():
    return FakeLedgerRepository()


@pytest.fixture(autouse=True)
async def setup_database():
    """Create tables before each test function and drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
async def client(redis_client, fake_ledger):
    """Async client for testing, wired to the test database, Redis mock and fake ledger."""
    original_client = redis_client_module.redis_client
    redis_client_module.redis_client = redis_client

    async def override_get_db():
        async with TestingSessionLocal() as session:
            yield session

    async def override_get_redis():
        return redis_client

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_redis] = override_get_redis
    app.dependency_overrides[get_ledger_repository] = lambda: fake_ledger

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides = {}
    redis_client_module.redis_client = original_client


# Shared session for fixture data creation
@pytest.fixture
async def db_session():
    async with TestingSessionLocal() as session:
        yield session


@pytest.fixture
def session_factory():
    return TestingSessionLocal


@pytest.fixture
def auth_headers():
    def make(user_id: int = 1, username: str = "alice"):
        token = create_access_token(data={"sub": username, "user_id": user_id})
        return {"Authorization": f"Bearer {token}"}
    return make


@pytest.fixture
async def assignment(db_session):
    item = Assignment(name="Acme platform", owner_id=1)
    db_session.add(item)
    await db_session.commit()
    return item


@pytest.fixture
async def other_assignment(db_session):
    item = Assignment(name="Globex audit", owner_id=1)
    db_session.add(item)
    await db_session.commit()
    return item


@pytest.fixture
async def draft_report(db_session):
    return await ReportService.create_report(db_session, owner_id=1, month=3, year=2026, actor_id=1)


@pytest.fixture
async def report_with_entries(db_session, draft_report, assignment):
    """Draft report with 1.0 day @ 500.00 and 0.5 day @ 500.00."""
    await EntryService.create_entry(
        db_session, draft_report.id, assignment.id, date(2026, 3, 2), "1.0", 50000, "Kickoff"
    )
    await EntryService.create_entry(
        db_session, draft_report.id, assignment.id, date(2026, 3, 3), "0.5", 50000, "Review"
    )
    return draft_report
