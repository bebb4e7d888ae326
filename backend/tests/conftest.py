"""Shared test fixtures: in-memory SQLite DB, async session, test client."""

import pytest
import pytest_asyncio
from helpers import make_user
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import raisetracker.models  # noqa: F401
from raisetracker.core.magic_links import magic_links
from raisetracker.core.rate_limit import login_limiter
from raisetracker.core.session_tokens import revocations
from raisetracker.dependencies import get_db
from raisetracker.main import app
from raisetracker.models.base import Base
from raisetracker.models.user import User
from raisetracker.services.email_service import InMemoryEmailSender, set_email_sender

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


def _set_sqlite_pragma(dbapi_connection, connection_record):
    # Enable foreign key enforcement in SQLite (off by default).
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


@pytest_asyncio.fixture(autouse=True)
async def test_engine():
    """Fresh in-memory database per test; one shared connection."""
    engine = create_async_engine(TEST_DATABASE_URL, echo=False, poolclass=StaticPool)
    event.listen(engine.sync_engine, "connect", _set_sqlite_pragma)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture(autouse=True)
def reset_process_state():
    """Magic links, login attempts and revocations are process-wide."""
    magic_links.clear()
    login_limiter.reset()
    revocations.clear()
    yield
    magic_links.clear()
    login_limiter.reset()
    revocations.clear()


@pytest.fixture(autouse=True)
def outbox() -> InMemoryEmailSender:
    sender = InMemoryEmailSender()
    set_email_sender(sender)
    yield sender
    set_email_sender(None)


@pytest_asyncio.fixture
async def db_session(test_engine) -> AsyncSession:
    """Yield a test DB session."""
    factory = async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as session:
        yield session


@pytest_asyncio.fixture
async def client(db_session: AsyncSession) -> AsyncClient:
    """Yield an httpx AsyncClient wired to the test DB.

    Each request commits, or rolls back on error, like the real ``get_db``.
    """

    async def _override_get_db():
        try:
            yield db_session
            await db_session.commit()
        except Exception:
            await db_session.rollback()
            raise

    app.dependency_overrides[get_db] = _override_get_db
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def member(db_session: AsyncSession) -> User:
    return await make_user(db_session)


@pytest_asyncio.fixture
async def admin(db_session: AsyncSession) -> User:
    return await make_user(
        db_session, username="admin@example.com", display_name="Admin", is_admin=True
    )
