from contextvars import ContextVar
from typing import AsyncGenerator, Optional
from unittest.mock import MagicMock

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import Field, SQLModel
from sqlmodel_history.core.hooks import MutationHooks
from sqlmodel_history.db.database_async import build_engine, create_all_tables
from sqlmodel_history.history.tracker import track_history
from sqlmodel_history.settings import Settings

# --- Test Models ---


class Ticket(SQLModel, table=True):
    __tablename__ = "tickets"  # type: ignore

    id: Optional[int] = Field(default=None, primary_key=True)
    status: str = Field(default="open")
    title: str = Field(default="")
    priority: int = Field(default=0)
    notes: Optional[str] = Field(default=None)


class Note(SQLModel, table=True):
    """An untracked model used to exercise the mutation pipeline on its own."""

    __tablename__ = "notes"  # type: ignore

    id: Optional[int] = Field(default=None, primary_key=True)
    body: str = Field(default="")
    pinned: bool = Field(default=False)


class Account(SQLModel, table=True):
    """Identified by its account number rather than its primary key."""

    __tablename__ = "accounts"  # type: ignore

    id: Optional[int] = Field(default=None, primary_key=True)
    number: int = Field(unique=True)
    status: str = Field(default="open")


# The user the current task acts as; read by the ticket tracker's actor resolver.
current_actor: ContextVar[Optional[str]] = ContextVar("current_actor", default=None)


async def resolve_current_actor() -> Optional[str]:
    return current_actor.get()


HOOKS = MutationHooks()

_writer_settings = MagicMock(spec=Settings)
_writer_settings.get_revision_max_attempts.return_value = 5
_writer_settings.get_actor_timeout.return_value = 5.0

TICKET_TRACKER = track_history(
    Ticket,
    {"tracked_fields": ["status", "title", "priority"], "resolve_actor": resolve_current_actor},
    hooks=HOOKS,
    settings=_writer_settings,
)

ACCOUNT_TRACKER = track_history(
    Account,
    {"identity_field": "number", "tracked_fields": ["status"]},
    hooks=HOOKS,
    settings=_writer_settings,
)

# --- Fixtures ---


@pytest.fixture
def hooks() -> MutationHooks:
    return HOOKS


@pytest.fixture
def ticket_tracker():
    return TICKET_TRACKER


@pytest.fixture
def ticket_model():
    return Ticket


@pytest.fixture
def account_tracker():
    return ACCOUNT_TRACKER


@pytest.fixture
def account_model():
    return Account


@pytest.fixture
def note_model():
    return Note


@pytest.fixture
def acting_as():
    """Sets the actor the ticket tracker attributes updates to, for the current test task."""

    def _set(actor: Optional[str]) -> None:
        current_actor.set(actor)

    return _set


@pytest_asyncio.fixture(scope="function")
async def async_engine():
    """In-memory SQLite async engine for testing."""
    engine = build_engine("sqlite+aiosqlite:///:memory:")
    await create_all_tables(engine)

    yield engine
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def async_session(async_engine) -> AsyncGenerator[AsyncSession, None]:
    """In-memory SQLite async session for testing."""
    async_session_factory = async_sessionmaker(async_engine, expire_on_commit=False)

    async with async_session_factory() as session:
        yield session


@pytest_asyncio.fixture(scope="function")
async def file_session_factory(tmp_path):
    """File-backed SQLite session factory, for tests that need several connections at once."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'history.db'}")
    await create_all_tables(engine)

    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()


@pytest_asyncio.fixture
async def ticket(async_session, ticket_model):
    """A persisted ticket with no history yet."""
    record = ticket_model(status="open", title="Build is red", priority=1, notes="first seen on main")
    async_session.add(record)
    await async_session.commit()
    return record
