"""Test configuration and fixtures for the progression API."""

from collections.abc import AsyncGenerator
from typing import Any
from unittest.mock import patch

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from src.config.database import Base, get_db
from src.core import redis as redis_module
from src.domains.progression import sync as sync_module
from src.domains.progression.models import CatalogExercise
from src.domains.progression.schemas import (
    ClientWorkoutAssignment,
    Exercise,
    WorkoutDay,
    WorkoutExercise,
    WorkoutProgram,
    WorkoutSet,
)
from src.main import create_app

# Test database URL - use SQLite in-memory for tests
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture(scope="session")
def anyio_backend() -> str:
    """Use asyncio backend for tests."""
    return "asyncio"


@pytest.fixture(autouse=True)
def memory_backend():
    """Run Redis helpers on the in-memory fallback and reset shared state."""
    redis_module._memory_store.clear()
    redis_module._memory_channels.clear()
    sync_module._channel = None

    with patch("src.core.redis.get_redis", return_value=None):
        yield

    redis_module._memory_store.clear()
    redis_module._memory_channels.clear()
    sync_module._channel = None


@pytest.fixture(scope="function")
async def test_engine():
    """Create a test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        connect_args={"check_same_thread": False},
    )

    # Import all models to register them
    from src.domains.progression import models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture(scope="function")
def session_factory(test_engine) -> async_sessionmaker:
    return async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


@pytest.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture(scope="function")
async def client(test_engine, db_session) -> AsyncGenerator[AsyncClient, None]:
    """Create a test client with database session override."""
    app = create_app()

    # Override the database dependency
    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client

    app.dependency_overrides.clear()


# =============================================================================
# Catalog and program fixtures
# =============================================================================


@pytest.fixture
async def sample_catalog(db_session: AsyncSession) -> list[dict[str, Any]]:
    """A small exercise catalog."""
    entries = [
        {"name": "Push Ups", "muscle_group": "Chest"},
        {"name": "Bench Press", "muscle_group": "Chest"},
        {"name": "Squat", "muscle_group": "Legs"},
        {"name": "Barbell Row", "muscle_group": "Back"},
        {"name": "Mystery Move", "muscle_group": ""},
    ]
    for entry in entries:
        db_session.add(CatalogExercise(**entry))
    await db_session.commit()
    return entries


@pytest.fixture
def push_up_program() -> WorkoutProgram:
    """One day, Push Ups, one bodyweight set of 10."""
    return WorkoutProgram(
        id="program-1",
        name="Bodyweight Basics",
        days=[
            WorkoutDay(
                id="day-1",
                name="Day A",
                exercises=[
                    WorkoutExercise(
                        id="we-1",
                        exercise=Exercise(id="ex-pushups", name="Push Ups", muscle_group="Chest"),
                        sets=[WorkoutSet(id="set-1", reps=10, weight=0)],
                    )
                ],
            )
        ],
    )


@pytest.fixture
def strength_program() -> WorkoutProgram:
    """Two days with loaded sets."""
    return WorkoutProgram(
        id="program-2",
        name="Strength Block",
        days=[
            WorkoutDay(
                id="day-1",
                name="Upper",
                exercises=[
                    WorkoutExercise(
                        id="we-bench",
                        exercise=Exercise(id="ex-bench", name="Bench Press", muscle_group="Chest"),
                        sets=[
                            WorkoutSet(id="bench-1", reps=8, weight=50),
                            WorkoutSet(id="bench-2", reps=8, weight=50),
                        ],
                    ),
                    WorkoutExercise(
                        id="we-row",
                        exercise=Exercise(id="ex-row", name="Barbell Row", muscle_group="Back"),
                        sets=[WorkoutSet(id="row-1", reps=10, weight=40)],
                    ),
                ],
            ),
            WorkoutDay(
                id="day-2",
                name="Lower",
                exercises=[
                    WorkoutExercise(
                        id="we-squat",
                        exercise=Exercise(id="ex-squat", name="Squat", muscle_group="Legs"),
                        sets=[WorkoutSet(id="squat-1", reps=5, weight=100)],
                    ),
                ],
            ),
        ],
    )


@pytest.fixture
def make_assignment():
    """Build an in-memory assignment with a fresh week ledger."""
    from src.domains.progression.engine import initialize_weeks

    def _make(program: WorkoutProgram | None, duration: int = 4, client_id: str = "client-1", **kwargs):
        return ClientWorkoutAssignment(
            client_id=client_id,
            client_name=kwargs.pop("client_name", "Alice"),
            program=program.model_copy(deep=True) if program is not None else None,
            duration=duration,
            weeks=initialize_weeks(duration),
            share_token=kwargs.pop("share_token", f"token-{client_id}"),
            **kwargs,
        )

    return _make
