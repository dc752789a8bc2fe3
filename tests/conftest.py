"""Shared test fixtures and configuration for capacity scenario planner tests."""
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import pytest
import pytest_asyncio
from datetime import date
from typing import AsyncGenerator

from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.database import Base, get_db
from app.data.models import Project, ProjectAssignment, ProjectPhaseTimeline
from app.scenarios import models  # noqa: F401
from app.scenarios.locks import scenario_locks
from app.scenarios.registry import ScenarioRegistry


# =============================================================================
# DATABASE
# =============================================================================

@pytest_asyncio.fixture
async def engine():
    """Fresh in-memory database per test."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_maker(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_maker) -> AsyncGenerator[AsyncSession, None]:
    async with session_maker() as session:
        yield session


@pytest.fixture(autouse=True)
def fresh_locks():
    """Locks are bound to an event loop; each test gets its own."""
    scenario_locks.clear()
    yield
    scenario_locks.clear()


# =============================================================================
# PLAN DATA
# =============================================================================

@pytest_asyncio.fixture
async def baseline(db):
    """Baseline scenario with one project, one phase and two assignments."""
    scenario = await ScenarioRegistry(db).create_baseline(name="Baseline", created_by="planner")

    db.add_all([
        Project(id="proj_apollo", name="Apollo", priority=1),
        ProjectPhaseTimeline(
            id="phtl_apollo_build",
            project_id="proj_apollo",
            phase_id="phase_build",
            start_date=date(2026, 1, 5),
            end_date=date(2026, 3, 27),
        ),
        ProjectAssignment(
            id="asgn_x",
            project_id="proj_apollo",
            person_id="person_ada",
            role_id="role_dev",
            allocation_percentage=50,
        ),
        ProjectAssignment(
            id="asgn_y",
            project_id="proj_apollo",
            person_id="person_bob",
            role_id="role_qa",
            allocation_percentage=25,
        ),
    ])
    await db.commit()
    return scenario


# =============================================================================
# HTTP
# =============================================================================

@pytest_asyncio.fixture
async def client(session_maker) -> AsyncGenerator[AsyncClient, None]:
    """API client over the test database."""
    from app.main import app

    async def override_get_db():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()
