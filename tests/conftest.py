"""
Shared test fixtures: async DB, PageSpeed payloads, FastAPI test client.
"""

import json
from datetime import datetime, timezone
from unittest.mock import AsyncMock, patch

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import radar.models  # noqa: F401
from radar.config import Capabilities, get_capabilities
from radar.database import Base, get_db, get_session_factory
from radar.main import app
from radar.models import Project, User
from radar.services.audit_runner import AuditRunner
from radar.services.background import DetachedTasks, background_tasks


# ── Test Database (SQLite in-memory) ────────────────────

TEST_DB_URL = "sqlite+aiosqlite:///:memory:"

APP_URL = "https://radar.test"


def as_utc(value: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; everything stored is UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


@pytest_asyncio.fixture()
async def db_engine():
    # One shared connection so every session sees the same in-memory DB
    engine = create_async_engine(
        TEST_DB_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture()
async def session_factory(db_engine):
    return async_sessionmaker(db_engine, expire_on_commit=False)


@pytest_asyncio.fixture()
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def capabilities():
    """No queue, no email, no AI: the bare local setup."""
    return Capabilities(app_url=APP_URL)


@pytest_asyncio.fixture()
async def tasks():
    registry = DetachedTasks()
    yield registry
    await registry.drain()


@pytest.fixture
def runner(session_factory, capabilities, tasks):
    return AuditRunner(session_factory, capabilities, tasks)


@pytest_asyncio.fixture()
async def client(session_factory, capabilities):
    """FastAPI test client with test DB and capabilities injected."""

    async def _override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_capabilities] = lambda: capabilities

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    await background_tasks.drain()
    app.dependency_overrides.clear()


# ── External services ───────────────────────────────────

@pytest.fixture(autouse=True)
def no_crux_history():
    """History enrichment never reaches the network unless a test opts in."""
    with patch("radar.services.crux_history._query", new_callable=AsyncMock, return_value=None) as m:
        yield m


@pytest.fixture(autouse=True)
def public_dns():
    with patch(
        "radar.routes.projects.resolves_to_private_address",
        new_callable=AsyncMock,
        return_value=False,
    ) as m:
        yield m


def make_psi_payload(
    perf=0.72,
    lcp=3200.0,
    cls=0.05,
    inp=180.0,
    fcp=1500.0,
    ttfb=420.0,
    tbt=310.0,
    speed_index=2900.0,
    field=True,
) -> dict:
    """A trimmed PageSpeed Insights v5 response."""
    payload = {
        "id": "https://example.com/",
        "lighthouseResult": {
            "lighthouseVersion": "12.2.1",
            "categories": {
                "performance": {"score": perf},
                "seo": {"score": 0.91},
                "accessibility": {"score": 0.88},
                "best-practices": {"score": 0.96},
            },
            "audits": {
                "largest-contentful-paint": {"numericValue": lcp},
                "cumulative-layout-shift": {"numericValue": cls},
                "interaction-to-next-paint": {"numericValue": inp},
                "first-contentful-paint": {"numericValue": fcp},
                "server-response-time": {"numericValue": ttfb},
                "total-blocking-time": {"numericValue": tbt},
                "speed-index": {"numericValue": speed_index},
                "render-blocking-resources": {"score": 0.3, "displayValue": "Potential savings of 850 ms"},
                "uses-optimized-images": {"score": 0.5, "displayValue": "Potential savings of 120 KiB"},
            },
        },
    }
    if field:
        payload["loadingExperience"] = {
            "metrics": {
                "LARGEST_CONTENTFUL_PAINT_MS": {"percentile": 2900},
                "CUMULATIVE_LAYOUT_SHIFT_SCORE": {"percentile": 8},
                "INTERACTION_TO_NEXT_PAINT": {"percentile": 210},
                "FIRST_CONTENTFUL_PAINT_MS": {"percentile": 1400},
            }
        }
    return payload


@pytest.fixture
def psi_payload():
    return make_psi_payload()


@pytest.fixture
def mock_psi(psi_payload):
    """PageSpeed answers 200 with ``psi_payload``."""
    with patch(
        "radar.services.pagespeed._fetch",
        new_callable=AsyncMock,
        return_value=(200, json.dumps(psi_payload)),
    ) as m:
        yield m


# ── Sample rows ─────────────────────────────────────────

@pytest.fixture
def make_project(session_factory):
    """Factory: create a user (if needed) and one project for them."""

    async def _make(user_id="user_1", plan="free", email="owner@example.com", **fields):
        async with session_factory() as session:
            user = await session.get(User, user_id)
            if user is None:
                session.add(User(id=user_id, email=email, plan=plan))
                await session.flush()
            project = Project(
                user_id=user_id,
                name=fields.pop("name", "Example"),
                url=fields.pop("url", "https://example.com"),
                **fields,
            )
            session.add(project)
            await session.commit()
            return project

    return _make
