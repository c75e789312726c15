import os
from collections.abc import AsyncGenerator, Generator
from datetime import timedelta
from typing import Any
from uuid import UUID

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from devpulse.config.settings import Settings, get_settings
from devpulse.infra.database import Database, get_database, utcnow
from devpulse.v1.core.registries import JobRegistry
from devpulse.v1.jobs import models  # noqa: F401
from devpulse.v1.jobs.events import JobEventLogger
from devpulse.v1.jobs.models import Job, JobType
from devpulse.v1.jobs.processor import JobProcessor
from devpulse.v1.jobs.registry_init import register_job_handlers
from devpulse.v1.jobs.schemas import JobCreate, JobResult
from devpulse.v1.jobs.service import JobQueueService


def _test_database_url(tmp_path) -> str:
    database_url = os.getenv("DATABASE_URL")
    if database_url and "postgresql" in database_url:
        # Use the CI PostgreSQL database
        return database_url
    return f"sqlite+aiosqlite:///{tmp_path / 'jobs.db'}"


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    """Settings pointing at an isolated test database."""
    return Settings(
        database_url=_test_database_url(tmp_path),
        environment="development",
        debug=False,
        job_batch_size=5,
        job_poll_interval_ms=20,
    )


@pytest.fixture
async def database(test_settings: Settings) -> AsyncGenerator[Database, None]:
    """Create a fresh schema for each test."""
    db = Database(test_settings)
    await db.drop_all()
    await db.create_all()
    yield db
    await db.drop_all()
    await db.close()


@pytest.fixture
async def db_session(database: Database) -> AsyncGenerator[AsyncSession, None]:
    async with database.SessionLocal() as session:
        yield session


@pytest.fixture
def service(test_settings: Settings) -> JobQueueService:
    return JobQueueService(test_settings)


@pytest.fixture
def registry(test_settings: Settings) -> JobRegistry:
    """A fully populated registry independent of the global one."""
    return register_job_handlers(JobRegistry(), test_settings)


@pytest.fixture
def event_logger(database: Database) -> JobEventLogger:
    return JobEventLogger(database.SessionLocal)


@pytest.fixture
def make_processor(database, test_settings, event_logger, service):
    """Build a processor, optionally around a custom registry."""

    def _make(registry: JobRegistry | None = None, **kwargs: Any) -> JobProcessor:
        return JobProcessor(
            session_factory=database.SessionLocal,
            registry=registry or register_job_handlers(JobRegistry(), test_settings),
            event_logger=kwargs.pop("event_logger", event_logger),
            settings=kwargs.pop("settings", test_settings),
            service=service,
            **kwargs,
        )

    return _make


@pytest.fixture
def processor(make_processor) -> JobProcessor:
    return make_processor()


@pytest.fixture
def enqueue(database: Database, service: JobQueueService):
    """Enqueue a job in its own session."""

    async def _enqueue(job_type: JobType = JobType.AI_SUMMARY, **fields: Any) -> Job:
        fields.setdefault("payload", {"repo_name": "devpulse/core"})
        async with database.SessionLocal() as session:
            return await service.create_job(
                session, JobCreate(job_type=job_type, **fields)
            )

    return _enqueue


@pytest.fixture
def set_fields(database: Database):
    """Write columns directly, bypassing the queue API (clock and state setup)."""

    async def _set(job_pk: UUID, **values: Any) -> None:
        async with database.SessionLocal() as session:
            await session.execute(
                update(Job).where(Job.id == job_pk).values(**values)
            )
            await session.commit()

    return _set


@pytest.fixture
def make_eligible(set_fields):
    """Move a retrying job's scheduled_at into the past."""

    async def _eligible(job_pk: UUID) -> None:
        await set_fields(job_pk, scheduled_at=utcnow() - timedelta(seconds=1))

    return _eligible


@pytest.fixture
def fetch(database: Database, service: JobQueueService):
    """Read the current persisted state of a job."""

    async def _fetch(job_pk: UUID) -> Job | None:
        async with database.SessionLocal() as session:
            return await service.get_by_id(session, job_pk)

    return _fetch


class ScriptedHandler:
    """Handler that replays a fixed list of outcomes, repeating the last one."""

    def __init__(self, *outcomes: Any):
        self.outcomes = list(outcomes) or [JobResult(success=True)]
        self.calls: list[int] = []

    async def handle(self, job: Job) -> Any:
        self.calls.append(job.attempts)
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


@pytest.fixture
def scripted_registry(test_settings: Settings):
    """Registry with real handlers except for one scripted job type."""

    def _build(job_type: JobType, handler: ScriptedHandler) -> JobRegistry:
        registry = register_job_handlers(JobRegistry(), test_settings)
        registry.register(job_type, handler)
        return registry

    return _build


@pytest.fixture
def client(database: Database, test_settings: Settings) -> Generator[TestClient, None, None]:
    """Test client whose app runs against the test database.

    The app gets its own engine so its connections live on the client's
    event loop; both engines share the same schema.
    """
    from devpulse.main import create_app

    app = create_app()
    app_database = Database(test_settings)
    app.dependency_overrides[get_database] = lambda: app_database
    app.dependency_overrides[get_settings] = lambda: test_settings

    with TestClient(app) as test_client:
        yield test_client
        test_client.portal.call(app_database.close)

    app.dependency_overrides.clear()
