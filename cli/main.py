"""DevPulse Jobs CLI - Main Entry Point"""

import asyncio
import json
from datetime import timedelta
from typing import Any, Awaitable, Callable, List, Optional, TypeVar

import typer
from rich.console import Console
from rich.panel import Panel

from devpulse.config.logging import setup_logging
from devpulse.config.settings import Settings
from devpulse.infra.database import Database, utcnow
from devpulse.v1.core.exceptions import DevPulseException
from devpulse.v1.core.registries import JobRegistry
from devpulse.v1.jobs.events import JobEventLogger
from devpulse.v1.jobs.models import JobType
from devpulse.v1.jobs.processor import JobProcessor
from devpulse.v1.jobs.registry_init import register_job_handlers
from devpulse.v1.jobs.schemas import JobCreate, JobResponse
from devpulse.v1.jobs.service import JobQueueService
from devpulse.v1.jobs.worker import JobWorker

from .utils.formatting import (
    create_jobs_table,
    create_stats_panel,
    print_error,
    print_info,
    print_success,
    print_warning,
)

console = Console()
T = TypeVar("T")

app = typer.Typer(
    name="devpulse-jobs",
    help="⚙️ DevPulse Jobs - background job queue operations",
    rich_markup_mode="rich",
)


def _run(operation: Callable[[Database, Settings], Awaitable[T]]) -> T:
    """Run an async operation against a fresh database handle."""
    settings = Settings()

    async def runner() -> T:
        database = Database(settings)
        try:
            return await operation(database, settings)
        finally:
            await database.close()

    try:
        return asyncio.run(runner())
    except DevPulseException as e:
        print_error(e.message)
        raise typer.Exit(1)


def _build_processor(database: Database, settings: Settings) -> JobProcessor:
    registry = register_job_handlers(JobRegistry(), settings)
    return JobProcessor(
        session_factory=database.SessionLocal,
        registry=registry,
        event_logger=JobEventLogger(database.SessionLocal),
        settings=settings,
    )


@app.command("init-db")
def init_db():
    """🗄️ Create the job tables (local SQLite and development setups)"""

    async def operation(database: Database, settings: Settings) -> None:
        await database.create_all()

    _run(operation)
    print_success("Job tables created")


@app.command()
def enqueue(
    job_type: JobType = typer.Argument(..., help="Job type"),
    payload: str = typer.Option("{}", "--payload", "-p", help="JSON payload"),
    priority: int = typer.Option(0, "--priority", help="Higher runs first"),
    max_attempts: Optional[int] = typer.Option(
        None, "--max-attempts", min=1, help="Terminal failure threshold"
    ),
    delay: float = typer.Option(0, "--delay", min=0, help="Seconds before eligible"),
):
    """➕ Enqueue a job"""
    try:
        payload_data = json.loads(payload)
    except json.JSONDecodeError as e:
        print_error(f"Invalid JSON payload: {e}")
        raise typer.Exit(1)
    if not isinstance(payload_data, dict):
        print_error("Payload must be a JSON object")
        raise typer.Exit(1)

    async def operation(database: Database, settings: Settings) -> JobResponse:
        job_create = JobCreate(
            job_type=job_type,
            payload=payload_data,
            priority=priority,
            max_attempts=max_attempts or settings.job_default_max_attempts,
            scheduled_at=utcnow() + timedelta(seconds=delay) if delay else None,
        )
        async with database.SessionLocal() as session:
            job = await JobQueueService(settings).create_job(session, job_create)
            return JobResponse.model_validate(job)

    job = _run(operation)
    print_success(f"Enqueued {job.job_type} job {job.job_id}")


@app.command()
def process(
    max_jobs: int = typer.Option(10, "--max-jobs", "-n", min=1, help="Batch bound"),
    job_types: Optional[List[JobType]] = typer.Option(
        None, "--type", "-t", help="Restrict to job type (repeatable)"
    ),
):
    """▶️ Drain up to N eligible jobs"""

    async def operation(database: Database, settings: Settings) -> dict[str, Any]:
        summary = await _build_processor(database, settings).drain(max_jobs, job_types)
        return summary.model_dump(mode="json")

    summary = _run(operation)
    if not summary["processed"]:
        print_info("No pending jobs to process")
        return

    rows = [
        {
            **outcome["job"],
            "status": "lease_lost" if outcome["lease_lost"] else outcome["final_status"],
            "error": outcome["result"]["error"],
        }
        for outcome in summary["results"]
    ]
    console.print(create_jobs_table(rows, title="Processed Jobs"))
    print_success(
        f"Processed {summary['processed']}: {summary['succeeded']} succeeded, "
        f"{summary['failed']} failed ({summary['retried']} scheduled for retry), "
        f"{summary['lease_lost']} lost their lease"
    )


@app.command()
def worker(
    job_types: Optional[List[JobType]] = typer.Option(
        None, "--type", "-t", help="Restrict to job type (repeatable)"
    ),
):
    """🔁 Run a long-lived worker until interrupted"""

    async def operation(database: Database, settings: Settings) -> None:
        setup_logging(settings)
        job_worker = JobWorker(
            _build_processor(database, settings),
            settings,
            job_types=[t.value for t in job_types] if job_types else None,
        )
        await job_worker.start()

    print_info("Starting worker, press Ctrl+C to stop")
    try:
        _run(operation)
    except KeyboardInterrupt:
        print_warning("Worker interrupted")


@app.command()
def stats():
    """📊 Show queue statistics"""

    async def operation(database: Database, settings: Settings) -> dict[str, Any]:
        async with database.SessionLocal() as session:
            queue_stats = await JobQueueService(settings).queue_stats(session)
            return queue_stats.model_dump()

    console.print(create_stats_panel(_run(operation)))


@app.command()
def show(job_id: str = typer.Argument(..., help="Human-referenceable job id")):
    """🔎 Show a single job"""

    async def operation(database: Database, settings: Settings) -> JobResponse | None:
        async with database.SessionLocal() as session:
            job = await JobQueueService(settings).get_by_job_id(session, job_id)
            return JobResponse.model_validate(job) if job else None

    job = _run(operation)
    if job is None:
        print_error(f"Job {job_id} not found")
        raise typer.Exit(1)

    console.print(
        Panel(
            json.dumps(job.model_dump(mode="json"), indent=2),
            title=f"{job.job_type} · {job.status}",
            border_style="cyan",
        )
    )


@app.command()
def cleanup(
    days: int = typer.Option(30, "--days", min=0, help="Retention in days"),
):
    """🧹 Delete completed and failed jobs older than N days"""

    async def operation(database: Database, settings: Settings) -> int:
        async with database.SessionLocal() as session:
            return await JobQueueService(settings).cleanup_older_than(session, days)

    print_success(f"Deleted {_run(operation)} jobs older than {days} days")


@app.command("retry-failed")
def retry_failed(
    max_retries: int = typer.Option(3, "--max-retries", min=1, help="Attempts threshold"),
):
    """♻️ Re-queue failed jobs below the attempts threshold"""

    async def operation(database: Database, settings: Settings) -> int:
        async with database.SessionLocal() as session:
            return await JobQueueService(settings).bulk_retry_failed(session, max_retries)

    print_success(f"Re-queued {_run(operation)} failed jobs")


@app.command()
def reclaim():
    """🩹 Recover processing jobs whose lease expired"""

    async def operation(database: Database, settings: Settings) -> dict[str, int]:
        async with database.SessionLocal() as session:
            summary = await JobQueueService(settings).reclaim_expired_leases(session)
            return summary.model_dump()

    summary = _run(operation)
    print_success(
        f"Re-queued {summary['requeued']} and failed {summary['failed']} expired jobs"
    )


@app.callback()
def main(
    ctx: typer.Context,
    version: Optional[bool] = typer.Option(
        None, "--version", "-v", help="Show version and exit"
    ),
):
    """
    ⚙️ DevPulse Jobs CLI

    Enqueue, process and maintain background jobs directly against the job store.
    """
    if version:
        from . import __version__

        console.print(f"DevPulse Jobs CLI v{__version__}")
        raise typer.Exit()


if __name__ == "__main__":
    app()
