from datetime import timedelta

from devpulse.infra.database import utcnow
from devpulse.v1.jobs.models import JobEventType


async def test_record_persists_event(event_logger, enqueue, db_session):
    job = await enqueue()
    retry_at = utcnow() + timedelta(seconds=2)

    await event_logger.record(
        job, JobEventType.RETRYING, attempt=1, next_retry=retry_at, error="timeout"
    )

    events = await event_logger.recent_events(db_session, job_pk=job.id)
    assert len(events) == 1
    event = events[0]
    assert event.event_type == "retrying"
    assert event.job_id == job.job_id
    assert event.job_type == job.job_type
    assert event.details["attempt"] == 1
    assert event.details["error"] == "timeout"
    # Details are stored JSON-encoded
    assert isinstance(event.details["next_retry"], str)


async def test_recent_events_filters_by_job(event_logger, enqueue, db_session):
    first = await enqueue()
    second = await enqueue()
    await event_logger.record(first, JobEventType.STARTED, attempt=1)
    await event_logger.record(second, JobEventType.STARTED, attempt=1)
    await event_logger.record(first, JobEventType.COMPLETED, attempt=1)

    assert len(await event_logger.recent_events(db_session)) == 3
    assert len(await event_logger.recent_events(db_session, job_pk=first.id)) == 2
    assert len(await event_logger.recent_events(db_session, limit=1)) == 1


async def test_recent_metrics_without_events(event_logger, db_session):
    assert await event_logger.recent_metrics(db_session) == {
        "recent_successes": 0,
        "recent_failures": 0,
        "recent_success_rate": 100.0,
    }


async def test_recent_metrics_counts_terminal_events_only(event_logger, enqueue, db_session):
    job = await enqueue()
    for event_type in (
        JobEventType.STARTED,
        JobEventType.COMPLETED,
        JobEventType.COMPLETED,
        JobEventType.RETRYING,
        JobEventType.FAILED,
    ):
        await event_logger.record(job, event_type)

    metrics = await event_logger.recent_metrics(db_session)

    assert metrics["recent_successes"] == 2
    assert metrics["recent_failures"] == 1
    assert metrics["recent_success_rate"] == 66.7


async def test_recent_metrics_window(event_logger, enqueue, db_session):
    job = await enqueue()
    await event_logger.record(job, JobEventType.FAILED)
    for _ in range(3):
        await event_logger.record(job, JobEventType.COMPLETED)

    metrics = await event_logger.recent_metrics(db_session, limit=3)

    assert metrics == {
        "recent_successes": 3,
        "recent_failures": 0,
        "recent_success_rate": 100.0,
    }


async def test_record_with_unencodable_details_is_best_effort(
    event_logger, enqueue, db_session
):
    job = await enqueue()

    await event_logger.record(job, JobEventType.COMPLETED, result={"handle": object()})

    assert await event_logger.recent_events(db_session, job_pk=job.id) == []
