"""
Job registry initialization.

Registers one handler per job type and verifies the mapping is total.
"""

from devpulse.config.logging import get_logger
from devpulse.config.settings import Settings, settings as default_settings
from devpulse.v1.core.registries import JobRegistry, job_registry
from devpulse.v1.jobs.handlers import (
    AISummaryHandler,
    AnalyticsRollupHandler,
    BadgeAwardHandler,
    CIAnalysisHandler,
    IssueClassificationHandler,
    NotificationHandler,
    ReleaseNotesHandler,
)
from devpulse.v1.jobs.models import JobType

logger = get_logger(__name__)


def register_job_handlers(
    registry: JobRegistry = job_registry, settings: Settings | None = None
) -> JobRegistry:
    """Register all job handlers with the job registry."""
    settings = settings or default_settings

    if registry.is_frozen():
        registry.ensure_complete()
        return registry

    logger.info("Registering job handlers")

    registry.register(JobType.AI_SUMMARY, AISummaryHandler(settings))
    registry.register(JobType.NOTIFICATION, NotificationHandler(settings))
    registry.register(JobType.ANALYTICS_ROLLUP, AnalyticsRollupHandler(settings))
    registry.register(JobType.BADGE_AWARD, BadgeAwardHandler(settings))
    registry.register(
        JobType.ISSUE_CLASSIFICATION, IssueClassificationHandler(settings)
    )
    registry.register(JobType.RELEASE_NOTES, ReleaseNotesHandler(settings))
    registry.register(JobType.CI_ANALYSIS, CIAnalysisHandler(settings))

    registry.ensure_complete()

    logger.info("Job handlers registered", registered_handlers=registry.list())
    return registry
