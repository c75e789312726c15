"""
Job handlers.

Each handler implements the JobHandler protocol: ``handle(job)`` returns a
``JobResult``. Handlers validate their own payload shape; a raised
``ValueError`` becomes a failed result in the processor.
"""

import re
from typing import Any

import httpx

from devpulse.config.logging import get_logger
from devpulse.config.settings import Settings
from devpulse.infra.database import utcnow
from devpulse.v1.jobs.models import Job
from devpulse.v1.jobs.schemas import JobResult

logger = get_logger(__name__)


def _require(payload: dict[str, Any], *keys: str) -> None:
    missing = [key for key in keys if payload.get(key) in (None, "")]
    if missing:
        raise ValueError(f"{', '.join(missing)} required in payload")


def _processed_at() -> str:
    return utcnow().isoformat()


class AISummaryHandler:
    """
    Summarize pull request content.

    Payload expected:
    {
        "repo_name": "org/repo",
        "pr_number": 42,        # optional
        "content": "PR body"    # optional
    }
    """

    max_summary_chars = 280

    def __init__(self, settings: Settings):
        self.settings = settings

    async def handle(self, job: Job) -> JobResult:
        payload = job.payload or {}
        _require(payload, "repo_name")

        repo_name = payload["repo_name"]
        content = (payload.get("content") or "").strip()

        if content:
            sentences = re.split(r"(?<=[.!?])\s+", content)
            summary = " ".join(sentences[:2])[: self.max_summary_chars]
        else:
            summary = f"AI summary generated for {repo_name}"

        return JobResult.ok(
            summary=summary,
            repo_name=repo_name,
            pr_number=payload.get("pr_number"),
            processed_at=_processed_at(),
        )


class NotificationHandler:
    """
    Deliver a message to a chat webhook.

    Payload expected:
    {
        "type": "pr_merged",
        "channel_id": "123",
        "message": "text to send",      # optional
        "webhook_url": "https://..."    # optional; nothing is sent without it
    }
    """

    def __init__(self, settings: Settings, transport: httpx.AsyncBaseTransport | None = None):
        self.settings = settings
        self.transport = transport

    async def handle(self, job: Job) -> JobResult:
        payload = job.payload or {}
        webhook_url = payload.get("webhook_url")
        message = payload.get("message")

        logger.info(
            "Processing notification",
            notification_type=payload.get("type"),
            channel_id=payload.get("channel_id"),
        )

        if webhook_url and message:
            try:
                async with httpx.AsyncClient(
                    timeout=self.settings.notification_timeout_s,
                    transport=self.transport,
                ) as client:
                    response = await client.post(webhook_url, json={"content": message})
            except httpx.HTTPError as e:
                return JobResult.fail(f"Notification error: {e}")

            if not response.is_success:
                return JobResult.fail(
                    f"Failed to send notification: {response.status_code} "
                    f"{response.reason_phrase}"
                )

        return JobResult.ok(
            notification_sent=bool(webhook_url and message),
            sent_at=_processed_at(),
        )


class AnalyticsRollupHandler:
    """Roll up repository activity for a reporting period."""

    def __init__(self, settings: Settings):
        self.settings = settings

    async def handle(self, job: Job) -> JobResult:
        payload = job.payload or {}
        _require(payload, "repo_name", "period_type")

        return JobResult.ok(
            rollup_completed=True,
            repo_name=payload["repo_name"],
            period_type=payload["period_type"],
            period_start=payload.get("period_start"),
            period_end=payload.get("period_end"),
            processed_at=_processed_at(),
        )


class BadgeAwardHandler:
    """Award an achievement badge to a contributor."""

    def __init__(self, settings: Settings):
        self.settings = settings

    async def handle(self, job: Job) -> JobResult:
        payload = job.payload or {}
        _require(payload, "user_id", "badge_type")

        return JobResult.ok(
            badge_awarded=True,
            user_id=payload["user_id"],
            badge_type=payload["badge_type"],
            reason=payload.get("reason"),
            awarded_at=_processed_at(),
        )


class IssueClassificationHandler:
    """
    Classify an issue by type and severity.

    Payload expected:
    {
        "repo_name": "org/repo",
        "issue_number": 7,
        "title": "Crash on login",
        "body": "..."            # optional
    }
    """

    _BUG = re.compile(r"\b(bug|error|crash|fail(s|ed|ure)?|broken|exception)\b", re.I)
    _DOCS = re.compile(r"\b(docs?|documentation|readme|typo)\b", re.I)
    _URGENT = re.compile(r"\b(security|vulnerability|data loss|outage|critical)\b", re.I)

    def __init__(self, settings: Settings):
        self.settings = settings

    async def handle(self, job: Job) -> JobResult:
        payload = job.payload or {}
        _require(payload, "repo_name", "issue_number", "title")

        text = f"{payload['title']}\n{payload.get('body') or ''}"

        if self._BUG.search(text):
            issue_type, labels = "bug", ["bug"]
        elif self._DOCS.search(text):
            issue_type, labels = "documentation", ["documentation"]
        else:
            issue_type, labels = "feature", ["enhancement"]

        if self._URGENT.search(text):
            severity, score = "critical", 90
        elif issue_type == "bug":
            severity, score = "medium", 50
        else:
            severity, score = "low", 20

        classification = {
            "issue_type": issue_type,
            "severity": severity,
            "severity_score": score,
            "suggested_labels": labels,
        }

        return JobResult.ok(
            repo_name=payload["repo_name"],
            issue_number=payload["issue_number"],
            classification=classification,
            processed_at=_processed_at(),
        )


class ReleaseNotesHandler:
    """Group commit messages into release notes sections."""

    def __init__(self, settings: Settings):
        self.settings = settings

    async def handle(self, job: Job) -> JobResult:
        payload = job.payload or {}
        _require(payload, "repo_name", "version")

        features: list[str] = []
        bug_fixes: list[str] = []
        other: list[str] = []
        for commit in payload.get("commits") or []:
            subject = str(commit).splitlines()[0].strip() if commit else ""
            if not subject:
                continue
            prefix, _, rest = subject.partition(":")
            kind = prefix.split("(")[0].strip().lower()
            if rest and kind == "feat":
                features.append(rest.strip())
            elif rest and kind == "fix":
                bug_fixes.append(rest.strip())
            else:
                other.append(subject)

        release_notes = {
            "title": f"Release {payload['version']}",
            "summary": f"New release for {payload['repo_name']}",
            "features": features,
            "bug_fixes": bug_fixes,
            "other_changes": other,
            "contributors": sorted(set(payload.get("contributors") or [])),
            "pr_numbers": payload.get("prs") or [],
        }

        return JobResult.ok(release_notes=release_notes, processed_at=_processed_at())


class CIAnalysisHandler:
    """Produce a first-pass analysis of a failed CI run."""

    def __init__(self, settings: Settings):
        self.settings = settings

    async def handle(self, job: Job) -> JobResult:
        payload = job.payload or {}
        _require(payload, "run_id", "repo_name")

        if payload.get("status") != "failure":
            return JobResult.ok(
                message="CI run successful, no analysis needed",
                processed_at=_processed_at(),
            )

        analysis = {
            "error_type": "build_error",
            "root_cause": "Unknown build failure",
            "suggested_fixes": ["Check build logs", "Verify dependencies"],
            "workflow_name": payload.get("workflow_name"),
            "logs_url": payload.get("logs_url"),
        }

        return JobResult.ok(
            run_id=payload["run_id"],
            analysis=analysis,
            processed_at=_processed_at(),
        )
