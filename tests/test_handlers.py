import json
from types import SimpleNamespace

import httpx
import pytest

from devpulse.config.settings import Settings
from devpulse.v1.jobs.handlers import (
    AISummaryHandler,
    AnalyticsRollupHandler,
    BadgeAwardHandler,
    CIAnalysisHandler,
    IssueClassificationHandler,
    NotificationHandler,
    ReleaseNotesHandler,
)


@pytest.fixture
def settings():
    return Settings(debug=False)


def make_job(payload):
    return SimpleNamespace(payload=payload, attempts=1)


class TestNotificationHandler:
    async def test_posts_message_to_webhook(self, settings):
        requests = []

        def respond(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(204)

        handler = NotificationHandler(settings, transport=httpx.MockTransport(respond))
        result = await handler.handle(
            make_job(
                {
                    "type": "pr_merged",
                    "channel_id": "123",
                    "message": "PR #42 merged",
                    "webhook_url": "https://chat.example.com/hooks/abc",
                }
            )
        )

        assert result.success is True
        assert result.data["notification_sent"] is True
        assert len(requests) == 1
        assert str(requests[0].url) == "https://chat.example.com/hooks/abc"
        assert json.loads(requests[0].content) == {"content": "PR #42 merged"}

    async def test_non_success_status_fails(self, settings):
        transport = httpx.MockTransport(lambda request: httpx.Response(500))
        handler = NotificationHandler(settings, transport=transport)

        result = await handler.handle(
            make_job({"message": "hi", "webhook_url": "https://chat.example.com/h"})
        )

        assert result.success is False
        assert result.error == "Failed to send notification: 500 Internal Server Error"

    async def test_transport_error_fails(self, settings):
        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        handler = NotificationHandler(settings, transport=httpx.MockTransport(refuse))

        result = await handler.handle(
            make_job({"message": "hi", "webhook_url": "https://chat.example.com/h"})
        )

        assert result.success is False
        assert result.error.startswith("Notification error:")
        assert "connection refused" in result.error

    async def test_without_webhook_nothing_is_sent(self, settings):
        def fail(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        handler = NotificationHandler(settings, transport=httpx.MockTransport(fail))

        result = await handler.handle(make_job({"type": "digest", "channel_id": "1"}))

        assert result.success is True
        assert result.data["notification_sent"] is False


class TestAISummaryHandler:
    async def test_summarizes_first_two_sentences(self, settings):
        result = await AISummaryHandler(settings).handle(
            make_job(
                {
                    "repo_name": "org/repo",
                    "pr_number": 7,
                    "content": "Adds retries. Removes dead code! Bumps deps.",
                }
            )
        )

        assert result.data["summary"] == "Adds retries. Removes dead code!"
        assert result.data["pr_number"] == 7

    async def test_fallback_summary(self, settings):
        result = await AISummaryHandler(settings).handle(make_job({"repo_name": "org/repo"}))

        assert result.data["summary"] == "AI summary generated for org/repo"

    async def test_requires_repo_name(self, settings):
        with pytest.raises(ValueError, match="repo_name required in payload"):
            await AISummaryHandler(settings).handle(make_job({}))


class TestIssueClassificationHandler:
    @pytest.mark.parametrize(
        "title, body, issue_type, severity",
        [
            ("App crash on login", "", "bug", "medium"),
            ("Security hole in token refresh", "Exception leaks data", "bug", "critical"),
            ("Typo in README", None, "documentation", "low"),
            ("Support dark mode", "Would be nice", "feature", "low"),
        ],
    )
    async def test_classification(self, settings, title, body, issue_type, severity):
        result = await IssueClassificationHandler(settings).handle(
            make_job(
                {"repo_name": "org/repo", "issue_number": 3, "title": title, "body": body}
            )
        )

        classification = result.data["classification"]
        assert classification["issue_type"] == issue_type
        assert classification["severity"] == severity

    async def test_requires_title(self, settings):
        with pytest.raises(ValueError, match="title required in payload"):
            await IssueClassificationHandler(settings).handle(
                make_job({"repo_name": "org/repo", "issue_number": 3})
            )


async def test_release_notes_groups_commits(settings):
    result = await ReleaseNotesHandler(settings).handle(
        make_job(
            {
                "repo_name": "org/repo",
                "version": "2.1.0",
                "commits": [
                    "feat(api): add job stats endpoint",
                    "fix: handle empty payloads\n\nlong body",
                    "chore: bump deps",
                    "",
                ],
                "contributors": ["bo", "al", "bo"],
            }
        )
    )

    notes = result.data["release_notes"]
    assert notes["title"] == "Release 2.1.0"
    assert notes["features"] == ["add job stats endpoint"]
    assert notes["bug_fixes"] == ["handle empty payloads"]
    assert notes["other_changes"] == ["chore: bump deps"]
    assert notes["contributors"] == ["al", "bo"]


class TestCIAnalysisHandler:
    async def test_failed_run_is_analyzed(self, settings):
        result = await CIAnalysisHandler(settings).handle(
            make_job({"run_id": 99, "repo_name": "org/repo", "status": "failure"})
        )

        assert result.data["run_id"] == 99
        assert result.data["analysis"]["error_type"] == "build_error"

    async def test_successful_run_needs_no_analysis(self, settings):
        result = await CIAnalysisHandler(settings).handle(
            make_job({"run_id": 99, "repo_name": "org/repo", "status": "success"})
        )

        assert result.success is True
        assert result.data["message"] == "CI run successful, no analysis needed"


async def test_analytics_rollup_requires_period(settings):
    with pytest.raises(ValueError, match="period_type required in payload"):
        await AnalyticsRollupHandler(settings).handle(make_job({"repo_name": "org/repo"}))


async def test_badge_award(settings):
    result = await BadgeAwardHandler(settings).handle(
        make_job({"user_id": "u1", "badge_type": "first_pr", "reason": "Merged a PR"})
    )

    assert result.data["badge_awarded"] is True
    assert result.data["badge_type"] == "first_pr"
