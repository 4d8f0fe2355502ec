"""
Unit tests for external collaborators.

Tests cover:
- GitHub check run creation and resolution
- Summary truncation and repository parsing
- Policy service client
- Usage statistics client and usage report math
- Webhook notifier

HTTP calls are served by httpx.MockTransport.
"""

import json

import httpx
import pytest

from gqlhub.registry_server.integrations import (
    CheckRunConclusion,
    GitHubCheckRunClient,
    GitHubCheckRunError,
    GitHubCheckRunSuccess,
    PolicyServiceError,
    RemotePolicyProvider,
    RemoteUsageStatisticsProvider,
    SchemaChangeNotification,
    UsageStatisticsError,
    WebhookNotifier,
)
from gqlhub.registry_server.integrations.github import (
    MAX_SUMMARY_LENGTH,
    split_repository,
    truncate_summary,
)
from gqlhub.registry_server.integrations.usage import CoordinateUsageReport
from gqlhub.registry_server.schema.types import (
    ConditionalBreakingChangeConfig,
    Project,
    ProjectType,
    Target,
)


def recording_transport(status_code=200, body=None):
    """MockTransport that records requests and answers with a fixed response."""
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(status_code, json=body if body is not None else {})

    return httpx.MockTransport(handler), requests


class TestGitHubCheckRunClient:
    """Tests for GitHubCheckRunClient."""

    @pytest.mark.asyncio
    async def test_create_check_run(self):
        """Creating a run posts to the check-runs API."""
        transport, requests = recording_transport(
            201, {"id": 42, "html_url": "https://github.com/acme/api/runs/42"}
        )
        client = GitHubCheckRunClient(token="ghs_x", transport=transport)

        result = await client.create_check_run("acme/api", "abc123", "GraphQL Hub - schema:check")

        assert result == GitHubCheckRunSuccess(id=42, url="https://github.com/acme/api/runs/42")
        [request] = requests
        assert request.method == "POST"
        assert request.url.path == "/repos/acme/api/check-runs"
        assert request.headers["Authorization"] == "Bearer ghs_x"
        assert json.loads(request.content) == {
            "name": "GraphQL Hub - schema:check",
            "head_sha": "abc123",
            "status": "in_progress",
        }

    @pytest.mark.asyncio
    async def test_invalid_repository(self):
        """Malformed repository names never reach GitHub."""
        transport, requests = recording_transport()
        client = GitHubCheckRunClient(token="ghs_x", transport=transport)

        result = await client.create_check_run("acme", "abc123", "check")

        assert result == GitHubCheckRunError(message="Invalid repository name 'acme'")
        assert requests == []

    @pytest.mark.asyncio
    async def test_http_error_returned_as_value(self):
        """HTTP failures are returned, not raised."""
        transport, _ = recording_transport(500, {"message": "boom"})
        client = GitHubCheckRunClient(token="ghs_x", transport=transport)

        result = await client.create_check_run("acme/api", "abc123", "check")

        assert result == GitHubCheckRunError(message="Failed to create check run on acme/api (HTTP 500)")

    @pytest.mark.asyncio
    async def test_update_check_run(self):
        """Resolving a run patches status, conclusion and output."""
        transport, requests = recording_transport(200, {"id": 42})
        client = GitHubCheckRunClient(token="ghs_x", transport=transport)

        result = await client.update_check_run(
            "acme/api", 42, CheckRunConclusion.FAILURE, "Detected 1 error", "- broken"
        )

        assert isinstance(result, GitHubCheckRunSuccess)
        [request] = requests
        assert request.method == "PATCH"
        assert request.url.path == "/repos/acme/api/check-runs/42"
        body = json.loads(request.content)
        assert body["status"] == "completed"
        assert body["conclusion"] == "failure"
        assert body["output"] == {"title": "Detected 1 error", "summary": "- broken"}

    @pytest.mark.asyncio
    async def test_update_failure_returned_as_value(self):
        """Update failures are returned, not raised."""
        transport, _ = recording_transport(404)
        client = GitHubCheckRunClient(token="ghs_x", transport=transport)

        result = await client.update_check_run("acme/api", 42, CheckRunConclusion.SUCCESS, "t", "s")

        assert isinstance(result, GitHubCheckRunError)

    def test_split_repository(self):
        """Only owner/name pairs are valid."""
        assert split_repository("acme/api") == ("acme", "api")
        assert split_repository("acme") is None
        assert split_repository("acme/api/extra") is None
        assert split_repository("/api") is None

    def test_truncate_summary(self):
        """Long summaries are cut to the GitHub limit."""
        assert truncate_summary("short") == "short"
        truncated = truncate_summary("x" * (MAX_SUMMARY_LENGTH + 10))
        assert truncated.startswith("x" * MAX_SUMMARY_LENGTH)
        assert truncated.endswith("(truncated)")


class TestRemotePolicyProvider:
    """Tests for RemotePolicyProvider."""

    @pytest.fixture
    def project(self):
        return Project(id="p1", org_id="o1", slug="api", type=ProjectType.SINGLE)

    @pytest.fixture
    def target(self):
        return Target(id="t1", project_id="p1", org_id="o1", slug="production")

    @pytest.mark.asyncio
    async def test_results_split_by_severity(self, project, target):
        """Severity 1 is a warning, severity 2 an error."""
        transport, requests = recording_transport(
            200,
            {
                "configured": True,
                "results": [
                    {"message": "Prefer camelCase", "ruleId": "naming", "line": 1, "column": 14, "severity": 1},
                    {"message": "Missing description", "ruleId": "description", "severity": 2},
                ],
            },
        )
        provider = RemotePolicyProvider("http://policy", transport=transport)

        result = await provider.check(target, project, "type Query { a: String }", "type Query { a: String }")

        assert [w.rule_id for w in result.warnings] == ["naming"]
        assert result.warnings[0].line == 1
        assert [e.rule_id for e in result.errors] == ["description"]
        assert requests[0].url.path == "/policy/check"
        assert json.loads(requests[0].content)["targetId"] == "t1"

    @pytest.mark.asyncio
    async def test_unconfigured_returns_none(self, project, target):
        """Targets without a policy get None."""
        transport, _ = recording_transport(200, {"configured": False})
        provider = RemotePolicyProvider("http://policy", transport=transport)

        assert await provider.check(target, project, "type Query { a: String }", "") is None

    @pytest.mark.asyncio
    async def test_http_error_raises(self, project, target):
        """Service failures raise PolicyServiceError."""
        transport, _ = recording_transport(503)
        provider = RemotePolicyProvider("http://policy", transport=transport)

        with pytest.raises(PolicyServiceError):
            await provider.check(target, project, "type Query { a: String }", "")


class TestUsageStatistics:
    """Tests for usage statistics."""

    @pytest.fixture
    def config(self):
        return ConditionalBreakingChangeConfig(
            period_days=7, percentage=1.5, target_ids=("t1", "t2"), excluded_clients=("ci",)
        )

    @pytest.mark.asyncio
    async def test_remote_usage(self, config):
        """Usage is fetched per coordinate for the configured targets."""
        transport, requests = recording_transport(
            200, {"totalRequests": 200, "coordinates": {"Query.a": 3}}
        )
        provider = RemoteUsageStatisticsProvider("http://usage", transport=transport)

        report = await provider.get_coordinate_usage(["Query.a", "Query.b"], config)

        assert report.total_requests == 200
        assert report.for_coordinate("Query.a").count == 3
        assert report.for_coordinate("Query.b").count == 0
        payload = json.loads(requests[0].content)
        assert payload == {
            "coordinates": ["Query.a", "Query.b"],
            "targetIds": ["t1", "t2"],
            "periodDays": 7,
            "excludedClients": ["ci"],
        }

    @pytest.mark.asyncio
    async def test_remote_usage_error(self, config):
        """Service failures raise UsageStatisticsError."""
        transport, _ = recording_transport(500)
        provider = RemoteUsageStatisticsProvider("http://usage", transport=transport)

        with pytest.raises(UsageStatisticsError):
            await provider.get_coordinate_usage(["Query.a"], config)

    def test_threshold_is_inclusive(self):
        """Usage exactly at the threshold is safe."""
        report = CoordinateUsageReport(total_requests=200, counts={"Query.a": 2, "Query.b": 3})

        assert report.is_safe("Query.a", 1) is True
        assert report.is_safe("Query.b", 1) is False
        assert report.is_safe("Query.unused", 0) is True

    def test_percentage(self):
        """Percentage is relative to all requests."""
        report = CoordinateUsageReport(total_requests=200, counts={"Query.a": 2})

        assert report.for_coordinate("Query.a").percentage == 1.0
        assert CoordinateUsageReport(total_requests=0).for_coordinate("Query.a").percentage == 0.0


class TestWebhookNotifier:
    """Tests for WebhookNotifier."""

    @pytest.mark.asyncio
    async def test_posts_notification(self):
        """Notifications are posted as JSON."""
        transport, requests = recording_transport(202)
        notifier = WebhookNotifier("http://hooks/schema", transport=transport)

        await notifier.notify(
            SchemaChangeNotification(
                organization_id="o1",
                project_id="p1",
                target_id="t1",
                version_id="v1",
                initial=True,
                messages=("Metadata has been updated",),
            )
        )

        [request] = requests
        assert str(request.url) == "http://hooks/schema"
        body = json.loads(request.content)
        assert body["versionId"] == "v1"
        assert body["initial"] is True
        assert body["messages"] == ["Metadata has been updated"]

    @pytest.mark.asyncio
    async def test_webhook_failure_raises(self):
        """Delivery failures propagate to the caller."""
        transport, _ = recording_transport(500)
        notifier = WebhookNotifier("http://hooks/schema", transport=transport)

        with pytest.raises(httpx.HTTPStatusError):
            await notifier.notify(
                SchemaChangeNotification(
                    organization_id="o1", project_id="p1", target_id="t1", version_id="v1", initial=False
                )
            )
