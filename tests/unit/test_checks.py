"""
Unit tests for registry checks.

Tests cover:
- Checksum check (initial, unchanged, modified)
- Composition check with the local orchestrator
- Diff check (skip, breaking, approval, comparison failure)
- Service name, service url and metadata checks
- Policy check with and without a provider
"""

import pytest

from gqlhub.registry_server.integrations.policy import PolicyCheckResult
from gqlhub.registry_server.orchestrator.local import LocalOrchestrator
from gqlhub.registry_server.registry.checks import (
    SERVICE_NAME_REQUIRED,
    SERVICE_URL_INVALID,
    SERVICE_URL_REQUIRED,
    ChangeStatus,
    ChecksumStatus,
    LatestVersion,
    RegistryChecks,
    is_valid_service_url,
)
from gqlhub.registry_server.registry.results import SKIPPED, Completed, Failed
from gqlhub.registry_server.schema.changes import ApprovalMetadata
from gqlhub.registry_server.schema.inspector import Inspector
from gqlhub.registry_server.schema.types import (
    CompositionErrorSource,
    Project,
    ProjectType,
    PushedCompositeSchema,
    SchemaPolicyRecord,
    SingleSchema,
    Target,
)


def single(sdl, commit="c1"):
    return SingleSchema(id="s1", target="t1", author="alice", sdl=sdl, commit=commit, date=1)


def service(name, sdl, url="http://localhost:4000"):
    return PushedCompositeSchema(
        id=f"{name}-id",
        target="t1",
        author="alice",
        sdl=sdl,
        commit="c1",
        date=1,
        service_name=name,
        service_url=url,
    )


class FakePolicy:
    """Policy provider returning fixed records."""

    def __init__(self, result):
        self.result = result
        self.calls = []

    async def check(self, target, project, sdl, modified_sdl):
        self.calls.append(modified_sdl)
        return self.result


class TestChecksumCheck:
    """Tests for RegistryChecks.checksum."""

    @pytest.fixture
    def checks(self):
        return RegistryChecks(inspector=Inspector())

    @pytest.mark.asyncio
    async def test_initial_without_latest(self, checks):
        """No previous version means initial."""
        result = await checks.checksum([single("type Query { a: String }")], None)
        assert result == Completed(ChecksumStatus.INITIAL)

    @pytest.mark.asyncio
    async def test_unchanged_ignores_formatting(self, checks):
        """Same schema with different formatting is unchanged."""
        latest = LatestVersion(is_composable=True, schemas=(single("type Query { a: String b: Int }"),))

        result = await checks.checksum([single("type Query {\n  b: Int\n  a: String\n}", commit="c2")], latest)

        assert result == Completed(ChecksumStatus.UNCHANGED)

    @pytest.mark.asyncio
    async def test_modified(self, checks):
        """A new field is a modification."""
        latest = LatestVersion(is_composable=True, schemas=(single("type Query { a: String }"),))

        result = await checks.checksum([single("type Query { a: String b: Int }")], latest)

        assert result == Completed(ChecksumStatus.MODIFIED)


class TestCompositionCheck:
    """Tests for RegistryChecks.composition."""

    @pytest.fixture
    def checks(self):
        return RegistryChecks(inspector=Inspector())

    @pytest.fixture
    def project(self):
        return Project(id="p1", org_id="o1", slug="api", type=ProjectType.SINGLE)

    @pytest.mark.asyncio
    async def test_valid_schema_completes(self, checks, project):
        """A valid schema composes."""
        result = await checks.composition(
            LocalOrchestrator(ProjectType.SINGLE), project, [single("type Query { a: String }")], None
        )

        assert isinstance(result, Completed)
        assert "a: String" in result.result.full_schema_sdl

    @pytest.mark.asyncio
    async def test_syntax_error_fails_with_graphql_source(self, checks, project):
        """Parse errors are GraphQL errors."""
        result = await checks.composition(
            LocalOrchestrator(ProjectType.SINGLE), project, [single("type Query {")], None
        )

        assert isinstance(result, Failed)
        assert result.reason.graphql_errors
        assert all(e.source is CompositionErrorSource.GRAPHQL for e in result.reason.errors)

    @pytest.mark.asyncio
    async def test_base_schema_is_prepended(self, checks, project):
        """The base schema participates in composition."""
        result = await checks.composition(
            LocalOrchestrator(ProjectType.SINGLE),
            project,
            [single("type Query { now: DateTime }")],
            "scalar DateTime",
        )

        assert isinstance(result, Completed)
        assert "scalar DateTime" in result.result.full_schema_sdl


class TestDiffCheck:
    """Tests for RegistryChecks.diff."""

    @pytest.fixture
    def checks(self):
        return RegistryChecks(inspector=Inspector())

    @pytest.mark.asyncio
    async def test_skipped_without_previous(self, checks):
        """Nothing to compare means skipped."""
        assert await checks.diff(None, "type Query { a: String }") is SKIPPED
        assert await checks.diff("type Query { a: String }", None) is SKIPPED

    @pytest.mark.asyncio
    async def test_safe_changes_complete(self, checks):
        """Safe changes complete the check."""
        result = await checks.diff("type Query { a: String }", "type Query { a: String b: String }")

        assert isinstance(result, Completed)
        assert len(result.result.safe) == 1
        assert result.result.breaking == ()

    @pytest.mark.asyncio
    async def test_breaking_changes_fail(self, checks):
        """Blocking breaking changes fail the check."""
        result = await checks.diff("type Query { a: String b: String }", "type Query { a: String }")

        assert isinstance(result, Failed)
        assert len(result.reason.breaking) == 1
        assert result.reason.errors[0].message.startswith("Breaking Change: ")
        assert result.reason.errors[0].path == "Query.b"

    @pytest.mark.asyncio
    async def test_approved_changes_complete(self, checks):
        """Previously approved breaking changes do not block."""
        failed = await checks.diff("type Query { a: String b: String }", "type Query { a: String }")
        change = failed.reason.breaking[0]
        approved = change.approve(ApprovalMetadata(user_id="u1", date=1, schema_check_id="chk"))

        result = await checks.diff(
            "type Query { a: String b: String }",
            "type Query { a: String }",
            approved_changes={approved.id: approved},
        )

        assert isinstance(result, Completed)
        assert result.result.breaking[0].approval_metadata.user_id == "u1"
        assert result.result.errors == ()

    @pytest.mark.asyncio
    async def test_unbuildable_sdl_fails(self, checks):
        """A broken stored schema is reported, not raised."""
        result = await checks.diff("type Query {", "type Query { a: String }")

        assert isinstance(result, Failed)
        assert result.reason.errors[0].message.startswith("Failed to compare schemas")


class TestServiceChecks:
    """Tests for service name, url and metadata checks."""

    @pytest.fixture
    def checks(self):
        return RegistryChecks(inspector=Inspector())

    @pytest.mark.asyncio
    async def test_service_name_required(self, checks):
        """Empty and missing names fail."""
        assert await checks.service_name(None) == Failed(SERVICE_NAME_REQUIRED)
        assert await checks.service_name("") == Failed(SERVICE_NAME_REQUIRED)
        assert await checks.service_name("users") == Completed(None)

    @pytest.mark.asyncio
    async def test_service_url_required(self, checks):
        """Missing url fails."""
        assert await checks.service_url(None, None, False) == Failed(SERVICE_URL_REQUIRED)

    @pytest.mark.asyncio
    async def test_service_url_must_be_http(self, checks):
        """Non-http urls are invalid."""
        assert await checks.service_url("ftp://users", None, False) == Failed(SERVICE_URL_INVALID)

    @pytest.mark.asyncio
    async def test_service_url_modified(self, checks):
        """A new url on an existing service is reported."""
        result = await checks.service_url("http://new", "http://old", True)

        assert isinstance(result, Completed)
        assert result.result.status is ChangeStatus.MODIFIED
        assert result.result.message == "New service url: http://new (previously: http://old)"

    @pytest.mark.asyncio
    async def test_service_url_of_new_service_unchanged(self, checks):
        """A first url is not a modification."""
        result = await checks.service_url("http://new", None, False)
        assert result.result.status is ChangeStatus.UNCHANGED

    @pytest.mark.asyncio
    async def test_metadata_invalid_json(self, checks):
        """Unparseable metadata fails."""
        result = await checks.metadata("{not json", None, False)
        assert isinstance(result, Failed)

    @pytest.mark.asyncio
    async def test_metadata_modified(self, checks):
        """Changed metadata on an existing service is reported."""
        result = await checks.metadata('{"a": 2}', '{"a": 1}', True)
        assert result.result.status is ChangeStatus.MODIFIED

    @pytest.mark.asyncio
    async def test_metadata_reordered_keys_unchanged(self, checks):
        """Key order does not count as a change."""
        result = await checks.metadata('{"a": 1, "b": 2}', '{"b": 2, "a": 1}', True)
        assert result.result.status is ChangeStatus.UNCHANGED

    @pytest.mark.parametrize(
        "url,valid",
        [
            ("http://users:4000/graphql", True),
            ("https://users.internal", True),
            ("ftp://users", False),
            ("users", False),
            ("", False),
        ],
    )
    def test_is_valid_service_url(self, url, valid):
        """Only absolute http(s) urls with a host are valid."""
        assert is_valid_service_url(url) is valid


class TestPolicyCheck:
    """Tests for RegistryChecks.policy_check."""

    @pytest.fixture
    def project(self):
        return Project(id="p1", org_id="o1", slug="api", type=ProjectType.STITCHING)

    @pytest.fixture
    def target(self):
        return Target(id="t1", project_id="p1", org_id="o1", slug="production")

    @pytest.mark.asyncio
    async def test_skipped_without_provider(self, project, target):
        """No provider means no policy check."""
        checks = RegistryChecks(inspector=Inspector())

        result = await checks.policy_check(
            LocalOrchestrator(ProjectType.STITCHING),
            project,
            target,
            [service("users", "type Query { a: String }")],
            "type Query { a: String }",
            None,
        )

        assert result is SKIPPED

    @pytest.mark.asyncio
    async def test_errors_fail(self, project, target):
        """Policy errors fail the check, warnings are kept."""
        policy = FakePolicy(
            PolicyCheckResult(
                warnings=(SchemaPolicyRecord(message="Prefer camelCase", rule_id="naming"),),
                errors=(SchemaPolicyRecord(message="Missing description", rule_id="description"),),
            )
        )
        checks = RegistryChecks(inspector=Inspector(), policy=policy)

        result = await checks.policy_check(
            LocalOrchestrator(ProjectType.STITCHING),
            project,
            target,
            [service("users", "type Query { a: String }")],
            "type Query { a: String }",
            None,
        )

        assert isinstance(result, Failed)
        assert result.reason.errors[0].rule_id == "description"
        assert result.reason.warnings[0].rule_id == "naming"
        assert policy.calls == ["type Query { a: String }"]

    @pytest.mark.asyncio
    async def test_unconfigured_policy_skipped(self, project, target):
        """A target without policy skips the check."""
        checks = RegistryChecks(inspector=Inspector(), policy=FakePolicy(None))

        result = await checks.policy_check(
            LocalOrchestrator(ProjectType.STITCHING),
            project,
            target,
            [service("users", "type Query { a: String }")],
            "type Query { a: String }",
            None,
        )

        assert result is SKIPPED
