"""
Unit tests for the schema inspector.

Tests cover:
- Change detection and criticality
- Whitespace-only description change suppression
- Usage-based downgrade of breaking changes
- Schema coordinate diff
- Federation plumbing filter
- Service url change detection
"""

import pytest
from graphql import build_schema

from gqlhub.registry_server.integrations.usage import StaticUsageStatisticsProvider
from gqlhub.registry_server.schema.changes import ChangeType, CriticalityLevel
from gqlhub.registry_server.schema.inspector import (
    Inspector,
    detect_service_url_changes,
    diff_schema_coordinates,
    diff_schemas,
    filter_out_federation_changes,
    normalize_description,
)
from gqlhub.registry_server.schema.types import ConditionalBreakingChangeConfig, PushedCompositeSchema


def changes_of(old, new):
    return diff_schemas(build_schema(old), build_schema(new))


def by_type(changes, change_type):
    return [c for c in changes if c.type is change_type]


class TestDiffSchemas:
    """Tests for diff_schemas."""

    def test_identical_schemas_have_no_changes(self):
        """No changes between identical schemas."""
        assert changes_of("type Query { a: String }", "type Query { a: String }") == []

    def test_field_removed_is_breaking(self):
        """Removing a field is breaking."""
        changes = changes_of("type Query { a: String b: String }", "type Query { a: String }")

        [removed] = by_type(changes, ChangeType.FIELD_REMOVED)
        assert removed.criticality is CriticalityLevel.BREAKING
        assert removed.path == "Query.b"
        assert removed.message == "Field 'b' was removed from object type 'Query'"
        assert removed.is_blocking

    def test_field_added_is_safe(self):
        """Adding a field is safe."""
        changes = changes_of("type Query { a: String }", "type Query { a: String b: String }")

        [added] = by_type(changes, ChangeType.FIELD_ADDED)
        assert added.criticality is CriticalityLevel.SAFE
        assert not added.is_breaking

    def test_type_added_is_safe(self):
        """Adding a type is safe."""
        changes = changes_of(
            "type Query { a: String }",
            "type Query { a: String user: User } type User { id: ID }",
        )

        [added] = by_type(changes, ChangeType.TYPE_ADDED)
        assert added.criticality is CriticalityLevel.SAFE
        assert added.message == "Type 'User' was added"

    def test_required_argument_added_is_breaking(self):
        """A required argument without default breaks existing queries."""
        changes = changes_of("type Query { a: String }", "type Query { a(id: ID!): String }")

        [added] = by_type(changes, ChangeType.FIELD_ARGUMENT_ADDED)
        assert added.criticality is CriticalityLevel.BREAKING

    def test_optional_argument_added_is_dangerous(self):
        """An optional argument is only dangerous."""
        changes = changes_of("type Query { a: String }", "type Query { a(id: ID): String }")

        [added] = by_type(changes, ChangeType.FIELD_ARGUMENT_ADDED)
        assert added.criticality is CriticalityLevel.DANGEROUS

    def test_enum_value_added_is_dangerous(self):
        """New enum values may surprise clients."""
        changes = changes_of(
            "type Query { r: Role } enum Role { ADMIN }",
            "type Query { r: Role } enum Role { ADMIN USER }",
        )

        [added] = by_type(changes, ChangeType.ENUM_VALUE_ADDED)
        assert added.criticality is CriticalityLevel.DANGEROUS

    def test_change_id_is_stable(self):
        """The same change detected twice has the same id."""
        old, new = "type Query { a: String b: String }", "type Query { a: String }"

        [first] = by_type(changes_of(old, new), ChangeType.FIELD_REMOVED)
        [second] = by_type(changes_of(old, new), ChangeType.FIELD_REMOVED)
        assert first.id == second.id


class TestInspector:
    """Tests for Inspector post-processing."""

    @pytest.fixture
    def config(self):
        """Conditional breaking change config with a 1% threshold."""
        return ConditionalBreakingChangeConfig(period_days=7, percentage=1, target_ids=("t1",))

    @pytest.mark.asyncio
    async def test_whitespace_description_change_suppressed(self):
        """Formatting-only description edits are not reported."""
        inspector = Inspector()
        old = build_schema('"""Hello world""" type Query { a: String }')
        new = build_schema('"""Hello    world""" type Query { a: String }')

        assert diff_schemas(old, new) != []
        result = await inspector.diff(old, new)
        assert result.changes == []

    @pytest.mark.asyncio
    async def test_real_description_change_kept(self):
        """A wording change is still reported."""
        inspector = Inspector()
        old = build_schema('"""Hello world""" type Query { a: String }')
        new = build_schema('"""Goodbye world""" type Query { a: String }')

        result = await inspector.diff(old, new)
        assert len(result.changes) == 1
        assert result.changes[0].type.is_description_change

    @pytest.mark.asyncio
    async def test_unused_field_removal_downgraded(self, config):
        """A breaking change below the usage threshold becomes dangerous."""
        usage = StaticUsageStatisticsProvider(total_requests=1000, counts={"Query.b": 1})
        inspector = Inspector(usage=usage)
        old = build_schema("type Query { a: String b: String }")
        new = build_schema("type Query { a: String }")

        result = await inspector.diff(old, new, config)

        [change] = result.changes
        assert change.criticality is CriticalityLevel.DANGEROUS
        assert change.is_safe_based_on_usage
        assert change.message.endswith("(non-breaking based on usage)")
        assert not change.is_blocking
        assert result.usage[change.id].count == 1
        assert usage.calls == [["Query.b"]]

    @pytest.mark.asyncio
    async def test_used_field_removal_stays_breaking(self, config):
        """A breaking change above the threshold stays blocking."""
        usage = StaticUsageStatisticsProvider(total_requests=1000, counts={"Query.b": 50})
        inspector = Inspector(usage=usage)
        old = build_schema("type Query { a: String b: String }")
        new = build_schema("type Query { a: String }")

        result = await inspector.diff(old, new, config)

        [change] = result.changes
        assert change.is_blocking
        assert not change.is_safe_based_on_usage

    @pytest.mark.asyncio
    async def test_no_traffic_is_safe(self, config):
        """With zero requests every coordinate is unused."""
        inspector = Inspector(usage=StaticUsageStatisticsProvider(total_requests=0))
        old = build_schema("type Query { a: String b: String }")
        new = build_schema("type Query { a: String }")

        result = await inspector.diff(old, new, config)

        assert not result.changes[0].is_blocking

    @pytest.mark.asyncio
    async def test_usage_not_consulted_without_config(self):
        """No config means no usage lookup."""
        usage = StaticUsageStatisticsProvider(total_requests=1000)
        inspector = Inspector(usage=usage)
        old = build_schema("type Query { a: String b: String }")
        new = build_schema("type Query { a: String }")

        result = await inspector.diff(old, new)

        assert result.changes[0].is_blocking
        assert usage.calls == []


class TestSchemaCoordinates:
    """Tests for diff_schema_coordinates."""

    def test_added_and_deleted_are_symmetric(self):
        """Swapping arguments swaps added and deleted."""
        a = build_schema("type Query { a: String old(x: Int): String }")
        b = build_schema("type Query { a: String new: String }")

        forward = diff_schema_coordinates(a, b)
        backward = diff_schema_coordinates(b, a)

        assert forward.added == {"Query.new"}
        assert forward.deleted == {"Query.old", "Query.old.x"}
        assert backward.added == forward.deleted
        assert backward.deleted == forward.added

    def test_deprecation_tracked(self):
        """Deprecated and undeprecated coordinates are reported."""
        a = build_schema('type Query { a: String b: String @deprecated(reason: "old") }')
        b = build_schema('type Query { a: String @deprecated(reason: "old") b: String }')

        result = diff_schema_coordinates(a, b)

        assert result.deprecated == {"Query.a"}
        assert result.undeprecated == {"Query.b"}


class TestPostProcessing:
    """Tests for helpers applied after the diff."""

    def test_normalize_description(self):
        """Whitespace runs collapse."""
        assert normalize_description("  a \n\t b ") == "a b"
        assert normalize_description(None) == ""

    def test_federation_changes_filtered(self):
        """Changes to federation plumbing are dropped."""
        old = build_schema(
            "scalar _Any type _Service { sdl: String } "
            "type Query { a: String _service: _Service! }"
        )
        new = build_schema("type Query { a: String b: String }")

        filtered = filter_out_federation_changes(diff_schemas(old, new))

        assert [c.path for c in filtered] == ["Query.b"]

    def test_service_url_change_detected(self):
        """A new url for an existing service is a dangerous change."""

        def schema(url):
            return PushedCompositeSchema(
                id="1",
                target="t1",
                author="a",
                sdl="type Query { a: String }",
                commit="c",
                date=1,
                service_name="users",
                service_url=url,
            )

        [change] = detect_service_url_changes([schema("http://a")], [schema("http://b")])

        assert change.type is ChangeType.REGISTRY_SERVICE_URL_CHANGED
        assert change.criticality is CriticalityLevel.DANGEROUS
        assert change.path is None
        assert "http://b" in change.message

    def test_new_service_is_not_a_url_change(self):
        """Services without a previous record are ignored."""
        schema = PushedCompositeSchema(
            id="1",
            target="t1",
            author="a",
            sdl="type Query { a: String }",
            commit="c",
            date=1,
            service_name="users",
            service_url="http://a",
        )
        assert detect_service_url_changes([], [schema]) == []
