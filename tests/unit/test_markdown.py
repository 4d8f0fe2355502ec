"""
Unit tests for check run markdown rendering.

Tests cover:
- Bold rendering of quoted names
- Check run titles and summaries
- Publish run titles, forced publishes and messages
"""

from gqlhub.registry_server.registry.markdown import (
    bolderize,
    changes_to_markdown,
    render_check_output,
    render_publish_output,
)
from gqlhub.registry_server.schema.changes import ChangeType, CriticalityLevel, SchemaChange


def change(criticality, message="Field 'b' was removed from object type 'Query'"):
    return SchemaChange(
        type=ChangeType.FIELD_REMOVED,
        criticality=criticality,
        message=message,
        path="Query.b",
    )


class TestBolderize:
    """Tests for bolderize."""

    def test_quoted_names_bold(self):
        """Single-quoted names become bold."""
        assert (
            bolderize("Field 'hello' was removed from object type 'Query'")
            == "Field **hello** was removed from object type **Query**"
        )

    def test_plain_text_untouched(self):
        """Messages without quotes are unchanged."""
        assert bolderize("No changes") == "No changes"


class TestChangesToMarkdown:
    """Tests for changes_to_markdown."""

    def test_groups_by_criticality(self):
        """Changes are counted and grouped."""
        markdown = changes_to_markdown(
            [
                change(CriticalityLevel.BREAKING),
                change(CriticalityLevel.SAFE, "Field 'c' was added to object type 'Query'"),
            ]
        )

        assert markdown.startswith("## Found 2 changes")
        assert "Breaking: 1" in markdown
        assert "Safe: 1" in markdown
        assert "### Breaking changes" in markdown
        assert "Dangerous" not in markdown

    def test_singular_title(self):
        """One change is singular."""
        assert changes_to_markdown([change(CriticalityLevel.SAFE)]).startswith("## Found 1 change\n")


class TestRenderCheckOutput:
    """Tests for render_check_output."""

    def test_success_without_changes(self):
        """A clean check says so."""
        output = render_check_output(True)
        assert output.title == "No changes"
        assert output.summary == "No changes detected"

    def test_success_with_changes(self):
        """A passing check lists its changes."""
        output = render_check_output(True, changes=[change(CriticalityLevel.SAFE)])
        assert output.title == "No breaking changes"
        assert "## Found 1 change" in output.summary

    def test_failure_counts_errors(self):
        """Failure titles count errors."""
        assert render_check_output(False, errors=["a"]).title == "Detected 1 error"
        assert render_check_output(False, errors=["a", "b"]).title == "Detected 2 errors"

    def test_failure_summary_lists_errors(self):
        """Errors are rendered as a bold list."""
        output = render_check_output(False, errors=["Type 'User' is missing"])
        assert "- Type **User** is missing" in output.summary

    def test_warnings_appended(self):
        """Policy warnings are appended."""
        output = render_check_output(True, warnings=["Prefer camelCase (source: policy-naming)"])
        assert "### Policy Warnings" in output.summary


class TestRenderPublishOutput:
    """Tests for render_publish_output."""

    def test_initial_publish(self):
        """The first publish has its own title."""
        output = render_publish_output(True, initial=True)
        assert output.title == "Schema published"

    def test_unchanged_publish(self):
        """A publish without changes says so."""
        assert render_publish_output(True, initial=False).title == "No changes"

    def test_forced_publish(self):
        """Forced invalid publishes are marked."""
        output = render_publish_output(False, initial=False, errors=["x"], forced=True)
        assert output.title == "Detected 1 error (forced)"

    def test_forced_valid_publish_not_marked(self):
        """Valid publishes are never marked as forced."""
        output = render_publish_output(True, initial=True, forced=True)
        assert output.title == "Schema published"

    def test_messages_appended(self):
        """Publish messages are listed."""
        output = render_publish_output(True, initial=False, messages=["Metadata has been updated"])
        assert output.summary.endswith("- Metadata has been updated")
