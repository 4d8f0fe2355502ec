"""
Unit tests for publisher responses.

Tests cover:
- Wire form of publish responses
- Restoring cached responses
- Unknown response types
"""

import pytest

from gqlhub.registry_server.registry.responses import (
    SchemaPublishError,
    SchemaPublishMissingServiceError,
    SchemaPublishSuccess,
    publish_response_from_dict,
    publish_response_to_dict,
)
from gqlhub.registry_server.schema.changes import ChangeType, CriticalityLevel, SchemaChange
from gqlhub.registry_server.schema.types import SchemaError


class TestPublishResponses:
    """Tests for publish response serialization."""

    def test_success_wire_form(self):
        """Success responses use camelCase keys and carry the typename."""
        response = SchemaPublishSuccess(
            initial=True,
            valid=True,
            link_to_website="https://hub/acme/api/production/history/v1",
            version_id="v1",
        )

        data = publish_response_to_dict(response)

        assert data["__typename"] == "SchemaPublishSuccess"
        assert data["linkToWebsite"] == "https://hub/acme/api/production/history/v1"
        assert data["versionId"] == "v1"

    def test_error_restored_with_changes(self):
        """Cached errors come back with their changes and paths."""
        change = SchemaChange(
            type=ChangeType.FIELD_REMOVED,
            criticality=CriticalityLevel.BREAKING,
            message="Field 'b' was removed from object type 'Query'",
            path="Query.b",
        )
        response = SchemaPublishError(
            changes=(change,),
            errors=(SchemaError(message="Breaking Change: Field 'b' was removed", path="Query.b"),),
        )

        restored = publish_response_from_dict(publish_response_to_dict(response))

        assert restored == response
        assert restored.changes[0].id == change.id

    def test_default_messages(self):
        """Missing service errors keep their message."""
        restored = publish_response_from_dict({"__typename": "SchemaPublishMissingServiceError", "message": "x"})

        assert restored == SchemaPublishMissingServiceError(message="x")

    def test_unknown_typename(self):
        """Unknown typenames are rejected."""
        with pytest.raises(ValueError, match="Unknown publish response type"):
            publish_response_from_dict({"__typename": "SchemaDeleteSuccess"})
