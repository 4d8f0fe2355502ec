"""
Unit tests for schema checksums.

Tests cover:
- Canonical SDL printing (definition and field order)
- Sorting without mutating parsed documents
- Order-insensitive schema set checksums
- Service url and metadata participation
- Unparseable SDL fallback
"""

import pytest
from graphql import parse

from gqlhub.registry_server.schema.checksum import (
    create_checksum,
    create_checksum_from_schemas,
    hash_object,
    print_sorted_sdl,
    sort_document,
)
from gqlhub.registry_server.schema.types import PushedCompositeSchema, SingleSchema


def service(name, sdl, url="http://localhost:4000", metadata=None, commit="c1"):
    return PushedCompositeSchema(
        id=f"{name}-id",
        target="t1",
        author="alice",
        sdl=sdl,
        commit=commit,
        date=1,
        service_name=name,
        service_url=url,
        metadata=metadata,
    )


class TestPrintSortedSdl:
    """Tests for canonical SDL printing."""

    def test_field_order_is_irrelevant(self):
        """Reordered fields print identically."""
        a = print_sorted_sdl("type Query { b: String a: Int }")
        b = print_sorted_sdl("type Query { a: Int b: String }")
        assert a == b

    def test_definition_order_is_irrelevant(self):
        """Reordered definitions print identically."""
        a = print_sorted_sdl("type User { id: ID } type Query { me: User }")
        b = print_sorted_sdl("type Query { me: User } type User { id: ID }")
        assert a == b

    def test_type_change_is_visible(self):
        """A changed field type changes the canonical form."""
        assert print_sorted_sdl("type Query { a: Int }") != print_sorted_sdl("type Query { a: String }")

    def test_parsed_document_left_untouched(self):
        """Sorting builds new nodes instead of reordering the parsed ones."""
        document = parse("type Query { b: String a: String } directive @d on FIELD | OBJECT")

        sorted_document = sort_document(document)

        assert [f.name.value for f in document.definitions[0].fields] == ["b", "a"]
        query = next(d for d in sorted_document.definitions if d.name.value == "Query")
        assert [f.name.value for f in query.fields] == ["a", "b"]

    def test_reordered_fields_same_set_checksum(self):
        """Field order never changes a schema set checksum."""
        a = SingleSchema(id="s1", target="t1", author="a", sdl="type Query { a: String b: String }", commit="c", date=1)
        b = SingleSchema(id="s2", target="t1", author="a", sdl="type Query { b: String a: String }", commit="c", date=1)

        assert create_checksum_from_schemas([a]) == create_checksum_from_schemas([b])


class TestCreateChecksum:
    """Tests for schema checksums."""

    def test_same_schema_same_checksum(self):
        """Checksum ignores id, author, commit and date."""
        a = SingleSchema(id="1", target="t1", author="a", sdl="type Query { a: String }", commit="c1", date=1)
        b = SingleSchema(id="2", target="t1", author="b", sdl="type Query {a:String}", commit="c2", date=2)
        assert create_checksum(a) == create_checksum(b)

    def test_schema_set_order_insensitive(self):
        """Service order does not change the set checksum."""
        users = service("users", "type Query { users: [String] }")
        posts = service("posts", "type Query { posts: [String] }")

        assert create_checksum_from_schemas([users, posts]) == create_checksum_from_schemas([posts, users])

    def test_set_checksum_is_prefixed(self):
        """Set checksums carry the algorithm prefix."""
        checksum = create_checksum_from_schemas([service("users", "type Query { a: String }")])
        assert checksum.startswith("sha256:")

    def test_url_change_changes_checksum(self):
        """Service url participates in the checksum."""
        a = service("users", "type Query { a: String }", url="http://a")
        b = service("users", "type Query { a: String }", url="http://b")
        assert create_checksum(a) != create_checksum(b)

    def test_metadata_key_order_irrelevant(self):
        """Metadata is compared as parsed JSON."""
        a = service("users", "type Query { a: String }", metadata='{"a": 1, "b": 2}')
        b = service("users", "type Query { a: String }", metadata='{"b": 2, "a": 1}')
        assert create_checksum(a) == create_checksum(b)

    def test_metadata_change_changes_checksum(self):
        """Different metadata yields a different checksum."""
        a = service("users", "type Query { a: String }", metadata='{"a": 1}')
        b = service("users", "type Query { a: String }", metadata='{"a": 2}')
        assert create_checksum(a) != create_checksum(b)

    def test_unparseable_sdl_does_not_raise(self):
        """Broken SDL still produces a stable checksum."""
        a = service("users", "type Query {")
        b = service("users", "  type Query {  ")
        assert create_checksum(a) == create_checksum(b)

    @pytest.mark.parametrize(
        "left,right",
        [
            ({"a": 1, "b": [1, 2]}, {"b": [1, 2], "a": 1}),
            ({"nested": {"x": 1, "y": 2}}, {"nested": {"y": 2, "x": 1}}),
        ],
    )
    def test_hash_object_key_order(self, left, right):
        """hash_object is insensitive to dict key order."""
        assert hash_object(left) == hash_object(right)
