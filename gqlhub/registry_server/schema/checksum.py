"""
Schema checksums.

The checksum of a schema set is the cheapest way to tell whether an
incoming publish or check changes anything at all. When the checksum of
the candidate schema set equals the checksum of the latest version, all
downstream work (composition, diffing, policies) is skipped.

A schema's checksum covers:
    - the SDL, printed from an AST whose definitions, fields, arguments,
      enum values, union members, interfaces and directives are sorted
    - the service name and service url (composite schemas)
    - a canonical hash of the parsed metadata JSON

Invariants:
    - Reordering definitions or fields never changes the checksum
    - Changing service name, url or metadata always changes it
    - The checksum of a schema set does not depend on schema order

Example:
    >>> a = print_sorted_sdl("type Query { b: String a: String }")
    >>> b = print_sorted_sdl("type Query { a: String b: String }")
    >>> a == b
    True
"""

from __future__ import annotations

import hashlib
import json
import logging
from typing import Any, Dict, Iterable, Optional

from graphql import GraphQLError, parse, print_ast
from graphql.language import (
    DirectiveDefinitionNode,
    DocumentNode,
    Node,
    SchemaDefinitionNode,
    SchemaExtensionNode,
)

from .nodes import replace_node
from .types import Schema

logger = logging.getLogger(__name__)

_SORTABLE_CHILDREN = ("fields", "arguments", "values", "interfaces", "types", "directives")


def hash_object(value: Any) -> str:
    """Hash a JSON-serializable value canonically.

    Args:
        value: Any JSON-serializable value

    Returns:
        Hex SHA-256 digest of the canonical JSON representation
    """
    canonical = json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def _name_of(node: Node) -> str:
    name = getattr(node, "name", None)
    return name.value if name is not None else ""


def _sort_node(node: Node) -> Node:
    """Return a copy of `node` with its children sorted, recursively."""
    changes: Dict[str, Any] = {}
    for attr in _SORTABLE_CHILDREN:
        children = getattr(node, attr, None)
        if not children:
            continue
        changes[attr] = tuple(sorted((_sort_node(child) for child in children), key=_name_of))

    if isinstance(node, DirectiveDefinitionNode) and node.locations:
        changes["locations"] = tuple(sorted(node.locations, key=_name_of))

    if isinstance(node, (SchemaDefinitionNode, SchemaExtensionNode)) and node.operation_types:
        changes["operation_types"] = tuple(
            sorted(node.operation_types, key=lambda op: op.operation.value)
        )

    return replace_node(node, **changes) if changes else node


def sort_document(document: DocumentNode) -> DocumentNode:
    """Return a sorted copy of a document (definitions and all their children)."""
    definitions = (_sort_node(definition) for definition in document.definitions)
    return replace_node(
        document,
        definitions=tuple(sorted(definitions, key=lambda d: (d.kind, _name_of(d)))),
    )


def print_sorted_sdl(sdl: str) -> str:
    """Print SDL in canonical (sorted) form.

    Raises:
        GraphQLError: If the SDL cannot be parsed
    """
    return print_ast(sort_document(parse(sdl, no_location=True)))


def _canonical_sdl(sdl: str) -> str:
    try:
        return print_sorted_sdl(sdl)
    except GraphQLError:
        # Unparseable SDL still needs a stable checksum; composition reports the error.
        logger.debug("SDL could not be parsed, hashing raw text")
        return sdl.strip()


def _metadata_hash(metadata: Optional[str]) -> str:
    if not metadata:
        return ""
    try:
        return hash_object(json.loads(metadata))
    except ValueError:
        return hashlib.sha256(metadata.encode("utf-8")).hexdigest()


def create_checksum(schema: Schema) -> str:
    """Checksum of a single schema (SDL + service identity + metadata)."""
    digest = hashlib.sha256()
    digest.update(_canonical_sdl(schema.sdl).encode("utf-8"))
    digest.update(b"\x00")
    digest.update((schema.service_name or "").encode("utf-8"))
    digest.update(b"\x00")
    digest.update((schema.service_url or "").encode("utf-8"))
    digest.update(b"\x00")
    digest.update(_metadata_hash(schema.metadata).encode("utf-8"))
    return digest.hexdigest()


def create_checksum_from_schemas(schemas: Iterable[Schema]) -> str:
    """Order-insensitive checksum of a schema set.

    Returns:
        Checksum string in format 'sha256:<hash>'
    """
    checksums = sorted(create_checksum(s) for s in schemas)
    return f"sha256:{hash_object(checksums)}"
