"""
Copy-on-write helpers for graphql-core AST nodes.

Parsed AST nodes are treated as immutable: newer graphql-core releases
freeze them. Any reordering or filtering builds a new node of the same
class instead of assigning to the parsed one.
"""

from __future__ import annotations

from typing import Any, TypeVar

from graphql.language import Node

N = TypeVar("N", bound=Node)


def replace_node(node: N, **changes: Any) -> N:
    """Return a new node of the same class with some children replaced.

    Example:
        >>> sorted_node = replace_node(definition, fields=tuple(ordered))
        >>> sorted_node is definition
        False
    """
    values = {key: getattr(node, key, None) for key in node.keys}
    values.update(changes)
    return node.__class__(**values)
