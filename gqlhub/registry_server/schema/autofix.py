"""
Read-repair for persisted composite SDL.

Older federation versions persisted a public composite SDL that still
contained supergraph plumbing (join__* / link__* definitions and
directive usages, `@link` schema extensions). This module strips it on
read. It is never applied at write time and the stored SDL is left as is.

Invariants:
    - Clean SDL is returned unchanged (same string)
    - Unparseable SDL is returned unchanged
"""

from __future__ import annotations

import logging
from typing import Any

from graphql import GraphQLError, parse, print_ast
from graphql.language import REMOVE, Visitor, visit

logger = logging.getLogger(__name__)

AUTO_FIX_VERSION = 1

_LEAKED_PREFIXES = ("join__", "link__", "core__")
_LEAKED_NAMES = frozenset({"link", "core"})


def _is_leaked(name: str) -> bool:
    return name in _LEAKED_NAMES or name.startswith(_LEAKED_PREFIXES)


class _SupergraphLeakRemover(Visitor):
    def enter_directive(self, node: Any, *_args: Any) -> Any:
        return REMOVE if _is_leaked(node.name.value) else None

    def enter_directive_definition(self, node: Any, *_args: Any) -> Any:
        return REMOVE if _is_leaked(node.name.value) else None

    def enter_enum_type_definition(self, node: Any, *_args: Any) -> Any:
        return REMOVE if _is_leaked(node.name.value) else None

    def enter_scalar_type_definition(self, node: Any, *_args: Any) -> Any:
        return REMOVE if _is_leaked(node.name.value) else None

    def enter_input_object_type_definition(self, node: Any, *_args: Any) -> Any:
        return REMOVE if _is_leaked(node.name.value) else None

    def leave_schema_extension(self, node: Any, *_args: Any) -> Any:
        if not node.directives and not node.operation_types:
            return REMOVE
        return None


def needs_auto_fix(sdl: str) -> bool:
    return "join__" in sdl or "link__" in sdl or "@link" in sdl


def auto_fix_composite_schema_sdl(sdl: str) -> str:
    """Strip supergraph leakage from a persisted composite SDL.

    Example:
        >>> auto_fix_composite_schema_sdl("type Query @join__type(graph: A) { a: String }")
        'type Query {\\n  a: String\\n}'
    """
    if not needs_auto_fix(sdl):
        return sdl

    try:
        document = parse(sdl, no_location=True)
    except GraphQLError:
        logger.warning("Composite SDL could not be parsed, skipping auto-fix")
        return sdl

    fixed = print_ast(visit(document, _SupergraphLeakRemover()))
    logger.debug("Applied composite SDL auto-fix", extra={"auto_fix_version": AUTO_FIX_VERSION})
    return fixed
