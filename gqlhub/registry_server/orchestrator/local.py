"""
Local orchestrator: in-process composition with graphql-core.

This orchestrator is used for local development and tests. It is not a
full federation composer; it implements a predictable subset:

- SINGLE: parse, validate and build the SDL
- STITCHING / FEDERATION: parse every service, merge type definitions
  and type extensions by name (fields are merged, conflicting field
  types are composition errors), strip federation / stitching plumbing
  from the public schema and validate the result
- FEDERATION contracts: `@tag`-based include/exclude filtering of the
  merged schema, optionally removing unreachable types

Invariants:
    - Syntax errors are reported with source "graphql"
    - Merge conflicts and invalid merged schemas are reported with
      source "composition" (composite projects)
    - Output SDL is printed from the built schema, so it is stable
"""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, List, Optional, Sequence, Set, Tuple

from graphql import (
    GraphQLError,
    build_ast_schema,
    parse,
    print_ast,
    print_schema,
    validate_schema,
)
from graphql.language import (
    DirectiveDefinitionNode,
    DirectiveNode,
    DocumentNode,
    EnumTypeDefinitionNode,
    EnumTypeExtensionNode,
    InputObjectTypeDefinitionNode,
    InputObjectTypeExtensionNode,
    InterfaceTypeDefinitionNode,
    InterfaceTypeExtensionNode,
    NameNode,
    ObjectTypeDefinitionNode,
    ObjectTypeExtensionNode,
    ScalarTypeDefinitionNode,
    ScalarTypeExtensionNode,
    SchemaDefinitionNode,
    SchemaExtensionNode,
    StringValueNode,
    TypeDefinitionNode,
    UnionTypeDefinitionNode,
    UnionTypeExtensionNode,
)
from graphql.validation.validate import validate_sdl

from ..metrics import COMPOSITION_DURATION
from ..schema.nodes import replace_node
from ..schema.types import CompositionErrorSource, ProjectType, SchemaCompositionError
from .base import (
    ComposeAndValidateResult,
    CompositionOptions,
    ContractCompositionResult,
    ContractFilter,
    SchemaObject,
)

logger = logging.getLogger(__name__)

SPECIFIED_SCALARS = frozenset({"String", "Int", "Float", "Boolean", "ID"})

FEDERATION_DIRECTIVES = frozenset(
    {
        "key",
        "external",
        "requires",
        "provides",
        "extends",
        "shareable",
        "inaccessible",
        "override",
        "tag",
        "link",
        "composeDirective",
        "interfaceObject",
        "authenticated",
        "requiresScopes",
        "policy",
    }
)
FEDERATION_TYPES = frozenset({"_Any", "_Service", "_Entity", "_FieldSet", "FieldSet"})
STITCHING_DIRECTIVES = frozenset({"key", "computed", "merge", "canonical"})

_EXTENSION_TO_DEFINITION = {
    ObjectTypeExtensionNode: ObjectTypeDefinitionNode,
    InterfaceTypeExtensionNode: InterfaceTypeDefinitionNode,
    InputObjectTypeExtensionNode: InputObjectTypeDefinitionNode,
    EnumTypeExtensionNode: EnumTypeDefinitionNode,
    UnionTypeExtensionNode: UnionTypeDefinitionNode,
    ScalarTypeExtensionNode: ScalarTypeDefinitionNode,
}

_MEMBER_ATTR = {
    ObjectTypeDefinitionNode: "fields",
    InterfaceTypeDefinitionNode: "fields",
    InputObjectTypeDefinitionNode: "fields",
    EnumTypeDefinitionNode: "values",
    UnionTypeDefinitionNode: "types",
}

_KIND_LABEL = {
    ObjectTypeDefinitionNode: "object type",
    InterfaceTypeDefinitionNode: "interface type",
    InputObjectTypeDefinitionNode: "input object type",
    EnumTypeDefinitionNode: "enum type",
    UnionTypeDefinitionNode: "union type",
    ScalarTypeDefinitionNode: "scalar type",
}


def _named_type(type_node: Any) -> str:
    while getattr(type_node, "type", None) is not None:
        type_node = type_node.type
    return type_node.name.value


def _tags_of(node: Any) -> Set[str]:
    tags: Set[str] = set()
    for directive in getattr(node, "directives", None) or ():
        if directive.name.value != "tag":
            continue
        for argument in directive.arguments or ():
            if argument.name.value == "name" and isinstance(argument.value, StringValueNode):
                tags.add(argument.value.value)
    return tags


def _has_directive(node: Any, name: str) -> bool:
    return any(d.name.value == name for d in getattr(node, "directives", None) or ())


@dataclass
class _MergedType:
    node_class: type
    name: str
    source: str
    description: Any = None
    directives: Dict[str, DirectiveNode] = field(default_factory=dict)
    interfaces: Dict[str, Any] = field(default_factory=dict)
    members: Dict[str, Any] = field(default_factory=dict)
    member_sources: Dict[str, str] = field(default_factory=dict)

    def to_node(self) -> TypeDefinitionNode:
        attr = _MEMBER_ATTR.get(self.node_class)
        kwargs: Dict[str, Any] = {
            "name": NameNode(value=self.name),
            "description": self.description,
            "directives": tuple(self.directives.values()),
        }
        if self.node_class in (ObjectTypeDefinitionNode, InterfaceTypeDefinitionNode):
            kwargs["interfaces"] = tuple(self.interfaces.values())
        if attr is not None:
            kwargs[attr] = tuple(self.members.values())
        return self.node_class(**kwargs)


@dataclass
class _MergeOutcome:
    definitions: List[Any]
    errors: List[SchemaCompositionError]


class LocalOrchestrator:
    """In-process orchestrator for development and tests.

    Example:
        >>> orchestrator = LocalOrchestrator(ProjectType.STITCHING)
        >>> result = await orchestrator.compose_and_validate(
        ...     [SchemaObject(raw="type Query { a: String }", source="a")],
        ...     CompositionOptions(),
        ... )
        >>> result.errors
        ()
    """

    def __init__(self, project_type: ProjectType) -> None:
        self.project_type = project_type

    async def compose_and_validate(
        self,
        schemas: Sequence[SchemaObject],
        options: CompositionOptions,
    ) -> ComposeAndValidateResult:
        started = time.perf_counter()
        try:
            if self.project_type == ProjectType.SINGLE:
                return self._compose_single(schemas)
            return self._compose_composite(schemas, options)
        finally:
            COMPOSITION_DURATION.labels(projectType=self.project_type.value).observe(
                time.perf_counter() - started
            )

    # --- SINGLE ---------------------------------------------------------------

    def _compose_single(self, schemas: Sequence[SchemaObject]) -> ComposeAndValidateResult:
        raw = " ".join(s.raw for s in schemas)
        try:
            document = parse(raw, no_location=True)
        except GraphQLError as e:
            return ComposeAndValidateResult(sdl=None, errors=(_graphql_error(e.message),))

        sdl, errors = _build(document, CompositionErrorSource.GRAPHQL)
        return ComposeAndValidateResult(sdl=sdl, errors=errors)

    # --- Composite ------------------------------------------------------------

    @property
    def _plumbing_directives(self) -> FrozenSet[str]:
        if self.project_type == ProjectType.FEDERATION:
            return FEDERATION_DIRECTIVES
        return STITCHING_DIRECTIVES

    def _compose_composite(
        self,
        schemas: Sequence[SchemaObject],
        options: CompositionOptions,
    ) -> ComposeAndValidateResult:
        documents: List[Tuple[str, DocumentNode]] = []
        parse_errors: List[SchemaCompositionError] = []
        for schema in schemas:
            try:
                documents.append((schema.source, parse(schema.raw, no_location=True)))
            except GraphQLError as e:
                parse_errors.append(_graphql_error(f"[{schema.source}] {e.message}"))

        if parse_errors:
            return ComposeAndValidateResult(
                sdl=None,
                errors=tuple(parse_errors),
                contracts=_failed_contracts(options, parse_errors),
            )

        merged = self._merge(documents)
        if merged.errors:
            return ComposeAndValidateResult(
                sdl=None,
                errors=tuple(merged.errors),
                contracts=_failed_contracts(options, merged.errors),
            )

        sdl, errors = self._build_public(merged.definitions)
        supergraph = None
        if sdl is not None and self.project_type == ProjectType.FEDERATION:
            supergraph = _print_supergraph(merged.definitions, schemas)

        contracts = None
        if options.contracts is not None:
            contracts = tuple(
                self._compose_contract(contract.id, contract.filter, merged.definitions, schemas)
                for contract in options.contracts
            )

        return ComposeAndValidateResult(
            sdl=sdl,
            supergraph=supergraph,
            errors=errors,
            contracts=contracts,
        )

    def _is_plumbing_type(self, name: str) -> bool:
        if self.project_type != ProjectType.FEDERATION:
            return False
        return name in FEDERATION_TYPES or name.startswith(("link__", "join__", "federation__"))

    def _merge(self, documents: Sequence[Tuple[str, DocumentNode]]) -> _MergeOutcome:
        types: Dict[str, _MergedType] = {}
        directive_definitions: Dict[str, DirectiveDefinitionNode] = {}
        schema_definition: Optional[SchemaDefinitionNode] = None
        errors: List[SchemaCompositionError] = []

        for source, document in documents:
            for definition in document.definitions:
                if isinstance(definition, DirectiveDefinitionNode):
                    name = definition.name.value
                    if name in self._plumbing_directives or name.startswith(("link__", "join__")):
                        continue
                    directive_definitions.setdefault(name, definition)
                    continue

                if isinstance(definition, SchemaDefinitionNode):
                    schema_definition = schema_definition or definition
                    continue

                if isinstance(definition, SchemaExtensionNode):
                    continue

                node_class = _EXTENSION_TO_DEFINITION.get(type(definition), type(definition))
                if node_class not in _KIND_LABEL:
                    continue

                name = definition.name.value
                if self._is_plumbing_type(name):
                    continue

                merged = types.get(name)
                if merged is None:
                    merged = types[name] = _MergedType(node_class=node_class, name=name, source=source)
                elif merged.node_class is not node_class:
                    errors.append(
                        _composition_error(
                            f"Type '{name}' is defined as {_KIND_LABEL[merged.node_class]} "
                            f"in '{merged.source}' and as {_KIND_LABEL[node_class]} in '{source}'"
                        )
                    )
                    continue

                if merged.description is None:
                    merged.description = getattr(definition, "description", None)
                for directive in definition.directives or ():
                    merged.directives.setdefault(print_ast(directive), directive)
                for interface in getattr(definition, "interfaces", None) or ():
                    merged.interfaces.setdefault(interface.name.value, interface)

                attr = _MEMBER_ATTR.get(node_class)
                for member in (getattr(definition, attr, None) or ()) if attr else ():
                    member_name = member.name.value
                    existing = merged.members.get(member_name)
                    if existing is None:
                        merged.members[member_name] = member
                        merged.member_sources[member_name] = source
                        continue
                    if attr == "fields" and print_ast(existing.type) != print_ast(member.type):
                        errors.append(
                            _composition_error(
                                f"Field '{name}.{member_name}' has conflicting types: "
                                f"'{print_ast(existing.type)}' in '{merged.member_sources[member_name]}' "
                                f"and '{print_ast(member.type)}' in '{source}'"
                            )
                        )

        definitions: List[Any] = []
        if schema_definition is not None:
            definitions.append(schema_definition)
        definitions.extend(directive_definitions.values())
        for merged in types.values():
            if self.project_type == ProjectType.FEDERATION and merged.name == "Query":
                merged.members.pop("_service", None)
                merged.members.pop("_entities", None)
            definitions.append(merged.to_node())

        return _MergeOutcome(definitions=definitions, errors=errors)

    def _strip_plumbing(self, definitions: Sequence[Any]) -> List[Any]:
        plumbing = self._plumbing_directives
        stripped: List[Any] = []
        for definition in definitions:
            if _has_directive(definition, "inaccessible"):
                continue
            definition = _without_directives(definition, plumbing)
            attr = _MEMBER_ATTR.get(type(definition))
            if attr and attr != "types":
                members = tuple(
                    _without_directives(m, plumbing)
                    for m in getattr(definition, attr) or ()
                    if not _has_directive(m, "inaccessible")
                )
                definition = replace_node(definition, **{attr: members})
            stripped.append(definition)
        return stripped

    def _build_public(
        self,
        definitions: Sequence[Any],
        remove_unreachable: bool = False,
    ) -> Tuple[Optional[str], Tuple[SchemaCompositionError, ...]]:
        public = _prune(self._strip_plumbing(definitions), remove_unreachable=remove_unreachable)
        return _build(DocumentNode(definitions=tuple(public)), CompositionErrorSource.COMPOSITION)

    def _compose_contract(
        self,
        contract_id: str,
        contract_filter: ContractFilter,
        definitions: Sequence[Any],
        schemas: Sequence[SchemaObject],
    ) -> ContractCompositionResult:
        filtered = _apply_contract_filter(definitions, contract_filter)
        sdl, errors = self._build_public(
            filtered,
            remove_unreachable=contract_filter.remove_unreachable_types_from_public_api_schema,
        )
        supergraph = (
            _print_supergraph(filtered, schemas)
            if sdl is not None and self.project_type == ProjectType.FEDERATION
            else None
        )
        return ContractCompositionResult(id=contract_id, sdl=sdl, supergraph=supergraph, errors=errors)


def _graphql_error(message: str) -> SchemaCompositionError:
    return SchemaCompositionError(message=message, source=CompositionErrorSource.GRAPHQL)


def _composition_error(message: str) -> SchemaCompositionError:
    return SchemaCompositionError(message=message, source=CompositionErrorSource.COMPOSITION)


def _failed_contracts(
    options: CompositionOptions,
    errors: Sequence[SchemaCompositionError],
) -> Optional[Tuple[ContractCompositionResult, ...]]:
    if options.contracts is None:
        return None
    return tuple(
        ContractCompositionResult(id=c.id, sdl=None, errors=tuple(errors)) for c in options.contracts
    )


def _build(
    document: DocumentNode,
    source: CompositionErrorSource,
) -> Tuple[Optional[str], Tuple[SchemaCompositionError, ...]]:
    sdl_errors = validate_sdl(document)
    if sdl_errors:
        return None, tuple(SchemaCompositionError(message=e.message, source=source) for e in sdl_errors)

    try:
        schema = build_ast_schema(document, assume_valid_sdl=True)
    except (GraphQLError, TypeError) as e:
        return None, (SchemaCompositionError(message=str(e), source=source),)

    schema_errors = validate_schema(schema)
    if schema_errors:
        return None, tuple(SchemaCompositionError(message=e.message, source=source) for e in schema_errors)

    return print_schema(schema), ()


def _without_directives(node: Any, names: FrozenSet[str]) -> Any:
    directives = getattr(node, "directives", None)
    if not directives:
        return node
    kept = tuple(
        d for d in directives if d.name.value not in names and not d.name.value.startswith("join__")
    )
    if len(kept) == len(directives):
        return node
    return replace_node(node, directives=kept)


def _apply_contract_filter(definitions: Sequence[Any], contract_filter: ContractFilter) -> List[Any]:
    exclude = set(contract_filter.exclude_tags or ())
    include = set(contract_filter.include_tags or ())
    result: List[Any] = []

    for definition in definitions:
        if not isinstance(definition, TypeDefinitionNode):
            result.append(definition)
            continue

        type_tags = _tags_of(definition)
        if exclude & type_tags:
            continue

        attr = _MEMBER_ATTR.get(type(definition))
        if attr is None or attr == "types":
            result.append(definition)
            continue

        is_output = isinstance(definition, (ObjectTypeDefinitionNode, InterfaceTypeDefinitionNode))
        members = []
        for member in getattr(definition, attr) or ():
            tags = _tags_of(member)
            if exclude & tags:
                continue
            if include and is_output and not (include & (tags | type_tags)):
                continue
            arguments = getattr(member, "arguments", None)
            if arguments:
                kept_arguments = tuple(a for a in arguments if not (exclude & _tags_of(a)))
                if len(kept_arguments) != len(arguments):
                    member = replace_node(member, arguments=kept_arguments)
            members.append(member)

        definition = replace_node(definition, **{attr: tuple(members)})
        result.append(definition)

    return _prune(result, remove_unreachable=False)


def _prune(definitions: Sequence[Any], remove_unreachable: bool) -> List[Any]:
    """Drop members that reference missing types and types left empty, until stable."""
    current = list(definitions)
    while True:
        known = SPECIFIED_SCALARS | {
            d.name.value for d in current if isinstance(d, TypeDefinitionNode)
        }
        changed = False
        pruned: List[Any] = []

        for definition in current:
            attr = _MEMBER_ATTR.get(type(definition))
            if attr is None:
                pruned.append(definition)
                continue

            members = getattr(definition, attr) or ()
            if attr == "fields":
                kept = tuple(
                    m
                    for m in members
                    if _named_type(m.type) in known
                    and all(_named_type(a.type) in known for a in getattr(m, "arguments", None) or ())
                )
            elif attr == "types":
                kept = tuple(m for m in members if m.name.value in known)
            else:
                kept = tuple(members)

            interfaces = getattr(definition, "interfaces", None) or ()
            kept_interfaces = tuple(i for i in interfaces if i.name.value in known)

            if not kept:
                changed = True
                continue

            if len(kept) != len(members) or len(kept_interfaces) != len(interfaces):
                changed = True
                changes: Dict[str, Any] = {attr: kept}
                if interfaces:
                    changes["interfaces"] = kept_interfaces
                definition = replace_node(definition, **changes)

            pruned.append(definition)

        current = pruned
        if not changed:
            break

    if remove_unreachable:
        current = _remove_unreachable(current)
    return current


def _root_type_names(definitions: Sequence[Any]) -> Set[str]:
    for definition in definitions:
        if isinstance(definition, SchemaDefinitionNode):
            return {op.type.name.value for op in definition.operation_types}
    return {"Query", "Mutation", "Subscription"}


def _remove_unreachable(definitions: Sequence[Any]) -> List[Any]:
    type_defs = {d.name.value: d for d in definitions if isinstance(d, TypeDefinitionNode)}
    implementations: Dict[str, Set[str]] = {}
    for name, definition in type_defs.items():
        for interface in getattr(definition, "interfaces", None) or ():
            implementations.setdefault(interface.name.value, set()).add(name)

    reachable: Set[str] = set()
    queue = [name for name in _root_type_names(definitions) if name in type_defs]
    while queue:
        name = queue.pop()
        if name in reachable or name not in type_defs:
            continue
        reachable.add(name)
        definition = type_defs[name]
        referenced: Set[str] = set()
        for member in getattr(definition, "fields", None) or ():
            referenced.add(_named_type(member.type))
            for argument in getattr(member, "arguments", None) or ():
                referenced.add(_named_type(argument.type))
        for member in getattr(definition, "types", None) or ():
            referenced.add(member.name.value)
        for interface in getattr(definition, "interfaces", None) or ():
            referenced.add(interface.name.value)
        referenced |= implementations.get(name, set())
        queue.extend(referenced - reachable)

    return [
        d for d in definitions if not isinstance(d, TypeDefinitionNode) or d.name.value in reachable
    ]


def _graph_enum_value(service_name: str) -> str:
    value = re.sub(r"[^A-Za-z0-9_]", "_", service_name).upper()
    return value if not value[:1].isdigit() else f"_{value}"


def _print_supergraph(definitions: Sequence[Any], schemas: Sequence[SchemaObject]) -> str:
    graphs = "\n".join(
        f'  {_graph_enum_value(s.source)} @join__graph(name: "{s.source}", url: "{s.url or ""}")'
        for s in schemas
    )
    header = (
        "directive @join__graph(name: String!, url: String!) on ENUM_VALUE\n\n"
        f"enum join__Graph {{\n{graphs}\n}}"
    )
    body = print_ast(DocumentNode(definitions=tuple(definitions)))
    return f"{header}\n\n{body}"
