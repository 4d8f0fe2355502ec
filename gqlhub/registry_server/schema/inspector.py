"""
Structural diffing of GraphQL schemas.

This module compares two built GraphQL schemas and classifies every
difference by criticality:
- Breaking: existing operations may stop working (removals, incompatible
  type changes, new required arguments / input fields)
- Dangerous: existing operations keep validating but may behave
  differently (new enum values, new union members, default changes)
- Safe: additions, descriptions, deprecations

It also provides `diff_schema_coordinates`, a coordinate-level view of
added / deleted / deprecated / undeprecated schema elements used for
usage reporting.

Invariants:
    - Introspection types and specified scalars/directives are never diffed
    - diff_schema_coordinates(a, b).added == diff_schema_coordinates(b, a).deleted
    - Description changes that differ only in whitespace are dropped by Inspector

How to change safely:
    - Add new change kinds to ChangeType first, never rename existing ones
    - Keep paths as schema coordinates, usage lookups depend on them
    - Any new Breaking rule needs a test in tests/unit/test_inspector.py

Example:
    >>> from graphql import build_schema
    >>> old = build_schema("type Query { a: String b: String }")
    >>> new = build_schema("type Query { a: String }")
    >>> [c.type.value for c in diff_schemas(old, new)]
    ['FIELD_REMOVED']
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence, Set, Tuple

from graphql import (
    GraphQLArgument,
    GraphQLDirective,
    GraphQLEnumType,
    GraphQLField,
    GraphQLInputField,
    GraphQLInputObjectType,
    GraphQLInterfaceType,
    GraphQLNamedType,
    GraphQLObjectType,
    GraphQLScalarType,
    GraphQLSchema,
    GraphQLUnionType,
    ast_from_value,
    is_introspection_type,
    is_list_type,
    is_named_type,
    is_non_null_type,
    is_specified_directive,
    is_specified_scalar_type,
    print_ast,
)
from graphql.pyutils import Undefined

from .changes import ChangeType, CriticalityLevel, SchemaChange
from .types import ConditionalBreakingChangeConfig, PushedCompositeSchema

if TYPE_CHECKING:
    from ..integrations.usage import (
        CoordinateUsage,
        UsageStatisticsProvider,
    )

logger = logging.getLogger(__name__)

FEDERATION_TYPE_NAMES = frozenset({"_Service", "_Entity", "_Any", "_FieldSet", "FieldSet"})
FEDERATION_QUERY_FIELDS = frozenset({"Query._service", "Query._entities"})
FEDERATION_DIRECTIVE_NAMES = frozenset(
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
FEDERATION_PREFIXES = ("join__", "link__", "federation__")


def _change(
    change_type: ChangeType,
    criticality: CriticalityLevel,
    message: str,
    path: Optional[str],
    reason: Optional[str] = None,
    **meta: Any,
) -> SchemaChange:
    return SchemaChange(
        type=change_type,
        criticality=criticality,
        message=message,
        path=path,
        meta=meta,
        reason=reason,
    )


def _kind_of(named_type: GraphQLNamedType) -> str:
    if isinstance(named_type, GraphQLObjectType):
        return "OBJECT"
    if isinstance(named_type, GraphQLInterfaceType):
        return "INTERFACE"
    if isinstance(named_type, GraphQLUnionType):
        return "UNION"
    if isinstance(named_type, GraphQLEnumType):
        return "ENUM"
    if isinstance(named_type, GraphQLInputObjectType):
        return "INPUT_OBJECT"
    return "SCALAR"


def _type_label(named_type: GraphQLNamedType) -> str:
    labels = {
        "OBJECT": "object type",
        "INTERFACE": "interface type",
        "UNION": "union type",
        "ENUM": "enum type",
        "INPUT_OBJECT": "input object type",
        "SCALAR": "scalar type",
    }
    return labels[_kind_of(named_type)]


def _user_types(schema: GraphQLSchema) -> Dict[str, GraphQLNamedType]:
    return {
        name: named_type
        for name, named_type in schema.type_map.items()
        if not is_introspection_type(named_type) and not is_specified_scalar_type(named_type)
    }


def _user_directives(schema: GraphQLSchema) -> Dict[str, GraphQLDirective]:
    return {d.name: d for d in schema.directives if not is_specified_directive(d)}


def _render_default(value: Any, input_type: Any) -> Optional[str]:
    if value is Undefined:
        return None
    try:
        node = ast_from_value(value, input_type)
    except (TypeError, ValueError):
        node = None
    if node is not None:
        return print_ast(node)
    return json.dumps(value, default=str)


def is_safe_output_type_change(old_type: Any, new_type: Any) -> bool:
    """Whether changing an output field type keeps existing clients working."""
    if is_list_type(old_type):
        return (
            is_list_type(new_type) and is_safe_output_type_change(old_type.of_type, new_type.of_type)
        ) or (is_non_null_type(new_type) and is_safe_output_type_change(old_type, new_type.of_type))
    if is_non_null_type(old_type):
        return is_non_null_type(new_type) and is_safe_output_type_change(
            old_type.of_type, new_type.of_type
        )
    return (is_named_type(new_type) and old_type.name == new_type.name) or (
        is_non_null_type(new_type) and is_safe_output_type_change(old_type, new_type.of_type)
    )


def is_safe_input_type_change(old_type: Any, new_type: Any) -> bool:
    """Whether changing an argument / input field type keeps existing clients working."""
    if is_list_type(old_type):
        return is_list_type(new_type) and is_safe_input_type_change(
            old_type.of_type, new_type.of_type
        )
    if is_non_null_type(old_type):
        return (
            is_non_null_type(new_type)
            and is_safe_input_type_change(old_type.of_type, new_type.of_type)
        ) or (not is_non_null_type(new_type) and is_safe_input_type_change(old_type.of_type, new_type))
    return is_named_type(new_type) and old_type.name == new_type.name


def _is_required_input(value: Any) -> bool:
    return is_non_null_type(value.type) and value.default_value is Undefined


def diff_schemas(old_schema: GraphQLSchema, new_schema: GraphQLSchema) -> List[SchemaChange]:
    """Compute all structural changes between two schemas.

    Args:
        old_schema: The baseline schema
        new_schema: The incoming schema

    Returns:
        List of SchemaChange objects describing all differences
    """
    changes: List[SchemaChange] = []
    changes.extend(_check_root_types(old_schema, new_schema))
    changes.extend(_check_types(_user_types(old_schema), _user_types(new_schema)))
    changes.extend(_check_directives(_user_directives(old_schema), _user_directives(new_schema)))
    return changes


def _check_root_types(old_schema: GraphQLSchema, new_schema: GraphQLSchema) -> List[SchemaChange]:
    changes: List[SchemaChange] = []
    roots = (
        ("query", ChangeType.SCHEMA_QUERY_TYPE_CHANGED, old_schema.query_type, new_schema.query_type),
        (
            "mutation",
            ChangeType.SCHEMA_MUTATION_TYPE_CHANGED,
            old_schema.mutation_type,
            new_schema.mutation_type,
        ),
        (
            "subscription",
            ChangeType.SCHEMA_SUBSCRIPTION_TYPE_CHANGED,
            old_schema.subscription_type,
            new_schema.subscription_type,
        ),
    )
    for operation, change_type, old_root, new_root in roots:
        old_name = old_root.name if old_root else None
        new_name = new_root.name if new_root else None
        if old_name is not None and old_name != new_name:
            changes.append(
                _change(
                    change_type,
                    CriticalityLevel.BREAKING,
                    f"Schema {operation} root has changed from '{old_name}' to '{new_name or 'unknown'}'",
                    None,
                    old_type_name=old_name,
                    new_type_name=new_name,
                )
            )
    return changes


def _check_types(
    old_types: Dict[str, GraphQLNamedType],
    new_types: Dict[str, GraphQLNamedType],
) -> List[SchemaChange]:
    """Check named type changes."""
    changes: List[SchemaChange] = []

    for name, old_type in old_types.items():
        if name not in new_types:
            changes.append(
                _change(
                    ChangeType.TYPE_REMOVED,
                    CriticalityLevel.BREAKING,
                    f"Type '{name}' was removed",
                    name,
                    reason="Removing a type is a breaking change",
                    removed_type_name=name,
                )
            )

    for name, new_type in new_types.items():
        if name not in old_types:
            changes.append(
                _change(
                    ChangeType.TYPE_ADDED,
                    CriticalityLevel.SAFE,
                    f"Type '{name}' was added",
                    name,
                    added_type_name=name,
                    added_type_kind=_kind_of(new_type),
                )
            )
            continue

        old_type = old_types[name]
        old_kind, new_kind = _kind_of(old_type), _kind_of(new_type)
        if old_kind != new_kind:
            changes.append(
                _change(
                    ChangeType.TYPE_KIND_CHANGED,
                    CriticalityLevel.BREAKING,
                    f"'{name}' kind changed from '{old_kind}' to '{new_kind}'",
                    name,
                    reason="Changing the kind of a type is a breaking change",
                    type_name=name,
                    old_type_kind=old_kind,
                    new_type_kind=new_kind,
                )
            )
            continue

        changes.extend(_check_type_diff(old_type, new_type))

    return changes


def _check_type_diff(old_type: GraphQLNamedType, new_type: GraphQLNamedType) -> List[SchemaChange]:
    """Check differences between two versions of the same named type."""
    changes: List[SchemaChange] = []
    changes.extend(
        _check_description(
            old_type.description,
            new_type.description,
            path=old_type.name,
            subject=f"type '{old_type.name}'",
            change_types=(
                ChangeType.TYPE_DESCRIPTION_ADDED,
                ChangeType.TYPE_DESCRIPTION_CHANGED,
                ChangeType.TYPE_DESCRIPTION_REMOVED,
            ),
            type_name=old_type.name,
        )
    )

    if isinstance(old_type, (GraphQLObjectType, GraphQLInterfaceType)):
        changes.extend(_check_fields(old_type, new_type))
        changes.extend(_check_interfaces(old_type, new_type))
    elif isinstance(old_type, GraphQLInputObjectType):
        changes.extend(_check_input_fields(old_type, new_type))
    elif isinstance(old_type, GraphQLEnumType):
        changes.extend(_check_enum_values(old_type, new_type))
    elif isinstance(old_type, GraphQLUnionType):
        changes.extend(_check_union_members(old_type, new_type))

    return changes


def _check_description(
    old: Optional[str],
    new: Optional[str],
    path: str,
    subject: str,
    change_types: Tuple[ChangeType, ChangeType, ChangeType],
    **meta: Any,
) -> List[SchemaChange]:
    added, changed, removed = change_types
    if (old or "") == (new or ""):
        return []
    if not old:
        return [
            _change(
                added,
                CriticalityLevel.SAFE,
                f"Description '{new}' was added to {subject}",
                path,
                old_description=None,
                new_description=new,
                **meta,
            )
        ]
    if not new:
        return [
            _change(
                removed,
                CriticalityLevel.SAFE,
                f"Description '{old}' was removed from {subject}",
                path,
                old_description=old,
                new_description=None,
                **meta,
            )
        ]
    return [
        _change(
            changed,
            CriticalityLevel.SAFE,
            f"Description '{old}' on {subject} has changed to '{new}'",
            path,
            old_description=old,
            new_description=new,
            **meta,
        )
    ]


def _check_fields(old_type: Any, new_type: Any) -> List[SchemaChange]:
    """Check object / interface field changes."""
    changes: List[SchemaChange] = []
    type_name = old_type.name
    label = _type_label(old_type)
    old_fields: Dict[str, GraphQLField] = old_type.fields
    new_fields: Dict[str, GraphQLField] = new_type.fields

    for field_name in old_fields:
        if field_name not in new_fields:
            deprecated = old_fields[field_name].deprecation_reason is not None
            changes.append(
                _change(
                    ChangeType.FIELD_REMOVED,
                    CriticalityLevel.BREAKING,
                    f"Field '{field_name}' "
                    f"{'(deprecated) ' if deprecated else ''}was removed from {label} '{type_name}'",
                    f"{type_name}.{field_name}",
                    reason="Removing a field is a breaking change",
                    type_name=type_name,
                    removed_field_name=field_name,
                    is_removed_field_deprecated=deprecated,
                )
            )

    for field_name, new_field in new_fields.items():
        path = f"{type_name}.{field_name}"
        if field_name not in old_fields:
            changes.append(
                _change(
                    ChangeType.FIELD_ADDED,
                    CriticalityLevel.SAFE,
                    f"Field '{field_name}' was added to {label} '{type_name}'",
                    path,
                    type_name=type_name,
                    added_field_name=field_name,
                )
            )
            continue
        changes.extend(_check_field_diff(type_name, old_fields[field_name], new_field, field_name))

    return changes


def _check_field_diff(
    type_name: str,
    old_field: GraphQLField,
    new_field: GraphQLField,
    field_name: str,
) -> List[SchemaChange]:
    """Check differences between two versions of a field."""
    changes: List[SchemaChange] = []
    path = f"{type_name}.{field_name}"

    old_type_str, new_type_str = str(old_field.type), str(new_field.type)
    if old_type_str != new_type_str:
        safe = is_safe_output_type_change(old_field.type, new_field.type)
        changes.append(
            _change(
                ChangeType.FIELD_TYPE_CHANGED,
                CriticalityLevel.SAFE if safe else CriticalityLevel.BREAKING,
                f"Field '{path}' changed type from '{old_type_str}' to '{new_type_str}'",
                path,
                reason=None if safe else "Changing the type of a field is a breaking change",
                type_name=type_name,
                field_name=field_name,
                old_field_type=old_type_str,
                new_field_type=new_type_str,
            )
        )

    changes.extend(
        _check_description(
            old_field.description,
            new_field.description,
            path=path,
            subject=f"field '{path}'",
            change_types=(
                ChangeType.FIELD_DESCRIPTION_ADDED,
                ChangeType.FIELD_DESCRIPTION_CHANGED,
                ChangeType.FIELD_DESCRIPTION_REMOVED,
            ),
            type_name=type_name,
            field_name=field_name,
        )
    )

    changes.extend(
        _check_deprecation(
            old_field.deprecation_reason,
            new_field.deprecation_reason,
            path=path,
            type_name=type_name,
            field_name=field_name,
        )
    )

    changes.extend(_check_arguments(type_name, field_name, old_field.args, new_field.args))
    return changes


def _check_deprecation(
    old_reason: Optional[str],
    new_reason: Optional[str],
    path: str,
    **meta: Any,
) -> List[SchemaChange]:
    if old_reason is None and new_reason is not None:
        return [
            _change(
                ChangeType.FIELD_DEPRECATION_ADDED,
                CriticalityLevel.SAFE,
                f"Field '{path}' is deprecated",
                path,
                deprecation_reason=new_reason,
                **meta,
            )
        ]
    if old_reason is not None and new_reason is None:
        return [
            _change(
                ChangeType.FIELD_DEPRECATION_REMOVED,
                CriticalityLevel.SAFE,
                f"Field '{path}' is no longer deprecated",
                path,
                **meta,
            )
        ]
    if old_reason is not None and new_reason is not None and old_reason != new_reason:
        return [
            _change(
                ChangeType.FIELD_DEPRECATION_REASON_CHANGED,
                CriticalityLevel.SAFE,
                f"Deprecation reason on field '{path}' has changed from '{old_reason}' to '{new_reason}'",
                path,
                old_deprecation_reason=old_reason,
                new_deprecation_reason=new_reason,
                **meta,
            )
        ]
    return []


def _check_arguments(
    type_name: str,
    field_name: str,
    old_args: Dict[str, GraphQLArgument],
    new_args: Dict[str, GraphQLArgument],
) -> List[SchemaChange]:
    """Check field argument changes."""
    changes: List[SchemaChange] = []
    field_path = f"{type_name}.{field_name}"

    for arg_name, old_arg in old_args.items():
        if arg_name not in new_args:
            changes.append(
                _change(
                    ChangeType.FIELD_ARGUMENT_REMOVED,
                    CriticalityLevel.BREAKING,
                    f"Argument '{arg_name}: {old_arg.type}' was removed from field '{field_path}'",
                    f"{field_path}.{arg_name}",
                    reason="Removing a field argument is a breaking change",
                    type_name=type_name,
                    field_name=field_name,
                    removed_field_argument_name=arg_name,
                )
            )

    for arg_name, new_arg in new_args.items():
        path = f"{field_path}.{arg_name}"
        if arg_name not in old_args:
            required = _is_required_input(new_arg)
            changes.append(
                _change(
                    ChangeType.FIELD_ARGUMENT_ADDED,
                    CriticalityLevel.BREAKING if required else CriticalityLevel.DANGEROUS,
                    f"Argument '{arg_name}: {new_arg.type}' "
                    f"{'(with no default value) ' if required else ''}added to field '{field_path}'",
                    path,
                    reason="Adding a required argument is a breaking change" if required else None,
                    type_name=type_name,
                    field_name=field_name,
                    added_argument_name=arg_name,
                    added_argument_type=str(new_arg.type),
                    has_default_value=new_arg.default_value is not Undefined,
                )
            )
            continue

        old_arg = old_args[arg_name]
        old_type_str, new_type_str = str(old_arg.type), str(new_arg.type)
        if old_type_str != new_type_str:
            safe = is_safe_input_type_change(old_arg.type, new_arg.type)
            changes.append(
                _change(
                    ChangeType.FIELD_ARGUMENT_TYPE_CHANGED,
                    CriticalityLevel.SAFE if safe else CriticalityLevel.BREAKING,
                    f"Type for argument '{arg_name}' on field '{field_path}' changed "
                    f"from '{old_type_str}' to '{new_type_str}'",
                    path,
                    reason=None if safe else "Changing an argument type is a breaking change",
                    type_name=type_name,
                    field_name=field_name,
                    argument_name=arg_name,
                    old_argument_type=old_type_str,
                    new_argument_type=new_type_str,
                )
            )

        old_default = _render_default(old_arg.default_value, old_arg.type)
        new_default = _render_default(new_arg.default_value, new_arg.type)
        if old_default != new_default:
            message = (
                f"Default value '{new_default}' was added to argument '{arg_name}' on field '{field_path}'"
                if old_default is None
                else f"Default value for argument '{arg_name}' on field '{field_path}' changed "
                f"from '{old_default}' to '{new_default}'"
            )
            changes.append(
                _change(
                    ChangeType.FIELD_ARGUMENT_DEFAULT_CHANGED,
                    CriticalityLevel.DANGEROUS,
                    message,
                    path,
                    reason="Changing the default value of an argument may change runtime behaviour",
                    type_name=type_name,
                    field_name=field_name,
                    argument_name=arg_name,
                    old_default_value=old_default,
                    new_default_value=new_default,
                )
            )

        if (old_arg.description or "") != (new_arg.description or ""):
            changes.append(
                _change(
                    ChangeType.FIELD_ARGUMENT_DESCRIPTION_CHANGED,
                    CriticalityLevel.SAFE,
                    f"Description for argument '{arg_name}' on field '{field_path}' changed "
                    f"from '{old_arg.description or ''}' to '{new_arg.description or ''}'",
                    path,
                    type_name=type_name,
                    field_name=field_name,
                    argument_name=arg_name,
                    old_description=old_arg.description,
                    new_description=new_arg.description,
                )
            )

    return changes


def _check_interfaces(old_type: Any, new_type: Any) -> List[SchemaChange]:
    changes: List[SchemaChange] = []
    type_name = old_type.name
    old_names = {i.name for i in old_type.interfaces}
    new_names = {i.name for i in new_type.interfaces}

    for name in sorted(old_names - new_names):
        changes.append(
            _change(
                ChangeType.OBJECT_TYPE_INTERFACE_REMOVED,
                CriticalityLevel.BREAKING,
                f"'{type_name}' object type no longer implements '{name}' interface",
                type_name,
                reason="Removing an interface may break fragments spread on it",
                object_type_name=type_name,
                removed_interface_name=name,
            )
        )
    for name in sorted(new_names - old_names):
        changes.append(
            _change(
                ChangeType.OBJECT_TYPE_INTERFACE_ADDED,
                CriticalityLevel.DANGEROUS,
                f"'{type_name}' object implements '{name}' interface",
                type_name,
                reason="Adding an interface may change how fragments resolve",
                object_type_name=type_name,
                added_interface_name=name,
            )
        )
    return changes


def _check_input_fields(
    old_type: GraphQLInputObjectType,
    new_type: GraphQLInputObjectType,
) -> List[SchemaChange]:
    """Check input object field changes."""
    changes: List[SchemaChange] = []
    type_name = old_type.name
    old_fields: Dict[str, GraphQLInputField] = old_type.fields
    new_fields: Dict[str, GraphQLInputField] = new_type.fields

    for field_name in old_fields:
        if field_name not in new_fields:
            changes.append(
                _change(
                    ChangeType.INPUT_FIELD_REMOVED,
                    CriticalityLevel.BREAKING,
                    f"Input field '{field_name}' was removed from input object type '{type_name}'",
                    f"{type_name}.{field_name}",
                    reason="Removing an input field breaks operations that use it",
                    input_name=type_name,
                    removed_field_name=field_name,
                )
            )

    for field_name, new_field in new_fields.items():
        path = f"{type_name}.{field_name}"
        if field_name not in old_fields:
            required = _is_required_input(new_field)
            changes.append(
                _change(
                    ChangeType.INPUT_FIELD_ADDED,
                    CriticalityLevel.BREAKING if required else CriticalityLevel.DANGEROUS,
                    f"Input field '{field_name}' of type '{new_field.type}' "
                    f"{'(required) ' if required else ''}was added to input object type '{type_name}'",
                    path,
                    reason="Adding a required input field is a breaking change" if required else None,
                    input_name=type_name,
                    added_input_field_name=field_name,
                    added_input_field_type=str(new_field.type),
                )
            )
            continue

        old_field = old_fields[field_name]
        old_type_str, new_type_str = str(old_field.type), str(new_field.type)
        if old_type_str != new_type_str:
            safe = is_safe_input_type_change(old_field.type, new_field.type)
            changes.append(
                _change(
                    ChangeType.INPUT_FIELD_TYPE_CHANGED,
                    CriticalityLevel.SAFE if safe else CriticalityLevel.BREAKING,
                    f"Input field '{path}' changed type from '{old_type_str}' to '{new_type_str}'",
                    path,
                    reason=None if safe else "Changing an input field type is a breaking change",
                    input_name=type_name,
                    input_field_name=field_name,
                    old_input_field_type=old_type_str,
                    new_input_field_type=new_type_str,
                )
            )

        old_default = _render_default(old_field.default_value, old_field.type)
        new_default = _render_default(new_field.default_value, new_field.type)
        if old_default != new_default:
            changes.append(
                _change(
                    ChangeType.INPUT_FIELD_DEFAULT_VALUE_CHANGED,
                    CriticalityLevel.DANGEROUS,
                    f"Input field '{path}' default value changed from '{old_default}' to '{new_default}'",
                    path,
                    reason="Changing a default value may change runtime behaviour",
                    input_name=type_name,
                    input_field_name=field_name,
                    old_default_value=old_default,
                    new_default_value=new_default,
                )
            )

        changes.extend(
            _check_description(
                old_field.description,
                new_field.description,
                path=path,
                subject=f"input field '{path}'",
                change_types=(
                    ChangeType.INPUT_FIELD_DESCRIPTION_ADDED,
                    ChangeType.INPUT_FIELD_DESCRIPTION_CHANGED,
                    ChangeType.INPUT_FIELD_DESCRIPTION_REMOVED,
                ),
                input_name=type_name,
                input_field_name=field_name,
            )
        )

    return changes


def _check_enum_values(old_type: GraphQLEnumType, new_type: GraphQLEnumType) -> List[SchemaChange]:
    """Check enum value changes."""
    changes: List[SchemaChange] = []
    enum_name = old_type.name

    for value_name in old_type.values:
        if value_name not in new_type.values:
            changes.append(
                _change(
                    ChangeType.ENUM_VALUE_REMOVED,
                    CriticalityLevel.BREAKING,
                    f"Enum value '{value_name}' was removed from enum '{enum_name}'",
                    f"{enum_name}.{value_name}",
                    reason="Removing an enum value breaks clients that send or expect it",
                    enum_name=enum_name,
                    removed_enum_value_name=value_name,
                )
            )

    for value_name, new_value in new_type.values.items():
        path = f"{enum_name}.{value_name}"
        if value_name not in old_type.values:
            changes.append(
                _change(
                    ChangeType.ENUM_VALUE_ADDED,
                    CriticalityLevel.DANGEROUS,
                    f"Enum value '{value_name}' was added to enum '{enum_name}'",
                    path,
                    reason="Clients may not handle the new value",
                    enum_name=enum_name,
                    added_enum_value_name=value_name,
                )
            )
            continue

        old_value = old_type.values[value_name]
        if (old_value.description or "") != (new_value.description or ""):
            changes.append(
                _change(
                    ChangeType.ENUM_VALUE_DESCRIPTION_CHANGED,
                    CriticalityLevel.SAFE,
                    f"Description '{new_value.description or ''}' was set on enum value '{path}'",
                    path,
                    enum_name=enum_name,
                    enum_value_name=value_name,
                    old_description=old_value.description,
                    new_description=new_value.description,
                )
            )

        old_reason, new_reason = old_value.deprecation_reason, new_value.deprecation_reason
        if old_reason is None and new_reason is not None:
            changes.append(
                _change(
                    ChangeType.ENUM_VALUE_DEPRECATION_REASON_ADDED,
                    CriticalityLevel.SAFE,
                    f"Enum value '{path}' was deprecated with reason '{new_reason}'",
                    path,
                    enum_name=enum_name,
                    enum_value_name=value_name,
                    added_deprecation_reason=new_reason,
                )
            )
        elif old_reason is not None and new_reason is None:
            changes.append(
                _change(
                    ChangeType.ENUM_VALUE_DEPRECATION_REASON_REMOVED,
                    CriticalityLevel.SAFE,
                    f"Deprecation reason was removed from enum value '{path}'",
                    path,
                    enum_name=enum_name,
                    enum_value_name=value_name,
                    removed_deprecation_reason=old_reason,
                )
            )
        elif old_reason is not None and old_reason != new_reason:
            changes.append(
                _change(
                    ChangeType.ENUM_VALUE_DEPRECATION_REASON_CHANGED,
                    CriticalityLevel.SAFE,
                    f"Enum value '{path}' deprecation reason changed from '{old_reason}' to '{new_reason}'",
                    path,
                    enum_name=enum_name,
                    enum_value_name=value_name,
                    old_deprecation_reason=old_reason,
                    new_deprecation_reason=new_reason,
                )
            )

    return changes


def _check_union_members(old_type: GraphQLUnionType, new_type: GraphQLUnionType) -> List[SchemaChange]:
    changes: List[SchemaChange] = []
    union_name = old_type.name
    old_members = {t.name for t in old_type.types}
    new_members = {t.name for t in new_type.types}

    for member in sorted(old_members - new_members):
        changes.append(
            _change(
                ChangeType.UNION_MEMBER_REMOVED,
                CriticalityLevel.BREAKING,
                f"Member '{member}' was removed from Union type '{union_name}'",
                union_name,
                reason="Removing a union member breaks fragments spread on it",
                union_name=union_name,
                removed_union_member_type_name=member,
            )
        )
    for member in sorted(new_members - old_members):
        changes.append(
            _change(
                ChangeType.UNION_MEMBER_ADDED,
                CriticalityLevel.DANGEROUS,
                f"Member '{member}' was added to Union type '{union_name}'",
                union_name,
                reason="Clients may not handle the new member",
                union_name=union_name,
                added_union_member_type_name=member,
            )
        )
    return changes


def _check_directives(
    old_directives: Dict[str, GraphQLDirective],
    new_directives: Dict[str, GraphQLDirective],
) -> List[SchemaChange]:
    """Check directive definition changes."""
    changes: List[SchemaChange] = []

    for name in old_directives:
        if name not in new_directives:
            changes.append(
                _change(
                    ChangeType.DIRECTIVE_REMOVED,
                    CriticalityLevel.BREAKING,
                    f"Directive '{name}' was removed",
                    f"@{name}",
                    reason="Removing a directive breaks operations that use it",
                    removed_directive_name=name,
                )
            )

    for name, new_directive in new_directives.items():
        path = f"@{name}"
        if name not in old_directives:
            changes.append(
                _change(
                    ChangeType.DIRECTIVE_ADDED,
                    CriticalityLevel.SAFE,
                    f"Directive '{name}' was added",
                    path,
                    added_directive_name=name,
                )
            )
            continue

        old_directive = old_directives[name]
        if (old_directive.description or "") != (new_directive.description or ""):
            changes.append(
                _change(
                    ChangeType.DIRECTIVE_DESCRIPTION_CHANGED,
                    CriticalityLevel.SAFE,
                    f"Directive '{name}' description changed from "
                    f"'{old_directive.description or ''}' to '{new_directive.description or ''}'",
                    path,
                    directive_name=name,
                    old_description=old_directive.description,
                    new_description=new_directive.description,
                )
            )

        old_locations = {loc.name for loc in old_directive.locations}
        new_locations = {loc.name for loc in new_directive.locations}
        for location in sorted(old_locations - new_locations):
            changes.append(
                _change(
                    ChangeType.DIRECTIVE_LOCATION_REMOVED,
                    CriticalityLevel.BREAKING,
                    f"Location '{location}' was removed from directive '{name}'",
                    path,
                    reason="Removing a directive location breaks operations that use it there",
                    directive_name=name,
                    removed_directive_location=location,
                )
            )
        for location in sorted(new_locations - old_locations):
            changes.append(
                _change(
                    ChangeType.DIRECTIVE_LOCATION_ADDED,
                    CriticalityLevel.SAFE,
                    f"Location '{location}' was added to directive '{name}'",
                    path,
                    directive_name=name,
                    added_directive_location=location,
                )
            )

        changes.extend(_check_directive_arguments(name, old_directive.args, new_directive.args))

    return changes


def _check_directive_arguments(
    directive_name: str,
    old_args: Dict[str, GraphQLArgument],
    new_args: Dict[str, GraphQLArgument],
) -> List[SchemaChange]:
    changes: List[SchemaChange] = []
    for arg_name in old_args:
        if arg_name not in new_args:
            changes.append(
                _change(
                    ChangeType.DIRECTIVE_ARGUMENT_REMOVED,
                    CriticalityLevel.BREAKING,
                    f"Argument '{arg_name}' was removed from directive '{directive_name}'",
                    f"@{directive_name}.{arg_name}",
                    reason="Removing a directive argument breaks operations that use it",
                    directive_name=directive_name,
                    removed_directive_argument_name=arg_name,
                )
            )

    for arg_name, new_arg in new_args.items():
        path = f"@{directive_name}.{arg_name}"
        if arg_name not in old_args:
            required = _is_required_input(new_arg)
            changes.append(
                _change(
                    ChangeType.DIRECTIVE_ARGUMENT_ADDED,
                    CriticalityLevel.BREAKING if required else CriticalityLevel.SAFE,
                    f"Argument '{arg_name}' was added to directive '{directive_name}'",
                    path,
                    reason="Adding a required directive argument is a breaking change"
                    if required
                    else None,
                    directive_name=directive_name,
                    added_directive_argument_name=arg_name,
                )
            )
            continue

        old_arg = old_args[arg_name]
        old_type_str, new_type_str = str(old_arg.type), str(new_arg.type)
        if old_type_str != new_type_str:
            safe = is_safe_input_type_change(old_arg.type, new_arg.type)
            changes.append(
                _change(
                    ChangeType.DIRECTIVE_ARGUMENT_TYPE_CHANGED,
                    CriticalityLevel.SAFE if safe else CriticalityLevel.BREAKING,
                    f"Type for argument '{arg_name}' on directive '{directive_name}' changed "
                    f"from '{old_type_str}' to '{new_type_str}'",
                    path,
                    directive_name=directive_name,
                    directive_argument_name=arg_name,
                    old_directive_argument_type=old_type_str,
                    new_directive_argument_type=new_type_str,
                )
            )

        old_default = _render_default(old_arg.default_value, old_arg.type)
        new_default = _render_default(new_arg.default_value, new_arg.type)
        if old_default != new_default:
            changes.append(
                _change(
                    ChangeType.DIRECTIVE_ARGUMENT_DEFAULT_VALUE_CHANGED,
                    CriticalityLevel.DANGEROUS,
                    f"Default value for argument '{arg_name}' on directive '{directive_name}' "
                    f"changed from '{old_default}' to '{new_default}'",
                    path,
                    directive_name=directive_name,
                    directive_argument_name=arg_name,
                    old_default_value=old_default,
                    new_default_value=new_default,
                )
            )
    return changes


# --- Coordinates -------------------------------------------------------------


@dataclass
class SchemaCoordinatesDiffResult:
    """Coordinate-level difference between two schemas.

    Attributes:
        added: Coordinates present only in the new schema
        deleted: Coordinates present only in the old schema
        deprecated: Coordinates deprecated in the new schema but not in the old one
        undeprecated: Coordinates deprecated in the old schema and kept undeprecated
    """

    added: Set[str] = field(default_factory=set)
    deleted: Set[str] = field(default_factory=set)
    deprecated: Set[str] = field(default_factory=set)
    undeprecated: Set[str] = field(default_factory=set)


def _collect_coordinates(schema: GraphQLSchema) -> Tuple[Set[str], Set[str]]:
    coordinates: Set[str] = set()
    deprecated: Set[str] = set()

    for name, named_type in _user_types(schema).items():
        coordinates.add(name)
        if isinstance(named_type, (GraphQLObjectType, GraphQLInterfaceType)):
            for field_name, gql_field in named_type.fields.items():
                field_coordinate = f"{name}.{field_name}"
                coordinates.add(field_coordinate)
                if gql_field.deprecation_reason is not None:
                    deprecated.add(field_coordinate)
                for arg_name, arg in gql_field.args.items():
                    arg_coordinate = f"{field_coordinate}.{arg_name}"
                    coordinates.add(arg_coordinate)
                    if getattr(arg, "deprecation_reason", None) is not None:
                        deprecated.add(arg_coordinate)
        elif isinstance(named_type, GraphQLInputObjectType):
            for field_name, input_field in named_type.fields.items():
                field_coordinate = f"{name}.{field_name}"
                coordinates.add(field_coordinate)
                if getattr(input_field, "deprecation_reason", None) is not None:
                    deprecated.add(field_coordinate)
        elif isinstance(named_type, GraphQLEnumType):
            for value_name, value in named_type.values.items():
                value_coordinate = f"{name}.{value_name}"
                coordinates.add(value_coordinate)
                if value.deprecation_reason is not None:
                    deprecated.add(value_coordinate)
        elif isinstance(named_type, GraphQLUnionType):
            for member in named_type.types:
                coordinates.add(f"{name}.{member.name}")

    return coordinates, deprecated


def diff_schema_coordinates(before: GraphQLSchema, after: GraphQLSchema) -> SchemaCoordinatesDiffResult:
    """Compute added / deleted / deprecated / undeprecated coordinates.

    A deleted deprecated coordinate is reported only as deleted. A newly
    added deprecated coordinate is reported as both added and deprecated.
    """
    before_all, before_deprecated = _collect_coordinates(before)
    after_all, after_deprecated = _collect_coordinates(after)

    return SchemaCoordinatesDiffResult(
        added=after_all - before_all,
        deleted=before_all - after_all,
        deprecated=after_deprecated - before_deprecated,
        undeprecated={c for c in before_deprecated if c in after_all and c not in after_deprecated},
    )


# --- Post-processing ---------------------------------------------------------


def normalize_description(description: Optional[str]) -> str:
    """Collapse all whitespace runs so formatting-only edits compare equal."""
    return " ".join((description or "").split())


def is_whitespace_only_description_change(change: SchemaChange) -> bool:
    """Whether a description change differs only in whitespace."""
    if not change.type.is_description_change:
        return False
    return normalize_description(change.meta.get("old_description")) == normalize_description(
        change.meta.get("new_description")
    )


def is_federation_change(change: SchemaChange) -> bool:
    """Whether a change only touches federation plumbing."""
    path = change.path or ""
    if path in FEDERATION_QUERY_FIELDS:
        return True
    if path.startswith("@"):
        directive_name = path[1:].split(".", 1)[0]
        return directive_name in FEDERATION_DIRECTIVE_NAMES or directive_name.startswith(
            FEDERATION_PREFIXES
        )
    type_name = path.split(".", 1)[0]
    if type_name in FEDERATION_TYPE_NAMES or type_name.startswith(FEDERATION_PREFIXES):
        return True
    member = change.meta.get("added_union_member_type_name") or change.meta.get(
        "removed_union_member_type_name"
    )
    return type_name == "_Entity" or (member is not None and member in FEDERATION_TYPE_NAMES)


def filter_out_federation_changes(changes: Sequence[SchemaChange]) -> List[SchemaChange]:
    return [c for c in changes if not is_federation_change(c)]


def detect_service_url_changes(
    schemas_before: Sequence[Any],
    schemas_after: Sequence[Any],
) -> List[SchemaChange]:
    """Report services whose registered url changed between two schema sets."""
    before_urls = {
        s.service_name: s.service_url for s in schemas_before if isinstance(s, PushedCompositeSchema)
    }
    changes: List[SchemaChange] = []
    for schema in schemas_after:
        if not isinstance(schema, PushedCompositeSchema) or schema.service_name not in before_urls:
            continue
        old_url = before_urls[schema.service_name]
        new_url = schema.service_url
        if old_url == new_url:
            continue
        if new_url:
            message = (
                f"[{schema.service_name}] New service url: '{new_url}' "
                f"(previously: '{old_url or 'none'}')"
            )
        else:
            message = f"[{schema.service_name}] Service url removed (previously: '{old_url or 'none'}')"
        changes.append(
            _change(
                ChangeType.REGISTRY_SERVICE_URL_CHANGED,
                CriticalityLevel.DANGEROUS,
                message,
                None,
                reason="The registry service url has changed",
                service_name=schema.service_name,
                old_service_url=old_url,
                new_service_url=new_url,
            )
        )
    return changes


@dataclass
class InspectorResult:
    """Changes plus the usage data that justified usage-based downgrades.

    Attributes:
        changes: All detected changes (after suppression and downgrades)
        usage: Usage data keyed by SchemaChange.id for breaking changes
            that were looked up
    """

    changes: List[SchemaChange]
    usage: Dict[str, "CoordinateUsage"] = field(default_factory=dict)


class Inspector:
    """Schema diff engine with registry-specific post-processing.

    Wraps `diff_schemas` with:
    - suppression of whitespace-only description changes
    - usage-based downgrade of breaking changes ("conditional breaking
      changes"), when a usage provider and a config are given

    Example:
        >>> inspector = Inspector()
        >>> result = await inspector.diff(old_schema, new_schema)
        >>> breaking = [c for c in result.changes if c.is_blocking]
    """

    def __init__(self, usage: Optional["UsageStatisticsProvider"] = None) -> None:
        self.usage = usage

    async def diff(
        self,
        existing: GraphQLSchema,
        incoming: GraphQLSchema,
        conditional_breaking_change_config: Optional[ConditionalBreakingChangeConfig] = None,
    ) -> InspectorResult:
        changes = [
            c for c in diff_schemas(existing, incoming) if not is_whitespace_only_description_change(c)
        ]

        if conditional_breaking_change_config is None or self.usage is None:
            return InspectorResult(changes=changes)

        return await self._apply_usage(changes, conditional_breaking_change_config)

    async def _apply_usage(
        self,
        changes: List[SchemaChange],
        config: ConditionalBreakingChangeConfig,
    ) -> InspectorResult:
        coordinates = sorted({c.path for c in changes if c.is_breaking and c.path})
        if not coordinates:
            return InspectorResult(changes=changes)

        report = await self.usage.get_coordinate_usage(coordinates=coordinates, config=config)

        result: List[SchemaChange] = []
        usage: Dict[str, CoordinateUsage] = {}
        for change in changes:
            if not change.is_breaking or not change.path:
                result.append(change)
                continue
            coordinate_usage = report.for_coordinate(change.path)
            usage[change.id] = coordinate_usage
            if report.is_safe(change.path, config.percentage):
                logger.debug(f"Breaking change on {change.path} is safe based on usage")
                result.append(change.mark_safe_based_on_usage())
            else:
                result.append(change)

        return InspectorResult(changes=result, usage=usage)
