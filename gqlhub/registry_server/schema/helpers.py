"""
Helpers for building candidate schema sets.

Invariants:
    - swap_services never mutates its input sequence
    - A composite schema set contains at most one schema per service name
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import List, Optional, Sequence, Tuple, Union

from ..errors import RegistryInvariantError
from ..orchestrator.base import SchemaObject
from .types import PushedCompositeSchema, Schema, SingleSchema


@dataclass(frozen=True)
class SwapResult:
    """Outcome of swapping a service into a schema set.

    Attributes:
        schemas: The candidate schema set
        existing: The schema that was replaced, if the service existed
    """

    schemas: List[PushedCompositeSchema]
    existing: Optional[PushedCompositeSchema]


def swap_services(
    schemas: Sequence[PushedCompositeSchema],
    new_schema: PushedCompositeSchema,
) -> SwapResult:
    """Replace the schema with the same service name, or append it.

    Example:
        >>> result = swap_services(latest.schemas, incoming)
        >>> result.existing is None  # new service
        True
    """
    existing: Optional[PushedCompositeSchema] = None
    swapped: List[PushedCompositeSchema] = []

    for schema in schemas:
        if schema.service_name == new_schema.service_name:
            existing = schema
            swapped.append(new_schema)
        else:
            swapped.append(schema)

    if existing is None:
        swapped.append(new_schema)

    return SwapResult(schemas=swapped, existing=existing)


def extend_with_base(schemas: Sequence[Schema], base_schema: Optional[str]) -> List[Schema]:
    """Prepend the target's base schema to the first schema of the set."""
    if not base_schema:
        return list(schemas)
    return [
        replace(schema, sdl=f"{base_schema} {schema.sdl}") if index == 0 else schema
        for index, schema in enumerate(schemas)
    ]


def ensure_single_schema(schemas: Sequence[Union[Schema, object]]) -> SingleSchema:
    if len(schemas) != 1:
        raise RegistryInvariantError(f"Expected exactly one schema, got {len(schemas)}")
    schema = schemas[0]
    if not isinstance(schema, SingleSchema):
        raise RegistryInvariantError("Expected a single schema")
    return schema


def ensure_composite_schemas(schemas: Sequence[Union[Schema, object]]) -> List[PushedCompositeSchema]:
    composite: List[PushedCompositeSchema] = []
    for schema in schemas:
        if not isinstance(schema, PushedCompositeSchema):
            raise RegistryInvariantError("Expected composite schemas only")
        composite.append(schema)
    return composite


def create_schema_object(schema: Schema) -> SchemaObject:
    """Convert a schema record into the shape orchestrators consume."""
    if isinstance(schema, PushedCompositeSchema):
        return SchemaObject(raw=schema.sdl, source=schema.service_name, url=schema.service_url)
    return SchemaObject(raw=schema.sdl, source="single")


def create_schema_objects(
    schemas: Sequence[Schema],
    base_schema: Optional[str] = None,
) -> Tuple[SchemaObject, ...]:
    return tuple(create_schema_object(s) for s in extend_with_base(schemas, base_schema))
