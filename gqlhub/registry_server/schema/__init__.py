"""
Schema module for the GQLHub registry.

This module provides the registry's view of GraphQL schemas:
- Entities (projects, targets, schemas, versions, checks, contracts)
- Schema change records and their criticality
- Checksums used to short-circuit unchanged publishes
- The structural diff engine (Inspector) and coordinate diffs

Invariants:
    - Checksums are insensitive to definition and field order
    - SchemaChange ids are stable across detections
    - Description changes differing only in whitespace are never reported

How to change safely:
    - Add new change types at the end of ChangeType
    - Keep to_dict()/from_dict() symmetric for persisted records
    - Import `schema.helpers` directly, it depends on the orchestrator layer
"""

from .autofix import auto_fix_composite_schema_sdl
from .changes import ApprovalMetadata, ChangeType, CriticalityLevel, SchemaChange
from .checksum import create_checksum, create_checksum_from_schemas, hash_object, print_sorted_sdl
from .inspector import (
    Inspector,
    InspectorResult,
    SchemaCoordinatesDiffResult,
    diff_schema_coordinates,
    diff_schemas,
)
from .types import (
    CompositionErrorSource,
    ConditionalBreakingChangeConfig,
    Contract,
    ContractCheck,
    ContractVersion,
    DeletedCompositeSchema,
    ExternalCompositionConfig,
    Organization,
    OrganizationFeatureFlags,
    Project,
    ProjectType,
    PushedCompositeSchema,
    RegistryModelMode,
    Schema,
    SchemaCheck,
    SchemaCompositionError,
    SchemaPolicyRecord,
    SchemaVersion,
    SingleSchema,
    Target,
)

__all__ = [
    # Types
    "ProjectType",
    "RegistryModelMode",
    "CompositionErrorSource",
    "ConditionalBreakingChangeConfig",
    "Organization",
    "OrganizationFeatureFlags",
    "ExternalCompositionConfig",
    "Project",
    "Target",
    "Schema",
    "SingleSchema",
    "PushedCompositeSchema",
    "DeletedCompositeSchema",
    "SchemaVersion",
    "SchemaCheck",
    "SchemaCompositionError",
    "SchemaPolicyRecord",
    "Contract",
    "ContractVersion",
    "ContractCheck",
    # Changes
    "ApprovalMetadata",
    "ChangeType",
    "CriticalityLevel",
    "SchemaChange",
    # Checksums
    "create_checksum",
    "create_checksum_from_schemas",
    "hash_object",
    "print_sorted_sdl",
    # Diffing
    "Inspector",
    "InspectorResult",
    "SchemaCoordinatesDiffResult",
    "diff_schemas",
    "diff_schema_coordinates",
    # Read repair
    "auto_fix_composite_schema_sdl",
]
