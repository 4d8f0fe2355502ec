"""
Core type definitions for the schema registry.

This module defines the entities the registry reasons about:
- Organization / Project / Target: ownership hierarchy
- SingleSchema / PushedCompositeSchema / DeletedCompositeSchema: published units of SDL
- SchemaVersion: immutable snapshot of the schemas active on a target
- SchemaCheck: record of a check operation
- Contract / ContractVersion / ContractCheck: tag-filtered derived schemas

Invariants:
    - A SINGLE project has exactly one SingleSchema per version
    - A composite project has one schema per service name per version
    - SchemaVersion is never mutated except its legacy `is_composable` flag
    - SchemaCheck is mutated only by manual approval

How to change safely:
    - Add new optional fields at the end with defaults
    - Keep to_dict()/from_dict() symmetric for persisted records
    - Never reuse enum values, they are persisted

Example:
    >>> from gqlhub.registry_server.schema.types import PushedCompositeSchema
    >>> schema = PushedCompositeSchema(
    ...     id="s1", target="t1", author="kamil", sdl="type Query { a: String }",
    ...     commit="abc", date=0, service_name="users", service_url="http://users",
    ... )
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional, Tuple, Union

from .changes import SchemaChange


class ProjectType(Enum):
    """Supported project types."""

    SINGLE = "SINGLE"
    FEDERATION = "FEDERATION"
    STITCHING = "STITCHING"

    @property
    def is_composite(self) -> bool:
        """Whether the project is made of multiple named services."""
        return self in (ProjectType.FEDERATION, ProjectType.STITCHING)


class RegistryModelMode(Enum):
    """Registry model generation of a project."""

    LEGACY = "legacy"
    MODERN = "modern"


class CompositionErrorSource(Enum):
    """Where a composition error originates."""

    GRAPHQL = "graphql"  # syntax / validation
    COMPOSITION = "composition"  # semantic, e.g. type conflicts


@dataclass(frozen=True)
class OrganizationFeatureFlags:
    """Per-organization switches.

    Attributes:
        compare_to_previous_composable_version: Diff against the latest
            composable version instead of the latest version
    """

    compare_to_previous_composable_version: bool = False


@dataclass(frozen=True)
class Organization:
    id: str
    slug: str
    feature_flags: OrganizationFeatureFlags = field(default_factory=OrganizationFeatureFlags)


@dataclass(frozen=True)
class ExternalCompositionConfig:
    """Project-level external composition endpoint."""

    endpoint: str
    secret: str


@dataclass(frozen=True)
class Project:
    """A project groups targets sharing one project type.

    Attributes:
        id: Project identifier
        org_id: Owning organization
        slug: Human-readable identifier
        type: SINGLE, FEDERATION or STITCHING
        legacy_registry_model: Selects the legacy (gatekeeping) registry model
        external_composition: Optional external composition endpoint
        native_federation: Use the native federation composer
        git_repository: "owner/name" used for GitHub check runs
    """

    id: str
    org_id: str
    slug: str
    type: ProjectType
    legacy_registry_model: bool = False
    external_composition: Optional[ExternalCompositionConfig] = None
    native_federation: bool = False
    git_repository: Optional[str] = None

    @property
    def mode(self) -> RegistryModelMode:
        """Registry model generation used by this project."""
        return RegistryModelMode.LEGACY if self.legacy_registry_model else RegistryModelMode.MODERN


@dataclass(frozen=True)
class ConditionalBreakingChangeConfig:
    """Target setting: treat breaking changes on barely used coordinates as safe.

    Attributes:
        period_days: Trailing usage window
        percentage: Max share of requests (0-100) touching a coordinate
            for a breaking change on it to count as safe
        target_ids: Targets whose usage is taken into account
        excluded_clients: Client names whose usage is ignored
    """

    period_days: int
    percentage: float
    target_ids: Tuple[str, ...]
    excluded_clients: Tuple[str, ...] = ()


@dataclass(frozen=True)
class Target:
    id: str
    project_id: str
    org_id: str
    slug: str
    conditional_breaking_change: Optional[ConditionalBreakingChangeConfig] = None


@dataclass(frozen=True)
class SingleSchema:
    """The only schema of a SINGLE project version."""

    kind: ClassVar[str] = "single"
    action: ClassVar[str] = "PUSH"

    id: str
    target: str
    author: str
    sdl: str
    commit: str
    date: int
    metadata: Optional[str] = None

    @property
    def service_name(self) -> Optional[str]:
        return None

    @property
    def service_url(self) -> Optional[str]:
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "action": self.action,
            "id": self.id,
            "target": self.target,
            "author": self.author,
            "sdl": self.sdl,
            "commit": self.commit,
            "date": self.date,
            "metadata": self.metadata,
        }


@dataclass(frozen=True)
class PushedCompositeSchema:
    """A service schema of a FEDERATION or STITCHING project."""

    kind: ClassVar[str] = "composite"
    action: ClassVar[str] = "PUSH"

    id: str
    target: str
    author: str
    sdl: str
    commit: str
    date: int
    service_name: str
    service_url: Optional[str]
    metadata: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "action": self.action,
            "id": self.id,
            "target": self.target,
            "author": self.author,
            "sdl": self.sdl,
            "commit": self.commit,
            "date": self.date,
            "service_name": self.service_name,
            "service_url": self.service_url,
            "metadata": self.metadata,
        }


@dataclass(frozen=True)
class DeletedCompositeSchema:
    """Tombstone recording the removal of a service."""

    kind: ClassVar[str] = "composite"
    action: ClassVar[str] = "DELETE"

    id: str
    target: str
    date: int
    service_name: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "action": self.action,
            "id": self.id,
            "target": self.target,
            "date": self.date,
            "service_name": self.service_name,
        }


Schema = Union[SingleSchema, PushedCompositeSchema]


def schema_from_dict(data: Dict[str, Any]) -> Union[Schema, DeletedCompositeSchema]:
    """Create a schema record from its dictionary representation."""
    if data["kind"] == "single":
        return SingleSchema(
            id=data["id"],
            target=data["target"],
            author=data["author"],
            sdl=data["sdl"],
            commit=data["commit"],
            date=data["date"],
            metadata=data.get("metadata"),
        )
    if data.get("action") == "DELETE":
        return DeletedCompositeSchema(
            id=data["id"],
            target=data["target"],
            date=data["date"],
            service_name=data["service_name"],
        )
    return PushedCompositeSchema(
        id=data["id"],
        target=data["target"],
        author=data["author"],
        sdl=data["sdl"],
        commit=data["commit"],
        date=data["date"],
        service_name=data["service_name"],
        service_url=data.get("service_url"),
        metadata=data.get("metadata"),
    )


@dataclass(frozen=True)
class SchemaCompositionError:
    """An error reported by the composition orchestrator."""

    message: str
    source: CompositionErrorSource = CompositionErrorSource.GRAPHQL

    def to_dict(self) -> Dict[str, str]:
        return {"message": self.message, "source": self.source.value}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> SchemaCompositionError:
        return cls(
            message=data["message"],
            source=CompositionErrorSource(data.get("source", "graphql")),
        )


@dataclass(frozen=True)
class SchemaError:
    """A user-facing error line (composition error, breaking change, ...)."""

    message: str
    path: Optional[str] = None


@dataclass(frozen=True)
class SchemaPolicyRecord:
    """A single policy rule result.

    Attributes:
        message: Rule message
        rule_id: Policy rule that produced it (None for engine-level messages)
        line: Line in the SDL, if known
        column: Column in the SDL, if known
    """

    message: str
    rule_id: Optional[str] = None
    line: Optional[int] = None
    column: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "message": self.message,
            "rule_id": self.rule_id,
            "line": self.line,
            "column": self.column,
        }


@dataclass(frozen=True)
class SchemaVersion:
    """Immutable snapshot of the schemas active on a target.

    Attributes:
        id: Version identifier
        target_id: Owning target
        created_at: Creation time (unix milliseconds)
        is_composable: Whether the schemas composed (legacy: "valid")
        schema_ids: Ids of the schemas belonging to this version
        action_schema_id: The schema pushed or deleted to create this version
        base_schema: Base SDL prepended to the schemas at composition time
        composite_schema_sdl: Composed public SDL (None when not composable)
        supergraph_sdl: Federation supergraph (None for other project types)
        schema_composition_errors: Errors when not composable
        previous_schema_version_id: The version that was latest before this one
        diff_schema_version_id: The version the persisted changes were computed against
        has_persisted_schema_changes: Changes were computed at publish time
        github_repository: Repository of the publishing commit
        github_sha: Publishing commit sha
    """

    id: str
    target_id: str
    created_at: int
    is_composable: bool
    schema_ids: Tuple[str, ...] = ()
    action_schema_id: Optional[str] = None
    base_schema: Optional[str] = None
    composite_schema_sdl: Optional[str] = None
    supergraph_sdl: Optional[str] = None
    schema_composition_errors: Optional[Tuple[SchemaCompositionError, ...]] = None
    previous_schema_version_id: Optional[str] = None
    diff_schema_version_id: Optional[str] = None
    has_persisted_schema_changes: bool = False
    github_repository: Optional[str] = None
    github_sha: Optional[str] = None

    @property
    def valid(self) -> bool:
        """Legacy name of `is_composable`."""
        return self.is_composable

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "target_id": self.target_id,
            "created_at": self.created_at,
            "is_composable": self.is_composable,
            "schema_ids": list(self.schema_ids),
            "action_schema_id": self.action_schema_id,
            "composite_schema_sdl": self.composite_schema_sdl,
            "supergraph_sdl": self.supergraph_sdl,
            "schema_composition_errors": [e.to_dict() for e in self.schema_composition_errors]
            if self.schema_composition_errors
            else None,
            "previous_schema_version_id": self.previous_schema_version_id,
            "diff_schema_version_id": self.diff_schema_version_id,
            "has_persisted_schema_changes": self.has_persisted_schema_changes,
        }


@dataclass(frozen=True)
class Contract:
    """A named, persistent tag filter producing a derived public schema."""

    id: str
    target_id: str
    contract_name: str
    include_tags: Optional[Tuple[str, ...]] = None
    exclude_tags: Optional[Tuple[str, ...]] = None
    remove_unreachable_types_from_public_api_schema: bool = False
    is_disabled: bool = False
    created_at: int = 0


@dataclass(frozen=True)
class ContractVersion:
    """Composition result of one contract for one schema version."""

    id: str
    schema_version_id: str
    contract_id: str
    contract_name: str
    created_at: int
    composite_schema_sdl: Optional[str] = None
    supergraph_sdl: Optional[str] = None
    schema_composition_errors: Optional[Tuple[SchemaCompositionError, ...]] = None
    schema_changes: Optional[Tuple[SchemaChange, ...]] = None

    @property
    def is_composable(self) -> bool:
        return not self.schema_composition_errors and self.supergraph_sdl is not None


@dataclass(frozen=True)
class ContractCheck:
    """Outcome of checking one contract as part of a schema check."""

    contract_id: str
    contract_name: str
    is_success: bool
    compared_contract_version_id: Optional[str] = None
    composite_schema_sdl: Optional[str] = None
    supergraph_sdl: Optional[str] = None
    schema_composition_errors: Optional[Tuple[SchemaCompositionError, ...]] = None
    breaking_schema_changes: Optional[Tuple[SchemaChange, ...]] = None
    safe_schema_changes: Optional[Tuple[SchemaChange, ...]] = None


@dataclass(frozen=True)
class SchemaCheck:
    """Record of a single check operation.

    Attributes:
        id: Check identifier
        target_id: Checked target
        created_at: Creation time (unix milliseconds)
        schema_sdl: The incoming SDL
        service_name: Checked service (composite projects)
        is_success: Whether the check succeeded (or was approved)
        schema_version_id: Version the check was compared against
        context_id: Groups checks of one PR for approval reuse
        expires_at: Retention deadline (None = kept forever)
    """

    id: str
    target_id: str
    created_at: int
    schema_sdl: str
    is_success: bool
    service_name: Optional[str] = None
    meta: Optional[Dict[str, str]] = None
    schema_version_id: Optional[str] = None
    composite_schema_sdl: Optional[str] = None
    supergraph_sdl: Optional[str] = None
    schema_composition_errors: Optional[Tuple[SchemaCompositionError, ...]] = None
    breaking_schema_changes: Optional[Tuple[SchemaChange, ...]] = None
    safe_schema_changes: Optional[Tuple[SchemaChange, ...]] = None
    schema_policy_warnings: Optional[Tuple[SchemaPolicyRecord, ...]] = None
    schema_policy_errors: Optional[Tuple[SchemaPolicyRecord, ...]] = None
    is_manually_approved: bool = False
    manual_approval_user_id: Optional[str] = None
    manual_approval_comment: Optional[str] = None
    github_check_run_id: Optional[int] = None
    github_repository: Optional[str] = None
    github_sha: Optional[str] = None
    context_id: Optional[str] = None
    expires_at: Optional[int] = None
    contract_checks: Optional[Tuple[ContractCheck, ...]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "target_id": self.target_id,
            "created_at": self.created_at,
            "service_name": self.service_name,
            "is_success": self.is_success,
            "schema_version_id": self.schema_version_id,
            "breaking_schema_changes": _changes_to_list(self.breaking_schema_changes),
            "safe_schema_changes": _changes_to_list(self.safe_schema_changes),
            "schema_composition_errors": [e.to_dict() for e in self.schema_composition_errors]
            if self.schema_composition_errors
            else None,
            "is_manually_approved": self.is_manually_approved,
            "context_id": self.context_id,
            "expires_at": self.expires_at,
        }


def _changes_to_list(changes: Optional[Tuple[SchemaChange, ...]]) -> Optional[List[Dict[str, Any]]]:
    if changes is None:
        return None
    return [c.to_dict() for c in changes]
