"""
Base protocol and types for registry persistence.

The registry core never talks to a database directly. It goes through
the Storage protocol defined here. Production deployments back it with a
relational database (outside this package); InMemoryStorage backs tests
and local development.

Invariants:
    - Versions of a target form a list ordered by creation; "latest" and
      "latest composable" are derived from it, never stored separately
    - create_version / delete_schema are atomic: the action callback runs
      after the write is staged and before it becomes visible; if the
      callback raises, nothing is written
    - Schema records are immutable once stored, except service renames

How to change safely:
    - Protocol changes require updating all implementations
    - New input fields get defaults so callers keep working
"""

from __future__ import annotations

from abc import abstractmethod
from dataclasses import dataclass
from typing import (
    Awaitable,
    Callable,
    Dict,
    List,
    Optional,
    Protocol,
    Sequence,
    Tuple,
    runtime_checkable,
)
import logging

from ..schema.changes import SchemaChange
from ..schema.types import (
    Contract,
    ContractVersion,
    DeletedCompositeSchema,
    Organization,
    Project,
    Schema,
    SchemaCheck,
    SchemaCompositionError,
    SchemaVersion,
    Target,
)

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class DuplicateEntityError(StorageError):
    """A uniqueness constraint was violated."""
    pass


@dataclass(frozen=True)
class CreateContractVersionInput:
    """Composition result of one contract, stored with a new schema version."""

    contract_id: str
    contract_name: str
    composite_schema_sdl: Optional[str] = None
    supergraph_sdl: Optional[str] = None
    schema_composition_errors: Optional[Tuple[SchemaCompositionError, ...]] = None
    changes: Optional[Tuple[SchemaChange, ...]] = None


@dataclass(frozen=True)
class CreateVersionInput:
    """Everything persisted for a new schema version.

    Attributes:
        target_id: Owning target
        schema: The pushed schema (already carrying its final id)
        schemas: All schemas of the new version, `schema` included
        is_composable: Whether composition succeeded
        base_schema: Base SDL used at composition time
        composite_schema_sdl: Composed public SDL
        supergraph_sdl: Federation supergraph
        schema_composition_errors: Errors when not composable
        changes: Changes against `diff_schema_version_id`
        diff_schema_version_id: The version changes were computed against
        github_repository: Repository of the publishing commit
        github_sha: Publishing commit sha
        contracts: Contract versions to store with the schema version
    """

    target_id: str
    schema: Schema
    schemas: Tuple[Schema, ...]
    is_composable: bool
    base_schema: Optional[str] = None
    composite_schema_sdl: Optional[str] = None
    supergraph_sdl: Optional[str] = None
    schema_composition_errors: Optional[Tuple[SchemaCompositionError, ...]] = None
    changes: Optional[Tuple[SchemaChange, ...]] = None
    diff_schema_version_id: Optional[str] = None
    github_repository: Optional[str] = None
    github_sha: Optional[str] = None
    contracts: Optional[Tuple[CreateContractVersionInput, ...]] = None


@dataclass(frozen=True)
class DeleteSchemaInput:
    """Everything persisted when a service is removed from a target."""

    target_id: str
    tombstone: DeletedCompositeSchema
    schemas: Tuple[Schema, ...]
    is_composable: bool
    base_schema: Optional[str] = None
    composite_schema_sdl: Optional[str] = None
    supergraph_sdl: Optional[str] = None
    schema_composition_errors: Optional[Tuple[SchemaCompositionError, ...]] = None
    changes: Optional[Tuple[SchemaChange, ...]] = None
    diff_schema_version_id: Optional[str] = None
    contracts: Optional[Tuple[CreateContractVersionInput, ...]] = None


VersionAction = Callable[[SchemaVersion], Awaitable[None]]


@runtime_checkable
class Storage(Protocol):
    """Persistence protocol consumed by the registry core."""

    # Ownership hierarchy

    @abstractmethod
    async def get_organization(self, organization_id: str) -> Optional[Organization]:
        ...

    @abstractmethod
    async def get_project(self, project_id: str) -> Optional[Project]:
        ...

    @abstractmethod
    async def get_target(self, target_id: str) -> Optional[Target]:
        ...

    @abstractmethod
    async def get_base_schema(self, target_id: str) -> Optional[str]:
        ...

    @abstractmethod
    async def update_base_schema(self, target_id: str, base_schema: Optional[str]) -> None:
        ...

    # Versions

    @abstractmethod
    async def get_latest_version(self, target_id: str) -> Optional[SchemaVersion]:
        ...

    @abstractmethod
    async def get_latest_composable_version(self, target_id: str) -> Optional[SchemaVersion]:
        ...

    @abstractmethod
    async def get_version(self, version_id: str) -> Optional[SchemaVersion]:
        ...

    @abstractmethod
    async def get_versions(self, target_id: str) -> List[SchemaVersion]:
        """All versions of a target, oldest first."""
        ...

    @abstractmethod
    async def get_schemas_of_version(self, version_id: str) -> List[Schema]:
        ...

    @abstractmethod
    async def get_schema_changes(self, version_id: str) -> Optional[List[SchemaChange]]:
        """Persisted changes of a version, None when never computed."""
        ...

    @abstractmethod
    async def has_schema_with_commit(
        self,
        target_id: str,
        commit: str,
        service_name: Optional[str] = None,
    ) -> bool:
        ...

    @abstractmethod
    async def create_version(self, input: CreateVersionInput, action: VersionAction) -> SchemaVersion:
        """Atomically create a version, running `action` before it becomes visible.

        Raises:
            Whatever `action` raises; the version is then not created.
        """
        ...

    @abstractmethod
    async def delete_schema(self, input: DeleteSchemaInput, action: VersionAction) -> SchemaVersion:
        """Atomically record a service removal as a new version."""
        ...

    @abstractmethod
    async def update_version_status(self, version_id: str, is_composable: bool) -> SchemaVersion:
        ...

    @abstractmethod
    async def update_service_name(self, target_id: str, old_name: str, new_name: str) -> None:
        ...

    # Checks

    @abstractmethod
    async def create_schema_check(self, check: SchemaCheck) -> SchemaCheck:
        ...

    @abstractmethod
    async def get_schema_check(self, check_id: str) -> Optional[SchemaCheck]:
        ...

    @abstractmethod
    async def update_schema_check(self, check: SchemaCheck) -> SchemaCheck:
        ...

    @abstractmethod
    async def purge_expired_schema_checks(self, now: int) -> int:
        """Delete checks whose `expires_at` passed. Returns the number removed."""
        ...

    @abstractmethod
    async def get_approved_schema_changes(
        self,
        target_id: str,
        context_id: str,
    ) -> Dict[str, SchemaChange]:
        """Changes approved within a context, keyed by change id."""
        ...

    @abstractmethod
    async def save_approved_schema_changes(
        self,
        target_id: str,
        context_id: str,
        changes: Sequence[SchemaChange],
    ) -> None:
        ...

    # Contracts

    @abstractmethod
    async def create_contract(self, contract: Contract) -> Contract:
        """Raises DuplicateEntityError when the name is taken on the target."""
        ...

    @abstractmethod
    async def get_contract(self, contract_id: str) -> Optional[Contract]:
        ...

    @abstractmethod
    async def disable_contract(self, contract_id: str) -> Contract:
        ...

    @abstractmethod
    async def get_contracts(self, target_id: str, include_disabled: bool = False) -> List[Contract]:
        """Contracts of a target, oldest first."""
        ...

    @abstractmethod
    async def get_contract_versions(self, schema_version_id: str) -> List[ContractVersion]:
        ...

    @abstractmethod
    async def get_latest_valid_contract_version(self, contract_id: str) -> Optional[ContractVersion]:
        ...
