"""
In-memory registry storage.

This module provides a complete Storage implementation for:
- Unit and integration tests
- Local development without a database

Invariants:
    - All data is lost on process exit
    - Writes are serialized by a single asyncio lock, so create_version
      and delete_schema are atomic with respect to each other
    - A failing version action leaves no trace

How to change safely:
    - Keep behavior aligned with the Storage protocol docstrings, tests
      rely on this class behaving like the production backend
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import replace
from typing import Dict, List, Optional, Sequence, Tuple, Union

from ..errors import NotFoundError
from ..schema.changes import SchemaChange
from ..schema.types import (
    Contract,
    ContractVersion,
    DeletedCompositeSchema,
    Organization,
    Project,
    PushedCompositeSchema,
    Schema,
    SchemaCheck,
    SchemaCompositionError,
    SchemaVersion,
    Target,
)
from .base import (
    CreateContractVersionInput,
    CreateVersionInput,
    DeleteSchemaInput,
    DuplicateEntityError,
    VersionAction,
)

logger = logging.getLogger(__name__)

SchemaRecord = Union[Schema, DeletedCompositeSchema]


def _now_ms() -> int:
    return int(time.time() * 1000)


class InMemoryStorage:
    """In-memory implementation of the Storage protocol.

    Example:
        >>> storage = InMemoryStorage()
        >>> storage.add_organization(Organization(id="org", slug="acme"))
        >>> storage.add_project(Project(id="p", org_id="org", slug="api", type=ProjectType.FEDERATION))
        >>> storage.add_target(Target(id="t", project_id="p", org_id="org", slug="production"))
        >>> await storage.get_latest_version("t") is None
        True
    """

    def __init__(self) -> None:
        self._organizations: Dict[str, Organization] = {}
        self._projects: Dict[str, Project] = {}
        self._targets: Dict[str, Target] = {}
        self._base_schemas: Dict[str, Optional[str]] = {}

        self._schemas: Dict[str, SchemaRecord] = {}
        self._versions: Dict[str, List[SchemaVersion]] = {}
        self._versions_by_id: Dict[str, SchemaVersion] = {}
        self._changes: Dict[str, List[SchemaChange]] = {}

        self._checks: Dict[str, SchemaCheck] = {}
        self._approved: Dict[Tuple[str, str], Dict[str, SchemaChange]] = {}

        self._contracts: Dict[str, Contract] = {}
        self._contract_versions: Dict[str, List[ContractVersion]] = {}
        self._contract_versions_by_contract: Dict[str, List[ContractVersion]] = {}

        self._lock = asyncio.Lock()

    # Seeding (not part of the protocol)

    def add_organization(self, organization: Organization) -> Organization:
        self._organizations[organization.id] = organization
        return organization

    def add_project(self, project: Project) -> Project:
        self._projects[project.id] = project
        return project

    def add_target(self, target: Target) -> Target:
        self._targets[target.id] = target
        self._versions.setdefault(target.id, [])
        return target

    # Ownership hierarchy

    async def get_organization(self, organization_id: str) -> Optional[Organization]:
        return self._organizations.get(organization_id)

    async def get_project(self, project_id: str) -> Optional[Project]:
        return self._projects.get(project_id)

    async def get_target(self, target_id: str) -> Optional[Target]:
        return self._targets.get(target_id)

    async def get_base_schema(self, target_id: str) -> Optional[str]:
        return self._base_schemas.get(target_id)

    async def update_base_schema(self, target_id: str, base_schema: Optional[str]) -> None:
        self._base_schemas[target_id] = base_schema

    # Versions

    async def get_latest_version(self, target_id: str) -> Optional[SchemaVersion]:
        versions = self._versions.get(target_id) or []
        return versions[-1] if versions else None

    async def get_latest_composable_version(self, target_id: str) -> Optional[SchemaVersion]:
        for version in reversed(self._versions.get(target_id) or []):
            if version.is_composable:
                return version
        return None

    async def get_version(self, version_id: str) -> Optional[SchemaVersion]:
        return self._versions_by_id.get(version_id)

    async def get_versions(self, target_id: str) -> List[SchemaVersion]:
        return list(self._versions.get(target_id) or [])

    async def get_schemas_of_version(self, version_id: str) -> List[Schema]:
        version = self._versions_by_id.get(version_id)
        if version is None:
            raise NotFoundError("SchemaVersion", version_id)
        schemas: List[Schema] = []
        for schema_id in version.schema_ids:
            record = self._schemas[schema_id]
            if not isinstance(record, DeletedCompositeSchema):
                schemas.append(record)
        return schemas

    async def get_schema_changes(self, version_id: str) -> Optional[List[SchemaChange]]:
        changes = self._changes.get(version_id)
        return list(changes) if changes is not None else None

    async def has_schema_with_commit(
        self,
        target_id: str,
        commit: str,
        service_name: Optional[str] = None,
    ) -> bool:
        for record in self._schemas.values():
            if isinstance(record, DeletedCompositeSchema) or record.target != target_id:
                continue
            if record.commit == commit and record.service_name == service_name:
                return True
        return False

    def _stage_version(
        self,
        target_id: str,
        action_schema_id: str,
        schemas: Sequence[Schema],
        is_composable: bool,
        base_schema: Optional[str],
        composite_schema_sdl: Optional[str],
        supergraph_sdl: Optional[str],
        schema_composition_errors: Optional[Tuple[SchemaCompositionError, ...]],
        changes: Optional[Sequence[SchemaChange]],
        diff_schema_version_id: Optional[str],
        github_repository: Optional[str] = None,
        github_sha: Optional[str] = None,
    ) -> SchemaVersion:
        versions = self._versions.get(target_id) or []
        return SchemaVersion(
            id=str(uuid.uuid4()),
            target_id=target_id,
            created_at=_now_ms(),
            is_composable=is_composable,
            schema_ids=tuple(s.id for s in schemas),
            action_schema_id=action_schema_id,
            base_schema=base_schema,
            composite_schema_sdl=composite_schema_sdl,
            supergraph_sdl=supergraph_sdl,
            schema_composition_errors=schema_composition_errors,
            previous_schema_version_id=versions[-1].id if versions else None,
            diff_schema_version_id=diff_schema_version_id,
            has_persisted_schema_changes=changes is not None,
            github_repository=github_repository,
            github_sha=github_sha,
        )

    def _stage_contract_versions(
        self,
        version: SchemaVersion,
        contracts: Optional[Sequence[CreateContractVersionInput]],
    ) -> List[ContractVersion]:
        return [
            ContractVersion(
                id=str(uuid.uuid4()),
                schema_version_id=version.id,
                contract_id=c.contract_id,
                contract_name=c.contract_name,
                created_at=version.created_at,
                composite_schema_sdl=c.composite_schema_sdl,
                supergraph_sdl=c.supergraph_sdl,
                schema_composition_errors=c.schema_composition_errors,
                schema_changes=c.changes,
            )
            for c in contracts or ()
        ]

    def _commit_version(
        self,
        version: SchemaVersion,
        records: Sequence[SchemaRecord],
        changes: Optional[Sequence[SchemaChange]],
        contract_versions: Sequence[ContractVersion],
    ) -> None:
        for record in records:
            self._schemas.setdefault(record.id, record)
        self._versions.setdefault(version.target_id, []).append(version)
        self._versions_by_id[version.id] = version
        if changes is not None:
            self._changes[version.id] = list(changes)
        self._contract_versions[version.id] = list(contract_versions)
        for contract_version in contract_versions:
            self._contract_versions_by_contract.setdefault(contract_version.contract_id, []).append(
                contract_version
            )

    async def create_version(self, input: CreateVersionInput, action: VersionAction) -> SchemaVersion:
        async with self._lock:
            version = self._stage_version(
                target_id=input.target_id,
                action_schema_id=input.schema.id,
                schemas=input.schemas,
                is_composable=input.is_composable,
                base_schema=input.base_schema,
                composite_schema_sdl=input.composite_schema_sdl,
                supergraph_sdl=input.supergraph_sdl,
                schema_composition_errors=input.schema_composition_errors,
                changes=input.changes,
                diff_schema_version_id=input.diff_schema_version_id,
                github_repository=input.github_repository,
                github_sha=input.github_sha,
            )
            contract_versions = self._stage_contract_versions(version, input.contracts)

            await action(version)

            self._commit_version(version, input.schemas, input.changes, contract_versions)
            logger.debug("Created schema version", extra={"version_id": version.id})
            return version

    async def delete_schema(self, input: DeleteSchemaInput, action: VersionAction) -> SchemaVersion:
        async with self._lock:
            version = self._stage_version(
                target_id=input.target_id,
                action_schema_id=input.tombstone.id,
                schemas=input.schemas,
                is_composable=input.is_composable,
                base_schema=input.base_schema,
                composite_schema_sdl=input.composite_schema_sdl,
                supergraph_sdl=input.supergraph_sdl,
                schema_composition_errors=input.schema_composition_errors,
                changes=input.changes,
                diff_schema_version_id=input.diff_schema_version_id,
            )
            contract_versions = self._stage_contract_versions(version, input.contracts)

            await action(version)

            self._commit_version(
                version,
                [*input.schemas, input.tombstone],
                input.changes,
                contract_versions,
            )
            logger.debug("Recorded service removal", extra={"version_id": version.id})
            return version

    async def update_version_status(self, version_id: str, is_composable: bool) -> SchemaVersion:
        async with self._lock:
            version = self._versions_by_id.get(version_id)
            if version is None:
                raise NotFoundError("SchemaVersion", version_id)
            updated = replace(version, is_composable=is_composable)
            self._versions_by_id[version_id] = updated
            versions = self._versions[version.target_id]
            versions[versions.index(version)] = updated
            return updated

    async def update_service_name(self, target_id: str, old_name: str, new_name: str) -> None:
        async with self._lock:
            for schema_id, record in list(self._schemas.items()):
                if (
                    isinstance(record, (PushedCompositeSchema, DeletedCompositeSchema))
                    and record.target == target_id
                    and record.service_name == old_name
                ):
                    self._schemas[schema_id] = replace(record, service_name=new_name)

    # Checks

    async def create_schema_check(self, check: SchemaCheck) -> SchemaCheck:
        self._checks[check.id] = check
        return check

    async def get_schema_check(self, check_id: str) -> Optional[SchemaCheck]:
        return self._checks.get(check_id)

    async def update_schema_check(self, check: SchemaCheck) -> SchemaCheck:
        if check.id not in self._checks:
            raise NotFoundError("SchemaCheck", check.id)
        self._checks[check.id] = check
        return check

    async def purge_expired_schema_checks(self, now: int) -> int:
        expired = [
            check_id
            for check_id, check in self._checks.items()
            if check.expires_at is not None and check.expires_at <= now
        ]
        for check_id in expired:
            del self._checks[check_id]
        return len(expired)

    async def get_approved_schema_changes(self, target_id: str, context_id: str) -> Dict[str, SchemaChange]:
        return dict(self._approved.get((target_id, context_id), {}))

    async def save_approved_schema_changes(
        self,
        target_id: str,
        context_id: str,
        changes: Sequence[SchemaChange],
    ) -> None:
        approved = self._approved.setdefault((target_id, context_id), {})
        for change in changes:
            approved.setdefault(change.id, change)

    # Contracts

    async def create_contract(self, contract: Contract) -> Contract:
        async with self._lock:
            for existing in self._contracts.values():
                if existing.target_id == contract.target_id and existing.contract_name == contract.contract_name:
                    raise DuplicateEntityError(
                        f"Contract '{contract.contract_name}' already exists on target {contract.target_id}"
                    )
            self._contracts[contract.id] = contract
            return contract

    async def get_contract(self, contract_id: str) -> Optional[Contract]:
        return self._contracts.get(contract_id)

    async def disable_contract(self, contract_id: str) -> Contract:
        contract = self._contracts.get(contract_id)
        if contract is None:
            raise NotFoundError("Contract", contract_id)
        disabled = replace(contract, is_disabled=True)
        self._contracts[contract_id] = disabled
        return disabled

    async def get_contracts(self, target_id: str, include_disabled: bool = False) -> List[Contract]:
        contracts = [
            c
            for c in self._contracts.values()
            if c.target_id == target_id and (include_disabled or not c.is_disabled)
        ]
        return sorted(contracts, key=lambda c: c.created_at)

    async def get_contract_versions(self, schema_version_id: str) -> List[ContractVersion]:
        return list(self._contract_versions.get(schema_version_id, []))

    async def get_latest_valid_contract_version(self, contract_id: str) -> Optional[ContractVersion]:
        for contract_version in reversed(self._contract_versions_by_contract.get(contract_id, [])):
            if contract_version.is_composable:
                return contract_version
        return None
