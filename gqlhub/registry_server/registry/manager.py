"""
Schema manager: version lookups and write operations outside the
publish state machine.

Responsibilities:
- Resolve a target into its organization / project / target breadcrumb
- Version, schema and base schema lookups
- Guarded version creation (one schema per commit per target)
- Manual version status flips (legacy projects)
- Service rename
- Manual approval of failed schema checks and check retention

Invariants:
    - Only failed checks without composition errors can be approved
    - An approval stamps every blocking breaking change with the same
      ApprovalMetadata and records it for the check's context
    - Service names stay unique within a version

How to change safely:
    - Approval must stay idempotent: re-approving an approved check is a no-op
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, replace
from typing import Dict, List, Optional, Tuple

from ..errors import NotFoundError, RegistryError, UnsupportedOperationError, ValidationError
from ..orchestrator.base import Orchestrator
from ..schema.changes import ApprovalMetadata, SchemaChange
from ..schema.types import (
    ContractCheck,
    Organization,
    Project,
    ProjectType,
    PushedCompositeSchema,
    Schema,
    SchemaCheck,
    SchemaVersion,
    Target,
)
from ..storage.base import CreateVersionInput, DeleteSchemaInput, Storage, VersionAction

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TargetBreadcrumb:
    organization: Organization
    project: Project
    target: Target


def _now_ms() -> int:
    return int(time.time() * 1000)


def _approve_changes(
    changes: Optional[Tuple[SchemaChange, ...]],
    approval: ApprovalMetadata,
) -> Optional[Tuple[SchemaChange, ...]]:
    if changes is None:
        return None
    return tuple(c.approve(approval) if c.is_blocking else c for c in changes)


class SchemaManager:
    """Registry reads and non-publish writes.

    Args:
        storage: Registry storage
        orchestrators: One orchestrator per project type
        schema_check_retention_days: Lifetime of unpinned schema checks
    """

    def __init__(
        self,
        storage: Storage,
        orchestrators: Dict[ProjectType, Orchestrator],
        schema_check_retention_days: int = 30,
    ) -> None:
        self.storage = storage
        self.orchestrators = orchestrators
        self.schema_check_retention_days = schema_check_retention_days

    def match_orchestrator(self, project_type: ProjectType) -> Orchestrator:
        orchestrator = self.orchestrators.get(project_type)
        if orchestrator is None:
            raise RegistryError(f'Couldn\'t find an orchestrator for project type "{project_type.value}"')
        return orchestrator

    async def get_breadcrumb(self, target_id: str) -> TargetBreadcrumb:
        """Resolve a target with its project and organization.

        Raises:
            NotFoundError: If any level of the hierarchy is missing
        """
        target = await self.storage.get_target(target_id)
        if target is None:
            raise NotFoundError("Target", target_id)
        project = await self.storage.get_project(target.project_id)
        if project is None:
            raise NotFoundError("Project", target.project_id)
        organization = await self.storage.get_organization(project.org_id)
        if organization is None:
            raise NotFoundError("Organization", project.org_id)
        return TargetBreadcrumb(organization=organization, project=project, target=target)

    # Versions

    async def get_latest_version(self, target_id: str) -> Optional[SchemaVersion]:
        return await self.storage.get_latest_version(target_id)

    async def get_latest_composable_version(self, target_id: str) -> Optional[SchemaVersion]:
        return await self.storage.get_latest_composable_version(target_id)

    async def get_version(self, target_id: str, version_id: str) -> SchemaVersion:
        version = await self.storage.get_version(version_id)
        if version is None or version.target_id != target_id:
            raise NotFoundError("SchemaVersion", version_id)
        return version

    async def get_versions(self, target_id: str) -> List[SchemaVersion]:
        return await self.storage.get_versions(target_id)

    async def get_schemas_of_version(self, version_id: str) -> List[Schema]:
        return await self.storage.get_schemas_of_version(version_id)

    async def get_base_schema(self, target_id: str) -> Optional[str]:
        return await self.storage.get_base_schema(target_id)

    async def update_base_schema(self, target_id: str, base_schema: Optional[str]) -> None:
        logger.debug("Updating base schema", extra={"target_id": target_id})
        await self.storage.update_base_schema(target_id, base_schema or None)

    async def create_version(self, input: CreateVersionInput, action: VersionAction) -> SchemaVersion:
        """Persist a new version; `action` runs before the write commits.

        Raises:
            ValidationError: If the target already has a schema for the commit
        """
        service_name = input.schema.service_name
        if await self.storage.has_schema_with_commit(input.target_id, input.schema.commit, service_name):
            if service_name:
                raise ValidationError("Only one service schema per commit per target is allowed", "commit")
            raise ValidationError("Only one schema per commit per target is allowed", "commit")

        logger.info(
            "Creating a new version",
            extra={
                "target_id": input.target_id,
                "commit": input.schema.commit,
                "service": service_name,
                "composable": input.is_composable,
            },
        )
        return await self.storage.create_version(input, action)

    async def delete_schema(self, input: DeleteSchemaInput, action: VersionAction) -> SchemaVersion:
        logger.info(
            "Deleting service",
            extra={"target_id": input.target_id, "service": input.tombstone.service_name},
        )
        return await self.storage.delete_schema(input, action)

    async def update_version_status(self, project: Project, version_id: str, valid: bool) -> SchemaVersion:
        """Flip the composable flag of a version (legacy projects only)."""
        if not project.legacy_registry_model:
            raise UnsupportedOperationError(
                "Updating the version status is only supported on the legacy registry model",
                operation="update_version_status",
            )
        logger.info("Updating version status", extra={"version_id": version_id, "valid": valid})
        return await self.storage.update_version_status(version_id, valid)

    async def update_service_name(
        self,
        project: Project,
        target_id: str,
        version_id: str,
        name: str,
        new_name: str,
    ) -> None:
        """Rename a service across the target's history.

        Raises:
            UnsupportedOperationError: If the project is not composite
            NotFoundError: If the service is not part of the version
            ValidationError: If the new name is empty or already taken
        """
        if not project.type.is_composite:
            raise UnsupportedOperationError(
                f'Project type "{project.type.value}" doesn\'t support service name updates',
                operation="update_service_name",
            )

        schemas = await self.storage.get_schemas_of_version(version_id)
        services = [s for s in schemas if isinstance(s, PushedCompositeSchema)]

        if not any(s.service_name == name for s in services):
            raise NotFoundError("Service", name)
        if not new_name.strip():
            raise ValidationError("Service name can't be empty", "new_name")
        if any(s.service_name == new_name for s in services):
            raise ValidationError(f'Service "{new_name}" already exists', "new_name")

        await self.storage.update_service_name(target_id, name, new_name)
        logger.info(
            "Renamed service",
            extra={"target_id": target_id, "service": name, "new_service": new_name},
        )

    # Schema checks

    def schema_check_expires_at(self, created_at: int) -> int:
        return created_at + self.schema_check_retention_days * 24 * 60 * 60 * 1000

    async def approve_failed_schema_check(
        self,
        schema_check_id: str,
        user_id: str,
        comment: Optional[str] = None,
    ) -> SchemaCheck:
        """Mark a failed check as successful on behalf of a user.

        Raises:
            NotFoundError: If the check does not exist
            ValidationError: If the check has composition errors
        """
        check = await self.storage.get_schema_check(schema_check_id)
        if check is None:
            raise NotFoundError("SchemaCheck", schema_check_id)

        if check.is_success:
            logger.debug("Schema check already successful", extra={"schema_check_id": schema_check_id})
            return check

        if check.schema_composition_errors:
            raise ValidationError("Schema check has composition errors.", "schema_check_id")
        failed_contracts = [c for c in check.contract_checks or () if not c.is_success]
        if any(c.schema_composition_errors for c in failed_contracts):
            raise ValidationError("Contract check has composition errors.", "schema_check_id")

        approval = ApprovalMetadata(user_id=user_id, date=_now_ms(), schema_check_id=check.id)

        contract_checks: Optional[Tuple[ContractCheck, ...]] = None
        if check.contract_checks is not None:
            contract_checks = tuple(
                replace(
                    c,
                    is_success=True,
                    breaking_schema_changes=_approve_changes(c.breaking_schema_changes, approval),
                )
                for c in check.contract_checks
            )

        approved = replace(
            check,
            is_success=True,
            is_manually_approved=True,
            manual_approval_user_id=user_id,
            manual_approval_comment=comment,
            breaking_schema_changes=_approve_changes(check.breaking_schema_changes, approval),
            contract_checks=contract_checks,
            # Approved checks are kept beyond the retention window.
            expires_at=None,
        )
        updated = await self.storage.update_schema_check(approved)

        if check.context_id is not None:
            changes = [
                c
                for c in updated.breaking_schema_changes or ()
                if c.approval_metadata is not None and not c.is_safe_based_on_usage
            ]
            await self.storage.save_approved_schema_changes(check.target_id, check.context_id, changes)

        logger.info(
            "Approved failed schema check",
            extra={"schema_check_id": check.id, "user_id": user_id},
        )
        return updated

    async def purge_expired_schema_checks(self, now: Optional[int] = None) -> int:
        purged = await self.storage.purge_expired_schema_checks(now if now is not None else _now_ms())
        if purged:
            logger.info("Purged expired schema checks", extra={"count": purged})
        return purged
