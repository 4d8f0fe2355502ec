"""
Read-side helpers over persisted schema versions.

Older versions may lack a stored composite SDL, supergraph or change
list. These helpers fill the gaps lazily: recomposing the version's
schemas, or diffing against the previous diffable version.

Invariants:
    - Helpers never write to storage
    - Stored composite SDL goes through the read-repair autofix
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Tuple

from ..orchestrator.base import ComposeAndValidateResult, CompositionOptions, Orchestrator
from ..schema.autofix import auto_fix_composite_schema_sdl
from ..schema.changes import SchemaChange
from ..schema.checksum import print_sorted_sdl
from ..schema.helpers import create_schema_objects
from ..schema.types import Project, ProjectType, SchemaVersion
from ..storage.base import Storage
from .checks import LatestVersion, RegistryChecks
from .results import Completed, Failed

logger = logging.getLogger(__name__)


class NativeFederationCompatibilityStatus(Enum):
    COMPATIBLE = "COMPATIBLE"
    INCOMPATIBLE = "INCOMPATIBLE"
    NOT_APPLICABLE = "NOT_APPLICABLE"
    UNKNOWN = "UNKNOWN"


@dataclass(frozen=True)
class ChangeSplit:
    breaking: Tuple[SchemaChange, ...]
    safe: Tuple[SchemaChange, ...]


class SchemaVersionHelper:
    """Lazy accessors for schema version artifacts.

    Args:
        storage: Registry storage
        orchestrators: One orchestrator per project type
        checks: Used to diff versions whose changes were never persisted
        max_cached_compositions: Recomposed versions kept in the LRU cache
    """

    def __init__(
        self,
        storage: Storage,
        orchestrators: Dict[ProjectType, Orchestrator],
        checks: RegistryChecks,
        max_cached_compositions: int = 128,
    ) -> None:
        self.storage = storage
        self.orchestrators = orchestrators
        self.checks = checks
        self.max_cached_compositions = max_cached_compositions
        self._compositions: OrderedDict[str, ComposeAndValidateResult] = OrderedDict()

    async def to_latest_version(self, version: Optional[SchemaVersion]) -> Optional[LatestVersion]:
        if version is None:
            return None
        schemas = await self.storage.get_schemas_of_version(version.id)
        return LatestVersion(
            id=version.id,
            is_composable=version.is_composable,
            schemas=tuple(schemas),
            composite_schema_sdl=version.composite_schema_sdl,
            supergraph_sdl=version.supergraph_sdl,
        )

    async def _compose(self, project: Project, version: SchemaVersion) -> ComposeAndValidateResult:
        cached = self._compositions.get(version.id)
        if cached is not None:
            self._compositions.move_to_end(version.id)
            return cached

        schemas = await self.storage.get_schemas_of_version(version.id)
        logger.debug("Recomposing stored version", extra={"version_id": version.id})
        result = await self.orchestrators[project.type].compose_and_validate(
            create_schema_objects(schemas, version.base_schema),
            CompositionOptions(
                external=project.external_composition,
                native=project.native_federation,
            ),
        )
        self._compositions[version.id] = result
        if len(self._compositions) > self.max_cached_compositions:
            self._compositions.popitem(last=False)
        return result

    async def get_composite_schema_sdl(self, project: Project, version: SchemaVersion) -> Optional[str]:
        if version.composite_schema_sdl:
            if project.type.is_composite:
                return auto_fix_composite_schema_sdl(version.composite_schema_sdl)
            return version.composite_schema_sdl
        if not version.is_composable:
            return None
        return (await self._compose(project, version)).sdl

    async def get_supergraph_sdl(self, project: Project, version: SchemaVersion) -> Optional[str]:
        if project.type is not ProjectType.FEDERATION:
            return None
        if version.supergraph_sdl:
            return version.supergraph_sdl
        if not version.is_composable:
            return None
        return (await self._compose(project, version)).supergraph

    async def get_previous_diffable_version(self, version: SchemaVersion) -> Optional[SchemaVersion]:
        """The version `version` was diffed against when it was created."""
        if version.diff_schema_version_id:
            return await self.storage.get_version(version.diff_schema_version_id)

        previous: Optional[SchemaVersion] = None
        for candidate in await self.storage.get_versions(version.target_id):
            if candidate.id == version.id:
                break
            if candidate.is_composable:
                previous = candidate
        return previous

    async def get_schema_changes(self, project: Project, version: SchemaVersion) -> Optional[ChangeSplit]:
        """Changes introduced by a version, split by criticality."""
        changes = await self.storage.get_schema_changes(version.id)
        if changes is None:
            previous = await self.get_previous_diffable_version(version)
            if previous is None:
                return None
            diff = await self.checks.diff(
                existing_sdl=await self.get_composite_schema_sdl(project, previous),
                incoming_sdl=await self.get_composite_schema_sdl(project, version),
                filter_out_federation_changes=project.type is ProjectType.FEDERATION,
            )
            if isinstance(diff, Completed):
                changes = list(diff.result.all)
            elif isinstance(diff, Failed):
                changes = list(diff.reason.all)
            else:
                return None

        return ChangeSplit(
            breaking=tuple(c for c in changes if c.is_breaking),
            safe=tuple(c for c in changes if not c.is_breaking),
        )

    async def get_is_first_composable_version(self, version: SchemaVersion) -> bool:
        if not version.is_composable:
            return False
        for candidate in await self.storage.get_versions(version.target_id):
            if candidate.id == version.id:
                return True
            if candidate.is_composable:
                return False
        return False

    async def get_native_federation_compatibility(
        self,
        project: Project,
        target_id: str,
    ) -> NativeFederationCompatibilityStatus:
        """Whether the native composer reproduces the stored federated schema."""
        if project.type is not ProjectType.FEDERATION or project.native_federation:
            return NativeFederationCompatibilityStatus.NOT_APPLICABLE

        version = await self.storage.get_latest_composable_version(target_id)
        if version is None or not version.composite_schema_sdl:
            return NativeFederationCompatibilityStatus.UNKNOWN

        schemas = await self.storage.get_schemas_of_version(version.id)
        result = await self.orchestrators[ProjectType.FEDERATION].compose_and_validate(
            create_schema_objects(schemas, version.base_schema),
            CompositionOptions(native=True),
        )
        if result.errors or result.sdl is None:
            return NativeFederationCompatibilityStatus.INCOMPATIBLE

        expected = print_sorted_sdl(auto_fix_composite_schema_sdl(version.composite_schema_sdl))
        if print_sorted_sdl(result.sdl) == expected:
            return NativeFederationCompatibilityStatus.COMPATIBLE
        return NativeFederationCompatibilityStatus.INCOMPATIBLE
