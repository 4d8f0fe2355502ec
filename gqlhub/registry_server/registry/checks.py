"""
Registry checks: the independent validation steps a registry model runs.

Every check returns a CheckResult (Completed / Failed / Skipped) and never
raises for an expected failure. Transport failures of the orchestrator and
the policy service propagate. A diff that cannot be computed (including a
failed usage lookup) is a Failed result.

Checks:
- checksum: INITIAL / UNCHANGED / MODIFIED, short-circuits everything else
- composition: compose the candidate schema set (and contracts)
- diff: structural changes between two composed SDLs
- service_name / service_url: identity of composite services
- metadata: JSON metadata blob comparison
- policy_check: schema policy rules

Invariants:
    - A check never mutates its inputs
    - Composition errors are partitioned by source, never dropped
    - Breaking change messages are prefixed with "Breaking Change: "

Example:
    >>> checks = RegistryChecks(inspector=Inspector())
    >>> result = await checks.checksum(schemas, latest)
    >>> isinstance(result, Completed) and result.result is ChecksumStatus.UNCHANGED
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Mapping, Optional, Sequence, Tuple

import httpx
from graphql import GraphQLSchema, build_ast_schema, parse

from ..integrations.policy import SchemaPolicyProvider
from ..integrations.usage import CoordinateUsage
from ..orchestrator.base import (
    CompositionOptions,
    ContractCompositionResult,
    ContractInput,
    Orchestrator,
)
from ..schema.autofix import auto_fix_composite_schema_sdl
from ..schema.changes import SchemaChange
from ..schema.checksum import create_checksum_from_schemas, hash_object
from ..schema.helpers import create_schema_objects
from ..schema.inspector import (
    Inspector,
    detect_service_url_changes,
    filter_out_federation_changes as without_federation_changes,
)
from ..schema.types import (
    CompositionErrorSource,
    ConditionalBreakingChangeConfig,
    Project,
    Schema,
    SchemaCompositionError,
    SchemaError,
    SchemaPolicyRecord,
    Target,
)
from .results import SKIPPED, CheckResult, Completed, Failed

logger = logging.getLogger(__name__)

SERVICE_NAME_REQUIRED = "Service name is required"
SERVICE_URL_REQUIRED = "Service url is required"
SERVICE_URL_INVALID = "Service url must be a valid http(s) URL"


class ChecksumStatus(Enum):
    """Outcome of the checksum check."""

    INITIAL = "initial"
    UNCHANGED = "unchanged"
    MODIFIED = "modified"


class ChangeStatus(Enum):
    """Whether a service attribute changed against the previous version."""

    MODIFIED = "modified"
    UNCHANGED = "unchanged"


@dataclass(frozen=True)
class LatestVersion:
    """A previous version as seen by the registry models.

    Attributes:
        id: Version id (None for synthetic baselines)
        is_composable: Whether the version composed
        schemas: Schemas of the version
        composite_schema_sdl: Persisted composed SDL, if any
        supergraph_sdl: Persisted supergraph, if any
    """

    is_composable: bool
    schemas: Tuple[Schema, ...]
    id: Optional[str] = None
    composite_schema_sdl: Optional[str] = None
    supergraph_sdl: Optional[str] = None


@dataclass(frozen=True)
class CompositionSuccess:
    full_schema_sdl: str
    supergraph: Optional[str] = None
    contracts: Optional[Tuple[ContractCompositionResult, ...]] = None


@dataclass(frozen=True)
class CompositionFailure:
    """Errors of a failed composition plus whatever was still produced."""

    errors: Tuple[SchemaCompositionError, ...]
    full_schema_sdl: Optional[str] = None
    supergraph: Optional[str] = None
    contracts: Optional[Tuple[ContractCompositionResult, ...]] = None

    @property
    def graphql_errors(self) -> Tuple[SchemaCompositionError, ...]:
        return tuple(e for e in self.errors if e.source is CompositionErrorSource.GRAPHQL)

    @property
    def composition_errors(self) -> Tuple[SchemaCompositionError, ...]:
        return tuple(e for e in self.errors if e.source is CompositionErrorSource.COMPOSITION)

    @property
    def errors_by_source(self) -> Dict[str, Tuple[SchemaCompositionError, ...]]:
        return {"graphql": self.graphql_errors, "composition": self.composition_errors}


@dataclass(frozen=True)
class DiffResult:
    """Changes between two schemas, split by criticality.

    Attributes:
        breaking: Breaking changes (approved ones included, still Breaking)
        safe: Dangerous and safe changes
        all: Every change, in detection order
        errors: One line per blocking change, or the comparison failure
        usage: Usage data keyed by change id, when usage was consulted
    """

    breaking: Tuple[SchemaChange, ...] = ()
    safe: Tuple[SchemaChange, ...] = ()
    all: Tuple[SchemaChange, ...] = ()
    errors: Tuple[SchemaError, ...] = ()
    usage: Mapping[str, CoordinateUsage] = field(default_factory=dict)


@dataclass(frozen=True)
class ServiceUrlResult:
    status: ChangeStatus
    before: Optional[str] = None
    after: Optional[str] = None
    message: Optional[str] = None


@dataclass(frozen=True)
class MetadataResult:
    status: ChangeStatus


@dataclass(frozen=True)
class PolicyResult:
    warnings: Tuple[SchemaPolicyRecord, ...] = ()
    errors: Tuple[SchemaPolicyRecord, ...] = ()


@dataclass(frozen=True)
class ServiceUrlChanges:
    """Schema sets whose service urls are compared by the diff check."""

    schemas_before: Tuple[Schema, ...]
    schemas_after: Tuple[Schema, ...]


def is_valid_service_url(url: str) -> bool:
    """Whether `url` is an absolute http(s) URL with a host."""
    try:
        parsed = httpx.URL(url)
    except (httpx.InvalidURL, TypeError):
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.host)


def build_schema_from_sdl(sdl: str) -> GraphQLSchema:
    """Build a schema from composed SDL without re-validating it."""
    return build_ast_schema(parse(sdl), assume_valid=True, assume_valid_sdl=True)


def _parse_metadata(metadata: Optional[str]) -> Optional[object]:
    return json.loads(metadata) if metadata else None


class RegistryChecks:
    """Library of validation steps composed by registry models.

    Args:
        inspector: Diff engine (carries the usage provider, if any)
        policy: Schema policy provider; policy checks are skipped without it
    """

    def __init__(
        self,
        inspector: Inspector,
        policy: Optional[SchemaPolicyProvider] = None,
    ) -> None:
        self.inspector = inspector
        self.policy = policy

    async def checksum(
        self,
        schemas: Sequence[Schema],
        latest_version: Optional[LatestVersion],
    ) -> CheckResult[ChecksumStatus, None]:
        if latest_version is None or not latest_version.schemas:
            logger.debug("No existing version")
            return Completed(ChecksumStatus.INITIAL)

        incoming = create_checksum_from_schemas(schemas)
        existing = create_checksum_from_schemas(latest_version.schemas)

        if incoming != existing:
            logger.debug("Schema is modified", extra={"checksum": incoming})
            return Completed(ChecksumStatus.MODIFIED)

        logger.debug("Schema is unchanged", extra={"checksum": incoming})
        return Completed(ChecksumStatus.UNCHANGED)

    async def composition(
        self,
        orchestrator: Orchestrator,
        project: Project,
        schemas: Sequence[Schema],
        base_schema: Optional[str],
        contracts: Optional[Sequence[ContractInput]] = None,
    ) -> CheckResult[CompositionSuccess, CompositionFailure]:
        result = await orchestrator.compose_and_validate(
            create_schema_objects(schemas, base_schema),
            CompositionOptions(
                external=project.external_composition,
                native=project.native_federation,
                contracts=tuple(contracts) if contracts else None,
            ),
        )

        if result.errors or result.sdl is None:
            errors = result.errors or (
                SchemaCompositionError(
                    message="Composition produced no schema",
                    source=CompositionErrorSource.COMPOSITION,
                ),
            )
            logger.debug("Detected composition errors", extra={"error_count": len(errors)})
            return Failed(
                CompositionFailure(
                    errors=errors,
                    full_schema_sdl=result.sdl,
                    supergraph=result.supergraph,
                    contracts=result.contracts,
                )
            )

        logger.debug("No composition errors")
        return Completed(
            CompositionSuccess(
                full_schema_sdl=result.sdl,
                supergraph=result.supergraph,
                contracts=result.contracts,
            )
        )

    async def retrieve_previous_version_sdl(
        self,
        orchestrator: Orchestrator,
        project: Project,
        version: Optional[LatestVersion],
        base_schema: Optional[str] = None,
    ) -> Optional[str]:
        """Composed SDL of a previous version, recomposing when it was never stored."""
        if version is None:
            logger.debug("No previous version, nothing to compare against")
            return None

        if version.composite_schema_sdl:
            if project.type.is_composite:
                return auto_fix_composite_schema_sdl(version.composite_schema_sdl)
            return version.composite_schema_sdl

        logger.debug("Previous version has no stored SDL, recomposing", extra={"version_id": version.id})
        result = await orchestrator.compose_and_validate(
            create_schema_objects(version.schemas, base_schema),
            CompositionOptions(
                external=project.external_composition,
                native=project.native_federation,
            ),
        )
        return result.sdl

    async def diff(
        self,
        existing_sdl: Optional[str],
        incoming_sdl: Optional[str],
        approved_changes: Optional[Mapping[str, SchemaChange]] = None,
        conditional_breaking_change_config: Optional[ConditionalBreakingChangeConfig] = None,
        include_url_changes: Optional[ServiceUrlChanges] = None,
        filter_out_federation_changes: bool = False,
    ) -> CheckResult[DiffResult, DiffResult]:
        if existing_sdl is None or incoming_sdl is None:
            logger.debug("Skipping diff check, nothing to compare")
            return SKIPPED

        try:
            existing_schema = build_schema_from_sdl(existing_sdl)
            incoming_schema = build_schema_from_sdl(incoming_sdl)
            inspected = await self.inspector.diff(
                existing_schema,
                incoming_schema,
                conditional_breaking_change_config,
            )
        except Exception as e:
            # Unbuildable stored SDL is reported, not raised.
            logger.debug(f"Failed to compare schemas: {e}")
            return Failed(DiffResult(errors=(SchemaError(message=f"Failed to compare schemas: {e}"),)))

        changes = list(inspected.changes)

        if include_url_changes is not None:
            changes.extend(
                detect_service_url_changes(
                    include_url_changes.schemas_before,
                    include_url_changes.schemas_after,
                )
            )

        if filter_out_federation_changes:
            changes = without_federation_changes(changes)

        if approved_changes:
            changes = [
                change.approve(approved_changes[change.id].approval_metadata)
                if change.is_breaking
                and change.id in approved_changes
                and approved_changes[change.id].approval_metadata is not None
                else change
                for change in changes
            ]

        breaking = tuple(c for c in changes if c.is_breaking)
        safe = tuple(c for c in changes if not c.is_breaking)
        blocking = [c for c in breaking if c.is_blocking]
        result = DiffResult(
            breaking=breaking,
            safe=safe,
            all=tuple(changes),
            errors=tuple(
                SchemaError(message=f"Breaking Change: {c.message}", path=c.path) for c in blocking
            ),
            usage=inspected.usage,
        )

        if blocking:
            logger.debug("Detected breaking changes", extra={"breaking_count": len(blocking)})
            return Failed(result)

        if changes:
            logger.debug("Detected non-breaking changes", extra={"change_count": len(changes)})

        return Completed(result)

    async def service_name(self, name: Optional[str]) -> CheckResult[None, str]:
        if not name:
            logger.debug("No service name")
            return Failed(SERVICE_NAME_REQUIRED)

        logger.debug("Service name is defined")
        return Completed(None)

    async def service_url(
        self,
        url: Optional[str],
        existing_url: Optional[str],
        has_existing_service: bool,
    ) -> CheckResult[ServiceUrlResult, str]:
        if not url:
            logger.debug("No service url")
            return Failed(SERVICE_URL_REQUIRED)

        if not is_valid_service_url(url):
            logger.debug("Service url is malformed")
            return Failed(SERVICE_URL_INVALID)

        logger.debug("Service url is defined")

        if has_existing_service and url != existing_url:
            return Completed(
                ServiceUrlResult(
                    status=ChangeStatus.MODIFIED,
                    before=existing_url,
                    after=url,
                    message=f"New service url: {url} (previously: {existing_url or 'none'})",
                )
            )

        return Completed(ServiceUrlResult(status=ChangeStatus.UNCHANGED))

    async def metadata(
        self,
        metadata: Optional[str],
        existing_metadata: Optional[str],
        has_existing_service: bool,
    ) -> CheckResult[MetadataResult, str]:
        try:
            parsed = _parse_metadata(metadata)
            modified = has_existing_service and hash_object(parsed) != hash_object(
                _parse_metadata(existing_metadata)
            )
        except ValueError as e:
            logger.debug("Failed to parse metadata")
            return Failed(str(e))

        if modified:
            logger.debug("Metadata is modified")
        else:
            logger.debug("Metadata is unchanged")

        return Completed(
            MetadataResult(status=ChangeStatus.MODIFIED if modified else ChangeStatus.UNCHANGED)
        )

    async def policy_check(
        self,
        orchestrator: Orchestrator,
        project: Project,
        target: Target,
        schemas: Sequence[Schema],
        modified_sdl: str,
        base_schema: Optional[str],
    ) -> CheckResult[PolicyResult, PolicyResult]:
        if self.policy is None:
            logger.debug("No policy provider, skipping policy check")
            return SKIPPED

        composed = await orchestrator.compose_and_validate(
            create_schema_objects(schemas, base_schema),
            CompositionOptions(
                external=project.external_composition,
                native=project.native_federation,
            ),
        )
        if composed.sdl is None:
            logger.debug("Skipping policy check, schema is not composable")
            return SKIPPED

        outcome = await self.policy.check(
            target=target,
            project=project,
            sdl=composed.sdl,
            modified_sdl=modified_sdl,
        )
        if outcome is None:
            logger.debug("No policy configured for target", extra={"target_id": target.id})
            return SKIPPED

        result = PolicyResult(warnings=tuple(outcome.warnings), errors=tuple(outcome.errors))
        if result.errors:
            logger.debug("Detected policy errors", extra={"error_count": len(result.errors)})
            return Failed(result)

        return Completed(result)
