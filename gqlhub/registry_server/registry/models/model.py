"""
Registry model: the check / publish / delete state machine.

One algorithm serves every project type (SINGLE, FEDERATION, STITCHING)
and both registry generations. Project type decides how the incoming
schema record is built and which orchestrator composes it; the mode
decides the final accept/reject policy:

    legacy  gatekeeping registry. Composition errors and breaking changes
            reject a publish unless `force` (both) or
            `experimental_accept_breaking_changes` (breaking only) is set.
    modern  append-only ledger. A publish is accepted and recorded with a
            composability flag; only graphql errors reject, and only when
            the organization compares against the latest version.

Check flow:
    checksum -> (unchanged: modern Skip / legacy Success)
             -> composition + previous SDL + policy (modern) in parallel
             -> diff -> contracts (modern federation)
             -> Failure if any dimension failed, else Success

Publish flow:
    service name / url gate (composite) -> checksum (unchanged: Ignore)
             -> metadata, composition, diff -> accept/reject policy

Invariants:
    - Checksum runs first and short-circuits everything else
    - A failed check aggregates every dimension, never the first failure only
    - Delete is modern-only and composite-only
    - Incoming records carry the TEMP id; real ids are assigned when the
      version is persisted

How to change safely:
    - Extend the legacy truth table tests before touching `_legacy_publish`
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import List, Mapping, Optional, Sequence, Tuple

from ...errors import RegistryInvariantError, UnsupportedOperationError
from ...orchestrator.base import Orchestrator
from ...schema.changes import SchemaChange
from ...schema.helpers import ensure_composite_schemas, ensure_single_schema, swap_services
from ...schema.types import (
    DeletedCompositeSchema,
    Organization,
    Project,
    ProjectType,
    PushedCompositeSchema,
    RegistryModelMode,
    Schema,
    SingleSchema,
    Target,
)
from ..checks import (
    SERVICE_URL_REQUIRED,
    ChangeStatus,
    ChecksumStatus,
    CompositionFailure,
    CompositionSuccess,
    DiffResult,
    LatestVersion,
    RegistryChecks,
    ServiceUrlChanges,
)
from ..contracts import ContractCandidate, ContractsChecks, is_contract_checks_successful
from ..inputs import PublishInput
from ..results import SKIPPED, CheckResult, Completed, Failed
from .shared import (
    TEMP,
    CheckConclusion,
    CheckFailure,
    CheckSkip,
    CheckSuccess,
    CheckSuccessState,
    DeleteAccept,
    DeleteConclusion,
    DeleteFailureReasonCode,
    DeleteReject,
    DeleteState,
    FailureReason,
    PublishConclusion,
    PublishFailureReasonCode,
    PublishIgnore,
    PublishReject,
    PublishState,
    PublishSuccess,
    build_schema_check_failure_state,
)

logger = logging.getLogger(__name__)

METADATA_UPDATED = "Metadata has been updated"


@dataclass(frozen=True)
class ModelContext:
    """Everything a model needs to know about the target it operates on.

    Attributes:
        organization: Owning organization (feature flags)
        project: Owning project (type, mode, composition settings)
        target: The target
        latest: Latest version of the target
        latest_composable: Latest composable version of the target
        base_schema: SDL prepended to every composition
        contracts: Active contracts (modern federation only)
    """

    organization: Organization
    project: Project
    target: Target
    latest: Optional[LatestVersion] = None
    latest_composable: Optional[LatestVersion] = None
    base_schema: Optional[str] = None
    contracts: Optional[Sequence[ContractCandidate]] = None

    @property
    def compare_to_latest(self) -> bool:
        return not self.organization.feature_flags.compare_to_previous_composable_version

    @property
    def comparison_version(self) -> Optional[LatestVersion]:
        """Baseline for diffs: latest, or latest composable when the org opted in."""
        return self.latest if self.compare_to_latest else self.latest_composable


def _now_ms() -> int:
    return int(time.time() * 1000)


def _composed_sdl(check: CheckResult[CompositionSuccess, CompositionFailure]) -> Optional[str]:
    if isinstance(check, Completed):
        return check.result.full_schema_sdl
    if isinstance(check, Failed):
        return check.reason.full_schema_sdl
    return None


def _diff_changes(check: CheckResult[DiffResult, DiffResult]) -> Optional[Tuple[SchemaChange, ...]]:
    if isinstance(check, Completed):
        return check.result.all
    if isinstance(check, Failed):
        return check.reason.all
    return None


async def _resolved(value):
    return value


class RegistryModel:
    """State machine for one project type and registry generation.

    Args:
        project_type: Project type served by this model
        mode: legacy or modern accept/reject policy
        orchestrator: Composer for the project type
        checks: Registry checks library
    """

    def __init__(
        self,
        project_type: ProjectType,
        mode: RegistryModelMode,
        orchestrator: Orchestrator,
        checks: RegistryChecks,
    ) -> None:
        self.project_type = project_type
        self.mode = mode
        self.orchestrator = orchestrator
        self.checks = checks
        self.contracts_checks = ContractsChecks(checks)

    @property
    def is_composite(self) -> bool:
        return self.project_type.is_composite

    @property
    def is_federation(self) -> bool:
        return self.project_type is ProjectType.FEDERATION

    @property
    def is_legacy(self) -> bool:
        return self.mode is RegistryModelMode.LEGACY

    def _contracts(self, ctx: ModelContext) -> Optional[Sequence[ContractCandidate]]:
        if self.is_federation and not self.is_legacy and ctx.contracts:
            return ctx.contracts
        return None

    def _supports_metadata(self) -> bool:
        # Stitching services never carried metadata on the modern model.
        if self.is_legacy:
            return True
        return self.project_type is not ProjectType.STITCHING

    # Check

    def _incoming_for_check(
        self,
        ctx: ModelContext,
        sdl: str,
        service_name: Optional[str],
    ) -> Tuple[Schema, List[Schema]]:
        """Incoming record plus candidate schema set.

        The existing service's url and metadata are carried over so an
        unchanged SDL yields an unchanged checksum.
        """
        latest_schemas = ctx.latest.schemas if ctx.latest else ()

        if not self.is_composite:
            previous = ensure_single_schema(latest_schemas) if latest_schemas else None
            incoming = SingleSchema(
                id=TEMP,
                target=ctx.target.id,
                author=TEMP,
                sdl=sdl,
                commit=TEMP,
                date=_now_ms(),
                metadata=previous.metadata if previous is not None else None,
            )
            return incoming, [incoming]

        existing = next(
            (s for s in ensure_composite_schemas(latest_schemas) if s.service_name == service_name),
            None,
        )
        incoming = PushedCompositeSchema(
            id=TEMP,
            target=ctx.target.id,
            author=TEMP,
            sdl=sdl,
            commit=TEMP,
            date=_now_ms(),
            service_name=service_name or "",
            service_url=existing.service_url if existing is not None else None,
            metadata=existing.metadata if existing is not None else None,
        )
        swap = swap_services(ensure_composite_schemas(latest_schemas), incoming)
        return incoming, list(swap.schemas)

    async def check(
        self,
        ctx: ModelContext,
        sdl: str,
        service_name: Optional[str] = None,
        approved_changes: Optional[Mapping[str, SchemaChange]] = None,
    ) -> CheckConclusion:
        incoming, schemas = self._incoming_for_check(ctx, sdl, service_name)

        checksum_check = await self.checks.checksum(schemas, ctx.latest)
        if isinstance(checksum_check, Completed) and checksum_check.result is ChecksumStatus.UNCHANGED:
            if self.is_legacy:
                return CheckSuccess(state=None)
            return CheckSkip()

        conditional_config = ctx.target.conditional_breaking_change
        contracts = self._contracts(ctx)

        if self.is_legacy:
            composition_check, previous_sdl = await asyncio.gather(
                self.checks.composition(self.orchestrator, ctx.project, schemas, ctx.base_schema),
                self.checks.retrieve_previous_version_sdl(
                    self.orchestrator, ctx.project, ctx.latest, ctx.base_schema
                ),
            )
            policy_check = None
            diff_check = await self.checks.diff(
                existing_sdl=previous_sdl,
                incoming_sdl=_composed_sdl(composition_check),
                conditional_breaking_change_config=conditional_config,
                filter_out_federation_changes=self.is_federation,
            )
        else:
            composition_check, previous_sdl, policy_check = await asyncio.gather(
                self.checks.composition(
                    self.orchestrator,
                    ctx.project,
                    schemas,
                    ctx.base_schema,
                    contracts=[c.to_input() for c in contracts] if contracts else None,
                ),
                self.checks.retrieve_previous_version_sdl(
                    self.orchestrator, ctx.project, ctx.comparison_version, ctx.base_schema
                ),
                self.checks.policy_check(
                    self.orchestrator,
                    ctx.project,
                    ctx.target,
                    schemas,
                    modified_sdl=incoming.sdl,
                    base_schema=ctx.base_schema,
                ),
            )
            diff_check = await self.checks.diff(
                existing_sdl=previous_sdl,
                incoming_sdl=_composed_sdl(composition_check),
                approved_changes=approved_changes,
                conditional_breaking_change_config=conditional_config,
                filter_out_federation_changes=self.is_federation,
            )

        contract_checks = await self.contracts_checks.get_contract_checks(
            contracts, composition_check, conditional_config
        )

        if (
            isinstance(composition_check, Failed)
            or isinstance(diff_check, Failed)
            or isinstance(policy_check, Failed)
            or not is_contract_checks_successful(contract_checks)
        ):
            return CheckFailure(
                state=build_schema_check_failure_state(
                    composition_check, diff_check, policy_check, contract_checks
                )
            )

        return CheckSuccess(
            state=CheckSuccessState(
                schema_changes=diff_check.result if isinstance(diff_check, Completed) else None,
                schema_policy_warnings=(
                    policy_check.result.warnings if isinstance(policy_check, Completed) else None
                ),
                composite_schema_sdl=composition_check.result.full_schema_sdl,
                supergraph_sdl=composition_check.result.supergraph,
                contracts=contract_checks,
            )
        )

    # Publish

    def _incoming_for_publish(self, ctx: ModelContext, input: PublishInput) -> Schema:
        if not self.is_composite:
            return SingleSchema(
                id=TEMP,
                target=ctx.target.id,
                author=input.author,
                sdl=input.sdl,
                commit=input.commit,
                date=_now_ms(),
                metadata=input.metadata,
            )
        return PushedCompositeSchema(
            id=TEMP,
            target=ctx.target.id,
            author=input.author,
            sdl=input.sdl,
            commit=input.commit,
            date=_now_ms(),
            service_name=input.service or "",
            service_url=input.url,
            metadata=input.metadata if self._supports_metadata() else None,
        )

    async def publish(self, ctx: ModelContext, input: PublishInput) -> PublishConclusion:
        incoming = self._incoming_for_publish(ctx, input)
        latest_schemas = ctx.latest.schemas if ctx.latest else ()

        previous_service: Optional[Schema] = None
        if isinstance(incoming, PushedCompositeSchema):
            swap = swap_services(ensure_composite_schemas(latest_schemas), incoming)
            previous_service = swap.existing
            schemas: Tuple[Schema, ...] = tuple(swap.schemas)
        else:
            previous_service = latest_schemas[0] if latest_schemas else None
            schemas = (incoming,)

        service_url_check = None
        if self.is_composite:
            service_name_check, service_url_check = await asyncio.gather(
                self.checks.service_name(incoming.service_name),
                self.checks.service_url(
                    incoming.service_url,
                    previous_service.service_url if previous_service is not None else None,
                    has_existing_service=previous_service is not None,
                ),
            )
            # Legacy stitching tolerates a missing url.
            url_gates = not (self.is_legacy and not self.is_federation)
            if isinstance(service_name_check, Failed) or (
                url_gates and isinstance(service_url_check, Failed)
            ):
                reasons: List[FailureReason] = []
                if isinstance(service_name_check, Failed):
                    reasons.append(FailureReason(code=PublishFailureReasonCode.MISSING_SERVICE_NAME))
                if isinstance(service_url_check, Failed):
                    reasons.append(
                        FailureReason(
                            code=PublishFailureReasonCode.MISSING_SERVICE_URL
                            if service_url_check.reason == SERVICE_URL_REQUIRED
                            else PublishFailureReasonCode.INVALID_SERVICE_URL
                        )
                    )
                logger.debug(
                    "Publish rejected, service identity",
                    extra={"target_id": ctx.target.id, "reasons": [r.code.value for r in reasons]},
                )
                return PublishReject(reasons=tuple(reasons))

        checksum_check = await self.checks.checksum(schemas, ctx.latest)
        if isinstance(checksum_check, Completed) and checksum_check.result is ChecksumStatus.UNCHANGED:
            return PublishIgnore()

        if self.is_legacy:
            return await self._legacy_publish(ctx, input, incoming, schemas, previous_service, service_url_check)
        return await self._modern_publish(ctx, incoming, schemas, previous_service, service_url_check)

    async def _metadata_check(self, incoming: Schema, previous_service: Optional[Schema]):
        return await self.checks.metadata(
            incoming.metadata,
            previous_service.metadata if previous_service is not None else None,
            has_existing_service=previous_service is not None,
        )

    def _messages(self, service_url_check, metadata_check) -> Tuple[bool, bool, Tuple[str, ...]]:
        has_new_url = (
            isinstance(service_url_check, Completed)
            and service_url_check.result.status is ChangeStatus.MODIFIED
        )
        has_new_metadata = (
            isinstance(metadata_check, Completed) and metadata_check.result.status is ChangeStatus.MODIFIED
        )
        messages: List[str] = []
        if has_new_url:
            messages.append(service_url_check.result.message)
        if has_new_metadata:
            messages.append(METADATA_UPDATED)
        return has_new_url, has_new_metadata, tuple(messages)

    async def _modern_publish(
        self,
        ctx: ModelContext,
        incoming: Schema,
        schemas: Tuple[Schema, ...],
        previous_service: Optional[Schema],
        service_url_check,
    ) -> PublishConclusion:
        contracts = self._contracts(ctx)
        comparison = ctx.comparison_version

        metadata_check = (
            await self._metadata_check(incoming, previous_service) if self._supports_metadata() else None
        )

        composition_check, previous_sdl = await asyncio.gather(
            self.checks.composition(
                self.orchestrator,
                ctx.project,
                schemas,
                ctx.base_schema,
                contracts=[c.to_input() for c in contracts] if contracts else None,
            ),
            self.checks.retrieve_previous_version_sdl(
                self.orchestrator, ctx.project, comparison, ctx.base_schema
            ),
        )

        if isinstance(metadata_check, Failed):
            return PublishReject(
                reasons=(FailureReason(code=PublishFailureReasonCode.METADATA_PARSING_FAILURE),)
            )

        diff_check = await self.checks.diff(
            existing_sdl=previous_sdl,
            incoming_sdl=_composed_sdl(composition_check),
            conditional_breaking_change_config=ctx.target.conditional_breaking_change,
            include_url_changes=(
                ServiceUrlChanges(
                    schemas_before=comparison.schemas if comparison else (),
                    schemas_after=schemas,
                )
                if self.is_composite
                else None
            ),
            filter_out_federation_changes=self.is_federation,
        )

        _, _, messages = self._messages(service_url_check, metadata_check)

        if (
            isinstance(composition_check, Failed)
            and composition_check.reason.graphql_errors
            and ctx.compare_to_latest
        ):
            return PublishReject(
                reasons=(
                    FailureReason(
                        code=PublishFailureReasonCode.COMPOSITION_FAILURE,
                        composition_errors=composition_check.reason.graphql_errors,
                    ),
                )
            )

        contract_checks = await self.contracts_checks.get_contract_checks(
            contracts, composition_check, ctx.target.conditional_breaking_change
        )

        composed = isinstance(composition_check, Completed)
        return PublishSuccess(
            state=PublishState(
                composable=composed,
                initial=ctx.latest is None,
                changes=_diff_changes(diff_check),
                messages=messages,
                breaking_changes=None,
                composition_errors=composition_check.reason.errors if not composed else None,
                schema=incoming,
                schemas=schemas,
                supergraph=composition_check.result.supergraph if composed and self.is_composite else None,
                full_schema_sdl=composition_check.result.full_schema_sdl if composed else None,
                contracts=contract_checks,
            )
        )

    async def _legacy_publish(
        self,
        ctx: ModelContext,
        input: PublishInput,
        incoming: Schema,
        schemas: Tuple[Schema, ...],
        previous_service: Optional[Schema],
        service_url_check,
    ) -> PublishConclusion:
        forced = input.force
        accept_breaking_changes = input.experimental_accept_breaking_changes

        composition_check, previous_sdl = await asyncio.gather(
            self.checks.composition(self.orchestrator, ctx.project, schemas, ctx.base_schema),
            self.checks.retrieve_previous_version_sdl(
                self.orchestrator, ctx.project, ctx.latest, ctx.base_schema
            ),
        )
        composed = isinstance(composition_check, Completed)

        # Federation metadata is carried but never compared on the legacy model.
        skip_metadata = self.is_federation
        diff_check, metadata_check = await asyncio.gather(
            self.checks.diff(
                existing_sdl=previous_sdl,
                incoming_sdl=composition_check.result.full_schema_sdl if composed else None,
                conditional_breaking_change_config=ctx.target.conditional_breaking_change,
                include_url_changes=(
                    ServiceUrlChanges(
                        schemas_before=ctx.latest.schemas if ctx.latest else (),
                        schemas_after=schemas,
                    )
                    if self.is_composite
                    else None
                ),
                filter_out_federation_changes=self.is_federation,
            ),
            _resolved(SKIPPED) if skip_metadata else self._metadata_check(incoming, previous_service),
        )

        if isinstance(metadata_check, Failed):
            return PublishReject(
                reasons=(FailureReason(code=PublishFailureReasonCode.METADATA_PARSING_FAILURE),)
            )

        composition_errors = composition_check.reason.errors if not composed else None
        diff_failed = isinstance(diff_check, Failed)
        gating_breaking_changes = diff_check.reason.breaking if diff_failed and not accept_breaking_changes else None

        has_new_url, has_new_metadata, messages = self._messages(service_url_check, metadata_check)
        has_composition_errors = bool(composition_errors)
        has_breaking_changes = bool(gating_breaking_changes)
        has_errors = has_composition_errors or has_breaking_changes

        should_be_published = (
            not has_errors
            or has_new_url
            or has_new_metadata
            or (has_errors and forced)
        )

        logger.debug(
            "Legacy publish decision",
            extra={
                "target_id": ctx.target.id,
                "has_errors": has_errors,
                "forced": forced,
                "accept_breaking_changes": accept_breaking_changes,
                "should_be_published": should_be_published,
            },
        )

        if should_be_published:
            return PublishSuccess(
                state=PublishState(
                    composable=not has_errors,
                    initial=ctx.latest is None,
                    changes=_diff_changes(diff_check),
                    messages=messages,
                    breaking_changes=diff_check.reason.breaking if diff_failed else None,
                    composition_errors=composition_errors,
                    schema=incoming,
                    schemas=schemas,
                    supergraph=composition_check.result.supergraph if composed and self.is_composite else None,
                    full_schema_sdl=composition_check.result.full_schema_sdl if composed else None,
                )
            )

        reasons: List[FailureReason] = []
        if isinstance(composition_check, Failed):
            reasons.append(
                FailureReason(
                    code=PublishFailureReasonCode.COMPOSITION_FAILURE,
                    composition_errors=composition_check.reason.errors,
                )
            )
        if diff_failed and not accept_breaking_changes:
            reasons.append(
                FailureReason(
                    code=PublishFailureReasonCode.BREAKING_CHANGES,
                    changes=diff_check.reason.all,
                    breaking_changes=diff_check.reason.breaking,
                )
            )
        return PublishReject(reasons=tuple(reasons))

    # Delete

    def ensure_delete_supported(self) -> None:
        if self.is_legacy:
            raise UnsupportedOperationError(
                "Deleting services is not supported on the legacy registry model. "
                "Please upgrade the project to the new registry model.",
                operation="delete",
            )
        if not self.is_composite:
            raise UnsupportedOperationError(
                "Deleting services is only supported for composite projects",
                operation="delete",
            )

    async def delete(self, ctx: ModelContext, service_name: Optional[str]) -> DeleteConclusion:
        self.ensure_delete_supported()

        service_name_check = await self.checks.service_name(service_name)
        if isinstance(service_name_check, Failed):
            return DeleteReject(
                reasons=(FailureReason(code=DeleteFailureReasonCode.MISSING_SERVICE_NAME),)
            )

        latest_schemas = ensure_composite_schemas(ctx.latest.schemas if ctx.latest else ())
        if not any(s.service_name == service_name for s in latest_schemas):
            return DeleteReject(
                reasons=(FailureReason(code=DeleteFailureReasonCode.SERVICE_NOT_FOUND),)
            )

        schemas: Tuple[Schema, ...] = tuple(s for s in latest_schemas if s.service_name != service_name)
        contracts = self._contracts(ctx)
        comparison = ctx.comparison_version

        composition_check, previous_sdl = await asyncio.gather(
            self.checks.composition(
                self.orchestrator,
                ctx.project,
                schemas,
                ctx.base_schema,
                contracts=[c.to_input() for c in contracts] if contracts else None,
            ),
            self.checks.retrieve_previous_version_sdl(
                self.orchestrator, ctx.project, comparison, ctx.base_schema
            ),
        )
        diff_check = await self.checks.diff(
            existing_sdl=previous_sdl,
            incoming_sdl=_composed_sdl(composition_check),
            conditional_breaking_change_config=ctx.target.conditional_breaking_change,
            include_url_changes=ServiceUrlChanges(
                schemas_before=comparison.schemas if comparison else (),
                schemas_after=schemas,
            ),
            filter_out_federation_changes=self.is_federation,
        )

        if (
            isinstance(composition_check, Failed)
            and composition_check.reason.graphql_errors
            and ctx.compare_to_latest
        ):
            return DeleteReject(
                reasons=(
                    FailureReason(
                        code=DeleteFailureReasonCode.COMPOSITION_FAILURE,
                        composition_errors=composition_check.reason.graphql_errors,
                    ),
                )
            )

        if isinstance(diff_check, Failed):
            changes, breaking_changes = diff_check.reason.all, diff_check.reason.breaking
        elif isinstance(diff_check, Completed):
            changes, breaking_changes = diff_check.result.all, ()
        else:
            changes, breaking_changes = (), ()

        composable = isinstance(composition_check, Completed)
        full_schema_sdl = composition_check.result.full_schema_sdl if composable else None
        if composable and not full_schema_sdl:
            raise RegistryInvariantError(
                "Full schema SDL is null when composition check is completed and is composable."
            )

        contract_checks = await self.contracts_checks.get_contract_checks(
            contracts, composition_check, ctx.target.conditional_breaking_change
        )

        return DeleteAccept(
            state=DeleteState(
                composable=composable,
                full_schema_sdl=full_schema_sdl,
                changes=changes,
                breaking_changes=breaking_changes,
                composition_errors=composition_check.reason.errors if not composable else (),
                supergraph=composition_check.result.supergraph if composable else None,
                schemas=schemas,
                contracts=contract_checks,
            )
        )

    def build_tombstone(self, target_id: str, service_name: str) -> DeletedCompositeSchema:
        return DeletedCompositeSchema(id=TEMP, target=target_id, date=_now_ms(), service_name=service_name)


def create_registry_model(
    project: Project,
    orchestrator: Orchestrator,
    checks: RegistryChecks,
) -> RegistryModel:
    """Build the model matching a project's type and registry generation."""
    return RegistryModel(
        project_type=project.type,
        mode=project.mode,
        orchestrator=orchestrator,
        checks=checks,
    )
