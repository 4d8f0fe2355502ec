"""
Schema publisher: the top-level facade of the registry.

Operations:
- check: run a registry model check and persist the SchemaCheck
- publish: serialized per target, debounced per checksum; persists a new
  version and deploys CDN artifacts for composable versions
- delete: remove a service from a composite target (modern model only)
- update_version_status: legacy-only composable flag flip, republishes
  the CDN when the version becomes the latest valid one
- sync: re-upload the artifacts of the latest valid version

Invariants:
    - A GitHub check run, once created, is always resolved (success,
      failure or neutral), also when the operation raises
    - Publishes and deletes of one target never overlap (target_lock_key)
    - CDN artifacts are written inside the version's action callback: no
      artifacts without a version, no version without its artifacts
    - Notifications are detached tasks; their failure never fails a publish

How to change safely:
    - Publish responses pass through the idempotency cache; keep
      to_dict / from_dict in sync when adding response fields
    - Never log SDL bodies, only their length

Example:
    >>> publisher = SchemaPublisher(storage=storage, manager=manager, ...)
    >>> response = await publisher.publish(PublishInput(target_id="t1", sdl=sdl, author="a", commit="c"))
    >>> response.typename
    'SchemaPublishSuccess'
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
import uuid
from dataclasses import dataclass, replace
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple

from ..artifacts.storage import ArtifactStorage, ArtifactStorageError, ArtifactType
from ..config import PublisherConfig
from ..coordination.idempotency import IdempotentRunner
from ..coordination.mutex import Mutex, target_lock_key
from ..errors import NotFoundError, RegistryInvariantError
from ..integrations.alerts import NullNotifier, SchemaChangeNotification, SchemaChangeNotifier
from ..integrations.github import (
    CheckRunConclusion,
    GitHubCheckRunError,
    GitHubCheckRunSuccess,
    GitHubIntegration,
    truncate_summary,
)
from ..metrics import CHECK_COUNT, DELETE_COUNT, PUBLISH_COUNT
from ..schema.changes import SchemaChange
from ..schema.checksum import hash_object
from ..schema.helpers import ensure_composite_schemas
from ..schema.types import (
    ContractCheck,
    Project,
    ProjectType,
    Schema,
    SchemaCheck,
    SchemaCompositionError,
    SchemaError,
    SchemaVersion,
)
from ..storage.base import (
    CreateContractVersionInput,
    CreateVersionInput,
    DeleteSchemaInput,
    Storage,
)
from .checks import RegistryChecks
from .contracts import ContractCandidate, ContractsManager
from .inputs import CheckInput, DeleteInput, PublishInput, UpdateVersionStatusInput, build_check_meta
from .manager import SchemaManager, TargetBreadcrumb
from .markdown import CheckRunOutput, render_check_output, render_publish_output
from .models.model import ModelContext, RegistryModel, create_registry_model
from .models.shared import (
    TEMP,
    CheckFailure,
    CheckFailureReasonCode,
    CheckSkip,
    CheckSuccess,
    ContractCheckOutcome,
    DeleteFailureReasonCode,
    DeleteReject,
    PublishFailureReasonCode,
    PublishIgnore,
    PublishReject,
    PublishSuccess,
    format_policy_message,
    get_reason_by_code,
)
from .responses import (
    GitHubSchemaCheckError,
    GitHubSchemaCheckSuccess,
    GitHubSchemaPublishError,
    GitHubSchemaPublishSuccess,
    SchemaCheckError,
    SchemaCheckResponse,
    SchemaCheckSuccess,
    SchemaDeleteError,
    SchemaDeleteResponse,
    SchemaDeleteSuccess,
    SchemaPublishError,
    SchemaPublishMissingServiceError,
    SchemaPublishMissingUrlError,
    SchemaPublishResponse,
    SchemaPublishSuccess,
    publish_response_from_dict,
    publish_response_to_dict,
)
from .version_helper import SchemaVersionHelper

logger = logging.getLogger(__name__)

MISSING_SERVICE_NAME = "Missing service name"
MISSING_SERVICE_URL = "Missing service url"
INVALID_SERVICE_URL = "Invalid service url"
METADATA_PARSING_FAILED = "Failed to parse metadata"
ARTIFACT_DEPLOYMENT_FAILED = "Failed to deploy schema artifacts"


@dataclass(frozen=True)
class ContractArtifacts:
    contract_name: str
    composite_schema_sdl: Optional[str]
    supergraph_sdl: Optional[str]


def _now_ms() -> int:
    return int(time.time() * 1000)


def _errors_of(composition_errors: Optional[Sequence[SchemaCompositionError]]) -> Tuple[SchemaError, ...]:
    return tuple(SchemaError(message=e.message) for e in composition_errors or ())


def _change_errors(changes: Optional[Sequence[SchemaChange]]) -> Tuple[SchemaError, ...]:
    return tuple(SchemaError(message=c.message, path=c.path) for c in changes or ())


def _contract_check(outcome: ContractCheckOutcome) -> ContractCheck:
    diff = outcome.diff
    return ContractCheck(
        contract_id=outcome.contract_id,
        contract_name=outcome.contract_name,
        is_success=outcome.is_success,
        compared_contract_version_id=outcome.compared_contract_version_id,
        composite_schema_sdl=outcome.composite_schema_sdl,
        supergraph_sdl=outcome.supergraph_sdl,
        schema_composition_errors=outcome.composition_errors,
        breaking_schema_changes=diff.breaking if diff else None,
        safe_schema_changes=diff.safe if diff else None,
    )


def _contract_version_input(outcome: ContractCheckOutcome) -> CreateContractVersionInput:
    diff = outcome.diff
    return CreateContractVersionInput(
        contract_id=outcome.contract_id,
        contract_name=outcome.contract_name,
        composite_schema_sdl=outcome.composite_schema_sdl,
        supergraph_sdl=outcome.supergraph_sdl,
        schema_composition_errors=outcome.composition_errors,
        changes=diff.all if diff else None,
    )


def _contract_artifacts(outcomes: Optional[Sequence[ContractCheckOutcome]]) -> List[ContractArtifacts]:
    return [
        ContractArtifacts(
            contract_name=o.contract_name,
            composite_schema_sdl=o.composite_schema_sdl,
            supergraph_sdl=o.supergraph_sdl,
        )
        for o in outcomes or ()
        if not o.composition_errors and o.composite_schema_sdl
    ]


def _with_final_id(schema: Schema, schemas: Sequence[Schema]) -> Tuple[Schema, Tuple[Schema, ...]]:
    """Replace the TEMP id of the incoming record with a real one."""
    final = replace(schema, id=str(uuid.uuid4()))
    return final, tuple(final if s.id == TEMP else s for s in schemas)


class SchemaPublisher:
    """Registry facade used by the API layer.

    Args:
        storage: Registry storage
        manager: Schema manager (lookups, version creation)
        version_helper: Lazy version artifacts (sync, status changes)
        checks: Registry checks shared by every model
        contracts: Contracts manager
        artifacts: CDN artifact writer
        mutex: Per-target publish lock
        idempotent_runner: Duplicate publish debounce
        config: Publisher tuning
        github: GitHub check-run client, None when not configured
        notifier: Schema change notifier
    """

    def __init__(
        self,
        storage: Storage,
        manager: SchemaManager,
        version_helper: SchemaVersionHelper,
        checks: RegistryChecks,
        contracts: ContractsManager,
        artifacts: ArtifactStorage,
        mutex: Mutex,
        idempotent_runner: IdempotentRunner,
        config: Optional[PublisherConfig] = None,
        github: Optional[GitHubIntegration] = None,
        notifier: Optional[SchemaChangeNotifier] = None,
        check_name_prefix: str = "GraphQL Hub",
    ) -> None:
        self.storage = storage
        self.manager = manager
        self.version_helper = version_helper
        self.checks = checks
        self.contracts = contracts
        self.artifacts = artifacts
        self.mutex = mutex
        self.idempotent_runner = idempotent_runner
        self.config = config or PublisherConfig()
        self.github = github
        self.notifier = notifier or NullNotifier()
        self.check_name_prefix = check_name_prefix
        self._background: Set[asyncio.Task] = set()

    def _model(self, project: Project) -> RegistryModel:
        return create_registry_model(project, self.manager.match_orchestrator(project.type), self.checks)

    async def _context(
        self,
        crumb: TargetBreadcrumb,
        approved_changes: Optional[Dict[str, SchemaChange]] = None,
    ) -> ModelContext:
        target_id = crumb.target.id
        latest, latest_composable, base_schema = await asyncio.gather(
            self.storage.get_latest_version(target_id),
            self.storage.get_latest_composable_version(target_id),
            self.storage.get_base_schema(target_id),
        )

        contracts: Optional[List[ContractCandidate]] = None
        if crumb.project.type is ProjectType.FEDERATION and not crumb.project.legacy_registry_model:
            contracts = [
                replace(c, approved_changes=approved_changes) if approved_changes else c
                for c in await self.contracts.get_contract_candidates(target_id)
            ]

        return ModelContext(
            organization=crumb.organization,
            project=crumb.project,
            target=crumb.target,
            latest=await self.version_helper.to_latest_version(latest),
            latest_composable=await self.version_helper.to_latest_version(latest_composable),
            base_schema=base_schema,
            contracts=contracts,
        )

    # GitHub

    def _check_run_name(self, operation: str) -> str:
        return f"{self.check_name_prefix} - {operation}"

    async def _start_check_run(
        self,
        repository: str,
        sha: str,
        operation: str,
    ) -> Tuple[Optional[GitHubCheckRunSuccess], Optional[str]]:
        """Create a check run. Returns the run, or the error message."""
        if self.github is None:
            return None, "GitHub integration is not configured"
        run = await self.github.create_check_run(repository, sha, self._check_run_name(operation))
        if isinstance(run, GitHubCheckRunError):
            logger.error(
                "Failed to create the check-run",
                extra={"repository": repository, "sha": sha, "error": run.message},
            )
            return None, run.message
        return run, None

    async def _resolve_check_run(
        self,
        repository: str,
        run: GitHubCheckRunSuccess,
        conclusion: CheckRunConclusion,
        output: CheckRunOutput,
    ) -> bool:
        if self.github is None:
            raise RegistryInvariantError("GitHub check run resolved without a GitHub integration")
        result = await self.github.update_check_run(
            repository,
            run.id,
            conclusion,
            output.title,
            truncate_summary(output.summary),
        )
        if isinstance(result, GitHubCheckRunError):
            logger.error(
                "Failed to update the check-run",
                extra={"repository": repository, "check_run_id": run.id, "error": result.message},
            )
            return False
        return True

    async def _fail_check_run(self, repository: str, run: GitHubCheckRunSuccess) -> None:
        try:
            await self._resolve_check_run(
                repository,
                run,
                CheckRunConclusion.FAILURE,
                CheckRunOutput(title="Internal error", summary="The operation failed unexpectedly."),
            )
        except Exception:
            logger.error("Failed to resolve the check-run", exc_info=True)

    # Check

    async def check(self, input: CheckInput) -> SchemaCheckResponse:
        logger.info(
            "Checking schema",
            extra={"target_id": input.target_id, "service": input.service, "sdl_length": len(input.sdl)},
        )
        crumb = await self.manager.get_breadcrumb(input.target_id)

        run: Optional[GitHubCheckRunSuccess] = None
        repository: Optional[str] = None
        if input.github is not None:
            repository = input.github.repository
            run, error = await self._start_check_run(repository, input.github.commit, "schema:check")
            if run is None:
                return GitHubSchemaCheckError(message=error or "Failed to create the check-run")

        try:
            response, output, success = await self._check(input, crumb, run)
        except Exception:
            if run is not None and repository is not None:
                await self._fail_check_run(repository, run)
            raise

        if run is None or repository is None:
            return response

        resolved = await self._resolve_check_run(
            repository,
            run,
            CheckRunConclusion.SUCCESS if success else CheckRunConclusion.FAILURE,
            output,
        )
        if not resolved:
            return GitHubSchemaCheckError(message="Failed to update the check-run")
        return GitHubSchemaCheckSuccess(
            message="Check-run created",
            schema_check_id=response.schema_check_id,
            check_run_url=run.url,
        )

    def _context_id(self, input: CheckInput) -> Optional[str]:
        if input.context_id is not None:
            return input.context_id
        if input.github is not None and input.github.pull_request_number:
            return f"{input.github.repository}#{input.github.pull_request_number}"
        return None

    async def _check(
        self,
        input: CheckInput,
        crumb: TargetBreadcrumb,
        run: Optional[GitHubCheckRunSuccess],
    ) -> Tuple[SchemaCheckResponse, CheckRunOutput, bool]:
        project = crumb.project
        model = self._model(project)
        labels = {"model": project.mode.value, "projectType": project.type.value}

        if project.type.is_composite and not input.service:
            logger.debug("Check rejected, missing service name", extra={"target_id": input.target_id})
            CHECK_COUNT.labels(conclusion="FAILURE", **labels).inc()
            errors = (SchemaError(message=MISSING_SERVICE_NAME),)
            return (
                SchemaCheckError(schema_check_id=None, errors=errors),
                render_check_output(False, errors=[MISSING_SERVICE_NAME]),
                False,
            )

        context_id = self._context_id(input)
        approved: Dict[str, SchemaChange] = {}
        if context_id is not None:
            approved = await self.storage.get_approved_schema_changes(input.target_id, context_id)

        ctx = await self._context(crumb, approved)
        conclusion = await model.check(ctx, input.sdl, input.service, approved_changes=approved)
        CHECK_COUNT.labels(conclusion=conclusion.conclusion.value, **labels).inc()

        created_at = _now_ms()
        check = SchemaCheck(
            id=str(uuid.uuid4()),
            target_id=input.target_id,
            created_at=created_at,
            schema_sdl=input.sdl,
            is_success=not isinstance(conclusion, CheckFailure),
            service_name=input.service,
            meta=build_check_meta(input.meta),
            schema_version_id=ctx.latest.id if ctx.latest else None,
            github_check_run_id=run.id if run is not None else None,
            github_repository=input.github.repository if input.github else None,
            github_sha=input.github.commit if input.github else None,
            context_id=context_id,
            # Checks linked to a check run are kept.
            expires_at=None if run is not None else self.manager.schema_check_expires_at(created_at),
        )

        if isinstance(conclusion, CheckFailure):
            state = conclusion.state
            diff = state.schema_changes
            check = replace(
                check,
                composite_schema_sdl=state.composite_schema_sdl,
                supergraph_sdl=state.supergraph_sdl,
                schema_composition_errors=state.composition_errors or None,
                breaking_schema_changes=diff.breaking if diff else None,
                safe_schema_changes=diff.safe if diff else None,
                schema_policy_warnings=state.schema_policy_warnings,
                schema_policy_errors=state.schema_policy_errors,
                contract_checks=tuple(_contract_check(c) for c in state.contracts) if state.contracts else None,
            )
            stored = await self.storage.create_schema_check(check)

            reasons = conclusion.reasons
            breaking = get_reason_by_code(reasons, CheckFailureReasonCode.BREAKING_CHANGES)
            composition = get_reason_by_code(reasons, CheckFailureReasonCode.COMPOSITION_FAILURE)
            policy = get_reason_by_code(reasons, CheckFailureReasonCode.POLICY_INFRINGEMENT)
            contract = get_reason_by_code(reasons, CheckFailureReasonCode.CONTRACT_FAILURE)

            messages: List[str] = []
            if composition is not None:
                messages.extend(e.message for e in composition.composition_errors or ())
            if breaking is not None:
                messages.extend(breaking.errors or ())
            if policy is not None:
                messages.extend(policy.errors or ())
            if contract is not None:
                messages.extend(f"Contract '{name}' failed" for name in contract.errors or ())

            changes = diff.all if diff else ()
            warnings = tuple(format_policy_message(w) for w in state.schema_policy_warnings or ())
            logger.info(
                "Schema check failed",
                extra={"schema_check_id": stored.id, "reasons": [r.code.value for r in reasons]},
            )
            return (
                SchemaCheckError(
                    schema_check_id=stored.id,
                    changes=changes,
                    errors=tuple(SchemaError(message=m) for m in messages),
                    warnings=warnings,
                ),
                render_check_output(False, changes=changes, errors=messages, warnings=warnings),
                False,
            )

        if isinstance(conclusion, CheckSkip):
            latest = ctx.latest
            check = replace(
                check,
                composite_schema_sdl=latest.composite_schema_sdl if latest else None,
                supergraph_sdl=latest.supergraph_sdl if latest else None,
            )
            stored = await self.storage.create_schema_check(check)
            logger.info("Schema check skipped, no changes", extra={"schema_check_id": stored.id})
            return (
                SchemaCheckSuccess(schema_check_id=stored.id, initial=False),
                render_check_output(True),
                True,
            )

        if not isinstance(conclusion, CheckSuccess):
            raise RegistryInvariantError(f"Unexpected check conclusion: {type(conclusion).__name__}")
        state = conclusion.state
        diff = state.schema_changes if state else None
        if state is not None:
            check = replace(
                check,
                composite_schema_sdl=state.composite_schema_sdl,
                supergraph_sdl=state.supergraph_sdl,
                breaking_schema_changes=diff.breaking if diff else None,
                safe_schema_changes=diff.safe if diff else None,
                schema_policy_warnings=state.schema_policy_warnings,
                contract_checks=tuple(_contract_check(c) for c in state.contracts) if state.contracts else None,
            )
        stored = await self.storage.create_schema_check(check)

        changes = diff.all if diff else ()
        warnings = tuple(format_policy_message(w) for w in (state.schema_policy_warnings if state else None) or ())
        logger.info("Schema check passed", extra={"schema_check_id": stored.id, "changes": len(changes)})
        return (
            SchemaCheckSuccess(
                schema_check_id=stored.id,
                initial=ctx.latest is None,
                changes=changes,
                warnings=warnings,
            ),
            render_check_output(True, changes=changes, warnings=warnings),
            True,
        )

    # Publish

    def publish_checksum(self, input: PublishInput) -> str:
        return hash_object(
            {
                "target": input.target_id,
                "sdl": input.sdl,
                "service": input.service,
                "url": input.url,
                "metadata": input.metadata,
                "author": input.author,
                "commit": input.commit,
                "force": input.force,
                "acceptBreakingChanges": input.experimental_accept_breaking_changes,
                "github": input.github.model_dump() if input.github else None,
            }
        )

    async def publish(
        self,
        input: PublishInput,
        signal: Optional[asyncio.Event] = None,
    ) -> SchemaPublishResponse:
        """Publish a schema.

        Args:
            input: Publish request
            signal: Abort signal; cancels the wait for the target lock

        Raises:
            NotFoundError: If the target hierarchy does not exist
            OperationAbortedError: If `signal` fired while waiting for the lock
        """
        checksum = self.publish_checksum(input)
        logger.debug("Schema publication", extra={"target_id": input.target_id, "checksum": checksum})

        async def executor() -> SchemaPublishResponse:
            async with self.mutex.lock(target_lock_key(input.target_id), signal=signal):
                logger.debug("Acquired publish lock", extra={"target_id": input.target_id})
                return await self._publish_with_check_run(input)

        return await self.idempotent_runner.run(
            input.idempotency_key(checksum),
            executor,
            ttl_seconds=self.config.idempotency_ttl_seconds,
            serialize=publish_response_to_dict,
            deserialize=publish_response_from_dict,
        )

    async def _publish_with_check_run(self, input: PublishInput) -> SchemaPublishResponse:
        crumb = await self.manager.get_breadcrumb(input.target_id)

        if input.github is None:
            response, _ = await self._publish(input, crumb)
            return response

        repository = input.github.repository
        run, error = await self._start_check_run(repository, input.github.commit, "schema:publish")
        if run is None:
            return GitHubSchemaPublishError(message=error or "Failed to create the check-run")

        try:
            response, output = await self._publish(input, crumb)
        except Exception:
            await self._fail_check_run(repository, run)
            raise

        if isinstance(response, SchemaPublishSuccess):
            if response.valid:
                conclusion = CheckRunConclusion.SUCCESS
            elif input.force:
                conclusion = CheckRunConclusion.NEUTRAL
            else:
                conclusion = CheckRunConclusion.FAILURE
        else:
            conclusion = CheckRunConclusion.FAILURE

        if not await self._resolve_check_run(repository, run, conclusion, output):
            return GitHubSchemaPublishError(message="Failed to update the check-run")
        version_id = response.version_id if isinstance(response, SchemaPublishSuccess) else None
        return GitHubSchemaPublishSuccess(message=output.title, version_id=version_id)

    async def _publish(
        self,
        input: PublishInput,
        crumb: TargetBreadcrumb,
    ) -> Tuple[SchemaPublishResponse, CheckRunOutput]:
        project = crumb.project
        model = self._model(project)
        labels = {"model": project.mode.value, "projectType": project.type.value}

        logger.info(
            "Publishing schema",
            extra={
                "target_id": input.target_id,
                "service": input.service,
                "commit": input.commit,
                "sdl_length": len(input.sdl),
                "force": input.force,
                "experimental_accept_breaking_changes": input.experimental_accept_breaking_changes,
                "metadata": input.metadata is not None,
            },
        )

        ctx = await self._context(crumb)
        conclusion = await model.publish(ctx, input)
        PUBLISH_COUNT.labels(conclusion=conclusion.conclusion.value, **labels).inc()

        if isinstance(conclusion, PublishIgnore):
            logger.debug("Publish ignored", extra={"target_id": input.target_id, "reason": conclusion.reason.value})
            return (
                SchemaPublishSuccess(initial=False, valid=True),
                render_publish_output(True, initial=False),
            )

        if isinstance(conclusion, PublishReject):
            return self._rejected(conclusion, input.force)

        if not isinstance(conclusion, PublishSuccess):
            raise RegistryInvariantError(f"Unexpected publish conclusion: {type(conclusion).__name__}")
        state = conclusion.state
        errors = (*_errors_of(state.composition_errors), *_change_errors(state.breaking_changes))

        schema, schemas = _with_final_id(state.schema, state.schemas)
        comparison = ctx.latest if model.is_legacy else ctx.comparison_version
        contracts = state.contracts if state.composable else None
        contract_artifacts = _contract_artifacts(contracts)

        async def deploy(version: SchemaVersion) -> None:
            if not state.composable:
                logger.debug("Skipping CDN deployment of a non-composable version", extra={"version_id": version.id})
                return
            await self._deploy_artifacts(
                project,
                input.target_id,
                schemas,
                state.full_schema_sdl,
                state.supergraph,
                contract_artifacts,
                reason="publish",
                version_id=version.id,
            )

        try:
            version = await self.manager.create_version(
                CreateVersionInput(
                    target_id=input.target_id,
                    schema=schema,
                    schemas=schemas,
                    is_composable=state.composable,
                    base_schema=ctx.base_schema,
                    composite_schema_sdl=state.full_schema_sdl,
                    supergraph_sdl=state.supergraph,
                    schema_composition_errors=state.composition_errors or None,
                    changes=state.changes,
                    diff_schema_version_id=comparison.id if comparison else None,
                    github_repository=input.github.repository if input.github else None,
                    github_sha=input.github.commit if input.github else None,
                    contracts=tuple(_contract_version_input(c) for c in state.contracts) if state.contracts else None,
                ),
                deploy,
            )
        except ArtifactStorageError:
            logger.error("Failed to deploy schema artifacts", extra={"target_id": input.target_id}, exc_info=True)
            errors_out = (SchemaError(message=ARTIFACT_DEPLOYMENT_FAILED),)
            return (
                SchemaPublishError(errors=errors_out),
                render_publish_output(False, initial=state.initial, errors=[ARTIFACT_DEPLOYMENT_FAILED]),
            )

        logger.info(
            "Created schema version",
            extra={"target_id": input.target_id, "version_id": version.id, "composable": version.is_composable},
        )

        self._dispatch_notification(
            SchemaChangeNotification(
                organization_id=crumb.organization.id,
                project_id=project.id,
                target_id=input.target_id,
                version_id=version.id,
                initial=state.initial,
                changes=state.changes or (),
                messages=state.messages,
                errors=state.composition_errors or (),
                link=self._link(crumb, version.id),
                meta={"author": input.author, "commit": input.commit},
            )
        )

        changes = state.changes or ()
        return (
            SchemaPublishSuccess(
                initial=state.initial,
                valid=state.composable,
                changes=changes,
                message="\n".join(state.messages) or None,
                link_to_website=self._link(crumb, version.id),
                version_id=version.id,
            ),
            render_publish_output(
                state.composable,
                initial=state.initial,
                changes=changes,
                errors=[e.message for e in errors],
                messages=state.messages,
                forced=input.force,
            ),
        )

    def _rejected(self, conclusion: PublishReject, forced: bool) -> Tuple[SchemaPublishResponse, CheckRunOutput]:
        reasons = conclusion.reasons
        logger.debug("Publish rejected", extra={"reasons": [r.code.value for r in reasons]})

        if get_reason_by_code(reasons, PublishFailureReasonCode.MISSING_SERVICE_NAME):
            return (
                SchemaPublishMissingServiceError(message=MISSING_SERVICE_NAME),
                render_publish_output(False, initial=False, errors=[MISSING_SERVICE_NAME]),
            )
        if get_reason_by_code(reasons, PublishFailureReasonCode.MISSING_SERVICE_URL):
            return (
                SchemaPublishMissingUrlError(message=MISSING_SERVICE_URL),
                render_publish_output(False, initial=False, errors=[MISSING_SERVICE_URL]),
            )

        breaking = get_reason_by_code(reasons, PublishFailureReasonCode.BREAKING_CHANGES)
        composition = get_reason_by_code(reasons, PublishFailureReasonCode.COMPOSITION_FAILURE)

        errors: List[SchemaError] = []
        if breaking is not None:
            errors.extend(_change_errors(breaking.breaking_changes))
        if composition is not None:
            errors.extend(_errors_of(composition.composition_errors))
        if get_reason_by_code(reasons, PublishFailureReasonCode.INVALID_SERVICE_URL):
            errors.append(SchemaError(message=INVALID_SERVICE_URL))
        if get_reason_by_code(reasons, PublishFailureReasonCode.METADATA_PARSING_FAILURE):
            errors.append(SchemaError(message=METADATA_PARSING_FAILED))

        changes = (breaking.changes or ()) if breaking is not None else ()
        return (
            SchemaPublishError(changes=changes, errors=tuple(errors)),
            render_publish_output(
                False,
                initial=False,
                changes=changes,
                errors=[e.message for e in errors],
                forced=forced,
            ),
        )

    def _link(self, crumb: TargetBreadcrumb, version_id: str) -> Optional[str]:
        template = self.config.publish_link_template
        if not template:
            return None
        return template.format(
            organization=crumb.organization.slug,
            project=crumb.project.slug,
            target=crumb.target.slug,
            version=version_id,
        )

    def _dispatch_notification(self, notification: SchemaChangeNotification) -> None:
        task = asyncio.create_task(self._notify(notification))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _notify(self, notification: SchemaChangeNotification) -> None:
        try:
            await self.notifier.notify(notification)
        except Exception:
            logger.error(
                "Failed to trigger schema change notifications",
                extra={"target_id": notification.target_id, "version_id": notification.version_id},
                exc_info=True,
            )

    async def drain(self) -> None:
        """Wait for detached notification tasks (shutdown and tests)."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # Delete

    async def delete(
        self,
        input: DeleteInput,
        signal: Optional[asyncio.Event] = None,
    ) -> SchemaDeleteResponse:
        """Remove a service from a composite target.

        Raises:
            UnsupportedOperationError: On legacy model or SINGLE projects
            OperationAbortedError: If `signal` fired while waiting for the lock
        """
        crumb = await self.manager.get_breadcrumb(input.target_id)
        project = crumb.project
        model = self._model(project)
        model.ensure_delete_supported()

        async with self.mutex.lock(target_lock_key(input.target_id), signal=signal):
            logger.info(
                "Deleting service",
                extra={"target_id": input.target_id, "service": input.service_name, "dry_run": input.dry_run},
            )
            ctx = await self._context(crumb)
            conclusion = await model.delete(ctx, input.service_name)
            DELETE_COUNT.labels(projectType=project.type.value, conclusion=conclusion.conclusion.value).inc()

            if isinstance(conclusion, DeleteReject):
                errors: List[SchemaError] = []
                for reason in conclusion.reasons:
                    if reason.composition_errors:
                        errors.extend(_errors_of(reason.composition_errors))
                    elif reason.code is DeleteFailureReasonCode.SERVICE_NOT_FOUND:
                        errors.append(SchemaError(message=f"Service '{input.service_name}' does not exist"))
                    else:
                        errors.append(SchemaError(message=MISSING_SERVICE_NAME))
                return SchemaDeleteError(errors=tuple(errors))

            state = conclusion.state
            errors_out = (*_errors_of(state.composition_errors), *_change_errors(state.breaking_changes))
            if input.dry_run:
                return SchemaDeleteSuccess(
                    valid=state.composable,
                    changes=state.changes,
                    errors=errors_out,
                    dry_run=True,
                )

            tombstone = replace(model.build_tombstone(input.target_id, input.service_name), id=str(uuid.uuid4()))
            comparison = ctx.comparison_version
            contract_artifacts = _contract_artifacts(state.contracts if state.composable else None)

            async def deploy(version: SchemaVersion) -> None:
                if state.composable:
                    await self._deploy_artifacts(
                        project,
                        input.target_id,
                        state.schemas,
                        state.full_schema_sdl,
                        state.supergraph,
                        contract_artifacts,
                        reason="delete",
                        version_id=version.id,
                    )

            version = await self.manager.delete_schema(
                DeleteSchemaInput(
                    target_id=input.target_id,
                    tombstone=tombstone,
                    schemas=state.schemas,
                    is_composable=state.composable,
                    base_schema=ctx.base_schema,
                    composite_schema_sdl=state.full_schema_sdl,
                    supergraph_sdl=state.supergraph,
                    schema_composition_errors=state.composition_errors or None,
                    changes=state.changes,
                    diff_schema_version_id=comparison.id if comparison else None,
                    contracts=tuple(_contract_version_input(c) for c in state.contracts) if state.contracts else None,
                ),
                deploy,
            )

            self._dispatch_notification(
                SchemaChangeNotification(
                    organization_id=crumb.organization.id,
                    project_id=project.id,
                    target_id=input.target_id,
                    version_id=version.id,
                    initial=False,
                    changes=state.changes,
                    errors=state.composition_errors,
                    link=self._link(crumb, version.id),
                    meta={"deletedService": input.service_name},
                )
            )

            return SchemaDeleteSuccess(
                valid=state.composable,
                changes=state.changes,
                errors=errors_out,
                version_id=version.id,
            )

    # Version status / CDN

    async def update_version_status(self, input: UpdateVersionStatusInput) -> SchemaVersion:
        """Flip a version's composable flag (legacy projects only).

        Raises:
            UnsupportedOperationError: On modern registry model projects
            NotFoundError: If the version does not belong to the target
        """
        crumb = await self.manager.get_breadcrumb(input.target_id)
        await self.manager.get_version(input.target_id, input.version_id)
        updated = await self.manager.update_version_status(crumb.project, input.version_id, input.valid)

        if updated.is_composable:
            latest_valid = await self.storage.get_latest_composable_version(input.target_id)
            if latest_valid is not None and latest_valid.id == updated.id:
                logger.info("Version is now promoted to latest valid", extra={"version_id": updated.id})
                await self._deploy_version(crumb.project, updated, reason="status_change")

        return updated

    async def sync(self, target_id: str) -> SchemaVersion:
        """Re-upload the artifacts of the latest valid version.

        Raises:
            NotFoundError: If the target has no valid version
        """
        logger.info("Syncing CDN with storage", extra={"target_id": target_id})
        crumb = await self.manager.get_breadcrumb(target_id)
        version = await self.storage.get_latest_composable_version(target_id)
        if version is None:
            raise NotFoundError("SchemaVersion")
        try:
            await self._deploy_version(crumb.project, version, reason="sync")
        except Exception:
            logger.error("Failed to sync with CDN", extra={"target_id": target_id}, exc_info=True)
            raise
        return version

    async def _deploy_version(self, project: Project, version: SchemaVersion, reason: str) -> None:
        schemas = await self.storage.get_schemas_of_version(version.id)
        full_schema_sdl, supergraph = await asyncio.gather(
            self.version_helper.get_composite_schema_sdl(project, version),
            self.version_helper.get_supergraph_sdl(project, version),
        )
        contract_versions = await self.storage.get_contract_versions(version.id)
        contracts = [
            ContractArtifacts(
                contract_name=c.contract_name,
                composite_schema_sdl=c.composite_schema_sdl,
                supergraph_sdl=c.supergraph_sdl,
            )
            for c in contract_versions
            if c.is_composable and c.composite_schema_sdl
        ]
        await self._deploy_artifacts(
            project,
            version.target_id,
            schemas,
            full_schema_sdl,
            supergraph,
            contracts,
            reason=reason,
            version_id=version.id,
        )

    async def _deploy_artifacts(
        self,
        project: Project,
        target_id: str,
        schemas: Sequence[Schema],
        full_schema_sdl: Optional[str],
        supergraph: Optional[str],
        contracts: Sequence[ContractArtifacts] = (),
        reason: str = "publish",
        version_id: Optional[str] = None,
    ) -> None:
        """Write sdl / services / supergraph / metadata (and contract) artifacts."""
        logger.info(
            "Deploying version to CDN",
            extra={"target_id": target_id, "version_id": version_id, "reason": reason},
        )
        writes: List[Any] = []

        if full_schema_sdl:
            writes.append(self.artifacts.write_artifact(target_id, ArtifactType.SDL, full_schema_sdl))

        if project.type.is_composite:
            services = [
                {"name": s.service_name, "sdl": s.sdl, "url": s.service_url}
                for s in ensure_composite_schemas(schemas)
            ]
            writes.append(self.artifacts.write_artifact(target_id, ArtifactType.SERVICES, services))

        metadata = [json.loads(s.metadata) for s in schemas if isinstance(s.metadata, str)]
        if metadata:
            writes.append(
                self.artifacts.write_artifact(
                    target_id,
                    ArtifactType.METADATA,
                    metadata[0] if len(metadata) == 1 else metadata,
                )
            )

        if project.type is ProjectType.FEDERATION and supergraph:
            writes.append(self.artifacts.write_artifact(target_id, ArtifactType.SUPERGRAPH, supergraph))

        for contract in contracts:
            if contract.composite_schema_sdl:
                writes.append(
                    self.artifacts.write_artifact(
                        target_id, ArtifactType.SDL, contract.composite_schema_sdl, contract.contract_name
                    )
                )
            if contract.supergraph_sdl:
                writes.append(
                    self.artifacts.write_artifact(
                        target_id, ArtifactType.SUPERGRAPH, contract.supergraph_sdl, contract.contract_name
                    )
                )

        await asyncio.gather(*writes)
