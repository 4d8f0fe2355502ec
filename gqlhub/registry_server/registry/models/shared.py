"""
Conclusions, reason codes and result records of registry models.

Every model operation returns exactly one conclusion record:

    check:   CheckSuccess | CheckFailure | CheckSkip
    publish: PublishSuccess | PublishReject | PublishIgnore
    delete:  DeleteAccept | DeleteReject

Invariants:
    - A rejection always carries at least one reason
    - CheckSkip means "nothing changed, reuse the previous result", never
      "passed"
    - Reason codes are part of the external contract, never rename them

How to change safely:
    - New reason codes are additive; clients treat unknown codes as generic
      failures
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Sequence, Tuple, Union

from ...schema.changes import SchemaChange
from ...schema.types import Schema, SchemaCompositionError, SchemaPolicyRecord
from ..checks import CompositionFailure, CompositionSuccess, DiffResult, PolicyResult
from ..results import CheckResult, Completed, Failed

TEMP = "temp"


class SchemaCheckConclusion(Enum):
    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"
    SKIP = "SKIP"


class SchemaPublishConclusion(Enum):
    PUBLISH = "PUBLISH"
    REJECT = "REJECT"
    IGNORE = "IGNORE"


class SchemaDeleteConclusion(Enum):
    ACCEPT = "ACCEPT"
    REJECT = "REJECT"


class CheckFailureReasonCode(Enum):
    MISSING_SERVICE_URL = "MISSING_SERVICE_URL"
    MISSING_SERVICE_NAME = "MISSING_SERVICE_NAME"
    COMPOSITION_FAILURE = "COMPOSITION_FAILURE"
    BREAKING_CHANGES = "BREAKING_CHANGES"
    POLICY_INFRINGEMENT = "POLICY_INFRINGEMENT"
    CONTRACT_FAILURE = "CONTRACT_FAILURE"


class PublishFailureReasonCode(Enum):
    MISSING_SERVICE_URL = "MISSING_SERVICE_URL"
    INVALID_SERVICE_URL = "INVALID_SERVICE_URL"
    MISSING_SERVICE_NAME = "MISSING_SERVICE_NAME"
    COMPOSITION_FAILURE = "COMPOSITION_FAILURE"
    BREAKING_CHANGES = "BREAKING_CHANGES"
    METADATA_PARSING_FAILURE = "METADATA_PARSING_FAILURE"


class PublishIgnoreReasonCode(Enum):
    NO_CHANGES = "NO_CHANGES"


class DeleteFailureReasonCode(Enum):
    MISSING_SERVICE_NAME = "MISSING_SERVICE_NAME"
    SERVICE_NOT_FOUND = "SERVICE_NOT_FOUND"
    COMPOSITION_FAILURE = "COMPOSITION_FAILURE"


ReasonCode = Union[CheckFailureReasonCode, PublishFailureReasonCode, DeleteFailureReasonCode]


@dataclass(frozen=True)
class FailureReason:
    """Why an operation was rejected.

    Only the fields relevant to the code are set: composition errors for
    COMPOSITION_FAILURE, changes for BREAKING_CHANGES, policy errors for
    POLICY_INFRINGEMENT.
    """

    code: ReasonCode
    composition_errors: Optional[Tuple[SchemaCompositionError, ...]] = None
    breaking_changes: Optional[Tuple[SchemaChange, ...]] = None
    changes: Optional[Tuple[SchemaChange, ...]] = None
    errors: Optional[Tuple[str, ...]] = None


def get_reason_by_code(reasons: Sequence[FailureReason], code: ReasonCode) -> Optional[FailureReason]:
    for reason in reasons:
        if reason.code is code:
            return reason
    return None


@dataclass(frozen=True)
class ContractCheckOutcome:
    """Composition and diff of one contract, computed alongside the main schema."""

    contract_id: str
    contract_name: str
    compared_contract_version_id: Optional[str]
    composition_check: CheckResult[CompositionSuccess, CompositionFailure]
    diff_check: CheckResult[DiffResult, DiffResult]

    @property
    def is_success(self) -> bool:
        return isinstance(self.composition_check, Completed) and not isinstance(self.diff_check, Failed)

    @property
    def composite_schema_sdl(self) -> Optional[str]:
        return _composition_sdl(self.composition_check)

    @property
    def supergraph_sdl(self) -> Optional[str]:
        return _composition_supergraph(self.composition_check)

    @property
    def composition_errors(self) -> Optional[Tuple[SchemaCompositionError, ...]]:
        if isinstance(self.composition_check, Failed):
            return self.composition_check.reason.errors
        return None

    @property
    def diff(self) -> Optional[DiffResult]:
        return _diff_of(self.diff_check)


@dataclass(frozen=True)
class CheckSuccessState:
    schema_changes: Optional[DiffResult]
    schema_policy_warnings: Optional[Tuple[SchemaPolicyRecord, ...]]
    composite_schema_sdl: Optional[str]
    supergraph_sdl: Optional[str]
    contracts: Optional[Tuple[ContractCheckOutcome, ...]] = None


@dataclass(frozen=True)
class CheckFailureState:
    """Everything a failed check found, across all check dimensions."""

    composition_errors: Tuple[SchemaCompositionError, ...]
    schema_changes: Optional[DiffResult]
    schema_policy_warnings: Optional[Tuple[SchemaPolicyRecord, ...]]
    schema_policy_errors: Optional[Tuple[SchemaPolicyRecord, ...]]
    composite_schema_sdl: Optional[str]
    supergraph_sdl: Optional[str]
    contracts: Optional[Tuple[ContractCheckOutcome, ...]] = None


@dataclass(frozen=True)
class CheckSuccess:
    state: Optional[CheckSuccessState]

    conclusion = SchemaCheckConclusion.SUCCESS


@dataclass(frozen=True)
class CheckFailure:
    state: CheckFailureState

    conclusion = SchemaCheckConclusion.FAILURE

    @property
    def reasons(self) -> List[FailureReason]:
        reasons: List[FailureReason] = []
        if self.state.composition_errors:
            reasons.append(
                FailureReason(
                    code=CheckFailureReasonCode.COMPOSITION_FAILURE,
                    composition_errors=self.state.composition_errors,
                )
            )
        changes = self.state.schema_changes
        if changes is not None and changes.errors:
            reasons.append(
                FailureReason(
                    code=CheckFailureReasonCode.BREAKING_CHANGES,
                    breaking_changes=changes.breaking,
                    changes=changes.all,
                    errors=tuple(e.message for e in changes.errors),
                )
            )
        if self.state.schema_policy_errors:
            reasons.append(
                FailureReason(
                    code=CheckFailureReasonCode.POLICY_INFRINGEMENT,
                    errors=tuple(format_policy_message(r) for r in self.state.schema_policy_errors),
                )
            )
        if self.state.contracts and any(not c.is_success for c in self.state.contracts):
            reasons.append(
                FailureReason(
                    code=CheckFailureReasonCode.CONTRACT_FAILURE,
                    errors=tuple(c.contract_name for c in self.state.contracts if not c.is_success),
                )
            )
        return reasons


@dataclass(frozen=True)
class CheckSkip:
    conclusion = SchemaCheckConclusion.SKIP


CheckConclusion = Union[CheckSuccess, CheckFailure, CheckSkip]


@dataclass(frozen=True)
class PublishState:
    """The schema set a successful publish will persist.

    Attributes:
        composable: Whether the new version composes (legacy: and has no
            unaccepted breaking changes)
        initial: No previous version existed
        changes: Every detected change
        messages: Human-readable notices ("Metadata has been updated")
        breaking_changes: Breaking changes (legacy only)
        composition_errors: Composition errors, when not composable
        schema: The pushed schema record
        schemas: The full schema set of the new version
        supergraph: Federation supergraph
        full_schema_sdl: Composed SDL
        contracts: Per-contract composition and diff (federation)
    """

    composable: bool
    initial: bool
    changes: Optional[Tuple[SchemaChange, ...]]
    messages: Tuple[str, ...]
    breaking_changes: Optional[Tuple[SchemaChange, ...]]
    composition_errors: Optional[Tuple[SchemaCompositionError, ...]]
    schema: Schema
    schemas: Tuple[Schema, ...]
    supergraph: Optional[str]
    full_schema_sdl: Optional[str]
    contracts: Optional[Tuple[ContractCheckOutcome, ...]] = None


@dataclass(frozen=True)
class PublishSuccess:
    state: PublishState

    conclusion = SchemaPublishConclusion.PUBLISH


@dataclass(frozen=True)
class PublishReject:
    reasons: Tuple[FailureReason, ...]

    conclusion = SchemaPublishConclusion.REJECT


@dataclass(frozen=True)
class PublishIgnore:
    reason: PublishIgnoreReasonCode = PublishIgnoreReasonCode.NO_CHANGES

    conclusion = SchemaPublishConclusion.IGNORE


PublishConclusion = Union[PublishSuccess, PublishReject, PublishIgnore]


@dataclass(frozen=True)
class DeleteState:
    composable: bool
    full_schema_sdl: Optional[str]
    changes: Tuple[SchemaChange, ...]
    breaking_changes: Tuple[SchemaChange, ...]
    composition_errors: Tuple[SchemaCompositionError, ...]
    supergraph: Optional[str]
    schemas: Tuple[Schema, ...]
    contracts: Optional[Tuple[ContractCheckOutcome, ...]] = None


@dataclass(frozen=True)
class DeleteAccept:
    state: DeleteState

    conclusion = SchemaDeleteConclusion.ACCEPT


@dataclass(frozen=True)
class DeleteReject:
    reasons: Tuple[FailureReason, ...]

    conclusion = SchemaDeleteConclusion.REJECT


DeleteConclusion = Union[DeleteAccept, DeleteReject]


def _composition_sdl(check: CheckResult[CompositionSuccess, CompositionFailure]) -> Optional[str]:
    if isinstance(check, Completed):
        return check.result.full_schema_sdl
    if isinstance(check, Failed):
        return check.reason.full_schema_sdl
    return None


def _composition_supergraph(check: CheckResult[CompositionSuccess, CompositionFailure]) -> Optional[str]:
    if isinstance(check, Completed):
        return check.result.supergraph
    if isinstance(check, Failed):
        return check.reason.supergraph
    return None


def _diff_of(check: CheckResult[DiffResult, DiffResult]) -> Optional[DiffResult]:
    if isinstance(check, Completed):
        return check.result
    if isinstance(check, Failed):
        return check.reason
    return None


def build_schema_check_failure_state(
    composition_check: CheckResult[CompositionSuccess, CompositionFailure],
    diff_check: CheckResult[DiffResult, DiffResult],
    policy_check: Optional[CheckResult[PolicyResult, PolicyResult]],
    contract_checks: Optional[Sequence[ContractCheckOutcome]] = None,
) -> CheckFailureState:
    """Aggregate every check dimension into one failure state."""
    composition_errors: Tuple[SchemaCompositionError, ...] = ()
    if isinstance(composition_check, Failed):
        composition_errors = composition_check.reason.errors

    policy_warnings: Optional[Tuple[SchemaPolicyRecord, ...]] = None
    policy_errors: Optional[Tuple[SchemaPolicyRecord, ...]] = None
    if isinstance(policy_check, Completed):
        policy_warnings = policy_check.result.warnings
    elif isinstance(policy_check, Failed):
        policy_warnings = policy_check.reason.warnings
        policy_errors = policy_check.reason.errors

    composed = isinstance(composition_check, Completed)

    return CheckFailureState(
        composition_errors=composition_errors,
        schema_changes=_diff_of(diff_check),
        schema_policy_warnings=policy_warnings,
        schema_policy_errors=policy_errors,
        composite_schema_sdl=_composition_sdl(composition_check) if composed else None,
        supergraph_sdl=_composition_supergraph(composition_check) if composed else None,
        contracts=tuple(contract_checks) if contract_checks else None,
    )


def format_policy_message(record: SchemaPolicyRecord) -> str:
    """Render a policy record, naming the rule that produced it.

    Example:
        >>> format_policy_message(SchemaPolicyRecord(message="No", rule_id="naming"))
        'No (source: policy-naming)'
    """
    if record.rule_id:
        return f"{record.message} (source: policy-{record.rule_id})"
    return record.message
