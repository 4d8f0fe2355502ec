"""
Schema contracts: tag-filtered public variants of a federated schema.

A contract is composed together with the main schema (one orchestrator
call for all contracts) and each contract result is diffed against the
contract's own last valid version.

Invariants:
    - A failing contract never aborts the main check, it is reported
      next to the other failure dimensions
    - Contract names are unique per target
    - Include and exclude tags never intersect

How to change safely:
    - Contract diffs always filter federation plumbing changes, the public
      API schema never exposes them
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING, List, Mapping, Optional, Sequence, Tuple

from pydantic import BaseModel, Field, ValidationError as PydanticValidationError, model_validator

from ..artifacts.storage import ArtifactType
from ..errors import NotFoundError, ValidationError
from ..orchestrator.base import ContractCompositionResult, ContractFilter, ContractInput
from ..schema.changes import SchemaChange
from ..schema.types import (
    CompositionErrorSource,
    ConditionalBreakingChangeConfig,
    Contract,
    ContractVersion,
    SchemaCompositionError,
)
from ..storage.base import DuplicateEntityError
from .checks import CompositionFailure, CompositionSuccess, RegistryChecks
from .models.shared import ContractCheckOutcome
from .results import CheckResult, Completed, Failed

if TYPE_CHECKING:
    from ..artifacts.storage import ArtifactStorage
    from ..storage.base import Storage

logger = logging.getLogger(__name__)

CONTRACT_NAME_NOT_UNIQUE = "Must be unique across all target contracts."


@dataclass(frozen=True)
class ContractCandidate:
    """An active contract together with its comparison baseline.

    Attributes:
        contract: The contract definition
        latest_valid_version: Last composable version of the contract
        approved_changes: Changes approved for this contract, keyed by id
    """

    contract: Contract
    latest_valid_version: Optional[ContractVersion] = None
    approved_changes: Optional[Mapping[str, SchemaChange]] = None

    def to_input(self) -> ContractInput:
        return ContractInput(
            id=self.contract.id,
            filter=ContractFilter(
                include_tags=self.contract.include_tags,
                exclude_tags=self.contract.exclude_tags,
                remove_unreachable_types_from_public_api_schema=(
                    self.contract.remove_unreachable_types_from_public_api_schema
                ),
            ),
        )


def _find_contract_result(
    composition_check: CheckResult[CompositionSuccess, CompositionFailure],
    contract_id: str,
) -> Optional[ContractCompositionResult]:
    contracts = None
    if isinstance(composition_check, Completed):
        contracts = composition_check.result.contracts
    elif isinstance(composition_check, Failed):
        contracts = composition_check.reason.contracts
    for result in contracts or ():
        if result.id == contract_id:
            return result
    return None


def _contract_composition_check(
    result: Optional[ContractCompositionResult],
) -> CheckResult[CompositionSuccess, CompositionFailure]:
    if result is None:
        return Failed(
            CompositionFailure(
                errors=(
                    SchemaCompositionError(
                        message="Contract was not composed",
                        source=CompositionErrorSource.COMPOSITION,
                    ),
                )
            )
        )
    if result.errors or result.sdl is None:
        return Failed(
            CompositionFailure(
                errors=result.errors
                or (
                    SchemaCompositionError(
                        message="Contract composition produced no schema",
                        source=CompositionErrorSource.COMPOSITION,
                    ),
                ),
                full_schema_sdl=result.sdl,
                supergraph=result.supergraph,
            )
        )
    return Completed(CompositionSuccess(full_schema_sdl=result.sdl, supergraph=result.supergraph))


def is_contract_checks_successful(contract_checks: Optional[Sequence[ContractCheckOutcome]]) -> bool:
    """True when every contract composed and has no blocking changes."""
    if not contract_checks:
        return True
    return all(c.is_success for c in contract_checks)


class ContractsChecks:
    """Per-contract composition and diff, derived from the main composition."""

    def __init__(self, checks: RegistryChecks) -> None:
        self.checks = checks

    async def get_contract_checks(
        self,
        contracts: Optional[Sequence[ContractCandidate]],
        composition_check: CheckResult[CompositionSuccess, CompositionFailure],
        conditional_breaking_change_config: Optional[ConditionalBreakingChangeConfig] = None,
    ) -> Optional[Tuple[ContractCheckOutcome, ...]]:
        if not contracts:
            return None

        outcomes = await asyncio.gather(
            *(
                self._get_contract_check(candidate, composition_check, conditional_breaking_change_config)
                for candidate in contracts
            )
        )
        return tuple(outcomes)

    async def _get_contract_check(
        self,
        candidate: ContractCandidate,
        composition_check: CheckResult[CompositionSuccess, CompositionFailure],
        conditional_breaking_change_config: Optional[ConditionalBreakingChangeConfig],
    ) -> ContractCheckOutcome:
        contract = candidate.contract
        contract_composition = _contract_composition_check(
            _find_contract_result(composition_check, contract.id)
        )

        incoming_sdl = None
        if isinstance(contract_composition, Completed):
            incoming_sdl = contract_composition.result.full_schema_sdl
        elif isinstance(contract_composition, Failed):
            incoming_sdl = contract_composition.reason.full_schema_sdl

        baseline = candidate.latest_valid_version
        diff_check = await self.checks.diff(
            existing_sdl=baseline.composite_schema_sdl if baseline else None,
            incoming_sdl=incoming_sdl,
            approved_changes=candidate.approved_changes,
            conditional_breaking_change_config=conditional_breaking_change_config,
            filter_out_federation_changes=True,
        )

        outcome = ContractCheckOutcome(
            contract_id=contract.id,
            contract_name=contract.contract_name,
            compared_contract_version_id=baseline.id if baseline else None,
            composition_check=contract_composition,
            diff_check=diff_check,
        )
        logger.debug(
            "Contract checked",
            extra={"contract_id": contract.id, "is_success": outcome.is_success},
        )
        return outcome


class CreateContractInput(BaseModel):
    """Definition of a new contract."""

    target_id: str = Field(..., description="Target the contract belongs to")
    contract_name: str = Field(..., min_length=2, max_length=64, description="Unique per target")
    include_tags: Optional[List[str]] = Field(None, description="Only elements with these tags")
    exclude_tags: Optional[List[str]] = Field(None, description="Drop elements with these tags")
    remove_unreachable_types_from_public_api_schema: bool = Field(
        False, description="Drop types no longer reachable from the root types"
    )

    @model_validator(mode="after")
    def validate_tags(self) -> CreateContractInput:
        if not self.include_tags and not self.exclude_tags:
            raise ValueError("Provide at least one value for either included tags or excluded tags")
        if set(self.include_tags or ()) & set(self.exclude_tags or ()):
            raise ValueError("Included and exclude tags must not intersect")
        return self


class ContractsManager:
    """Create, disable and list contracts of a target.

    Args:
        storage: Registry storage
        artifacts: CDN artifact writer; a disabled contract's artifacts are
            removed
    """

    def __init__(self, storage: Storage, artifacts: Optional[ArtifactStorage] = None) -> None:
        self.storage = storage
        self.artifacts = artifacts

    async def create_contract(
        self,
        target_id: str,
        contract_name: str,
        include_tags: Optional[Sequence[str]] = None,
        exclude_tags: Optional[Sequence[str]] = None,
        remove_unreachable_types_from_public_api_schema: bool = False,
    ) -> Contract:
        """Validate and persist a new contract.

        Raises:
            ValidationError: If the definition is invalid or the name is taken
            NotFoundError: If the target does not exist
        """
        try:
            data = CreateContractInput(
                target_id=target_id,
                contract_name=contract_name,
                include_tags=list(include_tags) if include_tags is not None else None,
                exclude_tags=list(exclude_tags) if exclude_tags is not None else None,
                remove_unreachable_types_from_public_api_schema=(
                    remove_unreachable_types_from_public_api_schema
                ),
            )
        except PydanticValidationError as e:
            errors = [err["msg"] for err in e.errors()]
            logger.debug("Contract definition rejected", extra={"errors": errors})
            field_name = None
            first_loc = e.errors()[0].get("loc") if e.errors() else None
            if first_loc:
                field_name = str(first_loc[0])
            raise ValidationError("Invalid contract definition", field_name=field_name, errors=errors) from e

        if await self.storage.get_target(data.target_id) is None:
            raise NotFoundError("Target", data.target_id)

        contract = Contract(
            id=str(uuid.uuid4()),
            target_id=data.target_id,
            contract_name=data.contract_name,
            include_tags=tuple(data.include_tags) if data.include_tags else None,
            exclude_tags=tuple(data.exclude_tags) if data.exclude_tags else None,
            remove_unreachable_types_from_public_api_schema=(
                data.remove_unreachable_types_from_public_api_schema
            ),
            created_at=_now_ms(),
        )

        try:
            created = await self.storage.create_contract(contract)
        except DuplicateEntityError as e:
            raise ValidationError(
                CONTRACT_NAME_NOT_UNIQUE,
                field_name="contract_name",
                errors=[CONTRACT_NAME_NOT_UNIQUE],
            ) from e

        logger.info(
            "Contract created",
            extra={"contract_id": created.id, "target_id": created.target_id},
        )
        return created

    async def disable_contract(self, contract_id: str) -> Contract:
        """Disable a contract and remove its CDN artifacts.

        Raises:
            NotFoundError: If the contract does not exist
            ValidationError: If the contract is already disabled
        """
        contract = await self.storage.get_contract(contract_id)
        if contract is None:
            raise NotFoundError("Contract", contract_id)
        if contract.is_disabled:
            raise ValidationError("Contract is already disabled.", field_name="contract_id")

        disabled = await self.storage.disable_contract(contract_id)

        if self.artifacts is not None:
            await asyncio.gather(
                self.artifacts.delete_artifact(contract.target_id, ArtifactType.SDL, contract.contract_name),
                self.artifacts.delete_artifact(
                    contract.target_id, ArtifactType.SUPERGRAPH, contract.contract_name
                ),
            )

        logger.info("Contract disabled", extra={"contract_id": contract_id})
        return disabled

    async def get_active_contracts(self, target_id: str) -> List[Contract]:
        return await self.storage.get_contracts(target_id)

    async def get_contracts(self, target_id: str) -> List[Contract]:
        return await self.storage.get_contracts(target_id, include_disabled=True)

    async def get_contract_candidates(
        self,
        target_id: str,
        approved_changes: Optional[Mapping[str, Mapping[str, SchemaChange]]] = None,
    ) -> List[ContractCandidate]:
        """Active contracts with their last valid versions, ready for a check or publish."""
        contracts = await self.get_active_contracts(target_id)
        versions = await asyncio.gather(
            *(self.storage.get_latest_valid_contract_version(c.id) for c in contracts)
        )
        return [
            ContractCandidate(
                contract=contract,
                latest_valid_version=version,
                approved_changes=(approved_changes or {}).get(contract.id),
            )
            for contract, version in zip(contracts, versions)
        ]


def _now_ms() -> int:
    return int(time.time() * 1000)
