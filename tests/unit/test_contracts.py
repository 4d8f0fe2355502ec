"""
Unit tests for schema contracts.

Tests cover:
- Contract definition validation
- Unique contract names per target
- Disabling contracts and removing their artifacts
- Contract candidates with their last valid versions
- Per-contract composition and diff outcomes
"""

import pytest

from gqlhub.registry_server.artifacts import ArtifactType, InMemoryArtifactStorage
from gqlhub.registry_server.errors import NotFoundError, ValidationError
from gqlhub.registry_server.orchestrator.base import ContractCompositionResult
from gqlhub.registry_server.registry.checks import CompositionSuccess, RegistryChecks
from gqlhub.registry_server.registry.contracts import (
    CONTRACT_NAME_NOT_UNIQUE,
    ContractCandidate,
    ContractsChecks,
    ContractsManager,
    is_contract_checks_successful,
)
from gqlhub.registry_server.registry.results import SKIPPED, Completed, Failed
from gqlhub.registry_server.schema.inspector import Inspector
from gqlhub.registry_server.schema.types import (
    Contract,
    ContractVersion,
    Organization,
    Project,
    ProjectType,
    Target,
)
from gqlhub.registry_server.storage import InMemoryStorage


class TestContractsManager:
    """Tests for ContractsManager."""

    @pytest.fixture
    def storage(self):
        storage = InMemoryStorage()
        storage.add_organization(Organization(id="o1", slug="acme"))
        storage.add_project(Project(id="p1", org_id="o1", slug="api", type=ProjectType.FEDERATION))
        storage.add_target(Target(id="t1", project_id="p1", org_id="o1", slug="production"))
        return storage

    @pytest.fixture
    def artifacts(self):
        return InMemoryArtifactStorage()

    @pytest.fixture
    def manager(self, storage, artifacts):
        return ContractsManager(storage, artifacts)

    @pytest.mark.asyncio
    async def test_create_contract(self, manager):
        """A valid definition is persisted."""
        contract = await manager.create_contract("t1", "public", include_tags=["public"])

        assert contract.contract_name == "public"
        assert contract.include_tags == ("public",)
        assert contract.exclude_tags is None
        assert await manager.get_active_contracts("t1") == [contract]

    @pytest.mark.asyncio
    async def test_tags_required(self, manager):
        """A contract without tags is rejected."""
        with pytest.raises(ValidationError) as exc_info:
            await manager.create_contract("t1", "public")

        assert any(
            "Provide at least one value for either included tags or excluded tags" in message
            for message in exc_info.value.errors
        )

    @pytest.mark.asyncio
    async def test_tags_must_not_intersect(self, manager):
        """The same tag cannot be included and excluded."""
        with pytest.raises(ValidationError) as exc_info:
            await manager.create_contract("t1", "public", include_tags=["a"], exclude_tags=["a", "b"])

        assert any("must not intersect" in message for message in exc_info.value.errors)

    @pytest.mark.asyncio
    async def test_name_length(self, manager):
        """Names shorter than two characters are rejected."""
        with pytest.raises(ValidationError) as exc_info:
            await manager.create_contract("t1", "x", include_tags=["a"])

        assert exc_info.value.field_name == "contract_name"

    @pytest.mark.asyncio
    async def test_duplicate_name(self, manager):
        """Contract names are unique per target."""
        await manager.create_contract("t1", "public", include_tags=["public"])

        with pytest.raises(ValidationError) as exc_info:
            await manager.create_contract("t1", "public", exclude_tags=["internal"])

        assert exc_info.value.errors == [CONTRACT_NAME_NOT_UNIQUE]

    @pytest.mark.asyncio
    async def test_unknown_target(self, manager):
        """Contracts need an existing target."""
        with pytest.raises(NotFoundError):
            await manager.create_contract("missing", "public", include_tags=["public"])

    @pytest.mark.asyncio
    async def test_disable_removes_artifacts(self, manager, artifacts):
        """Disabling deletes the contract's CDN artifacts only."""
        contract = await manager.create_contract("t1", "public", include_tags=["public"])
        await artifacts.write_artifact("t1", ArtifactType.SDL, "main")
        await artifacts.write_artifact("t1", ArtifactType.SDL, "contract", "public")
        await artifacts.write_artifact("t1", ArtifactType.SUPERGRAPH, "contract", "public")

        disabled = await manager.disable_contract(contract.id)

        assert disabled.is_disabled
        assert artifacts.read("t1", ArtifactType.SDL) == "main"
        assert artifacts.read("t1", ArtifactType.SDL, "public") is None
        assert artifacts.read("t1", ArtifactType.SUPERGRAPH, "public") is None
        assert await manager.get_active_contracts("t1") == []
        assert [c.id for c in await manager.get_contracts("t1")] == [contract.id]

    @pytest.mark.asyncio
    async def test_disable_twice(self, manager):
        """A disabled contract cannot be disabled again."""
        contract = await manager.create_contract("t1", "public", include_tags=["public"])
        await manager.disable_contract(contract.id)

        with pytest.raises(ValidationError, match="already disabled"):
            await manager.disable_contract(contract.id)

    @pytest.mark.asyncio
    async def test_disable_unknown(self, manager):
        """Unknown contracts raise NotFoundError."""
        with pytest.raises(NotFoundError):
            await manager.disable_contract("missing")

    @pytest.mark.asyncio
    async def test_candidates(self, manager):
        """Active contracts become candidates with their approved changes."""
        contract = await manager.create_contract("t1", "public", include_tags=["public"])

        [candidate] = await manager.get_contract_candidates("t1", approved_changes={contract.id: {}})

        assert candidate.contract == contract
        assert candidate.latest_valid_version is None
        assert candidate.approved_changes == {}
        assert candidate.to_input().filter.include_tags == ("public",)


class TestContractsChecks:
    """Tests for ContractsChecks."""

    @pytest.fixture
    def contracts_checks(self):
        return ContractsChecks(RegistryChecks(inspector=Inspector()))

    @pytest.fixture
    def contract(self):
        return Contract(id="c1", target_id="t1", contract_name="public", include_tags=("public",))

    @pytest.mark.asyncio
    async def test_no_contracts(self, contracts_checks):
        """Without contracts there is nothing to check."""
        composition = Completed(CompositionSuccess(full_schema_sdl="type Query { a: String }"))

        assert await contracts_checks.get_contract_checks([], composition) is None
        assert is_contract_checks_successful(None)

    @pytest.mark.asyncio
    async def test_missing_result(self, contracts_checks, contract):
        """A contract absent from the composition result fails."""
        composition = Completed(CompositionSuccess(full_schema_sdl="type Query { a: String }"))

        [outcome] = await contracts_checks.get_contract_checks(
            [ContractCandidate(contract=contract)], composition
        )

        assert isinstance(outcome.composition_check, Failed)
        assert outcome.composition_errors[0].message == "Contract was not composed"
        assert outcome.diff_check is SKIPPED
        assert not outcome.is_success
        assert not is_contract_checks_successful([outcome])

    @pytest.mark.asyncio
    async def test_first_contract_version(self, contracts_checks, contract):
        """A composed contract without a baseline succeeds."""
        composition = Completed(
            CompositionSuccess(
                full_schema_sdl="type Query { a: String b: String }",
                supergraph="supergraph",
                contracts=(
                    ContractCompositionResult(
                        id="c1", sdl="type Query { a: String }", supergraph="contract supergraph"
                    ),
                ),
            )
        )

        [outcome] = await contracts_checks.get_contract_checks(
            [ContractCandidate(contract=contract)], composition
        )

        assert outcome.is_success
        assert outcome.composite_schema_sdl == "type Query { a: String }"
        assert outcome.supergraph_sdl == "contract supergraph"
        assert outcome.compared_contract_version_id is None

    @pytest.mark.asyncio
    async def test_breaking_against_baseline(self, contracts_checks, contract):
        """Contract changes are diffed against the contract's own last valid version."""
        baseline = ContractVersion(
            id="cv1",
            schema_version_id="v1",
            contract_id="c1",
            contract_name="public",
            created_at=1,
            composite_schema_sdl="type Query { a: String b: String }",
            supergraph_sdl="contract supergraph",
        )
        composition = Completed(
            CompositionSuccess(
                full_schema_sdl="type Query { a: String }",
                contracts=(ContractCompositionResult(id="c1", sdl="type Query { a: String }"),),
            )
        )

        [outcome] = await contracts_checks.get_contract_checks(
            [ContractCandidate(contract=contract, latest_valid_version=baseline)], composition
        )

        assert isinstance(outcome.composition_check, Completed)
        assert isinstance(outcome.diff_check, Failed)
        assert outcome.compared_contract_version_id == "cv1"
        assert [c.path for c in outcome.diff.breaking] == ["Query.b"]
        assert not outcome.is_success
