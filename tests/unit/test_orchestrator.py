"""
Unit tests for composition orchestrators.

Tests cover:
- Local composition of single, stitching and federation projects
- Merge conflicts and parse errors
- Federation plumbing removal and supergraph output
- Tag-based contract filtering
- Remote orchestrator wire format and failure handling
"""

import json

import httpx
import pytest

from gqlhub.registry_server.orchestrator import (
    CompositionOptions,
    ContractFilter,
    ContractInput,
    LocalOrchestrator,
    OrchestratorError,
    RemoteOrchestrator,
    SchemaObject,
)
from gqlhub.registry_server.schema.types import (
    CompositionErrorSource,
    ExternalCompositionConfig,
    ProjectType,
)


class TestLocalSingle:
    """Tests for single-schema composition."""

    @pytest.fixture
    def orchestrator(self):
        return LocalOrchestrator(ProjectType.SINGLE)

    @pytest.mark.asyncio
    async def test_valid_schema(self, orchestrator):
        """A valid schema is printed back."""
        result = await orchestrator.compose_and_validate(
            [SchemaObject(raw="type Query { hello: String }", source="single")],
            CompositionOptions(),
        )

        assert result.errors == ()
        assert "hello: String" in result.sdl
        assert result.supergraph is None

    @pytest.mark.asyncio
    async def test_syntax_error(self, orchestrator):
        """Syntax errors are graphql errors."""
        result = await orchestrator.compose_and_validate(
            [SchemaObject(raw="type Query {", source="single")],
            CompositionOptions(),
        )

        assert result.sdl is None
        assert len(result.errors) == 1
        assert result.errors[0].source is CompositionErrorSource.GRAPHQL
        assert "Syntax Error" in result.errors[0].message

    @pytest.mark.asyncio
    async def test_unknown_type(self, orchestrator):
        """References to missing types are rejected."""
        result = await orchestrator.compose_and_validate(
            [SchemaObject(raw="type Query { user: User }", source="single")],
            CompositionOptions(),
        )

        assert result.sdl is None
        assert any("User" in e.message for e in result.errors)


class TestLocalComposite:
    """Tests for stitching and federation composition."""

    @pytest.mark.asyncio
    async def test_stitching_merges_services(self):
        """Fields of the same type are merged across services."""
        orchestrator = LocalOrchestrator(ProjectType.STITCHING)

        result = await orchestrator.compose_and_validate(
            [
                SchemaObject(raw="type Query { users: [String] }", source="users", url="http://users"),
                SchemaObject(raw="type Query { posts: [String] }", source="posts", url="http://posts"),
            ],
            CompositionOptions(),
        )

        assert result.errors == ()
        assert "users: [String]" in result.sdl
        assert "posts: [String]" in result.sdl

    @pytest.mark.asyncio
    async def test_conflicting_field_types(self):
        """Same field with different types is a composition error."""
        orchestrator = LocalOrchestrator(ProjectType.STITCHING)

        result = await orchestrator.compose_and_validate(
            [
                SchemaObject(raw="type Query { a: String }", source="one"),
                SchemaObject(raw="type Query { a: Int }", source="two"),
            ],
            CompositionOptions(),
        )

        assert result.sdl is None
        [error] = result.errors
        assert error.source is CompositionErrorSource.COMPOSITION
        assert error.message == (
            "Field 'Query.a' has conflicting types: 'String' in 'one' and 'Int' in 'two'"
        )

    @pytest.mark.asyncio
    async def test_conflicting_type_kinds(self):
        """Same type name with different kinds is a composition error."""
        orchestrator = LocalOrchestrator(ProjectType.STITCHING)

        result = await orchestrator.compose_and_validate(
            [
                SchemaObject(raw="type Query { a: String } type User { id: ID }", source="one"),
                SchemaObject(raw="input User { id: ID }", source="two"),
            ],
            CompositionOptions(),
        )

        assert result.sdl is None
        assert result.errors[0].source is CompositionErrorSource.COMPOSITION
        assert "Type 'User'" in result.errors[0].message

    @pytest.mark.asyncio
    async def test_parse_error_names_service(self):
        """Parse errors are prefixed with the service name."""
        orchestrator = LocalOrchestrator(ProjectType.FEDERATION)

        result = await orchestrator.compose_and_validate(
            [
                SchemaObject(raw="type Query { a: String }", source="good"),
                SchemaObject(raw="type Query {", source="broken"),
            ],
            CompositionOptions(contracts=(ContractInput(id="c1", filter=ContractFilter(include_tags=("x",))),)),
        )

        assert result.sdl is None
        assert result.errors[0].message.startswith("[broken] ")
        assert result.errors[0].source is CompositionErrorSource.GRAPHQL
        assert [c.id for c in result.contracts] == ["c1"]
        assert result.contracts[0].sdl is None

    @pytest.mark.asyncio
    async def test_federation_strips_plumbing(self):
        """Federation directives stay out of the public schema but land in the supergraph."""
        orchestrator = LocalOrchestrator(ProjectType.FEDERATION)

        result = await orchestrator.compose_and_validate(
            [
                SchemaObject(
                    raw='type Query { me: User } type User @key(fields: "id") { id: ID! }',
                    source="users",
                    url="http://users",
                ),
                SchemaObject(
                    raw='type User @key(fields: "id") { id: ID! name: String }',
                    source="profiles",
                    url="http://profiles",
                ),
            ],
            CompositionOptions(),
        )

        assert result.errors == ()
        assert "@key" not in result.sdl
        assert "name: String" in result.sdl
        assert "@key" in result.supergraph
        assert 'USERS @join__graph(name: "users", url: "http://users")' in result.supergraph


class TestLocalContracts:
    """Tests for tag-based contract composition."""

    SDL = (
        'type Query { public: String @tag(name: "public") '
        'internal: String @tag(name: "internal") plain: String }'
    )

    @pytest.fixture
    def orchestrator(self):
        return LocalOrchestrator(ProjectType.FEDERATION)

    @pytest.mark.asyncio
    async def test_include_tags(self, orchestrator):
        """Only tagged fields survive an include filter."""
        result = await orchestrator.compose_and_validate(
            [SchemaObject(raw=self.SDL, source="api")],
            CompositionOptions(
                contracts=(ContractInput(id="c1", filter=ContractFilter(include_tags=("public",))),)
            ),
        )

        [contract] = result.contracts
        assert contract.errors == ()
        assert "public: String" in contract.sdl
        assert "internal" not in contract.sdl
        assert "plain" not in contract.sdl

    @pytest.mark.asyncio
    async def test_exclude_tags(self, orchestrator):
        """Tagged fields are removed by an exclude filter."""
        result = await orchestrator.compose_and_validate(
            [SchemaObject(raw=self.SDL, source="api")],
            CompositionOptions(
                contracts=(ContractInput(id="c1", filter=ContractFilter(exclude_tags=("internal",))),)
            ),
        )

        [contract] = result.contracts
        assert "public: String" in contract.sdl
        assert "plain: String" in contract.sdl
        assert "internal" not in contract.sdl
        assert "internal: String" in result.sdl

    @pytest.mark.asyncio
    async def test_no_contracts_requested(self, orchestrator):
        """Contracts are None unless requested."""
        result = await orchestrator.compose_and_validate(
            [SchemaObject(raw=self.SDL, source="api")], CompositionOptions()
        )

        assert result.contracts is None


class TestRemoteOrchestrator:
    """Tests for RemoteOrchestrator against a mocked composition service."""

    @pytest.mark.asyncio
    async def test_request_and_response(self):
        """The request carries schemas and contracts; the response is parsed."""
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(
                200,
                json={
                    "sdl": "type Query { a: String }",
                    "supergraph": "supergraph",
                    "errors": [],
                    "contracts": [
                        {
                            "id": "c1",
                            "result": {
                                "sdl": None,
                                "errors": [{"message": "Empty contract", "source": "composition"}],
                            },
                        }
                    ],
                },
            )

        orchestrator = RemoteOrchestrator(
            ProjectType.FEDERATION, "http://composition:3069/", transport=httpx.MockTransport(handler)
        )

        result = await orchestrator.compose_and_validate(
            [SchemaObject(raw="type Query { a: String }", source="api", url="http://api")],
            CompositionOptions(
                external=ExternalCompositionConfig(endpoint="http://external", secret="s3cr3t"),
                contracts=(ContractInput(id="c1", filter=ContractFilter(include_tags=("public",))),),
            ),
        )

        assert result.sdl == "type Query { a: String }"
        assert result.supergraph == "supergraph"
        [contract] = result.contracts
        assert contract.sdl is None
        assert contract.errors[0].source is CompositionErrorSource.COMPOSITION

        [request] = requests
        assert request.url.path == "/compose"
        payload = json.loads(request.content)
        assert payload["type"] == "federation"
        assert payload["schemas"] == [{"raw": "type Query { a: String }", "source": "api", "url": "http://api"}]
        assert payload["external"] == {"endpoint": "http://external", "encryptedSecret": "s3cr3t"}
        assert payload["native"] is False
        assert payload["contracts"][0]["filter"]["include"] == ["public"]
        assert payload["contracts"][0]["filter"]["exclude"] is None

    @pytest.mark.asyncio
    async def test_http_error(self):
        """Service failures raise OrchestratorError."""
        orchestrator = RemoteOrchestrator(
            ProjectType.SINGLE,
            "http://composition",
            transport=httpx.MockTransport(lambda request: httpx.Response(500)),
        )

        with pytest.raises(OrchestratorError):
            await orchestrator.compose_and_validate(
                [SchemaObject(raw="type Query { a: String }", source="single")], CompositionOptions()
            )

    @pytest.mark.asyncio
    async def test_invalid_json(self):
        """Non-JSON answers raise OrchestratorError."""
        orchestrator = RemoteOrchestrator(
            ProjectType.SINGLE,
            "http://composition",
            transport=httpx.MockTransport(lambda request: httpx.Response(200, text="not json")),
        )

        with pytest.raises(OrchestratorError):
            await orchestrator.compose_and_validate(
                [SchemaObject(raw="type Query { a: String }", source="single")], CompositionOptions()
            )
