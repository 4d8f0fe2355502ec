"""
Unit tests for CDN artifact storage.

Tests cover:
- Object key layout (target and contract artifacts)
- Content types and serialization
- In-memory writes, deletes and read urls
- Failure injection
- S3 storage lifecycle guard
"""

import pytest

from gqlhub.registry_server.artifacts import (
    ArtifactStorageError,
    ArtifactType,
    InMemoryArtifactStorage,
    S3ArtifactStorage,
    build_artifact_storage_key,
)
from gqlhub.registry_server.artifacts.storage import serialize_artifact
from gqlhub.registry_server.config import S3Config


class TestArtifactKeys:
    """Tests for artifact key building."""

    def test_target_key(self):
        """Target artifacts live under the target id."""
        assert build_artifact_storage_key("t1", ArtifactType.SDL) == "artifact/t1/sdl"
        assert build_artifact_storage_key("t1", ArtifactType.SERVICES) == "artifact/t1/services"

    def test_contract_key(self):
        """Contract artifacts are nested under their name."""
        key = build_artifact_storage_key("t1", ArtifactType.SUPERGRAPH, "public")
        assert key == "artifact/t1/contracts/public/supergraph"

    def test_content_types(self):
        """SDL artifacts are text, the rest JSON."""
        assert ArtifactType.SDL.content_type == "text/plain"
        assert ArtifactType.SUPERGRAPH.content_type == "text/plain"
        assert ArtifactType.SERVICES.content_type == "application/json"
        assert ArtifactType.METADATA.content_type == "application/json"

    def test_serialize(self):
        """JSON artifacts are encoded, text artifacts written as is."""
        assert serialize_artifact(ArtifactType.SDL, "type Query") == b"type Query"
        assert serialize_artifact(ArtifactType.METADATA, {"a": 1}) == b'{"a": 1}'


class TestInMemoryArtifactStorage:
    """Tests for InMemoryArtifactStorage."""

    @pytest.fixture
    def storage(self):
        """Create a fresh artifact store."""
        return InMemoryArtifactStorage()

    @pytest.mark.asyncio
    async def test_write_and_read(self, storage):
        """Written artifacts can be read back decoded."""
        await storage.write_artifact("t1", ArtifactType.SDL, "type Query { a: String }")
        await storage.write_artifact("t1", ArtifactType.SERVICES, [{"name": "users"}])

        assert storage.read("t1", ArtifactType.SDL) == "type Query { a: String }"
        assert storage.read("t1", ArtifactType.SERVICES) == [{"name": "users"}]
        assert storage.write_count == 2

    @pytest.mark.asyncio
    async def test_missing_artifact(self, storage):
        """Missing artifacts read as None and have no url."""
        assert storage.read("t1", ArtifactType.SDL) is None
        assert await storage.generate_artifact_read_url("t1", ArtifactType.SDL) is None

    @pytest.mark.asyncio
    async def test_read_url(self, storage):
        """Existing artifacts have a read url."""
        await storage.write_artifact("t1", ArtifactType.SDL, "type Query { a: String }", "public")

        url = await storage.generate_artifact_read_url("t1", ArtifactType.SDL, "public")

        assert url == "memory://artifact/t1/contracts/public/sdl"

    @pytest.mark.asyncio
    async def test_delete(self, storage):
        """Deleting removes only the addressed artifact."""
        await storage.write_artifact("t1", ArtifactType.SDL, "a")
        await storage.write_artifact("t1", ArtifactType.SDL, "b", "public")

        await storage.delete_artifact("t1", ArtifactType.SDL, "public")
        await storage.delete_artifact("t1", ArtifactType.SUPERGRAPH, "public")

        assert storage.read("t1", ArtifactType.SDL) == "a"
        assert storage.read("t1", ArtifactType.SDL, "public") is None

    @pytest.mark.asyncio
    async def test_failing_writes(self):
        """Failure injection raises ArtifactStorageError."""
        storage = InMemoryArtifactStorage(fail_writes=True)

        with pytest.raises(ArtifactStorageError):
            await storage.write_artifact("t1", ArtifactType.SDL, "type Query { a: String }")

        assert storage.objects == {}


class TestS3ArtifactStorage:
    """Tests for S3ArtifactStorage without a live endpoint."""

    @pytest.mark.asyncio
    async def test_write_requires_start(self):
        """Writes before start() fail cleanly."""
        storage = S3ArtifactStorage(S3Config(bucket="artifacts"))

        with pytest.raises(ArtifactStorageError, match="not started"):
            await storage.write_artifact("t1", ArtifactType.SDL, "type Query { a: String }")

    @pytest.mark.asyncio
    async def test_close_without_start(self):
        """Closing an unstarted store is a no-op."""
        storage = S3ArtifactStorage(S3Config(bucket="artifacts"))
        await storage.close()
