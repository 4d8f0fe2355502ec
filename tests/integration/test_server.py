"""
Integration tests for the server composition root.

Tests cover:
- Building the publisher from configuration
- Start and graceful shutdown with in-process backends
"""

import asyncio

import pytest

from gqlhub.registry_server.artifacts import InMemoryArtifactStorage
from gqlhub.registry_server.config import (
    ArtifactsBackend,
    CompositionBackend,
    CompositionConfig,
    ObservabilityConfig,
    RedisConfig,
    ServerConfig,
)
from gqlhub.registry_server.coordination import InMemoryMutex
from gqlhub.registry_server.integrations import NullNotifier
from gqlhub.registry_server.main import Server
from gqlhub.registry_server.registry import SchemaPublisher
from gqlhub.registry_server.registry.inputs import PublishInput
from gqlhub.registry_server.registry.responses import SchemaPublishSuccess
from gqlhub.registry_server.schema.types import Organization, Project, ProjectType, Target
from gqlhub.registry_server.storage import InMemoryStorage


class TestServer:
    """Tests for Server."""

    @pytest.fixture
    def config(self):
        return ServerConfig(
            artifacts_backend=ArtifactsBackend.MEMORY,
            redis=RedisConfig(enabled=False),
            composition=CompositionConfig(backend=CompositionBackend.LOCAL),
            observability=ObservabilityConfig(metrics_enabled=False),
        )

    @pytest.fixture
    def storage(self):
        storage = InMemoryStorage()
        storage.add_organization(Organization(id="o1", slug="acme"))
        storage.add_project(Project(id="p1", org_id="o1", slug="api", type=ProjectType.SINGLE))
        storage.add_target(Target(id="t1", project_id="p1", org_id="o1", slug="production"))
        return storage

    @pytest.mark.asyncio
    async def test_build(self, config, storage):
        """In-process backends are selected from configuration."""
        server = Server(config, storage=storage)

        publisher = server.build()

        assert isinstance(publisher, SchemaPublisher)
        assert isinstance(publisher.mutex, InMemoryMutex)
        assert isinstance(publisher.artifacts, InMemoryArtifactStorage)
        assert isinstance(publisher.notifier, NullNotifier)
        assert publisher.github is None

    @pytest.mark.asyncio
    async def test_start_and_stop(self, config, storage):
        """The server serves publishes until shutdown is requested."""
        server = Server(config, storage=storage)

        task = asyncio.create_task(server.start())
        await asyncio.sleep(0.05)

        response = await server.publisher.publish(
            PublishInput(target_id="t1", sdl="type Query { a: String }", author="dev", commit="c1")
        )
        assert isinstance(response, SchemaPublishSuccess)

        server.request_shutdown()
        await asyncio.wait_for(task, timeout=1)
        await server.stop()

        assert server.purger is not None
        assert not server.purger.is_running
