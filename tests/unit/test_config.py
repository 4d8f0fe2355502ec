"""
Unit tests for configuration loading.

Tests cover:
- Defaults and environment overrides
- Backend validation
- Consistency checks
- Factories driven by configuration
"""

import pytest

from gqlhub.registry_server.artifacts import InMemoryArtifactStorage, create_artifact_storage
from gqlhub.registry_server.config import (
    ArtifactsBackend,
    CompositionBackend,
    CompositionConfig,
    ObservabilityConfig,
    PublisherConfig,
    ServerConfig,
)
from gqlhub.registry_server.orchestrator.base import create_orchestrators
from gqlhub.registry_server.orchestrator.local import LocalOrchestrator
from gqlhub.registry_server.orchestrator.remote import RemoteOrchestrator
from gqlhub.registry_server.schema.types import ProjectType


class TestServerConfig:
    """Tests for ServerConfig.from_env."""

    @pytest.fixture
    def env(self, monkeypatch):
        """Minimal valid environment."""
        for name in (
            "ARTIFACTS_BACKEND",
            "COMPOSITION_BACKEND",
            "COMPOSITION_SERVICE_URL",
            "REDIS_ENABLED",
            "PUBLISH_LOCK_TTL_SECONDS",
            "PUBLISH_IDEMPOTENCY_TTL_SECONDS",
            "SCHEMA_CHECK_RETENTION_DAYS",
            "SCHEMA_PUBLISH_LINK_TEMPLATE",
            "GITHUB_TOKEN",
            "LOG_FORMAT",
        ):
            monkeypatch.delenv(name, raising=False)
        monkeypatch.setenv("COMPOSITION_SERVICE_URL", "http://composition:3069")
        return monkeypatch

    def test_defaults(self, env):
        """Defaults use S3, remote composition and Redis."""
        config = ServerConfig.from_env()

        assert config.artifacts_backend is ArtifactsBackend.S3
        assert config.composition.backend is CompositionBackend.REMOTE
        assert config.redis.enabled is True
        assert config.publisher.idempotency_ttl_seconds == 15
        assert config.publisher.schema_check_retention_days == 30
        assert config.github.token is None

    def test_env_overrides(self, env):
        """Environment variables override defaults."""
        env.setenv("ARTIFACTS_BACKEND", "memory")
        env.setenv("COMPOSITION_BACKEND", "local")
        env.setenv("REDIS_ENABLED", "false")
        env.setenv("SCHEMA_CHECK_RETENTION_DAYS", "7")
        env.setenv("SCHEMA_PUBLISH_LINK_TEMPLATE", "https://hub/{organization}/{version}")
        env.setenv("GITHUB_TOKEN", "ghs_x")

        config = ServerConfig.from_env()

        assert config.artifacts_backend is ArtifactsBackend.MEMORY
        assert config.composition.backend is CompositionBackend.LOCAL
        assert config.redis.enabled is False
        assert config.publisher.schema_check_retention_days == 7
        assert config.publisher.publish_link_template == "https://hub/{organization}/{version}"
        assert config.github.token == "ghs_x"

    def test_invalid_artifacts_backend(self, env):
        """Unknown artifact backends are rejected."""
        env.setenv("ARTIFACTS_BACKEND", "gcs")

        with pytest.raises(ValueError, match="ARTIFACTS_BACKEND"):
            ServerConfig.from_env()

    def test_invalid_composition_backend(self, env):
        """Unknown composition backends are rejected."""
        env.setenv("COMPOSITION_BACKEND", "wasm")

        with pytest.raises(ValueError, match="COMPOSITION_BACKEND"):
            ServerConfig.from_env()

    def test_remote_requires_service_url(self, env):
        """The remote backend needs a service url."""
        env.delenv("COMPOSITION_SERVICE_URL")

        with pytest.raises(ValueError, match="COMPOSITION_SERVICE_URL"):
            ServerConfig.from_env()

    def test_lock_ttl_must_be_positive(self):
        """Non-positive lock TTLs are rejected."""
        config = ServerConfig(
            composition=CompositionConfig(backend=CompositionBackend.LOCAL),
            publisher=PublisherConfig(lock_ttl_seconds=0),
        )
        with pytest.raises(ValueError, match="PUBLISH_LOCK_TTL_SECONDS"):
            config.validate()

    def test_idempotency_ttl_must_be_positive(self):
        """Non-positive idempotency TTLs are rejected."""
        config = ServerConfig(
            composition=CompositionConfig(backend=CompositionBackend.LOCAL),
            publisher=PublisherConfig(idempotency_ttl_seconds=0),
        )
        with pytest.raises(ValueError, match="PUBLISH_IDEMPOTENCY_TTL_SECONDS"):
            config.validate()

    def test_log_format_validated(self):
        """Only json and text log formats exist."""
        config = ServerConfig(
            composition=CompositionConfig(backend=CompositionBackend.LOCAL),
            observability=ObservabilityConfig(log_format="xml"),
        )
        with pytest.raises(ValueError, match="LOG_FORMAT"):
            config.validate()


class TestFactories:
    """Tests for configuration-driven factories."""

    def test_local_orchestrators(self):
        """The local backend builds one local orchestrator per project type."""
        config = ServerConfig(composition=CompositionConfig(backend=CompositionBackend.LOCAL))

        orchestrators = create_orchestrators(config)

        assert set(orchestrators) == set(ProjectType)
        assert all(isinstance(o, LocalOrchestrator) for o in orchestrators.values())
        assert orchestrators[ProjectType.FEDERATION].project_type is ProjectType.FEDERATION

    def test_remote_orchestrators(self):
        """The remote backend points every orchestrator at the service."""
        config = ServerConfig(
            composition=CompositionConfig(
                backend=CompositionBackend.REMOTE, service_url="http://composition:3069"
            )
        )

        orchestrators = create_orchestrators(config)

        assert all(isinstance(o, RemoteOrchestrator) for o in orchestrators.values())

    def test_memory_artifact_storage(self):
        """The memory backend builds an in-memory artifact store."""
        config = ServerConfig(artifacts_backend=ArtifactsBackend.MEMORY)

        assert isinstance(create_artifact_storage(config), InMemoryArtifactStorage)
