"""
Configuration management for the GQLHub registry.

All configuration is done via environment variables - no config files inside containers.
This module provides typed configuration classes with validation.

Invariants:
    - All settings have sensible defaults for local development
    - Production deployments MUST set explicit values for critical settings
    - Secrets are never logged or exposed in error messages

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Deprecate settings by logging warnings but continuing to support them
    - Document every new variable in the owning dataclass docstring
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger(__name__)


class CompositionBackend(Enum):
    """Supported composition backends."""

    REMOTE = "remote"
    LOCAL = "local"


class ArtifactsBackend(Enum):
    """Supported CDN artifact backends."""

    S3 = "s3"
    MEMORY = "memory"


@dataclass(frozen=True)
class RedisConfig:
    """Redis configuration for the publish lock and idempotency cache.

    Attributes:
        url: Redis connection URL
        enabled: When false, in-process primitives are used (single replica only)
    """

    url: str = "redis://localhost:6379/0"
    enabled: bool = True

    @classmethod
    def from_env(cls) -> RedisConfig:
        """Load configuration from environment variables."""
        return cls(
            url=os.getenv("REDIS_URL", "redis://localhost:6379/0"),
            enabled=os.getenv("REDIS_ENABLED", "true").lower() == "true",
        )


@dataclass(frozen=True)
class S3Config:
    """S3 configuration for CDN artifacts.

    Attributes:
        bucket: S3 bucket name
        region: AWS region
        endpoint_url: Custom endpoint URL (for MinIO)
        public_url: Public endpoint used in presigned URLs, if different
        access_key_id: AWS access key ID (optional, uses AWS credential chain)
        secret_access_key: AWS secret access key (optional)
        presigned_url_expiry_seconds: Lifetime of presigned read URLs
    """

    bucket: str = "gqlhub-artifacts"
    region: str = "us-east-1"
    endpoint_url: str | None = None
    public_url: str | None = None
    access_key_id: str | None = None
    secret_access_key: str | None = None
    presigned_url_expiry_seconds: int = 60

    @classmethod
    def from_env(cls) -> S3Config:
        """Load configuration from environment variables."""
        return cls(
            bucket=os.getenv("S3_BUCKET", "gqlhub-artifacts"),
            region=os.getenv("S3_REGION", os.getenv("AWS_REGION", "us-east-1")),
            endpoint_url=os.getenv("S3_ENDPOINT_URL"),
            public_url=os.getenv("S3_PUBLIC_URL"),
            access_key_id=os.getenv("S3_ACCESS_KEY_ID"),
            secret_access_key=os.getenv("S3_SECRET_ACCESS_KEY"),
            presigned_url_expiry_seconds=int(os.getenv("S3_PRESIGNED_URL_EXPIRY_SECONDS", "60")),
        )


@dataclass(frozen=True)
class CompositionConfig:
    """Composition backend configuration.

    Attributes:
        backend: remote (composition service) or local (in-process graphql-core)
        service_url: Composition service base URL (remote backend)
        timeout_seconds: Request timeout for the composition service
    """

    backend: CompositionBackend = CompositionBackend.REMOTE
    service_url: str = ""
    timeout_seconds: float = 30.0

    @classmethod
    def from_env(cls) -> CompositionConfig:
        """Load configuration from environment variables."""
        backend_str = os.getenv("COMPOSITION_BACKEND", "remote").lower()
        try:
            backend = CompositionBackend(backend_str)
        except ValueError:
            raise ValueError(
                f"Invalid COMPOSITION_BACKEND '{backend_str}'. Must be one of: remote, local"
            )
        return cls(
            backend=backend,
            service_url=os.getenv("COMPOSITION_SERVICE_URL", ""),
            timeout_seconds=float(os.getenv("COMPOSITION_TIMEOUT_SECONDS", "30")),
        )


@dataclass(frozen=True)
class PublisherConfig:
    """Schema publisher configuration.

    Attributes:
        lock_ttl_seconds: TTL of the per-target publish lock
        lock_retry_interval_seconds: Poll interval while waiting for the lock
        idempotency_ttl_seconds: How long a publish result is reused for the same checksum
        schema_check_retention_days: Retention of schema checks
        publish_link_template: Template for links to a published version
        purge_interval_seconds: How often expired schema checks are purged
    """

    lock_ttl_seconds: float = 60.0
    lock_retry_interval_seconds: float = 0.1
    idempotency_ttl_seconds: int = 15
    schema_check_retention_days: int = 30
    publish_link_template: str | None = None
    purge_interval_seconds: float = 3600.0

    @classmethod
    def from_env(cls) -> PublisherConfig:
        """Load configuration from environment variables."""
        return cls(
            lock_ttl_seconds=float(os.getenv("PUBLISH_LOCK_TTL_SECONDS", "60")),
            lock_retry_interval_seconds=float(
                os.getenv("PUBLISH_LOCK_RETRY_INTERVAL_SECONDS", "0.1")
            ),
            idempotency_ttl_seconds=int(os.getenv("PUBLISH_IDEMPOTENCY_TTL_SECONDS", "15")),
            schema_check_retention_days=int(os.getenv("SCHEMA_CHECK_RETENTION_DAYS", "30")),
            publish_link_template=os.getenv("SCHEMA_PUBLISH_LINK_TEMPLATE"),
            purge_interval_seconds=float(os.getenv("SCHEMA_CHECK_PURGE_INTERVAL_SECONDS", "3600")),
        )


@dataclass(frozen=True)
class GitHubConfig:
    """GitHub check-run integration.

    Attributes:
        api_url: GitHub REST API base URL
        token: Installation / app token (optional, disables the integration when unset)
        check_name_prefix: Prefix of check-run names
    """

    api_url: str = "https://api.github.com"
    token: str | None = None
    check_name_prefix: str = "GraphQL Hub"

    @classmethod
    def from_env(cls) -> GitHubConfig:
        """Load configuration from environment variables."""
        return cls(
            api_url=os.getenv("GITHUB_API_URL", "https://api.github.com"),
            token=os.getenv("GITHUB_TOKEN"),
            check_name_prefix=os.getenv("GITHUB_CHECK_NAME_PREFIX", "GraphQL Hub"),
        )


@dataclass(frozen=True)
class IntegrationsConfig:
    """External registry collaborators (all optional).

    Attributes:
        policy_service_url: Schema policy service
        usage_service_url: Usage statistics service
        notifications_webhook_url: Schema change notifications webhook
    """

    policy_service_url: str | None = None
    usage_service_url: str | None = None
    notifications_webhook_url: str | None = None

    @classmethod
    def from_env(cls) -> IntegrationsConfig:
        """Load configuration from environment variables."""
        return cls(
            policy_service_url=os.getenv("POLICY_SERVICE_URL"),
            usage_service_url=os.getenv("USAGE_SERVICE_URL"),
            notifications_webhook_url=os.getenv("NOTIFICATIONS_WEBHOOK_URL"),
        )


@dataclass(frozen=True)
class ObservabilityConfig:
    """Observability and logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
        metrics_enabled: Whether to expose Prometheus metrics
        metrics_port: Port for metrics endpoint
    """

    log_level: str = "INFO"
    log_format: str = "json"
    metrics_enabled: bool = True
    metrics_port: int = 9090

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "json"),
            metrics_enabled=os.getenv("METRICS_ENABLED", "true").lower() == "true",
            metrics_port=int(os.getenv("METRICS_PORT", "9090")),
        )


@dataclass
class ServerConfig:
    """Complete server configuration.

    This aggregates all configuration sections and provides validation.

    Attributes:
        artifacts_backend: Where CDN artifacts are written
        redis: Lock / idempotency cache configuration
        s3: CDN artifact bucket configuration
        composition: Composition backend configuration
        publisher: Publisher tuning
        github: GitHub check-run integration
        integrations: Policy / usage / notification collaborators
        observability: Observability configuration
    """

    artifacts_backend: ArtifactsBackend = ArtifactsBackend.S3
    redis: RedisConfig = field(default_factory=RedisConfig)
    s3: S3Config = field(default_factory=S3Config)
    composition: CompositionConfig = field(default_factory=CompositionConfig)
    publisher: PublisherConfig = field(default_factory=PublisherConfig)
    github: GitHubConfig = field(default_factory=GitHubConfig)
    integrations: IntegrationsConfig = field(default_factory=IntegrationsConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> ServerConfig:
        """Load complete configuration from environment variables.

        Returns:
            ServerConfig with all sections populated from environment.

        Raises:
            ValueError: If required configuration is missing or invalid.
        """
        backend_str = os.getenv("ARTIFACTS_BACKEND", "s3").lower()
        try:
            artifacts_backend = ArtifactsBackend(backend_str)
        except ValueError:
            raise ValueError(f"Invalid ARTIFACTS_BACKEND '{backend_str}'. Must be one of: s3, memory")

        config = cls(
            artifacts_backend=artifacts_backend,
            redis=RedisConfig.from_env(),
            s3=S3Config.from_env(),
            composition=CompositionConfig.from_env(),
            publisher=PublisherConfig.from_env(),
            github=GitHubConfig.from_env(),
            integrations=IntegrationsConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )

        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if self.composition.backend == CompositionBackend.REMOTE and not self.composition.service_url:
            raise ValueError("COMPOSITION_SERVICE_URL is required when COMPOSITION_BACKEND=remote")

        if self.artifacts_backend == ArtifactsBackend.S3 and not self.s3.bucket:
            raise ValueError("S3_BUCKET is required when ARTIFACTS_BACKEND=s3")

        if self.publisher.lock_ttl_seconds <= 0:
            raise ValueError("PUBLISH_LOCK_TTL_SECONDS must be positive")

        if self.publisher.idempotency_ttl_seconds <= 0:
            raise ValueError("PUBLISH_IDEMPOTENCY_TTL_SECONDS must be positive")

        if self.observability.log_format not in ("json", "text"):
            raise ValueError(
                f"Invalid LOG_FORMAT '{self.observability.log_format}'. Must be one of: json, text"
            )

        if not self.redis.enabled:
            logger.warning(
                "REDIS_ENABLED=false: publish locks are process-local. "
                "Run a single replica only."
            )

    def log_config(self) -> None:
        """Log configuration (redacting secrets)."""
        logger.info(
            "Server configuration loaded",
            extra={
                "artifacts_backend": self.artifacts_backend.value,
                "composition_backend": self.composition.backend.value,
                "composition_service_url": self.composition.service_url or None,
                "redis_enabled": self.redis.enabled,
                "s3_bucket": self.s3.bucket
                if self.artifacts_backend == ArtifactsBackend.S3
                else None,
                "github_enabled": self.github.token is not None,
                "policy_enabled": self.integrations.policy_service_url is not None,
                "usage_enabled": self.integrations.usage_service_url is not None,
                "notifications_enabled": self.integrations.notifications_webhook_url is not None,
                "log_level": self.observability.log_level,
            },
        )
