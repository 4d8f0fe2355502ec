"""
GQLHub Registry Server - Main entry point.

This module wires the registry core (the composition root):
- Storage (in-memory; production storage is provided by the host API)
- Orchestrators (remote composition service or local graphql-core)
- Coordination (Redis lock and idempotency cache, or in-process)
- CDN artifact storage (S3 or in-memory)
- GitHub, policy, usage and notification collaborators
- SchemaPublisher facade
- Background purge of expired schema checks
- Prometheus metrics endpoint

Usage:
    python -m gqlhub.registry_server.main

Configuration is entirely via environment variables.
See config.py for all available settings.

Invariants:
    - Singletons (storage, orchestrators, clients) are built once in start()
    - Artifact storage is started before the publisher accepts work
    - Graceful shutdown drains notification tasks before closing clients

How to change safely:
    - Add new collaborators behind optional configuration
    - Test shutdown sequence thoroughly
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys

import json_log_formatter

from .artifacts import ArtifactStorage, create_artifact_storage
from .config import ServerConfig
from .coordination import (
    IdempotentRunner,
    InMemoryIdempotencyCache,
    InMemoryMutex,
    RedisIdempotencyCache,
    RedisMutex,
)
from .errors import RegistryInvariantError
from .integrations import (
    GitHubCheckRunClient,
    NullNotifier,
    RemotePolicyProvider,
    RemoteUsageStatisticsProvider,
    WebhookNotifier,
)
from .metrics import start_metrics_server
from .orchestrator.base import create_orchestrators
from .registry import (
    ContractsManager,
    RegistryChecks,
    SchemaManager,
    SchemaPublisher,
    SchemaVersionHelper,
)
from .registry.retention import SchemaCheckPurger
from .schema.inspector import Inspector
from .storage import InMemoryStorage, Storage

logger = logging.getLogger(__name__)


def setup_logging(config: ServerConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Server configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    if config.observability.log_format == "json":
        formatter: logging.Formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    for name in ("botocore", "aiobotocore", "httpx", "httpcore", "redis"):
        logging.getLogger(name).setLevel(logging.WARNING)


class Server:
    """GQLHub registry server.

    Builds the registry singletons and runs the background loops until a
    shutdown is requested.

    Attributes:
        config: Server configuration
        storage: Registry storage
        artifacts: CDN artifact storage
        manager: Schema manager
        publisher: Schema publisher facade
        purger: Expired schema check purger

    Example:
        >>> server = Server(config)
        >>> await server.start()
        >>> # Server is running
        >>> await server.stop()
    """

    def __init__(self, config: ServerConfig | None = None, storage: Storage | None = None) -> None:
        """Initialize the server.

        Args:
            config: Optional server configuration (loaded from env if not provided)
            storage: Registry storage (in-memory when not provided)
        """
        self.config = config or ServerConfig.from_env()
        self._running = False
        self._shutdown_event = asyncio.Event()

        self.storage: Storage = storage or InMemoryStorage()
        self.artifacts: ArtifactStorage | None = None
        self.manager: SchemaManager | None = None
        self.publisher: SchemaPublisher | None = None
        self.purger: SchemaCheckPurger | None = None
        self._closables: list = []

        self._tasks: list[asyncio.Task] = []

    def build(self) -> SchemaPublisher:
        """Construct every collaborator and the publisher (no I/O)."""
        config = self.config

        usage = (
            RemoteUsageStatisticsProvider(config.integrations.usage_service_url)
            if config.integrations.usage_service_url
            else None
        )
        policy = (
            RemotePolicyProvider(config.integrations.policy_service_url)
            if config.integrations.policy_service_url
            else None
        )
        checks = RegistryChecks(inspector=Inspector(usage=usage), policy=policy)
        orchestrators = create_orchestrators(config)

        if config.redis.enabled:
            mutex = RedisMutex.from_url(
                config.redis.url,
                ttl_seconds=config.publisher.lock_ttl_seconds,
                retry_interval_seconds=config.publisher.lock_retry_interval_seconds,
            )
            cache = RedisIdempotencyCache.from_url(config.redis.url)
            self._closables.extend([mutex, cache])
        else:
            mutex = InMemoryMutex()
            cache = InMemoryIdempotencyCache()

        self.artifacts = create_artifact_storage(config)
        self.manager = SchemaManager(
            self.storage,
            orchestrators,
            schema_check_retention_days=config.publisher.schema_check_retention_days,
        )
        self.publisher = SchemaPublisher(
            storage=self.storage,
            manager=self.manager,
            version_helper=SchemaVersionHelper(self.storage, orchestrators, checks),
            checks=checks,
            contracts=ContractsManager(self.storage, self.artifacts),
            artifacts=self.artifacts,
            mutex=mutex,
            idempotent_runner=IdempotentRunner(cache),
            config=config.publisher,
            github=(
                GitHubCheckRunClient(token=config.github.token, api_url=config.github.api_url)
                if config.github.token
                else None
            ),
            notifier=(
                WebhookNotifier(config.integrations.notifications_webhook_url)
                if config.integrations.notifications_webhook_url
                else NullNotifier()
            ),
            check_name_prefix=config.github.check_name_prefix,
        )
        self.purger = SchemaCheckPurger(self.manager, config.publisher.purge_interval_seconds)
        return self.publisher

    async def start(self) -> None:
        """Start the server and all components."""
        if self._running:
            logger.warning("Server already running")
            return

        logger.info("Starting GQLHub registry server")
        self.config.log_config()

        try:
            self.build()
            if self.artifacts is None or self.purger is None:
                raise RegistryInvariantError("Server components were not built")

            await self.artifacts.start()
            logger.info("Artifact storage started")

            if self.config.observability.metrics_enabled:
                start_metrics_server(self.config.observability.metrics_port)

            self._tasks.append(asyncio.create_task(self.purger.start()))

            self._running = True
            logger.info("GQLHub registry server started successfully")

            await self._shutdown_event.wait()

        except Exception as e:
            logger.error(f"Server startup failed: {e}", exc_info=True)
            await self.stop()
            raise

    async def stop(self) -> None:
        """Stop the server gracefully."""
        if not self._running:
            return

        logger.info("Stopping GQLHub registry server")

        if self.purger:
            await self.purger.stop()

        for task in self._tasks:
            task.cancel()

        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

        if self.publisher:
            await self.publisher.drain()

        if self.artifacts:
            await self.artifacts.close()

        for closable in self._closables:
            await closable.close()

        self._running = False
        logger.info("GQLHub registry server stopped")

    def request_shutdown(self) -> None:
        """Request graceful shutdown."""
        self._shutdown_event.set()


def main() -> None:
    """Main entry point."""
    try:
        config = ServerConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(config)

    server = Server(config)

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    def handle_signal(sig: int) -> None:
        logger.info(f"Received signal {sig}, initiating shutdown")
        server.request_shutdown()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, handle_signal, sig)

    try:
        loop.run_until_complete(server.start())
    except KeyboardInterrupt:
        pass
    finally:
        loop.run_until_complete(server.stop())
        loop.close()


if __name__ == "__main__":
    main()
