"""
External collaborators of the GQLHub registry.

- github: check-run creation and resolution
- alerts: schema change notifications
- policy: schema policy evaluation
- usage: coordinate usage statistics

Invariants:
    - Every collaborator is a Protocol with an httpx-backed implementation
    - GitHub failures are returned as values, other collaborators raise
"""

from .alerts import NullNotifier, SchemaChangeNotification, SchemaChangeNotifier, WebhookNotifier
from .github import (
    CheckRunConclusion,
    GitHubCheckRunClient,
    GitHubCheckRunError,
    GitHubCheckRunResult,
    GitHubCheckRunSuccess,
    GitHubIntegration,
)
from .policy import PolicyCheckResult, PolicyServiceError, RemotePolicyProvider, SchemaPolicyProvider
from .usage import (
    CoordinateUsage,
    CoordinateUsageReport,
    RemoteUsageStatisticsProvider,
    StaticUsageStatisticsProvider,
    UsageStatisticsError,
    UsageStatisticsProvider,
)

__all__ = [
    "NullNotifier",
    "SchemaChangeNotification",
    "SchemaChangeNotifier",
    "WebhookNotifier",
    "CheckRunConclusion",
    "GitHubCheckRunClient",
    "GitHubCheckRunError",
    "GitHubCheckRunResult",
    "GitHubCheckRunSuccess",
    "GitHubIntegration",
    "PolicyCheckResult",
    "PolicyServiceError",
    "RemotePolicyProvider",
    "SchemaPolicyProvider",
    "CoordinateUsage",
    "CoordinateUsageReport",
    "RemoteUsageStatisticsProvider",
    "StaticUsageStatisticsProvider",
    "UsageStatisticsError",
    "UsageStatisticsProvider",
]
