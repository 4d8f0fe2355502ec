"""
Prometheus metrics for the GQLHub registry.

Metrics are module-level collectors registered on the default
prometheus_client registry. The metrics HTTP endpoint is started by
`main.Server` when METRICS_ENABLED is set.

Invariants:
    - Label names use the camelCase keys dashboards already query
      (`projectType`)
    - Every check / publish / delete decision increments exactly one counter
"""

from __future__ import annotations

import logging

from prometheus_client import Counter, Histogram, start_http_server

logger = logging.getLogger(__name__)

CHECK_COUNT = Counter(
    "registry_check_count",
    "Schema checks by registry model, project type and conclusion",
    ["model", "projectType", "conclusion"],
)

PUBLISH_COUNT = Counter(
    "registry_publish_count",
    "Schema publishes by registry model, project type and conclusion",
    ["model", "projectType", "conclusion"],
)

DELETE_COUNT = Counter(
    "registry_delete_count",
    "Service deletions by project type and conclusion",
    ["projectType", "conclusion"],
)

COMPOSITION_DURATION = Histogram(
    "registry_composition_duration_seconds",
    "Time spent composing schema sets",
    ["projectType"],
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)


def start_metrics_server(port: int) -> None:
    """Start the Prometheus HTTP endpoint on a dedicated port."""
    start_http_server(port)
    logger.info(f"Metrics server listening on :{port}")
