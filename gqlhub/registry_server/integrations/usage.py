"""
Usage statistics collaborator.

The registry asks the usage service how many requests touched a set of
schema coordinates in a trailing window. The Inspector uses the answer to
downgrade breaking changes on coordinates nobody uses.

Invariants:
    - A coordinate absent from a report has zero usage
    - A report with zero total requests treats every coordinate as safe
    - Provider failures raise UsageStatisticsError, usage is never guessed

Example:
    >>> provider = StaticUsageStatisticsProvider(total_requests=100, counts={"Query.a": 1})
    >>> report = await provider.get_coordinate_usage(coordinates=["Query.a"], config=config)
    >>> report.is_safe("Query.a", percentage=5)
    True
"""

from __future__ import annotations

import logging
from abc import abstractmethod
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional, Protocol, Sequence, runtime_checkable

import httpx

from ..schema.types import ConditionalBreakingChangeConfig

logger = logging.getLogger(__name__)


class UsageStatisticsError(Exception):
    """Raised when usage statistics cannot be retrieved."""

    pass


@dataclass(frozen=True)
class CoordinateUsage:
    """Request count of a single schema coordinate."""

    coordinate: str
    count: int
    total_requests: int

    @property
    def percentage(self) -> float:
        if self.total_requests == 0:
            return 0.0
        return self.count * 100 / self.total_requests

    def to_dict(self) -> dict:
        return {
            "coordinate": self.coordinate,
            "count": self.count,
            "totalRequests": self.total_requests,
            "percentage": self.percentage,
        }


@dataclass(frozen=True)
class CoordinateUsageReport:
    """Usage of a set of coordinates over one window."""

    total_requests: int
    counts: Mapping[str, int] = field(default_factory=dict)

    def for_coordinate(self, coordinate: str) -> CoordinateUsage:
        return CoordinateUsage(
            coordinate=coordinate,
            count=self.counts.get(coordinate, 0),
            total_requests=self.total_requests,
        )

    def is_safe(self, coordinate: str, percentage: float) -> bool:
        """Whether usage of `coordinate` is at or below `percentage` of all requests."""
        # integer-friendly form of count / total <= percentage / 100
        return self.counts.get(coordinate, 0) * 100 <= percentage * self.total_requests


@runtime_checkable
class UsageStatisticsProvider(Protocol):
    """Source of coordinate usage."""

    @abstractmethod
    async def get_coordinate_usage(
        self,
        coordinates: Sequence[str],
        config: ConditionalBreakingChangeConfig,
    ) -> CoordinateUsageReport:
        ...


class RemoteUsageStatisticsProvider:
    """Usage statistics served by the usage service over HTTP.

    Request: POST /coordinates/usage
        {"coordinates": [...], "targetIds": [...], "periodDays": n, "excludedClients": [...]}
    Response:
        {"totalRequests": n, "coordinates": {"Query.a": n, ...}}
    """

    def __init__(
        self,
        service_url: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.service_url = service_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    async def get_coordinate_usage(
        self,
        coordinates: Sequence[str],
        config: ConditionalBreakingChangeConfig,
    ) -> CoordinateUsageReport:
        payload = {
            "coordinates": list(coordinates),
            "targetIds": list(config.target_ids),
            "periodDays": config.period_days,
            "excludedClients": list(config.excluded_clients),
        }
        try:
            async with httpx.AsyncClient(
                base_url=self.service_url,
                timeout=self.timeout,
                transport=self._transport,
            ) as client:
                response = await client.post("/coordinates/usage", json=payload)
                response.raise_for_status()
                body = response.json()
        except httpx.HTTPError as e:
            raise UsageStatisticsError(f"Usage service request failed: {e}") from e
        except ValueError as e:
            raise UsageStatisticsError(f"Usage service returned invalid JSON: {e}") from e

        counts: Dict[str, int] = {
            str(k): int(v) for k, v in (body.get("coordinates") or {}).items()
        }
        logger.debug(
            "Fetched coordinate usage",
            extra={"coordinates": len(coordinates), "target_ids": list(config.target_ids)},
        )
        return CoordinateUsageReport(total_requests=int(body.get("totalRequests", 0)), counts=counts)


class StaticUsageStatisticsProvider:
    """Fixed usage numbers. Used for local development and testing."""

    def __init__(self, total_requests: int = 0, counts: Optional[Mapping[str, int]] = None) -> None:
        self.total_requests = total_requests
        self.counts = dict(counts or {})
        self.calls: list = []

    async def get_coordinate_usage(
        self,
        coordinates: Sequence[str],
        config: ConditionalBreakingChangeConfig,
    ) -> CoordinateUsageReport:
        self.calls.append(list(coordinates))
        return CoordinateUsageReport(
            total_requests=self.total_requests,
            counts={c: self.counts[c] for c in coordinates if c in self.counts},
        )
