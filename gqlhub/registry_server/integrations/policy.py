"""
Schema policy collaborator.

A policy service runs lint-style rules against a composed schema and
returns one record per violation. Records with severity 2 are errors and
fail a check; severity 1 records are warnings.

Invariants:
    - check() returns None when no policy is configured for the target
    - Transport failures raise PolicyServiceError
"""

from __future__ import annotations

import logging
from abc import abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol, Tuple, runtime_checkable

import httpx

from ..schema.types import Project, SchemaPolicyRecord, Target

logger = logging.getLogger(__name__)

SEVERITY_WARNING = 1
SEVERITY_ERROR = 2


class PolicyServiceError(Exception):
    """Raised when the policy service cannot be reached."""

    pass


@dataclass(frozen=True)
class PolicyCheckResult:
    warnings: Tuple[SchemaPolicyRecord, ...] = ()
    errors: Tuple[SchemaPolicyRecord, ...] = ()


@runtime_checkable
class SchemaPolicyProvider(Protocol):
    """Evaluates schema policy rules."""

    @abstractmethod
    async def check(
        self,
        target: Target,
        project: Project,
        sdl: str,
        modified_sdl: str,
    ) -> Optional[PolicyCheckResult]:
        """Run the target's policy against a composed schema.

        Args:
            target: Checked target
            project: Owning project
            sdl: Composed SDL of the candidate schema set
            modified_sdl: The SDL that was pushed (used to locate records)

        Returns:
            PolicyCheckResult, or None when the target has no policy
        """
        ...


def _record_from_dict(data: Dict[str, Any]) -> SchemaPolicyRecord:
    return SchemaPolicyRecord(
        message=data["message"],
        rule_id=data.get("ruleId"),
        line=data.get("line"),
        column=data.get("column"),
    )


class RemotePolicyProvider:
    """Policy service client.

    Request: POST /policy/check
        {"targetId", "projectId", "organizationId", "source", "modifiedSdl"}
    Response:
        {"configured": bool, "results": [{"message", "ruleId", "line", "column", "severity"}]}
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

    async def check(
        self,
        target: Target,
        project: Project,
        sdl: str,
        modified_sdl: str,
    ) -> Optional[PolicyCheckResult]:
        payload = {
            "targetId": target.id,
            "projectId": project.id,
            "organizationId": project.org_id,
            "source": sdl,
            "modifiedSdl": modified_sdl,
        }
        try:
            async with httpx.AsyncClient(
                base_url=self.service_url,
                timeout=self.timeout,
                transport=self._transport,
            ) as client:
                response = await client.post("/policy/check", json=payload)
                response.raise_for_status()
                body = response.json()
        except httpx.HTTPError as e:
            raise PolicyServiceError(f"Policy service request failed: {e}") from e
        except ValueError as e:
            raise PolicyServiceError(f"Policy service returned invalid JSON: {e}") from e

        if not body.get("configured", False):
            return None

        results = body.get("results") or []
        return PolicyCheckResult(
            warnings=tuple(
                _record_from_dict(r) for r in results if r.get("severity") == SEVERITY_WARNING
            ),
            errors=tuple(
                _record_from_dict(r) for r in results if r.get("severity") == SEVERITY_ERROR
            ),
        )
