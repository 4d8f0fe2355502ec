"""
Remote orchestrator: RPC to an external composition service.

The composition service exposes one endpoint, `POST /compose`, taking
the project type, the schema sources, the external composition config,
the native federation flag and optional contracts. It answers with the
composed SDL, the supergraph and the composition errors.

Invariants:
    - Schema errors come back in the response body, never as HTTP errors
    - Any transport error or non-2xx answer raises OrchestratorError
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, Optional, Sequence

import httpx

from ..metrics import COMPOSITION_DURATION
from ..schema.types import ProjectType
from .base import (
    ComposeAndValidateResult,
    CompositionOptions,
    OrchestratorError,
    SchemaObject,
)

logger = logging.getLogger(__name__)


class RemoteOrchestrator:
    """Orchestrator backed by the composition service.

    Attributes:
        project_type: Project type this orchestrator composes for
        service_url: Base url of the composition service

    Example:
        >>> orchestrator = RemoteOrchestrator(ProjectType.FEDERATION, "http://composition:3069")
        >>> result = await orchestrator.compose_and_validate(objects, CompositionOptions())
    """

    def __init__(
        self,
        project_type: ProjectType,
        service_url: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.project_type = project_type
        self.service_url = service_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    def _payload(self, schemas: Sequence[SchemaObject], options: CompositionOptions) -> Dict[str, Any]:
        return {
            "type": self.project_type.value.lower(),
            "schemas": [s.to_dict() for s in schemas],
            "external": {
                "endpoint": options.external.endpoint,
                "encryptedSecret": options.external.secret,
            }
            if options.external
            else None,
            "native": options.native,
            "contracts": [{"id": c.id, "filter": c.filter.to_dict()} for c in options.contracts]
            if options.contracts is not None
            else None,
        }

    async def compose_and_validate(
        self,
        schemas: Sequence[SchemaObject],
        options: CompositionOptions,
    ) -> ComposeAndValidateResult:
        started = time.perf_counter()
        try:
            async with httpx.AsyncClient(
                base_url=self.service_url,
                timeout=self._timeout,
                transport=self._transport,
            ) as client:
                response = await client.post("/compose", json=self._payload(schemas, options))
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPError as e:
            logger.error(
                "Composition service request failed",
                extra={"project_type": self.project_type.value, "error": str(e)},
            )
            raise OrchestratorError(f"Composition service request failed: {e}") from e
        except ValueError as e:
            raise OrchestratorError(f"Composition service returned invalid JSON: {e}") from e
        finally:
            COMPOSITION_DURATION.labels(projectType=self.project_type.value).observe(
                time.perf_counter() - started
            )

        try:
            result = ComposeAndValidateResult.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            raise OrchestratorError(f"Unexpected composition service response: {e}") from e

        logger.debug(
            "Composition finished",
            extra={
                "project_type": self.project_type.value,
                "schemas": len(schemas),
                "errors": len(result.errors),
            },
        )
        return result
