"""
Base protocol and types for composition orchestrators.

An orchestrator takes the raw SDL sources of a schema set and returns
the composed public SDL, the supergraph (federation only) and structured
composition errors. One orchestrator exists per project type.

Invariants:
    - compose_and_validate never raises for schema errors; they are
      returned in `errors`
    - OrchestratorError is raised only for transport / service failures
    - When contracts are requested, one ContractCompositionResult is
      returned per requested contract id

How to change safely:
    - Protocol changes require updating RemoteOrchestrator and LocalOrchestrator
    - Add new optional fields to CompositionOptions with defaults
"""

from __future__ import annotations

from abc import abstractmethod
from dataclasses import dataclass, field
from typing import (
    TYPE_CHECKING,
    Any,
    Dict,
    Optional,
    Protocol,
    Sequence,
    Tuple,
    runtime_checkable,
)
import logging

from ..schema.types import (
    CompositionErrorSource,
    ExternalCompositionConfig,
    ProjectType,
    SchemaCompositionError,
)

if TYPE_CHECKING:
    from ..config import ServerConfig

logger = logging.getLogger(__name__)


class OrchestratorError(Exception):
    """Composition service could not be reached or answered garbage."""
    pass


@dataclass(frozen=True)
class SchemaObject:
    """A schema source as consumed by orchestrators.

    Attributes:
        raw: SDL text
        source: Service name ("single" for SINGLE projects)
        url: Service url (composite projects)
    """
    raw: str
    source: str
    url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"raw": self.raw, "source": self.source, "url": self.url}


@dataclass(frozen=True)
class ContractFilter:
    include_tags: Optional[Tuple[str, ...]] = None
    exclude_tags: Optional[Tuple[str, ...]] = None
    remove_unreachable_types_from_public_api_schema: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "include": list(self.include_tags) if self.include_tags else None,
            "exclude": list(self.exclude_tags) if self.exclude_tags else None,
            "remove_unreachable_types_from_public_api_schema": (
                self.remove_unreachable_types_from_public_api_schema
            ),
        }


@dataclass(frozen=True)
class ContractInput:
    """A contract to compose alongside the primary schema."""
    id: str
    filter: ContractFilter


@dataclass(frozen=True)
class ContractCompositionResult:
    """Composition result of one contract."""
    id: str
    sdl: Optional[str]
    supergraph: Optional[str] = None
    errors: Tuple[SchemaCompositionError, ...] = ()


@dataclass(frozen=True)
class ComposeAndValidateResult:
    """Result of composing a schema set.

    Attributes:
        sdl: Composed public SDL (None if composition failed hard)
        supergraph: Federation supergraph SDL
        errors: Composition errors (empty when composable)
        contracts: Per-contract results when contracts were requested
    """
    sdl: Optional[str]
    supergraph: Optional[str] = None
    errors: Tuple[SchemaCompositionError, ...] = ()
    contracts: Optional[Tuple[ContractCompositionResult, ...]] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> ComposeAndValidateResult:
        """Create from the wire format of the composition service."""
        contracts = data.get("contracts")
        return cls(
            sdl=data.get("sdl"),
            supergraph=data.get("supergraph"),
            errors=_errors_from_list(data.get("errors")),
            contracts=tuple(
                ContractCompositionResult(
                    id=c["id"],
                    sdl=c.get("result", {}).get("sdl"),
                    supergraph=c.get("result", {}).get("supergraph"),
                    errors=_errors_from_list(c.get("result", {}).get("errors")),
                )
                for c in contracts
            )
            if contracts is not None
            else None,
        )


def _errors_from_list(errors: Optional[Sequence[Dict[str, Any]]]) -> Tuple[SchemaCompositionError, ...]:
    return tuple(
        SchemaCompositionError(
            message=e["message"],
            source=CompositionErrorSource(e.get("source", "graphql")),
        )
        for e in errors or ()
    )


@dataclass(frozen=True)
class CompositionOptions:
    """Per-call composition settings.

    Attributes:
        external: External composition endpoint of the project
        native: Use the native federation composer
        contracts: Contracts to compose together with the primary schema
    """
    external: Optional[ExternalCompositionConfig] = None
    native: bool = False
    contracts: Optional[Tuple[ContractInput, ...]] = field(default=None)


@runtime_checkable
class Orchestrator(Protocol):
    """Protocol for composition orchestrators.

    Example:
        >>> orchestrator = orchestrators[ProjectType.FEDERATION]
        >>> result = await orchestrator.compose_and_validate(objects, CompositionOptions())
        >>> if result.errors:
        ...     print([e.message for e in result.errors])
    """

    project_type: ProjectType

    @abstractmethod
    async def compose_and_validate(
        self,
        schemas: Sequence[SchemaObject],
        options: CompositionOptions,
    ) -> ComposeAndValidateResult:
        """Compose and validate a schema set.

        Args:
            schemas: Schema sources (base schema already applied)
            options: Composition settings

        Returns:
            ComposeAndValidateResult with SDL, supergraph and errors

        Raises:
            OrchestratorError: If the composition backend fails
        """
        ...


def create_orchestrators(config: "ServerConfig") -> Dict[ProjectType, Orchestrator]:
    """Factory function to create one orchestrator per project type.

    Args:
        config: Server configuration

    Returns:
        Mapping of project type to orchestrator

    Raises:
        ValueError: If backend is not supported
    """
    from ..config import CompositionBackend
    from .local import LocalOrchestrator
    from .remote import RemoteOrchestrator

    if config.composition.backend == CompositionBackend.REMOTE:
        return {
            project_type: RemoteOrchestrator(
                project_type,
                service_url=config.composition.service_url,
                timeout=config.composition.timeout_seconds,
            )
            for project_type in ProjectType
        }
    elif config.composition.backend == CompositionBackend.LOCAL:
        return {project_type: LocalOrchestrator(project_type) for project_type in ProjectType}
    else:
        raise ValueError(f"Unsupported composition backend: {config.composition.backend}")
