"""
Composition orchestrators for the GQLHub registry.

This module provides a pluggable composition backend:
- RemoteOrchestrator: RPC to the composition service (production)
- LocalOrchestrator: in-process graphql-core composition (development, tests)

Invariants:
    - Schema errors are returned, never raised
    - One orchestrator instance serves one project type

How to change safely:
    - New backends must implement the Orchestrator protocol
    - Keep the wire format of RemoteOrchestrator in sync with the composition service
"""

from .base import (
    ComposeAndValidateResult,
    CompositionOptions,
    ContractCompositionResult,
    ContractFilter,
    ContractInput,
    Orchestrator,
    OrchestratorError,
    SchemaObject,
    create_orchestrators,
)
from .local import LocalOrchestrator
from .remote import RemoteOrchestrator

__all__ = [
    # Protocol and types
    "Orchestrator",
    "OrchestratorError",
    "SchemaObject",
    "CompositionOptions",
    "ComposeAndValidateResult",
    "ContractInput",
    "ContractFilter",
    "ContractCompositionResult",
    # Factory
    "create_orchestrators",
    # Implementations
    "RemoteOrchestrator",
    "LocalOrchestrator",
]
