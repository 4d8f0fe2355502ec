"""
Error types for the GQLHub registry.

This module defines the public error taxonomy of the registry core:
- RegistryError: Base exception
- ValidationError: Caller input is invalid
- NotFoundError: A referenced entity does not exist
- UnsupportedOperationError: Operation not available for the project
- LockError / LockTimeoutError / OperationAbortedError: Coordination failures
- RegistryInvariantError: Internal state that must never happen

Expected validation outcomes of schema checks (missing service name,
breaking changes, composition errors) are NOT exceptions. They are
returned as tagged results by registry checks and as conclusions by
registry models.

Invariants:
    - All public errors inherit from RegistryError
    - Errors include context for debugging in `details`
    - RegistryInvariantError indicates a bug and is never caught
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class RegistryError(Exception):
    """Base exception for all registry errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "REGISTRY_ERROR"
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(RegistryError):
    """Caller input is invalid.

    Raised when:
    - A contract definition violates its rules
    - A service rename targets an empty or duplicated name
    - A schema with the same commit already exists on the target
    """

    def __init__(
        self,
        message: str,
        field_name: Optional[str] = None,
        errors: Optional[List[str]] = None,
    ) -> None:
        super().__init__(
            message,
            code="VALIDATION_ERROR",
            details={"field": field_name, "errors": errors or []},
        )
        self.field_name = field_name
        self.errors = errors or []


class NotFoundError(RegistryError):
    """A referenced entity does not exist."""

    def __init__(self, entity: str, entity_id: Optional[str] = None) -> None:
        message = f"{entity} not found" if entity_id is None else f"{entity} '{entity_id}' not found"
        super().__init__(
            message,
            code="NOT_FOUND",
            details={"entity": entity, "id": entity_id},
        )
        self.entity = entity
        self.entity_id = entity_id


class UnsupportedOperationError(RegistryError):
    """The operation is not available for this project.

    Raised when:
    - Deleting a service on a legacy registry model project
    - Deleting a service on a SINGLE project
    - Changing a version status on a modern registry model project
    """

    def __init__(self, message: str, operation: Optional[str] = None) -> None:
        super().__init__(
            message,
            code="UNSUPPORTED_OPERATION",
            details={"operation": operation},
        )
        self.operation = operation


class LockError(RegistryError):
    """Failed to acquire or release a distributed lock."""

    def __init__(self, message: str, key: Optional[str] = None) -> None:
        super().__init__(message, code="LOCK_ERROR", details={"key": key})
        self.key = key


class LockTimeoutError(LockError):
    """Lock could not be acquired within the allowed time."""

    pass


class OperationAbortedError(RegistryError):
    """The caller aborted the operation while it was waiting."""

    def __init__(self, message: str = "Operation aborted") -> None:
        super().__init__(message, code="ABORTED")


class RegistryInvariantError(RegistryError):
    """Internal invariant violated. This is a bug if ever raised."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="INVARIANT_VIOLATION")
