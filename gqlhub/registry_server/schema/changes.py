"""
Schema change records produced by the inspector.

A SchemaChange is a single structural difference between two GraphQL
schemas. It carries a criticality (Breaking / Dangerous / Safe), a
human readable message, the schema coordinate it applies to and the
structured metadata the message was rendered from.

Invariants:
    - `id` depends only on type, path and meta (never on message or
      approval state), so a change detected twice has the same id
    - Approval never alters criticality; it only marks the change as
      non-blocking
    - A usage-based downgrade sets `is_safe_based_on_usage` and lowers
      the criticality to Dangerous

How to change safely:
    - Never rename ChangeType values, they are persisted
    - Add new meta keys only; readers must tolerate missing keys
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Optional


class CriticalityLevel(Enum):
    """How dangerous a change is for existing clients."""

    BREAKING = "Breaking"
    DANGEROUS = "Dangerous"
    SAFE = "Safe"


class ChangeType(Enum):
    """Kinds of structural schema changes."""

    # Types
    TYPE_ADDED = "TYPE_ADDED"
    TYPE_REMOVED = "TYPE_REMOVED"
    TYPE_KIND_CHANGED = "TYPE_KIND_CHANGED"
    TYPE_DESCRIPTION_ADDED = "TYPE_DESCRIPTION_ADDED"
    TYPE_DESCRIPTION_CHANGED = "TYPE_DESCRIPTION_CHANGED"
    TYPE_DESCRIPTION_REMOVED = "TYPE_DESCRIPTION_REMOVED"

    # Object / interface fields
    FIELD_ADDED = "FIELD_ADDED"
    FIELD_REMOVED = "FIELD_REMOVED"
    FIELD_TYPE_CHANGED = "FIELD_TYPE_CHANGED"
    FIELD_DESCRIPTION_ADDED = "FIELD_DESCRIPTION_ADDED"
    FIELD_DESCRIPTION_CHANGED = "FIELD_DESCRIPTION_CHANGED"
    FIELD_DESCRIPTION_REMOVED = "FIELD_DESCRIPTION_REMOVED"
    FIELD_DEPRECATION_ADDED = "FIELD_DEPRECATION_ADDED"
    FIELD_DEPRECATION_REMOVED = "FIELD_DEPRECATION_REMOVED"
    FIELD_DEPRECATION_REASON_ADDED = "FIELD_DEPRECATION_REASON_ADDED"
    FIELD_DEPRECATION_REASON_CHANGED = "FIELD_DEPRECATION_REASON_CHANGED"
    FIELD_DEPRECATION_REASON_REMOVED = "FIELD_DEPRECATION_REASON_REMOVED"

    # Field arguments
    FIELD_ARGUMENT_ADDED = "FIELD_ARGUMENT_ADDED"
    FIELD_ARGUMENT_REMOVED = "FIELD_ARGUMENT_REMOVED"
    FIELD_ARGUMENT_TYPE_CHANGED = "FIELD_ARGUMENT_TYPE_CHANGED"
    FIELD_ARGUMENT_DEFAULT_CHANGED = "FIELD_ARGUMENT_DEFAULT_CHANGED"
    FIELD_ARGUMENT_DESCRIPTION_CHANGED = "FIELD_ARGUMENT_DESCRIPTION_CHANGED"

    # Input fields
    INPUT_FIELD_ADDED = "INPUT_FIELD_ADDED"
    INPUT_FIELD_REMOVED = "INPUT_FIELD_REMOVED"
    INPUT_FIELD_TYPE_CHANGED = "INPUT_FIELD_TYPE_CHANGED"
    INPUT_FIELD_DEFAULT_VALUE_CHANGED = "INPUT_FIELD_DEFAULT_VALUE_CHANGED"
    INPUT_FIELD_DESCRIPTION_ADDED = "INPUT_FIELD_DESCRIPTION_ADDED"
    INPUT_FIELD_DESCRIPTION_CHANGED = "INPUT_FIELD_DESCRIPTION_CHANGED"
    INPUT_FIELD_DESCRIPTION_REMOVED = "INPUT_FIELD_DESCRIPTION_REMOVED"

    # Enums
    ENUM_VALUE_ADDED = "ENUM_VALUE_ADDED"
    ENUM_VALUE_REMOVED = "ENUM_VALUE_REMOVED"
    ENUM_VALUE_DESCRIPTION_CHANGED = "ENUM_VALUE_DESCRIPTION_CHANGED"
    ENUM_VALUE_DEPRECATION_REASON_ADDED = "ENUM_VALUE_DEPRECATION_REASON_ADDED"
    ENUM_VALUE_DEPRECATION_REASON_CHANGED = "ENUM_VALUE_DEPRECATION_REASON_CHANGED"
    ENUM_VALUE_DEPRECATION_REASON_REMOVED = "ENUM_VALUE_DEPRECATION_REASON_REMOVED"

    # Unions and interfaces
    UNION_MEMBER_ADDED = "UNION_MEMBER_ADDED"
    UNION_MEMBER_REMOVED = "UNION_MEMBER_REMOVED"
    OBJECT_TYPE_INTERFACE_ADDED = "OBJECT_TYPE_INTERFACE_ADDED"
    OBJECT_TYPE_INTERFACE_REMOVED = "OBJECT_TYPE_INTERFACE_REMOVED"

    # Directives
    DIRECTIVE_ADDED = "DIRECTIVE_ADDED"
    DIRECTIVE_REMOVED = "DIRECTIVE_REMOVED"
    DIRECTIVE_DESCRIPTION_CHANGED = "DIRECTIVE_DESCRIPTION_CHANGED"
    DIRECTIVE_LOCATION_ADDED = "DIRECTIVE_LOCATION_ADDED"
    DIRECTIVE_LOCATION_REMOVED = "DIRECTIVE_LOCATION_REMOVED"
    DIRECTIVE_ARGUMENT_ADDED = "DIRECTIVE_ARGUMENT_ADDED"
    DIRECTIVE_ARGUMENT_REMOVED = "DIRECTIVE_ARGUMENT_REMOVED"
    DIRECTIVE_ARGUMENT_TYPE_CHANGED = "DIRECTIVE_ARGUMENT_TYPE_CHANGED"
    DIRECTIVE_ARGUMENT_DEFAULT_VALUE_CHANGED = "DIRECTIVE_ARGUMENT_DEFAULT_VALUE_CHANGED"

    # Root operation types
    SCHEMA_QUERY_TYPE_CHANGED = "SCHEMA_QUERY_TYPE_CHANGED"
    SCHEMA_MUTATION_TYPE_CHANGED = "SCHEMA_MUTATION_TYPE_CHANGED"
    SCHEMA_SUBSCRIPTION_TYPE_CHANGED = "SCHEMA_SUBSCRIPTION_TYPE_CHANGED"

    # Registry level
    REGISTRY_SERVICE_URL_CHANGED = "REGISTRY_SERVICE_URL_CHANGED"

    @property
    def is_description_change(self) -> bool:
        """Whether this change only touches a description."""
        return "DESCRIPTION" in self.value


@dataclass(frozen=True)
class ApprovalMetadata:
    """Who approved a breaking change and when.

    Attributes:
        user_id: Approving user
        date: Approval time (unix milliseconds)
        schema_check_id: The schema check the approval was given on
    """

    user_id: str
    date: int
    schema_check_id: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "date": self.date,
            "schema_check_id": self.schema_check_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> ApprovalMetadata:
        return cls(
            user_id=data["user_id"],
            date=data["date"],
            schema_check_id=data["schema_check_id"],
        )


@dataclass(frozen=True)
class SchemaChange:
    """A single structural difference between two schemas.

    Attributes:
        type: The kind of change
        criticality: Breaking, Dangerous or Safe
        message: Human-readable description of the change
        path: Schema coordinate (e.g. "Query.hello.lang"), if any
        meta: Structured values the message was rendered from
        reason: Why the change has its criticality
        approval_metadata: Set when a human approved the change
        is_safe_based_on_usage: Set when usage data proved the change safe
    """

    type: ChangeType
    criticality: CriticalityLevel
    message: str
    path: Optional[str] = None
    meta: Dict[str, Any] = field(default_factory=dict)
    reason: Optional[str] = None
    approval_metadata: Optional[ApprovalMetadata] = None
    is_safe_based_on_usage: bool = False

    @property
    def id(self) -> str:
        """Stable identifier of the change (type + path + meta)."""
        canonical = json.dumps(
            {"type": self.type.value, "path": self.path, "meta": self.meta},
            sort_keys=True,
            separators=(",", ":"),
            default=str,
        )
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()

    @property
    def is_breaking(self) -> bool:
        """Whether the change is breaking (regardless of approval)."""
        return self.criticality == CriticalityLevel.BREAKING

    @property
    def is_blocking(self) -> bool:
        """Whether the change blocks a check: breaking, unapproved, not safe by usage."""
        return (
            self.is_breaking
            and self.approval_metadata is None
            and not self.is_safe_based_on_usage
        )

    def approve(self, approval: ApprovalMetadata) -> SchemaChange:
        """Return a copy of this change carrying approval metadata."""
        return replace(self, approval_metadata=approval)

    def mark_safe_based_on_usage(self) -> SchemaChange:
        """Return a copy downgraded to Dangerous because nobody uses the coordinate."""
        return replace(
            self,
            criticality=CriticalityLevel.DANGEROUS,
            is_safe_based_on_usage=True,
            message=f"{self.message} (non-breaking based on usage)",
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation for serialization."""
        result: Dict[str, Any] = {
            "id": self.id,
            "type": self.type.value,
            "criticality": self.criticality.value,
            "message": self.message,
            "path": self.path,
            "meta": dict(self.meta),
            "is_safe_based_on_usage": self.is_safe_based_on_usage,
        }
        if self.reason:
            result["reason"] = self.reason
        if self.approval_metadata is not None:
            result["approval_metadata"] = self.approval_metadata.to_dict()
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> SchemaChange:
        """Create from dictionary representation."""
        approval = data.get("approval_metadata")
        return cls(
            type=ChangeType(data["type"]),
            criticality=CriticalityLevel(data["criticality"]),
            message=data["message"],
            path=data.get("path"),
            meta=dict(data.get("meta") or {}),
            reason=data.get("reason"),
            approval_metadata=ApprovalMetadata.from_dict(approval) if approval else None,
            is_safe_based_on_usage=bool(data.get("is_safe_based_on_usage", False)),
        )

    def __str__(self) -> str:
        return f"[{self.criticality.value}] {self.type.value}: {self.path} - {self.message}"
