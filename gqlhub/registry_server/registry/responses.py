"""
Responses of the schema publisher.

Each operation returns one member of a small tagged union. The
`typename` class attribute is the discriminator exposed to API clients;
`to_dict` / `publish_response_from_dict` round-trip publish responses
through the idempotency cache.

Invariants:
    - `typename` values are part of the external contract, never rename them
    - Publish responses are JSON-serializable via to_dict
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple, Union

from ..schema.changes import SchemaChange
from ..schema.types import SchemaError


def _errors_to_list(errors: Tuple[SchemaError, ...]) -> list:
    return [{"message": e.message, "path": e.path} for e in errors]


def _errors_from_list(data: Any) -> Tuple[SchemaError, ...]:
    return tuple(SchemaError(message=e["message"], path=e.get("path")) for e in data or ())


def _changes_from_list(data: Any) -> Tuple[SchemaChange, ...]:
    return tuple(SchemaChange.from_dict(c) for c in data or ())


# Check


@dataclass(frozen=True)
class SchemaCheckSuccess:
    schema_check_id: Optional[str]
    initial: bool
    changes: Tuple[SchemaChange, ...] = ()
    warnings: Tuple[str, ...] = ()

    typename = "SchemaCheckSuccess"
    valid = True


@dataclass(frozen=True)
class SchemaCheckError:
    schema_check_id: Optional[str]
    changes: Tuple[SchemaChange, ...] = ()
    errors: Tuple[SchemaError, ...] = ()
    warnings: Tuple[str, ...] = ()

    typename = "SchemaCheckError"
    valid = False


@dataclass(frozen=True)
class GitHubSchemaCheckSuccess:
    message: str
    schema_check_id: Optional[str] = None
    check_run_url: Optional[str] = None

    typename = "GitHubSchemaCheckSuccess"


@dataclass(frozen=True)
class GitHubSchemaCheckError:
    message: str

    typename = "GitHubSchemaCheckError"


SchemaCheckResponse = Union[
    SchemaCheckSuccess,
    SchemaCheckError,
    GitHubSchemaCheckSuccess,
    GitHubSchemaCheckError,
]


# Publish


@dataclass(frozen=True)
class SchemaPublishSuccess:
    initial: bool
    valid: bool
    changes: Tuple[SchemaChange, ...] = ()
    message: Optional[str] = None
    link_to_website: Optional[str] = None
    version_id: Optional[str] = None

    typename = "SchemaPublishSuccess"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "__typename": self.typename,
            "initial": self.initial,
            "valid": self.valid,
            "changes": [c.to_dict() for c in self.changes],
            "message": self.message,
            "linkToWebsite": self.link_to_website,
            "versionId": self.version_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> SchemaPublishSuccess:
        return cls(
            initial=data["initial"],
            valid=data["valid"],
            changes=_changes_from_list(data.get("changes")),
            message=data.get("message"),
            link_to_website=data.get("linkToWebsite"),
            version_id=data.get("versionId"),
        )


@dataclass(frozen=True)
class SchemaPublishError:
    changes: Tuple[SchemaChange, ...] = ()
    errors: Tuple[SchemaError, ...] = ()

    typename = "SchemaPublishError"
    valid = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "__typename": self.typename,
            "changes": [c.to_dict() for c in self.changes],
            "errors": _errors_to_list(self.errors),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> SchemaPublishError:
        return cls(
            changes=_changes_from_list(data.get("changes")),
            errors=_errors_from_list(data.get("errors")),
        )


@dataclass(frozen=True)
class SchemaPublishMissingServiceError:
    message: str = "Missing service name"

    typename = "SchemaPublishMissingServiceError"

    def to_dict(self) -> Dict[str, Any]:
        return {"__typename": self.typename, "message": self.message}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> SchemaPublishMissingServiceError:
        return cls(message=data["message"])


@dataclass(frozen=True)
class SchemaPublishMissingUrlError:
    message: str = "Missing service url"

    typename = "SchemaPublishMissingUrlError"

    def to_dict(self) -> Dict[str, Any]:
        return {"__typename": self.typename, "message": self.message}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> SchemaPublishMissingUrlError:
        return cls(message=data["message"])


@dataclass(frozen=True)
class GitHubSchemaPublishSuccess:
    message: str
    version_id: Optional[str] = None

    typename = "GitHubSchemaPublishSuccess"

    def to_dict(self) -> Dict[str, Any]:
        return {"__typename": self.typename, "message": self.message, "versionId": self.version_id}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> GitHubSchemaPublishSuccess:
        return cls(message=data["message"], version_id=data.get("versionId"))


@dataclass(frozen=True)
class GitHubSchemaPublishError:
    message: str

    typename = "GitHubSchemaPublishError"

    def to_dict(self) -> Dict[str, Any]:
        return {"__typename": self.typename, "message": self.message}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> GitHubSchemaPublishError:
        return cls(message=data["message"])


SchemaPublishResponse = Union[
    SchemaPublishSuccess,
    SchemaPublishError,
    SchemaPublishMissingServiceError,
    SchemaPublishMissingUrlError,
    GitHubSchemaPublishSuccess,
    GitHubSchemaPublishError,
]

_PUBLISH_RESPONSES = {
    cls.typename: cls
    for cls in (
        SchemaPublishSuccess,
        SchemaPublishError,
        SchemaPublishMissingServiceError,
        SchemaPublishMissingUrlError,
        GitHubSchemaPublishSuccess,
        GitHubSchemaPublishError,
    )
}


def publish_response_to_dict(response: SchemaPublishResponse) -> Dict[str, Any]:
    return response.to_dict()


def publish_response_from_dict(data: Dict[str, Any]) -> SchemaPublishResponse:
    """Rebuild a publish response from its dict form.

    Raises:
        ValueError: If the typename is unknown
    """
    cls = _PUBLISH_RESPONSES.get(data.get("__typename", ""))
    if cls is None:
        raise ValueError(f"Unknown publish response type: {data.get('__typename')!r}")
    return cls.from_dict(data)


# Delete


@dataclass(frozen=True)
class SchemaDeleteSuccess:
    valid: bool
    changes: Tuple[SchemaChange, ...] = ()
    errors: Tuple[SchemaError, ...] = ()
    dry_run: bool = False
    version_id: Optional[str] = None

    typename = "SchemaDeleteSuccess"


@dataclass(frozen=True)
class SchemaDeleteError:
    errors: Tuple[SchemaError, ...]

    typename = "SchemaDeleteError"
    valid = False


SchemaDeleteResponse = Union[SchemaDeleteSuccess, SchemaDeleteError]
