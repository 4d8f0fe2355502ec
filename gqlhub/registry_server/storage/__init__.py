"""
Registry persistence.

- Storage: protocol consumed by the registry core
- InMemoryStorage: complete in-process implementation
"""

from .base import (
    CreateContractVersionInput,
    CreateVersionInput,
    DeleteSchemaInput,
    DuplicateEntityError,
    Storage,
    StorageError,
    VersionAction,
)
from .memory import InMemoryStorage

__all__ = [
    "Storage",
    "StorageError",
    "DuplicateEntityError",
    "CreateVersionInput",
    "CreateContractVersionInput",
    "DeleteSchemaInput",
    "VersionAction",
    "InMemoryStorage",
]
