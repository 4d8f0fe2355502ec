"""
CDN artifacts of composable schema versions.

- ArtifactStorage: reader/writer protocol
- S3ArtifactStorage: aiobotocore-backed implementation
- InMemoryArtifactStorage: tests and local development
"""

from .memory import InMemoryArtifactStorage
from .storage import (
    ArtifactStorage,
    ArtifactStorageError,
    ArtifactType,
    S3ArtifactStorage,
    create_artifact_storage,
    build_artifact_storage_key,
)

__all__ = [
    "ArtifactStorage",
    "ArtifactStorageError",
    "ArtifactType",
    "S3ArtifactStorage",
    "InMemoryArtifactStorage",
    "build_artifact_storage_key",
    "create_artifact_storage",
]
