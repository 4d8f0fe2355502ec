"""
In-memory CDN artifact storage for tests and local development.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional, Union

from .storage import ArtifactStorageError, ArtifactType, build_artifact_storage_key, serialize_artifact

logger = logging.getLogger(__name__)


class InMemoryArtifactStorage:
    """Keeps artifacts in a dict keyed by their object key.

    Args:
        fail_writes: Make every write raise, to exercise failure paths
    """

    def __init__(self, fail_writes: bool = False) -> None:
        self.fail_writes = fail_writes
        self.objects: Dict[str, bytes] = {}
        self.write_count = 0

    async def start(self) -> None:
        pass

    async def close(self) -> None:
        pass

    async def write_artifact(
        self,
        target_id: str,
        artifact_type: ArtifactType,
        artifact: Union[str, Any],
        contract_name: Optional[str] = None,
    ) -> None:
        key = build_artifact_storage_key(target_id, artifact_type, contract_name)
        if self.fail_writes:
            raise ArtifactStorageError(f"Failed to write artifact {key}")
        self.objects[key] = serialize_artifact(artifact_type, artifact)
        self.write_count += 1

    async def delete_artifact(
        self,
        target_id: str,
        artifact_type: ArtifactType,
        contract_name: Optional[str] = None,
    ) -> None:
        self.objects.pop(build_artifact_storage_key(target_id, artifact_type, contract_name), None)

    async def generate_artifact_read_url(
        self,
        target_id: str,
        artifact_type: ArtifactType,
        contract_name: Optional[str] = None,
    ) -> Optional[str]:
        key = build_artifact_storage_key(target_id, artifact_type, contract_name)
        if key not in self.objects:
            return None
        return f"memory://{key}"

    def read(self, target_id: str, artifact_type: ArtifactType, contract_name: Optional[str] = None) -> Any:
        """Decoded artifact content, None when missing."""
        body = self.objects.get(build_artifact_storage_key(target_id, artifact_type, contract_name))
        if body is None:
            return None
        if artifact_type.content_type == "application/json":
            return json.loads(body)
        return body.decode("utf-8")
