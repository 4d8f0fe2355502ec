"""
CDN artifact storage.

Composable schema versions are pushed to object storage, from where the
CDN serves them to gateways:

    artifact/<targetId>/<artifactType>
    artifact/<targetId>/contracts/<contractName>/<artifactType>

Artifact types:
    sdl         composed public SDL (text/plain)
    supergraph  federation supergraph (text/plain)
    services    list of {name, sdl, url} (application/json)
    metadata    parsed service metadata (application/json)

Invariants:
    - Artifacts are overwritten in place, the latest write wins
    - Only composable versions are written (enforced by the publisher)
    - Reads go through short-lived presigned URLs

How to change safely:
    - Keys are consumed by the CDN worker, never change their layout
"""

from __future__ import annotations

import json
import logging
from abc import abstractmethod
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Optional, Protocol, Union, runtime_checkable

from aiobotocore.session import get_session
from botocore.exceptions import BotoCoreError, ClientError

from ..config import S3Config

if TYPE_CHECKING:
    from ..config import ServerConfig

logger = logging.getLogger(__name__)


class ArtifactStorageError(Exception):
    """Object storage rejected a read or write."""
    pass


class ArtifactType(Enum):
    SDL = "sdl"
    SUPERGRAPH = "supergraph"
    SERVICES = "services"
    METADATA = "metadata"

    @property
    def content_type(self) -> str:
        if self in (ArtifactType.SDL, ArtifactType.SUPERGRAPH):
            return "text/plain"
        return "application/json"


def build_artifact_storage_key(
    target_id: str,
    artifact_type: ArtifactType,
    contract_name: Optional[str] = None,
) -> str:
    """Object key of an artifact.

    Example:
        >>> build_artifact_storage_key("t1", ArtifactType.SDL)
        'artifact/t1/sdl'
        >>> build_artifact_storage_key("t1", ArtifactType.SUPERGRAPH, "public")
        'artifact/t1/contracts/public/supergraph'
    """
    parts = ["artifact", target_id]
    if contract_name:
        parts.extend(["contracts", contract_name])
    parts.append(artifact_type.value)
    return "/".join(parts)


def serialize_artifact(artifact_type: ArtifactType, artifact: Union[str, Any]) -> bytes:
    if artifact_type.content_type == "application/json":
        return json.dumps(artifact).encode("utf-8")
    return str(artifact).encode("utf-8")


@runtime_checkable
class ArtifactStorage(Protocol):
    """Reader/writer for CDN artifacts."""

    @abstractmethod
    async def start(self) -> None:
        ...

    @abstractmethod
    async def close(self) -> None:
        ...

    @abstractmethod
    async def write_artifact(
        self,
        target_id: str,
        artifact_type: ArtifactType,
        artifact: Union[str, Any],
        contract_name: Optional[str] = None,
    ) -> None:
        ...

    @abstractmethod
    async def delete_artifact(
        self,
        target_id: str,
        artifact_type: ArtifactType,
        contract_name: Optional[str] = None,
    ) -> None:
        ...

    @abstractmethod
    async def generate_artifact_read_url(
        self,
        target_id: str,
        artifact_type: ArtifactType,
        contract_name: Optional[str] = None,
    ) -> Optional[str]:
        """Presigned GET URL, or None when the artifact does not exist."""
        ...


class S3ArtifactStorage:
    """Artifact storage on S3 (or an S3-compatible endpoint such as MinIO).

    The client is opened by start() and closed by close(), mirroring the
    lifecycle of the other long-lived server components.
    """

    def __init__(self, config: S3Config) -> None:
        self.config = config
        self._session = get_session()
        self._s3_ctx = None
        self._s3_client = None
        self._presign_ctx = None
        self._presign_client = None

    def _client_kwargs(self, endpoint_url: Optional[str]) -> Dict[str, Any]:
        client_kwargs: Dict[str, Any] = {"region_name": self.config.region}
        if endpoint_url:
            client_kwargs["endpoint_url"] = endpoint_url
        if self.config.access_key_id:
            client_kwargs["aws_access_key_id"] = self.config.access_key_id
            client_kwargs["aws_secret_access_key"] = self.config.secret_access_key
        return client_kwargs

    async def start(self) -> None:
        self._s3_ctx = self._session.create_client("s3", **self._client_kwargs(self.config.endpoint_url))
        self._s3_client = await self._s3_ctx.__aenter__()

        # Presigned URLs must point at the endpoint the CDN can reach.
        if self.config.public_url:
            self._presign_ctx = self._session.create_client(
                "s3", **self._client_kwargs(self.config.public_url)
            )
            self._presign_client = await self._presign_ctx.__aenter__()
        else:
            self._presign_client = self._s3_client

        logger.info("Artifact storage ready", extra={"bucket": self.config.bucket})

    async def close(self) -> None:
        if self._presign_ctx is not None:
            await self._presign_ctx.__aexit__(None, None, None)
            self._presign_ctx = None
        if self._s3_ctx is not None:
            await self._s3_ctx.__aexit__(None, None, None)
            self._s3_ctx = None
        self._s3_client = None
        self._presign_client = None

    def _require_client(self) -> Any:
        if self._s3_client is None:
            raise ArtifactStorageError("Artifact storage is not started")
        return self._s3_client

    async def write_artifact(
        self,
        target_id: str,
        artifact_type: ArtifactType,
        artifact: Union[str, Any],
        contract_name: Optional[str] = None,
    ) -> None:
        key = build_artifact_storage_key(target_id, artifact_type, contract_name)
        body = serialize_artifact(artifact_type, artifact)
        try:
            await self._require_client().put_object(
                Bucket=self.config.bucket,
                Key=key,
                Body=body,
                ContentType=artifact_type.content_type,
            )
        except (BotoCoreError, ClientError) as e:
            raise ArtifactStorageError(f"Failed to write artifact {key}: {e}") from e
        logger.debug("Wrote artifact", extra={"key": key, "size": len(body)})

    async def delete_artifact(
        self,
        target_id: str,
        artifact_type: ArtifactType,
        contract_name: Optional[str] = None,
    ) -> None:
        key = build_artifact_storage_key(target_id, artifact_type, contract_name)
        try:
            await self._require_client().delete_object(Bucket=self.config.bucket, Key=key)
        except (BotoCoreError, ClientError) as e:
            raise ArtifactStorageError(f"Failed to delete artifact {key}: {e}") from e
        logger.debug("Deleted artifact", extra={"key": key})

    async def generate_artifact_read_url(
        self,
        target_id: str,
        artifact_type: ArtifactType,
        contract_name: Optional[str] = None,
    ) -> Optional[str]:
        key = build_artifact_storage_key(target_id, artifact_type, contract_name)
        client = self._require_client()
        try:
            await client.head_object(Bucket=self.config.bucket, Key=key)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("404", "NoSuchKey", "NotFound"):
                return None
            raise ArtifactStorageError(f"Failed to read artifact {key}: {e}") from e

        return await self._presign_client.generate_presigned_url(
            "get_object",
            Params={"Bucket": self.config.bucket, "Key": key},
            ExpiresIn=self.config.presigned_url_expiry_seconds,
        )


def create_artifact_storage(config: "ServerConfig") -> ArtifactStorage:
    """Factory function to create the configured artifact storage.

    Raises:
        ValueError: If backend is not supported
    """
    from ..config import ArtifactsBackend
    from .memory import InMemoryArtifactStorage

    if config.artifacts_backend == ArtifactsBackend.S3:
        return S3ArtifactStorage(config.s3)
    elif config.artifacts_backend == ArtifactsBackend.MEMORY:
        return InMemoryArtifactStorage()
    else:
        raise ValueError(f"Unsupported artifacts backend: {config.artifacts_backend}")
