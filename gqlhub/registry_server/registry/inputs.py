"""
Request models of the schema publisher.

Validated with pydantic at the publisher boundary. Business rules
(service name presence, url format, metadata JSON) are NOT validated
here: they are registry checks and produce reason codes, not exceptions.
"""

from __future__ import annotations

from typing import Dict, Optional

from pydantic import BaseModel, Field


class GitHubInput(BaseModel):
    """Where to report a GitHub check run."""

    repository: str = Field(..., description="owner/name")
    commit: str = Field(..., min_length=1, description="Head SHA the check run is attached to")
    pull_request_number: Optional[str] = Field(None, description="Used to derive the approval context")


class CheckMeta(BaseModel):
    author: str = Field(..., description="Author of the checked change")
    commit: str = Field(..., description="Commit of the checked change")


class CheckInput(BaseModel):
    """Input of SchemaPublisher.check."""

    target_id: str = Field(..., description="Target to check against")
    sdl: str = Field(..., description="Schema SDL")
    service: Optional[str] = Field(None, description="Service name (composite projects)")
    meta: Optional[CheckMeta] = Field(None, description="Author and commit of the change")
    github: Optional[GitHubInput] = Field(None, description="Report the result as a GitHub check run")
    context_id: Optional[str] = Field(
        None,
        min_length=1,
        max_length=200,
        description="Scope for approved breaking changes; derived from the pull request when omitted",
    )


class PublishInput(BaseModel):
    """Input of SchemaPublisher.publish."""

    target_id: str = Field(..., description="Target to publish to")
    sdl: str = Field(..., description="Schema SDL")
    author: str = Field(..., description="Author of the published schema")
    commit: str = Field(..., description="Commit of the published schema")
    service: Optional[str] = Field(None, description="Service name (composite projects)")
    url: Optional[str] = Field(None, description="Service url (composite projects)")
    metadata: Optional[str] = Field(None, description="JSON metadata blob")
    force: bool = Field(False, description="Legacy: publish despite composition errors or breaking changes")
    experimental_accept_breaking_changes: bool = Field(
        False, description="Legacy: publish despite breaking changes"
    )
    github: Optional[GitHubInput] = Field(None, description="Report the result as a GitHub check run")

    def idempotency_key(self, checksum: str) -> str:
        return f"schema:publish:{self.target_id}:{checksum}"


class DeleteInput(BaseModel):
    """Input of SchemaPublisher.delete."""

    target_id: str = Field(..., description="Target to delete the service from")
    service_name: str = Field(..., description="Name of the service to delete")
    dry_run: bool = Field(False, description="Compute the outcome without persisting it")


class UpdateVersionStatusInput(BaseModel):
    """Input of SchemaPublisher.update_version_status (legacy projects only)."""

    target_id: str = Field(..., description="Target of the version")
    version_id: str = Field(..., description="Version to update")
    valid: bool = Field(..., description="New composable flag")


def build_check_meta(meta: Optional[CheckMeta]) -> Optional[Dict[str, str]]:
    if meta is None:
        return None
    return {"author": meta.author, "commit": meta.commit}
