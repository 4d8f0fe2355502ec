"""
GitHub check-run integration.

A schema check or publish coming from CI can be mirrored as a GitHub
check run on the pushed commit. The publisher creates the run before
doing any work and always resolves it afterwards.

Invariants:
    - Client methods never raise for GitHub-side failures; they return
      GitHubCheckRunError so the caller can still resolve the operation
    - Repositories are given as "owner/name"

Example:
    >>> client = GitHubCheckRunClient(token="...")
    >>> run = await client.create_check_run(repository="acme/api", sha="abc123", name="GraphQL Hub > check")
    >>> if isinstance(run, GitHubCheckRunSuccess):
    ...     await client.update_check_run(
    ...         repository="acme/api", check_run_id=run.id,
    ...         conclusion=CheckRunConclusion.SUCCESS, title="No changes", summary="",
    ...     )
"""

from __future__ import annotations

import logging
from abc import abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Protocol, Tuple, Union, runtime_checkable

import httpx

logger = logging.getLogger(__name__)

# GitHub rejects check-run summaries above 65535 characters.
MAX_SUMMARY_LENGTH = 65_000


class CheckRunConclusion(Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    NEUTRAL = "neutral"


@dataclass(frozen=True)
class GitHubCheckRunSuccess:
    id: int
    url: Optional[str] = None


@dataclass(frozen=True)
class GitHubCheckRunError:
    message: str


GitHubCheckRunResult = Union[GitHubCheckRunSuccess, GitHubCheckRunError]


def split_repository(repository: str) -> Optional[Tuple[str, str]]:
    """Split "owner/name" into its parts, None if malformed."""
    parts = repository.split("/")
    if len(parts) != 2 or not all(parts):
        return None
    return parts[0], parts[1]


def truncate_summary(summary: str) -> str:
    if len(summary) <= MAX_SUMMARY_LENGTH:
        return summary
    return summary[:MAX_SUMMARY_LENGTH] + "\n\n... (truncated)"


@runtime_checkable
class GitHubIntegration(Protocol):
    """Creates and resolves GitHub check runs."""

    @abstractmethod
    async def create_check_run(self, repository: str, sha: str, name: str) -> GitHubCheckRunResult:
        ...

    @abstractmethod
    async def update_check_run(
        self,
        repository: str,
        check_run_id: int,
        conclusion: CheckRunConclusion,
        title: str,
        summary: str,
    ) -> GitHubCheckRunResult:
        ...


class GitHubCheckRunClient:
    """GitHub REST client for the check-runs API."""

    def __init__(
        self,
        token: str,
        api_url: str = "https://api.github.com",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self._token = token
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.api_url,
            headers={
                "Authorization": f"Bearer {self._token}",
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": "2022-11-28",
            },
            timeout=self.timeout,
            transport=self._transport,
        )

    async def create_check_run(self, repository: str, sha: str, name: str) -> GitHubCheckRunResult:
        parts = split_repository(repository)
        if parts is None:
            return GitHubCheckRunError(message=f"Invalid repository name '{repository}'")
        owner, repo = parts

        try:
            async with self._client() as client:
                response = await client.post(
                    f"/repos/{owner}/{repo}/check-runs",
                    json={"name": name, "head_sha": sha, "status": "in_progress"},
                )
                response.raise_for_status()
                body = response.json()
        except httpx.HTTPStatusError as e:
            logger.error(
                "Failed to create GitHub check run",
                extra={"repository": repository, "status_code": e.response.status_code},
            )
            return GitHubCheckRunError(
                message=f"Failed to create check run on {repository} (HTTP {e.response.status_code})"
            )
        except (httpx.HTTPError, ValueError) as e:
            logger.error("Failed to create GitHub check run", extra={"repository": repository}, exc_info=True)
            return GitHubCheckRunError(message=f"Failed to create check run on {repository}: {e}")

        logger.info("Created GitHub check run", extra={"repository": repository, "check_run_id": body["id"]})
        return GitHubCheckRunSuccess(id=int(body["id"]), url=body.get("html_url"))

    async def update_check_run(
        self,
        repository: str,
        check_run_id: int,
        conclusion: CheckRunConclusion,
        title: str,
        summary: str,
    ) -> GitHubCheckRunResult:
        parts = split_repository(repository)
        if parts is None:
            return GitHubCheckRunError(message=f"Invalid repository name '{repository}'")
        owner, repo = parts

        try:
            async with self._client() as client:
                response = await client.patch(
                    f"/repos/{owner}/{repo}/check-runs/{check_run_id}",
                    json={
                        "status": "completed",
                        "conclusion": conclusion.value,
                        "output": {"title": title, "summary": truncate_summary(summary)},
                    },
                )
                response.raise_for_status()
                body = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(
                "Failed to update GitHub check run",
                extra={"repository": repository, "check_run_id": check_run_id},
                exc_info=True,
            )
            return GitHubCheckRunError(message=f"Failed to update check run {check_run_id}: {e}")

        return GitHubCheckRunSuccess(id=check_run_id, url=body.get("html_url"))
