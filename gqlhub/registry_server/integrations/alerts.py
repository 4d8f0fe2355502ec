"""
Schema change notifications.

After a version is created the publisher tells subscribers (Slack bridges,
webhooks) what changed. Delivery is at-most-once: the publisher dispatches
notifications as a detached task and only logs failures.
"""

from __future__ import annotations

import logging
from abc import abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Protocol, Tuple, runtime_checkable

import httpx

from ..schema.changes import SchemaChange
from ..schema.types import SchemaCompositionError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SchemaChangeNotification:
    """Payload describing a new schema version."""

    organization_id: str
    project_id: str
    target_id: str
    version_id: str
    initial: bool
    changes: Tuple[SchemaChange, ...] = ()
    messages: Tuple[str, ...] = ()
    errors: Tuple[SchemaCompositionError, ...] = ()
    link: Optional[str] = None
    meta: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "organizationId": self.organization_id,
            "projectId": self.project_id,
            "targetId": self.target_id,
            "versionId": self.version_id,
            "initial": self.initial,
            "changes": [c.to_dict() for c in self.changes],
            "messages": list(self.messages),
            "errors": [e.to_dict() for e in self.errors],
            "link": self.link,
            "meta": self.meta,
        }


@runtime_checkable
class SchemaChangeNotifier(Protocol):
    @abstractmethod
    async def notify(self, notification: SchemaChangeNotification) -> None:
        ...


class WebhookNotifier:
    """POSTs notifications as JSON to a webhook."""

    def __init__(
        self,
        url: str,
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.url = url
        self.timeout = timeout
        self._transport = transport

    async def notify(self, notification: SchemaChangeNotification) -> None:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.post(self.url, json=notification.to_dict())
            response.raise_for_status()
        logger.debug(
            "Delivered schema change notification",
            extra={"target_id": notification.target_id, "version_id": notification.version_id},
        )


class NullNotifier:
    """Drops notifications. Used when no webhook is configured."""

    async def notify(self, notification: SchemaChangeNotification) -> None:
        logger.debug("Notifications disabled", extra={"version_id": notification.version_id})
