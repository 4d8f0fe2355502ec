"""
Background purge of expired schema checks.

Checks get an `expires_at` when persisted (unless linked to a GitHub check
run or manually approved). The purger deletes expired rows periodically.

Invariants:
    - A failed purge cycle is logged and retried on the next interval
    - stop() ends the loop after the current cycle
"""

from __future__ import annotations

import asyncio
import logging

from .manager import SchemaManager

logger = logging.getLogger(__name__)


class SchemaCheckPurger:
    """Periodically purges expired schema checks.

    Args:
        manager: Schema manager owning check retention
        interval_seconds: Delay between purge cycles
    """

    def __init__(self, manager: SchemaManager, interval_seconds: float = 3600.0) -> None:
        self.manager = manager
        self.interval_seconds = interval_seconds
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    async def purge_once(self) -> int:
        try:
            return await self.manager.purge_expired_schema_checks()
        except Exception as e:
            logger.error(f"Schema check purge failed: {e}", exc_info=True)
            return 0

    async def start(self) -> None:
        """Run the purge loop until stopped or cancelled."""
        if self._running:
            logger.warning("Schema check purger already running")
            return

        self._running = True
        logger.info("Starting schema check purger", extra={"interval_seconds": self.interval_seconds})

        try:
            while self._running:
                await self.purge_once()
                await asyncio.sleep(self.interval_seconds)
        except asyncio.CancelledError:
            logger.info("Schema check purger cancelled")
        finally:
            self._running = False

    async def stop(self) -> None:
        self._running = False
        logger.info("Stopping schema check purger")
