"""
Batch runner — probes a list of credentials in bounded-width groups.

The list is cut into consecutive groups of at most ``width`` credentials.
Each group is probed concurrently, and every result of the group is written
back to the store before the next group starts, so an interrupted run only
loses the group that was in flight.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence

from cloudwarden.interfaces import CredentialStore
from cloudwarden.keys.probe import CredentialProbe
from cloudwarden.models import BatchSummary, Credential, HealthCheckResult

logger = logging.getLogger(__name__)


def partition(items: Sequence[Credential], width: int) -> list[list[Credential]]:
    """Split into consecutive groups of at most ``width`` items."""
    return [list(items[i : i + width]) for i in range(0, len(items), width)]


class BatchRunner:
    def __init__(self, probe: CredentialProbe, store: CredentialStore, width: int = 2) -> None:
        if width < 1:
            raise ValueError(f"batch width must be >= 1, got {width}")
        self.probe = probe
        self.store = store
        self.width = width

    async def run(self, credentials: Sequence[Credential]) -> BatchSummary:
        summary = BatchSummary()
        slots = asyncio.Semaphore(self.width)
        groups = partition(credentials, self.width)

        for index, group in enumerate(groups, start=1):
            results = await asyncio.gather(*(self._probe_one(slots, c) for c in group))
            for result in results:
                self._persist(result)
                summary.add(result)
            logger.debug("Batch group %d/%d done (%d keys)", index, len(groups), len(group))

        if credentials:
            logger.info(
                "Batch finished: %d probed, %d healthy, %d unhealthy, %d limited",
                summary.total,
                summary.healthy,
                summary.unhealthy,
                summary.limited,
            )
        return summary

    async def _probe_one(
        self, slots: asyncio.Semaphore, credential: Credential
    ) -> HealthCheckResult:
        async with slots:
            return await self.probe.probe(credential)

    def _persist(self, result: HealthCheckResult) -> None:
        try:
            self.store.update_health(
                result.credential_id, result.status, result.checked_at, result.error
            )
        except Exception as e:
            # The result still counts; the next sweep rewrites the row
            logger.error("Failed to persist health for credential %s: %s", result.credential_id, e)
