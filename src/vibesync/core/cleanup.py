"""Stale cleanup sweep.

Deletes remote SessionRecords that are inside the active window but no
longer correspond to a local session, e.g. after the source restarted and
its sessions ended while it was down.
"""

import logging

from vibesync.core.fetch import FetchEngine
from vibesync.core.records import SESSION_RECORD_TYPE
from vibesync.core.store import RecordNotFound, RecordStore, StoreError

logger = logging.getLogger(__name__)

DEFAULT_CLEANUP_EVERY = 10


class CleanupSweep:
    """Runs a sweep every ``every`` upload ticks.

    When device_name is set, only records published by that device are
    swept, so two sources sharing a store leave each other alone.
    """

    def __init__(
        self,
        fetch_engine: FetchEngine,
        store: RecordStore,
        every: int = DEFAULT_CLEANUP_EVERY,
        device_name: str | None = None,
    ) -> None:
        self.fetch_engine = fetch_engine
        self.store = store
        self.every = every
        self.device_name = device_name
        self.ticks = 0

    async def tick(self, active_ids: set[str]) -> list[str]:
        """Count one upload tick, sweeping when the count comes round."""
        self.ticks += 1
        if self.ticks % self.every:
            return []
        return await self.sweep(active_ids)

    async def sweep(self, active_ids: set[str]) -> list[str]:
        """Delete remote sessions that aren't in active_ids.

        A failed query or an empty result deletes nothing.

        Returns:
            Ids that were deleted.
        """
        try:
            remote = await self.fetch_engine.query_active()
        except StoreError as e:
            logger.debug("Skipping cleanup, query failed: %s", e)
            return []
        if not remote:
            return []

        remote_ids = {
            s.id
            for s in remote
            if self.device_name is None or s.source_device_name == self.device_name
        }
        deleted = []
        for session_id in sorted(remote_ids - set(active_ids)):
            try:
                await self.store.delete(SESSION_RECORD_TYPE, session_id)
            except RecordNotFound:
                continue
            except StoreError as e:
                logger.error("Failed to delete stale session %s: %s", session_id, e)
                continue
            deleted.append(session_id)
            logger.info("Deleted stale session %s", session_id)
        return deleted
