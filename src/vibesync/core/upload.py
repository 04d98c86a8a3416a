"""Upload pipeline: local session state to remote SessionRecords.

``publish`` is called on every local tick. It never awaits the store; it
only (re)schedules per-session debounce timers. A timer that fires hands the
write to a separate task, so cancelling a timer can never abort a write that
has already started.

Per-session state (timers, last published status, last write time) lives
here and is only touched from the event loop that owns the pipeline.
"""

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from vibesync.core.records import (
    SESSION_RECORD_TYPE,
    SessionRecord,
    SessionState,
    utcnow,
)
from vibesync.core.store import (
    CorruptRecord,
    RecordConflict,
    RecordNotFound,
    RecordStore,
    StoreError,
)

logger = logging.getLogger(__name__)


class UploadPipeline:
    """Debounced, upserting publisher of SessionRecords.

    Args:
        store: Remote record store.
        device_name: Written to every record as ``sourceDeviceName``.
        debounce_delay: Seconds to wait after the last change before writing.
            Must be shorter than the caller's polling interval.
        keepalive_interval: Re-write unchanged sessions once their last write
            is this old, so time-windowed queries keep finding them.
        clock: Returns the current aware datetime.
    """

    def __init__(
        self,
        store: RecordStore,
        device_name: str,
        debounce_delay: float = 0.5,
        keepalive_interval: float = 60.0,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.device_name = device_name
        self.debounce_delay = debounce_delay
        self.keepalive_interval = timedelta(seconds=keepalive_interval)
        self.clock = clock
        self.last_sync: datetime | None = None
        self._available = True
        self._timers: dict[str, asyncio.Task] = {}
        self._writes: set[asyncio.Task] = set()
        self._last_status: dict[str, str] = {}
        self._last_write: dict[str, datetime] = {}

    @property
    def last_published(self) -> dict[str, str]:
        """Last successfully published status per session id."""
        return dict(self._last_status)

    @property
    def pending_ids(self) -> set[str]:
        """Session ids with a debounce timer still waiting."""
        return set(self._timers)

    def publish(self, sessions: list[SessionState]) -> None:
        """Schedule writes for the current tick's sessions.

        Must be called from the event loop that owns this pipeline.
        """
        current_ids = {s.session_id for s in sessions}

        for session in sessions:
            if self._needs_write(session):
                self._schedule(session)

        # Forget sessions that are no longer active
        for session_id in list(self._timers):
            if session_id not in current_ids:
                self._timers.pop(session_id).cancel()
        for session_id in list(self._last_status):
            if session_id not in current_ids:
                del self._last_status[session_id]
                self._last_write.pop(session_id, None)

    def _needs_write(self, session: SessionState) -> bool:
        if session.session_id in self._timers:
            # Replace the pending write so it carries the latest state
            return True
        if self._last_status.get(session.session_id) != session.status:
            return True
        last_write = self._last_write.get(session.session_id)
        return last_write is None or self.clock() - last_write >= self.keepalive_interval

    def _schedule(self, session: SessionState) -> None:
        existing = self._timers.pop(session.session_id, None)
        if existing is not None:
            existing.cancel()
        self._timers[session.session_id] = asyncio.create_task(
            self._fire_after_delay(session)
        )

    async def _fire_after_delay(self, session: SessionState) -> None:
        await asyncio.sleep(self.debounce_delay)
        # From here on, nothing can cancel this write
        if self._timers.get(session.session_id) is asyncio.current_task():
            del self._timers[session.session_id]
        task = asyncio.create_task(self._write(session))
        self._writes.add(task)
        task.add_done_callback(self._writes.discard)

    async def _write(self, session: SessionState) -> None:
        if not self._available:
            self._available = await self.store.account_available()
            if not self._available:
                logger.warning(
                    "Skipping upload of %s: store not available", session.session_id
                )
                return

        now = self.clock()
        record = SessionRecord(
            id=session.session_id,
            status=session.status,
            project=session.project,
            timestamp=now,
            pid=session.pid,
            source_device_name=self.device_name,
        )
        try:
            await self.upsert(record)
        except StoreError as e:
            self._available = False
            logger.error("Failed to upload session %s: %s", session.session_id, e)
            return

        self._last_status[session.session_id] = session.status
        self._last_write[session.session_id] = now
        self.last_sync = now
        logger.info("Uploaded session %s (%s) - %s", record.id, record.status, record.project)

    async def upsert(self, session: SessionRecord) -> None:
        """Fetch-or-create the remote record, then save it.

        A concurrent create that wins the race surfaces as RecordConflict;
        the upsert then retries once through the fetch path. An existing
        record that can't be parsed is replaced.
        """
        for attempt in range(2):
            try:
                existing = await self.store.fetch(SESSION_RECORD_TYPE, session.id)
                record = session.apply_to(existing)
            except RecordNotFound:
                record = session.to_record()
            except CorruptRecord as e:
                logger.warning("Replacing unreadable session record %s: %s", session.id, e)
                await self._discard(session.id)
                record = session.to_record()
            try:
                await self.store.save(record)
                return
            except RecordConflict:
                if attempt:
                    raise
                logger.debug("Session %s created concurrently, retrying as update", session.id)

    async def _discard(self, session_id: str) -> None:
        try:
            await self.store.delete(SESSION_RECORD_TYPE, session_id)
        except RecordNotFound:
            pass

    async def drain(self) -> None:
        """Wait until no timers are pending and no writes are in flight."""
        while self._timers or self._writes:
            await asyncio.gather(
                *self._timers.values(), *self._writes, return_exceptions=True
            )

    def cancel_timers(self) -> None:
        """Cancel pending debounce timers. In-flight writes are left alone."""
        for task in self._timers.values():
            task.cancel()
        self._timers.clear()
