"""Fetch engine: the remote device's view of active sessions.

Active sessions are found with a range predicate on the indexed
``timestamp`` field, sorted server-side, and paged until the cursor runs
out. The store is never asked for "all records of a type".
"""

import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from vibesync.core.config import DEFAULT_SESSION_EXPIRATION
from vibesync.core.records import (
    SESSION_RECORD_TYPE,
    MalformedRecord,
    SessionRecord,
    utcnow,
)
from vibesync.core.store import (
    DEFAULT_PAGE_LIMIT,
    CorruptRecord,
    Predicate,
    Query,
    QueryCapabilityError,
    RecordNotFound,
    RecordStore,
    RecordTypeNotFound,
    StoreError,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_DECODE_FAILURES = 5


class FetchEngine:
    """Queries the store for sessions inside the expiration window.

    Args:
        store: Remote record store.
        session_expiration: Window in seconds; older records are not active.
        clock: Returns the current aware datetime.
        notifier: Called as notifier(title, body) to alert the user.
        max_decode_failures: Consecutive undecodable records tolerated
            before the user is alerted.
    """

    def __init__(
        self,
        store: RecordStore,
        session_expiration: float = DEFAULT_SESSION_EXPIRATION,
        clock: Callable[[], datetime] = utcnow,
        notifier: Callable[[str, str], None] | None = None,
        max_decode_failures: int = DEFAULT_MAX_DECODE_FAILURES,
    ) -> None:
        self.store = store
        self.session_expiration = timedelta(seconds=session_expiration)
        self.clock = clock
        self.notifier = notifier
        self.max_decode_failures = max_decode_failures
        self.decode_failures = 0
        self.last_fetch: datetime | None = None
        self._alerted = False

    def active_query(self, now: datetime) -> Query:
        cutoff = now - self.session_expiration
        return Query(
            record_type=SESSION_RECORD_TYPE,
            predicates=(Predicate("timestamp", ">=", cutoff),),
            sort_key="timestamp",
            descending=True,
        )

    def is_active(self, session: SessionRecord) -> bool:
        """Whether a record falls inside the expiration window right now."""
        return session.timestamp >= self.clock() - self.session_expiration

    async def query_active(self) -> list[SessionRecord]:
        """Return every session written within the expiration window.

        Raises:
            StoreError: On any store failure, including a missing record type.
        """
        now = self.clock()
        cutoff = now - self.session_expiration
        query = self.active_query(now)

        sessions: list[SessionRecord] = []
        cursor = None
        while True:
            page = await self.store.query(query, cursor=cursor, limit=DEFAULT_PAGE_LIMIT)
            for record in page.records:
                session = self._decode(record)
                if session is not None and session.timestamp >= cutoff:
                    sessions.append(session)
            cursor = page.cursor
            if cursor is None:
                break

        self.last_fetch = now
        logger.info("Fetched %d active sessions", len(sessions))
        return sessions

    async def fetch_active(self) -> list[SessionRecord]:
        """Active sessions for display. Returns [] when the store can't answer."""
        try:
            return await self.query_active()
        except RecordTypeNotFound:
            logger.debug("Session record type not found yet")
        except QueryCapabilityError as e:
            logger.warning("Session query not permitted by the store: %s", e)
        except StoreError as e:
            logger.error("Failed to fetch sessions: %s", e)
        return []

    async def fetch_session(self, session_id: str) -> SessionRecord | None:
        """Fetch a single session by id, or None if absent or undecodable."""
        try:
            record = await self.store.fetch(SESSION_RECORD_TYPE, session_id)
        except RecordNotFound:
            return None
        except CorruptRecord as e:
            self._count_failure(e)
            return None
        return self._decode(record)

    def _decode(self, record) -> SessionRecord | None:
        try:
            session = SessionRecord.from_record(record)
        except MalformedRecord as e:
            self._count_failure(e)
            return None
        self.decode_failures = 0
        return session

    def _count_failure(self, error: Exception) -> None:
        self.decode_failures += 1
        logger.warning("Skipping malformed session record: %s", error)
        if self.decode_failures >= self.max_decode_failures and not self._alerted:
            self._alerted = True
            logger.error("%d session records could not be decoded", self.decode_failures)
            if self.notifier:
                self.notifier(
                    "Sync data problem",
                    "Some sessions from the shared store could not be read. "
                    "Check that all devices run the same vibesync version.",
                )
