"""In-process record store.

Useful for tests and single-host setups. Behaves like the shared store:
create-on-existing conflicts, indexed-field queries only, subscriptions that
require the record type to exist, and push notifications to every listener.
"""

import asyncio
import uuid
from collections.abc import AsyncIterator

from vibesync.core.store import (
    CREATE,
    DEFAULT_INDEXES,
    DEFAULT_PAGE_LIMIT,
    DELETE,
    UPDATE,
    Notification,
    Query,
    QueryPage,
    Record,
    RecordConflict,
    RecordNotFound,
    RecordStore,
    RecordTypeNotFound,
    StoreUnavailable,
    Subscription,
    check_query_allowed,
    run_query,
)


class InMemoryStore(RecordStore):
    """Record store held in a dict.

    Attributes:
        available: Flip to False to simulate an unreachable account.
        drop_notifications: Flip to True to simulate lost pushes.
        operations: Log of (operation, record_type, record_id) tuples, where
            operation is "create", "update" or "delete".
    """

    def __init__(
        self,
        indexes: dict[str, frozenset[str]] | None = None,
        unrestricted_queries: bool = False,
    ) -> None:
        self.indexes = DEFAULT_INDEXES if indexes is None else indexes
        self.unrestricted_queries = unrestricted_queries
        self.available = True
        self.drop_notifications = False
        self.operations: list[tuple[str, str, str]] = []
        self._records: dict[str, dict[str, Record]] = {}
        self._subscriptions: dict[str, Subscription] = {}
        self._listeners: list[asyncio.Queue] = []

    def _check_available(self) -> None:
        if not self.available:
            raise StoreUnavailable("store account is not available")

    def records(self, record_type: str) -> list[Record]:
        """Snapshot of all stored records of a type (test helper)."""
        return [r.copy() for r in self._records.get(record_type, {}).values()]

    async def account_available(self) -> bool:
        return self.available

    async def fetch(self, record_type: str, record_id: str) -> Record:
        self._check_available()
        record = self._records.get(record_type, {}).get(record_id)
        if record is None:
            raise RecordNotFound(f"{record_type}/{record_id}")
        return record.copy()

    async def save(self, record: Record) -> Record:
        self._check_available()
        table = self._records.setdefault(record.record_type, {})
        existing = table.get(record.record_id)
        if existing is not None and record.change_tag is None:
            raise RecordConflict(f"{record.record_type}/{record.record_id} already exists")

        stored = record.copy()
        stored.change_tag = uuid.uuid4().hex
        table[record.record_id] = stored

        reason = CREATE if existing is None else UPDATE
        self.operations.append((reason, record.record_type, record.record_id))
        self._notify(record.record_type, record.record_id, reason)
        return stored.copy()

    async def delete(self, record_type: str, record_id: str) -> None:
        self._check_available()
        table = self._records.get(record_type, {})
        if record_id not in table:
            raise RecordNotFound(f"{record_type}/{record_id}")
        del table[record_id]
        self.operations.append((DELETE, record_type, record_id))
        self._notify(record_type, record_id, DELETE)

    async def query(
        self, query: Query, cursor: str | None = None, limit: int = DEFAULT_PAGE_LIMIT
    ) -> QueryPage:
        self._check_available()
        if query.record_type not in self._records:
            raise RecordTypeNotFound(query.record_type)
        check_query_allowed(query, self.indexes, self.unrestricted_queries)
        return run_query(
            list(self._records[query.record_type].values()), query, cursor, limit
        )

    async def list_subscriptions(self) -> list[Subscription]:
        self._check_available()
        return list(self._subscriptions.values())

    async def save_subscription(self, subscription: Subscription) -> None:
        self._check_available()
        if subscription.record_type not in self._records:
            raise RecordTypeNotFound(subscription.record_type)
        self._subscriptions[subscription.subscription_id] = subscription

    async def delete_subscription(self, subscription_id: str) -> None:
        self._check_available()
        self._subscriptions.pop(subscription_id, None)

    async def notifications(self) -> AsyncIterator[Notification]:
        queue: asyncio.Queue = asyncio.Queue()
        self._listeners.append(queue)
        try:
            while True:
                yield await queue.get()
        finally:
            self._listeners.remove(queue)

    def _notify(self, record_type: str, record_id: str, reason: str) -> None:
        if self.drop_notifications:
            return
        for subscription in self._subscriptions.values():
            if subscription.record_type != record_type:
                continue
            if reason not in subscription.fires_on:
                continue
            notification = Notification(
                subscription_id=subscription.subscription_id,
                record_type=record_type,
                record_id=record_id,
                reason=reason,
            )
            for queue in self._listeners:
                queue.put_nowait(notification)
