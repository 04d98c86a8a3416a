"""Contract with the shared record store.

The store is a keyed record service with field-predicate queries, query
subscriptions and a push channel. vibesync never talks to a wire protocol
directly; every backend implements ``RecordStore``.

Write semantics:
- A record built locally has no change tag. Saving it when a record with the
  same id already exists raises RecordConflict (insert-on-existing).
- A record obtained from ``fetch`` or ``query`` carries a change tag. Saving
  it overwrites the stored copy (last write wins).

Query semantics:
- Every predicate field and the sort field must be indexed for the record
  type, and at least one predicate is required, unless the store was built
  with unrestricted queries enabled. Otherwise QueryCapabilityError.
"""

import copy
import operator
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any

CREATE = "create"
UPDATE = "update"
DELETE = "delete"
ALL_REASONS = frozenset({CREATE, UPDATE, DELETE})

DEFAULT_PAGE_LIMIT = 100

# Fields the shared store indexes for each record type
DEFAULT_INDEXES: dict[str, frozenset[str]] = {
    "Session": frozenset({"timestamp"}),
    "Prompt": frozenset({"sessionId", "responded", "timestamp", "respondedAt"}),
}

_OPERATORS = {
    "==": operator.eq,
    "!=": operator.ne,
    ">=": operator.ge,
    ">": operator.gt,
    "<=": operator.le,
    "<": operator.lt,
}


class StoreError(Exception):
    """Base class for record store failures."""

    pass


class StoreUnavailable(StoreError):
    """The store account or transport is unreachable right now."""

    pass


class RecordNotFound(StoreError):
    """No record with the requested id exists."""

    pass


class RecordTypeNotFound(RecordNotFound):
    """The record type has never been written to this store."""

    pass


class CorruptRecord(StoreError):
    """A stored record exists but can't be parsed, e.g. a half-synced file."""

    pass


class RecordConflict(StoreError):
    """A new record was saved over an id that already exists."""

    pass


class QueryCapabilityError(StoreError):
    """The query needs a capability (index, unrestricted scan) the store lacks."""

    pass


@dataclass
class Record:
    """One stored record: a typed, keyed bag of fields."""

    record_type: str
    record_id: str
    fields: dict[str, Any] = field(default_factory=dict)
    change_tag: str | None = None

    def copy(self) -> "Record":
        return copy.deepcopy(self)


@dataclass(frozen=True)
class Predicate:
    """A single field comparison, e.g. ``Predicate("timestamp", ">=", cutoff)``."""

    field: str
    op: str
    value: Any

    def __post_init__(self) -> None:
        if self.op not in _OPERATORS:
            raise ValueError(f"Unsupported operator: {self.op}")

    def matches(self, record: Record) -> bool:
        value = record.fields.get(self.field)
        if value is None:
            return False
        try:
            return _OPERATORS[self.op](value, self.value)
        except TypeError:
            return False


@dataclass(frozen=True)
class Query:
    """Conjunction of predicates over one record type, with optional sort."""

    record_type: str
    predicates: tuple[Predicate, ...] = ()
    sort_key: str | None = None
    descending: bool = True


@dataclass
class QueryPage:
    records: list[Record]
    cursor: str | None = None


@dataclass(frozen=True)
class Subscription:
    """A persistent query subscription tied to a stable id."""

    subscription_id: str
    record_type: str
    fires_on: frozenset[str] = ALL_REASONS
    silent: bool = True
    alert_body: str | None = None


@dataclass(frozen=True)
class Notification:
    """A push delivered when a subscribed record changes.

    ``record_id`` is None when the push did not carry record identity.
    """

    subscription_id: str
    record_type: str
    record_id: str | None
    reason: str


class RecordStore(ABC):
    """Async interface every store backend implements."""

    @abstractmethod
    async def account_available(self) -> bool:
        """Return True if the store can currently be used."""

    @abstractmethod
    async def fetch(self, record_type: str, record_id: str) -> Record:
        """Fetch one record by id.

        Raises:
            RecordNotFound: If no such record (or record type) exists.
            StoreUnavailable: If the store cannot be reached.
        """

    @abstractmethod
    async def save(self, record: Record) -> Record:
        """Save a record and return the stored copy with a fresh change tag.

        Raises:
            RecordConflict: If ``record`` has no change tag and its id exists.
            StoreUnavailable: If the store cannot be reached.
        """

    @abstractmethod
    async def delete(self, record_type: str, record_id: str) -> None:
        """Delete a record.

        Raises:
            RecordNotFound: If no such record exists.
        """

    @abstractmethod
    async def query(
        self, query: Query, cursor: str | None = None, limit: int = DEFAULT_PAGE_LIMIT
    ) -> QueryPage:
        """Run one page of a query.

        Raises:
            RecordTypeNotFound: If the record type does not exist yet.
            QueryCapabilityError: If the query is not allowed by the indexes.
        """

    @abstractmethod
    async def list_subscriptions(self) -> list[Subscription]:
        """List registered subscriptions."""

    @abstractmethod
    async def save_subscription(self, subscription: Subscription) -> None:
        """Register a subscription.

        Raises:
            RecordTypeNotFound: If the subscribed record type does not exist yet.
        """

    @abstractmethod
    async def delete_subscription(self, subscription_id: str) -> None:
        """Remove a subscription. Unknown ids are ignored."""

    @abstractmethod
    def notifications(self) -> AsyncIterator[Notification]:
        """Async iterator over push notifications for registered subscriptions."""


def check_query_allowed(
    query: Query, indexes: dict[str, frozenset[str]], unrestricted: bool
) -> None:
    """Raise QueryCapabilityError if ``query`` needs more than the indexes allow."""
    if unrestricted:
        return
    if not query.predicates:
        raise QueryCapabilityError(
            f"Unrestricted query on {query.record_type} is not permitted"
        )
    indexed = indexes.get(query.record_type, frozenset())
    fields = [p.field for p in query.predicates]
    if query.sort_key:
        fields.append(query.sort_key)
    for name in fields:
        if name not in indexed:
            raise QueryCapabilityError(
                f"Field {query.record_type}.{name} is not queryable"
            )


def run_query(
    records: list[Record], query: Query, cursor: str | None, limit: int
) -> QueryPage:
    """Filter, sort and paginate records in memory.

    The cursor is an opaque offset into the sorted result set.
    """
    matched = [r for r in records if all(p.matches(r) for p in query.predicates)]

    if query.sort_key:
        key = query.sort_key
        present = [r for r in matched if r.fields.get(key) is not None]
        missing = [r for r in matched if r.fields.get(key) is None]
        present.sort(key=lambda r: r.fields[key], reverse=query.descending)
        matched = present + missing

    try:
        offset = int(cursor) if cursor else 0
    except ValueError:
        offset = 0

    page = matched[offset : offset + limit]
    next_offset = offset + limit
    next_cursor = str(next_offset) if next_offset < len(matched) else None
    return QueryPage(records=[r.copy() for r in page], cursor=next_cursor)
