"""Record store backed by a shared directory.

Point every device at the same synced folder (Dropbox, iCloud Drive,
Syncthing, an NFS mount) and it behaves as an eventually-consistent keyed
record store:

    {root}/{record_type}/{record_id}.json     one record per file
    {root}/_subscriptions/{id}.json           registered subscriptions

Record files are written atomically (temp file + rename) with orjson.
Datetimes are tagged as {"$date": iso8601} so predicates compare real
datetimes after a round trip. Push notifications come from watching the
root with watchfiles.
"""

import asyncio
import logging
import os
import uuid
from collections.abc import AsyncIterator
from datetime import datetime
from pathlib import Path

import orjson
from watchfiles import Change, awatch

from vibesync.core.status_files import write_atomic
from vibesync.core.store import (
    CREATE,
    DEFAULT_INDEXES,
    DEFAULT_PAGE_LIMIT,
    DELETE,
    UPDATE,
    CorruptRecord,
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

logger = logging.getLogger(__name__)

SUBSCRIPTIONS_DIR = "_subscriptions"

# What decode_record raises on a truncated or foreign file
_DECODE_ERRORS = (orjson.JSONDecodeError, AttributeError, KeyError, TypeError, ValueError)

_CHANGE_REASONS = {
    Change.added: CREATE,
    Change.modified: UPDATE,
    Change.deleted: DELETE,
}


def _encode_value(value):
    if isinstance(value, datetime):
        return {"$date": value.isoformat()}
    return value


def _decode_value(value):
    if isinstance(value, dict) and set(value) == {"$date"}:
        return datetime.fromisoformat(value["$date"])
    return value


def encode_record(record: Record) -> bytes:
    """Serialize a record to JSON bytes."""
    return orjson.dumps(
        {
            "recordType": record.record_type,
            "recordId": record.record_id,
            "changeTag": record.change_tag,
            "fields": {k: _encode_value(v) for k, v in record.fields.items()},
        },
        option=orjson.OPT_INDENT_2,
    )


def decode_record(content: bytes) -> Record:
    """Parse JSON bytes written by ``encode_record``.

    Raises:
        orjson.JSONDecodeError: If content is not valid JSON.
        KeyError: If required keys are missing.
    """
    data = orjson.loads(content)
    return Record(
        record_type=data["recordType"],
        record_id=data["recordId"],
        fields={k: _decode_value(v) for k, v in data.get("fields", {}).items()},
        change_tag=data.get("changeTag"),
    )


def _validate_name(name: str) -> None:
    if not name or "/" in name or "\\" in name or name.startswith("."):
        raise ValueError(f"Invalid record name: {name!r}")


class DirectoryStore(RecordStore):
    """Record store living in a (possibly synced) directory."""

    def __init__(
        self,
        root: Path,
        create: bool = True,
        indexes: dict[str, frozenset[str]] | None = None,
        unrestricted_queries: bool = False,
    ) -> None:
        self.root = Path(root).expanduser()
        self.indexes = DEFAULT_INDEXES if indexes is None else indexes
        self.unrestricted_queries = unrestricted_queries
        if create:
            self.root.mkdir(parents=True, exist_ok=True)

    def _type_dir(self, record_type: str) -> Path:
        _validate_name(record_type)
        return self.root / record_type

    def _record_path(self, record_type: str, record_id: str) -> Path:
        _validate_name(record_id)
        return self._type_dir(record_type) / f"{record_id}.json"

    def _check_available(self) -> None:
        if not self.root.is_dir():
            raise StoreUnavailable(f"store directory {self.root} is not mounted")

    async def account_available(self) -> bool:
        return self.root.is_dir() and os.access(self.root, os.W_OK)

    async def fetch(self, record_type: str, record_id: str) -> Record:
        return await asyncio.to_thread(self._fetch_sync, record_type, record_id)

    def _fetch_sync(self, record_type: str, record_id: str) -> Record:
        self._check_available()
        path = self._record_path(record_type, record_id)
        try:
            return decode_record(path.read_bytes())
        except FileNotFoundError:
            raise RecordNotFound(f"{record_type}/{record_id}") from None
        except OSError as e:
            raise StoreUnavailable(str(e)) from e
        except _DECODE_ERRORS as e:
            raise CorruptRecord(f"{record_type}/{record_id}: {e}") from e

    async def save(self, record: Record) -> Record:
        return await asyncio.to_thread(self._save_sync, record)

    def _save_sync(self, record: Record) -> Record:
        self._check_available()
        path = self._record_path(record.record_type, record.record_id)
        if record.change_tag is None and path.exists():
            raise RecordConflict(f"{record.record_type}/{record.record_id} already exists")
        stored = record.copy()
        stored.change_tag = uuid.uuid4().hex
        try:
            write_atomic(path, encode_record(stored))
        except OSError as e:
            raise StoreUnavailable(str(e)) from e
        return stored

    async def delete(self, record_type: str, record_id: str) -> None:
        await asyncio.to_thread(self._delete_sync, record_type, record_id)

    def _delete_sync(self, record_type: str, record_id: str) -> None:
        self._check_available()
        path = self._record_path(record_type, record_id)
        try:
            path.unlink()
        except FileNotFoundError:
            raise RecordNotFound(f"{record_type}/{record_id}") from None
        except OSError as e:
            raise StoreUnavailable(str(e)) from e

    async def query(
        self, query: Query, cursor: str | None = None, limit: int = DEFAULT_PAGE_LIMIT
    ) -> QueryPage:
        return await asyncio.to_thread(self._query_sync, query, cursor, limit)

    def _query_sync(self, query: Query, cursor: str | None, limit: int) -> QueryPage:
        self._check_available()
        type_dir = self._type_dir(query.record_type)
        if not type_dir.is_dir():
            raise RecordTypeNotFound(query.record_type)
        check_query_allowed(query, self.indexes, self.unrestricted_queries)

        records = []
        for path in type_dir.glob("*.json"):
            try:
                records.append(decode_record(path.read_bytes()))
            except FileNotFoundError:
                continue  # deleted between glob and read
            except _DECODE_ERRORS as e:
                logger.warning("Skipping unreadable record file %s: %s", path, e)
        return run_query(records, query, cursor, limit)

    async def list_subscriptions(self) -> list[Subscription]:
        return await asyncio.to_thread(self._list_subscriptions_sync)

    def _list_subscriptions_sync(self) -> list[Subscription]:
        self._check_available()
        sub_dir = self.root / SUBSCRIPTIONS_DIR
        if not sub_dir.is_dir():
            return []
        subscriptions = []
        for path in sorted(sub_dir.glob("*.json")):
            try:
                data = orjson.loads(path.read_bytes())
                subscriptions.append(
                    Subscription(
                        subscription_id=data["subscriptionId"],
                        record_type=data["recordType"],
                        fires_on=frozenset(data["firesOn"]),
                        silent=data.get("silent", True),
                        alert_body=data.get("alertBody"),
                    )
                )
            except (OSError, orjson.JSONDecodeError, KeyError) as e:
                logger.warning("Skipping unreadable subscription %s: %s", path, e)
        return subscriptions

    async def save_subscription(self, subscription: Subscription) -> None:
        await asyncio.to_thread(self._save_subscription_sync, subscription)

    def _save_subscription_sync(self, subscription: Subscription) -> None:
        self._check_available()
        if not self._type_dir(subscription.record_type).is_dir():
            raise RecordTypeNotFound(subscription.record_type)
        _validate_name(subscription.subscription_id)
        content = orjson.dumps(
            {
                "subscriptionId": subscription.subscription_id,
                "recordType": subscription.record_type,
                "firesOn": sorted(subscription.fires_on),
                "silent": subscription.silent,
                "alertBody": subscription.alert_body,
            },
            option=orjson.OPT_INDENT_2,
        )
        write_atomic(
            self.root / SUBSCRIPTIONS_DIR / f"{subscription.subscription_id}.json",
            content,
        )

    async def delete_subscription(self, subscription_id: str) -> None:
        _validate_name(subscription_id)
        path = self.root / SUBSCRIPTIONS_DIR / f"{subscription_id}.json"
        path.unlink(missing_ok=True)

    async def notifications(self) -> AsyncIterator[Notification]:
        self._check_available()
        async for changes in awatch(self.root, watch_filter=_is_record_file):
            subscriptions = await self.list_subscriptions()
            for notification in self._notifications_for(changes, subscriptions):
                yield notification

    def _notifications_for(
        self, changes: set[tuple[Change, str]], subscriptions: list[Subscription]
    ) -> list[Notification]:
        notifications = []
        for change, raw_path in sorted(changes, key=lambda c: c[1]):
            path = Path(raw_path)
            try:
                relative = path.relative_to(self.root)
            except ValueError:
                continue
            if len(relative.parts) != 2 or relative.parts[0] == SUBSCRIPTIONS_DIR:
                continue
            record_type = relative.parts[0]
            reason = _CHANGE_REASONS[change]
            for subscription in subscriptions:
                if subscription.record_type != record_type:
                    continue
                if reason not in subscription.fires_on:
                    continue
                notifications.append(
                    Notification(
                        subscription_id=subscription.subscription_id,
                        record_type=record_type,
                        record_id=path.stem,
                        reason=reason,
                    )
                )
        return notifications


def _is_record_file(change: Change, path: str) -> bool:
    name = os.path.basename(path)
    return name.endswith(".json") and not name.startswith(".")
