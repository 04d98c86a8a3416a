"""Subscription/push bridge for remote devices.

Registers the two query subscriptions once, then turns push notifications
into targeted updates of the remote view. A push that carries a record id
fetches just that record; one that doesn't triggers a full refresh.

Pushes are best-effort: the remote actor also refreshes on a fixed interval,
so a dropped push only delays an update.
"""

import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Protocol

from vibesync.core.fetch import FetchEngine
from vibesync.core.prompts import PromptChannel
from vibesync.core.records import (
    PROMPT_RECORD_TYPE,
    SESSION_RECORD_TYPE,
    PromptRecord,
    SessionRecord,
)
from vibesync.core.store import (
    ALL_REASONS,
    DELETE,
    Notification,
    RecordStore,
    RecordTypeNotFound,
    StoreError,
    Subscription,
)

logger = logging.getLogger(__name__)

SESSION_SUBSCRIPTION_ID = "session-changes"
PROMPT_SUBSCRIPTION_ID = "prompt-changes"

PROMPT_ALERT_BODY = "Claude needs your input"

# Session pushes only wake the device; prompt pushes also alert the user
SUBSCRIPTIONS = [
    Subscription(SESSION_SUBSCRIPTION_ID, SESSION_RECORD_TYPE, ALL_REASONS),
    Subscription(
        PROMPT_SUBSCRIPTION_ID,
        PROMPT_RECORD_TYPE,
        ALL_REASONS,
        silent=False,
        alert_body=PROMPT_ALERT_BODY,
    ),
]


class View(Protocol):
    """What the bridge updates: the remote device's picture of the world."""

    def put_session(self, session: SessionRecord) -> None: ...

    def remove_session(self, session_id: str) -> None: ...

    def put_prompt(self, prompt: PromptRecord) -> None: ...

    def remove_prompt(self, prompt_id: str) -> None: ...


class PushBridge:
    """Keeps a View current from push notifications.

    Args:
        store: Shared record store.
        fetch_engine: Used for targeted session fetches.
        channel: Used for targeted prompt fetches.
        view: Receives the updates.
        refresh: Coroutine function doing a full refresh of the view.
        on_prompt: Called with each pending prompt a push brings in.
    """

    def __init__(
        self,
        store: RecordStore,
        fetch_engine: FetchEngine,
        channel: PromptChannel,
        view: View,
        refresh: Callable[[], Awaitable[None]],
        on_prompt: Callable[[PromptRecord], None] | None = None,
    ) -> None:
        self.store = store
        self.fetch_engine = fetch_engine
        self.channel = channel
        self.view = view
        self.refresh = refresh
        self.on_prompt = on_prompt
        self.deferred: set[str] = set()

    async def register(self) -> set[str]:
        """Create any missing subscriptions.

        A subscription whose record type doesn't exist yet is deferred and
        retried by ``on_activation``.

        Returns:
            Ids of subscriptions that are registered.
        """
        try:
            existing = {s.subscription_id for s in await self.store.list_subscriptions()}
        except StoreError as e:
            logger.error("Failed to list subscriptions: %s", e)
            self.deferred = {s.subscription_id for s in SUBSCRIPTIONS}
            return set()

        registered = set()
        self.deferred = set()
        for subscription in SUBSCRIPTIONS:
            if subscription.subscription_id in existing:
                registered.add(subscription.subscription_id)
                continue
            try:
                await self.store.save_subscription(subscription)
            except RecordTypeNotFound:
                logger.debug(
                    "Record type %s not found - deferring subscription %s",
                    subscription.record_type,
                    subscription.subscription_id,
                )
                self.deferred.add(subscription.subscription_id)
                continue
            except StoreError as e:
                logger.error(
                    "Failed to register subscription %s: %s", subscription.subscription_id, e
                )
                self.deferred.add(subscription.subscription_id)
                continue
            logger.info("Registered subscription %s", subscription.subscription_id)
            registered.add(subscription.subscription_id)
        return registered

    async def on_activation(self) -> set[str]:
        """Retry deferred registrations, e.g. when the app comes to the foreground."""
        if not self.deferred:
            return set()
        return await self.register()

    async def handle(self, notification: Notification) -> None:
        """Apply one push notification to the view."""
        logger.debug(
            "Push %s %s/%s",
            notification.reason,
            notification.record_type,
            notification.record_id,
        )
        if notification.record_id is None:
            await self.refresh()
            return

        try:
            if notification.record_type == SESSION_RECORD_TYPE:
                await self._handle_session(notification)
            elif notification.record_type == PROMPT_RECORD_TYPE:
                await self._handle_prompt(notification)
            else:
                await self.refresh()
        except StoreError as e:
            logger.error("Failed to apply push for %s: %s", notification.record_id, e)

    async def _handle_session(self, notification: Notification) -> None:
        if notification.reason == DELETE:
            self.view.remove_session(notification.record_id)
            return
        session = await self.fetch_engine.fetch_session(notification.record_id)
        if session is None or not self.fetch_engine.is_active(session):
            self.view.remove_session(notification.record_id)
        else:
            self.view.put_session(session)

    async def _handle_prompt(self, notification: Notification) -> None:
        if notification.reason == DELETE:
            self.view.remove_prompt(notification.record_id)
            return
        prompt = await self.channel.fetch_prompt(notification.record_id)
        if prompt is None or prompt.responded:
            self.view.remove_prompt(notification.record_id)
        else:
            self.view.put_prompt(prompt)
            if self.on_prompt:
                self.on_prompt(prompt)

    async def run(self, notifications: AsyncIterator[Notification]) -> None:
        """Handle notifications until the iterator ends or the task is cancelled."""
        async for notification in notifications:
            await self.handle(notification)
