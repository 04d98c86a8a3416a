"""Remote actor: a device watching sessions that run elsewhere.

Keeps a RemoteView of active sessions and pending prompts current from two
sources: push notifications (targeted updates) and a periodic full refresh.
"""

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime

from vibesync.core.config import Settings
from vibesync.core.fetch import FetchEngine
from vibesync.core.prompts import PromptChannel
from vibesync.core.records import PromptRecord, SessionRecord, aggregate_status, utcnow
from vibesync.core.store import RecordStore, RecordTypeNotFound, StoreError
from vibesync.core.subscriptions import PROMPT_ALERT_BODY, PushBridge

logger = logging.getLogger(__name__)


class RemoteView:
    """Sessions and pending prompts as seen from a remote device.

    ``on_change`` is called after every mutation.
    """

    def __init__(self, on_change: Callable[[], None] | None = None) -> None:
        self.on_change = on_change
        self._sessions: dict[str, SessionRecord] = {}
        self._prompts: dict[str, PromptRecord] = {}

    @property
    def sessions(self) -> list[SessionRecord]:
        """Sessions, most recently written first."""
        by_id = sorted(self._sessions.values(), key=lambda s: s.id)
        return sorted(by_id, key=lambda s: s.timestamp, reverse=True)

    @property
    def prompts(self) -> list[PromptRecord]:
        """Pending prompts, newest first."""
        return sorted(self._prompts.values(), key=lambda p: p.timestamp, reverse=True)

    @property
    def status(self) -> str:
        return aggregate_status(self._sessions.values())

    def prompt_for(self, session_id: str) -> PromptRecord | None:
        """Newest pending prompt of a session."""
        for prompt in self.prompts:
            if prompt.session_id == session_id:
                return prompt
        return None

    def replace(self, sessions: list[SessionRecord], prompts: list[PromptRecord]) -> None:
        self._sessions = {s.id: s for s in sessions}
        self._prompts = {p.id: p for p in prompts}
        self._changed()

    def put_session(self, session: SessionRecord) -> None:
        self._sessions[session.id] = session
        self._changed()

    def remove_session(self, session_id: str) -> None:
        if self._sessions.pop(session_id, None) is not None:
            self._changed()

    def put_prompt(self, prompt: PromptRecord) -> None:
        self._prompts[prompt.id] = prompt
        self._changed()

    def remove_prompt(self, prompt_id: str) -> None:
        if self._prompts.pop(prompt_id, None) is not None:
            self._changed()

    def _changed(self) -> None:
        if self.on_change:
            self.on_change()


class RemoteAgent:
    """Owns the remote view and everything that updates it."""

    def __init__(
        self,
        store: RecordStore,
        device_name: str,
        refresh_interval: float = 5.0,
        session_expiration: float = 1800,
        clock: Callable[[], datetime] = utcnow,
        notifier: Callable[[str, str], None] | None = None,
        view: RemoteView | None = None,
    ) -> None:
        self.store = store
        self.device_name = device_name
        self.refresh_interval = refresh_interval
        self.notifier = notifier
        self.view = view or RemoteView()
        self._announced: set[str] = set()
        self.fetch_engine = FetchEngine(
            store, session_expiration=session_expiration, clock=clock, notifier=notifier
        )
        self.channel = PromptChannel(store, clock=clock)
        self.bridge = PushBridge(
            store,
            self.fetch_engine,
            self.channel,
            self.view,
            self.refresh,
            on_prompt=self.announce,
        )

    @classmethod
    def from_settings(
        cls, settings: Settings, store: RecordStore, **kwargs
    ) -> "RemoteAgent":
        return cls(
            store,
            settings.device_name,
            refresh_interval=settings.refresh_interval,
            session_expiration=settings.session_expiration,
            **kwargs,
        )

    async def refresh(self) -> None:
        """Replace the view with a fresh query of the store.

        Whatever can't be queried this cycle keeps its current contents.
        """
        try:
            sessions = await self.fetch_engine.query_active()
        except RecordTypeNotFound:
            sessions = []
        except StoreError as e:
            logger.error("Failed to fetch sessions: %s", e)
            sessions = [s for s in self.view.sessions if self.fetch_engine.is_active(s)]
        try:
            prompts = await self.channel.fetch_pending()
        except StoreError as e:
            logger.error("Failed to fetch prompts: %s", e)
            prompts = self.view.prompts
        self.view.replace(sessions, prompts)
        for prompt in prompts:
            self.announce(prompt)
        self._announced &= {p.id for p in prompts}

    def announce(self, prompt: PromptRecord) -> None:
        """Alert the user about a pending prompt, once per prompt id."""
        if prompt.id in self._announced:
            return
        self._announced.add(prompt.id)
        logger.info("Prompt %s waiting for input (%s)", prompt.id, prompt.project)
        if self.notifier:
            body = prompt.prompt_message or PROMPT_ALERT_BODY
            self.notifier(f"{prompt.project}: Needs Input", body)

    async def submit_response(self, prompt_id: str, text: str) -> PromptRecord:
        """Answer a prompt from this device.

        Raises:
            PromptNotFound: If the prompt no longer exists.
            StoreError: If the store fails.
        """
        prompt = await self.channel.submit_response(prompt_id, text, self.device_name)
        self.view.remove_prompt(prompt_id)
        return prompt

    async def start(self) -> None:
        await self.bridge.register()
        await self.refresh()

    async def refresh_loop(self) -> None:
        while True:
            await asyncio.sleep(self.refresh_interval)
            await self.bridge.on_activation()
            await self.refresh()

    async def push_loop(self) -> None:
        try:
            await self.bridge.run(self.store.notifications())
        except StoreError as e:
            logger.warning("Push channel unavailable, relying on periodic refresh: %s", e)

    async def run(self) -> None:
        """Register, refresh, then follow pushes and the refresh timer until cancelled."""
        await self.start()
        await asyncio.gather(self.refresh_loop(), self.push_loop())
