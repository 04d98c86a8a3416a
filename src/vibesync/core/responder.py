"""Source-side response poller.

Every few seconds, looks for answered prompts belonging to locally active
sessions and routes each answer into its session exactly once.
"""

import asyncio
import logging
from collections.abc import Callable
from pathlib import Path

from vibesync.core.fallback import FallbackDelivery
from vibesync.core.inject import GRANTED, InjectionDenied, InjectionError, Injector
from vibesync.core.prompts import PromptChannel
from vibesync.core.records import WORKING, PromptRecord, SessionState
from vibesync.core.session_id import canonical_session_id
from vibesync.core.status_files import delete_prompt_file, write_status
from vibesync.core.store import StoreError

logger = logging.getLogger(__name__)

DEFAULT_RESPONSE_POLL_INTERVAL = 2.0


class ResponsePoller:
    """Delivers remote responses to local sessions.

    Args:
        channel: Prompt channel on the shared store.
        injector: Types text into a local session.
        fallback: Used whenever injection fails.
        sessions: Returns the currently active local sessions.
        home: Base directory for local files. Defaults to VIBESYNC_HOME.
        interval: Seconds between polls.
    """

    def __init__(
        self,
        channel: PromptChannel,
        injector: Injector,
        fallback: FallbackDelivery,
        sessions: Callable[[], list[SessionState]],
        home: Path | None = None,
        interval: float = DEFAULT_RESPONSE_POLL_INTERVAL,
    ) -> None:
        self.channel = channel
        self.injector = injector
        self.fallback = fallback
        self.sessions = sessions
        self.home = home
        self.interval = interval
        # prompt id -> canonical session id
        self.processed: dict[str, str] = {}
        self._denial_reported = False

    async def check_once(self) -> list[PromptRecord]:
        """Poll once for every active session.

        Returns:
            Prompts delivered during this poll.
        """
        delivered = []
        active = set()
        for session in self.sessions():
            session_id = canonical_session_id(session.session_id)
            active.add(session_id)
            try:
                responses = await self.channel.fetch_responses(session_id)
            except StoreError as e:
                logger.error("Failed to check responses for %s: %s", session_id, e)
                continue
            for prompt in responses:
                if not prompt.is_responded:
                    continue
                if prompt.id in self.processed:
                    # Delivered already; only the remote delete is outstanding
                    await self._delete_remote(prompt.id)
                    continue
                if await self.deliver(prompt, session):
                    delivered.append(prompt)

        for prompt_id, session_id in list(self.processed.items()):
            if session_id not in active:
                del self.processed[prompt_id]
        return delivered

    async def deliver(self, prompt: PromptRecord, session: SessionState) -> bool:
        """Route one answered prompt into its session, then retire it.

        Returns:
            False if neither injection nor the fallback got the text out.
        """
        # Marked first so a slow delivery can't be picked up twice
        self.processed[prompt.id] = canonical_session_id(prompt.session_id)
        text = prompt.response_text or ""
        pid = prompt.pid or session.pid

        try:
            await asyncio.to_thread(self.injector.inject, text, pid)
            logger.info(
                "Injected response to %s from %s",
                prompt.id,
                prompt.responded_from_device or "unknown device",
            )
        except InjectionDenied as e:
            logger.warning("Input injection denied: %s", e)
            if not self._denial_reported:
                self._denial_reported = True
                await asyncio.to_thread(
                    self.fallback.notify, "Permission Required", self.injector.fix_hint
                )
            if not await self._fall_back(prompt, text):
                return False
        except InjectionError as e:
            logger.warning("Could not inject response to %s: %s", prompt.id, e)
            if not await self._fall_back(prompt, text):
                return False

        if self.injector.capability == GRANTED:
            self._denial_reported = False

        write_status(
            prompt.session_id,
            WORKING,
            session.project or prompt.project,
            pid=session.pid or prompt.pid,
            home=self.home,
        )
        await self._delete_remote(prompt.id)
        delete_prompt_file(prompt.session_id, home=self.home)
        return True

    async def _fall_back(self, prompt: PromptRecord, text: str) -> bool:
        """Hand the response to the user by hand.

        On failure the prompt is left in the store and un-marked, so the
        next poll tries again.
        """
        try:
            await asyncio.to_thread(
                self.fallback.deliver, prompt.session_id, text, prompt.project
            )
        except OSError as e:
            logger.error("Fallback delivery of %s failed: %s", prompt.id, e)
            self.processed.pop(prompt.id, None)
            return False
        return True

    async def _delete_remote(self, prompt_id: str) -> None:
        try:
            await self.channel.delete(prompt_id)
        except StoreError as e:
            logger.error("Failed to delete prompt %s: %s", prompt_id, e)

    async def run(self) -> None:
        """Poll until cancelled. A failed poll is logged and retried next interval."""
        while True:
            try:
                await self.check_once()
            except Exception:
                logger.exception("Response poll failed")
            await asyncio.sleep(self.interval)
