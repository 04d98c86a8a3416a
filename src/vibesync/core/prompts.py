"""Prompt/response channel.

A prompt moves through three states, all on the same store record:

    Created   source writes the PromptRecord (responded=False)
    Answered  a remote device sets responseText/respondedAt/
              respondedFromDevice and responded=True
    Delivered the source routes the answer locally and deletes the record

Only the source creates prompts. Remote devices only ever update the
response fields of a prompt that already exists.
"""

import logging
from collections.abc import Callable
from datetime import datetime

from vibesync.core.records import (
    NEEDS_INPUT,
    PROMPT_RECORD_TYPE,
    MalformedRecord,
    PromptRecord,
    SessionState,
    prompt_id_for,
    utcnow,
)
from vibesync.core.session_id import canonical_session_id
from vibesync.core.status_files import delete_prompt_file, read_prompt_file
from vibesync.core.store import (
    DEFAULT_PAGE_LIMIT,
    CorruptRecord,
    Predicate,
    Query,
    RecordConflict,
    RecordNotFound,
    RecordStore,
    RecordTypeNotFound,
    StoreError,
)

logger = logging.getLogger(__name__)


class PromptNotFound(Exception):
    """Raised when answering a prompt that does not exist (or no longer does)."""

    pass


class PromptChannel:
    """Store operations on PromptRecords, shared by both device roles."""

    def __init__(
        self, store: RecordStore, clock: Callable[[], datetime] = utcnow
    ) -> None:
        self.store = store
        self.clock = clock

    async def publish(self, prompt: PromptRecord) -> bool:
        """Create a prompt record. Never overwrites an existing occurrence.

        Returns:
            True if created, False if this occurrence already existed.

        Raises:
            StoreError: If the store fails.
        """
        try:
            await self.store.save(prompt.to_record())
        except RecordConflict:
            logger.debug("Prompt %s already published", prompt.id)
            return False
        logger.info("Uploaded prompt %s for session %s", prompt.id, prompt.session_id)
        return True

    async def submit_response(
        self, prompt_id: str, text: str, device_name: str
    ) -> PromptRecord:
        """Answer a prompt from a remote device.

        Only the response fields are touched; the source-written payload on
        the fetched record is saved back unchanged.

        Raises:
            PromptNotFound: If the prompt does not exist.
            StoreError: If the store fails.
        """
        try:
            record = await self.store.fetch(PROMPT_RECORD_TYPE, prompt_id)
        except RecordNotFound:
            raise PromptNotFound(prompt_id) from None

        record.fields["responseText"] = text
        record.fields["respondedAt"] = self.clock()
        record.fields["respondedFromDevice"] = device_name
        record.fields["responded"] = True
        saved = await self.store.save(record)
        logger.info("Submitted response to prompt %s from %s", prompt_id, device_name)
        return PromptRecord.from_record(saved)

    async def fetch_pending(self) -> list[PromptRecord]:
        """Prompts still waiting for an answer, newest first."""
        query = Query(
            record_type=PROMPT_RECORD_TYPE,
            predicates=(Predicate("responded", "==", False),),
            sort_key="timestamp",
            descending=True,
        )
        return await self._run(query)

    async def fetch_responses(self, session_id: str) -> list[PromptRecord]:
        """Answered prompts for one session, most recently answered first."""
        query = Query(
            record_type=PROMPT_RECORD_TYPE,
            predicates=(
                Predicate("sessionId", "==", canonical_session_id(session_id)),
                Predicate("responded", "==", True),
            ),
            sort_key="respondedAt",
            descending=True,
        )
        return await self._run(query)

    async def fetch_prompt(self, prompt_id: str) -> PromptRecord | None:
        try:
            record = await self.store.fetch(PROMPT_RECORD_TYPE, prompt_id)
            return PromptRecord.from_record(record)
        except RecordNotFound:
            return None
        except (CorruptRecord, MalformedRecord) as e:
            logger.warning("Skipping malformed prompt record: %s", e)
            return None

    async def delete(self, prompt_id: str) -> None:
        """Delete a prompt. Already-deleted prompts are fine."""
        try:
            await self.store.delete(PROMPT_RECORD_TYPE, prompt_id)
            logger.info("Deleted prompt %s", prompt_id)
        except RecordNotFound:
            logger.debug("Prompt %s already deleted", prompt_id)

    async def _run(self, query: Query) -> list[PromptRecord]:
        """Run a prompt query across all pages.

        A missing record type means no prompt has been written yet.
        """
        prompts: list[PromptRecord] = []
        cursor = None
        try:
            while True:
                page = await self.store.query(query, cursor=cursor, limit=DEFAULT_PAGE_LIMIT)
                for record in page.records:
                    try:
                        prompts.append(PromptRecord.from_record(record))
                    except MalformedRecord as e:
                        logger.warning("Skipping malformed prompt record: %s", e)
                cursor = page.cursor
                if cursor is None:
                    break
        except RecordTypeNotFound:
            logger.debug("Prompt record type not found - waiting for first prompt")
            return []
        return prompts


class PromptPublisher:
    """Source side: publish a prompt when a session starts needing input.

    Tracks each session's previous status so a prompt is published on the
    transition into needs_input, not on every tick spent there.
    """

    def __init__(self, channel: PromptChannel, home=None) -> None:
        self.channel = channel
        self.home = home
        self._previous: dict[str, str] = {}

    async def observe(self, sessions: list[SessionState]) -> list[PromptRecord]:
        """Publish prompts for sessions that just entered needs_input.

        Returns:
            The prompts created on this tick.
        """
        created = []
        for session in sessions:
            if session.status != NEEDS_INPUT:
                self._previous[session.session_id] = session.status
                continue
            if self._previous.get(session.session_id) == NEEDS_INPUT:
                continue
            # Not marked as seen until published, so the next tick retries
            prompt = self.build_prompt(session)
            if prompt is None:
                logger.debug("No prompt file for session %s", session.session_id)
                continue
            try:
                if await self.channel.publish(prompt):
                    created.append(prompt)
            except StoreError as e:
                logger.error("Failed to upload prompt %s: %s", prompt.id, e)
                continue
            self._previous[session.session_id] = NEEDS_INPUT

        active = {s.session_id for s in sessions}
        for session_id in list(self._previous):
            if session_id not in active:
                del self._previous[session_id]
        return created

    def build_prompt(self, session: SessionState) -> PromptRecord | None:
        """Build a PromptRecord from the local prompt file of a session."""
        data = read_prompt_file(session.session_id, home=self.home)
        if data is None:
            return None
        session_id = canonical_session_id(data.get("session_id") or session.session_id)
        timestamp = _parse_timestamp(data.get("timestamp")) or session.timestamp
        return PromptRecord(
            id=prompt_id_for(session_id, timestamp),
            session_id=session_id,
            project=data.get("project") or session.project,
            prompt_message=data.get("prompt_message") or "",
            notification_type=data.get("notification_type") or "idle_prompt",
            timestamp=timestamp,
            transcript_path=data.get("transcript_path") or None,
            transcript_excerpt=data.get("transcript_excerpt") or None,
            pid=data.get("pid") or session.pid,
        )

    def forget(self, session_id: str) -> None:
        """Drop the local prompt artifact for a session after delivery."""
        delete_prompt_file(session_id, home=self.home)


def _parse_timestamp(value) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (AttributeError, ValueError):
        return None
    if parsed.tzinfo is None:
        return None
    return parsed
