"""Source actor: the machine where Claude Code sessions run.

One tick every ``poll_interval`` seconds:

    detect -> schedule uploads -> publish new prompts -> count cleanup tick

The response poller runs alongside on its own interval. Everything lives on
one event loop, so the actor's maps need no locking.
"""

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from typing import Protocol

from vibesync.core.cleanup import CleanupSweep
from vibesync.core.config import Settings
from vibesync.core.fallback import FallbackDelivery
from vibesync.core.fetch import FetchEngine
from vibesync.core.inject import Injector, make_injector
from vibesync.core.prompts import PromptChannel, PromptPublisher
from vibesync.core.records import SessionState, utcnow
from vibesync.core.responder import ResponsePoller
from vibesync.core.store import RecordStore
from vibesync.core.upload import UploadPipeline

logger = logging.getLogger(__name__)


class Detector(Protocol):
    def scan(self) -> list[SessionState]:
        """Return currently active local sessions."""
        ...


class SourceAgent:
    """Publishes local sessions and delivers remote responses."""

    def __init__(
        self,
        detector: Detector,
        store: RecordStore,
        device_name: str,
        injector: Injector,
        fallback: FallbackDelivery | None = None,
        home: Path | None = None,
        poll_interval: float = 1.0,
        debounce_delay: float = 0.5,
        keepalive_interval: float = 60.0,
        response_poll_interval: float = 2.0,
        cleanup_every: int = 10,
        session_expiration: float = 1800,
        sync_enabled: bool = True,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.detector = detector
        self.store = store
        self.poll_interval = poll_interval
        self.sync_enabled = sync_enabled
        self.sessions: list[SessionState] = []
        fallback = fallback or FallbackDelivery(home=home)

        self.pipeline = UploadPipeline(
            store,
            device_name,
            debounce_delay=debounce_delay,
            keepalive_interval=keepalive_interval,
            clock=clock,
        )
        self.fetch_engine = FetchEngine(
            store,
            session_expiration=session_expiration,
            clock=clock,
            notifier=fallback.notify,
        )
        self.channel = PromptChannel(store, clock=clock)
        self.publisher = PromptPublisher(self.channel, home=home)
        self.cleanup = CleanupSweep(
            self.fetch_engine, store, every=cleanup_every, device_name=device_name
        )
        self.responder = ResponsePoller(
            self.channel,
            injector,
            fallback,
            sessions=lambda: self.sessions,
            home=home,
            interval=response_poll_interval,
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        store: RecordStore,
        detector: Detector,
        home: Path | None = None,
    ) -> "SourceAgent":
        return cls(
            detector,
            store,
            settings.device_name,
            injector=make_injector(settings.injector),
            home=home,
            poll_interval=settings.poll_interval,
            debounce_delay=settings.debounce_delay,
            keepalive_interval=settings.keepalive_interval,
            response_poll_interval=settings.response_poll_interval,
            cleanup_every=settings.cleanup_every,
            session_expiration=settings.session_expiration,
            sync_enabled=settings.sync_enabled,
        )

    async def tick(self) -> list[SessionState]:
        """Run one detect/publish cycle.

        Returns:
            The sessions detected on this tick.
        """
        self.sessions = self.detector.scan()
        if not self.sync_enabled:
            return self.sessions

        self.pipeline.publish(self.sessions)
        await self.publisher.observe(self.sessions)
        await self.cleanup.tick({s.session_id for s in self.sessions})
        return self.sessions

    async def run(self) -> None:
        """Tick until cancelled, with the response poller running alongside."""
        logger.info("Source started, polling every %.1fs", self.poll_interval)
        responder = asyncio.create_task(self.responder.run()) if self.sync_enabled else None
        try:
            while True:
                try:
                    await self.tick()
                except Exception:
                    logger.exception("Source tick failed")
                await asyncio.sleep(self.poll_interval)
        finally:
            if responder is not None:
                responder.cancel()
            self.pipeline.cancel_timers()
            # Writes already started run to completion
            await asyncio.shield(self.pipeline.drain())
