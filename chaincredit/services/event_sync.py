"""
In-process event bus and the synchronizer that keeps cached state in line
with what happens on-chain.
"""
import asyncio
import logging
from collections import deque
from datetime import datetime, timezone
from typing import Deque, List, Optional

from chaincredit.schemas.events import SyncEvent, SyncEventType, SyncStatus

logger = logging.getLogger(__name__)

ALL_BORROWER_NAMESPACES = ("borrower", "score", "loan", "eligibility")


class EventBus:
    """Fan-out publisher: every subscriber gets its own queue."""

    def __init__(self):
        self._subscribers: List[asyncio.Queue] = []

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue()
        self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue):
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    def publish(self, event: SyncEvent):
        logger.debug(f"Publishing {event.type.value} for {event.nid}")
        for queue in list(self._subscribers):
            queue.put_nowait(event)


class EventSynchronizer:
    def __init__(self, bus: EventBus, cache, borrowers=None, engine=None, recent_limit: int = 50):
        self.bus = bus
        self.cache = cache
        self.borrowers = borrowers
        self.engine = engine
        self.queue = bus.subscribe()
        self.recent: Deque[SyncEvent] = deque(maxlen=recent_limit)
        self.enabled = True
        self.processed = 0
        self.failed = 0
        self.last_sync: Optional[datetime] = None
        self._task: Optional[asyncio.Task] = None
        self._handlers = {
            SyncEventType.BORROWER_UPDATED: self._on_borrower_updated,
            SyncEventType.CREDIT_SCORE_CHANGED: self._on_credit_score_changed,
            SyncEventType.LOAN_PROCESSED: self._on_loan_processed,
            SyncEventType.NETWORK_STATUS_CHANGED: self._on_network_status_changed,
        }

    async def on_event(self, event: SyncEvent):
        """Apply the cache policy for one event."""
        self.recent.append(event)
        await self._handlers[event.type](event)
        self.processed += 1
        self.last_sync = datetime.now(timezone.utc)

    async def _on_borrower_updated(self, event: SyncEvent):
        if event.nid is None:
            return
        await self.cache.invalidate_identifier(event.nid, ("borrower", "score", "eligibility"))
        await self._refetch(event.nid)

    async def _on_credit_score_changed(self, event: SyncEvent):
        if event.nid is None:
            return
        await self.cache.invalidate_identifier(event.nid, ("score", "eligibility"))

    async def _on_loan_processed(self, event: SyncEvent):
        if event.nid is None:
            return
        await self.cache.invalidate_identifier(event.nid, ALL_BORROWER_NAMESPACES)

    async def _on_network_status_changed(self, event: SyncEvent):
        await self.cache.invalidate("network", "status")

    async def _refetch(self, nid: str):
        if self.borrowers is None:
            return
        borrower = await self.borrowers.get_borrower(nid, force_refresh=True)
        if borrower.exists and self.engine is not None:
            await self.engine.score(nid, force_refresh=True)
        logger.info(f"🔄 Refreshed state for {nid}")

    async def sync_all(self, nid: str):
        """Drop and re-fetch everything cached for a borrower."""
        await self.cache.invalidate_identifier(nid, ALL_BORROWER_NAMESPACES)
        await self._refetch(nid)
        self.last_sync = datetime.now(timezone.utc)

    def set_sync_enabled(self, enabled: bool):
        self.enabled = enabled
        logger.info(f"Event synchronization {'enabled' if enabled else 'disabled'}")

    def status(self) -> SyncStatus:
        return SyncStatus(
            enabled=self.enabled,
            processed=self.processed,
            failed=self.failed,
            last_sync=self.last_sync,
            recent_events=list(self.recent),
        )

    def start(self):
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.listen())

    async def stop(self):
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        self.bus.unsubscribe(self.queue)

    async def listen(self):
        """Main dispatch loop."""
        while True:
            event = await self.queue.get()
            if not self.enabled:
                logger.debug(f"Sync disabled, dropping {event.type.value} for {event.nid}")
                continue
            try:
                await self.on_event(event)
            except Exception as e:
                self.failed += 1
                logger.error(f"Error handling {event.type.value} for {event.nid}: {e}", exc_info=True)
