"""
Tracks submitted transactions from pending to confirmed or failed.

Each tracked hash is polled independently. Confirmed entries stay visible for
a short grace period, then disappear. Failed entries are kept for
failed_retention seconds so callers can read the error. Tracked submissions
are journaled to the persistent store so a restart keeps watching them.
"""
import asyncio
import inspect
import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from chaincredit.core.errors import CacheError, ChainCreditError
from chaincredit.schemas.events import SyncEvent, SyncEventType
from chaincredit.schemas.transaction import TransactionSnapshot, TransactionState, TransactionStatus

logger = logging.getLogger(__name__)

TIMEOUT_MESSAGE = "Transaction timeout - not confirmed within 10 minutes"
JOURNAL_PREFIX = "tx:"

DESCRIPTIONS = {
    "addBorrower": "Register borrower",
    "requestLoan": "Loan request",
}

CONFIRMATION_EVENTS = {
    "requestLoan": SyncEventType.LOAN_PROCESSED,
    "addBorrower": SyncEventType.BORROWER_UPDATED,
}

TransactionListener = Callable[[TransactionStatus], Any]


class TransactionMonitor:
    def __init__(
        self,
        gateway,
        bus=None,
        store=None,
        poll_interval: float = 10.0,
        timeout: float = 600.0,
        grace_period: float = 5.0,
        failed_retention: float = 3600.0,
        clock: Callable[[], float] = time.time,
    ):
        self.gateway = gateway
        self.bus = bus
        self.store = store
        self.poll_interval = poll_interval
        self.timeout = timeout
        self.grace_period = grace_period
        self.failed_retention = failed_retention
        self.clock = clock

        self._transactions: Dict[str, TransactionStatus] = {}
        self._removals: Dict[str, asyncio.Task] = {}
        self._listeners: List[TransactionListener] = []
        self._task: Optional[asyncio.Task] = None

    def add_listener(self, listener: TransactionListener):
        self._listeners.append(listener)

    async def track(
        self,
        tx_hash: str,
        description: Optional[str] = None,
        operation: Optional[str] = None,
        nid: Optional[str] = None,
    ) -> TransactionStatus:
        existing = self._transactions.get(tx_hash)
        if existing is not None:
            return existing
        status = TransactionStatus(
            hash=tx_hash,
            description=description or DESCRIPTIONS.get(operation, operation or "Transaction"),
            operation=operation,
            nid=nid,
            submitted_at=datetime.fromtimestamp(self.clock(), tz=timezone.utc),
        )
        self._transactions[tx_hash] = status
        logger.info(f"⏳ Tracking {status.description} {tx_hash}")
        await self._journal(status)
        return status

    async def on_submitted(self, tx_hash: str, operation: str, nid: Optional[str]):
        """Gateway submission listener."""
        await self.track(tx_hash, operation=operation, nid=nid)

    def get(self, tx_hash: str) -> Optional[TransactionStatus]:
        return self._transactions.get(tx_hash)

    def pending(self) -> List[TransactionStatus]:
        return [s for s in self._transactions.values() if s.state == TransactionState.PENDING]

    def snapshot(self) -> TransactionSnapshot:
        statuses = sorted(self._transactions.values(), key=lambda s: s.submitted_at, reverse=True)
        counts = {state: 0 for state in TransactionState}
        for status in statuses:
            counts[status.state] += 1
        return TransactionSnapshot(
            pending=counts[TransactionState.PENDING],
            confirmed=counts[TransactionState.CONFIRMED],
            failed=counts[TransactionState.FAILED],
            transactions=statuses,
        )

    async def poll_once(self):
        """Check every pending hash once and drop failures past their retention."""
        await self.prune_failed()
        pending = self.pending()
        if not pending:
            return
        results = await asyncio.gather(*(self._check(s) for s in pending), return_exceptions=True)
        for status, result in zip(pending, results):
            if isinstance(result, Exception):
                logger.error(f"Error checking transaction {status.hash}: {result}", exc_info=result)

    async def _check(self, status: TransactionStatus):
        try:
            receipt = await self.gateway.get_transaction_receipt(status.hash)
        except ChainCreditError as e:
            await self._transition(status, TransactionState.FAILED, error=str(e))
            return

        if receipt is not None:
            if receipt["status"] == 1:
                await self._transition(
                    status, TransactionState.CONFIRMED, block_number=receipt.get("blockNumber")
                )
            else:
                await self._transition(status, TransactionState.FAILED, error="Transaction reverted")
        elif self.clock() - status.submitted_at.timestamp() > self.timeout:
            await self._transition(status, TransactionState.FAILED, error=TIMEOUT_MESSAGE)

    async def _transition(
        self,
        status: TransactionStatus,
        state: TransactionState,
        error: Optional[str] = None,
        block_number: Optional[int] = None,
    ):
        current = self._transactions.get(status.hash)
        if current is None or current.is_terminal:
            return

        update = {"state": state, "error": error}
        if state == TransactionState.CONFIRMED:
            update["confirmed_at"] = datetime.fromtimestamp(self.clock(), tz=timezone.utc)
            update["block_number"] = block_number
        else:
            update["failed_at"] = datetime.fromtimestamp(self.clock(), tz=timezone.utc)
        updated = current.model_copy(update=update)
        self._transactions[status.hash] = updated

        if state == TransactionState.CONFIRMED:
            logger.info(f"✅ {updated.description} confirmed: {updated.hash}")
            self._schedule_removal(updated.hash)
            self._publish_confirmation(updated)
        else:
            logger.warning(f"❌ {updated.description} failed: {updated.hash} ({error})")

        await self._journal(updated)
        await self._notify(updated)

    def _publish_confirmation(self, status: TransactionStatus):
        event_type = CONFIRMATION_EVENTS.get(status.operation)
        if self.bus is None or event_type is None or status.nid is None:
            return
        self.bus.publish(
            SyncEvent(type=event_type, nid=status.nid, payload={"transaction_hash": status.hash})
        )

    def _schedule_removal(self, tx_hash: str):
        self._removals[tx_hash] = asyncio.create_task(self._remove_later(tx_hash))

    async def _remove_later(self, tx_hash: str):
        await asyncio.sleep(self.grace_period)
        await self.remove(tx_hash)

    async def remove(self, tx_hash: str) -> bool:
        """Stop tracking a transaction and drop its journal entry."""
        task = self._removals.pop(tx_hash, None)
        if task is not None and task is not asyncio.current_task():
            task.cancel()
        removed = self._transactions.pop(tx_hash, None) is not None
        if removed:
            logger.debug(f"Stopped tracking transaction {tx_hash}")
        await self._drop_journal(tx_hash)
        return removed

    async def prune_failed(self) -> int:
        """Drop failed transactions older than the retention window."""
        now = self.clock()
        expired = [
            status.hash
            for status in self._transactions.values()
            if status.state == TransactionState.FAILED
            and status.failed_at is not None
            and now - status.failed_at.timestamp() >= self.failed_retention
        ]
        for tx_hash in expired:
            await self.remove(tx_hash)
        if expired:
            logger.info(f"Pruned {len(expired)} failed transactions")
        return len(expired)

    async def _drop_journal(self, tx_hash: str):
        if self.store is None:
            return
        try:
            await self.store.delete(f"{JOURNAL_PREFIX}{tx_hash}")
        except CacheError as e:
            logger.warning(f"Could not drop journal entry for {tx_hash}: {e}")

    async def _notify(self, status: TransactionStatus):
        for listener in list(self._listeners):
            try:
                result = listener(status)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Transaction listener failed for {status.hash}: {e}", exc_info=True)

    async def _journal(self, status: TransactionStatus):
        if self.store is None:
            return
        try:
            await self.store.set(f"{JOURNAL_PREFIX}{status.hash}", status.model_dump_json().encode())
        except CacheError as e:
            logger.warning(f"Could not journal transaction {status.hash}: {e}")

    async def restore(self) -> int:
        """Resume tracking of pending transactions journaled by an earlier run."""
        if self.store is None:
            return 0
        restored = 0
        try:
            keys = await self.store.keys(JOURNAL_PREFIX)
        except CacheError as e:
            logger.warning(f"Could not read transaction journal: {e}")
            return 0
        for key in keys:
            try:
                raw = await self.store.get(key)
                if raw is None:
                    continue
                status = TransactionStatus.model_validate_json(raw)
            except (CacheError, ValueError) as e:
                logger.warning(f"Skipping unreadable journal entry {key}: {e}")
                continue
            if status.state != TransactionState.PENDING:
                # Finished before the restart; nothing left to watch
                await self._drop_journal(status.hash)
            elif status.hash not in self._transactions:
                self._transactions[status.hash] = status
                restored += 1
        if restored:
            logger.info(f"Restored {restored} pending transactions from journal")
        return restored

    def start(self):
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run())

    async def stop(self):
        removals = list(self._removals.values())
        self._removals.clear()
        for task in removals:
            task.cancel()
        await asyncio.gather(*removals, return_exceptions=True)
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _run(self):
        await self.restore()
        while True:
            try:
                await self.poll_once()
            except Exception as e:
                logger.error(f"Error in transaction monitor loop: {e}", exc_info=True)
            await asyncio.sleep(self.poll_interval)
