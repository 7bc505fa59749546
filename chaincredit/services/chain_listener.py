"""
Polls the contract's event logs and publishes them as sync events.
"""
import asyncio
import logging
from typing import Any, Dict, Optional

from eth_utils import keccak, to_hex

from chaincredit.core.abi import CHAIN_EVENTS
from chaincredit.schemas.events import SyncEvent, SyncEventType

logger = logging.getLogger(__name__)

EVENT_TYPES = {
    "BorrowerAdded": SyncEventType.BORROWER_UPDATED,
    "LoanRequested": SyncEventType.LOAN_PROCESSED,
}

# Cached state in these namespaces is what a chain event can make stale
WATCHED_NAMESPACES = ("borrower", "score", "loan")


def nid_topic(nid: str) -> str:
    """Indexed string arguments are logged as the keccak hash of their value."""
    return to_hex(keccak(text=nid))


class ChainEventListener:
    def __init__(
        self,
        gateway,
        bus,
        poll_interval: float = 5.0,
        batch_size: int = 100,
        lookback: int = 200,
        cache=None,
    ):
        self.gateway = gateway
        self.bus = bus
        self.poll_interval = poll_interval
        self.batch_size = batch_size
        self.lookback = lookback
        self.cache = cache
        self.last_block: Optional[int] = None
        self._watched: Dict[str, str] = {}
        self._task: Optional[asyncio.Task] = None

    def watch(self, nid: str):
        self._watched.setdefault(nid_topic(nid), nid)

    async def watch_cached(self) -> int:
        """Watch every borrower that already has cached state, including entries persisted by an earlier run."""
        if self.cache is None:
            return 0
        nids = await self.cache.identifiers(WATCHED_NAMESPACES)
        for nid in nids:
            self.watch(nid)
        return len(nids)

    def resolve_nid(self, raw: Any) -> Optional[str]:
        topic = raw if isinstance(raw, str) else to_hex(raw)
        return self._watched.get(topic)

    async def poll_once(self) -> int:
        """Process the next batch of blocks. Returns the number of events published."""
        current_block = await self.gateway.block_number()
        if self.last_block is None:
            # Start a little behind the head to catch events from just before startup
            self.last_block = max(0, current_block - self.lookback)
        if current_block <= self.last_block:
            return 0

        from_block = self.last_block + 1
        to_block = min(current_block, self.last_block + self.batch_size)
        logs = []
        for event_name in CHAIN_EVENTS:
            for log in await self.gateway.fetch_events(event_name, from_block, to_block):
                logs.append((event_name, log))
        if any(self.resolve_nid(log["args"]["nid"]) is None for _, log in logs):
            await self.watch_cached()

        for event_name, log in logs:
            self.bus.publish(self._to_sync_event(event_name, log))
        published = len(logs)
        self.last_block = to_block
        if published:
            logger.info(f"Published {published} chain events from blocks {from_block}-{to_block}")
        return published

    def _to_sync_event(self, event_name: str, log) -> SyncEvent:
        args = log["args"]
        raw_nid = args["nid"]
        nid = self.resolve_nid(raw_nid)
        payload = {
            "event": event_name,
            "nid_hash": raw_nid if isinstance(raw_nid, str) else to_hex(raw_nid),
            "block_number": log.get("blockNumber"),
        }
        tx_hash = log.get("transactionHash")
        if tx_hash is not None:
            payload["transaction_hash"] = tx_hash if isinstance(tx_hash, str) else to_hex(tx_hash)
        if event_name == "BorrowerAdded":
            payload["name"] = args.get("name")
        else:
            payload["amount"] = args.get("amount")
        return SyncEvent(type=EVENT_TYPES[event_name], nid=nid, payload=payload)

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

    async def listen(self):
        """Main event listening loop."""
        while True:
            try:
                await self.poll_once()
                await asyncio.sleep(self.poll_interval)
            except Exception as e:
                logger.error(f"Error in chain event listener loop: {e}", exc_info=True)
                await asyncio.sleep(self.poll_interval * 2)
