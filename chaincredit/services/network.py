"""
Cached network status and the periodic connection-health check.
"""
import asyncio
import logging
from typing import Optional

from chaincredit.schemas.events import SyncEvent, SyncEventType
from chaincredit.schemas.network import NetworkStatus

logger = logging.getLogger(__name__)

STATUS_KEY = "status"


class NetworkStatusService:
    def __init__(self, gateway, cache, bus, check_interval: float = 30.0):
        self.gateway = gateway
        self.cache = cache
        self.bus = bus
        self.check_interval = check_interval
        self.last_connected: Optional[bool] = None
        self._task: Optional[asyncio.Task] = None

    async def status(self, force_refresh: bool = False) -> NetworkStatus:
        return await self.cache.get_or_load(
            "network", STATUS_KEY, self.gateway.network_status, force_refresh=force_refresh
        )

    async def check_connection(self) -> bool:
        """Probe the endpoint and publish a change event when connectivity flips."""
        connected = await self.gateway.is_connected()
        if self.last_connected is not None and connected != self.last_connected:
            logger.warning(f"Blockchain connection {'restored' if connected else 'lost'}")
            self.bus.publish(
                SyncEvent(type=SyncEventType.NETWORK_STATUS_CHANGED, payload={"is_connected": connected})
            )
        self.last_connected = connected
        return connected

    def start(self):
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run())

    async def stop(self):
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _run(self):
        while True:
            try:
                await self.check_connection()
            except Exception as e:
                logger.error(f"Error in connection health check: {e}", exc_info=True)
            await asyncio.sleep(self.check_interval)
