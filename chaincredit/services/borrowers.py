"""
Borrower lookups and registration.
"""
import logging
from typing import Callable, List

from chaincredit.core.errors import NotFoundError, ValidationError
from chaincredit.schemas.borrower import BorrowerCreate, BorrowerRecord, BorrowerRegistration

logger = logging.getLogger(__name__)

BORROWER_NAMESPACES = ("borrower", "score", "eligibility")


class BorrowerDirectory:
    def __init__(self, gateway, cache):
        self.gateway = gateway
        self.cache = cache
        self._watchers: List[Callable[[str], None]] = []

    def add_watcher(self, watcher: Callable[[str], None]):
        """Called with every NID seen on-chain, so log listeners can track it."""
        self._watchers.append(watcher)

    async def get_borrower(self, nid: str, force_refresh: bool = False) -> BorrowerRecord:
        record = await self.cache.get_or_load(
            "borrower", nid, lambda: self.gateway.get_borrower(nid), force_refresh=force_refresh
        )
        if not record.exists:
            # Absent borrowers are not cached so a later registration is seen at once
            await self.cache.invalidate("borrower", nid)
            return record
        for watcher in self._watchers:
            watcher(nid)
        return record

    async def require_borrower(self, nid: str, force_refresh: bool = False) -> BorrowerRecord:
        record = await self.get_borrower(nid, force_refresh=force_refresh)
        if not record.exists:
            raise NotFoundError("borrower not found on-chain", operation="getBorrower", identifier=nid)
        return record

    async def exists(self, nid: str) -> bool:
        return (await self.get_borrower(nid)).exists

    async def register(self, borrower: BorrowerCreate) -> BorrowerRegistration:
        existing = await self.get_borrower(borrower.nid, force_refresh=True)
        if existing.exists:
            raise ValidationError("borrower is already registered", operation="addBorrower", identifier=borrower.nid)

        tx_hash = await self.gateway.add_borrower(borrower)
        await self.cache.invalidate_identifier(borrower.nid, BORROWER_NAMESPACES)
        for watcher in self._watchers:
            watcher(borrower.nid)
        logger.info(f"Borrower {borrower.nid} submitted in {tx_hash}")
        return BorrowerRegistration(nid=borrower.nid, transaction_hash=tx_hash)
