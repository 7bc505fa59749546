"""
Creates and verifies the demo borrower used to exercise a fresh deployment.
"""
import asyncio
import logging
from typing import Awaitable, Callable, Optional

from chaincredit.core.config import DemoBorrowerProfile
from chaincredit.core.errors import (
    ChainCreditError,
    ConfigurationError,
    ContractError,
    OperationTimeoutError,
    RetryExhaustedError,
    ValidationError,
)
from chaincredit.schemas.borrower import BorrowerCreate, BorrowerRecord

logger = logging.getLogger(__name__)


class DemoBootstrapper:
    def __init__(
        self,
        gateway,
        borrowers,
        profile: DemoBorrowerProfile,
        attempts: int = 3,
        retry_delay: float = 5.0,
        attempt_timeout: float = 120.0,
        settle_delay: float = 2.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.gateway = gateway
        self.borrowers = borrowers
        self.profile = profile
        self.attempts = attempts
        self.retry_delay = retry_delay
        self.attempt_timeout = attempt_timeout
        self.settle_delay = settle_delay
        self._sleep = sleep

    @property
    def nid(self) -> str:
        return self.profile.nid

    @property
    def max_duration(self) -> float:
        """Worst-case duration of bootstrap_with_retry."""
        return self.attempts * self.attempt_timeout + (self.attempts - 1) * self.retry_delay

    async def bootstrap(self) -> BorrowerRecord:
        """Create the demo borrower unless it already exists, then verify it."""
        existing = await self.borrowers.get_borrower(self.nid, force_refresh=True)
        if existing.exists:
            logger.info(f"Demo borrower {self.nid} already exists")
            return self._verify(existing)

        logger.info(f"Creating demo borrower {self.profile.name} ({self.nid})")
        registration = await self.borrowers.register(
            BorrowerCreate.model_validate(self.profile.model_dump(exclude={"monthly_income"}))
        )
        receipt = await self.gateway.wait_for_receipt(registration.transaction_hash)
        if receipt["status"] != 1:
            raise ContractError(
                "addBorrower transaction reverted", operation="demo_bootstrap", identifier=self.nid
            )

        await self._sleep(self.settle_delay)
        record = await self.borrowers.get_borrower(self.nid, force_refresh=True)
        return self._verify(record)

    def _verify(self, record: BorrowerRecord) -> BorrowerRecord:
        if not record.exists:
            raise ContractError(
                "demo borrower not found after creation", operation="demo_bootstrap", identifier=self.nid
            )
        if record.name != self.profile.name:
            raise ContractError(
                f"demo borrower name mismatch: expected {self.profile.name}, got {record.name}",
                operation="demo_bootstrap",
                identifier=self.nid,
            )
        return record

    async def bootstrap_with_retry(self) -> BorrowerRecord:
        """Retry the full create-and-verify sequence. Configuration errors are not retried."""
        last_error: Optional[ChainCreditError] = None
        for attempt in range(1, self.attempts + 1):
            try:
                record = await asyncio.wait_for(self.bootstrap(), timeout=self.attempt_timeout)
                logger.info(f"✅ Demo borrower ready after {attempt} attempt(s)")
                return record
            except asyncio.TimeoutError:
                last_error = OperationTimeoutError(
                    f"attempt timed out after {self.attempt_timeout}s",
                    operation="demo_bootstrap",
                    identifier=self.nid,
                )
            except (ConfigurationError, ValidationError):
                raise
            except ChainCreditError as e:
                last_error = e

            logger.warning(f"Demo bootstrap attempt {attempt}/{self.attempts} failed: {last_error}")
            if attempt < self.attempts:
                await self._sleep(self.retry_delay)

        raise RetryExhaustedError("demo_bootstrap", self.attempts, last_error, self.nid) from last_error
