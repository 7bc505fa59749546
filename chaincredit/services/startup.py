"""
Phased application startup.

configuration_validation -> chain_connection -> demo_bootstrap -> verification
-> completed. With ENABLE_FALLBACK a failing phase still ends in completed, with
fallback_mode set so the API keeps serving with reduced capability.
"""
import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

from chaincredit.core.config import Settings
from chaincredit.core.errors import (
    ChainCreditError,
    OperationTimeoutError,
    RetryExhaustedError,
    StartupError,
)
from chaincredit.schemas.startup import PHASE_GUIDANCE, StartupPhase, StartupStatus

logger = logging.getLogger(__name__)


class StartupOrchestrator:
    def __init__(
        self,
        settings: Settings,
        gateway,
        demo,
        engine,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.settings = settings
        self.gateway = gateway
        self.demo = demo
        self.engine = engine
        self._sleep = sleep
        self._task: Optional[asyncio.Task] = None
        self._reset()

    def _reset(self):
        self.phase = StartupPhase.NOT_STARTED
        self.fallback_mode = False
        self.error: Optional[str] = None
        self.failed_phase: Optional[StartupPhase] = None
        self.demo_user_ready = False
        self.started_at: Optional[datetime] = None
        self.finished_at: Optional[datetime] = None
        self._started_monotonic: Optional[float] = None
        self._duration_ms: Optional[int] = None

    @property
    def is_initializing(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run(self) -> StartupStatus:
        """Run startup once; concurrent callers share the same run."""
        if self._task is None:
            self._task = asyncio.create_task(self._run())
        await asyncio.shield(self._task)
        return self.status()

    async def retry(self) -> StartupStatus:
        if self.is_initializing:
            await asyncio.shield(self._task)
            return self.status()
        self._task = None
        return await self.run()

    async def _run(self) -> StartupStatus:
        self._reset()
        self.started_at = datetime.now(timezone.utc)
        self._started_monotonic = time.monotonic()
        logger.info("🚀 Starting credit core initialization...")

        phases = (
            (StartupPhase.CONFIGURATION_VALIDATION, self._validate_configuration),
            (StartupPhase.CHAIN_CONNECTION, self._connect),
            (StartupPhase.DEMO_BOOTSTRAP, self._bootstrap_demo),
            (StartupPhase.VERIFICATION, self._verify),
        )
        for phase, step in phases:
            self.phase = phase
            logger.info(f"Startup phase: {phase.value}")
            timeout = self._phase_timeout(phase)
            try:
                await asyncio.wait_for(step(), timeout=timeout)
            except asyncio.TimeoutError:
                error = OperationTimeoutError(f"phase exceeded {timeout}s", operation=phase.value)
                return self._fail(phase, error)
            except ChainCreditError as e:
                return self._fail(phase, e)
            except Exception as e:
                logger.error(f"Unexpected error in startup phase {phase.value}: {e}", exc_info=True)
                return self._fail(phase, e)

        self.phase = StartupPhase.COMPLETED
        self._finish()
        logger.info(f"✅ Startup completed in {self._duration_ms}ms")
        return self.status()

    def _phase_timeout(self, phase: StartupPhase) -> float:
        timeout = self.settings.STARTUP_PHASE_TIMEOUT_SECONDS
        if phase == StartupPhase.DEMO_BOOTSTRAP and self.demo is not None:
            return max(timeout, self.demo.max_duration)
        return timeout

    def _fail(self, phase: StartupPhase, error: Exception) -> StartupStatus:
        self.failed_phase = phase
        self.error = str(error)
        self._finish()
        if self.settings.ENABLE_FALLBACK:
            self.phase = StartupPhase.COMPLETED
            self.fallback_mode = True
            logger.warning(f"⚠️  Startup phase {phase.value} failed, continuing in fallback mode: {error}")
            return self.status()
        self.phase = StartupPhase.FAILED
        logger.error(f"❌ Startup failed in phase {phase.value}: {error}")
        raise StartupError(phase.value, error) from error

    def _finish(self):
        self.finished_at = datetime.now(timezone.utc)
        if self._started_monotonic is not None:
            self._duration_ms = int((time.monotonic() - self._started_monotonic) * 1000)

    async def _validate_configuration(self):
        self.settings.validate_deployment()
        self.settings.scoring_policy()

    async def _connect(self):
        attempts = self.settings.MAX_RETRY_ATTEMPTS
        last_error: Optional[ChainCreditError] = None
        for attempt in range(1, attempts + 1):
            try:
                chain_id = await self.gateway.verify_chain()
                logger.info(f"🔗 Connected to {self.settings.network_name} (chain {chain_id})")
                return
            except ChainCreditError as e:
                if not e.retryable:
                    raise
                last_error = e
                logger.warning(f"Chain connection attempt {attempt}/{attempts} failed: {e}")
                if attempt < attempts:
                    await self._sleep(self.settings.RETRY_DELAY_SECONDS)
        raise RetryExhaustedError("chain_connection", attempts, last_error) from last_error

    async def _bootstrap_demo(self):
        if not self.settings.ENABLE_DEMO_BOOTSTRAP or self.demo is None:
            logger.info("Demo bootstrap disabled")
            return
        await self.demo.bootstrap_with_retry()
        self.demo_user_ready = True

    async def _verify(self):
        if self.demo_user_ready:
            score = await self.engine.real_time_score(self.demo.nid)
            logger.info(f"Verification score for demo borrower {self.demo.nid}: {score}")
        else:
            block = await self.gateway.block_number()
            logger.info(f"Verification at block {block}")

    def status(self) -> StartupStatus:
        if self.fallback_mode and self.failed_phase is not None:
            guidance = f"Running in fallback mode. {PHASE_GUIDANCE[self.failed_phase]}"
        elif self.phase == StartupPhase.FAILED and self.failed_phase is not None:
            guidance = PHASE_GUIDANCE[self.failed_phase]
        else:
            guidance = PHASE_GUIDANCE[self.phase]
        return StartupStatus(
            phase=self.phase,
            is_complete=self.phase == StartupPhase.COMPLETED,
            is_initializing=self.is_initializing,
            fallback_mode=self.fallback_mode,
            error=self.error,
            failed_phase=self.failed_phase,
            demo_user_ready=self.demo_user_ready,
            started_at=self.started_at,
            finished_at=self.finished_at,
            duration_ms=self._duration_ms,
            guidance=guidance,
        )
