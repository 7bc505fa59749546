"""
Explicit construction and wiring of every service.

The FastAPI lifespan owns the returned Services object: it calls start() to
launch the background loops and stop() to cancel them on shutdown.
"""
import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from chaincredit.core.config import Settings
from chaincredit.core.database import make_engine
from chaincredit.core.errors import ConfigurationError
from chaincredit.services.borrowers import BorrowerDirectory
from chaincredit.services.cache import CacheLayer
from chaincredit.services.chain_listener import ChainEventListener
from chaincredit.services.contract_gateway import ContractGateway
from chaincredit.services.credit_scoring import CreditScoringEngine
from chaincredit.services.demo_bootstrap import DemoBootstrapper
from chaincredit.services.event_sync import EventBus, EventSynchronizer
from chaincredit.services.kv_store import SqlKeyValueStore
from chaincredit.services.loans import LoanService
from chaincredit.services.network import NetworkStatusService
from chaincredit.services.startup import StartupOrchestrator
from chaincredit.services.transaction_monitor import TransactionMonitor

logger = logging.getLogger(__name__)


@dataclass
class Services:
    settings: Settings
    store: SqlKeyValueStore
    cache: CacheLayer
    gateway: ContractGateway
    bus: EventBus
    borrowers: BorrowerDirectory
    engine: CreditScoringEngine
    loans: LoanService
    monitor: TransactionMonitor
    synchronizer: EventSynchronizer
    chain_listener: ChainEventListener
    network: NetworkStatusService
    demo: DemoBootstrapper
    startup: StartupOrchestrator

    def start(self):
        self.cache.start()
        self.monitor.start()
        self.synchronizer.start()
        self.network.start()
        if self.gateway.contract is not None:
            self.chain_listener.start()
        logger.info("Background services started")

    async def stop(self):
        await asyncio.gather(
            self.chain_listener.stop(),
            self.network.stop(),
            self.synchronizer.stop(),
            self.monitor.stop(),
            self.cache.stop(),
        )
        logger.info("Background services stopped")


def build_services(
    settings: Settings,
    gateway: Optional[ContractGateway] = None,
    store: Optional[SqlKeyValueStore] = None,
    clock: Callable[[], float] = time.time,
) -> Services:
    if store is None:
        store = SqlKeyValueStore(make_engine(settings.DATABASE_URL))
        store.create_tables()
    if gateway is None:
        gateway = ContractGateway.from_settings(settings)

    try:
        policy = settings.scoring_policy()
    except ConfigurationError as e:
        # Startup reports this in its configuration phase
        logger.error(f"Scoring policy unavailable, using built-in defaults: {e}")
        policy = settings.SCORING_POLICY
    bus = EventBus()
    cache = CacheLayer.from_settings(settings, store=store, clock=clock)
    borrowers = BorrowerDirectory(gateway, cache)
    engine = CreditScoringEngine(gateway, cache, borrowers, policy)
    loans = LoanService(engine, gateway, cache)

    monitor = TransactionMonitor(
        gateway,
        bus=bus,
        store=store,
        poll_interval=settings.TRANSACTION_POLL_SECONDS,
        timeout=settings.TRANSACTION_TIMEOUT_SECONDS,
        grace_period=settings.CONFIRMED_GRACE_SECONDS,
        failed_retention=settings.FAILED_RETENTION_SECONDS,
        clock=clock,
    )
    gateway.add_submission_listener(monitor.on_submitted)

    synchronizer = EventSynchronizer(
        bus, cache, borrowers=borrowers, engine=engine, recent_limit=settings.RECENT_EVENTS_LIMIT
    )
    chain_listener = ChainEventListener(
        gateway,
        bus,
        poll_interval=settings.EVENT_POLL_SECONDS,
        batch_size=settings.EVENT_BLOCK_BATCH,
        lookback=settings.EVENT_LOOKBACK_BLOCKS,
        cache=cache,
    )
    borrowers.add_watcher(chain_listener.watch)
    network = NetworkStatusService(gateway, cache, bus, check_interval=settings.CONNECTION_CHECK_SECONDS)

    demo = DemoBootstrapper(
        gateway,
        borrowers,
        settings.DEMO_BORROWER,
        attempts=settings.DEMO_RETRY_ATTEMPTS,
        retry_delay=settings.DEMO_RETRY_DELAY_SECONDS,
        attempt_timeout=settings.DEMO_ATTEMPT_TIMEOUT_SECONDS,
        settle_delay=settings.DEMO_SETTLE_SECONDS,
    )
    startup = StartupOrchestrator(settings, gateway, demo, engine)

    return Services(
        settings=settings,
        store=store,
        cache=cache,
        gateway=gateway,
        bus=bus,
        borrowers=borrowers,
        engine=engine,
        loans=loans,
        monitor=monitor,
        synchronizer=synchronizer,
        chain_listener=chain_listener,
        network=network,
        demo=demo,
        startup=startup,
    )
