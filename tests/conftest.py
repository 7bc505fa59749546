import itertools

import pytest
from fastapi.testclient import TestClient

from chaincredit.core.config import Settings
from chaincredit.core.database import make_engine
from chaincredit.schemas.borrower import BorrowerCreate, BorrowerRecord
from chaincredit.schemas.credit_score import ScoreBreakdown
from chaincredit.schemas.network import NetworkStatus
from chaincredit.services.cache import CacheLayer
from chaincredit.services.kv_store import SqlKeyValueStore
from chaincredit.services.registry import build_services

CONTRACT_ADDRESS = "0x" + "1" * 40


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FakeGateway:
    """In-memory stand-in for ContractGateway with call counters."""

    def __init__(self):
        self.contract = None
        self.borrowers = {}
        self.scores = {}
        self.ratings = {}
        self.breakdowns = {}
        self.max_loans = {}
        self.receipts = {}
        self.receipt_errors = {}
        self.events = {}
        self.block = 100
        self.connected = True
        self.calls = {}
        self.submitted = []
        self._listeners = []
        self._hashes = itertools.count(1)

    def _count(self, name):
        self.calls[name] = self.calls.get(name, 0) + 1

    def add_submission_listener(self, listener):
        self._listeners.append(listener)

    def add(self, record: BorrowerRecord, score: int, breakdown: ScoreBreakdown, max_loan: int = 0):
        self.borrowers[record.nid] = record
        self.scores[record.nid] = score
        self.breakdowns[record.nid] = breakdown
        self.max_loans[record.nid] = max_loan

    async def get_borrower(self, nid):
        self._count("get_borrower")
        return self.borrowers.get(nid, BorrowerRecord.absent(nid))

    async def calculate_credit_score(self, nid):
        self._count("calculate_credit_score")
        return self.scores[nid]

    async def get_credit_rating(self, nid):
        self._count("get_credit_rating")
        return self.ratings.get(nid, "")

    async def get_score_breakdown(self, nid):
        self._count("get_score_breakdown")
        return self.breakdowns[nid]

    async def get_max_loan_amount(self, nid, monthly_income):
        self._count("get_max_loan_amount")
        return self.max_loans.get(nid, 0)

    async def _submit(self, operation, nid):
        tx_hash = "0x" + format(next(self._hashes), "064x")
        self.submitted.append((tx_hash, operation, nid))
        for listener in self._listeners:
            await listener(tx_hash, operation, nid)
        return tx_hash

    async def add_borrower(self, borrower: BorrowerCreate):
        self._count("add_borrower")
        self.borrowers[borrower.nid] = BorrowerRecord(exists=True, **borrower.model_dump())
        return await self._submit("addBorrower", borrower.nid)

    async def request_loan(self, nid, amount):
        self._count("request_loan")
        return await self._submit("requestLoan", nid)

    async def get_transaction_receipt(self, tx_hash):
        self._count("get_transaction_receipt")
        if tx_hash in self.receipt_errors:
            raise self.receipt_errors[tx_hash]
        return self.receipts.get(tx_hash)

    async def wait_for_receipt(self, tx_hash, timeout=None):
        return self.receipts.get(tx_hash, {"status": 1, "blockNumber": self.block})

    async def fetch_events(self, event_name, from_block, to_block):
        return [
            log
            for log in self.events.get(event_name, [])
            if from_block <= log["blockNumber"] <= to_block
        ]

    async def block_number(self):
        return self.block

    async def verify_chain(self):
        self._count("verify_chain")
        return 11155111

    async def is_connected(self):
        return self.connected

    async def network_status(self):
        self._count("network_status")
        return NetworkStatus(
            is_connected=self.connected,
            network="Sepolia Testnet",
            chain_id=11155111,
            expected_chain_id=11155111,
            block_number=self.block,
            contract_address=CONTRACT_ADDRESS,
            rpc_url="https://rpc.example.org",
        )


def demo_record(nid: str = "123456789") -> BorrowerRecord:
    return BorrowerRecord(
        nid=nid,
        name="Shakil Ahmed",
        profession="Blockchain Developer",
        account_balance=866507,
        total_transactions=1306800,
        on_time_payments=30,
        missed_payments=7,
        total_remaining_loan=74000,
        credit_age_months=12,
        profession_risk_score=85,
        exists=True,
    )


def demo_breakdown() -> ScoreBreakdown:
    return ScoreBreakdown(
        account_balance=250,
        transactions=150,
        payment_history=200,
        remaining_loans=100,
        credit_age=100,
        profession_risk=100,
    )


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        RPC_URL="https://rpc.example.org",
        CONTRACT_ADDRESS=CONTRACT_ADDRESS,
        DATABASE_URL="sqlite:///:memory:",
        RETRY_DELAY_SECONDS=0,
        DEMO_SETTLE_SECONDS=0,
        DEMO_RETRY_DELAY_SECONDS=0,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    kv_store = SqlKeyValueStore(make_engine("sqlite:///:memory:"))
    kv_store.create_tables()
    return kv_store


@pytest.fixture
def cache(settings, store, clock):
    return CacheLayer.from_settings(settings, store=store, clock=clock)


@pytest.fixture
def gateway():
    fake = FakeGateway()
    fake.add(demo_record(), 900, demo_breakdown(), max_loan=200000)
    return fake


@pytest.fixture
def services(settings, gateway, store, clock):
    return build_services(settings, gateway=gateway, store=store, clock=clock)


@pytest.fixture
def client(services):
    from chaincredit.main import create_app

    app = create_app(services, run_startup=False)
    with TestClient(app) as c:
        yield c

