import asyncio
from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest
from web3.exceptions import ContractLogicError, TransactionNotFound

from chaincredit.core.errors import (
    ConfigurationError,
    ContractError,
    DecodeError,
    NetworkError,
    NotFoundError,
    OperationTimeoutError,
    RetryExhaustedError,
    ValidationError,
)
from chaincredit.services.contract_gateway import ContractGateway

NID = "123456789"
TX_BYTES = b"\xab" * 32
TX_HASH = "0x" + "ab" * 32


class FakeEth:
    def __init__(self, chain_id=11155111):
        self._chain_id = chain_id
        self.get_transaction_count = AsyncMock(return_value=7)
        self.send_raw_transaction = AsyncMock(return_value=TX_BYTES)
        self.get_transaction_receipt = AsyncMock(side_effect=TransactionNotFound("not mined"))

    @property
    def chain_id(self):
        return self._resolve(self._chain_id)

    @staticmethod
    async def _resolve(value):
        return value


@pytest.fixture
def contract():
    contract = MagicMock()
    contract.functions.requestLoan.return_value.build_transaction = AsyncMock(
        return_value={"to": "0x" + "1" * 40, "data": "0x", "value": 0}
    )
    return contract


@pytest.fixture
def account():
    account = MagicMock()
    account.address = "0x" + "2" * 40
    account.sign_transaction.return_value.raw_transaction = b"\x01\x02"
    return account


def make_gateway(settings, contract, account=None, chain_id=11155111):
    w3 = MagicMock()
    w3.eth = FakeEth(chain_id)
    sleep = AsyncMock()
    return ContractGateway(settings, w3=w3, contract=contract, account=account, sleep=sleep)


def stub_call(contract, function, value=None, side_effect=None):
    getattr(contract.functions, function).return_value.call = AsyncMock(
        return_value=value, side_effect=side_effect
    )


@pytest.mark.asyncio
async def test_send_signs_for_configured_chain(settings, contract, account):
    gateway = make_gateway(settings, contract, account)
    submitted = []
    gateway.add_submission_listener(lambda *args: submitted.append(args))

    tx_hash = await gateway.request_loan(NID, 150000)

    assert tx_hash == TX_HASH
    contract.functions.requestLoan.assert_called_with(NID, 150000)
    params = contract.functions.requestLoan.return_value.build_transaction.await_args.args[0]
    assert params["chainId"] == 11155111
    assert params["gas"] == 400000
    assert params["gasPrice"] == 20_000_000_000
    assert params["nonce"] == 7
    assert params["from"] == account.address
    gateway.w3.eth.send_raw_transaction.assert_awaited_once_with(b"\x01\x02")
    assert submitted == [(TX_HASH, "requestLoan", NID)]


@pytest.mark.asyncio
async def test_send_retries_transient_failures_then_gives_up(settings, contract, account):
    gateway = make_gateway(settings, contract, account)
    gateway._submit = AsyncMock(side_effect=NetworkError("connection refused"))

    with pytest.raises(RetryExhaustedError) as exc_info:
        await gateway.request_loan(NID, 1000)

    assert gateway._submit.await_count == 3
    assert gateway._sleep.await_count == 2
    assert exc_info.value.attempts == 3
    assert isinstance(exc_info.value.last_error, NetworkError)
    assert exc_info.value.identifier == NID


@pytest.mark.asyncio
async def test_send_recovers_on_a_later_attempt(settings, contract, account):
    gateway = make_gateway(settings, contract, account)
    gateway._submit = AsyncMock(side_effect=[NetworkError("blip"), TX_HASH])

    assert await gateway.request_loan(NID, 1000) == TX_HASH
    assert gateway._submit.await_count == 2
    assert gateway._sleep.await_count == 1


@pytest.mark.asyncio
async def test_revert_is_not_retried(settings, contract, account):
    gateway = make_gateway(settings, contract, account)
    gateway._submit = AsyncMock(side_effect=ContractLogicError("execution reverted: Borrower not found"))

    with pytest.raises(ContractError):
        await gateway.request_loan(NID, 1000)
    assert gateway._submit.await_count == 1
    gateway._sleep.assert_not_awaited()


@pytest.mark.asyncio
async def test_submit_timeout_is_not_resent(settings, contract, account):
    gateway = make_gateway(settings, contract, account)
    gateway.w3.eth.send_raw_transaction = AsyncMock(side_effect=asyncio.TimeoutError())

    with pytest.raises(OperationTimeoutError) as exc_info:
        await gateway.request_loan(NID, 1000)

    assert exc_info.value.operation == "requestLoan"
    assert gateway.w3.eth.send_raw_transaction.await_count == 1
    gateway._sleep.assert_not_awaited()


@pytest.mark.asyncio
async def test_missing_account_fails_fast(settings, contract):
    gateway = make_gateway(settings, contract, account=None)

    with pytest.raises(ConfigurationError):
        await gateway.request_loan(NID, 1000)
    gateway._sleep.assert_not_awaited()
    gateway.w3.eth.send_raw_transaction.assert_not_awaited()


@pytest.mark.asyncio
async def test_chain_id_mismatch_blocks_submission(settings, contract, account):
    gateway = make_gateway(settings, contract, account, chain_id=1)

    with pytest.raises(ConfigurationError):
        await gateway.request_loan(NID, 1000)
    gateway.w3.eth.send_raw_transaction.assert_not_awaited()

    with pytest.raises(ConfigurationError):
        await gateway.verify_chain()


@pytest.mark.asyncio
async def test_request_loan_rejects_non_positive_amount(settings, contract, account):
    gateway = make_gateway(settings, contract, account)
    with pytest.raises(ValidationError):
        await gateway.request_loan(NID, 0)


@pytest.mark.asyncio
async def test_missing_contract_is_a_configuration_error(settings):
    gateway = make_gateway(settings, contract=None)
    with pytest.raises(ConfigurationError):
        await gateway.calculate_credit_score(NID)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "raised,expected",
    [
        (ContractLogicError("execution reverted"), ContractError),
        (aiohttp.ClientConnectionError("refused"), NetworkError),
        (ConnectionResetError("reset"), NetworkError),
    ],
)
async def test_read_errors_are_mapped(settings, contract, raised, expected):
    gateway = make_gateway(settings, contract)
    stub_call(contract, "calculateCreditScore", side_effect=raised)

    with pytest.raises(expected) as exc_info:
        await gateway.calculate_credit_score(NID)
    assert exc_info.value.operation == "calculateCreditScore"
    assert exc_info.value.identifier == NID


@pytest.mark.asyncio
async def test_read_deadline(settings, contract):
    gateway = make_gateway(settings.model_copy(update={"RPC_TIMEOUT_SECONDS": 0.01}), contract)

    async def slow_call():
        await asyncio.sleep(1)
        return 900

    contract.functions.calculateCreditScore.return_value.call = slow_call

    with pytest.raises(OperationTimeoutError) as exc_info:
        await gateway.calculate_credit_score(NID)
    assert exc_info.value.retryable


@pytest.mark.asyncio
async def test_call_honours_caller_deadline(settings, contract):
    gateway = make_gateway(settings, contract)

    async def slow_call():
        await asyncio.sleep(1)
        return 900

    contract.functions.calculateCreditScore.return_value.call = slow_call

    with pytest.raises(OperationTimeoutError):
        await gateway.call("calculateCreditScore", NID, identifier=NID, timeout=0.01)


@pytest.mark.asyncio
async def test_get_borrower_decodes_record(settings, contract):
    gateway = make_gateway(settings, contract)
    stub_call(
        contract,
        "getBorrower",
        ["Shakil Ahmed", "Blockchain Developer", 866507, 1306800, 30, 7, 74000, 12, 85, True],
    )

    record = await gateway.get_borrower(NID)
    assert record.exists
    assert record.name == "Shakil Ahmed"
    assert record.missed_payments == 7
    assert record.profession_risk_score == 85


@pytest.mark.asyncio
async def test_absent_borrower_has_zeroed_fields(settings, contract):
    gateway = make_gateway(settings, contract)
    stub_call(contract, "getBorrower", ["", "", 5, 0, 0, 0, 0, 0, 0, False])

    record = await gateway.get_borrower("000000000")
    assert not record.exists
    assert record.account_balance == 0


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "function,value,method",
    [
        ("getBorrower", ["Shakil Ahmed", "Developer", 1, 2, 3], "get_borrower"),
        ("calculateCreditScore", 1001, "calculate_credit_score"),
        ("getScoreBreakdown", [250, 150, 300, 100, 100, 200], "get_score_breakdown"),
        ("getScoreBreakdown", [250, 150], "get_score_breakdown"),
    ],
)
async def test_malformed_results_raise_decode_error(settings, contract, function, value, method):
    gateway = make_gateway(settings, contract)
    stub_call(contract, function, value)

    with pytest.raises(DecodeError):
        await getattr(gateway, method)(NID)


@pytest.mark.asyncio
async def test_score_breakdown(settings, contract):
    gateway = make_gateway(settings, contract)
    stub_call(contract, "getScoreBreakdown", [250, 150, 200, 100, 100, 100])

    breakdown = await gateway.get_score_breakdown(NID)
    assert breakdown.payment_history == 200
    assert breakdown.total == 900


@pytest.mark.asyncio
async def test_unmined_receipt_is_none(settings, contract):
    gateway = make_gateway(settings, contract)
    assert await gateway.get_transaction_receipt(TX_HASH) is None


def test_not_found_is_not_retryable():
    assert not NotFoundError("missing").retryable
    assert NetworkError("down").retryable
