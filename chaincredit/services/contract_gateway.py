"""
Async access to the CreditScoring contract.

Reads go through call() and are never retried. Writes go through send(),
which signs locally with the configured account, binds the transaction to the
configured chain id and retries transient failures a fixed number of times.
Every RPC is bounded by RPC_TIMEOUT_SECONDS and every web3 failure is mapped
onto the chaincredit error taxonomy with the function name and NID attached.
"""
import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, List, Optional, Sequence

import aiohttp
from eth_abi.exceptions import DecodingError
from pydantic import ValidationError as PydanticValidationError
from web3 import AsyncHTTPProvider, AsyncWeb3, Web3
from web3.exceptions import (
    BadFunctionCallOutput,
    ContractLogicError,
    InvalidAddress,
    ProviderConnectionError,
    TimeExhausted,
    TransactionNotFound,
    Web3RPCError,
    Web3ValidationError,
)

from chaincredit.core.abi import CREDIT_SCORING_ABI
from chaincredit.core.config import Settings
from chaincredit.core.errors import (
    ChainCreditError,
    ConfigurationError,
    ContractError,
    DecodeError,
    NetworkError,
    OperationTimeoutError,
    RetryExhaustedError,
    ValidationError,
)
from chaincredit.core.wallet import load_account
from chaincredit.schemas.borrower import BorrowerCreate, BorrowerRecord
from chaincredit.schemas.credit_score import ScoreBreakdown
from chaincredit.schemas.network import NetworkStatus

logger = logging.getLogger(__name__)

ADD_BORROWER_GAS = 500000
REQUEST_LOAN_GAS = 400000

SubmissionListener = Callable[[str, str, Optional[str]], Any]


class ContractGateway:
    def __init__(
        self,
        settings: Settings,
        w3=None,
        contract=None,
        account=None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.settings = settings
        self.w3 = w3
        self.contract = contract
        self.account = account
        self.rpc_timeout = settings.RPC_TIMEOUT_SECONDS
        self._sleep = sleep
        self._listeners: List[SubmissionListener] = []
        self.account_error: Optional[str] = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "ContractGateway":
        """Build the gateway against the configured RPC endpoint and contract."""
        w3 = AsyncWeb3(AsyncHTTPProvider(settings.RPC_URL))
        contract = None
        if Web3.is_address(settings.CONTRACT_ADDRESS):
            contract = w3.eth.contract(
                address=Web3.to_checksum_address(settings.CONTRACT_ADDRESS),
                abi=CREDIT_SCORING_ABI,
            )
        else:
            logger.warning(f"Contract address '{settings.CONTRACT_ADDRESS}' is not valid, contract calls disabled")

        gateway = cls(settings, w3=w3, contract=contract)
        try:
            gateway.account = load_account(settings)
        except ConfigurationError as e:
            logger.error(f"❌ Signing account unavailable: {e}")
            gateway.account_error = str(e)
        return gateway

    @property
    def wallet_address(self) -> Optional[str]:
        return self.account.address if self.account is not None else None

    def add_submission_listener(self, listener: SubmissionListener):
        self._listeners.append(listener)

    # -- plumbing --------------------------------------------------------

    def _require_contract(self, operation: str):
        if self.contract is None:
            raise ConfigurationError(
                f"Contract address not configured: {self.settings.CONTRACT_ADDRESS}",
                operation=operation,
            )
        return self.contract

    async def _guard(
        self,
        operation: str,
        identifier: Optional[str],
        factory: Callable[[], Awaitable[Any]],
        timeout: Optional[float] = None,
    ) -> Any:
        """Run one RPC under a deadline and translate web3 failures."""
        try:
            return await asyncio.wait_for(factory(), timeout=timeout or self.rpc_timeout)
        except ChainCreditError:
            raise
        except (asyncio.TimeoutError, TimeExhausted) as e:
            raise OperationTimeoutError(
                "deadline exceeded", operation=operation, identifier=identifier
            ) from e
        except ContractLogicError as e:
            raise ContractError(f"reverted: {e}", operation=operation, identifier=identifier) from e
        except (BadFunctionCallOutput, DecodingError) as e:
            raise DecodeError(str(e), operation=operation, identifier=identifier) from e
        except InvalidAddress as e:
            raise ConfigurationError(str(e), operation=operation, identifier=identifier) from e
        except Web3ValidationError as e:
            raise ValidationError(str(e), operation=operation, identifier=identifier) from e
        except (ProviderConnectionError, aiohttp.ClientError, ConnectionError, OSError) as e:
            raise NetworkError(str(e), operation=operation, identifier=identifier) from e
        except Web3RPCError as e:
            raise ContractError(str(e), operation=operation, identifier=identifier) from e

    async def call(
        self,
        function: str,
        *args,
        identifier: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> Any:
        """Invoke a read-only contract function, bounded by timeout or RPC_TIMEOUT_SECONDS."""

        async def _call():
            contract = self._require_contract(function)
            return await getattr(contract.functions, function)(*args).call()

        return await self._guard(function, identifier, _call, timeout=timeout)

    async def send(
        self,
        function: str,
        args: Sequence[Any],
        gas_limit: Optional[int] = None,
        identifier: Optional[str] = None,
    ) -> str:
        """Sign and submit a transaction, retrying transient failures."""
        max_attempts = self.settings.MAX_RETRY_ATTEMPTS
        last_error: Optional[ChainCreditError] = None

        for attempt in range(1, max_attempts + 1):
            try:
                tx_hash = await self._guard(
                    function, identifier, lambda: self._submit(function, args, gas_limit)
                )
            except ChainCreditError as e:
                # A timed out submit may already be in the mempool; resending would take the next nonce
                if not e.retryable or isinstance(e, OperationTimeoutError):
                    logger.error(f"{function} failed without retry: {e}")
                    raise
                last_error = e
                logger.warning(f"{function} attempt {attempt}/{max_attempts} failed: {e}")
                if attempt < max_attempts:
                    await self._sleep(self.settings.RETRY_DELAY_SECONDS)
                continue

            logger.info(f"📤 {function} submitted: {tx_hash}")
            await self._notify(tx_hash, function, identifier)
            return tx_hash

        raise RetryExhaustedError(function, max_attempts, last_error, identifier) from last_error

    async def _submit(self, function: str, args: Sequence[Any], gas_limit: Optional[int]) -> str:
        if self.account is None:
            reason = self.account_error or "WALLET_PRIVATE_KEY is not set"
            raise ConfigurationError(f"No signing account: {reason}", operation=function)
        contract = self._require_contract(function)
        await self._check_chain_id()

        nonce = await self.w3.eth.get_transaction_count(self.account.address, "pending")
        tx = await getattr(contract.functions, function)(*args).build_transaction(
            {
                "from": self.account.address,
                "chainId": self.settings.chain_id,
                "gas": gas_limit or self.settings.gas_limit,
                "gasPrice": self.settings.gas_price_wei,
                "nonce": nonce,
            }
        )
        signed = self.account.sign_transaction(tx)
        tx_hash = await self.w3.eth.send_raw_transaction(signed.raw_transaction)
        return Web3.to_hex(tx_hash)

    async def _check_chain_id(self) -> int:
        chain_id = await self.w3.eth.chain_id
        if chain_id != self.settings.chain_id:
            raise ConfigurationError(
                f"Connected chain id {chain_id} does not match configured {self.settings.chain_id}",
                operation="verify_chain",
            )
        return chain_id

    async def _notify(self, tx_hash: str, operation: str, nid: Optional[str]):
        for listener in list(self._listeners):
            try:
                result = listener(tx_hash, operation, nid)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Submission listener failed for {tx_hash}: {e}", exc_info=True)

    # -- typed reads -----------------------------------------------------

    async def get_borrower(self, nid: str) -> BorrowerRecord:
        values = await self.call("getBorrower", nid, identifier=nid)
        if not isinstance(values, (list, tuple)) or len(values) != 10:
            raise DecodeError("expected 10 output values", operation="getBorrower", identifier=nid)
        (name, profession, balance, transactions, on_time, missed, remaining, age, risk, exists) = values
        if not exists:
            return BorrowerRecord.absent(nid)
        try:
            return BorrowerRecord(
                nid=nid,
                name=name,
                profession=profession,
                account_balance=balance,
                total_transactions=transactions,
                on_time_payments=on_time,
                missed_payments=missed,
                total_remaining_loan=remaining,
                credit_age_months=age,
                profession_risk_score=risk,
                exists=True,
            )
        except PydanticValidationError as e:
            raise DecodeError(str(e), operation="getBorrower", identifier=nid) from e

    async def calculate_credit_score(self, nid: str) -> int:
        score = await self.call("calculateCreditScore", nid, identifier=nid)
        if not isinstance(score, int) or not 0 <= score <= 1000:
            raise DecodeError(
                f"score out of range: {score!r}", operation="calculateCreditScore", identifier=nid
            )
        return score

    async def get_credit_rating(self, nid: str) -> str:
        rating = await self.call("getCreditRating", nid, identifier=nid)
        if not isinstance(rating, str):
            raise DecodeError(f"unexpected rating {rating!r}", operation="getCreditRating", identifier=nid)
        return rating.strip()

    async def get_max_loan_amount(self, nid: str, monthly_income: int) -> int:
        if monthly_income < 0:
            raise ValidationError("monthly income must not be negative", operation="getMaxLoanAmount", identifier=nid)
        amount = await self.call("getMaxLoanAmount", nid, monthly_income, identifier=nid)
        if not isinstance(amount, int) or amount < 0:
            raise DecodeError(f"unexpected amount {amount!r}", operation="getMaxLoanAmount", identifier=nid)
        return amount

    async def get_score_breakdown(self, nid: str) -> ScoreBreakdown:
        values = await self.call("getScoreBreakdown", nid, identifier=nid)
        if not isinstance(values, (list, tuple)) or len(values) != 6:
            raise DecodeError("expected 6 output values", operation="getScoreBreakdown", identifier=nid)
        try:
            breakdown = ScoreBreakdown(
                account_balance=values[0],
                transactions=values[1],
                payment_history=values[2],
                remaining_loans=values[3],
                credit_age=values[4],
                profession_risk=values[5],
            )
        except PydanticValidationError as e:
            raise DecodeError(str(e), operation="getScoreBreakdown", identifier=nid) from e
        if breakdown.total > 1000:
            raise DecodeError(
                f"breakdown sums to {breakdown.total}", operation="getScoreBreakdown", identifier=nid
            )
        return breakdown

    # -- typed writes ----------------------------------------------------

    async def add_borrower(self, borrower: BorrowerCreate) -> str:
        args = [
            borrower.nid,
            borrower.name,
            borrower.profession,
            borrower.account_balance,
            borrower.total_transactions,
            borrower.on_time_payments,
            borrower.missed_payments,
            borrower.total_remaining_loan,
            borrower.credit_age_months,
            borrower.profession_risk_score,
        ]
        return await self.send("addBorrower", args, gas_limit=ADD_BORROWER_GAS, identifier=borrower.nid)

    async def request_loan(self, nid: str, amount: int) -> str:
        if amount <= 0:
            raise ValidationError("loan amount must be positive", operation="requestLoan", identifier=nid)
        return await self.send("requestLoan", [nid, amount], gas_limit=REQUEST_LOAN_GAS, identifier=nid)

    # -- chain -----------------------------------------------------------

    async def get_transaction_receipt(self, tx_hash: str) -> Optional[Any]:
        """Receipt for a hash, or None while it is still unmined."""

        async def _receipt():
            try:
                return await self.w3.eth.get_transaction_receipt(tx_hash)
            except TransactionNotFound:
                return None

        return await self._guard("get_transaction_receipt", tx_hash, _receipt)

    async def wait_for_receipt(self, tx_hash: str, timeout: Optional[float] = None) -> Any:
        timeout = timeout or self.settings.RECEIPT_WAIT_SECONDS
        return await self._guard(
            "wait_for_receipt",
            tx_hash,
            lambda: self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=timeout, poll_latency=2),
            timeout=timeout + self.rpc_timeout,
        )

    async def fetch_events(self, event_name: str, from_block: int, to_block: int) -> List[Any]:
        async def _logs():
            contract = self._require_contract(event_name)
            event = getattr(contract.events, event_name)
            return await event().get_logs(from_block=from_block, to_block=to_block)

        return await self._guard(event_name, f"{from_block}-{to_block}", _logs)

    async def block_number(self) -> int:
        return await self._guard("block_number", None, lambda: self.w3.eth.block_number)

    async def verify_chain(self) -> int:
        """Confirm the endpoint serves the configured chain id."""
        return await self._guard("verify_chain", None, self._check_chain_id)

    async def is_connected(self) -> bool:
        try:
            return bool(await asyncio.wait_for(self.w3.is_connected(), timeout=self.rpc_timeout))
        except Exception as e:
            logger.debug(f"Connection check failed: {e}")
            return False

    async def network_status(self) -> NetworkStatus:
        base = dict(
            network=self.settings.network_name,
            expected_chain_id=self.settings.chain_id,
            contract_address=self.settings.CONTRACT_ADDRESS,
            rpc_url=self.settings.RPC_URL,
            wallet_address=self.wallet_address,
        )
        try:
            chain_id, block, gas_price = await asyncio.gather(
                self._guard("chain_id", None, lambda: self.w3.eth.chain_id),
                self.block_number(),
                self._guard("gas_price", None, lambda: self.w3.eth.gas_price),
            )
            balance = None
            if self.account is not None:
                balance = await self._guard(
                    "get_balance", self.account.address, lambda: self.w3.eth.get_balance(self.account.address)
                )
        except ChainCreditError as e:
            logger.warning(f"Network status check failed: {e}")
            return NetworkStatus(is_connected=False, error=str(e), **base)

        error = None
        if chain_id != self.settings.chain_id:
            error = f"Connected chain id {chain_id} does not match configured {self.settings.chain_id}"
        return NetworkStatus(
            is_connected=True,
            chain_id=chain_id,
            block_number=block,
            gas_price=gas_price,
            wallet_balance=balance,
            error=error,
            **base,
        )
