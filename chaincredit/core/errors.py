"""
Error taxonomy for chain, cache and startup failures.
"""
from typing import Optional


class ChainCreditError(Exception):
    """Base exception for the credit core"""

    code = "internal_error"
    retryable = False

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        identifier: Optional[str] = None,
    ):
        self.message = message
        self.operation = operation
        self.identifier = identifier
        super().__init__(self._format())

    def _format(self) -> str:
        if self.operation and self.identifier:
            return f"{self.operation}({self.identifier}): {self.message}"
        if self.operation:
            return f"{self.operation}: {self.message}"
        return self.message


class ConfigurationError(ChainCreditError):
    """Misconfigured address, RPC URL, key or chain id. Never retried."""

    code = "configuration_error"


class NetworkError(ChainCreditError):
    """RPC endpoint unreachable or connection dropped"""

    code = "network_error"
    retryable = True


class ContractError(ChainCreditError):
    """Contract call reverted or the node rejected the request"""

    code = "contract_error"


class DecodeError(ChainCreditError):
    """Contract returned data that does not match the ABI"""

    code = "decode_error"


class OperationTimeoutError(ChainCreditError):
    """Operation exceeded its deadline"""

    code = "timeout"
    retryable = True


class NotFoundError(ChainCreditError):
    """Entity is absent on-chain"""

    code = "not_found"


class CacheError(ChainCreditError):
    """Persistent cache tier failure. Callers degrade to a cache miss."""

    code = "cache_error"


class ValidationError(ChainCreditError):
    """Caller supplied values that can never succeed"""

    code = "validation_error"


class EligibilityError(ChainCreditError):
    """Loan request rejected by the eligibility rules"""

    code = "not_eligible"


class RetryExhaustedError(ChainCreditError):
    """Write call failed on every attempt"""

    code = "retry_exhausted"
    retryable = True

    def __init__(
        self,
        operation: str,
        attempts: int,
        last_error: Exception,
        identifier: Optional[str] = None,
    ):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"failed after {attempts} attempts: {last_error}",
            operation=operation,
            identifier=identifier,
        )


class StartupError(ChainCreditError):
    """A startup phase failed and fallback mode is disabled"""

    code = "startup_failed"

    def __init__(self, phase: str, cause: Exception):
        self.phase = phase
        self.cause = cause
        super().__init__(f"phase '{phase}' failed: {cause}", operation="startup")
        self.retryable = getattr(cause, "retryable", False)
