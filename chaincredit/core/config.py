import json
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict
from web3 import Web3

from chaincredit.core.errors import ConfigurationError
from chaincredit.core.policy import ScoringPolicy

PLACEHOLDER_MARKERS = ("YOUR_INFURA_PROJECT_ID", "0xYOUR_CONTRACT_ADDRESS", "_CONTRACT_ADDRESS")


class NetworkProfile(BaseModel):
    network_name: str
    chain_id: int
    gas_limit: int
    gas_price_wei: int


NETWORK_PROFILES = {
    "development": NetworkProfile(
        network_name="Sepolia Testnet", chain_id=11155111, gas_limit=500000, gas_price_wei=20_000_000_000
    ),
    "staging": NetworkProfile(
        network_name="Goerli Testnet", chain_id=5, gas_limit=400000, gas_price_wei=15_000_000_000
    ),
    "production": NetworkProfile(
        network_name="Ethereum Mainnet", chain_id=1, gas_limit=300000, gas_price_wei=30_000_000_000
    ),
}


class DemoBorrowerProfile(BaseModel):
    nid: str = "123456789"
    name: str = "Shakil Ahmed"
    profession: str = "Blockchain Developer"
    account_balance: int = 866507
    total_transactions: int = 1306800
    on_time_payments: int = 30
    missed_payments: int = 7
    total_remaining_loan: int = 74000
    credit_age_months: int = 12
    profession_risk_score: int = 85
    monthly_income: int = 70000


class Settings(BaseSettings):
    PROJECT_NAME: str = "Chain Credit API"
    API_V1_STR: str = "/api/v1"
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    # Chain
    RPC_URL: str = "https://sepolia.infura.io/v3/YOUR_INFURA_PROJECT_ID"
    CONTRACT_ADDRESS: str = "0xYOUR_CONTRACT_ADDRESS"
    CHAIN_ID: Optional[int] = None
    NETWORK_NAME: Optional[str] = None
    DEFAULT_GAS_LIMIT: Optional[int] = None
    DEFAULT_GAS_PRICE_WEI: Optional[int] = None
    WALLET_PRIVATE_KEY: Optional[SecretStr] = None
    RPC_TIMEOUT_SECONDS: float = 30.0

    # Writes
    MAX_RETRY_ATTEMPTS: int = 3
    RETRY_DELAY_SECONDS: float = 2.0
    TRANSACTION_TIMEOUT_SECONDS: float = 600.0
    TRANSACTION_POLL_SECONDS: float = 10.0
    CONFIRMED_GRACE_SECONDS: float = 5.0
    FAILED_RETENTION_SECONDS: float = 3600.0
    RECEIPT_WAIT_SECONDS: float = 300.0

    # Cache
    DATABASE_URL: str = "sqlite:///./chaincredit_cache.db"
    SHORT_CACHE_TTL_SECONDS: float = 60.0
    DEFAULT_CACHE_TTL_SECONDS: float = 300.0
    CACHE_SWEEP_SECONDS: float = 300.0

    # Synchronization
    EVENT_POLL_SECONDS: float = 5.0
    EVENT_BLOCK_BATCH: int = 100
    EVENT_LOOKBACK_BLOCKS: int = 200
    CONNECTION_CHECK_SECONDS: float = 30.0
    RECENT_EVENTS_LIMIT: int = 50

    # Startup
    ENABLE_FALLBACK: bool = True
    ENABLE_DEMO_BOOTSTRAP: bool = True
    STARTUP_PHASE_TIMEOUT_SECONDS: float = 180.0
    DEMO_RETRY_ATTEMPTS: int = 3
    DEMO_RETRY_DELAY_SECONDS: float = 5.0
    DEMO_ATTEMPT_TIMEOUT_SECONDS: float = 120.0
    DEMO_SETTLE_SECONDS: float = 2.0
    DEMO_BORROWER: DemoBorrowerProfile = DemoBorrowerProfile()

    # Scoring
    SCORING_POLICY: ScoringPolicy = ScoringPolicy()
    SCORING_POLICY_FILE: Optional[str] = None

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")

    @property
    def profile(self) -> NetworkProfile:
        return NETWORK_PROFILES.get(self.ENVIRONMENT, NETWORK_PROFILES["development"])

    @property
    def chain_id(self) -> int:
        return self.CHAIN_ID if self.CHAIN_ID is not None else self.profile.chain_id

    @property
    def network_name(self) -> str:
        return self.NETWORK_NAME or self.profile.network_name

    @property
    def gas_limit(self) -> int:
        return self.DEFAULT_GAS_LIMIT or self.profile.gas_limit

    @property
    def gas_price_wei(self) -> int:
        return self.DEFAULT_GAS_PRICE_WEI or self.profile.gas_price_wei

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    def scoring_policy(self) -> ScoringPolicy:
        """Policy from SCORING_POLICY_FILE when set, otherwise SCORING_POLICY."""
        if not self.SCORING_POLICY_FILE:
            return self.SCORING_POLICY
        path = Path(self.SCORING_POLICY_FILE)
        if not path.exists():
            raise ConfigurationError(f"Scoring policy file not found: {path}")
        try:
            with open(path) as f:
                return ScoringPolicy.model_validate(json.load(f))
        except ValueError as e:
            raise ConfigurationError(f"Invalid scoring policy file {path}: {e}") from e

    def validate_deployment(self) -> None:
        """Reject placeholder or structurally invalid chain settings."""
        if not self.RPC_URL or any(marker in self.RPC_URL for marker in PLACEHOLDER_MARKERS):
            raise ConfigurationError(f"RPC URL not configured for {self.network_name}")
        if not self.RPC_URL.startswith(("http://", "https://")):
            raise ConfigurationError(f"RPC URL must be http(s): {self.RPC_URL}")
        if not self.CONTRACT_ADDRESS or any(
            marker in self.CONTRACT_ADDRESS for marker in PLACEHOLDER_MARKERS
        ):
            raise ConfigurationError(f"Contract address not configured for {self.network_name}")
        if not Web3.is_address(self.CONTRACT_ADDRESS):
            raise ConfigurationError(f"Invalid contract address: {self.CONTRACT_ADDRESS}")
        if self.chain_id <= 0:
            raise ConfigurationError(f"Invalid chain id: {self.chain_id}")
        if self.MAX_RETRY_ATTEMPTS < 1:
            raise ConfigurationError("MAX_RETRY_ATTEMPTS must be at least 1")
        if self.RETRY_DELAY_SECONDS < 0 or self.TRANSACTION_TIMEOUT_SECONDS <= 0:
            raise ConfigurationError("Retry delay and transaction timeout must be positive")
        if self.gas_limit <= 0:
            raise ConfigurationError(f"Invalid gas limit: {self.gas_limit}")


settings = Settings()
