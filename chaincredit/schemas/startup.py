from datetime import datetime
from enum import Enum
from typing import Optional

from chaincredit.schemas.base import CamelModel


class StartupPhase(str, Enum):
    NOT_STARTED = "not_started"
    CONFIGURATION_VALIDATION = "configuration_validation"
    CHAIN_CONNECTION = "chain_connection"
    DEMO_BOOTSTRAP = "demo_bootstrap"
    VERIFICATION = "verification"
    COMPLETED = "completed"
    FAILED = "failed"


PHASE_GUIDANCE = {
    StartupPhase.NOT_STARTED: "Startup has not run yet.",
    StartupPhase.CONFIGURATION_VALIDATION: "Check RPC_URL, CONTRACT_ADDRESS and CHAIN_ID in your environment or .env file.",
    StartupPhase.CHAIN_CONNECTION: "Verify the RPC endpoint is reachable and serves the configured chain id.",
    StartupPhase.DEMO_BOOTSTRAP: "The demo borrower could not be created. Check WALLET_PRIVATE_KEY and that the wallet holds test ETH for gas.",
    StartupPhase.VERIFICATION: "The contract did not answer a credit score call. Check the contract address and ABI.",
    StartupPhase.COMPLETED: "All systems ready.",
    StartupPhase.FAILED: "Startup failed. Fix the reported error and retry.",
}


class StartupStatus(CamelModel):
    phase: StartupPhase
    is_complete: bool
    is_initializing: bool
    fallback_mode: bool
    error: Optional[str] = None
    failed_phase: Optional[StartupPhase] = None
    demo_user_ready: bool = False
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    duration_ms: Optional[int] = None
    guidance: str
