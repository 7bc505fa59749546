from datetime import datetime
from typing import Optional

from pydantic import Field

from chaincredit.schemas.base import CamelModel
from chaincredit.schemas.credit_score import utcnow


class NetworkStatus(CamelModel):
    is_connected: bool
    network: str
    chain_id: Optional[int] = None
    expected_chain_id: int
    block_number: Optional[int] = None
    gas_price: Optional[int] = None
    wallet_address: Optional[str] = None
    wallet_balance: Optional[int] = None
    contract_address: str
    rpc_url: str
    error: Optional[str] = None
    checked_at: datetime = Field(default_factory=utcnow)


class CacheStats(CamelModel):
    hits: int
    misses: int
    evictions: int
    size: int
    persistent_size: int
    expired_entries: int
    deduplicated_loads: int
    hit_ratio: float
