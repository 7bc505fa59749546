from datetime import datetime
from enum import Enum
from typing import List, Optional

from chaincredit.schemas.base import CamelModel


class TransactionState(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


class TransactionStatus(CamelModel):
    hash: str
    description: str
    operation: Optional[str] = None
    nid: Optional[str] = None
    submitted_at: datetime
    state: TransactionState = TransactionState.PENDING
    confirmed_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None
    block_number: Optional[int] = None
    error: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.state != TransactionState.PENDING


class TransactionSnapshot(CamelModel):
    pending: int
    confirmed: int
    failed: int
    transactions: List[TransactionStatus]
