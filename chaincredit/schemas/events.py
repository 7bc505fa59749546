from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import Field

from chaincredit.schemas.base import CamelModel
from chaincredit.schemas.credit_score import utcnow


class SyncEventType(str, Enum):
    BORROWER_UPDATED = "borrower_updated"
    CREDIT_SCORE_CHANGED = "credit_score_changed"
    LOAN_PROCESSED = "loan_processed"
    NETWORK_STATUS_CHANGED = "network_status_changed"


class SyncEvent(CamelModel):
    type: SyncEventType
    nid: Optional[str] = None
    timestamp: datetime = Field(default_factory=utcnow)
    payload: Dict[str, Any] = {}


class SyncStatus(CamelModel):
    enabled: bool
    processed: int
    failed: int
    last_sync: Optional[datetime] = None
    recent_events: List[SyncEvent]
