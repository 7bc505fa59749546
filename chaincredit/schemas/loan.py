from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import Field

from chaincredit.schemas.base import CamelModel
from chaincredit.schemas.credit_score import utcnow


class LoanStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    ACTIVE = "active"
    COMPLETED = "completed"
    DEFAULTED = "defaulted"


class LoanType(str, Enum):
    PERSONAL = "personal"
    BUSINESS = "business"
    EMERGENCY = "emergency"
    EDUCATION = "education"


class LoanApplication(CamelModel):
    nid: str = Field(min_length=1)
    requested_amount: int = Field(gt=0)
    monthly_income: Optional[int] = Field(default=None, gt=0)
    loan_type: LoanType = LoanType.PERSONAL
    term_months: int = Field(default=12, gt=0)


class LoanRecord(CamelModel):
    id: str
    borrower_nid: str
    requested_amount: int
    approved_amount: int
    interest_rate: float
    term_months: int
    monthly_payment: int
    remaining_balance: int
    status: LoanStatus
    type: LoanType = LoanType.PERSONAL
    transaction_hash: Optional[str] = None
    application_date: datetime = Field(default_factory=utcnow)
    approval_date: Optional[datetime] = None
    disbursement_date: Optional[datetime] = None
    credit_score_at_application: int = 0
