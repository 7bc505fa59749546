from datetime import datetime, timezone
from typing import List, Optional

from pydantic import Field

from chaincredit.schemas.base import CamelModel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ScoreBreakdown(CamelModel):
    account_balance: int = Field(default=0, ge=0)
    transactions: int = Field(default=0, ge=0)
    payment_history: int = Field(default=0, ge=0)
    remaining_loans: int = Field(default=0, ge=0)
    credit_age: int = Field(default=0, ge=0)
    profession_risk: int = Field(default=0, ge=0)

    @property
    def total(self) -> int:
        return sum(self.model_dump().values())


class CreditScoreRecord(CamelModel):
    nid: str
    score: int = Field(ge=0, le=1000)
    rating: str
    breakdown: ScoreBreakdown
    max_loan_amount: int = 0
    monthly_income: Optional[int] = None
    calculated_at: datetime = Field(default_factory=utcnow)
    is_verified: bool = True


class EligibilityRequest(CamelModel):
    requested_amount: int = Field(gt=0)
    monthly_income: Optional[int] = Field(default=None, gt=0)


class EligibilityAssessment(CamelModel):
    nid: str
    is_eligible: bool
    credit_score: int
    credit_rating: str
    requested_amount: int
    max_loan_amount: int
    monthly_income: int
    current_debt: int
    debt_to_income_ratio: float
    interest_rate: float
    loan_term_months: int
    reasons: List[str] = []
    assessed_at: datetime = Field(default_factory=utcnow)


class CategoryDetail(CamelModel):
    key: str
    category: str
    score: int
    max_score: int
    weight: int
    percentage: float
    value: str
    explanation: str


class DetailedBreakdown(CamelModel):
    nid: str
    total_score: int
    rating: str
    categories: List[CategoryDetail]


class RecommendationList(CamelModel):
    nid: str
    recommendations: List[str]


class ApplicationValidation(CamelModel):
    is_valid: bool
    errors: List[str] = []
    warnings: List[str] = []
