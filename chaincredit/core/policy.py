"""
Scoring policy: rating bands, interest tiers and recommendation rules.

These are business thresholds, loaded from configuration so they can change
per deployment without a code change.
"""
from typing import List, Optional

from pydantic import BaseModel, Field, model_validator


class ScoreBand(BaseModel):
    min_score: int
    rating: str


class InterestTier(BaseModel):
    min_score: int
    rate: float


class CategoryPolicy(BaseModel):
    """One of the six contract-side score categories."""

    key: str
    label: str
    weight: int  # percent of the 1000-point scale
    explanation: str

    @property
    def max_points(self) -> int:
        return self.weight * 10


class RecommendationRule(BaseModel):
    category: str
    below: int
    message: str
    requires_outstanding_loan: bool = False


DEFAULT_CATEGORIES = [
    CategoryPolicy(
        key="account_balance",
        label="Account Balance",
        weight=25,
        explanation="Higher account balance indicates better financial stability",
    ),
    CategoryPolicy(
        key="transactions",
        label="Transactions",
        weight=15,
        explanation="Regular transaction activity shows active financial management",
    ),
    CategoryPolicy(
        key="payment_history",
        label="Payment History",
        weight=30,
        explanation="On-time payments are the most important factor in credit scoring",
    ),
    CategoryPolicy(
        key="remaining_loans",
        label="Remaining Loans",
        weight=10,
        explanation="Lower outstanding debt improves credit score",
    ),
    CategoryPolicy(
        key="credit_age",
        label="Credit Age",
        weight=10,
        explanation="Longer credit history demonstrates experience with credit management",
    ),
    CategoryPolicy(
        key="profession_risk",
        label="Profession Risk",
        weight=10,
        explanation="Profession stability affects credit risk assessment",
    ),
]

DEFAULT_RECOMMENDATIONS = [
    RecommendationRule(
        category="account_balance",
        below=200,
        message="Maintain a higher account balance to improve your credit score",
    ),
    RecommendationRule(
        category="payment_history",
        below=250,
        message="Make all payments on time to build a strong payment history",
    ),
    RecommendationRule(
        category="remaining_loans",
        below=80,
        message="Pay down existing loans to reduce your debt burden",
        requires_outstanding_loan=True,
    ),
    RecommendationRule(
        category="credit_age",
        below=80,
        message="Continue building your credit history over time",
    ),
    RecommendationRule(
        category="transactions",
        below=120,
        message="Maintain regular transaction activity to show active account usage",
    ),
]


class ScoringPolicy(BaseModel):
    max_score: int = 1000
    min_eligible_score: int = 300
    rating_bands: List[ScoreBand] = Field(
        default_factory=lambda: [
            ScoreBand(min_score=800, rating="A"),
            ScoreBand(min_score=650, rating="B"),
            ScoreBand(min_score=500, rating="C"),
        ]
    )
    fallback_rating: str = "D"
    interest_tiers: List[InterestTier] = Field(
        default_factory=lambda: [
            InterestTier(min_score=800, rate=10.0),
            InterestTier(min_score=650, rate=11.5),
        ]
    )
    base_interest_rate: float = 9.0
    max_loan_term_months: int = 24
    default_monthly_income: int = 50000
    min_nid_length: int = 9
    min_loan_amount: int = 100
    max_loan_amount: int = 1000000
    recommended_min_loan: int = 10000
    low_income_warning: int = 20000
    max_income_multiple: int = 36
    categories: List[CategoryPolicy] = Field(default_factory=lambda: list(DEFAULT_CATEGORIES))
    recommendations: List[RecommendationRule] = Field(
        default_factory=lambda: list(DEFAULT_RECOMMENDATIONS)
    )
    excellent_profile_message: str = "Excellent credit profile! Continue your current financial habits"
    general_advice: List[str] = Field(
        default_factory=lambda: [
            "Monitor your credit score regularly for improvements",
            "Consider setting up automatic payments to avoid missed payments",
        ]
    )

    @model_validator(mode="after")
    def _sort_tiers(self):
        # Highest threshold first so the first match wins
        self.rating_bands = sorted(self.rating_bands, key=lambda b: b.min_score, reverse=True)
        self.interest_tiers = sorted(self.interest_tiers, key=lambda t: t.min_score, reverse=True)
        return self

    def category(self, key: str) -> Optional[CategoryPolicy]:
        for category in self.categories:
            if category.key == key:
                return category
        return None


def rating_for_score(score: int, policy: Optional[ScoringPolicy] = None) -> str:
    """Classify a numeric score into a letter rating."""
    bands = policy.rating_bands if policy else DEFAULT_POLICY.rating_bands
    fallback = policy.fallback_rating if policy else DEFAULT_POLICY.fallback_rating
    for band in bands:
        if score >= band.min_score:
            return band.rating
    return fallback


def interest_rate_for_score(score: int, policy: ScoringPolicy) -> float:
    for tier in policy.interest_tiers:
        if score >= tier.min_score:
            return tier.rate
    return policy.base_interest_rate


DEFAULT_POLICY = ScoringPolicy()
