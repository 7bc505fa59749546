"""
Credit scoring engine.

Score computation is delegated to the contract; the engine assembles the
contract's answers into typed records and applies the business thresholds from
the scoring policy (ratings, eligibility floor, interest tiers, advice).
"""
import asyncio
import logging
from typing import List, Optional

from chaincredit.core.errors import ValidationError
from chaincredit.core.policy import ScoringPolicy, interest_rate_for_score, rating_for_score
from chaincredit.schemas.borrower import BorrowerRecord
from chaincredit.schemas.credit_score import (
    ApplicationValidation,
    CategoryDetail,
    CreditScoreRecord,
    DetailedBreakdown,
    EligibilityAssessment,
)

logger = logging.getLogger(__name__)


class CreditScoringEngine:
    def __init__(self, gateway, cache, borrowers, policy: ScoringPolicy):
        self.gateway = gateway
        self.cache = cache
        self.borrowers = borrowers
        self.policy = policy

    async def score(
        self, nid: str, monthly_income: Optional[int] = None, force_refresh: bool = False
    ) -> CreditScoreRecord:
        """Score snapshot for a borrower, cached in the score namespace."""
        key = nid if monthly_income is None else f"{nid}:{monthly_income}"
        return await self.cache.get_or_load(
            "score", key, lambda: self._compute(nid, monthly_income), force_refresh=force_refresh
        )

    async def real_time_score(self, nid: str) -> int:
        """Score straight from the contract, bypassing the cache."""
        await self.borrowers.require_borrower(nid)
        return await self.gateway.calculate_credit_score(nid)

    async def max_loan_amount(self, nid: str, monthly_income: Optional[int] = None) -> int:
        income = monthly_income or self.policy.default_monthly_income
        return (await self.score(nid, income)).max_loan_amount

    async def _compute(self, nid: str, monthly_income: Optional[int]) -> CreditScoreRecord:
        await self.borrowers.require_borrower(nid)

        calls = [
            self.gateway.calculate_credit_score(nid),
            self.gateway.get_credit_rating(nid),
            self.gateway.get_score_breakdown(nid),
        ]
        if monthly_income is not None:
            calls.append(self.gateway.get_max_loan_amount(nid, monthly_income))
        results = await asyncio.gather(*calls)

        score, contract_rating, breakdown = results[:3]
        max_loan = results[3] if monthly_income is not None else 0
        rating = rating_for_score(score, self.policy)
        if not contract_rating:
            logger.info(f"Contract returned no rating for {nid}, using {rating}")
        elif contract_rating != rating:
            logger.warning(
                f"Contract rating {contract_rating} disagrees with local rating {rating} for {nid} (score {score})"
            )

        logger.info(f"Credit score for {nid}: {score} ({rating})")
        return CreditScoreRecord(
            nid=nid,
            score=score,
            rating=rating,
            breakdown=breakdown,
            max_loan_amount=max_loan,
            monthly_income=monthly_income,
            is_verified=True,
        )

    async def eligibility(
        self,
        nid: str,
        monthly_income: int,
        requested_amount: int,
        force_refresh: bool = False,
    ) -> EligibilityAssessment:
        if requested_amount <= 0:
            raise ValidationError("requested amount must be positive", operation="eligibility", identifier=nid)
        if monthly_income <= 0:
            raise ValidationError("monthly income must be positive", operation="eligibility", identifier=nid)

        key = f"{nid}:{requested_amount}:{monthly_income}"
        return await self.cache.get_or_load(
            "eligibility",
            key,
            lambda: self._assess(nid, monthly_income, requested_amount, force_refresh),
            force_refresh=force_refresh,
        )

    async def _assess(
        self, nid: str, monthly_income: int, requested_amount: int, force_refresh: bool
    ) -> EligibilityAssessment:
        borrower, record = await asyncio.gather(
            self.borrowers.require_borrower(nid, force_refresh=force_refresh),
            self.score(nid, monthly_income, force_refresh=force_refresh),
        )
        policy = self.policy
        score = record.score
        max_loan = record.max_loan_amount
        is_eligible = score >= policy.min_eligible_score and requested_amount <= max_loan

        current_debt = borrower.total_remaining_loan
        total_debt = current_debt + (requested_amount if is_eligible else 0)
        debt_to_income = round(total_debt / (monthly_income * 12) * 100, 2)

        assessment = EligibilityAssessment(
            nid=nid,
            is_eligible=is_eligible,
            credit_score=score,
            credit_rating=record.rating,
            requested_amount=requested_amount,
            max_loan_amount=max_loan,
            monthly_income=monthly_income,
            current_debt=current_debt,
            debt_to_income_ratio=debt_to_income,
            interest_rate=interest_rate_for_score(score, policy),
            loan_term_months=policy.max_loan_term_months,
            reasons=self._eligibility_reasons(is_eligible, score, requested_amount, max_loan),
        )
        logger.info(f"Loan eligibility for {nid}: {is_eligible} (requested {requested_amount}, max {max_loan})")
        return assessment

    def _eligibility_reasons(self, is_eligible: bool, score: int, requested: int, max_loan: int) -> List[str]:
        minimum = self.policy.min_eligible_score
        if is_eligible:
            return [
                f"Credit score ({score}) meets minimum requirement",
                "Requested amount is within approved limit",
                "Blockchain verification successful",
            ]
        reasons = []
        if score < minimum:
            reasons.append(f"Credit score ({score}) is below minimum requirement ({minimum})")
        if requested > max_loan:
            reasons.append("Requested amount exceeds maximum approved limit")
        return reasons

    async def detailed_breakdown(self, nid: str) -> DetailedBreakdown:
        borrower, record = await asyncio.gather(
            self.borrowers.require_borrower(nid), self.score(nid)
        )
        scores = record.breakdown.model_dump()
        categories = []
        for category in self.policy.categories:
            points = scores.get(category.key, 0)
            categories.append(
                CategoryDetail(
                    key=category.key,
                    category=category.label,
                    score=points,
                    max_score=category.max_points,
                    weight=category.weight,
                    percentage=round(points / category.max_points * 100, 1) if category.max_points else 0.0,
                    value=_category_value(category.key, borrower),
                    explanation=category.explanation,
                )
            )
        return DetailedBreakdown(nid=nid, total_score=record.score, rating=record.rating, categories=categories)

    async def recommendations(self, nid: str) -> List[str]:
        """Improvement advice from the per-category threshold rules."""
        borrower, record = await asyncio.gather(
            self.borrowers.require_borrower(nid), self.score(nid)
        )
        scores = record.breakdown.model_dump()
        advice = []
        for rule in self.policy.recommendations:
            if rule.requires_outstanding_loan and borrower.total_remaining_loan <= 0:
                continue
            if scores.get(rule.category, 0) < rule.below:
                advice.append(rule.message)

        if not advice:
            advice.append(self.policy.excellent_profile_message)
        advice.extend(self.policy.general_advice)
        return advice

    def validate_loan_application(
        self, nid: str, requested_amount: int, monthly_income: int
    ) -> ApplicationValidation:
        """Local checks that need no chain access."""
        policy = self.policy
        errors, warnings = [], []

        if not nid or len(nid) < policy.min_nid_length:
            errors.append("Invalid NID format")
        if requested_amount <= 0:
            errors.append("Loan amount must be greater than zero")
        elif requested_amount < policy.recommended_min_loan:
            warnings.append(f"Minimum recommended loan amount is {policy.recommended_min_loan:,} BDT")
        if requested_amount > policy.max_loan_amount:
            errors.append(f"Loan amount must not exceed {policy.max_loan_amount:,}")
        if monthly_income <= 0:
            errors.append("Monthly income must be greater than zero")
        elif monthly_income < policy.low_income_warning:
            warnings.append("Low monthly income may affect loan approval")
        if monthly_income > 0 and requested_amount > monthly_income * policy.max_income_multiple:
            warnings.append("Requested amount exceeds recommended debt-to-income ratio")

        return ApplicationValidation(is_valid=not errors, errors=errors, warnings=warnings)


def _category_value(key: str, borrower: BorrowerRecord) -> str:
    if key == "account_balance":
        return str(borrower.account_balance)
    if key == "transactions":
        return str(borrower.total_transactions)
    if key == "payment_history":
        total = borrower.on_time_payments + borrower.missed_payments
        return f"{borrower.on_time_payments}/{total}"
    if key == "remaining_loans":
        return str(borrower.total_remaining_loan)
    if key == "credit_age":
        return f"{borrower.credit_age_months} months"
    if key == "profession_risk":
        return f"{borrower.profession} ({borrower.profession_risk_score})"
    return ""
