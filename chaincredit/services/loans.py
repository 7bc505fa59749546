"""
Loan applications: local validation, eligibility, on-chain request and the
resulting loan record.
"""
import logging
import random
import time
from typing import Dict, List

from chaincredit.core.errors import EligibilityError, NotFoundError, ValidationError
from chaincredit.schemas.credit_score import utcnow
from chaincredit.schemas.loan import LoanApplication, LoanRecord, LoanStatus

logger = logging.getLogger(__name__)


def generate_loan_id() -> str:
    return f"LOAN_{int(time.time() * 1000)}_{random.randint(0, 9999):04d}"


def monthly_payment(principal: int, annual_rate: float, term_months: int) -> int:
    """Standard amortized payment, rounded to a whole currency unit."""
    if term_months <= 0:
        return 0
    rate = annual_rate / 100 / 12
    if rate == 0:
        return round(principal / term_months)
    factor = (1 + rate) ** term_months
    return round(principal * rate * factor / (factor - 1))


class LoanService:
    def __init__(self, engine, gateway, cache):
        self.engine = engine
        self.gateway = gateway
        self.cache = cache
        # Applications submitted by this process; the cache holds copies
        self._loans: Dict[str, LoanRecord] = {}

    async def apply(self, application: LoanApplication) -> LoanRecord:
        """Validate, check eligibility, submit requestLoan and record the approved loan."""
        nid = application.nid
        income = application.monthly_income or self.engine.policy.default_monthly_income

        validation = self.engine.validate_loan_application(nid, application.requested_amount, income)
        if not validation.is_valid:
            raise ValidationError(
                f"Invalid application: {', '.join(validation.errors)}", operation="apply_loan", identifier=nid
            )
        for warning in validation.warnings:
            logger.info(f"Loan application warning for {nid}: {warning}")

        max_term = self.engine.policy.max_loan_term_months
        if application.term_months > max_term:
            raise ValidationError(
                f"Loan term must not exceed {max_term} months", operation="apply_loan", identifier=nid
            )

        assessment = await self.engine.eligibility(
            nid, income, application.requested_amount, force_refresh=True
        )
        if not assessment.is_eligible:
            raise EligibilityError(
                "; ".join(assessment.reasons) or "not eligible", operation="apply_loan", identifier=nid
            )

        tx_hash = await self.gateway.request_loan(nid, application.requested_amount)

        now = utcnow()
        amount = application.requested_amount
        loan = LoanRecord(
            id=generate_loan_id(),
            borrower_nid=nid,
            requested_amount=amount,
            approved_amount=amount,
            interest_rate=assessment.interest_rate,
            term_months=application.term_months,
            monthly_payment=monthly_payment(amount, assessment.interest_rate, application.term_months),
            remaining_balance=amount,
            status=LoanStatus.APPROVED,
            type=application.loan_type,
            transaction_hash=tx_hash,
            application_date=now,
            approval_date=now,
            disbursement_date=now,
            credit_score_at_application=assessment.credit_score,
        )
        self._loans[loan.id] = loan
        await self.cache.put("loan", f"{nid}:{loan.id}", loan)
        logger.info(f"✅ Loan {loan.id} approved for {nid}: {amount} at {loan.interest_rate}%")
        return loan

    async def get_loan(self, nid: str, loan_id: str) -> LoanRecord:
        key = f"{nid}:{loan_id}"
        loan = await self.cache.get("loan", key)
        if loan is not None:
            return loan
        loan = self._loans.get(loan_id)
        if loan is None or loan.borrower_nid != nid:
            raise NotFoundError("loan not found", operation="get_loan", identifier=key)
        await self.cache.put("loan", key, loan)
        return loan

    def history(self, nid: str) -> List[LoanRecord]:
        loans = [loan for loan in self._loans.values() if loan.borrower_nid == nid]
        return sorted(loans, key=lambda loan: loan.application_date, reverse=True)
