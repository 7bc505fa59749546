from typing import Optional

from fastapi import APIRouter, Depends, Query

from chaincredit.api.dependencies import get_services
from chaincredit.schemas.credit_score import (
    ApplicationValidation,
    CreditScoreRecord,
    DetailedBreakdown,
    EligibilityAssessment,
    EligibilityRequest,
    RecommendationList,
)
from chaincredit.services.registry import Services

router = APIRouter()


@router.get("/{nid}/score", response_model=CreditScoreRecord)
async def get_credit_score(
    nid: str,
    monthly_income: Optional[int] = Query(default=None, alias="monthlyIncome", gt=0),
    refresh: bool = False,
    services: Services = Depends(get_services),
):
    """
    Returns the contract-computed credit score with rating and breakdown.
    """
    return await services.engine.score(nid, monthly_income, force_refresh=refresh)


@router.get("/{nid}/breakdown", response_model=DetailedBreakdown)
async def get_score_breakdown(nid: str, services: Services = Depends(get_services)):
    return await services.engine.detailed_breakdown(nid)


@router.get("/{nid}/recommendations", response_model=RecommendationList)
async def get_recommendations(nid: str, services: Services = Depends(get_services)):
    recommendations = await services.engine.recommendations(nid)
    return RecommendationList(nid=nid, recommendations=recommendations)


@router.post("/{nid}/eligibility", response_model=EligibilityAssessment)
async def assess_eligibility(
    nid: str, request: EligibilityRequest, services: Services = Depends(get_services)
):
    """
    Assesses a loan request against the score floor and the contract's max loan amount.
    """
    income = request.monthly_income or services.engine.policy.default_monthly_income
    return await services.engine.eligibility(nid, income, request.requested_amount)


@router.post("/{nid}/validate", response_model=ApplicationValidation)
async def validate_application(
    nid: str, request: EligibilityRequest, services: Services = Depends(get_services)
):
    income = request.monthly_income or services.engine.policy.default_monthly_income
    return services.engine.validate_loan_application(nid, request.requested_amount, income)
