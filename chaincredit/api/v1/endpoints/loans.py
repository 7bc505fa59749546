from typing import List

from fastapi import APIRouter, Depends

from chaincredit.api.dependencies import get_services
from chaincredit.schemas.loan import LoanApplication, LoanRecord
from chaincredit.services.registry import Services

router = APIRouter()


@router.post("/", response_model=LoanRecord, status_code=201)
async def apply_for_loan(application: LoanApplication, services: Services = Depends(get_services)):
    """
    Validates the application, checks eligibility and submits requestLoan.
    """
    return await services.loans.apply(application)


@router.get("/{nid}", response_model=List[LoanRecord])
async def get_loan_history(nid: str, services: Services = Depends(get_services)):
    return services.loans.history(nid)


@router.get("/{nid}/{loan_id}", response_model=LoanRecord)
async def get_loan(nid: str, loan_id: str, services: Services = Depends(get_services)):
    return await services.loans.get_loan(nid, loan_id)
