from fastapi import APIRouter, Depends

from chaincredit.api.dependencies import get_services
from chaincredit.schemas.borrower import BorrowerCreate, BorrowerRecord, BorrowerRegistration
from chaincredit.services.registry import Services

router = APIRouter()


@router.get("/{nid}", response_model=BorrowerRecord)
async def get_borrower(nid: str, refresh: bool = False, services: Services = Depends(get_services)):
    """
    Returns the on-chain borrower profile.
    """
    return await services.borrowers.require_borrower(nid, force_refresh=refresh)


@router.post("/", response_model=BorrowerRegistration, status_code=202)
async def register_borrower(borrower: BorrowerCreate, services: Services = Depends(get_services)):
    """
    Submits addBorrower. The transaction is tracked until it confirms.
    """
    return await services.borrowers.register(borrower)


@router.post("/{nid}/sync", status_code=204)
async def sync_borrower(nid: str, services: Services = Depends(get_services)):
    await services.synchronizer.sync_all(nid)
