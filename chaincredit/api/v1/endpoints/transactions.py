from fastapi import APIRouter, Depends

from chaincredit.api.dependencies import get_services
from chaincredit.core.errors import NotFoundError
from chaincredit.schemas.transaction import TransactionSnapshot, TransactionStatus
from chaincredit.services.registry import Services

router = APIRouter()


@router.get("/", response_model=TransactionSnapshot)
async def list_transactions(services: Services = Depends(get_services)):
    return services.monitor.snapshot()


@router.get("/{tx_hash}", response_model=TransactionStatus)
async def get_transaction(tx_hash: str, services: Services = Depends(get_services)):
    status = services.monitor.get(tx_hash)
    if status is None:
        raise NotFoundError("transaction is not tracked", operation="get_transaction", identifier=tx_hash)
    return status


@router.delete("/{tx_hash}", status_code=204)
async def remove_transaction(tx_hash: str, services: Services = Depends(get_services)):
    if not await services.monitor.remove(tx_hash):
        raise NotFoundError("transaction is not tracked", operation="remove_transaction", identifier=tx_hash)
