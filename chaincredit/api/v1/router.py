from fastapi import APIRouter

from chaincredit.api.v1.endpoints import borrowers, credit, loans, system, transactions

api_router = APIRouter()
api_router.include_router(borrowers.router, prefix="/borrowers", tags=["borrowers"])
api_router.include_router(credit.router, prefix="/credit", tags=["credit"])
api_router.include_router(loans.router, prefix="/loans", tags=["loans"])
api_router.include_router(transactions.router, prefix="/transactions", tags=["transactions"])
api_router.include_router(system.router, prefix="/system", tags=["system"])
