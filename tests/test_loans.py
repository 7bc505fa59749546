import pytest

from chaincredit.core.errors import EligibilityError, NotFoundError, ValidationError
from chaincredit.schemas.loan import LoanApplication, LoanStatus, LoanType
from chaincredit.services.loans import generate_loan_id, monthly_payment

NID = "123456789"


def test_monthly_payment():
    assert monthly_payment(120000, 12.0, 12) == 10662
    assert monthly_payment(1200, 0, 12) == 100
    assert monthly_payment(1200, 10.0, 0) == 0


def test_loan_ids_are_prefixed():
    loan_id = generate_loan_id()
    assert loan_id.startswith("LOAN_")
    assert len(loan_id.split("_")[2]) == 4


@pytest.mark.asyncio
async def test_apply_records_approved_loan(services, gateway):
    application = LoanApplication(
        nid=NID, requested_amount=150000, monthly_income=70000, loan_type=LoanType.BUSINESS
    )
    loan = await services.loans.apply(application)

    assert loan.status == LoanStatus.APPROVED
    assert loan.borrower_nid == NID
    assert loan.approved_amount == 150000
    assert loan.interest_rate == 10.0
    assert loan.monthly_payment == monthly_payment(150000, 10.0, 12)
    assert loan.credit_score_at_application == 900
    assert loan.type == LoanType.BUSINESS

    tracked = services.monitor.get(loan.transaction_hash)
    assert tracked is not None
    assert tracked.operation == "requestLoan"
    assert tracked.nid == NID
    assert await services.loans.get_loan(NID, loan.id) == loan


@pytest.mark.asyncio
async def test_ineligible_application_never_reaches_the_chain(services, gateway):
    application = LoanApplication(nid=NID, requested_amount=250000, monthly_income=70000)

    with pytest.raises(EligibilityError) as exc_info:
        await services.loans.apply(application)
    assert "exceeds maximum approved limit" in str(exc_info.value)
    assert "request_loan" not in gateway.calls


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "nid,term",
    [("12345", 12), (NID, 36)],
)
async def test_invalid_application(services, gateway, nid, term):
    application = LoanApplication(nid=nid, requested_amount=50000, monthly_income=70000, term_months=term)
    with pytest.raises(ValidationError):
        await services.loans.apply(application)
    assert "request_loan" not in gateway.calls


@pytest.mark.asyncio
async def test_loan_survives_cache_invalidation(services):
    loan = await services.loans.apply(LoanApplication(nid=NID, requested_amount=50000, monthly_income=70000))
    await services.cache.invalidate_identifier(NID, ["loan"])

    assert (await services.loans.get_loan(NID, loan.id)).id == loan.id
    assert [l.id for l in services.loans.history(NID)] == [loan.id]


@pytest.mark.asyncio
async def test_unknown_loan(services):
    loan = await services.loans.apply(LoanApplication(nid=NID, requested_amount=50000, monthly_income=70000))
    with pytest.raises(NotFoundError):
        await services.loans.get_loan(NID, "LOAN_0_0000")
    with pytest.raises(NotFoundError):
        await services.loans.get_loan("987654321", loan.id)
