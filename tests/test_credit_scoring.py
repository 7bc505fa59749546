import pytest

from chaincredit.core.errors import NotFoundError, ValidationError
from chaincredit.schemas.credit_score import ScoreBreakdown
from tests.conftest import demo_breakdown, demo_record

NID = "123456789"


@pytest.mark.asyncio
async def test_score_snapshot(services):
    record = await services.engine.score(NID)
    assert record.score == 900
    assert record.rating == "A"
    assert record.breakdown.total == 900
    assert record.max_loan_amount == 0
    assert record.is_verified


@pytest.mark.asyncio
async def test_score_is_cached(services, gateway):
    await services.engine.score(NID)
    await services.engine.score(NID)
    assert gateway.calls["calculate_credit_score"] == 1

    await services.engine.score(NID, force_refresh=True)
    assert gateway.calls["calculate_credit_score"] == 2


@pytest.mark.asyncio
async def test_score_with_income_includes_max_loan(services):
    record = await services.engine.score(NID, monthly_income=70000)
    assert record.max_loan_amount == 200000
    assert await services.engine.max_loan_amount(NID, 70000) == 200000


@pytest.mark.asyncio
async def test_unknown_borrower_is_not_scored(services, gateway):
    with pytest.raises(NotFoundError) as exc_info:
        await services.engine.score("999999999")
    assert exc_info.value.identifier == "999999999"
    assert "calculate_credit_score" not in gateway.calls


@pytest.mark.asyncio
async def test_local_rating_wins_over_contract(services, gateway):
    gateway.ratings[NID] = "B"
    record = await services.engine.score(NID)
    assert record.rating == "A"


@pytest.mark.asyncio
async def test_eligible_request(services):
    """
    Score 900 with max loan 200000 and 74000 outstanding: asking for 150000
    on 70000/month is approved at the top interest tier.
    """
    assessment = await services.engine.eligibility(NID, monthly_income=70000, requested_amount=150000)

    assert assessment.is_eligible
    assert assessment.credit_rating == "A"
    assert assessment.interest_rate == 10.0
    assert assessment.debt_to_income_ratio == 26.67
    assert assessment.loan_term_months == 24
    assert assessment.current_debt == 74000
    assert "Blockchain verification successful" in assessment.reasons


@pytest.mark.asyncio
async def test_low_score_is_not_eligible(services, gateway):
    gateway.add(demo_record("987654321"), 250, demo_breakdown(), max_loan=200000)

    assessment = await services.engine.eligibility("987654321", monthly_income=70000, requested_amount=50000)

    assert not assessment.is_eligible
    assert assessment.credit_rating == "D"
    assert assessment.interest_rate == 9.0
    assert assessment.reasons == ["Credit score (250) is below minimum requirement (300)"]
    # Rejected amount is not added to the debt
    assert assessment.debt_to_income_ratio == 8.81


@pytest.mark.asyncio
async def test_amount_over_limit_is_not_eligible(services):
    assessment = await services.engine.eligibility(NID, monthly_income=70000, requested_amount=250000)
    assert not assessment.is_eligible
    assert assessment.reasons == ["Requested amount exceeds maximum approved limit"]


@pytest.mark.asyncio
async def test_eligibility_is_repeatable(services):
    first = await services.engine.eligibility(NID, 70000, 150000, force_refresh=True)
    second = await services.engine.eligibility(NID, 70000, 150000, force_refresh=True)
    assert first.model_dump(exclude={"assessed_at"}) == second.model_dump(exclude={"assessed_at"})


@pytest.mark.asyncio
@pytest.mark.parametrize("income,amount", [(0, 1000), (70000, 0), (-5, 1000)])
async def test_eligibility_rejects_non_positive_inputs(services, income, amount):
    with pytest.raises(ValidationError):
        await services.engine.eligibility(NID, monthly_income=income, requested_amount=amount)


@pytest.mark.asyncio
async def test_real_time_score_bypasses_cache(services, gateway):
    await services.engine.score(NID)
    gateway.scores[NID] = 640
    assert await services.engine.real_time_score(NID) == 640
    assert (await services.engine.score(NID)).score == 900


@pytest.mark.asyncio
async def test_detailed_breakdown(services):
    detail = await services.engine.detailed_breakdown(NID)
    assert detail.total_score == 900
    by_key = {c.key: c for c in detail.categories}
    assert len(by_key) == 6
    payment = by_key["payment_history"]
    assert payment.category == "Payment History"
    assert payment.max_score == 300
    assert payment.value == "30/37"
    assert payment.percentage == 66.7
    assert by_key["credit_age"].value == "12 months"
    assert by_key["profession_risk"].value == "Blockchain Developer (85)"


@pytest.mark.asyncio
async def test_recommendations_follow_weak_categories(services):
    advice = await services.engine.recommendations(NID)
    assert advice[0] == "Make all payments on time to build a strong payment history"
    assert advice[1:] == services.engine.policy.general_advice


@pytest.mark.asyncio
async def test_recommendations_for_strong_profile(services, gateway):
    gateway.breakdowns[NID] = ScoreBreakdown(
        account_balance=250,
        transactions=150,
        payment_history=300,
        remaining_loans=100,
        credit_age=100,
        profession_risk=100,
    )
    advice = await services.engine.recommendations(NID)
    assert advice[0] == services.engine.policy.excellent_profile_message
    assert len(advice) == 1 + len(services.engine.policy.general_advice)


def test_validate_application_errors(services):
    result = services.engine.validate_loan_application("123", requested_amount=0, monthly_income=0)
    assert not result.is_valid
    assert "Invalid NID format" in result.errors
    assert "Loan amount must be greater than zero" in result.errors
    assert "Monthly income must be greater than zero" in result.errors


def test_validate_application_warnings(services):
    result = services.engine.validate_loan_application(NID, requested_amount=5000, monthly_income=10000)
    assert result.is_valid
    assert result.warnings == [
        "Minimum recommended loan amount is 10,000 BDT",
        "Low monthly income may affect loan approval",
    ]

    result = services.engine.validate_loan_application(NID, requested_amount=900000, monthly_income=20000)
    assert result.is_valid
    assert result.warnings == ["Requested amount exceeds recommended debt-to-income ratio"]
