from pydantic import Field, model_validator

from chaincredit.schemas.base import CamelModel

NUMERIC_FIELDS = (
    "account_balance",
    "total_transactions",
    "on_time_payments",
    "missed_payments",
    "total_remaining_loan",
    "credit_age_months",
    "profession_risk_score",
)


class BorrowerProfile(CamelModel):
    name: str = Field(min_length=1)
    profession: str = Field(min_length=1)
    account_balance: int = Field(default=0, ge=0)
    total_transactions: int = Field(default=0, ge=0)
    on_time_payments: int = Field(default=0, ge=0)
    missed_payments: int = Field(default=0, ge=0)
    total_remaining_loan: int = Field(default=0, ge=0)
    credit_age_months: int = Field(default=0, ge=0)
    profession_risk_score: int = Field(default=0, ge=0)


class BorrowerCreate(BorrowerProfile):
    nid: str = Field(min_length=1)


class BorrowerRecord(CamelModel):
    nid: str
    name: str = ""
    profession: str = ""
    account_balance: int = Field(default=0, ge=0)
    total_transactions: int = Field(default=0, ge=0)
    on_time_payments: int = Field(default=0, ge=0)
    missed_payments: int = Field(default=0, ge=0)
    total_remaining_loan: int = Field(default=0, ge=0)
    credit_age_months: int = Field(default=0, ge=0)
    profession_risk_score: int = Field(default=0, ge=0)
    exists: bool = False

    @model_validator(mode="after")
    def _zero_when_absent(self):
        if not self.exists:
            for field in NUMERIC_FIELDS:
                setattr(self, field, 0)
        return self

    @classmethod
    def absent(cls, nid: str) -> "BorrowerRecord":
        return cls(nid=nid, exists=False)


class BorrowerRegistration(CamelModel):
    nid: str
    transaction_hash: str
