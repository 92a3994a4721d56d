"""
Pydantic schemas for API requests and responses
"""

from typing import Dict, List, Optional, Union
from pydantic import BaseModel, Field

from ..accounts import Account
from ..applications import Application
from ..ledger import LedgerEntry

# Amounts accept plain numbers and comma-grouped strings such as "1,234.50";
# parsing and rounding happen in the Money type so the rules stay in one place.
AmountInput = Union[str, int, float]


class CreateAccountRequest(BaseModel):
    owner_id: Optional[str] = Field(None, description="Owner (defaults to the caller)")


class AmountRequest(BaseModel):
    amount: Optional[AmountInput] = None
    idempotency_key: Optional[str] = None


class LoanApplicationRequest(BaseModel):
    amount: Optional[AmountInput] = None
    tenure: Optional[AmountInput] = Field(None, description="Tenure in months")
    account_id: Optional[str] = None


class InsuranceApplicationRequest(BaseModel):
    type: Optional[str] = Field(None, description="Policy type")
    premium: Optional[AmountInput] = None
    coverage: Optional[AmountInput] = None
    duration: Optional[AmountInput] = Field(12, description="Duration in months")
    account_id: Optional[str] = None


class DecisionRequest(BaseModel):
    id: str = Field(..., description="Application ID")
    action: str = Field(..., description="approved or rejected")


class AccountModel(BaseModel):
    id: str
    account_number: str
    owner_id: str
    balance: str
    created_at: str

    @classmethod
    def from_account(cls, account: Account) -> 'AccountModel':
        return cls(
            id=account.id,
            account_number=account.account_number,
            owner_id=account.owner_id,
            balance=account.balance.format(),
            created_at=account.created_at.isoformat()
        )


class LedgerEntryModel(BaseModel):
    entry_id: int
    kind: str
    amount: str
    from_account: Optional[str] = None
    to_account: Optional[str] = None
    description: str
    balance_after: str
    created_at: str

    @classmethod
    def from_entry(cls, entry: LedgerEntry) -> 'LedgerEntryModel':
        return cls(
            entry_id=entry.entry_id,
            kind=entry.kind.value,
            amount=entry.amount.format(),
            from_account=entry.from_account,
            to_account=entry.to_account,
            description=entry.description,
            balance_after=entry.balance_after.format(),
            created_at=entry.created_at.isoformat()
        )


class ApplicationModel(BaseModel):
    id: str
    owner_id: str
    kind: str
    account_id: str
    status: str
    amount: Optional[str] = None
    tenure_months: Optional[int] = None
    policy_type: Optional[str] = None
    premium: Optional[str] = None
    coverage: Optional[str] = None
    duration_months: Optional[int] = None
    decided_by: Optional[str] = None
    decided_at: Optional[str] = None
    ledger_entry_id: Optional[int] = None
    created_at: str

    @classmethod
    def from_application(cls, application: Application) -> 'ApplicationModel':
        data = application.to_dict()
        data.pop("updated_at", None)
        return cls(**data)


class BalanceResponse(BaseModel):
    account_id: str
    balance: str


class TransferResponse(BaseModel):
    from_account_id: str
    from_balance: str
    to_account_id: str
    to_balance: str


class HistoryResponse(BaseModel):
    account_id: str
    balance: str
    entries: List[LedgerEntryModel]


class ApplicationListResponse(BaseModel):
    applications: List[ApplicationModel]


class StatsResponse(BaseModel):
    kind: str
    stats: Dict[str, int]
