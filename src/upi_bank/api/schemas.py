from decimal import Decimal
from typing import List, Optional, Union
from uuid import UUID

from pydantic import AliasChoices, BaseModel, Field


class RegisterIn(BaseModel):
    name: str = Field(..., examples=["Asha Rao"])
    phone: str = Field(..., examples=["9876543210"])
    email: str = Field(..., examples=["asha@example.com"])
    pin: str = Field(..., examples=["1234"])


class LoginIn(BaseModel):
    phone: str
    pin: str


class PaymentIdentifierOut(BaseModel):
    identifier: str
    is_default: bool


class AccountOut(BaseModel):
    account_id: UUID
    display_name: str
    phone: str
    email: str
    balance: float
    is_locked: bool
    upi_id: Optional[str] = None
    payment_identifiers: List[PaymentIdentifierOut] = []
    created_at: Optional[str] = None


class TokenOut(BaseModel):
    success: bool = True
    access_token: str
    token_type: str = "bearer"
    expires_at: str
    account: AccountOut


class LookupOut(BaseModel):
    identifier: str
    display_name: str
    upi_id: Optional[str] = None


class PaymentIn(BaseModel):
    to_identifier: str = Field(
        ...,
        validation_alias=AliasChoices("to_identifier", "toIdentifier", "to_upi_id", "toUpiId"),
        examples=["9876543210@payease"],
    )
    # Shape checks happen in the validator so that every failure maps to the same 400 body
    amount: Union[Decimal, str] = Field(..., examples=["100.00"])
    description: Optional[str] = None
    pin: str = Field(..., examples=["1234"])


class PaymentOut(BaseModel):
    success: bool = True
    message: str
    transaction_id: UUID
    reference_id: str
    status: str
    amount: float
    new_balance: float
    to_identifier: str
    recipient_name: Optional[str] = None
    created_at: str
    replayed: bool = False


class TransactionOut(BaseModel):
    transaction_id: UUID
    reference_id: str
    from_account_id: UUID
    to_account_id: Optional[UUID] = None
    to_identifier: str
    amount: float
    description: Optional[str] = None
    status: str
    failure_reason: Optional[str] = None
    created_at: str
    direction: Optional[str] = None


class TransactionPage(BaseModel):
    success: bool = True
    items: List[TransactionOut]
    page: int
    limit: int
    total: int


class StatsOut(BaseModel):
    total_transactions: int
    successful_transactions: int
    failed_transactions: int
    pending_transactions: int
    total_amount: float
    average_amount: float


class AdminStatsOut(StatsOut):
    total_accounts: int
    locked_accounts: int


