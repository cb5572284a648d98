from datetime import datetime
from typing import Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

class RegisterRequest(BaseModel):
    name: str = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("name", "cname"),
        description="Display name of the account holder",
    )
    email: str = Field(..., pattern=EMAIL_PATTERN)
    password: str = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("secret", "password"),
    )

class LoginRequest(BaseModel):
    email: str = Field(..., min_length=1)
    password: str = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("secret", "password"),
    )

class AccountSummary(BaseModel):
    id: int
    name: str
    email: str

class AuthResponse(BaseModel):
    message: str
    user: AccountSummary

class MessageResponse(BaseModel):
    message: str

class BalanceResponse(BaseModel):
    balance: int = Field(..., ge=0, description="Balance in whole currency units")
    name: str

class TransferRequest(CamelModel):
    recipient_email: str = Field(..., min_length=1)
    amount: int = Field(..., ge=1, description="Amount in whole currency units (must be >= 1)")

class TransactionResponse(CamelModel):
    id: int
    sender_id: int
    sender_email: str
    recipient_email: str
    amount: int
    timestamp: datetime
    type: Literal["transfer"] = "transfer"

class TransferResponse(CamelModel):
    message: str = "Transfer successful"
    new_balance: int
    transaction: TransactionResponse
