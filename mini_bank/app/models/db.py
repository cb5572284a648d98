from __future__ import annotations
from datetime import datetime, UTC
from typing import Optional
from sqlmodel import Field, SQLModel


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Account(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    email: str = Field(index=True, unique=True)
    password_hash: str
    balance: int = Field(default=0, ge=0)
    created_at: datetime = Field(default_factory=_utcnow)

class Transaction(SQLModel, table=True):
    __tablename__ = "transactions"

    id: Optional[int] = Field(default=None, primary_key=True)
    sender_id: int = Field(foreign_key="account.id", index=True)
    sender_email: str = Field(index=True)
    recipient_email: str = Field(index=True)
    amount: int = Field(gt=0)
    timestamp: datetime = Field(default_factory=_utcnow)
    type: str = "transfer"

class IssuedToken(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    value: str = Field(index=True, unique=True)
    account_id: int = Field(foreign_key="account.id", index=True)
    issued_at: datetime = Field(default_factory=_utcnow)
    expires_at: datetime

class IdempotencyRecord(SQLModel, table=True):
    route: str = Field(primary_key=True)
    key: str = Field(primary_key=True)
    request_signature: str
    response_payload: str
