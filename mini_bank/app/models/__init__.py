from .db import Account as AccountModel
from .db import IdempotencyRecord as IdempotencyRecordModel
from .db import IssuedToken as IssuedTokenModel
from .db import Transaction as TransactionModel
from .schemas import (
    AccountSummary,
    AuthResponse,
    BalanceResponse,
    LoginRequest,
    MessageResponse,
    RegisterRequest,
    TransactionResponse,
    TransferRequest,
    TransferResponse,
)

__all__ = [
    "AccountSummary",
    "AuthResponse",
    "BalanceResponse",
    "LoginRequest",
    "MessageResponse",
    "RegisterRequest",
    "TransactionResponse",
    "TransferRequest",
    "TransferResponse",
    "AccountModel",
    "IdempotencyRecordModel",
    "IssuedTokenModel",
    "TransactionModel",
]
