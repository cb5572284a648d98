from .accounts import AccountService, build_password_context
from .chat import ChatRelay
from .ledger import LedgerService
from .repository import (
    BankRepository,
    InMemoryBankRepository,
    JsonFileBankRepository,
    SqlBankRepository,
    build_repository,
)
from .sessions import IssuedSession, SessionClaims, SessionService

__all__ = [
    "AccountService",
    "BankRepository",
    "ChatRelay",
    "InMemoryBankRepository",
    "IssuedSession",
    "JsonFileBankRepository",
    "LedgerService",
    "SessionClaims",
    "SessionService",
    "SqlBankRepository",
    "build_password_context",
    "build_repository",
]
