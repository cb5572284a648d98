from __future__ import annotations

import logging
from typing import Optional

from passlib.context import CryptContext

from ..core.errors import (
    AccountNotFoundError,
    DuplicateEmailError,
    InsufficientFundsError,
    UnauthorizedError,
)
from ..models import AccountModel, AccountSummary, BalanceResponse
from .repository import BankRepository


logger = logging.getLogger(__name__)

DEFAULT_STARTING_BALANCE = 1000


def build_password_context(rounds: int = 12) -> CryptContext:
    return CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=rounds)


class AccountService:
    """Credential store: account records, password hashes and balances."""

    def __init__(
        self,
        repository: BankRepository,
        pwd_context: CryptContext,
        starting_balance: int = DEFAULT_STARTING_BALANCE,
    ) -> None:
        self.repository = repository
        self.pwd_context = pwd_context
        self.starting_balance = starting_balance

    def _get_account(self, account_id: int) -> AccountModel:
        account = self.repository.get_account(account_id)
        if account is None:
            raise AccountNotFoundError("User not found")
        return account

    def summary(self, account: AccountModel) -> AccountSummary:
        return AccountSummary(id=account.id, name=account.name, email=account.email)

    def create(self, name: str, email: str, password: str) -> AccountModel:
        email = email.strip()
        password_hash = self.pwd_context.hash(password)
        with self.repository.transaction():
            if self.repository.get_account_by_email(email) is not None:
                raise DuplicateEmailError("User already exists")
            account = self.repository.add_account(
                name=name,
                email=email,
                password_hash=password_hash,
                balance=self.starting_balance,
            )
        logger.info(
            "account.registered",
            extra={"account_id": account.id, "balance": account.balance},
        )
        return account

    def find_by_email(self, email: str) -> Optional[AccountModel]:
        with self.repository.transaction():
            return self.repository.get_account_by_email(email.strip())

    def find_by_id(self, account_id: int) -> Optional[AccountModel]:
        with self.repository.transaction():
            return self.repository.get_account(account_id)

    def get(self, account_id: int) -> AccountModel:
        with self.repository.transaction():
            return self._get_account(account_id)

    def authenticate(self, email: str, password: str) -> AccountModel:
        account = self.find_by_email(email)
        if account is None:
            # Keep timing comparable to a real verification.
            self.pwd_context.dummy_verify()
            raise UnauthorizedError("Invalid credentials")
        if not self.pwd_context.verify(password, account.password_hash):
            raise UnauthorizedError("Invalid credentials")
        return account

    def adjust_balance(self, account_id: int, delta: int) -> AccountModel:
        with self.repository.transaction():
            account = self._get_account(account_id)
            new_balance = account.balance + delta
            if new_balance < 0:
                raise InsufficientFundsError("Insufficient balance")
            account.balance = new_balance
            self.repository.save_account(account)
            return account

    def balance(self, account_id: int) -> BalanceResponse:
        account = self.get(account_id)
        return BalanceResponse(balance=account.balance, name=account.name)
