from __future__ import annotations

import json
import logging
import os
import threading
from abc import ABC, abstractmethod
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional

from sqlmodel import Session, or_, select

from ..core.config import Settings
from ..core.db import create_engine_for_url, init_db
from ..models import (
    AccountModel,
    IdempotencyRecordModel,
    IssuedTokenModel,
    TransactionModel,
)


logger = logging.getLogger(__name__)


class BankRepository(ABC):
    """Storage seam shared by the account, session and ledger services.

    Every read and write must happen inside ``transaction()``. A repository
    serializes transactions behind a single re-entrant lock, so a transfer's
    debit, credit and record append are never interleaved with another
    mutation. Nested ``transaction()`` calls join the outermost one.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._depth = 0

    @contextmanager
    def transaction(self) -> Iterator[None]:
        with self._lock:
            if self._depth:
                self._depth += 1
                try:
                    yield
                finally:
                    self._depth -= 1
                return

            self._depth = 1
            try:
                self._begin()
                try:
                    yield
                except BaseException:
                    self._rollback()
                    raise
                self._commit()
            finally:
                self._depth = 0

    @abstractmethod
    def _begin(self) -> None: ...

    @abstractmethod
    def _commit(self) -> None: ...

    @abstractmethod
    def _rollback(self) -> None: ...

    # Accounts -----------------------------------------------------------
    @abstractmethod
    def add_account(
        self, *, name: str, email: str, password_hash: str, balance: int
    ) -> AccountModel: ...

    @abstractmethod
    def get_account(self, account_id: int) -> Optional[AccountModel]: ...

    @abstractmethod
    def get_account_by_email(self, email: str) -> Optional[AccountModel]: ...

    @abstractmethod
    def save_account(self, account: AccountModel) -> None: ...

    # Transactions -------------------------------------------------------
    @abstractmethod
    def add_transaction(
        self,
        *,
        sender_id: int,
        sender_email: str,
        recipient_email: str,
        amount: int,
    ) -> TransactionModel: ...

    @abstractmethod
    def list_transactions(self, account_id: int, email: str) -> list[TransactionModel]:
        """Transactions sent by ``account_id`` or naming ``email``, oldest first."""

    # Issued-token registry ----------------------------------------------
    @abstractmethod
    def add_token(
        self,
        *,
        value: str,
        account_id: int,
        issued_at: datetime,
        expires_at: datetime,
    ) -> IssuedTokenModel: ...

    @abstractmethod
    def get_token(self, value: str) -> Optional[IssuedTokenModel]: ...

    @abstractmethod
    def prune_tokens(self, before: datetime) -> int:
        """Drop registry entries that expired before ``before``; return how many."""

    # Idempotency store --------------------------------------------------
    @abstractmethod
    def fetch_idempotency(
        self, route: str, key: str
    ) -> Optional[IdempotencyRecordModel]: ...

    @abstractmethod
    def save_idempotency(
        self,
        *,
        route: str,
        key: str,
        signature: str,
        payload: str,
    ) -> None: ...


@dataclass
class _Snapshot:
    account_count: int
    transaction_count: int
    token_seq: int
    tokens: dict[str, IssuedTokenModel]
    balances: dict[int, int]
    idempotency_keys: set[tuple[str, str]] = field(default_factory=set)


class InMemoryBankRepository(BankRepository):
    def __init__(self) -> None:
        super().__init__()
        self._accounts: dict[int, AccountModel] = {}
        self._emails: dict[str, int] = {}
        self._transactions: list[TransactionModel] = []
        self._tokens: dict[str, IssuedTokenModel] = {}
        self._token_seq = 0
        self._idempotency: dict[tuple[str, str], IdempotencyRecordModel] = {}
        self._snapshot: Optional[_Snapshot] = None

    def _begin(self) -> None:
        self._snapshot = _Snapshot(
            account_count=len(self._accounts),
            transaction_count=len(self._transactions),
            token_seq=self._token_seq,
            tokens=dict(self._tokens),
            balances={account_id: a.balance for account_id, a in self._accounts.items()},
            idempotency_keys=set(self._idempotency),
        )

    def _commit(self) -> None:
        self._snapshot = None

    def _rollback(self) -> None:
        snapshot = self._snapshot
        if snapshot is None:
            return
        # Ids are dense and never deleted, so anything past the count is new.
        for account_id in [i for i in self._accounts if i > snapshot.account_count]:
            account = self._accounts.pop(account_id)
            self._emails.pop(account.email, None)
        for account_id, balance in snapshot.balances.items():
            self._accounts[account_id].balance = balance
        del self._transactions[snapshot.transaction_count :]
        self._tokens = snapshot.tokens
        self._token_seq = snapshot.token_seq
        for key in set(self._idempotency) - snapshot.idempotency_keys:
            del self._idempotency[key]
        self._snapshot = None

    def add_account(
        self, *, name: str, email: str, password_hash: str, balance: int
    ) -> AccountModel:
        account = AccountModel(
            id=len(self._accounts) + 1,
            name=name,
            email=email,
            password_hash=password_hash,
            balance=balance,
        )
        self._accounts[account.id] = account
        self._emails[email] = account.id
        return account

    def get_account(self, account_id: int) -> Optional[AccountModel]:
        return self._accounts.get(account_id)

    def get_account_by_email(self, email: str) -> Optional[AccountModel]:
        account_id = self._emails.get(email)
        if account_id is None:
            return None
        return self._accounts[account_id]

    def save_account(self, account: AccountModel) -> None:
        # Stored objects are mutated in place.
        self._accounts[account.id] = account

    def add_transaction(
        self,
        *,
        sender_id: int,
        sender_email: str,
        recipient_email: str,
        amount: int,
    ) -> TransactionModel:
        record = TransactionModel(
            id=len(self._transactions) + 1,
            sender_id=sender_id,
            sender_email=sender_email,
            recipient_email=recipient_email,
            amount=amount,
        )
        self._transactions.append(record)
        return record

    def list_transactions(self, account_id: int, email: str) -> list[TransactionModel]:
        return [
            record
            for record in self._transactions
            if record.sender_id == account_id
            or record.sender_email == email
            or record.recipient_email == email
        ]

    def add_token(
        self,
        *,
        value: str,
        account_id: int,
        issued_at: datetime,
        expires_at: datetime,
    ) -> IssuedTokenModel:
        self._token_seq += 1
        record = IssuedTokenModel(
            id=self._token_seq,
            value=value,
            account_id=account_id,
            issued_at=issued_at,
            expires_at=expires_at,
        )
        self._tokens[value] = record
        return record

    def get_token(self, value: str) -> Optional[IssuedTokenModel]:
        return self._tokens.get(value)

    def prune_tokens(self, before: datetime) -> int:
        expired = [v for v, record in self._tokens.items() if record.expires_at < before]
        for value in expired:
            del self._tokens[value]
        return len(expired)

    def fetch_idempotency(
        self, route: str, key: str
    ) -> Optional[IdempotencyRecordModel]:
        return self._idempotency.get((route, key))

    def save_idempotency(
        self,
        *,
        route: str,
        key: str,
        signature: str,
        payload: str,
    ) -> None:
        self._idempotency[(route, key)] = IdempotencyRecordModel(
            route=route,
            key=key,
            request_signature=signature,
            response_payload=payload,
        )


class JsonFileBankRepository(InMemoryBankRepository):
    """In-memory repository mirrored to a single JSON document.

    The document holds two top-level lists, ``accounts`` and ``transactions``.
    It is rewritten atomically whenever a transaction that changed either of
    them commits. Issued tokens and idempotency records stay process-local.
    """

    def __init__(self, path: str | os.PathLike[str]) -> None:
        super().__init__()
        self.path = Path(path)
        self._dirty = False
        self._load()

    def _load(self) -> None:
        if not self.path.exists():
            return
        data = json.loads(self.path.read_text(encoding="utf-8"))
        for item in data.get("accounts", []):
            account = AccountModel.model_validate(item)
            self._accounts[account.id] = account
            self._emails[account.email] = account.id
        for item in data.get("transactions", []):
            self._transactions.append(TransactionModel.model_validate(item))
        logger.info(
            "storage.loaded",
            extra={
                "path": str(self.path),
                "accounts": len(self._accounts),
                "transactions": len(self._transactions),
            },
        )

    def _dump(self) -> None:
        document = {
            "accounts": [a.model_dump(mode="json") for a in self._accounts.values()],
            "transactions": [t.model_dump(mode="json") for t in self._transactions],
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        tmp_path.write_text(json.dumps(document, indent=2), encoding="utf-8")
        os.replace(tmp_path, self.path)

    def _begin(self) -> None:
        super()._begin()
        self._dirty = False

    def _commit(self) -> None:
        if self._dirty:
            try:
                self._dump()
            except OSError:
                self._rollback()
                raise
        self._dirty = False
        super()._commit()

    def _rollback(self) -> None:
        self._dirty = False
        super()._rollback()

    def add_account(
        self, *, name: str, email: str, password_hash: str, balance: int
    ) -> AccountModel:
        self._dirty = True
        return super().add_account(
            name=name, email=email, password_hash=password_hash, balance=balance
        )

    def save_account(self, account: AccountModel) -> None:
        self._dirty = True
        super().save_account(account)

    def add_transaction(
        self,
        *,
        sender_id: int,
        sender_email: str,
        recipient_email: str,
        amount: int,
    ) -> TransactionModel:
        self._dirty = True
        return super().add_transaction(
            sender_id=sender_id,
            sender_email=sender_email,
            recipient_email=recipient_email,
            amount=amount,
        )


class SqlBankRepository(BankRepository):
    """Thin data access layer opening one SQLModel session per transaction."""

    def __init__(self, engine) -> None:
        super().__init__()
        self.engine = engine
        self._session: Optional[Session] = None
        init_db(engine)

    @property
    def session(self) -> Session:
        if self._session is None:
            raise RuntimeError("SqlBankRepository used outside of transaction()")
        return self._session

    def _begin(self) -> None:
        self._session = Session(self.engine, expire_on_commit=False)

    def _commit(self) -> None:
        try:
            self.session.commit()
        finally:
            self._close()

    def _rollback(self) -> None:
        try:
            self.session.rollback()
        finally:
            self._close()

    def _close(self) -> None:
        if self._session is not None:
            self._session.close()
            self._session = None

    # Account operations -------------------------------------------------
    def add_account(
        self, *, name: str, email: str, password_hash: str, balance: int
    ) -> AccountModel:
        account = AccountModel(
            name=name, email=email, password_hash=password_hash, balance=balance
        )
        self.session.add(account)
        self.session.flush()
        self.session.refresh(account)
        return account

    def get_account(self, account_id: int) -> Optional[AccountModel]:
        return self.session.get(AccountModel, account_id)

    def get_account_by_email(self, email: str) -> Optional[AccountModel]:
        stmt = select(AccountModel).where(AccountModel.email == email)
        return self.session.exec(stmt).first()

    def save_account(self, account: AccountModel) -> None:
        self.session.add(account)
        self.session.flush()

    # Transactions -------------------------------------------------------
    def add_transaction(
        self,
        *,
        sender_id: int,
        sender_email: str,
        recipient_email: str,
        amount: int,
    ) -> TransactionModel:
        record = TransactionModel(
            sender_id=sender_id,
            sender_email=sender_email,
            recipient_email=recipient_email,
            amount=amount,
        )
        self.session.add(record)
        self.session.flush()
        self.session.refresh(record)
        return record

    def list_transactions(self, account_id: int, email: str) -> list[TransactionModel]:
        stmt = (
            select(TransactionModel)
            .where(
                or_(
                    TransactionModel.sender_id == account_id,
                    TransactionModel.sender_email == email,
                    TransactionModel.recipient_email == email,
                )
            )
            .order_by(TransactionModel.id)
        )
        return list(self.session.exec(stmt))

    # Issued-token registry ----------------------------------------------
    def add_token(
        self,
        *,
        value: str,
        account_id: int,
        issued_at: datetime,
        expires_at: datetime,
    ) -> IssuedTokenModel:
        record = IssuedTokenModel(
            value=value,
            account_id=account_id,
            issued_at=issued_at,
            expires_at=expires_at,
        )
        self.session.add(record)
        self.session.flush()
        self.session.refresh(record)
        return record

    def get_token(self, value: str) -> Optional[IssuedTokenModel]:
        stmt = select(IssuedTokenModel).where(IssuedTokenModel.value == value)
        return self.session.exec(stmt).first()

    def prune_tokens(self, before: datetime) -> int:
        stmt = select(IssuedTokenModel).where(IssuedTokenModel.expires_at < before)
        expired = list(self.session.exec(stmt))
        for record in expired:
            self.session.delete(record)
        self.session.flush()
        return len(expired)

    # Idempotency store --------------------------------------------------
    def fetch_idempotency(
        self, route: str, key: str
    ) -> Optional[IdempotencyRecordModel]:
        stmt = (
            select(IdempotencyRecordModel)
            .where(IdempotencyRecordModel.route == route)
            .where(IdempotencyRecordModel.key == key)
        )
        return self.session.exec(stmt).first()

    def save_idempotency(
        self,
        *,
        route: str,
        key: str,
        signature: str,
        payload: str,
    ) -> None:
        record = IdempotencyRecordModel(
            route=route,
            key=key,
            request_signature=signature,
            response_payload=payload,
        )
        self.session.add(record)


def build_repository(settings: Settings) -> BankRepository:
    if settings.storage_backend == "json":
        repository: BankRepository = JsonFileBankRepository(settings.data_file)
    elif settings.storage_backend == "sql":
        repository = SqlBankRepository(create_engine_for_url(settings.database_url))
    else:
        repository = InMemoryBankRepository()
    logger.info(
        "storage.ready",
        extra={"backend": settings.storage_backend, "repository": type(repository).__name__},
    )
    return repository
