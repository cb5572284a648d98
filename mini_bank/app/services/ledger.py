from __future__ import annotations

import json
import logging
from typing import Any, Optional, Tuple

from ..core.errors import (
    BankError,
    DuplicateIdempotencyKeyError,
    InvalidInputError,
    RecipientNotFoundError,
)
from ..models import TransactionModel, TransactionResponse, TransferResponse
from .accounts import AccountService
from .repository import BankRepository


logger = logging.getLogger(__name__)


class LedgerService:
    def __init__(self, repository: BankRepository, accounts: AccountService) -> None:
        self.repository = repository
        self.accounts = accounts

    # ------------------------------------------------------------------
    # Helper utilities
    # ------------------------------------------------------------------
    def _encode_signature(self, signature: Tuple[Any, ...]) -> str:
        return json.dumps(signature, sort_keys=True)

    def _check_idempotency(
        self,
        route: str,
        idempotency_key: str,
        request_signature: Tuple[Any, ...],
    ) -> Optional[str]:
        record = self.repository.fetch_idempotency(route, idempotency_key)
        if record is None:
            return None

        if record.request_signature != self._encode_signature(request_signature):
            raise DuplicateIdempotencyKeyError(
                "Idempotency key was previously used with different parameters"
            )

        return record.response_payload

    def _record_idempotent(
        self,
        route: str,
        idempotency_key: str,
        request_signature: Tuple[Any, ...],
        response: TransferResponse,
    ) -> None:
        self.repository.save_idempotency(
            route=route,
            key=idempotency_key,
            signature=self._encode_signature(request_signature),
            payload=response.model_dump_json(),
        )

    def _transaction_to_response(self, record: TransactionModel) -> TransactionResponse:
        return TransactionResponse(
            id=record.id,
            sender_id=record.sender_id,
            sender_email=record.sender_email,
            recipient_email=record.recipient_email,
            amount=record.amount,
            timestamp=record.timestamp,
            type=record.type,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def transfer(
        self,
        sender_id: int,
        recipient_email: str,
        amount: int,
        idempotency_key: Optional[str] = None,
    ) -> TransferResponse:
        """Move ``amount`` from the sender to the account owning ``recipient_email``.

        The debit, the credit and the transaction record commit together; any
        failure leaves both balances untouched. A repeated ``idempotency_key``
        from the same sender returns the first response without moving money
        again.
        """
        recipient_email = recipient_email.strip()
        route = f"transfer:{sender_id}"
        request_signature = ("transfer", sender_id, recipient_email, amount)

        try:
            if amount <= 0:
                raise InvalidInputError("Amount must be a positive number")

            with self.repository.transaction():
                if idempotency_key:
                    cached = self._check_idempotency(
                        route, idempotency_key, request_signature
                    )
                    if cached is not None:
                        logger.info(
                            "idempotent.transfer.hit",
                            extra={"sender_id": sender_id, "idempotency_key": idempotency_key},
                        )
                        return TransferResponse.model_validate_json(cached)

                sender = self.accounts.get(sender_id)
                recipient = self.repository.get_account_by_email(recipient_email)
                if recipient is None:
                    raise RecipientNotFoundError("Recipient not found")

                sender = self.accounts.adjust_balance(sender.id, -amount)
                self.accounts.adjust_balance(recipient.id, amount)
                record = self.repository.add_transaction(
                    sender_id=sender.id,
                    sender_email=sender.email,
                    recipient_email=recipient.email,
                    amount=amount,
                )

                response = TransferResponse(
                    new_balance=sender.balance,
                    transaction=self._transaction_to_response(record),
                )
                if idempotency_key:
                    self._record_idempotent(
                        route, idempotency_key, request_signature, response
                    )
        except BankError as exc:
            logger.info(
                "ledger.transfer.rejected",
                extra={"sender_id": sender_id, "amount": amount, "reason": exc.code},
            )
            raise

        logger.info(
            "ledger.transfer",
            extra={
                "transaction_id": response.transaction.id,
                "sender_id": sender_id,
                "amount": amount,
                "balance": response.new_balance,
            },
        )
        return response

    def history_for(self, account_id: int, email: str) -> list[TransactionResponse]:
        """Transfers the account sent or received, oldest first."""
        with self.repository.transaction():
            records = self.repository.list_transactions(account_id, email)
            return [self._transaction_to_response(record) for record in records]
