from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Optional
from uuid import uuid4

from jose import ExpiredSignatureError, JWTError, jwt

from ..core.errors import UnauthorizedError
from ..models import AccountModel
from .repository import BankRepository


logger = logging.getLogger(__name__)

DEFAULT_TTL = timedelta(hours=1)


@dataclass(frozen=True)
class IssuedSession:
    token: str
    expires_at: datetime


@dataclass(frozen=True)
class SessionClaims:
    account_id: int
    email: str


class SessionService:
    """Issues signed session tokens and checks them against the registry.

    A token is accepted only when its signature verifies, it has not
    expired, and it was recorded by ``issue``. ``issue`` drops entries that
    have already expired; live ones are never removed, so logging out (a
    client-side cookie clear) leaves a copied token usable until its
    natural expiry.
    """

    def __init__(
        self,
        repository: BankRepository,
        secret: str,
        algorithm: str = "HS256",
        ttl: timedelta = DEFAULT_TTL,
    ) -> None:
        self.repository = repository
        self._secret = secret
        self.algorithm = algorithm
        self.ttl = ttl

    def issue(self, account: AccountModel) -> IssuedSession:
        issued_at = datetime.now(UTC)
        expires_at = issued_at + self.ttl
        claims = {
            "cid": account.id,
            "email": account.email,
            "jti": uuid4().hex,
            "iat": issued_at,
            "exp": expires_at,
        }
        token = jwt.encode(claims, self._secret, algorithm=self.algorithm)

        with self.repository.transaction():
            pruned = self.repository.prune_tokens(issued_at)
            record = self.repository.add_token(
                value=token,
                account_id=account.id,
                issued_at=issued_at,
                expires_at=expires_at,
            )
        logger.info(
            "session.issued",
            extra={
                "account_id": account.id,
                "token_id": record.id,
                "pruned": pruned,
                "expires_at": expires_at.isoformat(),
            },
        )
        return IssuedSession(token=token, expires_at=expires_at)

    def validate(self, token: Optional[str]) -> SessionClaims:
        if not token:
            raise UnauthorizedError("Unauthorized: No token provided")

        try:
            claims = jwt.decode(token, self._secret, algorithms=[self.algorithm])
        except ExpiredSignatureError:
            logger.info("session.rejected", extra={"reason": "expired"})
            raise UnauthorizedError("Unauthorized: Token expired") from None
        except JWTError:
            logger.info("session.rejected", extra={"reason": "invalid"})
            raise UnauthorizedError("Unauthorized: Invalid token") from None

        account_id = claims.get("cid")
        email = claims.get("email")
        if not isinstance(account_id, int) or not isinstance(email, str):
            raise UnauthorizedError("Unauthorized: Invalid token")

        with self.repository.transaction():
            record = self.repository.get_token(token)
        if record is None or record.account_id != account_id:
            logger.info("session.rejected", extra={"reason": "unregistered"})
            raise UnauthorizedError("Unauthorized: Token not in DB")

        return SessionClaims(account_id=account_id, email=email)
