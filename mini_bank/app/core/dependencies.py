from datetime import timedelta
from functools import lru_cache
from typing import Optional

from fastapi import Depends, Header, Request
from passlib.context import CryptContext

from ..services import (
    AccountService,
    BankRepository,
    ChatRelay,
    LedgerService,
    SessionClaims,
    SessionService,
    build_password_context,
    build_repository,
)
from .config import Settings, get_settings

@lru_cache(maxsize=1)
def get_repository() -> BankRepository:
    return build_repository(get_settings())

@lru_cache(maxsize=1)
def get_password_context() -> CryptContext:
    return build_password_context(get_settings().bcrypt_rounds)

def get_account_service(
    repository: BankRepository = Depends(get_repository),
    pwd_context: CryptContext = Depends(get_password_context),
    settings: Settings = Depends(get_settings),
) -> AccountService:
    return AccountService(repository, pwd_context, starting_balance=settings.starting_balance)

def get_session_service(
    repository: BankRepository = Depends(get_repository),
    settings: Settings = Depends(get_settings),
) -> SessionService:
    return SessionService(
        repository,
        secret=settings.jwt_secret.get_secret_value(),
        algorithm=settings.jwt_algorithm,
        ttl=timedelta(seconds=settings.session_ttl_seconds),
    )

def get_ledger_service(
    repository: BankRepository = Depends(get_repository),
    accounts: AccountService = Depends(get_account_service),
) -> LedgerService:
    return LedgerService(repository, accounts)

def get_chat_relay(settings: Settings = Depends(get_settings)) -> ChatRelay:
    api_key = settings.ai_api_key.get_secret_value() if settings.ai_api_key else None
    return ChatRelay(settings.ai_api_url, api_key=api_key, timeout=settings.ai_timeout_seconds)

def get_current_session(
    request: Request,
    authorization: Optional[str] = Header(default=None),
    sessions: SessionService = Depends(get_session_service),
    settings: Settings = Depends(get_settings),
) -> SessionClaims:
    token = request.cookies.get(settings.cookie_name)
    if not token and authorization and authorization.lower().startswith("bearer "):
        token = authorization.split(" ", 1)[1].strip()
    return sessions.validate(token)
