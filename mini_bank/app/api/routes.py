from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, Header, Response, status
from fastapi.responses import JSONResponse

from ..core.config import Settings, get_settings
from ..core.dependencies import (
    get_account_service,
    get_chat_relay,
    get_current_session,
    get_ledger_service,
    get_session_service,
)
from ..models import (
    AuthResponse,
    BalanceResponse,
    LoginRequest,
    MessageResponse,
    RegisterRequest,
    TransactionResponse,
    TransferRequest,
    TransferResponse,
)
from ..services import (
    AccountService,
    ChatRelay,
    LedgerService,
    SessionClaims,
    SessionService,
)


auth_router = APIRouter(prefix="/api", tags=["auth"])

@auth_router.post("/register", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
def register(
    payload: RegisterRequest,
    accounts: AccountService = Depends(get_account_service),
) -> AuthResponse:
    account = accounts.create(payload.name, payload.email, payload.password)
    return AuthResponse(message="User registered successfully", user=accounts.summary(account))

@auth_router.post("/login", response_model=AuthResponse)
def login(
    payload: LoginRequest,
    response: Response,
    accounts: AccountService = Depends(get_account_service),
    sessions: SessionService = Depends(get_session_service),
    settings: Settings = Depends(get_settings),
) -> AuthResponse:
    account = accounts.authenticate(payload.email, payload.password)
    issued = sessions.issue(account)
    response.set_cookie(
        key=settings.cookie_name,
        value=issued.token,
        max_age=settings.session_ttl_seconds,
        httponly=True,
        secure=settings.cookie_secure,
        samesite="lax",
    )
    return AuthResponse(message="Login successful", user=accounts.summary(account))

@auth_router.post("/logout", response_model=MessageResponse)
def logout(
    response: Response,
    settings: Settings = Depends(get_settings),
) -> MessageResponse:
    response.delete_cookie(
        key=settings.cookie_name,
        httponly=True,
        secure=settings.cookie_secure,
        samesite="lax",
    )
    return MessageResponse(message="Logged out successfully")

banking_router = APIRouter(prefix="/api", tags=["banking"])

@banking_router.get("/balance", response_model=BalanceResponse)
def get_balance(
    session: SessionClaims = Depends(get_current_session),
    accounts: AccountService = Depends(get_account_service),
) -> BalanceResponse:
    return accounts.balance(session.account_id)

@banking_router.post("/transfer", response_model=TransferResponse)
def create_transfer(
    payload: TransferRequest,
    session: SessionClaims = Depends(get_current_session),
    ledger: LedgerService = Depends(get_ledger_service),
    idempotency_key: Optional[str] = Header(
        default=None, convert_underscores=False, alias="Idempotency-Key"
    ),
) -> TransferResponse:
    return ledger.transfer(
        session.account_id,
        payload.recipient_email,
        payload.amount,
        idempotency_key=idempotency_key,
    )

@banking_router.get("/transactions", response_model=list[TransactionResponse])
def list_transactions(
    session: SessionClaims = Depends(get_current_session),
    ledger: LedgerService = Depends(get_ledger_service),
) -> list[TransactionResponse]:
    return ledger.history_for(session.account_id, session.email)

ai_router = APIRouter(prefix="/api/ai", tags=["ai"])

@ai_router.post("/chat")
async def relay_chat(
    payload: dict[str, Any] = Body(...),
    relay: ChatRelay = Depends(get_chat_relay),
) -> JSONResponse:
    data = await relay.complete(payload)
    return JSONResponse(content=data)

__all__ = ["auth_router", "banking_router", "ai_router"]
