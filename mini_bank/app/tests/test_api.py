from datetime import timedelta

import pytest
from fastapi.testclient import TestClient
from jose import jwt

from ..core.config import get_settings
from ..core.dependencies import get_account_service
from ..main import app
from ..services import BankRepository, SessionService


def _register(client: TestClient, name: str, email: str, secret: str):
    return client.post("/api/register", json={"name": name, "email": email, "secret": secret})


def _login(client: TestClient, email: str, secret: str):
    return client.post("/api/login", json={"email": email, "secret": secret})


def _stored_balance(repository: BankRepository, email: str) -> int:
    with repository.transaction():
        return repository.get_account_by_email(email).balance


@pytest.fixture
def ada_and_bob(client: TestClient) -> TestClient:
    assert _register(client, "Ada", "ada@x.com", "pw1").status_code == 201
    assert _register(client, "Bob", "bob@x.com", "pw2").status_code == 201
    assert _login(client, "ada@x.com", "pw1").status_code == 200
    return client


def test_health(client: TestClient) -> None:
    assert client.get("/health").json() == {"status": "ok"}


def test_register_login_and_balance(client: TestClient) -> None:
    response = _register(client, "Ada", "ada@x.com", "pw1")
    assert response.status_code == 201
    body = response.json()
    assert body["message"] == "User registered successfully"
    assert body["user"] == {"id": 1, "name": "Ada", "email": "ada@x.com"}
    assert "password_hash" not in response.text
    assert "pw1" not in response.text

    login = _login(client, "ada@x.com", "pw1")
    assert login.status_code == 200
    assert login.json()["user"]["email"] == "ada@x.com"
    assert "token" in login.cookies
    assert "httponly" in login.headers["set-cookie"].lower()

    balance = client.get("/api/balance")
    assert balance.status_code == 200
    assert balance.json() == {"balance": 1000, "name": "Ada"}


def test_register_accepts_legacy_field_names(client: TestClient) -> None:
    response = client.post(
        "/api/register",
        json={"cname": "Carol", "email": "carol@x.com", "password": "pw3"},
    )
    assert response.status_code == 201
    assert _login(client, "carol@x.com", "pw3").status_code == 200


def test_register_duplicate_email(client: TestClient) -> None:
    _register(client, "Ada", "ada@x.com", "pw1")

    response = _register(client, "Someone Else", "ada@x.com", "different")
    assert response.status_code == 400
    assert response.json()["error"] == "DuplicateEmail"


@pytest.mark.parametrize(
    "payload",
    [
        {"email": "ada@x.com", "secret": "pw1"},
        {"name": "Ada", "secret": "pw1"},
        {"name": "Ada", "email": "not-an-email", "secret": "pw1"},
        {"name": "Ada", "email": "ada@x.com"},
    ],
)
def test_register_rejects_malformed_payload(client: TestClient, payload: dict) -> None:
    response = client.post("/api/register", json=payload)
    assert response.status_code == 400
    assert response.json()["error"] == "ValidationError"


def test_login_rejects_bad_credentials(client: TestClient) -> None:
    _register(client, "Ada", "ada@x.com", "pw1")

    wrong_secret = _login(client, "ada@x.com", "nope")
    unknown_email = _login(client, "ghost@x.com", "pw1")

    assert wrong_secret.status_code == 401
    assert unknown_email.status_code == 401
    assert wrong_secret.json() == unknown_email.json()
    assert "token" not in wrong_secret.cookies


def test_transfer_moves_funds_and_records_transaction(
    ada_and_bob: TestClient, repository: BankRepository
) -> None:
    client = ada_and_bob

    transfer = client.post("/api/transfer", json={"recipientEmail": "bob@x.com", "amount": 200})
    assert transfer.status_code == 200
    body = transfer.json()
    assert body["newBalance"] == 800
    assert body["transaction"]["amount"] == 200
    assert body["transaction"]["recipientEmail"] == "bob@x.com"

    assert client.get("/api/balance").json()["balance"] == 800
    history = client.get("/api/transactions").json()
    assert len(history) == 1
    assert history[0]["amount"] == 200
    assert history[0]["senderEmail"] == "ada@x.com"
    assert history[0]["type"] == "transfer"

    _login(client, "bob@x.com", "pw2")
    assert client.get("/api/balance").json() == {"balance": 1200, "name": "Bob"}
    assert [t["id"] for t in client.get("/api/transactions").json()] == [history[0]["id"]]
    assert _stored_balance(repository, "ada@x.com") == 800


def test_transfer_insufficient_funds_leaves_balances(
    ada_and_bob: TestClient, repository: BankRepository
) -> None:
    response = ada_and_bob.post(
        "/api/transfer", json={"recipientEmail": "bob@x.com", "amount": 1001}
    )

    assert response.status_code == 400
    assert response.json()["error"] == "InsufficientFunds"
    assert _stored_balance(repository, "ada@x.com") == 1000
    assert _stored_balance(repository, "bob@x.com") == 1000
    assert ada_and_bob.get("/api/transactions").json() == []


def test_transfer_unknown_recipient(ada_and_bob: TestClient, repository: BankRepository) -> None:
    response = ada_and_bob.post(
        "/api/transfer", json={"recipientEmail": "nobody@x.com", "amount": 10}
    )

    assert response.status_code == 404
    assert response.json()["error"] == "RecipientNotFound"
    assert _stored_balance(repository, "ada@x.com") == 1000


@pytest.mark.parametrize("amount", [0, -5, "lots"])
def test_transfer_rejects_invalid_amount(ada_and_bob: TestClient, amount) -> None:
    response = ada_and_bob.post(
        "/api/transfer", json={"recipientEmail": "bob@x.com", "amount": amount}
    )
    assert response.status_code == 400
    assert response.json()["error"] == "ValidationError"


def test_transfer_to_self_keeps_balance_and_records(
    ada_and_bob: TestClient, repository: BankRepository
) -> None:
    response = ada_and_bob.post(
        "/api/transfer", json={"recipientEmail": "ada@x.com", "amount": 100}
    )

    assert response.status_code == 200
    assert response.json()["newBalance"] == 1000
    assert _stored_balance(repository, "ada@x.com") == 1000
    history = ada_and_bob.get("/api/transactions").json()
    assert len(history) == 1
    assert history[0]["senderEmail"] == history[0]["recipientEmail"] == "ada@x.com"

    too_much = ada_and_bob.post(
        "/api/transfer", json={"recipientEmail": "ada@x.com", "amount": 1001}
    )
    assert too_much.status_code == 400
    assert too_much.json()["error"] == "InsufficientFunds"
    assert len(ada_and_bob.get("/api/transactions").json()) == 1


def test_transfer_idempotency_key_replays(
    ada_and_bob: TestClient, repository: BankRepository
) -> None:
    headers = {"Idempotency-Key": "ada-transfer-1"}
    payload = {"recipientEmail": "bob@x.com", "amount": 100}

    first = ada_and_bob.post("/api/transfer", json=payload, headers=headers)
    second = ada_and_bob.post("/api/transfer", json=payload, headers=headers)

    assert first.status_code == 200
    assert second.status_code == 200
    assert first.json() == second.json()
    assert _stored_balance(repository, "ada@x.com") == 900
    assert len(ada_and_bob.get("/api/transactions").json()) == 1

    mismatched = ada_and_bob.post(
        "/api/transfer",
        json={"recipientEmail": "bob@x.com", "amount": 50},
        headers=headers,
    )
    assert mismatched.status_code == 409
    assert _stored_balance(repository, "ada@x.com") == 900


@pytest.mark.parametrize(
    "method, path",
    [("get", "/api/balance"), ("post", "/api/transfer"), ("get", "/api/transactions")],
)
def test_protected_routes_require_token(client: TestClient, method: str, path: str) -> None:
    kwargs = {"json": {"recipientEmail": "bob@x.com", "amount": 1}} if method == "post" else {}
    response = getattr(client, method)(path, **kwargs)

    assert response.status_code == 401
    assert response.json()["error"] == "Unauthorized"


def test_tampered_tokens_are_rejected(ada_and_bob: TestClient) -> None:
    token = ada_and_bob.cookies["token"]
    header, _, signature = token.split(".")
    forged_claims = jwt.encode({"cid": 2, "email": "bob@x.com"}, "guess").split(".")[1]
    tampered = [
        f"{header}.{forged_claims}.{signature}",
        jwt.encode({"cid": 1, "email": "ada@x.com"}, "wrong-secret"),
        "not-a-jwt",
    ]
    ada_and_bob.cookies.clear()

    for value in tampered:
        headers = {"Authorization": f"Bearer {value}"}
        assert ada_and_bob.get("/api/balance", headers=headers).status_code == 401
        assert ada_and_bob.get("/api/transactions", headers=headers).status_code == 401
        transfer = ada_and_bob.post(
            "/api/transfer",
            json={"recipientEmail": "bob@x.com", "amount": 1},
            headers=headers,
        )
        assert transfer.status_code == 401


@pytest.mark.parametrize(
    "method, path",
    [("get", "/api/balance"), ("post", "/api/transfer"), ("get", "/api/transactions")],
)
def test_expired_token_is_rejected_on_protected_routes(
    ada_and_bob: TestClient, repository: BankRepository, method: str, path: str
) -> None:
    expired_issuer = SessionService(
        repository,
        secret=get_settings().jwt_secret.get_secret_value(),
        ttl=timedelta(seconds=-10),
    )
    with repository.transaction():
        ada = repository.get_account_by_email("ada@x.com")
    stale = expired_issuer.issue(ada).token

    payload = {"recipientEmail": "bob@x.com", "amount": 300}
    assert ada_and_bob.post("/api/transfer", json=payload).status_code == 200

    ada_and_bob.cookies.clear()
    kwargs = {"json": payload} if method == "post" else {}
    retry = getattr(ada_and_bob, method)(
        path, headers={"Authorization": f"Bearer {stale}"}, **kwargs
    )
    assert retry.status_code == 401
    assert retry.json()["detail"] == "Unauthorized: Token expired"
    assert _stored_balance(repository, "ada@x.com") == 700
    assert _stored_balance(repository, "bob@x.com") == 1300


def test_unregistered_token_is_rejected(ada_and_bob: TestClient) -> None:
    settings = get_settings()
    unregistered = jwt.encode(
        {"cid": 1, "email": "ada@x.com"},
        settings.jwt_secret.get_secret_value(),
        algorithm=settings.jwt_algorithm,
    )
    ada_and_bob.cookies.clear()

    response = ada_and_bob.get(
        "/api/balance", headers={"Authorization": f"Bearer {unregistered}"}
    )
    assert response.status_code == 401
    assert response.json()["detail"] == "Unauthorized: Token not in DB"


def test_logout_clears_cookie_but_token_stays_valid(ada_and_bob: TestClient) -> None:
    token = ada_and_bob.cookies["token"]

    logout = ada_and_bob.post("/api/logout")
    assert logout.status_code == 200
    assert logout.json() == {"message": "Logged out successfully"}
    assert ada_and_bob.get("/api/balance").status_code == 401

    # The registry entry survives logout until the token expires.
    replay = ada_and_bob.get("/api/balance", headers={"Authorization": f"Bearer {token}"})
    assert replay.status_code == 200


def test_unexpected_errors_return_generic_500() -> None:
    def _broken_account_service():
        raise RuntimeError("database password is hunter2")

    app.dependency_overrides[get_account_service] = _broken_account_service
    try:
        with TestClient(app, raise_server_exceptions=False) as client:
            response = _register(client, "Ada", "ada@x.com", "pw1")
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 500
    assert response.json() == {"error": "InternalError", "detail": "Internal server error"}
