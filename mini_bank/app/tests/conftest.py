import os

os.environ.setdefault("BANK_JWT_SECRET", "test-signing-secret")
os.environ["BANK_BCRYPT_ROUNDS"] = "4"
os.environ["BANK_STORAGE_BACKEND"] = "memory"

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from ..core.config import get_settings  # noqa: E402
from ..core.db import create_engine_for_url  # noqa: E402
from ..core.dependencies import get_repository  # noqa: E402
from ..main import app  # noqa: E402
from ..services import (  # noqa: E402
    AccountService,
    BankRepository,
    InMemoryBankRepository,
    JsonFileBankRepository,
    LedgerService,
    SessionService,
    SqlBankRepository,
    build_password_context,
)


@pytest.fixture(params=["memory", "json", "sql"])
def repository(request, tmp_path) -> BankRepository:
    if request.param == "json":
        return JsonFileBankRepository(tmp_path / "bank.json")
    if request.param == "sql":
        engine = create_engine_for_url(f"sqlite:///{tmp_path / 'test.db'}")
        return SqlBankRepository(engine)
    return InMemoryBankRepository()


@pytest.fixture
def client(repository: BankRepository) -> TestClient:
    app.dependency_overrides[get_repository] = lambda: repository

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


@pytest.fixture(scope="session")
def pwd_context():
    return build_password_context(rounds=4)


@pytest.fixture
def accounts(repository: BankRepository, pwd_context) -> AccountService:
    return AccountService(repository, pwd_context, starting_balance=1000)


@pytest.fixture
def sessions(repository: BankRepository) -> SessionService:
    return SessionService(repository, secret=get_settings().jwt_secret.get_secret_value())


@pytest.fixture
def ledger(repository: BankRepository, accounts: AccountService) -> LedgerService:
    return LedgerService(repository, accounts)
