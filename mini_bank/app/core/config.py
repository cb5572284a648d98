from __future__ import annotations

from functools import lru_cache
from typing import Literal, Optional

from pydantic import SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "Mini Bank API"
    log_level: str = "INFO"

    storage_backend: Literal["memory", "json", "sql"] = "memory"
    data_file: str = "bank_data.json"
    database_url: str = "sqlite:///mini_bank.db"

    jwt_secret: SecretStr
    jwt_algorithm: str = "HS256"
    session_ttl_seconds: int = 3600
    bcrypt_rounds: int = 12

    starting_balance: int = 1000

    cookie_name: str = "token"
    cookie_secure: bool = False
    cors_origins: list[str] = ["http://localhost:5173"]

    ai_api_url: str = "https://router.huggingface.co/v1/chat/completions"
    ai_api_key: Optional[SecretStr] = None
    ai_timeout_seconds: float = 30.0

    host: str = "0.0.0.0"
    port: int = 5000

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="BANK_",
        extra="ignore",
    )

    @field_validator("jwt_secret")
    @classmethod
    def _secret_not_blank(cls, value: SecretStr) -> SecretStr:
        if not value.get_secret_value().strip():
            raise ValueError("BANK_JWT_SECRET must not be blank")
        return value


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
