from __future__ import annotations

from typing import Any

from sqlmodel import SQLModel, create_engine

from ..models import db as _db_models  # noqa: F401 - ensure models register with metadata


def create_engine_for_url(database_url: str):
    connect_args: dict[str, Any] = {}
    if database_url.startswith("sqlite"):
        connect_args = {"check_same_thread": False}
    return create_engine(database_url, echo=False, connect_args=connect_args)


def init_db(engine) -> None:
    SQLModel.metadata.create_all(engine)
