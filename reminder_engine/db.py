from __future__ import annotations

from collections.abc import Generator
from typing import Any

from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from reminder_engine.settings import get_settings


class Base(DeclarativeBase):
    pass


def _engine_connect_args(database_url: str) -> dict[str, Any]:
    settings = get_settings()
    if database_url.startswith("postgresql"):
        return {
            "connect_timeout": 10,
            "options": f"-c statement_timeout={max(0, int(settings.db_statement_timeout_ms))}",
        }
    return {}


def build_engine(database_url: str | None = None):
    url = database_url or get_settings().database_url
    return create_engine(
        url,
        pool_pre_ping=True,
        connect_args=_engine_connect_args(url),
    )


engine = build_engine()
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
