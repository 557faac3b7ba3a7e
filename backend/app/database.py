"""Engine, session factory and declarative base for the billing store."""

from __future__ import annotations

import os
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Generator, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import Session, declarative_base, sessionmaker

DEFAULT_SQLITE_PATH = Path(__file__).resolve().parent.parent / "billing.db"

DATABASE_URL_ENV = "DATABASE_URL"
REQUIRE_POSTGRES_ENV = "REQUIRE_POSTGRES"
POOL_SIZE_ENV = "DATABASE_POOL_SIZE"
POOL_MAX_OVERFLOW_ENV = "DATABASE_MAX_OVERFLOW"
POOL_TIMEOUT_ENV = "DATABASE_POOL_TIMEOUT"
POOL_RECYCLE_ENV = "DATABASE_POOL_RECYCLE"
CONNECT_TIMEOUT_ENV = "DATABASE_CONNECT_TIMEOUT"


def _read_int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer") from exc
    if value < 0:
        raise ValueError(f"{name} must be non-negative")
    return value


def _read_bool_env(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _is_sqlite(url: str) -> bool:
    return make_url(url).drivername.startswith("sqlite")


@dataclass(frozen=True)
class DatabaseSettings:
    """Connection settings; SQLite is only used when PostgreSQL is not required."""

    url: str
    pool_size: int = 5
    max_overflow: int = 10
    pool_timeout: int = 30
    pool_recycle: int = 1800
    connect_timeout: int = 10

    @classmethod
    def from_env(cls, raw_url: Optional[str] = None) -> "DatabaseSettings":
        require_postgres = _read_bool_env(REQUIRE_POSTGRES_ENV, False)
        raw_url = raw_url if raw_url is not None else os.getenv(DATABASE_URL_ENV)
        if not raw_url:
            if require_postgres:
                raise RuntimeError(
                    f"{DATABASE_URL_ENV} must point at PostgreSQL when {REQUIRE_POSTGRES_ENV}=1"
                )
            raw_url = f"sqlite:///{DEFAULT_SQLITE_PATH.as_posix()}"

        url = make_url(raw_url)
        if url.drivername.startswith("sqlite"):
            if require_postgres:
                raise RuntimeError(f"SQLite is not permitted when {REQUIRE_POSTGRES_ENV}=1")
            if url.database not in (None, "", ":memory:"):
                Path(url.database).parent.mkdir(parents=True, exist_ok=True)

        return cls(
            url=url.render_as_string(hide_password=False),
            pool_size=_read_int_env(POOL_SIZE_ENV, 5),
            max_overflow=_read_int_env(POOL_MAX_OVERFLOW_ENV, 10),
            pool_timeout=_read_int_env(POOL_TIMEOUT_ENV, 30),
            pool_recycle=_read_int_env(POOL_RECYCLE_ENV, 1800),
            connect_timeout=_read_int_env(CONNECT_TIMEOUT_ENV, 10),
        )

    def engine_options(self) -> dict[str, Any]:
        if _is_sqlite(self.url):
            return {"connect_args": {"check_same_thread": False}}
        return {
            "pool_pre_ping": True,
            "pool_size": self.pool_size,
            "max_overflow": self.max_overflow,
            "pool_timeout": self.pool_timeout,
            "pool_recycle": self.pool_recycle,
            "connect_args": {"connect_timeout": self.connect_timeout},
        }


DATABASE_SETTINGS = DatabaseSettings.from_env()
SQLALCHEMY_DATABASE_URL = DATABASE_SETTINGS.url

engine = create_engine(SQLALCHEMY_DATABASE_URL, **DATABASE_SETTINGS.engine_options())
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency yielding a request-scoped session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """Commit on success and roll back on error; used by CLI scripts."""
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
