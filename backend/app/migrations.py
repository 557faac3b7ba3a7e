"""Bring the billing schema to the Alembic head before the API serves requests."""

from __future__ import annotations

import errno
import logging
import os
import sys
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Iterator, Optional, Sequence

from alembic import command
from alembic.config import Config
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory
from sqlalchemy import create_engine, inspect
from sqlalchemy.engine import Engine
from sqlalchemy.engine.reflection import Inspector

from .database import DATABASE_URL_ENV, SQLALCHEMY_DATABASE_URL

LOGGER = logging.getLogger(__name__)

BACKEND_DIR = Path(__file__).resolve().parent.parent
LOCK_FILENAME = ".alembic-migration.lock"
LOCK_RETRY_DELAY = 0.25
LOCK_TIMEOUT_ENV = "ALEMBIC_MIGRATION_LOCK_TIMEOUT"
DEFAULT_LOCK_TIMEOUT = 30.0

if os.name == "posix":  # pragma: no cover - platform specific
    import fcntl
else:  # pragma: no cover - platform specific
    import msvcrt

RevisionSentinel = tuple[str, Callable[[Inspector], bool]]


def _has_column(inspector: Inspector, table_name: str, column_name: str) -> bool:
    return inspector.has_table(table_name) and column_name in {
        column["name"] for column in inspector.get_columns(table_name)
    }


def _has_index(inspector: Inspector, table_name: str, index_name: str) -> bool:
    return inspector.has_table(table_name) and index_name in {
        index["name"] for index in inspector.get_indexes(table_name)
    }


# Newest first: a schema created with ``Base.metadata.create_all`` matches the
# first entry and is stamped instead of migrated.
REVISION_SENTINELS: Sequence[RevisionSentinel] = (
    (
        "20261018_0002",
        lambda inspector: (
            _has_column(inspector, "charges", "current_reading")
            and _has_column(inspector, "billing_configs", "rate_per_m3_cents")
        ),
    ),
    (
        "20261018_0001",
        lambda inspector: (
            inspector.has_table("charges")
            and _has_column(inspector, "units", "version")
            and _has_index(inspector, "payments", "ix_payments_unit_id")
        ),
    ),
)


def detect_schema_revision(inspector: Inspector) -> Optional[str]:
    """Return the newest revision whose objects already exist, if any."""

    for revision, matches in REVISION_SENTINELS:
        if matches(inspector):
            return revision
    return None


def current_revision(engine: Engine) -> Optional[str]:
    with engine.connect() as connection:
        return MigrationContext.configure(connection).get_current_revision()


def _lock_timeout() -> float:
    raw = os.getenv(LOCK_TIMEOUT_ENV)
    if not raw:
        return DEFAULT_LOCK_TIMEOUT
    try:
        value = float(raw)
    except ValueError:
        value = 0.0
    if value <= 0:
        LOGGER.warning(
            "Ignoring %s=%r; waiting %.1f seconds for the migration lock",
            LOCK_TIMEOUT_ENV,
            raw,
            DEFAULT_LOCK_TIMEOUT,
        )
        return DEFAULT_LOCK_TIMEOUT
    return value


def _lock_is_busy(error: OSError) -> bool:
    if isinstance(error, BlockingIOError):
        return True
    if getattr(error, "errno", None) in {errno.EACCES, errno.EAGAIN, errno.EBUSY}:
        return True
    # Windows lock and sharing violations.
    return getattr(error, "winerror", None) in {32, 33}


def _try_lock(handle) -> None:
    if os.name == "posix":  # pragma: no cover - platform specific
        fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
    else:  # pragma: no cover - platform specific
        msvcrt.locking(handle.fileno(), msvcrt.LK_NBLCK, 1)


def _unlock(handle) -> None:
    try:
        if os.name == "posix":  # pragma: no cover - platform specific
            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
        else:  # pragma: no cover - platform specific
            msvcrt.locking(handle.fileno(), msvcrt.LK_UNLCK, 1)
    except OSError:  # pragma: no cover - the lock dies with the handle anyway
        LOGGER.debug("Migration lock already released")


@contextmanager
def migration_lock(path: Path, *, timeout: float) -> Iterator[None]:
    """Serialise migrations across worker processes sharing ``path``."""

    path.parent.mkdir(parents=True, exist_ok=True)
    deadline = time.monotonic() + timeout
    with path.open("a+") as handle:
        while True:
            try:
                _try_lock(handle)
                break
            except OSError as error:
                if not _lock_is_busy(error):
                    raise
                if time.monotonic() >= deadline:
                    raise TimeoutError("Timed out waiting for the migration lock") from error
                time.sleep(LOCK_RETRY_DELAY)
        try:
            yield
        finally:
            _unlock(handle)


def alembic_config(database_url: str) -> Config:
    config = Config(str(BACKEND_DIR / "alembic.ini"))
    config.set_main_option("script_location", str(BACKEND_DIR / "alembic"))
    config.set_main_option("sqlalchemy.url", database_url)
    return config


def _bring_to_head(config: Config, engine: Engine) -> None:
    inspector = inspect(engine)
    if inspector.has_table("alembic_version"):
        command.upgrade(config, "head")
        return

    if not [name for name in inspector.get_table_names() if name != "alembic_version"]:
        LOGGER.info("Empty database; creating the billing schema")
        command.upgrade(config, "head")
        return

    detected = detect_schema_revision(inspector)
    if detected is None:
        LOGGER.info("Unversioned tables without billing objects; running every migration")
        command.upgrade(config, "head")
        return

    LOGGER.info("Existing billing schema matches revision %s; stamping it", detected)
    command.stamp(config, detected)
    if detected != ScriptDirectory.from_config(config).get_current_head():
        command.upgrade(config, "head")


def run_database_migrations() -> Optional[str]:
    """Migrate the configured database and return the resulting revision."""

    # env.py imports ``app.*`` relative to the backend directory.
    if str(BACKEND_DIR) not in sys.path:
        sys.path.insert(0, str(BACKEND_DIR))

    database_url = os.getenv(DATABASE_URL_ENV) or SQLALCHEMY_DATABASE_URL
    config = alembic_config(database_url)
    connect_args = {"check_same_thread": False} if database_url.startswith("sqlite") else {}

    with migration_lock(BACKEND_DIR / LOCK_FILENAME, timeout=_lock_timeout()):
        engine = create_engine(database_url, connect_args=connect_args)
        try:
            before = current_revision(engine)
            _bring_to_head(config, engine)
            after = current_revision(engine)
        finally:
            engine.dispose()

    if before != after:
        LOGGER.info("Database migrated from %s to %s", before or "<unversioned>", after)
    else:
        LOGGER.debug("Database already at revision %s", after)
    return after
