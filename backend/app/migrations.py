"""Bring the ledger schema to the Alembic head before the API serves requests."""

from __future__ import annotations

import errno
import logging
import os
import time
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional, Sequence

from alembic import command
from alembic.config import Config
from alembic.script import ScriptDirectory
from sqlalchemy import create_engine, inspect
from sqlalchemy.engine.reflection import Inspector

from .database import SQLALCHEMY_DATABASE_URL

LOGGER = logging.getLogger(__name__)

BACKEND_DIR = Path(__file__).resolve().parent.parent
LOCK_PATH = BACKEND_DIR / ".alembic-migration.lock"
LOCK_POLL_SECONDS = 0.25
LOCK_TIMEOUT_ENV = "ALEMBIC_MIGRATION_LOCK_TIMEOUT"
DEFAULT_LOCK_TIMEOUT = 30.0

if os.name == "posix":  # pragma: no cover - platform specific
    import fcntl
else:  # pragma: no cover - platform specific
    import msvcrt


@dataclass(frozen=True)
class SchemaSentinel:
    """Tables and columns whose presence proves a database is at ``revision``."""

    revision: str
    tables: tuple[str, ...] = ()
    columns: tuple[tuple[str, str], ...] = ()

    def matches(self, inspector: Inspector) -> bool:
        if not all(inspector.has_table(table) for table in self.tables):
            return False
        for table, column in self.columns:
            if not inspector.has_table(table):
                return False
            if column not in {item["name"] for item in inspector.get_columns(table)}:
                return False
        return True


# newest revision first
SCHEMA_SENTINELS: Sequence[SchemaSentinel] = (
    SchemaSentinel(
        "20261019_0002",
        tables=("billing_profiles", "payment_credit_transfers"),
        columns=(("payment_credit_transfers", "target_payment_id"),),
    ),
    SchemaSentinel(
        "20261019_0001",
        tables=("billing_profiles", "ledger_audit_entries"),
        columns=(("charges", "period_year"), ("payments", "unapplied_amount")),
    ),
)


def detect_revision(inspector: Inspector) -> Optional[str]:
    """Return the newest revision whose sentinel matches an unversioned schema."""

    for sentinel in SCHEMA_SENTINELS:
        if sentinel.matches(inspector):
            return sentinel.revision
    return None


def lock_timeout() -> float:
    raw = os.getenv(LOCK_TIMEOUT_ENV)
    if not raw:
        return DEFAULT_LOCK_TIMEOUT
    try:
        value = float(raw)
    except ValueError:
        LOGGER.warning("Ignoring invalid %s=%r", LOCK_TIMEOUT_ENV, raw)
        return DEFAULT_LOCK_TIMEOUT
    if value <= 0:
        LOGGER.warning("Ignoring non-positive %s=%r", LOCK_TIMEOUT_ENV, raw)
        return DEFAULT_LOCK_TIMEOUT
    return value


def _lock_is_held_elsewhere(error: OSError) -> bool:
    if isinstance(error, BlockingIOError):
        return True
    if getattr(error, "errno", None) in {errno.EACCES, errno.EAGAIN, errno.EBUSY}:
        return True
    # Windows lock and sharing violations
    return getattr(error, "winerror", None) in {32, 33}


def _lock_file(handle) -> None:
    if os.name == "posix":  # pragma: no cover - platform specific
        fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
    else:  # pragma: no cover - platform specific
        msvcrt.locking(handle.fileno(), msvcrt.LK_NBLCK, 1)


def _unlock_file(handle) -> None:
    try:
        if os.name == "posix":  # pragma: no cover - platform specific
            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
        else:  # pragma: no cover - platform specific
            msvcrt.locking(handle.fileno(), msvcrt.LK_UNLCK, 1)
    except OSError:  # pragma: no cover - the lock dies with the handle anyway
        LOGGER.debug("Migration lock was already released", exc_info=True)


@contextmanager
def migration_lock(path: Path = LOCK_PATH, *, timeout: Optional[float] = None) -> Iterator[None]:
    """Serialize migrations across API workers sharing the same checkout."""

    deadline = time.monotonic() + (timeout if timeout is not None else lock_timeout())
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a+") as handle:
        while True:
            try:
                _lock_file(handle)
                break
            except OSError as error:
                if not _lock_is_held_elsewhere(error):
                    raise
                if time.monotonic() >= deadline:
                    raise TimeoutError("Timed out waiting for the migration lock") from error
                time.sleep(LOCK_POLL_SECONDS)
        LOGGER.debug("Holding migration lock at %s", path)
        try:
            yield
        finally:
            _unlock_file(handle)


def alembic_config(database_url: str) -> Config:
    config = Config(str(BACKEND_DIR / "alembic.ini"))
    config.set_main_option("script_location", str(BACKEND_DIR / "alembic"))
    config.set_main_option("sqlalchemy.url", database_url)
    return config


def _inspect_schema(database_url: str) -> tuple[set[str], Optional[str]]:
    connect_args = {"check_same_thread": False} if database_url.startswith("sqlite") else {}
    engine = create_engine(database_url, connect_args=connect_args)
    try:
        inspector = inspect(engine)
        tables = set(inspector.get_table_names())
        detected = None if "alembic_version" in tables else detect_revision(inspector)
        return tables, detected
    finally:
        engine.dispose()


def run_database_migrations(database_url: Optional[str] = None) -> None:
    """Upgrade the database to head, stamping schemas created without Alembic first."""

    url = database_url or os.getenv("DATABASE_URL") or SQLALCHEMY_DATABASE_URL
    config = alembic_config(url)
    head = ScriptDirectory.from_config(config).get_current_head()

    with migration_lock():
        tables, detected = _inspect_schema(url)
        if "alembic_version" in tables or not tables:
            LOGGER.info("Upgrading ledger schema to %s", head)
            command.upgrade(config, "head")
            return

        if detected is None:
            LOGGER.info("Unversioned database without ledger tables; running full upgrade")
            command.upgrade(config, "head")
            return

        LOGGER.info("Stamping unversioned ledger schema as %s", detected)
        command.stamp(config, detected)
        if detected != head:
            command.upgrade(config, "head")
