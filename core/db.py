from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from enum import Enum
from pathlib import Path
from typing import Iterator, Optional

__all__ = [
    "DEFAULT_BUSY_TIMEOUT_MS",
    "TransactionStateError",
    "UnitOfWork",
    "UnitOfWorkState",
    "connect",
    "configure_connection",
    "transaction",
    "unit_of_work",
]

LOGGER = logging.getLogger("slidesync.db")

DEFAULT_BUSY_TIMEOUT_MS = 5000


def connect(
    db_path: str | Path,
    *,
    read_only: bool = False,
    timeout: float = 5.0,
    detect_types: int = 0,
    isolation_level: Optional[str] = None,
    check_same_thread: bool = False,
) -> sqlite3.Connection:
    """Return a configured SQLite connection with sane defaults."""

    path = Path(db_path)
    if read_only:
        uri = f"file:{path.resolve().as_posix()}?mode=ro"
        conn = sqlite3.connect(
            uri,
            uri=True,
            timeout=timeout,
            detect_types=detect_types,
            isolation_level=isolation_level,
            check_same_thread=check_same_thread,
        )
    else:
        path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(
            str(path),
            timeout=timeout,
            detect_types=detect_types,
            isolation_level=isolation_level,
            check_same_thread=check_same_thread,
        )
    configure_connection(conn, enable_wal=not read_only)
    return conn


def configure_connection(conn: sqlite3.Connection, *, enable_wal: bool = True) -> None:
    conn.execute(f"PRAGMA busy_timeout={int(DEFAULT_BUSY_TIMEOUT_MS)}")
    if enable_wal:
        try:
            conn.execute("PRAGMA journal_mode=WAL")
        except sqlite3.DatabaseError:
            LOGGER.debug("WAL journal mode unavailable")
    conn.execute("PRAGMA foreign_keys=ON")


@contextmanager
def transaction(conn: sqlite3.Connection) -> Iterator[sqlite3.Connection]:
    try:
        conn.execute("BEGIN IMMEDIATE")
        yield conn
    except Exception:
        conn.rollback()
        raise
    else:
        conn.commit()


# ---------------------------------------------------------------------------
# Unit of work


class TransactionStateError(RuntimeError):
    """Raised when a closed unit of work is used again."""


class UnitOfWorkState(str, Enum):
    OPEN = "open"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


class UnitOfWork:
    """Explicit session over one SQLite transaction.

    The session starts ``open``; exactly one of :meth:`commit` or
    :meth:`rollback` moves it to its final state. Statements issued after
    that raise :class:`TransactionStateError`.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn
        self._conn.execute("BEGIN IMMEDIATE")
        self._state = UnitOfWorkState.OPEN

    @property
    def state(self) -> UnitOfWorkState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state is UnitOfWorkState.OPEN

    def _ensure_open(self) -> None:
        if self._state is not UnitOfWorkState.OPEN:
            raise TransactionStateError(f"unit of work already {self._state.value}")

    def execute(self, sql: str, params: tuple | list = ()) -> sqlite3.Cursor:
        self._ensure_open()
        return self._conn.execute(sql, params)

    def executemany(self, sql: str, rows) -> sqlite3.Cursor:
        self._ensure_open()
        return self._conn.executemany(sql, rows)

    def commit(self) -> None:
        self._ensure_open()
        self._conn.commit()
        self._state = UnitOfWorkState.COMMITTED

    def rollback(self) -> None:
        self._ensure_open()
        self._conn.rollback()
        self._state = UnitOfWorkState.ROLLED_BACK


@contextmanager
def unit_of_work(conn: sqlite3.Connection) -> Iterator[UnitOfWork]:
    """Yield a :class:`UnitOfWork`; commit on clean exit, roll back on error.

    A body that already committed or rolled back explicitly is left alone.
    """

    uow = UnitOfWork(conn)
    try:
        yield uow
    except BaseException:
        if uow.is_open:
            uow.rollback()
        raise
    else:
        if uow.is_open:
            uow.commit()
