from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from core.db import UnitOfWork, connect, transaction, unit_of_work

LOGGER = logging.getLogger("slidesync.cache")

SCHEMA = """
CREATE TABLE IF NOT EXISTS files (
    file_path TEXT NOT NULL UNIQUE,
    hash TEXT NOT NULL UNIQUE
);

CREATE TABLE IF NOT EXISTS pdf_extracted_pages_dirs (
    pdf_hash TEXT PRIMARY KEY NOT NULL,
    dir TEXT NOT NULL,
    finished INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS videos (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    video_hash TEXT NOT NULL UNIQUE,
    finished INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS videos_pdfs (
    video_id INTEGER NOT NULL REFERENCES videos(id) ON DELETE CASCADE,
    pdf_hash TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_videos_pdfs_pdf ON videos_pdfs(pdf_hash);
CREATE INDEX IF NOT EXISTS idx_videos_pdfs_video ON videos_pdfs(video_id);

CREATE TABLE IF NOT EXISTS videos_mapping (
    video_id INTEGER NOT NULL REFERENCES videos(id) ON DELETE CASCADE,
    video_ms INTEGER NOT NULL,
    pdf_hash TEXT NULL,
    page INTEGER NULL
);
CREATE INDEX IF NOT EXISTS idx_videos_mapping_video ON videos_mapping(video_id, video_ms);
"""


def ensure_schema(conn: sqlite3.Connection) -> None:
    # executescript() would COMMIT the surrounding transaction first.
    for statement in SCHEMA.split(";"):
        if statement.strip():
            conn.execute(statement)


class CacheStore:
    """Owns the cache database file.

    Every unit of work runs on its own connection, so sessions opened from
    different threads never share SQLite state and serialize through
    ``BEGIN IMMEDIATE``.
    """

    def __init__(self, db_path: Path | str, *, timeout: float = 30.0) -> None:
        self._path = Path(db_path)
        self._timeout = timeout
        conn = self._connect()
        try:
            with transaction(conn):
                ensure_schema(conn)
        finally:
            conn.close()
        LOGGER.debug("Cache database ready at %s", self._path)

    @property
    def path(self) -> Path:
        return self._path

    def _connect(self) -> sqlite3.Connection:
        return connect(self._path, timeout=self._timeout, check_same_thread=False)

    @contextmanager
    def unit_of_work(self) -> Iterator[UnitOfWork]:
        conn = self._connect()
        try:
            with unit_of_work(conn) as uow:
                yield uow
        finally:
            conn.close()

    @contextmanager
    def session(self, existing: Optional[UnitOfWork] = None) -> Iterator[UnitOfWork]:
        """Join *existing* when given, otherwise open a fresh unit of work."""

        if existing is not None:
            yield existing
            return
        with self.unit_of_work() as uow:
            yield uow

    @contextmanager
    def reader(self) -> Iterator[sqlite3.Connection]:
        conn = self._connect()
        try:
            yield conn
        finally:
            conn.close()

