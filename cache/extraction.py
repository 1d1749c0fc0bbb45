from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from core.db import UnitOfWork

from .store import CacheStore

LOGGER = logging.getLogger("slidesync.cache.extraction")


@dataclass(frozen=True, slots=True)
class ExtractionRecord:
    pdf_hash: str
    dir: Path
    finished: bool


class ExtractionCache:
    """Where the rasterized pages of each document live.

    A record is written ``finished=False`` before rasterization starts and
    flipped to ``finished=True`` afterwards. Only finished records may be
    reused; a pending one means an earlier run was interrupted.
    """

    def __init__(self, store: CacheStore) -> None:
        self._store = store

    def lookup(self, pdf_hash: str, *, session: Optional[UnitOfWork] = None) -> Optional[ExtractionRecord]:
        with self._store.session(session) as uow:
            row = uow.execute(
                "SELECT pdf_hash, dir, finished FROM pdf_extracted_pages_dirs WHERE pdf_hash = ?",
                (pdf_hash,),
            ).fetchone()
        if row is None:
            return None
        return ExtractionRecord(pdf_hash=row[0], dir=Path(row[1]), finished=bool(row[2]))

    def upsert(self, record: ExtractionRecord, *, session: Optional[UnitOfWork] = None) -> None:
        with self._store.session(session) as uow:
            uow.execute("DELETE FROM pdf_extracted_pages_dirs WHERE pdf_hash = ?", (record.pdf_hash,))
            uow.execute(
                "INSERT INTO pdf_extracted_pages_dirs(pdf_hash, dir, finished) VALUES (?, ?, ?)",
                (record.pdf_hash, str(record.dir), int(record.finished)),
            )
        LOGGER.debug(
            "Extraction record %s -> %s (%s)",
            record.pdf_hash,
            record.dir,
            "finished" if record.finished else "pending",
        )

    def unit_of_work(self):
        return self._store.unit_of_work()
