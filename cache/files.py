from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, Optional

from core.db import UnitOfWork
from core.inputs import HashedFile

from .store import CacheStore

LOGGER = logging.getLogger("slidesync.cache.files")


class FileIndex:
    """Maps content hashes to the last path they were seen at."""

    def __init__(self, store: CacheStore) -> None:
        self._store = store

    def update_hashes(self, files: Iterable[HashedFile], *, session: Optional[UnitOfWork] = None) -> int:
        count = 0
        with self._store.session(session) as uow:
            for item in files:
                path = str(item.path)
                uow.execute("DELETE FROM files WHERE file_path = ? OR hash = ?", (path, item.hash))
                uow.execute("INSERT INTO files(file_path, hash) VALUES (?, ?)", (path, item.hash))
                count += 1
        LOGGER.debug("Recorded %d file hashes", count)
        return count

    def path_for(self, file_hash: str) -> Optional[Path]:
        with self._store.reader() as conn:
            row = conn.execute("SELECT file_path FROM files WHERE hash = ?", (file_hash,)).fetchone()
        if row is None:
            return None
        return Path(row[0])
