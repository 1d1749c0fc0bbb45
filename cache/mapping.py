from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Iterable, List, Optional, Sequence

from core.db import UnitOfWork

from .store import CacheStore

if TYPE_CHECKING:
    from matching.types import Matching

LOGGER = logging.getLogger("slidesync.cache.mapping")


@dataclass(frozen=True, slots=True)
class MappingInfo:
    finished: bool
    pdf_hashes: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class PdfVideoMatching:
    video_offset_ms: int
    pdf_hash: str
    video_hash: str
    page_idx: int
    duration_ms: Optional[int]


@dataclass(frozen=True, slots=True)
class ReprocessDecision:
    process: bool
    reason: str
    confirmable: bool = False


def decide_reprocess(
    info: Optional[MappingInfo],
    pdf_hashes: Iterable[str],
    *,
    invalidate: bool = False,
) -> ReprocessDecision:
    """Decide whether a video's cached timeline can be reused.

    A finished timeline stays valid only while every requested document was
    part of the candidate set it was computed against.
    """

    if info is None:
        return ReprocessDecision(True, "not cached")
    if invalidate:
        return ReprocessDecision(True, "cache invalidated")
    if not info.finished:
        return ReprocessDecision(True, "previous run did not finish", confirmable=True)
    missing = set(pdf_hashes) - set(info.pdf_hashes)
    if missing:
        return ReprocessDecision(True, f"{len(missing)} new document(s) requested", confirmable=True)
    return ReprocessDecision(False, "cached")


class MappingCache:
    def __init__(self, store: CacheStore) -> None:
        self._store = store

    def find(self, video_hash: str) -> Optional[MappingInfo]:
        with self._store.reader() as conn:
            rows = conn.execute(
                """
                SELECT videos.finished, videos_pdfs.pdf_hash FROM videos
                LEFT JOIN videos_pdfs ON videos_pdfs.video_id = videos.id
                WHERE videos.video_hash = ?
                """,
                (video_hash,),
            ).fetchall()
        if not rows:
            return None
        pdf_hashes = tuple(sorted({row[1] for row in rows if row[1] is not None}))
        return MappingInfo(finished=bool(rows[0][0]), pdf_hashes=pdf_hashes)

    def reset(
        self,
        video_hash: str,
        pdf_hashes: Iterable[str],
        *,
        session: Optional[UnitOfWork] = None,
    ) -> int:
        """Drop any timeline of *video_hash* and register a pending one."""

        with self._store.session(session) as uow:
            uow.execute("DELETE FROM videos WHERE video_hash = ?", (video_hash,))
            cursor = uow.execute(
                "INSERT INTO videos(video_hash, finished) VALUES (?, 0)",
                (video_hash,),
            )
            video_id = int(cursor.lastrowid)
            uow.executemany(
                "INSERT INTO videos_pdfs(video_id, pdf_hash) VALUES (?, ?)",
                [(video_id, pdf_hash) for pdf_hash in dict.fromkeys(pdf_hashes)],
            )
        return video_id

    def record(
        self,
        video_hash: str,
        matchings: Sequence["Matching"],
        *,
        session: Optional[UnitOfWork] = None,
    ) -> None:
        """Store the timeline of a reset video and mark it finished."""

        with self._store.session(session) as uow:
            row = uow.execute("SELECT id FROM videos WHERE video_hash = ?", (video_hash,)).fetchone()
            if row is None:
                raise LookupError(f"video {video_hash} was not reset before recording")
            video_id = int(row[0])
            uow.execute("DELETE FROM videos_mapping WHERE video_id = ?", (video_id,))
            uow.executemany(
                "INSERT INTO videos_mapping(video_id, video_ms, pdf_hash, page) VALUES (?, ?, ?, ?)",
                [
                    (
                        video_id,
                        matching.video_ms,
                        matching.page.document_hash if matching.page is not None else None,
                        matching.page.page_index if matching.page is not None else None,
                    )
                    for matching in matchings
                ],
            )
            uow.execute("UPDATE videos SET finished = 1 WHERE id = ?", (video_id,))
        LOGGER.info("Stored %d timeline entries for video %s", len(matchings), video_hash)

    def pdf_matchings(
        self,
        pdf_hash: str,
        *,
        fallback_duration_ms: Optional[int] = None,
    ) -> List[PdfVideoMatching]:
        """Return every timeline entry showing a page of *pdf_hash*.

        Durations run to the next entry of the same video. The trailing
        end-of-video entry bounds the last segment; an entry without a
        successor gets *fallback_duration_ms*.
        """

        result: List[PdfVideoMatching] = []
        with self._store.reader() as conn:
            video_rows = conn.execute(
                """
                SELECT DISTINCT videos.id, videos.video_hash FROM videos_pdfs
                INNER JOIN videos ON videos.id = videos_pdfs.video_id
                WHERE videos_pdfs.pdf_hash = ?
                ORDER BY videos.id
                """,
                (pdf_hash,),
            ).fetchall()
            for video_id, video_hash in video_rows:
                rows = conn.execute(
                    """
                    SELECT video_ms, pdf_hash, page FROM videos_mapping
                    WHERE video_id = ?
                    ORDER BY video_ms ASC, rowid ASC
                    """,
                    (video_id,),
                ).fetchall()
                for position, (video_ms, row_pdf_hash, page) in enumerate(rows):
                    if row_pdf_hash != pdf_hash:
                        continue
                    if position + 1 < len(rows):
                        duration: Optional[int] = int(rows[position + 1][0]) - int(video_ms)
                    else:
                        LOGGER.warning(
                            "Timeline of video %s has no end entry after %d ms",
                            video_hash,
                            video_ms,
                        )
                        duration = fallback_duration_ms
                    result.append(
                        PdfVideoMatching(
                            video_offset_ms=int(video_ms),
                            pdf_hash=row_pdf_hash,
                            video_hash=video_hash,
                            page_idx=int(page) if page is not None else 0,
                            duration_ms=duration,
                        )
                    )
        return result
