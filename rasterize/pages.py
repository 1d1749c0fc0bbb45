from __future__ import annotations

import hashlib
import logging
import secrets
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from cache.extraction import ExtractionCache, ExtractionRecord
from core.errors import ExternalToolError
from core.inputs import HashedFile
from core.progress import ProgressAggregator, ProgressReporter, null_reporter
from matching.types import Page

from .pdftocairo import PageRasterizer, RasterizerError, list_page_images

LOGGER = logging.getLogger("slidesync.rasterize.pages")

EXTRACT_MESSAGE = "Extracting PDF pages..."


@dataclass(slots=True)
class DocumentPages:
    document: HashedFile
    directory: Path
    pages: List[Page]
    reused: bool


@dataclass(slots=True)
class ExtractionResult:
    documents: List[DocumentPages] = field(default_factory=list)
    failures: Dict[str, str] = field(default_factory=dict)

    @property
    def pages(self) -> List[Page]:
        return [page for doc in self.documents for page in doc.pages]

    @property
    def document_hashes(self) -> List[str]:
        return [doc.document.hash for doc in self.documents]


def allocate_pages_dir(root: Path, pdf_hash: str) -> Path:
    """Return a fresh directory name for *pdf_hash* that no earlier run used."""

    salt = secrets.token_hex(16)
    digest = hashlib.sha256(f"{pdf_hash}-{salt}".encode("utf-8")).hexdigest()
    return root / f"slides-{digest[:20]}"


class PageExtractor:
    """Rasterizes documents once and reuses finished page directories."""

    def __init__(
        self,
        cache: ExtractionCache,
        rasterizer: PageRasterizer,
        pages_root: Path,
        *,
        max_workers: int = 4,
    ) -> None:
        self._cache = cache
        self._rasterizer = rasterizer
        self._pages_root = Path(pages_root)
        self._max_workers = max(1, int(max_workers))

    def extract(
        self,
        documents: Sequence[HashedFile],
        progress: Optional[ProgressReporter] = None,
    ) -> ExtractionResult:
        unique = list(dict.fromkeys(documents))
        if len(unique) != len(documents):
            LOGGER.info("Skipping %d duplicate document(s)", len(documents) - len(unique))
        result = ExtractionResult()
        if not unique:
            return result

        aggregator = ProgressAggregator((progress or null_reporter()).report)
        reporters = [aggregator.create_nested() for _ in unique]
        workers = min(self._max_workers, len(unique))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="extract") as executor:
            futures = [
                executor.submit(self._extract_one, document, reporter)
                for document, reporter in zip(unique, reporters)
            ]
            for document, future in zip(unique, futures):
                try:
                    result.documents.append(future.result())
                except ExternalToolError as exc:
                    LOGGER.error("Could not extract pages of %s: %s", document.path, exc)
                    result.failures[document.hash] = str(exc)

        done, total = aggregator.snapshot()
        if progress is not None:
            progress.report(done, total, "PDF extraction finished.")
        return result

    def _extract_one(self, document: HashedFile, reporter: ProgressReporter) -> DocumentPages:
        with self._cache.unit_of_work() as uow:
            record = self._cache.lookup(document.hash, session=uow)
            if record is not None and record.finished and record.dir.is_dir():
                target, reused = record.dir, True
            else:
                if record is not None and record.finished:
                    LOGGER.warning("Page directory %s of %s vanished; extracting again", record.dir, document.path)
                elif record is not None:
                    LOGGER.info("Discarding unfinished extraction of %s in %s", document.path, record.dir)
                target, reused = allocate_pages_dir(self._pages_root, document.hash), False
                self._cache.upsert(ExtractionRecord(document.hash, target, False), session=uow)

        if not reused:
            LOGGER.info("Rasterizing %s into %s", document.path, target)
            self._rasterizer.rasterize(
                document.path,
                target,
                progress=lambda done, total: reporter.report(done, total, EXTRACT_MESSAGE),
            )

        images = list_page_images(target)
        if not images:
            raise RasterizerError(f"no pages were produced for {document.path}")
        pages = [
            Page(document_hash=document.hash, page_number=number, image_path=path)
            for number, path in enumerate(images, start=1)
        ]
        reporter.report(len(pages), len(pages), EXTRACT_MESSAGE)

        if not reused:
            self._cache.upsert(ExtractionRecord(document.hash, target, True))
        LOGGER.info("%s: %d page(s)%s", document.path, len(pages), " (cached)" if reused else "")
        return DocumentPages(document=document, directory=target, pages=pages, reused=reused)
