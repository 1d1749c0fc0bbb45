"""Align presentation PDFs with screen recordings and cache the result."""
from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

from cache.files import FileIndex
from cache.extraction import ExtractionCache
from cache.mapping import MappingCache, ReprocessDecision, decide_reprocess
from cache.store import CacheStore
from core.errors import ExternalToolError, SlideSyncError
from core.inputs import HashedFile, InputKind, hash_files
from core.logging_utils import configure_json_logging
from core.paths import (
    ensure_working_dir_structure,
    get_cache_db_path,
    get_pages_cache_dir,
    resolve_working_dir,
)
from core.progress import ProgressAggregator, ProgressSink, TqdmProgressSink
from core.settings import load_settings
from matching.backend import ImageVideoMatcher, OpenCVImageVideoMatcher
from matching.config import MatchingSettings
from rasterize.pages import PageExtractor
from rasterize.pdftocairo import PageRasterizer, PopplerRasterizer, RasterizerConfig

LOGGER = logging.getLogger("slidesync.sync")

ConfirmCallback = Callable[[HashedFile, ReprocessDecision], bool]


@dataclass(slots=True)
class SyncSummary:
    documents: List[str] = field(default_factory=list)
    processed_videos: List[str] = field(default_factory=list)
    cached_videos: List[str] = field(default_factory=list)
    failures: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failures


class SyncRunner:
    """Runs one alignment pass over a set of documents and videos."""

    def __init__(
        self,
        store: CacheStore,
        rasterizer: PageRasterizer,
        pages_root: Path,
        *,
        backend: Optional[ImageVideoMatcher] = None,
        extract_workers: int = 4,
        progress_sink: Optional[ProgressSink] = None,
    ) -> None:
        self._store = store
        self._files = FileIndex(store)
        self._mappings = MappingCache(store)
        self._extractor = PageExtractor(
            ExtractionCache(store),
            rasterizer,
            pages_root,
            max_workers=extract_workers,
        )
        self._backend = backend or OpenCVImageVideoMatcher()
        self._progress = ProgressAggregator(progress_sink or (lambda done, total, message: None))

    def run(
        self,
        paths: Sequence[str | Path],
        *,
        invalidate_video_cache: bool = False,
        confirm: Optional[ConfirmCallback] = None,
    ) -> SyncSummary:
        # InputError surfaces here, before anything is written.
        inputs = hash_files(paths)
        self._files.update_hashes(inputs)

        documents = list(dict.fromkeys(item for item in inputs if item.kind is InputKind.DOCUMENT))
        videos = list(dict.fromkeys(item for item in inputs if item.kind is InputKind.VIDEO))
        requested = [doc.hash for doc in documents]
        summary = SyncSummary()

        pending: List[HashedFile] = []
        for video in videos:
            decision = decide_reprocess(
                self._mappings.find(video.hash),
                requested,
                invalidate=invalidate_video_cache,
            )
            if decision.process and decision.confirmable and confirm is not None:
                if not confirm(video, decision):
                    decision = ReprocessDecision(False, "kept by user")
            if decision.process:
                LOGGER.info("Processing %s (%s)", video.path, decision.reason)
                pending.append(video)
            else:
                LOGGER.info("Skipping %s (%s)", video.path, decision.reason)
                summary.cached_videos.append(video.hash)

        extraction = self._extractor.extract(documents, self._progress.create_nested())
        summary.failures.update(extraction.failures)
        summary.documents = extraction.document_hashes
        if not pending:
            return summary

        with self._store.unit_of_work() as uow:
            for video in pending:
                self._mappings.reset(video.hash, summary.documents, session=uow)

        reporters = {video.hash: self._progress.create_nested() for video in pending}
        with self._backend.create_video_matcher(extraction.pages, self._progress.create_nested()) as matcher:
            for video in pending:
                try:
                    task = matcher.match_images_with_video(video.path, reporters[video.hash])
                    timeline = task.process()
                except ExternalToolError as exc:
                    LOGGER.error("Could not match %s: %s", video.path, exc)
                    summary.failures[video.hash] = str(exc)
                    continue
                with self._store.unit_of_work() as uow:
                    self._mappings.record(video.hash, timeline, session=uow)
                summary.processed_videos.append(video.hash)
        return summary


# ---------------------------------------------------------------------------
# Command line


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="slidesync",
        description="Find which PDF page is shown when in screen recordings.",
    )
    parser.add_argument("files", nargs="+", type=Path, help="PDF documents and video files")
    parser.add_argument(
        "--invalidate-video-cache",
        action="store_true",
        help="Recompute mappings of the given videos even when cached.",
    )
    parser.add_argument("--non-interactive", action="store_true", help="Never ask for confirmation.")
    parser.add_argument("--serve", action="store_true", help="Start the viewer API when done.")
    parser.add_argument("--quiet", action="store_true", help="Hide the progress bar.")
    return parser.parse_args(argv)


def _prompt(video: HashedFile, decision: ReprocessDecision) -> bool:
    answer = input(f"Video '{video.path}' was cached before ({decision.reason}). Recompute? [y/N] ")
    return answer.strip().lower() in {"y", "yes"}


def main(argv: Optional[Sequence[str]] = None) -> int:
    logging.basicConfig(level=logging.INFO, format="[%(levelname)s] %(message)s")
    args = parse_args(argv)

    working_dir = resolve_working_dir()
    ensure_working_dir_structure(working_dir)
    settings = load_settings(working_dir)
    log_settings = settings.get("logging") or {}
    if log_settings.get("json_file", True):
        configure_json_logging(working_dir=working_dir)
    level = logging.getLevelName(str(log_settings.get("level", "INFO")).upper())
    if isinstance(level, int):
        logging.getLogger("slidesync").setLevel(level)

    cache_settings = settings.get("cache") or {}
    raster_settings = settings.get("rasterizer") or {}
    db_path = Path(cache_settings.get("db_path") or get_cache_db_path(working_dir))
    pages_root = Path(cache_settings.get("pages_dir") or get_pages_cache_dir(working_dir))

    rasterizer = PopplerRasterizer(
        RasterizerConfig(
            pdftocairo_path=raster_settings.get("pdftocairo_path"),
            pdfinfo_path=raster_settings.get("pdfinfo_path"),
            resolution_dpi=raster_settings.get("resolution_dpi"),
            poll_interval_s=float(raster_settings.get("poll_ms", 500)) / 1000.0,
            timeout_s=float(raster_settings.get("timeout_s", 900)),
        )
    )
    sink = TqdmProgressSink(disable=args.quiet)
    store = CacheStore(db_path)
    runner = SyncRunner(
        store,
        rasterizer,
        pages_root,
        backend=OpenCVImageVideoMatcher(MatchingSettings.from_mapping(settings)),
        extract_workers=int(raster_settings.get("max_parallel", 4) or 4),
        progress_sink=sink,
    )
    try:
        summary = runner.run(
            args.files,
            invalidate_video_cache=args.invalidate_video_cache,
            confirm=None if args.non_interactive else _prompt,
        )
    except SlideSyncError as exc:
        logging.error("%s", exc)
        return 2
    finally:
        sink.close()

    logging.info(
        "%d video(s) processed, %d cached, %d failure(s)",
        len(summary.processed_videos),
        len(summary.cached_videos),
        len(summary.failures),
    )
    for key, message in summary.failures.items():
        logging.error("%s: %s", key[:12], message)

    if args.serve:
        from slidesync_api import serve

        if summary.documents:
            logging.info("Matchings of the first document: /pdf-matchings/%s", summary.documents[0])
        return serve(store, settings)
    return 0 if summary.ok else 1


if __name__ == "__main__":
    sys.exit(main())
