from __future__ import annotations

import logging
import os
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Callable, Iterable, List, Optional, Protocol

from core.progress import ProgressCounter

from .features import FeatureExtractor, FeatureExtractorConfig
from .index import DescriptorIndex, IndexQueryHandle
from .types import Matching, SampledFrame, VideoFrame
from .workers import WorkerArena

LOGGER = logging.getLogger("slidesync.matching.scheduler")


class FrameMatchFunction(Protocol):
    def match(self, frame: VideoFrame, handle: IndexQueryHandle, extractor: FeatureExtractor) -> Matching:
        ...


class MatchScheduler:
    """Fans changed frames out to a fixed pool of matching workers.

    Workers keep their index handle and feature extractor for the whole
    lifetime of the scheduler, across videos. At most
    ``max_workers * max_pending_factor`` frames are decoded but not yet
    matched at any time.
    """

    def __init__(
        self,
        matcher: FrameMatchFunction,
        index: DescriptorIndex,
        *,
        extractor_config: Optional[FeatureExtractorConfig] = None,
        max_workers: Optional[int] = None,
        max_pending_factor: int = 2,
    ) -> None:
        self._matcher = matcher
        self._max_workers = max(1, int(max_workers or os.cpu_count() or 1))
        self._executor = ThreadPoolExecutor(max_workers=self._max_workers, thread_name_prefix="match")
        self._slots = threading.BoundedSemaphore(self._max_workers * max(1, int(max_pending_factor)))
        self._handles: WorkerArena[IndexQueryHandle] = WorkerArena(index.create_query_handle)
        self._extractors: WorkerArena[FeatureExtractor] = WorkerArena(
            lambda: FeatureExtractor(extractor_config)
        )

    @property
    def max_workers(self) -> int:
        return self._max_workers

    @property
    def handle_count(self) -> int:
        return len(self._handles)

    def _match_one(self, frame: VideoFrame) -> Matching:
        return self._matcher.match(frame, self._handles.get(), self._extractors.get())

    def run(self, frames: Iterable[SampledFrame], counter: Optional[ProgressCounter] = None) -> List[Matching]:
        """Match every changed frame; unchanged frames only advance *counter*.

        Results come back in submission order and worker failures
        propagate. If *frames* itself fails, pending work is cancelled first.
        """

        advance: Callable[[], None] = counter.advance if counter is not None else (lambda: None)
        futures: List[Future] = []
        skipped = 0

        def _work(frame: VideoFrame) -> Matching:
            try:
                return self._match_one(frame)
            finally:
                self._slots.release()
                advance()

        try:
            for sampled in frames:
                if not sampled.changed:
                    skipped += 1
                    advance()
                    continue
                self._slots.acquire()
                try:
                    future = self._executor.submit(_work, sampled.frame)
                except BaseException:
                    self._slots.release()
                    raise
                futures.append(future)
        except BaseException:
            for future in futures:
                if future.cancel():
                    self._slots.release()
            wait(futures)
            raise
        results = [future.result() for future in futures]
        LOGGER.debug("Matched %d frame(s), skipped %d unchanged", len(futures), skipped)
        return results

    def close(self) -> None:
        self._executor.shutdown(wait=True)
        self._handles.clear()
        self._extractors.clear()

    def __enter__(self) -> "MatchScheduler":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
