"""Matcher backends: build an index from pages, then match videos against it."""
from __future__ import annotations

import abc
import logging
from pathlib import Path
from typing import Iterator, List, Optional, Sequence

from core.progress import ProgressCounter, ProgressReporter, null_reporter

from .config import MatchingSettings
from .features import process_pages
from .frame_sampler import FrameSampler, SampledVideo
from .index import DescriptorIndex
from .matcher import FrameMatcher
from .scheduler import MatchScheduler
from .timeline import build_timeline
from .types import Matching, Page, SampledFrame, VideoInfo

LOGGER = logging.getLogger("slidesync.matching.backend")


class VideoMatcherTask(abc.ABC):
    @abc.abstractmethod
    def process(self) -> List[Matching]:
        """Run the match and return the consolidated timeline."""


class VideoMatcher(abc.ABC):
    @abc.abstractmethod
    def match_images_with_video(self, video_path: Path, progress: ProgressReporter) -> VideoMatcherTask:
        """Open *video_path* and return a task that matches it when processed."""

    def close(self) -> None:
        return None

    def __enter__(self) -> "VideoMatcher":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


class ImageVideoMatcher(abc.ABC):
    @abc.abstractmethod
    def create_video_matcher(
        self,
        pages: Sequence[Page],
        progress: Optional[ProgressReporter] = None,
    ) -> VideoMatcher:
        """Prepare the candidate pages once for any number of videos."""


# ---------------------------------------------------------------------------
# OpenCV implementation


class OpenCVImageVideoMatcher(ImageVideoMatcher):
    def __init__(self, settings: Optional[MatchingSettings] = None) -> None:
        self._settings = settings or MatchingSettings()

    def create_video_matcher(
        self,
        pages: Sequence[Page],
        progress: Optional[ProgressReporter] = None,
    ) -> "OpenCVVideoMatcher":
        settings = self._settings
        reporter = progress or null_reporter()
        reporter.report(0, len(pages), "Computing page features...")
        processed = process_pages(
            pages,
            config=settings.features,
            small_area=settings.sampler.small_area,
            max_workers=settings.max_workers,
        )
        index = DescriptorIndex([item.descriptors for item in processed], settings.index)
        reporter.report(len(pages), len(pages), "Page features ready.")
        return OpenCVVideoMatcher(FrameMatcher(processed, settings.matcher), index, settings)


class OpenCVVideoMatcher(VideoMatcher):
    def __init__(self, matcher: FrameMatcher, index: DescriptorIndex, settings: MatchingSettings) -> None:
        self._matcher = matcher
        self._sampler = FrameSampler(settings.sampler)
        self._scheduler = MatchScheduler(
            matcher,
            index,
            extractor_config=settings.features,
            max_workers=settings.max_workers,
            max_pending_factor=settings.max_pending_factor,
        )

    @property
    def scheduler(self) -> MatchScheduler:
        return self._scheduler

    def match_images_with_video(self, video_path: Path, progress: ProgressReporter) -> "OpenCVVideoMatcherTask":
        video = self._sampler.open(Path(video_path))
        counter = ProgressCounter(
            progress,
            video.expected_samples,
            message=f"Processing frames of '{video.path.name}'...",
        )
        counter.start()
        return OpenCVVideoMatcherTask(video, self._scheduler, counter)

    def close(self) -> None:
        self._scheduler.close()


class OpenCVVideoMatcherTask(VideoMatcherTask):
    def __init__(self, video: SampledVideo, scheduler: MatchScheduler, counter: ProgressCounter) -> None:
        self._video = video
        self._scheduler = scheduler
        self._counter = counter
        self._last_frame_index = -1

    def _tracked(self) -> Iterator[SampledFrame]:
        for sampled in self._video.frames():
            self._last_frame_index = sampled.frame.frame_index
            yield sampled

    def process(self) -> List[Matching]:
        try:
            results = self._scheduler.run(self._tracked(), self._counter)
        finally:
            self._video.close()
        info = self._video.info
        # Containers sometimes under-report their frame count.
        end_index = max(info.frame_count, self._last_frame_index + 1)
        results.append(Matching.sentinel(VideoInfo(fps=info.fps, frame_count=end_index)))
        self._counter.finish("Finished!")
        timeline = build_timeline(results)
        LOGGER.info(
            "%s: %d breakpoint(s) from %d matched frame(s)",
            self._video.path.name,
            len(timeline),
            len(results) - 1,
        )
        return timeline
