"""Interval based frame sampling with change detection."""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Iterator, Optional

import cv2
import numpy as np

from core.errors import ExternalToolError

from .image_utils import DEFAULT_SMALL_AREA, compute_similarity, to_bgr, to_small_image
from .types import SampledFrame, VideoFrame, VideoInfo

LOGGER = logging.getLogger("slidesync.matching.frames")


class VideoDecodeError(ExternalToolError):
    """The video cannot be opened or decoded."""


@dataclass(slots=True)
class FrameSamplerConfig:
    """Runtime configuration for :class:`FrameSampler`."""

    interval_s: float = 5.0
    similarity_threshold: float = 0.98
    small_area: int = DEFAULT_SMALL_AREA


def frame_step(fps: float, interval_s: float) -> int:
    return max(1, int(math.floor(fps * interval_s)))


def mark_changed(
    frames: Iterable[VideoFrame],
    *,
    threshold: float = 0.98,
    small_area: int = DEFAULT_SMALL_AREA,
) -> Iterator[SampledFrame]:
    """Flag each frame as changed unless it looks like the last changed one.

    The reference only moves when a frame is flagged changed, so a slow
    drift across many samples is still detected.
    """

    reference: Optional[np.ndarray] = None
    for frame in frames:
        small = to_small_image(frame.image, small_area)
        if reference is None or reference.shape != small.shape:
            similarity = 0.0
        else:
            similarity = compute_similarity(reference, small)
        changed = similarity < threshold
        if changed:
            reference = small
        yield SampledFrame(frame=frame, changed=changed, similarity=similarity)


class SampledVideo:
    """An opened video; iterate :meth:`frames` once to decode it."""

    def __init__(self, path: Path, capture: cv2.VideoCapture, info: VideoInfo, config: FrameSamplerConfig) -> None:
        self.path = path
        self.info = info
        self._capture = capture
        self._config = config
        self._consumed = False
        self.step = frame_step(info.fps, config.interval_s)

    @property
    def expected_samples(self) -> int:
        if self.info.frame_count <= 0:
            return 0
        return int(math.ceil(self.info.frame_count / self.step))

    def frames(self) -> Iterator[SampledFrame]:
        if self._consumed:
            raise RuntimeError(f"frames of {self.path} were already consumed")
        self._consumed = True
        return mark_changed(
            self._decode(),
            threshold=self._config.similarity_threshold,
            small_area=self._config.small_area,
        )

    def _decode(self) -> Iterator[VideoFrame]:
        capture = self._capture
        frame_index = 0
        emitted = 0
        try:
            while True:
                if not capture.grab():
                    break
                if frame_index % self.step == 0:
                    ok, image = capture.retrieve()
                    if not ok or image is None:
                        LOGGER.warning("Could not decode frame %d of %s", frame_index, self.path)
                    else:
                        emitted += 1
                        yield VideoFrame(
                            time_offset=frame_index / self.info.fps,
                            frame_index=frame_index,
                            image=to_bgr(image),
                        )
                frame_index += 1
        finally:
            capture.release()
        if emitted == 0:
            raise VideoDecodeError(f"no frame of {self.path} could be decoded")
        LOGGER.debug("Decoded %d of %d frames of %s", emitted, frame_index, self.path)

    def close(self) -> None:
        self._capture.release()


class FrameSampler:
    def __init__(self, config: Optional[FrameSamplerConfig] = None) -> None:
        self._config = config or FrameSamplerConfig()

    @property
    def config(self) -> FrameSamplerConfig:
        return self._config

    def open(self, video_path: Path) -> SampledVideo:
        path = Path(video_path)
        capture = cv2.VideoCapture(str(path))
        if not capture.isOpened():
            capture.release()
            raise VideoDecodeError(f"could not open video '{path}'")
        fps = float(capture.get(cv2.CAP_PROP_FPS) or 0.0)
        frame_count = int(capture.get(cv2.CAP_PROP_FRAME_COUNT) or 0)
        if fps <= 0 or math.isnan(fps):
            capture.release()
            raise VideoDecodeError(f"video '{path}' reports no frame rate")
        info = VideoInfo(fps=fps, frame_count=max(0, frame_count))
        LOGGER.info(
            "Opened %s: %.2f fps, %d frames, %.1fs",
            path.name,
            info.fps,
            info.frame_count,
            info.duration,
        )
        return SampledVideo(path, capture, info, self._config)
