from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import numpy as np

__all__ = ["Matching", "Page", "SampledFrame", "VideoFrame", "VideoInfo"]


@dataclass(frozen=True, slots=True)
class Page:
    """One rasterized page of a document. ``page_number`` is 1-based."""

    document_hash: str
    page_number: int
    image_path: Path

    @property
    def page_index(self) -> int:
        return self.page_number - 1


@dataclass(frozen=True, slots=True)
class VideoInfo:
    fps: float
    frame_count: int

    @property
    def duration(self) -> float:
        return self.frame_count / self.fps if self.fps > 0 else 0.0


@dataclass(slots=True)
class VideoFrame:
    time_offset: float
    frame_index: int
    image: np.ndarray


@dataclass(slots=True)
class SampledFrame:
    frame: VideoFrame
    changed: bool
    similarity: float


@dataclass(frozen=True, slots=True)
class Matching:
    """Breakpoint of a timeline.

    ``page`` is ``None`` when no page was visible. The entry with
    ``end_of_video`` set carries the total duration and frame count and
    never has a page.
    """

    time_offset: float
    frame_index: int
    page: Optional[Page] = None
    end_of_video: bool = False

    @property
    def video_ms(self) -> int:
        return int(self.time_offset * 1000)

    @classmethod
    def sentinel(cls, info: VideoInfo) -> "Matching":
        return cls(time_offset=info.duration, frame_index=info.frame_count, page=None, end_of_video=True)
