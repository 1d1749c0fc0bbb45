"""Frame to page matching engine."""

from .backend import (
    ImageVideoMatcher,
    OpenCVImageVideoMatcher,
    OpenCVVideoMatcher,
    OpenCVVideoMatcherTask,
    VideoMatcher,
    VideoMatcherTask,
)
from .config import MatchingSettings
from .features import PageDecodeError
from .frame_sampler import VideoDecodeError
from .timeline import build_timeline, timeline_durations
from .types import Matching, Page, SampledFrame, VideoFrame, VideoInfo

__all__ = [
    "ImageVideoMatcher",
    "Matching",
    "MatchingSettings",
    "OpenCVImageVideoMatcher",
    "OpenCVVideoMatcher",
    "OpenCVVideoMatcherTask",
    "Page",
    "PageDecodeError",
    "SampledFrame",
    "VideoDecodeError",
    "VideoFrame",
    "VideoInfo",
    "VideoMatcher",
    "VideoMatcherTask",
    "build_timeline",
    "timeline_durations",
]
