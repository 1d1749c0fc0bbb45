from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence

import cv2
import numpy as np

from core.errors import SlideSyncError

from .image_utils import DEFAULT_SMALL_AREA, to_bgr, to_small_image
from .types import Page
from .workers import WorkerArena

LOGGER = logging.getLogger("slidesync.matching.features")

DESCRIPTOR_BYTES = 32


class PageDecodeError(SlideSyncError):
    """A candidate page image is missing or cannot be decoded."""


@dataclass(slots=True)
class FeatureExtractorConfig:
    n_features: int = 2000
    scale_factor: float = 1.2
    n_levels: int = 8
    edge_threshold: int = 62
    first_level: int = 0
    wta_k: int = 2
    patch_size: int = 62
    fast_threshold: int = 20


@dataclass(frozen=True, slots=True)
class Features:
    keypoints: np.ndarray  # (N, 2) float32 pixel coordinates
    descriptors: np.ndarray  # (N, 32) uint8 binary descriptors

    def __len__(self) -> int:
        return int(self.descriptors.shape[0])


@dataclass(frozen=True, slots=True)
class ProcessedPage:
    page: Page
    keypoints: np.ndarray
    descriptors: np.ndarray
    image: np.ndarray
    small_image: np.ndarray

    @property
    def size(self) -> tuple[int, int]:
        height, width = self.image.shape[:2]
        return width, height


class FeatureExtractor:
    """ORB keypoints and descriptors. Instances are not shared between threads."""

    def __init__(self, config: Optional[FeatureExtractorConfig] = None) -> None:
        cfg = config or FeatureExtractorConfig()
        self._orb = cv2.ORB_create(
            nfeatures=cfg.n_features,
            scaleFactor=cfg.scale_factor,
            nlevels=cfg.n_levels,
            edgeThreshold=cfg.edge_threshold,
            firstLevel=cfg.first_level,
            WTA_K=cfg.wta_k,
            scoreType=cv2.ORB_FAST_SCORE,
            patchSize=cfg.patch_size,
            fastThreshold=cfg.fast_threshold,
        )

    def detect(self, image: np.ndarray) -> Features:
        keypoints, descriptors = self._orb.detectAndCompute(image, None)
        if descriptors is None or not keypoints:
            return Features(
                keypoints=np.empty((0, 2), dtype=np.float32),
                descriptors=np.empty((0, DESCRIPTOR_BYTES), dtype=np.uint8),
            )
        points = np.array([kp.pt for kp in keypoints], dtype=np.float32)
        return Features(keypoints=points, descriptors=descriptors)


def read_page_image(path: Path) -> np.ndarray:
    if not path.is_file():
        raise PageDecodeError(f"page image '{path}' does not exist")
    image = cv2.imread(str(path), cv2.IMREAD_COLOR)
    if image is None or image.size == 0:
        raise PageDecodeError(f"could not decode page image '{path}'")
    return to_bgr(image)


def process_page(
    page: Page,
    extractor: FeatureExtractor,
    *,
    small_area: int = DEFAULT_SMALL_AREA,
) -> ProcessedPage:
    image = read_page_image(page.image_path)
    features = extractor.detect(image)
    if not len(features):
        LOGGER.warning("No features found on page %d of %s", page.page_number, page.document_hash)
    return ProcessedPage(
        page=page,
        keypoints=features.keypoints,
        descriptors=features.descriptors,
        image=image,
        small_image=to_small_image(image, small_area),
    )


def process_pages(
    pages: Sequence[Page],
    *,
    config: Optional[FeatureExtractorConfig] = None,
    small_area: int = DEFAULT_SMALL_AREA,
    max_workers: Optional[int] = None,
) -> List[ProcessedPage]:
    """Decode every page and compute its features, preserving order.

    Any undecodable page raises :class:`PageDecodeError`.
    """

    if not pages:
        return []
    extractors: WorkerArena[FeatureExtractor] = WorkerArena(lambda: FeatureExtractor(config))
    with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="pages") as executor:
        processed = list(
            executor.map(lambda page: process_page(page, extractors.get(), small_area=small_area), pages)
        )
    LOGGER.info(
        "Computed features for %d page(s), %d descriptors in total",
        len(processed),
        sum(int(item.descriptors.shape[0]) for item in processed),
    )
    return processed
