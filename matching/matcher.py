"""Identify which candidate page, if any, a video frame shows."""
from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

import numpy as np

from .features import FeatureExtractor, ProcessedPage
from .image_utils import AffineEstimate, compute_similarity, estimate_affine, to_small_image, warp_to_page
from .index import IndexQueryHandle, KeyedMatch
from .types import Matching, VideoFrame

LOGGER = logging.getLogger("slidesync.matching.matcher")


@dataclass(slots=True)
class MatcherConfig:
    knn_k: int = 30
    distance_tolerance: float = 0.05
    max_candidates: int = 40
    max_rated: int = 10
    min_rating: float = 50.0
    min_relative_rating: float = 0.2
    min_similarity: float = 0.5
    ransac_threshold: float = 3.0
    ransac_max_iters: int = 2000
    ransac_confidence: float = 0.99
    ransac_refine_iters: int = 10
    min_correspondences: int = 10
    small_area: int = 120_000


@dataclass(slots=True)
class RatedCandidate:
    source: int
    rating: int
    transform: AffineEstimate


@dataclass(slots=True)
class ConfirmedCandidate:
    source: int
    rating: int
    similarity: float


# ---------------------------------------------------------------------------
# Filtering stages


def group_close_matches(
    neighbours: Sequence[Sequence[KeyedMatch]],
    tolerance: float,
) -> Dict[int, List[KeyedMatch]]:
    """Bucket, per page, every match within *tolerance* of its query's best distance."""

    buckets: Dict[int, List[KeyedMatch]] = defaultdict(list)
    for matches in neighbours:
        if not matches:
            continue
        limit = matches[0].distance * (1.0 + tolerance)
        for match in matches:
            if match.distance <= limit:
                buckets[match.source].append(match)
    return buckets


def top_candidates(buckets: Dict[int, List[KeyedMatch]], limit: int) -> List[tuple[int, List[KeyedMatch]]]:
    ranked = sorted(buckets.items(), key=lambda item: (-len(item[1]), item[0]))
    return ranked[:limit]


def select_competitive(
    rated: Sequence[RatedCandidate],
    *,
    max_rated: int = 10,
    min_rating: float = 50.0,
    min_relative_rating: float = 0.2,
) -> List[RatedCandidate]:
    """Keep the best *max_rated* candidates whose rating is high in absolute and relative terms."""

    ordered = sorted(rated, key=lambda item: (-item.rating, item.source))[:max_rated]
    if not ordered:
        return []
    best = ordered[0].rating
    return [
        item
        for item in ordered
        if item.rating > min_rating and item.rating >= min_relative_rating * best
    ]


def select_confirmed(
    confirmed: Sequence[ConfirmedCandidate],
    *,
    min_similarity: float = 0.5,
) -> Optional[ConfirmedCandidate]:
    ordered = sorted(confirmed, key=lambda item: (-item.similarity, -item.rating, item.source))
    for item in ordered:
        if item.similarity > min_similarity:
            return item
    return None


# ---------------------------------------------------------------------------
# Matcher


class FrameMatcher:
    """Matches frames against a fixed, read-only list of processed pages."""

    def __init__(self, pages: Sequence[ProcessedPage], config: Optional[MatcherConfig] = None) -> None:
        self._pages = tuple(pages)
        self._config = config or MatcherConfig()

    @property
    def pages(self) -> tuple[ProcessedPage, ...]:
        return self._pages

    @property
    def config(self) -> MatcherConfig:
        return self._config

    def match(self, frame: VideoFrame, handle: IndexQueryHandle, extractor: FeatureExtractor) -> Matching:
        no_match = Matching(time_offset=frame.time_offset, frame_index=frame.frame_index, page=None)
        if not self._pages:
            return no_match
        cfg = self._config

        features = extractor.detect(frame.image)
        if not len(features):
            LOGGER.debug("Frame %d has no features", frame.frame_index)
            return no_match

        neighbours = handle.knn_match(features.descriptors, cfg.knn_k)
        buckets = group_close_matches(neighbours, cfg.distance_tolerance)
        candidates = top_candidates(buckets, cfg.max_candidates)

        rated: List[RatedCandidate] = []
        for source, matches in candidates:
            page = self._pages[source]
            src = page.keypoints[[m.train_idx for m in matches]]
            dst = features.keypoints[[m.query_idx for m in matches]]
            estimate = estimate_affine(
                src,
                dst,
                ransac_threshold=cfg.ransac_threshold,
                max_iters=cfg.ransac_max_iters,
                confidence=cfg.ransac_confidence,
                refine_iters=cfg.ransac_refine_iters,
                min_points=cfg.min_correspondences,
            )
            if estimate is None:
                continue
            rated.append(RatedCandidate(source=source, rating=estimate.inlier_count, transform=estimate))

        competitive = select_competitive(
            rated,
            max_rated=cfg.max_rated,
            min_rating=cfg.min_rating,
            min_relative_rating=cfg.min_relative_rating,
        )

        confirmed = [
            ConfirmedCandidate(
                source=item.source,
                rating=item.rating,
                similarity=self._photometric_similarity(frame.image, self._pages[item.source], item.transform.matrix),
            )
            for item in competitive
        ]
        best = select_confirmed(confirmed, min_similarity=cfg.min_similarity)
        if best is None:
            LOGGER.debug(
                "Frame %d at %.1fs: no match (%d candidates, %d rated)",
                frame.frame_index,
                frame.time_offset,
                len(candidates),
                len(competitive),
            )
            return no_match
        page = self._pages[best.source].page
        LOGGER.debug(
            "Frame %d at %.1fs: page %d of %s (rating %d, similarity %.3f)",
            frame.frame_index,
            frame.time_offset,
            page.page_number,
            page.document_hash[:12],
            best.rating,
            best.similarity,
        )
        return Matching(time_offset=frame.time_offset, frame_index=frame.frame_index, page=page)

    def _photometric_similarity(self, image: np.ndarray, page: ProcessedPage, matrix: np.ndarray) -> float:
        projected = warp_to_page(image, matrix, page.size)
        small = to_small_image(projected, self._config.small_area)
        return compute_similarity(small, page.small_image)
