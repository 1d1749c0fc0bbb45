"""Typed matching settings read from the global settings mapping."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

from .features import FeatureExtractorConfig
from .frame_sampler import FrameSamplerConfig
from .index import LshIndexParams
from .matcher import MatcherConfig


class _Section:
    """Lenient readers over one settings section; bad values fall back to defaults."""

    def __init__(self, mapping: Optional[Mapping[str, Any]]) -> None:
        self._data: Dict[str, Any] = dict(mapping) if isinstance(mapping, Mapping) else {}

    def get_int(self, name: str, default: int, *, minimum: Optional[int] = None) -> int:
        value = self._data.get(name, default)
        try:
            intval = int(value)
        except (TypeError, ValueError):
            return default
        if minimum is not None:
            intval = max(minimum, intval)
        return intval

    def get_float(
        self,
        name: str,
        default: float,
        *,
        minimum: Optional[float] = None,
        maximum: Optional[float] = None,
    ) -> float:
        value = self._data.get(name, default)
        try:
            floatval = float(value)
        except (TypeError, ValueError):
            return default
        if minimum is not None:
            floatval = max(minimum, floatval)
        if maximum is not None:
            floatval = min(maximum, floatval)
        return floatval

    def get_optional_int(self, name: str, *, minimum: int = 1) -> Optional[int]:
        value = self._data.get(name)
        if value is None:
            return None
        try:
            return max(minimum, int(value))
        except (TypeError, ValueError):
            return None


@dataclass(slots=True)
class MatchingSettings:
    sampler: FrameSamplerConfig = field(default_factory=FrameSamplerConfig)
    features: FeatureExtractorConfig = field(default_factory=FeatureExtractorConfig)
    index: LshIndexParams = field(default_factory=LshIndexParams)
    matcher: MatcherConfig = field(default_factory=MatcherConfig)
    max_workers: Optional[int] = None
    max_pending_factor: int = 2

    @classmethod
    def from_mapping(cls, mapping: Optional[Mapping[str, Any]]) -> "MatchingSettings":
        data: Mapping[str, Any] = mapping if isinstance(mapping, Mapping) else {}
        sampler = _Section(data.get("sampler"))
        features = _Section(data.get("features"))
        index = _Section(data.get("index"))
        matcher = _Section(data.get("matcher"))
        scheduler = _Section(data.get("scheduler"))

        small_area = sampler.get_int("small_area", 120_000, minimum=1_000)
        return cls(
            sampler=FrameSamplerConfig(
                interval_s=sampler.get_float("interval_s", 5.0, minimum=0.01),
                similarity_threshold=sampler.get_float("similarity_threshold", 0.98, minimum=0.0, maximum=1.0),
                small_area=small_area,
            ),
            features=FeatureExtractorConfig(
                n_features=features.get_int("n_features", 2000, minimum=1),
                scale_factor=features.get_float("scale_factor", 1.2, minimum=1.01),
                n_levels=features.get_int("n_levels", 8, minimum=1),
                edge_threshold=features.get_int("edge_threshold", 62, minimum=0),
                patch_size=features.get_int("patch_size", 62, minimum=2),
                fast_threshold=features.get_int("fast_threshold", 20, minimum=1),
            ),
            index=LshIndexParams(
                table_number=index.get_int("table_number", 6, minimum=1),
                key_size=index.get_int("key_size", 12, minimum=1),
                multi_probe_level=index.get_int("multi_probe_level", 1, minimum=0),
                checks=index.get_int("checks", 32, minimum=1),
            ),
            matcher=MatcherConfig(
                knn_k=matcher.get_int("knn_k", 30, minimum=1),
                distance_tolerance=matcher.get_float("distance_tolerance", 0.05, minimum=0.0),
                max_candidates=matcher.get_int("max_candidates", 40, minimum=1),
                max_rated=matcher.get_int("max_rated", 10, minimum=1),
                min_rating=matcher.get_float("min_rating", 50.0, minimum=0.0),
                min_relative_rating=matcher.get_float("min_relative_rating", 0.2, minimum=0.0, maximum=1.0),
                min_similarity=matcher.get_float("min_similarity", 0.5, minimum=0.0, maximum=1.0),
                ransac_threshold=matcher.get_float("ransac_threshold", 3.0, minimum=0.1),
                ransac_max_iters=matcher.get_int("ransac_max_iters", 2000, minimum=1),
                ransac_confidence=matcher.get_float("ransac_confidence", 0.99, minimum=0.0, maximum=1.0),
                ransac_refine_iters=matcher.get_int("ransac_refine_iters", 10, minimum=0),
                min_correspondences=matcher.get_int("min_correspondences", 10, minimum=3),
                small_area=small_area,
            ),
            max_workers=scheduler.get_optional_int("max_workers"),
            max_pending_factor=scheduler.get_int("max_pending_factor", 2, minimum=1),
        )
