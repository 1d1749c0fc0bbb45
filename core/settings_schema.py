from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, Mapping


_ALLOWED_STRUCTURE: Dict[str, Any] = {
    "cache": {"db_path", "pages_dir"},
    "rasterizer": {
        "pdftocairo_path",
        "pdfinfo_path",
        "resolution_dpi",
        "poll_ms",
        "timeout_s",
        "max_parallel",
    },
    "sampler": {"interval_s", "similarity_threshold", "small_area"},
    "features": {
        "n_features",
        "scale_factor",
        "n_levels",
        "edge_threshold",
        "patch_size",
        "fast_threshold",
    },
    "index": {"table_number", "key_size", "multi_probe_level", "checks"},
    "matcher": {
        "knn_k",
        "distance_tolerance",
        "max_candidates",
        "max_rated",
        "min_rating",
        "min_relative_rating",
        "min_similarity",
        "ransac_threshold",
        "ransac_max_iters",
        "ransac_confidence",
        "ransac_refine_iters",
        "min_correspondences",
    },
    "scheduler": {"max_workers", "max_pending_factor"},
    "api": "*",
    "logging": {"level", "json_file"},
    "working_dir": None,
    "version": None,
}


@dataclass(slots=True)
class SettingsValidator:
    schema: Mapping[str, Any]

    def unknown_keys(self, payload: Mapping[str, Any]) -> Iterable[str]:
        return sorted(self._iter_unknown(payload, self.schema, path=""))

    def _iter_unknown(self, payload: Mapping[str, Any], schema: Mapping[str, Any], *, path: str) -> Iterable[str]:
        for key, value in payload.items():
            if key not in schema:
                yield f"{path}{key}"
                continue
            rule = schema[key]
            if rule is None or rule == "*":
                continue
            if isinstance(rule, set):
                if not isinstance(value, Mapping):
                    continue
                for sub in value.keys():
                    if sub not in rule:
                        yield f"{path}{key}.{sub}"
                continue
            if isinstance(rule, Mapping) and isinstance(value, Mapping):
                yield from self._iter_unknown(value, rule, path=f"{path}{key}.")


SETTINGS_VALIDATOR = SettingsValidator(_ALLOWED_STRUCTURE)

__all__ = ["SETTINGS_VALIDATOR", "SettingsValidator"]
