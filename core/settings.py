from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import Any, Dict

from .paths import get_default_settings_paths, get_logs_dir
from .settings_schema import SETTINGS_VALIDATOR

__all__ = [
    "DEFAULT_SETTINGS",
    "SETTINGS_VERSION",
    "load_settings",
    "merge_defaults",
    "save_settings",
]

LOGGER = logging.getLogger("slidesync.settings")

SETTINGS_VERSION = 1


DEFAULT_SETTINGS: Dict[str, Any] = {
    "version": SETTINGS_VERSION,
    "cache": {
        "db_path": None,
        "pages_dir": None,
    },
    "rasterizer": {
        "pdftocairo_path": None,
        "pdfinfo_path": None,
        "resolution_dpi": None,
        "poll_ms": 500,
        "timeout_s": 900,
        "max_parallel": 4,
    },
    "sampler": {
        "interval_s": 5.0,
        "similarity_threshold": 0.98,
        "small_area": 120000,
    },
    "features": {
        "n_features": 2000,
        "scale_factor": 1.2,
        "n_levels": 8,
        "edge_threshold": 62,
        "patch_size": 62,
        "fast_threshold": 20,
    },
    "index": {
        "table_number": 6,
        "key_size": 12,
        "multi_probe_level": 1,
        "checks": 32,
    },
    "matcher": {
        "knn_k": 30,
        "distance_tolerance": 0.05,
        "max_candidates": 40,
        "max_rated": 10,
        "min_rating": 50,
        "min_relative_rating": 0.2,
        "min_similarity": 0.5,
        "ransac_threshold": 3.0,
        "ransac_max_iters": 2000,
        "ransac_confidence": 0.99,
        "ransac_refine_iters": 10,
        "min_correspondences": 10,
    },
    "scheduler": {
        "max_workers": None,
        "max_pending_factor": 2,
    },
    "api": {
        "host": "127.0.0.1",
        "port": 63944,
        "cors_origins": ["http://127.0.0.1:8080", "http://localhost:8080"],
    },
    "logging": {
        "level": "INFO",
        "json_file": True,
    },
}


def merge_defaults(data: Dict[str, Any]) -> Dict[str, Any]:
    def _merge(default: Dict[str, Any], payload: Dict[str, Any]) -> Dict[str, Any]:
        result: Dict[str, Any] = {}
        for key, value in default.items():
            if isinstance(value, dict):
                current = payload.get(key)
                if isinstance(current, dict):
                    result[key] = _merge(value, current)
                else:
                    result[key] = _merge(value, {})
            elif isinstance(value, list):
                current = payload.get(key)
                result[key] = list(current) if isinstance(current, list) else list(value)
            else:
                result[key] = payload.get(key, value)
        for key, value in payload.items():
            if key not in result:
                result[key] = value
        return result

    return _merge(DEFAULT_SETTINGS, data or {})


def _apply_migrations(settings: Dict[str, Any]) -> Dict[str, Any]:
    version = settings.get("version")
    try:
        version_int = int(version)
    except (TypeError, ValueError):
        version_int = 0
    if version_int < SETTINGS_VERSION:
        settings["version"] = SETTINGS_VERSION
    return settings


def _log_unknown_keys(settings: Dict[str, Any], working_dir: Path) -> None:
    unknown = list(SETTINGS_VALIDATOR.unknown_keys(settings))
    if not unknown:
        return
    LOGGER.warning("Ignoring unknown settings keys: %s", ", ".join(unknown))
    logs_dir = get_logs_dir(working_dir)
    logs_dir.mkdir(parents=True, exist_ok=True)
    payload = {
        "ts": time.time(),
        "unknown": unknown,
    }
    target = logs_dir / "settings_unknown.json"
    try:
        with open(target, "w", encoding="utf-8") as handle:
            json.dump(payload, handle, ensure_ascii=False, indent=2)
    except OSError:
        LOGGER.debug("Could not write %s", target)


def load_settings(working_dir: Path) -> Dict[str, Any]:
    data: Dict[str, Any] = {}
    for candidate in get_default_settings_paths(working_dir):
        try:
            with open(candidate, "r", encoding="utf-8") as handle:
                loaded = json.load(handle)
        except FileNotFoundError:
            continue
        except (json.JSONDecodeError, OSError) as exc:
            LOGGER.warning("Skipping unreadable settings file %s: %s", candidate, exc)
            continue
        if isinstance(loaded, dict):
            data = loaded
            break
    merged = merge_defaults(data)
    merged = _apply_migrations(merged)
    merged.setdefault("working_dir", str(working_dir))
    _log_unknown_keys(merged, working_dir)
    return merged


def save_settings(settings: Dict[str, Any], working_dir: Path) -> None:
    merged = merge_defaults(dict(settings))
    merged = _apply_migrations(merged)
    merged.setdefault("working_dir", str(working_dir))
    path = working_dir / "settings.json"
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as handle:
        json.dump(merged, handle, ensure_ascii=False, indent=2)

