"""Tests for core.settings helpers."""

from __future__ import annotations

import json
from pathlib import Path

from core.settings import load_settings, merge_defaults, save_settings


def test_merge_defaults_includes_matching_blocks() -> None:
    merged = merge_defaults({})

    assert merged["sampler"]["interval_s"] == 5.0
    assert merged["sampler"]["similarity_threshold"] == 0.98
    assert merged["features"]["n_features"] == 2000
    assert merged["index"] == {"table_number": 6, "key_size": 12, "multi_probe_level": 1, "checks": 32}
    assert merged["matcher"]["knn_k"] == 30
    assert merged["matcher"]["min_rating"] == 50
    assert merged["api"]["port"] == 63944


def test_save_settings_keeps_overrides_and_fills_defaults(tmp_path: Path) -> None:
    path = tmp_path / "settings.json"
    legacy = {"matcher": {"min_similarity": 0.6}, "rasterizer": {"resolution_dpi": 96}}
    path.write_text(json.dumps(legacy), encoding="utf-8")

    loaded = load_settings(tmp_path)
    assert loaded["matcher"]["min_similarity"] == 0.6
    assert loaded["matcher"]["max_candidates"] == 40

    save_settings(legacy, tmp_path)
    upgraded = json.loads(path.read_text(encoding="utf-8"))

    assert upgraded["rasterizer"]["resolution_dpi"] == 96
    assert upgraded["rasterizer"]["poll_ms"] == 500
    assert upgraded["version"] == 1


def test_unknown_keys_are_reported(tmp_path: Path) -> None:
    (tmp_path / "settings.json").write_text(
        json.dumps({"sampler": {"interval_s": 2, "bogus": 1}, "extra": True}),
        encoding="utf-8",
    )

    load_settings(tmp_path)

    report = json.loads((tmp_path / "logs" / "settings_unknown.json").read_text(encoding="utf-8"))
    assert report["unknown"] == ["extra", "sampler.bogus"]
