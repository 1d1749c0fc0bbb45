"""Shared synthetic inputs: textured slides, encoded videos and a fake rasterizer."""
from __future__ import annotations

from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

import cv2
import numpy as np
import pytest

from rasterize.pdftocairo import RasterizerError, list_page_images


def make_slide(seed: int, width: int = 640, height: int = 480, block: int = 16) -> np.ndarray:
    """Blocky random texture; rich in corners and unique per seed."""

    rng = np.random.default_rng(seed)
    blocks = rng.integers(0, 256, size=(height // block, width // block, 3), dtype=np.uint8)
    return cv2.resize(blocks, (width, height), interpolation=cv2.INTER_NEAREST)


def embed(image: np.ndarray, canvas_size: tuple[int, int], offset: tuple[int, int]) -> np.ndarray:
    """Place *image* on a black canvas of ``(width, height)`` at ``(x, y)``."""

    width, height = canvas_size
    x, y = offset
    canvas = np.zeros((height, width, 3), dtype=np.uint8)
    canvas[y : y + image.shape[0], x : x + image.shape[1]] = image
    return canvas


def write_video(path: Path, frames: Sequence[np.ndarray], fps: float) -> Path:
    height, width = frames[0].shape[:2]
    writer = cv2.VideoWriter(str(path), cv2.VideoWriter_fourcc(*"MJPG"), fps, (width, height))
    if not writer.isOpened():
        pytest.skip("OpenCV cannot write MJPG videos in this environment")
    try:
        for frame in frames:
            writer.write(frame)
    finally:
        writer.release()
    return path


class FakeRasterizer:
    """Writes pre-rendered slides as ``p-N.png`` instead of calling Poppler."""

    def __init__(self, documents: Optional[Dict[str, Sequence[np.ndarray]]] = None) -> None:
        self.documents: Dict[str, Sequence[np.ndarray]] = dict(documents or {})
        self.calls: List[Path] = []
        self.fail: set[str] = set()

    def page_count(self, pdf_path: Path) -> int:
        return len(self.documents[Path(pdf_path).name])

    def rasterize(self, pdf_path: Path, target_dir: Path, progress=None) -> List[Path]:
        name = Path(pdf_path).name
        self.calls.append(Path(pdf_path))
        if name in self.fail:
            raise RasterizerError(f"cannot render {name}")
        target_dir.mkdir(parents=True, exist_ok=True)
        slides = self.documents[name]
        for number, slide in enumerate(slides, start=1):
            cv2.imwrite(str(target_dir / f"p-{number}.png"), slide)
            if progress is not None:
                progress(number, len(slides))
        return list_page_images(target_dir)


@pytest.fixture
def slide_factory() -> Callable[..., np.ndarray]:
    return make_slide


@pytest.fixture
def fake_rasterizer() -> FakeRasterizer:
    return FakeRasterizer()


@pytest.fixture
def write_pdf(tmp_path: Path) -> Callable[[str, bytes], Path]:
    """Create a stand-in document whose bytes determine its hash."""

    def _write(name: str, payload: bytes) -> Path:
        path = tmp_path / "inputs" / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(b"%PDF-1.4\n" + payload)
        return path

    return _write


@pytest.fixture
def scenario_video(tmp_path: Path) -> Callable[[Sequence[np.ndarray]], Path]:
    """Three 10 s segments at 10 fps showing the given slides in order."""

    def _build(segments: Sequence[np.ndarray], name: str = "talk.avi") -> Path:
        frames: List[np.ndarray] = []
        for slide in segments:
            frames.extend([slide] * 100)
        path = tmp_path / "inputs" / name
        path.parent.mkdir(parents=True, exist_ok=True)
        return write_video(path, frames, fps=10.0)

    return _build


@pytest.fixture
def embed_image() -> Callable[..., np.ndarray]:
    return embed
