"""Small OpenCV helpers shared by the sampler and the matcher."""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional

import cv2
import numpy as np

DEFAULT_SMALL_AREA = 120_000


@dataclass(frozen=True, slots=True)
class AffineEstimate:
    matrix: np.ndarray  # 2x3, maps page coordinates to frame coordinates
    inliers: np.ndarray  # bool mask over the input correspondences

    @property
    def inlier_count(self) -> int:
        return int(np.count_nonzero(self.inliers))


def to_bgr(image: np.ndarray) -> np.ndarray:
    """Return *image* as a 3-channel BGR array."""

    if image.ndim == 2:
        return cv2.cvtColor(image, cv2.COLOR_GRAY2BGR)
    channels = image.shape[2]
    if channels == 4:
        return cv2.cvtColor(image, cv2.COLOR_BGRA2BGR)
    if channels == 1:
        return cv2.cvtColor(image, cv2.COLOR_GRAY2BGR)
    return image


def to_small_image(image: np.ndarray, max_area: int = DEFAULT_SMALL_AREA) -> np.ndarray:
    """Resize *image* so its pixel area is roughly *max_area*, keeping the aspect ratio."""

    height, width = image.shape[:2]
    area = width * height
    if area <= 0:
        raise ValueError("cannot resize an empty image")
    factor = math.sqrt(max_area / area)
    size = (max(1, int(width * factor)), max(1, int(height * factor)))
    return cv2.resize(image, size, interpolation=cv2.INTER_AREA)


def compute_similarity(a: np.ndarray, b: np.ndarray) -> float:
    """Return ``1 - L2(a, b) / max_L2`` in ``[0, 1]``; 1 means identical.

    Both images must share shape and dtype ``uint8``.
    """

    if a.shape != b.shape:
        raise ValueError(f"shape mismatch: {a.shape} != {b.shape}")
    channels = a.shape[2] if a.ndim == 3 else 1
    pixels = a.shape[0] * a.shape[1]
    if pixels == 0:
        return 0.0
    max_error = math.sqrt(255.0 * 255.0 * channels * pixels)
    error = cv2.norm(a, b, cv2.NORM_L2)
    return 1.0 - error / max_error


def estimate_affine(
    src_points: np.ndarray,
    dst_points: np.ndarray,
    *,
    ransac_threshold: float = 3.0,
    max_iters: int = 2000,
    confidence: float = 0.99,
    refine_iters: int = 10,
    min_points: int = 10,
) -> Optional[AffineEstimate]:
    """Robustly fit a rotation/scale/translation mapping *src_points* to *dst_points*.

    Returns ``None`` when there are fewer than *min_points* pairs or RANSAC
    finds no model.
    """

    if len(src_points) < min_points or len(src_points) != len(dst_points):
        return None
    src = np.asarray(src_points, dtype=np.float32).reshape(-1, 1, 2)
    dst = np.asarray(dst_points, dtype=np.float32).reshape(-1, 1, 2)
    matrix, inliers = cv2.estimateAffinePartial2D(
        src,
        dst,
        method=cv2.RANSAC,
        ransacReprojThreshold=ransac_threshold,
        maxIters=max_iters,
        confidence=confidence,
        refineIters=refine_iters,
    )
    if matrix is None or inliers is None:
        return None
    return AffineEstimate(matrix=matrix, inliers=inliers.reshape(-1).astype(bool))


def warp_to_page(frame: np.ndarray, matrix: np.ndarray, page_size: tuple[int, int]) -> np.ndarray:
    """Project *frame* into page coordinates; *page_size* is ``(width, height)``."""

    return cv2.warpAffine(
        frame,
        matrix,
        page_size,
        flags=cv2.INTER_LINEAR | cv2.WARP_INVERSE_MAP,
        borderMode=cv2.BORDER_CONSTANT,
        borderValue=(0, 0, 0),
    )
