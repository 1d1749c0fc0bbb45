from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Sequence

import cv2
import numpy as np

LOGGER = logging.getLogger("slidesync.matching.index")

FLANN_INDEX_LSH = 6


@dataclass(slots=True)
class LshIndexParams:
    table_number: int = 6
    key_size: int = 12
    multi_probe_level: int = 1
    checks: int = 32


@dataclass(frozen=True, slots=True)
class KeyedMatch:
    query_idx: int
    train_idx: int
    source: int  # position of the page in the candidate list
    distance: float


class DescriptorIndex:
    """Immutable set of per-page binary descriptors searchable by LSH.

    The index itself is shared by all workers; each worker queries it
    through its own :class:`IndexQueryHandle`.
    """

    def __init__(self, descriptors: Sequence[np.ndarray], params: LshIndexParams | None = None) -> None:
        self._params = params or LshIndexParams()
        matrices: List[np.ndarray] = []
        sources: List[int] = []
        for position, matrix in enumerate(descriptors):
            if matrix is None or matrix.shape[0] == 0:
                continue
            matrices.append(np.ascontiguousarray(matrix, dtype=np.uint8))
            sources.append(position)
        self._matrices = tuple(matrices)
        self._sources = tuple(sources)
        self._descriptor_count = sum(int(matrix.shape[0]) for matrix in matrices)
        self._page_count = len(descriptors)
        LOGGER.debug(
            "Descriptor index over %d page(s), %d searchable",
            self._page_count,
            len(self._sources),
        )

    @property
    def params(self) -> LshIndexParams:
        return self._params

    @property
    def descriptor_count(self) -> int:
        return self._descriptor_count

    def create_query_handle(self) -> "IndexQueryHandle":
        return IndexQueryHandle(self)

    def _build_matcher(self) -> cv2.FlannBasedMatcher:
        index_params = dict(
            algorithm=FLANN_INDEX_LSH,
            table_number=self._params.table_number,
            key_size=self._params.key_size,
            multi_probe_level=self._params.multi_probe_level,
        )
        search_params = dict(checks=self._params.checks)
        matcher = cv2.FlannBasedMatcher(index_params, search_params)
        matcher.add(list(self._matrices))
        matcher.train()
        return matcher


class IndexQueryHandle:
    """Trained FLANN matcher owned by a single worker."""

    def __init__(self, index: DescriptorIndex) -> None:
        self._sources = index._sources
        self._size = index._descriptor_count
        self._matcher = index._build_matcher() if index._sources else None

    def knn_match(self, descriptors: np.ndarray, k: int) -> List[List[KeyedMatch]]:
        """Return up to *k* nearest page descriptors per query descriptor, best first."""

        if self._matcher is None or descriptors is None or descriptors.shape[0] == 0:
            return []
        # FLANN rejects k larger than the number of indexed descriptors.
        raw = self._matcher.knnMatch(descriptors, k=min(k, self._size))
        result: List[List[KeyedMatch]] = []
        for neighbours in raw:
            keyed = [
                KeyedMatch(
                    query_idx=int(match.queryIdx),
                    train_idx=int(match.trainIdx),
                    source=self._sources[match.imgIdx],
                    distance=float(match.distance),
                )
                for match in neighbours
            ]
            keyed.sort(key=lambda item: item.distance)
            result.append(keyed)
        return result
