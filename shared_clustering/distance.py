"""Distance metrics over correlation matrix rows.

A metric measures the distance between two rows and decides which of a row's
coordinates are significant enough to seed neighbor search. The agglomerative
builder works unchanged under every metric defined here.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Dict, FrozenSet, Iterable, Optional

import numpy as np


class DistanceMetric(ABC):
    """Squared distance between correlation rows.

    Attributes:
        immediate_family_indexes: Coordinates too common to seed neighbor search
        significance_threshold: Minimum weight of a significant coordinate
    """

    name = "base"

    def __init__(
        self,
        immediate_family_indexes: Iterable[int] = (),
        significance_threshold: float = 1.0,
    ):
        if significance_threshold <= 0:
            raise ValueError(f"significance_threshold must be > 0, got {significance_threshold}")
        self.immediate_family_indexes: FrozenSet[int] = frozenset(immediate_family_indexes)
        self.significance_threshold = significance_threshold
        self._masks: Dict[int, np.ndarray] = {}

    def family_mask(self, width: int) -> np.ndarray:
        """Boolean mask of the immediate family columns for rows of ``width``."""
        mask = self._masks.get(width)
        if mask is None:
            mask = np.zeros(width, dtype=bool)
            family = [index for index in self.immediate_family_indexes if index < width]
            mask[family] = True
            self._masks[width] = mask
        return mask

    def significant_coordinates(self, row: np.ndarray) -> np.ndarray:
        """Coordinates of ``row`` used to find candidate neighbors.

        Weak coordinates and immediate family (on almost every list, so they
        would make every leaf a candidate of every other) are dropped.
        """
        significant = row >= self.significance_threshold
        if self.immediate_family_indexes:
            significant &= ~self.family_mask(len(row))
        return np.flatnonzero(significant)

    def calculate(self, row_a: np.ndarray, row_b: np.ndarray) -> float:
        """Distance between two rows."""
        return float(self.calculate_many(row_a, row_b[np.newaxis, :])[0])

    @abstractmethod
    def calculate_many(self, row: np.ndarray, rows: np.ndarray) -> np.ndarray:
        """Distances from ``row`` to every row of the 2-D array ``rows``."""

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(family={len(self.immediate_family_indexes)}, "
            f"significance_threshold={self.significance_threshold})"
        )


class OverlapWeightedEuclideanDistance(DistanceMetric):
    """Squared Euclidean distance divided by the number of shared coordinates.

    Two rows with many non-zero coordinates in common end up closer than two
    rows with the same raw Euclidean distance and little overlap.
    """

    name = "overlap_weighted"

    def calculate_many(self, row: np.ndarray, rows: np.ndarray) -> np.ndarray:
        row = row.astype(np.float64)
        rows = rows.astype(np.float64)
        diff = rows - row
        squared = np.einsum("ij,ij->i", diff, diff)
        overlap = np.count_nonzero((rows > 0) & (row > 0), axis=1)
        return squared / np.maximum(overlap, 1)


class AppearanceWeightedDistance(DistanceMetric):
    """Squared complement of the weighted overlap of two rows.

    ``(1 - sum(min(a, b)) / sum(max(a, b))) ** 2`` with immediate family
    columns masked out, so the shared mass of a very close relative does not
    pull unrelated rows together. Range 0..1.
    """

    name = "appearance_weighted"

    def calculate_many(self, row: np.ndarray, rows: np.ndarray) -> np.ndarray:
        keep = ~self.family_mask(len(row))
        row = row[keep].astype(np.float64)
        rows = rows[:, keep].astype(np.float64)
        shared = np.minimum(rows, row).sum(axis=1)
        total = np.maximum(rows, row).sum(axis=1)
        ratio = np.divide(shared, total, out=np.zeros_like(shared), where=total > 0)
        return (1.0 - ratio) ** 2


METRICS = {
    OverlapWeightedEuclideanDistance.name: OverlapWeightedEuclideanDistance,
    AppearanceWeightedDistance.name: AppearanceWeightedDistance,
}


def create_distance_metric(
    name: str,
    immediate_family_indexes: Iterable[int] = (),
    significance_threshold: float = 1.0,
) -> DistanceMetric:
    """Build the metric registered under ``name``."""
    try:
        metric_class = METRICS[name]
    except KeyError:
        raise ValueError(f"Unknown distance metric {name!r}; expected one of {sorted(METRICS)}") from None
    return metric_class(immediate_family_indexes, significance_threshold)


def distance_metric_factory(settings: Optional[dict] = None):
    """Return a callable building the configured metric for a family set."""
    distance = (settings or {}).get("distance", {})
    name = distance.get("metric", OverlapWeightedEuclideanDistance.name)
    threshold = distance.get("significance_threshold", 1.0)
    if name not in METRICS:
        raise ValueError(f"Unknown distance metric {name!r}; expected one of {sorted(METRICS)}")

    def factory(immediate_family_indexes: Iterable[int]) -> DistanceMetric:
        return create_distance_metric(name, immediate_family_indexes, threshold)

    return factory
