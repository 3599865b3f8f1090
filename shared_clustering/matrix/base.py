"""Sparse correlation matrix storage and the builder interface.

The matrix maps a match index to a dense row of correlation weights. Rows are
created lazily by whichever worker touches them first, so creation goes through
an insert-if-absent under a lock; once a row exists, writers only touch their
own cells.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

import numpy as np

from shared_clustering.models import ClusterableMatch
from shared_clustering.utils.parallel_protocols import ExecutorLike
from shared_clustering.utils.parallel_utils import sequential_executor
from shared_clustering.utils.progress import SUPPRESS_PROGRESS, ProgressSink

ROW_DTYPE = np.float32


class MatrixIndexError(IndexError):
    """A coordinate outside the matrix width was accessed.

    The matrix is always sized to the largest referenced index before use, so
    this signals a programming error rather than bad input data.
    """


class CorrelationMatrix:
    """Concurrent-safe map of match index -> dense correlation row."""

    def __init__(self, width: int):
        if width < 1:
            raise ValueError(f"Matrix width must be >= 1, got {width}")
        self.width = width
        self._rows: Dict[int, np.ndarray] = {}
        self._lock = threading.Lock()

    @property
    def max_index(self) -> int:
        return self.width - 1

    def get_or_add(self, index: int) -> np.ndarray:
        """Return the row for ``index``, creating a zero row if absent."""
        row = self._rows.get(index)
        if row is not None:
            return row
        with self._lock:
            row = self._rows.get(index)
            if row is None:
                row = np.zeros(self.width, dtype=ROW_DTYPE)
                self._rows[index] = row
            return row

    def __getitem__(self, index: int) -> np.ndarray:
        return self._rows[index]

    def get(self, index: int) -> Optional[np.ndarray]:
        return self._rows.get(index)

    def __contains__(self, index: object) -> bool:
        return index in self._rows

    def __len__(self) -> int:
        return len(self._rows)

    def __iter__(self) -> Iterator[int]:
        return iter(list(self._rows))

    def rows(self) -> List[Tuple[int, np.ndarray]]:
        return list(self._rows.items())

    def cell(self, row_index: int, coord: int) -> float:
        self.check_coord(coord)
        row = self._rows.get(row_index)
        return 0.0 if row is None else float(row[coord])

    def check_coord(self, coord: int) -> None:
        if not 0 <= coord < self.width:
            raise MatrixIndexError(f"Coordinate {coord} outside matrix width {self.width}")

    def clip_coords(self, coords: Iterable[int], limit: Optional[int] = None) -> np.ndarray:
        """Coordinates as an index array, dropping those at or beyond ``limit``.

        ``limit`` defaults to the matrix width and may never exceed it.
        """
        limit = self.width if limit is None else limit
        if limit > self.width:
            raise MatrixIndexError(f"Limit {limit} exceeds matrix width {self.width}")
        array = np.fromiter(coords, dtype=np.int64)
        return np.sort(array[array < limit])


class MatrixBuilder(ABC):
    """Builds a correlation matrix from shared-match lists."""

    name = "base"

    def __init__(
        self,
        lowest_clusterable_centimorgans: float,
        progress: Optional[ProgressSink] = None,
        executor: Optional[ExecutorLike] = None,
    ):
        if lowest_clusterable_centimorgans < 0:
            raise ValueError(
                f"lowest_clusterable_centimorgans must be >= 0, got {lowest_clusterable_centimorgans}"
            )
        self.lowest_clusterable_centimorgans = lowest_clusterable_centimorgans
        self.progress = progress or SUPPRESS_PROGRESS
        self.executor = executor or sequential_executor()

    def clusterable_max_index(self, matches: Sequence[ClusterableMatch]) -> Optional[int]:
        """Largest index referenced by any match above the clusterable floor."""
        indexes = [
            max(match.index, match.max_coord)
            for match in matches
            if match.shared_centimorgans >= self.lowest_clusterable_centimorgans
        ]
        return max(indexes) if indexes else None

    def _run_phase(self, func, items: List, operation_name: str) -> None:
        def run(item):
            func(item)
            self.progress.increment()

        self.executor.execute(run, items, operation_name)

    @abstractmethod
    def correlate(
        self,
        matches: Sequence[ClusterableMatch],
        immediate_family: Sequence[ClusterableMatch],
    ) -> CorrelationMatrix:
        """Build the matrix for ``matches``."""

    @abstractmethod
    def extend_matrix(self, matrix: CorrelationMatrix, matches: Sequence[ClusterableMatch]) -> None:
        """Add direct-correlation rows for newly introduced matches."""


def lists_containing(
    matches: Iterable[ClusterableMatch],
    row_indexes: Optional[Iterable[int]] = None,
) -> Dict[int, List[ClusterableMatch]]:
    """Invert shared-match lists: coordinate -> matches whose list contains it.

    Building rows from this inverted view gives every worker sole ownership of
    the rows it writes.

    Args:
        matches: Matches whose coordinate lists are inverted
        row_indexes: If given, only these coordinates get an entry

    """
    allowed = None if row_indexes is None else set(row_indexes)
    inverted: Dict[int, List[ClusterableMatch]] = {}
    for match in matches:
        for coord in match.coords:
            if allowed is None or coord in allowed:
                inverted.setdefault(coord, []).append(match)
    return inverted
