"""Matrix weighted as a fraction of total appearances.

If two matches A and B do *not* appear on each other's shared match lists, the
cell value is in the range 0..1: the fraction of the shared match lists
containing A that also contain B. If they *do* appear on each other's lists,
the value is in the range 1..2: 1 plus the fraction above.

In other words, the higher the value, the more likely two matches appear
together, with an additional +1 bump for a direct correlation.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence, Tuple

import numpy as np

from shared_clustering.matrix.base import CorrelationMatrix, MatrixBuilder, lists_containing
from shared_clustering.models import ClusterableMatch
from shared_clustering.utils.parallel_protocols import ExecutorLike
from shared_clustering.utils.progress import ProgressSink

logger = logging.getLogger(__name__)

DIRECT_INCREMENT = 1.0


class AppearanceWeightedMatrixBuilder(MatrixBuilder):
    name = "appearance_weighted"

    def __init__(
        self,
        lowest_clusterable_centimorgans: float = 20.0,
        max_indirect_percentage: float = 100.0,
        progress: Optional[ProgressSink] = None,
        executor: Optional[ExecutorLike] = None,
    ):
        super().__init__(lowest_clusterable_centimorgans, progress, executor)
        self.max_indirect_percentage = min(100.0, max(0.0, float(max_indirect_percentage)))

    def correlate(
        self,
        matches: Sequence[ClusterableMatch],
        immediate_family: Sequence[ClusterableMatch],
    ) -> CorrelationMatrix:
        max_index = self.clusterable_max_index(matches)
        if max_index is None:
            raise ValueError(
                f"No match reaches {self.lowest_clusterable_centimorgans} cM; nothing to correlate"
            )

        family_indexes = {match.index for match in immediate_family}
        match_indexes = {match.index for match in matches}
        matrix = CorrelationMatrix(max_index + 1)

        # Every match appears at least once, in its own match list, so the
        # inverted lists double as appearance counts.
        containing = lists_containing(matches, match_indexes)

        self.progress.reset("Correlating data...", len(matches) + len(containing))

        self._run_phase(
            lambda match: self._extend_direct(matrix, match),
            list(matches),
            "appearance_direct_pass",
        )

        # Shared match lists of immediate family are huge and nonspecific; if
        # they counted, the whole diagram would be swamped by low-level
        # indirect values. Their lists still mark cells that are already
        # direct, else the diagonal would not reach 2.
        self._run_phase(
            lambda item: self._extend_indirect(matrix, item[0], item[1], family_indexes),
            sorted(containing.items()),
            "appearance_indirect_pass",
        )

        over_floor = {
            match.index
            for match in matches
            if match.shared_centimorgans >= self.lowest_clusterable_centimorgans
        }
        self.remove_filtered_coords(matrix, over_floor)
        self.reduce_indirect_coords(matrix, len(over_floor))

        logger.info(
            f"Correlated {len(matches)} matches into {len(matrix)} rows of width {matrix.width} "
            f"({len(family_indexes)} immediate family)"
        )
        self.progress.reset()
        return matrix

    @staticmethod
    def _extend_direct(matrix: CorrelationMatrix, match: ClusterableMatch) -> None:
        if match.index > matrix.max_index:
            return
        row = matrix.get_or_add(match.index)
        row[matrix.clip_coords(match.coords)] += DIRECT_INCREMENT

    @staticmethod
    def _extend_indirect(
        matrix: CorrelationMatrix,
        coord: int,
        lists: List[ClusterableMatch],
        family_indexes: set,
    ) -> None:
        row = matrix.get_or_add(coord)
        direct = row >= DIRECT_INCREMENT
        weight = 1.0 / len(lists)
        for match in lists:
            coords = matrix.clip_coords(match.coords)
            if match.index in family_indexes:
                coords = coords[direct[coords]]
            row[coords] += weight

    def remove_filtered_coords(self, matrix: CorrelationMatrix, over_floor: set) -> None:
        """Zero every row and column of a match below the clusterable floor."""
        keep = np.zeros(matrix.width, dtype=bool)
        keep[matrix.clip_coords(over_floor)] = True
        for index, row in matrix.rows():
            if index in over_floor:
                row[~keep] = 0
            else:
                row[:] = 0

    def reduce_indirect_coords(self, matrix: CorrelationMatrix, num_clusterable: int) -> Tuple[int, float]:
        """Discard the weakest indirect-only cells beyond the configured share.

        Returns:
            Tuple of (number of indirect cells zeroed, cut-off value applied)
        """
        if self.max_indirect_percentage >= 100:
            return 0, 0.0

        rows = [row for _, row in matrix.rows()]
        total_coords = num_clusterable * len(rows)
        num_direct = sum(int(np.count_nonzero(row >= DIRECT_INCREMENT)) for row in rows)
        indirect_values = np.concatenate(
            [row[(row > 0) & (row < DIRECT_INCREMENT)] for row in rows] or [np.empty(0)]
        )
        max_allowed = int((total_coords - num_direct) * self.max_indirect_percentage / 100.0)

        if len(indirect_values) <= max_allowed:
            return 0, 0.0

        if max_allowed <= 0:
            cutoff = DIRECT_INCREMENT
        else:
            cutoff = float(nth_largest(indirect_values, max_allowed))

        zeroed = 0
        for row in rows:
            weak = row < cutoff
            zeroed += int(np.count_nonzero(row[weak]))
            row[weak] = 0

        logger.info(
            f"Reduced indirect correlations: {len(indirect_values)} > {max_allowed} allowed, "
            f"zeroed {zeroed} cells below {cutoff:.4f}"
        )
        return zeroed, cutoff

    def extend_matrix(self, matrix: CorrelationMatrix, matches: Sequence[ClusterableMatch]) -> None:
        for match in matches:
            row = matrix.get_or_add(match.index)
            row[:] = 0
            row[matrix.clip_coords(match.coords)] = DIRECT_INCREMENT


def nth_largest(values: np.ndarray, n: int) -> float:
    """The n-th largest value (1-based) via an order-statistic selection."""
    if not 1 <= n <= len(values):
        raise ValueError(f"n must be in 1..{len(values)}, got {n}")
    position = len(values) - n
    return float(np.partition(values, position)[position])
