"""Matrix weighted as a count of shared appearances.

If two matches A and B do *not* appear on each other's shared match lists,
each shared match list on which they appear together adds
``indirect_correlation_value``, up to at most half of
``direct_correlation_value``. If they *do* appear on each other's lists, the
value is exactly ``direct_correlation_value``.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence

import numpy as np

from shared_clustering.matrix.base import CorrelationMatrix, MatrixBuilder, lists_containing
from shared_clustering.models import ClusterableMatch
from shared_clustering.utils.parallel_protocols import ExecutorLike
from shared_clustering.utils.progress import ProgressSink

logger = logging.getLogger(__name__)


class CountBasedMatrixBuilder(MatrixBuilder):
    name = "count_based"

    def __init__(
        self,
        direct_correlation_value: float = 2.0,
        indirect_correlation_value: float = 0.1,
        lowest_clusterable_centimorgans: float = 20.0,
        progress: Optional[ProgressSink] = None,
        executor: Optional[ExecutorLike] = None,
    ):
        super().__init__(lowest_clusterable_centimorgans, progress, executor)
        if direct_correlation_value <= 0:
            raise ValueError(f"direct_correlation_value must be > 0, got {direct_correlation_value}")
        if not 0 < indirect_correlation_value <= direct_correlation_value:
            raise ValueError(
                f"indirect_correlation_value must be in (0, {direct_correlation_value}], "
                f"got {indirect_correlation_value}"
            )
        self.direct_correlation_value = float(direct_correlation_value)
        self.indirect_correlation_value = float(indirect_correlation_value)

    @property
    def max_indirect_value(self) -> float:
        return self.direct_correlation_value / 2

    def correlate(
        self,
        matches: Sequence[ClusterableMatch],
        immediate_family: Sequence[ClusterableMatch],
    ) -> CorrelationMatrix:
        family_indexes = {match.index for match in immediate_family}
        others = [match for match in matches if match.index not in family_indexes]

        max_index = self.clusterable_max_index(others)
        if max_index is None:
            max_index = self.clusterable_max_index(matches)
        if max_index is None:
            raise ValueError(
                f"No match reaches {self.lowest_clusterable_centimorgans} cM; nothing to correlate"
            )
        matrix = CorrelationMatrix(max_index + 1)

        # Immediate family rows hold direct values only and their (huge) lists
        # contribute no indirect counts. They still show up in the diagram
        # through the matches that list them directly.
        other_indexes = {match.index for match in others}
        containing = lists_containing(others, other_indexes)

        self.progress.reset(
            "Correlating data...",
            len(immediate_family) + len(containing) + len(others),
        )

        self._run_phase(
            lambda match: self._extend_direct(matrix, match),
            list(immediate_family),
            "count_family_direct_pass",
        )
        self._run_phase(
            lambda item: self._extend_indirect(matrix, item[0], item[1]),
            sorted(containing.items()),
            "count_indirect_pass",
        )
        self._run_phase(
            lambda match: self._extend_direct(matrix, match),
            others,
            "count_direct_pass",
        )

        logger.info(
            f"Correlated {len(matches)} matches into {len(matrix)} rows of width {matrix.width} "
            f"({len(family_indexes)} immediate family)"
        )
        self.progress.reset()
        return matrix

    def _extend_indirect(
        self,
        matrix: CorrelationMatrix,
        coord: int,
        lists: List[ClusterableMatch],
    ) -> None:
        row = matrix.get_or_add(coord)
        for match in lists:
            if coord == match.index:
                if coord <= matrix.max_index:
                    row[coord] += self.indirect_correlation_value
            else:
                coords = matrix.clip_coords(match.coords - {match.index})
                row[coords] += self.indirect_correlation_value
        # A pile of indirect evidence never outweighs a single direct one.
        np.minimum(row, self.max_indirect_value, out=row)

    def _extend_direct(self, matrix: CorrelationMatrix, match: ClusterableMatch) -> None:
        if match.index > matrix.max_index:
            return
        row = matrix.get_or_add(match.index)
        row[matrix.clip_coords(match.coords)] = self.direct_correlation_value

    def extend_matrix(self, matrix: CorrelationMatrix, matches: Sequence[ClusterableMatch]) -> None:
        for match in matches:
            row = matrix.get_or_add(match.index)
            row[:] = 0
            row[matrix.clip_coords(match.coords)] = self.direct_correlation_value
