"""Correlation matrix construction.

Two weighting policies encode the same fact: a direct shared-match list entry
is strong evidence, repeated indirect co-occurrence is weaker evidence that
never outweighs a single direct one.
"""

from typing import Any, Dict, Optional

from shared_clustering.matrix.appearance_weighted import AppearanceWeightedMatrixBuilder
from shared_clustering.matrix.base import CorrelationMatrix, MatrixBuilder, MatrixIndexError
from shared_clustering.matrix.count_based import CountBasedMatrixBuilder
from shared_clustering.utils.parallel_protocols import ExecutorLike
from shared_clustering.utils.progress import ProgressSink

__all__ = [
    "AppearanceWeightedMatrixBuilder",
    "CorrelationMatrix",
    "CountBasedMatrixBuilder",
    "MatrixBuilder",
    "MatrixIndexError",
    "create_matrix_builder",
]


def create_matrix_builder(
    settings: Dict[str, Any],
    progress: Optional[ProgressSink] = None,
    executor: Optional[ExecutorLike] = None,
) -> MatrixBuilder:
    """Build the matrix builder named by ``settings["matrix"]["builder"]``."""
    matrix_settings = settings.get("matrix", {})
    lowest = settings.get("clustering", {}).get("lowest_clusterable_centimorgans", 20.0)
    builder = matrix_settings.get("builder", "appearance_weighted")

    if builder == "appearance_weighted":
        return AppearanceWeightedMatrixBuilder(
            lowest_clusterable_centimorgans=lowest,
            max_indirect_percentage=matrix_settings.get("max_indirect_percentage", 100.0),
            progress=progress,
            executor=executor,
        )
    if builder == "count_based":
        return CountBasedMatrixBuilder(
            direct_correlation_value=matrix_settings.get("direct_correlation_value", 2.0),
            indirect_correlation_value=matrix_settings.get("indirect_correlation_value", 0.1),
            lowest_clusterable_centimorgans=lowest,
            progress=progress,
            executor=executor,
        )
    raise ValueError(f"Unknown matrix builder: {builder!r}")
