"""Candidate neighbor generation for leaf nodes.

Only leaves sharing at least one significant coordinate are ever compared, which
keeps neighbor search proportional to the size of the shared match lists instead
of quadratic in the number of matches.
"""

import logging
from collections import defaultdict
from typing import Dict, List, Optional, Sequence

import numpy as np

from shared_clustering.clustering.nodes import Neighbor, NodeArena
from shared_clustering.distance import DistanceMetric
from shared_clustering.matrix.base import CorrelationMatrix
from shared_clustering.models import ClusterableMatch
from shared_clustering.utils.parallel_protocols import ExecutorLike
from shared_clustering.utils.parallel_utils import sequential_executor
from shared_clustering.utils.progress import SUPPRESS_PROGRESS, ProgressSink

logger = logging.getLogger(__name__)


def build_buckets(
    arena: NodeArena,
    leaf_handles: Sequence[int],
    metric: DistanceMetric,
) -> Dict[int, List[int]]:
    """Group leaves by significant coordinate.

    Args:
        arena: Arena holding the leaves
        leaf_handles: Leaves to bucket
        metric: Metric deciding which coordinates are significant

    Returns:
        Dictionary mapping coordinate -> handles of leaves significant there

    """
    buckets: Dict[int, List[int]] = defaultdict(list)
    for handle in leaf_handles:
        for coord in metric.significant_coordinates(arena[handle].coords):
            buckets[int(coord)].append(handle)
    return dict(buckets)


def neighbors_by_distance(
    arena: NodeArena,
    handle: int,
    buckets: Dict[int, List[int]],
    metric: DistanceMetric,
) -> List[Neighbor]:
    """Candidate neighbors of one leaf, nearest first.

    Only leaves with a greater match index are kept: each unordered pair is
    stored once, on its lower-index leaf, since only minimum distances matter.
    """
    leaf = arena[handle]
    candidates = set()
    for coord in metric.significant_coordinates(leaf.coords):
        for other in buckets.get(int(coord), ()):
            if arena[other].index > leaf.index:
                candidates.add(other)
    if not candidates:
        return []

    handles = sorted(candidates, key=lambda other: arena[other].index)
    rows = np.vstack([arena[other].coords for other in handles])
    distances = metric.calculate_many(leaf.coords, rows)
    return sorted(
        Neighbor(float(distance), arena[other].index, other)
        for distance, other in zip(distances, handles)
    )


def build_leaf_nodes(
    matches: Sequence[ClusterableMatch],
    matrix: CorrelationMatrix,
    metric: DistanceMetric,
    arena: NodeArena,
    executor: Optional[ExecutorLike] = None,
    progress: Optional[ProgressSink] = None,
) -> List[int]:
    """Create one leaf per match and fill in every leaf's neighbor list.

    Neighbor lists are computed in parallel; each task writes only its own
    leaf's list. The call returns after all of them are built.

    Returns:
        Handles of the new leaves, in match order

    """
    executor = executor or sequential_executor()
    progress = progress or SUPPRESS_PROGRESS
    if not matches:
        return []

    average = sum(len(match.coords) for match in matches) / len(matches)
    detail = f"{len(matches)} matches (average {average:,.0f} shared matches per match)"

    progress.reset(f"Calculating coordinates for {detail}...", len(matches))
    handles = []
    for match in matches:
        handles.append(arena.add_leaf(match.index, matrix.get_or_add(match.index)))
        progress.increment()

    progress.reset(f"Finding closest pairwise distances for {detail}...", len(matches))
    buckets = build_buckets(arena, handles, metric)

    def compute_neighbors(handle: int) -> int:
        leaf = arena.leaf(handle)
        leaf.neighbors = neighbors_by_distance(arena, handle, buckets, metric)
        leaf.cursor = 0
        progress.increment()
        return len(leaf.neighbors)

    counts = executor.execute(compute_neighbors, handles, "neighbor_lists")

    idle = sum(1 for count in counts if count == 0)
    logger.info(
        f"Built {len(handles)} leaves from {len(buckets)} coordinate buckets: "
        f"{sum(counts)} candidate pairs, {idle} leaves without candidates"
    )
    progress.reset()
    return handles
