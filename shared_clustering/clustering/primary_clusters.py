"""Primary cluster selection.

A primary cluster is a maximal subtree meeting the size bar. The finder walks
the tree left to right and stops descending at the first qualifying node, so
primary clusters never nest and are numbered in leaf order.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from shared_clustering.clustering.nodes import Node, NodeArena

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PrimaryCluster:
    """One output group.

    Attributes:
        number: 1-based cluster number in tree order
        handle: Arena handle of the subtree root
        leaf_handles: Leaf handles in left-to-right order
        leaf_indexes: Match indexes of the leaves, same order
    """

    number: int
    handle: int
    leaf_handles: Tuple[int, ...]
    leaf_indexes: Tuple[int, ...]

    @property
    def size(self) -> int:
        return len(self.leaf_handles)

    @classmethod
    def from_node(cls, arena: NodeArena, number: int, handle: int) -> "PrimaryCluster":
        leaves = arena.ordered_leaves(handle)
        return cls(number, handle, tuple(leaves), tuple(arena[leaf].index for leaf in leaves))


class PrimaryClusterFinder:
    """Select maximal subtrees as primary clusters.

    Args:
        min_cluster_size: Smallest leaf count of a primary cluster
        max_cluster_size: Largest leaf count, larger nodes are split (None for no limit)
        max_cluster_distance: Largest merge distance, looser nodes are split (None for no limit)

    """

    def __init__(
        self,
        min_cluster_size: int = 3,
        max_cluster_size: Optional[int] = None,
        max_cluster_distance: Optional[float] = None,
    ):
        if min_cluster_size < 1:
            raise ValueError(f"min_cluster_size must be >= 1, got {min_cluster_size}")
        if max_cluster_size is not None and max_cluster_size < min_cluster_size:
            raise ValueError(
                f"max_cluster_size ({max_cluster_size}) must be >= min_cluster_size ({min_cluster_size})"
            )
        if max_cluster_distance is not None and max_cluster_distance < 0:
            raise ValueError(f"max_cluster_distance must be >= 0, got {max_cluster_distance}")
        self.min_cluster_size = min_cluster_size
        self.max_cluster_size = max_cluster_size
        self.max_cluster_distance = max_cluster_distance

    def qualifies(self, node: Node) -> bool:
        # Fallback merges join unrelated components, never a cluster.
        if node.is_leaf or node.is_forced:
            return False
        if node.leaf_count < self.min_cluster_size:
            return False
        if self.max_cluster_size is not None and node.leaf_count > self.max_cluster_size:
            return False
        if self.max_cluster_distance is not None and node.distance > self.max_cluster_distance:
            return False
        return True

    def find(self, arena: NodeArena, roots: Sequence[int]) -> List[PrimaryCluster]:
        """Find the primary clusters under ``roots``, numbered from 1.

        Args:
            arena: Arena holding the tree
            roots: Root handles, in output order

        Returns:
            Primary clusters in left-to-right order

        """
        handles = []
        stack = list(reversed(roots))
        while stack:
            node = arena[stack.pop()]
            if node.leaf_count < self.min_cluster_size:
                continue
            if self.qualifies(node):
                handles.append(node.handle)
            elif not node.is_leaf:
                stack.append(node.second)
                stack.append(node.first)

        clusters = [PrimaryCluster.from_node(arena, number, handle) for number, handle in enumerate(handles, start=1)]
        clustered = sum(cluster.size for cluster in clusters)
        logger.info(f"Found {len(clusters)} primary clusters covering {clustered} leaves")
        return clusters


def index_cluster_numbers(clusters: Sequence[PrimaryCluster]) -> Dict[int, int]:
    """Map every clustered match index to its cluster number."""
    return {index: cluster.number for cluster in clusters for index in cluster.leaf_indexes}

