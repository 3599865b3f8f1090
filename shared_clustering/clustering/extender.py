"""Extend primary clusters with matches below the clustering threshold.

Low-cM matches are too noisy to cluster on their own, but one whose shared match
list covers a good part of an existing primary cluster very likely belongs to
it. Each such match is attached to its best cluster, and every cluster that
gained matches is rebuilt from its own leaves plus the additions and spliced
back into the tree where the old cluster was.
"""

import logging
import threading
from collections import Counter, defaultdict
from typing import Dict, List, Optional, Sequence, Tuple

from shared_clustering.clustering.agglomerative import AgglomerativeBuilder
from shared_clustering.clustering.neighbors import build_leaf_nodes
from shared_clustering.clustering.nodes import NodeArena
from shared_clustering.clustering.primary_clusters import PrimaryCluster, index_cluster_numbers
from shared_clustering.distance import DistanceMetric
from shared_clustering.matrix.base import CorrelationMatrix, MatrixBuilder
from shared_clustering.models import ClusterableMatch
from shared_clustering.utils.parallel_protocols import ExecutorLike
from shared_clustering.utils.parallel_utils import sequential_executor
from shared_clustering.utils.progress import SUPPRESS_PROGRESS, ProgressSink

logger = logging.getLogger(__name__)


class ClusterExtender:
    """Attach low-cM matches to primary clusters and rebuild those clusters.

    A match qualifies for a cluster when the number of its coordinates inside
    the cluster reaches ``max(min_cluster_size, fraction * cluster size)`` or
    ``max(min_cluster_size, fraction * number of its coordinates)``.

    Args:
        min_cluster_size: Minimum overlap in absolute terms
        min_cluster_overlap_fraction: Share of the cluster the match must cover
        min_match_overlap_fraction: Share of the match's list that must fall in the cluster
        progress: Progress sink
        executor: Executor for the per-match and per-cluster fan-out

    """

    def __init__(
        self,
        min_cluster_size: int = 3,
        min_cluster_overlap_fraction: float = 0.35,
        min_match_overlap_fraction: float = 0.5,
        progress: Optional[ProgressSink] = None,
        executor: Optional[ExecutorLike] = None,
    ):
        if min_cluster_size < 1:
            raise ValueError(f"min_cluster_size must be >= 1, got {min_cluster_size}")
        for name, value in (
            ("min_cluster_overlap_fraction", min_cluster_overlap_fraction),
            ("min_match_overlap_fraction", min_match_overlap_fraction),
        ):
            if not 0 <= value <= 1:
                raise ValueError(f"{name} must be in [0, 1], got {value}")
        self.min_cluster_size = min_cluster_size
        self.min_cluster_overlap_fraction = min_cluster_overlap_fraction
        self.min_match_overlap_fraction = min_match_overlap_fraction
        self.progress = progress or SUPPRESS_PROGRESS
        self.executor = executor or sequential_executor()

    def qualifies(self, overlap: int, cluster_size: int, num_coords: int) -> bool:
        return overlap >= max(self.min_cluster_size, self.min_cluster_overlap_fraction * cluster_size) or (
            overlap >= max(self.min_cluster_size, self.min_match_overlap_fraction * num_coords)
        )

    def best_cluster(
        self,
        match: ClusterableMatch,
        cluster_numbers: Dict[int, int],
        cluster_sizes: Dict[int, int],
    ) -> Optional[int]:
        """Number of the cluster ``match`` should join, or None.

        Among qualifying clusters the highest overlap wins, then the larger
        cluster, then the lower number.
        """
        overlaps = Counter(cluster_numbers[coord] for coord in match.coords if coord in cluster_numbers)
        best = None
        best_key = None
        for number, overlap in overlaps.items():
            if not self.qualifies(overlap, cluster_sizes[number], len(match.coords)):
                continue
            key = (overlap, cluster_sizes[number], -number)
            if best_key is None or key > best_key:
                best, best_key = number, key
        return best

    def extend(
        self,
        arena: NodeArena,
        roots: Sequence[int],
        primary_clusters: Sequence[PrimaryCluster],
        matches: Sequence[ClusterableMatch],
        min_centimorgans_to_cluster: float,
    ) -> Dict[int, List[ClusterableMatch]]:
        """Assign unclustered low-cM matches to primary clusters.

        Candidates are matches with an index above every clustered leaf, at
        least ``min_centimorgans_to_cluster`` and at least ``min_cluster_size``
        coordinates.

        Returns:
            Cluster number -> added matches, strongest first

        """
        if not primary_clusters or not roots:
            return {}

        max_clustered_index = max(arena[leaf].index for root in roots for leaf in arena.ordered_leaves(root))
        cluster_numbers = index_cluster_numbers(primary_clusters)
        cluster_sizes = {cluster.number: cluster.size for cluster in primary_clusters}
        candidates = [
            match
            for match in matches
            if match.index > max_clustered_index
            and match.shared_centimorgans >= min_centimorgans_to_cluster
            and len(match.coords) >= self.min_cluster_size
        ]

        self.progress.reset(f"Extending clusters with {len(candidates)} matches...", len(candidates))

        def assign(match: ClusterableMatch) -> Optional[int]:
            number = self.best_cluster(match, cluster_numbers, cluster_sizes)
            self.progress.increment()
            return number

        assigned = self.executor.execute(assign, candidates, "extend_clusters")

        extended: Dict[int, List[ClusterableMatch]] = defaultdict(list)
        for match, number in zip(candidates, assigned):
            if number is not None:
                extended[number].append(match)
        for additions in extended.values():
            additions.sort(key=lambda match: (-match.shared_centimorgans, match.index))

        logger.info(
            f"Extended {len(extended)} of {len(primary_clusters)} primary clusters with "
            f"{sum(len(additions) for additions in extended.values())} of {len(candidates)} candidate matches"
        )
        self.progress.reset()
        return dict(sorted(extended.items()))

    def recluster(
        self,
        arena: NodeArena,
        roots: Sequence[int],
        primary_clusters: Sequence[PrimaryCluster],
        extended: Dict[int, List[ClusterableMatch]],
        matches_by_index: Dict[int, ClusterableMatch],
        matrix: CorrelationMatrix,
        matrix_builder: MatrixBuilder,
        metric: DistanceMetric,
    ) -> Tuple[List[int], List[PrimaryCluster]]:
        """Rebuild every extended cluster and splice it back into the tree.

        Each cluster is rebuilt in its own scratch arena; the original leaves
        are reused when the result is copied into ``arena``, so no match ever
        appears twice. The rebuilt subtree takes the old cluster's place under
        its parent, or among the roots.

        Returns:
            Tuple of (updated root handles, updated primary clusters with their
            numbers unchanged)

        """
        roots = list(roots)
        by_number = {cluster.number: cluster for cluster in primary_clusters}
        work = [(by_number[number], additions) for number, additions in extended.items() if additions]
        if not work:
            return roots, list(primary_clusters)

        self.progress.reset(f"Reclustering {len(work)} primary clusters", len(work))
        splice_lock = threading.Lock()

        def recluster_one(item: Tuple[PrimaryCluster, List[ClusterableMatch]]) -> PrimaryCluster:
            cluster, additions = item
            matrix_builder.extend_matrix(matrix, additions)
            cluster_matches = [matches_by_index[index] for index in cluster.leaf_indexes] + list(additions)

            scratch = NodeArena()
            handles = build_leaf_nodes(cluster_matches, matrix, metric, scratch)
            scratch_root = AgglomerativeBuilder(metric.name).build(scratch, handles)[0]
            leaf_map = dict(zip(cluster.leaf_indexes, cluster.leaf_handles))

            with splice_lock:
                parent = arena[cluster.handle].parent
                new_root = arena.graft(scratch, scratch_root, leaf_map)
                if parent is not None:
                    arena.replace_child(parent, cluster.handle, new_root)
                else:
                    roots[roots.index(cluster.handle)] = new_root
                rebuilt = PrimaryCluster.from_node(arena, cluster.number, new_root)

            logger.debug(
                f"Reclustered cluster {cluster.number}: {cluster.size} -> {rebuilt.size} leaves"
            )
            self.progress.increment()
            return rebuilt

        rebuilt = {cluster.number: cluster for cluster in self.executor.execute(recluster_one, work, "recluster")}
        self.progress.reset()
        return roots, [rebuilt.get(cluster.number, cluster) for cluster in primary_clusters]
