"""Hierarchical clustering of shared DNA matches.

This module wires the stages together:

1. Pick the matches above the clustering floor and correlate them into a matrix
2. Build one leaf per match, with candidate neighbors from shared coordinates
3. Agglomerate the leaves into a single tree
4. Select primary clusters and number them in tree order
5. Optionally extend the clusters with lower-cM matches and rebuild them
6. Hand the finished tree to the output writer
"""

import logging
import time
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

import numpy as np

from shared_clustering.clustering.agglomerative import AgglomerativeBuilder
from shared_clustering.clustering.extender import ClusterExtender
from shared_clustering.clustering.neighbors import build_leaf_nodes
from shared_clustering.clustering.nodes import NodeArena
from shared_clustering.clustering.primary_clusters import PrimaryClusterFinder, index_cluster_numbers
from shared_clustering.distance import DistanceMetric, distance_metric_factory
from shared_clustering.matrix import MatrixBuilder, create_matrix_builder
from shared_clustering.models import ClusterableMatch, ClusteringResult, ClusteringStatus
from shared_clustering.utils.parallel_protocols import ExecutorLike
from shared_clustering.utils.parallel_utils import create_parallel_executor
from shared_clustering.utils.progress import SUPPRESS_PROGRESS, ProgressSink
from shared_clustering.utils.resource_monitor import estimate_matrix_memory_gb
from shared_clustering.utils.settings import default_settings

logger = logging.getLogger(__name__)


class HierarchicalClusterer:
    """Cluster matches by how often they appear on each other's shared match lists.

    Args:
        settings: Full settings dict (defaults when None)
        progress: Progress sink (suppressed when None)
        executor: Executor for the parallel phases (built from settings when None)
        writer: Optional sink receiving the finished result
        matrix_builder: Override for the configured matrix builder
        metric_factory: Override for the configured metric, called with the
            immediate family indexes
        primary_cluster_finder: Override for the configured finder

    """

    def __init__(
        self,
        settings: Optional[Dict[str, Any]] = None,
        progress: Optional[ProgressSink] = None,
        executor: Optional[ExecutorLike] = None,
        writer=None,
        matrix_builder: Optional[MatrixBuilder] = None,
        metric_factory: Optional[Callable[[Iterable[int]], DistanceMetric]] = None,
        primary_cluster_finder: Optional[PrimaryClusterFinder] = None,
    ):
        self.settings = settings if settings is not None else default_settings()
        self.progress = progress or SUPPRESS_PROGRESS
        self.executor = executor or create_parallel_executor(self.settings)
        self.writer = writer

        clustering = self.settings.get("clustering", {})
        self.min_cluster_size = clustering.get("min_cluster_size", 3)
        self.lowest_clusterable_centimorgans = clustering.get("lowest_clusterable_centimorgans", 20.0)
        self.immediate_family_centimorgans = clustering.get("immediate_family_centimorgans", 200.0)

        self.matrix_builder = matrix_builder or create_matrix_builder(self.settings, self.progress, self.executor)
        self.metric_factory = metric_factory or distance_metric_factory(self.settings)
        self.primary_cluster_finder = primary_cluster_finder or PrimaryClusterFinder(
            self.min_cluster_size,
            clustering.get("max_cluster_size"),
            clustering.get("max_cluster_distance"),
        )

        extension = self.settings.get("extension", {})
        self.extender = ClusterExtender(
            self.min_cluster_size,
            extension.get("min_cluster_overlap_fraction", 0.35),
            extension.get("min_match_overlap_fraction", 0.5),
            progress=self.progress,
            executor=self.executor,
        )

    def cluster(
        self,
        matches: Sequence[ClusterableMatch],
        test_guids_to_filter: Optional[Iterable[str]] = None,
        min_centimorgans_to_cluster: Optional[float] = None,
    ) -> ClusteringResult:
        """Cluster ``matches`` and return the tree with its cluster numbering.

        Args:
            matches: Every loaded match, indexed densely in descending cM order
            test_guids_to_filter: If given, only these tests are correlated
            min_centimorgans_to_cluster: Lowest cM to cluster; values below
                ``lowest_clusterable_centimorgans`` cluster at that floor and
                extend the clusters down to this value

        Returns:
            ClusteringResult, with status EMPTY_INPUT when nothing clears the floor

        """
        start_time = time.time()
        if min_centimorgans_to_cluster is None:
            min_centimorgans_to_cluster = self.settings.get("clustering", {}).get("min_centimorgans_to_cluster", 20.0)
        floor = max(min_centimorgans_to_cluster, self.lowest_clusterable_centimorgans)
        matches_by_index = {match.index: match for match in matches}

        over_floor = [match.index for match in matches if match.shared_centimorgans >= floor]
        if not over_floor:
            logger.warning(f"No match reaches {floor} cM; nothing to cluster")
            return self._finish(ClusteringResult.empty(matches_by_index))
        max_index = max(over_floor)

        to_correlate = [match for match in matches if match.index <= max_index]
        guids = set(test_guids_to_filter or ())
        if guids:
            to_correlate = [match for match in to_correlate if match.match.test_guid in guids]
        if not any(match.shared_centimorgans >= floor for match in to_correlate):
            logger.warning(f"No match left to cluster after filtering to {len(guids)} test guids")
            return self._finish(ClusteringResult.empty(matches_by_index))

        immediate_family = self.find_immediate_family(to_correlate)
        family_indexes = frozenset(match.index for match in immediate_family)
        logger.info(
            f"Clustering {len(to_correlate)} matches of {len(matches)} at >= {floor} cM "
            f"({len(immediate_family)} immediate family)"
        )

        matrix = self.matrix_builder.correlate(to_correlate, immediate_family)
        logger.debug(
            f"Correlation matrix: {len(matrix)} rows x {matrix.width} "
            f"(~{estimate_matrix_memory_gb(len(matrix), matrix.width):.2f}GB)"
        )
        metric = self.metric_factory(family_indexes)

        arena = NodeArena()
        leaf_handles = build_leaf_nodes(to_correlate, matrix, metric, arena, self.executor, self.progress)
        roots = AgglomerativeBuilder(metric.name, self.progress).build(arena, leaf_handles)
        primary_clusters = self.primary_cluster_finder.find(arena, roots)

        if min_centimorgans_to_cluster < floor:
            extended = self.extender.extend(arena, roots, primary_clusters, matches, min_centimorgans_to_cluster)
            roots, primary_clusters = self.extender.recluster(
                arena,
                roots,
                primary_clusters,
                extended,
                matches_by_index,
                matrix,
                self.matrix_builder,
                metric,
            )

        result = ClusteringResult(
            status=ClusteringStatus.COMPLETED,
            arena=arena,
            roots=roots,
            primary_clusters=primary_clusters,
            index_cluster_numbers=index_cluster_numbers(primary_clusters),
            matches_by_index=matches_by_index,
            immediate_family_indexes=family_indexes,
            matrix=matrix,
        )
        logger.info(
            f"Clustering complete: {len(result.ordered_leaf_indexes())} leaves, "
            f"{len(primary_clusters)} primary clusters in {time.time() - start_time:.2f}s"
        )
        return self._finish(result)

    def find_immediate_family(self, matches: Sequence[ClusterableMatch]) -> List[ClusterableMatch]:
        """Matches close enough to be immediate family.

        When more than half of the matches qualify the threshold says nothing
        useful about this network, and nobody is treated as immediate family.
        """
        family = [match for match in matches if match.shared_centimorgans > self.immediate_family_centimorgans]
        if len(family) > len(matches) // 2:
            logger.info(
                f"{len(family)} of {len(matches)} matches exceed {self.immediate_family_centimorgans} cM; "
                f"not treating any as immediate family"
            )
            return []
        return family

    def _finish(self, result: ClusteringResult) -> ClusteringResult:
        if self.writer is not None:
            self.writer.write(result)
        return result


def correlated_clusters(result: ClusteringResult, min_cluster_size: int) -> Dict[int, List[int]]:
    """Other clusters each clustered match is directly correlated with.

    A cluster counts when at least ``min_cluster_size`` of its members have a
    direct correlation (cell value >= 1) in the match's row. Immediate family
    and the match's own cluster are ignored.

    Returns:
        Match index -> sorted cluster numbers, for matches with at least one

    """
    if result.is_empty or result.matrix is None:
        return {}

    matrix = result.matrix
    numbers = result.index_cluster_numbers
    members = np.array(
        [
            index
            for index in result.ordered_leaf_indexes()
            if index in numbers and index not in result.immediate_family_indexes and index < matrix.width
        ],
        dtype=np.int64,
    )
    member_numbers = np.array([numbers[index] for index in members], dtype=np.int64)

    correlated: Dict[int, List[int]] = {}
    for index in result.ordered_leaf_indexes():
        row = matrix.get(index)
        if row is None or not len(members):
            continue
        hits = member_numbers[row[members] >= 1]
        hits = hits[hits != numbers.get(index, 0)]
        found, counts = np.unique(hits, return_counts=True)
        found = [int(number) for number in found[counts >= min_cluster_size]]
        if found:
            correlated[index] = found
    return correlated
