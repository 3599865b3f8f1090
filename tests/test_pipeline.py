"""End-to-end tests for the clustering pipeline."""

from unittest.mock import MagicMock

import numpy as np
import pytest
from helpers.matches import cliques, make_match, make_matches

from shared_clustering import ClusteringResult, ClusteringStatus, HierarchicalClusterer, correlated_clusters
from shared_clustering.clustering import NodeArena, PrimaryClusterFinder, index_cluster_numbers
from shared_clustering.matrix import CorrelationMatrix, CountBasedMatrixBuilder
from shared_clustering.utils.settings import default_settings


@pytest.fixture
def clusterer(executor):
    return HierarchicalClusterer(executor=executor)


class TestEmptyInput:
    """Test inputs with nothing to cluster."""

    def test_all_matches_below_floor(self, executor) -> None:
        """Test that a run with every match below the floor is empty but still written."""
        writer = MagicMock()
        matches = make_matches({0: {1}, 1: {0}}, cms={0: 15.0, 1: 12.0})

        result = HierarchicalClusterer(executor=executor, writer=writer).cluster(matches)

        assert result.status is ClusteringStatus.EMPTY_INPUT
        assert result.is_empty
        assert result.ordered_leaf_indexes() == []
        writer.write.assert_called_once_with(result)

    def test_no_matches(self, clusterer) -> None:
        """Test that no matches give an empty result."""
        assert clusterer.cluster([]).is_empty

    def test_guid_filter_removes_everything(self, clusterer) -> None:
        """Test that a filter matching nothing gives an empty result."""
        matches = make_matches(cliques(4))
        result = clusterer.cluster(matches, test_guids_to_filter=["unknown"])
        assert result.is_empty
        assert len(result.matches_by_index) == 4

    def test_explicit_min_cm_above_every_match(self, clusterer) -> None:
        """Test that a floor above every match gives an empty result."""
        assert clusterer.cluster(make_matches(cliques(4)), min_centimorgans_to_cluster=5000.0).is_empty


class TestClustering:
    """Test full runs."""

    def test_two_groups(self, executor) -> None:
        """Test that two cliques become two numbered primary clusters."""
        writer = MagicMock()
        result = HierarchicalClusterer(executor=executor, writer=writer).cluster(make_matches(cliques(4, 4)))

        assert result.status is ClusteringStatus.COMPLETED
        assert len(result.roots) == 1
        assert sorted(result.ordered_leaf_indexes()) == list(range(8))
        assert [cluster.number for cluster in result.primary_clusters] == [1, 2]
        assert {frozenset(cluster.leaf_indexes) for cluster in result.primary_clusters} == {
            frozenset(range(4)),
            frozenset(range(4, 8)),
        }
        assert result.index_cluster_numbers == index_cluster_numbers(result.primary_clusters)
        writer.write.assert_called_once_with(result)

    def test_count_based_builder_from_settings(self, executor) -> None:
        """Test clustering with the count based builder from settings."""
        settings = default_settings(matrix={"builder": "count_based"})
        result = HierarchicalClusterer(settings, executor=executor).cluster(make_matches(cliques(3, 5)))

        assert isinstance(result.matrix, CorrelationMatrix)
        assert sorted(len(cluster.leaf_indexes) for cluster in result.primary_clusters) == [3, 5]

    def test_injected_components_are_used(self, executor) -> None:
        """Test that injected components replace the defaults."""
        finder = PrimaryClusterFinder(min_cluster_size=5)
        result = HierarchicalClusterer(
            executor=executor,
            matrix_builder=CountBasedMatrixBuilder(),
            primary_cluster_finder=finder,
        ).cluster(make_matches(cliques(4, 6)))

        assert [cluster.size for cluster in result.primary_clusters] == [6]

    def test_guid_filter_limits_correlated_matches(self, clusterer) -> None:
        """Test that the guid filter limits which matches are correlated."""
        matches = make_matches(cliques(4, 4))
        guids = [match.match.test_guid for match in matches[:4]]

        result = clusterer.cluster(matches, test_guids_to_filter=guids)

        assert sorted(result.ordered_leaf_indexes()) == [0, 1, 2, 3]

    def test_low_cm_matches_are_not_clustered_by_default(self, clusterer) -> None:
        """Test that low cM matches are not clustered by default."""
        coords = cliques(5)
        matches = make_matches(coords) + [make_match(5, {0, 1, 2}, cm=10.0)]

        result = clusterer.cluster(matches)

        assert sorted(result.ordered_leaf_indexes()) == [0, 1, 2, 3, 4]
        assert 5 not in result.index_cluster_numbers

    def test_low_cm_match_extends_cluster(self, clusterer) -> None:
        """Test that a low cM match joins the cluster it overlaps."""
        matches = make_matches(cliques(5)) + [make_match(5, {0, 1, 2}, cm=10.0)]

        result = clusterer.cluster(matches, min_centimorgans_to_cluster=5.0)

        assert len(result.roots) == 1
        assert sorted(result.ordered_leaf_indexes()) == [0, 1, 2, 3, 4, 5]
        assert result.index_cluster_numbers[5] == 1
        assert result.primary_clusters[0].size == 6


class TestImmediateFamily:
    """Test the immediate family rule."""

    def test_close_matches_are_family(self, clusterer) -> None:
        """Test that close matches are immediate family."""
        matches = make_matches(
            {index: set() for index in range(5)},
            cms={0: 300.0, 1: 250.0, 2: 100.0, 3: 90.0, 4: 80.0},
        )
        assert [match.index for match in clusterer.find_immediate_family(matches)] == [0, 1]

    def test_too_many_close_matches_means_no_family(self, clusterer) -> None:
        """Test that too many close matches means no family at all."""
        matches = make_matches(
            {index: set() for index in range(4)},
            cms={0: 300.0, 1: 250.0, 2: 220.0, 3: 90.0},
        )
        assert clusterer.find_immediate_family(matches) == []

    def test_threshold_is_exclusive(self, clusterer) -> None:
        """Test that exactly 200 cM is not immediate family."""
        matches = make_matches({0: set(), 1: set(), 2: set()}, cms={0: 200.0, 1: 50.0, 2: 40.0})
        assert clusterer.find_immediate_family(matches) == []


def _hand_built_result(rows, family=frozenset()):
    """Clusters (0, 1, 2) and (3, 4, 5) under a fallback root."""
    arena = NodeArena()
    matrix = CorrelationMatrix(6)
    leaves = []
    for index, values in enumerate(rows):
        matrix.get_or_add(index)[:] = values
        leaves.append(arena.add_leaf(index, matrix[index]))
    left = arena.add_cluster(arena.add_cluster(leaves[0], leaves[1], 0.1), leaves[2], 0.2)
    right = arena.add_cluster(arena.add_cluster(leaves[3], leaves[4], 0.1), leaves[5], 0.2)
    root = arena.add_cluster(left, right, np.inf)
    clusters = PrimaryClusterFinder(3).find(arena, [root])
    return ClusteringResult(
        status=ClusteringStatus.COMPLETED,
        arena=arena,
        roots=[root],
        primary_clusters=clusters,
        index_cluster_numbers=index_cluster_numbers(clusters),
        matches_by_index={index: make_match(index, set()) for index in range(6)},
        immediate_family_indexes=frozenset(family),
        matrix=matrix,
    )


class TestCorrelatedClusters:
    """Test cross-cluster correlation."""

    ROWS = [
        [2, 2, 2, 1, 1, 1],
        [2, 2, 2, 0, 0, 1],
        [2, 2, 2, 0, 0, 0],
        [1, 1, 0.5, 2, 2, 2],
        [0, 0, 0, 2, 2, 2],
        [0, 0, 0, 2, 2, 2],
    ]

    def test_enough_direct_links_to_other_cluster(self) -> None:
        """Test that enough direct links correlate two clusters."""
        assert correlated_clusters(_hand_built_result(self.ROWS), 3) == {0: [2]}

    def test_smaller_minimum(self) -> None:
        """Test that a smaller minimum finds more correlations."""
        assert correlated_clusters(_hand_built_result(self.ROWS), 2) == {0: [2], 3: [1]}

    def test_immediate_family_ignored(self) -> None:
        """Test that immediate family rows are ignored."""
        assert correlated_clusters(_hand_built_result(self.ROWS, family={5}), 3) == {}

    def test_empty_result(self) -> None:
        """Test that an empty result has no correlated clusters."""
        assert correlated_clusters(ClusteringResult.empty(), 3) == {}
