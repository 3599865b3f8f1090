"""Tests for primary cluster selection."""

import math

import numpy as np
import pytest
from helpers.matches import make_matches
from hypothesis import given
from hypothesis import strategies as st

from shared_clustering.clustering import (
    AgglomerativeBuilder,
    NodeArena,
    PrimaryClusterFinder,
    build_leaf_nodes,
    index_cluster_numbers,
)
from shared_clustering.distance import OverlapWeightedEuclideanDistance
from shared_clustering.matrix import CountBasedMatrixBuilder


def _two_triples(root_distance=0.5):
    """((0, 1), 2) and ((3, 4), 5) joined at ``root_distance``."""
    arena = NodeArena()
    leaves = [arena.add_leaf(index, np.zeros(6, dtype=np.float32)) for index in range(6)]
    left = arena.add_cluster(arena.add_cluster(leaves[0], leaves[1], 0.1), leaves[2], 0.2)
    right = arena.add_cluster(arena.add_cluster(leaves[3], leaves[4], 0.1), leaves[5], 0.2)
    root = arena.add_cluster(left, right, root_distance)
    return arena, root, left, right


class TestPrimaryClusterFinder:
    """Test maximal subtree selection."""

    def test_whole_tree_is_one_cluster(self) -> None:
        """Test that a tight tree is a single cluster."""
        arena, root, _, _ = _two_triples()
        clusters = PrimaryClusterFinder(3).find(arena, [root])

        assert len(clusters) == 1
        assert clusters[0].number == 1
        assert clusters[0].handle == root
        assert clusters[0].leaf_indexes == (0, 1, 2, 3, 4, 5)
        assert clusters[0].size == 6

    def test_max_size_splits_large_nodes(self) -> None:
        """Test that nodes over the maximum size are split."""
        arena, root, left, right = _two_triples()
        clusters = PrimaryClusterFinder(3, max_cluster_size=4).find(arena, [root])

        assert [cluster.handle for cluster in clusters] == [left, right]
        assert [cluster.number for cluster in clusters] == [1, 2]
        assert clusters[1].leaf_indexes == (3, 4, 5)

    def test_forced_merge_never_qualifies(self) -> None:
        """Test that a forced merge is never a cluster."""
        arena, root, left, right = _two_triples(root_distance=math.inf)
        clusters = PrimaryClusterFinder(3).find(arena, [root])

        assert [cluster.handle for cluster in clusters] == [left, right]

    def test_max_distance_splits_loose_nodes(self) -> None:
        """Test that nodes over the maximum distance are split."""
        arena, root, left, right = _two_triples()
        clusters = PrimaryClusterFinder(3, max_cluster_distance=0.3).find(arena, [root])

        assert [cluster.handle for cluster in clusters] == [left, right]

    def test_small_subtrees_are_not_clusters(self) -> None:
        """Test that subtrees below the minimum size are not clusters."""
        arena, root, _, _ = _two_triples(root_distance=math.inf)
        assert PrimaryClusterFinder(4).find(arena, [root]) == []

    def test_leaf_roots_are_skipped(self) -> None:
        """Test that a bare leaf root is never a cluster."""
        arena = NodeArena()
        leaf = arena.add_leaf(0, np.zeros(1, dtype=np.float32))
        assert PrimaryClusterFinder(1).find(arena, [leaf]) == []

    def test_invalid_limits(self) -> None:
        """Test that invalid limits are rejected."""
        with pytest.raises(ValueError):
            PrimaryClusterFinder(0)
        with pytest.raises(ValueError):
            PrimaryClusterFinder(5, max_cluster_size=4)
        with pytest.raises(ValueError):
            PrimaryClusterFinder(3, max_cluster_distance=-1.0)

    def test_index_cluster_numbers(self) -> None:
        """Test mapping leaf indexes to cluster numbers."""
        arena, root, _, _ = _two_triples(root_distance=math.inf)
        numbers = index_cluster_numbers(PrimaryClusterFinder(3).find(arena, [root]))
        assert numbers == {0: 1, 1: 1, 2: 1, 3: 2, 4: 2, 5: 2}

    @given(
        st.lists(st.integers(min_value=1, max_value=6), min_size=1, max_size=5),
        st.integers(min_value=1, max_value=5),
    )
    def test_clusters_are_disjoint_and_in_tree_order(self, sizes, min_size) -> None:
        """Test that clusters are disjoint, numbered and in tree order."""
        coords = {}
        start = 0
        for size in sizes:
            members = set(range(start, start + size))
            coords.update({index: members for index in members})
            start += size
        matches = make_matches(coords)
        matrix = CountBasedMatrixBuilder().correlate(matches, [])
        metric = OverlapWeightedEuclideanDistance()
        arena = NodeArena()
        roots = AgglomerativeBuilder(metric.name).build(arena, build_leaf_nodes(matches, matrix, metric, arena))

        clusters = PrimaryClusterFinder(min_size).find(arena, roots)

        seen = [index for cluster in clusters for index in cluster.leaf_indexes]
        assert len(seen) == len(set(seen))
        assert all(cluster.size >= min_size for cluster in clusters)
        assert [cluster.number for cluster in clusters] == list(range(1, len(clusters) + 1))
        tree_order = arena.ordered_leaf_indexes(roots[0])
        positions = [tree_order.index(index) for index in seen]
        assert positions == sorted(positions)
        # every clique big enough lands whole in some cluster; single leaves never do
        assert len(seen) >= sum(size for size in sizes if size >= max(min_size, 2))

