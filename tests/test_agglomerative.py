"""Tests for leaf construction and the agglomerative builder."""

import math
from unittest.mock import MagicMock, call

import numpy as np
from helpers.matches import cliques, make_matches
from hypothesis import given
from hypothesis import strategies as st

from shared_clustering.clustering.agglomerative import AgglomerativeBuilder
from shared_clustering.clustering.neighbors import build_buckets, build_leaf_nodes, neighbors_by_distance
from shared_clustering.clustering.nodes import NodeArena
from shared_clustering.distance import OverlapWeightedEuclideanDistance
from shared_clustering.matrix import CorrelationMatrix, CountBasedMatrixBuilder


def _direct_matrix(rows):
    matrix = CorrelationMatrix(len(rows[0]))
    for index, values in enumerate(rows):
        matrix.get_or_add(index)[:] = values
    return matrix


def _three_chain():
    """0 lists 1, 1 lists 0 and 2, 2 lists 1 (plus themselves)."""
    matches = make_matches({0: {1}, 1: {0, 2}, 2: {1}})
    matrix = _direct_matrix([[1, 1, 0], [1, 1, 1], [0, 1, 1]])
    return matches, matrix


def _build(matches, matrix, metric=None, executor=None):
    metric = metric or OverlapWeightedEuclideanDistance()
    arena = NodeArena()
    handles = build_leaf_nodes(matches, matrix, metric, arena, executor)
    roots = AgglomerativeBuilder(metric.name).build(arena, handles)
    return arena, handles, roots


@st.composite
def networks(draw):
    n = draw(st.integers(min_value=1, max_value=20))
    coords = {index: draw(st.sets(st.integers(0, n - 1), max_size=5)) for index in range(n)}
    return make_matches(coords)


class TestNeighborIndex:
    """Test candidate generation."""

    def test_buckets_by_significant_coordinate(self) -> None:
        """Test that leaves are bucketed under each significant coordinate."""
        matches, matrix = _three_chain()
        arena = NodeArena()
        handles = [arena.add_leaf(match.index, matrix[match.index]) for match in matches]

        buckets = build_buckets(arena, handles, OverlapWeightedEuclideanDistance())

        assert buckets == {0: [0, 1], 1: [0, 1, 2], 2: [1, 2]}

    def test_neighbors_only_point_to_higher_indexes(self) -> None:
        """Test that neighbor lists only hold higher indexes, closest first."""
        matches, matrix = _three_chain()
        arena = NodeArena()
        handles = [arena.add_leaf(match.index, matrix[match.index]) for match in matches]
        metric = OverlapWeightedEuclideanDistance()
        buckets = build_buckets(arena, handles, metric)

        first = neighbors_by_distance(arena, handles[0], buckets, metric)
        middle = neighbors_by_distance(arena, handles[1], buckets, metric)
        last = neighbors_by_distance(arena, handles[2], buckets, metric)

        assert [(n.index, n.distance) for n in first] == [(1, 0.5), (2, 2.0)]
        assert [(n.index, n.distance) for n in middle] == [(2, 0.5)]
        assert last == []

    def test_build_leaf_nodes_reports_progress(self, executor) -> None:
        """Test that both leaf phases report progress under their labels."""
        matches, matrix = _three_chain()
        progress = MagicMock()

        handles = build_leaf_nodes(matches, matrix, OverlapWeightedEuclideanDistance(), NodeArena(), executor, progress)

        assert len(handles) == 3
        assert progress.increment.call_count == 6
        labels = [args[0] for args, _ in progress.reset.call_args_list if args]
        assert labels[0].startswith("Calculating coordinates for 3 matches")
        assert labels[1].startswith("Finding closest pairwise distances for 3 matches")

    def test_empty_input(self) -> None:
        """Test that no matches produce no leaves."""
        assert build_leaf_nodes([], CorrelationMatrix(1), OverlapWeightedEuclideanDistance(), NodeArena()) == []


class TestAgglomerativeBuilder:
    """Test tree construction."""

    def test_three_match_chain(self) -> None:
        """First merge joins 0 with 1 (tie with 1-2 goes to the lower index); 0 and 2 never merge directly."""
        matches, matrix = _three_chain()
        arena, handles, roots = _build(matches, matrix)

        assert len(roots) == 1
        assert sorted(arena.ordered_leaf_indexes(roots[0])) == [0, 1, 2]

        clusters = [node for node in arena if not node.is_leaf]
        assert len(clusters) == 2
        assert set(arena.ordered_leaf_indexes(clusters[0].handle)) == {0, 1}
        assert clusters[0].distance == 0.5
        assert clusters[1].distance == 0.5

    def test_disconnected_components_fallback_merge(self) -> None:
        """Test that unrelated groups are joined by a forced merge at infinity."""
        matches = make_matches(cliques(3, 3))
        matrix = CountBasedMatrixBuilder().correlate(matches, [])
        arena, _, roots = _build(matches, matrix)

        assert len(roots) == 1
        root = arena[roots[0]]
        assert math.isinf(root.distance)
        assert arena.leaf_count(root.first) == 3
        assert arena.leaf_count(root.second) == 3
        assert not arena[root.first].is_forced
        assert not arena[root.second].is_forced

    def test_leaf_without_candidates_still_placed(self) -> None:
        """Test that a leaf with no neighbors still ends up under the root."""
        coords = cliques(3)
        coords[3] = set()
        matches = make_matches(coords)
        matrix = CountBasedMatrixBuilder().correlate(matches, [])
        arena, handles, roots = _build(matches, matrix)

        assert arena[handles[3]].neighbors == []
        assert len(roots) == 1
        assert sorted(arena.ordered_leaf_indexes(roots[0])) == [0, 1, 2, 3]
        assert math.isinf(arena[roots[0]].distance)

    def test_fallback_merges_largest_components_first(self) -> None:
        """Test that forced merges join the two largest components first."""
        matches = make_matches(cliques(2, 4, 3))
        matrix = CountBasedMatrixBuilder().correlate(matches, [])
        arena, _, roots = _build(matches, matrix)

        root = arena[roots[0]]
        # 4 and 3 merge first, the pair joins last
        assert arena.leaf_count(root.first) == 7
        assert arena.leaf_count(root.second) == 2

    def test_single_leaf(self) -> None:
        """Test that a single leaf is its own root."""
        matches = make_matches({0: set()})
        matrix = _direct_matrix([[1.0]])
        arena, handles, roots = _build(matches, matrix)
        assert roots == handles

    def test_empty(self) -> None:
        """Test that an empty input yields nothing."""
        assert AgglomerativeBuilder().build(NodeArena(), []) == []

    def test_progress_reset_label(self) -> None:
        """Test that merging reports one step per merge under its label."""
        matches, matrix = _three_chain()
        metric = OverlapWeightedEuclideanDistance()
        arena = NodeArena()
        handles = build_leaf_nodes(matches, matrix, metric, arena)
        progress = MagicMock()

        AgglomerativeBuilder(metric.name, progress).build(arena, handles)

        assert progress.reset.call_args_list[0] == call("Building clusters for 3 matches...", 2)
        assert progress.increment.call_count == 2

    def test_deterministic(self) -> None:
        """Test that two builds of the same input give the same leaf order."""
        matches = make_matches(cliques(4, 3))
        matrix = CountBasedMatrixBuilder().correlate(matches, [])
        first_arena, _, first_roots = _build(matches, matrix)
        second_arena, _, second_roots = _build(matches, matrix)

        assert first_arena.ordered_leaf_indexes(first_roots[0]) == second_arena.ordered_leaf_indexes(second_roots[0])

    @given(networks())
    def test_every_leaf_exactly_once_under_one_root(self, matches) -> None:
        """Test that every leaf appears once under a single root."""
        matrix = CountBasedMatrixBuilder().correlate(matches, [])
        arena, handles, roots = _build(matches, matrix)

        assert len(roots) == 1
        leaves = arena.ordered_leaf_indexes(roots[0])
        assert sorted(leaves) == list(range(len(matches)))
        assert arena.leaf_count(roots[0]) == len(matches)
        assert len(arena) == 2 * len(matches) - 1

    @given(networks())
    def test_merge_distances_never_decrease_below_children(self, matches) -> None:
        """Neighbor merges happen in ascending distance order."""
        matrix = CountBasedMatrixBuilder().correlate(matches, [])
        arena, _, _ = _build(matches, matrix)

        distances = [node.distance for node in arena if not node.is_leaf]
        assert distances == sorted(distances)

    def test_threaded_neighbor_lists_match_sequential(self) -> None:
        """Test that threaded and sequential runs build the same tree."""
        from shared_clustering.utils.parallel_utils import ParallelExecutor

        matches = make_matches(cliques(5, 4, 6))
        matrix = CountBasedMatrixBuilder().correlate(matches, [])
        threaded = ParallelExecutor(workers=2, small_input_threshold=0)

        arena_a, _, roots_a = _build(matches, matrix, executor=threaded)
        arena_b, _, roots_b = _build(matches, matrix)

        assert arena_a.ordered_leaf_indexes(roots_a[0]) == arena_b.ordered_leaf_indexes(roots_b[0])
        assert np.array_equal(arena_a[0].coords, arena_b[0].coords)
