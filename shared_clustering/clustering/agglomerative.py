"""Bottom-up construction of the cluster tree.

Each step merges the two components joined by the globally shortest remaining
candidate edge. A component is only ever joined at its two end leaves (its
first and second leaf), so an edge stays usable only while both of its leaves
are still ends and still belong to different components. Both conditions can
only go from true to false, which lets every leaf's sorted neighbor list be
consumed from the front and pruned lazily, with a heap over the list heads
standing in for a full scan of the active set at every step.
"""

import heapq
import logging
import math
from typing import List, Optional, Sequence, Tuple

from shared_clustering.clustering.nodes import LeafNode, Neighbor, NodeArena
from shared_clustering.utils.progress import SUPPRESS_PROGRESS, ProgressSink
from shared_clustering.utils.union_find import DisjointSet

logger = logging.getLogger(__name__)

# (distance, source index, target index, source handle, source cursor)
HeapEntry = Tuple[float, int, int, int, int]


class AgglomerativeBuilder:
    """Merge leaves into a single binary tree.

    Ties between equal distances are broken by the lower source leaf index,
    then the lower target leaf index, so a given input always yields the same
    tree.
    """

    def __init__(self, metric_name: str = "", progress: Optional[ProgressSink] = None):
        self.metric_name = metric_name
        self.progress = progress or SUPPRESS_PROGRESS

    def build(self, arena: NodeArena, leaf_handles: Sequence[int]) -> List[int]:
        """Merge every leaf in ``leaf_handles`` into one tree.

        Leaves without candidate neighbors take part as merge targets and in
        fallback merges, so every leaf ends up in the tree exactly once.

        Args:
            arena: Arena holding the leaves; cluster nodes are added to it
            leaf_handles: Leaves to cluster

        Returns:
            Handles of the root nodes (a single root for non-empty input)

        """
        if not leaf_handles:
            return []

        components = DisjointSet(leaf_handles)
        self.progress.reset(f"Building clusters for {len(leaf_handles)} matches...", len(leaf_handles) - 1)

        heap: List[HeapEntry] = []
        for handle in leaf_handles:
            self._push_head(heap, arena.leaf(handle))

        merges = 0
        while components.count > 1:
            edge = self._pop_valid_edge(heap, arena, components)
            if edge is None:
                break
            source, neighbor = edge
            first = components.get_label(neighbor.handle)
            second = components.get_label(source.handle)
            cluster = arena.add_cluster(first, second, neighbor.distance, self.metric_name)
            components.union(neighbor.handle, source.handle, cluster)

            source.cursor += 1
            if not source.interior:
                self._push_head(heap, source)
            merges += 1
            self.progress.increment()

        forced = self._merge_disconnected(arena, components)

        roots = components.labels()
        logger.info(
            f"Built {len(roots)} root(s) from {len(leaf_handles)} leaves: "
            f"{merges} neighbor merges, {forced} fallback merges"
        )
        self.progress.reset()
        return roots

    @staticmethod
    def _push_head(heap: List[HeapEntry], leaf: LeafNode) -> None:
        if leaf.cursor < len(leaf.neighbors):
            head = leaf.neighbors[leaf.cursor]
            heapq.heappush(heap, (head.distance, leaf.index, head.index, leaf.handle, leaf.cursor))

    def _pop_valid_edge(
        self,
        heap: List[HeapEntry],
        arena: NodeArena,
        components: DisjointSet,
    ) -> Optional[Tuple[LeafNode, Neighbor]]:
        while heap:
            _, _, _, handle, cursor = heapq.heappop(heap)
            source = arena.leaf(handle)
            if source.interior or cursor != source.cursor:
                continue
            neighbor = source.neighbors[cursor]
            if arena.is_interior(neighbor.handle) or components.is_same_set(handle, neighbor.handle):
                source.cursor += 1
                self._push_head(heap, source)
                continue
            return source, neighbor
        return None

    def _merge_disconnected(self, arena: NodeArena, components: DisjointSet) -> int:
        """Join what is left, two largest components first.

        Runs only once no candidate edge is usable; since edges never become
        usable again, every remaining merge is a fallback merge.
        """
        if components.count <= 1:
            return 0

        queue = [(-arena.leaf_count(label), label) for label in components.labels()]
        heapq.heapify(queue)
        forced = 0
        while len(queue) > 1:
            _, first = heapq.heappop(queue)
            _, second = heapq.heappop(queue)
            cluster = arena.add_cluster(first, second, math.inf, self.metric_name)
            components.union(arena[first].first_leaf, arena[second].first_leaf, cluster)
            heapq.heappush(queue, (-arena.leaf_count(cluster), cluster))
            forced += 1
            self.progress.increment()

        logger.debug(f"Fallback merged {forced + 1} disconnected components")
        return forced
