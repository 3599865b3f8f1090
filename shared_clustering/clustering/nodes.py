"""Node storage for the cluster tree.

Nodes live in a ``NodeArena`` and refer to each other by integer handle, so a
parent link is a plain field rather than an ownership edge and subtrees can be
replaced in place without dangling references.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Union

import numpy as np


@dataclass(frozen=True, order=True)
class Neighbor:
    """Candidate edge from a leaf to another leaf, ordered by distance.

    Attributes:
        distance: Squared distance between the two leaves
        index: Match index of the target leaf (tie-break)
        handle: Arena handle of the target leaf
    """

    distance: float
    index: int
    handle: int = field(compare=False)


@dataclass(eq=False)
class LeafNode:
    """One clustered match.

    Attributes:
        handle: Position in the arena
        index: Match index
        coords: The match's correlation matrix row
        neighbors: Candidate neighbors in ascending distance order
        parent: Handle of the enclosing cluster node, if merged
        interior: True once the leaf stops being an end of its subtree
        cursor: Position of the first neighbor not yet known to be consumed
    """

    handle: int
    index: int
    coords: np.ndarray = field(repr=False)
    neighbors: List[Neighbor] = field(default_factory=list, repr=False)
    parent: Optional[int] = None
    interior: bool = False
    cursor: int = 0

    is_leaf = True

    @property
    def first_leaf(self) -> int:
        return self.handle

    @property
    def second_leaf(self) -> int:
        return self.handle

    @property
    def leaf_count(self) -> int:
        return 1

    @property
    def distance(self) -> float:
        return 0.0


@dataclass(eq=False)
class ClusterNode:
    """A binary merge of two subtrees.

    ``first_leaf`` and ``second_leaf`` are the two ends of the node's ordered
    leaf sequence; they stand in for the node in neighbor bookkeeping.
    """

    handle: int
    first: int
    second: int
    distance: float
    metric_name: str
    first_leaf: int
    second_leaf: int
    leaf_count: int
    parent: Optional[int] = None

    is_leaf = False

    @property
    def is_forced(self) -> bool:
        return math.isinf(self.distance)


Node = Union[LeafNode, ClusterNode]


class NodeArena:
    """Owns every node of one or more cluster trees."""

    def __init__(self) -> None:
        self._nodes: List[Node] = []

    def __len__(self) -> int:
        return len(self._nodes)

    def __getitem__(self, handle: int) -> Node:
        return self._nodes[handle]

    def __iter__(self) -> Iterator[Node]:
        return iter(self._nodes)

    def leaf(self, handle: int) -> LeafNode:
        node = self._nodes[handle]
        if not node.is_leaf:
            raise TypeError(f"Node {handle} is not a leaf")
        return node

    def add_leaf(self, index: int, coords: np.ndarray, neighbors: Optional[List[Neighbor]] = None) -> int:
        handle = len(self._nodes)
        self._nodes.append(LeafNode(handle, index, coords, neighbors or []))
        return handle

    def add_cluster(self, first: int, second: int, distance: float, metric_name: str = "") -> int:
        """Merge two root nodes under a new cluster node.

        The inner ends of both children (first's second leaf and second's first
        leaf) become interior leaves.
        """
        first_node = self._nodes[first]
        second_node = self._nodes[second]
        if first == second:
            raise ValueError(f"Cannot merge node {first} with itself")
        if first_node.parent is not None or second_node.parent is not None:
            raise ValueError(f"Nodes {first} and {second} must both be roots to merge")

        handle = len(self._nodes)
        self._nodes.append(
            ClusterNode(
                handle=handle,
                first=first,
                second=second,
                distance=distance,
                metric_name=metric_name,
                first_leaf=first_node.first_leaf,
                second_leaf=second_node.second_leaf,
                leaf_count=first_node.leaf_count + second_node.leaf_count,
            )
        )
        first_node.parent = handle
        second_node.parent = handle
        if not first_node.is_leaf:
            self._nodes[first_node.second_leaf].interior = True
        if not second_node.is_leaf:
            self._nodes[second_node.first_leaf].interior = True
        return handle

    def ordered_leaves(self, handle: int) -> List[int]:
        """Leaf handles under ``handle`` in left-to-right order."""
        leaves = []
        stack = [handle]
        while stack:
            node = self._nodes[stack.pop()]
            if node.is_leaf:
                leaves.append(node.handle)
            else:
                stack.append(node.second)
                stack.append(node.first)
        return leaves

    def ordered_leaf_indexes(self, handle: int) -> List[int]:
        return [self._nodes[leaf].index for leaf in self.ordered_leaves(handle)]

    def leaf_count(self, handle: int) -> int:
        return self._nodes[handle].leaf_count

    def is_interior(self, handle: int) -> bool:
        return self.leaf(handle).interior

    def replace_child(self, parent: int, old: int, new: int) -> None:
        """Put ``new`` where ``old`` hangs under ``parent`` and refresh the ancestors."""
        parent_node = self._nodes[parent]
        if parent_node.first == old:
            parent_node.first = new
        elif parent_node.second == old:
            parent_node.second = new
        else:
            raise ValueError(f"Node {old} is not a child of {parent}")
        self._nodes[old].parent = None
        self._nodes[new].parent = parent

        node: Optional[int] = parent
        while node is not None:
            cluster = self._nodes[node]
            first, second = self._nodes[cluster.first], self._nodes[cluster.second]
            cluster.first_leaf = first.first_leaf
            cluster.second_leaf = second.second_leaf
            cluster.leaf_count = first.leaf_count + second.leaf_count
            node = cluster.parent

    def graft(self, source: NodeArena, root: int, leaf_map: Dict[int, int]) -> int:
        """Copy the subtree ``root`` of another arena into this one.

        Leaves whose match index is in ``leaf_map`` are replaced by the existing
        leaf handle it maps to, so match identity is never duplicated; other
        leaves are copied as new leaves.

        Returns:
            Handle of the copied root in this arena
        """
        copied: Dict[int, int] = {}
        stack = [(root, False)]
        while stack:
            handle, children_done = stack.pop()
            node = source[handle]
            if node.is_leaf:
                if node.index in leaf_map:
                    target = leaf_map[node.index]
                    self._nodes[target].parent = None
                    copied[handle] = target
                else:
                    copied[handle] = self.add_leaf(node.index, node.coords)
            elif not children_done:
                stack.append((handle, True))
                stack.append((node.second, False))
                stack.append((node.first, False))
            else:
                copied[handle] = self.add_cluster(
                    copied[node.first], copied[node.second], node.distance, node.metric_name
                )
        return copied[root]
