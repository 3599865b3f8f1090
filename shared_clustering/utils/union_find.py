"""Union-Find over leaf handles for tracking merged components.

The agglomerative builder asks "which tree does this leaf belong to, and what
is that tree's root node?" once per candidate edge. Following parent links is
linear in tree depth; this structure answers in effectively constant time.
"""

import logging
from typing import Dict, Iterable, List

logger = logging.getLogger(__name__)


class DisjointSet:
    """Union-Find with union by rank, path compression and a root label per set.

    Each set carries a ``label``: for the builder, the handle of the tree node
    currently at the top of that component.
    """

    def __init__(self, elements: Iterable[int] = ()) -> None:
        self.parent: Dict[int, int] = {}
        self.rank: Dict[int, int] = {}
        self.size: Dict[int, int] = {}
        self.label: Dict[int, int] = {}
        self._count = 0
        for element in elements:
            self.make_set(element)

    def make_set(self, x: int) -> None:
        """Create a singleton set labelled with the element itself.

        Args:
            x: Element to add

        """
        if x not in self.parent:
            self.parent[x] = x
            self.rank[x] = 0
            self.size[x] = 1
            self.label[x] = x
            self._count += 1

    def find(self, x: int) -> int:
        """Find the representative of the set containing x.

        Args:
            x: Element to find

        Returns:
            Representative element of the set containing x

        """
        if x not in self.parent:
            raise ValueError(f"Element {x} not found in disjoint set")

        root = x
        while self.parent[root] != root:
            root = self.parent[root]
        # Path compression
        while self.parent[x] != root:
            self.parent[x], x = root, self.parent[x]
        return root

    def union(self, x: int, y: int, label: int) -> bool:
        """Merge the sets containing x and y and label the result.

        Args:
            x: First element
            y: Second element
            label: Label of the merged set

        Returns:
            True if the sets were merged, False if they were already one set

        """
        root_x = self.find(x)
        root_y = self.find(y)

        if root_x == root_y:
            return False

        if self.rank[root_x] < self.rank[root_y]:
            root_x, root_y = root_y, root_x

        self.parent[root_y] = root_x
        self.size[root_x] += self.size[root_y]
        self.label[root_x] = label
        del self.label[root_y]

        if self.rank[root_x] == self.rank[root_y]:
            self.rank[root_x] += 1

        self._count -= 1
        return True

    def get_label(self, x: int) -> int:
        return self.label[self.find(x)]

    def get_size(self, x: int) -> int:
        return self.size[self.find(x)]

    def is_same_set(self, x: int, y: int) -> bool:
        return self.find(x) == self.find(y)

    def labels(self) -> List[int]:
        """Labels of every set, in order of set creation."""
        return list(self.label.values())

    @property
    def count(self) -> int:
        """Number of disjoint sets."""
        return self._count

    def __len__(self) -> int:
        return len(self.parent)
