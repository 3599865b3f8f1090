"""Plain data structures exchanged with the loader and the output writer."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, FrozenSet, Iterable, List, Optional, Tuple

if TYPE_CHECKING:
    from shared_clustering.clustering.nodes import NodeArena
    from shared_clustering.clustering.primary_clusters import PrimaryCluster
    from shared_clustering.matrix.base import CorrelationMatrix


@dataclass(frozen=True)
class Match:
    """One compared DNA test and its shared-DNA strength with the test taker.

    Attributes:
        test_guid: Identifier of the matching test
        name: Display name
        shared_centimorgans: Total shared DNA in centimorgans
        shared_segments: Number of shared segments
        longest_block: Longest shared segment in centimorgans
        has_common_ancestors: Whether a common ancestor has been identified
        common_ancestors: Names of identified common ancestors
        note: Free-text note
    """

    test_guid: str
    name: str = ""
    shared_centimorgans: float = 0.0
    shared_segments: int = 0
    longest_block: float = 0.0
    has_common_ancestors: bool = False
    common_ancestors: Tuple[str, ...] = ()
    note: str = ""

    def __post_init__(self):
        if self.shared_centimorgans < 0:
            raise ValueError(f"shared_centimorgans must be >= 0, got {self.shared_centimorgans}")


@dataclass(frozen=True)
class ClusterableMatch:
    """A match together with its dense index and its shared-match coordinates.

    Attributes:
        index: Dense index assigned by the loader, stable for one run
        match: The underlying match record
        coords: Indexes of the matches that appear on this match's shared match
            list (loaders include the match's own index)
    """

    index: int
    match: Match
    coords: FrozenSet[int] = field(default_factory=frozenset)

    def __post_init__(self):
        if self.index < 0:
            raise ValueError(f"index must be >= 0, got {self.index}")
        if not isinstance(self.coords, frozenset):
            object.__setattr__(self, "coords", frozenset(self.coords))
        if any(coord < 0 for coord in self.coords):
            raise ValueError(f"coords of match {self.index} contain a negative index")

    @property
    def shared_centimorgans(self) -> float:
        return self.match.shared_centimorgans

    @property
    def max_coord(self) -> int:
        return max(self.coords, default=self.index)

    def with_coords(self, extra: Iterable[int]) -> ClusterableMatch:
        """Return a copy whose coordinates also include ``extra``."""
        return ClusterableMatch(self.index, self.match, self.coords | frozenset(extra))


class ClusteringStatus(enum.Enum):
    COMPLETED = "completed"
    # Nothing cleared the clustering floor; not a failure of the algorithm.
    EMPTY_INPUT = "empty_input"


@dataclass
class ClusteringResult:
    """Finished tree plus cluster numbering, handed to the output writer.

    Attributes:
        status: Whether clustering ran or the input was empty after filtering
        arena: Node storage for every tree in ``roots``
        roots: Handles of the root nodes (normally exactly one)
        primary_clusters: Primary clusters in tree order
        index_cluster_numbers: Match index -> 1-based cluster number
        matches_by_index: Every input match by index
        immediate_family_indexes: Indexes treated as immediate family
        matrix: The correlation matrix used to build the tree
    """

    status: ClusteringStatus
    arena: Optional["NodeArena"] = None
    roots: List[int] = field(default_factory=list)
    primary_clusters: List["PrimaryCluster"] = field(default_factory=list)
    index_cluster_numbers: Dict[int, int] = field(default_factory=dict)
    matches_by_index: Dict[int, ClusterableMatch] = field(default_factory=dict)
    immediate_family_indexes: FrozenSet[int] = frozenset()
    matrix: Optional["CorrelationMatrix"] = None

    @property
    def is_empty(self) -> bool:
        return self.status is ClusteringStatus.EMPTY_INPUT

    def ordered_leaf_indexes(self) -> List[int]:
        """Match indexes of every clustered leaf, left to right across roots."""
        if self.arena is None:
            return []
        return [
            self.arena[leaf].index
            for root in self.roots
            for leaf in self.arena.ordered_leaves(root)
        ]

    @classmethod
    def empty(cls, matches_by_index: Optional[Dict[int, ClusterableMatch]] = None) -> ClusteringResult:
        return cls(status=ClusteringStatus.EMPTY_INPUT, matches_by_index=matches_by_index or {})
