"""Tree construction: leaves, agglomeration, primary clusters and extension."""

from shared_clustering.clustering.agglomerative import AgglomerativeBuilder
from shared_clustering.clustering.extender import ClusterExtender
from shared_clustering.clustering.neighbors import build_buckets, build_leaf_nodes, neighbors_by_distance
from shared_clustering.clustering.nodes import ClusterNode, LeafNode, Neighbor, NodeArena
from shared_clustering.clustering.primary_clusters import (
    PrimaryCluster,
    PrimaryClusterFinder,
    index_cluster_numbers,
)

__all__ = [
    "AgglomerativeBuilder",
    "ClusterExtender",
    "ClusterNode",
    "LeafNode",
    "Neighbor",
    "NodeArena",
    "PrimaryCluster",
    "PrimaryClusterFinder",
    "build_buckets",
    "build_leaf_nodes",
    "index_cluster_numbers",
    "neighbors_by_distance",
]
