"""Hierarchical clustering of DNA matches by shared match lists."""

__version__ = "1.0.0"

from shared_clustering.models import ClusterableMatch, ClusteringResult, ClusteringStatus, Match
from shared_clustering.pipeline import HierarchicalClusterer, correlated_clusters

__all__ = [
    "ClusterableMatch",
    "ClusteringResult",
    "ClusteringStatus",
    "HierarchicalClusterer",
    "Match",
    "__version__",
    "correlated_clusters",
]
