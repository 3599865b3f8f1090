"""Resource monitoring utilities for the pipeline.

Worker counts for the parallel phases are sized from CPU count and available
memory, since every worker holds references into the dense correlation rows.
"""

import os
from typing import Any, Optional

import psutil

from shared_clustering.utils.logging_utils import get_logger

logger = get_logger(__name__)


def get_system_info() -> dict[str, Any]:
    """Get basic system information."""
    memory = psutil.virtual_memory()
    return {
        "cpu_count": os.cpu_count() or 1,
        "total_memory_gb": memory.total / (1024**3),
        "available_memory_gb": memory.available / (1024**3),
        "memory_percent": memory.percent,
    }


def estimate_matrix_memory_gb(num_rows: int, width: int) -> float:
    """Estimate the memory held by a dense float32 correlation matrix in GB."""
    return num_rows * width * 4 / (1024**3)


def calculate_optimal_workers(
    requested_workers: Optional[int] = None,
    memory_cap_percent: float = 75.0,
) -> int:
    """Calculate optimal number of workers based on available resources.

    Args:
        requested_workers: User-requested worker count (None for auto)
        memory_cap_percent: Maximum memory usage percentage (default 75%)

    Returns:
        Optimal number of workers

    """
    cpu_count = os.cpu_count() or 1
    default_workers = min(cpu_count, max(1, cpu_count - 2))

    if requested_workers is not None:
        optimal_workers = max(1, min(requested_workers, cpu_count))
        logger.info(f"Using user-requested workers: {optimal_workers}")
        return optimal_workers

    try:
        memory = psutil.virtual_memory()
    except OSError as e:
        logger.warning(f"Failed to read memory info: {e}")
        return default_workers

    if memory.percent >= memory_cap_percent:
        # Threads share the matrix, but each still builds neighbor lists;
        # back off when the machine is already under memory pressure.
        optimal_workers = max(1, default_workers // 2)
    else:
        optimal_workers = default_workers

    logger.info(
        f"Resource analysis: CPU={cpu_count}, "
        f"Memory={memory.total / (1024**3):.1f}GB ({memory.percent:.1f}% used), "
        f"Optimal={optimal_workers}",
    )
    return optimal_workers


def log_resource_summary() -> None:
    """Log a summary of current resource usage."""
    info = get_system_info()
    process_rss_gb = psutil.Process().memory_info().rss / (1024**3)

    logger.info("=== Resource Summary ===")
    logger.info(f"CPU cores: {info['cpu_count']}")
    logger.info(
        f"Memory: {info['total_memory_gb'] - info['available_memory_gb']:.1f}GB / "
        f"{info['total_memory_gb']:.1f}GB ({info['memory_percent']:.1f}%)",
    )
    logger.info(f"Process memory: {process_rss_gb:.2f}GB RSS")
    logger.info("========================")
