"""Parallel execution utilities for the clustering phases.

This module provides parallel execution using joblib. Every parallel phase in
the clustering core (matrix passes, neighbor lists, reclustering) mutates
shared state in place, so work always runs on threads in the caller's process
(``require="sharedmem"``); process-based backends are never selected.
"""

from typing import Any, Callable, Dict, List, Optional

from joblib import Parallel, delayed

from shared_clustering.utils.logging_utils import get_logger
from shared_clustering.utils.resource_monitor import calculate_optimal_workers

logger = get_logger(__name__)

BACKENDS = ("threading", "sequential")


def select_backend(requested: str, workers: int) -> tuple[str, str]:
    """Select the backend to use.

    Args:
        requested: Requested backend ('threading' or 'sequential')
        workers: Number of workers available

    Returns:
        Tuple of (chosen_backend, reason)

    """
    if requested not in BACKENDS:
        raise ValueError(f"Backend must be one of {BACKENDS}, got {requested!r}")

    if requested == "sequential":
        return "sequential", "requested"

    if workers <= 1:
        return "sequential", "single_worker"

    return "threading", "requested"


class ParallelExecutor:
    """Parallel execution wrapper with sequential fallback for small inputs."""

    def __init__(
        self,
        workers: Optional[int] = None,
        backend: str = "threading",
        chunk_size: int = 256,
        small_input_threshold: int = 2000,
        disable_parallel: bool = False,
    ):
        """Initialize parallel executor.

        Args:
            workers: Number of workers (None for auto)
            backend: Backend to use ('threading' or 'sequential')
            chunk_size: Batch size handed to joblib
            small_input_threshold: Inputs smaller than this run sequentially
            disable_parallel: Force sequential execution

        """
        self.disable_parallel = disable_parallel
        self.small_input_threshold = small_input_threshold
        self.chunk_size = chunk_size

        if disable_parallel:
            self._workers = 1
            self.backend, self.backend_reason = "sequential", "disabled"
        else:
            self._workers = calculate_optimal_workers(workers)
            self.backend, self.backend_reason = select_backend(backend, self._workers)

        logger.info(
            f"Parallel executor initialized | requested={backend}, chosen={self.backend}, "
            f"reason={self.backend_reason}, workers={self._workers}",
        )

    @property
    def workers(self) -> int:
        return self._workers

    def should_use_parallel(self, input_size: int) -> bool:
        """Determine if parallel execution should be used.

        Args:
            input_size: Size of input data

        Returns:
            True if parallel execution should be used

        """
        if self.backend == "sequential":
            return False

        if input_size < self.small_input_threshold:
            logger.debug(
                f"Input size {input_size} < threshold {self.small_input_threshold}, using sequential",
            )
            return False

        return True

    def execute(
        self,
        func: Callable[[Any], Any],
        items: List[Any],
        operation_name: str = "parallel_operation",
    ) -> List[Any]:
        """Execute function over items in parallel or sequentially.

        Returns once every item has been processed ("wait for all" join).

        Args:
            func: Function to execute
            items: List of items to process
            operation_name: Name of operation for logging

        Returns:
            List of results in input order

        """
        input_size = len(items)

        if not self.should_use_parallel(input_size):
            logger.debug(f"Executing {operation_name} sequentially (size: {input_size})")
            return [func(item) for item in items]

        logger.debug(
            f"Executing {operation_name} in parallel: "
            f"workers={self._workers}, backend={self.backend}, "
            f"chunk_size={self.chunk_size}, items={input_size}",
        )

        results = Parallel(
            n_jobs=self._workers,
            require="sharedmem",
            batch_size=self.chunk_size,
            verbose=0,
        )(delayed(func)(item) for item in items)

        logger.debug(f"Completed {operation_name}: {len(results)} results")
        return list(results)


def create_parallel_executor(
    settings: Optional[Dict[str, Any]] = None,
    workers: Optional[int] = None,
    disable_parallel: Optional[bool] = None,
) -> ParallelExecutor:
    """Create a parallel executor from the ``parallelism`` settings section.

    Explicit arguments take precedence over settings.

    Args:
        settings: Full settings dict (or None for defaults)
        workers: Number of workers (None for settings/auto)
        disable_parallel: Force sequential execution

    Returns:
        Configured ParallelExecutor instance

    """
    parallelism = (settings or {}).get("parallelism", {})
    if workers is None:
        workers = parallelism.get("workers")
    if disable_parallel is None:
        disable_parallel = bool(parallelism.get("disable_parallel", False))

    return ParallelExecutor(
        workers=workers,
        backend=parallelism.get("backend", "threading"),
        chunk_size=parallelism.get("chunk_size", 256),
        small_input_threshold=parallelism.get("small_input_threshold", 2000),
        disable_parallel=disable_parallel,
    )


def sequential_executor() -> ParallelExecutor:
    """Executor that always runs in the calling thread."""
    return ParallelExecutor(disable_parallel=True)
