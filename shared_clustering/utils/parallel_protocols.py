"""Protocol definitions for parallel execution interfaces.

Clustering phases take an executor rather than a concrete implementation, so
tests can pass a sequential stand-in and the pipeline a joblib-backed one.
"""

from typing import Callable, List, Protocol, TypeVar

T = TypeVar("T")
R = TypeVar("R")


class ExecutorLike(Protocol):
    """Protocol for executors that fan a function out over independent items.

    Implementations must return results in input order and must run the
    function in the caller's address space: the clustering phases mutate
    shared correlation rows and node neighbor lists in place.
    """

    @property
    def workers(self) -> int:
        """Number of worker threads available."""
        ...

    def execute(
        self,
        func: Callable[[T], R],
        items: List[T],
        operation_name: str = "parallel_operation",
    ) -> List[R]:
        """Apply function to every item and join before returning."""
        ...
