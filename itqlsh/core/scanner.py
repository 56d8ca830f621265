"""
Top-k Candidate Scanner for ITQ-LSH
===================================

Default ``Scanner`` implementation: scores every candidate id fed by the
query engine against the query with an exact vector distance and keeps the
k best in a bounded max-heap.
"""

import heapq
import numpy as np
from typing import List, Optional, Set, Tuple, Union

from itqlsh.core.distances import DistanceComputer
from itqlsh.core.interfaces import Dataset, Scanner, as_dataset


class TopKScanner(Scanner):
    """
    Exact re-ranking accumulator over a dataset.

    Candidates seen twice during one query (e.g. when a multi-probe rebuilt
    index stores a point in several tables) are scored once.

    Attributes:
        k: Number of neighbors to keep
        n_scanned: Distinct candidates scored since the last reset
    """

    def __init__(
        self,
        dataset: Union[Dataset, np.ndarray],
        k: int = 10,
        metric: str = 'l2'
    ):
        """
        Initialize scanner.

        Args:
            dataset: Vectors that candidate ids refer to
            k: Number of neighbors to keep
            metric: Distance metric ('l2', 'cosine', 'ip')
        """
        if k < 1:
            raise ValueError(f"k must be positive, got {k}")

        self.dataset = as_dataset(dataset)
        self.k = k
        self.distance_computer = DistanceComputer(metric=metric)

        self._query: Optional[np.ndarray] = None
        self._heap: List[Tuple[float, int]] = []
        self._seen: Set[int] = set()

    @property
    def n_scanned(self) -> int:
        return len(self._seen)

    def reset(self, query: np.ndarray) -> None:
        self._query = np.asarray(query, dtype=np.float32)
        self._heap = []
        self._seen = set()

    def add(self, candidate_id: int) -> None:
        if self._query is None:
            raise RuntimeError("Scanner must be reset with a query before use")

        candidate_id = int(candidate_id)
        if candidate_id in self._seen:
            return
        self._seen.add(candidate_id)

        distance = self.distance_computer.compute_single(
            self._query, self.dataset[candidate_id]
        )

        # Max-heap on distance via negation; ties broken toward smaller ids
        entry = (-distance, -candidate_id)
        if len(self._heap) < self.k:
            heapq.heappush(self._heap, entry)
        elif entry > self._heap[0]:
            heapq.heapreplace(self._heap, entry)

    def finalize(self) -> List[Tuple[float, int]]:
        """Current top-k as ``(distance, id)`` pairs, nearest first."""
        return sorted((-neg_dist, -neg_id) for neg_dist, neg_id in self._heap)

    def ids(self) -> List[int]:
        """Ids of the current top-k, nearest first."""
        return [candidate_id for _, candidate_id in self.finalize()]
