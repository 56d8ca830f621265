"""
Collaborator Interfaces for ITQ-LSH
===================================

The index core never touches raw vectors beyond hashing them. Datasets,
candidate scanners and multi-probe generators are plugged in through the
abstract classes below; ``itqlsh.core`` ships a default implementation of
each.
"""

from abc import ABC, abstractmethod
from typing import Iterator, List, Tuple, Union

import numpy as np


class Dataset(ABC):
    """Read-only, indexable collection of equal-length vectors."""

    @abstractmethod
    def __len__(self) -> int:
        ...

    @property
    @abstractmethod
    def dimension(self) -> int:
        ...

    @abstractmethod
    def __getitem__(self, index: int) -> np.ndarray:
        ...

    def to_array(self) -> np.ndarray:
        """Stack every row into a float32 matrix of shape (n, d)."""
        if len(self) == 0:
            return np.zeros((0, self.dimension), dtype=np.float32)
        return np.vstack([
            np.asarray(self[i], dtype=np.float32) for i in range(len(self))
        ])


class ArrayDataset(Dataset):
    """
    Dataset backed by a dense 2-D numpy array.

    Example:
        >>> data = ArrayDataset(np.random.randn(100, 8))
        >>> len(data), data.dimension
        (100, 8)
    """

    def __init__(self, vectors: np.ndarray):
        vectors = np.asarray(vectors)
        if vectors.ndim != 2:
            raise ValueError(
                f"Expected a 2-D array of vectors, got shape {vectors.shape}"
            )
        self.vectors = np.ascontiguousarray(vectors, dtype=np.float32)

    def __len__(self) -> int:
        return self.vectors.shape[0]

    @property
    def dimension(self) -> int:
        return self.vectors.shape[1]

    def __getitem__(self, index: int) -> np.ndarray:
        return self.vectors[index]

    def to_array(self) -> np.ndarray:
        return self.vectors


def as_dataset(data: Union[Dataset, np.ndarray]) -> Dataset:
    """Wrap a numpy array as an ``ArrayDataset``; datasets pass through."""
    if isinstance(data, Dataset):
        return data
    return ArrayDataset(data)


class Scanner(ABC):
    """
    Top-k candidate accumulator fed by the query engine.

    Lifecycle per query: ``reset(query)``, any number of ``add(id)`` calls,
    then ``finalize()``. ``finalize`` must be safe to call repeatedly and
    always returns the current top-k as ``(score, id)`` pairs, best first.
    """

    @abstractmethod
    def reset(self, query: np.ndarray) -> None:
        ...

    @abstractmethod
    def add(self, candidate_id: int) -> None:
        ...

    @abstractmethod
    def finalize(self) -> List[Tuple[float, int]]:
        ...

    def __call__(self, candidate_id: int) -> None:
        self.add(candidate_id)


class ProbeGenerator(ABC):
    """
    Yields alternative bucket codes for one query in increasing loss order.

    A generator never repeats a code and never yields the query's own code.
    ``pop`` raises ``StopIteration`` once every alternative has been yielded.
    """

    @abstractmethod
    def pop(self) -> int:
        ...

    def __iter__(self) -> Iterator[int]:
        return self

    def __next__(self) -> int:
        return self.pop()
