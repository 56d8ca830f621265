"""
Distance Computation for ITQ-LSH
================================

Two families of distances live here:

1. Vector distances (squared L2, cosine, inner product) used by the
   default top-k scanner to score candidates.
2. Code-space distances between a query and every populated bucket code:
   Hamming distance and the signature-weighted flip loss. These are the
   inner loops of the ranked probing strategies and are compiled with Numba.

Codes are passed to the kernels as ``uint64`` arrays so the same kernels
serve 32-bit and 64-bit code widths.
"""

import numpy as np
from typing import Tuple
from numba import njit, float32, int32, uint64, boolean


class DistanceComputer:
    """
    Vector distance engine for candidate scoring.

    Supports:
    - Squared Euclidean distance ('l2')
    - Cosine distance ('cosine')
    - Negative inner product ('ip')

    Smaller is always better.
    """

    METRICS = ('l2', 'cosine', 'ip')

    def __init__(self, metric: str = 'l2'):
        """
        Initialize distance computer.

        Args:
            metric: Distance metric ('l2', 'cosine', 'ip')
        """
        if metric not in self.METRICS:
            raise ValueError(f"Unknown metric: {metric}")
        self.metric = metric

    def compute(self, query: np.ndarray, vectors: np.ndarray) -> np.ndarray:
        """
        Compute distances from query to multiple vectors.

        Args:
            query: Query vector of shape (d,)
            vectors: Candidate vectors of shape (n, d)

        Returns:
            Distances of shape (n,)
        """
        query = np.asarray(query, dtype=np.float32)
        vectors = np.asarray(vectors, dtype=np.float32)

        if self.metric == 'l2':
            diff = vectors - query
            return np.einsum('ij,ij->i', diff, diff).astype(np.float32)
        elif self.metric == 'cosine':
            query_norm = np.sqrt(np.dot(query, query))
            vector_norms = np.sqrt(np.einsum('ij,ij->i', vectors, vectors))
            with np.errstate(divide='ignore', invalid='ignore'):
                cosine_sim = (vectors @ query) / (vector_norms * query_norm)
                cosine_sim = np.nan_to_num(cosine_sim, nan=0.0)
            return (1 - cosine_sim).astype(np.float32)
        return (-(vectors @ query)).astype(np.float32)

    def compute_single(self, a: np.ndarray, b: np.ndarray) -> float:
        """Compute distance between two vectors."""
        a = np.asarray(a, dtype=np.float32)
        b = np.asarray(b, dtype=np.float32)
        if self.metric == 'l2':
            diff = a - b
            return float(np.dot(diff, diff))
        elif self.metric == 'cosine':
            norm_a = np.sqrt(np.dot(a, a))
            norm_b = np.sqrt(np.dot(b, b))
            if norm_a > 0 and norm_b > 0:
                return float(1 - np.dot(a, b) / (norm_a * norm_b))
            return 1.0
        return float(-np.dot(a, b))


@njit(int32[:](uint64[:], uint64), cache=True)
def hamming_distances(codes: np.ndarray, query_code: int) -> np.ndarray:
    """
    Hamming distance from ``query_code`` to every code.

    Args:
        codes: Bucket codes of shape (n,)
        query_code: Packed query code

    Returns:
        Number of differing bits per code, shape (n,)
    """
    n = codes.shape[0]
    result = np.empty(n, dtype=np.int32)
    one = np.uint64(1)
    zero = np.uint64(0)

    for i in range(n):
        x = codes[i] ^ query_code
        count = 0
        while x != zero:
            x &= x - one
            count += 1
        result[i] = count

    return result


@njit(float32[:](uint64[:], boolean[:], float32[:]), cache=True)
def flip_losses(
    codes: np.ndarray,
    query_bits: np.ndarray,
    bit_losses: np.ndarray
) -> np.ndarray:
    """
    Summed per-bit loss over the bits where each code disagrees with the query.

    Bit 0 of ``query_bits`` is the most significant bit of a code.

    Args:
        codes: Bucket codes of shape (n,)
        query_bits: Query bit vector of shape (n_bits,)
        bit_losses: Non-negative loss of flipping each bit, shape (n_bits,)

    Returns:
        Loss per code, shape (n,)
    """
    n = codes.shape[0]
    n_bits = query_bits.shape[0]
    result = np.empty(n, dtype=np.float32)
    one = np.uint64(1)

    for i in range(n):
        code = codes[i]
        loss = 0.0
        for b in range(n_bits):
            bit = (code >> np.uint64(n_bits - 1 - b)) & one
            if (bit == one) != query_bits[b]:
                loss += bit_losses[b]
        result[i] = loss

    return result


def select_top_k_distances(
    distances: np.ndarray,
    k: int
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Select top-k smallest distances.

    Uses argpartition for O(N) selection, then sorts only the top k.

    Args:
        distances: Array of distances
        k: Number of smallest to select

    Returns:
        (indices, distances): Top-k indices and their distances
    """
    n = len(distances)
    k = min(k, n)

    if k == n:
        indices = np.argsort(distances, kind='stable')
        return indices, distances[indices]

    top_k_indices = np.argpartition(distances, k - 1)[:k]
    sorted_local = np.argsort(distances[top_k_indices], kind='stable')
    top_k_indices = top_k_indices[sorted_local]

    return top_k_indices, distances[top_k_indices]
