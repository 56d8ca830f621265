"""
ITQ Hashing for ITQ-LSH
=======================

Maps a vector to:

- a signature:  s = (x Pᵀ) R                (N floats)
- a bit vector: b_i = 1 iff s_i >= 0        (N bools)
- a code:       bits packed MSB-first        (unsigned int)

Zero signatures are treated as positive by every entry point, so
``hash_code`` always equals the packing of ``hash_bits``.
"""

import numpy as np
from dataclasses import dataclass
from typing import List, Optional, Union

from itqlsh.core.interfaces import Dataset, as_dataset
from itqlsh.core.probing import bits_to_code
from itqlsh.exceptions import DegenerateDataError, NotTrainedError


@dataclass
class CalibrationStats:
    """
    Per-bit signature statistics, split by sign.

    Attributes:
        positive_mean: Mean of non-negative signature values per bit
        negative_mean: Mean of negative signature values per bit
        positive_std: Population std of non-negative values per bit
        negative_std: Population std of negative values per bit
    """

    positive_mean: np.ndarray
    negative_mean: np.ndarray
    positive_std: np.ndarray
    negative_std: np.ndarray

    def normalize(self, signature: np.ndarray) -> np.ndarray:
        """
        Calibrated flip loss per bit.

        Each magnitude is divided by the spread of the side of zero it lies
        on, so bits are compared in units of their own distribution. The
        side means are reported for inspection but do not enter the loss,
        which stays zero at the decision boundary.
        """
        signature = np.asarray(signature, dtype=np.float32)
        spread = np.where(signature >= 0, self.positive_std, self.negative_std)
        return (np.abs(signature) / spread).astype(np.float32)


class ITQHasher:
    """
    Applies learned projection and rotation matrices.

    Attributes:
        n_bits: Code length N
        dimension: Input dimension D
        code_width: Packed integer width (32 or 64)
        projections: Per-table (N, D) matrices
        rotations: Per-table (N, N) matrices
    """

    def __init__(self, n_tables: int, n_bits: int, dimension: int, code_width: int = 32):
        self.n_tables = n_tables
        self.n_bits = n_bits
        self.dimension = dimension
        self.code_width = code_width
        self.projections: List[Optional[np.ndarray]] = [None] * n_tables
        self.rotations: List[Optional[np.ndarray]] = [None] * n_tables

    @property
    def is_trained(self) -> bool:
        return all(p is not None for p in self.projections) and \
            all(r is not None for r in self.rotations)

    @property
    def code_dtype(self) -> type:
        return np.uint32 if self.code_width == 32 else np.uint64

    def set_table(self, table: int, projection: np.ndarray, rotation: np.ndarray) -> None:
        """
        Install parameters for one table.

        Args:
            table: Table index
            projection: (N, D) projection matrix
            rotation: (N, N) rotation matrix
        """
        projection = np.ascontiguousarray(projection, dtype=np.float32)
        rotation = np.ascontiguousarray(rotation, dtype=np.float32)

        if projection.shape != (self.n_bits, self.dimension):
            raise ValueError(
                f"Projection shape {projection.shape} != "
                f"({self.n_bits}, {self.dimension})"
            )
        if rotation.shape != (self.n_bits, self.n_bits):
            raise ValueError(
                f"Rotation shape {rotation.shape} != ({self.n_bits}, {self.n_bits})"
            )

        self.projections[table] = projection
        self.rotations[table] = rotation

    def _check_table(self, table: int) -> None:
        if not 0 <= table < self.n_tables:
            raise IndexError(f"Table {table} out of range [0, {self.n_tables})")
        if self.projections[table] is None or self.rotations[table] is None:
            raise NotTrainedError("Index must be trained before hashing")

    def hash_floats(self, table: int, vector: np.ndarray) -> np.ndarray:
        """
        Signature of a vector.

        Args:
            table: Table index
            vector: Vector of shape (D,)

        Returns:
            Signature of shape (N,), float32
        """
        self._check_table(table)
        vector = np.asarray(vector, dtype=np.float32)
        if vector.shape != (self.dimension,):
            raise ValueError(
                f"Vector shape {vector.shape} != index dimension ({self.dimension},)"
            )
        return (self.projections[table] @ vector) @ self.rotations[table]

    def hash_bits(self, table: int, vector: np.ndarray) -> np.ndarray:
        """Sign-quantized signature; True where the signature is >= 0."""
        return quantize(self.hash_floats(table, vector))

    def hash_code(self, table: int, vector: np.ndarray) -> int:
        """Packed code of a vector, most significant bit first."""
        return bits_to_code(self.hash_bits(table, vector))

    def hash_floats_batch(self, table: int, vectors: np.ndarray) -> np.ndarray:
        """
        Signatures for a matrix of vectors, shape (n, N).

        Matrix products may round differently from ``hash_floats``, so codes
        stored in buckets always come from the single-vector path.
        """
        self._check_table(table)
        vectors = np.asarray(vectors, dtype=np.float32)
        if vectors.ndim != 2 or vectors.shape[1] != self.dimension:
            raise ValueError(
                f"Vectors shape {vectors.shape} incompatible with dimension "
                f"{self.dimension}"
            )
        return (vectors @ self.projections[table].T) @ self.rotations[table]

    def calibration(
        self,
        dataset: Union[Dataset, np.ndarray],
        table: int = 0
    ) -> CalibrationStats:
        """
        Per-bit mean and std of signatures, separately for each sign.

        Args:
            dataset: Vectors to compute statistics over
            table: Table whose signatures are measured

        Returns:
            Calibration statistics

        Raises:
            DegenerateDataError: If some bit has an empty or zero-spread
                sign subpopulation
        """
        dataset = as_dataset(dataset)
        signatures = self.hash_floats_batch(table, dataset.to_array()).astype(np.float64)
        positive = signatures >= 0

        stats = {}
        for side, mask in (('positive', positive), ('negative', ~positive)):
            counts = mask.sum(axis=0)
            sums = np.where(mask, signatures, 0.0).sum(axis=0)
            # Empty sides get mean 0 and std 0, which is reported below
            means = sums / np.maximum(counts, 1)
            deviations = np.where(mask, signatures - means, 0.0)
            stds = np.sqrt((deviations * deviations).sum(axis=0) / np.maximum(counts, 1))

            degenerate = np.flatnonzero(stds <= 0)
            if len(degenerate) > 0:
                bit = int(degenerate[0])
                raise DegenerateDataError(
                    f"Bit {bit} has zero {side} spread "
                    f"({int(counts[bit])} samples on that side)"
                )

            stats[f'{side}_mean'] = means.astype(np.float32)
            stats[f'{side}_std'] = stds.astype(np.float32)

        return CalibrationStats(**stats)


def quantize(signature: np.ndarray) -> np.ndarray:
    """Sign quantization; zero maps to 1."""
    return np.asarray(signature) >= 0

