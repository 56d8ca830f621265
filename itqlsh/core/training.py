"""
Iterative Quantization (ITQ) Training for ITQ-LSH
=================================================

Learns, per hash table, a PCA projection and an orthogonal rotation that
minimizes the error of binarizing the projected data.

Algorithm (Gong & Lazebnik, 2011):
----------------------------------
Given a centered sample X (S x D):

1. PCA: W = top-N eigenvectors of cov(X);  V = X W          (S x N)
2. Random orthogonal R₀ from the SVD of a Gaussian N x N matrix
3. Repeat I times:
     B = sign(V R)                          (fix R, update B)
     U Σ Ŵᵀ = svd(Bᵀ V);  R = Ŵ Uᵀ          (fix B, orthogonal Procrustes)

Each step does not increase the quantization loss ||B - V R||²_F, and R
stays orthogonal because it is a product of orthogonal factors.

Complexity per table: O(S D² + D³) for PCA, O(I (S N² + N³)) for ITQ.
"""

import time
import numpy as np
from dataclasses import dataclass, field
from typing import List, Tuple
from scipy import linalg

from itqlsh.core.interfaces import Dataset
from itqlsh.exceptions import InsufficientDataError


@dataclass
class TrainedTable:
    """Learned parameters of one hash table."""

    projection: np.ndarray          # (N, D) PCA basis, one component per row
    rotation: np.ndarray            # (N, N) orthogonal ITQ rotation
    sample_ids: np.ndarray          # Sorted dataset rows used for training
    loss_history: List[float] = field(default_factory=list)


def binarize(values: np.ndarray) -> np.ndarray:
    """Map values to {-1, +1}; zero is positive."""
    return np.where(values >= 0, 1.0, -1.0)


def quantization_loss(continuous: np.ndarray, rotation: np.ndarray) -> float:
    """Mean squared binarization error ||B - V R||²_F / S."""
    rotated = continuous @ rotation
    residual = binarize(rotated) - rotated
    return float(np.sum(residual * residual) / max(len(continuous), 1))


class ITQTrainer:
    """
    Trains ITQ projection and rotation matrices.

    Attributes:
        n_bits: Code length N
        n_train_samples: Sample size S per table
        n_iterations: ITQ alternating-optimization iterations I
        rng: Random generator driving sampling and rotation init
    """

    def __init__(
        self,
        n_bits: int,
        n_train_samples: int,
        n_iterations: int,
        random_state: int = 42,
        verbose: bool = False
    ):
        """
        Initialize trainer.

        Args:
            n_bits: Code length (number of principal components)
            n_train_samples: Rows sampled per table
            n_iterations: ITQ iterations
            random_state: Seed for sampling and rotation initialization
            verbose: Print per-table progress
        """
        self.n_bits = n_bits
        self.n_train_samples = n_train_samples
        self.n_iterations = n_iterations
        self.random_state = random_state
        self.verbose = verbose
        self.rng = np.random.RandomState(random_state)

    def train(self, dataset: Dataset, n_tables: int) -> List[TrainedTable]:
        """
        Train ``n_tables`` independent tables.

        Args:
            dataset: Training dataset
            n_tables: Number of hash tables

        Returns:
            One ``TrainedTable`` per hash table
        """
        n_vectors = len(dataset)
        if n_vectors == 0:
            raise InsufficientDataError("Cannot train on an empty dataset")
        if n_vectors < self.n_train_samples:
            raise InsufficientDataError(
                f"Dataset has {n_vectors} vectors but "
                f"{self.n_train_samples} distinct training samples were requested"
            )
        if self.n_bits > dataset.dimension:
            raise ValueError(
                f"Cannot extract {self.n_bits} components from "
                f"{dataset.dimension}-dimensional data"
            )

        tables = []
        for k in range(n_tables):
            start = time.time()
            table = self.train_table(dataset)
            tables.append(table)

            if self.verbose:
                final_loss = table.loss_history[-1] if table.loss_history else float('nan')
                print(f"  Table {k + 1}/{n_tables}: "
                      f"loss={final_loss:.4f} ({time.time() - start:.2f}s)")

        return tables

    def train_table(self, dataset: Dataset) -> TrainedTable:
        """Train projection and rotation for a single table."""
        sample_ids = np.sort(
            self.rng.choice(len(dataset), self.n_train_samples, replace=False)
        )
        sample = np.vstack([
            np.asarray(dataset[int(i)], dtype=np.float64) for i in sample_ids
        ])

        projection, continuous = self.fit_pca(sample)
        rotation = self.random_rotation()
        rotation, loss_history = self.fit_rotation(continuous, rotation)

        return TrainedTable(
            projection=projection.astype(np.float32),
            rotation=rotation.astype(np.float32),
            sample_ids=sample_ids,
            loss_history=loss_history
        )

    def fit_pca(self, sample: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """
        Principal-component basis of a sample.

        Args:
            sample: Raw sample of shape (S, D)

        Returns:
            (projection, continuous): (N, D) basis ordered by decreasing
            eigenvalue, and the centered sample projected onto it (S, N)
        """
        centered = sample - sample.mean(axis=0)
        covariance = (centered.T @ centered) / float(len(sample) - 1)

        # eigh returns eigenvalues in ascending order
        _, eigenvectors = linalg.eigh(covariance)
        basis = eigenvectors[:, ::-1][:, :self.n_bits]

        return basis.T, centered @ basis

    def random_rotation(self) -> np.ndarray:
        """Random orthogonal N x N matrix from a Gaussian draw."""
        gaussian = self.rng.randn(self.n_bits, self.n_bits)
        u, _, _ = linalg.svd(gaussian)
        return u

    def fit_rotation(
        self,
        continuous: np.ndarray,
        rotation: np.ndarray
    ) -> Tuple[np.ndarray, List[float]]:
        """
        ITQ alternating optimization.

        Args:
            continuous: Projected sample of shape (S, N)
            rotation: Initial orthogonal rotation (N, N)

        Returns:
            (rotation, loss_history): Final rotation and the quantization
            loss after every iteration
        """
        loss_history = []
        for _ in range(self.n_iterations):
            target = binarize(continuous @ rotation)
            u, _, vt = linalg.svd(target.T @ continuous)
            rotation = vt.T @ u.T
            loss_history.append(quantization_loss(continuous, rotation))

        return rotation, loss_history


def orthogonality_error(rotation: np.ndarray) -> float:
    """Max absolute deviation of R Rᵀ from the identity."""
    rotation = np.asarray(rotation, dtype=np.float64)
    return float(np.max(np.abs(rotation @ rotation.T - np.eye(len(rotation)))))
