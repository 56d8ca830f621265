"""
ITQ-LSH Index - Main Interface
==============================

This module provides the ITQLSHIndex class that ties together ITQ
training, hashing, bucket tables, probing strategies and persistence.

Key Features:
- Seeded, reproducible ITQ training (PCA + Procrustes rotation)
- Exact, Hamming-ranked, loss-ranked and analytic multi-probe queries
- Multi-probe rebuild into virtual tables with a single hash function
- Versioned binary format, with read/write support for the legacy layout

Usage:
    >>> from itqlsh import ITQLSHIndex, ITQConfig, TopKScanner
    >>> index = ITQLSHIndex(ITQConfig(dimension=128, n_bits=16))
    >>> index.build(vectors)
    >>> scanner = TopKScanner(vectors, k=10)
    >>> topk = index.query_by_loss(query, scanner, max_buckets=32)
"""

import time
import numpy as np
from dataclasses import dataclass, asdict, replace
from typing import Callable, Dict, List, Mapping, Optional, Tuple, Union

from tqdm import tqdm

from itqlsh.core.buckets import (
    BucketIndex,
    ProbeFactory,
    build_multi_probe_tables,
    multi_probe_codes,
)
from itqlsh.core.hashing import CalibrationStats, ITQHasher
from itqlsh.core.interfaces import Dataset, Scanner, as_dataset
from itqlsh.core.probing import ProbeSequence
from itqlsh.core.training import ITQTrainer
from itqlsh.exceptions import IndexFormatError, NotTrainedError, TableModeError
from itqlsh.search import ITQSearch, QueryStats
from itqlsh.utils.io import IndexState, load_state, save_state


@dataclass
class ITQConfig:
    """
    Configuration for ITQ-LSH Index.

    Attributes:
        dimension: Input vector dimension D
        n_bits: Code length N (bits per code)
        n_tables: Number of independent hash tables L
        n_train_samples: Vectors sampled per table for training S
        n_iterations: ITQ alternating-optimization iterations I
        table_size: Legacy hash table size M (persisted, not used in hashing)
        code_width: Packed code width, 32 or 64 bits
        random_state: Random seed for reproducibility
        verbose: Print progress information
    """

    dimension: int

    # Hashing settings
    n_bits: int = 16
    n_tables: int = 1
    code_width: int = 32

    # Training settings
    n_train_samples: int = 1000
    n_iterations: int = 50

    # Legacy format field
    table_size: int = 521

    # General settings
    random_state: int = 42
    verbose: bool = False

    def validate(self) -> None:
        """Raise ``ValueError`` for inconsistent parameters."""
        for name in ('dimension', 'n_bits', 'n_tables', 'table_size'):
            if getattr(self, name) < 1:
                raise ValueError(f"{name} must be positive, got {getattr(self, name)}")
        if self.n_iterations < 0:
            raise ValueError(f"n_iterations must be >= 0, got {self.n_iterations}")
        if self.n_train_samples < 2:
            raise ValueError(
                f"n_train_samples must be at least 2, got {self.n_train_samples}"
            )
        if self.code_width not in (32, 64):
            raise ValueError(f"code_width must be 32 or 64, got {self.code_width}")
        if self.n_bits > self.code_width:
            raise ValueError(
                f"n_bits={self.n_bits} does not fit in {self.code_width}-bit codes"
            )
        if self.n_bits > self.dimension:
            raise ValueError(
                f"n_bits={self.n_bits} exceeds dimension={self.dimension}"
            )


class ITQLSHIndex:
    """
    Iterative-Quantization LSH index for approximate nearest neighbor search.

    Vectors are hashed to N-bit codes by a learned PCA projection followed
    by an ITQ rotation; each table maps codes to the ids stored there.
    Queries hash the query vector and feed the ids of one or more buckets
    to a ``Scanner``, which scores them and keeps the top k.

    Attributes:
        config: Index configuration (a private copy)
        hasher: Projection/rotation matrices and hash functions
        bucket_index: Bucket tables
        legacy_arrays: Per-table legacy integers, persisted verbatim
        calibration_stats: Optional statistics for calibrated multi-probe

    Example:
        >>> index = ITQLSHIndex(ITQConfig(dimension=128, verbose=True))
        >>> index.build(vectors)
        >>> index.query_ranking(query, TopKScanner(vectors), max_buckets=16)
        >>> index.save('index.itq')
    """

    def __init__(
        self,
        config: ITQConfig,
        probe_factory: ProbeFactory = ProbeSequence
    ):
        """
        Initialize ITQ-LSH index.

        Args:
            config: Index configuration
            probe_factory: Builds the multi-probe generator for a query from
                its (bits, signature); calibrated queries also pass a
                ``bit_losses`` keyword
        """
        config.validate()
        self.config = replace(config)

        rng = np.random.RandomState(self.config.random_state)
        self.legacy_arrays: List[np.ndarray] = [
            rng.randint(0, self.config.table_size, size=self.config.n_bits).astype(np.uint32)
            for _ in range(self.config.n_tables)
        ]

        self.hasher = ITQHasher(
            n_tables=self.config.n_tables,
            n_bits=self.config.n_bits,
            dimension=self.config.dimension,
            code_width=self.config.code_width
        )
        self.bucket_index = BucketIndex(self.config.n_tables)
        self.calibration_stats: Optional[CalibrationStats] = None
        self.searcher = ITQSearch(self.hasher, self.bucket_index, probe_factory)

        self.loss_history: List[List[float]] = []
        self.build_stats: Dict = {}

    # ------------------------------------------------------------------
    # Training and parameters
    # ------------------------------------------------------------------

    @property
    def is_trained(self) -> bool:
        return self.hasher.is_trained

    @property
    def n_bucket_tables(self) -> int:
        return self.bucket_index.n_tables

    def train(self, data: Union[Dataset, np.ndarray]) -> 'ITQLSHIndex':
        """
        Learn projection and rotation matrices for every table.

        Args:
            data: Training dataset of shape (n, D)

        Returns:
            self for chaining
        """
        dataset = self._as_checked_dataset(data)
        step_start = time.time()

        if self.config.verbose:
            print(f"Training ITQ ({self.config.n_tables} table(s), "
                  f"{self.config.n_bits} bits, {self.config.n_train_samples} samples, "
                  f"{self.config.n_iterations} iterations)...")

        trainer = ITQTrainer(
            n_bits=self.config.n_bits,
            n_train_samples=self.config.n_train_samples,
            n_iterations=self.config.n_iterations,
            random_state=self.config.random_state,
            verbose=self.config.verbose
        )
        tables = trainer.train(dataset, self.config.n_tables)

        for k, table in enumerate(tables):
            self.hasher.set_table(k, table.projection, table.rotation)
        self.loss_history = [table.loss_history for table in tables]

        self.build_stats['train_time'] = time.time() - step_start
        if self.config.verbose:
            print(f"  ✓ Completed in {self.build_stats['train_time']:.2f}s")

        return self

    def set_parameters(self, table: int, projection: np.ndarray, rotation: np.ndarray) -> None:
        """
        Install externally trained matrices for one table.

        Args:
            table: Table index
            projection: (N, D) projection matrix
            rotation: (N, N) rotation matrix
        """
        self.hasher.set_table(table, projection, rotation)

    def projection(self, table: int = 0) -> np.ndarray:
        return self.hasher.projections[table]

    def rotation(self, table: int = 0) -> np.ndarray:
        return self.hasher.rotations[table]

    # ------------------------------------------------------------------
    # Hashing
    # ------------------------------------------------------------------

    def hash_floats(self, table: int, vector: np.ndarray) -> np.ndarray:
        return self.hasher.hash_floats(table, vector)

    def hash_bits(self, table: int, vector: np.ndarray) -> np.ndarray:
        return self.hasher.hash_bits(table, vector)

    def hash_code(self, table: int, vector: np.ndarray) -> int:
        return self.hasher.hash_code(table, vector)

    def calibration(self, data: Union[Dataset, np.ndarray], table: int = 0) -> CalibrationStats:
        """
        Per-bit signature statistics of a dataset.

        Raises:
            DegenerateDataError: If a bit has no spread on one side of zero
        """
        return self.hasher.calibration(self._as_checked_dataset(data), table)

    def set_calibration(
        self,
        data: Union[Dataset, np.ndarray, CalibrationStats]
    ) -> CalibrationStats:
        """
        Enable calibrated multi-probe by computing (or installing) statistics.

        Args:
            data: Dataset to compute statistics from, or precomputed statistics

        Returns:
            The installed statistics
        """
        if isinstance(data, CalibrationStats):
            stats = data
        else:
            stats = self.calibration(data)

        self.calibration_stats = stats
        self.searcher.calibration = stats
        return stats

    # ------------------------------------------------------------------
    # Bucket tables
    # ------------------------------------------------------------------

    def insert(self, vector_id: int, vector: np.ndarray) -> None:
        """
        Append ``vector_id`` to its bucket in every hash table.

        After a multi-probe rebuild the point is also added to every virtual
        table under the matching code of its probe sequence, keeping the
        layout ``rebuild_multi_probe`` produces.
        """
        n_virtual = self.bucket_index.n_tables
        if n_virtual > self.config.n_tables:
            codes = multi_probe_codes(
                self.hasher, vector, n_virtual, self.searcher.probe_factory
            )
            for t, code in enumerate(codes):
                self.bucket_index.add(t, code, vector_id)
            return

        for k in range(self.config.n_tables):
            self.bucket_index.add(k, self.hasher.hash_code(k, vector), vector_id)

    def batch_insert(
        self,
        data: Union[Dataset, np.ndarray],
        show_progress: bool = False
    ) -> 'ITQLSHIndex':
        """
        Insert every row of a dataset, using the row index as id.

        Args:
            data: Dataset of shape (n, D)
            show_progress: Show tqdm progress bar

        Returns:
            self for chaining
        """
        self._require_trained()
        dataset = self._as_checked_dataset(data)
        step_start = time.time()

        for i in tqdm(range(len(dataset)), desc="Hashing", disable=not show_progress):
            self.insert(i, dataset[i])

        self.build_stats['insert_time'] = time.time() - step_start
        if self.config.verbose:
            print(f"Inserted {len(dataset):,} vectors into "
                  f"{self.bucket_index.n_buckets(0):,} buckets "
                  f"({self.build_stats['insert_time']:.2f}s)")

        return self

    def build(
        self,
        data: Union[Dataset, np.ndarray],
        show_progress: bool = False
    ) -> 'ITQLSHIndex':
        """
        Train on ``data`` and insert all of it.

        Args:
            data: Dataset of shape (n, D)
            show_progress: Show tqdm progress bar while inserting

        Returns:
            self for chaining
        """
        build_start = time.time()
        dataset = self._as_checked_dataset(data)

        if self.config.verbose:
            print(f"\n{'='*60}")
            print("Building ITQ-LSH Index")
            print(f"{'='*60}")
            print(f"Vectors: {len(dataset):,}")
            print(f"Dimension: {dataset.dimension}")
            print()
            print("[1/2] Training quantizer...")

        self.train(dataset)

        if self.config.verbose:
            print("\n[2/2] Hashing dataset...")

        self.batch_insert(dataset, show_progress=show_progress)

        self.build_stats['total_time'] = time.time() - build_start
        if self.config.verbose:
            print(f"\n{'='*60}")
            print("✓ ITQ-LSH Index Built Successfully")
            print(f"  Total time: {self.build_stats['total_time']:.2f}s")
            print(f"{'='*60}\n")

        return self

    def rebuild_multi_probe(
        self,
        data: Union[Dataset, np.ndarray],
        table_count: int,
        show_progress: bool = False
    ) -> 'ITQLSHIndex':
        """
        Replace all bucket tables with ``table_count`` multi-probe tables.

        Table 0 stores each point under its own code; table t stores it
        under the t-th alternative from its probe sequence. A request for a
        single table leaves the current tables untouched.

        Args:
            data: Dataset whose row indices become ids
            table_count: Number of virtual tables
            show_progress: Show tqdm progress bar

        Returns:
            self for chaining
        """
        if table_count < 1:
            raise ValueError(f"table_count must be positive, got {table_count}")
        if table_count == 1:
            return self

        self._require_single_table("Multi-probe rebuild")
        self._require_trained()
        if table_count > (1 << self.config.n_bits):
            raise ValueError(
                f"table_count={table_count} exceeds the {1 << self.config.n_bits} "
                f"distinct {self.config.n_bits}-bit codes"
            )

        dataset = self._as_checked_dataset(data)
        step_start = time.time()

        with tqdm(total=len(dataset), desc="Rehashing", disable=not show_progress) as bar:
            tables = build_multi_probe_tables(
                self.hasher,
                dataset,
                table_count,
                self.searcher.probe_factory,
                progress=bar.update
            )
        self.bucket_index.replace(tables)

        self.build_stats['rehash_time'] = time.time() - step_start
        if self.config.verbose:
            print(f"Rebuilt {table_count} multi-probe tables "
                  f"({self.build_stats['rehash_time']:.2f}s)")

        return self

    def buckets(self, table: int = 0) -> Mapping[int, List[int]]:
        """Read-only code-to-ids map of one bucket table."""
        self._require_single_table("Bucket access")
        return self.bucket_index.view(table)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def last_query_stats(self) -> QueryStats:
        return self.searcher.last_query_stats

    def probe(self, table: int, code: int, scanner: Scanner) -> int:
        return self.searcher.probe(table, code, scanner)

    def query(self, vector: np.ndarray, scanner: Scanner) -> List[Tuple[float, int]]:
        return self.searcher.query(vector, scanner)

    def query_ranking(
        self, vector: np.ndarray, scanner: Scanner, max_buckets: int
    ) -> List[Tuple[float, int]]:
        return self.searcher.query_ranking(vector, scanner, max_buckets)

    def query_ranking_by_loss(
        self, vector: np.ndarray, scanner: Scanner, max_buckets: int
    ) -> List[Tuple[float, int]]:
        return self.searcher.query_ranking_by_loss(vector, scanner, max_buckets)

    def query_by_loss(
        self,
        vector: np.ndarray,
        scanner: Scanner,
        max_buckets: int,
        calibrated: bool = False
    ) -> List[Tuple[float, int]]:
        return self.searcher.query_by_loss(vector, scanner, max_buckets, calibrated)

    def query_rehash(self, vector: np.ndarray, scanner: Scanner) -> List[Tuple[float, int]]:
        return self.searcher.query_rehash(vector, scanner)

    def batch_query(
        self,
        queries: np.ndarray,
        scanner_factory: Callable[[], Scanner],
        method: str = 'query',
        **kwargs
    ) -> List[List[Tuple[float, int]]]:
        return self.searcher.batch_query(queries, scanner_factory, method, **kwargs)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require_single_table(self, operation: str) -> None:
        if self.config.n_tables != 1:
            raise TableModeError(
                f"{operation} requires a single hash table, "
                f"index has {self.config.n_tables}"
            )

    def _require_trained(self) -> None:
        if not self.is_trained:
            raise NotTrainedError("Index must be trained first")

    def _as_checked_dataset(self, data: Union[Dataset, np.ndarray]) -> Dataset:
        dataset = as_dataset(data)
        if dataset.dimension != self.config.dimension:
            raise ValueError(
                f"Data dimension {dataset.dimension} != index dimension "
                f"{self.config.dimension}"
            )
        return dataset

    def get_stats(self) -> Dict:
        """Get index statistics."""
        stats = {
            'config': asdict(self.config),
            'is_trained': self.is_trained,
            'n_bucket_tables': self.n_bucket_tables,
            'buckets': self.bucket_index.get_stats(),
            'build_stats': dict(self.build_stats),
            'calibrated': self.calibration_stats is not None,
        }
        if self.loss_history:
            stats['final_quantization_loss'] = [
                history[-1] if history else None for history in self.loss_history
            ]
        return stats

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def to_state(self) -> IndexState:
        """Snapshot of everything the binary format stores."""
        self._require_trained()
        return IndexState(
            table_size=self.config.table_size,
            n_tables=self.config.n_tables,
            dimension=self.config.dimension,
            n_bits=self.config.n_bits,
            n_train_samples=self.config.n_train_samples,
            code_width=self.config.code_width,
            legacy_arrays=list(self.legacy_arrays),
            projections=list(self.hasher.projections),
            rotations=list(self.hasher.rotations),
            bucket_tables=self.bucket_index.tables
        )

    def save(self, filepath: str, legacy: bool = False) -> None:
        """
        Save index to file.

        Args:
            filepath: Path to save file
            legacy: Write the original unversioned layout (32-bit codes,
                no multi-probe rebuild)
        """
        save_state(self.to_state(), filepath, legacy=legacy)

        if self.config.verbose:
            print(f"Index saved to {filepath}")

    @classmethod
    def from_state(cls, state: IndexState, **config_overrides) -> 'ITQLSHIndex':
        """Rebuild an index from a decoded ``IndexState``."""
        try:
            config = ITQConfig(
                dimension=state.dimension,
                n_bits=state.n_bits,
                n_tables=state.n_tables,
                code_width=state.code_width,
                n_train_samples=state.n_train_samples,
                table_size=max(state.table_size, 1),
                **config_overrides
            )
            index = cls(config)
        except ValueError as e:
            raise IndexFormatError(f"Stored parameters are invalid: {e}") from e

        # Stored M may be 0 in foreign files; keep the stored value
        index.config.table_size = state.table_size
        index.legacy_arrays = [np.asarray(a, dtype=np.uint32) for a in state.legacy_arrays]
        for k in range(state.n_tables):
            index.hasher.set_table(k, state.projections[k], state.rotations[k])
        index.bucket_index.replace(state.bucket_tables)

        return index

    @classmethod
    def load(cls, filepath: str, verbose: bool = False) -> 'ITQLSHIndex':
        """
        Load index from file.

        Args:
            filepath: Path to saved index file
            verbose: Print progress

        Returns:
            Loaded ITQLSHIndex instance

        Raises:
            IndexFormatError: If the file is malformed
        """
        index = cls.from_state(load_state(filepath), verbose=verbose)

        if verbose:
            print(f"Index loaded from {filepath}")

        return index
