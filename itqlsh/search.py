"""
Query Strategies for ITQ-LSH
============================

Every query follows the same protocol against a ``Scanner``:

    scanner.reset(query) -> probe one or more buckets -> scanner.finalize()

Strategies (all but the exact query require a single hash table):

- query:                  the query's own bucket only
- query_ranking:          buckets ranked by Hamming distance to the query code
- query_ranking_by_loss:  buckets ranked by summed |signature| of flipped bits
- query_by_loss:          own bucket, then codes from the multi-probe sequence
- query_rehash:           the own code against every table of a
                          multi-probe rebuilt index

The two ranking strategies score every populated bucket; ``query_by_loss``
only generates as many codes as it probes, which matters when the bucket
space is large and sparsely populated.
"""

import numpy as np
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from itqlsh.core.buckets import BucketIndex, ProbeFactory
from itqlsh.core.distances import flip_losses, hamming_distances
from itqlsh.core.hashing import CalibrationStats, ITQHasher
from itqlsh.core.interfaces import Scanner
from itqlsh.core.probing import ProbeSequence, bits_to_code
from itqlsh.exceptions import TableModeError


@dataclass
class QueryStats:
    """Work done by the most recent query."""

    buckets_probed: int = 0
    candidates: int = 0


class ITQSearch:
    """
    Probing strategies over a hasher and its bucket tables.

    Attributes:
        hasher: Trained ITQ hasher
        buckets: Bucket tables to probe
        probe_factory: Builds a ``ProbeGenerator`` from (bits, signature);
            calibrated queries also pass a ``bit_losses`` keyword
        calibration: Optional statistics for calibrated multi-probe
        last_query_stats: Counters of the most recent query
    """

    def __init__(
        self,
        hasher: ITQHasher,
        buckets: BucketIndex,
        probe_factory: ProbeFactory = ProbeSequence,
        calibration: Optional[CalibrationStats] = None
    ):
        self.hasher = hasher
        self.buckets = buckets
        self.probe_factory = probe_factory
        self.calibration = calibration
        self.last_query_stats = QueryStats()

    def _require_single_table(self, operation: str) -> None:
        if self.hasher.n_tables != 1:
            raise TableModeError(
                f"{operation} requires a single hash table, "
                f"index has {self.hasher.n_tables}"
            )

    @staticmethod
    def _check_budget(max_buckets: int) -> None:
        if max_buckets < 1:
            raise ValueError(f"max_buckets must be positive, got {max_buckets}")

    def _start(self, vector: np.ndarray, scanner: Scanner) -> None:
        self.last_query_stats = QueryStats()
        scanner.reset(vector)

    def probe(self, table: int, code: int, scanner: Scanner) -> int:
        """
        Feed every id stored at ``code`` in ``table`` to the scanner.

        Args:
            table: Bucket table index
            code: Bucket code
            scanner: Candidate accumulator

        Returns:
            Number of ids fed (0 when the bucket does not exist)
        """
        ids = self.buckets.get(table, code)
        for vector_id in ids:
            scanner(vector_id)

        self.last_query_stats.buckets_probed += 1
        self.last_query_stats.candidates += len(ids)
        return len(ids)

    def query(self, vector: np.ndarray, scanner: Scanner) -> List[Tuple[float, int]]:
        """
        Probe the query's own bucket in every hash table.

        With one hash table this is the exact-match baseline; with several,
        each table is probed with its own code as in classical LSH.
        """
        self._start(vector, scanner)
        for k in range(self.hasher.n_tables):
            self.probe(k, self.hasher.hash_code(k, vector), scanner)
        return scanner.finalize()

    def rank_by_hamming(self, code: int) -> np.ndarray:
        """
        Populated codes of table 0 ordered by Hamming distance to ``code``.

        Codes at equal distance keep their natural (ascending) order.
        """
        codes = self.buckets.sorted_codes(0)
        if len(codes) == 0:
            return codes
        distances = hamming_distances(codes, np.uint64(code))
        return codes[np.argsort(distances, kind='stable')]

    def query_ranking(
        self,
        vector: np.ndarray,
        scanner: Scanner,
        max_buckets: int
    ) -> List[Tuple[float, int]]:
        """
        Probe up to ``max_buckets`` populated buckets nearest in Hamming distance.

        Args:
            vector: Query vector
            scanner: Candidate accumulator
            max_buckets: Maximum number of buckets to probe

        Returns:
            Finalized top-k of the scanner
        """
        self._require_single_table("Hamming-ranked query")
        self._check_budget(max_buckets)
        self._start(vector, scanner)

        ranked = self.rank_by_hamming(self.hasher.hash_code(0, vector))
        for code in ranked[:max_buckets]:
            self.probe(0, int(code), scanner)

        return scanner.finalize()

    def rank_by_loss(
        self,
        bits: np.ndarray,
        signature: np.ndarray
    ) -> Tuple[np.ndarray, np.ndarray]:
        """
        Populated codes of table 0 ordered by flip loss.

        The loss of a code is the sum of ``|signature[i]|`` over the bits
        where it disagrees with ``bits``.

        Returns:
            (codes, losses): Both sorted by ascending loss
        """
        codes = self.buckets.sorted_codes(0)
        if len(codes) == 0:
            return codes, np.zeros(0, dtype=np.float32)

        losses = flip_losses(
            codes,
            np.ascontiguousarray(bits, dtype=np.bool_),
            np.abs(np.asarray(signature, dtype=np.float32))
        )
        order = np.argsort(losses, kind='stable')
        return codes[order], losses[order]

    def query_ranking_by_loss(
        self,
        vector: np.ndarray,
        scanner: Scanner,
        max_buckets: int
    ) -> List[Tuple[float, int]]:
        """
        Probe up to ``max_buckets`` populated buckets with the lowest flip loss.

        Bits with a small signature magnitude are the likeliest to have been
        flipped by quantization, so buckets that differ only there come first.
        """
        self._require_single_table("Loss-ranked query")
        self._check_budget(max_buckets)
        self._start(vector, scanner)

        signature = self.hasher.hash_floats(0, vector)
        ranked, _ = self.rank_by_loss(signature >= 0, signature)
        for code in ranked[:max_buckets]:
            self.probe(0, int(code), scanner)

        return scanner.finalize()

    def query_by_loss(
        self,
        vector: np.ndarray,
        scanner: Scanner,
        max_buckets: int,
        calibrated: bool = False
    ) -> List[Tuple[float, int]]:
        """
        Probe the own bucket, then up to ``max_buckets - 1`` generated codes.

        Args:
            vector: Query vector
            scanner: Candidate accumulator
            max_buckets: Total number of buckets to probe
            calibrated: Rank flips by calibration-normalized magnitudes

        Returns:
            Finalized top-k of the scanner
        """
        self._require_single_table("Multi-probe query")
        self._check_budget(max_buckets)
        if calibrated and self.calibration is None:
            raise RuntimeError(
                "Calibrated multi-probe requires calibration statistics; "
                "call set_calibration() first"
            )
        self._start(vector, scanner)

        signature = self.hasher.hash_floats(0, vector)
        bits = signature >= 0
        self.probe(0, bits_to_code(bits), scanner)

        if calibrated:
            sequence = self.probe_factory(
                bits, signature, bit_losses=self.calibration.normalize(signature)
            )
        else:
            sequence = self.probe_factory(bits, signature)

        for _ in range(max_buckets - 1):
            try:
                code = sequence.pop()
            except StopIteration:
                break
            self.probe(0, code, scanner)

        return scanner.finalize()

    def query_rehash(self, vector: np.ndarray, scanner: Scanner) -> List[Tuple[float, int]]:
        """
        Probe the table-0 code against every bucket table.

        After a multi-probe rebuild each table already stores every point
        under a different alternative code, so one code covers them all.
        """
        self._require_single_table("Rehash query")
        self._start(vector, scanner)

        code = self.hasher.hash_code(0, vector)
        for table in range(self.buckets.n_tables):
            self.probe(table, code, scanner)

        return scanner.finalize()

    def batch_query(
        self,
        queries: np.ndarray,
        scanner_factory: Callable[[], Scanner],
        method: str = 'query',
        **kwargs
    ) -> List[List[Tuple[float, int]]]:
        """
        Run one strategy for every row of ``queries``.

        Args:
            queries: Query vectors of shape (n_queries, d)
            scanner_factory: Returns a fresh scanner per query
            method: Name of the strategy method
            **kwargs: Extra strategy arguments (e.g. ``max_buckets``)

        Returns:
            Finalized top-k per query
        """
        strategies = {
            'query': self.query,
            'query_ranking': self.query_ranking,
            'query_ranking_by_loss': self.query_ranking_by_loss,
            'query_by_loss': self.query_by_loss,
            'query_rehash': self.query_rehash,
        }
        if method not in strategies:
            raise ValueError(f"Unknown query method: {method}")

        strategy = strategies[method]
        return [strategy(query, scanner_factory(), **kwargs) for query in queries]
