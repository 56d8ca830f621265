"""
Bucket Tables for ITQ-LSH
=========================

One table per hash table (or per virtual probe layer after a multi-probe
rebuild), each mapping a packed code to the ids stored under it in
insertion order. The natural iteration order of a table is ascending code.
"""

import numpy as np
from types import MappingProxyType
from typing import Callable, Dict, Iterator, List, Mapping, Sequence, Tuple

from itqlsh.core.hashing import ITQHasher, quantize
from itqlsh.core.interfaces import Dataset, ProbeGenerator
from itqlsh.core.probing import bits_to_code


# Called as factory(bits, signature), and as
# factory(bits, signature, bit_losses=losses) by calibrated queries
ProbeFactory = Callable[..., ProbeGenerator]


class BucketIndex:
    """
    Code-to-ids maps, one per table.

    Attributes:
        tables: List of ``{code: [ids]}`` dictionaries
    """

    def __init__(self, n_tables: int):
        self.tables: List[Dict[int, List[int]]] = [{} for _ in range(n_tables)]

    @property
    def n_tables(self) -> int:
        return len(self.tables)

    def add(self, table: int, code: int, vector_id: int) -> None:
        self.tables[table].setdefault(int(code), []).append(int(vector_id))

    def get(self, table: int, code: int) -> Sequence[int]:
        """Ids stored at ``code``; empty when the bucket does not exist."""
        return self.tables[table].get(int(code), ())

    def view(self, table: int) -> Mapping[int, List[int]]:
        """Read-only view of one table."""
        return MappingProxyType(self.tables[table])

    def items(self, table: int) -> Iterator[Tuple[int, List[int]]]:
        """Buckets of one table in natural (ascending code) order."""
        bucket_table = self.tables[table]
        for code in sorted(bucket_table):
            yield code, bucket_table[code]

    def sorted_codes(self, table: int) -> np.ndarray:
        """Populated codes in natural order as a uint64 array."""
        return np.array(sorted(self.tables[table]), dtype=np.uint64)

    def n_buckets(self, table: int) -> int:
        return len(self.tables[table])

    def n_entries(self, table: int) -> int:
        return sum(len(ids) for ids in self.tables[table].values())

    def replace(self, tables: List[Dict[int, List[int]]]) -> None:
        """Swap in a complete new set of tables."""
        self.tables = tables

    def get_stats(self) -> Dict:
        """Bucket occupancy statistics per table."""
        stats = []
        for t, bucket_table in enumerate(self.tables):
            sizes = np.array([len(ids) for ids in bucket_table.values()], dtype=np.int64)
            stats.append({
                'table': t,
                'n_buckets': len(bucket_table),
                'n_entries': int(sizes.sum()) if len(sizes) else 0,
                'max_bucket_size': int(sizes.max()) if len(sizes) else 0,
                'mean_bucket_size': float(sizes.mean()) if len(sizes) else 0.0,
            })
        return {'n_tables': self.n_tables, 'tables': stats}


def multi_probe_codes(
    hasher: ITQHasher,
    vector: np.ndarray,
    table_count: int,
    probe_factory: ProbeFactory
) -> List[int]:
    """
    Codes of one point in each of ``table_count`` virtual tables.

    The first is the point's own table-0 code, followed by the first
    ``table_count - 1`` codes of its probe sequence.
    """
    signature = hasher.hash_floats(0, vector)
    bits = quantize(signature)
    codes = [bits_to_code(bits)]

    sequence = probe_factory(bits, signature)
    for _ in range(1, table_count):
        codes.append(int(sequence.pop()))
    return codes


def build_multi_probe_tables(
    hasher: ITQHasher,
    dataset: Dataset,
    table_count: int,
    probe_factory: ProbeFactory,
    progress: Callable[[], None] = lambda: None
) -> List[Dict[int, List[int]]]:
    """
    Assign every point to ``table_count`` alternative codes of hash table 0.

    Table 0 receives each point's own code; table t > 0 receives the t-th
    code popped from that point's probe sequence, so all tables together
    hold each point under its ``table_count`` most likely codes.

    Args:
        hasher: Trained hasher (table 0 is used)
        dataset: Points to assign
        table_count: Number of virtual tables
        probe_factory: Builds a probe generator from (bits, signature)
        progress: Called once per point

    Returns:
        New bucket tables
    """
    tables: List[Dict[int, List[int]]] = [{} for _ in range(table_count)]

    for i in range(len(dataset)):
        codes = multi_probe_codes(hasher, dataset[i], table_count, probe_factory)
        for t, code in enumerate(codes):
            tables[t].setdefault(code, []).append(i)
        progress()

    return tables
