"""
I/O Utilities for ITQ-LSH
=========================

Binary index persistence and TEXMEX vector file readers.

Index layout (all integers little-endian u32 unless noted):
-----------------------------------------------------------
Legacy stream::

    M, L, D, N, S
    per hash table:
        N legacy values
        bucket count
        per bucket (ascending code): code, length, length ids
        N times: projection row (D f32), rotation-transpose row (N f32)

Versioned stream (default)::

    b"ITQL", version, code width, bucket-table count
    legacy stream, with codes stored as u32 or u64 per the code width
    per extra bucket table (multi-probe rebuild): bucket count, buckets

Every read is bounds-checked; anything that does not parse exactly to the
end of the stream raises ``IndexFormatError``.
"""

import numpy as np
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Union

from itqlsh.exceptions import IndexFormatError


MAGIC = b'ITQL'
FORMAT_VERSION = 1
SUPPORTED_CODE_WIDTHS = (32, 64)

_U32 = np.dtype('<u4')
_U64 = np.dtype('<u8')
_F32 = np.dtype('<f4')


@dataclass
class IndexState:
    """Everything persisted for one index."""

    table_size: int                 # M (legacy)
    n_tables: int                   # L
    dimension: int                  # D
    n_bits: int                     # N
    n_train_samples: int            # S
    code_width: int = 32
    legacy_arrays: List[np.ndarray] = field(default_factory=list)
    projections: List[np.ndarray] = field(default_factory=list)
    rotations: List[np.ndarray] = field(default_factory=list)
    bucket_tables: List[Dict[int, List[int]]] = field(default_factory=list)


class _Reader:
    """Bounds-checked cursor over an in-memory byte stream."""

    def __init__(self, data: bytes):
        self.data = data
        self.offset = 0

    @property
    def remaining(self) -> int:
        return len(self.data) - self.offset

    def read(self, dtype: np.dtype, count: int, what: str) -> np.ndarray:
        n_bytes = dtype.itemsize * count
        if count < 0 or n_bytes > self.remaining:
            raise IndexFormatError(
                f"Truncated stream reading {what}: need {n_bytes} bytes at "
                f"offset {self.offset}, {self.remaining} available"
            )
        values = np.frombuffer(self.data, dtype=dtype, count=count, offset=self.offset)
        self.offset += n_bytes
        return values

    def read_u32(self, what: str) -> int:
        return int(self.read(_U32, 1, what)[0])


def _encode_buckets(
    bucket_table: Dict[int, List[int]],
    code_dtype: np.dtype,
    code_limit: int
) -> List[bytes]:
    chunks = [np.array([len(bucket_table)], dtype=_U32).tobytes()]
    for code in sorted(bucket_table):
        ids = bucket_table[code]
        if not 0 <= code < code_limit:
            raise ValueError(f"Bucket code {code} does not fit in the code width")
        if ids and (min(ids) < 0 or max(ids) > 0xFFFFFFFF):
            raise ValueError(f"Bucket {code} holds ids outside the u32 range")
        chunks.append(np.array([code], dtype=code_dtype).tobytes())
        chunks.append(np.array([len(ids)], dtype=_U32).tobytes())
        chunks.append(np.asarray(ids, dtype=_U32).tobytes())
    return chunks


def _decode_buckets(
    reader: _Reader,
    code_dtype: np.dtype,
    n_bits: int,
    table: int
) -> Dict[int, List[int]]:
    count = reader.read_u32(f"bucket count of table {table}")
    # Each bucket needs at least a code and a length
    if count * (code_dtype.itemsize + 4) > reader.remaining:
        raise IndexFormatError(
            f"Table {table} declares {count} buckets, more than the stream holds"
        )

    bucket_table: Dict[int, List[int]] = {}
    for _ in range(count):
        code = int(reader.read(code_dtype, 1, f"bucket code of table {table}")[0])
        length = reader.read_u32(f"bucket length of table {table}")
        ids = reader.read(_U32, length, f"bucket {code} of table {table}")

        if code >> n_bits:
            raise IndexFormatError(
                f"Bucket code {code} in table {table} exceeds {n_bits} bits"
            )
        if code in bucket_table:
            raise IndexFormatError(f"Duplicate bucket code {code} in table {table}")
        bucket_table[code] = ids.astype(np.int64).tolist()

    return bucket_table


def _encode_state(state: IndexState, legacy: bool) -> bytes:
    n_bucket_tables = len(state.bucket_tables)
    if legacy:
        if state.code_width != 32:
            raise ValueError("Legacy format only stores 32-bit codes")
        if n_bucket_tables != state.n_tables:
            raise ValueError(
                "Legacy format cannot store a multi-probe rebuilt index "
                f"({n_bucket_tables} bucket tables for {state.n_tables} hash tables)"
            )

    code_dtype = _U32 if state.code_width == 32 else _U64
    code_limit = 1 << state.n_bits

    chunks: List[bytes] = []
    if not legacy:
        chunks.append(MAGIC)
        chunks.append(np.array(
            [FORMAT_VERSION, state.code_width, n_bucket_tables], dtype=_U32
        ).tobytes())

    chunks.append(np.array([
        state.table_size, state.n_tables, state.dimension,
        state.n_bits, state.n_train_samples
    ], dtype=_U32).tobytes())

    for k in range(state.n_tables):
        chunks.append(np.asarray(state.legacy_arrays[k], dtype=_U32).tobytes())
        chunks.extend(_encode_buckets(state.bucket_tables[k], code_dtype, code_limit))

        projection = np.asarray(state.projections[k], dtype=_F32)
        rotation_t = np.asarray(state.rotations[k], dtype=_F32).T
        for j in range(state.n_bits):
            chunks.append(projection[j].tobytes())
            chunks.append(np.ascontiguousarray(rotation_t[j]).tobytes())

    for t in range(state.n_tables, n_bucket_tables):
        chunks.extend(_encode_buckets(state.bucket_tables[t], code_dtype, code_limit))

    return b''.join(chunks)


def _decode_state(data: bytes) -> IndexState:
    reader = _Reader(data)

    versioned = data[:len(MAGIC)] == MAGIC
    if versioned:
        reader.offset = len(MAGIC)
        version = reader.read_u32("format version")
        if version != FORMAT_VERSION:
            raise IndexFormatError(f"Unsupported format version {version}")
        code_width = reader.read_u32("code width")
        if code_width not in SUPPORTED_CODE_WIDTHS:
            raise IndexFormatError(f"Unsupported code width {code_width}")
        n_bucket_tables = reader.read_u32("bucket table count")
    else:
        code_width = 32
        n_bucket_tables = None

    header = reader.read(_U32, 5, "header")
    table_size, n_tables, dimension, n_bits, n_train_samples = (int(v) for v in header)

    if n_tables < 1 or dimension < 1 or n_bits < 1:
        raise IndexFormatError(
            f"Invalid header: L={n_tables}, D={dimension}, N={n_bits}"
        )
    if n_bits > code_width:
        raise IndexFormatError(
            f"Header declares {n_bits}-bit codes in a {code_width}-bit format"
        )
    if n_bucket_tables is None:
        n_bucket_tables = n_tables
    if n_bucket_tables < n_tables or (n_bucket_tables > n_tables and n_tables != 1):
        raise IndexFormatError(
            f"{n_bucket_tables} bucket tables inconsistent with {n_tables} hash tables"
        )

    code_dtype = _U32 if code_width == 32 else _U64
    state = IndexState(
        table_size=table_size,
        n_tables=n_tables,
        dimension=dimension,
        n_bits=n_bits,
        n_train_samples=n_train_samples,
        code_width=code_width
    )

    for k in range(n_tables):
        state.legacy_arrays.append(
            reader.read(_U32, n_bits, f"legacy array of table {k}").copy()
        )
        state.bucket_tables.append(_decode_buckets(reader, code_dtype, n_bits, k))

        row_bytes = (dimension + n_bits) * _F32.itemsize
        if n_bits * row_bytes > reader.remaining:
            raise IndexFormatError(f"Truncated stream reading matrices of table {k}")

        projection = np.empty((n_bits, dimension), dtype=np.float32)
        rotation_t = np.empty((n_bits, n_bits), dtype=np.float32)
        for j in range(n_bits):
            projection[j] = reader.read(_F32, dimension, f"projection row {j}")
            rotation_t[j] = reader.read(_F32, n_bits, f"rotation row {j}")

        if not (np.all(np.isfinite(projection)) and np.all(np.isfinite(rotation_t))):
            raise IndexFormatError(f"Non-finite matrix values in table {k}")

        state.projections.append(projection)
        state.rotations.append(np.ascontiguousarray(rotation_t.T))

    for t in range(n_tables, n_bucket_tables):
        state.bucket_tables.append(_decode_buckets(reader, code_dtype, n_bits, t))

    if reader.remaining:
        raise IndexFormatError(
            f"{reader.remaining} unexpected trailing bytes after index data"
        )

    return state


def save_state(state: IndexState, filepath: Union[str, Path], legacy: bool = False) -> None:
    """
    Write an index state to disk.

    Args:
        state: State to persist
        filepath: Output path
        legacy: Write the original unversioned layout
    """
    data = _encode_state(state, legacy)
    with open(filepath, 'wb') as f:
        f.write(data)


def load_state(filepath: Union[str, Path]) -> IndexState:
    """
    Read an index state from disk, versioned or legacy.

    Raises:
        IndexFormatError: If the stream is malformed
    """
    with open(filepath, 'rb') as f:
        data = f.read()
    return _decode_state(data)


def save_index(index, filepath: Union[str, Path], legacy: bool = False) -> None:
    """
    Save ITQ-LSH index to file.

    Args:
        index: ITQLSHIndex instance
        filepath: Path to save file
        legacy: Write the original unversioned layout
    """
    index.save(str(filepath), legacy=legacy)


def load_index(filepath: Union[str, Path]):
    """
    Load ITQ-LSH index from file.

    Args:
        filepath: Path to saved index

    Returns:
        Loaded ITQLSHIndex instance
    """
    from itqlsh.index import ITQLSHIndex
    return ITQLSHIndex.load(str(filepath))


def _read_vecs(filepath: Union[str, Path], dtype: np.dtype) -> np.ndarray:
    raw = np.fromfile(str(filepath), dtype='<i4')
    if raw.size == 0:
        return np.zeros((0, 0), dtype=dtype)

    dimension = int(raw[0])
    if dimension <= 0 or raw.size % (dimension + 1) != 0:
        raise ValueError(f"{filepath} is not a valid vecs file")

    rows = raw.reshape(-1, dimension + 1)
    if not np.all(rows[:, 0] == dimension):
        raise ValueError(f"{filepath} mixes vector dimensions")

    return np.ascontiguousarray(rows[:, 1:]).view(dtype)


def read_fvecs(filepath: Union[str, Path]) -> np.ndarray:
    """Read a TEXMEX ``.fvecs`` file into an (n, d) float32 array."""
    return _read_vecs(filepath, np.dtype('<f4'))


def read_ivecs(filepath: Union[str, Path]) -> np.ndarray:
    """Read a TEXMEX ``.ivecs`` file (e.g. ground truth) into an (n, d) int32 array."""
    return _read_vecs(filepath, np.dtype('<i4'))


def write_fvecs(filepath: Union[str, Path], vectors: np.ndarray) -> None:
    """Write an (n, d) array as a TEXMEX ``.fvecs`` file."""
    vectors = np.ascontiguousarray(vectors, dtype='<f4')
    n, d = vectors.shape
    out = np.empty((n, d + 1), dtype='<i4')
    out[:, 0] = d
    out[:, 1:] = vectors.view('<i4')
    out.tofile(str(filepath))
