"""
ITQ-LSH - Iterative Quantization Hashing for ANNS
=================================================

An approximate nearest neighbor index that learns binary codes with
Iterative Quantization (ITQ) and probes hash buckets with several
multi-probe strategies trading recall for search cost.

Example:
    >>> from itqlsh import ITQLSHIndex, ITQConfig, TopKScanner
    >>> index = ITQLSHIndex(ITQConfig(dimension=128, n_bits=16))
    >>> index.build(vectors)
    >>> scanner = TopKScanner(vectors, k=10)
    >>> topk = index.query_ranking(query, scanner, max_buckets=16)
"""

from itqlsh.index import ITQLSHIndex, ITQConfig
from itqlsh.search import ITQSearch, QueryStats
from itqlsh.core.interfaces import ArrayDataset, Dataset, ProbeGenerator, Scanner
from itqlsh.core.scanner import TopKScanner
from itqlsh.core.probing import ProbeSequence
from itqlsh.exceptions import (
    ITQLSHError,
    TableModeError,
    NotTrainedError,
    DegenerateDataError,
    InsufficientDataError,
    IndexFormatError,
)

__version__ = "1.0.0"
__all__ = [
    "ITQLSHIndex",
    "ITQConfig",
    "ITQSearch",
    "QueryStats",
    "ArrayDataset",
    "Dataset",
    "ProbeGenerator",
    "Scanner",
    "TopKScanner",
    "ProbeSequence",
    "ITQLSHError",
    "TableModeError",
    "NotTrainedError",
    "DegenerateDataError",
    "InsufficientDataError",
    "IndexFormatError",
    "__version__",
]
