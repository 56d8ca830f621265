"""
ITQ-LSH Core Components
=======================

Training, hashing, bucket tables, multi-probe generation and the default
collaborator implementations.
"""

from itqlsh.core.training import ITQTrainer, TrainedTable, orthogonality_error
from itqlsh.core.hashing import ITQHasher, CalibrationStats
from itqlsh.core.buckets import BucketIndex
from itqlsh.core.probing import ProbeSequence, bits_to_code, code_to_bits
from itqlsh.core.distances import DistanceComputer, hamming_distances, flip_losses
from itqlsh.core.scanner import TopKScanner
from itqlsh.core.interfaces import Dataset, ArrayDataset, Scanner, ProbeGenerator

__all__ = [
    "ITQTrainer",
    "TrainedTable",
    "orthogonality_error",
    "ITQHasher",
    "CalibrationStats",
    "BucketIndex",
    "ProbeSequence",
    "bits_to_code",
    "code_to_bits",
    "DistanceComputer",
    "hamming_distances",
    "flip_losses",
    "TopKScanner",
    "Dataset",
    "ArrayDataset",
    "Scanner",
    "ProbeGenerator",
]
