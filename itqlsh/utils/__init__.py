"""
ITQ-LSH Utilities
=================

Utility functions for ITQ-LSH including metrics and I/O.
"""

from itqlsh.utils.metrics import compute_recall, compute_ground_truth, compute_metrics
from itqlsh.utils.io import save_index, load_index, read_fvecs, read_ivecs, write_fvecs

__all__ = [
    "compute_recall",
    "compute_ground_truth",
    "compute_metrics",
    "save_index",
    "load_index",
    "read_fvecs",
    "read_ivecs",
    "write_fvecs",
]
