"""
Pytest configuration and fixtures for ITQ-LSH tests.
"""

import pytest
import numpy as np
import sys
import os

# Add the project root to the path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from itqlsh import ITQLSHIndex, ITQConfig, Scanner


class RecordingScanner(Scanner):
    """Scanner that records every id it is fed, in order."""

    def __init__(self):
        self.query = None
        self.seen = []

    def reset(self, query):
        self.query = query
        self.seen = []

    def add(self, candidate_id):
        self.seen.append(candidate_id)

    def finalize(self):
        return [(0.0, i) for i in self.seen]


@pytest.fixture
def recording_scanner():
    return RecordingScanner()


@pytest.fixture
def clustered_data():
    """2000 clustered 16-d vectors and 20 queries."""
    rng = np.random.RandomState(0)
    centers = rng.randn(8, 16).astype(np.float32) * 3
    vectors = centers[rng.randint(0, 8, 2000)] + rng.randn(2000, 16).astype(np.float32)
    queries = centers[rng.randint(0, 8, 20)] + rng.randn(20, 16).astype(np.float32)
    return vectors.astype(np.float32), queries.astype(np.float32)


@pytest.fixture
def small_config():
    return ITQConfig(dimension=16, n_bits=8, n_train_samples=500, n_iterations=20)


@pytest.fixture
def trained_index(clustered_data, small_config):
    vectors, _ = clustered_data
    return ITQLSHIndex(small_config).build(vectors)


@pytest.fixture
def identity_index():
    """
    D = N = 4 index whose signature is the vector itself.

    Holds three points:
        id 0: [-1,  1,  1,  1]  -> code 0111
        id 1: [-1,  1, -1, -1]  -> code 0100
        id 2: [-1, -1, -1, -1]  -> code 0000
    """
    index = ITQLSHIndex(ITQConfig(dimension=4, n_bits=4, n_train_samples=2))
    index.set_parameters(0, np.eye(4), np.eye(4))

    points = np.array([
        [-1, 1, 1, 1],
        [-1, 1, -1, -1],
        [-1, -1, -1, -1],
    ], dtype=np.float32)
    index.batch_insert(points)
    return index, points
