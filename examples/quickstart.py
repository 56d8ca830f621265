"""
ITQ-LSH Quick Start Example
===========================

This example demonstrates basic usage of the ITQ-LSH library.
"""

import numpy as np
import time
import sys
import os
import tempfile

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from itqlsh import ITQLSHIndex, ITQConfig, TopKScanner
from itqlsh.utils.metrics import compute_ground_truth, compute_metrics


def main():
    print("="*60)
    print("ITQ-LSH Quick Start Example")
    print("="*60)

    # Generate sample data
    print("\n[1] Generating sample data...")
    rng = np.random.RandomState(42)

    n_vectors = 10000
    dimension = 64
    n_queries = 100

    centers = rng.randn(20, dimension).astype(np.float32)
    vectors = centers[rng.randint(0, 20, n_vectors)] + \
        rng.randn(n_vectors, dimension).astype(np.float32) * 0.3
    queries = centers[rng.randint(0, 20, n_queries)] + \
        rng.randn(n_queries, dimension).astype(np.float32) * 0.3

    print(f"    Vectors: {n_vectors} × {dimension}")
    print(f"    Queries: {n_queries}")

    # Create and build index
    print("\n[2] Building ITQ-LSH index...")

    config = ITQConfig(
        dimension=dimension,
        n_bits=12,               # Code length
        n_tables=1,              # Single table enables multi-probe
        n_train_samples=2000,    # Training sample size
        n_iterations=50,         # ITQ iterations
        verbose=True
    )

    index = ITQLSHIndex(config)

    build_start = time.time()
    index.build(vectors)
    build_time = time.time() - build_start

    print(f"\n    Build time: {build_time:.2f}s")

    # Search for nearest neighbors
    print("\n[3] Searching for nearest neighbors...")

    k = 10
    query = queries[0]

    topk = index.query_by_loss(query, TopKScanner(vectors, k=k), max_buckets=16)
    print(f"\n    Single query result:")
    print(f"    Nearest neighbors: {[i for _, i in topk[:5]]}...")
    print(f"    Candidates scanned: {index.last_query_stats.candidates}")

    # Compare strategies
    print("\n[4] Comparing probing strategies...")

    gt_ids, _ = compute_ground_truth(vectors, queries, k=k)

    strategies = [
        ('query', {}),
        ('query_ranking', {'max_buckets': 16}),
        ('query_ranking_by_loss', {'max_buckets': 16}),
        ('query_by_loss', {'max_buckets': 16}),
    ]

    for method, kwargs in strategies:
        results = []
        candidates = []
        start = time.time()
        for q in queries:
            results.append(getattr(index, method)(q, TopKScanner(vectors, k=k), **kwargs))
            candidates.append(index.last_query_stats.candidates)
        latency = (time.time() - start) / n_queries * 1000

        metrics = compute_metrics(results, gt_ids, candidates, k=k)
        print(f"    {method:<24} recall@{k}={metrics[f'recall@{k}']:5.1f}%  "
              f"candidates={metrics['mean_candidates']:8.1f}  "
              f"latency={latency:.3f}ms")

    # Save and load
    print("\n[5] Testing save/load...")

    fd, index_path = tempfile.mkstemp(suffix='.itq')
    os.close(fd)

    index.save(index_path)
    loaded_index = ITQLSHIndex.load(index_path)

    loaded_topk = loaded_index.query_by_loss(query, TopKScanner(vectors, k=k), max_buckets=16)
    assert loaded_topk == topk, "Loaded index gives different results!"
    print("    Save/load verified ✓")

    # Multi-probe rebuild
    print("\n[6] Multi-probe rebuild with 8 tables...")

    index.rebuild_multi_probe(vectors, 8)
    results = []
    candidates = []
    for q in queries:
        results.append(index.query_rehash(q, TopKScanner(vectors, k=k)))
        candidates.append(index.last_query_stats.candidates)
    metrics = compute_metrics(results, gt_ids, candidates, k=k)
    print(f"    query_rehash             recall@{k}={metrics[f'recall@{k}']:5.1f}%  "
          f"candidates={metrics['mean_candidates']:8.1f}")

    # Summary
    print("\n" + "="*60)
    print("Summary")
    print("="*60)
    print(f"    Dataset:          {n_vectors:,} vectors")
    print(f"    Build time:       {build_time:.2f}s")
    print(f"    Buckets:          {index.get_stats()['buckets']['tables'][0]['n_buckets']:,}")
    print("="*60)

    # Cleanup
    os.remove(index_path)


if __name__ == '__main__':
    main()
