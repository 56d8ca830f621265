"""
ITQ-LSH Benchmark Suite
=======================

Builds an ITQ-LSH index and measures recall and scanned candidates of
every probing strategy over a range of probe budgets, optionally against
an HNSW baseline.

Usage:
    python benchmarks/run_benchmarks.py --n-vectors 10000 --n-bits 12
    python benchmarks/run_benchmarks.py --base-file sift_base.fvecs \\
        --query-file sift_query.fvecs --benchmark-file sift_groundtruth.ivecs
"""

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import numpy as np
import time
import json
import argparse
from pathlib import Path
from typing import Dict, List, Optional, Tuple
import hnswlib

from itqlsh import ITQLSHIndex, ITQConfig, TopKScanner
from itqlsh.utils.io import read_fvecs, read_ivecs
from itqlsh.utils.metrics import compute_ground_truth, compute_metrics, compute_recall


def generate_test_data(
    n_vectors: int = 10000,
    n_queries: int = 100,
    dimension: int = 64,
    random_state: int = 42
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Generate clustered synthetic data.

    Args:
        n_vectors: Number of database vectors
        n_queries: Number of query vectors
        dimension: Vector dimension
        random_state: Random seed

    Returns:
        (vectors, queries): Generated data
    """
    rng = np.random.RandomState(random_state)
    n_clusters = max(10, n_vectors // 1000)

    centers = rng.randn(n_clusters, dimension).astype(np.float32)

    assignments = rng.randint(0, n_clusters, n_vectors)
    vectors = centers[assignments] + rng.randn(n_vectors, dimension).astype(np.float32) * 0.3

    query_assignments = rng.randint(0, n_clusters, n_queries)
    queries = centers[query_assignments] + rng.randn(n_queries, dimension).astype(np.float32) * 0.3

    return vectors.astype(np.float32), queries.astype(np.float32)


def run_strategy(
    index: ITQLSHIndex,
    vectors: np.ndarray,
    queries: np.ndarray,
    ground_truth: np.ndarray,
    method: str,
    k: int,
    **kwargs
) -> Dict:
    """Run one query strategy over all queries and summarize it."""
    results = []
    candidates = []

    start = time.time()
    for query in queries:
        scanner = TopKScanner(vectors, k=k)
        results.append(getattr(index, method)(query, scanner, **kwargs))
        candidates.append(index.last_query_stats.candidates)
    elapsed = time.time() - start

    summary = compute_metrics(results, ground_truth, candidates, k)
    summary['method'] = method
    summary['latency_per_query_ms'] = elapsed / max(len(queries), 1) * 1000
    summary.update(kwargs)
    return summary


def benchmark_hnsw(
    vectors: np.ndarray,
    queries: np.ndarray,
    ground_truth: np.ndarray,
    k: int,
    M: int = 16,
    ef_construction: int = 200,
    ef_search: int = 50
) -> Dict:
    """HNSW baseline using hnswlib."""
    n_vectors, dimension = vectors.shape

    index = hnswlib.Index(space='l2', dim=dimension)
    index.init_index(
        max_elements=n_vectors,
        ef_construction=ef_construction,
        M=M,
        random_seed=42
    )

    start = time.time()
    index.add_items(vectors, np.arange(n_vectors))
    build_time = time.time() - start
    index.set_ef(ef_search)

    start = time.time()
    ids, _ = index.knn_query(queries, k=k)
    elapsed = time.time() - start

    return {
        'method': 'hnsw',
        f'recall@{k}': compute_recall(ids.astype(np.int64), ground_truth, k),
        'build_time_s': build_time,
        'latency_per_query_ms': elapsed / max(len(queries), 1) * 1000,
    }


def print_row(result: Dict, k: int) -> None:
    budget = result.get('max_buckets', '-')
    print(f"{result['method']:<24} {str(budget):<8} "
          f"{result[f'recall@{k}']:<10.1f} "
          f"{result.get('mean_candidates', float('nan')):<14.1f} "
          f"{result['latency_per_query_ms']:<10.4f}")


def run_benchmarks(
    vectors: np.ndarray,
    queries: np.ndarray,
    ground_truth: np.ndarray,
    config: ITQConfig,
    budgets: List[int],
    k: int = 10,
    rehash_tables: int = 0,
    with_hnsw: bool = False,
    output_file: Optional[Path] = None
) -> List[Dict]:
    """
    Run every probing strategy for each budget.

    Args:
        vectors: Database vectors
        queries: Query vectors
        ground_truth: Ground truth neighbor ids
        config: Index configuration
        budgets: Probe budgets (buckets per query)
        k: Number of neighbors
        rehash_tables: Also benchmark a multi-probe rebuild with this many tables
        with_hnsw: Include the hnswlib baseline
        output_file: JSON file for the results

    Returns:
        All benchmark results
    """
    print("=" * 60)
    print("ITQ-LSH BENCHMARK SUITE")
    print("=" * 60)
    print(f"\nDataset: {vectors.shape[0]:,} vectors × {vectors.shape[1]} dimensions")
    print(f"Queries: {queries.shape[0]}")

    index = ITQLSHIndex(config)
    start = time.time()
    index.build(vectors, show_progress=True)
    build_time = time.time() - start

    all_results: List[Dict] = []
    print(f"\n{'Method':<24} {'Budget':<8} {'Recall@' + str(k):<10} "
          f"{'Candidates':<14} {'Latency':<10}")
    print("-" * 70)

    result = run_strategy(index, vectors, queries, ground_truth, 'query', k)
    print_row(result, k)
    all_results.append(result)

    # Multi-probe strategies need a single hash table
    if config.n_tables == 1:
        for budget in budgets:
            for method in ('query_ranking', 'query_ranking_by_loss', 'query_by_loss'):
                result = run_strategy(
                    index, vectors, queries, ground_truth, method, k, max_buckets=budget
                )
                print_row(result, k)
                all_results.append(result)

        if rehash_tables > 1:
            index.rebuild_multi_probe(vectors, rehash_tables, show_progress=True)
            result = run_strategy(index, vectors, queries, ground_truth, 'query_rehash', k)
            result['rehash_tables'] = rehash_tables
            print_row(result, k)
            all_results.append(result)

    if with_hnsw:
        result = benchmark_hnsw(vectors, queries, ground_truth, k)
        print_row(result, k)
        all_results.append(result)

    for result in all_results:
        result.setdefault('build_time_s', build_time)

    if output_file is not None:
        with open(output_file, 'w') as f:
            json.dump(all_results, f, indent=2)
        print(f"\n✓ Results saved to {output_file}")

    return all_results


def main(argv: Optional[List[str]] = None) -> List[Dict]:
    parser = argparse.ArgumentParser(description='Run ITQ-LSH benchmarks')
    parser.add_argument('--base-file', type=Path, help='Database vectors (.fvecs)')
    parser.add_argument('--query-file', type=Path, help='Query vectors (.fvecs)')
    parser.add_argument('--benchmark-file', type=Path, help='Ground truth ids (.ivecs)')
    parser.add_argument('--n-vectors', type=int, default=10000, help='Synthetic dataset size')
    parser.add_argument('--n-queries', type=int, default=100, help='Synthetic query count')
    parser.add_argument('--dimension', type=int, default=64, help='Synthetic dimension')
    parser.add_argument('--topk', '-k', type=int, default=10, help='Neighbors per query')
    parser.add_argument('--n-bits', type=int, default=12, help='Code length')
    parser.add_argument('--n-tables', type=int, default=1, help='Hash tables')
    parser.add_argument('--n-train-samples', type=int, default=5000, help='Training sample size')
    parser.add_argument('--n-iterations', type=int, default=50, help='ITQ iterations')
    parser.add_argument(
        '--budgets', type=int, nargs='+', default=[1, 4, 16, 64],
        help='Buckets probed per query'
    )
    parser.add_argument('--rehash-tables', type=int, default=0,
                        help='Benchmark a multi-probe rebuild with this many tables')
    parser.add_argument('--hnsw', action='store_true', help='Include the HNSW baseline')
    parser.add_argument('--seed', type=int, default=42, help='Random seed')
    parser.add_argument('--output', '-o', type=Path, help='JSON results file')

    args = parser.parse_args(argv)

    if args.base_file is not None:
        vectors = read_fvecs(args.base_file)
        if args.query_file is None:
            parser.error('--query-file is required with --base-file')
        queries = read_fvecs(args.query_file)
    else:
        vectors, queries = generate_test_data(
            n_vectors=args.n_vectors,
            n_queries=args.n_queries,
            dimension=args.dimension,
            random_state=args.seed
        )

    if args.benchmark_file is not None:
        ground_truth = read_ivecs(args.benchmark_file).astype(np.int64)
    else:
        print("Computing ground truth (brute force)...")
        ground_truth, _ = compute_ground_truth(vectors, queries, k=args.topk)

    config = ITQConfig(
        dimension=vectors.shape[1],
        n_bits=args.n_bits,
        n_tables=args.n_tables,
        n_train_samples=min(args.n_train_samples, len(vectors)),
        n_iterations=args.n_iterations,
        random_state=args.seed,
        verbose=True
    )

    return run_benchmarks(
        vectors, queries, ground_truth, config,
        budgets=args.budgets,
        k=args.topk,
        rehash_tables=args.rehash_tables,
        with_hnsw=args.hnsw,
        output_file=args.output
    )


if __name__ == '__main__':
    main()
