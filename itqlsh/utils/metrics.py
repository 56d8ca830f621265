"""
Evaluation Metrics for ITQ-LSH
==============================

Recall against brute-force ground truth, and helpers to turn scanner
output into fixed-shape id arrays.
"""

import numpy as np
from typing import Dict, List, Sequence, Tuple

from itqlsh.core.distances import DistanceComputer, select_top_k_distances


def compute_ground_truth(
    vectors: np.ndarray,
    queries: np.ndarray,
    k: int = 10,
    metric: str = 'l2'
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Compute exact k-nearest neighbors (brute force).

    Args:
        vectors: Database vectors of shape (N, d)
        queries: Query vectors of shape (n_queries, d)
        k: Number of neighbors
        metric: Distance metric

    Returns:
        (ids, distances): Ground truth of shape (n_queries, k)
    """
    vectors = np.asarray(vectors, dtype=np.float32)
    queries = np.asarray(queries, dtype=np.float32)

    n_queries = len(queries)
    k = min(k, len(vectors))

    gt_ids = np.zeros((n_queries, k), dtype=np.int64)
    gt_distances = np.zeros((n_queries, k), dtype=np.float32)

    distance_computer = DistanceComputer(metric=metric)

    for i in range(n_queries):
        distances = distance_computer.compute(queries[i], vectors)
        top_k, top_dists = select_top_k_distances(distances, k)
        gt_ids[i] = top_k
        gt_distances[i] = top_dists

    return gt_ids, gt_distances


def topk_to_ids(results: Sequence[List[Tuple[float, int]]], k: int) -> np.ndarray:
    """
    Convert per-query ``(score, id)`` lists to an (n_queries, k) id array.

    Missing entries (fewer than k candidates found) are filled with -1.
    """
    ids = np.full((len(results), k), -1, dtype=np.int64)
    for i, topk in enumerate(results):
        row = [candidate_id for _, candidate_id in topk[:k]]
        ids[i, :len(row)] = row
    return ids


def compute_recall(
    predicted: np.ndarray,
    ground_truth: np.ndarray,
    k: int = 10
) -> float:
    """
    Compute recall@k.

    Recall@k measures the proportion of true nearest neighbors
    that appear in the top-k predictions.

    Args:
        predicted: Predicted neighbor IDs of shape (n_queries, k_pred)
        ground_truth: Ground truth IDs of shape (n_queries, k_gt)
        k: Number of neighbors to consider

    Returns:
        Recall@k as percentage (0-100)
    """
    n_queries = predicted.shape[0]
    k = min(k, predicted.shape[1], ground_truth.shape[1])
    if n_queries == 0 or k == 0:
        return 0.0

    recalls = []
    for i in range(n_queries):
        pred_set = set(predicted[i, :k].tolist()) - {-1}
        true_set = set(ground_truth[i, :k].tolist())
        recalls.append(len(pred_set & true_set) / k)

    return float(np.mean(recalls) * 100)


def compute_metrics(
    results: Sequence[List[Tuple[float, int]]],
    ground_truth: np.ndarray,
    candidates: Sequence[int],
    k: int = 10
) -> Dict[str, float]:
    """
    Summary of one query strategy run.

    Args:
        results: Finalized top-k per query
        ground_truth: Ground truth IDs
        candidates: Number of candidates scanned per query
        k: Recall cutoff

    Returns:
        Dictionary with recall and candidate statistics
    """
    predicted = topk_to_ids(results, k)
    candidates = np.asarray(candidates, dtype=np.float64)
    return {
        f'recall@{k}': compute_recall(predicted, ground_truth, k),
        'mean_candidates': float(candidates.mean()) if len(candidates) else 0.0,
        'max_candidates': float(candidates.max()) if len(candidates) else 0.0,
    }
