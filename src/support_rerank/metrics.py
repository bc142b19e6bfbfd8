"""
Evaluation of support passage runs.

Runs and qrels are keyed by "query+entity"; a ranking is judged against the
passages marked relevant for that pair.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence, Set

import numpy as np


def precision_at_k(relevant: Set[str], retrieved: Sequence[str], k: int) -> float:
    """
    Computes Precision@K.

    Args:
        relevant: Relevant passage ids.
        retrieved: Ranked passage ids.
        k: Top-k cutoff.

    Returns:
        Precision at rank k.
    """
    if k == 0:
        return 0.0
    hits = sum(1 for doc_id in retrieved[:k] if doc_id in relevant)
    return hits / k


def average_precision(relevant: Set[str], retrieved: Sequence[str]) -> float:
    """
    Computes Average Precision (AP) for a single ranking.

    Returns:
        Average precision score (0.0 when nothing is relevant).
    """
    if not relevant:
        return 0.0

    hits, sum_precisions = 0, 0.0
    for i, doc_id in enumerate(retrieved, start=1):
        if doc_id in relevant:
            hits += 1
            sum_precisions += hits / i
    return sum_precisions / len(relevant)


def reciprocal_rank(relevant: Set[str], retrieved: Sequence[str]) -> float:
    """Reciprocal rank of the first relevant passage (0.0 if none is retrieved)."""
    for i, doc_id in enumerate(retrieved, start=1):
        if doc_id in relevant:
            return 1.0 / i
    return 0.0


def ndcg_at_k(relevant: Set[str], retrieved: Sequence[str], k: int) -> float:
    """
    Computes binary Normalized Discounted Cumulative Gain at rank K.

    Returns:
        NDCG at rank k.
    """
    if k == 0:
        return 0.0
    # i + 2 because log2(1 + 1) = 1 for i = 0
    discounts = np.log2(np.arange(k) + 2)
    gains = np.array([1.0 if doc_id in relevant else 0.0 for doc_id in retrieved[:k]])
    dcg = float(np.sum(gains / discounts[: len(gains)]))

    ideal_hits = min(len(relevant), k)
    idcg = float(np.sum(1.0 / discounts[:ideal_hits]))
    return dcg / idcg if idcg > 0 else 0.0


def evaluate_run(
    run: Mapping[str, Sequence[str]],
    qrels: Mapping[str, Set[str]],
    k: int = 10,
) -> dict[str, float]:
    """
    Mean metrics over every judged key of the qrels.

    Keys judged but absent from the run count as empty rankings; keys only
    present in the run are ignored.

    Args:
        run: Key -> ranked passage ids.
        qrels: Key -> relevant passage ids.
        k: Cutoff for @k metrics.

    Returns:
        Dictionary with map, mrr, precision_at_k, ndcg_at_k, k and the number
        of evaluated keys.
    """
    keys = [key for key, relevant in qrels.items() if relevant]
    if not keys:
        raise ValueError("No judged keys to evaluate.")

    ap, rr, precision, ndcg = [], [], [], []
    for key in keys:
        relevant = qrels[key]
        retrieved = run.get(key, [])
        ap.append(average_precision(relevant, retrieved))
        rr.append(reciprocal_rank(relevant, retrieved))
        precision.append(precision_at_k(relevant, retrieved, k))
        ndcg.append(ndcg_at_k(relevant, retrieved, k))

    return {
        "map": float(np.mean(ap)),
        "mrr": float(np.mean(rr)),
        "precision_at_k": float(np.mean(precision)),
        "ndcg_at_k": float(np.mean(ndcg)),
        "k": k,
        "keys": len(keys),
    }
