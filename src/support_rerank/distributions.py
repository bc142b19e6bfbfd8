"""
Entity ranking methods of Blanco et al. for support passage ranking.

Each method maps the entity pool to a per-entity weight for one query:

    freq:   ln(round4(count_q(e) / sum_pool count_q))
    rarity: corpus_size / count_c(e)                      (0 when count_c(e) = 0)
    comb:   exp(freq(e)) * rarity(e)
    kld:    p_q(e) * ln(p_q(e) / p_c(e))                  (0 when p_q(e) = 0)

where count_q is the query's top-K mention count (run stats), count_c the
corpus mention count, p_q(e) = count_q(e) / topK and p_c(e) = count_c(e) / corpus_size.
Missing counts are read as 0; the stats tables are never modified.

A "distribution" here is a weight per entity, not necessarily summing to 1.

rank_by_cooccurrence is the entity context variant: its weights come from
the entities linked in one pseudo-document instead of the stats tables.
"""

from __future__ import annotations

import math
from collections import Counter
from collections.abc import Collection, Mapping, Sequence
from decimal import ROUND_CEILING, Decimal

import numpy as np

from support_rerank.config import CORPUS_SIZE, RankingMethod

_FOUR_PLACES = Decimal("0.0001")


def round_ceiling(value: float) -> float:
    """
    Round towards +inf on 4 decimal places.

    Digits are taken from the shortest repr, so a value that already has at
    most 4 decimals (0.1, 0.4) is kept as is.

    Non-finite values are returned unchanged.
    """
    if not math.isfinite(value):
        return value
    return float(Decimal(repr(float(value))).quantize(_FOUR_PLACES, rounding=ROUND_CEILING))


def _counts(table: Mapping[str, int], entity_pool: Sequence[str]) -> np.ndarray:
    return np.array([table.get(e, 0) for e in entity_pool], dtype=np.float64)


def rank_by_frequency(run_counts: Mapping[str, int], entity_pool: Sequence[str]) -> dict[str, float]:
    """
    Log of each entity's share of top-K mentions.

    Shares are rounded up to 4 decimals before the logarithm. Entities with no
    mentions get -inf; if no pool entity is mentioned at all every entity gets -inf.
    """
    counts = _counts(run_counts, entity_pool)
    norm = counts.sum()
    if norm == 0:
        return dict.fromkeys(entity_pool, -math.inf)

    shares = np.array([round_ceiling(share) for share in (counts / norm).tolist()], dtype=np.float64)
    with np.errstate(divide="ignore"):
        scores = np.log(shares)
    return dict(zip(entity_pool, scores.tolist()))


def rank_by_rarity(
    corpus_counts: Mapping[str, int],
    entity_pool: Sequence[str],
    corpus_size: int = CORPUS_SIZE,
) -> dict[str, float]:
    """Inverse corpus frequency: corpus_size / count, 0 for entities never seen."""
    counts = _counts(corpus_counts, entity_pool)
    with np.errstate(divide="ignore"):
        scores = np.where(counts > 0, corpus_size / counts, 0.0)
    return dict(zip(entity_pool, scores.tolist()))


def rank_by_comb(
    run_counts: Mapping[str, int],
    corpus_counts: Mapping[str, int],
    entity_pool: Sequence[str],
    corpus_size: int = CORPUS_SIZE,
) -> dict[str, float]:
    """Frequency share (un-logged) times rarity, for entities scored by both."""
    by_frequency = rank_by_frequency(run_counts, entity_pool)
    by_rarity = rank_by_rarity(corpus_counts, entity_pool, corpus_size)
    return {
        e: math.exp(by_frequency[e]) * by_rarity[e]
        for e in entity_pool
        if e in by_frequency and e in by_rarity
    }


def rank_by_kld(
    run_counts: Mapping[str, int],
    corpus_counts: Mapping[str, int],
    entity_pool: Sequence[str],
    top_k_passages: int,
    corpus_size: int = CORPUS_SIZE,
) -> dict[str, float]:
    """
    Per-entity contribution to KL(query model || corpus model).

    Args:
        run_counts: Entity -> top-K passages mentioning it, for the query.
        corpus_counts: Entity -> corpus passages mentioning it.
        entity_pool: Entities to score.
        top_k_passages: Number of top-K passages of the query; must be positive.
        corpus_size: Passages in the corpus.

    Returns:
        Entity -> p_q * ln(p_q / p_c); exactly 0 where p_q is 0 and +inf
        where the entity is mentioned in the run but never in the corpus.
    """
    if top_k_passages <= 0:
        raise ZeroDivisionError("top_k_passages must be positive")

    p_query = _counts(run_counts, entity_pool) / top_k_passages
    p_corpus = _counts(corpus_counts, entity_pool) / corpus_size
    with np.errstate(divide="ignore", invalid="ignore"):
        scores = np.where(p_query == 0.0, 0.0, p_query * np.log(p_query / p_corpus))
    return dict(zip(entity_pool, scores.tolist()))


def entity_distribution(
    method: RankingMethod,
    run_counts: Mapping[str, int],
    corpus_counts: Mapping[str, int],
    entity_pool: Sequence[str],
    top_k_passages: int,
    corpus_size: int = CORPUS_SIZE,
) -> dict[str, float]:
    """Weight the entity pool for one query with the given ranking method."""
    if not entity_pool:
        raise ValueError("entity_pool must not be empty")

    if method is RankingMethod.FREQ:
        return rank_by_frequency(run_counts, entity_pool)
    if method is RankingMethod.RARITY:
        return rank_by_rarity(corpus_counts, entity_pool, corpus_size)
    if method is RankingMethod.COMB:
        return rank_by_comb(run_counts, corpus_counts, entity_pool, corpus_size)
    if method is RankingMethod.KLD:
        return rank_by_kld(run_counts, corpus_counts, entity_pool, top_k_passages, corpus_size)
    raise ValueError(f"Unknown ranking method: {method!r}")


def rank_by_cooccurrence(context_entities: Sequence[str], relevant: Collection[str]) -> dict[str, float]:
    """
    Share of each relevant entity among the entities linked in a pseudo-document.

    Every occurrence counts, so an entity linked by three passages weighs three.
    Shares are rounded up to 4 decimals and not logged. Relevant entities that
    never co-occur are absent from the result.
    """
    counts = Counter(e for e in context_entities if e in relevant)
    norm = sum(counts.values())
    return {e: round_ceiling(count / norm) for e, count in counts.items()}
