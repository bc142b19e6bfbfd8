"""Ranked run lines for one (query, entity) pair."""

from __future__ import annotations

import math
from collections.abc import Mapping

from support_rerank.distributions import round_ceiling
from support_rerank.trec import format_run_line


def make_run_lines(
    query_id: str,
    entity_id: str,
    scores: Mapping[str, float],
    run_tag: str,
) -> list[str]:
    """
    Rank passages by score and format them as run lines keyed "query+entity".

    Scores are sorted descending (ties keep the order of `scores`), rounded
    up to 4 decimals, and only finite non-zero rounded scores are emitted.
    Ranks start at 1 and count emitted lines only.
    """
    key = f"{query_id}+{entity_id}"
    finite = [(pid, score) for pid, score in scores.items() if math.isfinite(score)]
    ranked = sorted(finite, key=lambda item: item[1], reverse=True)

    lines = []
    rank = 1
    for passage_id, score in ranked:
        rounded = round_ceiling(score)
        if rounded == 0:
            continue
        lines.append(format_run_line(key, passage_id, rank, rounded, run_tag))
        rank += 1
    return lines
