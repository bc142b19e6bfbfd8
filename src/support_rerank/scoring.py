"""
Passage scores from an entity distribution.

A passage in an entity's pseudo-document is scored from the entities it
mentions (read from the NER index) and the query's entity distribution.
"""

from __future__ import annotations

import warnings
from collections.abc import Mapping, Sequence

from support_rerank.config import Aggregation
from support_rerank.index import DocumentIndex, LookupFailureWarning
from support_rerank.pseudo_document import PseudoDocument, extract_mentions


def aggregate(mentions: Sequence[str], distribution: Mapping[str, float], aggregation: Aggregation) -> float:
    """
    Combine entity weights into one passage score.

    sum:  sum of weights of the mentions found in the distribution
    mean: that sum divided by the number of mentions (found or not)
    max:  largest weight of the whole distribution
    min:  smallest weight of the whole distribution

    max and min look at every entity of the distribution, not only the
    passage's mentions, so they give the same score to every passage of a
    query. A passage without mentions scores 0 under every aggregation.
    """
    if not mentions:
        return 0.0

    if aggregation is Aggregation.SUM:
        return sum(distribution[e] for e in mentions if e in distribution)
    if aggregation is Aggregation.MEAN:
        return aggregate(mentions, distribution, Aggregation.SUM) / len(mentions)
    if aggregation is Aggregation.MAX:
        return max(distribution.values(), default=0.0)
    if aggregation is Aggregation.MIN:
        return min(distribution.values(), default=0.0)
    raise ValueError(f"Unknown aggregation: {aggregation!r}")


def score_pseudo_document(
    doc: PseudoDocument,
    distribution: Mapping[str, float],
    aggregation: Aggregation,
    ner_index: DocumentIndex,
    id_field: str = "Id",
    entity_field: str = "Entity",
) -> dict[str, float]:
    """
    Score every passage of a pseudo-document.

    Args:
        doc: Pseudo-document of the entity.
        distribution: Entity weights for the query.
        aggregation: How a passage's entity weights are combined.
        ner_index: Index holding each passage's NER mentions.
        id_field: Passage id field in the NER index.
        entity_field: Field holding "mention:TYPE" lines.

    Returns:
        Passage id -> score, in pseudo-document order. Passages missing from
        the NER index are left out.
    """
    scores: dict[str, float] = {}
    for passage_id in doc.passage_ids:
        ner_doc = ner_index.lookup(id_field, passage_id)
        if ner_doc is None:
            warnings.warn(f"Passage {passage_id} not found in NER index; skipped.", LookupFailureWarning)
            continue
        scores[passage_id] = aggregate(extract_mentions(ner_doc, entity_field), distribution, aggregation)
    return scores


def score_by_retrieval(doc: PseudoDocument, passage_scores: Mapping[str, float]) -> dict[str, float]:
    """Score each supporting passage by its retrieval score for the query."""
    return {pid: passage_scores[pid] for pid in doc.passage_ids if pid in passage_scores}
