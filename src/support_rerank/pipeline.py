"""
Per-query support passage re-ranking.

For every query present in both the entity ranking and the entity qrels:
1. Keep the retrieved entities that are also relevant
2. Build each entity's pseudo-document from the query's top-K passages
3. Weight the entity pool with the run's ranking method (once per query)
4. Score the pseudo-document's passages and emit ranked run lines

Queries are independent. With parallel=True they are fanned out over a
ThreadPoolExecutor; every task returns its own run lines and the lists are
joined in query order once all tasks finish, so the output does not depend
on completion order.

Usage:
    from support_rerank.pipeline import SupportPassageReranker

    reranker = SupportPassageReranker(
        passage_rankings, entity_rankings, entity_qrels,
        stats, entity_pool, passage_index, ner_index, config,
    )
    lines = reranker.run()
    reranker.write_run(lines, "runs/" + config.run_file_name)
"""

from __future__ import annotations

import os
import warnings
from collections.abc import Iterable, Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

from tqdm import tqdm

from support_rerank.config import BASELINE_RUN_TAG, COOCCURRENCE_RUN_TAG, Aggregation, RerankConfig
from support_rerank.distributions import entity_distribution, rank_by_cooccurrence
from support_rerank.emitter import make_run_lines
from support_rerank.index import DocumentIndex, IndexLookupError, LookupFailureWarning
from support_rerank.pseudo_document import PseudoDocument, build_pseudo_document, linked_entities
from support_rerank.scoring import aggregate, score_by_retrieval, score_pseudo_document
from support_rerank.stats import StatsStore
from support_rerank.trec import write_lines


class ParallelismWarning(UserWarning):
    """The worker pool takes every available processor."""


def check_parallelism(num_workers: int, cpu_count: int | None = None) -> bool:
    """
    Warn when the pool leaves no processor for the index search threads.

    Returns:
        True if a warning was issued.
    """
    cpu_count = cpu_count or os.cpu_count() or 1
    if num_workers >= cpu_count:
        warnings.warn(
            f"Using all available processors ({num_workers} workers on {cpu_count} cores); "
            "index lookups compete for the same cores. Set RERANK_NUM_WORKERS or "
            "--num-workers to a smaller value.",
            ParallelismWarning,
            stacklevel=2,
        )
        return True
    return False


class SupportPassageReranker:
    """
    Entity-conditioned passage re-ranking over a set of queries.

    Args:
        passage_rankings: Query -> passage ids, best first.
        entity_rankings: Query -> entity ids, best first.
        entity_qrels: Query -> relevant entity ids.
        stats: Corpus and run mention counts.
        entity_pool: Entities the distribution is defined over.
        passage_index: Index with the linked-entity field of each passage.
        ner_index: Index with the NER mentions of each passage.
        config: Run configuration.
    """

    def __init__(
        self,
        passage_rankings: Mapping[str, Sequence[str]],
        entity_rankings: Mapping[str, Sequence[str]],
        entity_qrels: Mapping[str, Iterable[str]],
        stats: StatsStore,
        entity_pool: Sequence[str],
        passage_index: DocumentIndex,
        ner_index: DocumentIndex | None = None,
        config: RerankConfig | None = None,
    ):
        self.passage_rankings = passage_rankings
        self.entity_rankings = entity_rankings
        self.entity_qrels = {q: frozenset(entities) for q, entities in entity_qrels.items()}
        self.stats = stats
        self.entity_pool = tuple(entity_pool)
        self.passage_index = passage_index
        self.ner_index = ner_index if ner_index is not None else passage_index
        self.config = config or RerankConfig()

    # -------------------------------------------------------------------------
    # Query selection
    # -------------------------------------------------------------------------

    def is_eligible(self, query_id: str) -> bool:
        return query_id in self.entity_rankings and query_id in self.entity_qrels

    def candidate_entities(self, query_id: str) -> list[str]:
        """Retrieved entities that are also relevant, in entity-ranking order."""
        relevant = self.entity_qrels.get(query_id, frozenset())
        return [e for e in dict.fromkeys(self.entity_rankings.get(query_id, ())) if e in relevant]

    def top_k_passages(self, query_id: str) -> list[str]:
        return list(self.passage_rankings.get(query_id, ())[: self.config.top_k])

    # -------------------------------------------------------------------------
    # Scoring
    # -------------------------------------------------------------------------

    def distribution(self, query_id: str, top_k_count: int) -> dict[str, float]:
        return entity_distribution(
            self.config.method,
            self.stats.run_counts(query_id),
            self.stats.corpus,
            self.entity_pool,
            top_k_count,
            self.stats.corpus_size,
        )

    def score_passages(
        self,
        query_id: str,
        doc: PseudoDocument,
        distribution: Mapping[str, float],
    ) -> dict[str, float]:
        return score_pseudo_document(
            doc,
            distribution,
            self.config.aggregation,
            self.ner_index,
            id_field=self.config.ner_id_field,
            entity_field=self.config.ner_entity_field,
        )

    def needs_distribution(self) -> bool:
        return True

    def rerank_query(self, query_id: str) -> list[str]:
        """
        Run lines for every (query, relevant entity) pair of one query.

        An index failure while handling one entity drops that entity only;
        lines already produced for other entities are kept.
        """
        if not self.is_eligible(query_id):
            return []

        candidates = self.top_k_passages(query_id)
        distribution: dict[str, float] | None = None
        lines: list[str] = []

        for entity_id in self.candidate_entities(query_id):
            try:
                doc = build_pseudo_document(
                    entity_id,
                    candidates,
                    self.passage_index,
                    id_field=self.config.id_field,
                    entity_field=self.config.entity_field,
                    delimiter=self.config.entity_delimiter,
                )
                if doc is None:
                    continue
                if distribution is None and self.needs_distribution():
                    distribution = self.distribution(query_id, len(candidates))
                scores = self.score_passages(query_id, doc, distribution or {})
            except IndexLookupError as e:
                warnings.warn(
                    f"Index lookup failed for query {query_id}, entity {entity_id}: {e}",
                    LookupFailureWarning,
                )
                continue
            lines.extend(make_run_lines(query_id, entity_id, scores, self.config.run_tag))
        return lines

    # -------------------------------------------------------------------------
    # Whole run
    # -------------------------------------------------------------------------

    def run(self, query_ids: Iterable[str] | None = None, progress: bool = True) -> list[str]:
        """
        Re-rank all queries (entity-ranking order by default).

        Returns:
            Run lines of every query, grouped by query in input order.
        """
        queries = list(self.entity_rankings if query_ids is None else query_ids)

        if self.config.parallel:
            num_workers = self.config.workers
            print(f"Using {num_workers} worker threads for {len(queries)} queries.")
            check_parallelism(num_workers)
            with ThreadPoolExecutor(max_workers=num_workers) as executor:
                per_query = list(executor.map(self.rerank_query, queries))
        else:
            per_query = [
                self.rerank_query(q)
                for q in tqdm(queries, desc="Progress", unit="query", disable=not progress)
            ]

        return [line for lines in per_query for line in lines]

    @staticmethod
    def write_run(lines: Iterable[str], path: str | Path) -> Path:
        return write_lines(lines, path)


class RetrievalScoreReranker(SupportPassageReranker):
    """
    Baseline: a supporting passage keeps its retrieval score for the query.

    Args:
        passage_run: Query -> {passage id: retrieval score}, best first.
        entity_rankings: Query -> entity ids, best first.
        entity_qrels: Query -> relevant entity ids.
        passage_index: Index with the linked-entity field of each passage.
        config: Run configuration; run_tag defaults to "PassageScores".
    """

    def __init__(
        self,
        passage_run: Mapping[str, Mapping[str, float]],
        entity_rankings: Mapping[str, Sequence[str]],
        entity_qrels: Mapping[str, Iterable[str]],
        passage_index: DocumentIndex,
        config: RerankConfig | None = None,
    ):
        super().__init__(
            {q: list(scores) for q, scores in passage_run.items()},
            entity_rankings,
            entity_qrels,
            StatsStore(),
            (),
            passage_index,
            config=config or RerankConfig(run_tag=BASELINE_RUN_TAG),
        )
        self.passage_run = passage_run

    @property
    def run_file_name(self) -> str:
        return f"{self.config.run_tag}.run"

    def needs_distribution(self) -> bool:
        return False

    def score_passages(
        self,
        query_id: str,
        doc: PseudoDocument,
        distribution: Mapping[str, float],
    ) -> dict[str, float]:
        return score_by_retrieval(doc, self.passage_run.get(query_id, {}))


class CooccurrenceReranker(SupportPassageReranker):
    """
    Entity context variant: the weights come from the pseudo-document itself.

    For a (query, entity) pair, the relevant entities linked in the
    pseudo-document's passages are counted and normalized
    (rank_by_cooccurrence). A passage scores the sum of the weights of the
    entities it links. No corpus or run stats are needed.

    Args:
        passage_rankings: Query -> passage ids, best first.
        entity_rankings: Query -> entity ids, best first.
        entity_qrels: Query -> relevant entity ids.
        passage_index: Index with the linked-entity field of each passage.
        config: Run configuration; run_tag defaults to "ECN".
    """

    def __init__(
        self,
        passage_rankings: Mapping[str, Sequence[str]],
        entity_rankings: Mapping[str, Sequence[str]],
        entity_qrels: Mapping[str, Iterable[str]],
        passage_index: DocumentIndex,
        config: RerankConfig | None = None,
    ):
        super().__init__(
            passage_rankings,
            entity_rankings,
            entity_qrels,
            StatsStore(),
            (),
            passage_index,
            config=config or RerankConfig(run_tag=COOCCURRENCE_RUN_TAG),
        )

    @property
    def run_file_name(self) -> str:
        return f"{self.config.run_tag}.run"

    def needs_distribution(self) -> bool:
        return False

    def score_passages(
        self,
        query_id: str,
        doc: PseudoDocument,
        distribution: Mapping[str, float],
    ) -> dict[str, float]:
        field, delimiter = self.config.entity_field, self.config.entity_delimiter
        context = rank_by_cooccurrence(
            doc.entity_list(field, delimiter), frozenset(self.candidate_entities(query_id))
        )
        return {
            passage_id: aggregate(linked_entities(passage, field, delimiter), context, Aggregation.SUM)
            for passage_id, passage in doc.passages
        }
