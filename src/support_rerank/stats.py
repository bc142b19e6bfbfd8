"""
Entity statistics shared by every query of a run.

Two count tables are used by the entity ranking methods:
- corpus stats: entity -> number of passages in the whole corpus mentioning it
- run stats:    query -> (entity -> number of the query's top-K passages mentioning it)

Both are persisted as JSON and loaded once; StatsStore exposes them read-only
so they can be shared across worker threads without locking.
"""

from __future__ import annotations

import json
from collections import Counter
from collections.abc import Iterable, Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType

from tqdm import tqdm

from support_rerank.config import CORPUS_SIZE, DEFAULT_NUM_WORKERS, TOP_K
from support_rerank.index import DocumentIndex
from support_rerank.pseudo_document import extract_mentions

_EMPTY: Mapping[str, int] = MappingProxyType({})


@dataclass(frozen=True)
class StatsStore:
    """
    Read-only corpus and run statistics.

    Attributes:
        corpus: Entity -> passages in the corpus mentioning it.
        run: Query -> (entity -> top-K passages mentioning it).
        corpus_size: Number of passages in the corpus.
    """

    corpus: Mapping[str, int] = field(default_factory=dict)
    run: Mapping[str, Mapping[str, int]] = field(default_factory=dict)
    corpus_size: int = CORPUS_SIZE

    def __post_init__(self) -> None:
        object.__setattr__(self, "corpus", MappingProxyType(dict(self.corpus)))
        object.__setattr__(
            self,
            "run",
            MappingProxyType({q: MappingProxyType(dict(counts)) for q, counts in self.run.items()}),
        )
        if self.corpus_size <= 0:
            raise ValueError("corpus_size must be a positive integer")

    @classmethod
    def load(
        cls,
        corpus_stats_path: str | Path,
        run_stats_path: str | Path,
        corpus_size: int = CORPUS_SIZE,
    ) -> StatsStore:
        return cls(
            corpus=load_corpus_stats(corpus_stats_path),
            run=load_run_stats(run_stats_path),
            corpus_size=corpus_size,
        )

    def corpus_count(self, entity_id: str) -> int:
        return self.corpus.get(entity_id, 0)

    def run_counts(self, query_id: str) -> Mapping[str, int]:
        """Counts for a query; an unknown query has no counts at all."""
        return self.run.get(query_id, _EMPTY)


# =============================================================================
# Persistence
# =============================================================================


def _check_counts(counts: object, where: str) -> dict[str, int]:
    if not isinstance(counts, dict):
        raise ValueError(f"{where}: expected a JSON object of entity counts")
    for entity_id, count in counts.items():
        if isinstance(count, bool) or not isinstance(count, int) or count < 0:
            raise ValueError(f"{where}: count for {entity_id!r} is not a non-negative integer: {count!r}")
    return counts


def save_corpus_stats(stats: Mapping[str, int], path: str | Path) -> Path:
    output_path = Path(path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, "w", encoding="utf-8") as f:
        json.dump(dict(stats), f, ensure_ascii=False)
    return output_path


def load_corpus_stats(path: str | Path) -> dict[str, int]:
    with open(path, encoding="utf-8") as f:
        return _check_counts(json.load(f), str(path))


def save_run_stats(stats: Mapping[str, Mapping[str, int]], path: str | Path) -> Path:
    output_path = Path(path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, "w", encoding="utf-8") as f:
        json.dump({q: dict(counts) for q, counts in stats.items()}, f, ensure_ascii=False)
    return output_path


def load_run_stats(path: str | Path) -> dict[str, dict[str, int]]:
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a JSON object keyed by query")
    return {query_id: _check_counts(counts, f"{path} [{query_id}]") for query_id, counts in data.items()}


def read_entity_pool(path: str | Path) -> list[str]:
    """Entity ids, one per line; blank lines dropped, first occurrence kept."""
    with open(path, encoding="utf-8") as f:
        return list(dict.fromkeys(line.strip() for line in f if line.strip()))


def write_entity_pool(entity_pool: Iterable[str], path: str | Path) -> Path:
    output_path = Path(path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, "w", encoding="utf-8") as f:
        for entity_id in entity_pool:
            f.write(entity_id + "\n")
    return output_path


# =============================================================================
# Building statistics from an index
# =============================================================================


def _passage_mentions(passage_id: str, index: DocumentIndex, id_field: str, entity_field: str) -> list[str]:
    doc = index.lookup(id_field, passage_id)
    return [] if doc is None else list(dict.fromkeys(extract_mentions(doc, entity_field)))


def count_mentions(
    passage_ids: Iterable[str],
    index: DocumentIndex,
    entity_pool: Iterable[str],
    id_field: str = "Id",
    entity_field: str = "Entity",
) -> dict[str, int]:
    """
    Count, for every pool entity, the passages mentioning it.

    Each passage counts at most once per entity. Passages missing from the
    index are skipped. Entities never mentioned are absent from the result.
    """
    pool = set(entity_pool)
    counts: Counter[str] = Counter()
    for passage_id in passage_ids:
        mentions = _passage_mentions(passage_id, index, id_field, entity_field)
        counts.update(m for m in mentions if m in pool)
    return dict(counts)


def count_corpus_stats(
    passage_ids: Iterable[str],
    index: DocumentIndex,
    entity_pool: Iterable[str],
    id_field: str = "Id",
    entity_field: str = "Entity",
    progress: bool = True,
) -> dict[str, int]:
    """Corpus stats over every passage id yielded (typically the whole corpus)."""
    passage_iter = tqdm(passage_ids, desc="Counting corpus mentions", unit="psg", disable=not progress)
    return count_mentions(passage_iter, index, entity_pool, id_field, entity_field)


def count_run_stats(
    passage_rankings: Mapping[str, Sequence[str]],
    index: DocumentIndex,
    entity_pool: Iterable[str],
    top_k: int = TOP_K,
    id_field: str = "Id",
    entity_field: str = "Entity",
    parallel: bool = False,
    num_workers: int = DEFAULT_NUM_WORKERS,
) -> dict[str, dict[str, int]]:
    """
    Run stats: per query, mention counts over its top-K ranked passages.

    With parallel=True queries are counted on a thread pool; each task
    returns its own table and the tables are merged in query order.
    """
    pool = frozenset(entity_pool)
    query_ids = list(passage_rankings)

    def count_query(query_id: str) -> dict[str, int]:
        top_k_passages = passage_rankings[query_id][:top_k]
        return count_mentions(top_k_passages, index, pool, id_field, entity_field)

    if parallel:
        with ThreadPoolExecutor(max_workers=num_workers) as executor:
            tables = list(executor.map(count_query, query_ids))
    else:
        tables = [count_query(q) for q in tqdm(query_ids, desc="Counting run mentions", unit="query")]
    return dict(zip(query_ids, tables))


def build_entity_pool(
    passage_rankings: Mapping[str, Sequence[str]],
    index: DocumentIndex,
    top_k: int = TOP_K,
    id_field: str = "Id",
    entity_field: str = "Entity",
) -> list[str]:
    """All cleaned mentions in the top-K passages of every query, first occurrence order."""
    pool: dict[str, None] = {}
    for passage_ids in passage_rankings.values():
        for passage_id in passage_ids[:top_k]:
            doc = index.lookup(id_field, passage_id)
            if doc is not None:
                pool.update(dict.fromkeys(extract_mentions(doc, entity_field)))
    return list(pool)
