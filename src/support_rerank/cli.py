"""
Command line entry point.

Run with:
    support-rerank rerank \\
        --passage-run data/passages.run --entity-run data/entities.run \\
        --entity-qrels data/entities.qrels --corpus-stats data/corpus_stats.json \\
        --run-stats data/run_stats.json --entity-pool data/entity_pool.txt \\
        --passage-index data/paragraphs.jsonl --ner-index data/ner.jsonl \\
        --method kld --aggregation sum --output-dir runs
"""

from __future__ import annotations

import argparse
import json
import sys
from collections.abc import Callable
from pathlib import Path
from typing import TypeVar

from support_rerank.config import (
    BASELINE_RUN_TAG,
    COOCCURRENCE_RUN_TAG,
    CORPUS_SIZE,
    DEFAULT_NUM_WORKERS,
    DEFAULT_RUN_TAG,
    TOP_K,
    Aggregation,
    RankingMethod,
    RerankConfig,
)
from support_rerank.index import PassageIndex
from support_rerank.metrics import evaluate_run
from support_rerank.pipeline import (
    CooccurrenceReranker,
    RetrievalScoreReranker,
    SupportPassageReranker,
    check_parallelism,
)
from support_rerank.stats import (
    StatsStore,
    build_entity_pool,
    count_corpus_stats,
    count_run_stats,
    read_entity_pool,
    save_corpus_stats,
    save_run_stats,
    write_entity_pool,
)
from support_rerank.trec import read_qrels, read_run, read_run_scores

T = TypeVar("T")


def _step(message: str, load: Callable[[], T]) -> T:
    print(f"{message}...", end="", flush=True)
    result = load()
    print("[Done].")
    return result


def _rerank(args: argparse.Namespace) -> None:
    config = RerankConfig(
        method=RankingMethod.parse(args.method),
        aggregation=Aggregation.parse(args.aggregation),
        top_k=args.top_k,
        parallel=args.parallel,
        num_workers=args.num_workers,
        run_tag=args.run_tag,
    )
    print(f"Entity Statistic: {config.aggregation.value}")
    print(f"Ranking Method: {config.method.value}")

    entity_rankings = _step("Reading entity rankings", lambda: read_run(args.entity_run))
    passage_rankings = _step("Reading passage rankings", lambda: read_run(args.passage_run))
    entity_qrels = _step("Reading entity ground truth", lambda: read_qrels(args.entity_qrels))
    stats = _step(
        "Reading corpus and run stat files",
        lambda: StatsStore.load(args.corpus_stats, args.run_stats, corpus_size=args.corpus_size),
    )
    passage_index = _step("Setting up index for use", lambda: PassageIndex.from_jsonl(args.passage_index))
    ner_index = _step("Setting up NER index for use", lambda: PassageIndex.from_jsonl(args.ner_index))
    entity_pool = _step("Reading entity pool file", lambda: read_entity_pool(args.entity_pool))
    print(f"Number of entities read = {len(entity_pool)}")
    if not entity_pool:
        raise ValueError(f"Entity pool {args.entity_pool} is empty.")

    reranker = SupportPassageReranker(
        passage_rankings,
        entity_rankings,
        entity_qrels,
        stats,
        entity_pool,
        passage_index,
        ner_index,
        config,
    )
    lines = reranker.run()
    output_path = _step(
        "Writing to run file",
        lambda: reranker.write_run(lines, Path(args.output_dir) / config.run_file_name),
    )
    print(f"Run file written at: {output_path}")


def _passage_scores(args: argparse.Namespace) -> None:
    config = RerankConfig(
        top_k=args.top_k,
        parallel=args.parallel,
        num_workers=args.num_workers,
        run_tag=BASELINE_RUN_TAG,
    )
    entity_rankings = _step("Reading entity rankings", lambda: read_run(args.entity_run))
    passage_run = _step("Reading passage rankings", lambda: read_run_scores(args.passage_run))
    entity_qrels = _step("Reading entity ground truth", lambda: read_qrels(args.entity_qrels))
    passage_index = _step("Setting up index for use", lambda: PassageIndex.from_jsonl(args.passage_index))

    reranker = RetrievalScoreReranker(passage_run, entity_rankings, entity_qrels, passage_index, config)
    lines = reranker.run()
    output_path = _step(
        "Writing to run file",
        lambda: reranker.write_run(lines, Path(args.output_dir) / reranker.run_file_name),
    )
    print(f"Run file written at: {output_path}")


def _cooccurrence(args: argparse.Namespace) -> None:
    config = RerankConfig(
        top_k=args.top_k,
        parallel=args.parallel,
        num_workers=args.num_workers,
        run_tag=COOCCURRENCE_RUN_TAG,
    )
    entity_rankings = _step("Reading entity rankings", lambda: read_run(args.entity_run))
    passage_rankings = _step("Reading passage rankings", lambda: read_run(args.passage_run))
    entity_qrels = _step("Reading entity ground truth", lambda: read_qrels(args.entity_qrels))
    passage_index = _step("Setting up index for use", lambda: PassageIndex.from_jsonl(args.passage_index))

    reranker = CooccurrenceReranker(passage_rankings, entity_rankings, entity_qrels, passage_index, config)
    lines = reranker.run()
    output_path = _step(
        "Writing to run file",
        lambda: reranker.write_run(lines, Path(args.output_dir) / reranker.run_file_name),
    )
    print(f"Run file written at: {output_path}")


def _stats(args: argparse.Namespace) -> None:
    ner_index = _step("Setting up NER index for use", lambda: PassageIndex.from_jsonl(args.ner_index))
    entity_pool = _step("Reading entity pool file", lambda: read_entity_pool(args.entity_pool))

    if args.scope == "corpus":
        passage_ids = (doc[args.id_field] for doc in ner_index.documents if args.id_field in doc)
        stats = count_corpus_stats(passage_ids, ner_index, entity_pool, id_field=args.id_field)
        output_path = _step("Writing to file", lambda: save_corpus_stats(stats, args.output))
    else:
        if not args.passage_run:
            raise ValueError("--passage-run is required for run stats.")
        passage_rankings = _step("Reading passage rankings", lambda: read_run(args.passage_run))
        num_workers = args.num_workers or DEFAULT_NUM_WORKERS
        if args.parallel:
            print(f"Using {num_workers} worker threads for {len(passage_rankings)} queries.")
            check_parallelism(num_workers)
        run_stats = count_run_stats(
            passage_rankings,
            ner_index,
            entity_pool,
            top_k=args.top_k,
            id_field=args.id_field,
            parallel=args.parallel,
            num_workers=num_workers,
        )
        output_path = _step("Writing to file", lambda: save_run_stats(run_stats, args.output))
    print(f"File written at: {output_path}")


def _pool(args: argparse.Namespace) -> None:
    passage_rankings = _step("Reading passage rankings", lambda: read_run(args.passage_run))
    ner_index = _step("Setting up NER index for use", lambda: PassageIndex.from_jsonl(args.ner_index))
    entity_pool = _step(
        "Making entity pool",
        lambda: build_entity_pool(passage_rankings, ner_index, top_k=args.top_k, id_field=args.id_field),
    )
    output_path = write_entity_pool(entity_pool, args.output)
    print(f"{len(entity_pool)} entities written at: {output_path}")


def _evaluate(args: argparse.Namespace) -> None:
    run = read_run(args.run_file)
    qrels = read_qrels(args.qrels_file)
    print(json.dumps(evaluate_run(run, qrels, k=args.k), indent=2))


def _add_parallel_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--parallel", action="store_true", help="Process queries on a thread pool.")
    parser.add_argument(
        "--num-workers",
        type=int,
        default=None,
        help=f"Worker threads for --parallel (default: {DEFAULT_NUM_WORKERS}).",
    )
    parser.add_argument("--top-k", type=int, default=TOP_K, help=f"Passages per query (default: {TOP_K}).")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="support-rerank",
        description="Entity-conditioned support passage re-ranking.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    rerank = subparsers.add_parser("rerank", help="Re-rank support passages with entity statistics.")
    rerank.add_argument("--passage-run", required=True, help="Passage ranking (TREC run).")
    rerank.add_argument("--entity-run", required=True, help="Entity ranking (TREC run).")
    rerank.add_argument("--entity-qrels", required=True, help="Entity ground truth (TREC qrels).")
    rerank.add_argument("--corpus-stats", required=True, help="Corpus stats JSON.")
    rerank.add_argument("--run-stats", required=True, help="Run stats JSON.")
    rerank.add_argument("--entity-pool", required=True, help="Entity pool, one id per line.")
    rerank.add_argument("--passage-index", required=True, help="Passage index (JSON Lines).")
    rerank.add_argument("--ner-index", required=True, help="NER index (JSON Lines).")
    rerank.add_argument("--output-dir", default=".", help="Directory for the run file.")
    rerank.add_argument(
        "--method",
        required=True,
        choices=[m.value for m in RankingMethod],
        type=str.lower,
        help="Entity ranking method.",
    )
    rerank.add_argument(
        "--aggregation",
        required=True,
        choices=[a.value for a in Aggregation],
        type=str.lower,
        help="Entity statistic used to score a passage.",
    )
    rerank.add_argument("--corpus-size", type=int, default=CORPUS_SIZE, help="Passages in the corpus.")
    rerank.add_argument("--run-tag", default=DEFAULT_RUN_TAG, help="Run tag (last column).")
    _add_parallel_args(rerank)
    rerank.set_defaults(func=_rerank)

    baseline = subparsers.add_parser("passage-scores", help="Baseline: score passages by retrieval score.")
    baseline.add_argument("--passage-run", required=True, help="Passage ranking (TREC run).")
    baseline.add_argument("--entity-run", required=True, help="Entity ranking (TREC run).")
    baseline.add_argument("--entity-qrels", required=True, help="Entity ground truth (TREC qrels).")
    baseline.add_argument("--passage-index", required=True, help="Passage index (JSON Lines).")
    baseline.add_argument("--output-dir", default=".", help="Directory for the run file.")
    _add_parallel_args(baseline)
    baseline.set_defaults(func=_passage_scores)

    cooccurrence = subparsers.add_parser(
        "cooccurrence", help="Score passages by relevant entities co-occurring in the pseudo-document."
    )
    cooccurrence.add_argument("--passage-run", required=True, help="Passage ranking (TREC run).")
    cooccurrence.add_argument("--entity-run", required=True, help="Entity ranking (TREC run).")
    cooccurrence.add_argument("--entity-qrels", required=True, help="Entity ground truth (TREC qrels).")
    cooccurrence.add_argument("--passage-index", required=True, help="Passage index (JSON Lines).")
    cooccurrence.add_argument("--output-dir", default=".", help="Directory for the run file.")
    _add_parallel_args(cooccurrence)
    cooccurrence.set_defaults(func=_cooccurrence)

    stats = subparsers.add_parser("stats", help="Count entity mentions for the corpus or a run.")
    stats.add_argument("scope", choices=["corpus", "run"])
    stats.add_argument("--ner-index", required=True, help="NER index (JSON Lines).")
    stats.add_argument("--entity-pool", required=True, help="Entity pool, one id per line.")
    stats.add_argument("--output", required=True, help="Output JSON file.")
    stats.add_argument("--passage-run", help="Passage ranking (required for run stats).")
    stats.add_argument("--id-field", default="Id", help="Passage id field of the NER index.")
    _add_parallel_args(stats)
    stats.set_defaults(func=_stats)

    pool = subparsers.add_parser("pool", help="Collect the entity pool from a passage ranking.")
    pool.add_argument("--passage-run", required=True, help="Passage ranking (TREC run).")
    pool.add_argument("--ner-index", required=True, help="NER index (JSON Lines).")
    pool.add_argument("--output", required=True, help="Output pool file.")
    pool.add_argument("--id-field", default="Id", help="Passage id field of the NER index.")
    pool.add_argument("--top-k", type=int, default=TOP_K, help=f"Passages per query (default: {TOP_K}).")
    pool.set_defaults(func=_pool)

    evaluate = subparsers.add_parser("evaluate", help="Evaluate a support passage run.")
    evaluate.add_argument("run_file", help="Support passage run (keys query+entity).")
    evaluate.add_argument("qrels_file", help="Support passage qrels (keys query+entity).")
    evaluate.add_argument("--k", type=int, default=10, help="Cutoff for @k metrics (default: 10).")
    evaluate.set_defaults(func=_evaluate)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        args.func(args)
    except (OSError, ValueError) as e:
        print(f"\nError: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
