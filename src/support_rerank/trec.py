"""
Readers and writers for TREC-style run and qrel files.

Run format (6 columns, whitespace separated):
    query Q0 id rank score tag

Qrel format (4 columns):
    query 0 id relevance
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable, Iterator
from pathlib import Path


def _rows(path: str | Path, min_fields: int, kind: str) -> Iterator[tuple[int, list[str]]]:
    with open(path, encoding="utf-8") as f:
        for lineno, line in enumerate(f, start=1):
            fields = line.split()
            if not fields:
                continue
            if len(fields) < min_fields:
                raise ValueError(
                    f"{path}:{lineno}: malformed {kind} line, expected {min_fields} fields: {line.rstrip()!r}"
                )
            yield lineno, fields


def _run_rows(path: str | Path) -> Iterator[tuple[str, str, int, float]]:
    for lineno, fields in _rows(path, 6, "run"):
        query_id, _q0, doc_id, rank, score = fields[:5]
        try:
            yield query_id, doc_id, int(rank), float(score)
        except ValueError:
            raise ValueError(f"{path}:{lineno}: rank/score is not numeric: {rank!r} {score!r}") from None


def read_run_scores(path: str | Path) -> dict[str, dict[str, float]]:
    """
    Load a run file keeping the retrieval scores.

    Args:
        path: Run file path.

    Returns:
        Mapping query -> {id: score}, each inner mapping ordered by rank
        (rows with equal rank keep file order). A repeated id keeps its
        first position.
    """
    rows: dict[str, list[tuple[int, str, float]]] = defaultdict(list)
    for query_id, doc_id, rank, score in _run_rows(path):
        rows[query_id].append((rank, doc_id, score))

    rankings: dict[str, dict[str, float]] = {}
    for query_id, entries in rows.items():
        ranked: dict[str, float] = {}
        for _, doc_id, score in sorted(entries, key=lambda entry: entry[0]):
            ranked.setdefault(doc_id, score)
        rankings[query_id] = ranked
    return rankings


def read_run(path: str | Path) -> dict[str, list[str]]:
    """Load a run file as query -> ordered identifier list (best first)."""
    return {query_id: list(ranked) for query_id, ranked in read_run_scores(path).items()}


def read_qrels(path: str | Path) -> dict[str, set[str]]:
    """
    Load relevance judgments.

    Only rows with a positive relevance grade populate the relevant set,
    so a query judged entirely non-relevant is absent from the result.
    """
    relevance_map: dict[str, set[str]] = defaultdict(set)
    for lineno, fields in _rows(path, 4, "qrel"):
        query_id, _iteration, doc_id, relevance = fields[:4]
        try:
            grade = float(relevance)
        except ValueError:
            raise ValueError(f"{path}:{lineno}: relevance is not numeric: {relevance!r}") from None
        if grade > 0:
            relevance_map[query_id].add(doc_id)
    return dict(relevance_map)


def format_run_line(key: str, doc_id: str, rank: int, score: float, run_tag: str) -> str:
    return f"{key} Q0 {doc_id} {rank} {score} {run_tag}"


def write_lines(lines: Iterable[str], path: str | Path) -> Path:
    """Write run lines (one per line) creating parent directories as needed."""
    output_path = Path(path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, "w", encoding="utf-8") as f:
        for line in lines:
            f.write(line + "\n")
    return output_path
