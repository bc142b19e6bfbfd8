"""
Document index contract and an in-memory implementation.

The re-ranking pipeline only needs two operations from a text index:
1. Exact lookup - the stored document whose field equals a value (at most one)
2. Free-text search - top-N scored documents for a query string

Any backend (a Lucene index behind Pyserini, a database, ...) can be plugged in
by implementing DocumentIndex. PassageIndex keeps everything in memory and is
loaded from JSON Lines, one object of string fields per passage.

The entity linking service is consumed the same way, through EntityLinker;
FailSafeLinker keeps a failing service from aborting a run.

Usage:
    from support_rerank.index import PassageIndex

    index = PassageIndex.from_jsonl("paragraphs.jsonl", text_field="text")
    doc = index.lookup("id", "p1")
    hits = index.search("information retrieval", top_n=10)
"""

from __future__ import annotations

import json
import re
import threading
import warnings
from collections import Counter
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from functools import cached_property
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

import numpy as np
from scipy.sparse import csr_matrix, lil_matrix

if TYPE_CHECKING:
    from numpy.typing import NDArray

Document = Mapping[str, str]


class IndexLookupError(LookupError):
    """The index backend failed while serving a lookup or search."""


class LookupFailureWarning(UserWarning):
    """An expected document could not be retrieved; the item is skipped."""


class DocumentIndex(Protocol):
    """Protocol defining the index operations used by the pipeline."""

    def lookup(self, field: str, value: str) -> Document | None: ...

    def search(self, query: str, top_n: int) -> list[tuple[Document, float]]: ...


# =============================================================================
# Entity linking service
# =============================================================================


@dataclass(frozen=True)
class Annotation:
    """An entity linked to a span of text."""

    entity: str
    span: str
    confidence: float


class EntityLinker(Protocol):
    """Protocol defining the entity linking and relatedness operations."""

    def annotate(self, text: str) -> list[Annotation]: ...

    def relatedness(self, entity_ids: Sequence[str]) -> dict[tuple[str, str], float]: ...


class FailSafeLinker:
    """
    EntityLinker wrapper that turns service failures into empty results.

    Network errors (OSError) and unparsable responses (ValueError) are
    reported with LookupFailureWarning; any other exception propagates.
    """

    def __init__(self, linker: EntityLinker):
        self.linker = linker

    def annotate(self, text: str) -> list[Annotation]:
        try:
            return self.linker.annotate(text)
        except (OSError, ValueError) as e:
            warnings.warn(f"Entity linking failed, no annotations used: {e}", LookupFailureWarning, stacklevel=2)
            return []

    def relatedness(self, entity_ids: Sequence[str]) -> dict[tuple[str, str], float]:
        try:
            return self.linker.relatedness(entity_ids)
        except (OSError, ValueError) as e:
            warnings.warn(f"Relatedness lookup failed, no scores used: {e}", LookupFailureWarning, stacklevel=2)
            return {}


# =============================================================================
# BM25 over one text field
# =============================================================================


def tokenize(text: str) -> list[str]:
    """Tokenizes the input text into a list of lowercase terms."""
    return re.findall(r"\w+", text.lower())


class TextStatistics:
    """
    Sparse term statistics for BM25 search.

    Args:
        documents: Tokenized documents, aligned with the index's document list.
        k1: TF saturation parameter (Lucene default).
        b: Length normalization parameter (Lucene default).
    """

    def __init__(self, documents: list[list[str]], k1: float = 0.9, b: float = 0.4):
        self.N = len(documents)
        self.k1 = k1
        self.b = b

        self._vocab: dict[str, int] = {}
        for doc in documents:
            for term in doc:
                if term not in self._vocab:
                    self._vocab[term] = len(self._vocab)

        tf_matrix_lil = lil_matrix((len(self._vocab), self.N), dtype=np.float64)
        df = np.zeros(len(self._vocab), dtype=np.float64)
        for doc_idx, doc in enumerate(documents):
            for term, count in Counter(doc).items():
                tid = self._vocab[term]
                tf_matrix_lil[tid, doc_idx] = count
                df[tid] += 1
        self.tf_matrix = csr_matrix(tf_matrix_lil)

        # Lucene IDF: log(1 + (N - df + 0.5) / (df + 0.5))
        self.idf_array = np.log(1.0 + (self.N - df + 0.5) / (df + 0.5))

        doc_lengths = np.array([len(d) for d in documents], dtype=np.float64)
        avgdl = float(np.mean(doc_lengths)) if self.N > 0 else 1.0
        self.norm_array = 1.0 - b + b * (doc_lengths / max(avgdl, 1e-9))

    def get_term_id(self, term: str) -> int | None:
        return self._vocab.get(term)

    def score(self, query: list[str]) -> NDArray[np.float64]:
        """
        Score every document for a tokenized query.

        Extracts all query TF rows at once and computes scores in a single
        vectorized operation (no loop over query terms).
        """
        scores = np.zeros(self.N, dtype=np.float64)
        term_ids = [tid for tid in (self.get_term_id(t) for t in set(query)) if tid is not None]
        if not term_ids or self.N == 0:
            return scores

        # (num_terms, N_docs)
        tf_rows = self.tf_matrix[term_ids, :].toarray()
        idf_values = self.idf_array[term_ids][:, np.newaxis]
        saturated = tf_rows / (tf_rows + self.k1 * self.norm_array + 1e-9)
        return np.sum(idf_values * saturated, axis=0)


def select_top_k(scores: NDArray[np.float64], top_k: int) -> NDArray[np.int64]:
    """
    Indices of the top-k scores in descending order.

    Uses np.argpartition for O(n) selection when k << n,
    falling back to a full sort when k is large.
    """
    n = len(scores)
    if top_k < n:
        top_k_indices = np.argpartition(-scores, top_k)[:top_k]
        return top_k_indices[np.argsort(-scores[top_k_indices], kind="stable")].astype(np.int64)
    return np.argsort(-scores, kind="stable").astype(np.int64)


# =============================================================================
# In-memory passage index
# =============================================================================


class PassageIndex:
    """
    Passages held in memory with exact-field lookup and BM25 search.

    Args:
        documents: Stored documents, each a mapping of field name to string value.
        text_field: Field searched by search().
    """

    def __init__(self, documents: Iterable[Document], text_field: str = "text"):
        self.documents: list[Document] = list(documents)
        self.text_field = text_field
        self._lookup_tables: dict[str, dict[str, int]] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self.documents)

    @classmethod
    def from_jsonl(cls, path: str | Path, text_field: str = "text") -> PassageIndex:
        documents = []
        with open(path, encoding="utf-8") as f:
            for lineno, line in enumerate(f, start=1):
                if not line.strip():
                    continue
                try:
                    record = json.loads(line)
                except json.JSONDecodeError as e:
                    raise ValueError(f"{path}:{lineno}: invalid JSON: {e}") from None
                if not isinstance(record, dict):
                    raise ValueError(f"{path}:{lineno}: expected a JSON object")
                documents.append({str(k): "" if v is None else str(v) for k, v in record.items()})
        return cls(documents, text_field=text_field)

    def _table(self, field: str) -> dict[str, int]:
        table = self._lookup_tables.get(field)
        if table is None:
            with self._lock:
                table = self._lookup_tables.get(field)
                if table is None:
                    table = {}
                    for idx, doc in enumerate(self.documents):
                        if field in doc:
                            table.setdefault(doc[field], idx)
                    self._lookup_tables[field] = table
        return table

    def lookup(self, field: str, value: str) -> Document | None:
        """Return the first stored document whose field equals value, or None."""
        idx = self._table(field).get(value)
        return None if idx is None else self.documents[idx]

    @cached_property
    def text_statistics(self) -> TextStatistics:
        return TextStatistics([tokenize(doc.get(self.text_field, "")) for doc in self.documents])

    def search(self, query: str, top_n: int) -> list[tuple[Document, float]]:
        """
        BM25 free-text search over the text field.

        Returns:
            Up to top_n (document, score) pairs, best first. Documents sharing
            no term with the query are not returned.
        """
        if top_n <= 0:
            return []
        scores = self.text_statistics.score(tokenize(query))
        hits = []
        for idx in select_top_k(scores, top_n):
            if scores[idx] <= 0:
                break
            hits.append((self.documents[idx], float(scores[idx])))
        return hits
