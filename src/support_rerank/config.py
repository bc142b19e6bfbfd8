"""
Run-wide constants and defaults.

Every value can be overridden through an environment variable, read once at
import time:
    RERANK_CORPUS_SIZE=29794697      # Passages in the paragraph corpus
    RERANK_TOP_K=1000                # Passages per query considered for pseudo-documents
    RERANK_NUM_WORKERS=8             # Worker threads for parallel runs
    RERANK_RUN_TAG=BlancoEntityBaselines
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum

# Number of paragraphs in the TREC-CAR paragraph corpus
CORPUS_SIZE = int(os.environ.get("RERANK_CORPUS_SIZE", "29794697"))

TOP_K = int(os.environ.get("RERANK_TOP_K", "1000"))

DEFAULT_NUM_WORKERS = int(os.environ.get("RERANK_NUM_WORKERS", "0")) or (os.cpu_count() or 1)

DEFAULT_RUN_TAG = os.environ.get("RERANK_RUN_TAG", "BlancoEntityBaselines")

BASELINE_RUN_TAG = "PassageScores"

COOCCURRENCE_RUN_TAG = "ECN"


class RankingMethod(str, Enum):
    """How the entity pool is weighted for a query."""

    FREQ = "freq"
    RARITY = "rarity"
    COMB = "comb"
    KLD = "kld"

    @classmethod
    def parse(cls, name: str) -> RankingMethod:
        try:
            return cls(name.lower())
        except ValueError:
            choices = "|".join(m.value for m in cls)
            raise ValueError(f"Wrong ranking method '{name}'. May be ({choices}).") from None


class Aggregation(str, Enum):
    """How entity weights are combined into one passage score."""

    SUM = "sum"
    MEAN = "mean"
    MAX = "max"
    MIN = "min"

    @classmethod
    def parse(cls, name: str) -> Aggregation:
        try:
            return cls(name.lower())
        except ValueError:
            choices = "|".join(a.value for a in cls)
            raise ValueError(f"Wrong entity statistic '{name}'. May be ({choices}).") from None


@dataclass
class RerankConfig:
    """
    Choices fixed for a whole run.

    Attributes:
        method: Entity ranking method used to build the distribution.
        aggregation: How a passage's entity weights are combined.
        top_k: Cutoff on the passage ranking used for pseudo-documents.
        parallel: Fan queries out over a thread pool.
        num_workers: Thread pool size (None = DEFAULT_NUM_WORKERS).
        run_tag: Tag written in the last run-file column.
        id_field: Passage id field in the passage index.
        entity_field: Field of the passage index listing linked entity ids.
        entity_delimiter: Separator between ids in entity_field.
        ner_id_field: Passage id field in the NER index.
        ner_entity_field: Field of the NER index holding "mention:TYPE" lines.
    """

    method: RankingMethod = RankingMethod.FREQ
    aggregation: Aggregation = Aggregation.SUM
    top_k: int = TOP_K
    parallel: bool = False
    num_workers: int | None = None
    run_tag: str = DEFAULT_RUN_TAG
    id_field: str = "id"
    entity_field: str = "entity"
    entity_delimiter: str = " "
    ner_id_field: str = "Id"
    ner_entity_field: str = "Entity"

    def __post_init__(self) -> None:
        self.method = RankingMethod.parse(self.method) if isinstance(self.method, str) else self.method
        self.aggregation = (
            Aggregation.parse(self.aggregation) if isinstance(self.aggregation, str) else self.aggregation
        )
        if self.top_k <= 0:
            raise ValueError("top_k must be a positive integer")
        if self.num_workers is not None and self.num_workers <= 0:
            raise ValueError("num_workers must be a positive integer")

    @property
    def workers(self) -> int:
        return self.num_workers or DEFAULT_NUM_WORKERS

    @property
    def run_file_name(self) -> str:
        return f"{self.run_tag}-{self.method.value}-{self.aggregation.value}.run"
