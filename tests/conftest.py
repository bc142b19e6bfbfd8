import pytest

from support_rerank.index import PassageIndex
from support_rerank.stats import StatsStore


@pytest.fixture
def passage_index():
    # "entity" lists the linked entity ids of each passage
    return PassageIndex(
        [
            {"id": "p1", "entity": "E1 E2", "text": "entity linking connects mentions to a knowledge base"},
            {"id": "p2", "entity": "E1", "text": "passage retrieval ranks paragraphs for a query"},
            {"id": "p3", "entity": "E2", "text": "knowledge base population from text"},
            {"id": "p4", "entity": "E3", "text": "unrelated cooking recipe"},
        ]
    )


@pytest.fixture
def ner_index():
    # "Entity" holds one "mention:TYPE" line per recognized mention
    return PassageIndex(
        [
            {"Id": "p1", "Entity": "E1:ORGANIZATION\nE2:PERSON"},
            {"Id": "p2", "Entity": "E1:ORGANIZATION\nE3:LOCATION"},
            {"Id": "p3", "Entity": "E2:PERSON"},
            {"Id": "p4", "Entity": ""},
        ]
    )


@pytest.fixture
def world(passage_index, ner_index):
    return {
        "passage_rankings": {"q1": ["p1", "p2", "p3", "p4"], "q2": ["p3", "p4"], "q3": ["p1"]},
        "entity_rankings": {"q1": ["E1", "E2", "E3"], "q2": ["E2", "E3"], "q3": ["E1"]},
        "entity_qrels": {"q1": {"E1", "E2"}, "q2": {"E3"}},
        "stats": StatsStore(
            corpus={"E1": 100, "E2": 50, "E3": 10},
            run={"q1": {"E1": 2, "E2": 2, "E3": 1}, "q2": {"E2": 1}},
            corpus_size=1000,
        ),
        "entity_pool": ["E1", "E2", "E3"],
        "passage_index": passage_index,
        "ner_index": ner_index,
    }
