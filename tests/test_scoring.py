import math

import pytest

from support_rerank.config import Aggregation
from support_rerank.index import LookupFailureWarning, PassageIndex
from support_rerank.pseudo_document import (
    PseudoDocument,
    build_pseudo_document,
    clean_mentions,
    extract_mentions,
    linked_entities,
)
from support_rerank.scoring import aggregate, score_by_retrieval, score_pseudo_document


@pytest.mark.parametrize(
    "text, expected",
    [
        ("Barack Obama\nU.S.\nParis", ["Barack Obama", "US", "Paris"]),
        ("(Paris)\n\"Le Monde\"", ["Paris", "Le Monde"]),
        ("Alpha\nB\nGamma", ["AlphaGamma"]),
        ("Jean-Luc Picard", ["JeanLuc Picard"]),
        ("", []),
        (".\n,", []),
    ],
)
def test_clean_mentions(text, expected):
    assert clean_mentions(text) == expected


def test_extract_mentions_drops_types():
    doc = {"Entity": "Barack Obama:PERSON\nParis:LOCATION\n\nParis:LOCATION"}
    assert extract_mentions(doc) == ["Barack Obama", "Paris", "Paris"]


def test_extract_mentions_of_missing_field():
    assert extract_mentions({"Id": "p1"}) == []


def test_build_pseudo_document(passage_index):
    doc = build_pseudo_document("E2", ["p1", "p2", "p3", "p4", "missing"], passage_index)

    assert doc.entity == "E2"
    assert doc.passage_ids == ["p1", "p3"]
    assert len(doc) == 2


def test_build_pseudo_document_stays_within_candidates(passage_index):
    doc = build_pseudo_document("E1", ["p2", "p3"], passage_index)
    assert doc.passage_ids == ["p2"]


def test_build_pseudo_document_not_found(passage_index):
    assert build_pseudo_document("E9", ["p1", "p2"], passage_index) is None
    assert build_pseudo_document("E1", [], passage_index) is None


def test_build_pseudo_document_is_exact_match(passage_index):
    # "E" is a prefix of every id but not an id itself
    assert build_pseudo_document("E", ["p1", "p2", "p3"], passage_index) is None


def test_linked_entities():
    assert linked_entities({"entity": "E1  E2"}) == ["E1", "E2"]
    assert linked_entities({"links": "E1;E3"}, entity_field="links", delimiter=";") == ["E1", "E3"]
    assert linked_entities({"id": "p9"}) == []


def test_entity_list_keeps_duplicates(passage_index):
    doc = build_pseudo_document("E1", ["p1", "p2", "p3"], passage_index)
    assert doc.entity_list() == ["E1", "E2", "E1"]


DISTRIBUTION = {"A": 1.0, "B": 2.0, "C": 5.0}


@pytest.mark.parametrize(
    "aggregation, expected",
    [
        (Aggregation.SUM, 3.0),
        (Aggregation.MEAN, 1.0),
        (Aggregation.MAX, 5.0),
        (Aggregation.MIN, 1.0),
    ],
)
def test_aggregate(aggregation, expected):
    assert aggregate(["A", "B", "X"], DISTRIBUTION, aggregation) == expected


@pytest.mark.parametrize("aggregation", list(Aggregation))
def test_aggregate_without_mentions_is_zero(aggregation):
    assert aggregate([], DISTRIBUTION, aggregation) == 0.0


def test_max_and_min_ignore_passage_mentions():
    for mentions in (["A"], ["C"], ["X", "Y"]):
        assert aggregate(mentions, DISTRIBUTION, Aggregation.MAX) == 5.0
        assert aggregate(mentions, DISTRIBUTION, Aggregation.MIN) == 1.0


def test_sum_propagates_negative_infinity():
    score = aggregate(["A", "Z"], {"A": -1.0, "Z": -math.inf}, Aggregation.SUM)
    assert score == -math.inf


def test_score_pseudo_document(ner_index):
    doc = PseudoDocument("E1", [("p1", {}), ("p2", {}), ("p4", {})])
    scores = score_pseudo_document(doc, {"E1": 10.0, "E2": 20.0, "E3": 100.0}, Aggregation.SUM, ner_index)

    assert scores == {"p1": 30.0, "p2": 110.0, "p4": 0.0}


def test_score_pseudo_document_skips_missing_passages(ner_index):
    doc = PseudoDocument("E1", [("p1", {}), ("p9", {})])
    with pytest.warns(LookupFailureWarning, match="p9"):
        scores = score_pseudo_document(doc, {"E1": 1.0}, Aggregation.SUM, ner_index)
    assert scores == {"p1": 1.0}


def test_score_pseudo_document_custom_fields():
    index = PassageIndex([{"pid": "p1", "ner": "E1:ORG"}])
    doc = PseudoDocument("E1", [("p1", {})])
    scores = score_pseudo_document(
        doc, {"E1": 2.5}, Aggregation.MEAN, index, id_field="pid", entity_field="ner"
    )
    assert scores == {"p1": 2.5}


def test_score_by_retrieval():
    doc = PseudoDocument("E1", [("p1", {}), ("p2", {}), ("p3", {})])
    assert score_by_retrieval(doc, {"p1": 12.5, "p3": 9.25, "p4": 1.0}) == {"p1": 12.5, "p3": 9.25}
