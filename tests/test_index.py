import json
from concurrent.futures import ThreadPoolExecutor

import numpy as np
import pytest

from support_rerank.index import (
    Annotation,
    FailSafeLinker,
    LookupFailureWarning,
    PassageIndex,
    TextStatistics,
    select_top_k,
    tokenize,
)


def test_tokenize():
    assert tokenize("Knowledge-Base, population!") == ["knowledge", "base", "population"]


def test_lookup(passage_index):
    assert passage_index.lookup("id", "p2")["entity"] == "E1"
    assert passage_index.lookup("id", "p9") is None
    assert passage_index.lookup("missing_field", "p1") is None


def test_lookup_first_document_wins():
    index = PassageIndex([{"id": "p1", "text": "first"}, {"id": "p1", "text": "second"}])
    assert index.lookup("id", "p1")["text"] == "first"


def test_lookup_from_many_threads(passage_index):
    ids = ["p1", "p2", "p3", "p4"] * 25
    with ThreadPoolExecutor(max_workers=8) as executor:
        docs = list(executor.map(lambda pid: passage_index.lookup("id", pid), ids))
    assert [doc["id"] for doc in docs] == ids


def test_search_returns_matching_documents_best_first(passage_index):
    hits = passage_index.search("knowledge base", top_n=10)

    assert {doc["id"] for doc, _ in hits} == {"p1", "p3"}
    scores = [score for _, score in hits]
    assert scores == sorted(scores, reverse=True)
    assert all(score > 0 for score in scores)
    # Same term frequencies, the shorter passage wins
    assert hits[0][0]["id"] == "p3"


def test_search_top_n(passage_index):
    assert len(passage_index.search("knowledge base", top_n=1)) == 1
    assert passage_index.search("knowledge base", top_n=0) == []
    assert passage_index.search("zebra", top_n=5) == []


def test_text_statistics_idf():
    stats = TextStatistics([["a", "b"], ["a"], ["c"]])
    # Lucene IDF with N = 3, df(a) = 2
    assert np.isclose(stats.idf_array[stats.get_term_id("a")], np.log(1 + 1.5 / 2.5))
    assert stats.get_term_id("zzz") is None
    assert stats.score(["zzz"]).tolist() == [0.0, 0.0, 0.0]


def test_select_top_k():
    scores = np.array([0.5, 2.0, 1.0, 3.0])
    assert select_top_k(scores, 2).tolist() == [3, 1]
    assert select_top_k(scores, 10).tolist() == [3, 1, 2, 0]


def test_from_jsonl(tmp_path):
    path = tmp_path / "passages.jsonl"
    lines = [
        json.dumps({"id": "p1", "entity": "E1 E2", "text": "hello world"}),
        "",
        json.dumps({"id": 7, "entity": None, "text": "numbers"}),
    ]
    path.write_text("\n".join(lines) + "\n")

    index = PassageIndex.from_jsonl(path)

    assert len(index) == 2
    assert index.lookup("id", "7") == {"id": "7", "entity": "", "text": "numbers"}
    assert index.search("hello", top_n=3)[0][0]["id"] == "p1"


@pytest.mark.parametrize("line, message", [("{not json", "invalid JSON"), ("[1, 2]", "expected a JSON object")])
def test_from_jsonl_rejects_bad_lines(tmp_path, line, message):
    path = tmp_path / "bad.jsonl"
    path.write_text(json.dumps({"id": "p1"}) + "\n" + line + "\n")
    with pytest.raises(ValueError, match=f":2: {message}"):
        PassageIndex.from_jsonl(path)


class FakeLinker:
    def __init__(self, error=None):
        self.error = error

    def annotate(self, text):
        if self.error:
            raise self.error
        return [Annotation("Barack_Obama", "Obama", 0.9)]

    def relatedness(self, entity_ids):
        if self.error:
            raise self.error
        return {(entity_ids[0], entity_ids[1]): 0.5}


def test_fail_safe_linker_passes_results_through():
    linker = FailSafeLinker(FakeLinker())
    assert linker.annotate("Obama visited Paris") == [Annotation("Barack_Obama", "Obama", 0.9)]
    assert linker.relatedness(["E1", "E2"]) == {("E1", "E2"): 0.5}


@pytest.mark.parametrize("error", [ConnectionError("refused"), TimeoutError("slow"), ValueError("bad JSON")])
def test_fail_safe_linker_returns_empty_results(error):
    linker = FailSafeLinker(FakeLinker(error))

    with pytest.warns(LookupFailureWarning, match="Entity linking failed"):
        assert linker.annotate("Obama visited Paris") == []
    with pytest.warns(LookupFailureWarning, match="Relatedness lookup failed"):
        assert linker.relatedness(["E1", "E2"]) == {}


def test_fail_safe_linker_propagates_other_errors():
    linker = FailSafeLinker(FakeLinker(KeyError("E1")))
    with pytest.raises(KeyError):
        linker.annotate("Obama")
