import math

import numpy as np
import pytest

from support_rerank.config import RankingMethod
from support_rerank.distributions import (
    entity_distribution,
    rank_by_comb,
    rank_by_cooccurrence,
    rank_by_frequency,
    rank_by_kld,
    rank_by_rarity,
    round_ceiling,
)


@pytest.mark.parametrize(
    "value, expected",
    [
        (0.12341, 0.1235),
        (-0.12345, -0.1234),
        (1 / 3, 0.3334),
        (0.1 + 0.2, 0.3001),
        (2.0, 2.0),
        (0.0, 0.0),
        (0.1, 0.1),
        (0.4, 0.4),
        (0.2, 0.2),
        (1e-5, 0.0001),
        (np.float64(0.4), 0.4),
    ],
)
def test_round_ceiling(value, expected):
    assert round_ceiling(value) == expected


def test_round_ceiling_keeps_non_finite():
    assert round_ceiling(math.inf) == math.inf
    assert round_ceiling(-math.inf) == -math.inf
    assert math.isnan(round_ceiling(math.nan))


def test_rarity_scenario():
    distribution = rank_by_rarity({"A": 100, "B": 50}, ["A", "B"], corpus_size=1000)
    assert distribution == {"A": 10.0, "B": 20.0}


def test_rarity_of_unseen_entity_is_zero():
    distribution = rank_by_rarity({"A": 0}, ["A", "B"], corpus_size=1000)
    assert distribution == {"A": 0.0, "B": 0.0}


def test_kld_scenario():
    distribution = rank_by_kld({"A": 4, "B": 1}, {"A": 100, "B": 50}, ["A", "B"], 10, corpus_size=1000)
    assert np.isclose(distribution["A"], 0.4 * math.log(4))
    assert np.isclose(distribution["A"], 0.5545, atol=1e-4)
    assert np.isclose(distribution["B"], 0.1 * math.log(2))


def test_kld_is_exactly_zero_without_run_mentions():
    distribution = rank_by_kld({"A": 4}, {"A": 100, "B": 50, "C": 0}, ["A", "B", "C"], 10, corpus_size=1000)
    assert distribution["B"] == 0.0
    assert distribution["C"] == 0.0


def test_kld_unseen_in_corpus_is_infinite():
    distribution = rank_by_kld({"A": 4}, {}, ["A"], 10, corpus_size=1000)
    assert distribution["A"] == math.inf


def test_kld_requires_top_k_passages():
    with pytest.raises(ZeroDivisionError):
        rank_by_kld({"A": 4}, {"A": 1}, ["A"], 0)


def test_frequency_logs_rounded_shares():
    run_counts = {"A": 3, "B": 1}
    distribution = rank_by_frequency(run_counts, ["A", "B", "C"])

    assert np.isclose(distribution["A"], math.log(0.75))
    assert np.isclose(distribution["B"], math.log(0.25))
    assert distribution["C"] == -math.inf
    assert all(score <= 0 for score in distribution.values())
    # Missing entities are read as 0 without touching the stats
    assert run_counts == {"A": 3, "B": 1}


def test_frequency_rounds_up_before_log():
    distribution = rank_by_frequency({"A": 1, "B": 2}, ["A", "B"])
    assert np.isclose(distribution["A"], math.log(0.3334), rtol=0, atol=1e-12)
    assert np.isclose(distribution["B"], math.log(0.6667), rtol=0, atol=1e-12)


def test_frequency_keeps_exact_decimal_shares():
    distribution = rank_by_frequency({"A": 1, "B": 9}, ["A", "B"])
    assert np.isclose(distribution["A"], math.log(0.1), rtol=0, atol=1e-12)
    assert np.isclose(distribution["B"], math.log(0.9), rtol=0, atol=1e-12)


def test_comb_uses_exact_decimal_shares():
    distribution = rank_by_comb({"A": 2, "B": 3}, {"A": 100, "B": 50}, ["A", "B"], corpus_size=1000)
    assert np.isclose(distribution["A"], 0.4 * 10, rtol=0, atol=1e-12)
    assert np.isclose(distribution["B"], 0.6 * 20, rtol=0, atol=1e-12)


def test_frequency_without_mentions_is_negative_infinity():
    distribution = rank_by_frequency({}, ["A", "B"])
    assert distribution == {"A": -math.inf, "B": -math.inf}


def test_comb_multiplies_share_and_rarity():
    distribution = rank_by_comb({"A": 3, "B": 1}, {"A": 100, "B": 50}, ["A", "B", "C"], corpus_size=1000)
    assert np.isclose(distribution["A"], 0.75 * 10)
    assert np.isclose(distribution["B"], 0.25 * 20)
    assert distribution["C"] == 0.0


@pytest.mark.parametrize("method", list(RankingMethod))
def test_entity_distribution_covers_pool(method):
    distribution = entity_distribution(
        method, {"A": 4, "B": 1}, {"A": 100, "B": 50}, ["A", "B"], 10, corpus_size=1000
    )
    assert list(distribution) == ["A", "B"]


def test_entity_distribution_dispatches_to_method():
    args = ({"A": 4, "B": 1}, {"A": 100, "B": 50}, ["A", "B"])
    assert entity_distribution(RankingMethod.RARITY, *args, 10, corpus_size=1000) == rank_by_rarity(
        args[1], args[2], corpus_size=1000
    )
    assert entity_distribution(RankingMethod.KLD, *args, 10, corpus_size=1000) == rank_by_kld(
        *args, 10, corpus_size=1000
    )


def test_entity_distribution_rejects_empty_pool():
    with pytest.raises(ValueError, match="entity_pool"):
        entity_distribution(RankingMethod.FREQ, {}, {}, [], 10)


def test_cooccurrence_shares_of_relevant_entities():
    distribution = rank_by_cooccurrence(["E1", "E2", "E1", "E9", "E9"], {"E1", "E2"})
    assert distribution == {"E1": 0.6667, "E2": 0.3334}


def test_cooccurrence_keeps_exact_shares_unlogged():
    assert rank_by_cooccurrence(["A", "B", "B", "B", "C"], {"A", "B", "C"}) == {"A": 0.2, "B": 0.6, "C": 0.2}


def test_cooccurrence_without_relevant_entities_is_empty():
    assert rank_by_cooccurrence(["E9"], {"E1"}) == {}
    assert rank_by_cooccurrence([], {"E1"}) == {}
