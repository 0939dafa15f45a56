"""Tests for the evidence scoring engine."""

from datetime import timedelta
from types import SimpleNamespace

import pytest

from conftest import NOW, make_citation
from plinth.services.scoring import (
    INSUFFICIENT_EVIDENCE,
    coverage_subscore,
    diversity_subscore,
    recency_subscore,
    score_competitor_criteria,
    score_label,
    score_pairs,
)


def test_zero_evidence_is_unscored():
    """No citations never yields a number."""
    score = score_competitor_criteria([], now=NOW)

    assert score.status == "unscored"
    assert score.value is None
    assert score.reason == INSUFFICIENT_EVIDENCE
    assert score.evidence_count == 0
    assert score.source_types == []


def test_full_score_scenario():
    """Eleven fresh citations across three types score 10.0."""
    types = ["pricing", "docs", "reviews"]
    citations = [
        make_citation(f"https://example.com/page-{i}", types[i % 3], days_old=5 + i)
        for i in range(11)
    ]

    score = score_competitor_criteria(citations, now=NOW)

    assert score.status == "scored"
    assert score.value == 10.0
    assert score.evidence_count == 11
    assert score.source_types == ["docs", "pricing", "reviews"]


def test_minimal_score_scenario():
    """One undated citation of a single type scores 2.0."""
    score = score_competitor_criteria([make_citation("https://example.com/a", "blog")], now=NOW)

    assert score.status == "scored"
    assert score.value == 2.0
    assert score.newest_evidence_at is None
    assert score.oldest_evidence_at is None


def test_newest_and_oldest_timestamps():
    """Newest/oldest come from the dated citations only."""
    citations = [
        make_citation("https://example.com/a", "docs", days_old=10),
        make_citation("https://example.com/b", "docs", days_old=100),
        make_citation("https://example.com/c", "docs"),
    ]

    score = score_competitor_criteria(citations, now=NOW)

    assert score.newest_evidence_at == (NOW - timedelta(days=10)).isoformat()
    assert score.oldest_evidence_at == (NOW - timedelta(days=100)).isoformat()
    # 3 citations -> 4, newest 10 days -> 2, one type -> 0
    assert score.value == 6.0


@pytest.mark.parametrize(
    "count,expected",
    [(0, 0), (1, 2), (2, 2), (3, 4), (5, 4), (6, 5), (10, 5), (11, 6), (50, 6)],
)
def test_coverage_subscore_steps(count, expected):
    assert coverage_subscore(count) == expected


def test_coverage_subscore_is_monotonic():
    values = [coverage_subscore(n) for n in range(0, 30)]
    assert values == sorted(values)


def test_recency_subscore_boundaries():
    assert recency_subscore(NOW - timedelta(days=30), NOW) == 2
    assert recency_subscore(NOW - timedelta(days=31), NOW) == 1
    assert recency_subscore(NOW - timedelta(days=90), NOW) == 1
    assert recency_subscore(NOW - timedelta(days=91), NOW) == 0
    assert recency_subscore(None, NOW) == 0


def test_recency_subscore_never_increases_with_age():
    values = [recency_subscore(NOW - timedelta(days=d), NOW) for d in range(0, 200, 5)]
    assert values == sorted(values, reverse=True)


def test_diversity_subscore():
    assert diversity_subscore(0) == 0
    assert diversity_subscore(1) == 0
    assert diversity_subscore(2) == 1
    assert diversity_subscore(3) == 2
    assert diversity_subscore(7) == 2


def test_adding_evidence_never_lowers_score():
    """Adding a citation of an existing type and date never lowers the score."""
    citations = []
    previous = 0.0
    for i in range(15):
        citations.append(make_citation(f"https://example.com/{i}", "docs", days_old=40))
        value = score_competitor_criteria(citations, now=NOW).value
        assert value >= previous
        previous = value


def test_score_labels():
    assert score_label(None) == "Insufficient"
    assert score_label(10.0) == "High"
    assert score_label(7.5) == "High"
    assert score_label(5.0) == "Medium"
    assert score_label(2.5) == "Low"
    assert score_label(2.0) == "Insufficient"


def test_score_pairs_covers_every_pair():
    """Pairs without evidence are present and unscored."""
    competitors = [SimpleNamespace(id="c1", name="Asana"), SimpleNamespace(id="c2", name="Linear")]
    criteria = [{"id": "pricing", "name": "Pricing"}]
    by_pair = {("c1", "pricing"): [make_citation("https://asana.com/pricing", "pricing", days_old=3)]}

    scores = score_pairs(competitors, criteria, by_pair, now=NOW)

    assert len(scores) == 2
    assert scores[0]["competitor_name"] == "Asana"
    assert scores[0]["status"] == "scored"
    assert scores[0]["value"] == 4.0
    assert scores[0]["label"] == "Low"
    assert scores[1]["status"] == "unscored"
    assert scores[1]["label"] == "Insufficient"
