"""
Unit tests for scanner/matching.py -- match classification and mapping construction.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from scanner.matching import (
    MatchClassifier,
    MatchScore,
    MatchWeights,
    TierThresholds,
    default_outcome_correspondence,
    manual_mapping,
)
from scanner.models import MarketQuestion, MatchMethod, MatchTier, OutcomePair
from scanner.similarity import SimilarityScores

_T0 = datetime(2024, 11, 5, tzinfo=timezone.utc)
_NOW = datetime(2024, 10, 1, tzinfo=timezone.utc)


def _make_question(title: str, qid: str, venue: str = "polymarket",
                   category: str | None = "politics", days: float = 0.0,
                   outcomes: tuple[str, ...] = ("Yes", "No")) -> MarketQuestion:
    return MarketQuestion(
        question_id=qid,
        venue=venue,
        title=title,
        resolution_time=_T0 + timedelta(days=days),
        category=category,
        outcomes=outcomes,
    )


class TestMatchWeights:
    def test_defaults(self):
        w = MatchWeights()
        assert (w.keyword, w.token, w.fuzzy, w.date, w.category) == (0.40, 0.30, 0.15, 0.10, 0.05)

    def test_negative_rejected(self):
        with pytest.raises(ValueError):
            MatchWeights(keyword=-0.1)

    def test_zero_sum_rejected(self):
        with pytest.raises(ValueError):
            MatchWeights(0, 0, 0, 0, 0)


class TestTierThresholds:
    def test_boundaries_inclusive(self):
        t = TierThresholds()
        assert t.tier_for(0.75) == MatchTier.AUTO
        assert t.tier_for(0.7499) == MatchTier.REVIEW
        assert t.tier_for(0.60) == MatchTier.REVIEW
        assert t.tier_for(0.5999) == MatchTier.REJECT

    def test_review_above_auto_rejected(self):
        with pytest.raises(ValueError):
            TierThresholds(auto=0.6, review=0.7)


class TestClassify:
    def test_exact_title_is_perfect(self):
        clf = MatchClassifier()
        a = _make_question("Will BTC close above 100k on Dec 31?", "pm1")
        b = _make_question("will btc close above 100k on dec 31?  ", "K1", venue="kalshi",
                           category=None, days=60)
        result = clf.classify(a, b)
        assert result.overall == 1.0
        assert result.method == MatchMethod.EXACT
        assert result.tier == MatchTier.AUTO
        assert result.should_trade

    def test_nominee_and_party_phrasing_auto_approved(self):
        clf = MatchClassifier()
        a = _make_question("Will Donald Trump win the 2024 presidential election?", "pm1")
        b = _make_question("Will the Republican candidate win the 2024 presidential election?", "K1",
                           venue="kalshi")
        result = clf.classify(a, b)
        assert result.tier == MatchTier.AUTO
        assert 0.75 <= result.overall <= 0.85
        assert result.method == MatchMethod.KEYWORD

    def test_inverse_phrasing_not_auto(self):
        clf = MatchClassifier()
        a = _make_question("Will the Supreme Court overturn Roe v. Wade?", "pm1")
        b = _make_question("Will the Supreme Court uphold Roe v. Wade?", "K1", venue="kalshi")
        result = clf.classify(a, b)
        assert result.tier != MatchTier.AUTO
        assert not result.should_trade

    def test_overall_clamped_to_unit_interval(self):
        clf = MatchClassifier(weights=MatchWeights(1.0, 1.0, 1.0, 1.0, 1.0))
        a = _make_question("Bitcoin above 100k", "pm1", category="crypto")
        b = _make_question("BTC above 100k", "K1", venue="kalshi", category="crypto")
        assert clf.classify(a, b).overall <= 1.0

    def test_deterministic(self):
        clf = MatchClassifier()
        a = _make_question("Fed cuts rates in March", "pm1", category="economics")
        b = _make_question("Will the Fed cut interest rates in March?", "K1", venue="kalshi")
        assert clf.classify(a, b) == clf.classify(a, b)

    def test_flags_reported_without_changing_score(self):
        clf = MatchClassifier()
        a = _make_question("Will Trump win the 2024 popular vote?", "pm1")
        b = _make_question("Will Trump win the 2024 presidential election?", "K1", venue="kalshi")
        result = clf.classify(a, b)
        assert "settlement_keyword" in result.flags


class TestFindBestMatch:
    def test_picks_highest_overall(self):
        clf = MatchClassifier()
        q = _make_question("Will Bitcoin reach $100k by end of year?", "pm1", category="crypto")
        candidates = [
            _make_question("Will Ethereum fall below $2k?", "K1", venue="kalshi", category="crypto"),
            _make_question("Bitcoin to reach $100k by end of year", "K2", venue="kalshi", category="crypto"),
        ]
        best = clf.find_best_match(q, candidates)
        assert best is not None
        assert best.candidate.question_id == "K2"
        assert best.index == 1

    def test_tie_goes_to_lowest_index(self):
        clf = MatchClassifier()
        q = _make_question("Will BTC hit 100k?", "pm1")
        candidates = [
            _make_question("Will BTC hit 100k?", "K1", venue="kalshi"),
            _make_question("Will BTC hit 100k?", "K2", venue="kalshi"),
        ]
        best = clf.find_best_match(q, candidates)
        assert best.candidate.question_id == "K1"

    @pytest.mark.parametrize("methods,expected", [
        ((MatchMethod.FUZZY, MatchMethod.TOKEN), "K2"),
        ((MatchMethod.TOKEN, MatchMethod.KEYWORD), "K2"),
        ((MatchMethod.KEYWORD, MatchMethod.EXACT), "K2"),
        ((MatchMethod.KEYWORD, MatchMethod.FUZZY), "K1"),
    ])
    def test_equal_score_tie_goes_to_stronger_method(self, methods, expected):
        clf = MatchClassifier()
        components = SimilarityScores(keyword=0.8, token=0.8, fuzzy=0.8, date=1.0, category=1.0)
        scores = [MatchScore(0.90, components, method, MatchTier.AUTO) for method in methods]
        q = _make_question("Will BTC hit 100k?", "pm1")
        candidates = [
            _make_question("BTC at 100k?", "K1", venue="kalshi"),
            _make_question("Bitcoin reaches 100k?", "K2", venue="kalshi"),
        ]
        with patch.object(clf, "classify", side_effect=scores):
            best = clf.find_best_match(q, candidates)
        assert best.candidate.question_id == expected

    def test_none_when_everything_rejected(self):
        clf = MatchClassifier()
        q = _make_question("Will it rain in London tomorrow?", "pm1", category="weather")
        candidates = [_make_question("Who wins the Super Bowl?", "K1", venue="kalshi",
                                     category="sports", days=90)]
        assert clf.find_best_match(q, candidates) is None

    def test_empty_candidates(self):
        assert MatchClassifier().find_best_match(_make_question("x", "pm1"), []) is None


class TestBuildMappings:
    def test_auto_review_and_rejected_buckets(self):
        clf = MatchClassifier()
        qa = [
            _make_question("Will BTC hit 100k?", "pm1"),
            _make_question("Will it rain in London tomorrow?", "pm2", category="weather"),
        ]
        qb = [_make_question("Will BTC hit 100k?", "K1", venue="kalshi", outcomes=("yes", "no"))]
        report = clf.build_mappings(qa, qb, now=_NOW)

        assert report.questions_a == 2
        assert report.questions_b == 1
        assert len(report.auto) == 1
        assert report.rejected == 1

        mapping = report.auto[0]
        assert mapping.id_a == "pm1"
        assert mapping.id_b == "K1"
        assert mapping.mapping_id == "pm1:K1"
        assert mapping.method == MatchMethod.EXACT
        assert mapping.created_at == _NOW
        assert mapping.outcome_correspondence == (
            OutcomePair("Yes", "yes"), OutcomePair("No", "no"),
        )
        assert mapping.is_tradeable

    def test_mismatched_outcomes_not_tradeable(self):
        clf = MatchClassifier()
        qa = [_make_question("Will BTC hit 100k?", "pm1")]
        qb = [_make_question("Will BTC hit 100k?", "K1", venue="kalshi", outcomes=("Above", "Below"))]
        mapping = clf.build_mappings(qa, qb, now=_NOW).auto[0]
        assert mapping.outcome_correspondence == ()
        assert not mapping.is_tradeable


class TestOutcomeCorrespondence:
    def test_case_insensitive_pairing(self):
        pairs = default_outcome_correspondence(("Yes", "No"), ("no", "yes"))
        assert pairs == (OutcomePair("Yes", "yes"), OutcomePair("No", "no"))

    def test_length_mismatch(self):
        assert default_outcome_correspondence(("Yes", "No"), ("yes",)) == ()

    def test_duplicate_labels(self):
        assert default_outcome_correspondence(("Yes", "yes"), ("yes", "no")) == ()


class TestManualMapping:
    def test_manual_mapping_is_full_confidence_auto(self):
        m = manual_mapping("pm9", "K9", description="operator pair", now=_NOW)
        assert m.confidence == 1.0
        assert m.method == MatchMethod.MANUAL
        assert m.tier == MatchTier.AUTO
        assert m.is_tradeable
        assert m.description == "operator pair"
