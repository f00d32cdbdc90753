"""Tests for odds normalization, sharp consensus and edge evaluation."""

from datetime import timedelta

import pytest

from conftest import AWAY, HOME, NOW, make_book, make_consensus, make_match
from sharpedge.config.policy import RiskPolicy
from sharpedge.ingestion.base import BookMarket, Quote, TwoWayMarket
from sharpedge.odds.consensus import (
    BookProbability,
    ExclusionReason,
    build_consensus,
    reject_outliers,
)
from sharpedge.odds.devig import devig, implied_probability, vig
from sharpedge.odds.edge import (
    compute_edge,
    dynamic_min_edge,
    effective_min_edge,
    evaluate_edge,
    price_tier_min_edge,
)

MAX_AGE = timedelta(seconds=120)


class TestImpliedProbability:
    """American odds to implied probability."""

    def test_favorite(self):
        assert implied_probability(-118) == pytest.approx(0.5413, abs=1e-4)

    def test_even_money(self):
        assert implied_probability(100) == 0.5

    def test_underdog(self):
        assert implied_probability(150) == pytest.approx(0.4)

    def test_heavy_favorite(self):
        assert implied_probability(-300) == pytest.approx(0.75)


class TestDevig:
    """Proportional two-way devig."""

    def test_favorite_underdog_sums_to_one(self):
        fair_a, fair_b = devig(implied_probability(-118), implied_probability(100))
        assert fair_a + fair_b == pytest.approx(1.0)
        assert fair_a == pytest.approx(0.5197, abs=1e-3)
        assert fair_a > fair_b

    def test_symmetric_market(self):
        fair_a, fair_b = devig(implied_probability(-110), implied_probability(-110))
        assert fair_a == pytest.approx(0.5)
        assert fair_b == pytest.approx(0.5)

    def test_vig(self):
        assert vig(implied_probability(-110), implied_probability(-110)) == pytest.approx(0.0476, abs=1e-4)


class TestBuildConsensus:
    """Consensus over trusted, fresh, well-formed books."""

    def test_two_fresh_books(self):
        match = make_match([make_book("pinnacle", -118, 100), make_book("lowvig", -118, 100)])
        result = build_consensus(match, HOME, ["pinnacle", "lowvig"], MAX_AGE, 2, NOW)

        assert result is not None
        assert result.book_count == 2
        assert result.fair_prob == pytest.approx(0.5198, abs=1e-3)
        assert result.variance == 0.0

    def test_away_outcome(self):
        match = make_match([make_book("pinnacle", -118, 100), make_book("lowvig", -118, 100)])
        result = build_consensus(match, AWAY, ["pinnacle", "lowvig"], MAX_AGE, 2, NOW)

        assert result.fair_prob == pytest.approx(1 - 0.5198, abs=1e-3)

    def test_stale_book_excluded(self):
        match = make_match(
            [
                make_book("pinnacle", -118, 100),
                make_book("lowvig", -120, 102),
                make_book("betonlineag", -200, 170, age_seconds=500),
            ]
        )
        result = build_consensus(match, HOME, ["pinnacle", "lowvig", "betonlineag"], MAX_AGE, 2, NOW)

        assert result.book_count == 2
        assert "betonlineag" not in [b.key for b in result.books]
        reasons = {e.key: e.reason for e in result.excluded}
        assert reasons["betonlineag"] == ExclusionReason.STALE

    def test_missing_book_reported(self):
        match = make_match([make_book("pinnacle", -118, 100), make_book("lowvig", -118, 100)])
        result = build_consensus(match, HOME, ["pinnacle", "lowvig", "fanduel"], MAX_AGE, 2, NOW)

        assert result.book_count == 2
        reasons = {e.key: e.reason for e in result.excluded}
        assert reasons["fanduel"] == ExclusionReason.MISSING

    def test_untrusted_book_ignored(self):
        match = make_match(
            [
                make_book("pinnacle", -118, 100),
                make_book("lowvig", -118, 100),
                make_book("randombook", -400, 300),
            ]
        )
        result = build_consensus(match, HOME, ["pinnacle", "lowvig"], MAX_AGE, 2, NOW)

        assert result.book_count == 2
        assert result.fair_prob == pytest.approx(0.5198, abs=1e-3)

    def test_malformed_market_excluded(self):
        broken = BookMarket("lowvig", NOW, None)
        match = make_match([make_book("pinnacle", -118, 100), broken])
        result = build_consensus(match, HOME, ["pinnacle", "lowvig"], MAX_AGE, 1, NOW)

        assert result.book_count == 1
        assert result.excluded[0].reason == ExclusionReason.MALFORMED

    def test_outcome_name_must_match_exactly(self):
        observed = NOW - timedelta(seconds=10)
        renamed = BookMarket(
            "lowvig",
            observed,
            TwoWayMarket(
                Quote("lowvig", "Celtics", -118, observed),
                Quote("lowvig", "Lakers", 100, observed),
            ),
        )
        match = make_match([make_book("pinnacle", -118, 100), renamed])
        result = build_consensus(match, HOME, ["pinnacle", "lowvig"], MAX_AGE, 1, NOW)

        assert result.book_count == 1
        assert result.excluded[0].reason == ExclusionReason.NO_MATCH

    def test_below_min_sources_returns_none(self):
        match = make_match([make_book("pinnacle", -118, 100), make_book("lowvig", -118, 100)])
        assert build_consensus(match, HOME, ["pinnacle", "lowvig"], MAX_AGE, 3, NOW) is None

    def test_all_stale_returns_none(self):
        match = make_match([make_book("pinnacle", -118, 100, age_seconds=600)])
        assert build_consensus(match, HOME, ["pinnacle"], MAX_AGE, 1, NOW) is None

    def test_variance_is_population_variance(self):
        match = make_match([make_book("pinnacle", -150, 130), make_book("lowvig", -110, -110)])
        result = build_consensus(match, HOME, ["pinnacle", "lowvig"], MAX_AGE, 2, NOW)

        probs = result.book_probs
        mean = sum(probs) / 2
        expected = sum((p - mean) ** 2 for p in probs) / 2
        assert result.variance == pytest.approx(expected)
        assert result.fair_prob == pytest.approx(mean)


def _book(key: str, fair: float) -> BookProbability:
    return BookProbability(key, -110, fair, fair, 0.04)


class TestRejectOutliers:
    """Two-standard-deviation filter around the median."""

    def test_skipped_below_three_books(self):
        books = [_book("a", 0.50), _book("b", 0.80)]
        kept, excluded = reject_outliers(books)
        assert kept == books
        assert excluded == []

    def test_skipped_when_books_agree(self):
        books = [_book("a", 0.520), _book("b", 0.525), _book("c", 0.530)]
        kept, excluded = reject_outliers(books)
        assert len(kept) == 3
        assert excluded == []

    def test_outlier_dropped(self):
        books = [_book(k, 0.52) for k in "abcd"] + [_book("e", 0.70)]
        kept, excluded = reject_outliers(books)

        assert [b.key for b in kept] == ["a", "b", "c", "d"]
        assert len(excluded) == 1
        assert excluded[0].key == "e"
        assert excluded[0].reason == ExclusionReason.OUTLIER


class TestComputeEdge:
    def test_positive_edge(self):
        assert compute_edge(0.55, 0.50) == pytest.approx(0.10)

    def test_negative_edge(self):
        assert compute_edge(0.45, 0.50) == pytest.approx(-0.10)


class TestDynamicMinEdge:
    """Confidence-adaptive threshold."""

    @pytest.fixture
    def dynamic_policy(self) -> RiskPolicy:
        return RiskPolicy(dynamic_edge_enabled=True)

    def test_four_books_low_variance(self, dynamic_policy):
        assert dynamic_min_edge(4, 0.01, dynamic_policy) == pytest.approx(0.025)

    def test_three_books(self, dynamic_policy):
        assert dynamic_min_edge(3, 0.01, dynamic_policy) == pytest.approx(0.035)

    def test_two_books(self, dynamic_policy):
        assert dynamic_min_edge(2, 0.01, dynamic_policy) == pytest.approx(0.05)

    def test_high_variance_scales_threshold(self, dynamic_policy):
        # 1 + (0.03 - 0.02) / 0.02 = 1.5
        assert dynamic_min_edge(4, 0.03, dynamic_policy) == pytest.approx(0.0375)

    def test_scaled_threshold_clamped_to_two_book_tier(self, dynamic_policy):
        assert dynamic_min_edge(4, 0.10, dynamic_policy) == pytest.approx(0.05)

    def test_disabled_uses_static_min_edge(self):
        policy = RiskPolicy(dynamic_edge_enabled=False, min_edge=0.04)
        assert dynamic_min_edge(4, 0.0, policy) == pytest.approx(0.04)


class TestPriceTiers:
    """Per-price-band minimum edge."""

    @pytest.fixture
    def tier_policy(self) -> RiskPolicy:
        return RiskPolicy(price_edge_enabled=True)

    @pytest.mark.parametrize(
        "price,expected",
        [(0.20, 0.08), (0.30, 0.05), (0.50, 0.03), (0.70, 0.04), (0.85, 0.04), (0.90, 0.0), (0.10, 0.0)],
    )
    def test_bands(self, tier_policy, price, expected):
        assert price_tier_min_edge(price, tier_policy) == pytest.approx(expected)

    def test_disabled_contributes_nothing(self):
        assert price_tier_min_edge(0.20, RiskPolicy()) == 0.0

    def test_effective_takes_higher_threshold(self, tier_policy):
        # static 0.035 vs 0.08 band
        assert effective_min_edge(0.20, 4, 0.0, tier_policy) == pytest.approx(0.08)
        # static 0.035 vs 0.03 band
        assert effective_min_edge(0.50, 4, 0.0, tier_policy) == pytest.approx(0.035)


class TestEvaluateEdge:
    def test_qualified(self, policy):
        decision = evaluate_edge(make_consensus(0.55), 0.50, policy)
        assert decision.qualified
        assert decision.edge == pytest.approx(0.10)
        assert decision.min_edge == pytest.approx(0.035)

    def test_edge_below_threshold(self, policy):
        decision = evaluate_edge(make_consensus(0.51), 0.50, policy)
        assert not decision.qualified
        assert "below minimum" in decision.reason

    def test_price_below_floor(self, policy):
        decision = evaluate_edge(make_consensus(0.30), 0.20, policy)
        assert not decision.qualified
        assert "below floor" in decision.reason

    def test_edge_at_threshold_qualifies(self):
        policy = RiskPolicy(min_edge=0.25)
        decision = evaluate_edge(make_consensus(0.625), 0.50, policy)
        assert decision.edge == 0.25
        assert decision.qualified

    def test_dynamic_threshold_depends_on_book_count(self):
        policy = RiskPolicy(dynamic_edge_enabled=True)
        # edge 0.04: clears the 4-book tier, not the 2-book tier
        assert evaluate_edge(make_consensus(0.52, book_count=4, variance=0.01), 0.50, policy).qualified
        assert not evaluate_edge(make_consensus(0.52, book_count=2, variance=0.01), 0.50, policy).qualified
