"""
Tests for the Pricing Engine and tier tables.

1. Word tiers: ceiling lookup, below smallest tier, linear overflow
2. Deadline bands: flat surcharge, first ascending band wins, past deadlines
3. Agent word tables replace the word table only
4. Determinism and rounding
5. Tier table validation
"""
import pytest
from datetime import datetime, timedelta, timezone

from app.services.errors import ValidationError
from app.services.pricing import PricingConfig, PricingEngine, TierTable, days_until
from app.services.pricing.engine import word_count_component


NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def engine():
    return PricingEngine(PricingConfig.default())


def in_days(days):
    return NOW + timedelta(days=days)


# =============================================================================
# TEST: WORD COUNT COMPONENT
# =============================================================================

class TestWordCountComponent:

    def test_500_words_ten_days_out_is_smallest_tier_without_surcharge(self, engine):
        assert engine.price(500, in_days(10), now=NOW) == 20.0

    def test_between_thresholds_uses_next_tier_up(self, engine):
        assert engine.price(501, in_days(10), now=NOW) == 40.0
        assert engine.price(1500, in_days(10), now=NOW) == 60.0

    def test_below_smallest_tier_prices_at_smallest_tier(self, engine):
        assert engine.price(1, in_days(10), now=NOW) == 20.0
        assert engine.price(499, in_days(10), now=NOW) == 20.0

    def test_above_largest_tier_extrapolates_linearly(self, engine):
        # 20000 words -> 800.00, i.e. 0.04 per word
        assert engine.price(20000, in_days(10), now=NOW) == 800.0
        assert engine.price(25000, in_days(10), now=NOW) == 1000.0

    def test_overflow_is_monotonic(self, engine):
        prices = [engine.price(w, in_days(10), now=NOW) for w in range(19000, 30001, 250)]
        assert prices == sorted(prices)

    def test_zero_or_negative_word_count_rejected(self, engine):
        with pytest.raises(ValidationError):
            engine.price(0, in_days(10), now=NOW)
        with pytest.raises(ValidationError):
            engine.price(-5, in_days(10), now=NOW)

    def test_non_integer_word_count_rejected(self, engine):
        with pytest.raises(ValidationError):
            engine.price("500", in_days(10), now=NOW)
        with pytest.raises(ValidationError):
            engine.price(True, in_days(10), now=NOW)

    def test_component_with_single_tier_overflow(self):
        tiers = TierTable.from_mapping({"1000": 50})
        assert word_count_component(3000, tiers) == 150.0


# =============================================================================
# TEST: DEADLINE SURCHARGE
# =============================================================================

class TestDeadlineSurcharge:

    def test_one_day_band(self, engine):
        assert engine.price(1500, in_days(1), now=NOW) == 80.0

    def test_three_day_band(self, engine):
        assert engine.price(500, in_days(2), now=NOW) == 30.0
        assert engine.price(500, in_days(3), now=NOW) == 30.0

    def test_seven_day_band(self, engine):
        assert engine.price(500, in_days(4), now=NOW) == 25.0
        assert engine.price(500, in_days(7), now=NOW) == 25.0

    def test_beyond_last_band_has_no_surcharge(self, engine):
        assert engine.price(500, in_days(8), now=NOW) == 20.0

    def test_partial_days_truncate(self):
        assert days_until(NOW + timedelta(days=1, hours=23), NOW) == 1
        assert days_until(NOW + timedelta(hours=5), NOW) == 0

    def test_past_deadline_falls_in_tightest_band(self, engine):
        assert engine.price(500, NOW - timedelta(days=2), now=NOW) == 40.0

    def test_naive_deadline_treated_as_utc(self, engine):
        naive = (NOW + timedelta(days=1)).replace(tzinfo=None)
        assert engine.price(500, naive, now=NOW) == 40.0

    def test_missing_deadline_rejected(self, engine):
        with pytest.raises(ValidationError):
            engine.price(500, None, now=NOW)

    def test_empty_deadline_table_means_no_surcharge(self):
        config = PricingConfig.from_dict({
            "word_tiers": {"500": 20},
            "deadline_tiers": {},
            "fees": {"agent": 5, "super_worker": 10},
        })
        assert PricingEngine(config).price(500, in_days(0), now=NOW) == 20.0


# =============================================================================
# TEST: AGENT WORD TABLES
# =============================================================================

class TestAgentWordTable:

    def test_agent_table_replaces_word_tiers(self, engine):
        agent_tiers = TierTable.from_mapping({"500": 30, "1000": 55})
        assert engine.price(800, in_days(10), agent_tiers=agent_tiers, now=NOW) == 55.0

    def test_agent_table_keeps_global_deadline_surcharge(self, engine):
        agent_tiers = TierTable.from_mapping({"500": 30})
        assert engine.price(500, in_days(1), agent_tiers=agent_tiers, now=NOW) == 50.0

    def test_agent_table_overflow_uses_same_linear_rule(self, engine):
        agent_tiers = TierTable.from_mapping({"500": 30, "1000": 50})
        assert engine.price(2000, in_days(10), agent_tiers=agent_tiers, now=NOW) == 100.0


# =============================================================================
# TEST: DETERMINISM AND ROUNDING
# =============================================================================

class TestDeterminism:

    def test_identical_inputs_identical_results(self, engine):
        first = engine.price(12345, in_days(2), now=NOW)
        second = engine.price(12345, in_days(2), now=NOW)
        assert first == second

    def test_price_rounded_to_two_decimals(self):
        config = PricingConfig.from_dict({
            "word_tiers": {"3": 1.0},
            "deadline_tiers": {},
            "fees": {"agent": 0, "super_worker": 0},
        })
        # 10 words at 1/3 per word
        assert PricingEngine(config).price(10, in_days(10), now=NOW) == 3.33


# =============================================================================
# TEST: TIER TABLE VALIDATION
# =============================================================================

class TestTierTable:

    def test_string_keys_are_sorted_numerically(self):
        table = TierTable.from_mapping({"1000": 40, "500": 20, "10000": 400})
        assert [t for t, _ in table.tiers] == [500, 1000, 10000]

    def test_empty_word_table_rejected(self):
        with pytest.raises(ValidationError):
            TierTable.from_mapping({})

    def test_non_positive_threshold_rejected(self):
        with pytest.raises(ValidationError):
            TierTable.from_mapping({"0": 10})

    def test_negative_amount_rejected(self):
        with pytest.raises(ValidationError):
            TierTable.from_mapping({"500": -1})

    def test_non_numeric_rejected(self):
        with pytest.raises(ValidationError):
            TierTable.from_mapping({"five hundred": 20})

    def test_config_round_trips_through_json_shape(self):
        config = PricingConfig.default()
        assert PricingConfig.from_dict(config.to_dict()) == config

    def test_config_requires_both_fees(self):
        with pytest.raises(ValidationError):
            PricingConfig.from_dict({"word_tiers": {"500": 20}, "fees": {"agent": 5}})
