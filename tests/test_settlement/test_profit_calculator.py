"""Tests for the settlement rule engine.

Covers the standalone table, the parlay fold (lost dominates, pending
blocks, void legs count as 1.0) and the worked examples for two-leg,
three-leg, void-mixed and all-void parlays.
"""
from types import SimpleNamespace

import pytest

from app.core.exceptions import OddsConversionError
from app.services.settlement.profit_calculator import (
    SETTLEMENT_RULES,
    LegState,
    Lost,
    Pending,
    Push,
    Won,
    american_to_decimal,
    calculate_profits,
    fold_outcomes,
    leg_outcome,
    missing_legs,
    profits_match,
    rejected_leg_outcome,
    settle_parlay,
    settle_single,
)


def legs(*specs, stake=100.0):
    """Build LegStates from (status, odds) pairs; the first is primary."""
    return [
        LegState(key=f"leg-{i}", status=status, odds=odds, stake=stake if i == 0 else 0.0,
                 is_primary=i == 0)
        for i, (status, odds) in enumerate(specs)
    ]


class TestAmericanToDecimal:

    def test_positive_odds(self):
        assert american_to_decimal(150) == pytest.approx(2.5)
        assert american_to_decimal(200) == pytest.approx(3.0)

    def test_negative_odds(self):
        assert american_to_decimal(-110) == pytest.approx(1.909090909)
        assert american_to_decimal(-200) == pytest.approx(1.5)

    def test_zero_is_rejected(self):
        with pytest.raises(OddsConversionError):
            american_to_decimal(0)

    def test_conversion_error_is_a_value_error(self):
        with pytest.raises(ValueError):
            american_to_decimal(0)


class TestStandaloneSettlement:

    def test_won(self):
        assert settle_single("won", 100.0, -110) == pytest.approx(90.91)
        assert settle_single("won", 50.0, 200) == pytest.approx(100.0)

    def test_lost_is_negative_stake(self):
        assert settle_single("lost", 100.0, -110) == -100.0

    @pytest.mark.parametrize("status", ["void", "cancelled"])
    def test_void_and_cancelled_are_zero(self, status):
        assert settle_single(status, 100.0, -110) == 0.0

    def test_pending_is_none(self):
        assert settle_single("pending", 100.0, -110) is None

    def test_won_with_zero_stake_is_zero(self):
        assert settle_single("won", 0.0, 150) == 0.0


class TestOutcomeFold:

    def test_lost_dominates_everything(self):
        assert fold_outcomes([Won(2.0), Pending(), Lost()]) == Lost()
        assert fold_outcomes([Lost(), Pending()]) == Lost()

    def test_pending_dominates_won_and_push(self):
        assert fold_outcomes([Won(2.0), Push(), Pending()]) == Pending()

    def test_won_legs_multiply(self):
        assert fold_outcomes([Won(2.0), Won(1.5)]).decimal_odds == pytest.approx(3.0)

    def test_push_counts_as_one(self):
        assert fold_outcomes([Push(), Won(3.0), Push()]) == Won(3.0)

    def test_all_push_is_push(self):
        assert fold_outcomes([Push(), Push()]) == Push()

    def test_leg_outcome_mapping(self):
        assert leg_outcome("won", 150) == Won(2.5)
        assert leg_outcome("lost", 0) == Lost()
        assert leg_outcome("cancelled", None) == Push()
        assert leg_outcome("pending", None) == Pending()


class TestParlaySettlement:
    """Only the primary leg ever carries a nonzero profit."""

    def test_example_a_two_won_legs(self):
        """stake=100, won at -110 and +150 => profit ~377.27."""
        profits = settle_parlay(legs(("won", -110), ("won", 150)))

        assert profits["leg-0"] == pytest.approx(377.27, abs=0.01)
        assert profits["leg-1"] == 0.0

    def test_example_b_any_lost_leg_loses_the_stake(self):
        """Three legs, one lost, others won or pending => primary -100."""
        profits = settle_parlay(legs(("won", -110), ("lost", 120), ("pending", 150)))

        assert profits == {"leg-0": -100.0, "leg-1": 0.0, "leg-2": 0.0}

    def test_lost_non_primary_still_charges_primary(self):
        profits = settle_parlay(legs(("pending", -110), ("pending", 120), ("lost", 150)))
        assert profits["leg-0"] == -100.0

    def test_example_c_void_leg_excluded_from_multiplier(self):
        """stake=50, one void leg, one won at +200 => profit 100."""
        profits = settle_parlay(legs(("void", -110), ("won", 200), stake=50.0))

        assert profits["leg-0"] == pytest.approx(100.0)
        assert profits["leg-1"] == 0.0

    def test_example_d_all_void_is_a_push(self):
        """stake=75, every leg void => profit 0, not None and not negative."""
        profits = settle_parlay(legs(("void", -110), ("cancelled", 130), ("void", 100), stake=75.0))

        assert profits == {"leg-0": 0.0, "leg-1": 0.0, "leg-2": 0.0}

    def test_pending_leg_without_loss_leaves_everything_unresolved(self):
        profits = settle_parlay(legs(("won", -110), ("pending", 150)))
        assert profits == {"leg-0": None, "leg-1": None}

    def test_all_won_matches_product_formula(self):
        odds = [-110, 150, 300, -250]
        profits = settle_parlay(legs(*[("won", o) for o in odds], stake=20.0))

        product = 1.0
        for o in odds:
            product *= american_to_decimal(o)
        assert profits["leg-0"] == pytest.approx(20.0 * (product - 1), abs=0.01)
        assert all(profits[f"leg-{i}"] == 0.0 for i in range(1, 4))

    def test_group_without_primary_settles_to_zero(self):
        orphan = [
            LegState(key="a", status="lost", odds=-110, stake=0.0, is_primary=False),
            LegState(key="b", status="won", odds=150, stake=0.0, is_primary=False),
        ]
        assert settle_parlay(orphan) == {"a": 0.0, "b": 0.0}

    def test_won_leg_with_zero_odds_raises(self):
        with pytest.raises(OddsConversionError):
            settle_parlay(legs(("won", 0), ("won", 150)))

    def test_empty_parlay(self):
        assert settle_parlay([]) == {}


class TestUnstoredLegs:

    @pytest.mark.parametrize("status,expected", [
        ("lost", Lost()),
        ("void", Push()),
        ("cancelled", Push()),
        ("won", Pending()),
        ("pending", Pending()),
        (None, Pending()),
    ])
    def test_rejected_leg_outcome(self, status, expected):
        assert rejected_leg_outcome(status) == expected

    def test_lost_unstored_leg_loses_the_parlay(self):
        profits = settle_parlay(
            legs(("won", -110), ("won", 200)),
            unstored=[rejected_leg_outcome("lost")],
        )

        assert profits == {"leg-0": -100.0, "leg-1": 0.0}

    def test_unsettleable_unstored_leg_keeps_parlay_open(self):
        profits = settle_parlay(
            legs(("won", -110), ("won", 200)),
            unstored=[rejected_leg_outcome("won")],
        )

        assert profits == {"leg-0": None, "leg-1": None}

    def test_void_unstored_leg_counts_as_one(self):
        profits = settle_parlay(legs(("won", 200), stake=50.0), unstored=[Push()])

        assert profits == {"leg-0": 100.0}

    def test_primary_need_not_be_first(self):
        states = [
            LegState(key="b", status="lost", odds=150, stake=0.0, is_primary=False),
            LegState(key="c", status="lost", odds=120, stake=100.0, is_primary=True),
        ]

        assert settle_parlay(states) == {"b": 0.0, "c": -100.0}


class TestCalculateProfits:

    def test_mixed_standalone_and_parlays(self):
        bets = [
            SimpleNamespace(id="s1", parlay_id=None, status="won", odds=200, stake=10.0, is_primary=True),
            SimpleNamespace(id="s2", parlay_id=None, status="pending", odds=-110, stake=10.0, is_primary=True),
            SimpleNamespace(id="p1-0", parlay_id="p1", status="won", odds=-110, stake=100.0, is_primary=True,
                            parlay_leg_count=2),
            SimpleNamespace(id="p1-1", parlay_id="p1", status="lost", odds=150, stake=0.0, is_primary=False,
                            parlay_leg_count=2),
        ]

        profits = calculate_profits(bets)

        assert profits == {"s1": 20.0, "s2": None, "p1-0": -100.0, "p1-1": 0.0}

    def test_stake_sum_equals_slip_stake(self):
        """Summing profit over a settled parlay's rows counts the wager once."""
        bets = [
            SimpleNamespace(id=f"p-{i}", parlay_id="p", status="lost", odds=-110,
                            stake=100.0 if i == 0 else 0.0, is_primary=i == 0, parlay_leg_count=4)
            for i in range(4)
        ]
        profits = calculate_profits(bets)

        assert sum(b.stake for b in bets) == 100.0
        assert sum(profits.values()) == -100.0


class TestHelpers:

    def test_profits_match_tolerance(self):
        assert profits_match(377.27, 377.2727)
        assert not profits_match(377.27, 377.29)

    def test_profits_match_none(self):
        assert profits_match(None, None)
        assert not profits_match(None, 0.0)
        assert not profits_match(0.0, None)

    def test_rules_document_every_case(self):
        assert len(SETTLEMENT_RULES) == 6
        assert SETTLEMENT_RULES[0].startswith("Standalone bet")


class TestIncompleteGroups:

    def group(self, *statuses, leg_count):
        return [
            SimpleNamespace(id=f"p-{i}", parlay_id="p", status=status, odds=-110,
                            stake=100.0 if i == 0 else 0.0, is_primary=i == 0, parlay_leg_count=leg_count)
            for i, status in enumerate(statuses)
        ]

    def test_missing_legs(self):
        assert missing_legs(self.group("won", "won", leg_count=3)) == 1
        assert missing_legs(self.group("won", "won", leg_count=2)) == 0
        assert missing_legs(self.group("won", "won", leg_count=None)) == 0

    def test_winning_incomplete_group_is_left_alone(self):
        assert calculate_profits(self.group("won", "won", leg_count=3)) == {}

    def test_losing_incomplete_group_is_settled(self):
        profits = calculate_profits(self.group("won", "lost", leg_count=3))

        assert profits == {"p-0": -100.0, "p-1": 0.0}
