"""Tests for aggregator field normalization and leg validation."""
from datetime import datetime
from types import SimpleNamespace

import pytest

from app.core.exceptions import LegValidationError
from app.services.settlement.normalizer import (
    coerce_odds,
    compute_single_leg_profit,
    normalize_bet_type,
    normalize_side,
    normalize_status,
    parse_timestamp,
    to_currency,
    validate_leg,
)


class TestNormalizeStatus:
    """Raw status spellings map onto pending, won, lost and void."""

    @pytest.mark.parametrize("raw,expected", [
        ("won", "won"), ("WIN", "won"), ("w", "won"),
        ("lost", "lost"), ("Loss", "lost"), ("lose", "lost"), ("l", "lost"),
        ("pending", "pending"), ("open", "pending"), ("active", "pending"),
        ("cancelled", "void"), ("canceled", "void"), ("void", "void"), ("push", "void"),
    ])
    def test_known_spellings(self, raw, expected):
        assert normalize_status(raw) == expected

    @pytest.mark.parametrize("outcome,expected", [
        ("win", "won"), ("won", "won"), ("cashout", "won"),
        ("loss", "lost"), ("lost", "lost"), ("lose", "lost"),
        ("push", "void"), ("void", "void"),
        (None, "pending"), ("graded", "pending"),
    ])
    def test_completed_uses_outcome(self, outcome, expected):
        assert normalize_status("completed", outcome) == expected

    def test_unknown_and_missing_default_to_pending(self):
        """Should never drop a bet because its status is unrecognized."""
        assert normalize_status("settling") == "pending"
        assert normalize_status(None) == "pending"
        assert normalize_status("") == "pending"


class TestNormalizeSide:

    def test_first_keyword_in_order_wins(self):
        assert normalize_side("Over 45.5") == "over"
        assert normalize_side("UNDER 210") == "under"
        assert normalize_side("Home -3") == "home"
        assert normalize_side("away +7") == "away"
        # "over" is checked before "home"
        assert normalize_side("home team over") == "over"

    def test_team_names_normalize_to_none(self):
        """Should not invent a side the bets table would reject."""
        assert normalize_side("Cincinnati Bengals") is None
        assert normalize_side(None) is None
        assert normalize_side("") is None


class TestNormalizeBetType:

    @pytest.mark.parametrize("raw,expected", [
        ("Point Spread", "spread"),
        ("Run Line", "spread"),
        ("Game Total", "total"),
        ("Over/Under", "total"),
        ("Moneyline", "moneyline"),
        ("Money Line", "moneyline"),
        ("1st Half Winner", "first_half"),
        ("First Half Result", "first_half"),
        ("2nd Quarter Winner", "quarter"),
        ("3rd Period Goals", "period"),
        ("Exact Score", "game_prop"),
        ("Runs in 1st Inning", "game_prop"),
        ("Patrick Mahomes Passing Yards", "player_prop"),
    ])
    def test_classification(self, raw, expected):
        assert normalize_bet_type(raw) == expected

    def test_spread_checked_before_first_half(self):
        assert normalize_bet_type("1st Half Spread") == "spread"

    def test_missing_defaults_to_player_prop(self):
        assert normalize_bet_type(None) == "player_prop"


class TestAmountsAndTimestamps:

    def test_cents_to_currency(self):
        assert to_currency(10000) == 100.0
        assert to_currency(9091) == 90.91
        assert to_currency(None) == 0.0

    def test_currency_passthrough(self):
        assert to_currency(12.5, in_cents=False) == 12.5

    def test_parse_timestamp_to_naive_utc(self):
        assert parse_timestamp("2025-01-05T18:00:00Z") == datetime(2025, 1, 5, 18, 0)
        assert parse_timestamp("2025-01-05T13:00:00-05:00") == datetime(2025, 1, 5, 18, 0)
        assert parse_timestamp(None) is None

    def test_parse_timestamp_rejects_garbage(self):
        with pytest.raises(ValueError):
            parse_timestamp("yesterday")


class TestComputeSingleLegProfit:

    def _leg(self, status, stake=100.0, payout=190.91, is_parlay=False):
        return SimpleNamespace(status=status, stake=stake, potential_payout=payout, is_parlay=is_parlay)

    def test_won_is_payout_minus_stake(self):
        assert compute_single_leg_profit(self._leg("won")) == 90.91

    def test_lost_is_negative_stake(self):
        assert compute_single_leg_profit(self._leg("lost")) == -100.0

    @pytest.mark.parametrize("status", ["pending", "void", "cancelled"])
    def test_other_statuses_are_zero(self, status):
        assert compute_single_leg_profit(self._leg(status)) == 0.0

    def test_rejects_parlay_legs(self):
        """Should refuse to settle a parlay leg in isolation."""
        with pytest.raises(ValueError):
            compute_single_leg_profit(self._leg("won", is_parlay=True))


class TestValidateLeg:

    def test_valid_leg_passes(self):
        assert validate_leg("bet-1", 100.0, -110, datetime(2025, 1, 5)) == -110

    def test_reports_every_violation_at_once(self):
        with pytest.raises(LegValidationError) as exc_info:
            validate_leg("bet-1", None, 0, None)

        error = exc_info.value
        assert error.leg_id == "bet-1"
        assert len(error.violations) == 3
        assert any(v.startswith("stake") for v in error.violations)
        assert any(v.startswith("odds") for v in error.violations)
        assert any(v.startswith("placed_at") for v in error.violations)

    def test_non_positive_stake_rejected(self):
        with pytest.raises(LegValidationError) as exc_info:
            validate_leg("bet-2", 0.0, 150, datetime(2025, 1, 5))
        assert exc_info.value.violations == ["stake: must be greater than 0 (got 0.0)"]

    def test_missing_odds_rejected(self):
        with pytest.raises(LegValidationError) as exc_info:
            validate_leg("bet-3", 25.0, None, datetime(2025, 1, 5))
        assert exc_info.value.violations == ["odds: missing"]

    @pytest.mark.parametrize("odds", ["EVEN", "1.5", 1.5, True, ""])
    def test_non_integer_odds_rejected(self, odds):
        with pytest.raises(LegValidationError) as exc_info:
            validate_leg("bet-4", 25.0, odds, datetime(2025, 1, 5))
        assert exc_info.value.violations == [f"odds: not an integer (got {odds!r})"]

    def test_zero_string_odds_rejected(self):
        with pytest.raises(LegValidationError) as exc_info:
            validate_leg("bet-5", 25.0, "0", datetime(2025, 1, 5))
        assert exc_info.value.violations == ["odds: American odds cannot be 0"]

    def test_returns_coerced_odds(self):
        assert validate_leg("bet-6", 25.0, "+150", datetime(2025, 1, 5)) == 150


class TestCoerceOdds:

    @pytest.mark.parametrize("raw,expected", [
        (-110, -110),
        ("-110", -110),
        (" +150 ", 150),
        (200.0, 200),
    ])
    def test_whole_numbers(self, raw, expected):
        assert coerce_odds(raw) == expected

    def test_garbage_raises_value_error(self):
        with pytest.raises(ValueError):
            coerce_odds("EVEN")
