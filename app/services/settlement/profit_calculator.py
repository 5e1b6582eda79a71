"""
Settlement rule engine.

Each leg's current status becomes a tagged outcome (Pending, Lost, Push or
Won carrying its decimal odds). A parlay's outcome is a pure fold over its
legs' outcomes, and the profit to store on every leg follows from that single
value. Only the primary leg (``is_primary``) ever receives a nonzero profit;
every other leg stores 0 once resolved, or None while unresolved.

Usage:
    from app.services.settlement.profit_calculator import calculate_profits

    profits = calculate_profits(db.query(Bet).filter(Bet.user_id == user_id).all())
"""
from dataclasses import dataclass
from functools import reduce
from itertools import chain
from typing import Dict, Iterable, List, Optional, Sequence, Union

from app.core.exceptions import OddsConversionError

# Mirrored verbatim by GET /api/v1/settlement/reconcile. Keep in sync with the code below.
SETTLEMENT_RULES: List[str] = [
    "Standalone bet: won => stake * (decimalOdds - 1); lost => -stake; "
    "void/cancelled => 0; pending => null.",
    "Parlay, any leg lost => the whole parlay is lost: primary leg profit = -stake "
    "(the full original wager), all other legs profit = 0.",
    "Parlay, no leg lost and any leg pending => profit = null on every leg (unresolved).",
    "Parlay, every leg void/cancelled => push: primary leg profit = 0, all other legs = 0.",
    "Parlay, otherwise (won legs, possibly with void/cancelled legs) => combined decimal odds = "
    "product of the decimal odds of the won legs only (void/cancelled legs count as 1.0); "
    "primary leg profit = stake * (combinedDecimalOdds - 1), all other legs = 0.",
    "Parlay legs rejected at ingestion still count toward the outcome: a rejected lost leg "
    "loses the parlay, a rejected void/cancelled leg counts as 1.0, any other rejected leg "
    "keeps the parlay unresolved.",
]

PROFIT_TOLERANCE = 0.005


# =============================================================================
# LEG OUTCOMES
# =============================================================================

@dataclass(frozen=True)
class Pending:
    """Leg not yet resolved."""


@dataclass(frozen=True)
class Lost:
    """Leg lost."""


@dataclass(frozen=True)
class Push:
    """Leg void or cancelled: stake returned, contributes 1.0 to the multiplier."""


@dataclass(frozen=True)
class Won:
    """Leg won at the given decimal odds."""
    decimal_odds: float


LegOutcome = Union[Pending, Lost, Push, Won]


def american_to_decimal(american: int) -> float:
    """Convert American odds to decimal odds (total return per unit staked)."""
    if not american:
        raise OddsConversionError("American odds cannot be zero")
    if american > 0:
        return 1 + american / 100
    return 1 + 100 / abs(american)


def leg_outcome(status: Optional[str], odds: Optional[int]) -> LegOutcome:
    """Map a stored leg status to its outcome variant."""
    status = (status or "").lower()
    if status == "won":
        return Won(american_to_decimal(odds))
    if status == "lost":
        return Lost()
    if status in ("void", "cancelled"):
        return Push()
    return Pending()


def combine(acc: LegOutcome, leg: LegOutcome) -> LegOutcome:
    """Fold step: Lost dominates Pending, which dominates Won/Push."""
    if isinstance(acc, Lost) or isinstance(leg, Lost):
        return Lost()
    if isinstance(acc, Pending) or isinstance(leg, Pending):
        return Pending()
    if isinstance(acc, Won) and isinstance(leg, Won):
        return Won(acc.decimal_odds * leg.decimal_odds)
    if isinstance(leg, Won):
        return leg
    return acc


def fold_outcomes(outcomes: Iterable[LegOutcome]) -> LegOutcome:
    """Combine leg outcomes into the parlay outcome. An empty parlay is a push."""
    return reduce(combine, outcomes, Push())


def outcome_profit(outcome: LegOutcome, stake: float) -> Optional[float]:
    """Profit on the real-money wager for a settled (or unsettled) outcome."""
    if isinstance(outcome, Pending):
        return None
    if isinstance(outcome, Lost):
        return round_currency(-stake)
    if isinstance(outcome, Push):
        return 0.0
    return round_currency(stake * (outcome.decimal_odds - 1))


# =============================================================================
# STANDALONE AND PARLAY SETTLEMENT
# =============================================================================

def settle_single(status: Optional[str], stake: float, odds: Optional[int]) -> Optional[float]:
    """Profit for a standalone bet."""
    return outcome_profit(leg_outcome(status, odds), stake or 0.0)


@dataclass(frozen=True)
class LegState:
    """The inputs the calculator needs from one stored or incoming leg."""
    key: str
    status: Optional[str]
    odds: Optional[int]
    stake: float
    is_primary: bool


def rejected_leg_outcome(status: Optional[str]) -> LegOutcome:
    """
    Outcome of a leg that was rejected before it could be stored.

    Its odds are unusable, so only a loss or a void can be settled from it;
    anything else keeps the parlay unresolved.
    """
    status = (status or "").lower()
    if status == "lost":
        return Lost()
    if status in ("void", "cancelled"):
        return Push()
    return Pending()


def settle_parlay(
    legs: Sequence[LegState],
    unstored: Sequence[LegOutcome] = (),
) -> Dict[str, Optional[float]]:
    """
    Compute the profit to store on every leg of one parlay.

    Args:
        legs: The parlay's stored (or about to be stored) legs
        unstored: Outcomes of legs of the same slip that were rejected

    Returns:
        Mapping of leg key to profit (None while unresolved)
    """
    if not legs:
        return {}

    outcome = parlay_outcome(legs, unstored)
    primary = find_primary(legs)
    primary_profit = outcome_profit(outcome, primary.stake if primary else 0.0)
    sibling_profit = None if isinstance(outcome, Pending) else 0.0

    results = {leg.key: sibling_profit for leg in legs}
    if primary is not None:
        results[primary.key] = primary_profit
    return results


def find_primary(legs: Sequence[LegState]) -> Optional[LegState]:
    """The leg designated primary at ingestion, if it was persisted."""
    candidates = [leg for leg in legs if leg.is_primary]
    if not candidates:
        return None
    return min(candidates, key=lambda leg: leg.key)


def parlay_outcome(legs: Sequence[LegState], unstored: Sequence[LegOutcome] = ()) -> LegOutcome:
    """Outcome of a parlay without computing per-leg profits."""
    return fold_outcomes(chain((leg_outcome(leg.status, leg.odds) for leg in legs), unstored))


def missing_legs(bets: Sequence) -> int:
    """How many legs of a stored parlay group were never stored."""
    expected = max((bet.parlay_leg_count or 0 for bet in bets), default=0)
    return max(expected - len(bets), 0)


def leg_state(bet) -> LegState:
    """Build a LegState from a Bet row (or anything with the same attributes)."""
    return LegState(
        key=bet.id,
        status=bet.status,
        odds=bet.odds,
        stake=bet.stake or 0.0,
        is_primary=bool(bet.is_primary),
    )


def calculate_profits(bets: Iterable) -> Dict[str, Optional[float]]:
    """
    Calculate profits for a collection of stored bets.

    Standalone bets (no parlay_id) are settled individually; bets sharing a
    parlay_id are settled together. A group missing some of its legs can only
    be settled here when its stored legs already lose; otherwise its legs are
    left out of the result and their stored profit stands.
    """
    results: Dict[str, Optional[float]] = {}
    groups: Dict[str, List] = {}

    for bet in bets:
        if bet.parlay_id is None:
            results[bet.id] = settle_single(bet.status, bet.stake or 0.0, bet.odds)
        else:
            groups.setdefault(bet.parlay_id, []).append(bet)

    for group in groups.values():
        legs = [leg_state(bet) for bet in group]
        if missing_legs(group) and not isinstance(parlay_outcome(legs), Lost):
            continue
        results.update(settle_parlay(legs))

    return results


# =============================================================================
# HELPERS
# =============================================================================

def round_currency(amount: float) -> float:
    return round(amount, 2) + 0.0  # + 0.0 folds -0.0 into 0.0


def profits_match(stored: Optional[float], expected: Optional[float]) -> bool:
    """Compare two profit values; None only matches None."""
    if stored is None or expected is None:
        return stored is None and expected is None
    return abs(stored - expected) < PROFIT_TOLERANCE
