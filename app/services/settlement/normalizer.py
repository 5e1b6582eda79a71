"""
Aggregator field normalization.

Maps the raw values the aggregator reports (bet status, position, proposition
text) onto the canonical enumerations the ``bets`` table accepts, validates a
raw leg before it is grouped, and converts feed amounts into currency.
"""
from datetime import datetime
from typing import Any, List, Optional

from app.core.exceptions import LegValidationError
from app.core.logging import get_logger

logger = get_logger(__name__)

_STATUS_ALIASES = {
    "won": "won",
    "win": "won",
    "w": "won",
    "lost": "lost",
    "lose": "lost",
    "loss": "lost",
    "l": "lost",
    "pending": "pending",
    "open": "pending",
    "active": "pending",
    "cancelled": "void",
    "canceled": "void",
    "void": "void",
    "push": "void",
}

_COMPLETED_OUTCOMES = {
    "win": "won",
    "won": "won",
    "cashout": "won",
    "loss": "lost",
    "lost": "lost",
    "lose": "lost",
    "push": "void",
    "void": "void",
}

_SIDE_KEYWORDS = ("over", "under", "home", "away")

# Checked in order; first match wins.
_BET_TYPE_KEYWORDS = [
    ("spread", ("spread", "point spread", "run line")),
    ("total", ("total", "over/under")),
    ("moneyline", ("moneyline", "money line")),
    ("first_half", ("first half", "1st half")),
    ("quarter", ("quarter",)),
    ("period", ("period",)),
    ("game_prop", ("inning", "exact score", "correct score")),
]

DEFAULT_BET_TYPE = "player_prop"


def normalize_status(raw: Optional[str], outcome: Optional[str] = None) -> str:
    """
    Map a raw aggregator status to pending, won, lost or void.

    A ``completed`` status carries its result in ``outcome``. Anything
    unrecognized stays pending so the bet is never dropped.
    """
    if not raw:
        return "pending"

    status = raw.strip().lower()
    if status == "completed":
        resolved = _COMPLETED_OUTCOMES.get((outcome or "").strip().lower())
        if resolved is None:
            logger.debug(f"Completed bet with unclear outcome {outcome!r}, keeping pending")
            return "pending"
        return resolved

    resolved = _STATUS_ALIASES.get(status)
    if resolved is None:
        logger.warning(f"Unknown bet status {raw!r}, defaulting to pending")
        return "pending"
    return resolved


def normalize_side(raw: Optional[str]) -> Optional[str]:
    """Return over, under, home or away when the position names one, else None."""
    if not raw:
        return None
    lower = raw.lower()
    for keyword in _SIDE_KEYWORDS:
        if keyword in lower:
            return keyword
    return None


def normalize_bet_type(raw: Optional[str]) -> str:
    if not raw:
        return DEFAULT_BET_TYPE
    lower = raw.lower()
    for bet_type, keywords in _BET_TYPE_KEYWORDS:
        if any(keyword in lower for keyword in keywords):
            return bet_type
    return DEFAULT_BET_TYPE


def to_currency(amount: Any, in_cents: bool = True) -> float:
    """Convert a feed amount to currency units. Missing amounts become 0."""
    if amount is None:
        return 0.0
    value = float(amount)
    return round(value / 100, 2) if in_cents else round(value, 2)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 feed timestamp into a naive UTC datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.replace(tzinfo=None)
    text = str(value).replace("Z", "+00:00")
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is not None:
        parsed = (parsed - parsed.utcoffset()).replace(tzinfo=None)
    return parsed


def compute_single_leg_profit(leg) -> float:
    """
    Book-reported profit of a standalone bet.

    won => potential_payout - stake, lost => -stake, anything else => 0.
    Never valid for a parlay leg; those settle through the profit calculator.
    """
    if leg.is_parlay:
        raise ValueError("compute_single_leg_profit cannot be used for parlay legs")
    if leg.status == "won":
        return round(leg.potential_payout - leg.stake, 2)
    if leg.status == "lost":
        return round(-leg.stake, 2)
    return 0.0


def coerce_odds(raw: Any) -> int:
    """
    Read an American odds value as an integer.

    Accepts ints, integral floats and numeric strings such as ``"+150"``.

    Raises:
        ValueError: when the value is not a whole number
    """
    if isinstance(raw, bool):
        raise ValueError(f"not an integer (got {raw!r})")
    if isinstance(raw, int):
        return raw
    if isinstance(raw, float):
        if not raw.is_integer():
            raise ValueError(f"not an integer (got {raw!r})")
        return int(raw)
    try:
        return int(str(raw).strip())
    except ValueError:
        raise ValueError(f"not an integer (got {raw!r})") from None


def validate_leg(
    leg_id: str,
    stake: Optional[float],
    odds: Any,
    placed_at: Optional[datetime],
) -> int:
    """
    Reject a malformed leg.

    Returns:
        The leg's odds as an integer

    Raises:
        LegValidationError: listing every violated field, not just the first
    """
    violations: List[str] = []

    if stake is None:
        violations.append("stake: missing")
    elif stake <= 0:
        violations.append(f"stake: must be greater than 0 (got {stake})")

    american = None
    if odds is None:
        violations.append("odds: missing")
    else:
        try:
            american = coerce_odds(odds)
        except ValueError as e:
            violations.append(f"odds: {e}")
        else:
            if american == 0:
                violations.append("odds: American odds cannot be 0")

    if placed_at is None:
        violations.append("placed_at: missing placement timestamp")

    if violations:
        raise LegValidationError(leg_id, violations)
    return american
