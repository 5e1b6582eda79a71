"""
Parlay grouping for aggregator bet slips.

A slip with one leg is a standalone bet; a slip with two or more legs is a
parlay. Every leg of a parlay shares a ``parlay_id`` derived from the slip's
own id, so re-syncing the same slip always produces the same group. The first
leg that passes validation is the primary leg: it alone carries the slip's
stake, payout and profit. That designation is made here, once, before anything
is written. Rejected legs are not stored, but their reported status still
counts toward the parlay's outcome.
"""
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from app.core.exceptions import LegValidationError
from app.core.logging import get_logger
from app.services.settlement.normalizer import (
    compute_single_leg_profit,
    normalize_bet_type,
    normalize_side,
    normalize_status,
    parse_timestamp,
    to_currency,
    validate_leg,
)
from app.services.settlement.profit_calculator import (
    LegState,
    rejected_leg_outcome,
    settle_parlay,
    settle_single,
)

logger = get_logger(__name__)


@dataclass
class NormalizedLeg:
    """One leg, normalized and ready to be upserted as a ``bets`` row."""
    user_id: str
    external_bet_id: str
    parlay_id: Optional[str]
    is_parlay: bool
    leg_index: int
    odds: int
    stake: float
    potential_payout: float
    status: str
    placed_at: datetime
    is_primary: bool = False
    parlay_leg_count: Optional[int] = None
    profit: Optional[float] = None
    settled_at: Optional[datetime] = None
    game_date: Optional[datetime] = None
    sport: Optional[str] = None
    league: Optional[str] = None
    bet_type: str = "player_prop"
    bet_description: Optional[str] = None
    side: Optional[str] = None
    line_value: Optional[float] = None
    home_team: Optional[str] = None
    away_team: Optional[str] = None
    sportsbook: Optional[str] = None
    bet_source: str = "sharpsports"

    def to_row(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class GroupedSlip:
    """Result of grouping one slip: accepted legs plus per-leg rejections."""
    slip_id: str
    parlay_id: Optional[str]
    is_parlay: bool
    legs: List[NormalizedLeg] = field(default_factory=list)
    rejected: List[LegValidationError] = field(default_factory=list)
    rejected_statuses: List[str] = field(default_factory=list)

    @property
    def total_legs(self) -> int:
        return len(self.legs) + len(self.rejected)

    @property
    def total_stake(self) -> float:
        return round(sum(leg.stake for leg in self.legs), 2)


def derive_parlay_id(bet_source: str, user_id: str, slip_id: str) -> str:
    """Deterministic group id, stable across re-syncs of the same slip."""
    return str(uuid.uuid5(uuid.NAMESPACE_URL, f"{bet_source}/{user_id}/slips/{slip_id}"))


def leg_external_id(slip_id: str, raw_leg: Dict[str, Any], index: int, is_parlay: bool) -> str:
    bet_id = raw_leg.get("id")
    if is_parlay:
        return f"{slip_id}-{bet_id if bet_id else index}"
    return str(bet_id or slip_id)


def _timestamp(value: Any, label: str, slip_id: str) -> Optional[datetime]:
    try:
        return parse_timestamp(value)
    except (TypeError, ValueError):
        logger.warning(f"Slip {slip_id}: unparseable {label} {value!r}")
        return None


def group_slip(
    slip: Dict[str, Any],
    user_id: str,
    bet_source: str = "sharpsports",
    amounts_in_cents: bool = True,
) -> GroupedSlip:
    """
    Turn one aggregator slip into normalized legs sharing a parlay_id.

    Legs that fail validation are collected in ``rejected``; the remaining
    legs are still grouped and settled.
    """
    slip_id = str(slip.get("id") or "")
    raw_legs = slip.get("bets") or []
    is_parlay = len(raw_legs) > 1
    parlay_id = derive_parlay_id(bet_source, user_id, slip_id) if is_parlay else None

    slip_stake = to_currency(slip.get("atRisk"), amounts_in_cents) if slip.get("atRisk") is not None else None
    slip_to_win = to_currency(slip.get("toWin"), amounts_in_cents)
    slip_status = normalize_status(slip.get("status"), slip.get("outcome"))
    placed_at = _timestamp(slip.get("timePlaced"), "timePlaced", slip_id)
    settled_at = _timestamp(slip.get("dateClosed"), "dateClosed", slip_id)
    sportsbook = (slip.get("book") or {}).get("name")

    grouped = GroupedSlip(slip_id=slip_id, parlay_id=parlay_id, is_parlay=is_parlay)
    leg_count = len(raw_legs) if is_parlay else None

    for index, raw_leg in enumerate(raw_legs):
        external_id = leg_external_id(slip_id, raw_leg, index, is_parlay)
        odds = raw_leg.get("oddsAmerican")
        if odds is None and not is_parlay:
            odds = slip.get("oddsAmerican")

        if raw_leg.get("status"):
            status = normalize_status(raw_leg.get("status"), raw_leg.get("outcome"))
        else:
            status = slip_status

        try:
            american = validate_leg(external_id, slip_stake, odds, placed_at)
        except LegValidationError as e:
            logger.warning(str(e))
            grouped.rejected.append(e)
            grouped.rejected_statuses.append(status)
            continue

        event = raw_leg.get("event") or {}
        is_primary = not grouped.legs
        stake = slip_stake if is_primary else 0.0

        grouped.legs.append(NormalizedLeg(
            user_id=user_id,
            external_bet_id=external_id,
            parlay_id=parlay_id,
            is_parlay=is_parlay,
            leg_index=index,
            odds=american,
            stake=stake,
            potential_payout=round(stake + slip_to_win, 2) if is_primary else 0.0,
            status=status,
            placed_at=placed_at,
            is_primary=is_primary,
            parlay_leg_count=leg_count,
            settled_at=settled_at if status != "pending" else None,
            game_date=_timestamp(event.get("startTime"), "startTime", slip_id),
            sport=event.get("sport"),
            league=event.get("league"),
            bet_type=normalize_bet_type(raw_leg.get("proposition")),
            bet_description=raw_leg.get("bookDescription"),
            side=normalize_side(raw_leg.get("position")),
            line_value=raw_leg.get("line"),
            home_team=(event.get("contestantHome") or {}).get("fullName"),
            away_team=(event.get("contestantAway") or {}).get("fullName"),
            sportsbook=sportsbook,
            bet_source=bet_source,
        ))

    _apply_profits(grouped)
    return grouped


def _apply_profits(grouped: GroupedSlip) -> None:
    """Settle the slip's accepted legs with the same rules the reconciler uses."""
    if not grouped.legs:
        return

    if not grouped.is_parlay:
        leg = grouped.legs[0]
        leg.profit = settle_single(leg.status, leg.stake, leg.odds)
        if leg.profit is not None:
            book_profit = compute_single_leg_profit(leg)
            if abs(book_profit - leg.profit) > 0.01:
                logger.warning(
                    f"Bet {leg.external_bet_id}: book-reported profit {book_profit} "
                    f"differs from odds-derived profit {leg.profit}"
                )
        return

    profits = settle_parlay(
        [
            LegState(
                key=leg.external_bet_id,
                status=leg.status,
                odds=leg.odds,
                stake=leg.stake,
                is_primary=leg.is_primary,
            )
            for leg in grouped.legs
        ],
        unstored=[rejected_leg_outcome(status) for status in grouped.rejected_statuses],
    )
    for leg in grouped.legs:
        leg.profit = profits[leg.external_bet_id]
