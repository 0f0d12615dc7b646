"""
Trade conflict detector.

Read-only diagnostic: reports every business day on which incompatible
trades overlap. It never blocks scheduling; callers surface the result as a
warning.
"""

import logging
from dataclasses import dataclass
from datetime import date

from app.services.schedule_calendar import iter_business_days, to_iso
from app.services.schedule_rules import DEFAULT_TRADE_MATRIX, TradeCompatibilityMatrix

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConflictReport:
    date: date
    trades: tuple[str, ...]

    def to_dict(self) -> dict:
        return {"date": to_iso(self.date), "trades": list(self.trades)}


def _has_real_conflict(occupants: list[str], matrix: TradeCompatibilityMatrix) -> bool:
    for i, trade_a in enumerate(occupants):
        for trade_b in occupants[i + 1:]:
            if not matrix.can_overlap(trade_a, trade_b):
                return True
    return False


def check_conflicts(
    schedules,
    matrix: TradeCompatibilityMatrix = DEFAULT_TRADE_MATRIX,
) -> list[ConflictReport]:
    """Return the dates where at least one pair of trades present cannot overlap.

    Args:
        schedules: Objects exposing ``start_date``, ``end_date`` and
            ``trade_type`` (ORM rows or engine snapshots). Items missing
            either date are ignored.
        matrix: Trade compatibility rules.

    Returns:
        ConflictReport list sorted by date; ``trades`` lists every trade
        present that day in first-seen order.
    """
    # One entry per step on site that day; two steps sharing a trade still clash.
    occupants_by_day: dict[date, list[str]] = {}

    for item in schedules:
        if not item.start_date or not item.end_date:
            continue
        for day in iter_business_days(item.start_date, item.end_date):
            occupants_by_day.setdefault(day, []).append(item.trade_type)

    conflicts = [
        ConflictReport(date=day, trades=tuple(dict.fromkeys(occupants)))
        for day, occupants in sorted(occupants_by_day.items())
        if len(occupants) > 1 and _has_real_conflict(occupants, matrix)
    ]
    if conflicts:
        logger.debug("Trade conflicts on %d business day(s)", len(conflicts))
    return conflicts
