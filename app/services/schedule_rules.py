"""
Schedule rule tables — the domain knowledge the recalculation engine needs.

    - ExecutionOrder:            total order over canonical step ids
    - DelayRule / DELAY_RULES:   minimum calendar-day gap after another step ends
    - TradeCompatibilityMatrix:  which trades may share a business day

Each table is a plain value object so callers (and tests) can swap in an
alternative without touching the engine.
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Iterable, Mapping

from app.services.construction_catalog import CONSTRUCTION_STEPS
from app.services.schedule_calendar import add_calendar_days


# ── Execution order ──────────────────────────────────────────────────────────


class ExecutionOrder:
    """Strict physical construction sequence.

    Steps are always processed by rank, never by stored order or by date:
    stored dates can be stale relative to the dependency chain.
    """

    def __init__(self, step_ids: Iterable[str]):
        self._ranks: dict[str, int] = {}
        for step_id in step_ids:
            if step_id in self._ranks:
                raise ValueError(f"Duplicate step id in execution order: {step_id}")
            self._ranks[step_id] = len(self._ranks)

    def __contains__(self, step_id) -> bool:
        return step_id in self._ranks

    def __len__(self) -> int:
        return len(self._ranks)

    @property
    def step_ids(self) -> list[str]:
        return list(self._ranks)

    def rank(self, step_id: str) -> int:
        """Rank of a step; unknown steps sort after every known step."""
        return self._ranks.get(step_id, len(self._ranks))

    def sort_key(self, step_id: str) -> tuple[int, str]:
        return self.rank(step_id), step_id

    def sort(self, items, key=lambda item: item.step_id) -> list:
        """Return ``items`` sorted by execution rank (ties broken by step id)."""
        return sorted(items, key=lambda item: self.sort_key(key(item)))


DEFAULT_EXECUTION_ORDER = ExecutionOrder(s.step_id for s in CONSTRUCTION_STEPS)


# ── Delay rules ──────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class DelayRule:
    after_step: str
    days: int
    reason: str

    def earliest_start(self, after_end: date) -> date:
        # Calendar days: curing continues over weekends.
        return add_calendar_days(after_end, self.days)


DELAY_RULES: dict[str, DelayRule] = {
    "structure": DelayRule(
        after_step="excavation-fondation",
        days=21,
        reason="Cure du béton des fondations (minimum 3 semaines)",
    ),
}


def rule_earliest_start(
    step_id: str,
    end_dates: Mapping[str, date],
    rules: Mapping[str, DelayRule] = DELAY_RULES,
) -> date | None:
    """Earliest start imposed on ``step_id`` by its delay rule, if any.

    Returns None when the step has no rule or the referenced step has no
    known end date yet.
    """
    rule = rules.get(step_id)
    if rule is None:
        return None
    after_end = end_dates.get(rule.after_step)
    if after_end is None:
        return None
    return rule.earliest_start(after_end)


# ── Trade compatibility ──────────────────────────────────────────────────────


@dataclass(frozen=True)
class TradeCompatibilityMatrix:
    """Disjoint trade groups plus the group pairs declared compatible.

    Same-group pairs and any pair involving an unknown trade conflict.
    """

    groups: Mapping[str, frozenset] = field(default_factory=dict)
    compatible_groups: frozenset = frozenset()

    def __post_init__(self):
        seen: dict[str, str] = {}
        for group, trades in self.groups.items():
            for trade in trades:
                if trade in seen:
                    raise ValueError(
                        f"Trade {trade!r} is in both {seen[trade]!r} and {group!r}"
                    )
                seen[trade] = group

    def group_of(self, trade: str) -> str | None:
        """Group a trade belongs to. A group name used as a trade tag is its own group."""
        if trade in self.groups:
            return trade
        for group, trades in self.groups.items():
            if trade in trades:
                return group
        return None

    def can_overlap(self, trade_a: str, trade_b: str) -> bool:
        group_a = self.group_of(trade_a)
        group_b = self.group_of(trade_b)
        if group_a is None or group_b is None or group_a == group_b:
            return False
        return frozenset({group_a, group_b}) in self.compatible_groups


INTERIOR_FINISHING = "interior-finishing"
EXTERIOR = "exterior"

DEFAULT_TRADE_MATRIX = TradeCompatibilityMatrix(
    groups={
        INTERIOR_FINISHING: frozenset({
            "gypse", "peinture", "plancher", "ceramique",
            "armoires", "comptoirs", "finitions",
        }),
        EXTERIOR: frozenset({"exterieur", "amenagement"}),
    },
    compatible_groups=frozenset({frozenset({EXTERIOR, INTERIOR_FINISHING})}),
)


def can_overlap(trade_a: str, trade_b: str) -> bool:
    return DEFAULT_TRADE_MATRIX.can_overlap(trade_a, trade_b)
