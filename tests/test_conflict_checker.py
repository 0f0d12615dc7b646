"""
Trade conflict detection tests (pure, no database).
"""

from datetime import date
from types import SimpleNamespace

from app.services.conflict_checker import ConflictReport, check_conflicts
from app.services.schedule_rules import EXTERIOR, INTERIOR_FINISHING, TradeCompatibilityMatrix


def _row(trade, start, end):
    return SimpleNamespace(trade_type=trade, start_date=start, end_date=end)


MON = date(2026, 3, 2)
TUE = date(2026, 3, 3)
WED = date(2026, 3, 4)
FRI = date(2026, 3, 6)


class TestCheckConflicts:
    def test_interior_interior_overlap_conflicts(self):
        reports = check_conflicts([
            _row(INTERIOR_FINISHING, MON, FRI),
            _row(INTERIOR_FINISHING, WED, FRI),
        ])
        assert [r.date for r in reports] == [WED, date(2026, 3, 5), FRI]
        assert reports[0].trades == (INTERIOR_FINISHING,)

    def test_distinct_interior_trades_conflict(self):
        reports = check_conflicts([_row("gypse", MON, TUE), _row("peinture", TUE, WED)])
        assert reports == [ConflictReport(date=TUE, trades=("gypse", "peinture"))]

    def test_exterior_interior_overlap_is_allowed(self):
        assert check_conflicts([
            _row(EXTERIOR, MON, FRI),
            _row(INTERIOR_FINISHING, MON, FRI),
        ]) == []

    def test_unknown_trades_conflict(self):
        reports = check_conflicts([_row("electricite", MON, MON), _row("plomberie", MON, MON)])
        assert len(reports) == 1

    def test_rows_without_dates_are_ignored(self):
        assert check_conflicts([_row("gypse", MON, None), _row("peinture", MON, FRI)]) == []

    def test_weekends_never_reported(self):
        sat, sun = date(2026, 3, 7), date(2026, 3, 8)
        reports = check_conflicts([_row("gypse", FRI, date(2026, 3, 9)),
                                   _row("peinture", FRI, date(2026, 3, 9))])
        assert sat not in [r.date for r in reports]
        assert sun not in [r.date for r in reports]
        assert len(reports) == 2

    def test_custom_matrix(self):
        matrix = TradeCompatibilityMatrix(
            groups={"wet": frozenset({"plomberie"}), "dry": frozenset({"electricite"})},
            compatible_groups=frozenset({frozenset({"wet", "dry"})}),
        )
        rows = [_row("electricite", MON, MON), _row("plomberie", MON, MON)]
        assert check_conflicts(rows, matrix) == []

    def test_to_dict(self):
        report = ConflictReport(date=MON, trades=("gypse", "peinture"))
        assert report.to_dict() == {"date": "2026-03-02", "trades": ["gypse", "peinture"]}
