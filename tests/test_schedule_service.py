"""
Schedule service tests — SQLite-backed, no HTTP.

Covers:
    - complete_step cascade persisted in one batch, alerts regenerated
    - atomic rollback when the store fails mid-batch
    - per-project batch serialisation and fresh reads under the lock
    - complete_step_by_step_id lazy row creation and retry idempotence
    - uncomplete_step restoration
    - update_schedule_and_recalculate: cascade, plain columns, validation
    - generate / regenerate, conflicts, alerts, upsert, delete

Calendar: 2026-03-02 is a Monday.
"""

import gc
import threading
from datetime import date

import pytest
from sqlalchemy import func, select, update
from sqlalchemy.exc import OperationalError

import app.services.schedule_service as svc
from app.core.exceptions import (
    InvalidDurationError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from app.models import db as _db
from app.models.schedule import ScheduleAlert, ScheduleItem
from app.services import schedule_store

D = lambda day: date(2026, 3, day)  # noqa: E731


def _count(model, **filters):
    stmt = select(func.count()).select_from(model).filter_by(**filters)
    return _db.session.execute(stmt).scalar()


def _by_step(schedules):
    return {s["step_id"]: s for s in schedules}


@pytest.fixture()
def rough_ins(make_item):
    """electricite(5) Mar 2–6 → plomberie(3) Mar 9–11 → hvac(4) Mar 12–17."""
    return (
        make_item("electricite", trade_type="electricite", estimated_days=5,
                  start_date=D(2), end_date=D(6)),
        make_item("plomberie", trade_type="plomberie", estimated_days=3,
                  start_date=D(9), end_date=D(11), supplier_name="Plomberie Roy",
                  supplier_schedule_lead_days=2),
        make_item("hvac", trade_type="hvac", estimated_days=4,
                  start_date=D(12), end_date=D(17)),
    )


# ═════════════════════════════════════════════════════════════════════════
# complete_step
# ═════════════════════════════════════════════════════════════════════════


class TestCompleteStep:
    def test_cascade_is_persisted(self, rough_ins):
        elec, plumb, hvac = rough_ins
        result = svc.complete_step(elec.id, actual_days=3, today=D(4))

        assert result["days_ahead"] == 2
        steps = _by_step(result["schedules"])
        assert steps["electricite"]["status"] == "completed"
        assert steps["electricite"]["end_date"] == "2026-03-04"
        assert steps["plomberie"]["start_date"] == "2026-03-05"
        assert steps["hvac"]["end_date"] == "2026-03-13"

        _db.session.expire_all()
        assert _db.session.get(ScheduleItem, plumb.id).start_date == D(5)

    def test_schedules_returned_in_execution_order(self, rough_ins):
        result = svc.complete_step(rough_ins[0].id, today=D(6))
        assert [s["step_id"] for s in result["schedules"]] == ["electricite", "plomberie", "hvac"]

    def test_alerts_regenerated(self, rough_ins):
        _, plumb, _ = rough_ins
        result = svc.complete_step(rough_ins[0].id, actual_days=3, today=D(4))

        alerts = svc.list_alerts(plumb.project_id)
        types = sorted(a["alert_type"] for a in alerts if a["schedule_item_id"] == plumb.id)
        assert types == ["supplier_call", "urgent_supplier_call"]
        assert result["alerts_created"] == len(alerts)
        assert any("Plomberie Roy" in a["message"] for a in alerts)

    def test_unknown_schedule_id(self, project):
        with pytest.raises(NotFoundError):
            svc.complete_step(9999, today=D(4))

    def test_non_positive_actual_days(self, rough_ins):
        with pytest.raises(InvalidDurationError):
            svc.complete_step(rough_ins[0].id, actual_days=0, today=D(4))
        _db.session.expire_all()
        assert _db.session.get(ScheduleItem, rough_ins[0].id).status == "scheduled"

    def test_failure_mid_batch_rolls_everything_back(self, rough_ins, monkeypatch):
        elec, plumb, _ = rough_ins

        def _boom(*args, **kwargs):
            raise OperationalError("INSERT INTO schedule_alerts", {}, Exception("disk full"))

        monkeypatch.setattr(schedule_store, "replace_alerts", _boom)
        with pytest.raises(PersistenceError):
            svc.complete_step(elec.id, actual_days=3, today=D(4))

        _db.session.expire_all()
        assert _db.session.get(ScheduleItem, elec.id).status == "scheduled"
        assert _db.session.get(ScheduleItem, plumb.id).start_date == D(9)

    def test_cascade_reads_current_row_not_cached_one(self, rough_ins):
        elec, _, _ = rough_ins
        assert elec.end_date == D(6)  # loaded in the session
        _db.session.execute(
            update(ScheduleItem)
            .where(ScheduleItem.id == elec.id)
            .values(status="completed", start_date=D(2), end_date=D(4), actual_days=3)
            .execution_options(synchronize_session=False)
        )

        result = svc.complete_step(elec.id, actual_days=3, today=D(4))

        assert result["days_ahead"] == 0
        assert _by_step(result["schedules"])["plomberie"]["start_date"] == "2026-03-05"


# ═════════════════════════════════════════════════════════════════════════
# Per-project serialisation
# ═════════════════════════════════════════════════════════════════════════


def _try_lock_from_thread(project_id):
    """Whether another thread can take the project's lock within 0.2s."""
    outcome = {}

    def _worker():
        lock = schedule_store._lock_for(project_id)
        outcome["acquired"] = lock.acquire(timeout=0.2)
        if outcome["acquired"]:
            lock.release()

    thread = threading.Thread(target=_worker)
    thread.start()
    thread.join(timeout=5)
    return outcome["acquired"]


class TestProjectBatchSerialisation:
    def test_same_project_waits_while_batch_is_open(self, project):
        with schedule_store.project_batch(project.id):
            assert _try_lock_from_thread(project.id) is False
        assert _try_lock_from_thread(project.id) is True

    def test_other_project_is_not_blocked(self, project):
        with schedule_store.project_batch(project.id):
            assert _try_lock_from_thread(project.id + 1) is True

    def test_lock_released_after_failed_batch(self, project):
        with pytest.raises(ValidationError):
            with schedule_store.project_batch(project.id):
                raise ValidationError("boom")
        assert _try_lock_from_thread(project.id) is True

    def test_idle_project_locks_are_dropped(self, project):
        with schedule_store.project_batch(project.id):
            assert project.id in schedule_store._project_locks
        gc.collect()
        assert project.id not in schedule_store._project_locks


# ═════════════════════════════════════════════════════════════════════════
# complete_step_by_step_id
# ═════════════════════════════════════════════════════════════════════════


class TestCompleteByStepId:
    def test_creates_target_and_following_rows(self, project):
        result = svc.complete_step_by_step_id(project.id, "gypse", actual_days=2, today=D(4))
        steps = _by_step(result["schedules"])

        assert list(steps) == [
            "gypse", "revetements-sol", "cuisine-sdb",
            "finitions-int", "exterieur", "inspections-finales",
        ]
        assert steps["gypse"]["status"] == "completed"
        assert (steps["gypse"]["start_date"], steps["gypse"]["end_date"]) == ("2026-03-03", "2026-03-04")
        assert steps["revetements-sol"]["start_date"] == "2026-03-05"
        assert steps["cuisine-sdb"]["supplier_schedule_lead_days"] == 35

    def test_retry_does_not_duplicate_rows(self, project):
        svc.complete_step_by_step_id(project.id, "gypse", today=D(4))
        svc.complete_step_by_step_id(project.id, "gypse", today=D(4))
        assert _count(ScheduleItem, project_id=project.id) == 6
        assert _count(ScheduleItem, project_id=project.id, step_id="gypse") == 1

    def test_unknown_step(self, project):
        with pytest.raises(NotFoundError):
            svc.complete_step_by_step_id(project.id, "piscine", today=D(4))
        assert _count(ScheduleItem, project_id=project.id) == 0

    def test_unknown_project(self):
        with pytest.raises(NotFoundError):
            svc.complete_step_by_step_id(4242, "gypse", today=D(4))


# ═════════════════════════════════════════════════════════════════════════
# uncomplete_step
# ═════════════════════════════════════════════════════════════════════════


class TestUncompleteStep:
    def test_restores_plan(self, rough_ins):
        elec = rough_ins[0]
        svc.complete_step(elec.id, actual_days=3, today=D(4))
        steps = _by_step(svc.uncomplete_step(elec.id, today=D(4))["schedules"])

        assert steps["electricite"]["status"] == "pending"
        assert steps["electricite"]["actual_days"] is None
        assert steps["plomberie"]["start_date"] == "2026-03-09"
        assert steps["hvac"]["end_date"] == "2026-03-17"

    def test_second_call_changes_nothing(self, rough_ins):
        elec = rough_ins[0]
        svc.complete_step(elec.id, actual_days=3, today=D(4))
        first = svc.uncomplete_step(elec.id, today=D(4))["schedules"]
        second = svc.uncomplete_step(elec.id, today=D(4))["schedules"]
        strip = lambda rows: [{k: v for k, v in r.items() if k != "updated_at"} for r in rows]  # noqa: E731
        assert strip(first) == strip(second)


# ═════════════════════════════════════════════════════════════════════════
# update_schedule_and_recalculate
# ═════════════════════════════════════════════════════════════════════════


class TestUpdateAndRecalculate:
    def test_duration_edit_cascades(self, rough_ins):
        _, plumb, _ = rough_ins
        result = svc.update_schedule_and_recalculate(plumb.id, {"estimated_days": 5}, today=D(2))
        steps = _by_step(result["schedules"])
        assert steps["plomberie"]["end_date"] == "2026-03-13"
        assert steps["hvac"]["start_date"] == "2026-03-16"

    def test_plain_columns_written(self, rough_ins):
        _, plumb, _ = rough_ins
        result = svc.update_schedule_and_recalculate(
            plumb.id, {"supplier_name": "Plomberie Gagnon", "notes": "Accès par le garage",
                       "unknown_field": "ignored"},
            today=D(2),
        )
        steps = _by_step(result["schedules"])
        assert steps["plomberie"]["supplier_name"] == "Plomberie Gagnon"
        assert steps["plomberie"]["notes"] == "Accès par le garage"
        assert steps["plomberie"]["start_date"] == "2026-03-09"

    def test_supplier_lead_edit_rebuilds_reminders(self, rough_ins):
        _, plumb, _ = rough_ins
        svc.update_schedule_and_recalculate(
            plumb.id, {"supplier_schedule_lead_days": 5}, today=D(2),
        )
        alerts = [a for a in svc.list_alerts(plumb.project_id) if a["schedule_item_id"] == plumb.id]
        assert [a["alert_type"] for a in alerts] == ["supplier_call"]
        assert alerts[0]["alert_date"] == "2026-03-02"

    def test_invalid_status_transition(self, rough_ins):
        elec = rough_ins[0]
        svc.complete_step(elec.id, today=D(6))
        with pytest.raises(ValidationError):
            svc.update_schedule_and_recalculate(elec.id, {"status": "scheduled"}, today=D(6))

    def test_bad_date(self, rough_ins):
        with pytest.raises(ValidationError) as exc_info:
            svc.update_schedule_and_recalculate(rough_ins[1].id, {"start_date": "09/03/2026"})
        assert "start_date" in exc_info.value.details

    def test_zero_duration(self, rough_ins):
        with pytest.raises(InvalidDurationError):
            svc.update_schedule_and_recalculate(rough_ins[1].id, {"estimated_days": 0})

    def test_completion_through_edit(self, rough_ins):
        elec = rough_ins[0]
        result = svc.update_schedule_and_recalculate(elec.id, {"status": "completed"}, today=D(4))
        steps = _by_step(result["schedules"])
        assert steps["electricite"]["status"] == "completed"
        assert steps["plomberie"]["start_date"] == "2026-03-05"


# ═════════════════════════════════════════════════════════════════════════
# Generation
# ═════════════════════════════════════════════════════════════════════════


class TestGeneration:
    def test_generate_from_stage(self, project):
        result = svc.generate_project_schedule(project.id, D(2), "finition", today=D(2))
        steps = _by_step(result["schedules"])

        assert len(steps) == 6
        assert (steps["gypse"]["start_date"], steps["gypse"]["end_date"]) == ("2026-03-02", "2026-03-20")
        assert steps["revetements-sol"]["start_date"] == "2026-03-23"
        assert {s["status"] for s in steps.values()} == {"scheduled"}

        cuisine = steps["cuisine-sdb"]
        types = sorted(a["alert_type"] for a in svc.list_alerts(project.id)
                       if a["schedule_item_id"] == cuisine["id"])
        assert types == ["fabrication_start", "measurement", "supplier_call"]

    def test_generate_twice_is_stable(self, project):
        svc.generate_project_schedule(project.id, D(2), today=D(2))
        result = svc.generate_project_schedule(project.id, D(2), today=D(2))
        assert result["touched"] == 0
        assert _count(ScheduleItem, project_id=project.id) == 17

    def test_generate_applies_delay_rule(self, project):
        steps = _by_step(svc.generate_project_schedule(project.id, D(2), "fondation",
                                                       today=D(2))["schedules"])
        foundation_end = date.fromisoformat(steps["excavation-fondation"]["end_date"])
        structure_start = date.fromisoformat(steps["structure"]["start_date"])
        assert (structure_start - foundation_end).days >= 21

    def test_generate_rejects_unknown_stage(self, project):
        with pytest.raises(ValidationError):
            svc.generate_project_schedule(project.id, D(2), "demolition")

    def test_regenerate_repairs_completed_rows(self, make_item):
        item = make_item("electricite", status="completed", actual_days=2,
                         start_date=None, end_date=D(4))
        make_item("plomberie", estimated_days=3)
        steps = _by_step(svc.regenerate_schedule(item.project_id, today=D(2))["schedules"])
        assert steps["electricite"]["start_date"] == "2026-03-03"
        assert steps["plomberie"]["start_date"] == "2026-03-05"


# ═════════════════════════════════════════════════════════════════════════
# Rows, alerts, conflicts
# ═════════════════════════════════════════════════════════════════════════


class TestRowsAndAlerts:
    def test_create_item_from_catalog(self, project):
        row = svc.create_schedule_item(project.id, {"step_id": "toiture", "start_date": "2026-03-02"})
        assert row["trade_type"] == "toiture"
        assert row["estimated_days"] == 7
        assert row["end_date"] == "2026-03-10"
        assert row["status"] == "scheduled"
        assert [a["alert_type"] for a in svc.list_alerts(project.id)] == ["supplier_call"]

    def test_create_item_is_an_upsert(self, project):
        first = svc.create_schedule_item(project.id, {"step_id": "toiture", "supplier_name": "A"})
        second = svc.create_schedule_item(project.id, {"step_id": "toiture", "notes": "Bardeaux"})
        assert first["id"] == second["id"]
        assert second["supplier_name"] == "A"
        assert second["notes"] == "Bardeaux"
        assert _count(ScheduleItem, project_id=project.id) == 1

    def test_custom_step_requires_name(self, project):
        with pytest.raises(ValidationError):
            svc.create_schedule_item(project.id, {"step_id": "piscine"})
        row = svc.create_schedule_item(project.id, {"step_id": "piscine", "step_name": "Piscine"})
        assert row["trade_type"] == "autre"

    def test_delete_item_removes_its_alerts(self, project):
        row = svc.create_schedule_item(project.id, {"step_id": "toiture", "start_date": "2026-03-02"})
        svc.delete_schedule_item(row["id"])
        assert _count(ScheduleItem, project_id=project.id) == 0
        assert _count(ScheduleAlert, project_id=project.id) == 0

    def test_dismiss_is_idempotent(self, project):
        svc.create_schedule_item(project.id, {"step_id": "toiture", "start_date": "2026-03-02"})
        alert_id = svc.list_alerts(project.id)[0]["id"]

        assert svc.dismiss_alert(alert_id)["is_dismissed"] is True
        assert svc.dismiss_alert(alert_id)["is_dismissed"] is True
        assert svc.list_alerts(project.id) == []
        assert len(svc.list_alerts(project.id, include_dismissed=True)) == 1

    def test_dismiss_unknown_alert(self):
        with pytest.raises(NotFoundError):
            svc.dismiss_alert(123)

    def test_conflicts(self, make_item):
        make_item("gypse", trade_type="gypse", start_date=D(2), end_date=D(4))
        item = make_item("revetements-sol", trade_type="plancher", start_date=D(4), end_date=D(5))
        make_item("exterieur", trade_type="exterieur", start_date=D(2), end_date=D(6))
        assert svc.check_project_conflicts(item.project_id) == [
            {"date": "2026-03-04", "trades": ["gypse", "plancher", "exterieur"]},
        ]

    def test_project_duration(self):
        assert svc.project_duration("finition")["business_days"] == 15 + 7 + 10 + 10 + 15 + 5
