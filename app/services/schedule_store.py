"""
Schedule & Alert store — SQLAlchemy persistence for schedule rows and alerts.

Rules:
    - No db.session.commit() here except inside project_batch(); callers
      group every write of one operation into a single batch.
    - A batch holds the project's process lock and a row lock on the project
      for its whole duration, so cascades for one project never interleave.
    - Rows are converted to engine snapshots here and nowhere else.
"""

import logging
import threading
import weakref
from contextlib import contextmanager

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from app.core.exceptions import IntegrityViolationError, NotFoundError, PersistenceError
from app.models import db
from app.models.project import Project
from app.models.schedule import ScheduleAlert, ScheduleItem
from app.services.schedule_engine import MeasurementInfo, RecalcResult, StepSnapshot, SupplierInfo
from app.services.schedule_rules import DEFAULT_EXECUTION_ORDER

logger = logging.getLogger(__name__)

# Weak values: a project's lock lives only while some batch holds a reference to it.
_project_locks: "weakref.WeakValueDictionary[int, threading.Lock]" = weakref.WeakValueDictionary()
_registry_lock = threading.Lock()


def _lock_for(project_id: int) -> threading.Lock:
    with _registry_lock:
        lock = _project_locks.get(project_id)
        if lock is None:
            lock = _project_locks[project_id] = threading.Lock()
        return lock


@contextmanager
def project_batch(project_id: int):
    """Serialise and atomically commit every write made for one project.

    Yields the locked Project. Commits once on success; any exception rolls
    the whole batch back. Driver errors surface as PersistenceError, unique
    violations as IntegrityViolationError.
    """
    with _lock_for(project_id):
        try:
            # Rows read before the lock may be stale; reload them under it.
            db.session.expire_all()
            project = db.session.execute(
                select(Project).where(Project.id == project_id).with_for_update()
            ).scalar_one_or_none()
            if project is None:
                raise NotFoundError(resource="Project", resource_id=project_id)
            yield project
            db.session.commit()
        except IntegrityError as exc:
            db.session.rollback()
            logger.warning("Integrity error in schedule batch: %s", exc.orig,
                           extra={"project_id": project_id})
            raise IntegrityViolationError(str(exc.orig)) from exc
        except SQLAlchemyError as exc:
            db.session.rollback()
            logger.exception("Schedule batch failed", extra={"project_id": project_id})
            raise PersistenceError(str(exc)) from exc
        except Exception:
            db.session.rollback()
            raise


# ── Projects ─────────────────────────────────────────────────────────────────


def get_project(project_id: int) -> Project:
    project = db.session.get(Project, project_id)
    if project is None:
        raise NotFoundError(resource="Project", resource_id=project_id)
    return project


# ── Schedule items ───────────────────────────────────────────────────────────


def list_by_project(project_id: int) -> list[ScheduleItem]:
    """All schedule rows of a project, in execution order."""
    rows = db.session.execute(
        select(ScheduleItem).where(ScheduleItem.project_id == project_id)
    ).scalars().all()
    return DEFAULT_EXECUTION_ORDER.sort(rows)


def get_item(schedule_id: int) -> ScheduleItem:
    item = db.session.get(ScheduleItem, schedule_id)
    if item is None:
        raise NotFoundError(resource="ScheduleItem", resource_id=schedule_id)
    return item


def project_id_of(schedule_id: int) -> int:
    """Owning project of a schedule row, without loading the row itself."""
    project_id = db.session.execute(
        select(ScheduleItem.project_id).where(ScheduleItem.id == schedule_id)
    ).scalar_one_or_none()
    if project_id is None:
        raise NotFoundError(resource="ScheduleItem", resource_id=schedule_id)
    return project_id


def get_by_step(project_id: int, step_id: str) -> ScheduleItem | None:
    return db.session.execute(
        select(ScheduleItem).where(
            ScheduleItem.project_id == project_id,
            ScheduleItem.step_id == step_id,
        )
    ).scalar_one_or_none()


def upsert(project_id: int, fields: dict) -> tuple[ScheduleItem, bool]:
    """Insert or update the row keyed on (project_id, step_id).

    Returns (item, created).
    """
    step_id = fields["step_id"]
    item = get_by_step(project_id, step_id)
    created = item is None
    if created:
        item = ScheduleItem(project_id=project_id, step_id=step_id)
        db.session.add(item)
    for key, value in fields.items():
        if key != "step_id":
            setattr(item, key, value)
    db.session.flush()
    return item, created


def update_fields(schedule_id: int, fields: dict) -> ScheduleItem:
    item = get_item(schedule_id)
    for key, value in fields.items():
        setattr(item, key, value)
    return item


def delete_item(schedule_id: int) -> None:
    item = get_item(schedule_id)
    db.session.delete(item)


def to_snapshot(item: ScheduleItem) -> StepSnapshot:
    """Parse a row into the typed snapshot the engine works on."""
    return StepSnapshot(
        id=item.id,
        step_id=item.step_id,
        step_name=item.step_name,
        trade_type=item.trade_type or "autre",
        estimated_days=item.estimated_days or 1,
        actual_days=item.actual_days,
        start_date=item.start_date,
        end_date=item.end_date,
        status=item.status or "pending",
        supplier=SupplierInfo(
            name=item.supplier_name,
            phone=item.supplier_phone,
            schedule_lead_days=item.supplier_schedule_lead_days or 0,
            fabrication_lead_days=item.fabrication_lead_days or 0,
            fabrication_start_date=item.fabrication_start_date,
        ),
        measurement=MeasurementInfo(
            required=bool(item.measurement_required),
            after_step_id=item.measurement_after_step_id,
            notes=item.measurement_notes,
        ),
    )


def snapshots(project_id: int) -> list[StepSnapshot]:
    return [to_snapshot(item) for item in list_by_project(project_id)]


def apply_result(project_id: int, result: RecalcResult) -> None:
    """Write engine patches and regenerated alerts for one project."""
    if result.patches:
        rows = {
            row.id: row
            for row in db.session.execute(
                select(ScheduleItem).where(
                    ScheduleItem.project_id == project_id,
                    ScheduleItem.id.in_(list(result.patches)),
                )
            ).scalars()
        }
        for item_id, patch in result.patches.items():
            row = rows.get(item_id)
            if row is None:
                raise NotFoundError(resource="ScheduleItem", resource_id=item_id)
            for key, value in patch.items():
                setattr(row, key, value)

    replace_alerts(project_id, result.alert_item_ids, result.alerts)
    db.session.flush()


# ── Alerts ───────────────────────────────────────────────────────────────────


def replace_alerts(project_id: int, item_ids, drafts) -> int:
    """Delete the alerts of ``item_ids`` and insert ``drafts`` in their place."""
    item_ids = list(item_ids)
    if item_ids:
        db.session.execute(
            delete(ScheduleAlert).where(
                ScheduleAlert.project_id == project_id,
                ScheduleAlert.schedule_item_id.in_(item_ids),
            )
        )
    for draft in drafts:
        db.session.add(ScheduleAlert(
            project_id=project_id,
            schedule_item_id=draft.schedule_item_id,
            alert_type=draft.alert_type,
            alert_date=draft.alert_date,
            message=draft.message,
            is_dismissed=False,
        ))
    return len(drafts)


def list_alerts(project_id: int, include_dismissed: bool = False) -> list[ScheduleAlert]:
    stmt = select(ScheduleAlert).where(ScheduleAlert.project_id == project_id)
    if not include_dismissed:
        stmt = stmt.where(ScheduleAlert.is_dismissed.is_(False))
    stmt = stmt.order_by(ScheduleAlert.alert_date, ScheduleAlert.id)
    return db.session.execute(stmt).scalars().all()


def get_alert(alert_id: int) -> ScheduleAlert:
    alert = db.session.get(ScheduleAlert, alert_id)
    if alert is None:
        raise NotFoundError(resource="ScheduleAlert", resource_id=alert_id)
    return alert
