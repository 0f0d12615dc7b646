"""
Schedule Service — orchestration layer for project schedules.

Business logic for:
    - Step completion:       complete_step, complete_step_by_step_id
    - Plan restoration:      uncomplete_step
    - Manual edits:          update_schedule_and_recalculate
    - Schedule generation:   generate_project_schedule, regenerate_schedule
    - Diagnostics:           check_project_conflicts, project_duration
    - Alerts:                list_alerts, dismiss_alert
    - CRUD:                  projects and schedule rows

Every mutating operation follows the same shape:
    project_batch(project_id)  →  read a fresh snapshot  →  engine (pure)
    →  schedule_store.apply_result  →  single commit

and returns the updated slice of state so callers refresh their own view.

Rules:
    - db.session.commit() happens only through schedule_store.project_batch
      or in the small non-schedule writes below.
    - ``today`` is injectable on every date-dependent operation; it defaults
      to date.today().
"""

import logging
from datetime import date

from flask import current_app, has_app_context

from app.core.exceptions import InvalidDurationError, NotFoundError, ValidationError
from app.models import db
from app.models.project import Project
from app.models.schedule import (
    EDITABLE_FIELDS,
    SCHEDULE_STATUSES,
    validate_status_transition,
)
from app.services import construction_catalog as catalog
from app.services import schedule_store as store
from app.services.conflict_checker import check_conflicts
from app.services.schedule_calendar import end_for_duration, parse_iso
from app.services.schedule_engine import (
    URGENT_CALL_DAYS_AHEAD,
    URGENT_CALL_DAYS_PAST,
    RecalculationEngine,
)

logger = logging.getLogger(__name__)

# Columns the engine owns; every other editable column is written as-is.
_ENGINE_FIELDS = ("status", "start_date", "end_date", "estimated_days", "actual_days")
_DATE_FIELDS = ("start_date", "end_date", "fabrication_start_date")
_INT_FIELDS = (
    "estimated_days", "actual_days",
    "supplier_schedule_lead_days", "fabrication_lead_days",
)


def _config(key: str, default):
    if has_app_context():
        return current_app.config.get(key, default)
    return default


def get_engine() -> RecalculationEngine:
    """Engine configured from the current app (defaults outside a request)."""
    return RecalculationEngine(
        urgent_days_ahead=_config("SCHEDULE_URGENT_CALL_DAYS_AHEAD", URGENT_CALL_DAYS_AHEAD),
        urgent_days_past=_config("SCHEDULE_URGENT_CALL_DAYS_PAST", URGENT_CALL_DAYS_PAST),
    )


def _default_supplier_lead_days() -> int:
    return _config("SCHEDULE_DEFAULT_SUPPLIER_LEAD_DAYS", catalog.DEFAULT_SUPPLIER_LEAD_DAYS)


def _serialize(project_id: int) -> list[dict]:
    return [item.to_dict() for item in store.list_by_project(project_id)]


# ── Input parsing ────────────────────────────────────────────────────────────


def parse_schedule_fields(data: dict) -> dict:
    """Whitelist and type-convert editable schedule columns.

    Raises:
        ValidationError: bad date/integer/status value.
        InvalidDurationError: non-positive estimated_days / actual_days.
    """
    fields: dict = {}
    errors: dict[str, str] = {}

    for key in EDITABLE_FIELDS:
        if key not in data:
            continue
        value = data[key]

        if key in _DATE_FIELDS:
            try:
                fields[key] = parse_iso(value)
            except (TypeError, ValueError):
                errors[key] = "Invalid date. Use YYYY-MM-DD."
        elif key in _INT_FIELDS:
            if value is None and key == "actual_days":
                fields[key] = None
                continue
            if isinstance(value, bool):
                errors[key] = "Must be an integer."
                continue
            try:
                fields[key] = int(value)
            except (TypeError, ValueError):
                errors[key] = "Must be an integer."
        elif key == "measurement_required":
            fields[key] = bool(value)
        elif key == "status":
            if value not in SCHEDULE_STATUSES:
                errors[key] = f"Must be one of: {', '.join(sorted(SCHEDULE_STATUSES))}."
            else:
                fields[key] = value
        else:
            fields[key] = value

    if errors:
        raise ValidationError("Validation failed", details=errors)

    for key in ("estimated_days", "actual_days"):
        if fields.get(key) is not None and fields[key] <= 0:
            raise InvalidDurationError(fields[key], field=key)
    for key in ("supplier_schedule_lead_days", "fabrication_lead_days"):
        if fields.get(key) is not None and fields[key] < 0:
            raise ValidationError(f"{key} must be >= 0", details={key: "must be >= 0"})
    return fields


# ── Projects ─────────────────────────────────────────────────────────────────


def create_project(data: dict) -> dict:
    """Register a project. Body keys: name (required), target_start_date, current_stage."""
    name = (data.get("name") or "").strip()
    if not name:
        raise ValidationError("name is required", details={"name": "required"})
    stage = data.get("current_stage")
    if stage and stage not in catalog.STAGE_TO_STEP:
        raise ValidationError(
            f"current_stage must be one of: {', '.join(catalog.STAGE_TO_STEP)}",
            details={"current_stage": "invalid"},
        )
    try:
        target_start = parse_iso(data.get("target_start_date"))
    except (TypeError, ValueError) as exc:
        raise ValidationError("Invalid date. Use YYYY-MM-DD.",
                              details={"target_start_date": "invalid"}) from exc

    project = Project(name=name, target_start_date=target_start, current_stage=stage)
    db.session.add(project)
    db.session.commit()
    logger.info("Project created: %s", project.name, extra={"project_id": project.id})
    return project.to_dict()


def get_project(project_id: int) -> dict:
    return store.get_project(project_id).to_dict()


# ── Queries ──────────────────────────────────────────────────────────────────


def list_schedule(project_id: int) -> list[dict]:
    """Schedule rows of a project, ordered by execution rank."""
    store.get_project(project_id)
    return _serialize(project_id)


def list_alerts(project_id: int, include_dismissed: bool = False) -> list[dict]:
    store.get_project(project_id)
    return [a.to_dict() for a in store.list_alerts(project_id, include_dismissed)]


def check_project_conflicts(project_id: int) -> list[dict]:
    """Business days on which incompatible trades overlap (warning only)."""
    store.get_project(project_id)
    return [c.to_dict() for c in check_conflicts(store.list_by_project(project_id))]


def project_duration(current_stage: str | None = None) -> dict:
    return {
        "current_stage": current_stage,
        "business_days": catalog.total_project_duration(current_stage),
    }


def list_catalog() -> list[dict]:
    return [step.to_dict() for step in catalog.CONSTRUCTION_STEPS]


# ── Alerts ───────────────────────────────────────────────────────────────────


def dismiss_alert(alert_id: int) -> dict:
    """Dismiss an alert. Dismissing twice is a no-op."""
    alert = store.get_alert(alert_id)
    if not alert.is_dismissed:
        alert.is_dismissed = True
        db.session.commit()
        logger.debug("Alert %s dismissed", alert_id, extra={"project_id": alert.project_id})
    return alert.to_dict()


# ── Schedule rows ────────────────────────────────────────────────────────────


def create_schedule_item(project_id: int, data: dict) -> dict:
    """Create (or update) the row for one step.

    A new row starts from the catalog defaults; an existing row only
    receives the supplied columns.
    """
    step_id = (data.get("step_id") or "").strip()
    if not step_id:
        raise ValidationError("step_id is required", details={"step_id": "required"})

    fields = parse_schedule_fields(data)
    if "trade_type" in fields and "trade_color" not in fields:
        fields["trade_color"] = catalog.get_trade_color(fields["trade_type"])

    with store.project_batch(project_id):
        existing = store.get_by_step(project_id, step_id)
        if existing is not None:
            row = dict(fields)
            current = {"start_date": existing.start_date, "end_date": existing.end_date,
                       "estimated_days": existing.estimated_days,
                       "actual_days": existing.actual_days}
        else:
            row = {**_new_row_defaults(step_id, fields), **fields}
            row.setdefault("status", "scheduled" if row.get("start_date") else "pending")
            current = {}

        merged = {**current, **row}
        if merged.get("start_date") and ("start_date" in row or "estimated_days" in row) \
                and "end_date" not in row:
            row["end_date"] = merged["end_date"] = end_for_duration(
                merged["start_date"], merged.get("actual_days") or merged.get("estimated_days") or 1,
            )
        if merged.get("start_date") and merged.get("end_date") \
                and merged["end_date"] < merged["start_date"]:
            raise ValidationError("end_date must not be before start_date",
                                  details={"end_date": "before start_date"})

        item, created = store.upsert(project_id, {**row, "step_id": step_id})
        result = get_engine().regenerate_alerts_for(store.snapshots(project_id), [item.id])
        store.apply_result(project_id, result)
        payload = item.to_dict()

    logger.info("Schedule row %s for %s", "created" if created else "updated", step_id,
                extra={"project_id": project_id, "step_id": step_id})
    return payload


def _new_row_defaults(step_id: str, fields: dict) -> dict:
    if catalog.get_step(step_id):
        return catalog.default_row_fields(step_id, _default_supplier_lead_days())
    if not fields.get("step_name"):
        raise ValidationError(
            f"Unknown step {step_id!r}: step_name is required",
            details={"step_name": "required"},
        )
    trade = fields.get("trade_type") or catalog.DEFAULT_TRADE_TYPE
    return {"trade_type": trade, "trade_color": catalog.get_trade_color(trade)}


def delete_schedule_item(schedule_id: int) -> None:
    """Explicit project-step removal (the only hard delete)."""
    project_id = store.project_id_of(schedule_id)
    with store.project_batch(project_id):
        store.delete_item(schedule_id)
    logger.info("Schedule row %s deleted", schedule_id, extra={"project_id": project_id})


# ── Recalculation operations ─────────────────────────────────────────────────


def complete_step(schedule_id: int, actual_days: int | None = None,
                  today: date | None = None) -> dict:
    """Mark a step completed today and cascade every later step.

    Returns:
        {days_ahead, alerts_created, schedules}
    """
    today = today or date.today()
    project_id = store.project_id_of(schedule_id)

    with store.project_batch(project_id):
        result = get_engine().complete(
            store.snapshots(project_id), schedule_id, today, actual_days,
        )
        store.apply_result(project_id, result)

    logger.info(
        "Step %s completed: days_ahead=%d, %d row(s) changed, %d alert(s)",
        schedule_id, result.days_ahead, result.touched, result.alerts_created,
        extra={"project_id": project_id, "schedule_id": schedule_id},
    )
    return {**result.summary(), "schedules": _serialize(project_id)}


def complete_step_by_step_id(project_id: int, step_id: str, actual_days: int | None = None,
                             today: date | None = None) -> dict:
    """Complete a canonical step, creating its row (and missing later rows) first.

    Upserts on (project_id, step_id), so a retry never duplicates rows.
    """
    today = today or date.today()
    if catalog.get_step(step_id) is None:
        raise NotFoundError(resource="ConstructionStep", resource_id=step_id)
    if actual_days is not None and actual_days <= 0:
        raise InvalidDurationError(actual_days)

    engine = get_engine()
    lead_days = _default_supplier_lead_days()
    with store.project_batch(project_id):
        target = store.get_by_step(project_id, step_id)
        if target is None:
            target, _ = store.upsert(project_id, {
                **catalog.default_row_fields(step_id, lead_days),
                "status": "pending",
            })
        target_rank = engine.order.rank(step_id)
        for step in catalog.CONSTRUCTION_STEPS:
            if engine.order.rank(step.step_id) > target_rank \
                    and store.get_by_step(project_id, step.step_id) is None:
                store.upsert(project_id, {
                    **catalog.default_row_fields(step.step_id, lead_days),
                    "status": "pending",
                })

        result = engine.complete(store.snapshots(project_id), target.id, today, actual_days)
        store.apply_result(project_id, result)

    logger.info(
        "Step %s completed by step id: days_ahead=%d, %d row(s) changed",
        step_id, result.days_ahead, result.touched,
        extra={"project_id": project_id, "step_id": step_id},
    )
    return {**result.summary(), "schedules": _serialize(project_id)}


def uncomplete_step(schedule_id: int, today: date | None = None) -> dict:
    """Revert a completion and restore the estimated plan from that step onward."""
    today = today or date.today()
    project_id = store.project_id_of(schedule_id)

    with store.project_batch(project_id):
        result = get_engine().uncomplete(store.snapshots(project_id), schedule_id, today)
        store.apply_result(project_id, result)

    logger.info("Step %s un-completed: %d row(s) changed", schedule_id, result.touched,
                extra={"project_id": project_id, "schedule_id": schedule_id})
    return {"schedules": _serialize(project_id)}


def update_schedule_and_recalculate(schedule_id: int, data: dict,
                                    today: date | None = None) -> dict:
    """Apply a manual edit to one step and cascade every later step.

    The snapshot is re-read inside the project batch, never taken from a
    caller-side cache, so concurrent edits cannot double-shift dates.
    """
    today = today or date.today()
    fields = parse_schedule_fields(data)
    project_id = store.project_id_of(schedule_id)

    with store.project_batch(project_id):
        item = store.get_item(schedule_id)
        new_status = fields.get("status")
        if new_status and not validate_status_transition(item.status, new_status):
            raise ValidationError(f"Invalid transition: {item.status} → {new_status}")

        engine_fields = {k: fields.pop(k) for k in _ENGINE_FIELDS if k in fields}
        if "trade_type" in fields and "trade_color" not in fields:
            fields["trade_color"] = catalog.get_trade_color(fields["trade_type"])
        store.update_fields(schedule_id, fields)
        db.session.flush()

        result = get_engine().apply_edit(
            store.snapshots(project_id), schedule_id, engine_fields, today,
        )
        if fields:
            # Supplier or measurement settings changed: rebuild this row's reminders.
            result = get_engine().regenerate_alerts_for(
                store.snapshots(project_id), [schedule_id], base=result,
            )
        store.apply_result(project_id, result)

    logger.info("Step %s edited: %d row(s) changed", schedule_id, result.touched,
                extra={"project_id": project_id, "schedule_id": schedule_id})
    return {"schedules": _serialize(project_id)}


def regenerate_schedule(project_id: int, today: date | None = None) -> dict:
    """Repair incoherent completed rows and re-chain every other step."""
    today = today or date.today()
    with store.project_batch(project_id):
        result = get_engine().regenerate(store.snapshots(project_id), today)
        store.apply_result(project_id, result)

    logger.info("Schedule regenerated: %d row(s) changed", result.touched,
                extra={"project_id": project_id})
    return {"touched": result.touched, "schedules": _serialize(project_id)}


def generate_project_schedule(project_id: int, target_start_date: date | None = None,
                              current_stage: str | None = None,
                              today: date | None = None) -> dict:
    """Create a row for every canonical step from ``current_stage`` and chain them.

    Existing rows are kept (upsert) and re-dated; completed rows stay fixed.
    """
    today = today or date.today()
    if current_stage and current_stage not in catalog.STAGE_TO_STEP:
        raise ValidationError(
            f"current_stage must be one of: {', '.join(catalog.STAGE_TO_STEP)}",
            details={"current_stage": "invalid"},
        )

    lead_days = _default_supplier_lead_days()
    steps = catalog.steps_from_stage(current_stage)
    with store.project_batch(project_id) as project:
        start = target_start_date or project.target_start_date or today
        for step in steps:
            if store.get_by_step(project_id, step.step_id) is None:
                store.upsert(project_id, {
                    **catalog.default_row_fields(step.step_id, lead_days),
                    "status": "pending",
                })
        project.target_start_date = start
        if current_stage:
            project.current_stage = current_stage

        result = get_engine().plan_from(
            store.snapshots(project_id), steps[0].step_id, start, today,
        )
        store.apply_result(project_id, result)

    logger.info("Schedule generated from %s (%d steps)", start.isoformat(), len(steps),
                extra={"project_id": project_id})
    return {"touched": result.touched, "schedules": _serialize(project_id)}
