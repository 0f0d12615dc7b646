"""Construction schedule blueprint.

REST API for project schedules, step completion cascades and alerts.

Endpoint groups:
  Projects               POST /api/v1/projects
                         GET  /api/v1/projects/<pid>
  Schedule rows          GET  /api/v1/projects/<pid>/schedule
                         POST /api/v1/projects/<pid>/schedule
                         PUT  /api/v1/schedule/<sid>
                         DELETE /api/v1/schedule/<sid>
  Generation             POST /api/v1/projects/<pid>/schedule/generate
                         POST /api/v1/projects/<pid>/schedule/regenerate
  Completion             POST /api/v1/schedule/<sid>/complete
                         POST /api/v1/projects/<pid>/steps/<step_id>/complete
                         POST /api/v1/schedule/<sid>/uncomplete
  Diagnostics            GET  /api/v1/projects/<pid>/schedule/conflicts
                         GET  /api/v1/projects/<pid>/schedule/duration
                         GET  /api/v1/catalog/steps
  Alerts                 GET  /api/v1/projects/<pid>/alerts
                         POST /api/v1/alerts/<aid>/dismiss

Malformed input is rejected here with 400; business rules live in
schedule_service and surface through the error handlers below. Every
mutation returns the updated schedule slice.
"""

from __future__ import annotations

import logging
from datetime import date

from flask import Blueprint, jsonify, request

import app.services.schedule_service as svc
from app.core.exceptions import (
    ConflictError,
    IntegrityViolationError,
    InvalidDurationError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from app.utils.errors import E, api_error
from app.utils.helpers import json_body, optional_int, parse_date, query_bool

logger = logging.getLogger(__name__)

schedule_bp = Blueprint("schedule", __name__, url_prefix="/api/v1")


# ── Error handlers ────────────────────────────────────────────────────────────


@schedule_bp.errorhandler(NotFoundError)
def _handle_not_found(error: NotFoundError):
    return api_error(E.NOT_FOUND, str(error))


@schedule_bp.errorhandler(InvalidDurationError)
def _handle_invalid_duration(error: InvalidDurationError):
    return api_error(E.INVALID_DURATION, str(error), details=error.details)


@schedule_bp.errorhandler(ValidationError)
def _handle_validation(error: ValidationError):
    return api_error(E.VALIDATION_RULE, str(error), details=error.details)


@schedule_bp.errorhandler(IntegrityViolationError)
def _handle_integrity(error: IntegrityViolationError):
    return api_error(E.INTEGRITY, str(error))


@schedule_bp.errorhandler(ConflictError)
def _handle_conflict(error: ConflictError):
    return api_error(E.CONFLICT_DUPLICATE, str(error))


@schedule_bp.errorhandler(PersistenceError)
def _handle_persistence(error: PersistenceError):
    logger.error("Persistence failure endpoint=%s: %s", request.endpoint, error)
    return api_error(E.PERSISTENCE, str(error))


def _today() -> date:
    return date.today()


# ═════════════════════════════════════════════════════════════════════════
# Projects
# ═════════════════════════════════════════════════════════════════════════


@schedule_bp.route("/projects", methods=["POST"])
def create_project():
    """Register a project.

    Body: {name, target_start_date?, current_stage?}
    Returns: project dict (201).
    """
    data, err = json_body(required=True)
    if err:
        return err
    if not (data.get("name") or "").strip():
        return api_error(E.VALIDATION_REQUIRED, "name is required")
    if len(data["name"]) > 200:
        return api_error(E.VALIDATION_INVALID, "name must be ≤ 200 characters")
    return jsonify(svc.create_project(data)), 201


@schedule_bp.route("/projects/<int:pid>", methods=["GET"])
def get_project(pid):
    return jsonify(svc.get_project(pid)), 200


# ═════════════════════════════════════════════════════════════════════════
# Schedule rows
# ═════════════════════════════════════════════════════════════════════════


@schedule_bp.route("/projects/<int:pid>/schedule", methods=["GET"])
def list_schedule(pid):
    """Schedule rows in execution order."""
    return jsonify(svc.list_schedule(pid)), 200


@schedule_bp.route("/projects/<int:pid>/schedule", methods=["POST"])
def create_schedule_item(pid):
    """Create or update the row of one step (keyed on step_id).

    Body: {step_id, ...editable columns}
    Returns: schedule row dict (201).
    """
    data, err = json_body(required=True)
    if err:
        return err
    if not (data.get("step_id") or "").strip():
        return api_error(E.VALIDATION_REQUIRED, "step_id is required")
    return jsonify(svc.create_schedule_item(pid, data)), 201


@schedule_bp.route("/schedule/<int:sid>", methods=["PUT"])
def update_schedule_item(sid):
    """Manual edit of one step followed by a forward cascade.

    Body: any editable column (unknown keys are ignored).
    Returns: {schedules}
    """
    data, err = json_body(required=True)
    if err:
        return err
    return jsonify(svc.update_schedule_and_recalculate(sid, data, today=_today())), 200


@schedule_bp.route("/schedule/<int:sid>", methods=["DELETE"])
def delete_schedule_item(sid):
    svc.delete_schedule_item(sid)
    return jsonify({"message": "Schedule item deleted"}), 200


# ═════════════════════════════════════════════════════════════════════════
# Generation
# ═════════════════════════════════════════════════════════════════════════


@schedule_bp.route("/projects/<int:pid>/schedule/generate", methods=["POST"])
def generate_schedule(pid):
    """Create and chain every canonical step from ``current_stage``.

    Body: {target_start_date?, current_stage?}
    """
    data, err = json_body()
    if err:
        return err
    target_start = None
    if data.get("target_start_date"):
        target_start = parse_date(data["target_start_date"])
        if target_start is None:
            return api_error(E.VALIDATION_INVALID, "Invalid target_start_date. Use YYYY-MM-DD.")
    result = svc.generate_project_schedule(
        pid, target_start, data.get("current_stage"), today=_today(),
    )
    return jsonify(result), 200


@schedule_bp.route("/projects/<int:pid>/schedule/regenerate", methods=["POST"])
def regenerate_schedule(pid):
    """Repair completed rows and re-chain the others."""
    return jsonify(svc.regenerate_schedule(pid, today=_today())), 200


# ═════════════════════════════════════════════════════════════════════════
# Completion
# ═════════════════════════════════════════════════════════════════════════


@schedule_bp.route("/schedule/<int:sid>/complete", methods=["POST"])
def complete_step(sid):
    """Mark a step completed today.

    Body: {actual_days?}
    Returns: {days_ahead, alerts_created, schedules}
    """
    data, err = json_body()
    if err:
        return err
    actual_days, err = optional_int(data, "actual_days")
    if err:
        return err
    return jsonify(svc.complete_step(sid, actual_days, today=_today())), 200


@schedule_bp.route("/projects/<int:pid>/steps/<step_id>/complete", methods=["POST"])
def complete_step_by_step_id(pid, step_id):
    """Complete a canonical step, creating missing rows first."""
    data, err = json_body()
    if err:
        return err
    actual_days, err = optional_int(data, "actual_days")
    if err:
        return err
    return jsonify(svc.complete_step_by_step_id(pid, step_id, actual_days, today=_today())), 200


@schedule_bp.route("/schedule/<int:sid>/uncomplete", methods=["POST"])
def uncomplete_step(sid):
    """Revert a completion and restore the estimated plan."""
    return jsonify(svc.uncomplete_step(sid, today=_today())), 200


# ═════════════════════════════════════════════════════════════════════════
# Diagnostics
# ═════════════════════════════════════════════════════════════════════════


@schedule_bp.route("/projects/<int:pid>/schedule/conflicts", methods=["GET"])
def schedule_conflicts(pid):
    """Days on which incompatible trades overlap. Informational only."""
    return jsonify(svc.check_project_conflicts(pid)), 200


@schedule_bp.route("/projects/<int:pid>/schedule/duration", methods=["GET"])
def schedule_duration(pid):
    """Default total duration from ``?stage=`` (or the project's stage) to the end."""
    stage = request.args.get("stage") or svc.get_project(pid).get("current_stage")
    return jsonify(svc.project_duration(stage)), 200


@schedule_bp.route("/catalog/steps", methods=["GET"])
def catalog_steps():
    return jsonify(svc.list_catalog()), 200


# ═════════════════════════════════════════════════════════════════════════
# Alerts
# ═════════════════════════════════════════════════════════════════════════


@schedule_bp.route("/projects/<int:pid>/alerts", methods=["GET"])
def list_alerts(pid):
    """Active alerts; ``?include_dismissed=true`` returns all of them."""
    include = query_bool(request.args.get("include_dismissed"))
    return jsonify(svc.list_alerts(pid, include_dismissed=include)), 200


@schedule_bp.route("/alerts/<int:aid>/dismiss", methods=["POST"])
def dismiss_alert(aid):
    return jsonify(svc.dismiss_alert(aid)), 200
