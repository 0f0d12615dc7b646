"""
Construction Schedule Service
Schedule domain models.

Models:
    - ScheduleItem:   one row per (project, canonical construction step)
    - ScheduleAlert:  disposable reminder derived from a schedule item's dates

Architecture:
    Project ──1:N──▶ ScheduleItem ──1:N──▶ ScheduleAlert
    Project ──1:N──▶ ScheduleAlert

Lifecycle states:
    ScheduleItem:   pending → scheduled → completed  |  completed → pending
    ScheduleAlert:  active → dismissed (one-way)
"""

from datetime import datetime, timezone

from app.models import db


# ── Constants ────────────────────────────────────────────────────────────────

SCHEDULE_STATUSES = {"pending", "scheduled", "completed"}

ALERT_TYPES = {
    "supplier_call",
    "fabrication_start",
    "measurement",
    "urgent_supplier_call",
    "schedule_delayed",
}

STATUS_TRANSITIONS = {
    "pending":   ["scheduled", "completed"],
    "scheduled": ["completed", "pending"],
    "completed": ["pending"],
}

# Fields a caller may edit through update_schedule_and_recalculate.
EDITABLE_FIELDS = (
    "step_name",
    "trade_type",
    "trade_color",
    "estimated_days",
    "actual_days",
    "start_date",
    "end_date",
    "supplier_name",
    "supplier_phone",
    "supplier_schedule_lead_days",
    "fabrication_lead_days",
    "fabrication_start_date",
    "measurement_required",
    "measurement_after_step_id",
    "measurement_notes",
    "status",
    "notes",
)


def validate_status_transition(old_status, new_status):
    """Return True if a ScheduleItem status transition is valid."""
    if old_status == new_status:
        return True
    return new_status in STATUS_TRANSITIONS.get(old_status, [])


def _iso(value):
    return value.isoformat() if value else None


class ScheduleItem(db.Model):
    """
    Planned or realised execution window of one canonical construction step.

    start_date / end_date are calendar dates; when both are set the span
    covers exactly the step duration in business days.
    """

    __tablename__ = "project_schedules"
    __table_args__ = (
        db.UniqueConstraint("project_id", "step_id", name="uq_schedule_project_step"),
        db.Index("ix_schedule_project_status", "project_id", "status"),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer,
        db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    step_id = db.Column(db.String(50), nullable=False,
                        comment="Canonical step key: excavation-fondation, structure, ...")
    step_name = db.Column(db.String(200), nullable=False)
    trade_type = db.Column(db.String(50), nullable=False, default="autre")
    trade_color = db.Column(db.String(20), nullable=True, comment="Display only")

    estimated_days = db.Column(db.Integer, nullable=False, default=5,
                               comment="Planned duration in business days")
    actual_days = db.Column(db.Integer, nullable=True,
                            comment="Realised duration, filled on completion")
    start_date = db.Column(db.Date, nullable=True)
    end_date = db.Column(db.Date, nullable=True)

    # Supplier
    supplier_name = db.Column(db.String(200), nullable=True)
    supplier_phone = db.Column(db.String(50), nullable=True)
    supplier_schedule_lead_days = db.Column(
        db.Integer, nullable=False, default=0,
        comment="Business days before start_date to call the supplier",
    )
    fabrication_lead_days = db.Column(db.Integer, nullable=False, default=0)
    fabrication_start_date = db.Column(db.Date, nullable=True)

    # Measurement
    measurement_required = db.Column(db.Boolean, nullable=False, default=False)
    measurement_after_step_id = db.Column(db.String(50), nullable=True)
    measurement_notes = db.Column(db.Text, nullable=True)

    status = db.Column(db.String(20), nullable=False, default="pending",
                       comment="pending | scheduled | completed")
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    alerts = db.relationship(
        "ScheduleAlert", backref="schedule_item", lazy="dynamic",
        cascade="all, delete-orphan", passive_deletes=True,
    )

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "step_id": self.step_id,
            "step_name": self.step_name,
            "trade_type": self.trade_type,
            "trade_color": self.trade_color,
            "estimated_days": self.estimated_days,
            "actual_days": self.actual_days,
            "start_date": _iso(self.start_date),
            "end_date": _iso(self.end_date),
            "supplier_name": self.supplier_name,
            "supplier_phone": self.supplier_phone,
            "supplier_schedule_lead_days": self.supplier_schedule_lead_days,
            "fabrication_lead_days": self.fabrication_lead_days,
            "fabrication_start_date": _iso(self.fabrication_start_date),
            "measurement_required": self.measurement_required,
            "measurement_after_step_id": self.measurement_after_step_id,
            "measurement_notes": self.measurement_notes,
            "status": self.status,
            "notes": self.notes,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<ScheduleItem {self.id}: {self.step_id} [{self.status}]>"


class ScheduleAlert(db.Model):
    """
    Reminder tied to a schedule item (supplier call, fabrication, measurement).

    Regenerated whenever the item's dates are recomputed; afterwards only
    dismissal mutates it.
    """

    __tablename__ = "schedule_alerts"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer,
        db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    schedule_item_id = db.Column(
        db.Integer,
        db.ForeignKey("project_schedules.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    alert_type = db.Column(db.String(30), nullable=False,
                           comment="supplier_call | fabrication_start | measurement | "
                                   "urgent_supplier_call | schedule_delayed")
    alert_date = db.Column(db.Date, nullable=False)
    message = db.Column(db.Text, nullable=False, default="")
    is_dismissed = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "schedule_item_id": self.schedule_item_id,
            "alert_type": self.alert_type,
            "alert_date": _iso(self.alert_date),
            "message": self.message,
            "is_dismissed": self.is_dismissed,
            "created_at": _iso(self.created_at),
        }

    def __repr__(self):
        return f"<ScheduleAlert {self.id}: {self.alert_type} @ {self.alert_date}>"
