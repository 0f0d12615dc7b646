"""Project registry model — the owner of every schedule row and alert."""

from datetime import datetime, timezone

from app.models import db


class Project(db.Model):
    """Construction project. Owns its ScheduleItems and ScheduleAlerts."""

    __tablename__ = "projects"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    target_start_date = db.Column(
        db.Date, nullable=True,
        comment="Planned first working day of the project",
    )
    current_stage = db.Column(
        db.String(30), nullable=True,
        comment="planification | permis | fondation | structure | finition",
    )

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    schedules = db.relationship(
        "ScheduleItem", backref="project", lazy="dynamic",
        cascade="all, delete-orphan", passive_deletes=True,
    )
    alerts = db.relationship(
        "ScheduleAlert", backref="project", lazy="dynamic",
        cascade="all, delete-orphan", passive_deletes=True,
    )

    def to_dict(self) -> dict:
        """Serialize core project fields for API responses."""
        return {
            "id": self.id,
            "name": self.name,
            "target_start_date": self.target_start_date.isoformat() if self.target_start_date else None,
            "current_stage": self.current_stage,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<Project {self.id}: {self.name}>"
