"""create_schedule_tables

Create `projects`, `project_schedules` and `schedule_alerts`.

Revision ID: 5c1e0a7b9d21
Revises:
Create Date: 2026-10-17 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = "5c1e0a7b9d21"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing_tables = set(inspector.get_table_names())

    if "projects" not in existing_tables:
        op.create_table(
            "projects",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("target_start_date", sa.Date(), nullable=True),
            sa.Column("current_stage", sa.String(length=30), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint("id"),
        )

    if "project_schedules" not in existing_tables:
        op.create_table(
            "project_schedules",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("project_id", sa.Integer(), nullable=False),
            sa.Column("step_id", sa.String(length=50), nullable=False),
            sa.Column("step_name", sa.String(length=200), nullable=False),
            sa.Column("trade_type", sa.String(length=50), nullable=False, server_default="autre"),
            sa.Column("trade_color", sa.String(length=20), nullable=True),
            sa.Column("estimated_days", sa.Integer(), nullable=False, server_default="5"),
            sa.Column("actual_days", sa.Integer(), nullable=True),
            sa.Column("start_date", sa.Date(), nullable=True),
            sa.Column("end_date", sa.Date(), nullable=True),
            sa.Column("supplier_name", sa.String(length=200), nullable=True),
            sa.Column("supplier_phone", sa.String(length=50), nullable=True),
            sa.Column("supplier_schedule_lead_days", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("fabrication_lead_days", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("fabrication_start_date", sa.Date(), nullable=True),
            sa.Column("measurement_required", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("measurement_after_step_id", sa.String(length=50), nullable=True),
            sa.Column("measurement_notes", sa.Text(), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("project_id", "step_id", name="uq_schedule_project_step"),
        )
        op.create_index("ix_project_schedules_project_id", "project_schedules", ["project_id"])
        op.create_index("ix_schedule_project_status", "project_schedules", ["project_id", "status"])

    if "schedule_alerts" not in existing_tables:
        op.create_table(
            "schedule_alerts",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("project_id", sa.Integer(), nullable=False),
            sa.Column("schedule_item_id", sa.Integer(), nullable=False),
            sa.Column("alert_type", sa.String(length=30), nullable=False),
            sa.Column("alert_date", sa.Date(), nullable=False),
            sa.Column("message", sa.Text(), nullable=False, server_default=""),
            sa.Column("is_dismissed", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["schedule_item_id"], ["project_schedules.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_schedule_alerts_project_id", "schedule_alerts", ["project_id"])
        op.create_index("ix_schedule_alerts_schedule_item_id", "schedule_alerts", ["schedule_item_id"])


def downgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing_tables = set(inspector.get_table_names())

    if "schedule_alerts" in existing_tables:
        op.drop_index("ix_schedule_alerts_schedule_item_id", table_name="schedule_alerts")
        op.drop_index("ix_schedule_alerts_project_id", table_name="schedule_alerts")
        op.drop_table("schedule_alerts")
    if "project_schedules" in existing_tables:
        op.drop_index("ix_schedule_project_status", table_name="project_schedules")
        op.drop_index("ix_project_schedules_project_id", table_name="project_schedules")
        op.drop_table("project_schedules")
    if "projects" in existing_tables:
        op.drop_table("projects")
