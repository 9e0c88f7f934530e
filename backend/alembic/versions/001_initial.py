"""Initial schema: users (subset), connections, check-in schedules/instances/escalations, sobriety dates, relapses

Revision ID: 001
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("full_name", sa.String(255), nullable=True),
        sa.Column("push_token", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "connections",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("sponsor_id", sa.Uuid(), nullable=False),
        sa.Column("sponsee_id", sa.Uuid(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=True),
        sa.ForeignKeyConstraint(["sponsor_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["sponsee_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_connections_sponsor_id", "connections", ["sponsor_id"], unique=False)
    op.create_index("ix_connections_sponsee_id", "connections", ["sponsee_id"], unique=False)
    op.create_index("ix_connections_status", "connections", ["status"], unique=False)

    op.create_table(
        "check_in_schedules",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("owner_id", sa.Uuid(), nullable=False),
        sa.Column("recurrence", sa.String(16), nullable=False),
        sa.Column("custom_interval_days", sa.Integer(), nullable=True),
        sa.Column("time_of_day", sa.Time(), nullable=False),
        sa.Column("timezone", sa.String(64), nullable=False),
        sa.Column("questions", sa.JSON(), nullable=False),
        sa.Column("next_scheduled_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("consecutive_misses", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("escalation_raised", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=True),
        sa.ForeignKeyConstraint(["owner_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint(
            "(recurrence = 'custom' AND custom_interval_days BETWEEN 1 AND 365) "
            "OR (recurrence <> 'custom' AND custom_interval_days IS NULL)",
            name="ck_check_in_schedules_custom_interval",
        ),
        sa.CheckConstraint("consecutive_misses >= 0", name="ck_check_in_schedules_misses_non_negative"),
    )
    op.create_index("ix_check_in_schedules_owner_id", "check_in_schedules", ["owner_id"], unique=False)
    op.create_index("ix_check_in_schedules_next_scheduled_at", "check_in_schedules", ["next_scheduled_at"], unique=False)
    op.create_index("ix_check_in_schedules_is_active", "check_in_schedules", ["is_active"], unique=False)

    op.create_table(
        "check_in_instances",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("schedule_id", sa.Uuid(), nullable=False),
        sa.Column("due_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("responded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("questions_snapshot", sa.JSON(), nullable=False),
        sa.Column("responses", sa.JSON(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("dispatch_claimed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("dispatch_attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=True),
        sa.ForeignKeyConstraint(["schedule_id"], ["check_in_schedules.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("schedule_id", "due_at", name="uq_check_in_instance_schedule_due"),
    )
    op.create_index("ix_check_in_instances_schedule_id", "check_in_instances", ["schedule_id"], unique=False)
    op.create_index("ix_check_in_instances_due_at", "check_in_instances", ["due_at"], unique=False)
    op.create_index("ix_check_in_instances_status", "check_in_instances", ["status"], unique=False)

    op.create_table(
        "check_in_escalations",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("schedule_id", sa.Uuid(), nullable=False),
        sa.Column("sponsee_id", sa.Uuid(), nullable=False),
        sa.Column("sponsor_id", sa.Uuid(), nullable=True),
        sa.Column("consecutive_misses", sa.Integer(), nullable=False),
        sa.Column("raised_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("notified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("dispatch_claimed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("dispatch_attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.ForeignKeyConstraint(["schedule_id"], ["check_in_schedules.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_check_in_escalations_schedule_id", "check_in_escalations", ["schedule_id"], unique=False)
    op.create_index("ix_check_in_escalations_sponsee_id", "check_in_escalations", ["sponsee_id"], unique=False)
    op.create_index("ix_check_in_escalations_notified_at", "check_in_escalations", ["notified_at"], unique=False)

    op.create_table(
        "sobriety_dates",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("substance_type", sa.String(64), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_sobriety_dates_user_id", "sobriety_dates", ["user_id"], unique=False)
    op.create_index("ix_sobriety_dates_is_active", "sobriety_dates", ["is_active"], unique=False)
    # One active record per (user, substance)
    op.create_index(
        "uq_sobriety_dates_active_user_substance",
        "sobriety_dates",
        ["user_id", "substance_type"],
        unique=True,
        postgresql_where=sa.text("is_active"),
    )

    op.create_table(
        "relapses",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("sobriety_date_id", sa.Uuid(), nullable=False),
        sa.Column("relapse_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("private_note", sa.Text(), nullable=True),
        sa.Column("trigger_context", sa.String(32), nullable=True),
        sa.Column("sponsor_notified", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=True),
        sa.ForeignKeyConstraint(["sobriety_date_id"], ["sobriety_dates.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_relapses_sobriety_date_id", "relapses", ["sobriety_date_id"], unique=False)
    op.create_index("ix_relapses_relapse_date", "relapses", ["relapse_date"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_relapses_relapse_date", table_name="relapses")
    op.drop_index("ix_relapses_sobriety_date_id", table_name="relapses")
    op.drop_table("relapses")
    op.drop_index("uq_sobriety_dates_active_user_substance", table_name="sobriety_dates")
    op.drop_index("ix_sobriety_dates_is_active", table_name="sobriety_dates")
    op.drop_index("ix_sobriety_dates_user_id", table_name="sobriety_dates")
    op.drop_table("sobriety_dates")
    op.drop_index("ix_check_in_escalations_notified_at", table_name="check_in_escalations")
    op.drop_index("ix_check_in_escalations_sponsee_id", table_name="check_in_escalations")
    op.drop_index("ix_check_in_escalations_schedule_id", table_name="check_in_escalations")
    op.drop_table("check_in_escalations")
    op.drop_index("ix_check_in_instances_status", table_name="check_in_instances")
    op.drop_index("ix_check_in_instances_due_at", table_name="check_in_instances")
    op.drop_index("ix_check_in_instances_schedule_id", table_name="check_in_instances")
    op.drop_table("check_in_instances")
    op.drop_index("ix_check_in_schedules_is_active", table_name="check_in_schedules")
    op.drop_index("ix_check_in_schedules_next_scheduled_at", table_name="check_in_schedules")
    op.drop_index("ix_check_in_schedules_owner_id", table_name="check_in_schedules")
    op.drop_table("check_in_schedules")
    op.drop_index("ix_connections_status", table_name="connections")
    op.drop_index("ix_connections_sponsee_id", table_name="connections")
    op.drop_index("ix_connections_sponsor_id", table_name="connections")
    op.drop_table("connections")
    op.drop_table("users")
