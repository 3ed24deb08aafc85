"""create lead engine tables

Revision ID: 202610010001
Revises:
Create Date: 2026-10-01 00:01:00
"""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa


revision: str = "202610010001"
down_revision: str | None = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "lead_record",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="NEW"),
        sa.Column("sub_status", sa.String(length=64), nullable=True),
        sa.Column("source", sa.String(length=64), nullable=False),
        sa.Column("sub_source", sa.String(length=64), nullable=True),
        sa.Column("territory_code", sa.String(length=32), nullable=True),
        sa.Column("name", sa.Text(), nullable=True),
        sa.Column("email", sa.Text(), nullable=True),
        sa.Column("phone", sa.String(length=32), nullable=True),
        sa.Column("phone_normalized", sa.String(length=32), nullable=True),
        sa.Column("assignment_attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_fresh", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("is_priority", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_contactable", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("queue_state", sa.String(length=32), nullable=False, server_default="queued"),
        sa.Column("rotation_halted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("current_agent_id", sa.Integer(), nullable=True),
        sa.Column("deal_value", sa.Numeric(18, 2), nullable=True),
        sa.Column("commission_percentage", sa.Numeric(6, 3), nullable=True),
        sa.Column("queued_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status_changed_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_activity_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("archived_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("row_version", sa.Integer(), nullable=False, server_default="1"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_lead_record_queue_state_queued_at", "lead_record", ["queue_state", "queued_at"], unique=False)
    op.create_index("ix_lead_record_status_changed_at", "lead_record", ["status", "status_changed_at"], unique=False)
    op.create_index("ix_lead_record_phone_normalized", "lead_record", ["phone_normalized"], unique=False)

    op.create_table(
        "lead_agent",
        sa.Column("id", sa.Integer(), autoincrement=False, nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("email", sa.Text(), nullable=True),
        sa.Column("phone", sa.String(length=32), nullable=True),
        sa.Column("designation_tier", sa.Integer(), nullable=True),
        sa.Column("territory_code", sa.String(length=32), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("on_leave", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "lead_agent_source",
        sa.Column("agent_id", sa.Integer(), nullable=False),
        sa.Column("source", sa.String(length=64), nullable=False),
        sa.ForeignKeyConstraint(["agent_id"], ["lead_agent.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("agent_id", "source"),
    )

    op.create_table(
        "lead_assignment",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("lead_id", sa.Uuid(), nullable=False),
        sa.Column("agent_id", sa.Integer(), nullable=False),
        sa.Column("assignment_kind", sa.String(length=32), nullable=False),
        sa.Column("attempt_number", sa.Integer(), nullable=False),
        sa.Column("is_accepted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("accepted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("assigned_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_activity_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("activity_check", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("contact_blocked", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("ended_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("end_reason", sa.String(length=64), nullable=True),
        sa.ForeignKeyConstraint(["lead_id"], ["lead_record.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_lead_assignment_agent_active", "lead_assignment", ["agent_id", "is_active"], unique=False)
    op.create_index(
        "ix_lead_assignment_lead_assigned_at",
        "lead_assignment",
        ["lead_id", "assigned_at"],
        unique=False,
    )
    op.create_index(
        "uq_lead_assignment_active_lead",
        "lead_assignment",
        ["lead_id"],
        unique=True,
        postgresql_where=sa.text("is_active"),
        sqlite_where=sa.text("is_active = 1"),
    )

    op.create_table(
        "lead_assignment_cursor",
        sa.Column("pool_key", sa.String(length=128), nullable=False),
        sa.Column("last_agent_id", sa.Integer(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("pool_key"),
    )

    op.create_table(
        "lead_assignment_event",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("lead_id", sa.Uuid(), nullable=False),
        sa.Column("assignment_id", sa.Uuid(), nullable=True),
        sa.Column("from_agent_id", sa.Integer(), nullable=True),
        sa.Column("to_agent_id", sa.Integer(), nullable=True),
        sa.Column("reason", sa.String(length=64), nullable=False),
        sa.Column("outcome", sa.String(length=32), nullable=False),
        sa.Column("attempt_number", sa.Integer(), nullable=False),
        sa.Column("correlation_id", sa.String(length=128), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["lead_id"], ["lead_record.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_lead_assignment_event_lead_id", "lead_assignment_event", ["lead_id"], unique=False)

    op.create_table(
        "policy_setting",
        sa.Column("key", sa.String(length=64), nullable=False),
        sa.Column("value", sa.Text(), nullable=False, server_default=""),
        sa.Column("value_type", sa.String(length=16), nullable=False),
        sa.Column("category", sa.String(length=32), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("updated_by", sa.String(length=128), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("key"),
    )

    op.create_table(
        "status_rotation_rule",
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("interval_minutes", sa.Integer(), nullable=False),
        sa.Column("max_age_days", sa.Integer(), nullable=True),
        sa.Column("max_assignments", sa.Integer(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("status"),
    )

    op.create_table(
        "dnd_entry",
        sa.Column("phone_number", sa.String(length=32), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("added_by", sa.String(length=128), nullable=True),
        sa.Column("added_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("phone_number"),
    )
    op.create_index("ix_dnd_entry_added_at", "dnd_entry", ["added_at"], unique=False)

    op.create_table(
        "commission_slab",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("designation_tier", sa.Integer(), nullable=True),
        sa.Column("slab_from", sa.Numeric(18, 2), nullable=False),
        sa.Column("slab_to", sa.Numeric(18, 2), nullable=True),
        sa.Column("commission_percentage", sa.Numeric(6, 3), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "ix_commission_slab_tier_from",
        "commission_slab",
        ["designation_tier", "slab_from"],
        unique=False,
    )

    op.create_table(
        "lead_scheduled_activity",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("lead_id", sa.Uuid(), nullable=False),
        sa.Column("agent_id", sa.Integer(), nullable=False),
        sa.Column("kind", sa.String(length=16), nullable=False),
        sa.Column("scheduled_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("title", sa.Text(), nullable=True),
        sa.Column("cancelled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_by", sa.String(length=128), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["lead_id"], ["lead_record.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_lead_scheduled_activity_kind_scheduled_at",
        "lead_scheduled_activity",
        ["kind", "scheduled_at"],
        unique=False,
    )
    op.create_index("ix_lead_scheduled_activity_lead_id", "lead_scheduled_activity", ["lead_id"], unique=False)

    op.create_table(
        "lead_reminder_delivery",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("activity_id", sa.Uuid(), nullable=False),
        sa.Column("kind", sa.String(length=16), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="claimed"),
        sa.Column("claimed_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(["activity_id"], ["lead_scheduled_activity.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("activity_id", name="uq_lead_reminder_delivery_activity_id"),
    )

    op.create_table(
        "lead_sweep_lease",
        sa.Column("sweep_name", sa.String(length=128), nullable=False),
        sa.Column("holder", sa.String(length=128), nullable=True),
        sa.Column("locked_until", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_succeeded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_status", sa.String(length=32), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("last_reassigned", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_skipped", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_updated", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_notified", sa.Integer(), nullable=False, server_default="0"),
        sa.PrimaryKeyConstraint("sweep_name"),
    )


def downgrade() -> None:
    op.drop_table("lead_sweep_lease")
    op.drop_table("lead_reminder_delivery")
    op.drop_index("ix_lead_scheduled_activity_lead_id", table_name="lead_scheduled_activity")
    op.drop_index("ix_lead_scheduled_activity_kind_scheduled_at", table_name="lead_scheduled_activity")
    op.drop_table("lead_scheduled_activity")
    op.drop_index("ix_commission_slab_tier_from", table_name="commission_slab")
    op.drop_table("commission_slab")
    op.drop_index("ix_dnd_entry_added_at", table_name="dnd_entry")
    op.drop_table("dnd_entry")
    op.drop_table("status_rotation_rule")
    op.drop_table("policy_setting")
    op.drop_index("ix_lead_assignment_event_lead_id", table_name="lead_assignment_event")
    op.drop_table("lead_assignment_event")
    op.drop_table("lead_assignment_cursor")
    op.drop_index("uq_lead_assignment_active_lead", table_name="lead_assignment")
    op.drop_index("ix_lead_assignment_lead_assigned_at", table_name="lead_assignment")
    op.drop_index("ix_lead_assignment_agent_active", table_name="lead_assignment")
    op.drop_table("lead_assignment")
    op.drop_table("lead_agent_source")
    op.drop_table("lead_agent")
    op.drop_index("ix_lead_record_phone_normalized", table_name="lead_record")
    op.drop_index("ix_lead_record_status_changed_at", table_name="lead_record")
    op.drop_index("ix_lead_record_queue_state_queued_at", table_name="lead_record")
    op.drop_table("lead_record")
