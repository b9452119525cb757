"""equipment contention tables

Revision ID: 3c9a1f2d7b40
Revises:
Create Date: 2026-10-17 09:12:41.318204

"""
from __future__ import annotations

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "3c9a1f2d7b40"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

EQUIPMENT_STATUS = ("AVAILABLE", "IN_USE", "RESERVED", "MAINTENANCE", "OUT_OF_ORDER")
EQUIPMENT_CATEGORY = (
    "CARDIO",
    "STRENGTH",
    "FREE_WEIGHTS",
    "FUNCTIONAL",
    "STRETCHING",
    "RECOVERY",
    "SPECIALIZED",
)
QUEUE_STATE = ("WAITING", "NOTIFIED", "CONFIRMED", "COMPLETED", "CANCELLED", "EXPIRED")
ISSUE_SEVERITY = ("LOW", "MEDIUM", "HIGH", "CRITICAL")


def _enum(values: tuple[str, ...], name: str, length: int) -> sa.Enum:
    return sa.Enum(*values, name=name, native_enum=False, length=length)


def upgrade() -> None:
    """Create the resource store and the session, queue and issue ledgers."""
    op.create_table(
        "equipment",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("category", _enum(EQUIPMENT_CATEGORY, "equipmentcategory", 20), nullable=False),
        sa.Column("location", sa.Text(), nullable=True),
        sa.Column("status", _enum(EQUIPMENT_STATUS, "equipmentstatus", 20), nullable=False),
        sa.Column("usage_hours", sa.Float(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "queue_entry",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("equipment_id", sa.String(length=36), nullable=False),
        sa.Column("consumer_id", sa.String(length=64), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("state", _enum(QUEUE_STATE, "queuestate", 20), nullable=False),
        sa.Column("joined_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("notified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("claim_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["equipment_id"], ["equipment.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "uq_queue_entry_live_consumer",
        "queue_entry",
        ["equipment_id", "consumer_id"],
        unique=True,
        sqlite_where=sa.text("state IN ('WAITING', 'NOTIFIED')"),
        postgresql_where=sa.text("state IN ('WAITING', 'NOTIFIED')"),
    )
    op.create_index(
        "ix_queue_entry_equipment_state_position",
        "queue_entry",
        ["equipment_id", "state", "position"],
    )
    op.create_index(
        "ix_queue_entry_state_claim_expiry",
        "queue_entry",
        ["state", "claim_expires_at"],
    )

    op.create_table(
        "usage_session",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("equipment_id", sa.String(length=36), nullable=False),
        sa.Column("consumer_id", sa.String(length=64), nullable=False),
        sa.Column("queue_entry_id", sa.String(length=36), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("ended_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("auto_end_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("warning_sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_activity_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("ended_by", sa.String(length=16), nullable=True),
        sa.Column("duration_seconds", sa.Integer(), nullable=True),
        sa.Column("calories_burned", sa.Integer(), nullable=True),
        sa.Column("heart_rate_avg", sa.Integer(), nullable=True),
        sa.Column("heart_rate_max", sa.Integer(), nullable=True),
        sa.Column("sets_completed", sa.Integer(), nullable=True),
        sa.Column("reps_completed", sa.Integer(), nullable=True),
        sa.Column("weight_used", sa.Float(), nullable=True),
        sa.Column("sensor_data", sa.JSON(), nullable=True),
        sa.ForeignKeyConstraint(["equipment_id"], ["equipment.id"]),
        sa.ForeignKeyConstraint(["queue_entry_id"], ["queue_entry.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_usage_session_consumer_id", "usage_session", ["consumer_id"])
    op.create_index(
        "uq_usage_session_open_equipment",
        "usage_session",
        ["equipment_id"],
        unique=True,
        sqlite_where=sa.text("ended_at IS NULL"),
        postgresql_where=sa.text("ended_at IS NULL"),
    )
    op.create_index(
        "ix_usage_session_equipment_ended",
        "usage_session",
        ["equipment_id", "ended_at"],
    )
    op.create_index("ix_usage_session_auto_end", "usage_session", ["auto_end_at"])

    op.create_table(
        "issue_report",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("equipment_id", sa.String(length=36), nullable=False),
        sa.Column("consumer_id", sa.String(length=64), nullable=False),
        sa.Column("issue_type", sa.String(length=40), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("severity", _enum(ISSUE_SEVERITY, "issueseverity", 10), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["equipment_id"], ["equipment.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_issue_report_equipment_id", "issue_report", ["equipment_id"])


def downgrade() -> None:
    """Drop the contention tables."""
    op.drop_index("ix_issue_report_equipment_id", table_name="issue_report")
    op.drop_table("issue_report")
    op.drop_index("ix_usage_session_auto_end", table_name="usage_session")
    op.drop_index("ix_usage_session_equipment_ended", table_name="usage_session")
    op.drop_index("uq_usage_session_open_equipment", table_name="usage_session")
    op.drop_index("ix_usage_session_consumer_id", table_name="usage_session")
    op.drop_table("usage_session")
    op.drop_index("ix_queue_entry_state_claim_expiry", table_name="queue_entry")
    op.drop_index("ix_queue_entry_equipment_state_position", table_name="queue_entry")
    op.drop_index("uq_queue_entry_live_consumer", table_name="queue_entry")
    op.drop_table("queue_entry")
    op.drop_table("equipment")
