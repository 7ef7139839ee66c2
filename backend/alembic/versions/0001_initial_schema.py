"""initial_schema

Revision ID: 0001
Revises:
Create Date: 2026-10-17

Creates the lab calendar tables: events, time_slots, slot_history,
event_modifications, event_state_changes.
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

EVENT_STATES = ("pending", "validated", "cancelled", "moved", "in_progress")
SLOT_STATES = ("created", "modified", "counter_proposed", "approved", "rejected", "deleted")
SLOT_ACTIONS = (
    "created", "modified", "deleted", "invalidated", "approved", "rejected", "restored", "time_modified",
)


def upgrade() -> None:
    # --- events ---
    op.create_table(
        "events",
        sa.Column("event_id", sa.String(36), primary_key=True),
        sa.Column("discipline", sa.Enum("chimie", "physique", name="discipline"), nullable=False),
        sa.Column("owner_id", sa.String(255), nullable=False, index=True),
        sa.Column("owner_email", sa.String(255), nullable=True),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("start_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("end_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("state", sa.Enum(*EVENT_STATES, name="eventstate"), nullable=False, server_default="pending"),
        sa.Column("state_reason", sa.String(500), nullable=True),
        sa.Column(
            "validation_state",
            sa.Enum("owner_pending", "validated", "rejected", name="validationstate"),
            nullable=True,
        ),
        sa.Column("actuel_time_slots", sa.JSON, nullable=False),
        sa.Column("version", sa.Integer, nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # --- time_slots (event_id is not a foreign key: orphans are purged by the retention job) ---
    op.create_table(
        "time_slots",
        sa.Column("slot_id", sa.String(36), primary_key=True),
        sa.Column("event_id", sa.String(36), nullable=False, index=True),
        sa.Column(
            "discipline",
            postgresql.ENUM("chimie", "physique", name="discipline", create_type=False),
            nullable=True,
        ),
        sa.Column("sequence", sa.Integer, nullable=False, server_default="0"),
        sa.Column("start_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("timeslot_date", sa.Date, nullable=False),
        sa.Column("status", sa.Enum("active", "deleted", name="slotstatus"), nullable=False, server_default="active"),
        sa.Column("state", sa.Enum(*SLOT_STATES, name="slotstate"), nullable=False, server_default="created"),
        sa.Column("created_by", sa.String(255), nullable=False),
        sa.Column("parent_slot_id", sa.String(36), nullable=True),
        sa.Column("notes", sa.String(500), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), index=True),
    )

    # --- slot_history ---
    op.create_table(
        "slot_history",
        sa.Column("entry_id", sa.String(36), primary_key=True),
        sa.Column(
            "slot_id", sa.String(36),
            sa.ForeignKey("time_slots.slot_id", ondelete="CASCADE"), nullable=False, index=True,
        ),
        sa.Column("sequence", sa.Integer, nullable=False, server_default="0"),
        sa.Column("user_id", sa.String(255), nullable=False),
        sa.Column("action", sa.Enum(*SLOT_ACTIONS, name="slotaction"), nullable=False),
        sa.Column("note", sa.String(500), nullable=True),
        sa.Column("previous_start", sa.DateTime(timezone=True), nullable=True),
        sa.Column("previous_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("new_start", sa.DateTime(timezone=True), nullable=True),
        sa.Column("new_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("date", sa.DateTime(timezone=True), nullable=False, index=True),
    )

    # --- event_modifications ---
    op.create_table(
        "event_modifications",
        sa.Column("modification_id", sa.String(36), primary_key=True),
        sa.Column(
            "event_id", sa.String(36),
            sa.ForeignKey("events.event_id", ondelete="CASCADE"), nullable=False, index=True,
        ),
        sa.Column("user_id", sa.String(255), nullable=False),
        sa.Column("action", sa.Enum("cancel", "move", name="modificationaction"), nullable=False),
        sa.Column("reason", sa.String(500), nullable=True),
        sa.Column("request_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("time_slots", sa.JSON, nullable=False),
        sa.UniqueConstraint("event_id", "user_id", "action", "request_date", name="uq_event_modification_triple"),
    )

    # --- event_state_changes ---
    op.create_table(
        "event_state_changes",
        sa.Column("change_id", sa.String(36), primary_key=True),
        sa.Column(
            "event_id", sa.String(36),
            sa.ForeignKey("events.event_id", ondelete="CASCADE"), nullable=False, index=True,
        ),
        sa.Column("sequence", sa.Integer, nullable=False, server_default="0"),
        sa.Column("user_id", sa.String(255), nullable=False),
        sa.Column("from_state", postgresql.ENUM(*EVENT_STATES, name="eventstate", create_type=False), nullable=True),
        sa.Column("to_state", postgresql.ENUM(*EVENT_STATES, name="eventstate", create_type=False), nullable=False),
        sa.Column("reason", sa.String(500), nullable=True),
        sa.Column("changed_at", sa.DateTime(timezone=True), nullable=False),
    )


def downgrade() -> None:
    op.drop_table("event_state_changes")
    op.drop_table("event_modifications")
    op.drop_table("slot_history")
    op.drop_table("time_slots")
    op.drop_table("events")
    for enum_name in (
        "modificationaction", "slotaction", "slotstate", "slotstatus",
        "validationstate", "eventstate", "discipline",
    ):
        sa.Enum(name=enum_name).drop(op.get_bind(), checkfirst=True)
