"""Create append-only appointment_history table.

Revision ID: 002
Revises: 001
Create Date: 2026-10-19 00:10:00.000000

"""

from typing import Sequence, Union

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "002"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create the history table and block updates and deletes on it."""
    op.create_table(
        "appointment_history",
        sa.Column("id", sa.BigInteger(), sa.Identity(always=False), nullable=False),
        sa.Column("appointment_id", postgresql.UUID(), nullable=False),
        sa.Column("action", sa.Text(), nullable=False),
        sa.Column("from_status", sa.Text(), nullable=False),
        sa.Column("to_status", sa.Text(), nullable=False),
        sa.Column("actor_id", sa.Text(), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("occurred_at", postgresql.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("new_scheduled_at", postgresql.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("previous_scheduled_at", postgresql.TIMESTAMP(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            postgresql.TIMESTAMP(timezone=True),
            server_default=sa.text("NOW()"),
            nullable=False,
        ),
        sa.ForeignKeyConstraint(
            ["appointment_id"],
            ["appointments.id"],
            name="fk_appointment_history_appointment_id",
            ondelete="RESTRICT",
        ),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_index(
        "idx_appointment_history_appointment_id",
        "appointment_history",
        ["appointment_id", "id"],
    )

    # ===================================================================
    # TRIGGER FUNCTION: History rows are immutable
    # ===================================================================
    op.execute(
        """
        CREATE OR REPLACE FUNCTION reject_appointment_history_change()
        RETURNS TRIGGER AS $$
        BEGIN
            RAISE EXCEPTION 'appointment_history is append-only (% rejected)', TG_OP
                USING ERRCODE = 'restrict_violation';
        END;
        $$ LANGUAGE plpgsql;
    """
    )

    op.execute(
        """
        CREATE TRIGGER trigger_appointment_history_append_only
        BEFORE UPDATE OR DELETE ON appointment_history
        FOR EACH ROW
        EXECUTE FUNCTION reject_appointment_history_change();
    """
    )


def downgrade() -> None:
    """Drop the history table and its trigger."""
    op.execute(
        "DROP TRIGGER IF EXISTS trigger_appointment_history_append_only ON appointment_history;"
    )
    op.execute("DROP FUNCTION IF EXISTS reject_appointment_history_change();")
    op.drop_index("idx_appointment_history_appointment_id", table_name="appointment_history")
    op.drop_table("appointment_history")
