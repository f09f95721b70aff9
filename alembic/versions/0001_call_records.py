"""call records

Revision ID: 0001_call_records
Revises:
Create Date: 2026-10-17

"""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision = "0001_call_records"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "call_records",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True, nullable=False),
        sa.Column("call_sid", sa.String(length=64), nullable=False),
        sa.Column("correlation_id", sa.String(length=32), nullable=False),
        sa.Column("stream_sid", sa.String(length=64), nullable=True),
        sa.Column("caller_id_raw", sa.String(length=64), nullable=False),
        sa.Column("caller_id_e164", sa.String(length=32), nullable=True),
        sa.Column("caller_withheld", sa.Boolean(), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("ended_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("duration_sec", sa.Integer(), nullable=True),
        sa.Column("decision", sa.String(length=16), nullable=False),
        sa.Column("decision_reason", sa.String(length=32), nullable=False),
        sa.Column("finalize_reason", sa.String(length=32), nullable=False),
        sa.Column("full_name", sa.String(length=128), nullable=True),
        sa.Column("subject", sa.Text(), nullable=True),
        sa.Column("callback_to_number", sa.String(length=32), nullable=True),
        sa.Column("recording_sid", sa.String(length=64), nullable=True),
        sa.Column("recording_url_public", sa.Text(), nullable=True),
        sa.Column("transcript", sa.Text(), nullable=False),
        sa.Column("delivered", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_call_records_call_sid", "call_records", ["call_sid"], unique=True)
    op.create_index("ix_call_records_correlation_id", "call_records", ["correlation_id"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_call_records_correlation_id", table_name="call_records")
    op.drop_index("ix_call_records_call_sid", table_name="call_records")
    op.drop_table("call_records")
