"""backend sync tables

Revision ID: 0002_backend_sync
Revises: 0001_init
Create Date: 2026-10-18
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

revision = "0002_backend_sync"
down_revision = "0001_init"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "backend_records",
        sa.Column("user_id", sa.String(length=64), primary_key=True),
        sa.Column("record_id", sa.String(length=80), primary_key=True),
        sa.Column("kind", sa.String(length=20), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.String(length=32), nullable=False),
        sa.Column("updated_at", sa.String(length=32), nullable=False),
        sa.Column("device_id", sa.String(length=64), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("base_version", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("base_hash", sa.String(length=80), nullable=True),
        sa.Column("tombstone", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("content_hash", sa.String(length=80), nullable=False),
        sa.Column("pushed_by", sa.String(length=64), nullable=False),
        sa.Column("seq", sa.Integer(), nullable=False),
    )
    op.create_index("ix_backend_records_user_seq", "backend_records", ["user_id", "seq"])

    op.create_table(
        "backend_record_versions",
        sa.Column("user_id", sa.String(length=64), primary_key=True),
        sa.Column("record_id", sa.String(length=80), primary_key=True),
        sa.Column("version", sa.Integer(), primary_key=True),
        sa.Column("content_hash", sa.String(length=80), nullable=False),
        sa.Column("seq", sa.Integer(), nullable=False),
    )

    op.create_table(
        "backend_sequences",
        sa.Column("user_id", sa.String(length=64), primary_key=True),
        sa.Column("last_seq", sa.Integer(), nullable=False, server_default="0"),
    )

    op.create_table(
        "backend_device_cursors",
        sa.Column("user_id", sa.String(length=64), primary_key=True),
        sa.Column("device_id", sa.String(length=64), primary_key=True),
        sa.Column("last_pulled_seq", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_seen_at", sa.DateTime(timezone=True), nullable=False),
    )


def downgrade() -> None:
    op.drop_table("backend_device_cursors")
    op.drop_table("backend_sequences")
    op.drop_table("backend_record_versions")
    op.drop_index("ix_backend_records_user_seq", table_name="backend_records")
    op.drop_table("backend_records")
