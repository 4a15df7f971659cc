"""
Инициальная миграция.

Создаёт таблицы:
- pets (presence-флаги изображений)
- conversion_log (append-only журнал)
- sync_jobs (batch-задачи с version для compare-and-set)
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "pets",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("type", sa.String(length=8), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=True),
        sa.Column("has_jpeg", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("has_webp", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("image_checked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_pets_type", "pets", ["type"], unique=False)

    op.create_table(
        "conversion_log",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("message_type", sa.String(length=64), nullable=False),
        sa.Column("pet_id", sa.String(length=64), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("retry_count", sa.Integer(), nullable=False),
        sa.Column("noop", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_conversion_log_pet_id", "conversion_log", ["pet_id"], unique=False)

    op.create_table(
        "sync_jobs",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column(
            "kind", sa.Enum("full", "incremental", "image", name="jobkind"), nullable=False
        ),
        sa.Column(
            "status",
            sa.Enum("pending", "running", "completed", "failed", name="jobstatus"),
            nullable=False,
        ),
        sa.Column("progress_percent", sa.Integer(), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=False),
        sa.Column("total_items", sa.Integer(), nullable=False),
        sa.Column("processed_items", sa.Integer(), nullable=False),
        sa.Column("success_count", sa.Integer(), nullable=False),
        sa.Column("failed_count", sa.Integer(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
    )
    op.create_index("ix_sync_jobs_status", "sync_jobs", ["status"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_sync_jobs_status", table_name="sync_jobs")
    op.drop_table("sync_jobs")
    op.drop_index("ix_conversion_log_pet_id", table_name="conversion_log")
    op.drop_table("conversion_log")
    op.drop_index("ix_pets_type", table_name="pets")
    op.drop_table("pets")

    op.execute("DROP TYPE IF EXISTS jobstatus")
    op.execute("DROP TYPE IF EXISTS jobkind")
