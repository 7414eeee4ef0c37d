"""create work packages

Revision ID: 202610190001
Revises:
Create Date: 2026-10-19 00:01:00
"""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa


revision: str = "202610190001"
down_revision: str | None = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "work_package",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("owner_company_id", sa.String(length=128), nullable=True),
        sa.Column("client_contact_id", sa.String(length=128), nullable=True),
        sa.Column("effective_start_date", sa.Date(), nullable=True),
        sa.Column("timeline_version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "work_package_phase",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("work_package_id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="not_started"),
        sa.Column("total_estimated_hours", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("phase_total_duration", sa.Integer(), nullable=True),
        sa.Column("estimated_start_date", sa.Date(), nullable=True),
        sa.Column("estimated_end_date", sa.Date(), nullable=True),
        sa.Column("start_date_locked", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("actual_start_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("actual_end_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["work_package_id"], ["work_package.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("work_package_id", "position", name="uq_work_package_phase_position"),
        sa.CheckConstraint(
            "phase_total_duration IS NULL OR phase_total_duration >= 0",
            name="ck_work_package_phase_duration",
        ),
        sa.CheckConstraint(
            "status IN ('not_started', 'in_progress', 'completed')",
            name="ck_work_package_phase_status",
        ),
    )
    op.create_index("ix_work_package_phase_order", "work_package_phase", ["work_package_id", "position"], unique=False)

    op.create_table(
        "work_package_item",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("phase_id", sa.Uuid(), nullable=False),
        sa.Column("deliverable_label", sa.String(length=255), nullable=False),
        sa.Column("deliverable_type", sa.String(length=64), nullable=True),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("estimated_hours_each", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["phase_id"], ["work_package_phase.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_work_package_item_phase", "work_package_item", ["phase_id"], unique=False)

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("actor_id", sa.String(length=128), nullable=False),
        sa.Column("action", sa.String(length=128), nullable=False),
        sa.Column("entity_type", sa.String(length=128), nullable=False),
        sa.Column("entity_id", sa.String(length=128), nullable=False),
        sa.Column("work_package_id", sa.Uuid(), nullable=True),
        sa.Column("before", sa.JSON(), nullable=True),
        sa.Column("after", sa.JSON(), nullable=True),
        sa.Column("correlation_id", sa.String(length=128), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_audit_logs_work_package", "audit_logs", ["work_package_id", "created_at"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_audit_logs_work_package", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_index("ix_work_package_item_phase", table_name="work_package_item")
    op.drop_table("work_package_item")
    op.drop_index("ix_work_package_phase_order", table_name="work_package_phase")
    op.drop_table("work_package_phase")
    op.drop_table("work_package")
