"""Add augmentation_requests table for the re-plan quota.

Revision ID: 002
Revises: 001
Create Date: 2026-10-19

Logs one row per explicit augmentation re-plan so the hourly quota counts
requests instead of served rows. Rows planned after a quiz or chat
diagnostics no longer use up the quota.
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "002"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "augmentation_requests",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("lesson_id", sa.Text(), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.ForeignKeyConstraint(
            ["user_id"],
            ["users.user_id"],
            name=op.f("fk_augmentation_requests_user_id_users"),
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["lesson_id"],
            ["lessons.lesson_id"],
            name=op.f("fk_augmentation_requests_lesson_id_lessons"),
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_augmentation_requests")),
    )
    op.create_index(
        "idx_augmentation_requests_created",
        "augmentation_requests",
        ["user_id", "lesson_id", "created_at"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index(
        "idx_augmentation_requests_created", table_name="augmentation_requests"
    )
    op.drop_table("augmentation_requests")
