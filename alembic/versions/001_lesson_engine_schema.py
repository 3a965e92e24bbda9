"""Lesson engine schema.

Revision ID: 001
Revises:
Create Date: 2026-10-19

Creates the enum types and the tables behind watch coverage, assessments
and served augmentations.
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import ENUM, JSONB

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

lesson_engine_state = ENUM(
    "VIEWING",
    "ASSESSING",
    "DIAGNOSING",
    "AUGMENTING",
    "COMPLETED",
    name="lesson_engine_state",
    create_type=False,
)
assessment_type = ENUM("quiz", "chat", name="assessment_type", create_type=False)


def _user_fk() -> sa.Column:
    return sa.Column(
        "user_id",
        sa.Integer(),
        sa.ForeignKey("users.user_id", ondelete="CASCADE"),
        nullable=False,
    )


def _lesson_fk() -> sa.Column:
    return sa.Column(
        "lesson_id",
        sa.Text(),
        sa.ForeignKey("lessons.lesson_id", ondelete="CASCADE"),
        nullable=False,
    )


def _timestamp(name: str, nullable: bool = False) -> sa.Column:
    if nullable:
        return sa.Column(name, sa.DateTime(timezone=True), nullable=True)
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        server_default=sa.func.now(),
        nullable=False,
    )


def upgrade() -> None:
    lesson_engine_state.create(op.get_bind(), checkfirst=True)
    assessment_type.create(op.get_bind(), checkfirst=True)

    op.create_table(
        "users",
        sa.Column("user_id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("email", sa.Text(), nullable=True),
        sa.Column("nickname", sa.Text(), nullable=True),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.func.now(),
            nullable=True,
        ),
        sa.PrimaryKeyConstraint("user_id", name="pk_users"),
    )

    op.create_table(
        "lessons",
        sa.Column("lesson_id", sa.Text(), nullable=False),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("duration_s", sa.Integer(), server_default="0", nullable=False),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.func.now(),
            nullable=True,
        ),
        sa.PrimaryKeyConstraint("lesson_id", name="pk_lessons"),
    )

    op.create_table(
        "lesson_runtime_snapshots",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        _lesson_fk(),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("runtime_json", JSONB(), nullable=False),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.func.now(),
            nullable=True,
        ),
        sa.PrimaryKeyConstraint("id", name="pk_lesson_runtime_snapshots"),
        sa.UniqueConstraint("lesson_id", "version", name="uq_lesson_runtime_version"),
    )

    op.create_table(
        "lesson_progress",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        _user_fk(),
        _lesson_fk(),
        sa.Column("segments", JSONB(), server_default="[]", nullable=False),
        sa.Column("unique_seconds", sa.Float(), server_default="0", nullable=False),
        sa.Column("watched_seconds", sa.Integer(), server_default="0", nullable=False),
        sa.Column("threshold_pct", sa.Float(), server_default="0.95", nullable=False),
        sa.Column("engine_state", lesson_engine_state, nullable=True),
        _timestamp("last_heartbeat_at", nullable=True),
        _timestamp("completed_at", nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.PrimaryKeyConstraint("id", name="pk_lesson_progress"),
        sa.UniqueConstraint(
            "user_id", "lesson_id", name="uq_lesson_progress_user_lesson"
        ),
        sa.CheckConstraint(
            "threshold_pct >= 0 AND threshold_pct <= 1",
            name="ck_lesson_progress_valid_threshold_pct",
        ),
    )

    op.create_table(
        "lesson_assessments",
        sa.Column("assessment_id", sa.Integer(), autoincrement=True, nullable=False),
        _user_fk(),
        _lesson_fk(),
        sa.Column("assessment_type", assessment_type, nullable=False),
        sa.Column("score", sa.Integer(), nullable=True),
        sa.Column("is_passed", sa.Boolean(), nullable=True),
        sa.Column("diagnostic_json", JSONB(), nullable=True),
        sa.Column("raw", JSONB(), nullable=True),
        _timestamp("started_at"),
        _timestamp("completed_at", nullable=True),
        _timestamp("updated_at"),
        sa.PrimaryKeyConstraint("assessment_id", name="pk_lesson_assessments"),
        sa.UniqueConstraint(
            "user_id",
            "lesson_id",
            "assessment_type",
            name="uq_lesson_assessments_user_lesson_type",
        ),
    )

    op.create_table(
        "augmentations_served",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        _user_fk(),
        _lesson_fk(),
        sa.Column("augmentation_id", sa.Text(), nullable=False),
        sa.Column("objective_id", sa.Text(), nullable=False),
        sa.Column("asset_ref", sa.Text(), nullable=False),
        sa.Column("rule_index", sa.Integer(), nullable=False),
        sa.Column("diagnostic_json", JSONB(), nullable=True),
        _timestamp("created_at"),
        _timestamp("completed_at", nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_augmentations_served"),
        sa.UniqueConstraint(
            "user_id",
            "lesson_id",
            "augmentation_id",
            name="uq_augmentations_served_user_lesson_aug",
        ),
    )

    # Served history per (user, lesson) in time order
    op.create_index(
        "idx_augmentations_served_created",
        "augmentations_served",
        ["user_id", "lesson_id", "created_at"],
    )


def downgrade() -> None:
    op.drop_index("idx_augmentations_served_created", table_name="augmentations_served")
    op.drop_table("augmentations_served")
    op.drop_table("lesson_assessments")
    op.drop_table("lesson_progress")
    op.drop_table("lesson_runtime_snapshots")
    op.drop_table("lessons")
    op.drop_table("users")
    assessment_type.drop(op.get_bind(), checkfirst=True)
    lesson_engine_state.drop(op.get_bind(), checkfirst=True)
