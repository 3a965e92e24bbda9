"""SQLAlchemy Core table definitions for the database schema."""

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    Table,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB, TIMESTAMP

from .enums import assessment_type_enum, lesson_engine_state_enum

# Naming convention for constraints (helps Alembic generate better names)
convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}
metadata = MetaData(naming_convention=convention)


# =====================================================
# 1. USERS
# =====================================================
users = Table(
    "users",
    metadata,
    Column("user_id", Integer, primary_key=True, autoincrement=True),
    Column("email", Text),
    Column("nickname", Text),
    Column("created_at", TIMESTAMP(timezone=True), server_default=func.now()),
)


# =====================================================
# 2. LESSONS
# =====================================================
lessons = Table(
    "lessons",
    metadata,
    Column("lesson_id", Text, primary_key=True),
    Column("title", Text, nullable=False),
    Column("duration_s", Integer, server_default="0", nullable=False),
    Column("created_at", TIMESTAMP(timezone=True), server_default=func.now()),
)


# =====================================================
# 3. LESSON_RUNTIME_SNAPSHOTS
# Versioned runtime descriptors published by the CMS sync.
# =====================================================
lesson_runtime_snapshots = Table(
    "lesson_runtime_snapshots",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column(
        "lesson_id",
        Text,
        ForeignKey("lessons.lesson_id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("version", Integer, nullable=False),
    Column("runtime_json", JSONB, nullable=False),
    Column("created_at", TIMESTAMP(timezone=True), server_default=func.now()),
    UniqueConstraint("lesson_id", "version", name="uq_lesson_runtime_version"),
)


# =====================================================
# 4. LESSON_PROGRESS
# One row per (user, lesson). segments is the canonical merged list.
# =====================================================
lesson_progress = Table(
    "lesson_progress",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column(
        "user_id",
        Integer,
        ForeignKey("users.user_id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column(
        "lesson_id",
        Text,
        ForeignKey("lessons.lesson_id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("segments", JSONB, server_default="[]", nullable=False),
    Column("unique_seconds", Float, server_default="0", nullable=False),
    Column("watched_seconds", Integer, server_default="0", nullable=False),
    Column("threshold_pct", Float, server_default="0.95", nullable=False),
    # Cache of the derived engine state; always recomputable
    Column("engine_state", lesson_engine_state_enum, nullable=True),
    Column("last_heartbeat_at", DateTime(timezone=True), nullable=True),
    Column("completed_at", DateTime(timezone=True), nullable=True),
    Column(
        "created_at", DateTime(timezone=True), server_default=func.now(), nullable=False
    ),
    Column(
        "updated_at", DateTime(timezone=True), server_default=func.now(), nullable=False
    ),
    UniqueConstraint("user_id", "lesson_id", name="uq_lesson_progress_user_lesson"),
    CheckConstraint(
        "threshold_pct >= 0 AND threshold_pct <= 1", name="valid_threshold_pct"
    ),
)


# =====================================================
# 5. LESSON_ASSESSMENTS
# =====================================================
lesson_assessments = Table(
    "lesson_assessments",
    metadata,
    Column("assessment_id", Integer, primary_key=True, autoincrement=True),
    Column(
        "user_id",
        Integer,
        ForeignKey("users.user_id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column(
        "lesson_id",
        Text,
        ForeignKey("lessons.lesson_id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("assessment_type", assessment_type_enum, nullable=False),
    Column("score", Integer, nullable=True),  # Percentage 0-100
    Column("is_passed", Boolean, nullable=True),
    Column("diagnostic_json", JSONB, nullable=True),
    Column("raw", JSONB, nullable=True),
    Column(
        "started_at", DateTime(timezone=True), server_default=func.now(), nullable=False
    ),
    Column("completed_at", DateTime(timezone=True), nullable=True),
    Column(
        "updated_at", DateTime(timezone=True), server_default=func.now(), nullable=False
    ),
    UniqueConstraint(
        "user_id",
        "lesson_id",
        "assessment_type",
        name="uq_lesson_assessments_user_lesson_type",
    ),
)


# =====================================================
# 6. AUGMENTATIONS_SERVED
# augmentation_id is a stable hash of lesson|rule|objective|asset.
# =====================================================
augmentations_served = Table(
    "augmentations_served",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column(
        "user_id",
        Integer,
        ForeignKey("users.user_id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column(
        "lesson_id",
        Text,
        ForeignKey("lessons.lesson_id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("augmentation_id", Text, nullable=False),
    Column("objective_id", Text, nullable=False),
    Column("asset_ref", Text, nullable=False),
    Column("rule_index", Integer, nullable=False),
    Column("diagnostic_json", JSONB, nullable=True),
    Column(
        "created_at", DateTime(timezone=True), server_default=func.now(), nullable=False
    ),
    Column("completed_at", DateTime(timezone=True), nullable=True),
    UniqueConstraint(
        "user_id",
        "lesson_id",
        "augmentation_id",
        name="uq_augmentations_served_user_lesson_aug",
    ),
    Index("idx_augmentations_served_created", "user_id", "lesson_id", "created_at"),
)


# =====================================================
# 7. AUGMENTATION_REQUESTS
# One row per explicit re-plan request; the hourly quota counts these.
# =====================================================
augmentation_requests = Table(
    "augmentation_requests",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column(
        "user_id",
        Integer,
        ForeignKey("users.user_id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column(
        "lesson_id",
        Text,
        ForeignKey("lessons.lesson_id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column(
        "created_at", DateTime(timezone=True), server_default=func.now(), nullable=False
    ),
    Index("idx_augmentation_requests_created", "user_id", "lesson_id", "created_at"),
)
