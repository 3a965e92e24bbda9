"""Lesson engine: coverage, progression, diagnostics and orchestration."""

from .types import (
    Segment,
    LessonObjective,
    DiagnosticResult,
    AugmentationRule,
    Augmentation,
    AugmentationPlan,
    QuizOption,
    QuizQuestion,
    LessonRuntime,
    ProgressSnapshot,
    LessonContext,
)
from .coverage import (
    merge_segments,
    merge_segment,
    sum_segments,
    sanitize_segments,
    coerce_segments,
    compute_unique_seconds,
    get_completion_ratio,
)
from .engine import (
    INITIAL_STATE,
    transition,
    replay,
    assessment_allowed,
    needs_augmentation,
    can_start_assessment,
    can_diagnose,
    can_augment,
    is_done,
)
from .diagnostics import (
    parse_when_expr,
    evaluate_when_expr,
    plan_augmentations,
)
from .runtime import (
    get_lesson_runtime,
    runtime_from_snapshot,
    LessonNotFoundError,
)
from .progress import (
    record_progress,
    get_progress,
    reset_progress,
    ProgressUpdate,
)
from .assessment import (
    submit_quiz,
    record_chat_diagnostics,
    get_latest_diagnostics,
    score_quiz,
    determine_level,
    build_diagnostics,
    normalize_diagnostics,
    InvalidAnswerError,
    AssessmentAlreadySubmittedError,
)
from .augmentations import (
    plan_lesson_augmentations,
    mark_augmentation_complete,
    check_augment_quota,
    record_augment_request,
    compute_augmentation_id,
    PlannedAugmentation,
    Quota,
    AugmentationNotFoundError,
)
from .completion import (
    sync_lesson_state,
    derive_events,
    derive_state,
    LessonStatus,
)

__all__ = [
    "Segment",
    "LessonObjective",
    "DiagnosticResult",
    "AugmentationRule",
    "Augmentation",
    "AugmentationPlan",
    "QuizOption",
    "QuizQuestion",
    "LessonRuntime",
    "ProgressSnapshot",
    "LessonContext",
    "merge_segments",
    "merge_segment",
    "sum_segments",
    "sanitize_segments",
    "coerce_segments",
    "compute_unique_seconds",
    "get_completion_ratio",
    "INITIAL_STATE",
    "transition",
    "replay",
    "assessment_allowed",
    "needs_augmentation",
    "can_start_assessment",
    "can_diagnose",
    "can_augment",
    "is_done",
    "parse_when_expr",
    "evaluate_when_expr",
    "plan_augmentations",
    "get_lesson_runtime",
    "runtime_from_snapshot",
    "LessonNotFoundError",
    "record_progress",
    "get_progress",
    "reset_progress",
    "ProgressUpdate",
    "submit_quiz",
    "record_chat_diagnostics",
    "get_latest_diagnostics",
    "score_quiz",
    "determine_level",
    "build_diagnostics",
    "normalize_diagnostics",
    "InvalidAnswerError",
    "AssessmentAlreadySubmittedError",
    "plan_lesson_augmentations",
    "mark_augmentation_complete",
    "check_augment_quota",
    "record_augment_request",
    "compute_augmentation_id",
    "PlannedAugmentation",
    "Quota",
    "AugmentationNotFoundError",
    "sync_lesson_state",
    "derive_events",
    "derive_state",
    "LessonStatus",
]
