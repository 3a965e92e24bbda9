"""SQLAlchemy enum definitions for the database schema."""

import enum

from sqlalchemy import Enum as SQLEnum


# =====================================================
# Python Enum Classes
# =====================================================


class DiagnosticLevel(str, enum.Enum):
    NOT_MET = "NOT_MET"
    PARTIAL = "PARTIAL"
    MET = "MET"


# Total order used by rule evaluation and state guards
LEVEL_ORDER: dict[DiagnosticLevel, int] = {
    DiagnosticLevel.NOT_MET: 0,
    DiagnosticLevel.PARTIAL: 1,
    DiagnosticLevel.MET: 2,
}


class LessonEngineState(str, enum.Enum):
    VIEWING = "VIEWING"
    ASSESSING = "ASSESSING"
    DIAGNOSING = "DIAGNOSING"
    AUGMENTING = "AUGMENTING"
    COMPLETED = "COMPLETED"


class LessonEvent(str, enum.Enum):
    VIDEO_ENDED = "VIDEO_ENDED"
    QUIZ_SUBMITTED = "QUIZ_SUBMITTED"
    CHAT_SCORED = "CHAT_SCORED"
    DIAGNOSTIC_READY = "DIAGNOSTIC_READY"
    AUGMENT_DONE = "AUGMENT_DONE"


class AssessmentType(str, enum.Enum):
    quiz = "quiz"
    chat = "chat"


# =====================================================
# SQLAlchemy Enum Types
# These reference existing PostgreSQL types (create_type=False)
# =====================================================

lesson_engine_state_enum = SQLEnum(
    LessonEngineState, name="lesson_engine_state", create_type=False, native_enum=True
)
assessment_type_enum = SQLEnum(
    AssessmentType, name="assessment_type", create_type=False, native_enum=True
)
