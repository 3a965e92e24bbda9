"""Lesson assessments and the diagnostics they produce.

Quiz submissions are scored here and turned into per-objective diagnostic
results. Chat assessments are scored elsewhere; their diagnostics are only
stored here (the CHAT_SCORED path).
"""

import logging
import math
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import and_, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncConnection

from core.enums import AssessmentType, DiagnosticLevel
from core.tables import lesson_assessments

from .types import DiagnosticResult, LessonObjective, LessonRuntime, QuizQuestion

logger = logging.getLogger(__name__)

PARTIAL_THRESHOLD_FRACTION = 0.5
OVERALL_OBJECTIVE_ID = "overall"


class InvalidAnswerError(ValueError):
    """Raised when quiz answers are missing or not one of the offered options."""


class AssessmentAlreadySubmittedError(Exception):
    """Raised on a second quiz submission for the same lesson."""


@dataclass(frozen=True)
class QuestionResult:
    question_id: str
    answer: str
    is_correct: bool


@dataclass(frozen=True)
class QuizResult:
    results: list[QuestionResult]
    score: float  # Fraction correct, 0-1

    @property
    def score_percent(self) -> int:
        return int(round(_clamp01(self.score) * 100))


def _clamp01(value: float) -> float:
    if not isinstance(value, (int, float)) or not math.isfinite(value):
        return 0.0
    return min(max(value, 0.0), 1.0)


def determine_level(score: float, pass_threshold: float) -> DiagnosticLevel:
    """MET at or above the threshold, PARTIAL at or above half of it."""
    threshold = _clamp01(pass_threshold)
    score = _clamp01(score)
    if score >= threshold:
        return DiagnosticLevel.MET

    partial = _clamp01(
        threshold * PARTIAL_THRESHOLD_FRACTION
        if threshold > 0
        else PARTIAL_THRESHOLD_FRACTION
    )
    if score >= partial:
        return DiagnosticLevel.PARTIAL
    return DiagnosticLevel.NOT_MET


def score_quiz(questions: list[QuizQuestion], answers: Mapping) -> QuizResult:
    """Score multiple-choice answers.

    Every question needs an answer that is one of its option keys.

    Raises:
        InvalidAnswerError: on missing, malformed or unknown answers
    """
    if not questions:
        raise InvalidAnswerError("Quiz has no questions")
    if not isinstance(answers, Mapping) or not answers:
        raise InvalidAnswerError("No answers submitted")

    results = []
    for question in questions:
        answer = answers.get(question.id)
        if not isinstance(answer, str) or not answer:
            raise InvalidAnswerError(f"Missing answer for question {question.id}")
        if answer not in {option.key for option in question.options}:
            raise InvalidAnswerError(f"Invalid answer choice for question {question.id}")

        results.append(
            QuestionResult(
                question_id=question.id,
                answer=answer,
                is_correct=question.correct_key is not None
                and answer == question.correct_key,
            )
        )

    correct = sum(1 for result in results if result.is_correct)
    return QuizResult(results=results, score=_clamp01(correct / len(results)))


def build_diagnostics(
    objectives: list[LessonObjective], score: float, pass_threshold: float
) -> list[DiagnosticResult]:
    """One result per objective; a single "overall" result if there are none."""
    level = determine_level(score, pass_threshold)
    if not objectives:
        return [DiagnosticResult(OVERALL_OBJECTIVE_ID, level, score)]
    return [DiagnosticResult(objective.id, level, score) for objective in objectives]


def normalize_diagnostics(value) -> list[DiagnosticResult]:
    """Decode stored diagnostics. Accepts {"results": [...]} or a bare list."""
    if isinstance(value, Mapping):
        value = value.get("results")
    if not isinstance(value, list):
        return []

    diagnostics = []
    for item in value:
        if not isinstance(item, Mapping):
            continue
        objective_id = item.get("objectiveId", item.get("objective_id"))
        level = item.get("level")
        score = item.get("score")
        if not isinstance(objective_id, str) or not objective_id:
            continue
        if not isinstance(level, str):
            continue
        try:
            parsed_level = DiagnosticLevel(level.upper())
        except ValueError:
            continue
        if isinstance(score, bool) or not isinstance(score, (int, float)):
            score = None
        diagnostics.append(DiagnosticResult(objective_id, parsed_level, score))
    return diagnostics


def _diagnostics_json(diagnostics: list[DiagnosticResult]) -> dict:
    return {"results": [result.to_dict() for result in diagnostics]}


async def submit_quiz(
    conn: AsyncConnection,
    *,
    user_id: int,
    runtime: LessonRuntime,
    answers: Mapping,
) -> tuple[list[DiagnosticResult], QuizResult]:
    """Score and persist a learner's single quiz attempt for a lesson.

    Raises:
        InvalidAnswerError: if the answers don't fit the quiz
        AssessmentAlreadySubmittedError: if the learner already submitted
    """
    quiz = score_quiz(runtime.quiz_questions, answers)
    diagnostics = build_diagnostics(
        runtime.objectives, quiz.score, runtime.pass_threshold
    )
    passed = quiz.score >= _clamp01(runtime.pass_threshold)

    # One attempt per learner: the unique constraint decides races
    result = await conn.execute(
        pg_insert(lesson_assessments)
        .values(
            user_id=user_id,
            lesson_id=runtime.id,
            assessment_type=AssessmentType.quiz,
            score=quiz.score_percent,
            is_passed=passed,
            diagnostic_json=_diagnostics_json(diagnostics),
            raw={
                "answers": [[r.question_id, r.answer] for r in quiz.results],
                "threshold": runtime.pass_threshold,
            },
            completed_at=datetime.now(timezone.utc),
        )
        .on_conflict_do_nothing(
            index_elements=["user_id", "lesson_id", "assessment_type"]
        )
        .returning(lesson_assessments.c.assessment_id)
    )
    if result.fetchone() is None:
        raise AssessmentAlreadySubmittedError("Quiz already submitted")

    logger.info(
        "Quiz submitted user=%s lesson=%s score=%d%% passed=%s",
        user_id,
        runtime.id,
        quiz.score_percent,
        passed,
    )
    return diagnostics, quiz


async def record_chat_diagnostics(
    conn: AsyncConnection,
    *,
    user_id: int,
    lesson_id: str,
    diagnostics: list[DiagnosticResult],
) -> None:
    """Store diagnostics produced by chat scoring. Re-scoring replaces them."""
    now = datetime.now(timezone.utc)
    stmt = pg_insert(lesson_assessments).values(
        user_id=user_id,
        lesson_id=lesson_id,
        assessment_type=AssessmentType.chat,
        diagnostic_json=_diagnostics_json(diagnostics),
        completed_at=now,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["user_id", "lesson_id", "assessment_type"],
        set_={
            "diagnostic_json": stmt.excluded.diagnostic_json,
            "completed_at": now,
            "updated_at": now,
        },
    )
    await conn.execute(stmt)


async def get_latest_diagnostics(
    conn: AsyncConnection, *, user_id: int, lesson_id: str
) -> list[DiagnosticResult] | None:
    """Diagnostics of the most recently completed assessment, or None if none exist."""
    result = await conn.execute(
        select(lesson_assessments.c.diagnostic_json)
        .where(
            and_(
                lesson_assessments.c.user_id == user_id,
                lesson_assessments.c.lesson_id == lesson_id,
                lesson_assessments.c.diagnostic_json.isnot(None),
                lesson_assessments.c.completed_at.isnot(None),
            )
        )
        .order_by(
            lesson_assessments.c.completed_at.desc(),
            lesson_assessments.c.updated_at.desc(),
            lesson_assessments.c.started_at.desc(),
        )
        .limit(1)
    )
    row = result.fetchone()
    if row is None:
        return None
    return normalize_diagnostics(row.diagnostic_json)


async def has_submitted_assessment(
    conn: AsyncConnection, *, user_id: int, lesson_id: str
) -> bool:
    result = await conn.execute(
        select(lesson_assessments.c.assessment_id)
        .where(
            and_(
                lesson_assessments.c.user_id == user_id,
                lesson_assessments.c.lesson_id == lesson_id,
            )
        )
        .limit(1)
    )
    return result.fetchone() is not None
