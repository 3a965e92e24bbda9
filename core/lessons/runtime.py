"""Lesson runtime descriptors.

A runtime descriptor is the published, versioned view of a lesson the engine
runs against: duration, objectives, augmentation rules and quiz. It is
stored as JSON in lesson_runtime_snapshots (written by the CMS sync), and
decoded tolerantly here: malformed entries are dropped, not rejected.
"""

import logging
import math
from collections.abc import Mapping

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncConnection

from core.tables import lesson_runtime_snapshots, lessons

from .types import (
    ASSESSMENT_NONE,
    ASSESSMENT_QUIZ,
    AugmentationRule,
    LessonObjective,
    LessonRuntime,
    QuizOption,
    QuizQuestion,
)

logger = logging.getLogger(__name__)

DEFAULT_PASS_THRESHOLD = 1.0


class LessonNotFoundError(Exception):
    """Raised when neither a runtime snapshot nor a lesson row exists."""


def _pick(record: Mapping, *keys, default=None):
    """First present key, so camelCase and snake_case payloads both work."""
    for key in keys:
        if key in record and record[key] is not None:
            return record[key]
    return default


def _clamp01(value: float) -> float:
    if not math.isfinite(value):
        return 0.0
    return min(max(value, 0.0), 1.0)


def _to_threshold(value) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return _clamp01(float(value)) if math.isfinite(value) else None
    if isinstance(value, str):
        try:
            parsed = float(value)
        except ValueError:
            return None
        return _clamp01(parsed) if math.isfinite(parsed) else None
    return None


def normalize_objectives(value) -> list[LessonObjective]:
    if not isinstance(value, list):
        return []

    objectives = []
    for item in value:
        if not isinstance(item, Mapping):
            continue
        objective_id = item.get("id")
        summary = item.get("summary")
        if not isinstance(objective_id, str) or not objective_id:
            continue
        if not isinstance(summary, str) or not summary:
            continue
        objectives.append(LessonObjective(id=objective_id, summary=summary))
    return objectives


def normalize_augmentation_rules(value) -> list[AugmentationRule]:
    """Decode authored rules. A rule needs a target and an asset reference."""
    if not isinstance(value, list):
        return []

    rules = []
    for item in value:
        if not isinstance(item, Mapping):
            continue

        raw_targets = item.get("targets")
        targets = (
            tuple(t for t in raw_targets if isinstance(t, str) and t)
            if isinstance(raw_targets, list)
            else ()
        )
        when_expr = _pick(item, "whenExpr", "when_expr", default="")
        asset_ref = _pick(item, "assetRef", "asset_ref", default="")

        if not targets or not isinstance(asset_ref, str) or not asset_ref:
            continue

        rules.append(
            AugmentationRule(
                targets=targets,
                when_expr=when_expr if isinstance(when_expr, str) else "",
                asset_ref=asset_ref,
            )
        )
    return rules


def _normalize_options(value) -> tuple[QuizOption, ...]:
    if not isinstance(value, list):
        return ()

    options = []
    for index, item in enumerate(value):
        if isinstance(item, str):
            # Bare strings get positional keys: A, B, C...
            options.append(QuizOption(key=chr(ord("A") + index), label=item))
        elif isinstance(item, Mapping):
            key = item.get("key")
            label = _pick(item, "label", "text", default="")
            if isinstance(key, str) and key:
                options.append(QuizOption(key=key, label=str(label)))
    return tuple(options)


def normalize_quiz_questions(value) -> list[QuizQuestion]:
    """Decode multiple-choice questions. Questions without options are dropped."""
    if not isinstance(value, list):
        return []

    questions = []
    for item in value:
        if not isinstance(item, Mapping):
            continue
        question_id = item.get("id")
        prompt = item.get("prompt")
        question_type = str(item.get("type", "MCQ")).upper()
        if not isinstance(question_id, str) or not question_id:
            continue
        if not isinstance(prompt, str) or not prompt:
            continue
        if question_type != "MCQ":
            logger.warning(
                "Skipping unsupported question type %s (%s)", question_type, question_id
            )
            continue

        options = _normalize_options(item.get("options"))
        if not options:
            continue

        correct_key = _pick(item, "correctKey", "correct_key")
        questions.append(
            QuizQuestion(
                id=question_id,
                prompt=prompt,
                options=options,
                correct_key=correct_key if isinstance(correct_key, str) else None,
            )
        )
    return questions


def extract_pass_threshold(snapshot: Mapping) -> float:
    """Quiz pass threshold in [0, 1]; the first finite candidate wins."""
    assessment = snapshot.get("assessment")
    if isinstance(assessment, Mapping):
        for key in ("threshold", "passThreshold", "requiredScore"):
            threshold = _to_threshold(assessment.get(key))
            if threshold is not None:
                return threshold

    settings = snapshot.get("settings")
    candidates = [
        snapshot.get("assessmentThreshold"),
        snapshot.get("passThreshold"),
        settings.get("assessmentThreshold") if isinstance(settings, Mapping) else None,
    ]
    for candidate in candidates:
        threshold = _to_threshold(candidate)
        if threshold is not None:
            return threshold

    return DEFAULT_PASS_THRESHOLD


def runtime_from_snapshot(lesson_id: str, snapshot) -> LessonRuntime | None:
    """Build a LessonRuntime from snapshot JSON. None if it is unusable."""
    if not isinstance(snapshot, Mapping):
        return None

    title = snapshot.get("title")
    if not isinstance(title, str) or not title:
        return None

    duration = _pick(snapshot, "durationSec", "duration_sec", default=0)
    if isinstance(duration, bool) or not isinstance(duration, (int, float)):
        duration = 0

    assessment_type = _pick(
        snapshot, "assessmentType", "assessment_type", default=ASSESSMENT_QUIZ
    )
    video_id = _pick(snapshot, "videoId", "video_id", "streamId")

    quiz = snapshot.get("quiz")
    raw_questions = quiz.get("questions") if isinstance(quiz, Mapping) else quiz

    return LessonRuntime(
        id=lesson_id,
        title=title,
        duration_sec=duration,
        objectives=normalize_objectives(snapshot.get("objectives")),
        augmentations=normalize_augmentation_rules(snapshot.get("augmentations")),
        assessment_type=str(assessment_type).upper(),
        pass_threshold=extract_pass_threshold(snapshot),
        quiz_questions=normalize_quiz_questions(raw_questions),
        video_id=video_id if isinstance(video_id, str) else None,
    )


async def get_lesson_runtime(conn: AsyncConnection, lesson_id: str) -> LessonRuntime:
    """Load the latest runtime snapshot, falling back to the bare lesson row.

    Raises:
        LessonNotFoundError: if the lesson does not exist at all
    """
    result = await conn.execute(
        select(lesson_runtime_snapshots.c.runtime_json)
        .where(lesson_runtime_snapshots.c.lesson_id == lesson_id)
        .order_by(lesson_runtime_snapshots.c.version.desc())
        .limit(1)
    )
    row = result.fetchone()
    if row:
        runtime = runtime_from_snapshot(lesson_id, row.runtime_json)
        if runtime:
            return runtime
        logger.warning("Ignoring malformed runtime snapshot for lesson %s", lesson_id)

    result = await conn.execute(
        select(lessons.c.lesson_id, lessons.c.title, lessons.c.duration_s).where(
            lessons.c.lesson_id == lesson_id
        )
    )
    lesson = result.fetchone()
    if not lesson:
        raise LessonNotFoundError(f"Lesson not found: {lesson_id}")

    # No snapshot: no objectives, no rules, nothing to assess
    return LessonRuntime(
        id=lesson.lesson_id,
        title=lesson.title,
        duration_sec=lesson.duration_s,
        assessment_type=ASSESSMENT_NONE,
    )
