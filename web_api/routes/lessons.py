"""Lesson engine API routes.

Endpoints:
- GET  /api/lessons/{lesson_id} - Runtime descriptor and the learner's status
- POST /api/lessons/{lesson_id}/progress - Report watched segments
- POST /api/lessons/{lesson_id}/quiz - Submit quiz answers (once)
- POST /api/lessons/{lesson_id}/diagnostics - Store chat-scored diagnostics
- POST /api/lessons/{lesson_id}/augmentations - Re-plan augmentations
- POST /api/lessons/{lesson_id}/augmentations/{augmentation_id}/complete
"""

import logging

import sentry_sdk
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from core.config import is_dev_mode
from core.database import get_transaction
from core.enums import LessonEngineState
from core.lessons.assessment import (
    AssessmentAlreadySubmittedError,
    InvalidAnswerError,
    get_latest_diagnostics,
    normalize_diagnostics,
    record_chat_diagnostics,
    submit_quiz,
)
from core.lessons.augmentations import (
    AugmentationNotFoundError,
    check_augment_quota,
    mark_augmentation_complete,
    plan_lesson_augmentations,
    record_augment_request,
)
from core.lessons.completion import sync_lesson_state
from core.lessons.progress import record_progress
from core.lessons.runtime import LessonNotFoundError, get_lesson_runtime
from core.lessons.types import ASSESSMENT_QUIZ
from web_api.auth import get_current_user_id

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/lessons", tags=["lessons"])


# --- Request/Response Models ---


class ProgressRequest(BaseModel):
    segments: list[list[float]]


class ProgressResponse(BaseModel):
    uniqueSeconds: float
    ratio: float
    reachedThreshold: bool
    state: str


class QuizRequest(BaseModel):
    answers: dict[str, str]


class DiagnosticItem(BaseModel):
    objectiveId: str
    level: str
    score: float | None = None


class DiagnosticsRequest(BaseModel):
    results: list[DiagnosticItem]


# --- Helpers ---


async def _load_runtime(conn, lesson_id: str):
    try:
        return await get_lesson_runtime(conn, lesson_id)
    except LessonNotFoundError:
        raise HTTPException(404, "Lesson not found")


def _augmentations_payload(items, trace) -> dict:
    payload = {"augmentations": [item.to_dict() for item in items]}
    if is_dev_mode():
        payload["trace"] = trace
    return payload


# --- Endpoints ---


@router.get("/{lesson_id}")
async def get_lesson(lesson_id: str, user_id: int = Depends(get_current_user_id)):
    """Get the lesson runtime (without answers) and the learner's current status."""
    async with get_transaction() as conn:
        runtime = await _load_runtime(conn, lesson_id)
        status = await sync_lesson_state(conn, user_id=user_id, runtime=runtime)

    return {"lesson": runtime.to_dict(), "status": status.to_dict()}


@router.post("/{lesson_id}/progress", response_model=ProgressResponse)
async def report_progress(
    lesson_id: str,
    body: ProgressRequest,
    user_id: int = Depends(get_current_user_id),
):
    """Merge watched segments into the learner's coverage.

    Segments outside the lesson duration are clipped; malformed ones are dropped.
    """
    async with get_transaction() as conn:
        runtime = await _load_runtime(conn, lesson_id)
        update = await record_progress(
            conn, user_id=user_id, runtime=runtime, segments=body.segments
        )
        status = await sync_lesson_state(conn, user_id=user_id, runtime=runtime)

    return ProgressResponse(
        uniqueSeconds=update.unique_seconds,
        ratio=update.ratio,
        reachedThreshold=update.reached_threshold,
        state=status.state.value,
    )


@router.post("/{lesson_id}/quiz")
async def submit_lesson_quiz(
    lesson_id: str,
    body: QuizRequest,
    user_id: int = Depends(get_current_user_id),
):
    """Score the learner's single quiz attempt and plan follow-up augmentations."""
    async with get_transaction() as conn:
        runtime = await _load_runtime(conn, lesson_id)
        if runtime.assessment_type != ASSESSMENT_QUIZ:
            raise HTTPException(400, "Lesson has no quiz")

        status = await sync_lesson_state(conn, user_id=user_id, runtime=runtime)
        if status.state == LessonEngineState.VIEWING:
            raise HTTPException(409, "Finish watching the lesson first")
        if status.state != LessonEngineState.ASSESSING:
            raise HTTPException(409, "Quiz already submitted")

        try:
            diagnostics, quiz = await submit_quiz(
                conn, user_id=user_id, runtime=runtime, answers=body.answers
            )
        except InvalidAnswerError as e:
            raise HTTPException(400, str(e))
        except AssessmentAlreadySubmittedError:
            raise HTTPException(409, "Quiz already submitted")

        items, trace = await plan_lesson_augmentations(
            conn, user_id=user_id, runtime=runtime, diagnostics=diagnostics
        )
        status = await sync_lesson_state(
            conn, user_id=user_id, runtime=runtime, diagnostics=diagnostics
        )

    return {
        "score": quiz.score_percent,
        "diagnostics": [result.to_dict() for result in diagnostics],
        **_augmentations_payload(items, trace),
        "status": status.to_dict(),
    }


@router.post("/{lesson_id}/diagnostics")
async def submit_chat_diagnostics(
    lesson_id: str,
    body: DiagnosticsRequest,
    user_id: int = Depends(get_current_user_id),
):
    """Store diagnostics scored from an assessment chat and plan augmentations."""
    diagnostics = normalize_diagnostics([item.model_dump() for item in body.results])
    if not diagnostics:
        raise HTTPException(400, "No valid diagnostic results")

    async with get_transaction() as conn:
        runtime = await _load_runtime(conn, lesson_id)
        status = await sync_lesson_state(conn, user_id=user_id, runtime=runtime)
        if status.state == LessonEngineState.VIEWING:
            raise HTTPException(409, "Finish watching the lesson first")
        if status.state == LessonEngineState.COMPLETED:
            raise HTTPException(409, "Lesson already completed")

        await record_chat_diagnostics(
            conn, user_id=user_id, lesson_id=runtime.id, diagnostics=diagnostics
        )
        items, trace = await plan_lesson_augmentations(
            conn, user_id=user_id, runtime=runtime, diagnostics=diagnostics
        )
        status = await sync_lesson_state(
            conn, user_id=user_id, runtime=runtime, diagnostics=diagnostics
        )

    return {
        "diagnostics": [result.to_dict() for result in diagnostics],
        **_augmentations_payload(items, trace),
        "status": status.to_dict(),
    }


@router.post("/{lesson_id}/augmentations")
async def plan_augmentations_for_lesson(
    lesson_id: str,
    user_id: int = Depends(get_current_user_id),
):
    """Re-plan augmentations from the latest diagnostics.

    Rate limited per learner and lesson (AUGMENT_MAX_PER_HOUR re-plan
    requests per hour).
    """
    async with get_transaction() as conn:
        runtime = await _load_runtime(conn, lesson_id)
        diagnostics = await get_latest_diagnostics(
            conn, user_id=user_id, lesson_id=runtime.id
        )
        if diagnostics is None:
            raise HTTPException(409, "No diagnostics yet")

        status = await sync_lesson_state(
            conn, user_id=user_id, runtime=runtime, diagnostics=diagnostics
        )
        if status.state == LessonEngineState.COMPLETED:
            raise HTTPException(409, "Lesson already completed")

        quota = await check_augment_quota(conn, user_id=user_id, lesson_id=runtime.id)
        if not quota.ok:
            raise HTTPException(429, "Augmentation limit reached, try again later")
        await record_augment_request(conn, user_id=user_id, lesson_id=runtime.id)

        items, trace = await plan_lesson_augmentations(
            conn, user_id=user_id, runtime=runtime, diagnostics=diagnostics
        )
        status = await sync_lesson_state(
            conn, user_id=user_id, runtime=runtime, diagnostics=diagnostics
        )

    return {
        **_augmentations_payload(items, trace),
        "remaining": quota.remaining - 1,
        "status": status.to_dict(),
    }


@router.post("/{lesson_id}/augmentations/{augmentation_id}/complete")
async def complete_augmentation(
    lesson_id: str,
    augmentation_id: str,
    user_id: int = Depends(get_current_user_id),
):
    """Mark a served augmentation complete. Idempotent."""
    async with get_transaction() as conn:
        try:
            pending = await mark_augmentation_complete(
                conn,
                user_id=user_id,
                lesson_id=lesson_id,
                augmentation_id=augmentation_id,
            )
        except AugmentationNotFoundError:
            raise HTTPException(404, "Augmentation not found")

    # State sync is best-effort: the completion above is already committed
    state = None
    try:
        async with get_transaction() as conn:
            runtime = await get_lesson_runtime(conn, lesson_id)
            status = await sync_lesson_state(conn, user_id=user_id, runtime=runtime)
            state = status.state.value
    except Exception as e:
        logger.error(
            "State sync failed after completing %s for user %s: %s",
            augmentation_id,
            user_id,
            e,
        )
        sentry_sdk.capture_exception(e)

    return {"augmentationId": augmentation_id, "pending": pending, "state": state}
