"""Derive and cache a learner's lesson engine state.

The state is never the source of truth. It is recomputed from persisted
facts (coverage, assessment, diagnostics, served augmentations) by replaying
the events those facts imply through the state machine, then cached in
lesson_progress.engine_state. The same facts always give the same state.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncConnection

from core.config import get_default_threshold_pct
from core.enums import LessonEngineState, LessonEvent
from core.tables import lesson_progress

from .assessment import get_latest_diagnostics, has_submitted_assessment
from .augmentations import count_pending_augmentations, count_served_augmentations
from .coverage import get_completion_ratio
from .engine import can_start_assessment, replay
from .progress import get_progress
from .types import (
    ASSESSMENT_NONE,
    DiagnosticResult,
    LessonContext,
    LessonRuntime,
    ProgressSnapshot,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LessonStatus:
    state: LessonEngineState
    unique_seconds: float
    threshold_pct: float
    ratio: float
    can_start_assessment: bool
    pending_augmentations: int
    completed_at: datetime | None = None

    def to_dict(self) -> dict:
        return {
            "state": self.state.value,
            "uniqueSeconds": self.unique_seconds,
            "thresholdPct": self.threshold_pct,
            "ratio": self.ratio,
            "canStartAssessment": self.can_start_assessment,
            "pendingAugmentations": self.pending_augmentations,
            "completedAt": self.completed_at.isoformat() if self.completed_at else None,
        }


def derive_events(
    *,
    has_assessment: bool,
    has_diagnostics: bool,
    augmentations_pending: int,
) -> list[LessonEvent]:
    """Events implied by persisted facts, in the order they happen."""
    events = [LessonEvent.VIDEO_ENDED]
    if not has_assessment:
        return events
    events.append(LessonEvent.QUIZ_SUBMITTED)
    if not has_diagnostics:
        return events
    events.append(LessonEvent.DIAGNOSTIC_READY)
    if augmentations_pending == 0:
        events.append(LessonEvent.AUGMENT_DONE)
    return events


def derive_state(
    context: LessonContext,
    *,
    has_assessment: bool,
    augmentations_pending: int,
) -> LessonEngineState:
    """Recompute the state from scratch. Lessons without assessment skip straight through."""
    if context.runtime.assessment_type == ASSESSMENT_NONE:
        has_assessment = True
    events = derive_events(
        has_assessment=has_assessment,
        has_diagnostics=context.diagnostics is not None
        or context.runtime.assessment_type == ASSESSMENT_NONE,
        augmentations_pending=augmentations_pending,
    )
    return replay(events, context)


async def sync_lesson_state(
    conn: AsyncConnection,
    *,
    user_id: int,
    runtime: LessonRuntime,
    diagnostics: list[DiagnosticResult] | None = None,
) -> LessonStatus:
    """Recompute the learner's state and cache it on the progress row.

    Stamps completed_at the first time the state reaches COMPLETED. Once
    completed_at is set the state stays COMPLETED.
    """
    progress = await get_progress(conn, user_id=user_id, lesson_id=runtime.id)
    if diagnostics is None:
        diagnostics = await get_latest_diagnostics(
            conn, user_id=user_id, lesson_id=runtime.id
        )
    has_assessment = await has_submitted_assessment(
        conn, user_id=user_id, lesson_id=runtime.id
    )
    served = await count_served_augmentations(
        conn, user_id=user_id, lesson_id=runtime.id
    )
    pending = (
        await count_pending_augmentations(conn, user_id=user_id, lesson_id=runtime.id)
        if served
        else 0
    )

    unique_seconds = progress["unique_seconds"] if progress else 0.0
    threshold_pct = (
        progress["threshold_pct"]
        if progress and progress["threshold_pct"] is not None
        else get_default_threshold_pct()
    )
    context = LessonContext(
        runtime=runtime,
        progress=ProgressSnapshot(
            unique_seconds=unique_seconds, threshold_pct=threshold_pct
        ),
        diagnostics=diagnostics,
    )

    completed_at = progress["completed_at"] if progress else None
    if completed_at is not None:
        # COMPLETED is absorbing; later diagnostics or rule changes don't reopen it
        state = LessonEngineState.COMPLETED
    else:
        state = derive_state(
            context, has_assessment=has_assessment, augmentations_pending=pending
        )

    if progress:
        values = {"engine_state": state, "updated_at": datetime.now(timezone.utc)}
        if state == LessonEngineState.COMPLETED and completed_at is None:
            completed_at = datetime.now(timezone.utc)
            values["completed_at"] = completed_at
            logger.info("Lesson %s completed by user %s", runtime.id, user_id)
        await conn.execute(
            update(lesson_progress)
            .where(lesson_progress.c.id == progress["id"])
            .values(**values)
        )

    return LessonStatus(
        state=state,
        unique_seconds=unique_seconds,
        threshold_pct=threshold_pct,
        ratio=get_completion_ratio(
            duration_sec=runtime.duration_sec,
            unique_seconds=unique_seconds,
            threshold_pct=threshold_pct,
        ),
        can_start_assessment=can_start_assessment(state, context),
        pending_augmentations=pending,
        completed_at=completed_at,
    )
