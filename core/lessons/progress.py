"""Watch progress recording.

Persists the canonical segment list for each (user, lesson) and keeps the
derived unique_seconds / watched_seconds in step with it.

Concurrency: the read-merge-write cycle is a critical section per
(user, lesson). record_progress() makes sure the row exists with
INSERT ... ON CONFLICT DO NOTHING and then locks it with SELECT ... FOR UPDATE,
so two devices reporting at once serialize on the row lock instead of
overwriting each other's coverage. The lock is released when the caller's
get_transaction() block commits.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import and_, delete, func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncConnection

from core.config import get_default_threshold_pct
from core.tables import lesson_progress

from .coverage import (
    coerce_segments,
    compute_unique_seconds,
    get_completion_ratio,
    merge_segments,
    sanitize_segments,
)
from .types import ASSESSMENT_NONE, LessonRuntime, Segment

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProgressUpdate:
    unique_seconds: float
    ratio: float
    reached_threshold: bool
    is_new: bool = False
    became_complete: bool = False


def _where(user_id: int, lesson_id: str):
    return and_(
        lesson_progress.c.user_id == user_id,
        lesson_progress.c.lesson_id == lesson_id,
    )


def _round_seconds(value: float) -> int:
    if value <= 0:
        return 0
    return int(round(value))


def merge_progress_segments(
    stored, incoming: list[Segment], duration_sec: float
) -> list[Segment]:
    """Merge stored and newly reported segments, clipped to the lesson duration."""
    combined = [*coerce_segments(stored), *incoming]
    return merge_segments(sanitize_segments(combined, duration_sec))


async def record_progress(
    conn: AsyncConnection,
    *,
    user_id: int,
    runtime: LessonRuntime,
    segments,
) -> ProgressUpdate:
    """Merge newly watched segments into the learner's progress.

    Coverage never shrinks here. Lessons without an assessment are marked
    complete as soon as the watch threshold is reached; completion is sticky.
    """
    lesson_id = runtime.id
    duration_sec = max(runtime.duration_sec or 0, 0)
    incoming = coerce_segments(segments)

    # Ensure the row exists so there is always something to lock
    inserted = await conn.execute(
        pg_insert(lesson_progress)
        .values(
            user_id=user_id,
            lesson_id=lesson_id,
            threshold_pct=get_default_threshold_pct(),
        )
        .on_conflict_do_nothing(index_elements=["user_id", "lesson_id"])
        .returning(lesson_progress.c.id)
    )
    is_new = inserted.fetchone() is not None

    result = await conn.execute(
        select(lesson_progress).where(_where(user_id, lesson_id)).with_for_update()
    )
    existing = result.fetchone()

    merged = merge_progress_segments(existing.segments, incoming, duration_sec)
    unique_seconds = compute_unique_seconds(merged, duration_sec)
    threshold_pct = existing.threshold_pct
    if threshold_pct is None:
        threshold_pct = get_default_threshold_pct()
    ratio = get_completion_ratio(
        duration_sec=duration_sec,
        unique_seconds=unique_seconds,
        threshold_pct=threshold_pct,
    )
    reached_threshold = ratio >= 1

    already_complete = existing.completed_at is not None
    became_complete = (
        not already_complete
        and reached_threshold
        and runtime.assessment_type == ASSESSMENT_NONE
    )

    values = {
        "segments": [[start, end] for start, end in merged],
        "unique_seconds": unique_seconds,
        "watched_seconds": _round_seconds(min(unique_seconds, duration_sec)),
        "last_heartbeat_at": func.now(),
        "updated_at": func.now(),
    }
    if became_complete:
        values["completed_at"] = datetime.now(timezone.utc)

    await conn.execute(
        update(lesson_progress)
        .where(lesson_progress.c.id == existing.id)
        .values(**values)
    )
    # No explicit commit - let the caller's transaction context handle it

    logger.info(
        "Recorded progress user=%s lesson=%s unique=%.1fs ratio=%.3f",
        user_id,
        lesson_id,
        unique_seconds,
        ratio,
    )

    return ProgressUpdate(
        unique_seconds=unique_seconds,
        ratio=ratio,
        reached_threshold=reached_threshold,
        is_new=is_new,
        became_complete=became_complete,
    )


async def get_progress(
    conn: AsyncConnection, *, user_id: int, lesson_id: str
) -> dict | None:
    """Return the progress row as a dict, or None if the learner never started."""
    result = await conn.execute(
        select(lesson_progress).where(_where(user_id, lesson_id))
    )
    row = result.fetchone()
    return dict(row._mapping) if row else None


async def reset_progress(conn: AsyncConnection, *, user_id: int, lesson_id: str) -> bool:
    """Delete a learner's progress for a lesson. The only way coverage shrinks.

    Returns True if a row was deleted.
    """
    result = await conn.execute(delete(lesson_progress).where(_where(user_id, lesson_id)))
    return result.rowcount > 0
