"""Augmentation planning and served-augmentation bookkeeping.

Wraps the pure evaluator with persistence. Each fired augmentation gets a
stable id (a hash of lesson, rule index, objective and asset), so re-planning
after new diagnostics keeps completion status for augmentations that are
still planned and drops the ones that no longer are.

Re-planning is idempotent: it depends only on current diagnostics and rules,
so when two requests race the last writer wins.
"""

import hashlib
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from sqlalchemy import and_, delete, func, insert, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncConnection

from core.config import get_augment_max_per_hour
from core.tables import augmentation_requests, augmentations_served

from .diagnostics import plan_augmentations
from .types import Augmentation, DiagnosticResult, LessonRuntime

logger = logging.getLogger(__name__)

QUOTA_WINDOW = timedelta(hours=1)


class AugmentationNotFoundError(Exception):
    """Raised when completing an augmentation that was never served."""


@dataclass(frozen=True)
class PlannedAugmentation:
    augmentation: Augmentation
    augmentation_id: str
    completed_at: datetime | None = None

    def to_dict(self) -> dict:
        diagnostic = self.augmentation.diagnostic
        return {
            "augmentationId": self.augmentation_id,
            "objectiveId": self.augmentation.objective.id,
            "objectiveSummary": self.augmentation.objective.summary,
            "assetRef": self.augmentation.asset_ref,
            "ruleIndex": self.augmentation.rule_index,
            "diagnostic": diagnostic.to_dict() if diagnostic else None,
            "completedAt": self.completed_at.isoformat() if self.completed_at else None,
        }


@dataclass(frozen=True)
class Quota:
    ok: bool
    remaining: int


def compute_augmentation_id(
    *, lesson_id: str, rule_index: int, objective_id: str, asset_ref: str
) -> str:
    """Stable identity of a fired augmentation: sha256 of lesson|rule|objective|asset."""
    key = f"{lesson_id}|{rule_index}|{objective_id}|{asset_ref}"
    return hashlib.sha256(key.encode("utf-8")).hexdigest()


def _where(user_id: int, lesson_id: str, *extra):
    return and_(
        augmentations_served.c.user_id == user_id,
        augmentations_served.c.lesson_id == lesson_id,
        *extra,
    )


async def plan_lesson_augmentations(
    conn: AsyncConnection,
    *,
    user_id: int,
    runtime: LessonRuntime,
    diagnostics: list[DiagnosticResult] | None,
) -> tuple[list[PlannedAugmentation], list[str]]:
    """Plan augmentations and sync the served set for this learner.

    Returns (items, trace). Items carry completed_at from earlier calls.
    """
    plan = plan_augmentations(
        objectives=runtime.objectives,
        diagnostics=diagnostics,
        rules=runtime.augmentations,
    )
    for entry in plan.trace:
        logger.debug("lesson=%s user=%s %s", runtime.id, user_id, entry)

    # A rule listing the same target twice fires twice with one id; keep the first
    by_id: dict[str, PlannedAugmentation] = {}
    for augmentation in plan.augmentations:
        augmentation_id = compute_augmentation_id(
            lesson_id=runtime.id,
            rule_index=augmentation.rule_index,
            objective_id=augmentation.objective.id,
            asset_ref=augmentation.asset_ref,
        )
        by_id.setdefault(
            augmentation_id,
            PlannedAugmentation(augmentation=augmentation, augmentation_id=augmentation_id),
        )
    planned = list(by_id.values())
    planned_ids = [item.augmentation_id for item in planned]

    if not planned_ids:
        await conn.execute(delete(augmentations_served).where(_where(user_id, runtime.id)))
        return [], plan.trace

    await conn.execute(
        delete(augmentations_served).where(
            _where(
                user_id,
                runtime.id,
                augmentations_served.c.augmentation_id.notin_(planned_ids),
            )
        )
    )

    for item in planned:
        diagnostic = item.augmentation.diagnostic
        values = {
            "objective_id": item.augmentation.objective.id,
            "asset_ref": item.augmentation.asset_ref,
            "rule_index": item.augmentation.rule_index,
            "diagnostic_json": diagnostic.to_dict() if diagnostic else None,
        }
        stmt = pg_insert(augmentations_served).values(
            user_id=user_id,
            lesson_id=runtime.id,
            augmentation_id=item.augmentation_id,
            **values,
        )
        # Existing completed_at survives the upsert
        stmt = stmt.on_conflict_do_update(
            index_elements=["user_id", "lesson_id", "augmentation_id"],
            set_=values,
        )
        await conn.execute(stmt)

    result = await conn.execute(
        select(
            augmentations_served.c.augmentation_id,
            augmentations_served.c.completed_at,
        ).where(
            _where(
                user_id,
                runtime.id,
                augmentations_served.c.augmentation_id.in_(planned_ids),
            )
        )
    )
    completion = {row.augmentation_id: row.completed_at for row in result.fetchall()}

    items = [
        PlannedAugmentation(
            augmentation=item.augmentation,
            augmentation_id=item.augmentation_id,
            completed_at=completion.get(item.augmentation_id),
        )
        for item in planned
    ]

    pending = sum(1 for item in items if item.completed_at is None)
    logger.info(
        "Planned %d augmentations (%d pending) user=%s lesson=%s",
        len(items),
        pending,
        user_id,
        runtime.id,
    )
    return items, plan.trace


async def count_pending_augmentations(
    conn: AsyncConnection, *, user_id: int, lesson_id: str
) -> int:
    result = await conn.execute(
        select(func.count())
        .select_from(augmentations_served)
        .where(_where(user_id, lesson_id, augmentations_served.c.completed_at.is_(None)))
    )
    return result.scalar_one()


async def count_served_augmentations(
    conn: AsyncConnection, *, user_id: int, lesson_id: str
) -> int:
    result = await conn.execute(
        select(func.count())
        .select_from(augmentations_served)
        .where(_where(user_id, lesson_id))
    )
    return result.scalar_one()


async def mark_augmentation_complete(
    conn: AsyncConnection,
    *,
    user_id: int,
    lesson_id: str,
    augmentation_id: str,
) -> int:
    """Mark a served augmentation complete. Idempotent.

    Returns the number of augmentations still pending for the lesson.

    Raises:
        AugmentationNotFoundError: if the augmentation was never served
    """
    result = await conn.execute(
        select(augmentations_served.c.id, augmentations_served.c.completed_at)
        .where(
            _where(
                user_id,
                lesson_id,
                augmentations_served.c.augmentation_id == augmentation_id,
            )
        )
        .with_for_update()
    )
    existing = result.fetchone()
    if existing is None:
        raise AugmentationNotFoundError(f"Augmentation not found: {augmentation_id}")

    if existing.completed_at is None:
        await conn.execute(
            update(augmentations_served)
            .where(augmentations_served.c.id == existing.id)
            .values(completed_at=datetime.now(timezone.utc))
        )

    return await count_pending_augmentations(
        conn, user_id=user_id, lesson_id=lesson_id
    )


async def check_augment_quota(
    conn: AsyncConnection,
    *,
    user_id: int,
    lesson_id: str,
    now: datetime | None = None,
) -> Quota:
    """At most AUGMENT_MAX_PER_HOUR explicit re-plan requests per rolling hour.

    Only requests logged by record_augment_request count. Planning that
    follows a quiz or chat diagnostics is not limited.
    """
    now = now or datetime.now(timezone.utc)
    max_per_hour = get_augment_max_per_hour()

    result = await conn.execute(
        select(func.count())
        .select_from(augmentation_requests)
        .where(
            and_(
                augmentation_requests.c.user_id == user_id,
                augmentation_requests.c.lesson_id == lesson_id,
                augmentation_requests.c.created_at > now - QUOTA_WINDOW,
            )
        )
    )
    recent = result.scalar_one()
    return Quota(ok=recent < max_per_hour, remaining=max(0, max_per_hour - recent))


async def record_augment_request(
    conn: AsyncConnection, *, user_id: int, lesson_id: str
) -> None:
    """Log one explicit re-plan request against the hourly quota."""
    await conn.execute(
        insert(augmentation_requests).values(user_id=user_id, lesson_id=lesson_id)
    )
