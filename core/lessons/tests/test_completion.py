# core/lessons/tests/test_completion.py
"""Tests for lesson state derivation and the cached engine state."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy.dialects import postgresql

from core.enums import DiagnosticLevel, LessonEngineState, LessonEvent
from core.lessons.completion import derive_events, derive_state, sync_lesson_state
from core.lessons.types import (
    ASSESSMENT_NONE,
    DiagnosticResult,
    LessonContext,
    LessonRuntime,
    ProgressSnapshot,
)

MODULE = "core.lessons.completion"


def _context(runtime, *, unique_seconds=100, diagnostics=None):
    return LessonContext(
        runtime=runtime,
        progress=ProgressSnapshot(unique_seconds=unique_seconds, threshold_pct=0.95),
        diagnostics=diagnostics,
    )


def _progress(unique_seconds=100, completed_at=None):
    return {
        "id": 7,
        "unique_seconds": unique_seconds,
        "threshold_pct": 0.95,
        "completed_at": completed_at,
    }


class TestDeriveEvents:
    def test_nothing_submitted(self):
        assert derive_events(
            has_assessment=False, has_diagnostics=False, augmentations_pending=0
        ) == [LessonEvent.VIDEO_ENDED]

    def test_submitted_without_diagnostics(self):
        assert derive_events(
            has_assessment=True, has_diagnostics=False, augmentations_pending=0
        ) == [LessonEvent.VIDEO_ENDED, LessonEvent.QUIZ_SUBMITTED]

    def test_pending_augmentations_hold_back_done(self):
        events = derive_events(
            has_assessment=True, has_diagnostics=True, augmentations_pending=2
        )
        assert events[-1] == LessonEvent.DIAGNOSTIC_READY

    def test_all_done(self):
        events = derive_events(
            has_assessment=True, has_diagnostics=True, augmentations_pending=0
        )
        assert events[-1] == LessonEvent.AUGMENT_DONE


class TestDeriveState:
    def test_not_watched_enough(self, runtime):
        ctx = _context(runtime, unique_seconds=10)
        assert (
            derive_state(ctx, has_assessment=False, augmentations_pending=0)
            == LessonEngineState.VIEWING
        )

    def test_watched_unlocks_assessment(self, runtime):
        assert (
            derive_state(_context(runtime), has_assessment=False, augmentations_pending=0)
            == LessonEngineState.ASSESSING
        )

    def test_submitted_awaiting_diagnostics(self, runtime):
        assert (
            derive_state(_context(runtime), has_assessment=True, augmentations_pending=0)
            == LessonEngineState.DIAGNOSING
        )

    def test_pending_augmentations(self, runtime, unmet_diagnostics):
        ctx = _context(runtime, diagnostics=unmet_diagnostics)
        assert (
            derive_state(ctx, has_assessment=True, augmentations_pending=1)
            == LessonEngineState.AUGMENTING
        )

    def test_completed_once_augmentations_done(self, runtime, unmet_diagnostics):
        ctx = _context(runtime, diagnostics=unmet_diagnostics)
        assert (
            derive_state(ctx, has_assessment=True, augmentations_pending=0)
            == LessonEngineState.COMPLETED
        )

    def test_all_met_completes_directly(self, runtime):
        met = [DiagnosticResult("obj-1", DiagnosticLevel.MET, 1.0)]
        ctx = _context(runtime, diagnostics=met)
        assert (
            derive_state(ctx, has_assessment=True, augmentations_pending=3)
            == LessonEngineState.COMPLETED
        )

    def test_lesson_without_assessment(self):
        runtime = LessonRuntime(
            id="l", title="T", duration_sec=60, assessment_type=ASSESSMENT_NONE
        )
        assert (
            derive_state(
                _context(runtime, unique_seconds=60),
                has_assessment=False,
                augmentations_pending=0,
            )
            == LessonEngineState.COMPLETED
        )
        assert (
            derive_state(
                _context(runtime, unique_seconds=5),
                has_assessment=False,
                augmentations_pending=0,
            )
            == LessonEngineState.VIEWING
        )

    def test_same_inputs_same_state(self, runtime, unmet_diagnostics):
        ctx = _context(runtime, diagnostics=unmet_diagnostics)
        states = {
            derive_state(ctx, has_assessment=True, augmentations_pending=1)
            for _ in range(5)
        }
        assert states == {LessonEngineState.AUGMENTING}


class TestSyncLessonState:
    def _patches(self, *, progress, diagnostics, submitted, served, pending):
        return (
            patch(f"{MODULE}.get_progress", AsyncMock(return_value=progress)),
            patch(f"{MODULE}.get_latest_diagnostics", AsyncMock(return_value=diagnostics)),
            patch(f"{MODULE}.has_submitted_assessment", AsyncMock(return_value=submitted)),
            patch(f"{MODULE}.count_served_augmentations", AsyncMock(return_value=served)),
            patch(f"{MODULE}.count_pending_augmentations", AsyncMock(return_value=pending)),
        )

    @pytest.mark.asyncio
    async def test_caches_state_and_stamps_completion(self, mock_conn, runtime, unmet_diagnostics):
        p1, p2, p3, p4, p5 = self._patches(
            progress=_progress(),
            diagnostics=unmet_diagnostics,
            submitted=True,
            served=1,
            pending=0,
        )
        with p1, p2, p3, p4, p5:
            status = await sync_lesson_state(mock_conn, user_id=1, runtime=runtime)

        assert status.state == LessonEngineState.COMPLETED
        assert status.completed_at is not None
        mock_conn.execute.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_keeps_existing_completed_at(self, mock_conn, runtime):
        done = datetime(2026, 1, 1, tzinfo=timezone.utc)
        met = [DiagnosticResult("obj-1", DiagnosticLevel.MET, 1.0)]
        p1, p2, p3, p4, p5 = self._patches(
            progress=_progress(completed_at=done),
            diagnostics=met,
            submitted=True,
            served=0,
            pending=0,
        )
        with p1, p2, p3, p4, p5:
            status = await sync_lesson_state(mock_conn, user_id=1, runtime=runtime)

        assert status.completed_at == done
        assert status.to_dict()["completedAt"] == done.isoformat()

    @pytest.mark.asyncio
    async def test_pending_augmentations_reported(self, mock_conn, runtime, unmet_diagnostics):
        p1, p2, p3, p4, p5 = self._patches(
            progress=_progress(),
            diagnostics=unmet_diagnostics,
            submitted=True,
            served=2,
            pending=2,
        )
        with p1, p2, p3, p4, p5:
            status = await sync_lesson_state(mock_conn, user_id=1, runtime=runtime)

        assert status.state == LessonEngineState.AUGMENTING
        assert status.pending_augmentations == 2
        assert status.completed_at is None

    @pytest.mark.asyncio
    async def test_no_progress_row_writes_nothing(self, mock_conn, runtime):
        p1, p2, p3, p4, p5 = self._patches(
            progress=None, diagnostics=None, submitted=False, served=0, pending=0
        )
        with p1, p2, p3, p4, p5:
            status = await sync_lesson_state(mock_conn, user_id=1, runtime=runtime)

        assert status.state == LessonEngineState.VIEWING
        assert status.unique_seconds == 0
        assert status.can_start_assessment is False
        mock_conn.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_supplied_diagnostics_skip_lookup(self, mock_conn, runtime):
        met = [DiagnosticResult("obj-1", DiagnosticLevel.MET, 1.0)]
        lookup = AsyncMock(return_value=None)
        p1, _p2, p3, p4, p5 = self._patches(
            progress=_progress(), diagnostics=None, submitted=True, served=0, pending=0
        )
        with p1, patch(f"{MODULE}.get_latest_diagnostics", lookup), p3, p4, p5:
            status = await sync_lesson_state(
                mock_conn, user_id=1, runtime=runtime, diagnostics=met
            )

        lookup.assert_not_awaited()
        assert status.state == LessonEngineState.COMPLETED

    @pytest.mark.asyncio
    async def test_completed_lesson_stays_completed(self, mock_conn, runtime, unmet_diagnostics):
        done = datetime(2026, 1, 1, tzinfo=timezone.utc)
        p1, p2, p3, p4, p5 = self._patches(
            progress=_progress(completed_at=done),
            diagnostics=unmet_diagnostics,
            submitted=True,
            served=1,
            pending=1,
        )
        with p1, p2, p3, p4, p5:
            status = await sync_lesson_state(mock_conn, user_id=1, runtime=runtime)

        assert status.state == LessonEngineState.COMPLETED
        assert status.completed_at == done
        assert status.pending_augmentations == 1

        stmt = mock_conn.execute.await_args.args[0]
        params = stmt.compile(dialect=postgresql.dialect()).params
        assert params["engine_state"] == LessonEngineState.COMPLETED
        assert "completed_at" not in params
