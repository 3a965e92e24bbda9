# core/lessons/tests/test_assessment.py
"""Tests for quiz scoring and diagnostics persistence."""

from unittest.mock import MagicMock

import pytest

from core.enums import DiagnosticLevel
from core.lessons.assessment import (
    OVERALL_OBJECTIVE_ID,
    AssessmentAlreadySubmittedError,
    InvalidAnswerError,
    build_diagnostics,
    determine_level,
    get_latest_diagnostics,
    has_submitted_assessment,
    normalize_diagnostics,
    record_chat_diagnostics,
    score_quiz,
    submit_quiz,
)
from core.lessons.types import DiagnosticResult, LessonObjective


def _result(row):
    result = MagicMock()
    result.fetchone.return_value = row
    return result


class TestDetermineLevel:
    @pytest.mark.parametrize(
        "score,threshold,expected",
        [
            (1.0, 1.0, DiagnosticLevel.MET),
            (0.8, 0.8, DiagnosticLevel.MET),
            (0.5, 1.0, DiagnosticLevel.PARTIAL),
            (0.4, 0.8, DiagnosticLevel.PARTIAL),
            (0.39, 0.8, DiagnosticLevel.NOT_MET),
            (0.0, 1.0, DiagnosticLevel.NOT_MET),
            (0.0, 0.0, DiagnosticLevel.MET),
        ],
    )
    def test_levels(self, score, threshold, expected):
        assert determine_level(score, threshold) == expected

    def test_inputs_clamped(self):
        assert determine_level(7, 1.0) == DiagnosticLevel.MET
        assert determine_level(float("nan"), 0.5) == DiagnosticLevel.NOT_MET


class TestScoreQuiz:
    def test_all_correct(self, runtime):
        result = score_quiz(runtime.quiz_questions, {"q1": "A", "q2": "A"})
        assert result.score == 1.0
        assert result.score_percent == 100
        assert all(r.is_correct for r in result.results)

    def test_half_correct(self, runtime):
        result = score_quiz(runtime.quiz_questions, {"q1": "A", "q2": "B"})
        assert result.score == 0.5
        assert result.score_percent == 50

    def test_missing_answer(self, runtime):
        with pytest.raises(InvalidAnswerError, match="q2"):
            score_quiz(runtime.quiz_questions, {"q1": "A"})

    def test_unknown_option(self, runtime):
        with pytest.raises(InvalidAnswerError, match="Invalid answer choice"):
            score_quiz(runtime.quiz_questions, {"q1": "Z", "q2": "A"})

    def test_empty_answers(self, runtime):
        with pytest.raises(InvalidAnswerError):
            score_quiz(runtime.quiz_questions, {})

    def test_no_questions(self):
        with pytest.raises(InvalidAnswerError):
            score_quiz([], {"q1": "A"})


class TestBuildDiagnostics:
    def test_one_result_per_objective(self):
        objectives = [LessonObjective("a", "A"), LessonObjective("b", "B")]
        diagnostics = build_diagnostics(objectives, 0.5, 1.0)
        assert diagnostics == [
            DiagnosticResult("a", DiagnosticLevel.PARTIAL, 0.5),
            DiagnosticResult("b", DiagnosticLevel.PARTIAL, 0.5),
        ]

    def test_overall_without_objectives(self):
        (result,) = build_diagnostics([], 1.0, 1.0)
        assert result.objective_id == OVERALL_OBJECTIVE_ID
        assert result.level == DiagnosticLevel.MET


class TestNormalizeDiagnostics:
    def test_wrapped_results(self):
        value = {
            "results": [
                {"objectiveId": "a", "level": "partial", "score": 0.5},
                {"objective_id": "b", "level": "MET"},
            ]
        }
        assert normalize_diagnostics(value) == [
            DiagnosticResult("a", DiagnosticLevel.PARTIAL, 0.5),
            DiagnosticResult("b", DiagnosticLevel.MET, None),
        ]

    def test_drops_invalid_entries(self):
        value = [
            {"objectiveId": "a", "level": "GREAT"},
            {"objectiveId": "", "level": "MET"},
            {"objectiveId": "c", "level": 2},
            {"objectiveId": "d", "level": "NOT_MET", "score": True},
            "junk",
        ]
        assert normalize_diagnostics(value) == [
            DiagnosticResult("d", DiagnosticLevel.NOT_MET, None)
        ]

    def test_non_list(self):
        assert normalize_diagnostics(None) == []
        assert normalize_diagnostics({"results": "x"}) == []


class TestSubmitQuiz:
    @pytest.mark.asyncio
    async def test_persists_and_returns_diagnostics(self, mock_conn, runtime):
        mock_conn.execute.return_value = _result(MagicMock(assessment_id=1))

        diagnostics, quiz = await submit_quiz(
            mock_conn, user_id=1, runtime=runtime, answers={"q1": "A", "q2": "B"}
        )

        assert quiz.score_percent == 50
        assert [d.level for d in diagnostics] == [DiagnosticLevel.PARTIAL] * 2
        mock_conn.execute.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_second_submission_rejected(self, mock_conn, runtime):
        mock_conn.execute.return_value = _result(None)

        with pytest.raises(AssessmentAlreadySubmittedError):
            await submit_quiz(
                mock_conn, user_id=1, runtime=runtime, answers={"q1": "A", "q2": "A"}
            )

    @pytest.mark.asyncio
    async def test_invalid_answers_never_hit_database(self, mock_conn, runtime):
        with pytest.raises(InvalidAnswerError):
            await submit_quiz(mock_conn, user_id=1, runtime=runtime, answers={})
        mock_conn.execute.assert_not_awaited()


class TestDiagnosticsQueries:
    @pytest.mark.asyncio
    async def test_record_chat_diagnostics_upserts(self, mock_conn):
        await record_chat_diagnostics(
            mock_conn,
            user_id=1,
            lesson_id="lesson-1",
            diagnostics=[DiagnosticResult("obj-1", DiagnosticLevel.MET, 0.9)],
        )
        mock_conn.execute.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_latest_diagnostics_decoded(self, mock_conn):
        stored = {"results": [{"objectiveId": "obj-1", "level": "MET", "score": 1}]}
        mock_conn.execute.return_value = _result(MagicMock(diagnostic_json=stored))

        diagnostics = await get_latest_diagnostics(
            mock_conn, user_id=1, lesson_id="lesson-1"
        )

        assert diagnostics == [DiagnosticResult("obj-1", DiagnosticLevel.MET, 1)]

    @pytest.mark.asyncio
    async def test_latest_diagnostics_none_without_assessment(self, mock_conn):
        mock_conn.execute.return_value = _result(None)
        assert (
            await get_latest_diagnostics(mock_conn, user_id=1, lesson_id="lesson-1")
            is None
        )

    @pytest.mark.asyncio
    async def test_has_submitted_assessment(self, mock_conn):
        mock_conn.execute.return_value = _result(MagicMock(assessment_id=3))
        assert await has_submitted_assessment(mock_conn, user_id=1, lesson_id="l")
