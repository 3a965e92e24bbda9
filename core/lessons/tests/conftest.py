"""Pytest fixtures for lesson engine tests."""

from unittest.mock import AsyncMock

import pytest

from core.enums import DiagnosticLevel
from core.lessons.types import (
    AugmentationRule,
    DiagnosticResult,
    LessonObjective,
    LessonRuntime,
    QuizOption,
    QuizQuestion,
)


@pytest.fixture
def mock_conn():
    conn = AsyncMock()
    conn.execute = AsyncMock()
    return conn


@pytest.fixture
def runtime():
    """A two-objective quiz lesson with one remediation rule per objective."""
    return LessonRuntime(
        id="lesson-1",
        title="Intro to Alignment",
        duration_sec=100,
        objectives=[
            LessonObjective("obj-1", "Define alignment"),
            LessonObjective("obj-2", "Name a failure mode"),
        ],
        augmentations=[
            AugmentationRule(("obj-1",), "level < MET", "asset://recap-1"),
            AugmentationRule(("obj-2",), "score < 0.5", "asset://recap-2"),
        ],
        pass_threshold=1.0,
        quiz_questions=[
            QuizQuestion(
                "q1",
                "What is alignment?",
                (QuizOption("A", "Yes"), QuizOption("B", "No")),
                correct_key="A",
            ),
            QuizQuestion(
                "q2",
                "Which is a failure mode?",
                (QuizOption("A", "Reward hacking"), QuizOption("B", "Caching")),
                correct_key="A",
            ),
        ],
    )


@pytest.fixture
def unmet_diagnostics():
    return [
        DiagnosticResult("obj-1", DiagnosticLevel.PARTIAL, 0.5),
        DiagnosticResult("obj-2", DiagnosticLevel.PARTIAL, 0.5),
    ]
