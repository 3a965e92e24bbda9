"""
Type definitions for the lesson engine.

Values passed between the coverage engine, the state machine and the
diagnostic evaluator. All of them are plain dataclasses so the core
functions stay free of database or HTTP concerns.
"""

from dataclasses import dataclass, field

from core.enums import DiagnosticLevel

# (start, end) in seconds
Segment = tuple[float, float]

# Runtime assessment types (content metadata, not the DB enum)
ASSESSMENT_QUIZ = "QUIZ"
ASSESSMENT_NONE = "NONE"


@dataclass(frozen=True)
class LessonObjective:
    """One assessable learning unit belonging to a lesson."""

    id: str
    summary: str


@dataclass(frozen=True)
class DiagnosticResult:
    """Assessed mastery level for one objective."""

    objective_id: str
    level: DiagnosticLevel
    score: float | None = None  # In [0, 1] when present

    def to_dict(self) -> dict:
        return {
            "objectiveId": self.objective_id,
            "level": self.level.value,
            "score": self.score,
        }


@dataclass(frozen=True)
class AugmentationRule:
    """Authored remediation rule: serve asset_ref to targets when when_expr holds."""

    targets: tuple[str, ...]
    when_expr: str
    asset_ref: str


@dataclass(frozen=True)
class Augmentation:
    """A fired (objective, asset) pairing produced by the evaluator."""

    objective: LessonObjective
    asset_ref: str
    rule_index: int
    diagnostic: DiagnosticResult | None = None


@dataclass
class AugmentationPlan:
    augmentations: list[Augmentation] = field(default_factory=list)
    trace: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class QuizOption:
    key: str
    label: str


@dataclass(frozen=True)
class QuizQuestion:
    id: str
    prompt: str
    options: tuple[QuizOption, ...]
    correct_key: str | None = None


@dataclass
class LessonRuntime:
    """Runtime descriptor of a lesson, as published by the lesson-definition store."""

    id: str
    title: str
    duration_sec: float
    objectives: list[LessonObjective] = field(default_factory=list)
    augmentations: list[AugmentationRule] = field(default_factory=list)
    assessment_type: str = ASSESSMENT_QUIZ
    pass_threshold: float = 1.0
    quiz_questions: list[QuizQuestion] = field(default_factory=list)
    video_id: str | None = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "durationSec": self.duration_sec,
            "videoId": self.video_id,
            "assessmentType": self.assessment_type,
            "objectives": [
                {"id": objective.id, "summary": objective.summary}
                for objective in self.objectives
            ],
            # Correct answers stay server-side
            "quiz": [
                {
                    "id": question.id,
                    "prompt": question.prompt,
                    "options": [
                        {"key": option.key, "label": option.label}
                        for option in question.options
                    ],
                }
                for question in self.quiz_questions
            ],
        }


@dataclass(frozen=True)
class ProgressSnapshot:
    """The slice of a progress record the state machine looks at."""

    unique_seconds: float = 0.0
    threshold_pct: float = 0.95


@dataclass
class LessonContext:
    """Context argument of the state machine.

    Only runtime.duration_sec and runtime.augmentations are consulted.
    """

    runtime: LessonRuntime
    progress: ProgressSnapshot
    diagnostics: list[DiagnosticResult] | None = None
