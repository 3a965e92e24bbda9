"""Lesson progression state machine.

VIEWING -> ASSESSING -> DIAGNOSING -> (AUGMENTING ->) COMPLETED

transition() is a pure function of (state, event, context). It never raises:
unknown events are no-ops, and missing or zero fields fall back to the
conservative outcome (assessment stays locked, augmentation not required).
COMPLETED is absorbing.
"""

import math
from collections.abc import Iterable

from core.enums import DiagnosticLevel, LessonEngineState, LessonEvent

from .types import LessonContext

INITIAL_STATE = LessonEngineState.VIEWING

_DIAGNOSTIC_EVENTS = (LessonEvent.DIAGNOSTIC_READY, LessonEvent.CHAT_SCORED)


def _coerce(enum_cls, value):
    try:
        return enum_cls(value)
    except ValueError:
        return None


def assessment_allowed(context: LessonContext) -> bool:
    """True once the watched ratio reaches the progress threshold."""
    duration = getattr(context.runtime, "duration_sec", 0) or 0
    if not isinstance(duration, (int, float)) or not math.isfinite(duration):
        return False
    if duration <= 0:
        return False

    unique_seconds = context.progress.unique_seconds or 0
    threshold_pct = context.progress.threshold_pct
    if threshold_pct is None:
        return False
    return unique_seconds / duration >= threshold_pct


def needs_augmentation(context: LessonContext) -> bool:
    """True if an unmet objective is targeted by at least one authored rule.

    Only rule membership is checked here; rule expressions are evaluated by
    the diagnostic evaluator when augmentations are planned.
    """
    if not context.diagnostics:
        return False

    rules = getattr(context.runtime, "augmentations", None) or []
    targeted = {target for rule in rules for target in rule.targets}

    return any(
        result.level != DiagnosticLevel.MET and result.objective_id in targeted
        for result in context.diagnostics
    )


def transition(state, event, context: LessonContext) -> LessonEngineState:
    """Return the next state for an event. Unlisted (state, event) pairs are no-ops."""
    current = _coerce(LessonEngineState, state)
    if current is None:
        return state
    incoming = _coerce(LessonEvent, event)

    if current == LessonEngineState.COMPLETED:
        return current

    if current == LessonEngineState.VIEWING:
        if incoming == LessonEvent.VIDEO_ENDED and assessment_allowed(context):
            return LessonEngineState.ASSESSING
        return current

    if current == LessonEngineState.ASSESSING:
        if incoming == LessonEvent.QUIZ_SUBMITTED:
            return LessonEngineState.DIAGNOSING
        return current

    if current == LessonEngineState.DIAGNOSING:
        if incoming in _DIAGNOSTIC_EVENTS:
            if needs_augmentation(context):
                return LessonEngineState.AUGMENTING
            return LessonEngineState.COMPLETED
        return current

    if current == LessonEngineState.AUGMENTING:
        if incoming == LessonEvent.AUGMENT_DONE:
            return LessonEngineState.COMPLETED
        return current

    return current


def replay(
    events: Iterable[LessonEvent],
    context: LessonContext,
    state: LessonEngineState = INITIAL_STATE,
) -> LessonEngineState:
    """Fold a sequence of events through transition()."""
    for event in events:
        state = transition(state, event, context)
    return state


def can_start_assessment(state, context: LessonContext) -> bool:
    return state == LessonEngineState.VIEWING and assessment_allowed(context)


def can_diagnose(state) -> bool:
    return state == LessonEngineState.ASSESSING


def can_augment(state, context: LessonContext) -> bool:
    return state == LessonEngineState.DIAGNOSING and needs_augmentation(context)


def is_done(state) -> bool:
    return state == LessonEngineState.COMPLETED
