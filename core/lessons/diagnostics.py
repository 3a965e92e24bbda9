"""Diagnostic rule evaluator (augmentation planner).

Authored augmentation rules carry a small condition language in `whenExpr`:
a conjunction of `field operator literal` clauses joined by `&&`, ` AND ` or
` and `, where field is `level` or `score`. Examples:

    level<'MET'
    level < PARTIAL && score < 0.5
    score >= 0.2 and score < 0.6

Expressions are parsed once into typed clauses (memoized per expression
string) and evaluated against the diagnostic for each rule target. Nothing
here raises: an unsupported field, operator or literal, or a missing
diagnostic, makes the clause false and the reason is recorded in the trace.
"""

import math
import operator
import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Callable

from core.enums import LEVEL_ORDER, DiagnosticLevel

from .types import (
    Augmentation,
    AugmentationPlan,
    AugmentationRule,
    DiagnosticResult,
    LessonObjective,
)

COMPARATORS: dict[str, Callable[[float, float], bool]] = {
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
    "==": operator.eq,
    "===": operator.eq,
    "=": operator.eq,
    "!=": operator.ne,
    "!==": operator.ne,
}

_CLAUSE_PATTERN = re.compile(
    r"^(level|score)\s*(<=|>=|===|==|!==|!=|=|<|>)\s*(.+)$", re.IGNORECASE
)
_CONJUNCTION_PATTERN = re.compile(r"\s+(?:AND|and)\s+")
_QUOTES_PATTERN = re.compile(r"^['\"]|['\"]$")


@dataclass(frozen=True)
class Clause:
    """One parsed `field operator literal` condition."""

    raw: str
    field: str | None = None  # "level" or "score"; None if unparseable
    operator: str | None = None
    literal: str | None = None


@dataclass(frozen=True)
class Evaluation:
    result: bool
    detail: str


def _fmt_bool(value: bool) -> str:
    return "true" if value else "false"


def _fmt_number(value: float) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _strip_quotes(value: str) -> str:
    return _QUOTES_PATTERN.sub("", value.strip())


def _to_level_value(literal: str) -> int | None:
    try:
        return LEVEL_ORDER[DiagnosticLevel(_strip_quotes(literal).upper())]
    except ValueError:
        return None


def _parse_score(literal: str) -> float | None:
    """Parse the leading float of a literal, the way a lenient float parser would."""
    match = re.match(r"^\s*[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?", literal)
    if not match:
        return None
    value = float(match.group(0))
    return value if math.isfinite(value) else None


def parse_clause(text: str) -> Clause:
    trimmed = text.strip()
    match = _CLAUSE_PATTERN.match(trimmed)
    if not match:
        return Clause(raw=trimmed)
    field, op, literal = match.groups()
    return Clause(raw=trimmed, field=field.lower(), operator=op, literal=literal)


@lru_cache(maxsize=1024)
def parse_when_expr(expression: str) -> tuple[Clause, ...]:
    """Split an expression into its conjunction clauses."""
    normalized = _CONJUNCTION_PATTERN.sub("&&", expression)
    parts = [part.strip() for part in normalized.split("&&")]
    return tuple(parse_clause(part) for part in parts if part)


def evaluate_clause(clause: Clause, diagnostic: DiagnosticResult | None) -> Evaluation:
    if clause.field is None:
        return Evaluation(False, f'unsupported condition "{clause.raw}"')

    comparator = COMPARATORS.get(clause.operator)
    if comparator is None:
        return Evaluation(False, f'unsupported comparator "{clause.operator}"')

    if diagnostic is None:
        return Evaluation(False, f'no diagnostic available for "{clause.field}"')

    if clause.field == "level":
        try:
            actual = DiagnosticLevel(diagnostic.level)
        except ValueError:
            return Evaluation(False, f'unknown level value "{diagnostic.level}"')
        actual_value = LEVEL_ORDER[actual]
        expected_value = _to_level_value(clause.literal)
        if expected_value is None:
            return Evaluation(False, f'unknown level value "{clause.literal}"')

        result = comparator(actual_value, expected_value)
        return Evaluation(
            result,
            f"level {actual.value} ({actual_value}) {clause.operator} "
            f"{_strip_quotes(clause.literal)} ({expected_value}) -> {_fmt_bool(result)}",
        )

    if clause.field == "score":
        actual = diagnostic.score
        if (
            not isinstance(actual, (int, float))
            or isinstance(actual, bool)
            or math.isnan(actual)
        ):
            return Evaluation(False, "diagnostic missing numeric score")

        expected = _parse_score(clause.literal)
        if expected is None:
            return Evaluation(False, f'invalid score value "{clause.literal}"')

        result = comparator(actual, expected)
        return Evaluation(
            result,
            f"score {_fmt_number(actual)} {clause.operator} "
            f"{_fmt_number(expected)} -> {_fmt_bool(result)}",
        )

    return Evaluation(False, f'unsupported field "{clause.field}"')


def evaluate_when_expr(
    expression: str | None, diagnostic: DiagnosticResult | None
) -> Evaluation:
    """Evaluate a whole expression. All clauses must hold; stops at the first false one."""
    if not expression or not expression.strip():
        return Evaluation(True, "no whenExpr specified")

    clauses = parse_when_expr(expression)
    if not clauses:
        return Evaluation(True, "empty whenExpr treated as true")

    details = []
    for clause in clauses:
        evaluation = evaluate_clause(clause, diagnostic)
        details.append(evaluation.detail)
        if not evaluation.result:
            return Evaluation(False, "; ".join(details))

    return Evaluation(True, "; ".join(details))


def plan_augmentations(
    *,
    objectives: list[LessonObjective],
    diagnostics: list[DiagnosticResult] | None = None,
    rules: list[AugmentationRule] | None = None,
) -> AugmentationPlan:
    """Decide which remediation assets to serve.

    Rules are visited in authored order, and targets in authored order within
    each rule. Every (rule, target) pair produces exactly one trace entry.
    The same objective may be fired by several rules; nothing is deduplicated.
    """
    objective_map = {objective.id: objective for objective in objectives}
    diagnostic_map = {result.objective_id: result for result in diagnostics or []}

    plan = AugmentationPlan()

    for rule_index, rule in enumerate(rules or []):
        for target_id in rule.targets:
            prefix = f"rule[{rule_index}] target[{target_id}]"

            objective = objective_map.get(target_id)
            if objective is None:
                plan.trace.append(f"{prefix}: skipped - objective not found")
                continue

            diagnostic = diagnostic_map.get(target_id)
            evaluation = evaluate_when_expr(rule.when_expr, diagnostic)

            if not evaluation.result:
                plan.trace.append(f"{prefix}: skipped - {evaluation.detail}")
                continue

            plan.augmentations.append(
                Augmentation(
                    objective=objective,
                    asset_ref=rule.asset_ref,
                    rule_index=rule_index,
                    diagnostic=diagnostic,
                )
            )
            plan.trace.append(f"{prefix}: fired - {evaluation.detail}")

    return plan
