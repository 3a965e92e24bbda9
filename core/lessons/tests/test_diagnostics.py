# core/lessons/tests/test_diagnostics.py
"""Tests for the diagnostic rule evaluator."""

import pytest

from core.enums import DiagnosticLevel
from core.lessons.diagnostics import (
    Clause,
    evaluate_when_expr,
    parse_when_expr,
    plan_augmentations,
)
from core.lessons.types import AugmentationRule, DiagnosticResult, LessonObjective

PARTIAL_HALF = DiagnosticResult("obj-1", DiagnosticLevel.PARTIAL, 0.5)


class TestParseWhenExpr:
    def test_single_clause(self):
        assert parse_when_expr("level < 'MET'") == (
            Clause(raw="level < 'MET'", field="level", operator="<", literal="'MET'"),
        )

    @pytest.mark.parametrize(
        "expression",
        [
            "level < MET && score < 0.5",
            "level < MET AND score < 0.5",
            "level < MET and score < 0.5",
        ],
    )
    def test_conjunction_separators(self, expression):
        clauses = parse_when_expr(expression)
        assert [c.field for c in clauses] == ["level", "score"]
        assert [c.operator for c in clauses] == ["<", "<"]

    def test_field_is_case_insensitive(self):
        (clause,) = parse_when_expr("SCORE >= 0.2")
        assert clause.field == "score"
        assert clause.operator == ">="

    def test_longest_operator_wins(self):
        assert parse_when_expr("level !== MET")[0].operator == "!=="
        assert parse_when_expr("level === MET")[0].operator == "==="
        assert parse_when_expr("score <= 1")[0].operator == "<="

    def test_unparseable_clause_keeps_raw_text(self):
        (clause,) = parse_when_expr("mood > happy")
        assert clause.field is None
        assert clause.raw == "mood > happy"

    def test_memoized(self):
        assert parse_when_expr("score < 0.3") is parse_when_expr("score < 0.3")


class TestEvaluateWhenExpr:
    @pytest.mark.parametrize("expression", [None, "", "   "])
    def test_missing_expression_is_true(self, expression):
        evaluation = evaluate_when_expr(expression, None)
        assert evaluation.result is True
        assert evaluation.detail == "no whenExpr specified"

    def test_only_separators_treated_as_true(self):
        evaluation = evaluate_when_expr("&&", PARTIAL_HALF)
        assert evaluation.result is True
        assert evaluation.detail == "empty whenExpr treated as true"

    def test_level_comparison_detail(self):
        evaluation = evaluate_when_expr("level < 'MET'", PARTIAL_HALF)
        assert evaluation.result is True
        assert evaluation.detail == "level PARTIAL (1) < MET (2) -> true"

    def test_level_literal_is_upper_cased(self):
        assert evaluate_when_expr('level == "partial"', PARTIAL_HALF).result is True

    @pytest.mark.parametrize(
        "expression,expected",
        [
            ("level < MET", True),
            ("level <= PARTIAL", True),
            ("level > NOT_MET", True),
            ("level >= MET", False),
            ("level = PARTIAL", True),
            ("level != PARTIAL", False),
            ("level !== NOT_MET", True),
        ],
    )
    def test_level_comparators(self, expression, expected):
        assert evaluate_when_expr(expression, PARTIAL_HALF).result is expected

    def test_unknown_level_literal(self):
        evaluation = evaluate_when_expr("level < GREAT", PARTIAL_HALF)
        assert evaluation.result is False
        assert evaluation.detail == 'unknown level value "GREAT"'

    def test_score_comparison_detail(self):
        evaluation = evaluate_when_expr("score < 0.6", PARTIAL_HALF)
        assert evaluation.result is True
        assert evaluation.detail == "score 0.5 < 0.6 -> true"

    def test_score_integral_values_render_without_decimals(self):
        diagnostic = DiagnosticResult("obj-1", DiagnosticLevel.MET, 1.0)
        assert (
            evaluate_when_expr("score >= 1", diagnostic).detail
            == "score 1 >= 1 -> true"
        )

    def test_score_literal_parsed_leniently(self):
        assert evaluate_when_expr("score < 0.6abc", PARTIAL_HALF).result is True

    def test_invalid_score_literal(self):
        evaluation = evaluate_when_expr("score < high", PARTIAL_HALF)
        assert evaluation.result is False
        assert evaluation.detail == 'invalid score value "high"'

    def test_missing_score(self):
        diagnostic = DiagnosticResult("obj-1", DiagnosticLevel.PARTIAL, None)
        evaluation = evaluate_when_expr("score < 0.5", diagnostic)
        assert evaluation.result is False
        assert evaluation.detail == "diagnostic missing numeric score"

    def test_no_diagnostic(self):
        evaluation = evaluate_when_expr("level < MET", None)
        assert evaluation.result is False
        assert evaluation.detail == 'no diagnostic available for "level"'

    def test_unsupported_condition(self):
        evaluation = evaluate_when_expr("mood > happy", PARTIAL_HALF)
        assert evaluation.result is False
        assert evaluation.detail == 'unsupported condition "mood > happy"'

    def test_conjunction_stops_at_first_false_clause(self):
        evaluation = evaluate_when_expr(
            "score > 0.9 && level < MET && mood > happy", PARTIAL_HALF
        )
        assert evaluation.result is False
        assert evaluation.detail == "score 0.5 > 0.9 -> false"

    def test_conjunction_joins_details(self):
        evaluation = evaluate_when_expr("level < MET and score >= 0.5", PARTIAL_HALF)
        assert evaluation.result is True
        assert evaluation.detail == (
            "level PARTIAL (1) < MET (2) -> true; score 0.5 >= 0.5 -> true"
        )


class TestPlanAugmentations:
    OBJECTIVES = [
        LessonObjective("obj-1", "First"),
        LessonObjective("obj-2", "Second"),
    ]

    def test_missing_objective_is_traced(self):
        plan = plan_augmentations(
            objectives=self.OBJECTIVES,
            diagnostics=[PARTIAL_HALF],
            rules=[AugmentationRule(("ghost",), "", "asset://x")],
        )
        assert plan.augmentations == []
        assert plan.trace == ["rule[0] target[ghost]: skipped - objective not found"]

    def test_rule_then_target_order(self):
        diagnostics = [
            DiagnosticResult("obj-1", DiagnosticLevel.NOT_MET, 0.1),
            DiagnosticResult("obj-2", DiagnosticLevel.NOT_MET, 0.2),
        ]
        rules = [
            AugmentationRule(("obj-2", "obj-1"), "level < MET", "asset://a"),
            AugmentationRule(("obj-1",), "", "asset://b"),
        ]
        plan = plan_augmentations(
            objectives=self.OBJECTIVES, diagnostics=diagnostics, rules=rules
        )

        assert [(a.rule_index, a.objective.id, a.asset_ref) for a in plan.augmentations] == [
            (0, "obj-2", "asset://a"),
            (0, "obj-1", "asset://a"),
            (1, "obj-1", "asset://b"),
        ]
        assert plan.trace == [
            "rule[0] target[obj-2]: fired - level NOT_MET (0) < MET (2) -> true",
            "rule[0] target[obj-1]: fired - level NOT_MET (0) < MET (2) -> true",
            "rule[1] target[obj-1]: fired - no whenExpr specified",
        ]

    def test_one_trace_entry_per_pair(self):
        rules = [
            AugmentationRule(("obj-1", "obj-2", "ghost"), "score < 0.4", "asset://a"),
            AugmentationRule(("obj-2",), "level >= MET", "asset://b"),
        ]
        plan = plan_augmentations(
            objectives=self.OBJECTIVES, diagnostics=[PARTIAL_HALF], rules=rules
        )
        assert len(plan.trace) == 4
        assert plan.trace[0] == "rule[0] target[obj-1]: skipped - score 0.5 < 0.4 -> false"
        assert plan.trace[1] == (
            'rule[0] target[obj-2]: skipped - no diagnostic available for "score"'
        )
        assert plan.trace[2].endswith("objective not found")

    def test_fired_augmentation_carries_diagnostic(self):
        plan = plan_augmentations(
            objectives=self.OBJECTIVES,
            diagnostics=[PARTIAL_HALF],
            rules=[AugmentationRule(("obj-1",), "level < MET", "asset://a")],
        )
        (augmentation,) = plan.augmentations
        assert augmentation.diagnostic == PARTIAL_HALF
        assert augmentation.objective == self.OBJECTIVES[0]

    def test_no_rules(self):
        plan = plan_augmentations(objectives=self.OBJECTIVES, diagnostics=None)
        assert plan.augmentations == []
        assert plan.trace == []
