"""
Tests for rendering expressions back to text and building formulas.
"""

import pytest

from tidysurvey.expressions import (
    BinaryExpression,
    BinaryOperator,
    Literal,
    UnaryExpression,
    UnaryOperator,
    VariableReference,
)
from tidysurvey.formula import render_expression, to_formula
from tidysurvey.parser import parse_expression


class TestRenderExpression:
    """Rendering keeps meaning and only adds needed parentheses."""

    @pytest.mark.parametrize("text", [
        "api00 - api99",
        "(a + b) * c",
        "a - (b - c)",
        "a ^ b ^ c",
        "(a ^ b) ^ c",
        "-x ^ 2",
        '!is.na(x) & stype == "E"',
        '(a | b) & c',
        'stype %in% c("E", "M")',
        "a * b %% 4",
        "(a * b) %% 4",
        "-(x %% 3)",
        'survey_mean(api00, vartype = "ci", na.rm = TRUE)',
        "round(y / 3, 1)",
    ])
    def test_reparse_gives_same_tree(self, text):
        expr = parse_expression(text)
        assert parse_expression(render_expression(expr)) == expr

    def test_minimal_parentheses(self):
        assert render_expression(parse_expression("(a * b) + c")) == "a * b + c"
        assert render_expression(parse_expression("a * (b + c)")) == "a * (b + c)"

    def test_literals(self):
        assert render_expression(Literal(None)) == "NA"
        assert render_expression(Literal(True)) == "TRUE"
        assert render_expression(Literal(False)) == "FALSE"
        assert render_expression(Literal('say "hi"')) == '"say \\"hi\\""'
        assert render_expression(Literal(2.5)) == "2.5"

    def test_unusual_names_are_backquoted(self):
        assert render_expression(VariableReference("school type")) == "`school type`"
        assert render_expression(VariableReference("na.rm")) == "na.rm"

    def test_not_of_comparison(self):
        expr = UnaryExpression(
            UnaryOperator.NOT,
            BinaryExpression(BinaryOperator.EQUALS, VariableReference("x"), Literal(1)),
        )
        assert render_expression(expr) == "!x == 1"

    def test_none(self):
        assert render_expression(None) == ""


class TestToFormula:
    """One-sided formulas describing summary inputs."""

    def test_plain_columns(self):
        assert to_formula([VariableReference("api00"), VariableReference("api99")]) == "~api00 + api99"

    def test_computed_terms_are_wrapped(self):
        assert to_formula([parse_expression("api00 - api99")]) == "~I(api00 - api99)"

    def test_empty(self):
        assert to_formula([]) == "~1"
        assert to_formula([None]) == "~1"
