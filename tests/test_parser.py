"""
Tests for the expression parser (text → Expression AST).
"""

import pytest

from tidysurvey.errors import ExpressionParseError
from tidysurvey.expressions import (
    BinaryExpression,
    BinaryOperator,
    FunctionCall,
    Literal,
    UnaryExpression,
    UnaryOperator,
    VariableReference,
)
from tidysurvey.parser import parse_expression


def var(name):
    return VariableReference(name)


class TestAtoms:
    """Literals, names and keyword constants."""

    def test_integer(self):
        assert parse_expression("42") == Literal(42)

    def test_r_integer_suffix(self):
        assert parse_expression("5L") == Literal(5)

    def test_float_and_exponent(self):
        assert parse_expression("2.5") == Literal(2.5)
        assert parse_expression("1e3") == Literal(1000.0)

    def test_strings_either_quote(self):
        assert parse_expression('"E"') == Literal("E")
        assert parse_expression("'E'") == Literal("E")

    def test_escaped_quote(self):
        assert parse_expression(r'"say \"hi\""') == Literal('say "hi"')

    def test_dotted_name(self):
        assert parse_expression("na.rm") == var("na.rm")

    def test_backquoted_name(self):
        assert parse_expression("`school type`") == var("school type")

    @pytest.mark.parametrize("text, value", [
        ("TRUE", True), ("True", True), ("FALSE", False), ("False", False),
        ("NA", None), ("NULL", None), ("None", None),
    ])
    def test_keyword_literals(self, text, value):
        assert parse_expression(text) == Literal(value)

    def test_negative_number_is_folded(self):
        assert parse_expression("-8") == Literal(-8)


class TestOperators:
    """Operator precedence and associativity."""

    def test_multiplication_binds_tighter_than_addition(self):
        expr = parse_expression("a + b * 2")
        assert expr == BinaryExpression(
            BinaryOperator.ADD, var("a"), BinaryExpression(BinaryOperator.MULTIPLY, var("b"), Literal(2))
        )

    def test_subtraction_is_left_associative(self):
        expr = parse_expression("a - b - c")
        assert expr.left == BinaryExpression(BinaryOperator.SUBTRACT, var("a"), var("b"))

    def test_power_is_right_associative(self):
        expr = parse_expression("a ^ b ^ c")
        assert expr == BinaryExpression(
            BinaryOperator.POWER, var("a"), BinaryExpression(BinaryOperator.POWER, var("b"), var("c"))
        )

    def test_python_power_spelling(self):
        assert parse_expression("a ** 2").operator == BinaryOperator.POWER

    def test_unary_minus_applies_after_power(self):
        """-x^2 is -(x^2), as in R."""
        expr = parse_expression("-x^2")
        assert isinstance(expr, UnaryExpression)
        assert expr.operator == UnaryOperator.NEGATE
        assert expr.operand.operator == BinaryOperator.POWER

    def test_and_binds_tighter_than_or(self):
        expr = parse_expression("a | b & c")
        assert expr.operator == BinaryOperator.OR
        assert expr.right.operator == BinaryOperator.AND

    def test_word_operators(self):
        expr = parse_expression("a > 1 and not b")
        assert expr.operator == BinaryOperator.AND
        assert expr.right == UnaryExpression(UnaryOperator.NOT, var("b"))

    def test_double_ampersand(self):
        assert parse_expression("a && b").operator == BinaryOperator.AND
        assert parse_expression("a || b").operator == BinaryOperator.OR

    def test_comparison_below_arithmetic(self):
        expr = parse_expression("api00 - api99 > 20")
        assert expr.operator == BinaryOperator.GREATER_THAN
        assert expr.left.operator == BinaryOperator.SUBTRACT

    def test_not_binds_looser_than_comparison(self):
        expr = parse_expression("!x == 1")
        assert isinstance(expr, UnaryExpression)
        assert expr.operand.operator == BinaryOperator.EQUALS

    def test_in_operator(self):
        expr = parse_expression('stype %in% c("E", "M")')
        assert expr.operator == BinaryOperator.IN
        assert expr.right == FunctionCall("c", (Literal("E"), Literal("M")))

    def test_modulo_and_integer_division(self):
        assert parse_expression("a %% 2").operator == BinaryOperator.MODULO
        assert parse_expression("a %/% 2").operator == BinaryOperator.INT_DIVIDE

    def test_special_operators_bind_tighter_than_multiplication(self):
        expr = parse_expression("a * b %% 4")
        assert expr.operator == BinaryOperator.MULTIPLY
        assert expr.right.operator == BinaryOperator.MODULO

        expr = parse_expression("a / b %/% 2")
        assert expr.operator == BinaryOperator.DIVIDE
        assert expr.right.operator == BinaryOperator.INT_DIVIDE

    def test_in_binds_tighter_than_addition(self):
        expr = parse_expression("a + a %in% c(1)")
        assert expr.operator == BinaryOperator.ADD
        assert expr.right.operator == BinaryOperator.IN

    def test_unary_minus_binds_tighter_than_modulo(self):
        expr = parse_expression("-x %% 3")
        assert expr.operator == BinaryOperator.MODULO
        assert isinstance(expr.left, UnaryExpression)

    def test_parentheses_override_precedence(self):
        expr = parse_expression("(a + b) * c")
        assert expr.operator == BinaryOperator.MULTIPLY
        assert expr.left.operator == BinaryOperator.ADD


class TestCalls:
    """Function calls with positional and keyword arguments."""

    def test_no_argument_call(self):
        assert parse_expression("n()") == FunctionCall("n")

    def test_positional_and_keyword(self):
        expr = parse_expression('survey_mean(api00, vartype = c("se", "ci"), na.rm = TRUE)')
        assert expr.name == "survey_mean"
        assert expr.arguments == (var("api00"),)
        assert expr.keyword("na.rm") == Literal(True)
        assert expr.keyword("vartype").name == "c"

    def test_nested_calls(self):
        expr = parse_expression("round(mean(x, na.rm = TRUE), 2)")
        assert expr.arguments[0].name == "mean"
        assert expr.arguments[1] == Literal(2)

    def test_keyword_literal_name_as_function(self):
        """A keyword constant followed by ( is a call."""
        assert parse_expression("NA()") == FunctionCall("NA")


class TestPipes:
    """Pipe operators chain verbs and bind loosest."""

    def test_native_pipe(self):
        expr = parse_expression("filter(x > 1) |> summarize(m = survey_mean(x))")
        assert expr.operator == BinaryOperator.PIPE
        assert expr.left.name == "filter"
        assert expr.right.name == "summarize"

    def test_magrittr_pipe_across_lines(self):
        expr = parse_expression("dstrat %>%\n  group_by(stype) %>%\n  ungroup()")
        assert expr.operator == BinaryOperator.PIPE
        assert expr.left.operator == BinaryOperator.PIPE
        assert expr.left.left == var("dstrat")


class TestErrors:
    """Malformed text raises ExpressionParseError."""

    @pytest.mark.parametrize("text", ["", "   ", None])
    def test_empty(self, text):
        with pytest.raises(ExpressionParseError):
            parse_expression(text)

    def test_unbalanced_parenthesis(self):
        with pytest.raises(ExpressionParseError, match=r"Expected '\)'"):
            parse_expression("(a + b")

    def test_stray_tokens(self):
        with pytest.raises(ExpressionParseError, match="Unexpected tokens"):
            parse_expression("a b")

    def test_unknown_character(self):
        with pytest.raises(ExpressionParseError, match="Unexpected character '#'"):
            parse_expression("a # b")

    def test_chained_comparison(self):
        with pytest.raises(ExpressionParseError, match="Chained"):
            parse_expression("1 < x < 3")

    def test_positional_after_keyword(self):
        with pytest.raises(ExpressionParseError, match="Positional argument"):
            parse_expression("f(a = 1, b)")

    def test_missing_comma(self):
        with pytest.raises(ExpressionParseError):
            parse_expression("f(a b)")

    def test_dangling_operator(self):
        with pytest.raises(ExpressionParseError, match="Unexpected end"):
            parse_expression("a +")
