"""
Tests for the column expression AST.

These tests verify:
    - Expression objects can be created
    - Expression tree composition
    - Expression immutability and hashability
    - Function call keyword lookup
"""

import pytest
from tidysurvey.expressions import (
    COMPARISON_OPERATORS,
    Expression,
    BinaryExpression,
    BinaryOperator,
    FunctionCall,
    VariableReference,
    Literal,
    UnaryExpression,
    UnaryOperator,
)


class TestVariableReference:
    """Test column reference expressions."""

    def test_create_variable_reference(self):
        """Should create a reference to a named column."""
        var_ref = VariableReference("api00")
        assert var_ref.name == "api00"

    def test_variable_reference_is_expression(self):
        var_ref = VariableReference("stype")
        assert isinstance(var_ref, Expression)

    def test_variable_reference_immutable(self):
        """Column references should be immutable."""
        var_ref = VariableReference("api00")
        with pytest.raises(AttributeError):
            var_ref.name = "Changed"


class TestLiteral:
    """Test literal value expressions."""

    @pytest.mark.parametrize("value", [5, 3.14, "E", True, None])
    def test_literal_values(self, value):
        assert Literal(value).value == value

    def test_negative_literal(self):
        assert Literal(-8).value == -8

    def test_literal_immutable(self):
        lit = Literal(5)
        with pytest.raises(AttributeError):
            lit.value = 10


class TestBinaryExpression:
    """Test binary expressions."""

    def test_arithmetic_expression(self):
        """api00 - api99"""
        expr = BinaryExpression(
            operator=BinaryOperator.SUBTRACT,
            left=VariableReference("api00"),
            right=VariableReference("api99"),
        )
        assert expr.operator == BinaryOperator.SUBTRACT
        assert expr.left == VariableReference("api00")

    def test_comparison_operators(self):
        """The comparison set holds exactly the six comparisons."""
        assert COMPARISON_OPERATORS == {
            BinaryOperator.EQUALS,
            BinaryOperator.NOT_EQUALS,
            BinaryOperator.GREATER_THAN,
            BinaryOperator.GREATER_EQUAL,
            BinaryOperator.LESS_THAN,
            BinaryOperator.LESS_EQUAL,
        }

    def test_nested_expressions(self):
        """(api00 >= 600 & stype == "E") | awards == "Yes" """
        inner = BinaryExpression(
            operator=BinaryOperator.AND,
            left=BinaryExpression(BinaryOperator.GREATER_EQUAL, VariableReference("api00"), Literal(600)),
            right=BinaryExpression(BinaryOperator.EQUALS, VariableReference("stype"), Literal("E")),
        )
        expr = BinaryExpression(
            BinaryOperator.OR,
            inner,
            BinaryExpression(BinaryOperator.EQUALS, VariableReference("awards"), Literal("Yes")),
        )
        assert expr.operator == BinaryOperator.OR
        assert isinstance(expr.left, BinaryExpression)

    def test_binary_expression_immutable(self):
        expr = BinaryExpression(BinaryOperator.EQUALS, VariableReference("x"), Literal(1))
        with pytest.raises(AttributeError):
            expr.operator = BinaryOperator.OR

    def test_equal_trees_are_equal_and_hashable(self):
        a = BinaryExpression(BinaryOperator.ADD, VariableReference("x"), Literal(1))
        b = BinaryExpression(BinaryOperator.ADD, VariableReference("x"), Literal(1))
        assert a == b
        assert len({a, b}) == 1


class TestUnaryExpression:
    """Test unary expressions."""

    def test_not_expression(self):
        operand = FunctionCall("is.na", (VariableReference("enroll"),))
        expr = UnaryExpression(operator=UnaryOperator.NOT, operand=operand)
        assert expr.operator == UnaryOperator.NOT
        assert isinstance(expr.operand, FunctionCall)

    def test_negate_expression(self):
        expr = UnaryExpression(UnaryOperator.NEGATE, VariableReference("api99"))
        assert expr.operator.value == "-"


class TestFunctionCall:
    """Test function call nodes."""

    def test_call_with_keywords(self):
        call = FunctionCall(
            name="survey_mean",
            arguments=(VariableReference("api00"),),
            keywords=(("vartype", Literal("ci")),),
        )
        assert call.keyword("vartype") == Literal("ci")
        assert call.keyword("level") is None
        assert call.keyword("level", Literal(0.9)) == Literal(0.9)

    def test_call_without_arguments(self):
        call = FunctionCall("n")
        assert call.arguments == ()
        assert call.keywords == ()

    def test_call_is_hashable(self):
        call = FunctionCall("mean", (VariableReference("x"),), (("na.rm", Literal(True)),))
        assert hash(call) == hash(FunctionCall("mean", (VariableReference("x"),), (("na.rm", Literal(True)),)))
