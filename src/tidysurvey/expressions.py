"""
Expression System for tidysurvey

Column expressions written by users (in mutate, filter, group_by and
summary functions) are held as Abstract Syntax Trees, never as code
strings that get passed to eval().

This ensures:
    - No arbitrary code execution
    - The referenced columns are known before evaluation
    - Expressions can be rendered back to formula text
    - Pipelines can be validated against a dataset up front

ARCHITECTURAL RULE:
    Nodes here are structure only.
    Evaluation lives in evaluator.py, rendering in formula.py.
"""

from abc import ABC
from dataclasses import dataclass
from enum import Enum
from typing import Tuple, Union


class Expression(ABC):
    """
    Base class for all AST expressions.

    It exists to provide type-safety for the expression hierarchy.

    DO NOT:
        - Add evaluation logic here (belongs in evaluator.py)
        - Add string representations (belongs in formula.py)
    """
    pass


class BinaryOperator(Enum):
    """
    Binary operators supported in column expressions.

    Values are the canonical spelling used when rendering.
    """

    # Logical operators
    AND = "&"
    OR = "|"

    # Comparison operators
    EQUALS = "=="
    NOT_EQUALS = "!="
    GREATER_THAN = ">"
    GREATER_EQUAL = ">="
    LESS_THAN = "<"
    LESS_EQUAL = "<="

    # Arithmetic operators
    ADD = "+"
    SUBTRACT = "-"
    MULTIPLY = "*"
    DIVIDE = "/"
    POWER = "^"
    MODULO = "%%"
    INT_DIVIDE = "%/%"

    # Membership
    IN = "%in%"

    # Verb chaining, only meaningful at the top of a pipeline
    PIPE = "|>"


COMPARISON_OPERATORS = frozenset({
    BinaryOperator.EQUALS,
    BinaryOperator.NOT_EQUALS,
    BinaryOperator.GREATER_THAN,
    BinaryOperator.GREATER_EQUAL,
    BinaryOperator.LESS_THAN,
    BinaryOperator.LESS_EQUAL,
})


@dataclass(frozen=True)
class BinaryExpression(Expression):
    """
    Represents a binary logical, comparison or arithmetic expression.

    Example:
        api00 - api99 > 0

    Becomes:
        BinaryExpression(
            operator=BinaryOperator.GREATER_THAN,
            left=BinaryExpression(
                operator=BinaryOperator.SUBTRACT,
                left=VariableReference("api00"),
                right=VariableReference("api99"),
            ),
            right=Literal(0),
        )

    IMPORTANT:
        This object is immutable (frozen=True).
        It does NOT evaluate itself.
    """

    operator: BinaryOperator
    left: "Expression"
    right: "Expression"


@dataclass(frozen=True)
class VariableReference(Expression):
    """
    References a column of the design's data.

    Examples:
        - api00
        - stype
        - `col with spaces` (back-quoted in text)

    IMPORTANT:
        This object does NOT validate column existence.
        That happens at evaluation or pipeline validation time.
    """

    name: str


@dataclass(frozen=True)
class Literal(Expression):
    """
    Represents a literal constant value.

    Examples:
        - 1
        - 2.5
        - "E"
        - True
        - None (written NA or NULL)
    """

    value: Union[int, float, str, bool, None]


class UnaryOperator(Enum):
    """Unary operators."""
    NOT = "!"
    NEGATE = "-"


@dataclass(frozen=True)
class UnaryExpression(Expression):
    """
    Represents a unary operation.

    Example:
        !is.na(api00)

    Becomes:
        UnaryExpression(
            operator=UnaryOperator.NOT,
            operand=FunctionCall("is.na", (VariableReference("api00"),)),
        )
    """

    operator: UnaryOperator
    operand: Expression


@dataclass(frozen=True)
class FunctionCall(Expression):
    """
    Represents a function call with positional and keyword arguments.

    Example:
        survey_mean(api00, vartype = "ci")

    Becomes:
        FunctionCall(
            name="survey_mean",
            arguments=(VariableReference("api00"),),
            keywords=(("vartype", Literal("ci")),),
        )

    Arguments and keywords are tuples so the node stays hashable.
    """

    name: str
    arguments: Tuple[Expression, ...] = ()
    keywords: Tuple[Tuple[str, Expression], ...] = ()

    def keyword(self, name: str, default=None):
        """Return the keyword argument expression called `name`, if any."""
        for key, value in self.keywords:
            if key == name:
                return value
        return default
