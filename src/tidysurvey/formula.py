"""
Formula rendering for tidysurvey expressions.

Turns an Expression back into text, and builds the one-sided formula
(`~api00 + api99`) that describes which variables a summary forwards to
the estimation backend. Used for logging and object representations.
"""

from typing import Iterable, Optional

from tidysurvey.expressions import (
    Expression,
    BinaryExpression,
    BinaryOperator,
    VariableReference,
    Literal,
    UnaryExpression,
    UnaryOperator,
    FunctionCall,
)


_PRECEDENCE = {
    BinaryOperator.PIPE: 1,
    BinaryOperator.OR: 2,
    BinaryOperator.AND: 3,
    BinaryOperator.EQUALS: 5,
    BinaryOperator.NOT_EQUALS: 5,
    BinaryOperator.GREATER_THAN: 5,
    BinaryOperator.GREATER_EQUAL: 5,
    BinaryOperator.LESS_THAN: 5,
    BinaryOperator.LESS_EQUAL: 5,
    BinaryOperator.ADD: 6,
    BinaryOperator.SUBTRACT: 6,
    BinaryOperator.MULTIPLY: 7,
    BinaryOperator.DIVIDE: 7,
    BinaryOperator.IN: 8,
    BinaryOperator.MODULO: 8,
    BinaryOperator.INT_DIVIDE: 8,
    BinaryOperator.POWER: 10,
}

_NOT_PRECEDENCE = 4
_NEGATE_PRECEDENCE = 9


def _precedence(expr: Expression) -> int:
    if isinstance(expr, BinaryExpression):
        return _PRECEDENCE[expr.operator]
    if isinstance(expr, UnaryExpression):
        return _NOT_PRECEDENCE if expr.operator == UnaryOperator.NOT else _NEGATE_PRECEDENCE
    return 11


def _render_literal(value) -> str:
    if value is None:
        return "NA"
    if value is True:
        return "TRUE"
    if value is False:
        return "FALSE"
    if isinstance(value, str):
        escaped = value.replace("\\", "\\\\").replace('"', '\\"')
        return f'"{escaped}"'
    return repr(value)


def _render_name(name: str) -> str:
    if name and (name[0].isalpha() or name[0] in "._") and all(ch.isalnum() or ch in "._" for ch in name):
        return name
    return f"`{name}`"


def render_expression(expr: Optional[Expression]) -> str:
    """Render an expression as text that parse_expression() reads back."""
    if expr is None:
        return ""

    if isinstance(expr, Literal):
        return _render_literal(expr.value)

    if isinstance(expr, VariableReference):
        return _render_name(expr.name)

    if isinstance(expr, UnaryExpression):
        operand = render_expression(expr.operand)
        if _precedence(expr.operand) < _precedence(expr):
            operand = f"({operand})"
        return f"{expr.operator.value}{operand}"

    if isinstance(expr, BinaryExpression):
        mine = _precedence(expr)
        left = render_expression(expr.left)
        right = render_expression(expr.right)
        # POWER is right associative; everything else is left associative
        if expr.operator == BinaryOperator.POWER:
            if _precedence(expr.left) <= mine:
                left = f"({left})"
            if _precedence(expr.right) < mine:
                right = f"({right})"
        else:
            if _precedence(expr.left) < mine:
                left = f"({left})"
            if _precedence(expr.right) <= mine:
                right = f"({right})"
        return f"{left} {expr.operator.value} {right}"

    if isinstance(expr, FunctionCall):
        parts = [render_expression(a) for a in expr.arguments]
        parts += [f"{key} = {render_expression(value)}" for key, value in expr.keywords]
        return f"{expr.name}({', '.join(parts)})"

    raise TypeError(f"Unsupported Expression type: {type(expr)}")


def to_formula(expressions: Iterable[Optional[Expression]]) -> str:
    """
    Build a one-sided formula from expressions.

    Example:
        to_formula([VariableReference("api00"), parse_expression("api00 - api99")])
        → "~api00 + I(api00 - api99)"

    Plain column references appear bare; anything computed is wrapped in I().
    """
    terms = []
    for expr in expressions:
        if expr is None:
            continue
        if isinstance(expr, VariableReference):
            terms.append(_render_name(expr.name))
        else:
            terms.append(f"I({render_expression(expr)})")
    if not terms:
        return "~1"
    return "~" + " + ".join(terms)
