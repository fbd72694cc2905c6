"""
Expression evaluator (Expression AST × DataFrame → Series or scalar).

This is the layer that gives captured column expressions their meaning:
a VariableReference becomes the matching DataFrame column, operators map
onto vectorised pandas/numpy operations, and a fixed table of functions
covers what mutate/filter/unweighted commonly need.

Nothing here ever calls eval() on user text.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Set

import numpy as np
import pandas as pd

from tidysurvey.errors import EvaluationError
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
from tidysurvey.parser import parse_expression


# =============================================================================
# Function tables
# =============================================================================

def _na_rm(kwargs: Dict[str, Any]) -> bool:
    return bool(kwargs.get("na.rm", kwargs.get("na_rm", False)))


def _aggregate(reducer: Callable[[pd.Series], Any]) -> Callable:
    def apply(x, **kwargs):
        series = _as_series(x)
        if not _na_rm(kwargs) and series.isna().any():
            return np.nan
        return reducer(series.dropna())
    return apply


def _as_series(x) -> pd.Series:
    if isinstance(x, pd.Series):
        return x
    return pd.Series(np.atleast_1d(x))


def _round(x, digits=0, **_):
    if isinstance(x, pd.Series):
        return x.round(int(digits))
    return round(x, int(digits))


def _ifelse(condition, yes, no, **_):
    if isinstance(condition, pd.Series):
        result = np.where(condition.fillna(False).astype(bool), _values(yes, condition), _values(no, condition))
        result = pd.Series(result, index=condition.index)
        return result.where(condition.notna(), np.nan)
    return yes if condition else no


def _values(x, like: pd.Series):
    if isinstance(x, pd.Series):
        return x.reindex(like.index).to_numpy()
    return x


def _coalesce(*args, **_):
    result = args[0]
    for other in args[1:]:
        if isinstance(result, pd.Series):
            result = result.where(result.notna(), other)
        elif result is None or (isinstance(result, float) and np.isnan(result)):
            result = other
    return result


def _between(x, left, right, **_):
    return (x >= left) & (x <= right)


def _pairwise(method: str):
    def apply(*args, **kwargs):
        index = _index_of(args)
        columns = [a if isinstance(a, pd.Series) else pd.Series(a, index=index) for a in args]
        frame = pd.concat(columns, axis=1)
        return getattr(frame, method)(axis=1, skipna=_na_rm(kwargs))
    return apply


def _index_of(args):
    for a in args:
        if isinstance(a, pd.Series):
            return a.index
    return pd.RangeIndex(1)


def _is_na(x, **_):
    if isinstance(x, pd.Series):
        return x.isna()
    return pd.isna(x)


def _as_numeric(x, **_):
    if isinstance(x, pd.Series):
        return pd.to_numeric(x, errors="coerce")
    return float(x)


def _as_integer(x, **_):
    if isinstance(x, pd.Series):
        return pd.to_numeric(x, errors="coerce").astype("Int64")
    return int(x)


def _as_character(x, **_):
    if isinstance(x, pd.Series):
        return x.astype("string")
    return str(x)


def _unary_numpy(func):
    def apply(x, **_):
        if isinstance(x, pd.Series):
            return pd.Series(func(x.astype(float)), index=x.index)
        return func(x)
    return apply


ROW_FUNCTIONS: Dict[str, Callable] = {
    "log": _unary_numpy(np.log),
    "log10": _unary_numpy(np.log10),
    "log2": _unary_numpy(np.log2),
    "exp": _unary_numpy(np.exp),
    "sqrt": _unary_numpy(np.sqrt),
    "abs": _unary_numpy(np.abs),
    "floor": _unary_numpy(np.floor),
    "ceiling": _unary_numpy(np.ceil),
    "round": _round,
    "is.na": _is_na,
    "is_na": _is_na,
    "ifelse": _ifelse,
    "if_else": _ifelse,
    "c": lambda *args, **_: list(args),
    "pmin": _pairwise("min"),
    "pmax": _pairwise("max"),
    "between": _between,
    "coalesce": _coalesce,
    "as.numeric": _as_numeric,
    "as_numeric": _as_numeric,
    "as.integer": _as_integer,
    "as_integer": _as_integer,
    "as.character": _as_character,
    "as_character": _as_character,
}

AGGREGATE_FUNCTIONS: Dict[str, Callable] = {
    "mean": _aggregate(lambda s: s.mean()),
    "sum": _aggregate(lambda s: s.sum()),
    "min": _aggregate(lambda s: s.min()),
    "max": _aggregate(lambda s: s.max()),
    "median": _aggregate(lambda s: s.median()),
    "sd": _aggregate(lambda s: s.std(ddof=1)),
    "var": _aggregate(lambda s: s.var(ddof=1)),
    "n_distinct": lambda x, **kwargs: _as_series(x).nunique(dropna=_na_rm(kwargs)),
}

FUNCTIONS: Dict[str, Callable] = {**ROW_FUNCTIONS, **AGGREGATE_FUNCTIONS}


# =============================================================================
# Evaluation
# =============================================================================

def evaluate(expr: Expression, frame: pd.DataFrame):
    """
    Evaluate an expression against a DataFrame.

    Args:
        expr: Expression AST
        frame: Data the column references resolve against

    Returns:
        A pandas Series aligned with `frame`, or a scalar for constant and
        aggregate expressions

    Raises:
        EvaluationError: Unknown column or function, or an operation that
            fails on the data
    """
    if isinstance(expr, Literal):
        return expr.value

    if isinstance(expr, VariableReference):
        if expr.name not in frame.columns:
            raise EvaluationError(f"Column '{expr.name}' not found")
        return frame[expr.name]

    if isinstance(expr, UnaryExpression):
        operand = evaluate(expr.operand, frame)
        if expr.operator == UnaryOperator.NOT:
            if isinstance(operand, pd.Series):
                return ~operand.astype("boolean")
            return not operand
        return -operand

    if isinstance(expr, BinaryExpression):
        return _evaluate_binary(expr, frame)

    if isinstance(expr, FunctionCall):
        return _evaluate_call(expr, frame)

    raise EvaluationError(f"Unsupported expression type: {type(expr).__name__}")


def _evaluate_binary(expr: BinaryExpression, frame: pd.DataFrame):
    op = expr.operator
    if op == BinaryOperator.PIPE:
        raise EvaluationError("Pipes can only appear between verbs, not inside a column expression")

    left = evaluate(expr.left, frame)
    right = evaluate(expr.right, frame)

    if op == BinaryOperator.IN:
        choices = right if isinstance(right, list) else [right]
        if isinstance(left, pd.Series):
            return left.isin(choices)
        return left in choices

    try:
        if op == BinaryOperator.AND:
            return _logical(left) & _logical(right)
        if op == BinaryOperator.OR:
            return _logical(left) | _logical(right)
        if op == BinaryOperator.EQUALS:
            return left == right
        if op == BinaryOperator.NOT_EQUALS:
            return left != right
        if op == BinaryOperator.GREATER_THAN:
            return left > right
        if op == BinaryOperator.GREATER_EQUAL:
            return left >= right
        if op == BinaryOperator.LESS_THAN:
            return left < right
        if op == BinaryOperator.LESS_EQUAL:
            return left <= right
        if op == BinaryOperator.ADD:
            return left + right
        if op == BinaryOperator.SUBTRACT:
            return left - right
        if op == BinaryOperator.MULTIPLY:
            return left * right
        if op == BinaryOperator.DIVIDE:
            return left / right
        if op == BinaryOperator.POWER:
            return left ** right
        if op == BinaryOperator.MODULO:
            return left % right
        if op == BinaryOperator.INT_DIVIDE:
            return left // right
    except TypeError as e:
        raise EvaluationError(f"Cannot apply '{op.value}': {e}") from e

    raise EvaluationError(f"Unsupported operator: {op}")


def _logical(value):
    if isinstance(value, pd.Series):
        return value.astype("boolean")
    return value


def _evaluate_call(expr: FunctionCall, frame: pd.DataFrame):
    if expr.name == "n":
        if expr.arguments or expr.keywords:
            raise EvaluationError("n() takes no arguments")
        return len(frame)

    func = FUNCTIONS.get(expr.name)
    if func is None:
        raise EvaluationError(f"Unknown function: {expr.name}()")

    args = [evaluate(a, frame) for a in expr.arguments]
    kwargs = {key: evaluate(value, frame) for key, value in expr.keywords}
    try:
        return func(*args, **kwargs)
    except (TypeError, ValueError) as e:
        raise EvaluationError(f"Error in {expr.name}(): {e}") from e


def resolve(value: Any, frame: pd.DataFrame):
    """
    Resolve a user-supplied column expression against a frame.

    Accepts expression text, an Expression, a callable taking the frame,
    or a constant / array-like (returned as-is, arrays aligned to frame).
    """
    if isinstance(value, str):
        return evaluate(parse_expression(value), frame)
    if isinstance(value, Expression):
        return evaluate(value, frame)
    if callable(value):
        return value(frame)
    if isinstance(value, (np.ndarray, list)):
        if len(value) != len(frame):
            raise EvaluationError(
                f"Array of length {len(value)} does not match {len(frame)} rows"
            )
        return pd.Series(value, index=frame.index)
    return value


def as_expression(value: Any) -> Expression | None:
    """Parse text into an Expression; pass Expressions through; else None."""
    if isinstance(value, str):
        return parse_expression(value)
    if isinstance(value, Expression):
        return value
    return None


def referenced_columns(expr: Expression | None) -> Set[str]:
    """Extract all column names referenced by an expression."""
    if expr is None:
        return set()

    if isinstance(expr, VariableReference):
        return {expr.name}
    if isinstance(expr, BinaryExpression):
        return referenced_columns(expr.left) | referenced_columns(expr.right)
    if isinstance(expr, UnaryExpression):
        return referenced_columns(expr.operand)
    if isinstance(expr, FunctionCall):
        found: Set[str] = set()
        for arg in expr.arguments:
            found |= referenced_columns(arg)
        for _, value in expr.keywords:
            found |= referenced_columns(value)
        return found

    return set()


def function_names(expr: Expression | None) -> List[str]:
    """List the function names called anywhere in an expression."""
    if expr is None:
        return []
    if isinstance(expr, FunctionCall):
        names = [expr.name]
        for arg in expr.arguments:
            names.extend(function_names(arg))
        for _, value in expr.keywords:
            names.extend(function_names(value))
        return names
    if isinstance(expr, BinaryExpression):
        return function_names(expr.left) + function_names(expr.right)
    if isinstance(expr, UnaryExpression):
        return function_names(expr.operand)
    return []
