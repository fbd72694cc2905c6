"""
Tests for evaluating expressions against a DataFrame.
"""

import numpy as np
import pandas as pd
import pytest

from tidysurvey.errors import EvaluationError
from tidysurvey.evaluator import (
    as_expression,
    evaluate,
    function_names,
    referenced_columns,
    resolve,
)
from tidysurvey.expressions import VariableReference
from tidysurvey.parser import parse_expression


@pytest.fixture
def frame():
    return pd.DataFrame({
        "x": [1.0, 2.0, 3.0, np.nan],
        "y": [10, 20, 30, 40],
        "g": ["a", "b", "a", "c"],
        "flag": [True, False, True, False],
    })


def run(text, frame):
    return evaluate(parse_expression(text), frame)


class TestColumnsAndOperators:
    """Column references and vectorised operators."""

    def test_column_reference(self, frame):
        assert run("y", frame).tolist() == [10, 20, 30, 40]

    def test_unknown_column(self, frame):
        with pytest.raises(EvaluationError, match="Column 'z' not found"):
            run("z + 1", frame)

    def test_arithmetic(self, frame):
        assert run("y / 10 + 1", frame).tolist() == [2.0, 3.0, 4.0, 5.0]

    def test_power_and_modulo(self, frame):
        assert run("y %% 15", frame).tolist() == [10, 5, 0, 10]
        assert run("y %/% 15", frame).tolist() == [0, 1, 2, 2]
        assert run("2 ^ 3", frame) == 8

    def test_special_operators_bind_tighter_than_multiplication(self, frame):
        assert run("y * 3 %% 4", frame).tolist() == [30, 60, 90, 120]
        assert run("y / 10 %/% 4", frame).tolist() == [5.0, 10.0, 15.0, 20.0]
        assert run("y + y %in% c(10, 30)", frame).tolist() == [11, 20, 31, 40]

    def test_comparison(self, frame):
        assert run("y >= 20", frame).tolist() == [False, True, True, True]

    def test_string_equality(self, frame):
        assert run('g == "a"', frame).tolist() == [True, False, True, False]

    def test_and_or_not(self, frame):
        assert run("flag & y > 10", frame).tolist() == [False, False, True, False]
        assert run("flag | y > 30", frame).tolist() == [True, False, True, True]
        assert run("!flag", frame).tolist() == [False, True, False, True]

    def test_in(self, frame):
        assert run('g %in% c("a", "c")', frame).tolist() == [True, False, True, True]

    def test_negate(self, frame):
        assert run("-y", frame).tolist() == [-10, -20, -30, -40]

    def test_scalar_expression(self, frame):
        assert run("1 + 2", frame) == 3

    def test_pipe_is_not_a_column_expression(self, frame):
        with pytest.raises(EvaluationError, match="Pipes"):
            run("x |> y", frame)

    def test_type_error_is_wrapped(self, frame):
        with pytest.raises(EvaluationError):
            run('g - 1', frame)


class TestFunctions:
    """Row-wise and aggregate functions."""

    def test_log_and_sqrt(self, frame):
        assert run("sqrt(y)", frame).iloc[0] == pytest.approx(np.sqrt(10))
        assert run("log10(y)", frame).iloc[0] == pytest.approx(1.0)

    def test_is_na(self, frame):
        assert run("is.na(x)", frame).tolist() == [False, False, False, True]
        assert run("!is_na(x)", frame).tolist() == [True, True, True, False]

    def test_ifelse(self, frame):
        result = run('ifelse(y > 15, "big", "small")', frame)
        assert result.tolist() == ["small", "big", "big", "big"]

    def test_ifelse_with_column_branches(self, frame):
        assert run("if_else(flag, y, 0)", frame).tolist() == [10, 0, 30, 0]

    def test_pmin_pmax(self, frame):
        assert run("pmin(y, 25)", frame).tolist() == [10, 20, 25, 25]
        assert run("pmax(y, 25)", frame).tolist() == [25, 25, 30, 40]

    def test_between(self, frame):
        assert run("between(y, 20, 30)", frame).tolist() == [False, True, True, False]

    def test_coalesce(self, frame):
        assert run("coalesce(x, 0)", frame).tolist() == [1.0, 2.0, 3.0, 0.0]

    def test_round(self, frame):
        assert run("round(y / 3, 1)", frame).tolist() == [3.3, 6.7, 10.0, 13.3]

    def test_as_character(self, frame):
        assert run("as.character(y)", frame).tolist() == ["10", "20", "30", "40"]

    def test_aggregates(self, frame):
        assert run("mean(y)", frame) == 25
        assert run("sum(y)", frame) == 100
        assert run("max(y) - min(y)", frame) == 30
        assert run("n_distinct(g)", frame) == 3

    def test_aggregate_with_na(self, frame):
        assert np.isnan(run("mean(x)", frame))
        assert run("mean(x, na.rm = TRUE)", frame) == 2.0
        assert run("sum(x, na_rm = TRUE)", frame) == 6.0

    def test_sd_and_var(self, frame):
        assert run("var(y)", frame) == pytest.approx(np.var([10, 20, 30, 40], ddof=1))
        assert run("sd(y)", frame) == pytest.approx(np.std([10, 20, 30, 40], ddof=1))

    def test_centering_with_aggregate(self, frame):
        assert run("y - mean(y)", frame).tolist() == [-15, -5, 5, 15]

    def test_n(self, frame):
        assert run("n()", frame) == 4

    def test_n_takes_no_arguments(self, frame):
        with pytest.raises(EvaluationError, match="n\\(\\) takes no arguments"):
            run("n(y)", frame)

    def test_unknown_function(self, frame):
        with pytest.raises(EvaluationError, match="Unknown function: foo"):
            run("foo(y)", frame)


class TestResolve:
    """resolve() accepts several kinds of column specification."""

    def test_text(self, frame):
        assert resolve("y * 2", frame).tolist() == [20, 40, 60, 80]

    def test_expression(self, frame):
        assert resolve(VariableReference("y"), frame).tolist() == [10, 20, 30, 40]

    def test_callable(self, frame):
        assert resolve(lambda df: df["y"] + 1, frame).tolist() == [11, 21, 31, 41]

    def test_array(self, frame):
        result = resolve(np.array([1, 2, 3, 4]), frame)
        assert isinstance(result, pd.Series)
        assert result.index.equals(frame.index)

    def test_array_length_mismatch(self, frame):
        with pytest.raises(EvaluationError, match="length 2"):
            resolve([1, 2], frame)

    def test_constant(self, frame):
        assert resolve(7, frame) == 7


class TestIntrospection:
    """Column and function inventories."""

    def test_referenced_columns(self):
        expr = parse_expression("ifelse(is.na(x), mean(y, na.rm = z), x) + w")
        assert referenced_columns(expr) == {"x", "y", "z", "w"}

    def test_referenced_columns_none(self):
        assert referenced_columns(None) == set()

    def test_function_names(self):
        expr = parse_expression("round(mean(x), 2) > -abs(y)")
        assert function_names(expr) == ["round", "mean", "abs"]

    def test_as_expression(self):
        assert as_expression("x") == VariableReference("x")
        assert as_expression(VariableReference("x")) == VariableReference("x")
        assert as_expression(3) is None
