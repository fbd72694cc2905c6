"""
Verb pipelines written as text.

Reads dplyr-style pipelines and applies them to a design:

    filter(stype != "E") |>
      group_by(stype) |>
      summarize(api = survey_mean(api00, vartype = c("se", "ci")))

`%>%` works as well as `|>`. A leading design name (`dstrat %>% ...`)
is ignored. Column expressions inside verbs are passed through as
Expression objects; constant arguments (vartype, level, na.rm, ...) are
converted to Python values.

validate_pipeline() cross-checks a pipeline against the design's columns
without running it: it reports columns that neither the data nor an
earlier step defines.
"""
from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Set, Tuple, Union

import pandas as pd

from tidysurvey.errors import PipelineError
from tidysurvey.evaluator import FUNCTIONS, function_names, referenced_columns
from tidysurvey.expressions import (
    BinaryExpression,
    BinaryOperator,
    Expression,
    FunctionCall,
    Literal,
    UnaryExpression,
    UnaryOperator,
    VariableReference,
)
from tidysurvey.parser import parse_expression
from tidysurvey.summaries import SUMMARY_FUNCTIONS, Summary, Unweighted

logger = logging.getLogger(__name__)

ROW_VERBS = ("filter", "mutate", "transmute", "drop_na", "select", "rename", "group_by", "ungroup")
SUMMARY_VERBS = ("summarize", "summarise", "cascade", "survey_count", "survey_tally")
VERBS = ROW_VERBS + SUMMARY_VERBS

# Summary parameters that take column expressions; everything else is a constant
_EXPRESSION_PARAMETERS = {"x", "y", "numerator", "denominator", "expr"}


@dataclass(frozen=True)
class VerbCall:
    """One step of a pipeline: verb(arguments, key = value)."""

    verb: str
    arguments: Tuple[Expression, ...] = ()
    keywords: Tuple[Tuple[str, Expression], ...] = ()

    @property
    def summarizes(self) -> bool:
        return self.verb in SUMMARY_VERBS


# =============================================================================
# Parsing
# =============================================================================

def _flatten(expr: Expression) -> List[Expression]:
    if isinstance(expr, BinaryExpression) and expr.operator == BinaryOperator.PIPE:
        return _flatten(expr.left) + _flatten(expr.right)
    return [expr]


def parse_pipeline(text: str) -> List[VerbCall]:
    """
    Parse pipeline text into VerbCalls.

    Raises:
        ExpressionParseError: If the text is not a valid expression
        PipelineError: If a step is not a known verb call, or a verb
            follows a summarizing step
    """
    steps = _flatten(parse_expression(text))
    if steps and isinstance(steps[0], VariableReference):
        steps = steps[1:]
    if not steps:
        raise PipelineError("Pipeline has no verbs")

    calls = []
    for step in steps:
        if not isinstance(step, FunctionCall):
            raise PipelineError(f"Pipeline steps must be verb calls, got {type(step).__name__}")
        if step.name not in VERBS:
            raise PipelineError(f"Unknown verb: {step.name}()")
        if calls and calls[-1].summarizes:
            raise PipelineError(f"{step.name}() cannot follow {calls[-1].verb}(), which returns a table")
        calls.append(VerbCall(verb=step.name, arguments=step.arguments, keywords=step.keywords))
    return calls


# =============================================================================
# Argument translation
# =============================================================================

def _keyword_name(key: str) -> str:
    """R-style argument names: na.rm -> na_rm, .add -> add."""
    return key.lstrip(".").replace(".", "_")


def constant(expr: Expression) -> Any:
    """
    Convert a constant expression to a Python value.

    Literals give their value; c(...) of constants gives a list.

    Raises:
        PipelineError: If the expression is not constant
    """
    if isinstance(expr, Literal):
        return expr.value
    if isinstance(expr, FunctionCall) and expr.name == "c" and not expr.keywords:
        return [constant(a) for a in expr.arguments]
    if isinstance(expr, UnaryExpression) and expr.operator == UnaryOperator.NEGATE:
        value = constant(expr.operand)
        if isinstance(value, (int, float)):
            return -value
    raise PipelineError(f"Expected a constant, got {type(expr).__name__}")


def _column_name(expr: Expression, verb: str) -> str:
    if isinstance(expr, VariableReference):
        return expr.name
    if isinstance(expr, Literal) and isinstance(expr.value, str):
        return expr.value
    raise PipelineError(f"{verb}() expects column names")


def summary_from_expression(expr: Expression) -> Summary:
    """
    Build a Summary from a call such as survey_mean(api00, vartype = "ci").

    Calls to anything other than a summary function are computed
    unweighted, e.g. n() or mean(api00).
    """
    if not isinstance(expr, FunctionCall) or expr.name not in SUMMARY_FUNCTIONS:
        return Unweighted(expr)
    if expr.name == "unweighted":
        if len(expr.arguments) != 1 or expr.keywords:
            raise PipelineError("unweighted() takes exactly one expression")
        return Unweighted(expr.arguments[0])

    func = SUMMARY_FUNCTIONS[expr.name]
    parameters = list(inspect.signature(func).parameters)
    if len(expr.arguments) > len(parameters):
        raise PipelineError(f"Too many arguments to {expr.name}()")

    kwargs: Dict[str, Any] = {}
    given = list(zip(parameters, expr.arguments))
    given += [(_keyword_name(key), value) for key, value in expr.keywords]
    for name, value in given:
        if name not in parameters:
            raise PipelineError(f"Unknown argument '{name}' to {expr.name}()")
        if name in kwargs:
            raise PipelineError(f"Argument '{name}' given twice to {expr.name}()")
        if name in _EXPRESSION_PARAMETERS and not isinstance(value, Literal):
            kwargs[name] = value
        else:
            kwargs[name] = constant(value)
    try:
        return func(**kwargs)
    except TypeError as e:
        raise PipelineError(f"Invalid call to {expr.name}(): {e}") from e


def _summaries(call: VerbCall) -> Dict[str, Any]:
    summaries: Dict[str, Any] = {}
    for key, value in call.keywords:
        if call.verb == "cascade" and key in (".fill", "fill"):
            continue
        summaries[key] = summary_from_expression(value)
    if call.arguments:
        raise PipelineError(f"{call.verb}() arguments must be named, e.g. {call.verb}(x = survey_mean(y))")
    return summaries


def _options(call: VerbCall, allowed: Tuple[str, ...]) -> Dict[str, Any]:
    options = {}
    for key, value in call.keywords:
        name = _keyword_name(key)
        if name not in allowed:
            raise PipelineError(f"Unknown argument '{key}' to {call.verb}()")
        options[name] = constant(value)
    return options


def _named_expressions(call: VerbCall) -> Dict[str, Expression]:
    if call.arguments:
        raise PipelineError(f"{call.verb}() arguments must be named, e.g. {call.verb}(x = a + b)")
    return dict(call.keywords)


# =============================================================================
# Running
# =============================================================================

def apply_verb(design, call: VerbCall):
    """Apply one VerbCall to a design."""
    verb = call.verb
    logger.debug("Applying %s()", verb)

    if verb in ("mutate", "transmute"):
        return getattr(design, verb)(**_named_expressions(call))
    if verb == "filter":
        if call.keywords:
            raise PipelineError("filter() takes conditions, not named arguments (did you mean ==?)")
        return design.filter(*call.arguments)
    if verb in ("drop_na", "ungroup"):
        if call.keywords:
            raise PipelineError(f"{verb}() takes column names only")
        return getattr(design, verb)(*[_column_name(a, verb) for a in call.arguments])
    if verb == "select":
        columns = []
        for arg in call.arguments:
            if isinstance(arg, UnaryExpression) and arg.operator == UnaryOperator.NEGATE:
                columns.append("-" + _column_name(arg.operand, verb))
            else:
                columns.append(_column_name(arg, verb))
        if call.keywords:
            raise PipelineError("select() takes column names only; use rename() to rename")
        return design.select(*columns)
    if verb == "rename":
        if call.arguments:
            raise PipelineError("rename() arguments must be new_name = old_name")
        return design.rename(**{new: _column_name(old, verb) for new, old in call.keywords})
    if verb == "group_by":
        columns = [_column_name(a, verb) for a in call.arguments]
        add = False
        expressions = {}
        for key, value in call.keywords:
            if _keyword_name(key) == "add":
                add = bool(constant(value))
            else:
                expressions[key] = value
        return design.group_by(*columns, add=add, **expressions)
    if verb in ("summarize", "summarise"):
        return design.summarize(**_summaries(call))
    if verb == "cascade":
        return design.cascade(fill=_fill(call), **_summaries(call))
    if verb == "survey_count":
        columns = [_column_name(a, verb) for a in call.arguments]
        return design.survey_count(*columns, **_options(call, ("name", "sort", "vartype")))
    if verb == "survey_tally":
        if call.arguments:
            raise PipelineError("survey_tally() takes named options only")
        return design.survey_tally(**_options(call, ("name", "sort", "vartype")))
    raise PipelineError(f"Unknown verb: {verb}()")


def _fill(call: VerbCall) -> Any:
    for key, value in call.keywords:
        if key in (".fill", "fill"):
            return constant(value)
    return None


def run_pipeline(design, pipeline: Union[str, List[VerbCall]]) -> Union[Any, pd.DataFrame]:
    """
    Apply a pipeline to a design.

    Returns:
        A design, or a DataFrame when the pipeline ends in a summarizing verb
    """
    calls = parse_pipeline(pipeline) if isinstance(pipeline, str) else pipeline
    result = design
    for call in calls:
        result = apply_verb(result, call)
    return result


# =============================================================================
# Validation
# =============================================================================

@dataclass
class StepCheck:
    """Columns and functions one pipeline step uses."""

    index: int
    verb: str
    referenced: Set[str] = field(default_factory=set)
    defined: Set[str] = field(default_factory=set)
    missing: Set[str] = field(default_factory=set)
    unknown_functions: Set[str] = field(default_factory=set)

    @property
    def ok(self) -> bool:
        return not self.missing and not self.unknown_functions


@dataclass
class PipelineCheck:
    steps: List[StepCheck] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return all(step.ok for step in self.steps)

    @property
    def missing(self) -> Set[str]:
        found: Set[str] = set()
        for step in self.steps:
            found |= step.missing
        return found

    def messages(self) -> List[str]:
        lines = []
        for step in self.steps:
            if step.missing:
                lines.append(f"step {step.index} {step.verb}(): unknown column(s) {', '.join(sorted(step.missing))}")
            if step.unknown_functions:
                lines.append(
                    f"step {step.index} {step.verb}(): unknown function(s) "
                    f"{', '.join(sorted(step.unknown_functions))}"
                )
        return lines


_KNOWN_FUNCTIONS = set(FUNCTIONS) | set(SUMMARY_FUNCTIONS) | {"n", "c"}


def _step_references(call: VerbCall) -> Tuple[Set[str], Set[str], Set[str]]:
    """(referenced, defined, unknown functions) for one step."""
    referenced: Set[str] = set()
    defined: Set[str] = set()
    functions: List[str] = []

    if call.verb in ("mutate", "transmute", "group_by"):
        for key, value in call.keywords:
            if _keyword_name(key) == "add":
                continue
            referenced |= referenced_columns(value) - defined
            functions += function_names(value)
            defined.add(key)
        for arg in call.arguments:
            referenced |= referenced_columns(arg)
    elif call.verb == "rename":
        for new, old in call.keywords:
            referenced |= referenced_columns(old)
            defined.add(new)
    else:
        for arg in call.arguments:
            referenced |= referenced_columns(arg)
            functions += function_names(arg)
        for key, value in call.keywords:
            referenced |= referenced_columns(value)
            functions += function_names(value)

    unknown = {f for f in functions if f not in _KNOWN_FUNCTIONS}
    return referenced, defined, unknown


def validate_pipeline(columns, pipeline: Union[str, List[VerbCall]]) -> PipelineCheck:
    """
    Check which columns a pipeline uses that do not exist.

    Args:
        columns: A design, a DataFrame, or an iterable of column names
        pipeline: Pipeline text or parsed VerbCalls

    Returns:
        PipelineCheck with one StepCheck per verb
    """
    if hasattr(columns, "data"):
        columns = columns.data.columns
    elif isinstance(columns, pd.DataFrame):
        columns = columns.columns
    available = {str(c) for c in columns}

    calls = parse_pipeline(pipeline) if isinstance(pipeline, str) else pipeline
    check = PipelineCheck()
    for index, call in enumerate(calls, start=1):
        referenced, defined, unknown = _step_references(call)
        step = StepCheck(
            index=index,
            verb=call.verb,
            referenced=referenced,
            defined=defined,
            missing=referenced - available,
            unknown_functions=unknown,
        )
        check.steps.append(step)
        available |= defined
    return check
