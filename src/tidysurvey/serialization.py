"""
Serialization helpers for expressions and design metadata.

Design metadata (which columns are ids, strata, weights, ...) round-trips
through a plain dict, JSON or YAML. The observations themselves are not
serialized: a design is rebuilt by applying the metadata to a DataFrame.

    kind: taylor
    ids: dnum
    strata: stype
    weights: pw
    fpc: fpc

This module keeps the dict structure explicit and stable, since design
files are written by hand.
"""
from __future__ import annotations

import json
from typing import Any, Dict

import pandas as pd
import yaml

from tidysurvey.design import (
    DesignSpec,
    ReplicateDesign,
    ReplicateSpec,
    SurveyDesign,
    TaylorDesign,
    TwoPhaseDesign,
    as_survey_design,
    as_survey_rep,
    as_survey_twophase,
)
from tidysurvey.errors import DesignError
from tidysurvey.expressions import (
    Expression,
    BinaryExpression,
    VariableReference,
    Literal,
    UnaryExpression,
    FunctionCall,
    BinaryOperator,
    UnaryOperator,
)

DESIGN_KINDS = ("taylor", "replicate", "twophase")
REPLICATE_FIELDS = ("repweights", "weights", "type", "scale", "rscales", "mse", "combined_weights", "rho")
TWOPHASE_FIELDS = ("phase1", "phase2", "subset")


def expr_to_dict(expr: Expression | None) -> Any:
    if expr is None:
        return None
    if isinstance(expr, BinaryExpression):
        return {
            "type": "binary",
            "operator": expr.operator.value,
            "left": expr_to_dict(expr.left),
            "right": expr_to_dict(expr.right),
        }
    if isinstance(expr, VariableReference):
        return {"type": "var", "name": expr.name}
    if isinstance(expr, Literal):
        return {"type": "lit", "value": expr.value}
    if isinstance(expr, UnaryExpression):
        return {
            "type": "unary",
            "operator": expr.operator.value,
            "operand": expr_to_dict(expr.operand),
        }
    if isinstance(expr, FunctionCall):
        return {
            "type": "call",
            "name": expr.name,
            "arguments": [expr_to_dict(a) for a in expr.arguments],
            "keywords": {key: expr_to_dict(value) for key, value in expr.keywords},
        }
    raise TypeError(f"Unsupported Expression type: {type(expr)}")


def expr_from_dict(d: Any) -> Expression | None:
    if d is None:
        return None
    t = d.get("type")
    if t == "binary":
        return BinaryExpression(
            operator=BinaryOperator(d["operator"]),
            left=expr_from_dict(d["left"]),
            right=expr_from_dict(d["right"]),
        )
    if t == "var":
        return VariableReference(d["name"])
    if t == "lit":
        return Literal(d["value"])
    if t == "unary":
        return UnaryExpression(operator=UnaryOperator(d["operator"]), operand=expr_from_dict(d["operand"]))
    if t == "call":
        return FunctionCall(
            name=d["name"],
            arguments=tuple(expr_from_dict(a) for a in d.get("arguments", [])),
            keywords=tuple((key, expr_from_dict(value)) for key, value in d.get("keywords", {}).items()),
        )
    raise TypeError(f"Unsupported expression dict type: {t}")


def _columns(value):
    """One column as a string, several as a list, none as None."""
    if not value:
        return None
    value = list(value)
    return value[0] if len(value) == 1 else value


def spec_to_dict(spec: DesignSpec) -> Dict[str, Any]:
    d = {
        "ids": _columns(spec.ids),
        "strata": _columns(spec.strata),
        "weights": spec.weights,
        "probs": spec.probs,
        "fpc": spec.fpc,
        "nest": spec.nest,
    }
    return {k: v for k, v in d.items() if v not in (None, False)}


def spec_from_dict(d: Dict[str, Any] | None) -> DesignSpec:
    if d is not None and not isinstance(d, dict):
        raise DesignError(f"Design fields must be a mapping, got {type(d).__name__}")
    d = dict(d or {})
    unknown = set(d) - {"ids", "strata", "weights", "probs", "fpc", "nest"}
    if unknown:
        raise DesignError(f"Unknown design field(s): {', '.join(sorted(unknown))}")
    return DesignSpec.create(**d)


def replicate_spec_to_dict(spec: ReplicateSpec) -> Dict[str, Any]:
    d = {
        "repweights": list(spec.repweights),
        "weights": spec.weights,
        "type": spec.type,
        "scale": spec.scale,
        "rscales": list(spec.rscales),
        "mse": spec.mse,
        "combined_weights": spec.combined_weights,
        "rho": spec.rho,
    }
    return {k: v for k, v in d.items() if v is not None}


def design_to_dict(design: SurveyDesign) -> Dict[str, Any]:
    """Design metadata (not the data) as a dict with a `kind` key."""
    if isinstance(design, TaylorDesign):
        d = {"kind": "taylor", **spec_to_dict(design.spec)}
    elif isinstance(design, ReplicateDesign):
        d = {"kind": "replicate", **replicate_spec_to_dict(design.spec)}
    elif isinstance(design, TwoPhaseDesign):
        d = {
            "kind": "twophase",
            "phase1": spec_to_dict(design.phase1),
            "phase2": spec_to_dict(design.phase2),
            "subset": design.phase2_column,
        }
    else:
        raise TypeError(f"Unsupported design type: {type(design)}")
    if design.groups:
        d["groups"] = list(design.groups)
    return d


def _check_fields(d: Dict[str, Any], allowed) -> None:
    unknown = set(d) - set(allowed)
    if unknown:
        raise DesignError(f"Unknown design field(s): {', '.join(sorted(unknown))}")


def design_from_dict(data: pd.DataFrame, d: Dict[str, Any]) -> SurveyDesign:
    """
    Build a design from a metadata dict.

    `kind` defaults to "replicate" when `repweights` is present,
    "twophase" when `phase1` is, and "taylor" otherwise. An optional
    `groups` list is applied with group_by().
    """
    if not isinstance(d, dict):
        raise DesignError(f"Design description must be a mapping, got {type(d).__name__}")
    d = dict(d)
    groups = d.pop("groups", None) or []
    if isinstance(groups, str):
        groups = [groups]
    kind = d.pop("kind", None)
    if kind is None:
        kind = "replicate" if "repweights" in d else "twophase" if "phase1" in d else "taylor"
    if kind not in DESIGN_KINDS:
        raise DesignError(f"Unknown design kind {kind!r}; expected one of {', '.join(DESIGN_KINDS)}")

    if kind == "taylor":
        spec = spec_from_dict(d)
        design = as_survey_design(data, ids=list(spec.ids), strata=list(spec.strata), weights=spec.weights,
                                  probs=spec.probs, fpc=spec.fpc, nest=spec.nest)
    elif kind == "replicate":
        _check_fields(d, REPLICATE_FIELDS)
        design = as_survey_rep(data, **d)
    else:
        _check_fields(d, TWOPHASE_FIELDS)
        design = as_survey_twophase(
            data,
            phase1=spec_from_dict(d.get("phase1")),
            phase2=spec_from_dict(d.get("phase2")),
            subset=d.get("subset"),
        )
    if groups:
        design = design.group_by(*groups)
    return design


def design_to_json(design: SurveyDesign) -> str:
    return json.dumps(design_to_dict(design), sort_keys=True)


def design_from_json(data: pd.DataFrame, s: str) -> SurveyDesign:
    try:
        d = json.loads(s)
    except json.JSONDecodeError as e:
        raise DesignError(f"Invalid JSON design: {e}") from e
    return design_from_dict(data, d)


def design_to_yaml(design: SurveyDesign) -> str:
    return yaml.safe_dump(design_to_dict(design))


def design_from_yaml(data: pd.DataFrame, s: str) -> SurveyDesign:
    try:
        d = yaml.safe_load(s)
    except yaml.YAMLError as e:
        raise DesignError(f"Invalid YAML design: {e}") from e
    return design_from_dict(data, d)


def load_design(data: pd.DataFrame, path: str) -> SurveyDesign:
    """Read a YAML (or JSON) design file and apply it to `data`."""
    with open(path) as fh:
        return design_from_yaml(data, fh.read())
