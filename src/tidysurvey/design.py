"""
Survey Design Objects

A survey design pairs row-level observations with the sampling metadata
the estimation backend needs:
    - Cluster (PSU) identifiers
    - Strata
    - Weights or selection probabilities
    - Finite population correction
    - Replicate weights (for replicate designs)

Three kinds of design are provided:
    - TaylorDesign: linearization variance (as_survey_design)
    - ReplicateDesign: replicate-weight variance (as_survey_rep)
    - TwoPhaseDesign: two-phase sampling (as_survey_twophase)

ARCHITECTURAL RULE:
    Designs never drop rows. filter() narrows a boolean `subset` and
    estimation zeroes the weights outside it, so variance estimates always
    see the full sample structure (domain estimation).

    Designs are treated as immutable: every verb returns a new design.
"""

from __future__ import annotations

import logging
import re
import warnings
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from functools import cached_property
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from tidysurvey.backend import (
    REPLICATE_TYPES,
    Statistic,
    bootstrap_factors,
    brr_factors,
    default_scale,
    design_degrees_of_freedom,
    jackknife_factors,
    phase1_vcov,
    replicate_vcov,
    stratified_vcov,
)
from tidysurvey.config import get_options
from tidysurvey.errors import DesignError
from tidysurvey.results import Estimate
from tidysurvey.verbs import VerbsMixin

logger = logging.getLogger(__name__)

ColumnSpec = Union[None, str, Sequence[str]]


def _as_list(columns: ColumnSpec) -> List[str]:
    """Normalize a column argument; None, 1, "1" and "~1" mean no columns."""
    if columns is None:
        return []
    if isinstance(columns, str):
        columns = columns.strip()
        if columns in ("1", "~1", "0", "~0", ""):
            return []
        return [columns.lstrip("~").strip()]
    if isinstance(columns, (int, float)):
        return []
    return [str(c) for c in columns]


@dataclass(frozen=True)
class DesignSpec:
    """
    Column names describing a linearization design.

    Properties:
        ids: Cluster identifier per stage (empty: each row is a PSU).
            Only the first stage enters the variance.
        strata: Stratum columns (combined when several)
        weights: Sampling weight column
        probs: Selection probability column (used when weights is None)
        fpc: Finite population correction column: population sizes (> 1)
            or sampling fractions (<= 1), constant within strata
        nest: PSU ids are only unique within strata
    """

    ids: Tuple[str, ...] = ()
    strata: Tuple[str, ...] = ()
    weights: Optional[str] = None
    probs: Optional[str] = None
    fpc: Optional[str] = None
    nest: bool = False

    @classmethod
    def create(cls, ids: ColumnSpec = None, strata: ColumnSpec = None, weights: Optional[str] = None,
               probs: Optional[str] = None, fpc: Optional[str] = None, nest: bool = False) -> "DesignSpec":
        return cls(
            ids=tuple(_as_list(ids)),
            strata=tuple(_as_list(strata)),
            weights=weights,
            probs=probs,
            fpc=fpc,
            nest=bool(nest),
        )

    def columns(self) -> List[str]:
        cols = list(self.ids) + list(self.strata)
        cols += [c for c in (self.weights, self.probs, self.fpc) if c]
        return cols

    def renamed(self, mapping: Dict[str, str]) -> "DesignSpec":
        def ren(name):
            return mapping.get(name, name) if name else name
        return replace(
            self,
            ids=tuple(ren(c) for c in self.ids),
            strata=tuple(ren(c) for c in self.strata),
            weights=ren(self.weights),
            probs=ren(self.probs),
            fpc=ren(self.fpc),
        )


@dataclass(frozen=True)
class ReplicateSpec:
    """
    Column names and scaling of a replicate-weight design.

    Properties:
        repweights: Replicate weight columns
        weights: Full-sample weight column
        type: Replicate method (see backend.REPLICATE_TYPES)
        scale: Overall variance multiplier
        rscales: Per-replicate multipliers
        mse: Centre replicates on the full-sample estimate
        combined_weights: Replicate columns are complete weights (True) or
            adjustment factors to multiply by the full-sample weights (False)
        rho: Fay's coefficient, for type "Fay"
    """

    repweights: Tuple[str, ...]
    weights: Optional[str] = None
    type: str = "other"
    scale: float = 1.0
    rscales: Tuple[float, ...] = ()
    mse: bool = False
    combined_weights: bool = True
    rho: Optional[float] = None

    def columns(self) -> List[str]:
        cols = list(self.repweights)
        if self.weights:
            cols.append(self.weights)
        return cols

    def renamed(self, mapping: Dict[str, str]) -> "ReplicateSpec":
        return replace(
            self,
            repweights=tuple(mapping.get(c, c) for c in self.repweights),
            weights=mapping.get(self.weights, self.weights) if self.weights else None,
        )


# =============================================================================
# Shared structure helpers
# =============================================================================

def _require_columns(data: pd.DataFrame, columns: Sequence[str], what: str = "Design") -> None:
    missing = [c for c in columns if c not in data.columns]
    if missing:
        raise DesignError(f"{what} variable(s) not found in data: {', '.join(missing)}")


def _require_complete(data: pd.DataFrame, columns: Sequence[str]) -> None:
    for c in columns:
        if data[c].isna().any():
            raise DesignError(f"Missing values in design variable '{c}'")


def _strata_codes(data: pd.DataFrame, strata: Sequence[str]) -> np.ndarray:
    if not strata:
        return np.zeros(len(data), dtype=int)
    if len(strata) == 1:
        codes, _ = pd.factorize(data[strata[0]], sort=True)
        return codes
    codes, _ = pd.factorize(pd.MultiIndex.from_frame(data[list(strata)]), sort=True)
    return codes


def _psu_codes(data: pd.DataFrame, ids: Sequence[str], strata: np.ndarray, nest: bool) -> np.ndarray:
    if not ids:
        return np.arange(len(data))
    ids_col = data[ids[0]]
    if nest:
        keys = pd.MultiIndex.from_arrays([strata, ids_col.to_numpy()])
        codes, _ = pd.factorize(keys, sort=True)
        return codes
    codes, _ = pd.factorize(ids_col, sort=True)
    spread = pd.Series(strata).groupby(codes).nunique()
    if (spread > 1).any():
        raise DesignError(
            f"Clusters not nested in strata at top level; you may want nest=True "
            f"(PSU '{ids[0]}' values appear in more than one stratum)"
        )
    return codes


def _psus_per_stratum(strata: np.ndarray, psu: np.ndarray) -> np.ndarray:
    """Per-row count of distinct PSUs in the row's stratum."""
    frame = pd.DataFrame({"stratum": strata, "psu": psu})
    counts = frame.drop_duplicates().groupby("stratum")["psu"].count()
    return counts.reindex(strata).to_numpy()


def _sampling_fraction(data: pd.DataFrame, fpc: Optional[str], strata: np.ndarray,
                       psu: np.ndarray) -> np.ndarray:
    if not fpc:
        return np.zeros(len(data))
    values = pd.to_numeric(data[fpc], errors="coerce").to_numpy(dtype=float)
    if np.isnan(values).any() or (values <= 0).any():
        raise DesignError(f"fpc '{fpc}' must be positive numbers")
    spread = pd.Series(values).groupby(strata).nunique()
    if (spread > 1).any():
        raise DesignError(f"fpc '{fpc}' must be constant within strata")

    as_fraction = values <= 1
    if as_fraction.all():
        return values
    if as_fraction.any():
        raise DesignError(f"fpc '{fpc}' mixes sampling fractions and population sizes")

    n_h = _psus_per_stratum(strata, psu)
    if (values < n_h).any():
        raise DesignError(f"fpc '{fpc}' implies fewer PSUs in the population than in the sample")
    return n_h / values


def _base_weights(data: pd.DataFrame, spec: DesignSpec, fraction: np.ndarray) -> np.ndarray:
    if spec.weights:
        weights = pd.to_numeric(data[spec.weights], errors="coerce").to_numpy(dtype=float)
        if np.isnan(weights).any() or (weights < 0).any():
            raise DesignError(f"Weights '{spec.weights}' must be non-negative numbers")
        return weights
    if spec.probs:
        probs = pd.to_numeric(data[spec.probs], errors="coerce").to_numpy(dtype=float)
        if np.isnan(probs).any() or (probs <= 0).any() or (probs > 1).any():
            raise DesignError(f"Probabilities '{spec.probs}' must be in (0, 1]")
        return 1.0 / probs
    if spec.fpc:
        return 1.0 / fraction
    return np.ones(len(data))


# =============================================================================
# Design classes
# =============================================================================

class SurveyDesign(VerbsMixin, ABC):
    """
    Base class for survey designs.

    Concrete designs are dataclasses with at least these fields:
        data: all sampled rows (index 0..n-1)
        groups: grouping columns set by group_by()
        subset: boolean mask of rows kept by filter(), or None for all
    """

    kind: str = "survey"
    data: pd.DataFrame
    groups: Tuple[str, ...]
    subset: Optional[np.ndarray]

    # -- structure -----------------------------------------------------------

    def _base_mask(self) -> np.ndarray:
        return np.ones(len(self.data), dtype=bool)

    @property
    def in_subset(self) -> np.ndarray:
        """Boolean mask over all rows of the rows currently in the design."""
        mask = self._base_mask()
        if self.subset is not None:
            mask = mask & self.subset
        return mask

    @property
    def variables(self) -> pd.DataFrame:
        """The data rows currently in the design."""
        return self.data[self.in_subset]

    @property
    def weights(self) -> pd.Series:
        """Full-sample weights of the rows currently in the design."""
        return pd.Series(self.full_weights()[self.in_subset], index=self.variables.index, name="weights")

    @abstractmethod
    def design_columns(self) -> List[str]:
        """Columns holding design metadata."""

    @abstractmethod
    def full_weights(self) -> np.ndarray:
        """Weights for every row of `data`."""

    @abstractmethod
    def estimate(self, statistic: Statistic, domain: np.ndarray) -> Estimate:
        """
        Estimate a statistic over a domain.

        Args:
            statistic: backend statistic built on arrays aligned with `data`
            domain: boolean mask over all rows; rows outside get zero weight

        Returns:
            Estimate with coef, vcov and df filled in
        """

    @abstractmethod
    def degf(self) -> float:
        """Design degrees of freedom."""

    def sampling_units(self) -> Optional[Tuple[np.ndarray, np.ndarray]]:
        """(strata, psu) codes of the rows the variance is built from, if any."""
        return None

    def _renamed_spec(self, mapping: Dict[str, str]) -> Dict[str, Any]:
        """Fields to update when columns are renamed."""
        return {}

    def _evolve(self, **changes) -> "SurveyDesign":
        return replace(self, **changes)

    # -- presentation --------------------------------------------------------

    @abstractmethod
    def _describe_lines(self) -> List[str]:
        ...

    def __len__(self) -> int:
        return int(self.in_subset.sum())

    def __repr__(self) -> str:
        lines = self._describe_lines()
        lines.append("Called via tidysurvey")
        design_cols = set(self.design_columns())
        data_cols = [c for c in self.data.columns if c not in design_cols]
        lines.append(f"Data variables: {', '.join(data_cols) if data_cols else '(none)'}")
        if self.groups:
            lines.append(f"Groups: {', '.join(self.groups)}")
        if self.subset is not None:
            lines.append(f"Subset: {len(self)} of {len(self.data)} rows")
        return "\n".join(lines)


@dataclass(eq=False, repr=False)
class TaylorDesign(SurveyDesign):
    """Stratified cluster design with Taylor-linearization variance."""

    data: pd.DataFrame
    spec: DesignSpec
    groups: Tuple[str, ...] = ()
    subset: Optional[np.ndarray] = None

    kind = "taylor"

    _strata: np.ndarray = field(init=False, repr=False)
    _psu: np.ndarray = field(init=False, repr=False)
    _fraction: np.ndarray = field(init=False, repr=False)
    _weights: np.ndarray = field(init=False, repr=False)

    def __post_init__(self):
        _require_columns(self.data, self.spec.columns())
        _require_complete(self.data, self.spec.columns())
        self._strata = _strata_codes(self.data, self.spec.strata)
        self._psu = _psu_codes(self.data, self.spec.ids, self._strata, self.spec.nest)
        self._fraction = _sampling_fraction(self.data, self.spec.fpc, self._strata, self._psu)
        self._weights = _base_weights(self.data, self.spec, self._fraction)

    def design_columns(self) -> List[str]:
        return self.spec.columns()

    def full_weights(self) -> np.ndarray:
        return self._weights

    @property
    def strata(self) -> np.ndarray:
        return self._strata

    @property
    def psu(self) -> np.ndarray:
        return self._psu

    @property
    def sampling_fraction(self) -> np.ndarray:
        return self._fraction

    def estimate(self, statistic: Statistic, domain: np.ndarray) -> Estimate:
        w = np.where(domain, self._weights, 0.0)
        with np.errstate(divide="ignore", invalid="ignore"):
            coef = statistic.point(w)
            scores = statistic.scores(w)
        vcov = stratified_vcov(scores, self._strata, self._psu, self._fraction,
                               lonely_psu=get_options().lonely_psu)
        return Estimate(coef=coef, vcov=vcov, df=self.degf())

    def degf(self) -> float:
        return float(design_degrees_of_freedom(self._strata, self._psu))

    def sampling_units(self):
        return self._strata, self._psu

    def _renamed_spec(self, mapping):
        return {"spec": self.spec.renamed(mapping)}

    def _describe_lines(self) -> List[str]:
        n_strata = len(np.unique(self._strata))
        n_psu = len(np.unique(self._psu))
        if self.spec.strata:
            title = "Stratified"
        else:
            title = "Independent"
        if self.spec.ids:
            title += f" 1-level Cluster Sampling design ({n_psu} clusters"
        else:
            title += f" Sampling design ({n_psu} units"
        title += f", {n_strata} strata)" if self.spec.strata else ")"
        if not self.spec.fpc:
            title += " (with replacement)"
        return [
            title,
            "Sampling variables:",
            f"  - ids: {', '.join(self.spec.ids) if self.spec.ids else '`1`'}",
            f"  - strata: {', '.join(self.spec.strata) if self.spec.strata else '(none)'}",
            f"  - weights: {self.spec.weights or (f'1/{self.spec.probs}' if self.spec.probs else '(none)')}",
            f"  - fpc: {self.spec.fpc or '(none)'}",
        ]


@dataclass(eq=False, repr=False)
class ReplicateDesign(SurveyDesign):
    """Design whose variance comes from replicate weights."""

    data: pd.DataFrame
    spec: ReplicateSpec
    groups: Tuple[str, ...] = ()
    subset: Optional[np.ndarray] = None

    kind = "replicate"

    _weights: np.ndarray = field(init=False, repr=False)
    _replicates: np.ndarray = field(init=False, repr=False)

    def __post_init__(self):
        _require_columns(self.data, self.spec.columns(), "Replicate design")
        _require_complete(self.data, self.spec.columns())
        if not self.spec.repweights:
            raise DesignError("No replicate weight columns")
        if len(self.spec.rscales) != len(self.spec.repweights):
            raise DesignError(
                f"rscales has {len(self.spec.rscales)} entries for {len(self.spec.repweights)} replicates"
            )
        if self.spec.weights:
            self._weights = self.data[self.spec.weights].to_numpy(dtype=float)
        else:
            self._weights = np.ones(len(self.data))
        replicates = self.data[list(self.spec.repweights)].to_numpy(dtype=float)
        if not self.spec.combined_weights:
            replicates = replicates * self._weights[:, None]
        self._replicates = replicates

    def design_columns(self) -> List[str]:
        return self.spec.columns()

    def full_weights(self) -> np.ndarray:
        return self._weights

    @property
    def replicate_weights(self) -> np.ndarray:
        """(n, R) replicate weights, already combined with the full weights."""
        return self._replicates

    def estimate(self, statistic: Statistic, domain: np.ndarray) -> Estimate:
        w = np.where(domain, self._weights, 0.0)
        with np.errstate(divide="ignore", invalid="ignore"):
            coef = statistic.point(w)
            thetas = np.vstack([
                statistic.point(np.where(domain, self._replicates[:, r], 0.0))
                for r in range(self._replicates.shape[1])
            ])
        vcov = replicate_vcov(thetas, coef, self.spec.scale, self.spec.rscales, self.spec.mse)
        return Estimate(coef=coef, vcov=vcov, df=self.degf())

    @cached_property
    def _degf(self) -> float:
        return float(np.linalg.matrix_rank(self._replicates) - 1)

    def degf(self) -> float:
        return self._degf

    def _renamed_spec(self, mapping):
        return {"spec": self.spec.renamed(mapping)}

    def _describe_lines(self) -> List[str]:
        return [
            f"Call: Called via tidysurvey with {len(self.spec.repweights)}-replicate {self.spec.type} weights.",
            "Sampling variables:",
            f"  - repweights: {_summarize_names(self.spec.repweights)}",
            f"  - weights: {self.spec.weights or '(none)'}",
            f"  - type: {self.spec.type}",
            f"  - scale: {self.spec.scale:g}",
            f"  - mse: {self.spec.mse}",
        ]


def _summarize_names(names: Sequence[str]) -> str:
    if len(names) <= 4:
        return ", ".join(names)
    return f"{names[0]}, {names[1]}, ..., {names[-1]}"


@dataclass(eq=False, repr=False)
class TwoPhaseDesign(SurveyDesign):
    """
    Two-phase design.

    `data` holds every phase-1 row; `phase2_column` flags the rows that
    were also sampled in phase 2. Estimates use phase-2 rows with weight
    w1 / p2, where p2 defaults to n2_h / n1_h within phase-2 strata.

    The variance adds a phase-1 component (the double-expansion estimate
    of the phase-1 variance from phase-2 rows) and a phase-2 component
    conditional on phase 1. Cross products within a phase-1 PSU use
    p2_i * p2_j in place of the joint phase-2 inclusion probability.
    """

    data: pd.DataFrame
    phase1: DesignSpec
    phase2: DesignSpec
    phase2_column: str
    groups: Tuple[str, ...] = ()
    subset: Optional[np.ndarray] = None

    kind = "twophase"

    _in_phase2: np.ndarray = field(init=False, repr=False)
    _strata1: np.ndarray = field(init=False, repr=False)
    _psu1: np.ndarray = field(init=False, repr=False)
    _fraction1: np.ndarray = field(init=False, repr=False)
    _strata2: np.ndarray = field(init=False, repr=False)
    _psu2: np.ndarray = field(init=False, repr=False)
    _fraction2: np.ndarray = field(init=False, repr=False)
    _weights: np.ndarray = field(init=False, repr=False)

    def __post_init__(self):
        _require_columns(self.data, [self.phase2_column] + self.phase1.columns(), "Phase 1")
        _require_complete(self.data, [self.phase2_column] + self.phase1.columns())
        self._in_phase2 = self.data[self.phase2_column].astype(bool).to_numpy()
        if not self._in_phase2.any():
            raise DesignError(f"No rows are flagged as phase 2 in '{self.phase2_column}'")

        self._strata1 = _strata_codes(self.data, self.phase1.strata)
        self._psu1 = _psu_codes(self.data, self.phase1.ids, self._strata1, self.phase1.nest)
        self._fraction1 = _sampling_fraction(self.data, self.phase1.fpc, self._strata1, self._psu1)
        w1 = _base_weights(self.data, self.phase1, self._fraction1)

        phase2_rows = self.data[self._in_phase2]
        _require_columns(phase2_rows, self.phase2.columns(), "Phase 2")
        _require_complete(phase2_rows, self.phase2.columns())
        # Phase-2 strata and ids are only required on phase-2 rows
        self._strata2 = np.full(len(self.data), -1)
        self._psu2 = np.full(len(self.data), -1)
        self._strata2[self._in_phase2] = _strata_codes(phase2_rows, self.phase2.strata)
        self._psu2[self._in_phase2] = _psu_codes(phase2_rows, self.phase2.ids, self._strata2[self._in_phase2],
                                                 self.phase2.nest)

        if self.phase2.probs:
            p2 = np.ones(len(self.data))
            p2[self._in_phase2] = pd.to_numeric(phase2_rows[self.phase2.probs]).to_numpy(dtype=float)
        else:
            p2 = self._phase2_probabilities()
        if (p2[self._in_phase2] <= 0).any() or (p2[self._in_phase2] > 1).any():
            raise DesignError("Phase-2 probabilities must be in (0, 1]")
        self._fraction2 = np.where(self._in_phase2, p2, 0.0)
        self._weights = np.where(self._in_phase2, w1 / p2, 0.0)

    def _phase2_probabilities(self) -> np.ndarray:
        """n2_h / n1_h per phase-2 stratum, counting phase-1 rows as units."""
        if self.phase2.strata:
            _require_columns(self.data, self.phase2.strata, "Phase 2")
            _require_complete(self.data, self.phase2.strata)
            strata_all = _strata_codes(self.data, self.phase2.strata)
        else:
            strata_all = np.zeros(len(self.data), dtype=int)
        frame = pd.DataFrame({"stratum": strata_all, "in2": self._in_phase2})
        counts = frame.groupby("stratum")["in2"].agg(["sum", "count"])
        ratio = (counts["sum"] / counts["count"]).reindex(strata_all).to_numpy()
        return np.where(ratio > 0, ratio, 1.0)

    def _base_mask(self) -> np.ndarray:
        return self._in_phase2

    def design_columns(self) -> List[str]:
        cols = [self.phase2_column] + self.phase1.columns()
        cols += [c for c in self.phase2.columns() if c not in cols]
        return cols

    def full_weights(self) -> np.ndarray:
        return self._weights

    def estimate(self, statistic: Statistic, domain: np.ndarray) -> Estimate:
        domain = domain & self._in_phase2
        w = np.where(domain, self._weights, 0.0)
        policy = get_options().lonely_psu
        with np.errstate(divide="ignore", invalid="ignore"):
            coef = statistic.point(w)
            scores = statistic.scores(w)
        phase1 = phase1_vcov(scores, self._strata1, self._psu1, self._fraction1,
                             np.where(self._in_phase2, self._fraction2, 1.0), lonely_psu=policy)
        rows = self._in_phase2
        phase2 = stratified_vcov(scores[rows], self._strata2[rows], self._psu2[rows],
                                 self._fraction2[rows], lonely_psu=policy)
        return Estimate(coef=coef, vcov=phase1 + phase2, df=self.degf())

    def degf(self) -> float:
        rows = self._in_phase2
        return float(design_degrees_of_freedom(self._strata2[rows], self._psu2[rows]))

    def sampling_units(self):
        rows = self._in_phase2
        return self._strata2[rows], self._psu2[rows]

    def _renamed_spec(self, mapping):
        return {
            "phase1": self.phase1.renamed(mapping),
            "phase2": self.phase2.renamed(mapping),
            "phase2_column": mapping.get(self.phase2_column, self.phase2_column),
        }

    def _describe_lines(self) -> List[str]:
        return [
            f"Two-phase sparse-matrix design: {len(self.data)} phase-1 rows, "
            f"{int(self._in_phase2.sum())} phase-2 rows",
            "Phase 1:",
            f"  - ids: {', '.join(self.phase1.ids) if self.phase1.ids else '`1`'}",
            f"  - strata: {', '.join(self.phase1.strata) if self.phase1.strata else '(none)'}",
            "Phase 2:",
            f"  - ids: {', '.join(self.phase2.ids) if self.phase2.ids else '`1`'}",
            f"  - strata: {', '.join(self.phase2.strata) if self.phase2.strata else '(none)'}",
            f"  - subset: {self.phase2_column}",
        ]


# =============================================================================
# Construction
# =============================================================================

def _prepare(data: pd.DataFrame) -> pd.DataFrame:
    if not isinstance(data, pd.DataFrame):
        raise DesignError(f"Survey data must be a pandas DataFrame, got {type(data).__name__}")
    return data.reset_index(drop=True)


def as_survey_design(data: pd.DataFrame, ids: ColumnSpec = None, strata: ColumnSpec = None,
                     weights: Optional[str] = None, probs: Optional[str] = None,
                     fpc: Optional[str] = None, nest: bool = False) -> TaylorDesign:
    """
    Create a linearization design from a DataFrame.

    Args:
        data: One row per sampled unit
        ids: Cluster id column(s); None for no clustering
        strata: Stratum column(s)
        weights: Sampling weight column
        probs: Selection probability column (if no weights)
        fpc: Population size or sampling fraction column
        nest: Cluster ids repeat across strata and are nested within them

    Returns:
        TaylorDesign

    Raises:
        DesignError: If the design metadata is missing or inconsistent
    """
    spec = DesignSpec.create(ids=ids, strata=strata, weights=weights, probs=probs, fpc=fpc, nest=nest)
    if not (spec.weights or spec.probs or spec.fpc):
        warnings.warn("No weights or probabilities supplied, assuming equal probability", UserWarning)
    design = TaylorDesign(data=_prepare(data), spec=spec)
    logger.debug(
        "Built linearization design: %d rows, %d strata, %d PSUs",
        len(design.data), len(np.unique(design.strata)), len(np.unique(design.psu)),
    )
    return design


def _match_repweights(data: pd.DataFrame, repweights: Union[str, Sequence[str]]) -> List[str]:
    if isinstance(repweights, str):
        if repweights in data.columns:
            return [repweights]
        pattern = re.compile(repweights)
        matched = [c for c in data.columns if pattern.search(str(c))]
        if not matched:
            raise DesignError(f"No columns match replicate weight pattern '{repweights}'")
        return matched
    return list(repweights)


def as_survey_rep(data: Union[pd.DataFrame, TaylorDesign], repweights: Union[str, Sequence[str], None] = None,
                  weights: Optional[str] = None, type: str = "other", scale: Optional[float] = None,
                  rscales: Optional[Sequence[float]] = None, mse: Optional[bool] = None,
                  combined_weights: bool = True, rho: Optional[float] = None,
                  replicates: int = 50, seed: Optional[int] = None) -> ReplicateDesign:
    """
    Create a replicate-weight design.

    From a DataFrame, `repweights` names the replicate columns (a list, or
    a regular expression matched against column names). From a
    TaylorDesign, replicate weights are generated with `type` one of
    "auto", "JK1", "JKn", "bootstrap", "BRR" or "Fay".

    Args:
        data: DataFrame or TaylorDesign to convert
        repweights: Replicate weight columns or pattern (DataFrame input)
        weights: Full-sample weight column
        type: Replicate method
        scale, rscales: Variance multipliers (defaults depend on type)
        mse: Centre on the full-sample estimate (default from options)
        combined_weights: Replicate columns already include the weights
        rho: Fay's coefficient
        replicates: Number of bootstrap replicates (conversion only)
        seed: Random seed for bootstrap replicates (conversion only)

    Raises:
        DesignError: If the replicate specification is inconsistent
    """
    if mse is None:
        mse = get_options().replicates_mse

    if isinstance(data, TaylorDesign):
        return _convert_to_replicates(data, type, mse=mse, replicates=replicates, seed=seed, rho=rho)
    if isinstance(data, SurveyDesign):
        raise DesignError(f"Cannot convert a {data.kind} design to replicate weights")

    if type not in REPLICATE_TYPES:
        raise DesignError(f"Unknown replicate type {type!r}; expected one of {', '.join(REPLICATE_TYPES)}")
    if repweights is None:
        raise DesignError("repweights is required when creating a replicate design from data")

    data = _prepare(data)
    columns = _match_repweights(data, repweights)
    if weights in columns:
        columns.remove(weights)
    n_rep = len(columns)
    if n_rep < 2:
        raise DesignError("A replicate design needs at least two replicate weight columns")

    if type == "Fay" and rho is None:
        raise DesignError("type='Fay' needs rho")
    if scale is None:
        scale = default_scale(type, n_rep, rho)
        if type == "other":
            warnings.warn("scale not specified for type='other', assuming 1", UserWarning)
    if rscales is None:
        if type == "JKn":
            warnings.warn("rscales not specified for type='JKn', assuming 1", UserWarning)
        rscales = [1.0] * n_rep
    if weights is None:
        warnings.warn("No full-sample weights supplied, assuming 1", UserWarning)

    spec = ReplicateSpec(
        repweights=tuple(columns),
        weights=weights,
        type=type,
        scale=float(scale),
        rscales=tuple(float(r) for r in rscales),
        mse=bool(mse),
        combined_weights=bool(combined_weights),
        rho=rho,
    )
    design = ReplicateDesign(data=data, spec=spec)
    logger.debug("Built replicate design: %d rows, %d %s replicates", len(data), n_rep, type)
    return design


def _convert_to_replicates(design: TaylorDesign, type: str, mse: bool, replicates: int,
                           seed: Optional[int], rho: Optional[float]) -> ReplicateDesign:
    if type in ("auto", "other"):
        type = "JKn" if design.spec.strata else "JK1"

    if type == "JK1":
        generated = jackknife_factors(design.strata, design.psu, stratified=False)
    elif type == "JKn":
        generated = jackknife_factors(design.strata, design.psu, stratified=True,
                                      fraction=design.sampling_fraction)
    elif type == "bootstrap":
        generated = bootstrap_factors(design.strata, design.psu, replicates, seed=seed)
    elif type == "BRR":
        generated = brr_factors(design.strata, design.psu)
    elif type == "Fay":
        generated = brr_factors(design.strata, design.psu, rho=0.5 if rho is None else rho)
    else:
        raise DesignError(f"Cannot generate replicate weights of type {type!r}")

    data = design.data.copy()
    weight_column = design.spec.weights
    if weight_column is None:
        weight_column = "_weights"
        data[weight_column] = design.full_weights()

    names = [f"repw_{r + 1}" for r in range(generated.factors.shape[1])]
    clash = [n for n in names if n in data.columns]
    if clash:
        raise DesignError(f"Cannot add replicate weights; columns already exist: {', '.join(clash[:3])}")
    replicate_weights = generated.factors * design.full_weights()[:, None]
    data = pd.concat([data, pd.DataFrame(replicate_weights, columns=names, index=data.index)], axis=1)

    spec = ReplicateSpec(
        repweights=tuple(names),
        weights=weight_column,
        type=generated.rep_type,
        scale=generated.scale,
        rscales=tuple(generated.rscales),
        mse=mse,
        combined_weights=True,
        rho=generated.rho,
    )
    logger.debug("Converted linearization design to %d %s replicates", len(names), generated.rep_type)
    return ReplicateDesign(data=data, spec=spec, groups=design.groups, subset=design.subset)


def _phase_spec(value: Union[None, DesignSpec, Dict[str, Any]]) -> DesignSpec:
    if value is None:
        return DesignSpec()
    if isinstance(value, DesignSpec):
        return value
    if isinstance(value, dict):
        unknown = set(value) - {"ids", "strata", "weights", "probs", "fpc", "nest"}
        if unknown:
            raise DesignError(f"Unknown phase argument(s): {', '.join(sorted(unknown))}")
        return DesignSpec.create(**value)
    raise DesignError(f"Phase specification must be a dict or DesignSpec, got {type(value).__name__}")


def as_survey_twophase(data: pd.DataFrame, phase1: Union[None, DesignSpec, Dict[str, Any]] = None,
                       phase2: Union[None, DesignSpec, Dict[str, Any]] = None,
                       subset: Optional[str] = None) -> TwoPhaseDesign:
    """
    Create a two-phase design.

    Args:
        data: All phase-1 rows
        phase1: Phase-1 design (dict of as_survey_design arguments or DesignSpec)
        phase2: Phase-2 design; `probs` is optional
        subset: Boolean column flagging phase-2 rows

    Raises:
        DesignError: If the phases are inconsistent
    """
    if subset is None:
        raise DesignError("as_survey_twophase needs the name of the phase-2 subset column")
    design = TwoPhaseDesign(
        data=_prepare(data),
        phase1=_phase_spec(phase1),
        phase2=_phase_spec(phase2),
        phase2_column=subset,
    )
    logger.debug("Built two-phase design: %d phase-1 rows, %d phase-2 rows", len(design.data), len(design))
    return design


def as_survey(data, **kwargs) -> SurveyDesign:
    """
    Create a design, choosing the kind from the arguments given.

    repweights → replicate design; phase1/phase2 → two-phase design;
    otherwise a linearization design. A TaylorDesign with a replicate
    `type` is converted to replicate weights.
    """
    if isinstance(data, SurveyDesign):
        if "type" in kwargs:
            return as_survey_rep(data, **kwargs)
        if kwargs:
            raise DesignError("as_survey() on an existing design only accepts replicate conversion arguments")
        return data
    if "repweights" in kwargs:
        return as_survey_rep(data, **kwargs)
    if "phase1" in kwargs or "phase2" in kwargs:
        return as_survey_twophase(data, **kwargs)
    return as_survey_design(data, **kwargs)
