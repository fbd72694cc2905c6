"""
Design Analyzer - diagnostics and inventory of survey designs.

This module provides lightweight analysis of design objects:
    - Row counts (all rows / rows in the active subset)
    - Strata and PSU structure
    - Lonely-PSU strata
    - Degrees of freedom
    - Weight distribution and Kish weighting effect
    - Warning flags for estimation risk

IMPORTANT: This does NOT modify the design.
It only produces read-only reports.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional

import numpy as np
import pandas as pd

from tidysurvey.config import get_options
from tidysurvey.design import ReplicateDesign, SurveyDesign


@dataclass
class DesignReport:
    """Summary of a design's structure."""

    kind: str
    total_rows: int = 0
    rows_in_subset: int = 0
    groups: List[str] = field(default_factory=list)

    # Sampling structure (linearization and two-phase designs)
    n_strata: Optional[int] = None
    n_psu: Optional[int] = None
    min_psu_per_stratum: Optional[int] = None
    max_psu_per_stratum: Optional[int] = None
    lonely_strata: int = 0

    # Replicate designs
    n_replicates: Optional[int] = None
    replicate_type: Optional[str] = None

    degrees_of_freedom: float = 0.0

    # Weights over the active subset
    weight_sum: float = 0.0
    weight_min: float = 0.0
    weight_max: float = 0.0
    weighting_effect: float = 1.0

    warnings: List[str] = field(default_factory=list)

    def add_warning(self, msg: str) -> None:
        """Add a warning to the report."""
        if msg not in self.warnings:
            self.warnings.append(msg)


def kish_effect(weights: np.ndarray) -> float:
    """Kish's design effect due to unequal weighting: n * sum(w^2) / sum(w)^2."""
    weights = np.asarray(weights, dtype=float)
    total = weights.sum()
    if weights.size == 0 or total == 0:
        return float("nan")
    return float(weights.size * np.sum(weights ** 2) / total ** 2)


def analyze_design(design: SurveyDesign) -> DesignReport:
    """
    Analyze a survey design.

    Checks for:
    - Strata with a single PSU (and how the lonely_psu option treats them)
    - Few degrees of freedom
    - Zero weights and highly variable weights
    - An empty subset

    Returns a DesignReport with metrics and warnings.
    """
    report = DesignReport(kind=design.kind)
    report.total_rows = len(design.data)
    report.rows_in_subset = len(design)
    report.groups = list(design.groups)

    # =========================================================================
    # 1. SAMPLING STRUCTURE
    # =========================================================================

    units = design.sampling_units()
    if units is not None:
        strata, psu = units
        psus = pd.DataFrame({"stratum": strata, "psu": psu}).drop_duplicates()
        per_stratum = psus.groupby("stratum")["psu"].count()
        report.n_strata = int(len(per_stratum))
        report.n_psu = int(len(psus))
        report.min_psu_per_stratum = int(per_stratum.min())
        report.max_psu_per_stratum = int(per_stratum.max())
        report.lonely_strata = int((per_stratum == 1).sum())

    if isinstance(design, ReplicateDesign):
        report.n_replicates = len(design.spec.repweights)
        report.replicate_type = design.spec.type

    report.degrees_of_freedom = design.degf()

    # =========================================================================
    # 2. WEIGHTS
    # =========================================================================

    weights = design.weights.to_numpy(dtype=float)
    if weights.size:
        report.weight_sum = float(weights.sum())
        report.weight_min = float(weights.min())
        report.weight_max = float(weights.max())
        report.weighting_effect = kish_effect(weights)

    # =========================================================================
    # 3. WARNING FLAGS
    # =========================================================================

    if report.rows_in_subset == 0:
        report.add_warning("No rows in the active subset")

    if report.lonely_strata:
        policy = get_options().lonely_psu
        report.add_warning(
            f"{report.lonely_strata} stratum/strata with a single PSU (lonely_psu={policy!r})"
        )

    if report.degrees_of_freedom < 10:
        report.add_warning(f"Few design degrees of freedom: {report.degrees_of_freedom:g}")

    if weights.size and (weights == 0).any():
        report.add_warning(f"{int((weights == 0).sum())} rows have zero weight")

    if report.weighting_effect > 2:
        report.add_warning(f"Highly variable weights: Kish weighting effect {report.weighting_effect:.2f}")

    return report


def format_report(report: DesignReport) -> str:
    """Render a DesignReport as readable text."""
    lines = [
        f"Design: {report.kind}",
        f"Rows: {report.rows_in_subset} in subset of {report.total_rows}",
    ]
    if report.groups:
        lines.append(f"Groups: {', '.join(report.groups)}")
    if report.n_strata is not None:
        lines.append(f"Strata: {report.n_strata}")
        lines.append(
            f"PSUs: {report.n_psu} ({report.min_psu_per_stratum}-{report.max_psu_per_stratum} per stratum)"
        )
    if report.n_replicates is not None:
        lines.append(f"Replicates: {report.n_replicates} ({report.replicate_type})")
    lines.append(f"Degrees of freedom: {report.degrees_of_freedom:g}")
    lines.append(
        f"Weights: sum {report.weight_sum:.6g}, range {report.weight_min:.6g} to {report.weight_max:.6g}, "
        f"Kish effect {report.weighting_effect:.3f}"
    )
    if report.warnings:
        lines.append("Warnings:")
        lines.extend(f"  - {w}" for w in report.warnings)
    return "\n".join(lines)
