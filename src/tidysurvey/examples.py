"""
Synthetic example datasets for demos and tests.

Each builder is deterministic for a given seed and returns a plain
DataFrame that can be handed to the matching design constructor:

    school_sample()     -> as_survey_design(strata="stype", weights="pw", fpc="fpc")
    cluster_sample()    -> as_survey_design(ids="dnum", weights="pw", fpc="fpc")
    replicate_sample()  -> as_survey_rep(repweights="repw_", weights="pw", type="BRR")
    twophase_sample()   -> as_survey_twophase(phase1={}, phase2={"strata": "region"}, subset="in_phase2")

The school data loosely follow the layout of the California API samples
(stratified by school type, with 1999 and 2000 scores).
"""
from __future__ import annotations

import numpy as np
import pandas as pd

from tidysurvey.backend import brr_factors

SCHOOL_STRATA = {
    # stype: (sampled schools, schools in population, mean score)
    "E": (100, 4421, 670.0),
    "H": (50, 755, 625.0),
    "M": (50, 1018, 640.0),
}


def school_sample(seed: int = 20) -> pd.DataFrame:
    """Stratified random sample of schools, with fpc and a few missing values."""
    rng = np.random.default_rng(seed)
    frames = []
    for stype, (n_h, N_h, mean) in SCHOOL_STRATA.items():
        api99 = np.round(rng.normal(mean - 20, 90, size=n_h))
        api00 = np.round(api99 + rng.normal(25, 30, size=n_h))
        enroll = np.round(rng.gamma(4.0, 150.0 if stype == "E" else 300.0, size=n_h))
        meals = np.clip(np.round(rng.normal(50, 25, size=n_h)), 0, 100)
        frames.append(pd.DataFrame({
            "stype": stype,
            "api00": api00,
            "api99": api99,
            "enroll": enroll,
            "meals": meals,
            "awards": np.where(api00 - api99 > 20, "Yes", "No"),
            "pw": N_h / n_h,
            "fpc": float(N_h),
        }))
    data = pd.concat(frames, ignore_index=True)
    data.insert(0, "snum", np.arange(1, len(data) + 1))
    # A handful of schools did not report enrolment
    data.loc[[3, 57, 140], "enroll"] = np.nan
    return data


def cluster_sample(seed: int = 21, districts: int = 15, population_districts: int = 757) -> pd.DataFrame:
    """One-stage cluster sample: every school in each sampled district."""
    rng = np.random.default_rng(seed)
    frames = []
    for d in range(districts):
        size = int(rng.integers(2, 12))
        level = rng.normal(650, 60)
        api99 = np.round(rng.normal(level, 50, size=size))
        frames.append(pd.DataFrame({
            "dnum": 100 + d * 7,
            "stype": rng.choice(["E", "M", "H"], size=size, p=[0.7, 0.15, 0.15]),
            "api99": api99,
            "api00": np.round(api99 + rng.normal(20, 25, size=size)),
            "enroll": np.round(rng.gamma(4.0, 200.0, size=size)),
        }))
    data = pd.concat(frames, ignore_index=True)
    data.insert(1, "snum", np.arange(1, len(data) + 1))
    data["pw"] = population_districts / districts
    data["fpc"] = float(population_districts)
    return data


def replicate_sample(seed: int = 22, strata: int = 8, households: int = 6) -> pd.DataFrame:
    """
    Household sample with two PSUs per stratum and BRR replicate weights.

    Replicate columns repw_1..repw_R already include the full-sample weight.
    """
    rng = np.random.default_rng(seed)
    rows = []
    for h in range(strata):
        for p in (1, 2):
            effect = rng.normal(0, 4000)
            for _ in range(households):
                income = max(0.0, round(rng.normal(42000 + 1500 * h + effect, 9000), -1))
                rows.append({
                    "stratum": h + 1,
                    "psu": p,
                    "income": income,
                    "hhsize": int(rng.integers(1, 6)),
                    "owner": bool(rng.random() < 0.4 + 0.03 * h),
                    "pw": round(float(rng.uniform(80, 160)), 1),
                })
    data = pd.DataFrame(rows)
    psu = data["stratum"].to_numpy() * 10 + data["psu"].to_numpy()
    replicates = brr_factors(data["stratum"].to_numpy(), psu)
    repw = replicates.factors * data["pw"].to_numpy()[:, None]
    names = [f"repw_{r + 1}" for r in range(repw.shape[1])]
    return pd.concat([data, pd.DataFrame(repw, columns=names)], axis=1)


def twophase_sample(seed: int = 23, n1: int = 400) -> pd.DataFrame:
    """
    Two-phase sample: a cheap screening variable for every phase-1 unit
    and an expensive measurement for a phase-2 subsample stratified by
    region (heavier sampling in the smaller regions).
    """
    rng = np.random.default_rng(seed)
    region = rng.choice(["north", "south", "west"], size=n1, p=[0.5, 0.3, 0.2])
    screen = rng.normal(10, 3, size=n1) + np.select(
        [region == "north", region == "south"], [0.0, 2.0], default=4.0
    )
    rates = {"north": 0.15, "south": 0.3, "west": 0.5}
    in_phase2 = np.zeros(n1, dtype=bool)
    for name, rate in rates.items():
        rows = np.flatnonzero(region == name)
        picked = rng.choice(rows, size=max(2, int(round(rate * len(rows)))), replace=False)
        in_phase2[picked] = True
    measured = np.where(in_phase2, np.round(2.5 * screen + rng.normal(0, 2, size=n1), 2), np.nan)
    return pd.DataFrame({
        "id": np.arange(1, n1 + 1),
        "region": region,
        "screen": np.round(screen, 2),
        "measured": measured,
        "in_phase2": in_phase2,
    })
