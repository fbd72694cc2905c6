"""
Pipeline verbs for survey designs.

Every verb returns a new design (or, for summarize and friends, a
DataFrame); the design it was called on is never modified.

    (design
        .filter("stype != 'E'")
        .mutate(api_diff="api00 - api99")
        .group_by("stype")
        .summarize(diff=survey_mean("api_diff", vartype="ci")))

Column expressions can be text (parsed with parse_expression), an
Expression, a callable taking the DataFrame, or a constant/array.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Sequence, Tuple

import numpy as np
import pandas as pd

from tidysurvey.errors import DesignError, EvaluationError, SummaryError
from tidysurvey.evaluator import resolve
from tidysurvey.summaries import SummaryContext, as_summary, survey_total

logger = logging.getLogger(__name__)


def _group_frames(frame: pd.DataFrame, groups: Sequence[str]):
    """Yield the row blocks of each group (all rows when ungrouped)."""
    if not groups:
        yield frame
        return
    for _, block in frame.groupby(list(groups), dropna=False, sort=False):
        yield block


def _broadcast(value, index: pd.Index) -> pd.Series:
    if isinstance(value, pd.Series):
        if len(value) == 1 and len(index) != 1:
            return pd.Series(value.iloc[0], index=index)
        return value.reindex(index)
    if isinstance(value, list):
        if len(value) == 1:
            return pd.Series(value[0], index=index)
        if len(value) != len(index):
            raise EvaluationError(f"Result of length {len(value)} does not match {len(index)} rows")
        return pd.Series(value, index=index)
    return pd.Series(value, index=index)


def _matches(column: pd.Series, value) -> np.ndarray:
    if pd.isna(value):
        return column.isna().to_numpy()
    return (column == value).fillna(False).to_numpy(dtype=bool)


class VerbsMixin:
    """Verbs shared by every design class."""

    # -- row-wise verbs -------------------------------------------------------

    def _evaluate_rows(self, value, frame: pd.DataFrame) -> pd.Series:
        """Evaluate a column expression per group over `frame`."""
        if isinstance(value, (np.ndarray, list, pd.Series)):
            return _broadcast(resolve(list(value) if isinstance(value, pd.Series) else value, frame),
                              frame.index)
        parts = [_broadcast(resolve(value, block), block.index) for block in _group_frames(frame, self.groups)]
        if not parts:
            return pd.Series(index=frame.index, dtype=float)
        return pd.concat(parts).reindex(frame.index)

    def mutate(self, **expressions):
        """
        Add or replace columns.

        Expressions are evaluated in order, so later ones can use columns
        defined earlier in the same call. On a grouped design aggregates
        such as mean() are computed per group. Rows outside the active
        subset are not evaluated; new columns are NA there. A value of
        None drops the column.

        Raises:
            DesignError: If a design variable would be modified
        """
        design_columns = set(self.design_columns())
        data = self.data.copy()
        rows = self.in_subset
        for name, value in expressions.items():
            if name in design_columns:
                raise DesignError(f"Cannot modify design variable '{name}' with mutate()")
            if value is None:
                if name in self.groups:
                    raise DesignError(f"Cannot drop grouping variable '{name}'")
                data = data.drop(columns=[name], errors="ignore")
                continue
            frame = data[rows]
            result = self._evaluate_rows(value, frame)
            result = result.reindex(data.index)
            if name in data.columns and not rows.all():
                # Rows outside the subset keep their old values
                result = result.where(rows, data[name])
            data[name] = result
        logger.debug("mutate: %s", ", ".join(expressions))
        return self._evolve(data=data)

    def transmute(self, **expressions):
        """mutate(), then keep only the new columns (plus design and group columns)."""
        mutated = self.mutate(**expressions)
        keep = [name for name, value in expressions.items() if value is not None]
        return mutated.select(*keep)

    def filter(self, *conditions):
        """
        Restrict the design to a domain.

        Rows are not removed: the subset mask shrinks and estimates zero
        the weights outside it, so variances still reflect the full
        design. Several conditions are combined with AND; NA counts as
        False.
        """
        mask = self.in_subset.copy()
        for condition in conditions:
            rows = np.flatnonzero(mask)
            frame = self.data.iloc[rows]
            result = self._evaluate_rows(condition, frame)
            keep = result.astype("boolean").fillna(False).to_numpy(dtype=bool)
            mask[rows] = keep
        logger.debug("filter: %d of %d rows kept", int(mask.sum()), len(mask))
        return self._evolve(subset=mask)

    def drop_na(self, *columns):
        """Restrict to rows with no missing values in `columns` (all columns if none)."""
        columns = list(columns) or list(self.data.columns)
        missing = [c for c in columns if c not in self.data.columns]
        if missing:
            raise EvaluationError(f"Column '{missing[0]}' not found")
        complete = self.data[columns].notna().all(axis=1).to_numpy()
        return self._evolve(subset=self.in_subset & complete)

    # -- column verbs ---------------------------------------------------------

    def select(self, *columns):
        """
        Keep the named columns. Design and grouping variables are always
        kept. A name prefixed with "-" drops that column instead.
        """
        drop = [c[1:] for c in columns if c.startswith("-")]
        keep = [c for c in columns if not c.startswith("-")]
        for name in drop + keep:
            if name not in self.data.columns:
                raise EvaluationError(f"Column '{name}' not found")

        protected = set(self.design_columns()) | set(self.groups)
        if keep:
            wanted = set(keep) | protected
            selected = [c for c in self.data.columns if c in wanted]
        else:
            selected = list(self.data.columns)
        selected = [c for c in selected if c not in drop or c in protected]
        return self._evolve(data=self.data[selected])

    def rename(self, **mapping):
        """Rename columns with new_name="old_name"; design metadata follows."""
        renames = {}
        for new, old in mapping.items():
            if old not in self.data.columns:
                raise EvaluationError(f"Column '{old}' not found")
            if new in self.data.columns and new != old:
                raise DesignError(f"Cannot rename '{old}' to '{new}': column already exists")
            renames[old] = new
        data = self.data.rename(columns=renames)
        groups = tuple(renames.get(g, g) for g in self.groups)
        return self._evolve(data=data, groups=groups, **self._renamed_spec(renames))

    # -- grouping -------------------------------------------------------------

    def group_by(self, *columns, add: bool = False, **expressions):
        """
        Group by existing columns and/or new computed columns.

        group_by("stype") or group_by(high="api00 > 700").
        With add=True the new groups are appended to the current ones.
        """
        design = self.ungroup() if expressions else self
        if expressions:
            design = design.mutate(**expressions)
        names = list(columns) + list(expressions)
        for name in names:
            if name not in design.data.columns:
                raise EvaluationError(f"Column '{name}' not found")
        groups = list(self.groups) if add else []
        groups += [n for n in names if n not in groups]
        return design._evolve(groups=tuple(groups))

    def ungroup(self, *columns):
        """Remove all grouping, or just the listed grouping variables."""
        if not columns:
            return self._evolve(groups=())
        return self._evolve(groups=tuple(g for g in self.groups if g not in columns))

    def group_vars(self) -> List[str]:
        return list(self.groups)

    # -- summaries ------------------------------------------------------------

    def _group_keys(self, groups: Sequence[str]) -> pd.DataFrame:
        """Observed group combinations, sorted with NA last."""
        frame = self.data.loc[self.in_subset, list(groups)].drop_duplicates()
        if frame.empty:
            return frame.reset_index(drop=True)
        return frame.sort_values(list(groups), na_position="last", kind="mergesort").reset_index(drop=True)

    def _summarize_groups(self, groups: Tuple[str, ...], summaries: Dict[str, Any]) -> pd.DataFrame:
        base = self.in_subset
        columns = {name: as_summary(value) for name, value in summaries.items()}

        if not groups:
            context = SummaryContext(design=self, domain=base, outer=base, groups=())
            row: Dict[str, Any] = {}
            for name, summary in columns.items():
                row.update(summary.compute(name, context))
            return pd.DataFrame([row])

        keys = self._group_keys(groups)
        rows = []
        for key in keys.itertuples(index=False, name=None):
            masks = [_matches(self.data[g], v) for g, v in zip(groups, key)]
            outer = base.copy()
            for m in masks[:-1]:
                outer &= m
            domain = outer & masks[-1]
            context = SummaryContext(design=self, domain=domain, outer=outer,
                                     groups=tuple(groups), keys=dict(zip(groups, key)))
            row = dict(zip(groups, key))
            for name, summary in columns.items():
                row.update(summary.compute(name, context))
            rows.append(row)

        if not rows:
            return pd.DataFrame(columns=list(groups))
        return pd.DataFrame(rows)

    def summarize(self, **summaries) -> pd.DataFrame:
        """
        Summarize the design, one row per observed group combination.

        Values are summary objects (survey_mean, survey_total, ...) or
        unweighted expressions. Group columns come first, then summary
        columns in the order given.
        """
        for name, value in summaries.items():
            summary = as_summary(value)
            logger.debug("%s = %s(%s) by %s", name, type(summary).__name__, summary.formula(),
                         list(self.groups) or "(no groups)")
        return self._summarize_groups(tuple(self.groups), summaries)

    summarise = summarize

    def cascade(self, fill=None, **summaries) -> pd.DataFrame:
        """
        Summarize at every level of grouping.

        Rows for each grouping level are stacked: all groups, then
        dropping the last group one at a time, down to the overall row.
        Group columns of the coarser rows are set to `fill`.
        """
        groups = tuple(self.groups)
        if fill is not None:
            for g in groups:
                keys = list(self.variables[g].dropna().unique())
                try:
                    sorted(keys + [fill])
                except TypeError as e:
                    raise SummaryError(f"cascade fill {fill!r} cannot be sorted with the values of '{g}'") from e
        frames = []
        for level in range(len(groups), -1, -1):
            part = self._summarize_groups(groups[:level], summaries)
            for g in groups[level:]:
                part[g] = fill
            frames.append(part[list(groups) + [c for c in part.columns if c not in groups]])
        result = pd.concat(frames, ignore_index=True)
        if groups:
            result = result.sort_values(list(groups), na_position="last", kind="mergesort").reset_index(drop=True)
        return result

    def survey_count(self, *columns, name: str = "n", sort: bool = False, vartype="default") -> pd.DataFrame:
        """Estimated population count of each combination of `columns` (and current groups)."""
        grouped = self.group_by(*columns, add=True) if columns else self
        result = grouped.summarize(**{name: survey_total(vartype=vartype)})
        if sort:
            result = result.sort_values(name, ascending=False, kind="mergesort").reset_index(drop=True)
        return result

    def survey_tally(self, name: str = "n", sort: bool = False, vartype="default") -> pd.DataFrame:
        """Estimated population count of each current group."""
        return self.survey_count(name=name, sort=sort, vartype=vartype)

    # -- extraction -----------------------------------------------------------

    def pull(self, column) -> pd.Series:
        """A column (or computed expression) for the rows in the design."""
        frame = self.variables
        if isinstance(column, str) and column in frame.columns:
            return frame[column]
        return _broadcast(resolve(column, frame), frame.index)

    def collect(self) -> pd.DataFrame:
        """The rows currently in the design as a plain DataFrame."""
        return self.variables.copy()

    to_frame = collect

    def pipe(self, func, *args, **kwargs):
        return func(self, *args, **kwargs)
