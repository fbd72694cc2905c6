"""
Tests for the design verbs.

Tests verify that verbs:
    - Return new designs and leave the original untouched
    - Keep every row (filter narrows the subset)
    - Protect design and grouping variables
    - Produce one summary row per observed group
"""

import numpy as np
import pandas as pd
import pytest

from tidysurvey import (
    DesignError,
    EvaluationError,
    SummaryError,
    as_survey_design,
    survey_mean,
    survey_total,
    unweighted,
)


@pytest.fixture
def design():
    data = pd.DataFrame({
        "stype": ["E", "E", "H", "H", "M", "M"],
        "api": [600.0, 700.0, 500.0, 550.0, 650.0, 640.0],
        "score": [1.0, np.nan, 3.0, 4.0, 5.0, 6.0],
        "region": ["n", "s", "n", "s", "n", None],
        "w": [10.0, 10.0, 5.0, 5.0, 4.0, 4.0],
    })
    return as_survey_design(data, strata="stype", weights="w")


class TestMutate:
    """mutate() and transmute()."""

    def test_adds_column(self, design):
        result = design.mutate(api_k="api / 100")
        assert result.data["api_k"].tolist() == [6.0, 7.0, 5.0, 5.5, 6.5, 6.4]
        assert "api_k" not in design.data.columns

    def test_sequential(self, design):
        result = design.mutate(a="api / 100", b="a * 2")
        assert result.data["b"].tolist()[0] == 12.0

    def test_callable_and_constant(self, design):
        result = design.mutate(double=lambda df: df["api"] * 2, one=1)
        assert result.data["double"].tolist()[0] == 1200.0
        assert result.data["one"].tolist() == [1] * 6

    def test_grouped_aggregate(self, design):
        result = design.group_by("stype").mutate(centred="api - mean(api)")
        assert result.data["centred"].tolist() == [-50.0, 50.0, -25.0, 25.0, 5.0, -5.0]

    def test_design_variable_is_protected(self, design):
        with pytest.raises(DesignError, match="Cannot modify design variable 'w'"):
            design.mutate(w="w * 2")

    def test_none_drops_column(self, design):
        assert "score" not in design.mutate(score=None).data.columns

    def test_cannot_drop_group(self, design):
        with pytest.raises(DesignError, match="grouping variable"):
            design.group_by("region").mutate(region=None)

    def test_outside_subset(self, design):
        result = design.filter("api > 600").mutate(flag="api > 650", api="api + 1")
        assert result.data["flag"].isna().tolist() == [True, False, True, True, False, False]
        assert result.data["api"].tolist() == [600.0, 701.0, 500.0, 550.0, 651.0, 641.0]

    def test_transmute(self, design):
        result = design.group_by("region").transmute(api_k="api / 100")
        assert list(result.data.columns) == ["stype", "region", "w", "api_k"]


class TestFilter:
    """filter() and drop_na() narrow the subset without dropping rows."""

    def test_rows_are_kept(self, design):
        result = design.filter('stype == "E"')
        assert len(result.data) == 6
        assert len(result) == 2
        assert result.in_subset.tolist() == [True, True, False, False, False, False]

    def test_conditions_combine(self, design):
        result = design.filter("api > 550", 'stype != "M"')
        assert result.collect()["api"].tolist() == [600.0, 700.0]

    def test_successive_filters(self, design):
        assert len(design.filter("api > 550").filter("api < 700")) == 3

    def test_na_is_false(self, design):
        assert len(design.filter("score > 2")) == 4

    def test_grouped_filter(self, design):
        result = design.group_by("stype").filter("api == max(api)")
        assert result.collect()["api"].tolist() == [700.0, 550.0, 650.0]

    def test_drop_na(self, design):
        assert len(design.drop_na("score")) == 5
        assert len(design.drop_na()) == 4

    def test_drop_na_unknown_column(self, design):
        with pytest.raises(EvaluationError, match="Column 'nope' not found"):
            design.drop_na("nope")

    def test_weights_follow_subset(self, design):
        assert design.filter('stype == "H"').weights.tolist() == [5.0, 5.0]


class TestColumns:
    """select() and rename()."""

    def test_select_keeps_design_and_groups(self, design):
        result = design.group_by("region").select("api")
        assert list(result.data.columns) == ["stype", "api", "region", "w"]

    def test_select_negative(self, design):
        result = design.select("-score", "-w")
        assert "score" not in result.data.columns
        assert "w" in result.data.columns

    def test_select_unknown(self, design):
        with pytest.raises(EvaluationError):
            design.select("nope")

    def test_rename_updates_design(self, design):
        result = design.group_by("stype").rename(weight="w", type="stype")
        assert result.spec.weights == "weight"
        assert result.spec.strata == ("type",)
        assert result.groups == ("type",)
        assert result.weights.tolist() == design.weights.tolist()

    def test_rename_clash(self, design):
        with pytest.raises(DesignError, match="already exists"):
            design.rename(api="score")


class TestGrouping:
    """group_by() and ungroup()."""

    def test_group_by(self, design):
        assert design.group_by("stype", "region").group_vars() == ["stype", "region"]

    def test_computed_group(self, design):
        result = design.group_by(high="api > 600")
        assert result.groups == ("high",)
        assert result.data["high"].tolist() == [False, True, False, False, True, True]

    def test_add(self, design):
        assert design.group_by("stype").group_by("region", add=True).groups == ("stype", "region")
        assert design.group_by("stype").group_by("region").groups == ("region",)

    def test_unknown_group(self, design):
        with pytest.raises(EvaluationError, match="Column 'nope' not found"):
            design.group_by("nope")

    def test_ungroup(self, design):
        grouped = design.group_by("stype", "region")
        assert grouped.ungroup().groups == ()
        assert grouped.ungroup("stype").groups == ("region",)


class TestSummarize:
    """summarize(), cascade(), survey_count() and survey_tally()."""

    def test_one_row_per_group(self, design):
        result = design.group_by("stype").summarize(api=survey_mean("api"), n=unweighted("n()"))
        assert result["stype"].tolist() == ["E", "H", "M"]
        assert list(result.columns) == ["stype", "api", "api_se", "n"]
        assert result["api"].tolist() == pytest.approx([650.0, 525.0, 645.0])
        assert result["n"].tolist() == [2, 2, 2]

    def test_missing_group_value_sorts_last(self, design):
        result = design.group_by("region").summarize(n=unweighted("n()"))
        assert result["region"].tolist()[:2] == ["n", "s"]
        assert pd.isna(result["region"].tolist()[2])

    def test_filtered_groups_are_dropped(self, design):
        result = design.filter('stype != "H"').group_by("stype").summarize(n=unweighted("n()"))
        assert result["stype"].tolist() == ["E", "M"]

    def test_empty_domain(self, design):
        result = design.filter("api > 1000").group_by("stype").summarize(api=survey_mean("api"))
        assert result.empty
        assert list(result.columns) == ["stype"]

    def test_summarise_alias(self, design):
        assert design.summarise(n=unweighted("n()"))["n"][0] == 6

    def test_plain_values_are_unweighted(self, design):
        assert design.summarize(top="max(api)")["top"][0] == 700.0

    def test_cascade(self, design):
        result = design.group_by("stype").cascade(total=survey_total(vartype=None), fill="All")
        assert result["stype"].tolist() == ["All", "E", "H", "M"]
        assert result["total"].tolist() == [38.0, 20.0, 10.0, 8.0]

    def test_cascade_default_fill(self, design):
        result = design.group_by("stype").cascade(total=survey_total(vartype=None))
        assert result["stype"].tolist()[:3] == ["E", "H", "M"]
        assert result["stype"].isna().tolist() == [False, False, False, True]

    def test_cascade_numeric_groups(self, design):
        banded = design.mutate(band="api %/% 100").group_by("band")
        result = banded.cascade(total=survey_total(vartype=None), fill=0)
        assert result["band"].tolist() == [0, 5, 6, 7]
        assert result["total"].tolist() == [38.0, 10.0, 18.0, 10.0]

    def test_cascade_fill_must_match_group_type(self, design):
        banded = design.mutate(band="api %/% 100").group_by("band")
        with pytest.raises(SummaryError, match="cannot be sorted with the values of 'band'"):
            banded.cascade(total=survey_total(vartype=None), fill="All")

    def test_survey_count(self, design):
        result = design.survey_count("stype", vartype=None)
        assert result["n"].tolist() == [20.0, 10.0, 8.0]

    def test_survey_count_sorted(self, design):
        result = design.survey_count("stype", name="schools", sort=True, vartype=None)
        assert result["schools"].tolist() == [20.0, 10.0, 8.0]
        assert result["stype"].tolist() == ["E", "H", "M"]

    def test_survey_tally(self, design):
        result = design.group_by("stype").survey_tally(vartype=None)
        assert result["n"].tolist() == [20.0, 10.0, 8.0]

    def test_ungrouped_tally(self, design):
        assert design.survey_tally(vartype=None)["n"][0] == 38.0


class TestExtraction:
    """pull(), collect() and pipe()."""

    def test_pull(self, design):
        assert design.filter('stype == "M"').pull("api").tolist() == [650.0, 640.0]

    def test_pull_expression(self, design):
        assert design.pull("api / 100").tolist()[0] == 6.0

    def test_collect_is_a_copy(self, design):
        frame = design.collect()
        frame.loc[0, "api"] = 0.0
        assert design.data.loc[0, "api"] == 600.0

    def test_pipe(self, design):
        assert design.pipe(len) == 6
        assert design.pipe(lambda d, n: d.filter(f"api > {n}"), 600).pipe(len) == 3
