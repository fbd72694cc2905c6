#!/usr/bin/env python3
"""
Complete Pipeline Demo: DataFrame → Design → Verbs → Estimates

Shows the full workflow:
1. Build a stratified design from the example school sample
2. Inspect it with the analyzer
3. Summarize with method chains
4. Run the same analysis from pipeline text
5. Convert to replicate weights and compare standard errors
"""

import pandas as pd

from tidysurvey import (
    as_survey_design,
    as_survey_rep,
    run_pipeline,
    survey_mean,
    survey_median,
    survey_prop,
    survey_total,
    unweighted,
    validate_pipeline,
)
from tidysurvey.analyzer import analyze_design, format_report
from tidysurvey.examples import school_sample


PIPELINE = """
dstrat %>%
  filter(!is.na(enroll)) %>%
  mutate(growth = api00 - api99) %>%
  group_by(stype) %>%
  summarize(
    growth = survey_mean(growth, vartype = c("se", "ci")),
    enroll = survey_total(enroll, vartype = "cv"),
    n = unweighted(n())
  )
"""


def main():
    pd.set_option("display.width", 120)

    print("=" * 80)
    print("COMPLETE PIPELINE DEMO: DataFrame → Design → Verbs → Estimates")
    print("=" * 80)

    # =========================================================================
    # STEP 1: Build the design
    # =========================================================================
    print("\n1. BUILDING DESIGN...")
    dstrat = as_survey_design(school_sample(), strata="stype", weights="pw", fpc="fpc")
    print(repr(dstrat))

    # =========================================================================
    # STEP 2: Analyze the design
    # =========================================================================
    print("\n2. ANALYZING DESIGN...")
    print(format_report(analyze_design(dstrat)))

    # =========================================================================
    # STEP 3: Method chains
    # =========================================================================
    print("\n3. SUMMARIZING BY SCHOOL TYPE...")
    by_type = dstrat.group_by("stype").summarize(
        api00=survey_mean("api00", vartype="ci"),
        median=survey_median("api00"),
        share=survey_prop(proportion=True, vartype="ci"),
        schools=unweighted("n()"),
    )
    print(by_type.to_string(index=False))

    print("\n   Awards within school type (shares sum to 1 per type):")
    awards = dstrat.group_by("stype", "awards").summarize(p=survey_prop())
    print(awards.to_string(index=False))

    # =========================================================================
    # STEP 4: Pipeline text
    # =========================================================================
    print("\n4. RUNNING PIPELINE TEXT...")
    check = validate_pipeline(dstrat, PIPELINE)
    print(f"   Columns check: {'ok' if check.ok else check.messages()}")
    print(run_pipeline(dstrat, PIPELINE).to_string(index=False))

    # =========================================================================
    # STEP 5: Replicate weights
    # =========================================================================
    print("\n5. LINEARIZATION VS JACKKNIFE...")
    jackknife = as_survey_rep(dstrat, type="JKn")
    print(f"   {len(jackknife.spec.repweights)} replicates ({jackknife.spec.type})")
    for name, design in (("linearization", dstrat), ("jackknife", jackknife)):
        result = design.summarize(api=survey_mean("api00"), total=survey_total("enroll", na_rm=True))
        print(f"   {name:>13}: mean {result['api'][0]:.2f} (se {result['api_se'][0]:.3f}), "
              f"enrolment {result['total'][0]:,.0f} (se {result['total_se'][0]:,.0f})")

    print("\n" + "=" * 80)
    print("DEMO COMPLETE")
    print("=" * 80)


if __name__ == "__main__":
    main()
