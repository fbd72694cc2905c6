"""
tidysurvey: grouping and summarizing verbs for complex survey designs.

A survey design pairs observations with their sampling metadata
(clusters, strata, weights, finite population correction, replicate
weights). tidysurvey gives designs the verbs of a dataframe pipeline:

    from tidysurvey import as_survey_design, survey_mean

    design = as_survey_design(df, strata="stype", weights="pw", fpc="fpc")
    design.group_by("stype").summarize(api=survey_mean("api00", vartype="ci"))

Every estimate is design-based: filter() defines a domain instead of
dropping rows, and variances come from linearization or replicate
weights. Results are flat pandas DataFrames (name, name_se, name_low, ...).
"""

__version__ = "0.1.0"

from tidysurvey.config import (
    SurveyOptions,
    get_options,
    load_options,
    option_context,
    reset_options,
    set_options,
)
from tidysurvey.design import (
    DesignSpec,
    ReplicateDesign,
    ReplicateSpec,
    SurveyDesign,
    TaylorDesign,
    TwoPhaseDesign,
    as_survey,
    as_survey_design,
    as_survey_rep,
    as_survey_twophase,
)
from tidysurvey.errors import (
    ConfigError,
    DesignError,
    EvaluationError,
    ExpressionParseError,
    LonelyPSUError,
    PipelineError,
    SummaryError,
    SurveyError,
)
from tidysurvey.parser import parse_expression
from tidysurvey.pipeline import parse_pipeline, run_pipeline, validate_pipeline
from tidysurvey.summaries import (
    survey_corr,
    survey_mean,
    survey_median,
    survey_prop,
    survey_quantile,
    survey_ratio,
    survey_sd,
    survey_total,
    survey_var,
    unweighted,
)
