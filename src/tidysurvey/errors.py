"""
Exception hierarchy for tidysurvey.

Every error raised on purpose by this package derives from SurveyError,
so callers (and the command line) can catch one type.
"""


class SurveyError(Exception):
    """Base class for all tidysurvey errors."""
    pass


class DesignError(SurveyError):
    """Raised when survey design metadata is malformed or inconsistent."""
    pass


class LonelyPSUError(DesignError):
    """Raised when a stratum has a single PSU and the policy is 'fail'."""
    pass


class ExpressionParseError(SurveyError):
    """Raised when expression text cannot be parsed."""
    pass


class EvaluationError(SurveyError):
    """Raised when an expression cannot be evaluated against the data."""
    pass


class SummaryError(SurveyError):
    """Raised when a summary function is used with invalid arguments."""
    pass


class PipelineError(SurveyError):
    """Raised when a verb pipeline is malformed."""
    pass


class ConfigError(SurveyError):
    """Raised when configuration values are invalid."""
    pass
