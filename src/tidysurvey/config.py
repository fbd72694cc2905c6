"""
Process-wide options for tidysurvey.

Options control behaviour that is a matter of analyst policy rather than
design metadata: how strata with a single PSU are handled, the default
confidence level and variance type, and whether confidence intervals use
the design degrees of freedom.

Options can be set in code (set_options / option_context), loaded from a
YAML file, or picked up from the environment:

    TIDYSURVEY_CONFIG      path to a YAML file of options
    TIDYSURVEY_LONELY_PSU  overrides lonely_psu
"""

from __future__ import annotations

import logging
import os
from contextlib import contextmanager
from dataclasses import asdict, dataclass, fields, replace
from typing import Any, Dict, Iterator, Optional

import yaml

from tidysurvey.errors import ConfigError

logger = logging.getLogger(__name__)


LONELY_PSU_POLICIES = ("fail", "remove", "certainty", "adjust", "average")
VARTYPES = ("se", "ci", "var", "cv")


@dataclass(frozen=True)
class SurveyOptions:
    """
    Policy options.

    Properties:
        lonely_psu:
            What to do with a stratum that has one PSU:
            fail (raise), remove / certainty (contributes no variance),
            adjust (centre on the grand mean of PSU totals),
            average (use the mean variance of the other strata)
        confidence_level:
            Default level for vartype="ci"
        default_vartype:
            Variance type used when a summary does not say
        use_design_df:
            Use a t distribution with the design degrees of freedom for
            confidence intervals (otherwise the normal distribution)
        replicates_mse:
            Default for replicate designs: centre replicate estimates on
            the full-sample estimate rather than their mean
    """

    lonely_psu: str = "fail"
    confidence_level: float = 0.95
    default_vartype: str = "se"
    use_design_df: bool = True
    replicates_mse: bool = False

    def validate(self) -> "SurveyOptions":
        if self.lonely_psu not in LONELY_PSU_POLICIES:
            raise ConfigError(
                f"lonely_psu must be one of {', '.join(LONELY_PSU_POLICIES)}, got {self.lonely_psu!r}"
            )
        if not 0 < float(self.confidence_level) < 1:
            raise ConfigError(f"confidence_level must be between 0 and 1, got {self.confidence_level!r}")
        if self.default_vartype not in VARTYPES:
            raise ConfigError(
                f"default_vartype must be one of {', '.join(VARTYPES)}, got {self.default_vartype!r}"
            )
        return self


_options = SurveyOptions()


def get_options() -> SurveyOptions:
    """Return the current options."""
    return _options


def set_options(**changes: Any) -> SurveyOptions:
    """
    Update options and return the previous value.

    Raises:
        ConfigError: Unknown option name or invalid value
    """
    global _options
    known = {f.name for f in fields(SurveyOptions)}
    unknown = set(changes) - known
    if unknown:
        raise ConfigError(f"Unknown option(s): {', '.join(sorted(unknown))}")
    previous = _options
    _options = replace(_options, **changes).validate()
    logger.debug("Options updated: %s", changes)
    return previous


def reset_options() -> None:
    """Restore default options."""
    global _options
    _options = SurveyOptions()


@contextmanager
def option_context(**changes: Any) -> Iterator[SurveyOptions]:
    """Temporarily change options within a with-block."""
    global _options
    previous = set_options(**changes)
    try:
        yield _options
    finally:
        _options = previous


def options_from_dict(d: Optional[Dict[str, Any]]) -> SurveyOptions:
    """Build options from a plain dict (e.g. parsed YAML)."""
    if d is None:
        return SurveyOptions()
    if not isinstance(d, dict):
        raise ConfigError(f"Options must be a mapping, got {type(d).__name__}")
    known = {f.name for f in fields(SurveyOptions)}
    unknown = set(d) - known
    if unknown:
        raise ConfigError(f"Unknown option(s): {', '.join(sorted(unknown))}")
    return SurveyOptions(**d).validate()


def options_to_dict(options: SurveyOptions) -> Dict[str, Any]:
    return asdict(options)


def load_options(path: str, apply: bool = True) -> SurveyOptions:
    """
    Load options from a YAML file.

    Args:
        path: YAML file with option names as keys
        apply: Make the loaded options current

    Raises:
        FileNotFoundError: If the file doesn't exist
        ConfigError: If the contents are invalid
    """
    try:
        with open(path, "r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh)
    except FileNotFoundError:
        raise FileNotFoundError(f"Options file not found: {path}")
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    options = options_from_dict(data)
    if apply:
        set_options(**asdict(options))
    logger.info("Loaded options from %s", path)
    return options


def options_from_env(environ: Optional[Dict[str, str]] = None) -> SurveyOptions:
    """Apply TIDYSURVEY_CONFIG and TIDYSURVEY_LONELY_PSU if they are set."""
    environ = os.environ if environ is None else environ
    path = environ.get("TIDYSURVEY_CONFIG")
    if path:
        load_options(path)
    lonely = environ.get("TIDYSURVEY_LONELY_PSU")
    if lonely:
        set_options(lonely_psu=lonely)
    return get_options()
