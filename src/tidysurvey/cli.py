"""
Command line interface.

    tidysurvey describe schools.csv --design design.yaml
    tidysurvey run schools.csv --design design.yaml \\
        --pipeline 'group_by(stype) |> summarize(api = survey_mean(api00))'
    tidysurvey check schools.csv --design design.yaml --pipeline '...'

Exit codes: 0 success, 1 pipeline check found problems, 2 invalid input.
"""
from __future__ import annotations

import argparse
import logging
import sys
from typing import List, Optional

import pandas as pd

from tidysurvey import __version__
from tidysurvey.analyzer import analyze_design, format_report
from tidysurvey.config import load_options, options_from_env
from tidysurvey.errors import SurveyError
from tidysurvey.pipeline import run_pipeline, validate_pipeline
from tidysurvey.serialization import load_design

logger = logging.getLogger(__name__)


def _pipeline_text(args) -> str:
    if args.pipeline_file:
        with open(args.pipeline_file) as fh:
            return fh.read()
    if args.pipeline:
        return args.pipeline
    raise SurveyError("A pipeline is required (--pipeline or --pipeline-file)")


def _load(args):
    data = pd.read_csv(args.data)
    logger.info("Read %d rows from %s", len(data), args.data)
    return load_design(data, args.design)


def cmd_describe(args) -> int:
    design = _load(args)
    print(repr(design))
    print()
    print(format_report(analyze_design(design)))
    return 0


def cmd_run(args) -> int:
    design = _load(args)
    result = run_pipeline(design, _pipeline_text(args))
    if isinstance(result, pd.DataFrame):
        if args.output:
            result.to_csv(args.output, index=False)
            logger.info("Wrote %d rows to %s", len(result), args.output)
        else:
            print(result.to_string(index=False))
    else:
        # Pipeline ended on a design rather than a table
        if args.output:
            result.collect().to_csv(args.output, index=False)
        else:
            print(repr(result))
    return 0


def cmd_check(args) -> int:
    design = _load(args)
    check = validate_pipeline(design, _pipeline_text(args))
    for step in check.steps:
        status = "ok" if step.ok else "PROBLEM"
        print(f"{step.index}. {step.verb}(): {status}")
    for message in check.messages():
        print(f"  {message}")
    return 0 if check.ok else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="tidysurvey", description="Survey estimates from verb pipelines")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    parser.add_argument("--config", help="YAML file of options (lonely_psu, confidence_level, ...)")
    sub = parser.add_subparsers(dest="command", required=True)

    def common(p):
        p.add_argument("data", help="CSV file with one row per sampled unit")
        p.add_argument("--design", required=True, help="YAML file describing the design")

    describe = sub.add_parser("describe", help="Print the design and a diagnostic report")
    common(describe)
    describe.set_defaults(func=cmd_describe)

    for name, func, help_text in (
        ("run", cmd_run, "Run a pipeline and print or write the result"),
        ("check", cmd_check, "Check the columns a pipeline uses"),
    ):
        p = sub.add_parser(name, help=help_text)
        common(p)
        p.add_argument("--pipeline", help="Pipeline text, e.g. 'group_by(stype) |> summarize(...)'")
        p.add_argument("--pipeline-file", help="File containing the pipeline text")
        if name == "run":
            p.add_argument("--output", "-o", help="Write the table to this CSV file")
        p.set_defaults(func=func)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    try:
        options_from_env()
        if args.config:
            load_options(args.config)
        return args.func(args)
    except (SurveyError, FileNotFoundError) as e:
        print(f"error: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
