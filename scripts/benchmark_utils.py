#!/usr/bin/env python3
"""
benchmark_utils.py - Command-line interface of the regression benchmarking harness

Commands:
- run: execute baseline and regression passes as configured, writing a
  `;`-delimited result file
- discover: print the benchmark catalogue of the configured project as JSON
- inject: introduce the regression of one function (for manual inspection)
- reset: revert the project's working tree

Usage:
    goabs-bench run -c experiment.json -o results.csv
    goabs-bench discover -c experiment.json
    goabs-bench inject -c experiment.json --function store/store.go:Get --receiver '*Store'
    goabs-bench reset -c experiment.json
"""

import argparse
import json
import logging
import os
import sys
from dataclasses import asdict
from pathlib import Path

from benchmark_discovery import MATCH_ALL, BenchmarkDiscovery
from benchmark_models import Catalogue, RegressionTarget, catalogue_size
from benchmark_runner import BenchmarkRunner, ResultSink, RunnerError
from config_utils import ConfigError, ExperimentConfig, load_config
from experiment_utils import Experiment, ScratchCleaner, ScratchFolderError
from regression_injector import InjectionError, RegressionInjector, RevertError
from result_parser import ResultParseError

logger = logging.getLogger(__name__)


def create_argument_parser() -> argparse.ArgumentParser:
    """Create and configure the argument parser."""
    parser = argparse.ArgumentParser(description="Differential performance-regression benchmarking of Go projects")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    config_kwargs = {
        "type": Path,
        "default": os.getenv("GOABS_CONFIG"),
        "help": "Experiment configuration file (from GOABS_CONFIG env or -c option)",
    }

    run_parser = subparsers.add_parser("run", help="Run baseline and regression passes")
    run_parser.add_argument("-c", "--config", **config_kwargs)
    run_parser.add_argument(
        "-o",
        "--output",
        type=Path,
        default=os.getenv("GOABS_OUTPUT"),
        help="Result file (from GOABS_OUTPUT env or -o option)",
    )

    discover_parser = subparsers.add_parser("discover", help="Print the benchmark catalogue as JSON")
    discover_parser.add_argument("-c", "--config", **config_kwargs)

    inject_parser = subparsers.add_parser("inject", help="Introduce a regression into one function")
    inject_parser.add_argument("-c", "--config", **config_kwargs)
    inject_parser.add_argument("--function", required=True, help="Function as <pkg>/<file>:<name>, e.g. store/store.go:Get")
    inject_parser.add_argument("--receiver", default="", help="Receiver type of a method, e.g. '*Store'")
    inject_parser.add_argument("--violation", type=float, help="Slowdown factor (default: regression from config)")

    reset_parser = subparsers.add_parser("reset", help="Revert introduced regressions")
    reset_parser.add_argument("-c", "--config", **config_kwargs)

    return parser


def parse_function_spec(spec: str, receiver: str, violation: float) -> RegressionTarget:
    """
    Parse '<pkg>/<file>:<name>' into a RegressionTarget.

    Raises:
        ValueError: If spec has no ':' separated function name
    """
    location, sep, name = spec.rpartition(":")
    if not sep or not location or not name:
        msg = f"Invalid function '{spec}', expected <pkg>/<file>:<name>"
        raise ValueError(msg)
    package, _, file = location.rpartition("/")
    return RegressionTarget(package=package.strip("/"), file=file, name=name, receiver=receiver, violation=violation)


def catalogue_to_json(catalogue: Catalogue) -> str:
    data = {pkg: {fn: [asdict(b) for b in benchs] for fn, benchs in files.items()} for pkg, files in catalogue.items()}
    return json.dumps(data, indent=2)


def discover(config: ExperimentConfig) -> Catalogue:
    discovery = BenchmarkDiscovery(config.project, config.dynamic.bench_regex or MATCH_ALL)
    catalogue = discovery.discover()
    for error in discovery.errors:
        print(f"⚠️  Skipped {error.path}: {error.message}", file=sys.stderr)
    return catalogue


def execute_run(config: ExperimentConfig, output: Path) -> int:
    """Run the configured experiment, returning the process exit code."""
    catalogue = discover(config)
    print(f"📊 Found {catalogue_size(catalogue)} benchmarks in {len(catalogue)} packages")

    scratch = ScratchCleaner(config.clear) if config.clear else None
    if scratch is None:
        logger.info("No tmp folder to clear")

    output.parent.mkdir(parents=True, exist_ok=True)
    with output.open("w", encoding="utf-8", newline="") as f:
        run_config = config.run_config()
        sink = ResultSink(f, mem=run_config.bench_mem)
        runner = BenchmarkRunner(config.project, catalogue, run_config, sink)
        experiment = Experiment(
            runner,
            RegressionInjector(config.project),
            config.dynamic.functions,
            runs=config.dynamic.runs,
            randomize=config.dynamic.rmit,
            runs_timeout=config.dynamic.runs_timeout,
            scratch=scratch,
        )
        summary = experiment.run()

    if runner.penalties:
        print(f"⚠️  {len(runner.penalties)} benchmarks were penalized:")
        for identity in runner.penalties:
            print(f"   {identity}: {runner.penalties.reason(identity)}")
    if summary.timed_out:
        print("⏱️  Experiment stopped at its deadline, partial results are kept")
    print(f"✅ Results written to {output} ({sink.rows} rows)")
    return 0


def execute_command(args: argparse.Namespace, config: ExperimentConfig) -> int:
    """Execute the selected command based on parsed arguments."""
    if args.command == "run":
        if args.output is None:
            print("error: no output file given (-o)", file=sys.stderr)
            return 2
        return execute_run(config, args.output)

    if args.command == "discover":
        print(catalogue_to_json(discover(config)))
        return 0

    injector = RegressionInjector(config.project)
    if args.command == "inject":
        violation = args.violation if args.violation is not None else config.dynamic.regression
        target = parse_function_spec(args.function, args.receiver, violation)
        changed = injector.inject(target)
        print(f"Introduced regression into {changed} declaration(s) of {target.label}")
        return 0

    if args.command == "reset":
        injector.reset()
        print("Reset introduced regressions")
        return 0

    return 1


def main() -> None:
    """Command-line interface for the benchmarking harness."""
    parser = create_argument_parser()
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s: %(message)s",
    )

    if not args.command:
        parser.print_help()
        sys.exit(1)

    if args.config is None:
        print("error: no configuration file given (-c or GOABS_CONFIG)", file=sys.stderr)
        sys.exit(2)

    try:
        config = load_config(args.config)
        exit_code = execute_command(args, config)
    except (ConfigError, ScratchFolderError, ValueError) as e:
        print(f"error: {e}", file=sys.stderr)
        sys.exit(2)
    except (InjectionError, RevertError, RunnerError, ResultParseError, FileNotFoundError) as e:
        print(f"❌ {e}", file=sys.stderr)
        logging.exception("Fatal error")
        sys.exit(1)

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
