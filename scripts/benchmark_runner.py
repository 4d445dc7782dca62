#!/usr/bin/env python3
"""
benchmark_runner.py - Sequential execution of Go benchmarks

This module provides:
- PenaltySet: benchmarks permanently excluded after a timeout or unparsable output
- CancellationToken: cooperative cancellation, optionally fired by a timer
- ResultSink: `;`-delimited result rows, flushed after every row
- BenchmarkRunner: one `go test` subprocess per benchmark, in catalogue order

Benchmarks never run concurrently; cancellation is only observed between
two invocations and never interrupts a running subprocess.
"""

import csv
import logging
import math
import re
import subprocess
import threading
import time
from collections.abc import Iterator
from pathlib import Path
from typing import TextIO

from benchmark_models import BenchmarkFunction, Catalogue, MeasurementRecord, RunConfig, iter_catalogue
from result_parser import GoBenchParser, ResultNotParsableError
from subprocess_utils import ExecutableNotFoundError, go_environment, run_go_command

logger = logging.getLogger(__name__)

# Printed by the go tool when a test binary exceeds -timeout
TIMEOUT_MARKERS = ("*** Test killed: ran too long", "panic: test timed out")

# Extra time granted to the go tool to report its own timeout before the harness kills it
TIMEOUT_GRACE = 60.0

CMD_TEST = "test"
CMD_NO_TESTS = "-run=^$"


class RunnerError(Exception):
    """Raised when benchmarks cannot be executed at all (fatal)."""


class DeadlineExceededError(Exception):
    """Raised when the overall experiment deadline fired during a run."""

    def __init__(self, executed: int = 0):
        self.executed = executed
        super().__init__(f"Experiment deadline exceeded after {executed} benchmark executions")


class PenaltySet:
    """Benchmarks excluded from execution for the rest of the process lifetime.

    Membership only grows; the first reason given for an entry is kept.
    """

    def __init__(self) -> None:
        self._reasons: dict[str, str] = {}

    def add(self, identity: str, reason: str) -> None:
        self._reasons.setdefault(identity, reason)

    def reason(self, identity: str) -> str | None:
        return self._reasons.get(identity)

    def __contains__(self, identity: object) -> bool:
        return identity in self._reasons

    def __len__(self) -> int:
        return len(self._reasons)

    def __iter__(self) -> Iterator[str]:
        return iter(self._reasons)


class CancellationToken:
    """A cancellation signal shared between a timer and the scheduling loop."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self._timer: threading.Timer | None = None

    @classmethod
    def after(cls, seconds: float) -> "CancellationToken":
        """Token that cancels itself once seconds have elapsed."""
        token = cls()
        timer = threading.Timer(seconds, token.cancel)
        timer.daemon = True
        token._timer = timer
        timer.start()
        return token

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float | None = None) -> bool:
        return self._event.wait(timeout)

    def close(self) -> None:
        """Stop a pending timer without cancelling the token."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None


def _format_number(value: float | int) -> str:
    if isinstance(value, float) and math.isfinite(value) and value.is_integer():
        return str(int(value))
    return str(value)


class ResultSink:
    """Append-only writer of measurement rows.

    Row layout: run-pass-invocation;test;benchmark;runtime[;memory;allocations]
    """

    def __init__(self, stream: TextIO, mem: bool = False, delimiter: str = ";"):
        self.stream = stream
        self.mem = mem
        self.writer = csv.writer(stream, delimiter=delimiter, lineterminator="\n")
        self.rows = 0

    def write(self, run: int, sweep: int, invocation: int, test: str, benchmark: str, record: MeasurementRecord) -> None:
        row = [f"{run}-{sweep}-{invocation}", test, benchmark, _format_number(record.runtime)]
        if self.mem:
            row.append(_format_number(record.memory if record.memory is not None else 0))
            row.append(_format_number(record.allocations if record.allocations is not None else 0))
        self.writer.writerow(row)
        self.stream.flush()
        self.rows += 1


def format_go_duration(seconds: float) -> str:
    """Render seconds in the syntax of Go's time.ParseDuration.

    Whole seconds and whole milliseconds keep their short form; anything
    finer is written in nanoseconds so it never rounds down to zero.
    """
    ns = round(seconds * 1e9)
    if ns % 1_000_000_000 == 0:
        return f"{ns // 1_000_000_000}s"
    if ns % 1_000_000 == 0:
        return f"{ns // 1_000_000}ms"
    return f"{ns}ns"


def _sanitize(part: str) -> str:
    return re.sub(r"[^a-zA-Z0-9._-]", "_", part)


def profile_file_name(run: int, sweep: int, invocation: int, test: str, package: str, bench: str, kind: str) -> str:
    """Deterministic profile file name for one benchmark invocation."""
    parts = [str(run), str(sweep), str(invocation), test, package or "root", bench, kind]
    return "_".join(_sanitize(p) for p in parts) + ".prof"


class BenchmarkRunner:
    """Run the benchmarks of a catalogue one subprocess at a time."""

    def __init__(
        self,
        project_root: Path,
        catalogue: Catalogue,
        config: RunConfig,
        sink: ResultSink,
        penalties: PenaltySet | None = None,
        env: dict[str, str] | None = None,
    ):
        self.project_root = Path(project_root)
        self.catalogue = catalogue
        self.config = config
        self.sink = sink
        self.penalties = penalties if penalties is not None else PenaltySet()
        self.env = env if env is not None else go_environment(self.project_root, config.go_root)
        self.parser = GoBenchParser(mem=config.bench_mem)

    def run(self, run: int, test: str, deadline: CancellationToken | None = None) -> int:
        """
        Execute the catalogue once, or repeatedly for config.run_duration seconds.

        Args:
            run: Index of the current run
            test: Label of the current pass ("Baseline" or a regression target)
            deadline: Overall experiment deadline, checked after every benchmark

        Returns:
            Number of successful benchmark executions

        Raises:
            DeadlineExceededError: If the deadline fired (carries the executions so far)
            RunnerError: If a benchmark subprocess cannot be started
            ResultParseError: If output is structurally not benchmark output
        """
        if self.config.run_duration > 0:
            return self.run_until(run, test, deadline)
        return self.run_once(run, test, deadline)

    def run_once(self, run: int, test: str, deadline: CancellationToken | None = None) -> int:
        """One sweep over every benchmark in catalogue order."""
        self._check_deadline(deadline, 0)
        return self._sweep(run, 0, test, deadline, 0)

    def run_until(self, run: int, test: str, deadline: CancellationToken | None = None) -> int:
        """Sweep the catalogue repeatedly until config.run_duration has elapsed."""
        self._check_deadline(deadline, 0)
        suite = CancellationToken.after(self.config.run_duration)
        executed = 0
        sweep = 0
        try:
            while not suite.cancelled:
                swept = self._sweep(run, sweep, test, deadline, executed, suite)
                if swept == 0 and not suite.cancelled:
                    logger.warning("No benchmark could be executed in pass %d of %s, stopping early", sweep, test)
                    break
                executed += swept
                sweep += 1
        finally:
            suite.close()
        return executed

    def _sweep(
        self,
        run: int,
        sweep: int,
        test: str,
        deadline: CancellationToken | None,
        executed_before: int,
        suite: CancellationToken | None = None,
    ) -> int:
        executed = 0
        for bench in iter_catalogue(self.catalogue):
            executed += self.run_benchmark(run, sweep, test, bench, deadline)
            self._check_deadline(deadline, executed_before + executed)
            if suite is not None and suite.cancelled:
                break
        return executed

    @staticmethod
    def _check_deadline(deadline: CancellationToken | None, executed: int) -> None:
        if deadline is not None and deadline.cancelled:
            raise DeadlineExceededError(executed)

    def run_benchmark(
        self,
        run: int,
        sweep: int,
        test: str,
        bench: BenchmarkFunction,
        deadline: CancellationToken | None = None,
    ) -> int:
        """
        Execute one benchmark, once or repeatedly for config.bench_duration seconds.

        Returns:
            Number of successful invocations
        """
        if self.config.bench_duration <= 0:
            return 1 if self.execute(run, sweep, 0, test, bench) else 0

        executed = 0
        start = time.monotonic()
        while time.monotonic() - start < self.config.bench_duration:
            if not self.execute(run, sweep, executed, test, bench):
                break
            executed += 1
            if deadline is not None and deadline.cancelled:
                break
        return executed

    def benchmark_args(self, run: int, sweep: int, invocation: int, test: str, bench: BenchmarkFunction) -> list[str]:
        """Arguments of the `go test` invocation selecting exactly one benchmark."""
        config = self.config
        args = [
            CMD_TEST,
            CMD_NO_TESTS,
            f"-bench=^{bench.name}$",
            f"-count={config.repeat_count}",
            f"-timeout={format_go_duration(config.bench_timeout)}",
        ]
        if config.bench_time:
            args.append(f"-benchtime={format_go_duration(config.bench_time)}")
        if config.bench_mem:
            args.append("-benchmem")
        if config.profile_dir is not None:
            if config.profile.cpu:
                name = profile_file_name(run, sweep, invocation, test, bench.package, bench.name, "cpu")
                args.append(f"-cpuprofile={Path(config.profile_dir) / name}")
            if config.profile.mem:
                name = profile_file_name(run, sweep, invocation, test, bench.package, bench.name, "mem")
                args.append(f"-memprofile={Path(config.profile_dir) / name}")
        return args

    def execute(self, run: int, sweep: int, invocation: int, test: str, bench: BenchmarkFunction) -> bool:
        """
        Run a single `go test` invocation for bench and record its results.

        Returns:
            True if the benchmark ran and produced at least one record; False if
            it is (or just became) penalized or reported nothing

        Raises:
            RunnerError: If the subprocess cannot be started
            ResultParseError: If the output is structurally broken
        """
        identity = bench.qualified_path
        if identity in self.penalties:
            logger.debug("Skipping penalized benchmark %s (%s)", identity, self.penalties.reason(identity))
            return False

        package_dir = self.project_root / bench.package
        if not package_dir.is_dir():
            raise RunnerError(f"Package directory of {identity} does not exist: {package_dir}")

        args = self.benchmark_args(run, sweep, invocation, test, bench)
        logger.debug("Executing go %s in %s", " ".join(args), package_dir)
        try:
            result = run_go_command(
                args,
                cwd=package_dir,
                env=self.env,
                go_root=self.config.go_root,
                timeout=self.config.bench_timeout + TIMEOUT_GRACE,
            )
        except subprocess.TimeoutExpired:
            self._penalize(identity, "killed by harness after timeout")
            return False
        except (ExecutableNotFoundError, OSError) as e:
            raise RunnerError(f"Could not execute benchmark {identity}: {e}") from e

        output = result.stdout or ""
        if result.returncode != 0:
            if any(marker in output for marker in TIMEOUT_MARKERS):
                self._penalize(identity, "timed out")
                return False
            logger.warning("Benchmark %s exited with status %d:\n%s", identity, result.returncode, output)

        try:
            records = self.parser.parse(output)
        except ResultNotParsableError as e:
            self._penalize(identity, f"unparsable output: {e}")
            return False

        for record in records:
            self.sink.write(run, sweep, invocation, test, identity, record)

        if not records:
            logger.warning("Benchmark %s reported no results", identity)
            return False
        return True

    def _penalize(self, identity: str, reason: str) -> None:
        logger.warning("Penalizing benchmark %s: %s", identity, reason)
        self.penalties.add(identity, reason)
