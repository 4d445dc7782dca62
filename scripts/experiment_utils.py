#!/usr/bin/env python3
"""
experiment_utils.py - Baseline and regression passes over multiple runs

An experiment repeats, for every run, a baseline pass over the benchmark
catalogue followed by one pass per regression target: the target is slowed
down, the catalogue is measured again and the source tree is reverted.

Errors of the injector or the reverter end the experiment, since the state
of the source tree can no longer be trusted. The overall experiment deadline
ends it early but cleanly; everything measured so far stays valid.
"""

import logging
import random
import shutil
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import TypeVar

from benchmark_models import RegressionTarget
from benchmark_runner import BenchmarkRunner, CancellationToken, DeadlineExceededError
from regression_injector import InjectionError, RegressionInjector

logger = logging.getLogger(__name__)

BASELINE_LABEL = "Baseline"

T = TypeVar("T")


class ScratchFolderError(Exception):
    """Raised when the scratch folder to clear between passes is unusable."""


def randomized_order(items: Sequence[T], rng: random.Random | None = None) -> list[T]:
    """
    Uniformly random full permutation of items.

    Elements may stay at their original position and duplicates are kept,
    so the result is always the same multiset as the input.
    """
    rng = rng if rng is not None else random.Random()
    return rng.sample(list(items), k=len(items))


class ScratchCleaner:
    """Empties a scratch folder (e.g. build caches, temp dirs) between passes."""

    def __init__(self, path: Path):
        """
        Raises:
            ScratchFolderError: If path does not exist or is not a directory
        """
        self.path = Path(path)
        if not self.path.exists():
            raise ScratchFolderError(f"Could not open tmp folder: {self.path}")
        if not self.path.is_dir():
            raise ScratchFolderError(f"Path not a folder: {self.path}")

    def __call__(self) -> int:
        """Remove the folder's contents; failures are logged. Returns the number of entries removed."""
        removed = 0
        try:
            entries = list(self.path.iterdir())
        except OSError as e:
            logger.warning("Could not read dir %s: %s", self.path, e)
            return 0

        for entry in entries:
            try:
                if entry.is_dir() and not entry.is_symlink():
                    shutil.rmtree(entry)
                else:
                    entry.unlink()
                removed += 1
            except OSError as e:
                logger.warning("Could not remove '%s': %s", entry, e)
        return removed


@dataclass
class PassResult:
    run: int
    test: str
    executed: int
    duration: float
    timed_out: bool = False


@dataclass
class ExperimentSummary:
    """Outcome of an experiment; timed_out marks a deadline-truncated experiment."""

    runs: int
    passes: list[PassResult] = field(default_factory=list)
    duration: float = 0.0
    timed_out: bool = False

    @property
    def executed(self) -> int:
        return sum(p.executed for p in self.passes)


class Experiment:
    """Sequence baseline and regression passes across runs."""

    def __init__(
        self,
        runner: BenchmarkRunner,
        injector: RegressionInjector,
        targets: Sequence[RegressionTarget],
        runs: int = 1,
        randomize: bool = False,
        runs_timeout: float = 0.0,
        scratch: ScratchCleaner | None = None,
        rng: random.Random | None = None,
    ):
        self.runner = runner
        self.injector = injector
        self.targets = list(targets)
        self.runs = max(runs, 1)
        self.randomize = randomize
        self.runs_timeout = runs_timeout
        self.scratch = scratch
        self.rng = rng if rng is not None else random.Random()

    def check_targets(self) -> None:
        """
        Verify that the file of every regression target exists.

        Raises:
            FileNotFoundError: For the first target whose file is missing
        """
        for target in self.targets:
            path = self.injector.target_path(target)
            if not path.is_file():
                raise FileNotFoundError(f"Could not open file of function {target.label}: {path}")

    def run(self) -> ExperimentSummary:
        """
        Execute all runs.

        Returns:
            Summary of the executed passes

        Raises:
            InjectionError: If a regression cannot be introduced
            RevertError: If the source tree cannot be restored
            RunnerError: If benchmarks cannot be executed
        """
        self.check_targets()
        if self.targets:
            self.injector.ensure_clean()

        summary = ExperimentSummary(runs=self.runs)
        deadline = CancellationToken.after(self.runs_timeout) if self.runs_timeout > 0 else None
        start = time.monotonic()
        try:
            self._run_all(summary, deadline)
        finally:
            if deadline is not None:
                deadline.close()
            summary.duration = time.monotonic() - start

        print(f"\n{summary.executed} Benchmarks executed in {self.runs} runs which took {summary.duration:.3f}s")
        return summary

    def _run_all(self, summary: ExperimentSummary, deadline: CancellationToken | None) -> None:
        for run in range(self.runs):
            print(f"---------- Run #{run} ----------")
            if not self._run_pass(summary, run, BASELINE_LABEL, None, deadline):
                return

            targets = self.targets
            if self.randomize:
                targets = randomized_order(self.targets, self.rng)
                logger.info("Using randomized target order for run %d", run)

            for target in targets:
                if not self._run_pass(summary, run, target.label, target, deadline):
                    return

    def _run_pass(
        self,
        summary: ExperimentSummary,
        run: int,
        test: str,
        target: RegressionTarget | None,
        deadline: CancellationToken | None,
    ) -> bool:
        """Run one pass; returns False when the experiment deadline ended the experiment."""
        if deadline is not None and deadline.cancelled:
            summary.timed_out = True
            print(f"--- [timed out] before Run #{run} of {test}")
            return False

        print(f"--- Run #{run} of {test}")
        if target is not None:
            try:
                self.injector.inject(target)
            except InjectionError:
                # a failed write may have left the file half rewritten
                self.injector.reset()
                raise

        start = time.monotonic()
        try:
            executed = self.runner.run(run, test, deadline)
        except DeadlineExceededError as e:
            duration = time.monotonic() - start
            summary.passes.append(PassResult(run, test, e.executed, duration, timed_out=True))
            summary.timed_out = True
            print(f"--- [timed out] Run #{run} of {test} and executed {e.executed} which took {duration:.3f}s")
            return False
        finally:
            self._clear_scratch()
            if target is not None:
                self.injector.reset()

        duration = time.monotonic() - start
        summary.passes.append(PassResult(run, test, executed, duration))
        print(f"--- Run #{run} of {test} executed {executed} which took {duration:.3f}s")
        return True

    def _clear_scratch(self) -> None:
        if self.scratch is not None:
            removed = self.scratch()
            logger.debug("Cleared %d entries from %s", removed, self.scratch.path)
