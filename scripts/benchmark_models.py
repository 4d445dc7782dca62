#!/usr/bin/env python3
"""benchmark_models.py - Data models shared by the benchmarking harness.

This module contains the identity of benchmark and regression-target
functions, the catalogue produced by discovery, measurement records emitted
by the result parser, and the immutable configuration of a runner.
"""

from collections.abc import Iterator
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path


@dataclass(frozen=True)
class BenchmarkFunction:
    """A Go function identified by package, file, name and receiver.

    Two functions are the same iff the four identity fields match; the
    source lines are informational only.
    """

    package: str
    file: str
    name: str
    receiver: str = ""
    start_line: int = field(default=0, compare=False)
    end_line: int = field(default=0, compare=False)

    @property
    def file_path(self) -> str:
        """Path of the declaring file relative to the project root."""
        return f"{self.package}/{self.file}" if self.package else self.file

    @property
    def qualified_path(self) -> str:
        """Key used for penalization and in result rows (package/file::name)."""
        return f"{self.file_path}::{self.name}"

    @property
    def label(self) -> str:
        """Human readable label, also used as the test label of regression passes."""
        if self.receiver:
            return f"{self.file_path}::({self.receiver}).{self.name}"
        return self.qualified_path

    def __str__(self) -> str:
        return self.label


# package path -> file name -> benchmarks in declaration order
Catalogue = dict[str, dict[str, list[BenchmarkFunction]]]


def iter_catalogue(catalogue: Catalogue) -> Iterator[BenchmarkFunction]:
    """Yield every benchmark of a catalogue in insertion order."""
    for files in catalogue.values():
        for functions in files.values():
            yield from functions


def catalogue_size(catalogue: Catalogue) -> int:
    return sum(1 for _ in iter_catalogue(catalogue))


@dataclass(frozen=True)
class MeasurementRecord:
    """One benchmark result line reported by `go test -bench`."""

    invocations: int
    runtime: float  # ns/op
    memory: int | None = None  # B/op
    allocations: int | None = None  # allocs/op


class ProfileMode(Enum):
    """Profiles requested from `go test` for each benchmark invocation."""

    NONE = "none"
    CPU = "cpu"
    MEM = "mem"
    ALL = "all"

    @property
    def cpu(self) -> bool:
        return self in (ProfileMode.CPU, ProfileMode.ALL)

    @property
    def mem(self) -> bool:
        return self in (ProfileMode.MEM, ProfileMode.ALL)


@dataclass(frozen=True)
class RunConfig:
    """Immutable configuration of one BenchmarkRunner.

    Durations are in seconds. A zero bench_duration selects fixed-repeat mode,
    a zero run_duration makes each run a single sweep over the catalogue.
    """

    warmup_iterations: int = 0
    measurement_iterations: int = 1
    bench_timeout: float = 600.0
    bench_time: float | None = 1.0
    bench_duration: float = 0.0
    run_duration: float = 0.0
    bench_mem: bool = False
    profile: ProfileMode = ProfileMode.NONE
    profile_dir: Path | None = None
    go_root: str = ""

    @property
    def repeat_count(self) -> int:
        """Value passed to `go test -count`."""
        return self.warmup_iterations + self.measurement_iterations


@dataclass(frozen=True)
class RegressionTarget:
    """A function to slow down by `violation` times its own elapsed time."""

    package: str
    file: str
    name: str
    receiver: str = ""
    violation: float = 0.0

    @property
    def function(self) -> BenchmarkFunction:
        return BenchmarkFunction(self.package, self.file, self.name, self.receiver)

    @property
    def label(self) -> str:
        return self.function.label

    def __str__(self) -> str:
        return self.label
