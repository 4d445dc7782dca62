#!/usr/bin/env python3
"""
benchmark_discovery.py - Find Go benchmark functions in a project tree

Walks a project in lexical order, scans every `*_test.go` file and collects
the functions whose name carries the benchmark prefix and matches a
pattern. The result is a Catalogue keyed by package path (relative to the
project root) and file name, whose order is the default execution order.

Files that cannot be scanned are reported and skipped; they never abort the
walk.
"""

import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path

from benchmark_models import BenchmarkFunction, Catalogue
from go_source_utils import GoSyntaxError, parse_go_file

logger = logging.getLogger(__name__)

GO_TEST_FILE_SUFFIX = "_test.go"
BENCH_FUNC_PREFIX = "Benchmark"
MATCH_ALL = "^.*$"

# Dependency and workspace folders never hold benchmarks of the project itself
EXCLUDED_DIRS = frozenset({"vendor", "_vendor", "_workspace", "testdata"})


@dataclass(frozen=True)
class DiscoveryError:
    """A test file that could not be scanned."""

    path: Path
    message: str


def is_valid_dir(name: str) -> bool:
    """Hidden and dependency directories are not walked."""
    return not name.startswith(".") and name not in EXCLUDED_DIRS


def package_path(directory: Path, root: Path) -> str:
    """Package key of a directory: its POSIX path relative to root, '' for root itself."""
    rel = directory.relative_to(root).as_posix()
    return "" if rel == "." else rel


class BenchmarkDiscovery:
    """Build the benchmark catalogue of a Go project."""

    def __init__(self, root: Path, pattern: str = MATCH_ALL, prefix: str = BENCH_FUNC_PREFIX):
        """
        Args:
            root: Project root to walk
            pattern: Regular expression a benchmark name must contain a match for
            prefix: Required name prefix

        Raises:
            re.error: If pattern is not a valid regular expression
        """
        self.root = Path(root)
        self.pattern = re.compile(pattern)
        self.prefix = prefix
        self.errors: list[DiscoveryError] = []

    def discover(self) -> Catalogue:
        """
        Walk the project and return its catalogue.

        Files that fail to scan are appended to self.errors and excluded.

        Raises:
            OSError: If the root itself cannot be walked
        """
        catalogue: Catalogue = {}
        self.errors = []

        def _raise(err: OSError) -> None:
            raise err

        for dirpath, dirnames, filenames in os.walk(self.root, onerror=_raise):
            dirnames[:] = sorted(d for d in dirnames if is_valid_dir(d))
            directory = Path(dirpath)
            pkg = package_path(directory, self.root)

            for fn in sorted(filenames):
                if not fn.endswith(GO_TEST_FILE_SUFFIX):
                    continue
                benchs = self._scan_file(directory / fn, pkg, fn)
                if benchs:
                    self._add(catalogue, pkg, fn, benchs)

        logger.debug(
            "Discovered %d benchmarks in %d packages under %s",
            sum(len(fs) for files in catalogue.values() for fs in files.values()),
            len(catalogue),
            self.root,
        )
        return catalogue

    def _scan_file(self, path: Path, pkg: str, fn: str) -> list[BenchmarkFunction]:
        try:
            source = parse_go_file(path)
        except (GoSyntaxError, OSError) as e:
            logger.warning("Could not parse %s: %s", path, e)
            self.errors.append(DiscoveryError(path, str(e)))
            return []

        benchs = []
        for func in source.functions:
            if not func.name.startswith(self.prefix) or not self.pattern.search(func.name):
                continue
            if func.is_method:
                logger.debug("Skipping method %s in %s: go test only runs plain functions", func.name, path)
                continue
            benchs.append(
                BenchmarkFunction(
                    package=pkg,
                    file=fn,
                    name=func.name,
                    start_line=func.start_line,
                    end_line=func.end_line,
                )
            )
        return benchs

    @staticmethod
    def _add(catalogue: Catalogue, pkg: str, fn: str, benchs: list[BenchmarkFunction]) -> None:
        files = catalogue.setdefault(pkg, {})
        if fn in files:
            logger.warning("File (%s) in package (%s) already exists, overwriting its benchmarks", fn, pkg)
        files[fn] = benchs


def discover_matching_functions(root: Path, pattern: str) -> Catalogue:
    """Catalogue of benchmarks under root whose names match pattern."""
    return BenchmarkDiscovery(root, pattern).discover()


def discover_functions(root: Path) -> Catalogue:
    """Catalogue of every benchmark under root."""
    return discover_matching_functions(root, MATCH_ALL)
