#!/usr/bin/env python3
"""result_parser.py - Parse `go test -bench` output into measurement records.

The output is treated as a stream of whitespace separated tokens. A result
line such as

    BenchmarkFoo-8   100   520 ns/op   64 B/op   2 allocs/op

is recognized by its unit tokens: the two tokens before `ns/op` are the
invocation count and the runtime. With memory statistics enabled a record
is only complete once `allocs/op` is seen, its memory taken from the token
before `B/op`.
"""

import re

from benchmark_models import MeasurementRecord

TIME_UNIT = "ns/op"
BYTES_UNIT = "B/op"
ALLOCS_UNIT = "allocs/op"

_INT_RE = re.compile(r"^[+-]?\d+$")


class ResultParseError(Exception):
    """Raised when the output does not have the structure of benchmark results."""


class ResultNotParsableError(ResultParseError):
    """Raised when a numeric token of a result cannot be parsed.

    This signals a fault of the benchmark, not of the harness.
    """


def _parse_int(token: str, what: str) -> int:
    if not _INT_RE.match(token):
        raise ResultNotParsableError(f"Could not parse {what} '{token}'")
    return int(token)


def _parse_float(token: str, what: str) -> float:
    # float() would also accept digit separators, go never prints them
    if "_" in token:
        raise ResultNotParsableError(f"Could not parse {what} '{token}'")
    try:
        return float(token)
    except ValueError as e:
        raise ResultNotParsableError(f"Could not parse {what} '{token}'") from e


def _preceding(tokens: list[str], index: int, offset: int, unit: str) -> str:
    if index - offset < 0:
        raise ResultParseError(f"Unit '{unit}' at token {index} is missing its preceding value")
    return tokens[index - offset]


class GoBenchParser:
    """Stateless parser for the output of one `go test -bench` invocation."""

    def __init__(self, mem: bool = False):
        self.mem = mem

    def parse(self, output: str) -> list[MeasurementRecord]:
        """
        Parse benchmark output.

        Args:
            output: Combined stdout/stderr of the subprocess

        Returns:
            Records in the order their result lines appear

        Raises:
            ResultNotParsableError: If a value token is not a number
            ResultParseError: If a unit token has no value tokens before it
        """
        tokens = output.split()
        records: list[MeasurementRecord] = []

        invocations = 0
        runtime = 0.0
        memory = 0

        for i, token in enumerate(tokens):
            if token == TIME_UNIT:
                runtime = _parse_float(_preceding(tokens, i, 1, token), "runtime")
                invocations = _parse_int(_preceding(tokens, i, 2, token), "invocation count")
                if not self.mem:
                    records.append(MeasurementRecord(invocations, runtime))
            elif token == BYTES_UNIT:
                memory = _parse_int(_preceding(tokens, i, 1, token), "memory")
            elif token == ALLOCS_UNIT:
                allocations = _parse_int(_preceding(tokens, i, 1, token), "allocation count")
                if self.mem:
                    records.append(MeasurementRecord(invocations, runtime, memory, allocations))

        return records


def parse_benchmark_output(output: str, mem: bool = False) -> list[MeasurementRecord]:
    """Parse benchmark output in runtime-only (default) or memory mode."""
    return GoBenchParser(mem).parse(output)
