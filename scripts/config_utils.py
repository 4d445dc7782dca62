#!/usr/bin/env python3
"""
config_utils.py - Experiment configuration

Configurations are JSON files:

    {
      "project": "/home/me/go/src/github.com/org/repo",
      "go_root": "",
      "clear": "/tmp/go-build-scratch",
      "dynamic": {
        "bench_regex": "^BenchmarkEncode",
        "wi": 2, "i": 5,
        "bench_time": "1s", "bench_timeout": "10m",
        "bench_duration": "0s", "run_duration": "",
        "runs": 3, "runs_timeout": "6h",
        "bench_mem": true,
        "profile": "none", "profile_dir": "",
        "regression": 0.1,
        "rmit": true,
        "functions": [{"pkg": "store", "file": "store.go", "name": "Get", "receiver": "*Store"}]
      }
    }

Durations use Go's syntax ("300ms", "1m30s"). A function entry may carry its
own "regression" factor overriding the global one.
"""

import json
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from benchmark_models import ProfileMode, RegressionTarget, RunConfig

DEFAULT_BENCH_TIME = 1.0
DEFAULT_BENCH_TIMEOUT = 600.0

_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "μs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|μs|ms|s|m|h)")


class ConfigError(Exception):
    """Raised for unreadable, malformed or inconsistent configurations."""


def parse_go_duration(value: str | int | float | None) -> float:
    """
    Parse a Go duration string into seconds.

    Empty values and "0" are zero; plain numbers are taken as seconds.

    Raises:
        ConfigError: If value is not a valid duration
    """
    if value is None or value == "":
        return 0.0
    if isinstance(value, bool):
        raise ConfigError(f"Invalid duration: {value!r}")
    if isinstance(value, int | float):
        return float(value)

    text = value.strip()
    sign = -1.0 if text.startswith("-") else 1.0
    text = text.lstrip("+-")
    if text == "0":
        return 0.0

    pos = 0
    total = 0.0
    for match in _DURATION_PART.finditer(text):
        if match.start() != pos:
            break
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()
    if pos == 0 or pos != len(text):
        raise ConfigError(f"Invalid duration: {value!r}")
    return sign * total


def _require_type(data: dict[str, Any], key: str, kind: type | tuple[type, ...], default: Any) -> Any:
    value = data.get(key, default)
    if value is None:
        return default
    if isinstance(value, bool) and kind in (int, float, (int, float)):
        raise ConfigError(f"'{key}' must be a number, got {value!r}")
    if not isinstance(value, kind):
        raise ConfigError(f"'{key}' has invalid type {type(value).__name__}")
    return value


@dataclass(frozen=True)
class DynamicConfig:
    """Settings of the benchmark execution and regression experiment."""

    bench_regex: str = ""
    warmup_iterations: int = 0
    measurement_iterations: int = 1
    bench_time: float = DEFAULT_BENCH_TIME
    bench_timeout: float = DEFAULT_BENCH_TIMEOUT
    bench_duration: float = 0.0
    run_duration: float = 0.0
    runs: int = 1
    runs_timeout: float = 0.0
    bench_mem: bool = False
    profile: ProfileMode = ProfileMode.NONE
    profile_dir: Path | None = None
    regression: float = 0.0
    rmit: bool = False
    functions: tuple[RegressionTarget, ...] = ()


@dataclass(frozen=True)
class ExperimentConfig:
    project: Path
    go_root: str = ""
    clear: Path | None = None
    dynamic: DynamicConfig = field(default_factory=DynamicConfig)

    def run_config(self) -> RunConfig:
        d = self.dynamic
        return RunConfig(
            warmup_iterations=d.warmup_iterations,
            measurement_iterations=d.measurement_iterations,
            bench_timeout=d.bench_timeout,
            bench_time=d.bench_time,
            bench_duration=d.bench_duration,
            run_duration=d.run_duration,
            bench_mem=d.bench_mem,
            profile=d.profile,
            profile_dir=d.profile_dir,
            go_root=self.go_root,
        )


def _parse_function(entry: Any, regression: float) -> RegressionTarget:
    if not isinstance(entry, dict):
        raise ConfigError(f"Function entry must be an object, got {entry!r}")
    try:
        name = entry["name"]
        file = entry["file"]
    except KeyError as e:
        raise ConfigError(f"Function entry {entry!r} misses {e}") from e
    package = entry.get("pkg", entry.get("path", "")) or ""
    violation = _require_type(entry, "regression", (int, float), regression)
    return RegressionTarget(
        package=package.strip("/"),
        file=file,
        name=name,
        receiver=entry.get("receiver", "") or "",
        violation=float(violation),
    )


def _parse_dynamic(data: dict[str, Any]) -> DynamicConfig:
    bench_regex = _require_type(data, "bench_regex", str, "")
    if bench_regex:
        try:
            re.compile(bench_regex)
        except re.error as e:
            raise ConfigError(f"Invalid bench_regex {bench_regex!r}: {e}") from e

    warmup = _require_type(data, "wi", int, 0)
    measurement = _require_type(data, "i", int, 1)
    if warmup < 0 or measurement < 0 or warmup + measurement == 0:
        raise ConfigError("Warmup plus measurement iterations must be at least 1")

    try:
        profile = ProfileMode(data.get("profile") or ProfileMode.NONE.value)
    except ValueError as e:
        raise ConfigError(f"Invalid profile mode {data.get('profile')!r}") from e

    profile_dir_value = _require_type(data, "profile_dir", str, "")
    profile_dir = Path(profile_dir_value).expanduser() if profile_dir_value else None
    if profile is not ProfileMode.NONE and profile_dir is None:
        raise ConfigError("No profile dir specified (profile_dir)")
    if profile_dir is not None:
        if not profile_dir.exists():
            raise ConfigError(f"Profile directory error: {profile_dir} does not exist")
        if not profile_dir.is_dir():
            raise ConfigError("Profile directory error: not a directory")

    regression = float(_require_type(data, "regression", (int, float), 0.0))
    functions = tuple(_parse_function(f, regression) for f in _require_type(data, "functions", list, []))

    bench_time = parse_go_duration(data.get("bench_time")) or DEFAULT_BENCH_TIME
    bench_timeout = parse_go_duration(data.get("bench_timeout")) or DEFAULT_BENCH_TIMEOUT

    return DynamicConfig(
        bench_regex=bench_regex,
        warmup_iterations=warmup,
        measurement_iterations=measurement,
        bench_time=bench_time,
        bench_timeout=bench_timeout,
        bench_duration=parse_go_duration(data.get("bench_duration")),
        run_duration=parse_go_duration(data.get("run_duration")),
        runs=max(_require_type(data, "runs", int, 1), 1),
        runs_timeout=parse_go_duration(data.get("runs_timeout")),
        bench_mem=bool(data.get("bench_mem", False)),
        profile=profile,
        profile_dir=profile_dir,
        regression=regression,
        rmit=bool(data.get("rmit", False)),
        functions=functions,
    )


def parse_config(data: dict[str, Any]) -> ExperimentConfig:
    """
    Build an ExperimentConfig from decoded JSON.

    Raises:
        ConfigError: If required settings are missing or invalid
    """
    if not isinstance(data, dict):
        raise ConfigError("Configuration must be a JSON object")

    project_value = _require_type(data, "project", str, "")
    if not project_value:
        raise ConfigError("No project specified (project)")
    project = Path(project_value).expanduser()
    if not project.is_dir():
        raise ConfigError(f"Project directory does not exist: {project}")

    clear_value = _require_type(data, "clear", str, "")
    dynamic = data.get("dynamic", {})
    if not isinstance(dynamic, dict):
        raise ConfigError("'dynamic' must be an object")

    return ExperimentConfig(
        project=project,
        go_root=_require_type(data, "go_root", str, ""),
        clear=Path(clear_value).expanduser() if clear_value else None,
        dynamic=_parse_dynamic(dynamic),
    )


def load_config(path: Path) -> ExperimentConfig:
    """
    Read and validate a JSON configuration file.

    Raises:
        ConfigError: If the file cannot be read, decoded or validated
    """
    try:
        with Path(path).open(encoding="utf-8") as f:
            data = json.load(f)
    except OSError as e:
        raise ConfigError(f"Could not open config: {e}") from e
    except json.JSONDecodeError as e:
        raise ConfigError(f"Could not parse config file: {e}") from e
    return parse_config(data)
