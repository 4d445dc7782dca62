#!/usr/bin/env python3
"""
subprocess_utils.py - Secure subprocess utilities for the benchmarking harness

This module provides subprocess wrappers that:
- Use full executable paths instead of command names
- Validate executables exist before running
- Build the Go toolchain environment (GOPATH, GOROOT, PATH) for a project
- Provide consistent error handling

All harness modules should use these functions instead of calling subprocess directly.
"""

import os
import shutil
import subprocess
from pathlib import Path
from typing import Any

GO_COMMAND = "go"
GOPATH_VARIABLE = "GOPATH"
GOROOT_VARIABLE = "GOROOT"
SRC_FOLDER = "src"


class ExecutableNotFoundError(Exception):
    """Raised when a required executable is not found in PATH."""


def get_safe_executable(command: str, path: str | None = None) -> str:
    """
    Get the full path to an executable, validating it exists.

    Args:
        command: Command name to find (e.g., "git", "go")
        path: Optional search path overriding $PATH

    Returns:
        Full path to the executable

    Raises:
        ExecutableNotFoundError: If executable is not found in PATH
    """
    full_path = shutil.which(command, path=path)
    if full_path is None:
        raise ExecutableNotFoundError(f"Required executable '{command}' not found in PATH")
    return full_path


def run_git_command(args: list[str], cwd: Path | None = None, **kwargs: Any) -> subprocess.CompletedProcess[str]:
    """
    Run a git command securely using full executable path.

    Args:
        args: Git command arguments (without 'git' prefix)
        cwd: Working directory for the command
        **kwargs: Additional arguments passed to subprocess.run
                  (e.g., capture_output=True, text=True, check=True, timeout=60)

    Returns:
        CompletedProcess result

    Raises:
        ExecutableNotFoundError: If git is not found
        subprocess.CalledProcessError: If command fails and check=True
        subprocess.TimeoutExpired: If command times out
    """
    git_path = get_safe_executable("git")
    run_kwargs = {
        "capture_output": True,
        "text": True,
        "check": True,
        **kwargs,
    }
    return subprocess.run(  # noqa: S603,PLW1510  # Uses validated full executable path, no shell=True, check is in run_kwargs
        [git_path, *args], cwd=cwd, **run_kwargs
    )


def go_executable(go_root: str = "") -> str:
    """
    Resolve the go binary, preferring the toolchain under go_root when set.

    Raises:
        ExecutableNotFoundError: If no go binary can be found
    """
    if go_root:
        return get_safe_executable(GO_COMMAND, path=str(Path(go_root) / "bin"))
    return get_safe_executable(GO_COMMAND)


def go_path(project_root: Path) -> str | None:
    """
    Derive GOPATH from a project located under a GOPATH-style 'src' folder.

    Returns:
        The directory containing the first 'src' path element, or None for
        module-mode projects living outside a GOPATH tree
    """
    parts = Path(project_root).resolve().parts
    if SRC_FOLDER not in parts:
        return None
    return str(Path(*parts[: parts.index(SRC_FOLDER)]))


def go_environment(project_root: Path, go_root: str = "", base: dict[str, str] | None = None) -> dict[str, str]:
    """
    Build the environment for go invocations against a project.

    Args:
        project_root: Root of the Go project under test
        go_root: Optional Go installation; sets GOROOT and puts its bin first on PATH
        base: Environment to start from (defaults to os.environ)

    Returns:
        A new environment mapping
    """
    env = dict(os.environ if base is None else base)

    gopath = go_path(project_root)
    if gopath is not None:
        env[GOPATH_VARIABLE] = gopath

    if go_root:
        env[GOROOT_VARIABLE] = go_root
        go_bin = str(Path(go_root) / "bin")
        env["PATH"] = os.pathsep.join(p for p in (go_bin, env.get("PATH", "")) if p)

    return env


def run_go_command(
    args: list[str],
    cwd: Path | None = None,
    env: dict[str, str] | None = None,
    go_root: str = "",
    **kwargs: Any,
) -> subprocess.CompletedProcess[str]:
    """
    Run a go command securely using full executable path.

    stdout and stderr are combined into CompletedProcess.stdout, matching what
    `go test` prints on a terminal. check defaults to False because a failing
    benchmark run still carries output worth inspecting.

    Args:
        args: Go command arguments (without 'go' prefix)
        cwd: Working directory for the command (a package directory)
        env: Environment for the command
        go_root: Optional Go installation to take the binary from
        **kwargs: Additional arguments passed to subprocess.run (e.g., timeout=60)

    Returns:
        CompletedProcess result

    Raises:
        ExecutableNotFoundError: If go is not found
        subprocess.TimeoutExpired: If command times out
    """
    go_path_exe = go_executable(go_root)
    run_kwargs = {
        "stdout": subprocess.PIPE,
        "stderr": subprocess.STDOUT,
        "text": True,
        "check": False,
        **kwargs,
    }
    return subprocess.run(  # noqa: S603,PLW1510  # Uses validated full executable path, no shell=True, check is in run_kwargs
        [go_path_exe, *args], cwd=cwd, env=env, **run_kwargs
    )
