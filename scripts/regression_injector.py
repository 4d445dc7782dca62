#!/usr/bin/env python3
"""
regression_injector.py - Inject relative slowdowns into Go functions

The injector rewrites the body of one function so that it sleeps, on every
return path, for `violation` times the time it spent running:

    func (s *Store) Get(k string) string {
    	_goabsRegrStart := time.Now()
    	defer func() {
    		time.Sleep(time.Duration(float64(time.Since(_goabsRegrStart).Nanoseconds()) * 0.100000))
    	}()
    	...
    }

The new statements are spliced into the original text, so every other
declaration of the file stays byte-identical; the inserted code follows
gofmt layout. Changes are undone through version control, which makes the
on-disk tree the only state of an injection.
"""

import logging
import subprocess
from pathlib import Path
from typing import Protocol

from benchmark_models import RegressionTarget
from go_source_utils import IDENT, GoFunction, GoSourceFile, GoSyntaxError, parse_go_source, tokenize
from subprocess_utils import ExecutableNotFoundError, run_git_command

logger = logging.getLogger(__name__)

TIME_PACKAGE = "time"
START_VARIABLE = "_goabsRegrStart"
TIME_ALIAS = "_goabsTime"


class InjectionError(Exception):
    """Raised when a regression cannot be written into the source tree."""


class RevertError(Exception):
    """Raised when the source tree cannot be restored or verified."""


class Reverter(Protocol):
    """Restores the project to its last committed state."""

    def ensure_clean(self) -> None: ...

    def revert(self) -> None: ...


class GitReverter:
    """Discard working-tree changes of a git checkout."""

    def __init__(self, project_root: Path):
        self.project_root = Path(project_root)

    def ensure_clean(self) -> None:
        """
        Verify that no tracked file is modified.

        Raises:
            RevertError: If git is unavailable, the project is not a
                repository or tracked files differ from HEAD
        """
        try:
            result = run_git_command(["status", "--porcelain", "--untracked-files=no"], cwd=self.project_root)
        except (ExecutableNotFoundError, subprocess.CalledProcessError, OSError) as e:
            raise RevertError(f"Could not inspect git status of {self.project_root}: {e}") from e
        if result.stdout.strip():
            raise RevertError(f"Working tree of {self.project_root} has uncommitted changes:\n{result.stdout}")

    def revert(self) -> None:
        """
        Run `git reset --hard` in the project.

        Raises:
            RevertError: If the reset fails
        """
        try:
            run_git_command(["reset", "--hard"], cwd=self.project_root)
        except (ExecutableNotFoundError, subprocess.CalledProcessError, OSError) as e:
            raise RevertError(f"Could not reset introduced regression with git: {e}") from e


def sleep_statements(time_name: str, violation: float, indent: str = "\t") -> str:
    """Go statements recording the start time and deferring the proportional sleep."""
    elapsed = f"float64({time_name}.Since({START_VARIABLE}).Nanoseconds())"
    return (
        f"{indent}{START_VARIABLE} := {time_name}.Now()\n"
        f"{indent}defer func() {{\n"
        f"{indent}\t{time_name}.Sleep({time_name}.Duration({elapsed} * {violation:f}))\n"
        f"{indent}}}()\n"
    )


def _rewrite_body(text: str, func: GoFunction, statements: str) -> str:
    """Return text with statements inserted as the first statements of func's body."""
    open_brace = func.body_start
    close_brace = func.body_end - 1
    line_end = text.find("\n", open_brace)

    rest_of_line = text[open_brace + 1 : line_end].strip() if line_end != -1 else ""
    if line_end != -1 and line_end < close_brace and (not rest_of_line or rest_of_line.startswith("//")):
        # regular multi-line body: statements go on the line after the brace
        return text[: line_end + 1] + statements + text[line_end + 1 :]

    # single-line body such as `{}` or `{ return x }` is expanded
    inner = text[open_brace + 1 : close_brace].strip()
    body = "{\n" + statements + (f"\t{inner}\n" if inner else "") + "}"
    return text[:open_brace] + body + text[close_brace + 1 :]


def _add_import(text: str, source: GoSourceFile, path: str, alias: str = "") -> str:
    """Insert a separate import declaration after the package clause."""
    decl = f'import {alias} "{path}"\n' if alias else f'import "{path}"\n'
    line_end = text.find("\n", source.package_end)
    if line_end == -1:
        return text + "\n\n" + decl
    return text[: line_end + 1] + "\n" + decl + text[line_end + 1 :]


def _uses_bare_name(text: str, name: str) -> bool:
    """True if name appears in text other than as a package qualifier or a selected field."""
    tokens = tokenize(text)
    for i, tok in enumerate(tokens):
        if tok.kind != IDENT or tok.text != name:
            continue
        if i > 0 and tokens[i - 1].text == ".":
            continue
        if i + 1 < len(tokens) and tokens[i + 1].text == ".":
            continue
        return True
    return False


def _time_name(text: str, source: GoSourceFile, targets: list[GoFunction]) -> tuple[str, bool]:
    """
    Pick the identifier the inserted statements call the time package by.

    An existing import is reused unless a parameter, result or local of a
    target redeclares its name. Otherwise a new import is needed: plain
    `time` when nothing in the file uses that name, the reserved alias
    otherwise.

    Returns:
        The identifier and whether an import for it has to be added
    """
    declarations = [text[func.start : func.body_end] for func in targets]
    for spec in source.imports:
        if spec.path != TIME_PACKAGE or spec.local_name in ("_", "."):
            continue
        if not any(_uses_bare_name(decl, spec.local_name) for decl in declarations):
            return spec.local_name, False
    if not _uses_bare_name(text, TIME_PACKAGE):
        return TIME_PACKAGE, True
    return TIME_ALIAS, True


def inject_regression(text: str, name: str, receiver: str, violation: float) -> tuple[str, int]:
    """
    Inject a relative regression into every function of text matching name and receiver.

    Args:
        text: Go source
        name: Function name
        receiver: Normalized receiver type (`T`, `*T`) or "" for functions
        violation: Fraction of the function's own elapsed time to sleep

    Returns:
        The rewritten source and the number of functions changed; text is
        returned unchanged when nothing matches

    Raises:
        GoSyntaxError: If text cannot be scanned
        InjectionError: If a matching declaration has no body
    """
    source = parse_go_source(text)
    targets = source.find_functions(name, receiver)
    if not targets:
        return text, 0

    for func in targets:
        if not func.has_body:
            raise InjectionError(f"Function {name} declared at line {func.start_line} has no body")

    time_name, needs_import = _time_name(text, source, targets)
    statements = sleep_statements(time_name, violation)
    # splice from the end so earlier offsets stay valid
    for func in sorted(targets, key=lambda f: f.body_start, reverse=True):
        text = _rewrite_body(text, func, statements)

    if needs_import:
        text = _add_import(text, source, TIME_PACKAGE, "" if time_name == TIME_PACKAGE else time_name)
    return text, len(targets)


class RegressionInjector:
    """Introduce regressions into a project and revert them afterwards."""

    def __init__(self, project_root: Path, reverter: Reverter | None = None):
        self.project_root = Path(project_root)
        self.reverter = reverter if reverter is not None else GitReverter(self.project_root)

    def target_path(self, target: RegressionTarget) -> Path:
        return self.project_root / target.package / target.file

    def inject(self, target: RegressionTarget, violation: float | None = None) -> int:
        """
        Rewrite the file declaring target so that target runs slower.

        A target that matches no declaration leaves the file content unchanged.

        Args:
            target: Function to slow down
            violation: Overrides target.violation when given

        Returns:
            Number of declarations changed (0 or 1 for valid Go)

        Raises:
            InjectionError: If the file cannot be read, scanned or written
        """
        factor = target.violation if violation is None else violation
        path = self.target_path(target)

        try:
            original = path.read_bytes().decode("utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise InjectionError(f"Could not read file {path}: {e}") from e

        try:
            rewritten, changed = inject_regression(original, target.name, target.receiver, factor)
        except GoSyntaxError as e:
            raise InjectionError(f"Could not parse file {path}: {e}") from e

        if changed == 0:
            logger.warning("No function matching %s found in %s, file left unchanged", target.label, path)

        try:
            path.write_bytes(rewritten.encode("utf-8"))
        except OSError as e:
            raise InjectionError(f"Could not save back to file {path}: {e}") from e

        logger.debug("Injected regression of %f into %s (%d declarations)", factor, target.label, changed)
        return changed

    def ensure_clean(self) -> None:
        self.reverter.ensure_clean()

    def reset(self) -> None:
        """Revert every working-tree change; raises RevertError on failure."""
        self.reverter.revert()
