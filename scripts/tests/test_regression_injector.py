#!/usr/bin/env python3
"""
Test suite for regression_injector.py module.

Tests the source rewrite performed for a regression, import handling,
file level injection and reverting through git.
"""

import shutil
import subprocess
from unittest.mock import patch

import pytest

from benchmark_models import RegressionTarget
from conftest import STORE_SOURCE
from regression_injector import (
    GitReverter,
    InjectionError,
    RegressionInjector,
    RevertError,
    inject_regression,
    sleep_statements,
)
from subprocess_utils import ExecutableNotFoundError, run_git_command

SLEEP_10 = (
    "\t_goabsRegrStart := time.Now()\n"
    "\tdefer func() {\n"
    "\t\ttime.Sleep(time.Duration(float64(time.Since(_goabsRegrStart).Nanoseconds()) * 0.100000))\n"
    "\t}()\n"
)


class TestSleepStatements:
    def test_layout(self):
        assert sleep_statements("time", 0.1) == SLEEP_10

    def test_alias_and_indent(self):
        statements = sleep_statements("t", 2.5, indent="\t\t")
        assert statements.startswith("\t\t_goabsRegrStart := t.Now()\n")
        assert "t.Sleep(t.Duration(float64(t.Since(_goabsRegrStart).Nanoseconds()) * 2.500000))" in statements


class TestInjectRegression:
    def test_method_body_is_prefixed(self):
        rewritten, changed = inject_regression(STORE_SOURCE, "Get", "*Store", 0.1)

        assert changed == 1
        assert rewritten.startswith('package store\n\nimport "time"\n\nimport (\n\t"errors"\n')
        assert "func (s *Store) Get(k string) (string, error) {\n" + SLEEP_10 + "\ts.mu.Lock()\n\tdefer s.mu.Unlock()\n" in rewritten

    def test_other_declarations_are_byte_identical(self):
        rewritten, _ = inject_regression(STORE_SOURCE, "Put", "*Store", 0.1)
        restored = rewritten.replace(SLEEP_10, "", 1).replace('\nimport "time"\n', "", 1)
        assert restored == STORE_SOURCE

    def test_no_match_leaves_text_unchanged(self):
        assert inject_regression(STORE_SOURCE, "Delete", "*Store", 0.1) == (STORE_SOURCE, 0)

    @pytest.mark.parametrize(("name", "receiver"), [("Get", ""), ("Get", "Store"), ("New", "*Store")])
    def test_receiver_must_match(self, name, receiver):
        assert inject_regression(STORE_SOURCE, name, receiver, 0.1)[1] == 0

    def test_plain_function(self):
        rewritten, changed = inject_regression(STORE_SOURCE, "New", "", 0.1)
        assert changed == 1
        assert "func New() *Store {\n" + SLEEP_10 + "\treturn &Store{" in rewritten

    def test_existing_time_import_is_reused(self):
        text = 'package p\n\nimport t "time"\n\nfunc Wait() {\n\tt.Sleep(1)\n}\n'
        rewritten, _ = inject_regression(text, "Wait", "", 0.1)

        assert rewritten.count('"time"') == 1
        assert "\t_goabsRegrStart := t.Now()\n" in rewritten

    def test_unnamed_time_import_is_reused(self):
        text = 'package p\n\nimport (\n\t"fmt"\n\t"time"\n)\n\nfunc Wait() {\n\tfmt.Println(time.Second)\n}\n'
        rewritten, _ = inject_regression(text, "Wait", "", 0.1)
        assert rewritten == text.replace("func Wait() {\n", "func Wait() {\n" + SLEEP_10)

    @pytest.mark.parametrize("alias", ["_", "."])
    def test_unusable_time_alias_adds_import(self, alias):
        text = f'package p\n\nimport {alias} "time"\n\nfunc Wait() {{\n\tx := 1\n\t_ = x\n}}\n'
        rewritten, _ = inject_regression(text, "Wait", "", 0.1)
        assert rewritten.startswith('package p\n\nimport "time"\n\n')
        assert "\t_goabsRegrStart := time.Now()\n" in rewritten

    def test_time_parameter_uses_alias(self):
        text = "package p\n\nfunc Scale(time int) int {\n\treturn time * 2\n}\n"
        rewritten, _ = inject_regression(text, "Scale", "", 0.1)

        assert rewritten.startswith('package p\n\nimport _goabsTime "time"\n\n')
        assert "\t_goabsRegrStart := _goabsTime.Now()\n" in rewritten
        assert "_goabsTime.Sleep(_goabsTime.Duration(float64(_goabsTime.Since(_goabsRegrStart).Nanoseconds()) * 0.100000))" in rewritten
        assert " time.Now()" not in rewritten

    def test_time_local_uses_alias_next_to_existing_import(self):
        text = 'package p\n\nimport "time"\n\nfunc Wait() {\n\ttime := time.Now()\n\t_ = time\n}\n'
        rewritten, _ = inject_regression(text, "Wait", "", 0.1)

        assert 'import _goabsTime "time"\n' in rewritten
        assert 'import "time"\n' in rewritten
        assert "\t_goabsRegrStart := _goabsTime.Now()\n" in rewritten

    def test_shadowed_alias_is_not_reused(self):
        text = 'package p\n\nimport t "time"\n\nfunc Wait(t int) {\n\t_ = t\n}\n'
        rewritten, _ = inject_regression(text, "Wait", "", 0.1)

        assert rewritten.startswith('package p\n\nimport "time"\n\nimport t "time"\n')
        assert "\t_goabsRegrStart := time.Now()\n" in rewritten

    def test_shadowing_in_other_function_keeps_alias(self):
        text = 'package p\n\nimport t "time"\n\nfunc Other(t int) {}\n\nfunc Wait() {\n\tt.Sleep(1)\n}\n'
        rewritten, _ = inject_regression(text, "Wait", "", 0.1)

        assert rewritten.count('"time"') == 1
        assert "\t_goabsRegrStart := t.Now()\n" in rewritten

    def test_time_field_selector_is_not_shadowing(self):
        text = 'package p\n\nimport "time"\n\nfunc (e Event) At() time.Time {\n\treturn e.time\n}\n'
        rewritten, _ = inject_regression(text, "At", "Event", 0.1)

        assert rewritten.count('"time"') == 1
        assert "\t_goabsRegrStart := time.Now()\n" in rewritten

    def test_single_line_body_is_expanded(self):
        text = 'package p\n\nfunc Name() string { return "p" }\n'
        rewritten, _ = inject_regression(text, "Name", "", 0.1)
        assert rewritten.endswith('func Name() string {\n' + SLEEP_10 + '\treturn "p"\n}\n')

    def test_empty_body_is_expanded(self):
        text = "package p\n\ntype T struct{}\n\nfunc (T) Noop() {}\n"
        rewritten, changed = inject_regression(text, "Noop", "T", 0.1)
        assert changed == 1
        assert rewritten.endswith("func (T) Noop() {\n" + SLEEP_10 + "}\n")

    def test_comment_after_brace(self):
        text = "package p\n\nfunc Work() { // hot path\n\twork()\n}\n"
        rewritten, _ = inject_regression(text, "Work", "", 0.1)
        assert "func Work() { // hot path\n" + SLEEP_10 + "\twork()\n}\n" in rewritten

    def test_declaration_without_body(self):
        text = "package p\n\nfunc Fast(x int) int\n"
        with pytest.raises(InjectionError, match="no body"):
            inject_regression(text, "Fast", "", 0.1)


class TestRegressionInjector:
    def test_inject_and_reset(self, go_project, snapshot_reverter):
        path = go_project / "store" / "store.go"
        injector = RegressionInjector(go_project, reverter=snapshot_reverter)

        changed = injector.inject(RegressionTarget("store", "store.go", "Get", "*Store", violation=0.5))

        assert changed == 1
        assert "* 0.500000))" in path.read_text()

        injector.reset()
        assert path.read_text() == STORE_SOURCE
        assert snapshot_reverter.reverts == 1

    def test_violation_override(self, go_project, snapshot_reverter):
        injector = RegressionInjector(go_project, reverter=snapshot_reverter)
        injector.inject(RegressionTarget("store", "store.go", "Put", "*Store", violation=0.5), violation=0.25)
        assert "* 0.250000))" in (go_project / "store" / "store.go").read_text()

    def test_unmatched_target_leaves_file_unchanged(self, go_project, snapshot_reverter):
        injector = RegressionInjector(go_project, reverter=snapshot_reverter)
        assert injector.inject(RegressionTarget("store", "store.go", "Missing", violation=0.5)) == 0
        assert (go_project / "store" / "store.go").read_text() == STORE_SOURCE

    def test_missing_file(self, go_project, snapshot_reverter):
        injector = RegressionInjector(go_project, reverter=snapshot_reverter)
        with pytest.raises(InjectionError, match="Could not read"):
            injector.inject(RegressionTarget("store", "gone.go", "Get", violation=0.5))

    def test_unparsable_file(self, go_project, snapshot_reverter):
        (go_project / "store" / "broken.go").write_text("package store\n\nfunc Get() {\n")
        injector = RegressionInjector(go_project, reverter=snapshot_reverter)
        with pytest.raises(InjectionError, match="Could not parse"):
            injector.inject(RegressionTarget("store", "broken.go", "Get", violation=0.5))

    def test_reset_failure_propagates(self, go_project, snapshot_reverter):
        snapshot_reverter.fail = True
        with pytest.raises(RevertError):
            RegressionInjector(go_project, reverter=snapshot_reverter).reset()

    def test_defaults_to_git(self, go_project):
        assert isinstance(RegressionInjector(go_project).reverter, GitReverter)


class TestGitReverter:
    @patch("regression_injector.run_git_command")
    def test_clean_tree(self, mock_git, go_project):
        mock_git.return_value = subprocess.CompletedProcess(args=[], returncode=0, stdout="")
        GitReverter(go_project).ensure_clean()
        mock_git.assert_called_once_with(["status", "--porcelain", "--untracked-files=no"], cwd=go_project)

    @patch("regression_injector.run_git_command")
    def test_dirty_tree(self, mock_git, go_project):
        mock_git.return_value = subprocess.CompletedProcess(args=[], returncode=0, stdout=" M store/store.go\n")
        with pytest.raises(RevertError, match="uncommitted changes"):
            GitReverter(go_project).ensure_clean()

    @patch("regression_injector.run_git_command")
    def test_not_a_repository(self, mock_git, go_project):
        mock_git.side_effect = subprocess.CalledProcessError(128, ["git", "status"])
        with pytest.raises(RevertError):
            GitReverter(go_project).ensure_clean()

    @patch("regression_injector.run_git_command")
    def test_revert(self, mock_git, go_project):
        GitReverter(go_project).revert()
        mock_git.assert_called_once_with(["reset", "--hard"], cwd=go_project)

    @patch("regression_injector.run_git_command")
    def test_revert_without_git(self, mock_git, go_project):
        mock_git.side_effect = ExecutableNotFoundError("Required executable 'git' not found in PATH")
        with pytest.raises(RevertError, match="Could not reset"):
            GitReverter(go_project).revert()


@pytest.mark.integration
@pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")
def test_git_round_trip(go_project):
    """Injecting and resetting a committed project restores the original bytes."""
    shutil.rmtree(go_project / ".git")
    run_git_command(["init", "-q"], cwd=go_project)
    run_git_command(["add", "-A"], cwd=go_project)
    run_git_command(["-c", "user.email=bench@example.com", "-c", "user.name=bench", "commit", "-q", "-m", "init"], cwd=go_project)

    injector = RegressionInjector(go_project)
    injector.ensure_clean()
    injector.inject(RegressionTarget("store", "store.go", "Get", "*Store", violation=0.1))

    with pytest.raises(RevertError):
        injector.ensure_clean()

    injector.reset()
    injector.ensure_clean()
    assert (go_project / "store" / "store.go").read_text() == STORE_SOURCE
