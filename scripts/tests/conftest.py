"""
Shared pytest fixtures and utilities for test modules.

Provides a small Go project on disk, an in-memory reverter and helpers for
faking `go test` subprocess results.
"""

import sys
import textwrap
from pathlib import Path
from subprocess import CompletedProcess

import pytest

# Ensure `scripts/` is on sys.path for test imports
# This must be done before importing any local modules
_scripts = Path(__file__).resolve().parents[1]
if str(_scripts) not in sys.path:
    sys.path.insert(0, str(_scripts))


STORE_SOURCE = textwrap.dedent(
    """\
    package store

    import (
    \t"errors"
    \t"sync"
    )

    // Store is a guarded map.
    type Store struct {
    \tmu sync.Mutex
    \tm  map[string]string
    }

    func New() *Store {
    \treturn &Store{m: map[string]string{}}
    }

    func (s *Store) Get(k string) (string, error) {
    \ts.mu.Lock()
    \tdefer s.mu.Unlock()
    \tv, ok := s.m[k]
    \tif !ok {
    \t\treturn "", errors.New("missing")
    \t}
    \treturn v, nil
    }

    func (s *Store) Put(k, v string) {
    \ts.mu.Lock()
    \ts.m[k] = v
    \ts.mu.Unlock()
    }
    """
)

STORE_TEST_SOURCE = textwrap.dedent(
    """\
    package store

    import "testing"

    func TestGet(t *testing.T) {}

    func BenchmarkGet(b *testing.B) {
    \ts := New()
    \ts.Put("a", "b")
    \tfor i := 0; i < b.N; i++ {
    \t\ts.Get("a")
    \t}
    }

    func BenchmarkPut(b *testing.B) {
    \ts := New()
    \tfor i := 0; i < b.N; i++ {
    \t\ts.Put("a", "b")
    \t}
    }
    """
)


@pytest.fixture
def go_project(tmp_path):
    """A Go project with a root package, a store package and directories discovery must skip."""
    root = tmp_path / "project"
    (root / "store").mkdir(parents=True)
    (root / "go.mod").write_text("module example.com/project\n\ngo 1.21\n")
    (root / "store" / "store.go").write_text(STORE_SOURCE)
    (root / "store" / "store_test.go").write_text(STORE_TEST_SOURCE)
    (root / "root_test.go").write_text('package project\n\nimport "testing"\n\nfunc BenchmarkRoot(b *testing.B) {}\n')

    for skipped in ("vendor/dep", ".git/hooks", "testdata"):
        (root / skipped).mkdir(parents=True)
        (root / skipped / "x_test.go").write_text('package x\n\nimport "testing"\n\nfunc BenchmarkHidden(b *testing.B) {}\n')
    return root


class SnapshotReverter:
    """In-memory stand-in for GitReverter: restores files captured at construction."""

    def __init__(self, root: Path):
        self.root = root
        self.snapshot = {p: p.read_bytes() for p in root.rglob("*") if p.is_file()}
        self.reverts = 0
        self.fail = False

    def ensure_clean(self) -> None:
        pass

    def revert(self) -> None:
        from regression_injector import RevertError

        if self.fail:
            raise RevertError("revert failed")
        for path, content in self.snapshot.items():
            path.write_bytes(content)
        self.reverts += 1


@pytest.fixture
def snapshot_reverter(go_project):
    return SnapshotReverter(go_project)


@pytest.fixture
def go_test_result():
    """
    Pytest fixture creating CompletedProcess objects as returned by run_go_command.

    Usage:
        def test_something(go_test_result):
            result = go_test_result("BenchmarkFoo-8 100 520 ns/op", returncode=0)
    """

    def _create_result(output: str, returncode: int = 0) -> CompletedProcess:
        return CompletedProcess(args=["go", "test"], returncode=returncode, stdout=output)

    return _create_result
