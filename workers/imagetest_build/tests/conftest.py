"""
Shared pytest fixtures for imagetest_build tests.

Provides:
  - a throwaway imagetest root (go.mod, cmd/, test_suites/)
  - FakeToolchain, an in-memory stand-in for GoToolchain that records
    every call and fabricates outputs, for driver and builder policy tests
  - a POSIX shell script that plays the ``go`` command, so the real
    subprocess invoker can be exercised end to end

Tests using the shell script are skipped when no POSIX shell is available
(native Windows).
"""
from __future__ import annotations

import os
import re
import shutil
import stat
import textwrap
from pathlib import Path
from typing import Dict, List, Optional, Set, Tuple

import pytest

from imagetest_build.config import PipelineConfig
from imagetest_build.core.toolchain import BuildEnv, ToolResult
from imagetest_build.policy.platforms import PlatformTarget


# ── Suite sources ────────────────────────────────────────────────────────────

SUITE_SOURCES: Dict[str, Dict[str, str]] = {
    "cvm": {
        "cvm_test.go": textwrap.dedent("""\
            package cvm

            import "testing"

            func TestSEVEnabled(t *testing.T) {}

            func TestSEVSNPEnabled(t *testing.T) {}

            func TestTDXEnabled(t *testing.T) {}

            func TestLiveMigrate(t *testing.T) {}
        """),
    },
    "disk": {
        "disk_readwrite_test.go": textwrap.dedent("""\
            package disk

            import "testing"

            func TestDiskReadWrite(t *testing.T) {}
        """),
        "disk_windows_test.go": textwrap.dedent("""\
            package disk

            import "testing"

            func TestDiskResizeWindows(t *testing.T) {}
        """),
    },
    "packagevalidation": {
        "package_test.go": textwrap.dedent("""\
            package packagevalidation

            import "testing"

            func TestStandardPrograms(t *testing.T) {}

            func TestGuestPackages(t *testing.T) {}
        """),
    },
}

MAIN_GO = textwrap.dedent("""\
    package main

    func main() {}
""")

_TEST_FUNC_RE = re.compile(r"^func (Test\w*)\(", re.MULTILINE)


def expected_listing(suite_dir: Path) -> str:
    """What ``<suite>.test -test.list .*`` prints on a Linux host."""
    names: List[str] = []
    for src in sorted(suite_dir.glob("*_test.go")):
        if src.name.endswith("_windows_test.go"):
            continue
        names.extend(_TEST_FUNC_RE.findall(src.read_text()))
    return "".join(f"{n}\n" for n in names)


@pytest.fixture
def suite_root(tmp_path) -> Path:
    """An imagetest root with three suites and a stray file under test_suites/."""
    root = tmp_path / "imagetest"
    (root / "cmd" / "wrapper").mkdir(parents=True)
    (root / "cmd" / "manager").mkdir(parents=True)
    (root / "cmd" / "wrapper" / "main.go").write_text(MAIN_GO)
    (root / "cmd" / "manager" / "main.go").write_text(MAIN_GO)
    (root / "go.mod").write_text("module example.com/imagetest\n\ngo 1.22\n")

    suites = root / "test_suites"
    for suite, files in SUITE_SOURCES.items():
        (suites / suite).mkdir(parents=True)
        for name, content in files.items():
            (suites / suite / name).write_text(content)
    (suites / "README.md").write_text("One directory per suite.\n")
    return root


@pytest.fixture
def output_dir(tmp_path) -> Path:
    return tmp_path / "out"


@pytest.fixture
def make_config(suite_root, output_dir):
    """Factory for a PipelineConfig rooted at the fixture tree."""
    def _make(patterns=("*",), receipt_path: Optional[Path] = None, root: Optional[Path] = None):
        return PipelineConfig(
            output_path=output_dir,
            suite_root=root or suite_root,
            suite_patterns=tuple(patterns),
            receipt_path=receipt_path,
        )
    return _make


# ── In-memory toolchain ──────────────────────────────────────────────────────

class FakeToolchain:
    """
    Duck-typed GoToolchain that never spawns a process.

    Failures are configured per (subject, target label), where subject is
    the helper name or the suite directory name.
    """

    go_binary = "go"

    def __init__(self):
        self.build_env = BuildEnv()
        self.calls: List[Tuple[str, str, Optional[str]]] = []
        self.failures: Dict[Tuple[str, str], str] = {}
        self.no_output: Set[Tuple[str, str]] = set()
        self.listings: Dict[str, str] = {}
        self.list_failures: Set[str] = set()
        self.download_fails = False

    def fail(self, subject: str, target: PlatformTarget, diagnostics: str = "build failed") -> None:
        self.failures[(subject, target.label)] = diagnostics

    def ops(self, op: str) -> List[Tuple[str, Optional[str]]]:
        return [(subject, target) for (kind, subject, target) in self.calls if kind == op]

    def version(self) -> str:
        return "go version go1.22.0 linux/amd64"

    def download_modules(self, module_root: Path) -> ToolResult:
        self.calls.append(("download", module_root.name, None))
        if self.download_fails:
            return ToolResult(["go", "mod", "download"], 1, stderr="dial tcp: lookup proxy.golang.org")
        return ToolResult(["go", "mod", "download"], 0)

    def build(self, entrypoint: str, target: PlatformTarget, output_file: Path, cwd: Path) -> ToolResult:
        helper = Path(entrypoint).parent.name
        self.calls.append(("build", helper, target.label))
        cmd = ["go", "build", "-o", str(output_file), entrypoint]
        diag = self.failures.get((helper, target.label))
        if diag is not None:
            return ToolResult(cmd, 1, stderr=diag)
        output_file.write_bytes(f"{helper} {target.label}\n".encode())
        return ToolResult(cmd, 0, output_path=output_file)

    def compile_test_binary(
        self,
        suite_dir: Path,
        target: PlatformTarget,
        build_tag: str,
        output_file: Optional[Path] = None,
    ) -> ToolResult:
        suite = suite_dir.name
        self.calls.append(("compile", suite, target.label))
        cmd = ["go", "test", "-c", "-tags", build_tag]
        diag = self.failures.get((suite, target.label))
        if diag is not None:
            return ToolResult(cmd, 1, stderr=diag)
        if (suite, target.label) in self.no_output:
            return ToolResult(cmd, 0)
        emitted = suite_dir / f"{suite}.test{target.exe_suffix}"
        emitted.write_bytes(f"{suite} {target.label} {build_tag}\n".encode())
        return ToolResult(cmd, 0, output_path=emitted)

    def list_tests(self, test_binary: Path, cwd: Path) -> ToolResult:
        suite = cwd.name
        self.calls.append(("list", suite, None))
        cmd = [str(test_binary), "-test.list", ".*"]
        if suite in self.list_failures:
            return ToolResult(cmd, 126, stderr=f"{test_binary}: exec format error")
        listing = self.listings.get(suite)
        if listing is None:
            listing = expected_listing(cwd)
        return ToolResult(cmd, 0, stdout=listing)


@pytest.fixture
def fake_toolchain() -> FakeToolchain:
    return FakeToolchain()


# ── Shell-script go ──────────────────────────────────────────────────────────

FAKE_GO_SCRIPT = r"""#!/bin/sh
# Plays the go command for the imagetest_build end-to-end tests.
if [ -n "$FAKE_GO_LOG" ]; then
  echo "GOOS=${GOOS:-} GOARCH=${GOARCH:-} CGO_ENABLED=${CGO_ENABLED:-} $*" >> "$FAKE_GO_LOG"
fi
case "$1" in
  version)
    echo "go version go1.22.0 linux/amd64"
    ;;
  mod)
    ;;
  build)
    out="$3"
    entry="$4"
    if [ ! -f "$entry" ]; then
      echo "stat $entry: no such file or directory" >&2
      exit 1
    fi
    echo "$entry ${GOOS:-native}/$GOARCH" > "$out"
    ;;
  test)
    pkg=$(basename "$PWD")
    if [ -f BROKEN ]; then
      echo "./${pkg}_test.go:1:1: expected 'package', found broken" >&2
      exit 1
    fi
    if [ "$GOOS" = "windows" ]; then
      if ls *_windows_test.go >/dev/null 2>&1; then
        echo "windows $GOARCH" > "$pkg.test.exe"
      fi
      exit 0
    fi
    cat > "$pkg.test" <<'EOF'
#!/bin/sh
for f in *_test.go; do
  case "$f" in
    *_windows_test.go) ;;
    *) sed -n 's/^func \(Test[A-Za-z0-9_]*\)(.*/\1/p' "$f" ;;
  esac
done
EOF
    chmod +x "$pkg.test"
    ;;
  *)
    echo "go $1: unknown command" >&2
    exit 2
    ;;
esac
"""


@pytest.fixture
def fake_go(tmp_path) -> Path:
    """Executable shell script standing in for ``go``."""
    if os.name == "nt" or shutil.which("sh") is None:
        pytest.skip("fake go toolchain needs a POSIX shell")
    path = tmp_path / "bin" / "go"
    path.parent.mkdir()
    path.write_text(FAKE_GO_SCRIPT)
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path
