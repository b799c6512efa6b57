"""
Go toolchain invoker.

Handles:
- go mod download (dependency fetch for the whole module)
- go build for the helper binaries
- go test -c for the suite test binaries
- running a produced test binary in list mode

Every call receives its target and build environment explicitly; nothing
here touches ``os.environ`` or decides whether a failure is fatal.
"""
from __future__ import annotations

import logging
import os
import platform
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Tuple

from imagetest_build.policy.platforms import PlatformTarget

logger = logging.getLogger(__name__)

# Variables that must come from the target, never from the caller's shell.
_TARGET_ENV_KEYS = ("GOOS", "GOARCH", "CGO_ENABLED")


@dataclass(frozen=True)
class BuildEnv:
    """Build-time settings threaded into every toolchain invocation."""
    cgo_enabled: bool = False

    def compose(
        self,
        base: Mapping[str, str],
        target: Optional[PlatformTarget] = None,
    ) -> Dict[str, str]:
        """Child environment for one invocation; *base* is not modified."""
        env = {k: v for k, v in base.items() if k not in _TARGET_ENV_KEYS}
        env["CGO_ENABLED"] = "1" if self.cgo_enabled else "0"
        if target is not None:
            env.update(target.go_env())
        return env


@dataclass
class ToolResult:
    """Outcome of a single toolchain invocation."""
    command: List[str]
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    duration_ms: int = 0
    output_path: Optional[Path] = None

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    @property
    def command_str(self) -> str:
        return " ".join(self.command)

    @property
    def diagnostics(self) -> str:
        """Toolchain output verbatim; stderr first, stdout as fallback."""
        return self.stderr or self.stdout


class GoToolchain:
    """Drives the ``go`` command for one target per invocation."""

    def __init__(
        self,
        go_binary: str = "go",
        build_env: Optional[BuildEnv] = None,
        base_env: Optional[Mapping[str, str]] = None,
    ):
        self.go_binary = go_binary
        self.build_env = build_env or BuildEnv()
        self.base_env: Mapping[str, str] = dict(os.environ if base_env is None else base_env)

    def _run(
        self,
        cmd: List[str],
        cwd: Path,
        target: Optional[PlatformTarget] = None,
    ) -> Tuple[int, str, str, int]:
        """Execute *cmd* and return (exit_code, stdout, stderr, duration_ms)."""
        env = self.build_env.compose(self.base_env, target)
        logger.debug(
            "exec %s (cwd=%s, target=%s)",
            " ".join(cmd), cwd, target.label if target else "-",
        )
        t0 = time.monotonic()
        try:
            result = subprocess.run(
                cmd,
                cwd=str(cwd),
                env=env,
                capture_output=True,
                text=True,
            )
            exit_code, stdout, stderr = result.returncode, result.stdout, result.stderr
        except OSError as e:
            exit_code, stdout, stderr = -1, "", str(e)
        duration = int((time.monotonic() - t0) * 1000)
        return exit_code, stdout, stderr, duration

    # -----------------------------------------------------------------
    # Operations
    # -----------------------------------------------------------------

    def version(self) -> str:
        """First line of ``go version``, or "unknown"."""
        code, stdout, _, _ = self._run([self.go_binary, "version"], cwd=Path.cwd())
        if code != 0 or not stdout.strip():
            return "unknown"
        return stdout.strip().splitlines()[0]

    def download_modules(self, module_root: Path) -> ToolResult:
        cmd = [self.go_binary, "mod", "download"]
        code, stdout, stderr, duration = self._run(cmd, cwd=module_root)
        return ToolResult(cmd, code, stdout, stderr, duration)

    def build(
        self,
        entrypoint: str,
        target: PlatformTarget,
        output_file: Path,
        cwd: Path,
    ) -> ToolResult:
        """``go build -o <output_file> <entrypoint>`` for *target*."""
        cmd = [self.go_binary, "build", "-o", str(output_file), entrypoint]
        code, stdout, stderr, duration = self._run(cmd, cwd=cwd, target=target)
        produced = output_file if code == 0 and output_file.exists() else None
        return ToolResult(cmd, code, stdout, stderr, duration, output_path=produced)

    def compile_test_binary(
        self,
        suite_dir: Path,
        target: PlatformTarget,
        build_tag: str,
        output_file: Optional[Path] = None,
    ) -> ToolResult:
        """
        ``go test -c -tags <build_tag>`` inside *suite_dir*.

        Without *output_file* the toolchain names the binary after the
        package directory: ``<dir>.test``, plus ``.exe`` for Windows.  With
        one, Windows outputs still get the ``.exe`` suffix.

        ``output_path`` of the result is None when the toolchain exited
        cleanly but emitted nothing.
        """
        cmd = [self.go_binary, "test", "-c", "-tags", build_tag]
        if output_file is None:
            emitted = suite_dir / f"{suite_dir.name}.test{target.exe_suffix}"
        else:
            emitted = output_file
            if target.is_windows and emitted.suffix != ".exe":
                emitted = emitted.with_name(emitted.name + ".exe")
            cmd += ["-o", str(emitted)]

        # A leftover from an earlier run must not pass for this build's output.
        if emitted.exists():
            emitted.unlink()

        code, stdout, stderr, duration = self._run(cmd, cwd=suite_dir, target=target)
        produced = emitted if code == 0 and emitted.exists() else None
        return ToolResult(cmd, code, stdout, stderr, duration, output_path=produced)

    def list_tests(self, test_binary: Path, cwd: Path) -> ToolResult:
        """Run a host test binary in "list, don't run" mode."""
        cmd = [str(test_binary), "-test.list", ".*"]
        code, stdout, stderr, duration = self._run(cmd, cwd=cwd)
        return ToolResult(cmd, code, stdout, stderr, duration)


def host_identity() -> Tuple[str, str]:
    """(os, arch) of the machine running the pipeline."""
    return platform.system().lower(), platform.machine().lower()
