"""
Suite Builder — one test suite across the full platform matrix.

For every rule of the profile's suite matrix, in order:

    compile (go test -c -tags cit)
      → [list tests → <suite>_tests.txt]   native/amd64 only
      → relocate → <output_dir>/<artifact name>

The manifest comes from the first native build only: the set of tests is
the same for every platform.  The builder stops at the first FATAL step
and hands the SuiteRecord back; whether that ends the run is the
runner's call.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional, Tuple

from imagetest_build.core.elf_meta import check_target
from imagetest_build.core.suites import Suite
from imagetest_build.core.toolchain import GoToolchain, ToolResult
from imagetest_build.io.schema import (
    BuildFlag,
    ManifestMeta,
    StepRecord,
    StepStatus,
    SuiteRecord,
    SuiteStatus,
)
from imagetest_build.io.writer import describe_artifact, relocate_artifact, write_manifest
from imagetest_build.policy.platforms import (
    ArtifactKind,
    PlatformTarget,
    manifest_name,
    suite_artifact_name,
)
from imagetest_build.policy.profile import BuildProfile, SuiteTargetRule
from imagetest_build.policy.verdict import Verdict, judge_listing, judge_suite_compile

logger = logging.getLogger(__name__)


def _record(
    step: str,
    subject: str,
    target: Optional[PlatformTarget],
    result: ToolResult,
    verdict: Verdict,
    flags: List[BuildFlag],
) -> StepRecord:
    """Turn a toolchain result and its verdict into a receipt step."""
    return StepRecord(
        step=step,
        subject=subject,
        target=target.label if target is not None else None,
        command=result.command_str,
        exit_code=result.exit_code,
        duration_ms=result.duration_ms,
        status=StepStatus.FAILED if verdict == Verdict.FATAL else StepStatus.SUCCESS,
        flags=flags,
        diagnostics=result.diagnostics if verdict != Verdict.OK else None,
    )


class SuiteBuilder:
    """Builds suites into a flat output directory following a BuildProfile."""

    def __init__(self, toolchain: GoToolchain, profile: BuildProfile, output_dir: Path):
        self.toolchain = toolchain
        self.profile = profile
        self.output_dir = output_dir

    # -----------------------------------------------------------------
    # Steps
    # -----------------------------------------------------------------

    def _compile(self, suite: Suite, rule: SuiteTargetRule) -> Tuple[StepRecord, Verdict, Optional[Path]]:
        result = self.toolchain.compile_test_binary(
            suite.source_path, rule.target, self.profile.build_tag,
        )
        verdict, flags = judge_suite_compile(rule, result)
        record = _record("compile", suite.name, rule.target, result, verdict, flags)

        if verdict == Verdict.FATAL:
            logger.error(
                "Compiling %s for %s failed:\n%s",
                suite.name, rule.target.label, result.diagnostics,
            )
        elif verdict == Verdict.TOLERATED:
            logger.info(
                "No %s test binary emitted for %s; skipping",
                rule.target.label, suite.name,
            )
        return record, verdict, result.output_path

    def _extract_manifest(self, suite: Suite, binary: Path) -> Tuple[StepRecord, Verdict, Optional[ManifestMeta]]:
        result = self.toolchain.list_tests(binary, cwd=suite.source_path)
        verdict, flags = judge_listing(result)
        record = _record("list", suite.name, None, result, verdict, flags)
        if verdict == Verdict.FATAL:
            logger.error("Listing tests of %s failed:\n%s", suite.name, result.diagnostics)
            return record, verdict, None

        dest = self.output_dir / manifest_name(suite.name)
        try:
            manifest = write_manifest(result.stdout, dest)
        except OSError as e:
            logger.error(f"Writing manifest {dest} failed: {e}")
            record.status = StepStatus.FAILED
            record.diagnostics = str(e)
            return record, Verdict.FATAL, None

        logger.info(f"Wrote {dest.name} ({manifest.test_count} tests)")
        return record, verdict, manifest

    def _relocate(self, suite: Suite, target: PlatformTarget, binary: Path) -> Tuple[StepRecord, Verdict]:
        dest = self.output_dir / suite_artifact_name(suite.name, target)
        record = StepRecord(
            step="relocate",
            subject=suite.name,
            target=target.label,
            command=f"mv {binary} {dest}",
        )
        try:
            relocate_artifact(binary, dest)
        except OSError as e:
            logger.error(f"Moving {binary} to {dest} failed: {e}")
            record.status = StepStatus.FAILED
            record.exit_code = -1
            record.flags = [BuildFlag.RELOCATE_FAILED]
            record.diagnostics = str(e)
            return record, Verdict.FATAL

        record.artifact = describe_artifact(dest, ArtifactKind.SUITE, target)
        record.flags = check_target(record.artifact.elf, target)
        for flag in record.flags:
            logger.warning(f"{dest.name}: {flag.value}")
        return record, Verdict.OK

    # -----------------------------------------------------------------
    # Build one suite
    # -----------------------------------------------------------------

    def build(self, suite: Suite) -> SuiteRecord:
        """Run every step for *suite*; stop at the first fatal one."""
        record = SuiteRecord(name=suite.name, source_path=str(suite.source_path))

        for rule in self.profile.suite_rules:
            logger.info(f"Building {suite.name} for {rule.target.label}")

            step, verdict, binary = self._compile(suite, rule)
            record.steps.append(step)
            if verdict == Verdict.FATAL:
                return record
            if binary is None:
                continue

            if rule.extract_manifest:
                step, verdict, manifest = self._extract_manifest(suite, binary)
                record.steps.append(step)
                if verdict == Verdict.FATAL:
                    return record
                record.manifest = manifest

            step, verdict = self._relocate(suite, rule.target, binary)
            record.steps.append(step)
            if verdict == Verdict.FATAL:
                return record

        record.status = SuiteStatus.SUCCESS
        return record
