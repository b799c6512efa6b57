"""
Verdict — OK / TOLERATED / FATAL decisions for every pipeline step.

Three judges:
  1. judge_helper_build   — helper binary builds (per HelperStep.fatal)
  2. judge_suite_compile  — suite test-binary compiles (per SuiteTargetRule)
  3. judge_listing        — the manifest "list, don't run" invocation

Judges never abort anything; the runner acts on FATAL.
"""
from __future__ import annotations

from enum import Enum, unique
from typing import List, Tuple

from imagetest_build.core.toolchain import ToolResult
from imagetest_build.io.schema import BuildFlag
from imagetest_build.policy.profile import HelperStep, SuiteTargetRule


@unique
class Verdict(str, Enum):
    OK = "OK"
    TOLERATED = "TOLERATED"
    FATAL = "FATAL"


def judge_helper_build(step: HelperStep, result: ToolResult) -> Tuple[Verdict, List[BuildFlag]]:
    """A helper build must exit cleanly and leave its output file behind."""
    if result.ok and result.output_path is not None:
        return Verdict.OK, []

    flags = [BuildFlag.BUILD_FAILED] if not result.ok else [BuildFlag.NO_ARTIFACT]
    if not step.fatal:
        flags.append(BuildFlag.FAILURE_TOLERATED)
        return Verdict.TOLERATED, flags
    return Verdict.FATAL, flags


def judge_suite_compile(
    rule: SuiteTargetRule,
    result: ToolResult,
) -> Tuple[Verdict, List[BuildFlag]]:
    """
    A failed compile is always fatal.  A clean compile that emitted no
    binary is fatal only for targets whose artifact is required.
    """
    if not result.ok:
        return Verdict.FATAL, [BuildFlag.BUILD_FAILED]

    if result.output_path is None:
        if rule.artifact_required:
            return Verdict.FATAL, [BuildFlag.NO_ARTIFACT]
        return Verdict.TOLERATED, [BuildFlag.NO_ARTIFACT_TOLERATED]

    return Verdict.OK, []


def judge_listing(result: ToolResult) -> Tuple[Verdict, List[BuildFlag]]:
    """A suite with no listable tests cannot be scheduled later."""
    if not result.ok:
        return Verdict.FATAL, [BuildFlag.LIST_FAILED]
    if not result.stdout.strip():
        return Verdict.FATAL, [BuildFlag.EMPTY_MANIFEST]
    return Verdict.OK, []
