"""
Profile — what gets built, for which targets, and which failures are fatal.

The profile encapsulates every policy knob so that the builders contain
no opinions.  Adding a target or relaxing a failure rule is a profile
change, not a code change.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

from imagetest_build import PROFILE_ID
from imagetest_build.policy.platforms import (
    HOST_AMD64,
    HOST_ARM64,
    WINDOWS_386,
    WINDOWS_AMD64,
    PlatformTarget,
    helper_artifact_name,
)


@dataclass(frozen=True)
class HelperBinary:
    """A helper program compiled once per run for a fixed set of targets."""
    name: str
    source_entrypoint: str    # relative to the suite root
    targets: Tuple[PlatformTarget, ...]


@dataclass(frozen=True)
class HelperStep:
    """One (helper, target) build, in run order."""
    helper: HelperBinary
    target: PlatformTarget
    fatal: bool = True

    @property
    def artifact_name(self) -> str:
        return helper_artifact_name(self.helper.name, self.target)


@dataclass(frozen=True)
class SuiteTargetRule:
    """How one platform of the suite matrix is built and judged."""
    target: PlatformTarget
    artifact_required: bool   # absence of an emitted binary is fatal
    extract_manifest: bool = False


WRAPPER = HelperBinary(
    name="wrapper",
    source_entrypoint="cmd/wrapper/main.go",
    targets=(HOST_AMD64, HOST_ARM64, WINDOWS_AMD64, WINDOWS_386),
)

MANAGER = HelperBinary(
    name="manager",
    source_entrypoint="cmd/manager/main.go",
    targets=(HOST_AMD64,),
)


@dataclass(frozen=True)
class BuildProfile:
    """Describes the full build matrix of one pipeline run."""

    profile_id: str
    helper_steps: Tuple[HelperStep, ...]
    suite_rules: Tuple[SuiteTargetRule, ...]
    build_tag: str = "cit"
    suites_dirname: str = "test_suites"

    @classmethod
    def v0(cls, build_tag: str = "cit") -> "BuildProfile":
        """
        The locked v0 profile.

        Helpers are built in declaration order, each for its own targets.
        The first wrapper build is the only non-fatal step: its failure is
        reported and the run continues.  Every later helper build aborts.
        """
        steps = [
            HelperStep(helper, target)
            for helper in (WRAPPER, MANAGER)
            for target in helper.targets
        ]
        steps[0] = HelperStep(steps[0].helper, steps[0].target, fatal=False)
        return cls(
            profile_id=PROFILE_ID,
            helper_steps=tuple(steps),
            suite_rules=(
                SuiteTargetRule(HOST_AMD64, artifact_required=True, extract_manifest=True),
                SuiteTargetRule(HOST_ARM64, artifact_required=True),
                SuiteTargetRule(WINDOWS_AMD64, artifact_required=False),
                SuiteTargetRule(WINDOWS_386, artifact_required=False),
            ),
            build_tag=build_tag,
        )
