"""
Platforms — the fixed (OS, architecture) matrix and the artifact naming scheme.

Every artifact name encodes its kind, OS and architecture so that a
consumer can recover the triple from the filename alone:

    kind      native/amd64     native/arm64     windows/amd64   windows/386
    wrapper   wrapper.amd64    wrapper.arm64    wrapp64.exe     wrapp32.exe
    manager   manager          -                -               -
    suite     <s>.amd64.test   <s>.arm64.test   <s>64.exe       <s>32.exe
    manifest  <s>_tests.txt
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum, unique
from typing import Dict, Optional, Tuple


@unique
class TargetOS(str, Enum):
    """Target operating system. NATIVE leaves GOOS to the build host."""
    NATIVE = "native"
    WINDOWS = "windows"


@unique
class TargetArch(str, Enum):
    """Target architecture, spelled the way GOARCH expects it."""
    AMD64 = "amd64"
    ARM64 = "arm64"
    X86 = "386"


@unique
class ArtifactKind(str, Enum):
    WRAPPER = "wrapper"
    MANAGER = "manager"
    SUITE = "suite"
    MANIFEST = "manifest"


# Cross-compilation modes the Go toolchain is driven in.
SUPPORTED_TARGETS = frozenset({
    (TargetOS.NATIVE, TargetArch.AMD64),
    (TargetOS.NATIVE, TargetArch.ARM64),
    (TargetOS.WINDOWS, TargetArch.AMD64),
    (TargetOS.WINDOWS, TargetArch.X86),
})


@dataclass(frozen=True)
class PlatformTarget:
    os: TargetOS
    arch: TargetArch

    def __post_init__(self):
        if (self.os, self.arch) not in SUPPORTED_TARGETS:
            raise ValueError(
                f"unsupported platform target: {self.os.value}/{self.arch.value}"
            )

    @property
    def is_windows(self) -> bool:
        return self.os == TargetOS.WINDOWS

    @property
    def exe_suffix(self) -> str:
        """Suffix the toolchain appends to executables for this target."""
        return ".exe" if self.is_windows else ""

    @property
    def label(self) -> str:
        return f"{self.os.value}/{self.arch.value}"

    def go_env(self) -> Dict[str, str]:
        """GOOS/GOARCH for a single toolchain invocation."""
        env = {"GOARCH": self.arch.value}
        if self.is_windows:
            env["GOOS"] = "windows"
        return env


HOST_AMD64 = PlatformTarget(TargetOS.NATIVE, TargetArch.AMD64)
HOST_ARM64 = PlatformTarget(TargetOS.NATIVE, TargetArch.ARM64)
WINDOWS_AMD64 = PlatformTarget(TargetOS.WINDOWS, TargetArch.AMD64)
WINDOWS_386 = PlatformTarget(TargetOS.WINDOWS, TargetArch.X86)

# Build order within a suite.
PLATFORM_MATRIX: Tuple[PlatformTarget, ...] = (
    HOST_AMD64,
    HOST_ARM64,
    WINDOWS_AMD64,
    WINDOWS_386,
)


def parse_target(label: str) -> PlatformTarget:
    """Inverse of ``PlatformTarget.label``."""
    os_part, _, arch_part = label.partition("/")
    return PlatformTarget(TargetOS(os_part), TargetArch(arch_part))


# ── Naming ───────────────────────────────────────────────────────────────────

_WINDOWS_BITS = {TargetArch.AMD64: "64", TargetArch.X86: "32"}

_HELPER_NAMES: Dict[Tuple[str, PlatformTarget], str] = {
    ("wrapper", HOST_AMD64): "wrapper.amd64",
    ("wrapper", HOST_ARM64): "wrapper.arm64",
    ("wrapper", WINDOWS_AMD64): "wrapp64.exe",
    ("wrapper", WINDOWS_386): "wrapp32.exe",
    ("manager", HOST_AMD64): "manager",
}

# Suite names whose artifacts would shadow a helper artifact.
RESERVED_SUITE_NAMES = frozenset({"wrapp"})


def helper_artifact_name(helper: str, target: PlatformTarget) -> str:
    try:
        return _HELPER_NAMES[(helper, target)]
    except KeyError:
        raise ValueError(f"no artifact name for {helper} on {target.label}") from None


def suite_artifact_name(suite: str, target: PlatformTarget) -> str:
    if target.is_windows:
        return f"{suite}{_WINDOWS_BITS[target.arch]}.exe"
    return f"{suite}.{target.arch.value}.test"


def manifest_name(suite: str) -> str:
    return f"{suite}_tests.txt"


@dataclass(frozen=True)
class ArtifactName:
    """A filename decoded back into its (kind, os, arch) triple."""
    kind: ArtifactKind
    target: Optional[PlatformTarget]  # None for manifests
    suite: Optional[str] = None


_SUITE_NATIVE_RE = re.compile(r"^(?P<suite>.+)\.(?P<arch>amd64|arm64)\.test$")
_SUITE_WINDOWS_RE = re.compile(r"^(?P<suite>.+)(?P<bits>64|32)\.exe$")
_MANIFEST_RE = re.compile(r"^(?P<suite>.+)_tests\.txt$")


def parse_artifact_name(filename: str) -> Optional[ArtifactName]:
    """
    Recover (kind, os, arch) from an artifact filename.

    Returns None for names the pipeline never produces.
    """
    for (helper, target), name in _HELPER_NAMES.items():
        if filename == name:
            return ArtifactName(kind=ArtifactKind(helper), target=target)

    m = _MANIFEST_RE.match(filename)
    if m:
        return ArtifactName(kind=ArtifactKind.MANIFEST, target=None, suite=m.group("suite"))

    m = _SUITE_NATIVE_RE.match(filename)
    if m:
        target = PlatformTarget(TargetOS.NATIVE, TargetArch(m.group("arch")))
        return ArtifactName(kind=ArtifactKind.SUITE, target=target, suite=m.group("suite"))

    m = _SUITE_WINDOWS_RE.match(filename)
    if m:
        arch = TargetArch.AMD64 if m.group("bits") == "64" else TargetArch.X86
        target = PlatformTarget(TargetOS.WINDOWS, arch)
        return ArtifactName(kind=ArtifactKind.SUITE, target=target, suite=m.group("suite"))

    return None
