"""
BuildReceipt Schema — imagetest_build

Single JSON receipt per pipeline run.  Records exactly what was built,
for which target, with what outcome, and where the run stopped.

Runtime contract fields (present in every receipt):
  package_name, schema_version, profile_id.
"""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from imagetest_build import PACKAGE_NAME, PROFILE_ID, SCHEMA_VERSION, __version__


# =============================================================================
# Enums
# =============================================================================

class StepStatus(str, Enum):
    """Status of a single step (build/compile/list/relocate)."""
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class SuiteStatus(str, Enum):
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class RunStatus(str, Enum):
    BUILDING = "BUILDING"
    SUCCESS = "SUCCESS"
    ABORTED = "ABORTED"


class BuildFlag(str, Enum):
    """Flags raised per step."""
    BUILD_FAILED = "BUILD_FAILED"
    FAILURE_TOLERATED = "FAILURE_TOLERATED"
    NO_ARTIFACT = "NO_ARTIFACT"
    NO_ARTIFACT_TOLERATED = "NO_ARTIFACT_TOLERATED"
    LIST_FAILED = "LIST_FAILED"
    EMPTY_MANIFEST = "EMPTY_MANIFEST"
    RELOCATE_FAILED = "RELOCATE_FAILED"
    NON_ELF_OUTPUT = "NON_ELF_OUTPUT"
    ARCH_MISMATCH = "ARCH_MISMATCH"


class AbortStage(str, Enum):
    CONFIG = "config"
    HELPERS = "helpers"
    SUITES = "suites"
    RECEIPT = "receipt"


# =============================================================================
# Artifacts
# =============================================================================

class ElfMeta(BaseModel):
    """Minimal ELF header facts read with pyelftools."""
    elf_type: str = ""    # ET_EXEC, ET_DYN, ...
    machine: str = ""     # EM_X86_64, EM_AARCH64, ...
    elf_class: int = 0    # 32 or 64


class ArtifactMeta(BaseModel):
    """Metadata for a file placed in the output directory."""
    name: str
    kind: str
    target: Optional[str] = None  # "native/amd64"; None for manifests
    sha256: str
    size_bytes: int
    elf: Optional[ElfMeta] = None


class ManifestMeta(BaseModel):
    """The suite's test-name listing."""
    name: str
    test_count: int
    sha256: str


# =============================================================================
# Steps
# =============================================================================

class StepRecord(BaseModel):
    """
    One toolchain invocation or file operation.

    ``diagnostics`` carries the toolchain's stderr (or stdout when stderr
    is empty) verbatim for failed steps.
    """
    step: str                      # build | compile | list | relocate
    subject: str                   # helper or suite name
    target: Optional[str] = None
    command: str = ""
    exit_code: int = 0
    duration_ms: int = 0
    status: StepStatus = StepStatus.SUCCESS
    flags: List[BuildFlag] = Field(default_factory=list)
    diagnostics: Optional[str] = None
    artifact: Optional[ArtifactMeta] = None


class SuiteRecord(BaseModel):
    """Everything that happened while building one suite."""
    name: str
    source_path: str
    status: SuiteStatus = SuiteStatus.FAILED
    steps: List[StepRecord] = Field(default_factory=list)
    manifest: Optional[ManifestMeta] = None

    @property
    def failed_step(self) -> Optional[StepRecord]:
        for step in self.steps:
            if step.status == StepStatus.FAILED:
                return step
        return None


# =============================================================================
# Top-level BuildReceipt
# =============================================================================

class BuilderInfo(BaseModel):
    package_name: str = PACKAGE_NAME
    version: str = __version__
    schema_version: str = SCHEMA_VERSION
    profile_id: str = PROFILE_ID


class ToolchainIdentity(BaseModel):
    """Record of the build environment."""
    go_binary: str
    go_version: str
    host_os: str
    host_arch: str
    cgo_enabled: bool = False


class RequestedBuild(BaseModel):
    """What was asked for on the command line / in settings."""
    output_path: str
    suite_root: str
    suite_patterns: List[str]
    build_tag: str


class AbortInfo(BaseModel):
    """Where and why the run stopped."""
    stage: AbortStage
    reason: str
    subject: Optional[str] = None
    target: Optional[str] = None


class JobInfo(BaseModel):
    created_at: str
    finished_at: Optional[str] = None
    status: RunStatus = RunStatus.BUILDING


class BuildReceipt(BaseModel):
    """
    Single receipt for one pipeline run.

    Written even after an abort, so the set of artifacts produced before
    the failure can be read back without listing the output directory.
    """
    builder: BuilderInfo = BuilderInfo()
    job: JobInfo
    toolchain: Optional[ToolchainIdentity] = None
    requested: RequestedBuild
    module_download: Optional[StepRecord] = None
    helpers: List[StepRecord] = Field(default_factory=list)
    selected_suites: List[str] = Field(default_factory=list)
    suites: List[SuiteRecord] = Field(default_factory=list)
    abort: Optional[AbortInfo] = None

    def compute_status(self) -> RunStatus:
        """Derive run status: any abort wins."""
        if self.abort is not None:
            return RunStatus.ABORTED
        return RunStatus.SUCCESS

    def artifact_names(self) -> List[str]:
        """Names of every artifact this run placed in the output directory."""
        names: List[str] = []
        for step in self.helpers:
            if step.artifact is not None:
                names.append(step.artifact.name)
        for suite in self.suites:
            if suite.manifest is not None:
                names.append(suite.manifest.name)
            for step in suite.steps:
                if step.step == "relocate" and step.artifact is not None:
                    names.append(step.artifact.name)
        return names


# =============================================================================
# Helpers
# =============================================================================

def now_iso() -> str:
    """Current UTC time as ISO 8601 string."""
    return datetime.now(timezone.utc).isoformat()
