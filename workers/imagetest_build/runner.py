"""
Pipeline runner — top-level orchestration: suite root → output directory.

This module ties configuration, the helper builds, suite discovery and the
Suite Builder together into a single ``run_pipeline`` function that can be
called from the CLI or programmatically.  Failures come back as values on
the receipt; only ``main`` turns them into an exit status.
"""
from __future__ import annotations

import argparse
import logging
import sys
from typing import Optional, Sequence, Tuple

from imagetest_build.config import (
    ConfigurationError,
    PipelineConfig,
    Settings,
    resolve_config,
)
from imagetest_build.core.elf_meta import check_target
from imagetest_build.core.suite_builder import SuiteBuilder
from imagetest_build.core.suites import discover_suites
from imagetest_build.core.toolchain import BuildEnv, GoToolchain, host_identity
from imagetest_build.io.schema import (
    AbortInfo,
    AbortStage,
    BuildFlag,
    BuildReceipt,
    JobInfo,
    RequestedBuild,
    StepRecord,
    StepStatus,
    SuiteStatus,
    ToolchainIdentity,
    now_iso,
)
from imagetest_build.io.writer import describe_artifact, write_receipt
from imagetest_build.policy.platforms import ArtifactKind
from imagetest_build.policy.profile import BuildProfile, HelperStep
from imagetest_build.policy.verdict import Verdict, judge_helper_build

logger = logging.getLogger(__name__)


# ── Steps ────────────────────────────────────────────────────────────────────

def _check_inputs(config: PipelineConfig) -> None:
    """Fail early on a suite root that cannot hold a build, or an unusable output path."""
    if not config.suite_root.is_dir():
        raise ConfigurationError(f"suite root is not a directory: {config.suite_root}")
    try:
        config.output_path.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise ConfigurationError(f"cannot create output path {config.output_path}: {e}") from e


def _download_modules(toolchain: GoToolchain, config: PipelineConfig) -> StepRecord:
    result = toolchain.download_modules(config.suite_root)
    record = StepRecord(
        step="download",
        subject="modules",
        command=result.command_str,
        exit_code=result.exit_code,
        duration_ms=result.duration_ms,
    )
    if not result.ok:
        # Builds that actually need a missing module will fail on their own.
        logger.warning("go mod download failed (continuing):\n%s", result.diagnostics)
        record.status = StepStatus.FAILED
        record.flags = [BuildFlag.FAILURE_TOLERATED]
        record.diagnostics = result.diagnostics
    return record


def _build_helper(
    toolchain: GoToolchain,
    step: HelperStep,
    config: PipelineConfig,
) -> Tuple[StepRecord, Verdict]:
    output_file = config.output_path / step.artifact_name
    logger.info(f"Building {step.artifact_name} ({step.helper.name} for {step.target.label})")

    result = toolchain.build(
        f"./{step.helper.source_entrypoint}",
        step.target,
        output_file,
        cwd=config.suite_root,
    )
    verdict, flags = judge_helper_build(step, result)
    record = StepRecord(
        step="build",
        subject=step.helper.name,
        target=step.target.label,
        command=result.command_str,
        exit_code=result.exit_code,
        duration_ms=result.duration_ms,
        status=StepStatus.FAILED if verdict != Verdict.OK else StepStatus.SUCCESS,
        flags=flags,
    )

    if verdict == Verdict.OK:
        record.artifact = describe_artifact(output_file, ArtifactKind(step.helper.name), step.target)
        record.flags = check_target(record.artifact.elf, step.target)
    else:
        record.diagnostics = result.diagnostics
        log = logger.warning if verdict == Verdict.TOLERATED else logger.error
        log(
            "Building %s failed%s:\n%s",
            step.artifact_name,
            " (tolerated, continuing)" if verdict == Verdict.TOLERATED else "",
            result.diagnostics,
        )
    return record, verdict


def _abort(receipt: BuildReceipt, info: AbortInfo) -> BuildReceipt:
    receipt.abort = info
    logger.error(
        "Build aborted during %s%s: %s",
        info.stage.value,
        f" ({info.subject}{' ' + info.target if info.target else ''})" if info.subject else "",
        info.reason,
    )
    return receipt


# ── Pipeline ─────────────────────────────────────────────────────────────────

def run_pipeline(
    config: PipelineConfig,
    toolchain: Optional[GoToolchain] = None,
    profile: Optional[BuildProfile] = None,
) -> BuildReceipt:
    """
    Build helpers and suites into ``config.output_path``.

    Parameters
    ----------
    config : PipelineConfig
        Resolved inputs (absolute paths, split suite patterns).
    toolchain : GoToolchain, optional
        Compiler invoker.  Defaults to ``go`` on PATH with cgo disabled.
    profile : BuildProfile, optional
        Build matrix and failure policy.  Defaults to BuildProfile.v0().

    Returns
    -------
    BuildReceipt
        ``job.status`` is SUCCESS, or ABORTED with ``abort`` describing the
        first fatal failure.  Artifacts written before an abort stay on disk.
        A receipt that cannot be written aborts an otherwise successful run
        at stage RECEIPT.
    """
    if profile is None:
        profile = BuildProfile.v0(build_tag=config.build_tag)
    if toolchain is None:
        toolchain = GoToolchain(build_env=BuildEnv(cgo_enabled=False))

    receipt = BuildReceipt(
        job=JobInfo(created_at=now_iso()),
        requested=RequestedBuild(
            output_path=str(config.output_path),
            suite_root=str(config.suite_root),
            suite_patterns=list(config.suite_patterns),
            build_tag=profile.build_tag,
        ),
    )
    _run(config, toolchain, profile, receipt)

    receipt.job.finished_at = now_iso()
    receipt.job.status = receipt.compute_status()
    if config.receipt_path is not None:
        try:
            write_receipt(receipt, config.receipt_path)
        except OSError as e:
            reason = f"cannot write receipt {config.receipt_path}: {e}"
            if receipt.abort is None:
                _abort(receipt, AbortInfo(stage=AbortStage.RECEIPT, reason=reason))
                receipt.job.status = receipt.compute_status()
            else:
                logger.error(reason)
        else:
            logger.info(f"Receipt saved: {config.receipt_path}")
    return receipt


def _run(
    config: PipelineConfig,
    toolchain: GoToolchain,
    profile: BuildProfile,
    receipt: BuildReceipt,
) -> BuildReceipt:
    logger.info(f"outspath is {config.output_path}")
    logger.info(f"suites being built are {' '.join(config.suite_patterns)}")
    logger.info(f"imagetestroot is {config.suite_root}")

    # 1. Inputs
    try:
        _check_inputs(config)
    except ConfigurationError as e:
        return _abort(receipt, AbortInfo(stage=AbortStage.CONFIG, reason=str(e)))

    host_os, host_arch = host_identity()
    receipt.toolchain = ToolchainIdentity(
        go_binary=toolchain.go_binary,
        go_version=toolchain.version(),
        host_os=host_os,
        host_arch=host_arch,
        cgo_enabled=toolchain.build_env.cgo_enabled,
    )

    # 2. Dependencies
    receipt.module_download = _download_modules(toolchain, config)

    # 3. Helper binaries
    for step in profile.helper_steps:
        record, verdict = _build_helper(toolchain, step, config)
        receipt.helpers.append(record)
        if verdict == Verdict.FATAL:
            return _abort(receipt, AbortInfo(
                stage=AbortStage.HELPERS,
                subject=step.helper.name,
                target=step.target.label,
                reason=record.diagnostics or "build failed",
            ))

    # 4. Suite selection
    suites_dir = config.suite_root / profile.suites_dirname
    try:
        suites = discover_suites(suites_dir, config.suite_patterns)
    except ConfigurationError as e:
        return _abort(receipt, AbortInfo(stage=AbortStage.CONFIG, reason=str(e)))
    receipt.selected_suites = [s.name for s in suites]

    # 5. Suites, fail-fast
    builder = SuiteBuilder(toolchain, profile, config.output_path)
    for suite in suites:
        logger.info(f"building suite {suite.name}")
        suite_record = builder.build(suite)
        receipt.suites.append(suite_record)
        if suite_record.status != SuiteStatus.SUCCESS:
            failed = suite_record.failed_step
            return _abort(receipt, AbortInfo(
                stage=AbortStage.SUITES,
                subject=suite.name,
                target=failed.target if failed else None,
                reason=(failed.diagnostics if failed and failed.diagnostics else "suite build failed"),
            ))

    logger.info(
        f"Build finished: {len(receipt.helpers)} helper builds, "
        f"{len(receipt.suites)} suites, {len(receipt.artifact_names())} artifacts"
    )
    return receipt


# ── CLI ──────────────────────────────────────────────────────────────────────

def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="imagetest-build",
        description="Build image test helpers and suites for every target platform",
    )
    parser.add_argument("-o", dest="output_path", default=None,
                        help="output path of the built artifacts (default: .)")
    parser.add_argument("-s", dest="suite_pattern", default=None,
                        help="suites to build, space separated globs (default: all)")
    parser.add_argument("-i", dest="suite_root", default=None,
                        help="imagetest root containing cmd/ and test_suites/ (default: .)")
    parser.add_argument("-r", "--receipt", dest="receipt_path", default=None,
                        help="write a JSON build receipt to this path")
    parser.add_argument("-v", "--verbose", action="store_true",
                        help="enable verbose logging")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    """CLI entry point for imagetest_build.  Returns the process exit status."""
    args, unknown = _parser().parse_known_args(argv)
    settings = Settings()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else settings.LOG_LEVEL.upper(),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    )
    for arg in unknown:
        logger.warning(f"unknown arg {arg}")

    config = resolve_config(
        settings,
        output_path=args.output_path,
        suite_pattern=args.suite_pattern,
        suite_root=args.suite_root,
        receipt_path=args.receipt_path,
    )
    toolchain = GoToolchain(go_binary=settings.GO_BINARY, build_env=BuildEnv(cgo_enabled=False))
    receipt = run_pipeline(config, toolchain=toolchain)

    if receipt.abort is not None:
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
