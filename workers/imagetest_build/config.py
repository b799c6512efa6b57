"""
Pipeline configuration
"""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple

from pydantic_settings import BaseSettings


DEFAULT_PATTERN = "*"


class ConfigurationError(ValueError):
    """Raised for unusable inputs: missing suite root, unwritable output, ..."""


class Settings(BaseSettings):
    """Pipeline settings, overridable by the CLI flags."""

    # Toolchain
    GO_BINARY: str = "go"
    BUILD_TAG: str = "cit"

    # Inputs / outputs
    OUTPUT_PATH: str = "."
    SUITE_PATTERN: str = "*"
    SUITE_ROOT: str = "."
    RECEIPT_PATH: Optional[str] = None

    # Logging
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"


def split_patterns(raw: str) -> List[str]:
    """Space-separated glob patterns; empty input selects everything."""
    patterns = raw.split()
    return patterns or [DEFAULT_PATTERN]


@dataclass(frozen=True)
class PipelineConfig:
    """Fully resolved inputs of one run; every path is absolute."""
    output_path: Path
    suite_root: Path
    suite_patterns: Tuple[str, ...]
    build_tag: str = "cit"
    receipt_path: Optional[Path] = None


def resolve_config(
    settings: Settings,
    output_path: Optional[str] = None,
    suite_pattern: Optional[str] = None,
    suite_root: Optional[str] = None,
    receipt_path: Optional[str] = None,
    cwd: Optional[Path] = None,
) -> PipelineConfig:
    """
    Merge CLI values over *settings* and anchor relative paths at *cwd*.

    Relative paths are resolved once, against the directory the pipeline
    was started from, so artifacts land in the same place no matter which
    directory a build step runs in.
    """
    base = cwd or Path.cwd()

    def _abs(raw: str) -> Path:
        p = Path(raw).expanduser()
        return (p if p.is_absolute() else base / p).resolve()

    receipt = receipt_path if receipt_path is not None else settings.RECEIPT_PATH
    return PipelineConfig(
        output_path=_abs(output_path if output_path is not None else settings.OUTPUT_PATH),
        suite_root=_abs(suite_root if suite_root is not None else settings.SUITE_ROOT),
        suite_patterns=tuple(split_patterns(
            suite_pattern if suite_pattern is not None else settings.SUITE_PATTERN
        )),
        build_tag=settings.BUILD_TAG,
        receipt_path=_abs(receipt) if receipt else None,
    )
