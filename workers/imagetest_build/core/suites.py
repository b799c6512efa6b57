"""
Suite discovery — immediate subdirectories of ``<suite_root>/test_suites``
selected by glob patterns.
"""
from __future__ import annotations

import fnmatch
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Sequence

from imagetest_build.config import ConfigurationError
from imagetest_build.policy.platforms import RESERVED_SUITE_NAMES

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Suite:
    """A compilable test package; only its directory matters here."""
    name: str
    source_path: Path


def _matches(name: str, pattern: str) -> bool:
    """Shell glob semantics: a leading dot must be matched explicitly."""
    if name.startswith(".") and not pattern.startswith("."):
        return False
    return fnmatch.fnmatchcase(name, pattern)


def discover_suites(suites_dir: Path, patterns: Sequence[str]) -> List[Suite]:
    """
    List suites under *suites_dir* whose name matches any of *patterns*.

    Non-directory entries are skipped, and so are hidden entries unless a
    pattern starts with a dot.  The result is sorted by name so
    builds are reproducible regardless of filesystem listing order.

    Raises ConfigurationError if *suites_dir* cannot be listed or a
    selected suite name is reserved.
    """
    try:
        entries = list(suites_dir.iterdir())
    except OSError as e:
        raise ConfigurationError(f"cannot list suites in {suites_dir}: {e}") from e

    selected: List[Suite] = []
    for entry in sorted(entries, key=lambda p: p.name):
        if not any(_matches(entry.name, pat) for pat in patterns):
            continue
        if not entry.is_dir():
            logger.debug("Skipping non-directory entry %s", entry.name)
            continue
        if entry.name in RESERVED_SUITE_NAMES:
            raise ConfigurationError(
                f"suite name {entry.name!r} is reserved: its artifacts would "
                f"overwrite helper binaries"
            )
        selected.append(Suite(name=entry.name, source_path=entry))

    unmatched = [
        pat for pat in patterns
        if not any(_matches(s.name, pat) for s in selected)
    ]
    for pat in unmatched:
        logger.warning("Suite pattern %r matched no suite directory", pat)

    return selected
