"""
ELF header facts for produced host binaries.

Header-only: no sections beyond what ``ELFFile`` parses on open.
Windows (PE) outputs are never passed here.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional

from elftools.common.exceptions import ELFError
from elftools.elf.elffile import ELFFile

from imagetest_build.io.schema import BuildFlag, ElfMeta
from imagetest_build.policy.platforms import PlatformTarget, TargetArch

logger = logging.getLogger(__name__)

EXPECTED_MACHINE = {
    TargetArch.AMD64: "EM_X86_64",
    TargetArch.ARM64: "EM_AARCH64",
    TargetArch.X86: "EM_386",
}


def read_elf_meta(path: Path) -> Optional[ElfMeta]:
    """Return header metadata, or None if *path* is not an ELF file."""
    try:
        with open(path, "rb") as f:
            elf = ELFFile(f)
            return ElfMeta(
                elf_type=elf.header["e_type"],
                machine=elf.header["e_machine"],
                elf_class=elf.elfclass,
            )
    except ELFError as e:
        logger.debug(f"Not an ELF file {path}: {e}")
        return None


def check_target(meta: Optional[ElfMeta], target: PlatformTarget) -> List[BuildFlag]:
    """Informational flags comparing an artifact's header to its target."""
    if target.is_windows:
        return []
    if meta is None:
        return [BuildFlag.NON_ELF_OUTPUT]
    if meta.machine != EXPECTED_MACHINE[target.arch]:
        return [BuildFlag.ARCH_MISMATCH]
    return []
