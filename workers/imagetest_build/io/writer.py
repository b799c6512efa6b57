"""
Writer — everything that lands in the output directory.

Output layout is flat:
    <output_dir>/<artifact name>      (see policy.platforms for names)

Text files are written to a temporary sibling and renamed into place, and
binaries are moved into place, so an interrupted run never leaves a
half-rewritten copy of an earlier artifact.
"""
from __future__ import annotations

import errno
import hashlib
import json
import os
import shutil
import tempfile
from pathlib import Path
from typing import Optional

from imagetest_build.core.elf_meta import read_elf_meta
from imagetest_build.io.schema import ArtifactMeta, BuildReceipt, ManifestMeta
from imagetest_build.policy.platforms import ArtifactKind, PlatformTarget


def hash_file(path: Path) -> str:
    """SHA-256 of a file."""
    h = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(8192), b""):
            h.update(chunk)
    return h.hexdigest()


def _atomic_write_text(dest: Path, content: str) -> None:
    dest.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=str(dest.parent), prefix=f".{dest.name}.", suffix=".tmp")
    try:
        # newline="" keeps the toolchain's line endings byte for byte.
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
            f.write(content)
        os.replace(tmp, dest)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise


def write_manifest(listing: str, dest: Path) -> ManifestMeta:
    """Write a suite's test listing verbatim and describe it."""
    _atomic_write_text(dest, listing)
    return ManifestMeta(
        name=dest.name,
        test_count=len([line for line in listing.splitlines() if line.strip()]),
        sha256=hash_file(dest),
    )


def relocate_artifact(src: Path, dest: Path) -> Path:
    """Move a freshly built binary into the output directory, replacing any old copy."""
    dest.parent.mkdir(parents=True, exist_ok=True)
    try:
        os.replace(src, dest)
    except OSError as e:
        if e.errno != errno.EXDEV:
            raise
        # Cross-device: fall back to copy + delete.
        dest.unlink(missing_ok=True)
        shutil.move(str(src), str(dest))
    return dest


def describe_artifact(
    path: Path,
    kind: ArtifactKind,
    target: Optional[PlatformTarget],
) -> ArtifactMeta:
    """Hash, size and (for host targets) ELF header facts of an artifact."""
    elf = None
    if target is not None and not target.is_windows:
        elf = read_elf_meta(path)
    return ArtifactMeta(
        name=path.name,
        kind=kind.value,
        target=target.label if target is not None else None,
        sha256=hash_file(path),
        size_bytes=path.stat().st_size,
        elf=elf,
    )


def write_receipt(receipt: BuildReceipt, dest: Path) -> Path:
    """Write the build receipt as sorted, indented JSON."""
    _atomic_write_text(
        dest,
        json.dumps(receipt.model_dump(mode="json"), indent=2, sort_keys=True) + "\n",
    )
    return dest
