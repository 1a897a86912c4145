"""Manifest scanner: extracts the dependency-graph files from a source tree."""

from __future__ import annotations

import os
from pathlib import Path

from layerchef.errors import ScanError
from layerchef.models import ManifestFile, ScanResult

MANIFEST_NAME = "Cargo.toml"
LOCK_NAME = "Cargo.lock"

# Only captured at the source root.
ROOT_ONLY_FILES: tuple[str, ...] = (
    LOCK_NAME,
    "rust-toolchain",
    "rust-toolchain.toml",
    ".cargo/config.toml",
    ".cargo/config",
)

SKIPPED_DIRS = frozenset({"target"})


def scan_manifests(root: str | Path) -> ScanResult:
    """Return the sorted manifest/lock subset of the tree rooted at *root*."""
    source_root = Path(root)
    if not source_root.is_dir():
        raise ScanError(
            "Source root is not a directory.",
            context={"operation": "scan", "root": str(source_root)},
        )
    if not (source_root / MANIFEST_NAME).is_file():
        raise ScanError(
            "No Cargo.toml found at the source root.",
            hint="Point the pipeline at the workspace root.",
            context={"operation": "scan", "root": str(source_root)},
        )

    relative_paths: set[str] = set()
    for name in ROOT_ONLY_FILES:
        if (source_root / name).is_file():
            relative_paths.add(name)

    for dirpath, dirnames, filenames in os.walk(source_root):
        # Pruning in place keeps os.walk out of build output and VCS metadata.
        dirnames[:] = sorted(
            name for name in dirnames if name not in SKIPPED_DIRS and not name.startswith(".")
        )
        if MANIFEST_NAME in filenames:
            relative = Path(dirpath, MANIFEST_NAME).relative_to(source_root)
            relative_paths.add(relative.as_posix())

    files = tuple(
        ManifestFile(path=path, content=(source_root / path).read_bytes())
        for path in sorted(relative_paths)
    )
    return ScanResult(root=source_root, files=files)
