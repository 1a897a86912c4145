"""Core typed dataclasses shared across pipeline stages."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

from layerchef.errors import ValidationError

BuildProfile = Literal["debug", "release"]

BUILD_PROFILES: tuple[BuildProfile, ...] = ("debug", "release")

# Cargo calls the debug profile "dev" but still writes to target/debug.
CARGO_PROFILE_NAMES: dict[BuildProfile, str] = {
    "debug": "dev",
    "release": "release",
}
CARGO_PROFILE_DIRS: dict[BuildProfile, str] = {
    "debug": "debug",
    "release": "release",
}


def parse_profile(value: str) -> BuildProfile:
    """Return *value* as a recognized build profile."""
    normalized = value.strip().lower()
    if normalized == "debug":
        return "debug"
    if normalized == "release":
        return "release"
    raise ValidationError(
        "Unknown build profile.",
        hint=f"Use one of: {', '.join(BUILD_PROFILES)}.",
        context={"profile": value},
    )


@dataclass(frozen=True, slots=True)
class ManifestFile:
    """A dependency-graph file captured by the scanner, relative to the source root."""

    path: str
    content: bytes


@dataclass(frozen=True, slots=True)
class ScanResult:
    root: Path
    files: tuple[ManifestFile, ...] = ()

    def paths(self) -> tuple[str, ...]:
        return tuple(item.path for item in self.files)

    def get(self, path: str) -> ManifestFile | None:
        for item in self.files:
            if item.path == path:
                return item
        return None


@dataclass(frozen=True, slots=True)
class DependencyLayer:
    key: str
    recipe_digest: str
    profile: BuildProfile
    toolchain: str
    path: Path
    cache_hit: bool = False

    @property
    def target_dir(self) -> Path:
        return self.path / "target"


@dataclass(frozen=True, slots=True)
class Artifact:
    binary: str
    path: Path
    profile: BuildProfile
    entrypoint: str
    sha256: str
    layer_key: str
    metadata_path: Path | None = None


@dataclass(frozen=True, slots=True)
class RuntimeImage:
    name: str
    path: Path
    profile: BuildProfile
    files: tuple[str, ...] = ()

    @property
    def rootfs(self) -> Path:
        return self.path / "rootfs"

    @property
    def config_path(self) -> Path:
        return self.path / "config.json"


@dataclass(slots=True)
class PipelineResult:
    profile: BuildProfile
    recipe_digest: str
    layer: DependencyLayer
    artifact: Artifact
    image: RuntimeImage
    report_path: Path | None = None
    stages: list[str] = field(default_factory=list)


__all__ = [
    "BUILD_PROFILES",
    "CARGO_PROFILE_DIRS",
    "CARGO_PROFILE_NAMES",
    "Artifact",
    "BuildProfile",
    "DependencyLayer",
    "ManifestFile",
    "PipelineResult",
    "RuntimeImage",
    "ScanResult",
    "parse_profile",
]
