"""Typed interfaces for compiler toolchains."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from layerchef.models import BuildProfile
from layerchef.recipe import Recipe


@dataclass(frozen=True, slots=True)
class DependencyBuildRequest:
    recipe: Recipe
    skeleton_dir: Path
    target_dir: Path
    profile: BuildProfile
    jobs: int
    env: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class ApplicationBuildRequest:
    source_root: Path
    target_dir: Path
    profile: BuildProfile
    binary: str
    jobs: int
    env: Mapping[str, str] = field(default_factory=dict)


class Toolchain(Protocol):
    name: str

    def version(self) -> str:
        """Return the toolchain identity that participates in layer cache keys."""

    def build_dependencies(self, request: DependencyBuildRequest) -> None:
        """Compile every external dependency of the recipe skeleton into the target dir."""

    def build_application(self, request: ApplicationBuildRequest) -> Path:
        """Compile the application binary and return its path inside the target dir."""
