"""Cached dependency builder.

``Cook.cook()`` turns a recipe and build profile into a dependency layer:
the cargo target directory with every external dependency compiled, keyed by
``(recipe digest, profile, toolchain version)``. A hit returns the stored
layer untouched. A miss materializes the recipe skeleton, compiles it, and
publishes the result atomically through the layer store.
"""

from __future__ import annotations

import os
import shutil
import tempfile
from dataclasses import dataclass, field
from pathlib import Path

from layerchef.cache import LayerCacheInput, LayerStore
from layerchef.models import BuildProfile, DependencyLayer
from layerchef.observability import StructuredLogger
from layerchef.recipe import Recipe
from layerchef.toolchain import (
    DEFAULT_SYSTEM_PACKAGES,
    AptInstaller,
    DependencyBuildRequest,
    SystemPackageInstaller,
    Toolchain,
)

LIB_STUB = ""
MAIN_STUB = "fn main() {}\n"


def write_skeleton(recipe: Recipe, destination: Path) -> Path:
    """Write manifests, lock and toolchain files plus empty target stubs."""
    for item in recipe.files:
        path = destination / item.path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(item.contents, encoding="utf-8")
    for package in recipe.packages:
        for stub in package.targets:
            path = destination / stub.path
            if path.exists():
                continue
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(LIB_STUB if stub.kind == "lib" else MAIN_STUB, encoding="utf-8")
    return destination


def default_jobs() -> int:
    return os.cpu_count() or 1


@dataclass(slots=True)
class Cook:
    store: LayerStore
    toolchain: Toolchain
    installer: SystemPackageInstaller = field(default_factory=AptInstaller)
    system_packages: tuple[str, ...] = DEFAULT_SYSTEM_PACKAGES
    jobs: int | None = None
    toolchain_version: str | None = None
    logger: StructuredLogger = field(default_factory=StructuredLogger)

    def cache_input(self, recipe: Recipe, profile: BuildProfile) -> LayerCacheInput:
        toolchain = self.toolchain_version or self.toolchain.version()
        return LayerCacheInput(recipe_digest=recipe.digest, profile=profile, toolchain=toolchain)

    def cook(self, recipe: Recipe, profile: BuildProfile) -> DependencyLayer:
        inputs = self.cache_input(recipe, profile)
        cached = self.store.load(inputs=inputs)
        if cached is not None:
            self.logger.log(
                operation="cook_cache_hit",
                profile=profile,
                stage="cook",
                message="Reusing cached dependency layer.",
                extra={"key": cached.key},
            )
            return cached

        self.logger.log(
            operation="cook_cache_miss",
            profile=profile,
            stage="cook",
            message="Building dependency layer.",
            extra={"recipe_digest": inputs.recipe_digest, "toolchain": inputs.toolchain},
        )
        installed = self.installer.ensure(self.system_packages)
        if installed:
            self.logger.log(
                operation="install_system_packages",
                profile=profile,
                stage="cook",
                message="Installed system packages.",
                extra={"packages": list(installed)},
            )

        jobs = self.jobs or default_jobs()
        staging = self.store.staging_dir()
        skeleton = Path(tempfile.mkdtemp(prefix="layerchef-skeleton-"))
        try:
            write_skeleton(recipe, skeleton)
            self.toolchain.build_dependencies(
                DependencyBuildRequest(
                    recipe=recipe,
                    skeleton_dir=skeleton,
                    target_dir=staging / "target",
                    profile=profile,
                    jobs=jobs,
                )
            )
            layer = self.store.publish(inputs=inputs, staging=staging)
        finally:
            shutil.rmtree(skeleton, ignore_errors=True)
            if staging.exists():
                shutil.rmtree(staging, ignore_errors=True)

        self.logger.log(
            operation="cook_published",
            profile=profile,
            stage="cook",
            message="Published dependency layer.",
            extra={"key": layer.key, "dependencies": len(recipe.dependencies), "jobs": jobs},
        )
        return layer
