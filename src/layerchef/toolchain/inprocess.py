"""In-process toolchain for testing and development.

Produces deterministic placeholder outputs without invoking cargo or rustc.
The target directory layout mirrors cargo's (``<target>/<profile>/deps``),
which makes it suitable for:
- Unit tests that verify the caching and staging discipline
- Development hosts without a Rust toolchain
- CI environments that only exercise the pipeline wiring
"""

from __future__ import annotations

import hashlib
import os
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path

from layerchef.errors import CompileError, DependencyBuildError
from layerchef.models import CARGO_PROFILE_DIRS, BuildProfile
from layerchef.recipe import ExternalDependency
from layerchef.toolchain.base import ApplicationBuildRequest, DependencyBuildRequest

COMPILE_ERROR_MARKER = "compile_error!("

SKIPPED_SOURCE_DIRS = frozenset({"target"})


@dataclass(slots=True)
class InProcessToolchain:
    """Toolchain that writes deterministic placeholder build outputs in-process."""

    name: str = "inprocess"
    release: str = "inprocess 1.0.0"
    failing_dependencies: frozenset[str] = frozenset()
    dependency_builds: list[str] = field(default_factory=list)
    application_builds: list[str] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def version(self) -> str:
        return self.release

    def build_dependencies(self, request: DependencyBuildRequest) -> None:
        deps_dir = request.target_dir / CARGO_PROFILE_DIRS[request.profile] / "deps"
        deps_dir.mkdir(parents=True, exist_ok=True)
        with ThreadPoolExecutor(max_workers=max(1, request.jobs)) as pool:
            futures = [
                pool.submit(self._compile_dependency, dependency, deps_dir, request.profile)
                for dependency in request.recipe.dependencies
            ]
            for future in futures:
                future.result()

    def build_application(self, request: ApplicationBuildRequest) -> Path:
        profile_dir = request.target_dir / CARGO_PROFILE_DIRS[request.profile]
        deps_dir = profile_dir / "deps"
        if not deps_dir.is_dir():
            raise CompileError(
                "Target directory has no compiled dependencies.",
                hint="Cook the dependency layer before compiling the application.",
                context={"target_dir": str(request.target_dir)},
            )

        sources = _rust_sources(request.source_root)
        source_digest = hashlib.sha256()
        for path in sources:
            text = path.read_text(encoding="utf-8")
            if COMPILE_ERROR_MARKER in text:
                raise CompileError(
                    "Application source failed to compile.",
                    hint="Fix the reported source errors and rerun the pipeline.",
                    context={"file": path.relative_to(request.source_root).as_posix()},
                )
            source_digest.update(path.relative_to(request.source_root).as_posix().encode("utf-8"))
            source_digest.update(text.encode("utf-8"))

        linked = sorted(item.name for item in deps_dir.iterdir())
        output_path = profile_dir / request.binary
        output_path.write_text(
            (
                f"inprocess-binary: {request.binary}\n"
                f"profile={request.profile}\n"
                f"sources={source_digest.hexdigest()}\n"
                f"linked={','.join(linked)}\n"
            ),
            encoding="utf-8",
        )
        output_path.chmod(0o755)
        with self._lock:
            self.application_builds.append(request.binary)
        return output_path

    def _compile_dependency(
        self,
        dependency: ExternalDependency,
        deps_dir: Path,
        profile: BuildProfile,
    ) -> None:
        if dependency.name in self.failing_dependencies:
            raise DependencyBuildError(
                "Dependency failed to compile.",
                kind="compile_failed",
                context={"dependency": f"{dependency.name}@{dependency.version}"},
            )
        identity = f"{dependency.name}:{dependency.version}:{dependency.source}:{profile}"
        digest = hashlib.sha256(identity.encode("utf-8")).hexdigest()
        crate = dependency.name.replace("-", "_")
        artifact = deps_dir / f"lib{crate}-{digest[:16]}.rlib"
        artifact.write_text(f"inprocess-rlib: {identity}\n", encoding="utf-8")
        with self._lock:
            self.dependency_builds.append(f"{dependency.name}@{dependency.version}")


def _rust_sources(root: Path) -> list[Path]:
    sources: list[Path] = []
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(
            name
            for name in dirnames
            if name not in SKIPPED_SOURCE_DIRS and not name.startswith(".")
        )
        sources.extend(Path(dirpath, name) for name in sorted(filenames) if name.endswith(".rs"))
    return sources
