"""Cargo toolchain: real dependency and application builds via subprocess."""

from __future__ import annotations

import os
import re
import shutil
import subprocess
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from layerchef.errors import (
    CompileError,
    DependencyBuildError,
    DependencyFailureKind,
    ValidationError,
)
from layerchef.models import CARGO_PROFILE_DIRS, CARGO_PROFILE_NAMES
from layerchef.toolchain.base import ApplicationBuildRequest, DependencyBuildRequest

# stderr fragments that point at the build host rather than at a crate.
MISSING_LIBRARY_MARKERS: tuple[str, ...] = (
    "Unable to find libclang",
    "could not find system library",
    "The pkg-config command could not be found",
    "pkg-config exited with status",
    "cannot find -l",
    ".h: No such file or directory",
    "linker `cc` not found",
)

STDERR_LIMIT = 2000

# Cargo suffixes every unit directory and artifact with a 16 hex digit metadata hash.
HASH_PATTERN = "[0-9a-f]{16}"


def classify_dependency_failure(stderr: str) -> DependencyFailureKind:
    if any(marker in stderr for marker in MISSING_LIBRARY_MARKERS):
        return "missing_system_library"
    return "compile_failed"


@dataclass(slots=True)
class CargoToolchain:
    name: str = "cargo"
    cargo: str = "cargo"
    rustc: str = "rustc"

    def version(self) -> str:
        try:
            result = subprocess.run(
                [self.rustc, "--version"],
                capture_output=True,
                text=True,
                check=False,
            )
        except FileNotFoundError as exc:
            raise ValidationError(
                "rustc is not available on this host.",
                hint="Install a Rust toolchain or pin toolchain_version in the config.",
                context={"rustc": self.rustc},
            ) from exc
        if result.returncode != 0:
            raise ValidationError(
                "rustc --version failed.",
                context={"rustc": self.rustc, "stderr": result.stderr[:STDERR_LIMIT]},
            )
        return result.stdout.strip()

    def build_dependencies(self, request: DependencyBuildRequest) -> None:
        command = (
            self.cargo,
            "build",
            "--profile",
            CARGO_PROFILE_NAMES[request.profile],
            "--locked",
            "--jobs",
            str(request.jobs),
            "--manifest-path",
            str(request.skeleton_dir / "Cargo.toml"),
        )
        try:
            result = self._run(
                command,
                cwd=request.skeleton_dir,
                target_dir=request.target_dir,
                env=request.env,
            )
        except FileNotFoundError as exc:
            raise DependencyBuildError(
                "cargo is not available on this host.",
                kind="missing_system_library",
                hint="Install a Rust toolchain in the build environment.",
                context={"command": " ".join(command)},
            ) from exc
        if result.returncode != 0:
            raise DependencyBuildError(
                "Dependency build failed.",
                kind=classify_dependency_failure(result.stderr),
                hint="Check cargo output; no layer was published.",
                context={
                    "command": " ".join(command),
                    "returncode": str(result.returncode),
                    "stderr": result.stderr[-STDERR_LIMIT:] if result.stderr else "",
                },
            )
        forget_local_packages(
            request.target_dir / CARGO_PROFILE_DIRS[request.profile],
            request.recipe.local_package_names(),
        )

    def build_application(self, request: ApplicationBuildRequest) -> Path:
        command = (
            self.cargo,
            "build",
            "--profile",
            CARGO_PROFILE_NAMES[request.profile],
            "--locked",
            "--jobs",
            str(request.jobs),
            "--bin",
            request.binary,
            "--manifest-path",
            str(request.source_root / "Cargo.toml"),
        )
        try:
            result = self._run(
                command,
                cwd=request.source_root,
                target_dir=request.target_dir,
                env=request.env,
            )
        except FileNotFoundError as exc:
            raise CompileError(
                "cargo is not available on this host.",
                context={"command": " ".join(command)},
            ) from exc
        if result.returncode != 0:
            raise CompileError(
                "Application build failed.",
                hint="Fix the reported source errors and rerun the pipeline.",
                context={
                    "command": " ".join(command),
                    "returncode": str(result.returncode),
                    "stderr": result.stderr[-STDERR_LIMIT:] if result.stderr else "",
                },
            )
        return request.target_dir / CARGO_PROFILE_DIRS[request.profile] / request.binary

    def _run(
        self,
        command: tuple[str, ...],
        *,
        cwd: Path,
        target_dir: Path,
        env: Mapping[str, str],
    ) -> subprocess.CompletedProcess[str]:
        run_env = dict(os.environ)
        run_env.update(env)
        run_env["CARGO_TARGET_DIR"] = str(target_dir)
        return subprocess.run(
            list(command),
            cwd=str(cwd),
            env=run_env,
            capture_output=True,
            text=True,
            check=False,
        )


def forget_local_packages(profile_dir: Path, package_names: tuple[str, ...]) -> None:
    """Drop build state of workspace crates compiled from stubs.

    The cooked target dir must only carry external dependencies, otherwise
    cargo can treat the stub builds of local crates as fresh.
    """
    for name in package_names:
        crate = re.escape(name.replace("-", "_"))
        unit = re.compile(rf"{re.escape(name)}-{HASH_PATTERN}")
        patterns = {
            ".fingerprint": unit,
            "build": unit,
            "deps": re.compile(rf"(lib)?{crate}-{HASH_PATTERN}(\..+)?"),
            ".": re.compile(rf"{re.escape(name)}(\.d)?|lib{crate}\.[0-9a-z]+"),
        }
        for directory, pattern in patterns.items():
            parent = profile_dir / directory
            if not parent.is_dir():
                continue
            for path in sorted(parent.iterdir()):
                if not pattern.fullmatch(path.name):
                    continue
                if path.is_dir() and not path.is_symlink():
                    # Directories at the profile root belong to cargo.
                    if directory != ".":
                        shutil.rmtree(path)
                else:
                    path.unlink(missing_ok=True)
