"""Application compiler: builds the service binary against a cooked layer."""

from __future__ import annotations

import hashlib
import json
import os
import shutil
import tempfile
from dataclasses import dataclass, field
from pathlib import Path

from layerchef.cook import default_jobs
from layerchef.errors import CompileError, ProfileMismatchError
from layerchef.models import Artifact, BuildProfile, DependencyLayer
from layerchef.observability import StructuredLogger
from layerchef.toolchain import ApplicationBuildRequest, Toolchain


@dataclass(slots=True)
class ApplicationCompiler:
    toolchain: Toolchain
    work_dir: Path
    jobs: int | None = None
    logger: StructuredLogger = field(default_factory=StructuredLogger)

    def compile(
        self,
        *,
        source_root: Path,
        layer: DependencyLayer,
        profile: BuildProfile,
        binary: str,
        entrypoint: str,
    ) -> Artifact:
        if layer.profile != profile:
            raise ProfileMismatchError(
                "Dependency layer was cooked with a different build profile.",
                hint="Cook the layer with the same profile as the application build.",
                context={"layer_profile": layer.profile, "profile": profile, "key": layer.key},
            )
        if not layer.target_dir.is_dir():
            raise CompileError(
                "Dependency layer has no target directory.",
                context={"key": layer.key, "path": str(layer.path)},
            )

        artifacts_dir = self.work_dir / "artifacts" / profile
        artifacts_dir.mkdir(parents=True, exist_ok=True)
        # A new run supersedes the previous artifact even when it fails.
        (artifacts_dir / binary).unlink(missing_ok=True)
        (artifacts_dir / f"{binary}.json").unlink(missing_ok=True)
        staging = Path(tempfile.mkdtemp(prefix=".compile-", dir=str(self.work_dir)))
        self.logger.log(
            operation="compile_start",
            profile=profile,
            stage="compile",
            message="Compiling application against dependency layer.",
            extra={"binary": binary, "layer_key": layer.key},
        )
        try:
            target_dir = staging / "target"
            # The layer stays read-only; the build writes into a private copy.
            shutil.copytree(layer.target_dir, target_dir, symlinks=True)
            built = self.toolchain.build_application(
                ApplicationBuildRequest(
                    source_root=source_root,
                    target_dir=target_dir,
                    profile=profile,
                    binary=binary,
                    jobs=self.jobs or default_jobs(),
                )
            )
            if not built.is_file():
                raise CompileError(
                    "Build finished without producing the application binary.",
                    context={"binary": binary, "expected": str(built)},
                )

            digest = hashlib.sha256(built.read_bytes()).hexdigest()
            output_path = artifacts_dir / binary
            metadata_path = artifacts_dir / f"{binary}.json"
            staged_binary = staging / binary
            staged_metadata = staging / f"{binary}.json"
            shutil.copy2(built, staged_binary)
            staged_metadata.write_text(
                json.dumps(
                    {
                        "binary": binary,
                        "profile": profile,
                        "entrypoint": entrypoint,
                        "sha256": digest,
                        "layer_key": layer.key,
                        "toolchain": layer.toolchain,
                    },
                    indent=2,
                    sort_keys=True,
                )
                + "\n",
                encoding="utf-8",
            )
            os.replace(staged_binary, output_path)
            os.replace(staged_metadata, metadata_path)
        finally:
            shutil.rmtree(staging, ignore_errors=True)

        self.logger.log(
            operation="compile_complete",
            profile=profile,
            stage="compile",
            message="Compiled application binary.",
            extra={"binary": binary, "sha256": digest},
        )
        return Artifact(
            binary=binary,
            path=output_path,
            profile=profile,
            entrypoint=entrypoint,
            sha256=digest,
            layer_key=layer.key,
            metadata_path=metadata_path,
        )
