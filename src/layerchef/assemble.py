"""Runtime image assembly from an explicit allow-list of files."""

from __future__ import annotations

import json
import os
import shutil
import tempfile
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath

from layerchef.contract import LifecycleContract
from layerchef.errors import AssemblyError, ContractError
from layerchef.models import Artifact, RuntimeImage
from layerchef.observability import StructuredLogger

CONFIG_NAME = "config.json"
DEFAULT_LICENSE_PREFIX = "LICENSE-"


def collect_legal_files(
    source_root: Path,
    *,
    prefix: str = DEFAULT_LICENSE_PREFIX,
) -> tuple[Path, ...]:
    """Enumerate the license files at the source root that the image must carry."""
    matches = tuple(sorted(path for path in source_root.glob(f"{prefix}*") if path.is_file()))
    if not matches:
        raise AssemblyError(
            "No license files match the declared prefix.",
            hint="Add the license files to the source root or change license_prefix.",
            context={"root": str(source_root), "prefix": prefix},
        )
    return matches


@dataclass(slots=True)
class RuntimeImageAssembler:
    output_dir: Path
    logger: StructuredLogger = field(default_factory=StructuredLogger)

    def assemble(
        self,
        *,
        name: str,
        artifact: Artifact,
        legal_files: Sequence[Path],
        contract: LifecycleContract,
        labels: Mapping[str, str] | None = None,
    ) -> RuntimeImage:
        contract.validate()
        if contract.entrypoint != artifact.entrypoint:
            raise ContractError(
                "Entrypoint does not resolve to the assembled artifact.",
                context={"entrypoint": contract.entrypoint, "artifact": artifact.entrypoint},
            )
        if not artifact.path.is_file():
            raise AssemblyError(
                "Artifact does not exist.",
                hint="The compile stage did not produce the expected binary.",
                context={"path": str(artifact.path)},
            )
        for legal in legal_files:
            if not legal.is_file():
                raise AssemblyError(
                    "Declared legal file does not exist.",
                    context={"path": str(legal)},
                )

        # Every path copied into rootfs is listed here; nothing else is copied.
        copies: list[tuple[Path, PurePosixPath]] = [
            (artifact.path, PurePosixPath(artifact.entrypoint)),
        ]
        copies.extend(
            (legal, PurePosixPath(contract.working_dir) / legal.name) for legal in legal_files
        )
        destinations = [str(target) for _, target in copies]
        if len(set(destinations)) != len(destinations):
            raise AssemblyError(
                "Two image files map to the same destination path.",
                context={"paths": ",".join(sorted(destinations))},
            )

        self.output_dir.mkdir(parents=True, exist_ok=True)
        final_path = self.output_dir / f"{name}-{artifact.profile}"
        staging = Path(tempfile.mkdtemp(prefix=".assemble-", dir=str(self.output_dir)))
        try:
            rootfs = staging / "rootfs"
            for source, target in copies:
                destination = rootfs / target.relative_to("/")
                destination.parent.mkdir(parents=True, exist_ok=True)
                shutil.copy2(source, destination)
            (rootfs / PurePosixPath(contract.working_dir).relative_to("/")).mkdir(
                parents=True,
                exist_ok=True,
            )

            config = {
                **contract.to_config(),
                "Labels": dict(sorted((labels or {}).items())),
                "Profile": artifact.profile,
                "ArtifactSha256": artifact.sha256,
                "LayerKey": artifact.layer_key,
            }
            (staging / CONFIG_NAME).write_text(
                json.dumps(config, indent=2, sort_keys=True) + "\n",
                encoding="utf-8",
            )
            _publish_dir(staging, final_path)
        finally:
            if staging.exists():
                shutil.rmtree(staging, ignore_errors=True)

        image = RuntimeImage(
            name=name,
            path=final_path,
            profile=artifact.profile,
            files=tuple(sorted(destinations)),
        )
        self.logger.log(
            operation="assemble_complete",
            profile=artifact.profile,
            stage="assemble",
            message="Assembled runtime image.",
            extra={"path": str(final_path), "files": list(image.files)},
        )
        return image


def image_files(image: RuntimeImage) -> tuple[str, ...]:
    """List every file present in the image rootfs as absolute image paths."""
    rootfs = image.rootfs
    return tuple(
        sorted(
            "/" + path.relative_to(rootfs).as_posix()
            for path in rootfs.rglob("*")
            if path.is_file()
        )
    )


def _publish_dir(staging: Path, final_path: Path) -> None:
    if not final_path.exists():
        os.rename(staging, final_path)
        return
    # Swap the superseded image aside first so readers never see a mix.
    retired = Path(tempfile.mkdtemp(prefix=".retired-", dir=str(final_path.parent)))
    os.rename(final_path, retired / final_path.name)
    os.rename(staging, final_path)
    shutil.rmtree(retired, ignore_errors=True)
