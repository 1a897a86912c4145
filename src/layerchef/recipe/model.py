"""Recipe typed model."""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from typing import Any, Literal

RECIPE_FORMAT_VERSION = 1

StubKind = Literal["lib", "bin", "build", "aux"]


@dataclass(frozen=True, slots=True)
class RecipeFile:
    path: str
    contents: str


@dataclass(frozen=True, slots=True)
class TargetStub:
    path: str
    kind: StubKind


@dataclass(frozen=True, slots=True)
class LocalPackage:
    name: str
    manifest: str
    targets: tuple[TargetStub, ...] = ()


@dataclass(frozen=True, slots=True)
class ExternalDependency:
    name: str
    version: str
    source: str
    checksum: str | None = None


@dataclass(frozen=True, slots=True)
class Recipe:
    """Normalized, dependency-only description of a source tree.

    Holds relative paths and manifest text only, so the digest depends on
    nothing but the manifest bytes that produced it.
    """

    files: tuple[RecipeFile, ...]
    packages: tuple[LocalPackage, ...]
    dependencies: tuple[ExternalDependency, ...]
    version: int = RECIPE_FORMAT_VERSION

    def payload(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "files": [{"path": item.path, "contents": item.contents} for item in self.files],
            "packages": [
                {
                    "name": package.name,
                    "manifest": package.manifest,
                    "targets": [
                        {"path": stub.path, "kind": stub.kind} for stub in package.targets
                    ],
                }
                for package in self.packages
            ],
            "dependencies": [
                {
                    "name": dep.name,
                    "version": dep.version,
                    "source": dep.source,
                    "checksum": dep.checksum,
                }
                for dep in self.dependencies
            ],
        }

    def canonical_bytes(self) -> bytes:
        canonical = json.dumps(self.payload(), sort_keys=True, separators=(",", ":"))
        return canonical.encode("utf-8")

    @property
    def digest(self) -> str:
        return hashlib.sha256(self.canonical_bytes()).hexdigest()

    def local_package_names(self) -> tuple[str, ...]:
        return tuple(sorted({package.name for package in self.packages}))
