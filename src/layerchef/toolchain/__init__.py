"""Toolchain and system package installer interfaces and implementations."""

from __future__ import annotations

from layerchef.errors import ValidationError

from .base import ApplicationBuildRequest, DependencyBuildRequest, Toolchain
from .cargo import CargoToolchain, classify_dependency_failure, forget_local_packages
from .inprocess import InProcessToolchain
from .system import (
    DEFAULT_SYSTEM_PACKAGES,
    AptInstaller,
    PreinstalledPackages,
    SystemPackageInstaller,
)


def get_toolchain(name: str) -> Toolchain:
    if name == "cargo":
        return CargoToolchain()
    if name == "inprocess":
        return InProcessToolchain()
    raise ValidationError("Unsupported toolchain.", context={"toolchain": name})


def get_installer(name: str) -> SystemPackageInstaller:
    if name == "apt":
        return AptInstaller()
    if name == "preinstalled":
        return PreinstalledPackages()
    raise ValidationError("Unsupported system package installer.", context={"installer": name})


__all__ = [
    "DEFAULT_SYSTEM_PACKAGES",
    "AptInstaller",
    "ApplicationBuildRequest",
    "CargoToolchain",
    "DependencyBuildRequest",
    "InProcessToolchain",
    "PreinstalledPackages",
    "SystemPackageInstaller",
    "Toolchain",
    "classify_dependency_failure",
    "forget_local_packages",
    "get_installer",
    "get_toolchain",
]
