"""System package installers for native build prerequisites."""

from __future__ import annotations

import shutil
import subprocess
from dataclasses import dataclass
from typing import Protocol

from layerchef.errors import DependencyBuildError

DEFAULT_SYSTEM_PACKAGES: tuple[str, ...] = ("libclang-dev", "pkg-config")


class SystemPackageInstaller(Protocol):
    name: str

    def ensure(self, packages: tuple[str, ...]) -> tuple[str, ...]:
        """Make *packages* available on the build host; return those newly installed."""


@dataclass(slots=True)
class AptInstaller:
    name: str = "apt"
    apt_get: str = "apt-get"
    dpkg_query: str = "dpkg-query"

    def ensure(self, packages: tuple[str, ...]) -> tuple[str, ...]:
        missing = tuple(package for package in packages if not self._installed(package))
        if not missing:
            return ()
        if shutil.which(self.apt_get) is None:
            raise DependencyBuildError(
                "System packages are missing and apt-get is not available.",
                kind="missing_system_library",
                hint="Install the packages on the build host or use a Debian-based builder.",
                context={"packages": ",".join(missing)},
            )
        self._run((self.apt_get, "update", "-qq"), missing=missing)
        self._run(
            (
                self.apt_get,
                "install",
                "-qqy",
                "--assume-yes",
                "--no-install-recommends",
                *missing,
            ),
            missing=missing,
        )
        return missing

    def _installed(self, package: str) -> bool:
        if shutil.which(self.dpkg_query) is None:
            return False
        result = subprocess.run(
            [self.dpkg_query, "-W", "-f=${Status}", package],
            capture_output=True,
            text=True,
            check=False,
        )
        return result.returncode == 0 and "install ok installed" in result.stdout

    def _run(self, command: tuple[str, ...], *, missing: tuple[str, ...]) -> None:
        result = subprocess.run(list(command), capture_output=True, text=True, check=False)
        if result.returncode != 0:
            raise DependencyBuildError(
                "System package installation failed.",
                kind="missing_system_library",
                hint="Check apt output and repository configuration.",
                context={
                    "command": " ".join(command),
                    "packages": ",".join(missing),
                    "returncode": str(result.returncode),
                    "stderr": result.stderr[-2000:] if result.stderr else "",
                },
            )


@dataclass(frozen=True, slots=True)
class PreinstalledPackages:
    """Installer for hosts whose native packages are provisioned out of band.

    With ``available=None`` every package is assumed present.
    """

    name: str = "preinstalled"
    available: frozenset[str] | None = None

    def ensure(self, packages: tuple[str, ...]) -> tuple[str, ...]:
        if self.available is None:
            return ()
        missing = tuple(package for package in packages if package not in self.available)
        if missing:
            raise DependencyBuildError(
                "Required system packages are not installed.",
                kind="missing_system_library",
                hint="Provision the packages on the build host.",
                context={"packages": ",".join(missing)},
            )
        return ()
